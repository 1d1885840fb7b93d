"""
Aggregation handlers: composite read endpoints over several upstream services.

Each handler derives a cache key, answers from the cache when it can, and
otherwise fans out to the upstream services concurrently, checks the
primary resource, merges whatever else arrived and writes the document
back to the cache.
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from shared.errors import AggregationError, NotFoundError, ValidationError
from shared.logging import get_logger
from ..adapters.upstream_client import UpstreamClient
from ..caching.two_tier_cache import TwoTierCache
from .models import (
    CategoryDetail,
    DashboardStats,
    Document,
    Pagination,
    QuizDetail,
    QuizListResult,
    SearchResults,
    UserProfile,
)
from .settle import Outcome, settle_all


DEFAULT_TTL = 300
DASHBOARD_TTL = 60
SEARCH_TTL = 120

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10

WRAPPER_KEYS = ("items", "data", "results")

# type -> (service, path, matched fields)
SEARCH_BRANCHES: Dict[str, Tuple[str, str, Tuple[str, ...]]] = {
    "quizzes": ("quizzing", "/api/quizzes", ("title", "description")),
    "users": ("users", "/api/users", ("name", "email", "username")),
    "posts": ("posts", "/api/blog-posts", ("title", "markdown", "content")),
    "courses": ("courses", "/api/courses", ("title", "description")),
}

# count name -> (service, path)
DASHBOARD_COUNTS: Dict[str, Tuple[str, str]] = {
    "quizzes": ("quizzing", "/api/quizzes"),
    "users": ("users", "/api/users"),
    "courses": ("courses", "/api/courses"),
    "posts": ("posts", "/api/blog-posts"),
    "scores": ("scores", "/api/scores"),
    "feedbacks": ("feedbacks", "/api/feedbacks"),
}


def make_cache_key(prefix: str, **params: Any) -> str:
    """Deterministic key: ``prefix`` plus the non-empty params in sorted order."""
    parts = [f"{name}={params[name]}" for name in sorted(params) if params[name] not in (None, "")]
    if not parts:
        return prefix
    return f"{prefix}_{'&'.join(parts)}"


def extract_items(payload: Any, *names: str) -> List[Document]:
    """Pull the list out of a collection response.

    Upstream services answer either with a bare list or with an object that
    wraps it under ``items``/``data``/``results`` or the resource name.
    """
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        for key in names + WRAPPER_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
    return []


def count_items(payload: Any, *names: str) -> int:
    if isinstance(payload, dict):
        for key in ("total", "count", "totalCount"):
            value = payload.get(key)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return len(extract_items(payload, *names))


def ref_id(value: Any) -> Optional[str]:
    """Id of a reference that may be a bare id or a populated document."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("_id", value.get("id"))
        return None if value is None else str(value)
    return str(value)


def clamp_page(page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
    page = max(1, page or 1)
    limit = min(max(1, limit or DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
    return page, limit


def normalize_category(category: Document) -> Document:
    normalized = dict(category)
    if not normalized.get("name") and normalized.get("title"):
        normalized["name"] = normalized["title"]
    return normalized


def _matches(document: Document, needle: str, fields: Iterable[str]) -> bool:
    for name in fields:
        value = document.get(name)
        if isinstance(value, str) and needle in value.lower():
            return True
    return False


def _index_by_id(documents: Iterable[Document]) -> Dict[str, Document]:
    index = {}
    for document in documents:
        key = ref_id(document)
        if key is not None:
            index[key] = document
    return index


class AggregationService:
    """The six composite read handlers.

    Handlers return ``(document, cache_hit)``. A cache hit hands back the
    stored document unchanged, still carrying ``_cached: false``.
    """

    def __init__(self, upstream: UpstreamClient, cache: TwoTierCache, default_ttl: int = DEFAULT_TTL):
        self.upstream = upstream
        self.cache = cache
        self.default_ttl = default_ttl
        self.logger = get_logger("gateway.aggregation")

    async def _cached(self, key: str, ttl: int,
                      build: Callable[[], Awaitable[Document]]) -> Tuple[Document, bool]:
        cached = await self.cache.get(key)
        if cached is not None:
            self.logger.debug("Aggregation cache hit", key=key)
            return cached, True

        document = await build()
        await self.cache.set(key, document, ttl)
        return document, False

    def _get(self, service: str, path: str, params: Optional[Dict[str, Any]] = None):
        return self.upstream.get_json(service, path, params)

    def _log_failures(self, endpoint: str, outcomes: Dict[str, Outcome], primary: Optional[str] = None):
        for name, outcome in outcomes.items():
            if not outcome.ok and name != primary:
                self.logger.warning(
                    "Secondary fetch failed, using default",
                    endpoint=endpoint,
                    branch=name,
                    error=str(outcome.error)
                )

    @staticmethod
    def _primary(outcome: Outcome, label: str) -> Document:
        document = outcome.value_or(None)
        if not isinstance(document, dict) or not document:
            raise NotFoundError(f"{label} not found")
        return document

    async def quiz_detail(self, quiz_id: str) -> Tuple[Document, bool]:
        """Quiz with its category, questions, comments and scores."""

        async def build() -> Document:
            outcomes = await settle_all(
                quiz=self._get("quizzing", f"/api/quizzes/{quiz_id}"),
                categories=self._get("quizzing", "/api/categories"),
                questions=self._get("quizzing", "/api/questions"),
                comments=self._get("comments", f"/api/quizzes-comments/quiz/{quiz_id}"),
                scores=self._get("scores", f"/api/scores/quiz-ranking/{quiz_id}"),
            )
            quiz = self._primary(outcomes["quiz"], "Quiz")
            self._log_failures("quiz_detail", outcomes, primary="quiz")

            category_ref = quiz.get("category")
            categories = _index_by_id(extract_items(outcomes["categories"].value, "categories"))
            category = categories.get(ref_id(category_ref))
            if category is None and isinstance(category_ref, dict):
                category = category_ref

            question_ids = {ref_id(question) for question in quiz.get("questions") or []}
            questions = [
                question
                for question in extract_items(outcomes["questions"].value, "questions")
                if ref_id(question) in question_ids
            ]

            return QuizDetail(
                quiz=quiz,
                category=normalize_category(category) if category else None,
                questions=questions,
                comments=extract_items(outcomes["comments"].value, "comments"),
                scores=extract_items(outcomes["scores"].value, "scores"),
            ).to_dict()

        return await self._cached(f"quiz_{quiz_id}", self.default_ttl, build)

    async def quiz_list(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        difficulty: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Tuple[Document, bool]:
        """Filtered, paginated quiz list enriched with category and creator names."""
        page, limit = clamp_page(page, limit)
        filters = {
            "category": category,
            "search": search,
            "difficulty": difficulty,
            "created_by": created_by,
        }
        key = make_cache_key("quiz_list", page=page, limit=limit, **filters)

        async def build() -> Document:
            outcomes = await settle_all(
                quizzes=self._get("quizzing", "/api/quizzes"),
                categories=self._get("quizzing", "/api/categories"),
                users=self._get("users", "/api/users"),
            )
            if not outcomes["quizzes"].ok:
                self.logger.error("Quiz list fetch failed", error=str(outcomes["quizzes"].error))
                raise AggregationError("Failed to fetch quizzes")
            self._log_failures("quiz_list", outcomes, primary="quizzes")

            categories = _index_by_id(
                normalize_category(item)
                for item in extract_items(outcomes["categories"].value, "categories")
            )
            users = _index_by_id(extract_items(outcomes["users"].value, "users"))

            quizzes = [
                quiz for quiz in extract_items(outcomes["quizzes"].value, "quizzes")
                if self._quiz_matches(quiz, categories, **filters)
            ]
            pagination = Pagination(page=page, limit=limit, total=len(quizzes))
            window = quizzes[(page - 1) * limit:page * limit]

            return QuizListResult(
                quizzes=[self._enrich_quiz(quiz, categories, users) for quiz in window],
                pagination=pagination,
                filters=filters,
            ).to_dict()

        return await self._cached(key, self.default_ttl, build)

    @staticmethod
    def _quiz_matches(quiz: Document, categories: Dict[str, Document], category: Optional[str],
                      search: Optional[str], difficulty: Optional[str], created_by: Optional[str]) -> bool:
        if category:
            category_id = ref_id(quiz.get("category"))
            slug = (categories.get(category_id) or {}).get("slug")
            if category not in (category_id, slug):
                return False
        if search and not _matches(quiz, search.lower(), ("title", "description")):
            return False
        if difficulty and str(quiz.get("difficulty", "")).lower() != difficulty.lower():
            return False
        if created_by and ref_id(quiz.get("created_by")) != created_by:
            return False
        return True

    @staticmethod
    def _enrich_quiz(quiz: Document, categories: Dict[str, Document], users: Dict[str, Document]) -> Document:
        category_ref = quiz.get("category")
        category = categories.get(ref_id(category_ref))
        if category is None and isinstance(category_ref, dict):
            category = normalize_category(category_ref)

        creator_ref = quiz.get("created_by")
        creator = users.get(ref_id(creator_ref))
        if creator is None and isinstance(creator_ref, dict):
            creator = creator_ref

        question_count = len(quiz.get("questions") or [])
        enriched = dict(quiz)
        enriched.update(
            categoryName=category.get("name") if category else None,
            categorySlug=category.get("slug") if category else None,
            creatorName=creator.get("name") if creator else None,
            questionCount=question_count,
            estimatedTime=question_count * 2,
        )
        return enriched

    async def dashboard(self) -> Tuple[Document, bool]:
        """Six independent platform counts; a failed count is reported as 0."""

        async def build() -> Document:
            outcomes = await settle_all(**{
                name: self._get(service, path)
                for name, (service, path) in DASHBOARD_COUNTS.items()
            })
            self._log_failures("dashboard", outcomes)

            counts = {
                name: count_items(outcome.value, name) if outcome.ok else 0
                for name, outcome in outcomes.items()
            }
            return DashboardStats(
                unavailable=[name for name, outcome in outcomes.items() if not outcome.ok],
                generated_at=datetime.now(timezone.utc).isoformat(),
                **counts,
            ).to_dict()

        return await self._cached("dashboard_stats", DASHBOARD_TTL, build)

    async def user_profile(self, user_id: str) -> Tuple[Document, bool]:
        """User with their scores, created quizzes, comments and summary stats."""

        async def build() -> Document:
            outcomes = await settle_all(
                user=self._get("users", f"/api/users/{user_id}"),
                scores=self._get("scores", f"/api/scores/taken-by/{user_id}"),
                quizzes=self._get("quizzing", "/api/quizzes"),
                comments=self._get("comments", "/api/quizzes-comments"),
            )
            user = self._primary(outcomes["user"], "User")
            self._log_failures("user_profile", outcomes, primary="user")

            quizzes = [
                quiz for quiz in extract_items(outcomes["quizzes"].value, "quizzes")
                if ref_id(quiz.get("created_by")) == user_id
            ]
            comments = [
                comment for comment in extract_items(outcomes["comments"].value, "comments")
                if ref_id(comment.get("sender", comment.get("user"))) == user_id
            ]
            return UserProfile(
                user=user,
                scores=extract_items(outcomes["scores"].value, "scores"),
                quizzes=quizzes,
                comments=comments,
            ).to_dict()

        return await self._cached(f"user_{user_id}", self.default_ttl, build)

    async def category_detail(self, category_id: str) -> Tuple[Document, bool]:
        """Category with its quizzes, their questions and difficulty stats."""

        async def build() -> Document:
            outcomes = await settle_all(
                category=self._get("quizzing", f"/api/categories/{category_id}"),
                quizzes=self._get("quizzing", f"/api/quizzes/category/{category_id}"),
                questions=self._get("quizzing", "/api/questions"),
            )
            category = self._primary(outcomes["category"], "Category")
            self._log_failures("category_detail", outcomes, primary="category")

            quizzes = extract_items(outcomes["quizzes"].value, "quizzes")
            referenced = {
                ref_id(question)
                for quiz in quizzes
                for question in quiz.get("questions") or []
            }
            questions = [
                question
                for question in extract_items(outcomes["questions"].value, "questions")
                if ref_id(question) in referenced
            ]
            return CategoryDetail(
                category=normalize_category(category),
                quizzes=quizzes,
                questions=questions,
            ).to_dict()

        return await self._cached(f"category_{category_id}", self.default_ttl, build)

    async def search(
        self,
        q: Optional[str],
        search_type: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[Document, bool]:
        """Case-insensitive search across quizzes, users, posts and courses."""
        if q is None or not q.strip():
            raise ValidationError("Search query is required")
        query = q.strip()

        search_type = (search_type or "all").lower()
        if search_type == "all":
            branches = list(SEARCH_BRANCHES)
        elif search_type in SEARCH_BRANCHES:
            branches = [search_type]
        else:
            raise ValidationError(
                f"Invalid search type '{search_type}'. Expected one of: all, {', '.join(SEARCH_BRANCHES)}"
            )

        page, limit = clamp_page(page, limit)
        key = make_cache_key("search", q=query, type=search_type, page=page, limit=limit)

        async def build() -> Document:
            outcomes = await settle_all(**{
                name: self._get(SEARCH_BRANCHES[name][0], SEARCH_BRANCHES[name][1])
                for name in branches
            })
            self._log_failures("search", outcomes)

            needle = query.lower()
            results: Dict[str, List[Document]] = {}
            totals: Dict[str, int] = {}
            for name in branches:
                fields = SEARCH_BRANCHES[name][2]
                matched = [
                    document
                    for document in extract_items(outcomes[name].value, name)
                    if _matches(document, needle, fields)
                ]
                totals[name] = len(matched)
                results[name] = matched[(page - 1) * limit:page * limit]

            return SearchResults(
                query=query,
                search_type=search_type,
                page=page,
                limit=limit,
                results=results,
                totals=totals,
            ).to_dict()

        return await self._cached(key, SEARCH_TTL, build)
