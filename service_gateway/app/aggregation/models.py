"""
Typed results for the aggregation handlers.

Every field a handler may fail to fetch has an explicit default, so a
partially failed fan-out still renders a complete document.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

Document = Dict[str, Any]


def _tagged(body: Document) -> Document:
    body["_aggregated"] = True
    body["_cached"] = False
    return body


@dataclass
class QuizDetail:
    quiz: Document
    category: Optional[Document] = None
    questions: List[Document] = field(default_factory=list)
    comments: List[Document] = field(default_factory=list)
    scores: List[Document] = field(default_factory=list)

    def to_dict(self) -> Document:
        body = dict(self.quiz)
        body.update(
            category=self.category,
            questions=self.questions,
            comments=self.comments,
            scores=self.scores,
        )
        return _tagged(body)


@dataclass
class Pagination:
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit

    def to_dict(self) -> Document:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "totalPages": self.total_pages,
            "hasNext": self.page < self.total_pages,
            "hasPrev": self.page > 1,
        }


@dataclass
class QuizListResult:
    quizzes: List[Document]
    pagination: Pagination
    filters: Dict[str, Optional[str]] = field(default_factory=dict)

    def to_dict(self) -> Document:
        return _tagged({
            "quizzes": self.quizzes,
            "pagination": self.pagination.to_dict(),
            "filters": self.filters,
        })


@dataclass
class DashboardStats:
    quizzes: int = 0
    users: int = 0
    courses: int = 0
    posts: int = 0
    scores: int = 0
    feedbacks: int = 0
    unavailable: List[str] = field(default_factory=list)
    generated_at: Optional[str] = None

    def to_dict(self) -> Document:
        return _tagged({
            "quizzes": self.quizzes,
            "users": self.users,
            "courses": self.courses,
            "posts": self.posts,
            "scores": self.scores,
            "feedbacks": self.feedbacks,
            "unavailable": self.unavailable,
            "generatedAt": self.generated_at,
        })


@dataclass
class UserProfile:
    user: Document
    scores: List[Document] = field(default_factory=list)
    quizzes: List[Document] = field(default_factory=list)
    comments: List[Document] = field(default_factory=list)

    @property
    def average_score(self) -> float:
        values = [_number(score.get("score")) for score in self.scores]
        values = [value for value in values if value is not None]
        if not values:
            return 0
        return round(sum(values) / len(values), 2)

    def to_dict(self) -> Document:
        body = dict(self.user)
        body.update(
            scores=self.scores,
            quizzesCreated=self.quizzes,
            comments=self.comments,
            stats={
                "totalScores": len(self.scores),
                "quizzesCreated": len(self.quizzes),
                "totalComments": len(self.comments),
                "averageScore": self.average_score,
            },
        )
        return _tagged(body)


@dataclass
class CategoryDetail:
    category: Document
    quizzes: List[Document] = field(default_factory=list)
    questions: List[Document] = field(default_factory=list)

    @property
    def average_difficulty(self) -> float:
        if not self.quizzes:
            return 0
        # quizzes without a usable difficulty count as 1
        values = [_number(quiz.get("difficulty")) for quiz in self.quizzes]
        values = [1 if value is None else value for value in values]
        return round(sum(values) / len(values), 2)

    def to_dict(self) -> Document:
        body = dict(self.category)
        body.update(
            quizzes=self.quizzes,
            questions=self.questions,
            stats={
                "totalQuizzes": len(self.quizzes),
                "totalQuestions": len(self.questions),
                "averageDifficulty": self.average_difficulty,
            },
        )
        return _tagged(body)


@dataclass
class SearchResults:
    query: str
    search_type: str
    page: int
    limit: int
    results: Dict[str, List[Document]] = field(default_factory=dict)
    totals: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Document:
        return _tagged({
            "query": self.query,
            "type": self.search_type,
            "results": self.results,
            "totals": self.totals,
            "total": sum(self.totals.values()),
            "pagination": {"page": self.page, "limit": self.limit},
        })


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None
