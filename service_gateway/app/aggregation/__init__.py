"""
Composite read endpoints that fan out to several upstream services.
"""

from .models import CategoryDetail, DashboardStats, QuizDetail, QuizListResult, SearchResults, UserProfile
from .service import AggregationService, extract_items, make_cache_key
from .settle import Outcome, settle_all

__all__ = [
    "AggregationService",
    "CategoryDetail",
    "DashboardStats",
    "Outcome",
    "QuizDetail",
    "QuizListResult",
    "SearchResults",
    "UserProfile",
    "extract_items",
    "make_cache_key",
    "settle_all",
]
