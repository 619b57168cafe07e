from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


def _float_env(name: str, default: float) -> float:
    return float(os.getenv(name, default))


@dataclass(frozen=True)
class SearchConfig:
    # Fuzzy inclusion gate for recipe text
    title_similarity: float = _float_env("SEARCH_TITLE_SIMILARITY", 0.3)
    description_similarity: float = _float_env("SEARCH_DESCRIPTION_SIMILARITY", 0.2)

    # Fuzzy filter thresholds
    cuisine_filter_similarity: float = 0.5
    ingredient_filter_similarity: float = 0.4
    exclude_ingredient_similarity: float = 0.6
    tag_filter_similarity: float = 0.5
    ingredient_name_similarity: float = 0.4
    user_name_similarity: float = 0.3

    # Suggestion thresholds per bucket
    suggestion_thresholds: dict[str, float] = field(default_factory=lambda: {
        "recipes": 0.3,
        "ingredients": 0.4,
        "cuisines": 0.4,
        "tags": 0.4,
        "popular": 0.3,
    })
    suggestion_min_length: int = 2
    suggestion_max_limit: int = 20
    related_popular_limit: int = 5

    # Federated search per-type caps
    type_caps: dict[str, int] = field(default_factory=lambda: {
        "recipes": 10,
        "ingredients": 10,
        "users": 5,
    })

    max_page_size: int = 100
    neutral_score: float = 1.0
    missing_time_sentinel: int = 999999

    # Popular-query view over the search log
    popular_window_days: int = 30
    popular_min_query_length: int = 3
    popular_min_count: int = 2
    popular_max_rows: int = 100

    # Trend windows (days) and caps
    trending_max_days: int = 30
    trending_max_limit: int = 20
    ingredient_trend_max_days: int = 365
    ingredient_trend_max_limit: int = 50
    ingredient_trend_min_usage: int = 2


DEFAULT_SEARCH_CONFIG = SearchConfig()
