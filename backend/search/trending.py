from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from ..storage import CatalogueStore, get_store
from .config import DEFAULT_SEARCH_CONFIG, SearchConfig
from .errors import SearchValidationError
from .models import (
    CuisineTrendsResponse,
    IngredientTrendsResponse,
    TrendingBuckets,
    TrendingCuisine,
    TrendingIngredient,
    TrendingRecipe,
    TrendingResponse,
)

logger = logging.getLogger(__name__)


def _check_window(days: int, limit: int, max_days: int, max_limit: int) -> None:
    if not 1 <= days <= max_days:
        raise SearchValidationError("days", f"Days must be between 1 and {max_days}")
    if not 1 <= limit <= max_limit:
        raise SearchValidationError("limit", f"Limit must be between 1 and {max_limit}")


def usage_percentage(recipe_count: int, recipes_in_window: int) -> float:
    return round(recipe_count / max(1, recipes_in_window) * 100, 2)


class TrendAggregator:
    """Time-windowed usage statistics over recently created recipes."""

    def __init__(
        self,
        store: CatalogueStore | None = None,
        config: SearchConfig = DEFAULT_SEARCH_CONFIG,
    ) -> None:
        self._store = store
        self.config = config

    @property
    def store(self) -> CatalogueStore:
        return self._store or get_store()

    @staticmethod
    def window_start(days: int, now: datetime | None = None) -> datetime:
        return (now or datetime.now(timezone.utc)) - timedelta(days=days)

    async def _ingredients(self, since: datetime, limit: int, min_usage: int) -> list[TrendingIngredient]:
        rows, in_window = await asyncio.gather(
            self.store.trending_ingredients(since, limit, min_usage),
            self.store.count_recipes_since(since),
        )
        return [
            TrendingIngredient(**row, usage_percentage=usage_percentage(row["recipe_count"], in_window))
            for row in rows
        ]

    async def trending(self, days: int = 7, limit: int = 10) -> TrendingResponse:
        _check_window(days, limit, self.config.trending_max_days, self.config.trending_max_limit)
        since = self.window_start(days)
        recipes, ingredients, cuisines = await asyncio.gather(
            self.store.trending_recipes(since, limit),
            self._ingredients(since, limit, 1),
            self.store.trending_cuisines(since, limit),
        )
        logger.debug(
            "Trending over %d days: %d recipes, %d ingredients, %d cuisines",
            days, len(recipes), len(ingredients), len(cuisines),
        )
        return TrendingResponse(
            period=f"{days} days",
            trending=TrendingBuckets(
                recipes=[TrendingRecipe(**r) for r in recipes],
                ingredients=ingredients,
                cuisines=[TrendingCuisine(**c) for c in cuisines],
            ),
        )

    async def ingredient_trends(self, days: int = 30, limit: int = 20) -> IngredientTrendsResponse:
        _check_window(
            days, limit, self.config.ingredient_trend_max_days, self.config.ingredient_trend_max_limit,
        )
        ingredients = await self._ingredients(
            self.window_start(days), limit, self.config.ingredient_trend_min_usage,
        )
        return IngredientTrendsResponse(
            period=f"{days} days", trending=ingredients, total_trending=len(ingredients),
        )

    async def cuisine_trends(self, days: int = 30, limit: int = 20) -> CuisineTrendsResponse:
        _check_window(
            days, limit, self.config.ingredient_trend_max_days, self.config.ingredient_trend_max_limit,
        )
        rows = await self.store.trending_cuisines(self.window_start(days), limit)
        cuisines = [TrendingCuisine(**r) for r in rows]
        return CuisineTrendsResponse(
            period=f"{days} days", trending=cuisines, total_trending=len(cuisines),
        )
