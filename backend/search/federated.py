"""
Federated search: one query, one bucket per entity type.

Each bucket is searched independently with its own cap and the caller's
offset; there is no pagination across types. The number of rows returned over
all buckets is only reported to the search log.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from ..analytics.sink import SearchAnalyticsSink, get_sink
from ..storage import CatalogueStore, SearchPlan, get_store
from .config import DEFAULT_SEARCH_CONFIG, SearchConfig
from .errors import SearchValidationError
from .filters import INGREDIENT_SCHEMA, RECIPE_SCHEMA, FilterCompiler
from .models import (
    FederatedResults,
    FederatedSearchRequest,
    FederatedSearchResponse,
    IngredientResult,
    PageRequestOut,
    RecipeResult,
    SearchLogEntry,
    UserResult,
)
from .pagination import validate_page
from .ranking import RankingEngine

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("recipes", "ingredients", "users")


class FederatedSearchDispatcher:
    def __init__(
        self,
        store: CatalogueStore | None = None,
        sink: SearchAnalyticsSink | None = None,
        config: SearchConfig = DEFAULT_SEARCH_CONFIG,
    ) -> None:
        self._store = store
        self._sink = sink
        self.config = config
        self.ranking = RankingEngine(config)
        self.recipe_filters = FilterCompiler(RECIPE_SCHEMA, config)
        self.ingredient_filters = FilterCompiler(INGREDIENT_SCHEMA, config)
        self._planners: dict[str, Callable[[str, FederatedSearchRequest], SearchPlan]] = {
            "recipes": self._plan_recipes,
            "ingredients": self._plan_ingredients,
            "users": self._plan_users,
        }

    @property
    def store(self) -> CatalogueStore:
        return self._store or get_store()

    @property
    def sink(self) -> SearchAnalyticsSink:
        return self._sink or get_sink()

    def cap(self, entity: str, limit: int) -> int:
        return min(limit, self.config.type_caps[entity])

    async def search(
        self, request: FederatedSearchRequest, user_id: int | None = None,
    ) -> FederatedSearchResponse:
        validate_page(request.limit, request.offset, self.config.max_page_size, location="body")
        query = request.query.strip()
        if not query:
            raise SearchValidationError("query", "Query must not be blank", location="body")

        types = ENTITY_TYPES if request.type == "all" else (request.type,)
        # Plan every bucket first so a rejected filter never reaches storage
        plans = [self._planners[t](query, request) for t in types]
        buckets = await asyncio.gather(*(self._execute(plan) for plan in plans))
        results = FederatedResults(**dict(zip(types, buckets)))
        returned = sum(len(b) for b in buckets)
        logger.debug("Federated search %r over %s returned %d rows", query, types, returned)

        filters = request.filters.model_dump(mode="json", exclude_defaults=True) if request.filters else None
        self.sink.record(SearchLogEntry(
            query=query,
            user_id=user_id,
            result_count=returned,
            search_type=request.type,
            filters=filters or None,
        ))
        return FederatedSearchResponse(
            query=query,
            type=request.type,
            fuzzy=request.fuzzy,
            pagination=PageRequestOut(limit=request.limit, offset=request.offset),
            results=results,
        )

    # -- per-type plans -----------------------------------------------------

    def _plan_recipes(self, query: str, request: FederatedSearchRequest) -> SearchPlan:
        spec = request.filters.to_filter_spec() if request.filters else {}
        return SearchPlan(
            entity="recipes",
            relevance=self.ranking.recipe_relevance(query, request.fuzzy),
            predicates=self.recipe_filters.compile(spec, request.fuzzy),
            order=self.ranking.federated_recipe_order(),
            limit=self.cap("recipes", request.limit),
            offset=request.offset,
        )

    def _plan_ingredients(self, query: str, request: FederatedSearchRequest) -> SearchPlan:
        spec = request.ingredient_filters.to_filter_spec() if request.ingredient_filters else {}
        return SearchPlan(
            entity="ingredients",
            relevance=self.ranking.ingredient_relevance(query, request.fuzzy),
            predicates=self.ingredient_filters.compile(spec, request.fuzzy),
            order=self.ranking.ingredient_order(),
            limit=self.cap("ingredients", request.limit),
            offset=request.offset,
        )

    def _plan_users(self, query: str, request: FederatedSearchRequest) -> SearchPlan:
        return SearchPlan(
            entity="users",
            relevance=self.ranking.user_relevance(query, request.fuzzy),
            order=self.ranking.user_order(),
            limit=self.cap("users", request.limit),
            offset=request.offset,
        )

    async def _execute(self, plan: SearchPlan) -> list[Any]:
        if plan.entity == "recipes":
            return [RecipeResult(**row) for row in await self.store.search_recipes(plan)]
        if plan.entity == "ingredients":
            return [IngredientResult(**row) for row in await self.store.search_ingredients(plan)]
        return [UserResult(**row) for row in await self.store.search_users(plan)]
