from __future__ import annotations

import asyncio
import logging

from ..analytics.sink import SearchAnalyticsSink, get_sink
from ..storage import CatalogueStore, SearchPlan, get_store
from .config import DEFAULT_SEARCH_CONFIG, SearchConfig
from .filters import RECIPE_SCHEMA, FilterCompiler
from .models import (
    AdvancedSearchRequest,
    AdvancedSearchResponse,
    PaginationOut,
    RecipeResult,
    SearchLogEntry,
    SearchMetadata,
)
from .pagination import PageInfo, validate_page
from .ranking import RankingEngine

logger = logging.getLogger(__name__)

# Logged in place of the query when only filters were given
FILTER_ONLY_QUERY = "advanced_filter"


class RecipeSearchService:
    """Filtered, sorted, paginated recipe search."""

    def __init__(
        self,
        store: CatalogueStore | None = None,
        sink: SearchAnalyticsSink | None = None,
        config: SearchConfig = DEFAULT_SEARCH_CONFIG,
    ) -> None:
        self._store = store
        self._sink = sink
        self.config = config
        self.compiler = FilterCompiler(RECIPE_SCHEMA, config)
        self.ranking = RankingEngine(config)

    @property
    def store(self) -> CatalogueStore:
        return self._store or get_store()

    @property
    def sink(self) -> SearchAnalyticsSink:
        return self._sink or get_sink()

    def plan(self, request: AdvancedSearchRequest) -> SearchPlan:
        """Validate *request* and compile it; raises before any storage access."""
        validate_page(request.limit, request.offset, self.config.max_page_size, location="body")
        relevance = self.ranking.recipe_relevance(request.query, request.fuzzy)
        return SearchPlan(
            entity="recipes",
            relevance=relevance,
            predicates=self.compiler.compile(request.filters.to_filter_spec(), request.fuzzy),
            order=self.ranking.recipe_order(request.sort_by, request.sort_order, relevance.has_query),
            limit=request.limit,
            offset=request.offset,
        )

    async def search_recipes_advanced(
        self, request: AdvancedSearchRequest, user_id: int | None = None,
    ) -> AdvancedSearchResponse:
        plan = self.plan(request)
        rows, total = await asyncio.gather(
            self.store.search_recipes(plan),
            self.store.count_recipes(plan),
        )
        page = PageInfo(total=total, limit=request.limit, offset=request.offset, returned=len(rows))
        response = AdvancedSearchResponse(
            recipes=[RecipeResult(**row) for row in rows],
            pagination=PaginationOut(**page.as_dict()),
            search_metadata=SearchMetadata(
                has_text_search=plan.relevance.has_query,
                fuzzy_search=request.fuzzy,
                has_filters=bool(plan.predicates),
                sort_by=request.sort_by,
                sort_order=request.sort_order,
                relevance_scoring=plan.relevance.has_query,
            ),
        )
        logger.debug(
            "Advanced search %r: %d of %d (offset=%d)",
            plan.relevance.query, len(rows), total, request.offset,
        )

        self.sink.record(SearchLogEntry(
            query=plan.relevance.query or FILTER_ONLY_QUERY,
            user_id=user_id,
            result_count=total,
            search_type="advanced_recipe",
            filters=request.filters.model_dump(mode="json", exclude_defaults=True) or None,
        ))
        return response
