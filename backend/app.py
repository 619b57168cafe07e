from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from .analytics.aggregator import summarize_search_log
from .analytics.sink import get_sink
from .auth.dependencies import current_user_id
from .search.config import DEFAULT_SEARCH_CONFIG
from .search.errors import SearchValidationError, StorageError, StorageTimeoutError
from .search.federated import FederatedSearchDispatcher
from .search.models import (
    DIFFICULTIES,
    SPICE_LEVELS,
    AdvancedSearchRequest,
    AdvancedSearchResponse,
    CuisineTrendsResponse,
    FederatedSearchRequest,
    FederatedSearchResponse,
    IngredientTrendsResponse,
    SuggestionResponse,
    SuggestionType,
    TrendingResponse,
)
from .search.ranking import SORT_FIELDS
from .search.service import RecipeSearchService
from .search.suggestions import SuggestionEngine
from .search.trending import TrendAggregator
from .storage import get_store

logger = logging.getLogger(__name__)

_config = DEFAULT_SEARCH_CONFIG


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    await store.connect()
    sink = get_sink()
    await sink.start()
    try:
        yield
    finally:
        await sink.stop()
        await store.close()


app = FastAPI(title="Recipe Search API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=os.environ.get("SESSION_SECRET", "recipe-search-secret-change-in-production"),
)

federated = FederatedSearchDispatcher()
recipe_search = RecipeSearchService()
suggestions = SuggestionEngine()
trends = TrendAggregator()


# ── Error handlers ───────────────────────────────────────────────────────


@app.exception_handler(SearchValidationError)
async def search_validation_error(request: Request, exc: SearchValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": exc.to_detail()})


@app.exception_handler(StorageTimeoutError)
async def storage_timeout_error(request: Request, exc: StorageTimeoutError) -> JSONResponse:
    logger.error("Search timed out on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=504, content={"detail": "Search timed out"})


@app.exception_handler(StorageError)
async def storage_error(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Catalogue store failure on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Search is temporarily unavailable"})


# ── Public endpoints ─────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/metadata")
async def metadata() -> dict:
    return {
        "difficulties": list(DIFFICULTIES),
        "spice_levels": list(SPICE_LEVELS),
        "sort_options": list(SORT_FIELDS),
        "cuisines": await get_store().distinct_cuisines(),
    }


# ── Search endpoints ─────────────────────────────────────────────────────


@app.post("/search", response_model=FederatedSearchResponse, response_model_exclude_none=True)
async def search(
    body: FederatedSearchRequest,
    user_id: int | None = Depends(current_user_id),
) -> FederatedSearchResponse:
    return await federated.search(body, user_id)


@app.post("/search/recipes/advanced", response_model=AdvancedSearchResponse)
async def search_recipes_advanced(
    body: AdvancedSearchRequest,
    user_id: int | None = Depends(current_user_id),
) -> AdvancedSearchResponse:
    return await recipe_search.search_recipes_advanced(body, user_id)


@app.get("/search/suggestions", response_model=SuggestionResponse, response_model_exclude_none=True)
async def search_suggestions(
    query: str = Query(default="", max_length=200),
    type: SuggestionType = "all",
    limit: int = Query(default=10, ge=1, le=_config.suggestion_max_limit),
    include_popular: bool = True,
) -> SuggestionResponse:
    return await suggestions.suggest(query, type, limit, include_popular)


# ── Trend endpoints ──────────────────────────────────────────────────────


@app.get("/search/trending", response_model=TrendingResponse)
async def search_trending(
    days: int = Query(default=7, ge=1, le=_config.trending_max_days),
    limit: int = Query(default=10, ge=1, le=_config.trending_max_limit),
) -> TrendingResponse:
    return await trends.trending(days, limit)


@app.get("/search/trending/ingredients", response_model=IngredientTrendsResponse)
async def search_trending_ingredients(
    days: int = Query(default=30, ge=1, le=_config.ingredient_trend_max_days),
    limit: int = Query(default=20, ge=1, le=_config.ingredient_trend_max_limit),
) -> IngredientTrendsResponse:
    return await trends.ingredient_trends(days, limit)


@app.get("/search/trending/cuisines", response_model=CuisineTrendsResponse)
async def search_trending_cuisines(
    days: int = Query(default=30, ge=1, le=_config.ingredient_trend_max_days),
    limit: int = Query(default=20, ge=1, le=_config.ingredient_trend_max_limit),
) -> CuisineTrendsResponse:
    return await trends.cuisine_trends(days, limit)


# ── Analytics ────────────────────────────────────────────────────────────


@app.get("/search/analytics")
async def search_analytics(
    days: int = Query(default=30, ge=1, le=365),
    top: int = Query(default=10, ge=1, le=50),
) -> dict:
    since = datetime.now(timezone.utc) - timedelta(days=days)
    entries = await get_store().search_log(since)
    return {"period": f"{days} days", **summarize_search_log(entries, top_n=top)}
