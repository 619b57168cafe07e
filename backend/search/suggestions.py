from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from ..storage import CatalogueStore, PopularView, get_store
from ..storage.base import SUGGESTION_FIELDS
from .config import DEFAULT_SEARCH_CONFIG, SearchConfig
from .errors import SearchValidationError
from .models import PopularQuery, Suggestion, SuggestionBuckets, SuggestionResponse

logger = logging.getLogger(__name__)

# Bucket name -> suggestion type label
_SUGGESTION_TYPES = {
    "recipes": "recipe",
    "ingredients": "ingredient",
    "cuisines": "cuisine",
    "tags": "tag",
}


class SuggestionEngine:
    """Autocomplete over recipe titles, ingredients, cuisines and tags.

    Partial queries shorter than ``suggestion_min_length`` only get the
    popular-query bucket, or a validation error when popular queries were not
    requested.
    """

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

    def popular_view(self, now: datetime | None = None) -> PopularView:
        now = now or datetime.now(timezone.utc)
        return PopularView(
            since=now - timedelta(days=self.config.popular_window_days),
            min_query_length=self.config.popular_min_query_length,
            min_count=self.config.popular_min_count,
            max_rows=self.config.popular_max_rows,
        )

    async def suggest(
        self,
        query: str | None,
        scope: str = "all",
        limit: int = 10,
        include_popular: bool = True,
    ) -> SuggestionResponse:
        if scope != "all" and scope not in SUGGESTION_FIELDS:
            raise SearchValidationError(
                "type", f"Unsupported suggestion type '{scope}'",
            )
        if not 1 <= limit <= self.config.suggestion_max_limit:
            raise SearchValidationError(
                "limit", f"Limit must be between 1 and {self.config.suggestion_max_limit}",
            )

        partial = (query or "").strip()
        view = self.popular_view()
        thresholds = self.config.suggestion_thresholds

        if len(partial) < self.config.suggestion_min_length:
            if not include_popular:
                raise SearchValidationError(
                    "query",
                    f"Query must be at least {self.config.suggestion_min_length} characters long",
                )
            rows = await self.store.popular_queries(view, limit)
            return SuggestionResponse(
                query="",
                suggestions=SuggestionBuckets(popular=[PopularQuery(**r) for r in rows]),
            )

        fields = SUGGESTION_FIELDS if scope == "all" else (scope,)
        found = await asyncio.gather(*(
            self.store.suggest(field, partial, thresholds[field], limit) for field in fields
        ))
        buckets: dict[str, list] = {}
        for field, rows in zip(fields, found):
            buckets[field] = [
                Suggestion(type=_SUGGESTION_TYPES[field], **row) for row in _dedupe(rows)
            ]

        if include_popular:
            rows = await self.store.popular_queries(
                view,
                self.config.related_popular_limit,
                similar_to=partial,
                threshold=thresholds["popular"],
            )
            buckets["popular"] = [PopularQuery(**r) for r in rows]

        logger.debug("Suggestions for %r: %s", partial, {k: len(v) for k, v in buckets.items()})
        return SuggestionResponse(query=partial, suggestions=SuggestionBuckets(**buckets))


def _dedupe(rows: list[dict]) -> list[dict]:
    seen: set[str] = set()
    out = []
    for row in rows:
        if row["text"] in seen:
            continue
        seen.add(row["text"])
        out.append(row)
    return out
