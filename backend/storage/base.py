from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..search.filters import Predicate
from ..search.models import SearchLogEntry
from ..search.ranking import Relevance, SortKey

SUGGESTION_FIELDS = ("recipes", "ingredients", "cuisines", "tags")


@dataclass(frozen=True)
class SearchPlan:
    """Everything a store needs to run one entity search."""

    entity: str
    relevance: Relevance
    predicates: list[Predicate] = field(default_factory=list)
    order: list[SortKey] = field(default_factory=list)
    limit: int = 20
    offset: int = 0

    @property
    def all_predicates(self) -> list[Predicate]:
        # Text gate first, then facets in schema order
        if self.relevance.predicate is None:
            return list(self.predicates)
        return [self.relevance.predicate, *self.predicates]


@dataclass(frozen=True)
class PopularView:
    """Window and thresholds defining which logged queries count as popular."""

    since: datetime
    min_query_length: int = 3
    min_count: int = 2
    max_rows: int = 100


class CatalogueStore(ABC):
    """Read access to the catalogue plus the append-only search log."""

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    # -- search -------------------------------------------------------------

    @abstractmethod
    async def search_recipes(self, plan: SearchPlan) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def count_recipes(self, plan: SearchPlan) -> int:
        ...

    @abstractmethod
    async def search_ingredients(self, plan: SearchPlan) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def search_users(self, plan: SearchPlan) -> list[dict[str, Any]]:
        ...

    # -- suggestions --------------------------------------------------------

    @abstractmethod
    async def suggest(
        self, field: str, query: str, threshold: float, limit: int,
    ) -> list[dict[str, Any]]:
        """Distinct values of *field* similar to or containing *query*."""

    @abstractmethod
    async def popular_queries(
        self,
        view: PopularView,
        limit: int,
        similar_to: str | None = None,
        threshold: float = 0.0,
    ) -> list[dict[str, Any]]:
        ...

    # -- trends -------------------------------------------------------------

    @abstractmethod
    async def trending_recipes(self, since: datetime, limit: int) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def trending_ingredients(
        self, since: datetime, limit: int, min_usage: int = 1,
    ) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def trending_cuisines(self, since: datetime, limit: int) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def count_recipes_since(self, since: datetime) -> int:
        ...

    @abstractmethod
    async def distinct_cuisines(self) -> list[str]:
        ...

    # -- search log ---------------------------------------------------------

    @abstractmethod
    async def record_search(self, entry: SearchLogEntry) -> None:
        ...

    @abstractmethod
    async def search_log(self, since: datetime | None = None) -> list[SearchLogEntry]:
        ...
