"""
Relevance scoring and result ordering.

The engine decides, per entity type, which text predicate gates inclusion,
which expression produces the relevance score, and which sort keys order the
results. Every score lands in [0, 1]; when there is no text query the score is
the neutral constant. Orderings always end in creation time and identifier so
identical queries return identical pages.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from . import text
from .config import DEFAULT_SEARCH_CONFIG, SearchConfig
from .errors import SearchValidationError
from .filters import (
    NameMatches,
    Predicate,
    RecipeTextMatches,
)
from .sql import Clause

SORT_FIELDS = ("relevance", "rating", "cookingTime", "prepTime", "recent", "popular")

RECIPE_TS_RANK_SQL = """ts_rank(r."searchVector", plainto_tsquery('english', {0}), 32)"""


@dataclass(frozen=True)
class SortKey:
    """One ORDER BY term over an output column of the matched rows."""

    field: str
    descending: bool
    missing: float | None = None

    def render(self) -> str:
        expr = self.field if self.missing is None else f"COALESCE({self.field}, {int(self.missing)})"
        return f"{expr} {'DESC' if self.descending else 'ASC'}"


def render_order_by(keys: list[SortKey]) -> str:
    return "ORDER BY " + ", ".join(k.render() for k in keys)


@dataclass(frozen=True)
class Relevance:
    entity: str
    query: str | None
    fuzzy: bool
    predicate: Predicate | None
    score_clause: Clause
    neutral: float

    @property
    def has_query(self) -> bool:
        return self.query is not None

    def score(self, record: Mapping[str, Any]) -> float:
        """Score one in-memory record the same way ``score_clause`` does in SQL."""
        if self.query is None:
            return self.neutral
        if self.entity == "recipes":
            document = record.get("document") or recipe_document(record)
            rank = text.text_rank(document, self.query)
            if not self.fuzzy:
                return _clamp(rank)
            return _clamp(max(
                text.similarity(record.get("title"), self.query),
                text.similarity(record.get("description"), self.query),
                rank,
            ))
        if self.fuzzy:
            return _clamp(text.similarity(record.get("name"), self.query))
        if self.entity == "ingredients":
            document = text.build_document({"A": record.get("name")})
            return _clamp(text.text_rank(document, self.query))
        return self.neutral


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


def recipe_document(record: Mapping[str, Any]) -> dict[str, str]:
    """Weighted lexeme document for a recipe, as the ``searchVector`` trigger builds it."""
    return text.build_document({
        "A": record.get("title"),
        "B": record.get("description"),
        "C": record.get("instructions"),
        "D": record.get("cuisine"),
    })


def _normalize_query(query: str | None) -> str | None:
    if query is None:
        return None
    stripped = query.strip()
    return stripped or None


class RankingEngine:
    def __init__(self, config: SearchConfig = DEFAULT_SEARCH_CONFIG) -> None:
        self.config = config

    def _neutral(self, entity: str, fuzzy: bool) -> Relevance:
        return Relevance(
            entity=entity,
            query=None,
            fuzzy=fuzzy,
            predicate=None,
            score_clause=Clause("{0}::float8", (self.config.neutral_score,)),
            neutral=self.config.neutral_score,
        )

    # -- relevance ----------------------------------------------------------

    def recipe_relevance(self, query: str | None, fuzzy: bool = False) -> Relevance:
        q = _normalize_query(query)
        if q is None:
            return self._neutral("recipes", fuzzy)
        predicate = RecipeTextMatches(
            query=q,
            fuzzy=fuzzy,
            title_threshold=self.config.title_similarity,
            description_threshold=self.config.description_similarity,
        )
        if fuzzy:
            score = Clause(
                "COALESCE(GREATEST("
                """similarity(r."title", {0}), similarity(r."description", {0}), """
                + RECIPE_TS_RANK_SQL + "), 0)",
                (q,),
            )
        else:
            score = Clause(RECIPE_TS_RANK_SQL, (q,))
        return Relevance("recipes", q, fuzzy, predicate, score, self.config.neutral_score)

    def ingredient_relevance(self, query: str | None, fuzzy: bool = False) -> Relevance:
        q = _normalize_query(query)
        if q is None:
            return self._neutral("ingredients", fuzzy)
        if fuzzy:
            predicate = NameMatches(
                "name", 'i."name"', q, threshold=self.config.ingredient_name_similarity,
            )
            score = Clause("""COALESCE(similarity(i."name", {0}), 0)""", (q,))
        else:
            predicate = NameMatches("name", 'i."name"', q)
            score = Clause(
                """ts_rank(to_tsvector('english', i."name"), plainto_tsquery('english', {0}), 32)""",
                (q,),
            )
        return Relevance("ingredients", q, fuzzy, predicate, score, self.config.neutral_score)

    def user_relevance(self, query: str | None, fuzzy: bool = False) -> Relevance:
        q = _normalize_query(query)
        if q is None:
            return self._neutral("users", fuzzy)
        if fuzzy:
            predicate = NameMatches(
                "name", 'u."name"', q,
                threshold=self.config.user_name_similarity, full_text=False,
            )
            score = Clause("""COALESCE(similarity(u."name", {0}), 0)""", (q,))
        else:
            predicate = NameMatches("name", 'u."name"', q, full_text=False)
            score = Clause("{0}::float8", (self.config.neutral_score,))
        return Relevance("users", q, fuzzy, predicate, score, self.config.neutral_score)

    # -- ordering -----------------------------------------------------------

    def recipe_order(
        self,
        sort_by: str = "relevance",
        sort_order: str | None = None,
        has_query: bool = False,
    ) -> list[SortKey]:
        """Sort keys for the advanced recipe search.

        ``sort_order`` overrides the field's natural direction: descending for
        relevance, rating, popularity and recency, ascending for times.
        """
        if sort_by not in SORT_FIELDS:
            raise SearchValidationError(
                "sort_by", f"Unsupported sort '{sort_by}'; expected one of: {', '.join(SORT_FIELDS)}",
            )
        if sort_order is not None and sort_order not in ("asc", "desc"):
            raise SearchValidationError("sort_order", "Sort order must be 'asc' or 'desc'")

        def direction(default_desc: bool) -> bool:
            return default_desc if sort_order is None else sort_order == "desc"

        sentinel = float(self.config.missing_time_sentinel)
        relevance = SortKey("relevance_score", True)
        created = SortKey("created_at", True)
        identifier = SortKey("recipe_id", False)

        if sort_by == "relevance" and not has_query:
            sort_by = "recent"

        if sort_by == "recent":
            return [SortKey("created_at", direction(True)), identifier]

        if sort_by == "relevance":
            primary = SortKey("relevance_score", direction(True))
        elif sort_by == "rating":
            primary = SortKey("avg_rating", direction(True))
        elif sort_by == "popular":
            primary = SortKey("save_count", direction(True))
        elif sort_by == "cookingTime":
            primary = SortKey("cooking_time", direction(False), sentinel)
        else:
            primary = SortKey("prep_time", direction(False), sentinel)

        keys = [primary]
        if has_query and primary.field != "relevance_score":
            keys.append(relevance)
        keys.extend([created, identifier])
        return keys

    def federated_recipe_order(self) -> list[SortKey]:
        return [
            SortKey("relevance_score", True),
            SortKey("avg_rating", True),
            SortKey("created_at", True),
            SortKey("recipe_id", False),
        ]

    def ingredient_order(self) -> list[SortKey]:
        return [
            SortKey("relevance_score", True),
            SortKey("usage_count", True),
            SortKey("name", False),
            SortKey("ingredient_id", False),
        ]

    def user_order(self) -> list[SortKey]:
        return [
            SortKey("relevance_score", True),
            SortKey("recipe_count", True),
            SortKey("name", False),
            SortKey("user_id", False),
        ]
