"""
In-memory catalogue backed by pandas DataFrames.

Each table is held as its own frame, the way the relational catalogue stores
it. Derived per-recipe columns (average rating, save count, tag and ingredient
lists, the weighted lexeme document) are computed once on first use. Predicates
are evaluated with the same semantics their SQL rendering has in Postgres.
"""
from __future__ import annotations

import logging
import math
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

import numpy as np
import pandas as pd

from ..search import text
from ..search.filters import (
    FieldCompare,
    FieldEquals,
    FieldIn,
    FieldMatchesAny,
    NameMatches,
    Predicate,
    RecipeTextMatches,
    RelatedMatches,
)
from ..search.models import SearchLogEntry
from ..search.ranking import SortKey, recipe_document
from .base import SUGGESTION_FIELDS, CatalogueStore, PopularView, SearchPlan
from .config import DEFAULT_STORAGE_CONFIG

logger = logging.getLogger(__name__)

TABLE_COLUMNS: dict[str, dict[str, Any]] = {
    "recipes": {
        "recipe_id": None, "title": None, "description": None, "instructions": None,
        "cuisine": None, "difficulty": None, "spice_level": None,
        "cooking_time": None, "prep_time": None, "servings": None,
        "is_generated": False, "is_favorite": False, "user_id": None, "created_at": None,
    },
    "ingredients": {"ingredient_id": None, "name": None, "category": None},
    "recipe_ingredients": {"recipe_id": None, "ingredient_id": None, "quantity": None},
    "recipe_tags": {"recipe_id": None, "tag": None},
    "recipe_ratings": {"recipe_id": None, "user_id": None, "rating": None},
    "saved_recipes": {"recipe_id": None, "user_id": None},
    "users": {"user_id": None, "name": None},
}

RECIPE_COLUMNS = [
    "recipe_id", "title", "description", "cuisine", "difficulty", "spice_level",
    "cooking_time", "prep_time", "servings", "is_generated", "user_id", "created_at",
    "avg_rating", "rating_count", "save_count", "tags", "ingredients", "relevance_score",
]
INGREDIENT_COLUMNS = ["ingredient_id", "name", "category", "usage_count", "relevance_score"]
USER_COLUMNS = ["user_id", "name", "recipe_count", "relevance_score"]

# Child-relation name -> list column on the enriched recipe frame
_RELATION_COLUMNS = {"ingredients": "ingredient_names", "tags": "tags"}


def _frame(data: pd.DataFrame | Iterable[Mapping[str, Any]] | None, columns: dict[str, Any]) -> pd.DataFrame:
    if data is None:
        df = pd.DataFrame(columns=list(columns))
    elif isinstance(data, pd.DataFrame):
        df = data.copy()
    else:
        df = pd.DataFrame(list(data))
    for name, default in columns.items():
        if name not in df.columns:
            df[name] = default
    return df


def _native(value: Any) -> Any:
    """Convert pandas/numpy scalars into plain Python values for the API layer."""
    if value is None or isinstance(value, (list, dict, str, bool)):
        return value
    if value is pd.NaT or value is pd.NA:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _records(frame: pd.DataFrame, columns: list[str] | None = None) -> list[dict[str, Any]]:
    subset = frame if columns is None else frame[columns]
    return [
        {key: _native(value) for key, value in row.items()}
        for row in subset.to_dict("records")
    ]


def _sort(frame: pd.DataFrame, keys: list[SortKey]) -> pd.DataFrame:
    if frame.empty or not keys:
        return frame
    work = frame.copy()
    columns: list[str] = []
    ascending: list[bool] = []
    for i, key in enumerate(keys):
        column = f"_sort_{i}"
        values = work[key.field]
        if key.missing is not None:
            values = values.fillna(key.missing)
        work[column] = values
        columns.append(column)
        ascending.append(not key.descending)
    work = work.sort_values(columns, ascending=ascending, kind="mergesort", na_position="last")
    return work.drop(columns=columns)


class MemoryCatalogueStore(CatalogueStore):
    """Catalogue held in DataFrames; used for local runs and tests.

    The search log keeps only the newest *max_log_entries* entries.
    """

    def __init__(
        self,
        tables: Mapping[str, pd.DataFrame | Iterable[Mapping[str, Any]]] | None = None,
        search_log: Iterable[SearchLogEntry] | None = None,
        max_log_entries: int | None = DEFAULT_STORAGE_CONFIG.memory_log_size,
    ) -> None:
        tables = dict(tables or {})
        unknown = set(tables) - set(TABLE_COLUMNS)
        if unknown:
            raise ValueError(f"unknown catalogue tables: {sorted(unknown)}")
        self._tables = {
            name: _frame(tables.get(name), columns) for name, columns in TABLE_COLUMNS.items()
        }
        self._log: deque[SearchLogEntry] = deque(search_log or (), maxlen=max_log_entries)
        self._recipes: pd.DataFrame | None = None
        self._ingredients: pd.DataFrame | None = None
        self._users: pd.DataFrame | None = None
        self._evaluators: dict[type, Callable[[Any, pd.DataFrame], pd.Series]] = {
            FieldEquals: self._eval_equals,
            FieldIn: self._eval_in,
            FieldCompare: self._eval_compare,
            FieldMatchesAny: self._eval_row_wise,
            RelatedMatches: self._eval_row_wise,
            RecipeTextMatches: self._eval_row_wise,
            NameMatches: self._eval_row_wise,
        }

    @classmethod
    def from_csv_dir(
        cls, data_dir: Path, max_log_entries: int | None = DEFAULT_STORAGE_CONFIG.memory_log_size
    ) -> "MemoryCatalogueStore":
        """Load every table that has a ``<table>.csv`` file in *data_dir*."""
        tables: dict[str, pd.DataFrame] = {}
        for name in TABLE_COLUMNS:
            path = Path(data_dir) / f"{name}.csv"
            if path.exists():
                tables[name] = pd.read_csv(path)
        if not tables:
            logger.warning("No catalogue CSV files found in %s; starting empty", data_dir)
        else:
            logger.info("Loaded catalogue tables %s from %s", sorted(tables), data_dir)
        return cls(tables, max_log_entries=max_log_entries)

    # -- derived frames -----------------------------------------------------

    def _recipe_frame(self) -> pd.DataFrame:
        if self._recipes is None:
            self._recipes = self._build_recipes()
        return self._recipes

    def _build_recipes(self) -> pd.DataFrame:
        df = self._tables["recipes"].copy()
        df["created_at"] = pd.to_datetime(df["created_at"], utc=True)
        for flag in ("is_generated", "is_favorite"):
            df[flag] = df[flag].apply(lambda v: False if pd.isna(v) else bool(v)).astype(bool)

        ratings = self._tables["recipe_ratings"]
        ratings = ratings.assign(rating=pd.to_numeric(ratings["rating"]))
        stats = ratings.groupby("recipe_id")["rating"].agg(["mean", "count"])
        df["avg_rating"] = df["recipe_id"].map(stats["mean"]).fillna(0.0).astype(float)
        df["rating_count"] = df["recipe_id"].map(stats["count"]).fillna(0).astype(int)

        saves = self._tables["saved_recipes"].groupby("recipe_id")["user_id"].nunique()
        df["save_count"] = df["recipe_id"].map(saves).fillna(0).astype(int)

        tags: dict[Any, list[str]] = {}
        for row in self._tables["recipe_tags"].to_dict("records"):
            if row["tag"] is not None and not pd.isna(row["tag"]):
                tags.setdefault(row["recipe_id"], []).append(str(row["tag"]))

        items: dict[Any, list[dict[str, Any]]] = {}
        links, ingredients = self._tables["recipe_ingredients"], self._tables["ingredients"]
        joined = (
            links.merge(ingredients, on="ingredient_id", how="inner")
            if not links.empty and not ingredients.empty
            else links.iloc[0:0]
        )
        for row in _records(joined):
            items.setdefault(row["recipe_id"], []).append({
                "ingredient_id": row["ingredient_id"],
                "name": row["name"],
                "quantity": None if row["quantity"] is None else str(row["quantity"]),
                "category": row["category"],
            })

        rows = df.to_dict("records")
        df["tags"] = [tags.get(r["recipe_id"], []) for r in rows]
        df["ingredients"] = [items.get(r["recipe_id"], []) for r in rows]
        df["ingredient_names"] = [[i["name"] for i in items.get(r["recipe_id"], [])] for r in rows]
        df["document"] = [recipe_document(r) for r in rows]
        return df

    def _ingredient_frame(self) -> pd.DataFrame:
        if self._ingredients is None:
            df = self._tables["ingredients"].copy()
            usage = self._tables["recipe_ingredients"].groupby("ingredient_id")["recipe_id"].nunique()
            df["usage_count"] = df["ingredient_id"].map(usage).fillna(0).astype(int)
            self._ingredients = df
        return self._ingredients

    def _user_frame(self) -> pd.DataFrame:
        if self._users is None:
            df = self._tables["users"].copy()
            counts = self._tables["recipes"].groupby("user_id")["recipe_id"].nunique()
            df["recipe_count"] = df["user_id"].map(counts).fillna(0).astype(int)
            self._users = df
        return self._users

    # -- predicate evaluation -----------------------------------------------

    def _eval_equals(self, p: FieldEquals, frame: pd.DataFrame) -> pd.Series:
        return frame[p.field] == p.value

    def _eval_in(self, p: FieldIn, frame: pd.DataFrame) -> pd.Series:
        return frame[p.field].isin(list(p.values))

    def _eval_compare(self, p: FieldCompare, frame: pd.DataFrame) -> pd.Series:
        column = frame[p.field]
        return column.ge(p.value) if p.op == ">=" else column.le(p.value)

    def _eval_row_wise(self, p: Predicate, frame: pd.DataFrame) -> pd.Series:
        test = _row_test(p)
        return pd.Series(
            [test(row) for row in frame.to_dict("records")], index=frame.index, dtype=bool,
        )

    def _filter(self, frame: pd.DataFrame, predicates: list[Predicate]) -> pd.DataFrame:
        for predicate in predicates:
            if frame.empty:
                break
            mask = self._evaluators[type(predicate)](predicate, frame)
            frame = frame[mask.fillna(False).astype(bool)]
        return frame

    def _run(self, frame: pd.DataFrame, plan: SearchPlan) -> pd.DataFrame:
        matched = self._filter(frame, plan.all_predicates).copy()
        scores = [plan.relevance.score(row) for row in matched.to_dict("records")]
        matched["relevance_score"] = np.clip(np.asarray(scores, dtype=float), 0.0, 1.0)
        return _sort(matched, plan.order)

    @staticmethod
    def _page(frame: pd.DataFrame, plan: SearchPlan) -> pd.DataFrame:
        return frame.iloc[plan.offset:plan.offset + plan.limit]

    # -- search -------------------------------------------------------------

    async def search_recipes(self, plan: SearchPlan) -> list[dict[str, Any]]:
        page = self._page(self._run(self._recipe_frame(), plan), plan)
        rows = _records(page, RECIPE_COLUMNS)
        for row in rows:
            row["avg_rating"] = round(row["avg_rating"] or 0.0, 2)
        return rows

    async def count_recipes(self, plan: SearchPlan) -> int:
        return int(len(self._filter(self._recipe_frame(), plan.all_predicates)))

    async def search_ingredients(self, plan: SearchPlan) -> list[dict[str, Any]]:
        page = self._page(self._run(self._ingredient_frame(), plan), plan)
        return _records(page, INGREDIENT_COLUMNS)

    async def search_users(self, plan: SearchPlan) -> list[dict[str, Any]]:
        page = self._page(self._run(self._user_frame(), plan), plan)
        return _records(page, USER_COLUMNS)

    # -- suggestions --------------------------------------------------------

    def _suggestion_source(self, field: str) -> list[tuple[Any, Any]]:
        if field == "recipes":
            df = self._tables["recipes"]
            return list(zip(df["title"], df["recipe_id"]))
        if field == "ingredients":
            df = self._tables["ingredients"]
            return list(zip(df["name"], df["ingredient_id"]))
        if field == "cuisines":
            return [(c, None) for c in self._tables["recipes"]["cuisine"]]
        return [(t, None) for t in self._tables["recipe_tags"]["tag"]]

    async def suggest(
        self, field: str, query: str, threshold: float, limit: int,
    ) -> list[dict[str, Any]]:
        if field not in SUGGESTION_FIELDS:
            raise ValueError(f"unknown suggestion field {field!r}")
        best: dict[str, dict[str, Any]] = {}
        for value, ident in self._suggestion_source(field):
            value = _native(value)
            if not value:
                continue
            value = str(value)
            score = text.similarity(value, query)
            if score <= threshold and not text.contains(value, query):
                continue
            ident = _native(ident)
            current = best.get(value)
            if current is None:
                best[value] = {"text": value, "id": ident, "similarity_score": score}
            elif ident is not None and (current["id"] is None or ident < current["id"]):
                current["id"] = ident
        ranked = sorted(best.values(), key=lambda r: (-r["similarity_score"], r["text"]))
        return ranked[:limit]

    async def popular_queries(
        self,
        view: PopularView,
        limit: int,
        similar_to: str | None = None,
        threshold: float = 0.0,
    ) -> list[dict[str, Any]]:
        entries = [
            e for e in self._log
            if e.searched_at >= view.since
            and len(e.query) >= view.min_query_length
            and e.result_count > 0
        ]
        if not entries:
            return []
        log = pd.DataFrame([
            {"query": e.query, "result_count": e.result_count, "searched_at": e.searched_at}
            for e in entries
        ])
        popular = (
            log.groupby("query")
            .agg(
                search_count=("result_count", "size"),
                last_searched=("searched_at", "max"),
                avg_results=("result_count", "mean"),
            )
            .reset_index()
        )
        popular = popular[popular["search_count"] >= view.min_count]
        popular = popular.sort_values(
            ["search_count", "last_searched"], ascending=[False, False], kind="mergesort",
        ).head(view.max_rows)
        if similar_to is not None:
            keep = [text.similarity(q, similar_to) > threshold for q in popular["query"]]
            popular = popular[pd.Series(keep, index=popular.index, dtype=bool)]
        return _records(popular.head(limit))

    # -- trends -------------------------------------------------------------

    def _recipes_since(self, since: datetime) -> pd.DataFrame:
        df = self._recipe_frame()
        return df[df["created_at"] >= since]

    async def trending_recipes(self, since: datetime, limit: int) -> list[dict[str, Any]]:
        window = self._recipes_since(since)
        window = window[window["save_count"] > 0]
        window = window.sort_values(
            ["save_count", "avg_rating", "recipe_id"],
            ascending=[False, False, True], kind="mergesort",
        ).head(limit)
        rows = _records(window, ["recipe_id", "title", "cuisine", "difficulty", "save_count", "avg_rating"])
        for row in rows:
            row["avg_rating"] = round(row["avg_rating"] or 0.0, 2)
        return rows

    async def trending_ingredients(
        self, since: datetime, limit: int, min_usage: int = 1,
    ) -> list[dict[str, Any]]:
        window = self._recipes_since(since)[["recipe_id", "user_id"]]
        links = self._tables["recipe_ingredients"]
        if window.empty or links.empty or self._tables["ingredients"].empty:
            return []
        usage = (
            links[["recipe_id", "ingredient_id"]]
            .merge(window, on="recipe_id", how="inner")
            .merge(self._tables["ingredients"], on="ingredient_id", how="inner")
        )
        if usage.empty:
            return []
        grouped = (
            usage.groupby(["ingredient_id", "name"], dropna=False)
            .agg(
                category=("category", "first"),
                recipe_count=("recipe_id", "nunique"),
                user_count=("user_id", "nunique"),
            )
            .reset_index()
        )
        grouped = grouped[grouped["recipe_count"] >= min_usage]
        grouped = grouped.sort_values(
            ["recipe_count", "user_count", "name"],
            ascending=[False, False, True], kind="mergesort",
        ).head(limit)
        return _records(grouped, ["ingredient_id", "name", "category", "recipe_count", "user_count"])

    async def trending_cuisines(self, since: datetime, limit: int) -> list[dict[str, Any]]:
        window = self._recipes_since(since)
        window = window[window["cuisine"].notna()]
        if window.empty:
            return []
        counts = window.groupby("cuisine")["recipe_id"].nunique().rename("recipe_count")
        ratings = self._tables["recipe_ratings"]
        if ratings.empty:
            means = pd.Series(dtype=float, name="avg_rating")
        else:
            ratings = ratings.merge(window[["recipe_id", "cuisine"]], on="recipe_id", how="inner")
            means = pd.to_numeric(ratings["rating"]).groupby(ratings["cuisine"]).mean().rename("avg_rating")
        grouped = pd.concat([counts, means], axis=1).reset_index()
        grouped["avg_rating"] = grouped["avg_rating"].fillna(0.0).astype(float).round(2)
        grouped = grouped.sort_values(
            ["recipe_count", "avg_rating", "cuisine"],
            ascending=[False, False, True], kind="mergesort",
        ).head(limit)
        return _records(grouped, ["cuisine", "recipe_count", "avg_rating"])

    async def count_recipes_since(self, since: datetime) -> int:
        return int(len(self._recipes_since(since)))

    async def distinct_cuisines(self) -> list[str]:
        cuisines = self._tables["recipes"]["cuisine"].dropna().astype(str).unique()
        return sorted(cuisines)

    # -- search log ---------------------------------------------------------

    async def record_search(self, entry: SearchLogEntry) -> None:
        self._log.append(entry)

    async def search_log(self, since: datetime | None = None) -> list[SearchLogEntry]:
        if since is None:
            return list(self._log)
        return [e for e in self._log if e.searched_at >= since]


# ---------------------------------------------------------------------------
# Row-wise predicate tests
# ---------------------------------------------------------------------------


def _row_test(p: Predicate) -> Callable[[Mapping[str, Any]], bool]:
    if isinstance(p, FieldMatchesAny):
        if p.threshold is None:
            return lambda row: any(text.contains(row.get(p.field), t) for t in p.terms)
        return lambda row: any(
            text.similarity(row.get(p.field), t) > p.threshold or text.contains(row.get(p.field), t)
            for t in p.terms
        )

    if isinstance(p, RelatedMatches):
        column = _RELATION_COLUMNS[p.relation.name]

        def item_matches(item: str, term: str) -> bool:
            if p.threshold is None:
                return text.contains(item, term)
            if p.widens and text.contains(item, term):
                return True
            return text.similarity(item, term) > p.threshold

        def related(row: Mapping[str, Any]) -> bool:
            items = row.get(column) or []
            if p.quantifier == "all":
                return all(any(item_matches(i, t) for i in items) for t in p.terms)
            hit = any(item_matches(i, t) for i in items for t in p.terms)
            return hit if p.quantifier == "any" else not hit

        return related

    if isinstance(p, RecipeTextMatches):
        def recipe_text(row: Mapping[str, Any]) -> bool:
            title, description = row.get("title"), row.get("description")
            if p.fuzzy and (
                text.similarity(title, p.query) > p.title_threshold
                or text.similarity(description, p.query) > p.description_threshold
            ):
                return True
            document = row.get("document") or recipe_document(row)
            return (
                text.text_match(document, p.query)
                or text.contains(title, p.query)
                or text.contains(description, p.query)
            )

        return recipe_text

    if isinstance(p, NameMatches):
        def name_matches(row: Mapping[str, Any]) -> bool:
            name = row.get(p.field)
            if p.threshold is not None and text.similarity(name, p.query) > p.threshold:
                return True
            if p.full_text and text.text_match(text.build_document({"A": name}), p.query):
                return True
            return text.contains(name, p.query)

        return name_matches

    raise TypeError(f"no row-wise evaluator for {type(p).__name__}")
