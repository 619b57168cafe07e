"""
PostgreSQL catalogue store.

Query text is produced by the pure ``build_*`` functions below, which return
``(sql, args)`` pairs with every user value bound as a ``$n`` parameter. The
store owns an asyncpg pool and maps driver failures onto ``StorageError``.
Relies on the ``pg_trgm`` extension and the recipes ``searchVector`` column
(title A, description B, instructions C, cuisine D).
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any

import asyncpg

from ..search.errors import StorageError, StorageTimeoutError
from ..search.filters import RECIPE_RATING_SQL, RECIPE_SAVES_SQL, like_pattern
from ..search.models import SearchLogEntry
from ..search.ranking import render_order_by
from ..search.sql import SqlBinder
from .base import SUGGESTION_FIELDS, CatalogueStore, PopularView, SearchPlan
from .config import DEFAULT_STORAGE_CONFIG, StorageConfig

logger = logging.getLogger(__name__)

Query = tuple[str, list[Any]]

_RECIPE_SELECT = f"""
SELECT r."recipeId" AS recipe_id, r."title" AS title, r."description" AS description,
       r."cuisine" AS cuisine, r."difficulty" AS difficulty, r."spiceLevel" AS spice_level,
       r."cookingTime" AS cooking_time, r."prepTime" AS prep_time, r."servings" AS servings,
       r."isGenerated" AS is_generated, r."userId" AS user_id, r."createdAt" AS created_at,
       ROUND(({RECIPE_RATING_SQL})::numeric, 2)::float8 AS avg_rating,
       (SELECT COUNT(*) FROM "recipeRatings" rr WHERE rr."recipeId" = r."recipeId") AS rating_count,
       {RECIPE_SAVES_SQL} AS save_count,
       COALESCE((SELECT json_agg(rt."tag" ORDER BY rt."tag") FROM "recipeTags" rt
                 WHERE rt."recipeId" = r."recipeId"), '[]'::json) AS tags,
       COALESCE((SELECT json_agg(json_build_object(
                     'ingredient_id', i."ingredientId", 'name', i."name",
                     'quantity', ri."quantity", 'category', i."category")
                     ORDER BY i."name")
                 FROM "recipeIngredients" ri JOIN "ingredients" i ON ri."ingredientId" = i."ingredientId"
                 WHERE ri."recipeId" = r."recipeId"), '[]'::json) AS ingredients,
"""

_INGREDIENT_SELECT = """
SELECT i."ingredientId" AS ingredient_id, i."name" AS name, i."category" AS category,
       (SELECT COUNT(DISTINCT ri."recipeId") FROM "recipeIngredients" ri
        WHERE ri."ingredientId" = i."ingredientId") AS usage_count,
"""

_USER_SELECT = """
SELECT u."userId" AS user_id, u."name" AS name,
       (SELECT COUNT(*) FROM "recipes" r WHERE r."userId" = u."userId") AS recipe_count,
"""

_ENTITY_SOURCES = {
    "recipes": (_RECIPE_SELECT, '"recipes" r'),
    "ingredients": (_INGREDIENT_SELECT, '"ingredients" i'),
    "users": (_USER_SELECT, '"users" u'),
}

# field -> (source table, text column, id column)
_SUGGESTION_SOURCES = {
    "recipes": ('"recipes" r', 'r."title"', 'r."recipeId"'),
    "ingredients": ('"ingredients" i', 'i."name"', 'i."ingredientId"'),
    "cuisines": ('"recipes" r', 'r."cuisine"', "NULL::int"),
    "tags": ('"recipeTags" rt', 'rt."tag"', "NULL::int"),
}


# ── Query builders ───────────────────────────────────────────────────────


def build_search_query(plan: SearchPlan) -> Query:
    select, source = _ENTITY_SOURCES[plan.entity]
    binder = SqlBinder()
    score = binder.bind(plan.relevance.score_clause)
    where = binder.where(p.clause for p in plan.all_predicates)
    limit = binder.param(plan.limit)
    offset = binder.param(plan.offset)
    sql = (
        f"SELECT * FROM ({select}       {score} AS relevance_score\n"
        f"FROM {source}\n{where}) AS matched\n"
        f"{_outer_order_by(plan)}\nLIMIT {limit} OFFSET {offset}"
    )
    return sql, binder.args


def _outer_order_by(plan: SearchPlan) -> str:
    return render_order_by(plan.order) if plan.order else ""


def build_count_query(plan: SearchPlan) -> Query:
    _, source = _ENTITY_SOURCES[plan.entity]
    binder = SqlBinder()
    where = binder.where(p.clause for p in plan.all_predicates)
    return f"SELECT COUNT(*) AS total FROM {source} {where}".strip(), binder.args


def build_suggestion_query(field: str, query: str, threshold: float, limit: int) -> Query:
    if field not in _SUGGESTION_SOURCES:
        raise ValueError(f"unknown suggestion field {field!r}")
    source, column, ident = _SUGGESTION_SOURCES[field]
    binder = SqlBinder()
    q = binder.param(query)
    t = binder.param(threshold)
    pattern = binder.param(like_pattern(query))
    n = binder.param(limit)
    sql = (
        f"SELECT {column} AS text, MIN({ident}) AS id, "
        f"MAX(similarity({column}, {q}))::float8 AS similarity_score\n"
        f"FROM {source}\n"
        f"WHERE {column} IS NOT NULL AND (similarity({column}, {q}) > {t} OR {column} ILIKE {pattern})\n"
        f"GROUP BY {column}\n"
        f"ORDER BY similarity_score DESC, text ASC\n"
        f"LIMIT {n}"
    )
    return sql, binder.args


def build_popular_query(
    view: PopularView, limit: int, similar_to: str | None = None, threshold: float = 0.0,
) -> Query:
    binder = SqlBinder()
    sql = (
        'WITH popular AS (\n'
        '  SELECT "query", COUNT(*) AS search_count, MAX("timestamp") AS last_searched,\n'
        '         AVG("resultCount")::float8 AS avg_results\n'
        '  FROM "searchAnalytics"\n'
        f'  WHERE "timestamp" >= {binder.param(view.since)} '
        f'AND LENGTH("query") >= {binder.param(view.min_query_length)} '
        'AND "resultCount" > 0\n'
        f'  GROUP BY "query" HAVING COUNT(*) >= {binder.param(view.min_count)}\n'
        '  ORDER BY search_count DESC, last_searched DESC\n'
        f'  LIMIT {binder.param(view.max_rows)}\n'
        ')\n'
        'SELECT "query" AS query, search_count, last_searched, avg_results FROM popular\n'
    )
    if similar_to is not None:
        sql += (
            f'WHERE similarity("query", {binder.param(similar_to)}) > {binder.param(threshold)}\n'
        )
    sql += f"ORDER BY search_count DESC, last_searched DESC\nLIMIT {binder.param(limit)}"
    return sql, binder.args


def build_trending_recipes_query(since: datetime, limit: int) -> Query:
    sql = """
SELECT r."recipeId" AS recipe_id, r."title" AS title, r."cuisine" AS cuisine,
       r."difficulty" AS difficulty, COUNT(DISTINCT sr."userId") AS save_count,
       ROUND(COALESCE((SELECT AVG(rr."rating") FROM "recipeRatings" rr
                       WHERE rr."recipeId" = r."recipeId"), 0)::numeric, 2)::float8 AS avg_rating
FROM "recipes" r
JOIN "savedRecipes" sr ON sr."recipeId" = r."recipeId"
WHERE r."createdAt" >= $1
GROUP BY r."recipeId", r."title", r."cuisine", r."difficulty"
ORDER BY save_count DESC, avg_rating DESC, r."recipeId" ASC
LIMIT $2"""
    return sql.strip(), [since, limit]


def build_trending_ingredients_query(since: datetime, limit: int, min_usage: int) -> Query:
    sql = """
SELECT i."ingredientId" AS ingredient_id, i."name" AS name, i."category" AS category,
       COUNT(DISTINCT ri."recipeId") AS recipe_count, COUNT(DISTINCT r."userId") AS user_count
FROM "ingredients" i
JOIN "recipeIngredients" ri ON ri."ingredientId" = i."ingredientId"
JOIN "recipes" r ON r."recipeId" = ri."recipeId"
WHERE r."createdAt" >= $1
GROUP BY i."ingredientId", i."name", i."category"
HAVING COUNT(DISTINCT ri."recipeId") >= $2
ORDER BY recipe_count DESC, user_count DESC, i."name" ASC
LIMIT $3"""
    return sql.strip(), [since, min_usage, limit]


def build_trending_cuisines_query(since: datetime, limit: int) -> Query:
    sql = """
SELECT r."cuisine" AS cuisine, COUNT(DISTINCT r."recipeId") AS recipe_count,
       ROUND(COALESCE(AVG(rr."rating"), 0)::numeric, 2)::float8 AS avg_rating
FROM "recipes" r
LEFT JOIN "recipeRatings" rr ON rr."recipeId" = r."recipeId"
WHERE r."createdAt" >= $1 AND r."cuisine" IS NOT NULL
GROUP BY r."cuisine"
ORDER BY recipe_count DESC, avg_rating DESC, r."cuisine" ASC
LIMIT $2"""
    return sql.strip(), [since, limit]


def build_record_search_query(entry: SearchLogEntry) -> Query:
    sql = (
        'INSERT INTO "searchAnalytics" '
        '("query", "userId", "resultCount", "searchType", "filters", "timestamp") '
        "VALUES ($1, $2, $3, $4, $5::jsonb, $6)"
    )
    filters = None if entry.filters is None else json.dumps(entry.filters, default=str)
    return sql, [
        entry.query, entry.user_id, entry.result_count, entry.search_type, filters, entry.searched_at,
    ]


# ── Store ────────────────────────────────────────────────────────────────


def _decode_json(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


class PostgresCatalogueStore(CatalogueStore):
    """Catalogue store on an asyncpg connection pool."""

    def __init__(self, config: StorageConfig = DEFAULT_STORAGE_CONFIG) -> None:
        self.config = config
        self.pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        self.pool = await asyncpg.create_pool(
            self.config.database_url,
            min_size=self.config.min_pool_size,
            max_size=self.config.max_pool_size,
            command_timeout=self.config.command_timeout,
        )
        logger.info("Catalogue connection pool created (max_size=%d)", self.config.max_pool_size)

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
            logger.info("Catalogue connection pool closed")

    async def _call(self, method: str, sql: str, args: list[Any]) -> Any:
        if self.pool is None:
            raise StorageError("Catalogue store is not connected")
        try:
            async with self.pool.acquire() as conn:
                return await getattr(conn, method)(sql, *args, timeout=self.config.command_timeout)
        except (asyncio.TimeoutError, asyncpg.exceptions.QueryCanceledError) as exc:
            logger.warning("Catalogue query timed out after %.1fs", self.config.command_timeout)
            raise StorageTimeoutError("Search query timed out") from exc
        except (asyncpg.PostgresError, OSError) as exc:
            logger.error("Catalogue query failed: %s", exc)
            raise StorageError("Catalogue query failed") from exc

    async def _fetch(self, query: Query) -> list[dict[str, Any]]:
        sql, args = query
        rows = await self._call("fetch", sql, args)
        return [dict(row) for row in rows]

    async def _fetchval(self, query: Query) -> Any:
        sql, args = query
        return await self._call("fetchval", sql, args)

    # -- search -------------------------------------------------------------

    async def search_recipes(self, plan: SearchPlan) -> list[dict[str, Any]]:
        rows = await self._fetch(build_search_query(plan))
        for row in rows:
            row["tags"] = _decode_json(row["tags"])
            row["ingredients"] = _decode_json(row["ingredients"])
        return rows

    async def count_recipes(self, plan: SearchPlan) -> int:
        return int(await self._fetchval(build_count_query(plan)) or 0)

    async def search_ingredients(self, plan: SearchPlan) -> list[dict[str, Any]]:
        return await self._fetch(build_search_query(plan))

    async def search_users(self, plan: SearchPlan) -> list[dict[str, Any]]:
        return await self._fetch(build_search_query(plan))

    # -- suggestions --------------------------------------------------------

    async def suggest(
        self, field: str, query: str, threshold: float, limit: int,
    ) -> list[dict[str, Any]]:
        if field not in SUGGESTION_FIELDS:
            raise ValueError(f"unknown suggestion field {field!r}")
        return await self._fetch(build_suggestion_query(field, query, threshold, limit))

    async def popular_queries(
        self,
        view: PopularView,
        limit: int,
        similar_to: str | None = None,
        threshold: float = 0.0,
    ) -> list[dict[str, Any]]:
        return await self._fetch(build_popular_query(view, limit, similar_to, threshold))

    # -- trends -------------------------------------------------------------

    async def trending_recipes(self, since: datetime, limit: int) -> list[dict[str, Any]]:
        return await self._fetch(build_trending_recipes_query(since, limit))

    async def trending_ingredients(
        self, since: datetime, limit: int, min_usage: int = 1,
    ) -> list[dict[str, Any]]:
        return await self._fetch(build_trending_ingredients_query(since, limit, min_usage))

    async def trending_cuisines(self, since: datetime, limit: int) -> list[dict[str, Any]]:
        return await self._fetch(build_trending_cuisines_query(since, limit))

    async def count_recipes_since(self, since: datetime) -> int:
        sql = 'SELECT COUNT(*) FROM "recipes" r WHERE r."createdAt" >= $1'
        return int(await self._fetchval((sql, [since])) or 0)

    async def distinct_cuisines(self) -> list[str]:
        sql = 'SELECT DISTINCT r."cuisine" AS cuisine FROM "recipes" r WHERE r."cuisine" IS NOT NULL ORDER BY 1'
        return [row["cuisine"] for row in await self._fetch((sql, []))]

    # -- search log ---------------------------------------------------------

    async def record_search(self, entry: SearchLogEntry) -> None:
        sql, args = build_record_search_query(entry)
        await self._call("execute", sql, args)

    async def search_log(self, since: datetime | None = None) -> list[SearchLogEntry]:
        sql = (
            'SELECT "query" AS query, "userId" AS user_id, "resultCount" AS result_count, '
            '"searchType" AS search_type, "filters" AS filters, "timestamp" AS searched_at '
            'FROM "searchAnalytics"'
        )
        args: list[Any] = []
        if since is not None:
            sql += ' WHERE "timestamp" >= $1'
            args.append(since)
        sql += ' ORDER BY "timestamp"'
        rows = await self._fetch((sql, args))
        for row in rows:
            row["filters"] = _decode_json(row["filters"])
        return [SearchLogEntry(**row) for row in rows]
