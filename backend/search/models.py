from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .filters import AllOf, Constraint, Eq, NoneOf, OneOf, Range

Difficulty = Literal["easy", "medium", "hard"]
SpiceLevel = Literal["mild", "medium", "hot"]
SearchType = Literal["all", "recipes", "ingredients", "users"]
SuggestionType = Literal["all", "recipes", "ingredients", "cuisines", "tags"]
SortBy = Literal["relevance", "rating", "cookingTime", "prepTime", "recent", "popular"]
SortOrder = Literal["asc", "desc"]

DIFFICULTIES: tuple[str, ...] = ("easy", "medium", "hard")
SPICE_LEVELS: tuple[str, ...] = ("mild", "medium", "hot")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Requests ─────────────────────────────────────────────────────────────


class _Bounds(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_order(self):
        low = getattr(self, "min", None)
        high = getattr(self, "max", None)
        if low is not None and high is not None and low > high:
            raise ValueError("min must not exceed max")
        return self

    def to_range(self) -> Range:
        return Range(getattr(self, "min", None), getattr(self, "max", None))


class IntRange(_Bounds):
    min: int | None = Field(default=None, ge=0)
    max: int | None = Field(default=None, ge=0)


class RatingRange(_Bounds):
    min: float | None = Field(default=None, ge=0.0, le=5.0)
    max: float | None = Field(default=None, ge=0.0, le=5.0)


class DateRange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_order(self):
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class RecipeFilters(BaseModel):
    """Facets for recipe search. Every field is an independent AND-ed dimension."""

    model_config = ConfigDict(extra="forbid")

    cuisine: list[str] = Field(default_factory=list, description="Match any (partial) cuisine")
    difficulty: list[Difficulty] = Field(default_factory=list)
    spice_level: list[SpiceLevel] = Field(default_factory=list)
    ingredients: list[str] = Field(default_factory=list, description="Recipe must use all of these")
    exclude_ingredients: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    cooking_time: IntRange | None = None
    prep_time: IntRange | None = None
    servings: IntRange | None = None
    rating: RatingRange | None = None
    created_at: DateRange | None = None
    is_generated: bool | None = None
    is_favorite: bool | None = None
    user_id: int | None = Field(default=None, ge=1)

    def to_filter_spec(self) -> dict[str, Constraint]:
        spec: dict[str, Constraint] = {}
        if self.cuisine:
            spec["cuisine"] = OneOf(tuple(self.cuisine))
        if self.difficulty:
            spec["difficulty"] = OneOf(tuple(self.difficulty))
        if self.spice_level:
            spec["spice_level"] = OneOf(tuple(self.spice_level))
        if self.ingredients:
            spec["ingredients"] = AllOf(tuple(self.ingredients))
        if self.exclude_ingredients:
            spec["exclude_ingredients"] = NoneOf(tuple(self.exclude_ingredients))
        if self.tags:
            spec["tags"] = AllOf(tuple(self.tags))
        for name in ("cooking_time", "prep_time", "servings", "rating"):
            bounds = getattr(self, name)
            if bounds is not None:
                spec[name] = bounds.to_range()
        if self.created_at is not None:
            spec["created_at"] = Range(self.created_at.start, self.created_at.end)
        for name in ("is_generated", "is_favorite", "user_id"):
            value = getattr(self, name)
            if value is not None:
                spec[name] = Eq(value)
        return spec

    def is_empty(self) -> bool:
        return not self.to_filter_spec()


class IngredientFilters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: list[str] = Field(default_factory=list, description="Match any (partial) category")

    def to_filter_spec(self) -> dict[str, Constraint]:
        return {"category": OneOf(tuple(self.category))} if self.category else {}


class FederatedSearchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str = Field(..., min_length=1, max_length=200)
    type: SearchType = "all"
    fuzzy: bool = False
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)
    filters: RecipeFilters | None = None
    ingredient_filters: IngredientFilters | None = None


class AdvancedSearchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str | None = Field(default=None, max_length=200)
    fuzzy: bool = False
    filters: RecipeFilters = Field(default_factory=RecipeFilters)
    sort_by: SortBy = "relevance"
    sort_order: SortOrder | None = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


# ── Results ──────────────────────────────────────────────────────────────


class RecipeIngredientOut(BaseModel):
    ingredient_id: int
    name: str
    quantity: str | None = None
    category: str | None = None


class RecipeResult(BaseModel):
    recipe_id: int
    title: str
    description: str | None = None
    cuisine: str | None = None
    difficulty: str | None = None
    spice_level: str | None = None
    cooking_time: int | None = None
    prep_time: int | None = None
    servings: int | None = None
    is_generated: bool = False
    user_id: int | None = None
    created_at: datetime
    avg_rating: float = 0.0
    rating_count: int = 0
    save_count: int = 0
    tags: list[str] = Field(default_factory=list)
    ingredients: list[RecipeIngredientOut] = Field(default_factory=list)
    relevance_score: float
    result_type: Literal["recipe"] = "recipe"


class IngredientResult(BaseModel):
    ingredient_id: int
    name: str
    category: str | None = None
    usage_count: int = 0
    relevance_score: float
    result_type: Literal["ingredient"] = "ingredient"


class UserResult(BaseModel):
    user_id: int
    name: str
    recipe_count: int = 0
    relevance_score: float
    result_type: Literal["user"] = "user"


class PageRequestOut(BaseModel):
    limit: int
    offset: int


class PaginationOut(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class FederatedResults(BaseModel):
    recipes: list[RecipeResult] | None = None
    ingredients: list[IngredientResult] | None = None
    users: list[UserResult] | None = None


class FederatedSearchResponse(BaseModel):
    query: str
    type: SearchType
    fuzzy: bool
    pagination: PageRequestOut
    results: FederatedResults


class SearchMetadata(BaseModel):
    has_text_search: bool
    fuzzy_search: bool
    has_filters: bool
    sort_by: SortBy
    sort_order: SortOrder | None
    relevance_scoring: bool


class AdvancedSearchResponse(BaseModel):
    recipes: list[RecipeResult]
    pagination: PaginationOut
    search_metadata: SearchMetadata


# ── Suggestions ──────────────────────────────────────────────────────────


class Suggestion(BaseModel):
    text: str
    type: Literal["recipe", "ingredient", "cuisine", "tag"]
    id: int | None = None
    similarity_score: float


class PopularQuery(BaseModel):
    query: str
    search_count: int
    last_searched: datetime | None = None
    avg_results: float | None = None


class SuggestionBuckets(BaseModel):
    recipes: list[Suggestion] | None = None
    ingredients: list[Suggestion] | None = None
    cuisines: list[Suggestion] | None = None
    tags: list[Suggestion] | None = None
    popular: list[PopularQuery] | None = None


class SuggestionResponse(BaseModel):
    query: str
    suggestions: SuggestionBuckets


# ── Trends ───────────────────────────────────────────────────────────────


class TrendingRecipe(BaseModel):
    recipe_id: int
    title: str
    cuisine: str | None = None
    difficulty: str | None = None
    save_count: int
    avg_rating: float


class TrendingIngredient(BaseModel):
    ingredient_id: int
    name: str
    category: str | None = None
    recipe_count: int
    user_count: int = 0
    usage_percentage: float = 0.0


class TrendingCuisine(BaseModel):
    cuisine: str
    recipe_count: int
    avg_rating: float


class TrendingBuckets(BaseModel):
    recipes: list[TrendingRecipe]
    ingredients: list[TrendingIngredient]
    cuisines: list[TrendingCuisine]


class TrendingResponse(BaseModel):
    period: str
    trending: TrendingBuckets


class IngredientTrendsResponse(BaseModel):
    period: str
    trending: list[TrendingIngredient]
    total_trending: int


class CuisineTrendsResponse(BaseModel):
    period: str
    trending: list[TrendingCuisine]
    total_trending: int


# ── Query log ────────────────────────────────────────────────────────────


class SearchLogEntry(BaseModel):
    query: str
    user_id: int | None = None
    result_count: int = Field(default=0, ge=0)
    search_type: str = "all"
    filters: dict[str, Any] | None = None
    searched_at: datetime = Field(default_factory=_utcnow)
