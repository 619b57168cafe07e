"""
Filter compilation.

A ``FilterSpec`` maps dimension names to constraints. The ``FilterCompiler``
checks it against an entity schema and turns every present dimension into one
or more independent predicates. Predicates are plain data: the in-memory store
evaluates them directly, and each one renders to a ``Clause`` whose values are
bound positionally by ``SqlBinder``. All predicates are combined with AND.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Union

from .config import DEFAULT_SEARCH_CONFIG, SearchConfig
from .errors import SearchValidationError
from .sql import Clause

# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Eq:
    value: Any


@dataclass(frozen=True)
class Range:
    low: Any = None
    high: Any = None


@dataclass(frozen=True)
class OneOf:
    values: tuple[Any, ...]


@dataclass(frozen=True)
class AllOf:
    values: tuple[Any, ...]


@dataclass(frozen=True)
class NoneOf:
    values: tuple[Any, ...]


Constraint = Union[Eq, Range, OneOf, AllOf, NoneOf]
FilterSpec = Mapping[str, Constraint]


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class DimensionKind(str, Enum):
    enum = "enum"
    text = "text"
    numeric_range = "numeric_range"
    date_range = "date_range"
    boolean = "boolean"
    identity = "identity"
    related = "related"
    exclusion = "exclusion"


_ACCEPTS: dict[DimensionKind, tuple[type, ...]] = {
    DimensionKind.enum: (Eq, OneOf),
    DimensionKind.text: (Eq, OneOf),
    DimensionKind.numeric_range: (Range,),
    DimensionKind.date_range: (Range,),
    DimensionKind.boolean: (Eq,),
    DimensionKind.identity: (Eq,),
    DimensionKind.related: (OneOf, AllOf),
    DimensionKind.exclusion: (NoneOf,),
}


@dataclass(frozen=True)
class Relation:
    """A child table joined to the parent record, e.g. recipe ingredients."""

    name: str
    source: str
    link: str
    item: str


@dataclass(frozen=True)
class Dimension:
    name: str
    kind: DimensionKind
    field: str
    sql: str = ""
    relation: Relation | None = None
    # Quantifier used for AllOf constraints in fuzzy mode
    fuzzy_quantifier: str = "all"


@dataclass(frozen=True)
class FilterSchema:
    entity: str
    dimensions: tuple[Dimension, ...]

    def get(self, name: str) -> Dimension | None:
        for dim in self.dimensions:
            if dim.name == name:
                return dim
        return None

    @property
    def names(self) -> list[str]:
        return [d.name for d in self.dimensions]


RECIPE_INGREDIENTS = Relation(
    name="ingredients",
    source='"recipeIngredients" ri JOIN "ingredients" i ON ri."ingredientId" = i."ingredientId"',
    link='ri."recipeId" = r."recipeId"',
    item='i."name"',
)

RECIPE_TAGS = Relation(
    name="tags",
    source='"recipeTags" rt',
    link='rt."recipeId" = r."recipeId"',
    item='rt."tag"',
)

RECIPE_RATING_SQL = (
    'COALESCE((SELECT AVG(rr."rating") FROM "recipeRatings" rr '
    'WHERE rr."recipeId" = r."recipeId"), 0)'
)
RECIPE_SAVES_SQL = (
    'COALESCE((SELECT COUNT(*) FROM "savedRecipes" sr '
    'WHERE sr."recipeId" = r."recipeId"), 0)'
)

RECIPE_SCHEMA = FilterSchema(
    entity="recipes",
    dimensions=(
        Dimension("cuisine", DimensionKind.text, "cuisine", 'r."cuisine"'),
        Dimension("difficulty", DimensionKind.enum, "difficulty", 'r."difficulty"'),
        Dimension("spice_level", DimensionKind.enum, "spice_level", 'r."spiceLevel"'),
        Dimension("ingredients", DimensionKind.related, "ingredients", relation=RECIPE_INGREDIENTS),
        Dimension(
            "exclude_ingredients", DimensionKind.exclusion, "ingredients",
            relation=RECIPE_INGREDIENTS,
        ),
        Dimension(
            "tags", DimensionKind.related, "tags",
            relation=RECIPE_TAGS, fuzzy_quantifier="any",
        ),
        Dimension("cooking_time", DimensionKind.numeric_range, "cooking_time", 'r."cookingTime"'),
        Dimension("prep_time", DimensionKind.numeric_range, "prep_time", 'r."prepTime"'),
        Dimension("servings", DimensionKind.numeric_range, "servings", 'r."servings"'),
        Dimension("rating", DimensionKind.numeric_range, "avg_rating", RECIPE_RATING_SQL),
        Dimension("created_at", DimensionKind.date_range, "created_at", 'r."createdAt"'),
        Dimension("is_generated", DimensionKind.boolean, "is_generated", 'r."isGenerated"'),
        Dimension("is_favorite", DimensionKind.boolean, "is_favorite", 'r."isFavorite"'),
        Dimension("user_id", DimensionKind.identity, "user_id", 'r."userId"'),
    ),
)

INGREDIENT_SCHEMA = FilterSchema(
    entity="ingredients",
    dimensions=(
        Dimension("category", DimensionKind.text, "category", 'i."category"'),
    ),
)

USER_SCHEMA = FilterSchema(entity="users", dimensions=())

SCHEMAS: dict[str, FilterSchema] = {
    s.entity: s for s in (RECIPE_SCHEMA, INGREDIENT_SCHEMA, USER_SCHEMA)
}


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def like_pattern(term: str) -> str:
    """Wrap *term* as ``%term%`` with LIKE metacharacters escaped."""
    escaped = str(term).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


@dataclass(frozen=True)
class FieldEquals:
    field: str
    sql: str
    value: Any

    @property
    def clause(self) -> Clause:
        return Clause(f"{self.sql} = {{0}}", (self.value,))


@dataclass(frozen=True)
class FieldIn:
    field: str
    sql: str
    values: tuple[Any, ...]

    @property
    def clause(self) -> Clause:
        return Clause(f"{self.sql} = ANY({{0}})", (list(self.values),))


@dataclass(frozen=True)
class FieldCompare:
    field: str
    sql: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in (">=", "<="):
            raise ValueError(f"unsupported comparison {self.op!r}")

    @property
    def clause(self) -> Clause:
        return Clause(f"{self.sql} {self.op} {{0}}", (self.value,))


@dataclass(frozen=True)
class FieldMatchesAny:
    """Field matches at least one term: substring, or similarity above threshold."""

    field: str
    sql: str
    terms: tuple[str, ...]
    threshold: float | None = None

    @property
    def clause(self) -> Clause:
        if self.threshold is None:
            return Clause(
                f"{self.sql} ILIKE ANY({{0}})",
                ([like_pattern(t) for t in self.terms],),
            )
        # Fuzzy keeps the substring test so it only ever widens the exact match
        return Clause(
            f"EXISTS (SELECT 1 FROM unnest({{0}}::text[], {{2}}::text[]) AS wanted(term, pattern) "
            f"WHERE similarity({self.sql}, wanted.term) > {{1}} OR {self.sql} ILIKE wanted.pattern)",
            (list(self.terms), self.threshold, [like_pattern(t) for t in self.terms]),
        )


@dataclass(frozen=True)
class RelatedMatches:
    """Quantified match of terms against a child relation.

    ``all``: every term matches some child row.
    ``any``: some child row matches some term.
    ``none``: no child row matches any term.
    """

    relation: Relation
    terms: tuple[str, ...]
    quantifier: str
    threshold: float | None = None

    def __post_init__(self) -> None:
        if self.quantifier not in ("all", "any", "none"):
            raise ValueError(f"unsupported quantifier {self.quantifier!r}")

    @property
    def field(self) -> str:
        return self.relation.name

    @property
    def widens(self) -> bool:
        """Fuzzy inclusion also accepts substring hits; exclusion stays similarity-only."""
        return self.threshold is not None and self.quantifier != "none"

    def _wanted(self) -> str:
        if self.widens:
            return "unnest({0}::text[], {2}::text[]) AS wanted(term, pattern)"
        return "unnest({0}::text[]) AS wanted(term)"

    def _item_test(self) -> str:
        item = self.relation.item
        if self.threshold is None:
            return f"{item} ILIKE wanted.term"
        if self.widens:
            return f"(similarity({item}, wanted.term) > {{1}} OR {item} ILIKE wanted.pattern)"
        return f"similarity({item}, wanted.term) > {{1}}"

    def _values(self) -> tuple[Any, ...]:
        patterns = [like_pattern(t) for t in self.terms]
        if self.threshold is None:
            return (patterns,)
        if self.widens:
            return (list(self.terms), self.threshold, patterns)
        return (list(self.terms), self.threshold)

    @property
    def clause(self) -> Clause:
        rel = self.relation
        if self.quantifier == "all":
            template = (
                f"NOT EXISTS (SELECT 1 FROM {self._wanted()} "
                f"WHERE NOT EXISTS (SELECT 1 FROM {rel.source} "
                f"WHERE {rel.link} AND {self._item_test()}))"
            )
        else:
            exists = (
                f"EXISTS (SELECT 1 FROM {rel.source}, {self._wanted()} "
                f"WHERE {rel.link} AND {self._item_test()})"
            )
            template = exists if self.quantifier == "any" else f"NOT {exists}"
        return Clause(template, self._values())


@dataclass(frozen=True)
class RecipeTextMatches:
    """Text gate for recipes.

    Exact mode: full-text match or substring match on title/description.
    Fuzzy mode adds the per-field trigram thresholds to the exact gate.
    """

    query: str
    fuzzy: bool = False
    title_threshold: float = 0.3
    description_threshold: float = 0.2

    @property
    def field(self) -> str:
        return "text"

    @property
    def clause(self) -> Clause:
        exact = (
            """r."searchVector" @@ plainto_tsquery('english', {0}) """
            """OR r."title" ILIKE {1} OR r."description" ILIKE {1}"""
        )
        if not self.fuzzy:
            return Clause(exact, (self.query, like_pattern(self.query)))
        return Clause(
            """similarity(r."title", {0}) > {2} """
            """OR similarity(r."description", {0}) > {3} OR """ + exact,
            (self.query, like_pattern(self.query), self.title_threshold, self.description_threshold),
        )


@dataclass(frozen=True)
class NameMatches:
    """Text gate on a single name column (ingredients, users)."""

    field: str
    sql: str
    query: str
    threshold: float | None = None
    full_text: bool = True

    @property
    def clause(self) -> Clause:
        parts: list[str] = []
        values: list[Any] = []
        if self.threshold is not None:
            parts.append(f"similarity({self.sql}, {{{len(values)}}}) > {{{len(values) + 1}}}")
            values.extend([self.query, self.threshold])
        if self.full_text:
            parts.append(
                f"to_tsvector('english', {self.sql}) @@ plainto_tsquery('english', {{{len(values)}}})"
            )
            values.append(self.query)
        parts.append(f"{self.sql} ILIKE {{{len(values)}}}")
        values.append(like_pattern(self.query))
        return Clause(" OR ".join(parts), tuple(values))


Predicate = Union[
    FieldEquals, FieldIn, FieldCompare, FieldMatchesAny,
    RelatedMatches, RecipeTextMatches, NameMatches,
]


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


def _present(constraint: Constraint) -> bool:
    if isinstance(constraint, Eq):
        return constraint.value is not None
    if isinstance(constraint, Range):
        return constraint.low is not None or constraint.high is not None
    return len(constraint.values) > 0


class FilterCompiler:
    """Validate a FilterSpec against a schema and compile it to predicates."""

    def __init__(self, schema: FilterSchema, config: SearchConfig = DEFAULT_SEARCH_CONFIG) -> None:
        self.schema = schema
        self.config = config
        self._fuzzy_thresholds: dict[str, float] = {
            "cuisine": config.cuisine_filter_similarity,
            "category": config.cuisine_filter_similarity,
            "ingredients": config.ingredient_filter_similarity,
            "exclude_ingredients": config.exclude_ingredient_similarity,
            "tags": config.tag_filter_similarity,
        }
        self._handlers = {
            DimensionKind.enum: self._compile_enum,
            DimensionKind.text: self._compile_text,
            DimensionKind.numeric_range: self._compile_range,
            DimensionKind.date_range: self._compile_range,
            DimensionKind.boolean: self._compile_eq,
            DimensionKind.identity: self._compile_eq,
            DimensionKind.related: self._compile_related,
            DimensionKind.exclusion: self._compile_exclusion,
        }
        missing = set(DimensionKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no compiler for dimension kinds {sorted(missing)}")

    def validate(self, spec: FilterSpec) -> None:
        for name, constraint in spec.items():
            dim = self.schema.get(name)
            if dim is None:
                raise SearchValidationError(
                    f"filters.{name}",
                    f"Unknown filter '{name}' for {self.schema.entity}; "
                    f"expected one of: {', '.join(self.schema.names) or 'none'}",
                )
            if not isinstance(constraint, _ACCEPTS[dim.kind]):
                raise SearchValidationError(
                    f"filters.{name}",
                    f"Filter '{name}' does not accept a {type(constraint).__name__} constraint",
                )
            if isinstance(constraint, Range):
                self._validate_range(name, constraint)

    @staticmethod
    def _validate_range(name: str, constraint: Range) -> None:
        low, high = constraint.low, constraint.high
        if low is None or high is None:
            return
        try:
            inverted = low > high
        except TypeError:
            raise SearchValidationError(
                f"filters.{name}", "Range bounds must have the same type",
            ) from None
        if inverted:
            raise SearchValidationError(
                f"filters.{name}", "Lower bound must not exceed upper bound",
            )

    def compile(self, spec: FilterSpec, fuzzy: bool = False) -> list[Predicate]:
        """Return predicates for every present dimension, in schema order."""
        self.validate(spec)
        predicates: list[Predicate] = []
        for dim in self.schema.dimensions:
            constraint = spec.get(dim.name)
            if constraint is None or not _present(constraint):
                continue
            predicates.extend(self._handlers[dim.kind](dim, constraint, fuzzy))
        return predicates

    # -- per-kind handlers --------------------------------------------------

    def _compile_enum(self, dim: Dimension, c: Constraint, fuzzy: bool) -> list[Predicate]:
        if isinstance(c, Eq):
            return [FieldEquals(dim.field, dim.sql, c.value)]
        return [FieldIn(dim.field, dim.sql, tuple(c.values))]

    def _compile_text(self, dim: Dimension, c: Constraint, fuzzy: bool) -> list[Predicate]:
        terms = (c.value,) if isinstance(c, Eq) else tuple(c.values)
        threshold = self._fuzzy_thresholds.get(dim.name) if fuzzy else None
        return [FieldMatchesAny(dim.field, dim.sql, tuple(str(t) for t in terms), threshold)]

    def _compile_range(self, dim: Dimension, c: Constraint, fuzzy: bool) -> list[Predicate]:
        out: list[Predicate] = []
        if c.low is not None:
            out.append(FieldCompare(dim.field, dim.sql, ">=", c.low))
        if c.high is not None:
            out.append(FieldCompare(dim.field, dim.sql, "<=", c.high))
        return out

    def _compile_eq(self, dim: Dimension, c: Constraint, fuzzy: bool) -> list[Predicate]:
        return [FieldEquals(dim.field, dim.sql, c.value)]

    def _compile_related(self, dim: Dimension, c: Constraint, fuzzy: bool) -> list[Predicate]:
        quantifier = "all" if isinstance(c, AllOf) else "any"
        if fuzzy and quantifier == "all":
            quantifier = dim.fuzzy_quantifier
        threshold = self._fuzzy_thresholds.get(dim.name) if fuzzy else None
        terms = tuple(str(t) for t in c.values)
        return [RelatedMatches(dim.relation, terms, quantifier, threshold)]

    def _compile_exclusion(self, dim: Dimension, c: Constraint, fuzzy: bool) -> list[Predicate]:
        threshold = self._fuzzy_thresholds.get(dim.name) if fuzzy else None
        terms = tuple(str(t) for t in c.values)
        return [RelatedMatches(dim.relation, terms, "none", threshold)]
