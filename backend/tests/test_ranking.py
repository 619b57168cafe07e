from __future__ import annotations

import pytest

from backend.search.errors import SearchValidationError
from backend.search.ranking import RankingEngine, SortKey, recipe_document, render_order_by

engine = RankingEngine()

TACOS = {
    "title": "Spicy Chicken Tacos",
    "description": "Crispy tacos with chili chicken",
    "instructions": "Grill the chicken.",
    "cuisine": "Mexican",
}


def _fields(keys):
    return [(k.field, k.descending) for k in keys]


def test_no_query_is_neutral():
    relevance = engine.recipe_relevance("   ")
    assert not relevance.has_query
    assert relevance.predicate is None
    assert relevance.score(TACOS) == 1.0
    assert relevance.score_clause.values == (1.0,)


def test_exact_score_is_text_rank():
    relevance = engine.recipe_relevance("tacos")
    assert relevance.score(TACOS) == pytest.approx(1.0)
    assert relevance.score({"title": "Burrito", "description": "tacos inside"}) == pytest.approx(0.4)


def test_fuzzy_score_takes_best_signal():
    relevance = engine.recipe_relevance("chiken tacos", fuzzy=True)
    assert relevance.score(TACOS) == pytest.approx(0.5)


def test_scores_stay_in_unit_interval():
    for query in ("tacos", "chicken tacos", "spicy chicken tacos crispy"):
        for fuzzy in (False, True):
            score = engine.recipe_relevance(query, fuzzy).score(TACOS)
            assert 0.0 <= score <= 1.0


def test_recipe_document_weights():
    doc = recipe_document(TACOS)
    assert doc["taco"] == "A"
    assert doc["grill"] == "C"
    assert doc["mexican"] == "D"


def test_ingredient_and_user_relevance():
    assert engine.ingredient_relevance("basil").score({"name": "basil"}) == pytest.approx(1.0)
    assert engine.ingredient_relevance("basl", fuzzy=True).score({"name": "basil"}) > 0.0
    # Exact user matches carry no ranking signal
    assert engine.user_relevance("maria").score({"name": "Maria Rossi"}) == 1.0
    assert engine.user_relevance("maria", fuzzy=True).score({"name": "Maria Rossi"}) < 1.0


def test_relevance_without_query_falls_back_to_recent():
    assert _fields(engine.recipe_order("relevance", has_query=False)) == [
        ("created_at", True), ("recipe_id", False),
    ]


def test_relevance_order_with_query():
    assert _fields(engine.recipe_order("relevance", has_query=True)) == [
        ("relevance_score", True), ("created_at", True), ("recipe_id", False),
    ]


def test_rating_order_breaks_ties_by_relevance_then_recency():
    assert _fields(engine.recipe_order("rating", has_query=True)) == [
        ("avg_rating", True), ("relevance_score", True), ("created_at", True), ("recipe_id", False),
    ]
    assert _fields(engine.recipe_order("popular")) == [
        ("save_count", True), ("created_at", True), ("recipe_id", False),
    ]


def test_time_sorts_default_ascending_with_sentinel():
    [primary, *_] = engine.recipe_order("cookingTime")
    assert (primary.field, primary.descending, primary.missing) == ("cooking_time", False, 999999)
    assert primary.render() == "COALESCE(cooking_time, 999999) ASC"


def test_explicit_direction_overrides_default():
    [primary, *_] = engine.recipe_order("prepTime", "desc")
    assert primary.descending
    [primary, *_] = engine.recipe_order("rating", "asc")
    assert not primary.descending


def test_unknown_sort_is_rejected():
    with pytest.raises(SearchValidationError):
        engine.recipe_order("spiciness")
    with pytest.raises(SearchValidationError):
        engine.recipe_order("rating", "sideways")


def test_render_order_by():
    keys = [SortKey("avg_rating", True), SortKey("recipe_id", False)]
    assert render_order_by(keys) == "ORDER BY avg_rating DESC, recipe_id ASC"


def test_secondary_orders_end_in_identifier():
    assert engine.ingredient_order()[-1].field == "ingredient_id"
    assert engine.user_order()[-1].field == "user_id"
    assert engine.federated_recipe_order()[-1].field == "recipe_id"
