from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from backend.search.errors import SearchValidationError
from backend.search.trending import TrendAggregator, usage_percentage
from backend.storage.memory import MemoryCatalogueStore


def _run(coro):
    return asyncio.run(coro)


def test_usage_percentage():
    assert usage_percentage(4, 6) == 66.67
    assert usage_percentage(3, 3) == 100.0
    # An empty window never divides by zero
    assert usage_percentage(0, 0) == 0.0


def test_window_start():
    now = datetime(2024, 3, 10, 12, tzinfo=timezone.utc)
    assert TrendAggregator.window_start(7, now) == datetime(2024, 3, 3, 12, tzinfo=timezone.utc)


def test_ingredient_outside_window_is_not_trending(store):
    trends = _run(TrendAggregator(store=store).trending(days=7))
    names = [i.name for i in trends.trending.ingredients]
    assert "saffron" not in names
    assert names[:2] == ["tomato", "garlic"]
    tomato = trends.trending.ingredients[0]
    assert (tomato.recipe_count, tomato.user_count, tomato.usage_percentage) == (4, 3, 66.67)


def test_wider_window_picks_up_older_recipes(store):
    trends = _run(TrendAggregator(store=store).trending(days=30, limit=20))
    assert "saffron" in [i.name for i in trends.trending.ingredients]


def test_trending_recipes_need_saves(store):
    trends = _run(TrendAggregator(store=store).trending(days=7))
    assert trends.period == "7 days"
    assert [r.recipe_id for r in trends.trending.recipes] == [5, 1, 2, 3]
    assert trends.trending.recipes[1].avg_rating == 4.5


def test_trending_cuisines(store):
    cuisines = _run(TrendAggregator(store=store).trending(days=7)).trending.cuisines
    assert [(c.cuisine, c.recipe_count, c.avg_rating) for c in cuisines] == [
        ("Italian", 3, 4.0),
        ("Indian", 1, 5.0),
        ("Mexican", 1, 4.5),
        ("Chinese", 1, 2.0),
    ]


def test_ingredient_trends_require_two_recipes(store):
    response = _run(TrendAggregator(store=store).ingredient_trends(days=30))
    names = [i.name for i in response.trending]
    assert "saffron" not in names
    assert "rice" in names
    assert all(i.recipe_count >= 2 for i in response.trending)
    assert response.total_trending == len(response.trending)
    assert response.period == "30 days"


def test_cuisine_trends(store):
    response = _run(TrendAggregator(store=store).cuisine_trends(days=30, limit=2))
    assert [c.cuisine for c in response.trending] == ["Italian", "Indian"]
    assert response.trending[0].recipe_count == 4
    assert response.total_trending == 2


def test_limit_caps_every_bucket(store):
    trends = _run(TrendAggregator(store=store).trending(days=7, limit=1))
    assert len(trends.trending.recipes) == 1
    assert len(trends.trending.ingredients) == 1
    assert len(trends.trending.cuisines) == 1


@pytest.mark.parametrize("days,limit,field", [(0, 10, "days"), (31, 10, "days"), (7, 21, "limit")])
def test_trending_window_bounds(store, days, limit, field):
    with pytest.raises(SearchValidationError) as info:
        _run(TrendAggregator(store=store).trending(days=days, limit=limit))
    assert info.value.field == field


def test_ingredient_trend_window_bounds(store):
    with pytest.raises(SearchValidationError):
        _run(TrendAggregator(store=store).ingredient_trends(days=366))
    with pytest.raises(SearchValidationError):
        _run(TrendAggregator(store=store).cuisine_trends(limit=51))


def test_empty_catalogue_has_no_trends():
    trends = _run(TrendAggregator(store=MemoryCatalogueStore()).trending())
    assert trends.trending.model_dump() == {"recipes": [], "ingredients": [], "cuisines": []}
