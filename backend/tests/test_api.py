from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from backend.app import app
from backend.auth.dependencies import current_user_id
from backend.search.errors import StorageError, StorageTimeoutError

client = TestClient(app)

pytestmark = pytest.mark.usefixtures("installed_store")


# ── Public endpoints ─────────────────────────────────────────────────────


def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_metadata_lists_options_and_cuisines():
    body = client.get("/metadata").json()
    assert body["difficulties"] == ["easy", "medium", "hard"]
    assert "cookingTime" in body["sort_options"]
    assert body["cuisines"] == ["Chinese", "Indian", "Italian", "Mexican"]


# ── Federated search ─────────────────────────────────────────────────────


def test_search_all_types():
    resp = client.post("/search", json={"query": "chicken"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["query"] == "chicken"
    assert body["pagination"] == {"limit": 20, "offset": 0}
    assert {r["recipe_id"] for r in body["results"]["recipes"]} == {1, 5}
    assert body["results"]["ingredients"][0]["result_type"] == "ingredient"
    assert body["results"]["users"] == []


def test_search_single_type_omits_other_buckets():
    body = client.post("/search", json={"query": "priya", "type": "users"}).json()
    assert list(body["results"]) == ["users"]
    assert body["results"]["users"][0]["recipe_count"] == 2


def test_search_blank_query_is_400():
    resp = client.post("/search", json={"query": "   "})
    assert resp.status_code == 400
    assert resp.json()["detail"][0]["loc"] == ["body", "query"]


def test_search_unknown_field_is_422():
    resp = client.post("/search", json={"query": "pasta", "colour": "red"})
    assert resp.status_code == 422


def test_search_unknown_filter_is_422():
    resp = client.post("/search", json={"query": "pasta", "filters": {"colour": ["red"]}})
    assert resp.status_code == 422


# ── Advanced recipe search ───────────────────────────────────────────────


def test_advanced_search():
    resp = client.post("/search/recipes/advanced", json={
        "query": "pasta",
        "filters": {"cuisine": ["Italian"], "exclude_ingredients": ["shrimp"]},
    })
    assert resp.status_code == 200
    body = resp.json()
    assert [r["recipe_id"] for r in body["recipes"]] == [4]
    assert body["pagination"] == {"total": 1, "limit": 20, "offset": 0, "has_more": False}
    assert body["search_metadata"]["has_filters"] is True


def test_advanced_search_filters_only():
    body = client.post("/search/recipes/advanced", json={
        "filters": {"difficulty": ["easy"]}, "sort_by": "cookingTime",
    }).json()
    assert [r["recipe_id"] for r in body["recipes"]] == [7, 1, 4]
    assert body["search_metadata"]["relevance_scoring"] is False


def test_advanced_search_rejects_bad_requests():
    for payload in (
        {"limit": 500},
        {"offset": -1},
        {"sort_by": "spiciness"},
        {"filters": {"cooking_time": {"min": 60, "max": 10}}},
        {"filters": {"difficulty": ["extreme"]}},
    ):
        assert client.post("/search/recipes/advanced", json=payload).status_code == 422, payload


# ── Suggestions ──────────────────────────────────────────────────────────


def test_suggestions_short_query_returns_popular_only():
    body = client.get("/search/suggestions", params={"query": "c"}).json()
    assert body["query"] == ""
    assert list(body["suggestions"]) == ["popular"]
    assert body["suggestions"]["popular"][0]["query"] == "chicken tacos"


def test_suggestions_short_query_without_popular_is_400():
    resp = client.get("/search/suggestions", params={"query": "c", "include_popular": "false"})
    assert resp.status_code == 400


def test_suggestions_scoped():
    body = client.get("/search/suggestions", params={"query": "basil", "type": "ingredients"}).json()
    assert [s["text"] for s in body["suggestions"]["ingredients"]] == ["basil"]
    assert "recipes" not in body["suggestions"]


def test_suggestions_bad_type_is_422():
    assert client.get("/search/suggestions", params={"query": "ba", "type": "users"}).status_code == 422


# ── Trends ───────────────────────────────────────────────────────────────


def test_trending():
    body = client.get("/search/trending").json()
    assert body["period"] == "7 days"
    assert set(body["trending"]) == {"recipes", "ingredients", "cuisines"}
    assert "saffron" not in [i["name"] for i in body["trending"]["ingredients"]]


def test_trending_window_is_bounded():
    assert client.get("/search/trending", params={"days": 31}).status_code == 422
    assert client.get("/search/trending/ingredients", params={"days": 365}).status_code == 200
    assert client.get("/search/trending/cuisines", params={"limit": 51}).status_code == 422


def test_ingredient_and_cuisine_trends():
    body = client.get("/search/trending/ingredients").json()
    assert body["total_trending"] == len(body["trending"])
    body = client.get("/search/trending/cuisines").json()
    assert body["trending"][0]["cuisine"] == "Italian"


# ── Analytics ────────────────────────────────────────────────────────────


def test_search_analytics_summary():
    body = client.get("/search/analytics").json()
    assert body["period"] == "30 days"
    # "chicken soup" is older than the window
    assert body["total_searches"] == 11
    assert body["top_queries"][0] == {"query": "chicken tacos", "count": 3}
    assert {"query": "sushi", "count": 2} in body["zero_result_queries"]


def test_searches_are_logged_while_app_runs(installed_store):
    before = len(installed_store._log)
    with TestClient(app) as c:
        c.post("/search", json={"query": "risotto", "type": "recipes"})
        c.post("/search/recipes/advanced", json={"filters": {"tags": ["quick"]}})
    logged = list(installed_store._log)[before:]
    assert [(e.query, e.search_type, e.result_count) for e in logged] == [
        ("risotto", "recipes", 1),
        ("advanced_filter", "advanced_recipe", 3),
    ]


# ── Failures ─────────────────────────────────────────────────────────────


def test_storage_timeout_is_504(installed_store):
    with patch.object(installed_store, "distinct_cuisines", side_effect=StorageTimeoutError("slow")):
        resp = client.get("/metadata")
    assert resp.status_code == 504


def test_storage_failure_is_500(installed_store):
    with patch.object(installed_store, "search_users", side_effect=StorageError("down")):
        resp = client.post("/search", json={"query": "maria", "type": "users"})
    assert resp.status_code == 500
    assert resp.json() == {"detail": "Search is temporarily unavailable"}


# ── Session user ─────────────────────────────────────────────────────────


def test_current_user_id_from_session():
    assert current_user_id(SimpleNamespace(session={"user": {"user_id": 7}})) == 7
    assert current_user_id(SimpleNamespace(session={"user": {"id": "12"}})) == 12
    assert current_user_id(SimpleNamespace(session={"user": {"id": "abc"}})) is None
    assert current_user_id(SimpleNamespace(session={})) is None
