from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.search.models import SearchLogEntry
from backend.storage import set_store
from backend.storage.memory import MemoryCatalogueStore

NOW = datetime.now(timezone.utc)


def _ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


RECIPES = [
    # id, title, description, instructions, cuisine, difficulty, spice, cook, prep, servings,
    # generated, favorite, user, age in days
    (1, "Spicy Chicken Tacos", "Crispy tacos with chili chicken", "Grill the chicken and fill the tortillas.",
     "Mexican", "easy", "hot", 20, 15, 4, False, True, 1, 2),
    (2, "Margherita Pizza", "Classic pizza with tomato, basil and mozzarella", "Bake on a hot stone.",
     "Italian", "medium", "mild", 15, 60, 2, False, False, 1, 3),
    (3, "Shrimp Scampi Pasta", "Garlic butter shrimp over pasta", "Simmer the shrimp in stock.",
     "Italian", "medium", "mild", 20, 10, 2, True, False, 2, 4),
    (4, "Tomato Basil Pasta", "Simple pasta with fresh tomato and basil", "Toss everything together.",
     "Italian", "easy", "mild", None, 5, 2, False, True, 2, 5),
    (5, "Chicken Tikka Masala", "Creamy tomato curry with chicken", "Marinate overnight.",
     "Indian", "hard", "medium", 45, 30, 4, True, False, 3, 1),
    (6, "Saffron Risotto", "Rich rice dish with saffron", "Stir patiently.",
     "Italian", "hard", "mild", 40, 10, 4, False, False, 3, 20),
    (7, "Garlic Shrimp Fried Rice", "Wok fried rice with shrimp and garlic", "Use day-old rice.",
     "Chinese", "easy", "medium", 15, 10, 3, False, False, 2, 6),
]

INGREDIENTS = [
    (1, "chicken", "protein"), (2, "tortilla", "grain"), (3, "tomato", "produce"),
    (4, "basil", "herb"), (5, "shrimp", "seafood"), (6, "pasta", "grain"),
    (7, "garlic", "produce"), (8, "mozzarella", "dairy"), (9, "chili pepper", "produce"),
    (10, "rice", "grain"), (11, "saffron", "spice"), (12, "shellfish stock", "seafood"),
]

RECIPE_INGREDIENTS = {
    1: [1, 2, 9, 3],
    2: [3, 4, 8],
    3: [5, 6, 7, 12],
    4: [3, 4, 6, 7],
    5: [1, 3, 7, 9],
    6: [10, 11],
    7: [5, 10, 7],
}

RECIPE_TAGS = {
    1: ["mexican", "spicy", "quick"],
    2: ["vegetarian", "classic"],
    3: ["seafood", "dinner"],
    4: ["vegetarian", "quick"],
    5: ["spicy", "dinner"],
    6: ["vegetarian"],
    7: ["seafood", "quick"],
}

RATINGS = [(1, 2, 5), (1, 3, 4), (2, 2, 4), (3, 1, 5), (3, 3, 3), (5, 1, 5), (7, 1, 2)]
SAVES = [(1, 2), (1, 3), (2, 3), (5, 1), (5, 2), (3, 1)]
USERS = [(1, "Maria Rossi"), (2, "Kenji Tanaka"), (3, "Priya Sharma")]


def catalogue_tables() -> dict[str, list[dict]]:
    return {
        "recipes": [
            {
                "recipe_id": r[0], "title": r[1], "description": r[2], "instructions": r[3],
                "cuisine": r[4], "difficulty": r[5], "spice_level": r[6], "cooking_time": r[7],
                "prep_time": r[8], "servings": r[9], "is_generated": r[10], "is_favorite": r[11],
                "user_id": r[12], "created_at": _ago(r[13]),
            }
            for r in RECIPES
        ],
        "ingredients": [
            {"ingredient_id": i, "name": n, "category": c} for i, n, c in INGREDIENTS
        ],
        "recipe_ingredients": [
            {"recipe_id": rid, "ingredient_id": iid, "quantity": "1 cup"}
            for rid, iids in RECIPE_INGREDIENTS.items() for iid in iids
        ],
        "recipe_tags": [
            {"recipe_id": rid, "tag": tag} for rid, tags in RECIPE_TAGS.items() for tag in tags
        ],
        "recipe_ratings": [
            {"recipe_id": rid, "user_id": uid, "rating": rating} for rid, uid, rating in RATINGS
        ],
        "saved_recipes": [{"recipe_id": rid, "user_id": uid} for rid, uid in SAVES],
        "users": [{"user_id": uid, "name": name} for uid, name in USERS],
    }


def search_log() -> list[SearchLogEntry]:
    entries = []
    for i in range(3):
        entries.append(SearchLogEntry(query="chicken tacos", result_count=4, searched_at=_ago(i + 1)))
    for i in range(2):
        entries.append(SearchLogEntry(query="pasta", result_count=3, search_type="recipes", searched_at=_ago(i + 2)))
    entries.append(SearchLogEntry(query="pizza", result_count=1, searched_at=_ago(1)))
    for i in range(3):
        entries.append(SearchLogEntry(query="xy", result_count=2, searched_at=_ago(1)))
    for i in range(2):
        entries.append(SearchLogEntry(query="sushi", result_count=0, searched_at=_ago(1)))
    for i in range(2):
        entries.append(SearchLogEntry(query="chicken soup", result_count=2, searched_at=_ago(40)))
    return entries


@pytest.fixture
def store() -> MemoryCatalogueStore:
    return MemoryCatalogueStore(catalogue_tables(), search_log=search_log())


@pytest.fixture
def installed_store(store):
    """Make ``store`` the process-wide catalogue for API tests."""
    set_store(store)
    yield store
    set_store(None)


@pytest.fixture
def soup_store() -> MemoryCatalogueStore:
    """45 soups plus one unrelated recipe, newest first by id."""
    recipes = [
        {
            "recipe_id": i, "title": f"Soup number {i}", "description": "A warming soup",
            "cuisine": "French", "difficulty": "easy", "spice_level": "mild",
            "cooking_time": 30, "prep_time": 10, "servings": 2, "user_id": 1,
            "created_at": _ago(i),
        }
        for i in range(1, 46)
    ]
    recipes.append({
        "recipe_id": 46, "title": "Green Salad", "description": "Crunchy leaves",
        "cuisine": "French", "difficulty": "easy", "spice_level": "mild", "user_id": 1,
        "created_at": _ago(50),
    })
    return MemoryCatalogueStore({"recipes": recipes, "users": [{"user_id": 1, "name": "Chef"}]})
