"""Tests for category creation, keywords and seeding."""
import pytest

from category_store import (
    create_category,
    get_category_keywords,
    seed_categories,
    set_active,
    set_keywords,
    slugify,
)
from pipeline_models import NotFoundError, ValidationError


def test_slugify():
    assert slugify("Big Tech") == "big-tech"
    assert slugify("  AI & ML!  ") == "ai-ml"


def test_create_category_dedupes_keywords(db):
    category = create_category(db, "Robotics", ["robot", "Robot", " drones ", ""])

    assert category.slug == "robotics"
    assert category.keywords == ["robot", "drones"]


def test_create_category_rejects_duplicate_slug(db, category):
    with pytest.raises(ValidationError):
        create_category(db, "AI")


def test_keywords_lookup_only_for_active_categories(db, category):
    assert get_category_keywords(db, "ai")["keywords"] == ["ai", "machine learning", "openai"]

    set_active(db, category.id, False)

    with pytest.raises(NotFoundError):
        get_category_keywords(db, "ai")


def test_set_keywords(db, category):
    updated = set_keywords(db, category.id, ["llm", "LLM", "agents"])

    assert updated.keywords == ["llm", "agents"]


def test_seed_categories_creates_updates_and_deactivates(db, category):
    create_category(db, "Legacy", ["old"])
    seeds = [
        {"slug": "ai", "name": "Artificial Intelligence", "keywords": ["ai"]},
        {"slug": "science", "name": "Science", "keywords": ["physics"]},
    ]

    counts = seed_categories(db, seeds)

    assert counts == {"created": 1, "updated": 1, "deactivated": 1, "total": 2}
    assert db.get_category_by_slug("ai").name == "Artificial Intelligence"
    assert db.get_category_by_slug("legacy").is_active is False
