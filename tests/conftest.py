"""Shared fixtures: a throwaway SQLite database with one category."""
import tempfile
from pathlib import Path

import pytest

from pipeline_db import Database


@pytest.fixture
def db():
    with tempfile.TemporaryDirectory() as tmpdir:
        database = Database(Path(tmpdir) / "test.db")
        yield database
        database.close()


@pytest.fixture
def category(db):
    category_id = db.insert_category("AI", "ai", ["ai", "machine learning", "openai"], True)
    return db.get_category(category_id)
