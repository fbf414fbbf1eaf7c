"""Tests for the SQLite store."""
import sqlite3

import pytest

from pipeline_models import QUEUE_COMPLETED, QUEUE_PROCESSING


def _producer_id(db, category, next_run_at=None):
    return db.insert_producer("Feed", "https://example.com/rss", category.id, True, 60, 10,
                              next_run_at, now=1000.0)


def _queue_item(db, producer_id):
    return db.insert_queue_items(producer_id, [{
        "title": "Story", "description": "d", "url": "https://example.com/s",
        "published_at": 1000.0, "rss_categories": ["AI"],
    }], now=1000.0)[0]


def test_database_creates_tables(db):
    """Database should create all required tables on init."""
    tables = db.fetchall("SELECT name FROM sqlite_master WHERE type='table'")
    table_names = {row[0] for row in tables}

    assert {"categories", "producers", "queue_items", "articles"} <= table_names


def test_deleting_producer_cascades_queue_items(db, category):
    producer_id = _producer_id(db, category)
    _queue_item(db, producer_id)
    _queue_item(db, producer_id)

    assert db.delete_producer(producer_id) == 2
    assert db.list_queue_items() == []
    assert db.delete_producer(producer_id) is None


def test_claim_queue_item_only_once(db, category):
    item_id = _queue_item(db, _producer_id(db, category))

    assert db.claim_queue_item(item_id) is True
    assert db.claim_queue_item(item_id) is False
    assert db.get_queue_item(item_id).status == QUEUE_PROCESSING


def test_complete_requires_processing_status(db, category):
    """A waiting item can't be completed, and no article is left behind."""
    item_id = _queue_item(db, _producer_id(db, category))
    article = {"title": "T", "body": "B", "category_id": category.id}

    with pytest.raises(sqlite3.IntegrityError):
        db.complete_queue_item(item_id, article)
    assert db.list_articles() == []

    db.claim_queue_item(item_id)
    article_id = db.complete_queue_item(item_id, article)

    item = db.get_queue_item(item_id)
    assert item.status == QUEUE_COMPLETED
    assert item.generated_article_id == article_id


def test_claim_due_producer_is_compare_and_swap(db, category):
    producer_id = _producer_id(db, category, next_run_at=1500.0)

    assert db.claim_due_producer(producer_id, 1500.0, 2000.0) is True
    assert db.claim_due_producer(producer_id, 1500.0, 2000.0) is False
    assert db.get_producer(producer_id).next_run_at == 2000.0 + 60 * 60


def test_schedule_next_run_skips_inactive_producer(db, category):
    producer_id = _producer_id(db, category, next_run_at=1500.0)
    db.update_producer(producer_id, is_active=False, next_run_at=None)

    assert db.schedule_next_run(producer_id, 3000.0) is False
    assert db.get_producer(producer_id).next_run_at is None


def test_find_category_by_slug_or_name(db, category):
    assert db.find_category("ai").id == category.id
    assert db.find_category("  Ai ").id == category.id
    assert db.find_category("robotics") is None
