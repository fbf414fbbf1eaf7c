"""Tests for the RSS queue: enqueue, search, bulk delete and deduplication."""
from pipeline_models import FeedArticle, QUEUE_FAILED, QUEUE_WAITING
from producer_scheduler import create_producer
from rss_queue import (
    bulk_delete,
    confirm_deduplication,
    enqueue_articles,
    find_duplicates,
    list_queue,
    parse_published_at,
    queue_stats,
    reset_stale_processing,
    search_queue,
)


def _producer(db, category):
    return create_producer(db, "Tech Feed", "https://example.com/feed", category.id, now=1000.0)


def _enqueue(db, producer, titles, now=2000.0):
    articles = [
        FeedArticle(title=t, url=f"https://example.com/{i}", published_at="2024-01-01T00:00:00Z",
                    excerpt=f"About {t}", categories=["AI"])
        for i, t in enumerate(titles)
    ]
    return enqueue_articles(db, producer.id, articles, now=now)["queue_ids"]


def test_parse_published_at_formats():
    assert parse_published_at("2024-01-01T00:00:00Z") == 1704067200.0
    assert parse_published_at("Mon, 01 Jan 2024 00:00:00 GMT") == 1704067200.0
    assert parse_published_at("not a date", default=42.0) == 42.0
    assert parse_published_at(None, default=7.0) == 7.0


def test_enqueue_creates_waiting_items(db, category):
    producer = _producer(db, category)

    result = enqueue_articles(db, producer.id, [
        FeedArticle("OpenAI ships", "https://example.com/a", "2024-01-01T00:00:00Z", "x", ["AI"]),
    ], now=2000.0)

    assert result["success"] is True
    assert result["inserted_count"] == 1
    item = db.get_queue_item(result["queue_ids"][0])
    assert item.status == QUEUE_WAITING
    assert item.rss_categories == ["AI"]
    assert item.producer_name == "Tech Feed"


def test_bulk_delete_reports_partial_success(db, category):
    """One missing id: the rest are still deleted and the failure is reported."""
    producer = _producer(db, category)
    ids = _enqueue(db, producer, ["One", "Two", "Three"])
    missing_id = max(ids) + 100

    result = bulk_delete(db, ids + [missing_id])

    assert result.success is False
    assert result.success_count == 3
    assert result.failed_count == 1
    assert result.total_requested == 4
    assert result.failed_ids == [missing_id]
    assert list_queue(db) == []


def test_find_duplicates_is_read_only(db, category):
    producer = _producer(db, category)
    ids = _enqueue(db, producer, ["Apple Unveils New iPhone"], now=2000.0)
    ids += _enqueue(db, producer, ["New iPhone Unveiled by Apple"], now=3000.0)
    ids += _enqueue(db, producer, ["Tesla Recalls Model 3"], now=4000.0)

    plan = find_duplicates(db, ids + [9999])

    assert plan.delete_ids == [ids[0]]
    assert len(list_queue(db)) == 3

    result = confirm_deduplication(db, plan)

    assert result.success is True
    assert sorted(i.id for i in list_queue(db)) == sorted(ids[1:])


def test_search_queue_matches_title_or_description(db, category):
    producer = _producer(db, category)
    _enqueue(db, producer, ["Robotaxi expansion", "Chip shortage eases"])

    assert [i.title for i in search_queue(db, "ROBOTAXI")] == ["Robotaxi expansion"]
    assert [i.title for i in search_queue(db, "about chip")] == ["Chip shortage eases"]
    assert len(search_queue(db, "", limit=1)) == 1


def test_queue_stats_counts_statuses(db, category):
    producer = _producer(db, category)
    ids = _enqueue(db, producer, ["One", "Two"])
    db.claim_queue_item(ids[0], now=2500.0)

    stats = queue_stats(db)

    assert stats["waiting"] == 1
    assert stats["processing"] == 1
    assert stats["total"] == 2


def test_reset_stale_processing(db, category):
    producer = _producer(db, category)
    ids = _enqueue(db, producer, ["Stuck", "Fresh"])
    db.claim_queue_item(ids[0], now=1000.0)
    db.claim_queue_item(ids[1], now=5000.0)

    count = reset_stale_processing(db, older_than_seconds=1800, now=5500.0)

    assert count == 1
    stuck = db.get_queue_item(ids[0])
    assert stuck.status == QUEUE_FAILED
    assert stuck.retry_count == 1
    assert "30 minutes" in stuck.error_message


def test_find_duplicates_ignores_repeated_ids(db, category):
    """Selecting the same item twice must not schedule it for deletion."""
    producer = _producer(db, category)
    ids = _enqueue(db, producer, ["Apple Unveils New iPhone"])

    plan = find_duplicates(db, ids + ids)

    assert [i.id for i in plan.to_keep] == ids
    assert plan.to_delete == []
    confirm_deduplication(db, plan)
    assert [i.id for i in list_queue(db)] == ids
