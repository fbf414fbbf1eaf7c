"""Tests for producer management, runs and the scheduler sweep."""
from unittest.mock import MagicMock

import pytest

from pipeline_models import (
    CATEGORY_FOUND,
    CATEGORY_NOT_FOUND,
    FEED_LIVE,
    FEED_NOT_LIVE,
    FeedArticle,
    FeedParseError,
    FeedParseSuccess,
    NotFoundError,
    RunResult,
    ValidationError,
)
from producer_scheduler import (
    create_producer,
    delete_producer,
    feed_health_score,
    run_due_producers,
    run_producer,
    run_scheduler,
    toggle_producer,
    update_producer,
)


def _success(articles):
    return FeedParseSuccess(
        feed_title="Test Feed", feed_url="https://example.com/rss", category="AI",
        date_fetched="2024-01-01T00:00:00+00:00", articles=articles,
        total_articles_parsed=len(articles), filtered_count=len(articles),
    )


def _articles(n):
    return [
        FeedArticle(title=f"Story {i}", url=f"https://example.com/{i}",
                    published_at="2024-01-01T00:00:00+00:00", excerpt="x", categories=["AI"])
        for i in range(n)
    ]


def _fetcher(result):
    def fetch(url, category=None, max_articles=10, keywords=None, log=None):
        return result
    return fetch


def test_create_active_producer_schedules_first_run(db, category):
    producer = create_producer(db, "Feed", "https://example.com/rss", category.id,
                               poll_frequency_minutes=60, now=1000.0)

    assert producer.is_active is True
    assert producer.next_run_at == 1000.0 + 3600


def test_create_inactive_producer_has_no_next_run(db, category):
    producer = create_producer(db, "Feed", "https://example.com/rss", category.id,
                               is_active=False, now=1000.0)

    assert producer.next_run_at is None


@pytest.mark.parametrize("changes", [
    {"name": "  "},
    {"name": "x" * 101},
    {"url": "ftp://example.com/rss"},
    {"number_of_articles": 0},
    {"number_of_articles": 101},
    {"poll_frequency_minutes": 0},
])
def test_create_producer_validation(db, category, changes):
    kwargs = {"name": "Feed", "url": "https://example.com/rss", "category_id": category.id}
    kwargs.update(changes)

    with pytest.raises(ValidationError):
        create_producer(db, **kwargs)


def test_create_producer_requires_existing_category(db):
    with pytest.raises(NotFoundError):
        create_producer(db, "Feed", "https://example.com/rss", 999)


def test_toggle_sets_and_clears_next_run(db, category):
    producer = create_producer(db, "Feed", "https://example.com/rss", category.id,
                               poll_frequency_minutes=30, now=1000.0)

    disabled = toggle_producer(db, producer.id, False, now=2000.0)
    assert disabled.is_active is False
    assert disabled.next_run_at is None

    enabled = toggle_producer(db, producer.id, True, now=3000.0)
    assert enabled.is_active is True
    assert enabled.next_run_at == 3000.0 + 1800


def test_update_frequency_reschedules(db, category):
    producer = create_producer(db, "Feed", "https://example.com/rss", category.id,
                               poll_frequency_minutes=30, now=1000.0)

    updated = update_producer(db, producer.id, poll_frequency_minutes=60, now=2000.0)

    assert updated.next_run_at == 2000.0 + 3600


def test_update_name_keeps_schedule(db, category):
    producer = create_producer(db, "Feed", "https://example.com/rss", category.id, now=1000.0)

    updated = update_producer(db, producer.id, name="Renamed", now=2000.0)

    assert updated.name == "Renamed"
    assert updated.next_run_at == producer.next_run_at


def test_delete_producer(db, category):
    producer = create_producer(db, "Feed", "https://example.com/rss", category.id, now=1000.0)
    run_producer(db, producer.id, now=2000.0, fetcher=_fetcher(_success(_articles(2))))

    result = delete_producer(db, producer.id)

    assert result == {"success": True, "queue_items_deleted": 2}
    with pytest.raises(NotFoundError):
        delete_producer(db, producer.id)


def test_run_producer_queues_matches(db, category):
    producer = create_producer(db, "Feed", "https://example.com/rss", category.id,
                               poll_frequency_minutes=60, now=1000.0)

    result = run_producer(db, producer.id, now=5000.0, fetcher=_fetcher(_success(_articles(3))))

    assert result.success is True
    assert result.feed_status == FEED_LIVE
    assert result.category_status == CATEGORY_FOUND
    assert result.articles_queued == 3
    assert len(db.list_queue_items(producer_id=producer.id)) == 3

    stored = db.get_producer(producer.id)
    assert stored.last_polled_at == 5000.0
    assert stored.next_run_at == 5000.0 + 3600
    assert stored.last_run_articles_found == 3
    assert [a["title"] for a in stored.last_run_articles] == ["Story 0", "Story 1", "Story 2"]


def test_run_producer_with_no_matches(db, category):
    producer = create_producer(db, "Feed", "https://example.com/rss", category.id, now=1000.0)

    result = run_producer(db, producer.id, now=5000.0, fetcher=_fetcher(_success([])))

    assert result.success is True
    assert result.feed_status == FEED_LIVE
    assert result.category_status == CATEGORY_NOT_FOUND
    assert db.list_queue_items() == []


def test_run_producer_records_feed_errors(db, category):
    producer = create_producer(db, "Feed", "https://example.com/rss", category.id,
                               poll_frequency_minutes=60, now=1000.0)
    error = FeedParseError("https://example.com/rss", "AI", "2024-01-01T00:00:00+00:00", "HTTP 404: Not Found")

    result = run_producer(db, producer.id, now=5000.0, fetcher=_fetcher(error))

    assert result.success is False
    assert result.feed_status == FEED_NOT_LIVE
    stored = db.get_producer(producer.id)
    assert stored.last_run_success is False
    assert stored.last_run_error == "HTTP 404: Not Found"
    assert stored.next_run_at == 5000.0 + 3600


def test_disable_during_run_is_not_undone(db, category):
    """A producer switched off while its run is in flight stays without a next run."""
    producer = create_producer(db, "Feed", "https://example.com/rss", category.id, now=1000.0)

    def fetch(url, **kwargs):
        toggle_producer(db, producer.id, False, now=4000.0)
        return _success(_articles(1))

    run_producer(db, producer.id, now=5000.0, fetcher=fetch)

    stored = db.get_producer(producer.id)
    assert stored.is_active is False
    assert stored.next_run_at is None


def test_run_missing_producer_raises(db):
    with pytest.raises(NotFoundError):
        run_producer(db, 404, fetcher=_fetcher(_success([])))


def test_sweep_isolates_failures(db, category):
    """One producer blowing up doesn't stop the others in the same sweep."""
    first = create_producer(db, "First", "https://example.com/1", category.id,
                            poll_frequency_minutes=1, now=1000.0)
    second = create_producer(db, "Second", "https://example.com/2", category.id,
                             poll_frequency_minutes=1, now=1000.0)
    create_producer(db, "Not due", "https://example.com/3", category.id,
                    poll_frequency_minutes=1440, now=1000.0)

    def runner(db, producer_id):
        if producer_id == first.id:
            raise RuntimeError("boom")
        return RunResult(producer_id, True, FEED_LIVE, CATEGORY_NOT_FOUND, 0, 0)

    sweep = run_due_producers(db, now=2000.0, runner=runner)

    assert sweep.producers_due == 2
    assert sweep.producers_run == 2
    assert sweep.failures == {first.id: "boom"}
    assert [r.producer_id for r in sweep.results] == [second.id]


def test_overlapping_sweep_does_not_rerun(db, category):
    create_producer(db, "Feed", "https://example.com/rss", category.id,
                    poll_frequency_minutes=1, now=1000.0)
    runner = MagicMock(return_value=RunResult(1, True, FEED_LIVE, CATEGORY_NOT_FOUND, 0, 0))

    run_due_producers(db, now=2000.0, runner=runner)
    second = run_due_producers(db, now=2000.0, runner=runner)

    assert runner.call_count == 1
    assert second.producers_run == 0


def test_run_scheduler_sleeps_between_sweeps(db):
    sleep = MagicMock()

    sweeps = run_scheduler(db, interval_seconds=60, iterations=3, sleep=sleep)

    assert sweeps == 3
    assert sleep.call_count == 2
    sleep.assert_called_with(60)


def test_feed_health_score(db, category):
    producer = create_producer(db, "Feed", "https://example.com/rss", category.id,
                               poll_frequency_minutes=60, now=1000.0)

    fresh = feed_health_score(producer, now=1000.0 + 60)
    assert fresh["score"] == 65
    assert "Never been polled" in fresh["issues"]

    producer.last_polled_at = 100000.0
    on_time = feed_health_score(producer, now=100000.0 + 1800)
    assert on_time == {"score": 100, "status": "excellent", "issues": []}

    late = feed_health_score(producer, now=100000.0 + 3 * 3600)
    assert late["score"] == 70
    assert late["status"] == "good"
