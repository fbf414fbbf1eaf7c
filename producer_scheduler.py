#!/usr/bin/env python3
"""
Producer scheduling
Producers are feed sources polled on their own frequency. A periodic sweep
runs every producer whose next_run_at has passed; each run fetches and filters
the feed, queues the matches and records a summary on the producer.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional

from feed_fetcher import analyze_feed, is_http_url
from pipeline_models import (
    Producer,
    RunResult,
    SweepResult,
    FeedParseError,
    NotFoundError,
    ValidationError,
    CATEGORY_FOUND,
    CATEGORY_NOT_FOUND,
    FEED_LIVE,
    FEED_NOT_LIVE,
)
from rss_queue import enqueue_articles

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
MAX_NUMBER_OF_ARTICLES = 100
UPDATABLE_FIELDS = {
    'name', 'url', 'category_id', 'is_active', 'poll_frequency_minutes', 'number_of_articles',
}


def _validate(db, fields: Dict) -> Dict:
    cleaned = dict(fields)

    if 'name' in cleaned:
        name = (cleaned['name'] or '').strip()
        if not name:
            raise ValidationError("Feed title is required")
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"Feed title must be less than {MAX_NAME_LENGTH} characters")
        cleaned['name'] = name

    if 'url' in cleaned:
        url = (cleaned['url'] or '').strip()
        if not is_http_url(url):
            raise ValidationError("URL must use HTTP or HTTPS protocol")
        cleaned['url'] = url

    if 'number_of_articles' in cleaned:
        count = cleaned['number_of_articles']
        if not isinstance(count, int) or count < 1:
            raise ValidationError("Must fetch at least 1 article")
        if count > MAX_NUMBER_OF_ARTICLES:
            raise ValidationError(f"Cannot fetch more than {MAX_NUMBER_OF_ARTICLES} articles")

    if 'poll_frequency_minutes' in cleaned:
        frequency = cleaned['poll_frequency_minutes']
        if not isinstance(frequency, int) or frequency < 1:
            raise ValidationError("Poll frequency must be a positive number of minutes")

    if 'category_id' in cleaned and db.get_category(cleaned['category_id']) is None:
        raise NotFoundError(f"Category {cleaned['category_id']} not found")

    return cleaned


def get_producer(db, producer_id: int) -> Producer:
    producer = db.get_producer(producer_id)
    if producer is None:
        raise NotFoundError("Producer not found")
    return producer


def create_producer(db, name: str, url: str, category_id: int, is_active: bool = True,
                    poll_frequency_minutes: int = 1440, number_of_articles: int = 10,
                    now: Optional[float] = None) -> Producer:
    """Create a producer; active producers get their first run one poll interval from now"""
    now = now or time.time()
    fields = _validate(db, {
        'name': name,
        'url': url,
        'category_id': category_id,
        'poll_frequency_minutes': poll_frequency_minutes,
        'number_of_articles': number_of_articles,
    })
    next_run_at = now + fields['poll_frequency_minutes'] * 60 if is_active else None
    producer_id = db.insert_producer(
        fields['name'], fields['url'], fields['category_id'], is_active,
        fields['poll_frequency_minutes'], fields['number_of_articles'], next_run_at, now=now,
    )
    logger.info(f"➕ Created producer {fields['name']} ({'active' if is_active else 'inactive'})")
    return db.get_producer(producer_id)


def update_producer(db, producer_id: int, now: Optional[float] = None, **changes) -> Producer:
    """Edit a producer, keeping next_run_at consistent with is_active and the poll frequency"""
    now = now or time.time()
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown producer fields: {', '.join(sorted(unknown))}")

    producer = get_producer(db, producer_id)
    fields = _validate(db, changes)

    is_active = fields.get('is_active', producer.is_active)
    frequency = fields.get('poll_frequency_minutes', producer.poll_frequency_minutes)
    if not is_active:
        fields['next_run_at'] = None
    elif not producer.is_active or frequency != producer.poll_frequency_minutes:
        fields['next_run_at'] = now + frequency * 60

    db.update_producer(producer_id, now=now, **fields)
    return db.get_producer(producer_id)


def toggle_producer(db, producer_id: int, is_active: bool, now: Optional[float] = None) -> Producer:
    """Enable (next run = now + frequency) or disable (no next run) a producer"""
    now = now or time.time()
    producer = get_producer(db, producer_id)
    next_run_at = now + producer.poll_frequency_minutes * 60 if is_active else None
    db.update_producer(producer_id, now=now, is_active=is_active, next_run_at=next_run_at)
    logger.info(f"🔁 Producer {producer.name} {'enabled' if is_active else 'disabled'}")
    return db.get_producer(producer_id)


def delete_producer(db, producer_id: int) -> Dict:
    """Delete a producer together with its queue items"""
    removed = db.delete_producer(producer_id)
    if removed is None:
        raise NotFoundError("Producer not found")
    logger.info(f"🗑️ Deleted producer {producer_id} and {removed} queue items")
    return {'success': True, 'queue_items_deleted': removed}


def list_producers(db, is_active: Optional[bool] = None) -> List[Dict]:
    """Producers with their category attached, newest first"""
    categories = {c.id: c for c in db.list_categories()}
    return [
        {'producer': p, 'category': categories.get(p.category_id)}
        for p in db.list_producers(is_active=is_active)
    ]


def run_producer(db, producer_id: int, now: Optional[float] = None,
                 fetcher: Callable = analyze_feed, log: Optional[logging.Logger] = None) -> RunResult:
    """Fetch + filter the producer's feed, queue matches and record the outcome"""
    log = log or logger
    producer = get_producer(db, producer_id)
    category = db.get_category(producer.category_id)
    if category is None:
        raise NotFoundError("Producer category not found")

    log.info(f"🚀 Running producer: {producer.name}")
    feed_result = fetcher(
        producer.url,
        category=category.name,
        max_articles=producer.number_of_articles,
        keywords=category.keywords,
        log=log,
    )

    if isinstance(feed_result, FeedParseError):
        result = RunResult(
            producer_id=producer_id,
            success=False,
            feed_status=FEED_NOT_LIVE,
            category_status=None,
            articles_found=0,
            articles_queued=0,
            error=feed_result.message,
        )
    elif feed_result.articles:
        try:
            queued = enqueue_articles(db, producer_id, feed_result.articles, log=log)
        except Exception as e:
            failed = RunResult(
                producer_id=producer_id,
                success=False,
                feed_status=FEED_LIVE,
                category_status=CATEGORY_FOUND,
                articles_found=len(feed_result.articles),
                articles_queued=0,
                error=f"Failed to queue articles: {e}",
                last_run=now or time.time(),
            )
            db.record_run_result(failed)
            raise
        result = RunResult(
            producer_id=producer_id,
            success=True,
            feed_status=FEED_LIVE,
            category_status=CATEGORY_FOUND,
            articles_found=len(feed_result.articles),
            articles_queued=queued['inserted_count'],
            articles=feed_result.articles,
        )
    else:
        result = RunResult(
            producer_id=producer_id,
            success=True,
            feed_status=FEED_LIVE,
            category_status=CATEGORY_NOT_FOUND,
            articles_found=0,
            articles_queued=0,
        )

    finished = now or time.time()
    result.last_run = finished
    db.record_run_result(result, now=finished)
    if not db.schedule_next_run(producer_id, finished):
        log.debug(f"Producer {producer.name} inactive at completion, no next run scheduled")

    if result.success:
        log.info(f"✅ {producer.name}: {result.articles_found} matched, {result.articles_queued} queued")
    else:
        log.warning(f"⚠️ {producer.name}: feed not live ({result.error})")
    return result


def get_due_producers(db, now: Optional[float] = None) -> List[Producer]:
    return db.get_due_producers(now or time.time())


def run_due_producers(db, now: Optional[float] = None, max_workers: int = 4,
                      runner: Callable = run_producer,
                      log: Optional[logging.Logger] = None) -> SweepResult:
    """Run every active producer whose next run has passed, each independently"""
    log = log or logger
    now = now or time.time()
    due = get_due_producers(db, now)
    log.info(f"🕐 Scheduler check: {len(due)} producers due for run")

    claimed = [p for p in due if db.claim_due_producer(p.id, p.next_run_at, now)]
    sweep = SweepResult(producers_due=len(due), producers_run=len(claimed))
    if not claimed:
        return sweep

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(claimed)))) as executor:
        futures = {executor.submit(runner, db, p.id): p for p in claimed}
        for future in as_completed(futures):
            producer = futures[future]
            try:
                sweep.results.append(future.result())
            except Exception as e:
                log.error(f"❌ Failed to auto-run producer {producer.name}: {e}")
                sweep.failures[producer.id] = str(e)

    return sweep


def run_scheduler(db, interval_seconds: int = 60, max_workers: int = 4,
                  iterations: Optional[int] = None, sleep: Callable = time.sleep) -> int:
    """Sweep for due producers every interval_seconds. Returns the number of sweeps run."""
    sweeps = 0
    logger.info(f"⏱️ Scheduler started (every {interval_seconds}s)")
    while iterations is None or sweeps < iterations:
        try:
            run_due_producers(db, max_workers=max_workers)
        except Exception as e:
            logger.error(f"❌ Scheduler sweep failed: {e}")
        sweeps += 1
        if iterations is None or sweeps < iterations:
            sleep(interval_seconds)
    return sweeps


def feed_health_score(producer: Producer, now: Optional[float] = None) -> Dict:
    """Score 0-100 from active state and how far polling lags behind schedule"""
    now = now or time.time()
    score = 100
    issues = []

    if not producer.is_active:
        score -= 50
        issues.append('Source is inactive')

    if producer.last_polled_at:
        since_last_poll = now - producer.last_polled_at
        expected = producer.poll_frequency_minutes * 60
        if since_last_poll > expected * 2:
            score -= 30
            issues.append('Polling is behind schedule')
        elif since_last_poll > expected * 1.5:
            score -= 15
            issues.append('Polling is slightly delayed')
    elif producer.is_active:
        score -= 25
        issues.append('Never been polled')

    age_days = (now - producer.created_at) / 86400
    if age_days < 1 and not producer.last_polled_at:
        score -= 10

    if producer.last_run_success is False:
        issues.append(f"Last run failed: {producer.last_run_error or 'unknown error'}")

    if score >= 90:
        status = 'excellent'
    elif score >= 70:
        status = 'good'
    elif score >= 50:
        status = 'fair'
    else:
        status = 'poor'

    return {'score': max(0, score), 'status': status, 'issues': issues}
