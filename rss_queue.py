#!/usr/bin/env python3
"""
RSS queue: matched feed articles waiting for AI processing
Enqueue, browse, delete and deduplicate queue items. Bulk operations are
best-effort and report per-item failures instead of aborting.
"""

import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Iterable, List, Optional

from pipeline_models import (
    BulkDeleteResult,
    DedupPlan,
    FeedArticle,
    NotFoundError,
    QueueItem,
    QUEUE_FAILED,
    QUEUE_PROCESSING,
    QUEUE_WAITING,
)
from title_hash import select_duplicates

logger = logging.getLogger(__name__)

SORT_OPTIONS = ('newest', 'oldest', 'title', 'source', 'published')


def parse_published_at(value, default: Optional[float] = None) -> float:
    """Feed date (ISO-8601 or RFC 822) to UTC epoch seconds; unparseable dates fall back to now"""
    if isinstance(value, (int, float)):
        return float(value)
    fallback = default if default is not None else time.time()
    if not value:
        return fallback

    text = str(value).strip()
    parsed = None
    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            parsed = None

    if parsed is None:
        logger.debug(f"Unparseable publish date {text!r}, using now")
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def enqueue_articles(db, producer_id: int, articles: List[FeedArticle],
                     now: Optional[float] = None, log: Optional[logging.Logger] = None) -> Dict:
    """Add filtered feed articles to the queue in waiting status"""
    log = log or logger
    now = now or time.time()
    rows = [
        {
            'title': article.title,
            'description': article.excerpt,
            'url': article.url,
            'published_at': parse_published_at(article.published_at, default=now),
            'rss_categories': article.categories,
        }
        for article in articles
    ]
    queue_ids = db.insert_queue_items(producer_id, rows, now=now) if rows else []
    if queue_ids:
        log.info(f"📥 Queued {len(queue_ids)} articles for producer {producer_id}")
    return {'success': True, 'inserted_count': len(queue_ids), 'queue_ids': queue_ids}


def list_queue(db, status: Optional[str] = None, producer_id: Optional[int] = None,
               sort_by: str = 'newest', limit: Optional[int] = None) -> List[QueueItem]:
    return db.list_queue_items(status=status, producer_id=producer_id, sort_by=sort_by, limit=limit)


def search_queue(db, term: str, limit: int = 50, status: Optional[str] = QUEUE_WAITING,
                 sort_by: str = 'newest') -> List[QueueItem]:
    """Case-insensitive match on title or description; blank term returns the most recent items"""
    items = db.list_queue_items(status=status, sort_by=sort_by)
    needle = (term or '').strip().lower()
    if needle:
        items = [
            item for item in items
            if needle in item.title.lower() or needle in (item.description or '').lower()
        ]
    return items[:limit]


def queue_stats(db) -> Dict[str, int]:
    counts = db.queue_status_counts()
    counts['total'] = sum(counts.values())
    return counts


def delete_queue_item(db, item_id: int) -> Dict:
    if not db.delete_queue_item(item_id):
        raise NotFoundError(f"Queue item {item_id} not found")
    return {'success': True, 'deleted_id': item_id}


def bulk_delete(db, item_ids: Iterable[int], log: Optional[logging.Logger] = None) -> BulkDeleteResult:
    """Delete each id independently; one failure never stops the rest"""
    log = log or logger
    item_ids = list(item_ids)
    success_count = 0
    failed_ids, errors = [], []

    for item_id in item_ids:
        try:
            if db.delete_queue_item(item_id):
                success_count += 1
            else:
                failed_ids.append(item_id)
                errors.append(f"Item {item_id} not found")
        except Exception as e:
            log.warning(f"⚠️ Failed to delete queue item {item_id}: {e}")
            failed_ids.append(item_id)
            errors.append(f"Failed to delete {item_id}: {e}")

    log.info(f"🗑️ Bulk delete: {success_count}/{len(item_ids)} removed")
    return BulkDeleteResult(
        success=not failed_ids,
        success_count=success_count,
        failed_count=len(failed_ids),
        total_requested=len(item_ids),
        failed_ids=failed_ids,
        errors=errors,
    )


def find_duplicates(db, selected_ids: Iterable[int]) -> DedupPlan:
    """Work out which selected items are near-duplicates. Read-only; ids that no longer exist are skipped."""
    items = []
    for item_id in dict.fromkeys(selected_ids):
        item = db.get_queue_item(item_id)
        if item is not None:
            items.append(item)
    plan = select_duplicates(items)
    logger.info(f"🔄 Deduplication scan: {len(items)} selected, {len(plan.to_delete)} duplicates")
    return plan


def confirm_deduplication(db, plan: DedupPlan) -> BulkDeleteResult:
    """Delete the duplicates proposed by find_duplicates"""
    return bulk_delete(db, plan.delete_ids)


def reset_stale_processing(db, older_than_seconds: float, now: Optional[float] = None) -> int:
    """Fail items left in processing (e.g. after a crash) so they can be re-triggered"""
    now = now or time.time()
    minutes = int(older_than_seconds // 60)
    count = db.reset_stale_processing(
        older_than=now - older_than_seconds,
        message=f"Processing did not finish within {minutes} minutes",
        now=now,
    )
    if count:
        logger.warning(f"⚠️ Reset {count} stale {QUEUE_PROCESSING} items to {QUEUE_FAILED}")
    return count
