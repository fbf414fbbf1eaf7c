#!/usr/bin/env python3
"""
Generated articles: human review and public read access
"""

import logging
from typing import List, Optional

from ai_processor import sanitize_topics
from pipeline_models import (
    Article,
    NotFoundError,
    ValidationError,
    ARTICLE_APPROVED,
    ARTICLE_REJECTED,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {'title', 'body', 'excerpt', 'topics', 'category_id'}


def list_articles(db, status: Optional[str] = None, category_id: Optional[int] = None,
                  limit: Optional[int] = None) -> List[Article]:
    return db.list_articles(status=status, category_id=category_id, limit=limit)


def get_article(db, article_id: int, count_view: bool = False) -> Article:
    """Fetch one article; public reads pass count_view=True to bump the view counter"""
    if count_view:
        db.increment_view_count(article_id)
    article = db.get_article(article_id)
    if article is None:
        raise NotFoundError(f"Article {article_id} not found")
    return article


def _set_status(db, article_id: int, status: str) -> Article:
    if not db.update_article(article_id, status=status):
        raise NotFoundError(f"Article {article_id} not found")
    logger.info(f"📝 Article {article_id} {status}")
    return db.get_article(article_id)


def approve_article(db, article_id: int) -> Article:
    return _set_status(db, article_id, ARTICLE_APPROVED)


def reject_article(db, article_id: int) -> Article:
    return _set_status(db, article_id, ARTICLE_REJECTED)


def edit_article(db, article_id: int, **changes) -> Article:
    """Admin edit of title/body/excerpt/topics/category. Topics are re-sanitized."""
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown article fields: {', '.join(sorted(unknown))}")
    get_article(db, article_id)

    if 'title' in changes and not (changes['title'] or '').strip():
        raise ValidationError("Article title is required")
    if 'topics' in changes:
        changes['topics'] = sanitize_topics(changes['topics'])
    if 'category_id' in changes and db.get_category(changes['category_id']) is None:
        raise NotFoundError(f"Category {changes['category_id']} not found")

    if changes:
        db.update_article(article_id, **changes)
    return db.get_article(article_id)


def delete_article(db, article_id: int) -> dict:
    if not db.delete_article(article_id):
        raise NotFoundError(f"Article {article_id} not found")
    logger.info(f"🗑️ Deleted article {article_id}")
    return {'success': True, 'deleted_id': article_id}
