#!/usr/bin/env python3
"""
RSS export of approved articles (the public read view)
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from feedgen.feed import FeedGenerator

from pipeline_models import NotFoundError, ARTICLE_APPROVED

logger = logging.getLogger(__name__)


def _article_url(site_url: str, article_id: int) -> str:
    return f"{site_url.rstrip('/')}/articles/{article_id}"


def build_feed(db, category_slug: Optional[str] = None, site_url: str = 'https://example.com',
               site_title: str = 'Curated Headlines', max_items: int = 50) -> FeedGenerator:
    """Approved articles, newest first, optionally limited to one category"""
    category_id = None
    title = site_title
    if category_slug:
        category = db.get_category_by_slug(category_slug)
        if category is None:
            raise NotFoundError(f"Category not found: {category_slug}")
        category_id = category.id
        title = f"{site_title} - {category.name}"

    categories = {c.id: c.name for c in db.list_categories()}
    articles = db.list_articles(status=ARTICLE_APPROVED, category_id=category_id, limit=max_items)

    fg = FeedGenerator()
    fg.title(title)
    fg.link(href=site_url, rel="alternate")
    fg.description("AI-assisted, human-approved technology headlines")
    fg.language("en")
    fg.lastBuildDate(datetime.now(timezone.utc))

    for article in articles:
        url = _article_url(site_url, article.id)
        fe = fg.add_entry(order='append')
        fe.id(url)
        fe.title(article.title)
        fe.link(href=url)
        fe.description(article.excerpt or article.title)
        fe.published(datetime.fromtimestamp(article.created_at, tz=timezone.utc))
        if article.category_id in categories:
            fe.category(term=categories[article.category_id])
        for topic in article.topics:
            fe.category(term=topic)

    return fg


def export_rss(db, output_path, category_slug: Optional[str] = None,
               site_url: str = 'https://example.com', site_title: str = 'Curated Headlines',
               max_items: int = 50) -> int:
    """Write the approved-article feed to output_path. Returns the number of items."""
    fg = build_feed(db, category_slug=category_slug, site_url=site_url,
                    site_title=site_title, max_items=max_items)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fg.rss_file(str(output_path), pretty=True)
    count = len(fg.entry())
    logger.info(f"✅ Generated RSS feed: {output_path} ({count} articles)")
    return count
