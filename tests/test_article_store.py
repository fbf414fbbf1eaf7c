"""Tests for article review and RSS export."""
import xml.etree.ElementTree as ET

import pytest

from article_store import (
    approve_article,
    delete_article,
    edit_article,
    get_article,
    list_articles,
    reject_article,
)
from feed_export import export_rss
from pipeline_models import ARTICLE_APPROVED, ARTICLE_REJECTED, NotFoundError, ValidationError
from producer_scheduler import create_producer


def _article(db, category, title="Robotaxis expand", now=2000.0):
    producer = create_producer(db, f"Feed {title}", "https://example.com/rss", category.id, now=1000.0)
    item_id = db.insert_queue_items(producer.id, [{
        "title": title, "description": "", "url": "https://example.com/a",
        "published_at": 1000.0, "rss_categories": [],
    }], now=1000.0)[0]
    db.claim_queue_item(item_id)
    return db.complete_queue_item(item_id, {
        "title": title, "body": "Body text", "excerpt": "Short", "category_id": category.id,
        "topics": ["robotaxi"],
    }, now=now)


def test_approve_and_reject(db, category):
    article_id = _article(db, category)

    assert approve_article(db, article_id).status == ARTICLE_APPROVED
    assert reject_article(db, article_id).status == ARTICLE_REJECTED
    with pytest.raises(NotFoundError):
        approve_article(db, 999)


def test_get_article_counts_views(db, category):
    article_id = _article(db, category)

    get_article(db, article_id, count_view=True)
    article = get_article(db, article_id, count_view=True)

    assert article.view_count == 2
    assert get_article(db, article_id).view_count == 2


def test_edit_article_resanitizes_topics(db, category):
    article_id = _article(db, category)

    article = edit_article(db, article_id, title="New title", topics=["Waymo", "waymo", "self driving"])

    assert article.title == "New title"
    assert article.topics == ["Waymo"]
    with pytest.raises(ValidationError):
        edit_article(db, article_id, status="approved")


def test_delete_article(db, category):
    article_id = _article(db, category)

    delete_article(db, article_id)

    assert list_articles(db) == []
    with pytest.raises(NotFoundError):
        delete_article(db, article_id)


def test_export_only_approved_newest_first(db, category, tmp_path):
    older = _article(db, category, title="Older story", now=2000.0)
    newer = _article(db, category, title="Newer story", now=3000.0)
    _article(db, category, title="Pending story", now=4000.0)
    approve_article(db, older)
    approve_article(db, newer)

    output = tmp_path / "feeds" / "headlines.xml"
    count = export_rss(db, output, site_url="https://news.example.com")

    assert count == 2
    titles = [item.findtext("title") for item in ET.parse(output).getroot().iter("item")]
    assert titles == ["Newer story", "Older story"]
