#!/usr/bin/env python3
"""
Data models for the headline pipeline
Rows from the store, parsed feed items, and the tagged results passed between stages
"""

import json
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Union

QUEUE_WAITING = 'waiting'
QUEUE_PROCESSING = 'processing'
QUEUE_COMPLETED = 'completed'
QUEUE_FAILED = 'failed'
QUEUE_STATUSES = (QUEUE_WAITING, QUEUE_PROCESSING, QUEUE_COMPLETED, QUEUE_FAILED)

# Statuses a queue item may be claimed from
CLAIMABLE_STATUSES = (QUEUE_WAITING, QUEUE_FAILED)

ARTICLE_PENDING = 'pending'
ARTICLE_APPROVED = 'approved'
ARTICLE_REJECTED = 'rejected'
ARTICLE_STATUSES = (ARTICLE_PENDING, ARTICLE_APPROVED, ARTICLE_REJECTED)

FEED_LIVE = 'live'
FEED_NOT_LIVE = 'not_live'
CATEGORY_FOUND = 'found'
CATEGORY_NOT_FOUND = 'not_found'


class PipelineError(Exception):
    """Base class for errors surfaced to admin commands"""


class NotFoundError(PipelineError):
    """A producer, category, queue item or article does not exist"""


class InvalidStateError(PipelineError):
    """Operation rejected because of the current status of a row"""


class AlreadyProcessingError(InvalidStateError):
    pass


class AlreadyCompletedError(InvalidStateError):
    pass


class ValidationError(PipelineError):
    """Bad input for a create/update command"""


class AIResponseError(PipelineError):
    """The AI service failed or returned something we can't use"""


class ConfigError(PipelineError):
    pass


def _json_list(value) -> List:
    if not value:
        return []
    if isinstance(value, list):
        return value
    return json.loads(value)


@dataclass
class Category:
    """Category with the keywords used for feed filtering"""

    id: int
    name: str
    slug: str
    keywords: List[str] = field(default_factory=list)
    is_active: bool = True
    created_at: float = 0.0
    updated_at: Optional[float] = None

    @classmethod
    def from_row(cls, row) -> 'Category':
        return cls(
            id=row['id'],
            name=row['name'],
            slug=row['slug'],
            keywords=_json_list(row['keywords']),
            is_active=bool(row['is_active']),
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )


@dataclass
class Producer:
    """Feed source with its own poll schedule and target category"""

    id: int
    name: str
    url: str
    category_id: int
    is_active: bool
    poll_frequency_minutes: int
    number_of_articles: int
    created_at: float = 0.0
    updated_at: float = 0.0
    last_polled_at: Optional[float] = None
    next_run_at: Optional[float] = None
    last_run_success: Optional[bool] = None
    last_run_feed_status: Optional[str] = None
    last_run_category_status: Optional[str] = None
    last_run_articles_found: int = 0
    last_run_articles_queued: int = 0
    last_run_articles: List[Dict] = field(default_factory=list)
    last_run_error: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'Producer':
        success = row['last_run_success']
        return cls(
            id=row['id'],
            name=row['name'],
            url=row['url'],
            category_id=row['category_id'],
            is_active=bool(row['is_active']),
            poll_frequency_minutes=row['poll_frequency_minutes'],
            number_of_articles=row['number_of_articles'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
            last_polled_at=row['last_polled_at'],
            next_run_at=row['next_run_at'],
            last_run_success=None if success is None else bool(success),
            last_run_feed_status=row['last_run_feed_status'],
            last_run_category_status=row['last_run_category_status'],
            last_run_articles_found=row['last_run_articles_found'] or 0,
            last_run_articles_queued=row['last_run_articles_queued'] or 0,
            last_run_articles=_json_list(row['last_run_articles']),
            last_run_error=row['last_run_error'],
        )


@dataclass
class QueueItem:
    """Matched feed article waiting for (or done with) AI processing"""

    id: int
    producer_id: int
    title: str
    description: str
    url: str
    published_at: float
    rss_categories: List[str] = field(default_factory=list)
    status: str = QUEUE_WAITING
    retry_count: int = 0
    error_message: Optional[str] = None
    generated_article_id: Optional[int] = None
    created_at: float = 0.0
    updated_at: float = 0.0
    producer_name: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'QueueItem':
        keys = row.keys()
        return cls(
            id=row['id'],
            producer_id=row['producer_id'],
            title=row['title'],
            description=row['description'],
            url=row['url'],
            published_at=row['published_at'],
            rss_categories=_json_list(row['rss_categories']),
            status=row['status'],
            retry_count=row['retry_count'],
            error_message=row['error_message'],
            generated_article_id=row['generated_article_id'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
            producer_name=row['producer_name'] if 'producer_name' in keys else None,
        )


@dataclass
class Article:
    """Generated article awaiting or past human approval"""

    id: int
    title: str
    body: str
    excerpt: str
    category_id: int
    topics: List[str] = field(default_factory=list)
    source_urls: List[str] = field(default_factory=list)
    image_prompts: List[str] = field(default_factory=list)
    is_auto_generated: bool = True
    status: str = ARTICLE_PENDING
    view_count: int = 0
    queue_item_id: Optional[int] = None
    created_at: float = 0.0
    updated_at: float = 0.0

    @classmethod
    def from_row(cls, row) -> 'Article':
        return cls(
            id=row['id'],
            title=row['title'],
            body=row['body'],
            excerpt=row['excerpt'],
            category_id=row['category_id'],
            topics=_json_list(row['topics']),
            source_urls=_json_list(row['source_urls']),
            image_prompts=_json_list(row['image_prompts']),
            is_auto_generated=bool(row['is_auto_generated']),
            status=row['status'],
            view_count=row['view_count'],
            queue_item_id=row['queue_item_id'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )


@dataclass
class FeedArticle:
    """Single item parsed out of an RSS or Atom feed"""

    title: str
    url: str
    published_at: str  # ISO-8601
    excerpt: str
    categories: List[str] = field(default_factory=list)

    def summary(self) -> Dict:
        return {
            'title': self.title,
            'url': self.url,
            'published_at': self.published_at,
            'excerpt': self.excerpt,
        }


@dataclass
class FeedParseSuccess:
    feed_title: str
    feed_url: str
    category: Optional[str]
    date_fetched: str
    articles: List[FeedArticle]
    total_articles_parsed: int
    filtered_count: int
    status: str = 'success'


@dataclass
class FeedParseError:
    feed_url: str
    category: Optional[str]
    date_fetched: str
    message: str
    status: str = 'error'


FeedParseResult = Union[FeedParseSuccess, FeedParseError]


@dataclass
class RunResult:
    """Outcome of one producer run, mirrored onto the producer row"""

    producer_id: int
    success: bool
    feed_status: str
    category_status: Optional[str]
    articles_found: int
    articles_queued: int
    articles: List[FeedArticle] = field(default_factory=list)
    error: Optional[str] = None
    last_run: float = 0.0


@dataclass
class SweepResult:
    producers_due: int
    producers_run: int
    results: List[RunResult] = field(default_factory=list)
    failures: Dict[int, str] = field(default_factory=dict)


@dataclass
class BulkDeleteResult:
    success: bool
    success_count: int
    failed_count: int
    total_requested: int
    failed_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class DedupPlan:
    """Which of the selected queue items survive deduplication"""

    to_keep: List[QueueItem] = field(default_factory=list)
    to_delete: List[QueueItem] = field(default_factory=list)

    @property
    def delete_ids(self) -> List[int]:
        return [item.id for item in self.to_delete]


@dataclass
class AIArticleResult:
    """Structured article returned by the AI rewrite step"""

    title: str
    body: str
    excerpt: str
    category: Optional[str]
    source_urls: List[str] = field(default_factory=list)
    image_prompts: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)


@dataclass
class BatchResult:
    processed: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
    skipped: Dict[int, str] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.processed) + len(self.failed) + len(self.skipped)
