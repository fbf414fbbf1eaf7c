#!/usr/bin/env python3
"""
Feed fetching and parsing
Fetches RSS 2.0 / Atom feeds, normalizes entries into FeedArticle records,
and applies category keyword filtering. Failures come back as FeedParseError,
never as exceptions.
"""

import logging
import re
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urlparse

import feedparser
import requests
from bs4 import BeautifulSoup

from config_loader import get_request_headers, get_request_timeout
from keyword_filter import filter_articles_by_keywords, should_filter_category
from pipeline_models import (
    ConfigError,
    FeedArticle,
    FeedParseError,
    FeedParseResult,
    FeedParseSuccess,
)

logger = logging.getLogger(__name__)

DESCRIPTION_MAX_CHARS = 300
DEFAULT_TITLE = 'Untitled'
DEFAULT_EXCERPT = 'No description available'

RSS_URL_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r'/rss$', r'/feed$', r'/atom$', r'\.rss$', r'\.xml$', r'rss\.xml$', r'feed\.xml$',
        r'atom\.xml$', r'/rss/', r'/feed/', r'/feeds/',
    )
]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def strip_html(text: str) -> str:
    """Drop HTML tags and decode entities"""
    if not text:
        return ''
    return BeautifulSoup(text, 'html.parser').get_text()


def clean_text(text: str, max_length: int = 150) -> str:
    """Strip tags, decode entities and truncate with an ellipsis for display"""
    cleaned = strip_html(text).replace('\xa0', ' ')
    if len(cleaned) <= max_length:
        return cleaned.strip()
    return cleaned[:max_length].strip() + '...'


def _entry_link(entry, is_atom: bool) -> str:
    if is_atom:
        links = entry.get('links') or []
        for link in links:
            if link.get('rel') == 'alternate' or link.get('type') == 'text/html':
                if link.get('href'):
                    return link['href']
        if links and links[0].get('href'):
            return links[0]['href']
    return entry.get('link') or entry.get('id') or ''


def _entry_date(entry) -> str:
    """Publish date as ISO-8601; falls back to the raw string, then to now"""
    for key in ('published_parsed', 'updated_parsed'):
        parsed = entry.get(key)
        if parsed:
            return datetime(*parsed[:6], tzinfo=timezone.utc).isoformat()
    raw = entry.get('published') or entry.get('updated') or entry.get('date')
    return raw or _now_iso()


def _entry_description(entry, is_atom: bool) -> str:
    description = entry.get('summary') if is_atom else (entry.get('description') or entry.get('summary'))
    if not description:
        content = entry.get('content') or []
        if content:
            description = content[0].get('value', '')
    return description or DEFAULT_EXCERPT


def _entry_categories(entry) -> List[str]:
    categories = []
    for tag in entry.get('tags') or []:
        value = tag.get('term') or tag.get('label') or ''
        value = value.strip()
        if value:
            categories.append(value)
    return categories


def parse_entry(entry, is_atom: bool, max_chars: int = DESCRIPTION_MAX_CHARS) -> FeedArticle:
    """Normalize one feedparser entry"""
    title = (entry.get('title') or '').strip() or DEFAULT_TITLE
    description = strip_html(_entry_description(entry, is_atom))[:max_chars].strip()

    return FeedArticle(
        title=title,
        url=_entry_link(entry, is_atom).strip(),
        published_at=_entry_date(entry),
        excerpt=description or DEFAULT_EXCERPT,
        categories=_entry_categories(entry),
    )


def fetch_feed(url: str, max_articles: int = 10, category: Optional[str] = None,
               session=None, log: Optional[logging.Logger] = None) -> FeedParseResult:
    """Fetch a feed and parse its first max_articles items"""
    log = log or logger
    date_fetched = _now_iso()
    http = session or requests

    try:
        response = http.get(url, headers=get_request_headers(), timeout=get_request_timeout())
        response.raise_for_status()
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else '?'
        reason = e.response.reason if e.response is not None else str(e)
        log.warning(f"  ✗ {url}: HTTP {status}")
        return FeedParseError(url, category, date_fetched, f"HTTP {status}: {reason}")
    except requests.RequestException as e:
        log.warning(f"  ✗ {url}: {e}")
        return FeedParseError(url, category, date_fetched, str(e) or 'Failed to fetch feed')
    except ConfigError as e:
        return FeedParseError(url, category, date_fetched, str(e))

    parsed = feedparser.parse(response.content)
    version = parsed.get('version') or ''

    if not version:
        message = 'Invalid XML format' if parsed.get('bozo') else 'No RSS channel or Atom feed found'
        log.warning(f"  ✗ {url}: {message}")
        return FeedParseError(url, category, date_fetched, message)

    is_atom = version.startswith('atom')
    feed_title = parsed.feed.get('title') or 'Unknown Feed'

    entries = parsed.entries[:max_articles]
    articles = [parse_entry(entry, is_atom) for entry in entries]

    log.info(f"  ✓ {feed_title}: {len(articles)} of {len(parsed.entries)} items parsed ({version})")
    for article in articles:
        log.debug(f"    {article.title} [{', '.join(article.categories) or 'None'}]")

    return FeedParseSuccess(
        feed_title=feed_title,
        feed_url=url,
        category=category,
        date_fetched=date_fetched,
        articles=articles,
        total_articles_parsed=len(articles),
        filtered_count=len(articles),
    )


def analyze_feed(url: str, category: Optional[str] = None, max_articles: int = 10,
                 db=None, keywords: Optional[List[str]] = None, session=None,
                 log: Optional[logging.Logger] = None) -> FeedParseResult:
    """Fetch a feed and keep only items whose RSS categories match the category keywords.

    With no category (blank or "all") every parsed item passes through. Keywords
    come from `keywords` when given, otherwise from the category row in `db`.
    """
    log = log or logger
    result = fetch_feed(url, max_articles=max_articles, category=category, session=session, log=log)
    if isinstance(result, FeedParseError):
        return result

    if not should_filter_category(category):
        log.info("🌐 No category filtering applied")
        return result

    if keywords is None:
        record = db.find_category(category) if db is not None else None
        if record is None:
            log.warning(f"❌ Category not found in database: {category}")
            return FeedParseError(url, category, result.date_fetched,
                                  f'Category "{category}" not found in database')
        keywords = record.keywords

    matched = filter_articles_by_keywords(result.articles, keywords)
    log.info(f"🎯 {category}: {len(result.articles)} → {len(matched)} articles matched keywords")

    result.articles = matched
    result.filtered_count = len(matched)
    return result


def golden_article_present(result: FeedParseResult, golden_url: str) -> bool:
    """True when the reference article chosen during source setup is in the parsed feed"""
    if not isinstance(result, FeedParseSuccess) or not golden_url:
        return False
    target = golden_url.strip().rstrip('/')
    return any(a.url.strip().rstrip('/') == target for a in result.articles)


def is_valid_rss_url(url: str) -> bool:
    """Check the URL is http(s) and looks like a feed endpoint"""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return False
    path = parsed.path.lower()
    return (any(p.search(path) for p in RSS_URL_PATTERNS)
            or 'feed' in parsed.query or 'rss' in parsed.query)


def is_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def extract_domain(url: str) -> str:
    """Hostname without www. for display"""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return url
    return host.replace('www.', '') if host else url


def generate_rss_candidates(base_url: str) -> List[str]:
    """Common feed locations to try for a site"""
    parsed = urlparse(base_url)
    if not parsed.scheme or not parsed.netloc:
        return []
    base = f"{parsed.scheme}://{parsed.netloc}"
    paths = [
        '/rss', '/feed', '/rss.xml', '/feed.xml', '/atom.xml', '/feeds/all.atom.xml',
        '/index.xml', '/blog/rss', '/blog/feed', '/news/rss', '/news/feed',
    ]
    return [base + path for path in paths]


def discover_feed(site_url: str, session=None, log: Optional[logging.Logger] = None) -> Optional[str]:
    """Try the usual feed locations of a site and return the first one that parses"""
    log = log or logger
    for candidate in generate_rss_candidates(site_url):
        result = fetch_feed(candidate, max_articles=1, session=session, log=log)
        if isinstance(result, FeedParseSuccess):
            log.info(f"🔎 Found feed for {extract_domain(site_url)}: {candidate}")
            return candidate
    return None
