#!/usr/bin/env python3
"""
Category keyword filtering for parsed feed articles
An article is kept only when one of its RSS categories contains a configured
keyword as a whole word. Articles without RSS categories never match.
"""

import re
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern

NO_FILTER_VALUES = ('', 'all')


@lru_cache(maxsize=1024)
def keyword_pattern(keyword: str) -> Pattern:
    """Whole-word, case-insensitive pattern for one keyword"""
    return re.compile(rf"\b{re.escape(keyword.strip().lower())}\b", re.IGNORECASE)


def should_filter_category(category: Optional[str]) -> bool:
    """False when no category filter applies (None, blank or 'all')"""
    if category is None:
        return False
    return category.strip().lower() not in NO_FILTER_VALUES


def matches_keywords(rss_categories: Iterable[str], keywords: Iterable[str]) -> bool:
    """True when any RSS category contains any keyword as a whole word"""
    rss_categories = [c for c in (rss_categories or []) if c and c.strip()]
    if not rss_categories:
        return False

    patterns = [keyword_pattern(k) for k in keywords if k and k.strip()]
    for rss_category in rss_categories:
        value = rss_category.strip().lower()
        if any(pattern.search(value) for pattern in patterns):
            return True
    return False


def filter_articles_by_keywords(articles: List, keywords: Iterable[str]) -> List:
    """Keep articles whose `categories` match the keyword list"""
    keywords = list(keywords or [])
    return [a for a in articles if matches_keywords(a.categories, keywords)]
