#!/usr/bin/env python3
"""
Title similarity hashing for queue deduplication
Titles are reduced to a sorted set of significant tokens so that reworded
headlines about the same story produce the same key.
"""

import re
from collections import OrderedDict
from typing import Callable, Dict, List, Sequence

from fuzzywuzzy import fuzz

from pipeline_models import DedupPlan

# Common words ignored when building the key
STOPWORDS = frozenset([
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'is', 'are', 'was', 'were', 'be', 'been', 'have',
    'has', 'had', 'will', 'would', 'could', 'should', 'this', 'that',
    'these', 'those', 'from', 'up', 'out', 'down', 'off', 'over', 'under',
    'new', 'says', 'just', 'now', 'get', 'gets', 'got', 'how', 'why', 'what',
])

_PUNCTUATION = re.compile(r'[^\w\s]')


def _stem(word: str) -> str:
    """Fold simple inflections so 'unveils'/'unveiled' share a token"""
    if len(word) > 5 and word.endswith('ing'):
        return word[:-3]
    if len(word) > 4 and word.endswith('ed'):
        return word[:-2]
    if len(word) > 3 and word.endswith('s') and not word.endswith('ss'):
        return word[:-1]
    return word


def _significant(word: str) -> bool:
    return len(word) > 2 and word not in STOPWORDS


def title_tokens(title: str) -> List[str]:
    words = _PUNCTUATION.sub('', (title or '').lower()).split()
    tokens = []
    for word in words:
        if not _significant(word):
            continue
        stemmed = _stem(word)
        # "news" must not fold into the stopword "new"
        tokens.append(stemmed if _significant(stemmed) else word)
    return sorted(tokens)


def generate_title_hash(title: str) -> str:
    """Order-independent key for a headline, e.g. 'apple-iphone-unveil'"""
    return '-'.join(title_tokens(title))


def calculate_similarity(title1: str, title2: str) -> float:
    """Similarity between two titles from 0 to 1, compared on their hashed tokens"""
    hash1 = generate_title_hash(title1)
    hash2 = generate_title_hash(title2)
    if not hash1 or not hash2:
        return 0.0
    if hash1 == hash2:
        return 1.0
    return fuzz.token_sort_ratio(hash1.replace('-', ' '), hash2.replace('-', ' ')) / 100


def find_similar_groups(items: Sequence, threshold: float = 0.7,
                        title_of: Callable = lambda item: item.title) -> List[List]:
    """Group items whose titles score at least `threshold` against the group's first item"""
    groups = []
    grouped = set()

    for i, item in enumerate(items):
        if i in grouped:
            continue
        similar = [
            j for j in range(i + 1, len(items))
            if j not in grouped
            and calculate_similarity(title_of(item), title_of(items[j])) >= threshold
        ]
        grouped.add(i)
        if similar:
            grouped.update(similar)
            groups.append([item] + [items[j] for j in similar])

    return groups


def select_duplicates(items: Sequence) -> DedupPlan:
    """Split queue items into keep/delete by identical title hash.

    Within each group the most recently created item is kept. Titles that hash
    to nothing (only stopwords) are never treated as duplicates. Pure: nothing
    is deleted here.
    """
    groups: Dict[str, List] = OrderedDict()
    plan = DedupPlan()
    seen_ids = set()

    for item in items:
        if item.id in seen_ids:
            continue
        seen_ids.add(item.id)
        key = generate_title_hash(item.title)
        if not key:
            plan.to_keep.append(item)
            continue
        groups.setdefault(key, []).append(item)

    for group in groups.values():
        newest_first = sorted(group, key=lambda it: (it.created_at, it.id), reverse=True)
        plan.to_keep.append(newest_first[0])
        plan.to_delete.extend(newest_first[1:])

    return plan
