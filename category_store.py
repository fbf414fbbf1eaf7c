#!/usr/bin/env python3
"""
Category keyword store
Categories map a name/slug to the keyword list used by the feed filter.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional

from config_loader import get_seed_categories
from pipeline_models import Category, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def slugify(name: str) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', (name or '').lower()).strip('-')
    return slug


def _clean_keywords(keywords: Iterable[str]) -> List[str]:
    seen = set()
    cleaned = []
    for keyword in keywords or []:
        keyword = (keyword or '').strip()
        if keyword and keyword.lower() not in seen:
            seen.add(keyword.lower())
            cleaned.append(keyword)
    return cleaned


def create_category(db, name: str, keywords: Iterable[str] = (), slug: Optional[str] = None,
                    is_active: bool = True) -> Category:
    name = (name or '').strip()
    if not name:
        raise ValidationError("Category name is required")
    slug = slug or slugify(name)
    if db.get_category_by_slug(slug):
        raise ValidationError(f"Category slug already exists: {slug}")
    category_id = db.insert_category(name, slug, _clean_keywords(keywords), is_active)
    return db.get_category(category_id)


def get_category(db, category_id: int) -> Category:
    category = db.get_category(category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")
    return category


def get_category_keywords(db, slug: str) -> Dict:
    """Keywords for an active category looked up by slug"""
    category = db.get_category_by_slug(slug)
    if category is None or not category.is_active:
        raise NotFoundError(f"Category not found: {slug}")
    return {'name': category.name, 'slug': category.slug, 'keywords': category.keywords}


def set_keywords(db, category_id: int, keywords: Iterable[str]) -> Category:
    get_category(db, category_id)
    db.update_category(category_id, keywords=_clean_keywords(keywords))
    return db.get_category(category_id)


def set_active(db, category_id: int, is_active: bool) -> Category:
    get_category(db, category_id)
    db.update_category(category_id, is_active=is_active)
    return db.get_category(category_id)


def seed_categories(db, seeds: Optional[List[Dict]] = None) -> Dict:
    """Create or refresh the predefined categories and deactivate any others"""
    seeds = seeds if seeds is not None else get_seed_categories()
    existing = {c.slug: c for c in db.list_categories()}
    seed_slugs = {seed['slug'] for seed in seeds}
    created = updated = deactivated = 0

    for seed in seeds:
        keywords = _clean_keywords(seed.get('keywords', []))
        current = existing.get(seed['slug'])
        if current:
            db.update_category(current.id, name=seed['name'], keywords=keywords, is_active=True)
            updated += 1
        else:
            db.insert_category(seed['name'], seed['slug'], keywords, True)
            created += 1
            logger.info(f"🌱 Created category {seed['name']} ({len(keywords)} keywords)")

    for slug, category in existing.items():
        if slug not in seed_slugs and category.is_active:
            db.update_category(category.id, is_active=False)
            deactivated += 1

    logger.info(f"Seeding complete. Created: {created}, Updated: {updated}, Deactivated: {deactivated}")
    return {'created': created, 'updated': updated, 'deactivated': deactivated, 'total': len(seeds)}
