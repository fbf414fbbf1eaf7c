#!/usr/bin/env python3
"""
Headline Curator admin CLI
- Manage categories and producers (feed sources)
- Run producers now, or keep the scheduler sweeping for due ones
- Browse, search, deduplicate and process the RSS queue
- Review generated articles and export approved ones as RSS
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import article_store
import category_store
import producer_scheduler
import rss_queue
from ai_processor import build_client, process_queue_item, process_waiting_items
from config_loader import (
    CONFIG_DIR,
    REFRESH_INTERVALS,
    get_database_path,
    get_limit,
    load_system_config,
    refresh_interval_to_minutes,
    validate_config,
)
from feed_export import export_rss
from feed_fetcher import (
    analyze_feed,
    clean_text,
    discover_feed,
    extract_domain,
    golden_article_present,
    is_valid_rss_url,
)
from logging_config import setup_logging
from pipeline_db import Database
from pipeline_models import FeedParseError, PipelineError, QUEUE_STATUSES
from title_hash import find_similar_groups

logger = logging.getLogger('headline_curator')


def _fmt_time(ts: Optional[float]) -> str:
    if not ts:
        return '-'
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime('%Y-%m-%d %H:%M UTC')


def _category_id(db, value: str) -> int:
    if value.isdigit():
        return category_store.get_category(db, int(value)).id
    category = db.find_category(value)
    if category is None:
        raise PipelineError(f"Category not found: {value}")
    return category.id


def _frequency(args) -> Optional[int]:
    if getattr(args, 'interval', None):
        return refresh_interval_to_minutes(args.interval)
    return getattr(args, 'frequency', None)


# ----------------------------------------------------------------------
# init / config
# ----------------------------------------------------------------------

def cmd_init(db, args):
    counts = category_store.seed_categories(db)
    print(f"✅ Database ready at {db.db_path}")
    print(f"   Categories: {counts['created']} created, {counts['updated']} updated, "
          f"{counts['deactivated']} deactivated")


def cmd_config_validate(db, args):
    errors = validate_config()
    if not errors:
        print(f"✅ All configuration files in {CONFIG_DIR} are valid")
        return 0
    print("❌ Configuration errors found:")
    for filename, file_errors in errors.items():
        print(f"\n{filename}:")
        for error in file_errors:
            print(f"  - {error}")
    return 1


# ----------------------------------------------------------------------
# categories
# ----------------------------------------------------------------------

def cmd_categories_list(db, args):
    for category in db.list_categories(active_only=not args.all):
        state = '' if category.is_active else ' (inactive)'
        print(f"[{category.id}] {category.name} ({category.slug}){state}")
        print(f"    {', '.join(category.keywords) or 'no keywords'}")


def cmd_categories_add(db, args):
    category = category_store.create_category(db, args.name, args.keywords, slug=args.slug)
    print(f"➕ Created category [{category.id}] {category.name} ({category.slug})")


def cmd_categories_keywords(db, args):
    category_id = _category_id(db, args.category)
    category = db.get_category(category_id)
    keywords = list(category.keywords)
    if args.set is not None:
        keywords = args.set
    keywords += args.add or []
    removed = {k.lower() for k in (args.remove or [])}
    keywords = [k for k in keywords if k.lower() not in removed]
    category = category_store.set_keywords(db, category_id, keywords)
    print(f"🏷️ {category.name}: {', '.join(category.keywords) or 'no keywords'}")


# ----------------------------------------------------------------------
# producers
# ----------------------------------------------------------------------

def cmd_producers_list(db, args):
    is_active = True if args.active else None
    for entry in producer_scheduler.list_producers(db, is_active=is_active):
        p, category = entry['producer'], entry['category']
        health = producer_scheduler.feed_health_score(p)
        print(f"[{p.id}] {p.name} {'🟢' if p.is_active else '⚪'} "
              f"({category.name if category else 'no category'}, every {p.poll_frequency_minutes} min)")
        print(f"    {extract_domain(p.url)} | {p.url}")
        print(f"    last run: {_fmt_time(p.last_polled_at)}  next run: {_fmt_time(p.next_run_at)}  "
              f"health: {health['score']} ({health['status']})")
        if p.last_run_feed_status:
            print(f"    last result: feed {p.last_run_feed_status}, "
                  f"{p.last_run_articles_found} found, {p.last_run_articles_queued} queued"
                  + (f", error: {p.last_run_error}" if p.last_run_error else ''))


def cmd_producers_add(db, args):
    producer = producer_scheduler.create_producer(
        db,
        name=args.name,
        url=args.url,
        category_id=_category_id(db, args.category),
        is_active=not args.inactive,
        poll_frequency_minutes=_frequency(args) or get_limit('default_poll_frequency_minutes', 1440),
        number_of_articles=args.articles or get_limit('default_number_of_articles', 10),
    )
    print(f"➕ Created producer [{producer.id}] {producer.name}, next run {_fmt_time(producer.next_run_at)}")


def cmd_producers_edit(db, args):
    changes = {}
    if args.name is not None:
        changes['name'] = args.name
    if args.url is not None:
        changes['url'] = args.url
    if args.category is not None:
        changes['category_id'] = _category_id(db, args.category)
    if _frequency(args) is not None:
        changes['poll_frequency_minutes'] = _frequency(args)
    if args.articles is not None:
        changes['number_of_articles'] = args.articles
    producer = producer_scheduler.update_producer(db, args.producer_id, **changes)
    print(f"✏️ Updated producer [{producer.id}] {producer.name}")


def cmd_producers_toggle(db, args):
    producer = producer_scheduler.toggle_producer(db, args.producer_id, args.state == 'on')
    print(f"🔁 {producer.name} is now {'active' if producer.is_active else 'inactive'}")


def cmd_producers_delete(db, args):
    result = producer_scheduler.delete_producer(db, args.producer_id)
    print(f"🗑️ Deleted producer {args.producer_id} ({result['queue_items_deleted']} queue items removed)")


def cmd_producers_run(db, args):
    result = producer_scheduler.run_producer(db, args.producer_id)
    if not result.success:
        print(f"❌ Feed not live: {result.error}")
        return 1
    print(f"✅ {result.articles_found} articles matched, {result.articles_queued} queued")
    for article in result.articles:
        print(f"  - {article.title}")
    return 0


def cmd_producers_test(db, args):
    """Try a feed URL before saving it as a producer"""
    if not is_valid_rss_url(args.url):
        print(f"⚠️ {args.url} does not look like a feed URL")
    result = analyze_feed(args.url, category=args.category, max_articles=args.articles, db=db)
    if isinstance(result, FeedParseError):
        print(f"❌ {result.message}")
        if not is_valid_rss_url(args.url):
            found = discover_feed(args.url)
            if found:
                print(f"💡 Try the feed at {found}")
        return 1
    print(f"✅ {result.feed_title}: {result.filtered_count} of {result.total_articles_parsed} articles kept")
    for article in result.articles:
        print(f"  - {article.title} [{', '.join(article.categories) or 'no categories'}]")
        print(f"    {article.url}")
        print(f"    {clean_text(article.excerpt, max_length=120)}")
    if args.golden:
        found = golden_article_present(result, args.golden)
        print(f"{'✅' if found else '❌'} Reference article {'found' if found else 'not found'} in feed")
        return 0 if found else 1
    return 0


# ----------------------------------------------------------------------
# scheduler
# ----------------------------------------------------------------------

def cmd_sweep(db, args):
    sweep = producer_scheduler.run_due_producers(db, max_workers=args.workers)
    print(f"🕐 {sweep.producers_due} due, {sweep.producers_run} run, {len(sweep.failures)} failed")
    return 1 if sweep.failures else 0


def cmd_scheduler(db, args):
    try:
        producer_scheduler.run_scheduler(db, interval_seconds=args.interval,
                                         max_workers=args.workers, iterations=args.iterations)
    except KeyboardInterrupt:
        print("\n👋 Scheduler stopped")


# ----------------------------------------------------------------------
# queue
# ----------------------------------------------------------------------

def _print_queue(items):
    for item in items:
        retry = f" retries={item.retry_count}" if item.retry_count else ''
        print(f"[{item.id}] {item.status:<10} {item.title}")
        print(f"    {item.producer_name or item.producer_id} | {_fmt_time(item.published_at)}{retry}")
        if item.error_message:
            print(f"    error: {item.error_message}")


def cmd_queue_list(db, args):
    _print_queue(rss_queue.list_queue(db, status=args.status, producer_id=args.producer,
                                      sort_by=args.sort, limit=args.limit))


def cmd_queue_search(db, args):
    limit = args.limit or get_limit('queue_search_limit', 50)
    _print_queue(rss_queue.search_queue(db, args.term, limit=limit, status=args.status, sort_by=args.sort))


def cmd_queue_stats(db, args):
    stats = rss_queue.queue_stats(db)
    print(json.dumps(stats, indent=2))


def cmd_queue_delete(db, args):
    if len(args.item_ids) == 1:
        rss_queue.delete_queue_item(db, args.item_ids[0])
        print(f"🗑️ Deleted queue item {args.item_ids[0]}")
        return 0
    result = rss_queue.bulk_delete(db, args.item_ids)
    print(f"🗑️ Deleted {result.success_count} of {result.total_requested}")
    for error in result.errors:
        print(f"  ⚠️ {error}")
    return 0 if result.success else 1


def cmd_queue_dedup(db, args):
    item_ids = args.item_ids or [i.id for i in rss_queue.list_queue(db, status=args.status)]
    plan = rss_queue.find_duplicates(db, item_ids)
    print(f"🔄 {len(plan.to_keep)} to keep, {len(plan.to_delete)} duplicates")
    for item in plan.to_delete:
        print(f"  - [{item.id}] {item.title}")

    if args.similar:
        threshold = get_limit('similarity_threshold', 70) / 100
        for group in find_similar_groups(plan.to_keep, threshold=threshold):
            print(f"  ≈ similar: {', '.join(f'[{i.id}]' for i in group)} {group[0].title}")

    if plan.to_delete and args.confirm:
        result = rss_queue.confirm_deduplication(db, plan)
        print(f"🗑️ Removed {result.success_count} duplicates")
        return 0 if result.success else 1
    return 0


def cmd_queue_process(db, args):
    article = process_queue_item(db, args.item_id, build_client())
    print(f"✅ Created article [{article.id}] {article.title} (pending approval)")


def cmd_queue_process_batch(db, args):
    batch = process_waiting_items(db, build_client(), limit=args.limit or get_limit('batch_size', 5))
    for item_id, error in batch.failed.items():
        print(f"  ❌ [{item_id}] {error}")
    for item_id, reason in batch.skipped.items():
        print(f"  ⏭️ [{item_id}] {reason}")
    print(f"📊 {len(batch.processed)} processed, {len(batch.failed)} failed, {len(batch.skipped)} skipped")
    return 1 if batch.failed else 0


def cmd_queue_reset_stale(db, args):
    count = rss_queue.reset_stale_processing(db, args.minutes * 60)
    print(f"♻️ Reset {count} stale items")


# ----------------------------------------------------------------------
# articles / export
# ----------------------------------------------------------------------

def cmd_articles_list(db, args):
    category_id = _category_id(db, args.category) if args.category else None
    for article in article_store.list_articles(db, status=args.status, category_id=category_id,
                                               limit=args.limit):
        print(f"[{article.id}] {article.status:<8} {article.title}")
        print(f"    topics: {', '.join(article.topics) or '-'}  views: {article.view_count}")


def cmd_articles_show(db, args):
    article = article_store.get_article(db, args.article_id)
    print(f"# {article.title}\n")
    print(f"{article.excerpt}\n")
    print(article.body)
    print(f"\nSources: {', '.join(article.source_urls) or '-'}")


def cmd_articles_approve(db, args):
    article = article_store.approve_article(db, args.article_id)
    print(f"✅ Approved [{article.id}] {article.title}")


def cmd_articles_reject(db, args):
    article = article_store.reject_article(db, args.article_id)
    print(f"🚫 Rejected [{article.id}] {article.title}")


def cmd_articles_edit(db, args):
    changes = {}
    for field in ('title', 'excerpt'):
        if getattr(args, field) is not None:
            changes[field] = getattr(args, field)
    if args.body_file:
        changes['body'] = Path(args.body_file).read_text(encoding='utf-8')
    if args.topics is not None:
        changes['topics'] = args.topics
    if args.category:
        changes['category_id'] = _category_id(db, args.category)
    article = article_store.edit_article(db, args.article_id, **changes)
    print(f"✏️ Updated [{article.id}] {article.title}")


def cmd_articles_delete(db, args):
    article_store.delete_article(db, args.article_id)
    print(f"🗑️ Deleted article {args.article_id}")


def cmd_export(db, args):
    system = load_system_config()
    count = export_rss(
        db,
        args.output,
        category_slug=args.category,
        site_url=system.get('site_url', 'https://example.com'),
        site_title=system.get('site_title', 'Curated Headlines'),
        max_items=args.limit or get_limit('export_max_items', 50),
    )
    print(f"✅ Exported {count} articles to {args.output}")


# ----------------------------------------------------------------------
# parser
# ----------------------------------------------------------------------

def _add_frequency_args(parser):
    group = parser.add_mutually_exclusive_group()
    group.add_argument('--frequency', type=int, help='Poll frequency in minutes')
    group.add_argument('--interval', choices=list(REFRESH_INTERVALS), help='Refresh preset')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='headline-curator', description="Headline Curator admin CLI")
    parser.add_argument('--db', type=Path, default=None, help='Database path (default from config)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug output on console')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('init', help='Create the database and seed categories').set_defaults(func=cmd_init)

    config = sub.add_parser('config', help='Configuration').add_subparsers(dest='action', required=True)
    config.add_parser('validate').set_defaults(func=cmd_config_validate)

    # categories
    categories = sub.add_parser('categories', help='Category keywords').add_subparsers(dest='action', required=True)
    p = categories.add_parser('list')
    p.add_argument('--all', action='store_true', help='Include inactive categories')
    p.set_defaults(func=cmd_categories_list)
    p = categories.add_parser('add')
    p.add_argument('name')
    p.add_argument('keywords', nargs='*')
    p.add_argument('--slug')
    p.set_defaults(func=cmd_categories_add)
    p = categories.add_parser('keywords')
    p.add_argument('category', help='Category id, slug or name')
    p.add_argument('--set', nargs='*')
    p.add_argument('--add', nargs='+')
    p.add_argument('--remove', nargs='+')
    p.set_defaults(func=cmd_categories_keywords)

    # producers
    producers = sub.add_parser('producers', help='Feed sources').add_subparsers(dest='action', required=True)
    p = producers.add_parser('list')
    p.add_argument('--active', action='store_true')
    p.set_defaults(func=cmd_producers_list)
    p = producers.add_parser('add')
    p.add_argument('name')
    p.add_argument('url')
    p.add_argument('category', help='Category id, slug or name')
    p.add_argument('--articles', type=int)
    p.add_argument('--inactive', action='store_true')
    _add_frequency_args(p)
    p.set_defaults(func=cmd_producers_add)
    p = producers.add_parser('edit')
    p.add_argument('producer_id', type=int)
    p.add_argument('--name')
    p.add_argument('--url')
    p.add_argument('--category')
    p.add_argument('--articles', type=int)
    _add_frequency_args(p)
    p.set_defaults(func=cmd_producers_edit)
    p = producers.add_parser('toggle')
    p.add_argument('producer_id', type=int)
    p.add_argument('state', choices=['on', 'off'])
    p.set_defaults(func=cmd_producers_toggle)
    p = producers.add_parser('delete')
    p.add_argument('producer_id', type=int)
    p.set_defaults(func=cmd_producers_delete)
    p = producers.add_parser('run', help='Run a producer now')
    p.add_argument('producer_id', type=int)
    p.set_defaults(func=cmd_producers_run)
    p = producers.add_parser('test', help='Fetch and filter a feed without saving anything')
    p.add_argument('url')
    p.add_argument('--category', default=None)
    p.add_argument('--articles', type=int, default=10)
    p.add_argument('--golden', help='Article URL that should appear in the feed')
    p.set_defaults(func=cmd_producers_test)

    # scheduler
    scheduler_config = load_system_config().get('scheduler', {})
    p = sub.add_parser('sweep', help='Run all due producers once')
    p.add_argument('--workers', type=int, default=scheduler_config.get('max_workers', 4))
    p.set_defaults(func=cmd_sweep)
    p = sub.add_parser('scheduler', help='Sweep for due producers periodically')
    p.add_argument('--interval', type=int, default=scheduler_config.get('interval_seconds', 60))
    p.add_argument('--workers', type=int, default=scheduler_config.get('max_workers', 4))
    p.add_argument('--iterations', type=int, default=None)
    p.set_defaults(func=cmd_scheduler)

    # queue
    queue = sub.add_parser('queue', help='RSS queue').add_subparsers(dest='action', required=True)
    p = queue.add_parser('list')
    p.add_argument('--status', choices=QUEUE_STATUSES)
    p.add_argument('--producer', type=int)
    p.add_argument('--sort', choices=rss_queue.SORT_OPTIONS, default='newest')
    p.add_argument('--limit', type=int)
    p.set_defaults(func=cmd_queue_list)
    p = queue.add_parser('search')
    p.add_argument('term')
    p.add_argument('--status', choices=QUEUE_STATUSES, default='waiting')
    p.add_argument('--sort', choices=rss_queue.SORT_OPTIONS, default='newest')
    p.add_argument('--limit', type=int)
    p.set_defaults(func=cmd_queue_search)
    queue.add_parser('stats').set_defaults(func=cmd_queue_stats)
    p = queue.add_parser('delete')
    p.add_argument('item_ids', type=int, nargs='+')
    p.set_defaults(func=cmd_queue_delete)
    p = queue.add_parser('dedup', help='Find (and with --confirm delete) duplicate queue items')
    p.add_argument('item_ids', type=int, nargs='*')
    p.add_argument('--status', choices=QUEUE_STATUSES, default='waiting')
    p.add_argument('--similar', action='store_true', help='Also report fuzzy-similar titles')
    p.add_argument('--confirm', action='store_true')
    p.set_defaults(func=cmd_queue_dedup)
    p = queue.add_parser('process', help='Generate an article from one queue item')
    p.add_argument('item_id', type=int)
    p.set_defaults(func=cmd_queue_process)
    p = queue.add_parser('process-batch', help='Generate articles for the oldest waiting items')
    p.add_argument('--limit', type=int)
    p.set_defaults(func=cmd_queue_process_batch)
    p = queue.add_parser('reset-stale', help='Fail items stuck in processing')
    p.add_argument('--minutes', type=int, default=scheduler_config.get('stale_processing_minutes', 30))
    p.set_defaults(func=cmd_queue_reset_stale)

    # articles
    articles = sub.add_parser('articles', help='Generated articles').add_subparsers(dest='action', required=True)
    p = articles.add_parser('list')
    p.add_argument('--status', choices=['pending', 'approved', 'rejected'])
    p.add_argument('--category')
    p.add_argument('--limit', type=int)
    p.set_defaults(func=cmd_articles_list)
    for name, func in (('show', cmd_articles_show), ('approve', cmd_articles_approve),
                       ('reject', cmd_articles_reject), ('delete', cmd_articles_delete)):
        p = articles.add_parser(name)
        p.add_argument('article_id', type=int)
        p.set_defaults(func=func)
    p = articles.add_parser('edit')
    p.add_argument('article_id', type=int)
    p.add_argument('--title')
    p.add_argument('--excerpt')
    p.add_argument('--body-file')
    p.add_argument('--topics', nargs='*')
    p.add_argument('--category')
    p.set_defaults(func=cmd_articles_edit)

    p = sub.add_parser('export', help='Write approved articles as an RSS file')
    p.add_argument('output', nargs='?', default='feeds/headlines.xml')
    p.add_argument('--category', help='Category slug')
    p.add_argument('--limit', type=int)
    p.set_defaults(func=cmd_export)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    system = load_system_config()
    log_dir = system.get('log_dir')
    setup_logging(
        log_dir=CONFIG_DIR.parent / log_dir if log_dir else None,
        retention_days=system.get('log_retention_days', 30),
        verbose=args.verbose,
    )

    db = Database(args.db or get_database_path())
    try:
        return args.func(db, args) or 0
    except PipelineError as e:
        logger.error(f"❌ {e}")
        return 1
    finally:
        db.close()


if __name__ == '__main__':
    sys.exit(main())
