"""SQLite store for categories, producers, the RSS queue and generated articles."""
import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pipeline_models import (
    Article,
    Category,
    Producer,
    QueueItem,
    RunResult,
    ARTICLE_PENDING,
    CLAIMABLE_STATUSES,
    QUEUE_COMPLETED,
    QUEUE_FAILED,
    QUEUE_PROCESSING,
    QUEUE_STATUSES,
    QUEUE_WAITING,
)

JSON_COLUMNS = {
    'keywords', 'rss_categories', 'last_run_articles', 'topics', 'source_urls', 'image_prompts',
}

CATEGORY_COLUMNS = {'name', 'slug', 'keywords', 'is_active'}
PRODUCER_COLUMNS = {
    'name', 'url', 'category_id', 'is_active', 'poll_frequency_minutes', 'number_of_articles',
    'last_polled_at', 'next_run_at',
}
ARTICLE_COLUMNS = {
    'title', 'body', 'excerpt', 'category_id', 'topics', 'source_urls', 'image_prompts', 'status',
}

QUEUE_ORDERING = {
    'newest': 'q.created_at DESC, q.id DESC',
    'oldest': 'q.created_at ASC, q.id ASC',
    'title': 'q.title COLLATE NOCASE ASC, q.id ASC',
    'source': 'p.name COLLATE NOCASE ASC, q.created_at DESC',
    'published': 'q.published_at DESC, q.id DESC',
}


def _encode(column: str, value):
    if column in JSON_COLUMNS:
        return json.dumps(list(value or []))
    if isinstance(value, bool):
        return int(value)
    return value


class Database:
    """SQLite wrapper shared by every pipeline component.

    One connection is shared across threads; every statement runs under a lock
    so scheduler workers can write concurrently without tripping sqlite3.
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        slug TEXT UNIQUE NOT NULL,
        keywords TEXT NOT NULL DEFAULT '[]',
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at REAL NOT NULL,
        updated_at REAL
    );

    CREATE TABLE IF NOT EXISTS producers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        url TEXT NOT NULL,
        category_id INTEGER NOT NULL REFERENCES categories(id),
        is_active INTEGER NOT NULL DEFAULT 1,
        poll_frequency_minutes INTEGER NOT NULL,
        number_of_articles INTEGER NOT NULL,
        last_polled_at REAL,
        next_run_at REAL,
        last_run_success INTEGER,
        last_run_feed_status TEXT,
        last_run_category_status TEXT,
        last_run_articles_found INTEGER DEFAULT 0,
        last_run_articles_queued INTEGER DEFAULT 0,
        last_run_articles TEXT NOT NULL DEFAULT '[]',
        last_run_error TEXT,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    );

    CREATE TABLE IF NOT EXISTS queue_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        producer_id INTEGER NOT NULL REFERENCES producers(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        url TEXT NOT NULL,
        published_at REAL NOT NULL,
        rss_categories TEXT NOT NULL DEFAULT '[]',
        status TEXT NOT NULL DEFAULT 'waiting'
            CHECK (status IN ('waiting', 'processing', 'completed', 'failed')),
        retry_count INTEGER NOT NULL DEFAULT 0,
        error_message TEXT,
        generated_article_id INTEGER,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL,
        CHECK (status != 'completed' OR generated_article_id IS NOT NULL),
        CHECK (status != 'failed' OR (error_message IS NOT NULL AND retry_count >= 1))
    );

    CREATE TABLE IF NOT EXISTS articles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        body TEXT NOT NULL,
        excerpt TEXT NOT NULL DEFAULT '',
        category_id INTEGER NOT NULL REFERENCES categories(id),
        topics TEXT NOT NULL DEFAULT '[]',
        source_urls TEXT NOT NULL DEFAULT '[]',
        image_prompts TEXT NOT NULL DEFAULT '[]',
        is_auto_generated INTEGER NOT NULL DEFAULT 1,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'approved', 'rejected')),
        view_count INTEGER NOT NULL DEFAULT 0,
        queue_item_id INTEGER,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_producers_active ON producers(is_active);
    CREATE INDEX IF NOT EXISTS idx_producers_next_run ON producers(next_run_at);
    CREATE INDEX IF NOT EXISTS idx_producers_category ON producers(category_id);
    CREATE INDEX IF NOT EXISTS idx_queue_status ON queue_items(status);
    CREATE INDEX IF NOT EXISTS idx_queue_producer ON queue_items(producer_id);
    CREATE INDEX IF NOT EXISTS idx_queue_published ON queue_items(published_at);
    CREATE INDEX IF NOT EXISTS idx_articles_status ON articles(status);
    CREATE INDEX IF NOT EXISTS idx_articles_category ON articles(category_id);
    """

    def __init__(self, db_path: Path):
        """Open (or create) the database at db_path."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self.conn.executescript(self.SCHEMA)
            self.conn.commit()

    def fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def transaction(self):
        """Hold the lock for a multi-statement write; commit on success, roll back on error."""
        with self._lock:
            try:
                yield self.conn
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

    def _update(self, table: str, row_id: int, fields: Dict, allowed: set, now: float) -> bool:
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update {table} columns: {', '.join(sorted(unknown))}")
        if not fields:
            return self._exists(table, row_id)
        columns = sorted(fields)
        assignments = ', '.join(f"{col} = ?" for col in columns)
        params = [_encode(col, fields[col]) for col in columns] + [now, row_id]
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {assignments}, updated_at = ? WHERE id = ?", tuple(params)
            )
        return cursor.rowcount == 1

    def _exists(self, table: str, row_id: int) -> bool:
        return self.fetchone(f"SELECT 1 FROM {table} WHERE id = ?", (row_id,)) is not None

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def insert_category(self, name: str, slug: str, keywords: Iterable[str] = (),
                        is_active: bool = True, now: Optional[float] = None) -> int:
        now = now or time.time()
        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO categories (name, slug, keywords, is_active, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (name, slug, json.dumps(list(keywords)), int(is_active), now, now),
            )
        return cursor.lastrowid

    def get_category(self, category_id: int) -> Optional[Category]:
        row = self.fetchone("SELECT * FROM categories WHERE id = ?", (category_id,))
        return Category.from_row(row) if row else None

    def get_category_by_slug(self, slug: str) -> Optional[Category]:
        row = self.fetchone("SELECT * FROM categories WHERE slug = ?", (slug,))
        return Category.from_row(row) if row else None

    def find_category(self, name_or_slug: str) -> Optional[Category]:
        """Look a category up by slug, then by case-insensitive name."""
        key = name_or_slug.strip()
        category = self.get_category_by_slug(key.lower())
        if category:
            return category
        row = self.fetchone(
            "SELECT * FROM categories WHERE lower(name) = lower(?) ORDER BY id LIMIT 1", (key,)
        )
        return Category.from_row(row) if row else None

    def list_categories(self, active_only: bool = False) -> List[Category]:
        sql = "SELECT * FROM categories"
        if active_only:
            sql += " WHERE is_active = 1"
        rows = self.fetchall(sql + " ORDER BY name COLLATE NOCASE")
        return [Category.from_row(row) for row in rows]

    def update_category(self, category_id: int, now: Optional[float] = None, **fields) -> bool:
        return self._update('categories', category_id, fields, CATEGORY_COLUMNS, now or time.time())

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def insert_producer(self, name: str, url: str, category_id: int, is_active: bool,
                        poll_frequency_minutes: int, number_of_articles: int,
                        next_run_at: Optional[float], now: Optional[float] = None) -> int:
        now = now or time.time()
        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO producers
                   (name, url, category_id, is_active, poll_frequency_minutes,
                    number_of_articles, next_run_at, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (name, url, category_id, int(is_active), poll_frequency_minutes,
                 number_of_articles, next_run_at, now, now),
            )
        return cursor.lastrowid

    def get_producer(self, producer_id: int) -> Optional[Producer]:
        row = self.fetchone("SELECT * FROM producers WHERE id = ?", (producer_id,))
        return Producer.from_row(row) if row else None

    def list_producers(self, is_active: Optional[bool] = None,
                       category_id: Optional[int] = None) -> List[Producer]:
        clauses, params = [], []
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(int(is_active))
        if category_id is not None:
            clauses.append("category_id = ?")
            params.append(category_id)
        sql = "SELECT * FROM producers"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        rows = self.fetchall(sql + " ORDER BY created_at DESC, id DESC", tuple(params))
        return [Producer.from_row(row) for row in rows]

    def update_producer(self, producer_id: int, now: Optional[float] = None, **fields) -> bool:
        return self._update('producers', producer_id, fields, PRODUCER_COLUMNS, now or time.time())

    def delete_producer(self, producer_id: int) -> Optional[int]:
        """Delete a producer and its queue items. Returns queue items removed, None if missing."""
        with self.transaction() as conn:
            queued = conn.execute(
                "SELECT COUNT(*) FROM queue_items WHERE producer_id = ?", (producer_id,)
            ).fetchone()[0]
            cursor = conn.execute("DELETE FROM producers WHERE id = ?", (producer_id,))
            if cursor.rowcount == 0:
                return None
        return queued

    def get_due_producers(self, now: float) -> List[Producer]:
        rows = self.fetchall(
            """SELECT * FROM producers
               WHERE is_active = 1 AND next_run_at IS NOT NULL AND next_run_at <= ?
               ORDER BY next_run_at""",
            (now,),
        )
        return [Producer.from_row(row) for row in rows]

    def schedule_next_run(self, producer_id: int, base_time: float) -> bool:
        """Set next_run_at = base_time + poll frequency, only while the producer is still active.

        A disable that lands during an in-flight run clears next_run_at; the
        is_active condition keeps the finishing run from bringing it back.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """UPDATE producers
                   SET next_run_at = ? + poll_frequency_minutes * 60, updated_at = ?
                   WHERE id = ? AND is_active = 1""",
                (base_time, base_time, producer_id),
            )
        return cursor.rowcount == 1

    def claim_due_producer(self, producer_id: int, expected_next_run: float, base_time: float) -> bool:
        """Push next_run_at forward if it still holds the value the sweep saw.

        Overlapping sweeps race on this update; only one of them gets the run.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """UPDATE producers
                   SET next_run_at = ? + poll_frequency_minutes * 60, updated_at = ?
                   WHERE id = ? AND is_active = 1 AND next_run_at = ?""",
                (base_time, base_time, producer_id, expected_next_run),
            )
        return cursor.rowcount == 1

    def record_run_result(self, result: RunResult, now: Optional[float] = None) -> None:
        """Store a run summary and the poll time on the producer row."""
        now = now or time.time()
        with self.transaction() as conn:
            conn.execute(
                """UPDATE producers
                   SET last_polled_at = ?,
                       last_run_success = ?,
                       last_run_feed_status = ?,
                       last_run_category_status = ?,
                       last_run_articles_found = ?,
                       last_run_articles_queued = ?,
                       last_run_articles = ?,
                       last_run_error = ?,
                       updated_at = ?
                   WHERE id = ?""",
                (
                    result.last_run,
                    int(result.success),
                    result.feed_status,
                    result.category_status,
                    result.articles_found,
                    result.articles_queued,
                    json.dumps([a.summary() for a in result.articles]),
                    result.error,
                    now,
                    result.producer_id,
                ),
            )

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def insert_queue_items(self, producer_id: int, rows: List[Dict],
                           now: Optional[float] = None) -> List[int]:
        """Insert waiting queue rows for one producer in a single transaction."""
        now = now or time.time()
        ids = []
        with self.transaction() as conn:
            for row in rows:
                cursor = conn.execute(
                    """INSERT INTO queue_items
                       (producer_id, title, description, url, published_at, rss_categories,
                        status, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        producer_id,
                        row['title'],
                        row.get('description', ''),
                        row['url'],
                        row['published_at'],
                        json.dumps(list(row.get('rss_categories') or [])),
                        QUEUE_WAITING,
                        now,
                        now,
                    ),
                )
                ids.append(cursor.lastrowid)
        return ids

    def get_queue_item(self, item_id: int) -> Optional[QueueItem]:
        row = self.fetchone(
            """SELECT q.*, p.name AS producer_name FROM queue_items q
               LEFT JOIN producers p ON p.id = q.producer_id
               WHERE q.id = ?""",
            (item_id,),
        )
        return QueueItem.from_row(row) if row else None

    def list_queue_items(self, status: Optional[str] = None, producer_id: Optional[int] = None,
                         sort_by: str = 'newest', limit: Optional[int] = None) -> List[QueueItem]:
        if sort_by not in QUEUE_ORDERING:
            raise ValueError(f"Unknown sort option: {sort_by}")
        if status is not None and status not in QUEUE_STATUSES:
            raise ValueError(f"Unknown queue status: {status}")
        clauses, params = [], []
        if status is not None:
            clauses.append("q.status = ?")
            params.append(status)
        if producer_id is not None:
            clauses.append("q.producer_id = ?")
            params.append(producer_id)
        sql = """SELECT q.*, p.name AS producer_name FROM queue_items q
                 LEFT JOIN producers p ON p.id = q.producer_id"""
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY " + QUEUE_ORDERING[sort_by]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self.fetchall(sql, tuple(params))
        return [QueueItem.from_row(row) for row in rows]

    def delete_queue_item(self, item_id: int) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM queue_items WHERE id = ?", (item_id,))
        return cursor.rowcount == 1

    def queue_status_counts(self) -> Dict[str, int]:
        counts = {status: 0 for status in QUEUE_STATUSES}
        for row in self.fetchall("SELECT status, COUNT(*) AS n FROM queue_items GROUP BY status"):
            counts[row['status']] = row['n']
        return counts

    def claim_queue_item(self, item_id: int, now: Optional[float] = None) -> bool:
        """Atomically move an item from waiting/failed to processing.

        Returns False when the item is missing or already processing/completed.
        """
        placeholders = ', '.join('?' for _ in CLAIMABLE_STATUSES)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"""UPDATE queue_items SET status = ?, updated_at = ?
                    WHERE id = ? AND status IN ({placeholders})""",
                (QUEUE_PROCESSING, now or time.time(), item_id, *CLAIMABLE_STATUSES),
            )
        return cursor.rowcount == 1

    def complete_queue_item(self, item_id: int, article: Dict, now: Optional[float] = None) -> int:
        """Insert the generated article and mark the item completed in one transaction."""
        now = now or time.time()
        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO articles
                   (title, body, excerpt, category_id, topics, source_urls, image_prompts,
                    is_auto_generated, status, view_count, queue_item_id, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, 0, ?, ?, ?)""",
                (
                    article['title'],
                    article['body'],
                    article.get('excerpt', ''),
                    article['category_id'],
                    json.dumps(list(article.get('topics') or [])),
                    json.dumps(list(article.get('source_urls') or [])),
                    json.dumps(list(article.get('image_prompts') or [])),
                    ARTICLE_PENDING,
                    item_id,
                    now,
                    now,
                ),
            )
            article_id = cursor.lastrowid
            updated = conn.execute(
                """UPDATE queue_items
                   SET status = ?, generated_article_id = ?, error_message = NULL, updated_at = ?
                   WHERE id = ? AND status = ?""",
                (QUEUE_COMPLETED, article_id, now, item_id, QUEUE_PROCESSING),
            )
            if updated.rowcount != 1:
                raise sqlite3.IntegrityError(f"Queue item {item_id} is no longer processing")
        return article_id

    def fail_queue_item(self, item_id: int, error_message: str, now: Optional[float] = None) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                """UPDATE queue_items
                   SET status = ?, retry_count = retry_count + 1, error_message = ?, updated_at = ?
                   WHERE id = ?""",
                (QUEUE_FAILED, error_message or 'Unknown error', now or time.time(), item_id),
            )
        return cursor.rowcount == 1

    def reset_stale_processing(self, older_than: float, message: str,
                               now: Optional[float] = None) -> int:
        """Fail items stuck in processing since before older_than."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """UPDATE queue_items
                   SET status = ?, retry_count = retry_count + 1, error_message = ?, updated_at = ?
                   WHERE status = ? AND updated_at < ?""",
                (QUEUE_FAILED, message, now or time.time(), QUEUE_PROCESSING, older_than),
            )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    def get_article(self, article_id: int) -> Optional[Article]:
        row = self.fetchone("SELECT * FROM articles WHERE id = ?", (article_id,))
        return Article.from_row(row) if row else None

    def list_articles(self, status: Optional[str] = None, category_id: Optional[int] = None,
                      limit: Optional[int] = None) -> List[Article]:
        clauses, params = [], []
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if category_id is not None:
            clauses.append("category_id = ?")
            params.append(category_id)
        sql = "SELECT * FROM articles"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [Article.from_row(row) for row in self.fetchall(sql, tuple(params))]

    def update_article(self, article_id: int, now: Optional[float] = None, **fields) -> bool:
        return self._update('articles', article_id, fields, ARTICLE_COLUMNS, now or time.time())

    def delete_article(self, article_id: int) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM articles WHERE id = ?", (article_id,))
        return cursor.rowcount == 1

    def increment_view_count(self, article_id: int) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE articles SET view_count = view_count + 1 WHERE id = ?", (article_id,)
            )
        return cursor.rowcount == 1
