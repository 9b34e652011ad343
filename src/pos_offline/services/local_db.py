"""
local_db.py - SQLite Store for Offline POS Records

This module owns the single SQLite connection of the POS client. It holds
the record collections (transactions, menuItems, customers), the resource
cache tables, the pending sync queue, activity logs and the settings blob.

All SQLite work runs on one dedicated worker thread so callers on the
event loop never block.
"""

import asyncio
import json
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from ..config import DATA_DIR
from ..errors import StoreError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("LocalDB")

DB_PATH = DATA_DIR / "local.db"

COLLECTIONS = ("transactions", "menuItems", "customers")


class StoreHandle:
    """An open connection together with the collections it serves."""

    def __init__(self, connection: sqlite3.Connection, collections):
        self.connection = connection
        self.collections = tuple(collections)


class LocalDatabase:
    """SQLite database manager for offline POS storage."""

    def __init__(self, db_path=None):
        self.db_path = str(db_path or DB_PATH)
        self._handle: Optional[StoreHandle] = None
        self._opening: Optional[asyncio.Future] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    # ==================== Connection ====================

    async def _run(self, fn, *args):
        """Run a blocking SQLite call on the worker thread."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="LocalDB")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, partial(fn, *args))
        except (sqlite3.Error, OSError) as e:
            raise StoreError(str(e)) from e
        except ValueError as e:
            # Stored JSON that no longer decodes
            raise StoreError(f"Corrupted row: {e}") from e

    async def open(self) -> StoreHandle:
        """
        Open the database, creating missing tables on first use.

        Concurrent callers share a single in-flight open and all receive
        the same handle. A failed open is retried on the next call.
        """
        if self._handle is not None:
            return self._handle

        if self._opening is None:
            self._opening = asyncio.ensure_future(self._open())
        opening = self._opening

        try:
            return await asyncio.shield(opening)
        except Exception:
            if self._opening is opening:
                self._opening = None
            raise

    async def _open(self) -> StoreHandle:
        handle = await self._run(self._connect)
        self._handle = handle
        return handle

    def _connect(self) -> StoreHandle:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            self._init_db(conn)
        except sqlite3.Error:
            conn.close()
            raise
        return StoreHandle(conn, COLLECTIONS)

    def _init_db(self, conn: sqlite3.Connection):
        """Initialize database schema if tables don't exist."""
        cursor = conn.cursor()

        # Record collections, keyed by the JSON-encoded record id
        for name in COLLECTIONS:
            cursor.execute(f'''
                CREATE TABLE IF NOT EXISTS "{name}" (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
            ''')

        # Resource cache, one row per (generation, method, url)
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS cache_entries (
                generation INTEGER NOT NULL,
                method TEXT NOT NULL,
                url TEXT NOT NULL,
                status INTEGER NOT NULL,
                headers TEXT NOT NULL,
                body BLOB NOT NULL,
                stored_at TEXT NOT NULL,
                PRIMARY KEY (generation, method, url)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS cache_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        ''')

        # Pending sync items, flushed in seq order
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS sync_queue (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                collection TEXT NOT NULL,
                record TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS activity_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                status TEXT DEFAULT 'pending',
                details TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        ''')

        conn.commit()
        logger.info(f"SQLite database initialized at: {self.db_path}")

    async def close(self):
        """Close the connection and stop the worker thread."""
        handle = self._handle
        self._handle = None
        self._opening = None

        if handle is not None:
            await self._run(handle.connection.close)
            logger.info("SQLite connection closed")

        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ==================== Record CRUD ====================

    @staticmethod
    def _table(collection: str) -> str:
        if collection not in COLLECTIONS:
            raise StoreError(f"Unknown collection: {collection}")
        return f'"{collection}"'

    @staticmethod
    def _key(record_id) -> str:
        if isinstance(record_id, bool) or not isinstance(record_id, (str, int)):
            raise StoreError(f"Invalid record id: {record_id!r}")
        return json.dumps(record_id)

    def _encode(self, record: Dict) -> tuple:
        if not isinstance(record, dict) or 'id' not in record:
            raise StoreError("Record must be an object with an 'id'")
        try:
            return self._key(record['id']), json.dumps(record)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Record is not serializable: {e}") from e

    async def put(self, collection: str, record: Dict):
        """Insert or replace a record by its id."""
        table = self._table(collection)
        key, data = self._encode(record)
        handle = await self.open()
        await self._run(self._put_rows, handle.connection, table, [(key, data)])

    async def put_many(self, collection: str, records: List[Dict]) -> int:
        """Upsert several records in one SQLite transaction."""
        table = self._table(collection)
        rows = [self._encode(record) for record in records]
        handle = await self.open()
        await self._run(self._put_rows, handle.connection, table, rows)
        return len(rows)

    @staticmethod
    def _put_rows(conn, table, rows):
        with conn:
            conn.executemany(f'INSERT OR REPLACE INTO {table} (key, data) VALUES (?, ?)', rows)

    async def get_all(self, collection: str) -> List[Dict]:
        """Get every record of a collection (ordered by key)."""
        table = self._table(collection)
        handle = await self.open()
        return await self._run(self._get_all, handle.connection, table)

    @staticmethod
    def _get_all(conn, table):
        rows = conn.execute(f'SELECT data FROM {table} ORDER BY key').fetchall()
        return [json.loads(row['data']) for row in rows]

    async def get(self, collection: str, record_id) -> Optional[Dict]:
        """Get one record by id, or None."""
        table = self._table(collection)
        key = self._key(record_id)
        handle = await self.open()
        return await self._run(self._get, handle.connection, table, key)

    @staticmethod
    def _get(conn, table, key):
        row = conn.execute(f'SELECT data FROM {table} WHERE key = ?', (key,)).fetchone()
        return json.loads(row['data']) if row else None

    # ==================== Resource Cache ====================

    async def get_cache_generation(self) -> Optional[int]:
        """Get the cache generation currently stored, if any."""
        handle = await self.open()
        return await self._run(self._get_cache_generation, handle.connection)

    @staticmethod
    def _get_cache_generation(conn):
        row = conn.execute("SELECT value FROM cache_meta WHERE key = 'generation'").fetchone()
        return int(row['value']) if row else None

    async def adopt_cache_generation(self, generation: int) -> int:
        """
        Drop every cache entry not belonging to `generation` and record it
        as the current generation, in one transaction.

        Returns:
            Number of purged entries
        """
        handle = await self.open()
        return await self._run(self._adopt_cache_generation, handle.connection, generation)

    @staticmethod
    def _adopt_cache_generation(conn, generation):
        with conn:
            cursor = conn.execute('DELETE FROM cache_entries WHERE generation != ?', (generation,))
            conn.execute(
                "INSERT OR REPLACE INTO cache_meta (key, value) VALUES ('generation', ?)",
                (str(generation),)
            )
        return cursor.rowcount

    async def cache_match(self, generation: int, method: str, url: str) -> Optional[Dict]:
        handle = await self.open()
        return await self._run(self._cache_match, handle.connection, generation, method, url)

    @staticmethod
    def _cache_match(conn, generation, method, url):
        row = conn.execute('''
            SELECT url, status, headers, body, stored_at
            FROM cache_entries
            WHERE generation = ? AND method = ? AND url = ?
        ''', (generation, method, url)).fetchone()
        if row is None:
            return None
        return {
            'url': row['url'],
            'status': row['status'],
            'headers': json.loads(row['headers']),
            'body': bytes(row['body']),
            'stored_at': row['stored_at'],
        }

    async def cache_put(self, generation: int, method: str, url: str,
                        status: int, headers: Dict[str, str], body: bytes):
        handle = await self.open()
        stored_at = datetime.utcnow().isoformat() + "Z"
        await self._run(
            self._cache_put, handle.connection,
            (generation, method, url, status, json.dumps(headers), sqlite3.Binary(body), stored_at)
        )

    @staticmethod
    def _cache_put(conn, row):
        with conn:
            conn.execute('''
                INSERT OR REPLACE INTO cache_entries
                (generation, method, url, status, headers, body, stored_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            ''', row)

    async def cache_count(self, generation: Optional[int] = None) -> int:
        """Count cache entries, optionally for one generation only."""
        handle = await self.open()
        return await self._run(self._cache_count, handle.connection, generation)

    @staticmethod
    def _cache_count(conn, generation):
        if generation is None:
            return conn.execute('SELECT COUNT(*) FROM cache_entries').fetchone()[0]
        return conn.execute(
            'SELECT COUNT(*) FROM cache_entries WHERE generation = ?', (generation,)
        ).fetchone()[0]

    # ==================== Sync Queue ====================

    async def enqueue_sync_item(self, collection: str, record: Dict, created_at: str) -> int:
        """
        Append a pending sync item.

        Returns:
            Queue sequence number of the new item
        """
        self._table(collection)
        try:
            data = json.dumps(record)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Record is not serializable: {e}") from e
        handle = await self.open()
        return await self._run(self._enqueue_sync_item, handle.connection, collection, data, created_at)

    @staticmethod
    def _enqueue_sync_item(conn, collection, data, created_at):
        with conn:
            cursor = conn.execute('''
                INSERT INTO sync_queue (collection, record, created_at)
                VALUES (?, ?, ?)
            ''', (collection, data, created_at))
        return cursor.lastrowid

    async def get_pending_sync_items(self) -> List[Dict]:
        """Get all pending sync items in enqueue order."""
        handle = await self.open()
        return await self._run(self._get_pending_sync_items, handle.connection)

    @staticmethod
    def _get_pending_sync_items(conn):
        rows = conn.execute('''
            SELECT seq, collection, record, created_at
            FROM sync_queue
            ORDER BY seq ASC
        ''').fetchall()
        return [
            {
                'seq': row['seq'],
                'collection': row['collection'],
                'record': json.loads(row['record']),
                'created_at': row['created_at'],
            }
            for row in rows
        ]

    async def remove_sync_item(self, seq: int):
        handle = await self.open()
        await self._run(self._remove_sync_item, handle.connection, seq)

    @staticmethod
    def _remove_sync_item(conn, seq):
        with conn:
            conn.execute('DELETE FROM sync_queue WHERE seq = ?', (seq,))

    async def get_pending_count(self) -> int:
        """Get count of pending sync items."""
        handle = await self.open()
        return await self._run(self._get_pending_count, handle.connection)

    @staticmethod
    def _get_pending_count(conn):
        return conn.execute('SELECT COUNT(*) FROM sync_queue').fetchone()[0]

    # ==================== Settings ====================

    async def get_settings(self) -> Dict[str, Any]:
        handle = await self.open()
        return await self._run(self._get_settings, handle.connection)

    @staticmethod
    def _get_settings(conn):
        row = conn.execute("SELECT value FROM settings WHERE key = 'settings'").fetchone()
        return json.loads(row['value']) if row else {}

    async def save_settings(self, settings: Dict[str, Any]):
        try:
            data = json.dumps(settings)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Settings are not serializable: {e}") from e
        handle = await self.open()
        await self._run(self._save_settings, handle.connection, data)

    @staticmethod
    def _save_settings(conn, data):
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES ('settings', ?)", (data,)
            )

    # ==================== Activity Logging ====================

    async def log_activity(self, event_type: str, status: str = 'pending', details: str = None):
        """Log a sync or cache lifecycle event."""
        handle = await self.open()
        await self._run(self._log_activity, handle.connection, event_type, status, details)

    @staticmethod
    def _log_activity(conn, event_type, status, details):
        with conn:
            conn.execute('''
                INSERT INTO activity_logs (event_type, status, details)
                VALUES (?, ?, ?)
            ''', (event_type, status, details))

    async def get_recent_logs(self, limit: int = 50) -> List[Dict]:
        """Get recent activity logs, newest first."""
        handle = await self.open()
        return await self._run(self._get_recent_logs, handle.connection, limit)

    @staticmethod
    def _get_recent_logs(conn, limit):
        rows = conn.execute('''
            SELECT * FROM activity_logs
            ORDER BY id DESC
            LIMIT ?
        ''', (limit,)).fetchall()
        return [dict(row) for row in rows]
