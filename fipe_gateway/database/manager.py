"""Database manager: connection pooling, schema, thread safety."""

import random
import sqlite3
import threading
import time
import uuid
from typing import Any, List

from fipe_gateway.utils.logger import get_logger

SCHEMA = [
    # Cached upstream answers, keyed by CacheKey.digest()
    """CREATE TABLE IF NOT EXISTS cache_entries (
        cache_key TEXT PRIMARY KEY,
        key_data TEXT NOT NULL,
        operation TEXT NOT NULL,
        value_data BLOB NOT NULL,
        created_at REAL NOT NULL,
        expires_at REAL NOT NULL,
        access_count INTEGER DEFAULT 0,
        last_accessed REAL NOT NULL
    );""",
    # One row per provider day
    """CREATE TABLE IF NOT EXISTS quota_counters (
        day TEXT PRIMARY KEY,
        call_count INTEGER NOT NULL DEFAULT 0
    );""",
    # One row per charged upstream call
    """CREATE TABLE IF NOT EXISTS api_calls (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        day TEXT NOT NULL,
        endpoint TEXT NOT NULL,
        caller TEXT NOT NULL,
        called_at TEXT NOT NULL
    );""",
    # Indexes
    "CREATE INDEX IF NOT EXISTS idx_cache_expires " "ON cache_entries(expires_at);",
    "CREATE INDEX IF NOT EXISTS idx_cache_last_accessed " "ON cache_entries(last_accessed);",
    "CREATE INDEX IF NOT EXISTS idx_api_calls_day " "ON api_calls(day, endpoint);",
]

_PRAGMAS = [
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA temp_store=memory",
    "PRAGMA busy_timeout=5000",
]


class DatabaseManager:
    """Manages SQLite database operations with thread safety and connection pooling.

    ``":memory:"`` gets a uniquely named shared-cache in-memory database so
    that pooled connections see the same data while separate managers stay
    isolated from each other.
    """

    def __init__(self, database_path: str, pool_size: int = 5):
        self.logger = get_logger("database.manager")
        if database_path == ":memory:":
            self.database_path = f"file:fipe_gateway_{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._use_uri = True
        else:
            self.database_path = database_path
            self._use_uri = database_path.startswith("file:")
        self._lock = threading.Lock()
        self._pool: List[sqlite3.Connection] = []
        self._max_pool_size = pool_size
        for _ in range(self._max_pool_size):
            self._pool.append(self._connect())
        self._initialize_schema()

    @property
    def in_memory(self) -> bool:
        return "mode=memory" in self.database_path or ":memory:" in self.database_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database_path, check_same_thread=False, uri=self._use_uri)
        for pragma in _PRAGMAS:
            conn.execute(pragma)
        return conn

    def _initialize_schema(self):
        conn = self.get_connection()
        try:
            cur = conn.cursor()
            for stmt in SCHEMA:
                cur.execute(stmt)
            conn.commit()
        finally:
            self.return_connection(conn)

    def get_connection(self) -> sqlite3.Connection:
        with self._lock:
            if self._pool:
                return self._pool.pop()
        return self._connect()

    def return_connection(self, conn: sqlite3.Connection):
        with self._lock:
            if len(self._pool) < self._max_pool_size:
                self._pool.append(conn)
                return
        conn.close()

    def _run(self, query: str, params: tuple, retries: int, delay: float, fetch: bool):
        for attempt in range(retries):
            conn = self.get_connection()
            try:
                cur = conn.cursor()
                cur.execute(query, params)
                if fetch:
                    return cur.fetchall()
                conn.commit()
                return cur.rowcount
            except sqlite3.Error as e:
                conn.rollback()
                if isinstance(e, sqlite3.OperationalError) and "locked" in str(e).lower() and attempt < retries - 1:
                    # Exponential backoff with jitter
                    backoff = delay * (2**attempt) + random.uniform(0, 0.05)
                    time.sleep(min(backoff, 1.0))
                    continue
                raise
            finally:
                self.return_connection(conn)
        return [] if fetch else 0

    def execute_query(self, query: str, params: tuple = (), retries: int = 10, delay: float = 0.02) -> List[Any]:
        return self._run(query, params, retries, delay, fetch=True)

    def execute_update(self, query: str, params: tuple = (), retries: int = 10, delay: float = 0.02) -> int:
        return self._run(query, params, retries, delay, fetch=False)

    def close(self):
        """Close all pooled database connections."""
        with self._lock:
            while self._pool:
                conn = self._pool.pop()
                try:
                    conn.close()
                except sqlite3.Error as e:
                    self.logger.debug(f"Error closing connection: {e}")
