"""
Database Connection Layer

SQLite-backed storage for sessions, promotions, payments and the activity log,
with schema creation on first use.
"""

import os
import sqlite3
from contextlib import contextmanager
from typing import Optional, Generator, Any, Dict, List
from datetime import datetime, timezone
import threading
import structlog

logger = structlog.get_logger()

# Schema version for migrations
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Promotions (alternate price schedules)
CREATE TABLE IF NOT EXISTS promotions (
    promo_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    first_hour_price REAL NOT NULL,
    extra_hour_price REAL NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    start_date TEXT,
    end_date TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Table sessions
CREATE TABLE IF NOT EXISTS sessions (
    session_id TEXT PRIMARY KEY,
    customer_id TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    capacity INTEGER NOT NULL,
    promo_id TEXT,
    first_hour_price REAL NOT NULL,
    extra_hour_price REAL NOT NULL,
    total_cost REAL NOT NULL DEFAULT 0.0,
    hours REAL NOT NULL DEFAULT 0.0,
    table_id TEXT,
    table_number INTEGER,
    notes TEXT,
    game_master_id TEXT,
    male INTEGER,
    female INTEGER,
    created_at TEXT NOT NULL
);

-- Payments recorded at settlement
CREATE TABLE IF NOT EXISTS payments (
    payment_id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    customer_id TEXT NOT NULL,
    amount REAL NOT NULL,
    method TEXT NOT NULL,
    cash_amount REAL NOT NULL DEFAULT 0.0,
    card_amount REAL NOT NULL DEFAULT 0.0,
    online_amount REAL NOT NULL DEFAULT 0.0,
    status TEXT NOT NULL DEFAULT 'completed',
    expected_amount REAL,
    override_reason TEXT,
    notes TEXT,
    timestamp TEXT NOT NULL,
    FOREIGN KEY (session_id) REFERENCES sessions(session_id)
);

-- Staff activity trail
CREATE TABLE IF NOT EXISTS activity_logs (
    log_id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    action TEXT NOT NULL,
    details TEXT NOT NULL,
    user_id TEXT,
    timestamp TEXT NOT NULL
);

-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Indexes for performance
CREATE INDEX IF NOT EXISTS idx_sessions_status ON sessions(status);
CREATE INDEX IF NOT EXISTS idx_sessions_customer ON sessions(customer_id);
CREATE INDEX IF NOT EXISTS idx_sessions_start ON sessions(start_time);
CREATE INDEX IF NOT EXISTS idx_payments_session ON payments(session_id);
CREATE INDEX IF NOT EXISTS idx_payments_timestamp ON payments(timestamp);
CREATE INDEX IF NOT EXISTS idx_activity_timestamp ON activity_logs(timestamp);
CREATE INDEX IF NOT EXISTS idx_activity_type ON activity_logs(type);
"""


class Database:
    """
    SQLite connection manager.

    Usage:
        db = Database()  # Uses DATABASE_URL env or defaults to sqlite:///jumanji.db
        with db.connection() as conn:
            conn.execute("SELECT * FROM sessions")

    File databases get one connection per thread. ``sqlite:///:memory:`` gets a
    single shared connection, since every new connection would be a new,
    empty database.
    """

    _instance: Optional["Database"] = None
    _lock = threading.Lock()

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or os.environ.get(
            "DATABASE_URL",
            "sqlite:///jumanji.db"
        )
        if not self.database_url.startswith("sqlite:///"):
            raise ValueError(f"Unsupported DATABASE_URL: {self.database_url}")
        self.is_memory = self._get_sqlite_path() == ":memory:"
        self._local = threading.local()
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._write_lock = threading.RLock()
        self._initialized = False

    @classmethod
    def get_instance(cls, database_url: Optional[str] = None) -> "Database":
        """Get singleton database instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls(database_url)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton (closing its connections)."""
        with cls._lock:
            if cls._instance is not None:
                cls._instance.close()
            cls._instance = None

    def _get_sqlite_path(self) -> str:
        """Extract SQLite file path from URL."""
        return self.database_url[len("sqlite:///"):] or "jumanji.db"

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._get_sqlite_path(),
            check_same_thread=False,
            timeout=30.0,
        )
        conn.row_factory = sqlite3.Row
        if not self.is_memory:
            # WAL mode lets staff terminals read while one writes
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _get_conn(self) -> sqlite3.Connection:
        if self.is_memory:
            if self._shared_conn is None:
                self._shared_conn = self._open()
            return self._shared_conn

        if not hasattr(self._local, 'conn') or self._local.conn is None:
            self._local.conn = self._open()
        return self._local.conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection; commits on success, rolls back on error."""
        with self._write_lock:
            conn = self._get_conn()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            with self.connection() as conn:
                conn.executescript(SCHEMA_SQL)

                now = datetime.now(timezone.utc).isoformat()
                conn.execute(
                    "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, now)
                )

            self._initialized = True
            logger.info("database_initialized", url=self.database_url, schema_version=SCHEMA_VERSION)

    def execute(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        """Execute a query and return results as list of dicts."""
        with self.connection() as conn:
            cursor = conn.execute(query, params)
            if cursor.description:
                return [dict(row) for row in cursor.fetchall()]
            return []

    def execute_write(self, query: str, params: tuple = ()) -> int:
        """Execute an INSERT/UPDATE/DELETE and return the affected row count."""
        with self.connection() as conn:
            cursor = conn.execute(query, params)
            return cursor.rowcount

    def close(self) -> None:
        """Close database connections."""
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None
        if hasattr(self._local, 'conn') and self._local.conn:
            self._local.conn.close()
            self._local.conn = None


def get_database(database_url: Optional[str] = None) -> Database:
    """Get the database singleton instance."""
    db = Database.get_instance(database_url)
    db.initialize()
    return db
