"""
Database service for catalog and cache storage.

Loads credentials from the .env file and hands out a single reusable
connection: PostgreSQL when DATABASE_URL is set, SQLite otherwise.
"""

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from dotenv import load_dotenv

# Database support - PostgreSQL or SQLite fallback
try:
    import psycopg2
    HAS_POSTGRES = True
except ImportError:
    HAS_POSTGRES = False


# Load .env from backend directory
_backend_dir = Path(__file__).parent.parent.parent
_env_path = _backend_dir / ".env"
load_dotenv(_env_path)


# Driver errors that mean "this statement failed", used for per-row recovery
if HAS_POSTGRES:
    DB_ERRORS = (sqlite3.Error, psycopg2.Error)
else:
    DB_ERRORS = (sqlite3.Error,)


def get_database_url() -> Optional[str]:
    """Get the PostgreSQL database URL from environment variables."""
    return os.getenv("DATABASE_URL")


def get_sqlite_path() -> str:
    """Get the SQLite fallback path from environment variables."""
    return os.getenv("FEED_SQLITE_PATH", str(_backend_dir / "wheelfeed.db"))


def is_postgres(conn) -> bool:
    """Check if connection is PostgreSQL."""
    return HAS_POSTGRES and hasattr(conn, 'info')


def db_placeholder(conn) -> str:
    """Return the correct placeholder for the database type."""
    return '%s' if is_postgres(conn) else '?'


def connect_database(db_url: Optional[str] = None, sqlite_path: Optional[str] = None):
    """Open a PostgreSQL connection if a URL is given, otherwise SQLite."""
    if db_url:
        if not HAS_POSTGRES:
            raise ValueError("DATABASE_URL is set but psycopg2 is not installed")
        conn = psycopg2.connect(db_url)
        conn.autocommit = False
        return conn

    conn = sqlite3.connect(sqlite_path or get_sqlite_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


class DatabasePool:
    """
    Simple connection pool.

    Uses a single connection that is reused across requests. Tests may
    hand in an existing connection with use_connection().
    """

    def __init__(self):
        self._conn = None
        self._db_url: Optional[str] = None
        self._sqlite_path: Optional[str] = None
        self._on_connect = []

    def initialize(self) -> None:
        """Initialize the database connection."""
        self._db_url = get_database_url()
        self._sqlite_path = get_sqlite_path()
        self._connect()

    def on_connect(self, callback) -> None:
        """Register a callback run with every fresh connection (schema setup)."""
        self._on_connect.append(callback)
        if self._conn is not None:
            callback(self._conn)
            self._conn.commit()

    def use_connection(self, conn) -> None:
        """Adopt an already-open connection."""
        self._conn = conn
        for callback in self._on_connect:
            callback(conn)
        conn.commit()

    def _connect(self) -> None:
        """Establish database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except DB_ERRORS:
                pass

        self._conn = connect_database(self._db_url, self._sqlite_path)
        for callback in self._on_connect:
            callback(self._conn)
        self._conn.commit()

    def _ensure_connection(self) -> None:
        """Ensure the connection is alive, reconnect if needed."""
        if self._conn is None:
            self._connect()
            return

        if not is_postgres(self._conn):
            return

        try:
            # Test connection with a simple query
            with self._conn.cursor() as cursor:
                cursor.execute("SELECT 1")
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            # Connection lost, reconnect
            self._connect()

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    @contextmanager
    def get_connection(self) -> Generator:
        """
        Get a database connection from the pool.

        Commits when the block exits cleanly and rolls back otherwise.

        Example:
            with db_pool.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT * FROM catalog_records")
                rows = cursor.fetchall()
        """
        self._ensure_connection()
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except DB_ERRORS:
                pass
            self._conn = None


# Global database pool instance
db_pool = DatabasePool()
