"""
Key-value store with expiry.

Holds the cached dataset, the existing record map, probe results and the
run state. Every entry carries a finite TTL so abandoned runs clean
themselves up. Values must be JSON serializable.
"""

import json
import time
from typing import Any, Callable, Dict, Tuple

from .console import log
from .database import db_placeholder


_MISSING = object()


def _check_ttl(ttl) -> None:
    if ttl is None or ttl <= 0:
        raise ValueError(f"Store entries need a positive TTL, got {ttl!r}")


class KeyValueStore:
    """Interface shared by the in-memory and database stores."""

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl: int) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def purge_expired(self) -> int:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """Process-local store. Values are kept serialized so callers never share objects."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[float, str]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return default
        expires_at, payload = entry
        if expires_at <= self._clock():
            del self._data[key]
            return default
        return json.loads(payload)

    def set(self, key: str, value: Any, ttl: int) -> None:
        _check_ttl(ttl)
        self._data[key] = (self._clock() + ttl, json.dumps(value))

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        now = self._clock()
        return [k for k, (expires_at, _) in self._data.items() if expires_at > now]

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]
        return len(expired)


def init_store_schema(conn) -> None:
    """Create the feed_cache table if it does not exist."""
    cursor = conn.cursor()
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS feed_cache (
            cache_key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            expires_at DOUBLE PRECISION NOT NULL
        )
    ''')


class DatabaseStore(KeyValueStore):
    """
    Store backed by the feed_cache table.

    Shares the caller's connection and transaction; the caller commits.
    Expired rows read as absent and are deleted when touched.
    """

    def __init__(self, conn, clock: Callable[[], float] = time.time):
        self.conn = conn
        self._clock = clock
        self._ph = db_placeholder(conn)

    def get(self, key: str, default: Any = None) -> Any:
        ph = self._ph
        cursor = self.conn.cursor()
        cursor.execute(f'SELECT value, expires_at FROM feed_cache WHERE cache_key = {ph}', (key,))
        row = cursor.fetchone()
        if row is None:
            return default
        if row[1] <= self._clock():
            cursor.execute(f'DELETE FROM feed_cache WHERE cache_key = {ph}', (key,))
            return default
        return json.loads(row[0])

    def set(self, key: str, value: Any, ttl: int) -> None:
        _check_ttl(ttl)
        ph = self._ph
        cursor = self.conn.cursor()
        cursor.execute(
            f'''INSERT INTO feed_cache (cache_key, value, expires_at)
               VALUES ({ph}, {ph}, {ph})
               ON CONFLICT (cache_key) DO UPDATE
               SET value = excluded.value, expires_at = excluded.expires_at''',
            (key, json.dumps(value), self._clock() + ttl)
        )

    def delete(self, key: str) -> None:
        cursor = self.conn.cursor()
        cursor.execute(f'DELETE FROM feed_cache WHERE cache_key = {self._ph}', (key,))

    def purge_expired(self) -> int:
        """Delete every expired entry. Returns how many were removed."""
        cursor = self.conn.cursor()
        cursor.execute(f'DELETE FROM feed_cache WHERE expires_at <= {self._ph}', (self._clock(),))
        removed = cursor.rowcount or 0
        if removed:
            log(f"Purged {removed} expired cache entries")
        return removed

