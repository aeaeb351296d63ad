"""
Chunked dataset cache.

A parsed feed is stored under one logical key. Small datasets go in a
single combined entry; once the serialized size passes the threshold the
rows are split into fixed-size chunks:

    <key>_meta      {header, total_rows, downloaded_at, chunk_size, chunk_count}
    <key>_chunk_<i> [row, row, ...]

Batch reads load only the chunks overlapping the requested window.
"""

import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from .config import CACHE_TTL, DEFAULT_CHUNK_ROWS, DEFAULT_CHUNK_THRESHOLD
from .console import log
from .feed_parser import FeedRow
from .kv_store import KeyValueStore


CACHE_KEY_PREFIX = 'feed_cache_'


def meta_key(key: str) -> str:
    return f"{key}_meta"


def chunk_key(key: str, index: int) -> str:
    return f"{key}_chunk_{index}"


def new_cache_key() -> str:
    """Run-unique cache key."""
    return CACHE_KEY_PREFIX + uuid.uuid4().hex


@dataclass
class CacheWindow:
    """Rows for one batch plus the dataset facts the batch needs."""
    header: List[str]
    rows: List[FeedRow]
    is_chunked: bool
    total_rows: int


class ChunkedCache:
    """Stores and windows a parsed dataset in a KeyValueStore."""

    def __init__(self, store: KeyValueStore, ttl: int = CACHE_TTL,
                 chunk_rows: int = DEFAULT_CHUNK_ROWS,
                 threshold_bytes: int = DEFAULT_CHUNK_THRESHOLD):
        if chunk_rows < 1:
            raise ValueError("chunk_rows must be at least 1")
        self.store = store
        self.ttl = ttl
        self.chunk_rows = chunk_rows
        self.threshold_bytes = threshold_bytes

    def store_dataset(self, key: str, header: List[str], rows: List[FeedRow],
                      total_rows: Optional[int] = None) -> bool:
        """
        Persist a dataset under key.

        Returns:
            True if the dataset was split into chunks
        """
        if total_rows is None:
            total_rows = len(rows)
        downloaded_at = datetime.now().isoformat()
        serialized = [row.to_dict() for row in rows]

        # Replace anything left under this key
        self.purge(key)

        combined = {
            'header': header,
            'total_rows': total_rows,
            'downloaded_at': downloaded_at,
            'rows': serialized,
        }
        if len(json.dumps(combined)) <= self.threshold_bytes:
            self.store.set(key, combined, self.ttl)
            return False

        chunk_count = (len(serialized) + self.chunk_rows - 1) // self.chunk_rows
        for index in range(chunk_count):
            start = index * self.chunk_rows
            self.store.set(chunk_key(key, index), serialized[start:start + self.chunk_rows], self.ttl)

        # Meta last, so a reader never sees meta without its chunks
        self.store.set(meta_key(key), {
            'header': header,
            'total_rows': total_rows,
            'downloaded_at': downloaded_at,
            'chunk_size': self.chunk_rows,
            'chunk_count': chunk_count,
        }, self.ttl)
        log(f"Cached {total_rows} rows in {chunk_count} chunks of {self.chunk_rows}")
        return True

    def describe(self, key: str) -> Optional[Dict]:
        """Dataset facts without its rows, or None when the key is gone."""
        meta = self.store.get(meta_key(key))
        if meta is not None:
            return {
                'header': meta['header'],
                'total_rows': meta['total_rows'],
                'downloaded_at': meta.get('downloaded_at'),
                'is_chunked': True,
            }
        combined = self.store.get(key)
        if combined is not None:
            return {
                'header': combined['header'],
                'total_rows': combined['total_rows'],
                'downloaded_at': combined.get('downloaded_at'),
                'is_chunked': False,
            }
        return None

    def exists(self, key: str) -> bool:
        return self.store.exists(key) or self.store.exists(meta_key(key))

    def read_window(self, key: str, offset: int, limit: int) -> Optional[CacheWindow]:
        """
        Rows [offset, offset + limit) of the dataset.

        Returns None when the dataset, or any chunk the window needs, has
        expired. Callers must treat None as "re-fetch required", never as
        an empty dataset.
        """
        if offset < 0 or limit < 1:
            raise ValueError(f"Invalid window offset={offset} limit={limit}")

        meta = self.store.get(meta_key(key))
        if meta is None:
            combined = self.store.get(key)
            if combined is None:
                return None
            rows = combined['rows'][offset:offset + limit]
            return CacheWindow(
                header=combined['header'],
                rows=[FeedRow.from_dict(r) for r in rows],
                is_chunked=False,
                total_rows=combined['total_rows'],
            )

        total_rows = meta['total_rows']
        chunk_size = meta['chunk_size']
        if offset >= total_rows:
            return CacheWindow(header=meta['header'], rows=[], is_chunked=True, total_rows=total_rows)

        start_chunk = offset // chunk_size
        end_chunk = min((offset + limit - 1) // chunk_size, meta['chunk_count'] - 1)

        loaded = []
        for index in range(start_chunk, end_chunk + 1):
            chunk = self.store.get(chunk_key(key, index))
            if chunk is None:
                log(f"Cache chunk {index} expired for {key}")
                return None
            loaded.extend(chunk)

        relative = offset - start_chunk * chunk_size
        rows = loaded[relative:relative + limit]
        return CacheWindow(
            header=meta['header'],
            rows=[FeedRow.from_dict(r) for r in rows],
            is_chunked=True,
            total_rows=total_rows,
        )

    def purge(self, key: str) -> None:
        """Delete the combined entry, or the meta entry and every chunk it names."""
        meta = self.store.get(meta_key(key))
        if meta is not None:
            for index in range(meta.get('chunk_count', 0)):
                self.store.delete(chunk_key(key, index))
            self.store.delete(meta_key(key))
        self.store.delete(key)
