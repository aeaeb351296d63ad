"""
Existing record index: part number -> record_id for one import run.

Built with a single catalog scan (active and inactive wheels, so a
re-listed wheel is updated rather than duplicated) and cached under
<cache_key>_existing so later batches skip the scan.
"""

from typing import Dict, Optional

from .catalog import load_business_key_index
from .config import INDEX_TTL
from .console import log
from .kv_store import KeyValueStore


INDEX_SUFFIX = '_existing'


class ExistingRecordIndex:
    """Run-scoped part number map, cached in the store between batches."""

    def __init__(self, conn, store: KeyValueStore, cache_key: str, ttl: int = INDEX_TTL):
        self.conn = conn
        self.store = store
        self.cache_key = cache_key
        self.ttl = ttl
        self._map: Optional[Dict[str, int]] = None
        self._dirty = False

    @property
    def key(self) -> str:
        return self.cache_key + INDEX_SUFFIX

    def build(self) -> Dict[str, int]:
        """Scan the catalog and cache the result."""
        self._map = load_business_key_index(self.conn)
        self.store.set(self.key, self._map, self.ttl)
        self._dirty = False
        log(f"Cached {len(self._map)} existing wheels")
        return self._map

    def load(self, rebuild: bool = False) -> Dict[str, int]:
        """Cached map for this run, building it if absent (or when rebuild is set)."""
        if rebuild:
            return self.build()
        cached = self.store.get(self.key)
        if cached is None:
            return self.build()
        self._map = {k: int(v) for k, v in cached.items()}
        self._dirty = False
        return self._map

    def _require(self) -> Dict[str, int]:
        if self._map is None:
            raise RuntimeError("ExistingRecordIndex used before load()")
        return self._map

    def get(self, part_number: str) -> Optional[int]:
        return self._require().get(part_number)

    def __contains__(self, part_number: str) -> bool:
        return part_number in self._require()

    def __len__(self) -> int:
        return len(self._require())

    def remember(self, part_number: str, record_id: int) -> None:
        """Record a wheel created this run so later rows and batches see it."""
        self._require()[part_number] = record_id
        self._dirty = True

    def save(self) -> None:
        """Write the map back if rows were created since it was loaded."""
        if self._dirty and self._map is not None:
            self.store.set(self.key, self._map, self.ttl)
            self._dirty = False

    def discard(self) -> None:
        self.store.delete(self.key)
        self._map = None
        self._dirty = False
