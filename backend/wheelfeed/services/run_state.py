"""
Run bookkeeping kept in the key-value store.

- ImportRunState: the single resumable progress snapshot drivers poll
- RunProgress: per-batch counters and processed part numbers for one run
- RunLock: at most one import run at a time
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .config import CACHE_TTL
from .kv_store import KeyValueStore


RUN_STATE_KEY = 'feed_import_run_state'
RUN_LOCK_KEY = 'feed_import_lock'
MAX_LOG_MESSAGES = 100


@dataclass
class OutcomeCounters:
    """Import counters. skipped covers every row that did not produce a write."""
    imported: int = 0
    updated: int = 0
    skipped_no_image: int = 0
    skipped_hidden_category: int = 0
    skipped_invalid: int = 0        # Column mismatch or missing part number
    write_failures: int = 0
    deactivated: int = 0

    @property
    def skipped(self) -> int:
        return (self.skipped_no_image + self.skipped_hidden_category
                + self.skipped_invalid + self.write_failures)

    def plus(self, other: 'OutcomeCounters', sign: int = 1) -> 'OutcomeCounters':
        return OutcomeCounters(**{
            f.name: getattr(self, f.name) + sign * getattr(other, f.name) for f in fields(self)
        })

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'OutcomeCounters':
        data = data or {}
        return cls(**{f.name: int(data.get(f.name, 0)) for f in fields(cls)})


@dataclass
class ImportRunState:
    """Resumable progress snapshot."""
    cache_key: str
    offset: int
    total_rows: int
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    file_type: str = 'csv'
    saved_at: str = ''
    messages: List[str] = field(default_factory=list)

    @property
    def progress(self) -> int:
        if self.total_rows <= 0:
            return 0
        return min(self.offset, self.total_rows) * 100 // self.total_rows

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['progress'] = self.progress
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'ImportRunState':
        return cls(
            cache_key=data['cache_key'],
            offset=int(data.get('offset', 0)),
            total_rows=int(data.get('total_rows', 0)),
            imported=int(data.get('imported', 0)),
            updated=int(data.get('updated', 0)),
            skipped=int(data.get('skipped', 0)),
            file_type=data.get('file_type', 'csv'),
            saved_at=data.get('saved_at', ''),
            messages=list(data.get('messages') or []),
        )


class RunStateStore:
    """Save, read and clear the well-known run state entry."""

    def __init__(self, store: KeyValueStore, ttl: int = CACHE_TTL):
        self.store = store
        self.ttl = ttl

    def save(self, state: ImportRunState) -> ImportRunState:
        state.saved_at = datetime.now().isoformat()
        state.messages = state.messages[-MAX_LOG_MESSAGES:]
        self.store.set(RUN_STATE_KEY, state.to_dict(), self.ttl)
        return state

    def get(self) -> Optional[ImportRunState]:
        data = self.store.get(RUN_STATE_KEY)
        if not data or not data.get('cache_key'):
            return None
        return ImportRunState.from_dict(data)

    def clear(self) -> None:
        self.store.delete(RUN_STATE_KEY)


class RunLock:
    """
    Single-run lock holding the owning cache key.

    A lock whose dataset is no longer in the cache is stale and may be taken over.
    """

    def __init__(self, store: KeyValueStore, ttl: int = CACHE_TTL):
        self.store = store
        self.ttl = ttl

    def holder(self) -> Optional[str]:
        return self.store.get(RUN_LOCK_KEY)

    def acquire(self, cache_key: str, is_live) -> Tuple[bool, Optional[str]]:
        """
        Take the lock for cache_key.

        Args:
            cache_key: The new run's key
            is_live: callable(cache_key) -> bool, True while a run's dataset is still cached

        Returns:
            (acquired, current_holder)
        """
        current = self.holder()
        if current and current != cache_key and is_live(current):
            return False, current
        self.store.set(RUN_LOCK_KEY, cache_key, self.ttl)
        return True, cache_key

    def release(self, cache_key: Optional[str] = None) -> None:
        """Release the lock (only if cache_key holds it, when given)."""
        current = self.holder()
        if cache_key is None or current == cache_key:
            self.store.delete(RUN_LOCK_KEY)


class RunProgress:
    """
    Per-batch outcomes of one run.

    Each batch offset keeps its own counters and part numbers, so a retried
    offset replaces its earlier contribution instead of adding to it.
    """

    def __init__(self, store: KeyValueStore, cache_key: str, ttl: int = CACHE_TTL):
        self.store = store
        self.cache_key = cache_key
        self.ttl = ttl

    @property
    def summary_key(self) -> str:
        return f"{self.cache_key}_progress"

    def batch_key(self, offset: int) -> str:
        return f"{self.cache_key}_batch_{offset}"

    def _summary(self) -> Dict:
        return self.store.get(self.summary_key) or {'totals': {}, 'offsets': [], 'info': {}}

    def begin(self, **info) -> None:
        """Start a fresh progress record with run facts (file type, size)."""
        self.store.set(self.summary_key, {'totals': {}, 'offsets': [], 'info': info}, self.ttl)

    def info(self) -> Dict:
        return self._summary().get('info') or {}

    def totals(self) -> OutcomeCounters:
        return OutcomeCounters.from_dict(self._summary()['totals'])

    def record_batch(self, offset: int, counters: OutcomeCounters,
                     processed_keys: Iterable[str], rows: int = 0) -> OutcomeCounters:
        """Store one batch's outcome and return the run totals."""
        summary = self._summary()
        totals = OutcomeCounters.from_dict(summary['totals'])

        previous = self.store.get(self.batch_key(offset))
        if previous is not None:
            totals = totals.plus(OutcomeCounters.from_dict(previous['counters']), sign=-1)

        self.store.set(self.batch_key(offset), {
            'counters': counters.to_dict(),
            'keys': sorted(set(processed_keys)),
            'rows': rows,
        }, self.ttl)

        totals = totals.plus(counters)
        offsets = summary['offsets']
        if offset not in offsets:
            offsets.append(offset)
        summary['totals'] = totals.to_dict()
        summary['offsets'] = offsets
        self.store.set(self.summary_key, summary, self.ttl)
        return totals

    def processed_keys(self, expected_rows: int) -> Optional[Set[str]]:
        """
        Union of every batch's part numbers.

        Returns None unless the recorded batches cover rows 0..expected_rows
        without a gap (an entry expired or a range was never processed).
        """
        keys: Set[str] = set()
        covered = 0
        for offset in sorted(self._summary()['offsets']):
            entry = self.store.get(self.batch_key(offset))
            if entry is None or offset > covered:
                return None
            keys.update(entry['keys'])
            covered = max(covered, offset + entry.get('rows', 0))
        if covered < expected_rows:
            return None
        return keys

    def purge(self) -> None:
        for offset in self._summary()['offsets']:
            self.store.delete(self.batch_key(offset))
        self.store.delete(self.summary_key)
