"""
Hidden category policy.

Rows whose category (the brand column by default) is hidden are skipped
during import. The hidden set is the union of FEED_HIDDEN_CATEGORIES and
the list an admin saved through the API. Existing wheels of a hidden
brand can be bulk deactivated or restored.
"""

from typing import Iterable, List

from .catalog import STATUS_ACTIVE, STATUS_INACTIVE, record_ids_with_tag, set_record_status
from .console import log
from .kv_store import KeyValueStore


HIDDEN_CATEGORIES_KEY = 'feed_hidden_categories'
# Store entries always expire; policy is rewritten on every save
POLICY_TTL = 10 * 365 * 24 * 3600

BULK_ACTIONS = {
    'deactivate': STATUS_INACTIVE,
    'restore': STATUS_ACTIVE,
}


def _normalize(name: str) -> str:
    return (name or '').strip().lower()


class CategoryPolicy:
    """Case-insensitive hidden category lookup."""

    def __init__(self, store: KeyValueStore, configured: Iterable[str] = (),
                 taxonomy: str = 'brand'):
        self.store = store
        self.configured = [c.strip() for c in configured if c and c.strip()]
        self.taxonomy = taxonomy
        self._hidden = None

    def saved_categories(self) -> List[str]:
        return list(self.store.get(HIDDEN_CATEGORIES_KEY) or [])

    def get_hidden_categories(self) -> List[str]:
        """Configured plus saved names, first spelling wins, in order."""
        names = []
        seen = set()
        for name in self.configured + self.saved_categories():
            key = _normalize(name)
            if key and key not in seen:
                seen.add(key)
                names.append(name.strip())
        return names

    def set_hidden_categories(self, names: Iterable[str]) -> List[str]:
        cleaned = []
        seen = set()
        for name in names:
            key = _normalize(name)
            if key and key not in seen:
                seen.add(key)
                cleaned.append(name.strip())
        self.store.set(HIDDEN_CATEGORIES_KEY, cleaned, POLICY_TTL)
        self._hidden = None
        return self.get_hidden_categories()

    def is_hidden(self, category: str) -> bool:
        if self._hidden is None:
            self._hidden = {_normalize(n) for n in self.get_hidden_categories()}
        key = _normalize(category)
        return bool(key) and key in self._hidden

    def apply_bulk_action(self, conn, action: str) -> int:
        """
        Deactivate or restore every wheel tagged with a hidden category.

        Returns:
            Number of wheels whose status changed
        """
        if action not in BULK_ACTIONS:
            raise ValueError(f"Unknown bulk action: {action}")
        hidden = self.get_hidden_categories()
        record_ids = record_ids_with_tag(conn, self.taxonomy, hidden)
        changed = set_record_status(conn, record_ids, BULK_ACTIONS[action])
        log(f"Bulk {action}: {changed} wheels in hidden categories")
        return changed
