"""
Create-or-update of one validated feed row.

The part number decides: known to the run's ExistingRecordIndex means
update (and reactivate), unknown means create. Each row's writes run
inside a savepoint so a rejected write skips only that row.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .catalog import (
    ATTRIBUTE_MAP, KEY_ATTRIBUTE, STATUS_ACTIVE, TAG_MAP,
    insert_record, replace_tag, set_attributes, update_record,
)
from .database import DB_ERRORS, is_postgres
from .feed_parser import FeedRow
from .image_probe import is_well_formed_url
from .record_index import ExistingRecordIndex


_TAG_RE = re.compile(r'<[^>]*>')
_WS_RE = re.compile(r'\s+')

SAVEPOINT = 'feed_row'


class Outcome(Enum):
    CREATED = "created"
    UPDATED = "updated"


@dataclass
class ReconcileResult:
    """Result of writing one row."""
    success: bool
    outcome: Optional[Outcome] = None
    record_id: Optional[int] = None
    error: Optional[str] = None


def sanitize_text(value: str) -> str:
    """Strip markup and collapse whitespace."""
    if not value:
        return ''
    return _WS_RE.sub(' ', _TAG_RE.sub('', value)).strip()


def sanitize_url(value: str) -> str:
    """Trimmed URL, or '' when it is not a usable http(s) URL."""
    value = (value or '').strip()
    if not is_well_formed_url(value) or any(c in value for c in ' "<>'):
        return ''
    return value


def build_attributes(row: FeedRow) -> Dict[str, str]:
    """Attribute values for the columns present in the row."""
    attributes = {}
    for column, name in ATTRIBUTE_MAP.items():
        if not row.has(column):
            continue
        raw = row.get(column)
        attributes[name] = sanitize_url(raw) if column == 'ImageURL' else sanitize_text(raw)
    attributes[KEY_ATTRIBUTE] = row.part_number
    return attributes


def build_tags(row: FeedRow) -> Dict[str, str]:
    """Taxonomy -> term for non-empty tag columns."""
    tags = {}
    for column, taxonomy in TAG_MAP.items():
        term = sanitize_text(row.get(column))
        if term:
            tags[taxonomy] = term
    return tags


class Reconciler:
    def __init__(self, conn, index: ExistingRecordIndex):
        self.conn = conn
        self.index = index

    def _write(self, row: FeedRow, record_id: Optional[int]) -> int:
        part_number = row.part_number
        if record_id is None:
            record_id = insert_record(self.conn, part_number, STATUS_ACTIVE)
        else:
            update_record(self.conn, record_id, part_number, STATUS_ACTIVE)

        set_attributes(self.conn, record_id, build_attributes(row))
        for taxonomy, term in build_tags(row).items():
            replace_tag(self.conn, record_id, taxonomy, term)
        return record_id

    def reconcile(self, row: FeedRow) -> ReconcileResult:
        """Create or update the wheel for an accepted row."""
        part_number = row.part_number
        if not part_number:
            raise ValueError(f"Row {row.row_number} has no part number; validate before reconciling")

        existing_id = self.index.get(part_number)
        if not is_postgres(self.conn) and not self.conn.in_transaction:
            # sqlite3 opens no transaction before SAVEPOINT; RELEASE would commit the row
            self.conn.execute('BEGIN')
        cursor = self.conn.cursor()
        cursor.execute(f'SAVEPOINT {SAVEPOINT}')
        try:
            record_id = self._write(row, existing_id)
        except DB_ERRORS as e:
            cursor.execute(f'ROLLBACK TO SAVEPOINT {SAVEPOINT}')
            cursor.execute(f'RELEASE SAVEPOINT {SAVEPOINT}')
            return ReconcileResult(success=False, error=str(e))
        cursor.execute(f'RELEASE SAVEPOINT {SAVEPOINT}')

        if existing_id is None:
            self.index.remember(part_number, record_id)
            return ReconcileResult(success=True, outcome=Outcome.CREATED, record_id=record_id)
        return ReconcileResult(success=True, outcome=Outcome.UPDATED, record_id=record_id)
