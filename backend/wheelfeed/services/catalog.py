"""
Catalog store access.

Wheels are kept as generic records with scalar attributes and
categorical tags:
- catalog_records: one row per wheel, lifecycle status active/inactive
- catalog_attributes: (record_id, name) -> value, values stored as text
- catalog_tags: (record_id, taxonomy) -> term, one current term per taxonomy
- import_logs: one row per finished or failed import run

All functions take an open connection and leave committing to the caller.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .database import db_placeholder, is_postgres


RECORD_TYPE = 'wheel'
KEY_ATTRIBUTE = 'part_number'

STATUS_ACTIVE = 'active'
STATUS_INACTIVE = 'inactive'

# Feed column -> attribute name
ATTRIBUTE_MAP = {
    'PartDescription': 'part_description',
    'DisplayStyleNo': 'display_style_no',
    'Brand': 'brand',
    'Finish': 'finish',
    'Size': 'size',
    'BoltPattern': 'bolt_pattern',
    'Offset': 'offset',
    'CenterBore': 'center_bore',
    'LoadRating': 'load_rating',
    'ShippingWeight': 'shipping_weight',
    'ImageURL': 'image_url',
    'InvOrderType': 'inventory_order_type',
    'Style': 'style',
    'TotalQOH': 'total_qoh',
    'MSRP_USD': 'msrp_usd',
    'MAP_USD': 'map_usd',
    'RunDate': 'run_date',
}

# Feed column -> tag taxonomy
TAG_MAP = {
    'DisplayStyleNo': 'display_style',
    'Brand': 'brand',
    'Finish': 'finish',
}

# Keep IN (...) lists well under driver parameter limits
_ID_BATCH = 500


def init_catalog_schema(conn) -> None:
    """Create catalog tables if they do not exist."""
    cursor = conn.cursor()
    if is_postgres(conn):
        record_id = 'SERIAL PRIMARY KEY'
        log_id = 'SERIAL PRIMARY KEY'
    else:
        record_id = 'INTEGER PRIMARY KEY AUTOINCREMENT'
        log_id = 'INTEGER PRIMARY KEY AUTOINCREMENT'

    statements = [
        f'''CREATE TABLE IF NOT EXISTS catalog_records (
            record_id {record_id},
            record_type TEXT NOT NULL,
            title TEXT,
            status TEXT NOT NULL DEFAULT 'active',
            created_at TEXT,
            updated_at TEXT,
            deactivated_at TEXT
        )''',
        '''CREATE TABLE IF NOT EXISTS catalog_attributes (
            record_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            value TEXT,
            PRIMARY KEY (record_id, name)
        )''',
        '''CREATE TABLE IF NOT EXISTS catalog_tags (
            record_id INTEGER NOT NULL,
            taxonomy TEXT NOT NULL,
            term TEXT NOT NULL,
            PRIMARY KEY (record_id, taxonomy, term)
        )''',
        f'''CREATE TABLE IF NOT EXISTS import_logs (
            log_id {log_id},
            file_type TEXT,
            imported INTEGER DEFAULT 0,
            updated INTEGER DEFAULT 0,
            skipped INTEGER DEFAULT 0,
            deactivated INTEGER DEFAULT 0,
            status TEXT,
            message TEXT,
            created_at TEXT
        )''',
        'CREATE INDEX IF NOT EXISTS idx_catalog_attr_name_value ON catalog_attributes (name, value)',
        'CREATE INDEX IF NOT EXISTS idx_catalog_tags_term ON catalog_tags (taxonomy, term)',
    ]
    for statement in statements:
        cursor.execute(statement)


def insert_record(conn, title: str, status: str = STATUS_ACTIVE) -> int:
    """Insert a catalog record, return record_id."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    now = datetime.now().isoformat()
    if is_postgres(conn):
        cursor.execute(
            f'''INSERT INTO catalog_records (record_type, title, status, created_at, updated_at)
               VALUES ({ph}, {ph}, {ph}, {ph}, {ph}) RETURNING record_id''',
            (RECORD_TYPE, title, status, now, now)
        )
        return cursor.fetchone()[0]
    else:
        cursor.execute(
            f'''INSERT INTO catalog_records (record_type, title, status, created_at, updated_at)
               VALUES ({ph}, {ph}, {ph}, {ph}, {ph})''',
            (RECORD_TYPE, title, status, now, now)
        )
        return cursor.lastrowid


def update_record(conn, record_id: int, title: Optional[str] = None,
                  status: str = STATUS_ACTIVE) -> None:
    """Update title (when given) and status, clearing deactivated_at on reactivation."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    now = datetime.now().isoformat()
    if title is None:
        cursor.execute(
            f'''UPDATE catalog_records SET status = {ph}, updated_at = {ph}, deactivated_at = NULL
               WHERE record_id = {ph}''',
            (status, now, record_id)
        )
    else:
        cursor.execute(
            f'''UPDATE catalog_records SET title = {ph}, status = {ph}, updated_at = {ph},
               deactivated_at = NULL WHERE record_id = {ph}''',
            (title, status, now, record_id)
        )


def set_attributes(conn, record_id: int, attributes: Dict[str, str]) -> None:
    """Upsert attribute values. Attributes not passed are left untouched."""
    if not attributes:
        return
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    cursor.executemany(
        f'''INSERT INTO catalog_attributes (record_id, name, value)
           VALUES ({ph}, {ph}, {ph})
           ON CONFLICT (record_id, name) DO UPDATE SET value = excluded.value''',
        [(record_id, name, value) for name, value in attributes.items()]
    )


def replace_tag(conn, record_id: int, taxonomy: str, term: str) -> None:
    """Replace whatever term the record has in taxonomy with term."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    cursor.execute(
        f'DELETE FROM catalog_tags WHERE record_id = {ph} AND taxonomy = {ph}',
        (record_id, taxonomy)
    )
    cursor.execute(
        f'INSERT INTO catalog_tags (record_id, taxonomy, term) VALUES ({ph}, {ph}, {ph})',
        (record_id, taxonomy, term)
    )


def load_business_key_index(conn) -> Dict[str, int]:
    """Map part_number -> record_id for active and inactive wheels."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    cursor.execute(
        f'''SELECT a.value, r.record_id
           FROM catalog_records r
           JOIN catalog_attributes a ON a.record_id = r.record_id AND a.name = {ph}
           WHERE r.record_type = {ph}
           AND r.status IN ({ph}, {ph})
           AND a.value IS NOT NULL AND a.value != ''
           ORDER BY r.record_id''',
        (KEY_ATTRIBUTE, RECORD_TYPE, STATUS_ACTIVE, STATUS_INACTIVE)
    )
    return {row[0]: row[1] for row in cursor.fetchall()}


def list_active_business_keys(conn) -> List[Tuple[int, str]]:
    """(record_id, part_number) for every active wheel that has a part number."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    cursor.execute(
        f'''SELECT r.record_id, a.value
           FROM catalog_records r
           JOIN catalog_attributes a ON a.record_id = r.record_id AND a.name = {ph}
           WHERE r.record_type = {ph} AND r.status = {ph}
           AND a.value IS NOT NULL AND a.value != ''
           ORDER BY r.record_id''',
        (KEY_ATTRIBUTE, RECORD_TYPE, STATUS_ACTIVE)
    )
    return [(row[0], row[1]) for row in cursor.fetchall()]


def set_record_status(conn, record_ids: Iterable[int], status: str) -> int:
    """Set status on many records. Returns the number of rows changed."""
    ids = list(record_ids)
    if not ids:
        return 0
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    now = datetime.now().isoformat()
    deactivated_at = now if status == STATUS_INACTIVE else None
    changed = 0
    for start in range(0, len(ids), _ID_BATCH):
        batch = ids[start:start + _ID_BATCH]
        placeholders = ', '.join([ph] * len(batch))
        cursor.execute(
            f'''UPDATE catalog_records SET status = {ph}, updated_at = {ph}, deactivated_at = {ph}
               WHERE status != {ph} AND record_id IN ({placeholders})''',
            (status, now, deactivated_at, status, *batch)
        )
        changed += cursor.rowcount or 0
    return changed


def record_ids_with_tag(conn, taxonomy: str, terms: Iterable[str],
                        status: Optional[str] = None) -> List[int]:
    """Records tagged with any of terms (case-insensitive) in taxonomy."""
    wanted = sorted({t.strip().lower() for t in terms if t and t.strip()})
    if not wanted:
        return []
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    placeholders = ', '.join([ph] * len(wanted))
    sql = f'''SELECT DISTINCT r.record_id
              FROM catalog_records r
              JOIN catalog_tags t ON t.record_id = r.record_id
              WHERE r.record_type = {ph} AND t.taxonomy = {ph}
              AND LOWER(t.term) IN ({placeholders})'''
    params = [RECORD_TYPE, taxonomy, *wanted]
    if status:
        sql += f' AND r.status = {ph}'
        params.append(status)
    cursor.execute(sql + ' ORDER BY r.record_id', params)
    return [row[0] for row in cursor.fetchall()]


def get_record_by_business_key(conn, part_number: str) -> Optional[Dict]:
    """Record with its attributes and tags, or None."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    cursor.execute(
        f'''SELECT r.record_id, r.title, r.status, r.created_at, r.updated_at, r.deactivated_at
           FROM catalog_records r
           JOIN catalog_attributes a ON a.record_id = r.record_id AND a.name = {ph}
           WHERE r.record_type = {ph} AND a.value = {ph}
           ORDER BY r.record_id LIMIT 1''',
        (KEY_ATTRIBUTE, RECORD_TYPE, part_number)
    )
    row = cursor.fetchone()
    if not row:
        return None

    record = {
        'record_id': row[0],
        'title': row[1],
        'status': row[2],
        'created_at': row[3],
        'updated_at': row[4],
        'deactivated_at': row[5],
    }
    cursor.execute(f'SELECT name, value FROM catalog_attributes WHERE record_id = {ph}', (row[0],))
    record['attributes'] = {r[0]: r[1] for r in cursor.fetchall()}
    cursor.execute(f'SELECT taxonomy, term FROM catalog_tags WHERE record_id = {ph}', (row[0],))
    tags: Dict[str, List[str]] = {}
    for taxonomy, term in cursor.fetchall():
        tags.setdefault(taxonomy, []).append(term)
    record['tags'] = tags
    return record


def count_records(conn, status: Optional[str] = None, part_number: Optional[str] = None) -> int:
    """Count wheels, optionally by status and/or part number."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    sql = 'SELECT COUNT(*) FROM catalog_records r'
    params: list = []
    if part_number is not None:
        sql += f' JOIN catalog_attributes a ON a.record_id = r.record_id AND a.name = {ph} AND a.value = {ph}'
        params.extend([KEY_ATTRIBUTE, part_number])
    sql += f' WHERE r.record_type = {ph}'
    params.append(RECORD_TYPE)
    if status:
        sql += f' AND r.status = {ph}'
        params.append(status)
    cursor.execute(sql, params)
    return cursor.fetchone()[0]


# =============================================================================
# Import log
# =============================================================================

def add_import_log(conn, file_type: str, imported: int, updated: int, skipped: int,
                   deactivated: int, status: str, message: str) -> None:
    """Append one run summary to import_logs."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    cursor.execute(
        f'''INSERT INTO import_logs
           (file_type, imported, updated, skipped, deactivated, status, message, created_at)
           VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})''',
        (file_type, imported, updated, skipped, deactivated, status, message,
         datetime.now().isoformat())
    )


def get_import_logs(conn, limit: int = 20) -> List[Dict]:
    """Most recent import runs, newest first."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    cursor.execute(
        f'''SELECT log_id, file_type, imported, updated, skipped, deactivated, status,
                  message, created_at
           FROM import_logs ORDER BY log_id DESC LIMIT {ph}''',
        (limit,)
    )
    columns = ['log_id', 'file_type', 'imported', 'updated', 'skipped', 'deactivated',
               'status', 'message', 'created_at']
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def init_schema(conn) -> None:
    """Create catalog and cache tables."""
    from .kv_store import init_store_schema
    init_catalog_schema(conn)
    init_store_schema(conn)
