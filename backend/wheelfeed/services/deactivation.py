"""
Deactivation sweep run once at the end of a full import.

The feed is a full snapshot: an active wheel whose part number was not
seen this run has been discontinued. It is moved to inactive (soft
delete), never removed, so a later feed can bring it back.
"""

from typing import Dict, Iterable, List

from .catalog import STATUS_INACTIVE, list_active_business_keys, set_record_status
from .console import log


def find_missing_records(conn, processed_keys: Iterable[str]) -> List[Dict]:
    """Active wheels whose part number is not in processed_keys."""
    seen = {key.strip() for key in processed_keys if key}
    return [
        {'record_id': record_id, 'part_number': part_number}
        for record_id, part_number in list_active_business_keys(conn)
        if part_number.strip() not in seen
    ]


def deactivate_missing_records(conn, processed_keys: Iterable[str]) -> List[Dict]:
    """Mark wheels not seen in this run as inactive.

    Call this only after the LAST batch of a full run; processed_keys
    must be the union of every batch's keys.

    Returns list of deactivated record info for reporting.
    """
    missing = find_missing_records(conn, processed_keys)
    if not missing:
        return []

    set_record_status(conn, [m['record_id'] for m in missing], STATUS_INACTIVE)
    log(f"Marked {len(missing)} wheels as inactive (not in feed)")
    return missing
