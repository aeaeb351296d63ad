"""
Feed parsing for the vendor wheel file.

Turns downloaded bytes into a header plus FeedRow objects. Two formats
are supported:
- csv: first non-empty line is the header, each further non-empty line a row
- json: an array of row objects, or a single-element array holding one row

A row whose field count differs from the header is not fatal; it comes
back with a defect so the batch can skip it with a reason.
"""

import csv
import io
import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional


KEY_COLUMN = 'PartNumber'

# Columns the importer knows how to store. Anything else lands in FeedRow.extra.
KNOWN_COLUMNS = [
    'PartNumber', 'PartDescription', 'DisplayStyleNo', 'Brand', 'Finish', 'Size',
    'BoltPattern', 'Offset', 'CenterBore', 'LoadRating', 'ShippingWeight',
    'ImageURL', 'InvOrderType', 'Style', 'TotalQOH', 'MSRP_USD', 'MAP_USD', 'RunDate',
]

DEFECT_COLUMN_COUNT = "column count mismatch"
DEFECT_NOT_OBJECT = "row is not an object"


@dataclass
class FeedRow:
    """One source row: ordered column -> raw string value."""
    row_number: int
    values: Dict[str, str] = field(default_factory=dict)
    defect: Optional[str] = None

    def get(self, column: str, default: str = '') -> str:
        value = self.values.get(column)
        return default if value is None else value

    def has(self, column: str) -> bool:
        return column in self.values

    @property
    def part_number(self) -> str:
        return self.get(KEY_COLUMN).strip()

    @property
    def description(self) -> str:
        return self.get('PartDescription').strip()

    @property
    def brand(self) -> str:
        return self.get('Brand').strip()

    @property
    def image_url(self) -> str:
        return self.get('ImageURL').strip()

    @property
    def extra(self) -> Dict[str, str]:
        """Columns outside the known set (schema drift)."""
        return {k: v for k, v in self.values.items() if k not in KNOWN_COLUMNS}

    def to_dict(self) -> Dict:
        data = {'n': self.row_number, 'v': self.values}
        if self.defect:
            data['d'] = self.defect
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'FeedRow':
        return cls(row_number=data['n'], values=dict(data.get('v') or {}), defect=data.get('d'))


@dataclass
class ParseResult:
    """Outcome of parsing a feed file."""
    success: bool
    header: List[str] = field(default_factory=list)
    rows: List[FeedRow] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def defect_count(self) -> int:
        return sum(1 for r in self.rows if r.defect)


def _failed(message: str) -> ParseResult:
    return ParseResult(success=False, error=message)


def decode_bytes(data: bytes) -> str:
    """Decode feed bytes, tolerating a BOM and non-UTF-8 vendor exports."""
    try:
        return data.decode('utf-8-sig')
    except UnicodeDecodeError:
        return data.decode('latin-1')


def _is_blank(fields: List[str]) -> bool:
    return not fields or (len(fields) == 1 and not fields[0].strip())


def parse_csv(text: str) -> ParseResult:
    """Parse delimited text with a header row."""
    reader = csv.reader(io.StringIO(text))
    try:
        lines = [fields for fields in reader if not _is_blank(fields)]
    except csv.Error as e:
        return _failed(f"Unreadable CSV file: {e}")

    if len(lines) < 2:
        return _failed("File is empty or has no data rows")

    header = [name.strip() for name in lines[0]]
    rows = []
    for number, fields in enumerate(lines[1:], start=1):
        if len(fields) != len(header):
            rows.append(FeedRow(
                row_number=number,
                values=dict(zip(header, fields)),
                defect=DEFECT_COLUMN_COUNT,
            ))
            continue
        rows.append(FeedRow(row_number=number, values=dict(zip(header, fields))))

    return ParseResult(success=True, header=header, rows=rows)


def _stringify(value) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def parse_json(text: str) -> ParseResult:
    """Parse an array of row objects."""
    try:
        data = json.loads(text)
    except ValueError as e:
        return _failed(f"Invalid JSON file: {e}")

    # Standard array of objects, or a single-element array holding one row
    if isinstance(data, list) and data and isinstance(data[0], dict) and KEY_COLUMN in data[0]:
        items = data
    elif isinstance(data, list) and len(data) == 1 and isinstance(data[0], dict):
        items = [data[0]]
    else:
        return _failed("Unsupported JSON structure")

    header: List[str] = []
    seen = set()
    rows = []
    for number, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            rows.append(FeedRow(row_number=number, defect=DEFECT_NOT_OBJECT))
            continue
        values = {}
        for key, value in item.items():
            name = str(key).strip()
            values[name] = _stringify(value)
            if name not in seen:
                seen.add(name)
                header.append(name)
        rows.append(FeedRow(row_number=number, values=values))

    return ParseResult(success=True, header=header, rows=rows)


def parse_feed(data: bytes, file_type: str = 'csv') -> ParseResult:
    """
    Parse downloaded feed bytes.

    Args:
        data: Raw file contents
        file_type: 'csv' or 'json'

    Returns:
        ParseResult with header and rows, or success=False with an error message
    """
    if not data or not data.strip():
        return _failed("File is empty")

    text = decode_bytes(data)
    if file_type == 'csv':
        return parse_csv(text)
    if file_type == 'json':
        return parse_json(text)
    raise ValueError(f"Unsupported file type: {file_type}")
