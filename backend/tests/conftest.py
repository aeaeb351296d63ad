"""
Pytest fixtures and test infrastructure for importer tests.
"""
import pytest
import sqlite3
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from wheelfeed.services.catalog import init_schema  # noqa: E402
from wheelfeed.services.config import ImportSettings  # noqa: E402
from wheelfeed.services.kv_store import MemoryStore  # noqa: E402
from wheelfeed.services.remote_fetcher import RemoteTransport, TransportError  # noqa: E402


FEED_HEADER = ['PartNumber', 'PartDescription', 'DisplayStyleNo', 'Brand', 'Finish',
               'Size', 'ImageURL', 'MSRP_USD']


@pytest.fixture
def sqlite_conn():
    """In-memory SQLite catalog for isolated testing."""
    # TestClient runs sync routes in a worker thread
    conn = sqlite3.connect(':memory:', check_same_thread=False)
    conn.row_factory = sqlite3.Row
    init_schema(conn)
    conn.commit()
    yield conn
    conn.close()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Settings for a complete SFTP configuration, image checks off."""
    return ImportSettings(
        sftp_host='sftp.example.com',
        sftp_username='feed',
        sftp_password='secret',
        sftp_path='/outgoing/wheels.csv',
        file_type='csv',
        batch_size=10,
        validate_images=False,
    )


class FakeClock:
    """Controllable time source for TTL tests."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeTransport(RemoteTransport):
    """Transport returning fixed bytes or failing with a fixed message."""

    def __init__(self, name='fake', data=b'', error=None):
        self.name = name
        self.data = data
        self.error = error
        self.calls = []

    def download(self, host, port, username, password, path, timeout):
        self.calls.append((host, port, username, path))
        if self.error:
            raise TransportError(self.error)
        return self.data


# Helper functions for tests
def wheel_row(part_number, **overrides):
    """One feed row with sensible defaults."""
    row = {
        'PartNumber': part_number,
        'PartDescription': f'Wheel {part_number}',
        'DisplayStyleNo': 'S-100',
        'Brand': 'Fuel',
        'Finish': 'Gloss Black',
        'Size': '20x9',
        'ImageURL': f'https://images.example.com/{part_number}.jpg',
        'MSRP_USD': '299.00',
    }
    row.update(overrides)
    return row


def make_csv(rows, header=None):
    """Feed bytes in CSV form."""
    import csv
    import io

    header = header or FEED_HEADER
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    for row in rows:
        if isinstance(row, dict):
            writer.writerow([row.get(col, '') for col in header])
        else:
            writer.writerow(row)
    return buffer.getvalue().encode('utf-8')


def make_importer(conn, settings, store=None, data=None, transports=None):
    """FeedImporter on conn with a fake SFTP transport serving data."""
    from wheelfeed.services.importer import FeedImporter
    from wheelfeed.services.kv_store import DatabaseStore
    from wheelfeed.services.remote_fetcher import RemoteFetcher

    if transports is None:
        transports = [FakeTransport(data=data if data is not None else make_csv([]))]
    return FeedImporter(conn, store or DatabaseStore(conn), settings,
                        fetcher=RemoteFetcher(transports=transports))


def create_test_wheel(conn, part_number, status='active', brand=None):
    """Insert a wheel directly into the catalog."""
    from wheelfeed.services.catalog import insert_record, replace_tag, set_attributes

    record_id = insert_record(conn, part_number, status)
    set_attributes(conn, record_id, {'part_number': part_number})
    if brand:
        replace_tag(conn, record_id, 'brand', brand)
    conn.commit()
    return record_id
