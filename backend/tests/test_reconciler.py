"""
Tests for create-or-update of feed rows.
Tests Reconciler against the existing record index and per-row recovery.
"""
import sqlite3
import pytest
from unittest.mock import patch


def _row(number, **values):
    from wheelfeed.services.feed_parser import FeedRow
    return FeedRow(row_number=number, values=values)


def _index(conn, memory_store):
    from wheelfeed.services.record_index import ExistingRecordIndex
    index = ExistingRecordIndex(conn, memory_store, 'feed_cache_test')
    index.load(rebuild=True)
    return index


class TestReconcile:
    """Create vs update decisions."""

    def test_creates_new_wheel(self, sqlite_conn, memory_store):
        """Unknown part number creates an active record with attributes and tags."""
        from wheelfeed.services.catalog import get_record_by_business_key
        from wheelfeed.services.reconciler import Outcome, Reconciler

        index = _index(sqlite_conn, memory_store)
        result = Reconciler(sqlite_conn, index).reconcile(_row(
            1, PartNumber='A100', PartDescription='Assault  <b>20x9</b>', Brand='Fuel',
            Finish='Matte Black', ImageURL='https://img.example.com/a.jpg'))

        assert result.success
        assert result.outcome == Outcome.CREATED
        assert index.get('A100') == result.record_id

        record = get_record_by_business_key(sqlite_conn, 'A100')
        assert record['status'] == 'active'
        assert record['title'] == 'A100'
        assert record['attributes']['part_description'] == 'Assault 20x9'
        assert record['attributes']['image_url'] == 'https://img.example.com/a.jpg'
        assert record['tags'] == {'brand': ['Fuel'], 'finish': ['Matte Black']}

    def test_second_row_same_key_updates(self, sqlite_conn, memory_store):
        """A repeated part number in one run updates the record it created."""
        from wheelfeed.services.catalog import count_records, get_record_by_business_key
        from wheelfeed.services.reconciler import Outcome, Reconciler

        reconciler = Reconciler(sqlite_conn, _index(sqlite_conn, memory_store))
        first = reconciler.reconcile(_row(1, PartNumber='A100', PartDescription='First'))
        second = reconciler.reconcile(_row(2, PartNumber='A100', PartDescription='Second'))

        assert second.outcome == Outcome.UPDATED
        assert second.record_id == first.record_id
        assert count_records(sqlite_conn, part_number='A100') == 1
        record = get_record_by_business_key(sqlite_conn, 'A100')
        assert record['attributes']['part_description'] == 'Second'

    def test_update_reactivates_inactive(self, sqlite_conn, memory_store):
        """An inactive wheel seen again becomes active, not duplicated."""
        from wheelfeed.services.catalog import count_records, get_record_by_business_key
        from wheelfeed.services.reconciler import Outcome, Reconciler
        from conftest import create_test_wheel

        record_id = create_test_wheel(sqlite_conn, 'X1', status='inactive')

        result = Reconciler(sqlite_conn, _index(sqlite_conn, memory_store)).reconcile(
            _row(1, PartNumber='X1', Brand='XD'))

        assert result.outcome == Outcome.UPDATED
        assert result.record_id == record_id
        record = get_record_by_business_key(sqlite_conn, 'X1')
        assert record['status'] == 'active'
        assert record['deactivated_at'] is None
        assert count_records(sqlite_conn) == 1

    def test_absent_columns_left_untouched(self, sqlite_conn, memory_store):
        """Columns missing from the feed do not wipe stored attributes."""
        from wheelfeed.services.catalog import get_record_by_business_key
        from wheelfeed.services.reconciler import Reconciler

        reconciler = Reconciler(sqlite_conn, _index(sqlite_conn, memory_store))
        reconciler.reconcile(_row(1, PartNumber='A100', Size='20x9', MSRP_USD='299'))
        reconciler.reconcile(_row(2, PartNumber='A100', MSRP_USD='279'))

        attributes = get_record_by_business_key(sqlite_conn, 'A100')['attributes']
        assert attributes['size'] == '20x9'
        assert attributes['msrp_usd'] == '279'

    def test_tag_replaced_not_appended(self, sqlite_conn, memory_store):
        """A new finish replaces the old one."""
        from wheelfeed.services.catalog import get_record_by_business_key
        from wheelfeed.services.reconciler import Reconciler

        reconciler = Reconciler(sqlite_conn, _index(sqlite_conn, memory_store))
        reconciler.reconcile(_row(1, PartNumber='A100', Finish='Chrome'))
        reconciler.reconcile(_row(2, PartNumber='A100', Finish='Bronze'))

        assert get_record_by_business_key(sqlite_conn, 'A100')['tags']['finish'] == ['Bronze']

    def test_bad_image_url_stored_empty(self, sqlite_conn, memory_store):
        """Unusable URLs are not written."""
        from wheelfeed.services.catalog import get_record_by_business_key
        from wheelfeed.services.reconciler import Reconciler

        Reconciler(sqlite_conn, _index(sqlite_conn, memory_store)).reconcile(
            _row(1, PartNumber='A100', ImageURL='javascript:alert(1)'))

        assert get_record_by_business_key(sqlite_conn, 'A100')['attributes']['image_url'] == ''

    def test_requires_part_number(self, sqlite_conn, memory_store):
        """Unvalidated rows are a caller error."""
        from wheelfeed.services.reconciler import Reconciler

        with pytest.raises(ValueError):
            Reconciler(sqlite_conn, _index(sqlite_conn, memory_store)).reconcile(
                _row(1, PartNumber='  '))


class TestWriteFailure:
    """A rejected write skips only that row."""

    def test_failure_rolls_back_row(self, sqlite_conn, memory_store):
        """Failed attribute write leaves no half-created record."""
        from wheelfeed.services.catalog import count_records
        from wheelfeed.services.reconciler import Reconciler

        index = _index(sqlite_conn, memory_store)
        reconciler = Reconciler(sqlite_conn, index)
        with patch('wheelfeed.services.reconciler.set_attributes',
                   side_effect=sqlite3.IntegrityError('constraint failed')):
            result = reconciler.reconcile(_row(1, PartNumber='A100'))

        assert not result.success
        assert 'constraint failed' in result.error
        assert count_records(sqlite_conn) == 0
        assert 'A100' not in index

    def test_next_row_still_written(self, sqlite_conn, memory_store):
        """After a failure the connection keeps working."""
        from wheelfeed.services.catalog import count_records
        from wheelfeed.services.reconciler import Outcome, Reconciler

        reconciler = Reconciler(sqlite_conn, _index(sqlite_conn, memory_store))
        with patch('wheelfeed.services.reconciler.insert_record',
                   side_effect=sqlite3.OperationalError('disk I/O error')):
            reconciler.reconcile(_row(1, PartNumber='A100'))

        result = reconciler.reconcile(_row(2, PartNumber='A200'))

        assert result.outcome == Outcome.CREATED
        assert count_records(sqlite_conn) == 1


class TestTransaction:
    """Row writes stay inside the caller's transaction."""

    def test_row_not_committed_on_its_own(self, sqlite_conn, memory_store):
        """With no transaction open, a reconciled row is still undone by rollback."""
        from wheelfeed.services.catalog import count_records
        from wheelfeed.services.reconciler import Reconciler

        index = _index(sqlite_conn, memory_store)
        assert not sqlite_conn.in_transaction

        result = Reconciler(sqlite_conn, index).reconcile(_row(1, PartNumber='A100', Brand='Fuel'))

        assert result.success
        assert sqlite_conn.in_transaction
        sqlite_conn.rollback()
        assert count_records(sqlite_conn) == 0
