"""
Tests for the deactivation sweep and the existing record index.
"""


class TestDeactivateMissingRecords:
    """Full-run soft delete."""

    def test_unseen_active_wheel_deactivated(self, sqlite_conn):
        """Active wheels missing from the feed become inactive."""
        from wheelfeed.services.catalog import get_record_by_business_key
        from wheelfeed.services.deactivation import deactivate_missing_records
        from conftest import create_test_wheel

        create_test_wheel(sqlite_conn, 'KEEP')
        create_test_wheel(sqlite_conn, 'GONE')

        deactivated = deactivate_missing_records(sqlite_conn, {'KEEP'})

        assert [d['part_number'] for d in deactivated] == ['GONE']
        record = get_record_by_business_key(sqlite_conn, 'GONE')
        assert record['status'] == 'inactive'
        assert record['deactivated_at'] is not None
        assert get_record_by_business_key(sqlite_conn, 'KEEP')['status'] == 'active'

    def test_inactive_wheels_untouched(self, sqlite_conn):
        """Already-inactive wheels are not counted again."""
        from wheelfeed.services.deactivation import deactivate_missing_records
        from conftest import create_test_wheel

        create_test_wheel(sqlite_conn, 'OLD', status='inactive')

        assert deactivate_missing_records(sqlite_conn, set()) == []

    def test_whitespace_in_keys(self, sqlite_conn):
        """Keys compare trimmed."""
        from wheelfeed.services.deactivation import find_missing_records
        from conftest import create_test_wheel

        create_test_wheel(sqlite_conn, 'A100')

        assert find_missing_records(sqlite_conn, [' A100 ']) == []

    def test_records_never_deleted(self, sqlite_conn):
        """The sweep only changes status."""
        from wheelfeed.services.catalog import count_records
        from wheelfeed.services.deactivation import deactivate_missing_records
        from conftest import create_test_wheel

        for pn in ('A', 'B', 'C'):
            create_test_wheel(sqlite_conn, pn)

        deactivate_missing_records(sqlite_conn, [])

        assert count_records(sqlite_conn) == 3
        assert count_records(sqlite_conn, status='inactive') == 3


class TestExistingRecordIndex:
    """Run-scoped part number map."""

    def test_build_includes_inactive(self, sqlite_conn, memory_store):
        from wheelfeed.services.record_index import ExistingRecordIndex
        from conftest import create_test_wheel

        active_id = create_test_wheel(sqlite_conn, 'A')
        inactive_id = create_test_wheel(sqlite_conn, 'B', status='inactive')

        index = ExistingRecordIndex(sqlite_conn, memory_store, 'run')
        index.load()

        assert index.get('A') == active_id
        assert index.get('B') == inactive_id
        assert len(index) == 2

    def test_cached_between_batches(self, sqlite_conn, memory_store):
        """A later load reads the cached map instead of scanning."""
        from wheelfeed.services.record_index import ExistingRecordIndex
        from conftest import create_test_wheel

        create_test_wheel(sqlite_conn, 'A')
        ExistingRecordIndex(sqlite_conn, memory_store, 'run').load()
        create_test_wheel(sqlite_conn, 'LATE')

        index = ExistingRecordIndex(sqlite_conn, memory_store, 'run')
        index.load()

        assert 'LATE' not in index
        index.load(rebuild=True)
        assert 'LATE' in index

    def test_remember_persists_on_save(self, sqlite_conn, memory_store):
        from wheelfeed.services.record_index import ExistingRecordIndex

        index = ExistingRecordIndex(sqlite_conn, memory_store, 'run')
        index.load()
        index.remember('NEW', 42)
        index.save()

        again = ExistingRecordIndex(sqlite_conn, memory_store, 'run')
        again.load()
        assert again.get('NEW') == 42

    def test_use_before_load(self, sqlite_conn, memory_store):
        import pytest
        from wheelfeed.services.record_index import ExistingRecordIndex

        with pytest.raises(RuntimeError):
            ExistingRecordIndex(sqlite_conn, memory_store, 'run').get('A')
