"""
Tests for the row gate and the hidden category policy.
"""
from unittest.mock import MagicMock


def _row(number=1, defect=None, **values):
    from wheelfeed.services.feed_parser import FeedRow
    return FeedRow(row_number=number, values=values, defect=defect)


class TestRowValidator:
    """Checks run in order, first failure wins."""

    def test_accepts_complete_row(self, memory_store):
        from wheelfeed.services.category_policy import CategoryPolicy
        from wheelfeed.services.row_validator import RowValidator

        validator = RowValidator(CategoryPolicy(memory_store))
        check = validator.validate(_row(PartNumber='A100', Brand='Fuel'))

        assert check.accepted
        assert check.counts_as_processed

    def test_defect_wins(self, memory_store):
        """A malformed row is rejected before its key is looked at."""
        from wheelfeed.services.category_policy import CategoryPolicy
        from wheelfeed.services.row_validator import RowValidator, SkipReason

        validator = RowValidator(CategoryPolicy(memory_store, ['Fuel']))
        check = validator.validate(_row(defect='column count mismatch', PartNumber='A100', Brand='Fuel'))

        assert check.reason == SkipReason.ROW_DEFECT
        assert check.detail == 'column count mismatch'
        assert not check.counts_as_processed

    def test_missing_part_number(self, memory_store):
        from wheelfeed.services.category_policy import CategoryPolicy
        from wheelfeed.services.row_validator import RowValidator, SkipReason

        check = RowValidator(CategoryPolicy(memory_store)).validate(_row(PartNumber='  '))

        assert check.reason == SkipReason.MISSING_KEY
        assert not check.counts_as_processed

    def test_hidden_category_case_insensitive(self, memory_store):
        """Hidden brand names match regardless of case."""
        from wheelfeed.services.category_policy import CategoryPolicy
        from wheelfeed.services.row_validator import RowValidator, SkipReason

        validator = RowValidator(CategoryPolicy(memory_store, ['fuel']))
        check = validator.validate(_row(PartNumber='A100', Brand='FUEL'))

        assert check.reason == SkipReason.HIDDEN_CATEGORY
        assert check.counts_as_processed

    def test_hidden_category_skips_image_probe(self, memory_store):
        """No network call for rows that are skipped anyway."""
        from wheelfeed.services.category_policy import CategoryPolicy
        from wheelfeed.services.row_validator import RowValidator

        probe = MagicMock()
        validator = RowValidator(CategoryPolicy(memory_store, ['Fuel']), probe)
        validator.validate(_row(PartNumber='A100', Brand='Fuel', ImageURL='https://x/a.jpg'))

        probe.check.assert_not_called()

    def test_invalid_image(self, memory_store):
        from wheelfeed.services.category_policy import CategoryPolicy
        from wheelfeed.services.row_validator import RowValidator, SkipReason

        probe = MagicMock()
        probe.check.return_value = False
        validator = RowValidator(CategoryPolicy(memory_store), probe)
        check = validator.validate(_row(PartNumber='A100', ImageURL=' https://x/a.jpg '))

        assert check.reason == SkipReason.INVALID_IMAGE
        probe.check.assert_called_once_with('https://x/a.jpg')

    def test_custom_category_column(self, memory_store):
        """The category can come from another column."""
        from wheelfeed.services.category_policy import CategoryPolicy
        from wheelfeed.services.row_validator import RowValidator, SkipReason

        validator = RowValidator(CategoryPolicy(memory_store, ['Chrome']), category_column='Finish')
        check = validator.validate(_row(PartNumber='A100', Brand='Fuel', Finish='chrome'))

        assert check.reason == SkipReason.HIDDEN_CATEGORY


class TestCategoryPolicy:
    """Configured plus saved hidden categories."""

    def test_union_without_duplicates(self, memory_store):
        from wheelfeed.services.category_policy import CategoryPolicy

        policy = CategoryPolicy(memory_store, ['Fuel', ' '])
        categories = policy.set_hidden_categories(['fuel', 'XD', 'xd', ''])

        assert categories == ['Fuel', 'XD']
        assert policy.saved_categories() == ['fuel', 'XD']

    def test_saved_list_visible_to_new_instance(self, memory_store):
        from wheelfeed.services.category_policy import CategoryPolicy

        CategoryPolicy(memory_store).set_hidden_categories(['Moto Metal'])

        assert CategoryPolicy(memory_store).is_hidden('moto metal')

    def test_bulk_deactivate_and_restore(self, sqlite_conn, memory_store):
        """Only wheels tagged with a hidden brand change status."""
        from wheelfeed.services.catalog import count_records
        from wheelfeed.services.category_policy import CategoryPolicy
        from conftest import create_test_wheel

        create_test_wheel(sqlite_conn, 'F1', brand='Fuel')
        create_test_wheel(sqlite_conn, 'F2', brand='fuel')
        create_test_wheel(sqlite_conn, 'X1', brand='XD')
        policy = CategoryPolicy(memory_store, ['Fuel'])

        assert policy.apply_bulk_action(sqlite_conn, 'deactivate') == 2
        assert count_records(sqlite_conn, status='inactive') == 2
        assert policy.apply_bulk_action(sqlite_conn, 'deactivate') == 0

        assert policy.apply_bulk_action(sqlite_conn, 'restore') == 2
        assert count_records(sqlite_conn, status='active') == 3

    def test_unknown_bulk_action(self, sqlite_conn, memory_store):
        import pytest
        from wheelfeed.services.category_policy import CategoryPolicy

        with pytest.raises(ValueError):
            CategoryPolicy(memory_store).apply_bulk_action(sqlite_conn, 'delete')
