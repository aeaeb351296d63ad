"""
Tests for environment-driven settings.
"""


class TestImportSettings:
    """FEED_* variables into ImportSettings."""

    def test_defaults(self, monkeypatch):
        from wheelfeed.services.config import DEFAULT_BATCH_SIZE, ImportSettings

        for name in ('FEED_BATCH_SIZE', 'FEED_FILE_TYPE', 'FEED_HIDDEN_CATEGORIES',
                     'FEED_VALIDATE_IMAGES', 'FEED_SFTP_PORT'):
            monkeypatch.delenv(name, raising=False)

        settings = ImportSettings.from_env()

        assert settings.batch_size == DEFAULT_BATCH_SIZE
        assert settings.file_type == 'csv'
        assert settings.sftp_port == 22
        assert settings.validate_images is True
        assert settings.hidden_categories == []

    def test_reads_environment(self, monkeypatch):
        from wheelfeed.services.config import ImportSettings

        monkeypatch.setenv('FEED_SFTP_HOST', ' sftp.vendor.com ')
        monkeypatch.setenv('FEED_SFTP_PORT', '2222')
        monkeypatch.setenv('FEED_FILE_TYPE', 'JSON')
        monkeypatch.setenv('FEED_BATCH_SIZE', '50')
        monkeypatch.setenv('FEED_VALIDATE_IMAGES', 'off')
        monkeypatch.setenv('FEED_HIDDEN_CATEGORIES', 'Fuel, Moto Metal,,')

        settings = ImportSettings.from_env()

        assert settings.sftp_host == 'sftp.vendor.com'
        assert settings.sftp_port == 2222
        assert settings.file_type == 'json'
        assert settings.batch_size == 50
        assert settings.validate_images is False
        assert settings.hidden_categories == ['Fuel', 'Moto Metal']

    def test_bad_number_falls_back(self, monkeypatch):
        from wheelfeed.services.config import DEFAULT_BATCH_SIZE, ImportSettings

        monkeypatch.setenv('FEED_BATCH_SIZE', 'lots')

        assert ImportSettings.from_env().batch_size == DEFAULT_BATCH_SIZE

    def test_missing_remote_settings(self):
        from wheelfeed.services.config import ImportSettings

        settings = ImportSettings(sftp_host='h', sftp_path='/f.csv')

        assert settings.missing_remote_settings() == ['username', 'password']
        assert settings.config_errors() == ['Missing SFTP settings: username, password']
        assert settings.config_errors(remote=False) == []

    def test_invalid_values(self):
        from wheelfeed.services.config import ImportSettings

        errors = ImportSettings(file_type='xml', batch_size=0).config_errors(remote=False)

        assert 'Unsupported file type: xml' in errors
        assert 'Batch size must be at least 1' in errors
