"""
Import configuration.

Settings are read from environment variables (optionally loaded from
backend/.env) into an ImportSettings instance that is passed explicitly
to every component that needs it.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


# Load .env from backend directory
_backend_dir = Path(__file__).parent.parent.parent
_env_path = _backend_dir / ".env"


# Defaults
DEFAULT_BATCH_SIZE = 25
DEFAULT_CHUNK_ROWS = 1000
DEFAULT_CHUNK_THRESHOLD = 1024 * 1024   # 1 MiB serialized
CACHE_TTL = 6 * 3600                    # Downloaded dataset
INDEX_TTL = 2 * 3600                    # Existing record map
PROBE_TTL = 3600                        # Image probe results
PROBE_TIMEOUT = 5
PROBE_WORKERS = 4

SUPPORTED_FILE_TYPES = ('csv', 'json')


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        print(f"Warning: {name}={value!r} is not a number, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name: str) -> List[str]:
    value = os.getenv(name, '')
    return [item.strip() for item in value.split(',') if item.strip()]


@dataclass
class ImportSettings:
    """Everything an import run needs to know, passed to components explicitly."""
    # Remote feed location
    sftp_host: str = ''
    sftp_port: int = 22
    sftp_username: str = ''
    sftp_password: str = ''
    sftp_path: str = ''
    file_type: str = 'csv'

    # Batching and caching
    batch_size: int = DEFAULT_BATCH_SIZE
    chunk_rows: int = DEFAULT_CHUNK_ROWS
    chunk_threshold_bytes: int = DEFAULT_CHUNK_THRESHOLD
    cache_ttl: int = CACHE_TTL
    index_ttl: int = INDEX_TTL

    # Image validation
    validate_images: bool = True
    probe_ttl: int = PROBE_TTL
    probe_timeout: float = PROBE_TIMEOUT
    probe_workers: int = PROBE_WORKERS

    # Category policy
    category_column: str = 'Brand'
    hidden_categories: List[str] = field(default_factory=list)

    # Storage
    database_url: Optional[str] = None
    sqlite_path: str = 'wheelfeed.db'

    @classmethod
    def from_env(cls) -> 'ImportSettings':
        """Build settings from FEED_* environment variables."""
        return cls(
            sftp_host=os.getenv('FEED_SFTP_HOST', '').strip(),
            sftp_port=_env_int('FEED_SFTP_PORT', 22),
            sftp_username=os.getenv('FEED_SFTP_USERNAME', '').strip(),
            sftp_password=os.getenv('FEED_SFTP_PASSWORD', ''),
            sftp_path=os.getenv('FEED_SFTP_PATH', '').strip(),
            file_type=os.getenv('FEED_FILE_TYPE', 'csv').strip().lower() or 'csv',
            batch_size=_env_int('FEED_BATCH_SIZE', DEFAULT_BATCH_SIZE),
            chunk_rows=_env_int('FEED_CHUNK_ROWS', DEFAULT_CHUNK_ROWS),
            chunk_threshold_bytes=_env_int('FEED_CHUNK_THRESHOLD', DEFAULT_CHUNK_THRESHOLD),
            cache_ttl=_env_int('FEED_CACHE_TTL', CACHE_TTL),
            index_ttl=_env_int('FEED_INDEX_TTL', INDEX_TTL),
            validate_images=_env_bool('FEED_VALIDATE_IMAGES', True),
            probe_ttl=_env_int('FEED_PROBE_TTL', PROBE_TTL),
            probe_timeout=_env_int('FEED_PROBE_TIMEOUT', PROBE_TIMEOUT),
            probe_workers=_env_int('FEED_PROBE_WORKERS', PROBE_WORKERS),
            category_column=os.getenv('FEED_CATEGORY_COLUMN', 'Brand').strip() or 'Brand',
            hidden_categories=_env_list('FEED_HIDDEN_CATEGORIES'),
            database_url=os.getenv('DATABASE_URL') or None,
            sqlite_path=os.getenv('FEED_SQLITE_PATH', str(_backend_dir / 'wheelfeed.db')),
        )

    def missing_remote_settings(self) -> List[str]:
        """Names of the remote settings that are empty."""
        missing = []
        if not self.sftp_host:
            missing.append('host')
        if not self.sftp_username:
            missing.append('username')
        if not self.sftp_password:
            missing.append('password')
        if not self.sftp_path:
            missing.append('path')
        return missing

    def config_errors(self, remote: bool = True) -> List[str]:
        """Human-readable problems that must be fixed before a run can start."""
        errors = []
        if remote:
            missing = self.missing_remote_settings()
            if missing:
                errors.append(f"Missing SFTP settings: {', '.join(missing)}")
        if self.file_type not in SUPPORTED_FILE_TYPES:
            errors.append(f"Unsupported file type: {self.file_type}")
        if self.batch_size < 1:
            errors.append("Batch size must be at least 1")
        if self.chunk_rows < 1:
            errors.append("Chunk size must be at least 1")
        return errors


def load_settings(env_path: Optional[Path] = None) -> ImportSettings:
    """Load backend/.env (if present) and build settings from the environment."""
    load_dotenv(env_path or _env_path)
    return ImportSettings.from_env()
