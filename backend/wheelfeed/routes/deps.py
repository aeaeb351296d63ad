"""
Shared route dependencies.

Settings and the SFTP fetcher are FastAPI dependencies so tests can
swap them with app.dependency_overrides.
"""

from fastapi import HTTPException

from ..services.config import ImportSettings, load_settings
from ..services.errors import HTTP_STATUS, ErrorKind
from ..services.importer import FeedImporter
from ..services.kv_store import DatabaseStore
from ..services.remote_fetcher import RemoteFetcher


def get_settings() -> ImportSettings:
    return load_settings()


def get_fetcher() -> RemoteFetcher:
    return RemoteFetcher()


def importer_for(conn, settings: ImportSettings, fetcher: RemoteFetcher = None) -> FeedImporter:
    """Importer sharing the request's connection for catalog and store."""
    return FeedImporter(conn, DatabaseStore(conn), settings, fetcher=fetcher)


def http_error(kind: ErrorKind, message: str) -> HTTPException:
    return HTTPException(status_code=HTTP_STATUS.get(kind, 500), detail=message)
