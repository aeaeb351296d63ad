"""
Error kinds shared by the import pipeline.

Expected failures are returned inside result objects carrying an
ErrorKind; exceptions are reserved for programmer errors.
"""

from enum import Enum


class ErrorKind(Enum):
    """Why an import step failed."""
    CONFIG = "config"                   # Missing or invalid settings
    FETCH = "fetch"                     # Connect/auth/transfer failed on every transport
    PARSE = "parse"                     # Empty file or unsupported structure
    CACHE_EXPIRED = "cache_expired"     # Dataset no longer resolvable, re-fetch required
    LOCKED = "locked"                   # Another run holds the import lock
    ROW_DEFECT = "row_defect"           # Row skipped, run continues
    WRITE_FAILURE = "write_failure"     # Store rejected a row write, run continues


# HTTP status used by the API layer for batch-level failures
HTTP_STATUS = {
    ErrorKind.CONFIG: 400,
    ErrorKind.LOCKED: 409,
    ErrorKind.CACHE_EXPIRED: 410,
    ErrorKind.PARSE: 422,
    ErrorKind.FETCH: 502,
}
