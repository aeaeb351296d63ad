"""
Two-phase feed import.

Phase 1 (start_fetch / start_from_bytes): download, parse and cache the
whole feed under a new cache key. No per-row work happens here.

Phase 2 (process_batch): called repeatedly with an advancing offset.
Each call validates and writes one window of rows, then either saves the
resumable run state or, on the last window, runs the deactivation sweep
and purges everything the run cached.

Expected failures come back as results carrying an ErrorKind. The caller
owns the transaction and commits after each call.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .catalog import TAG_MAP, add_import_log
from .category_policy import CategoryPolicy
from .chunked_cache import ChunkedCache, new_cache_key
from .config import ImportSettings, SUPPORTED_FILE_TYPES
from .console import log
from .deactivation import deactivate_missing_records
from .errors import ErrorKind
from .feed_parser import parse_feed
from .image_probe import ImageProbe
from .kv_store import KeyValueStore
from .reconciler import Outcome, Reconciler
from .record_index import ExistingRecordIndex
from .remote_fetcher import RemoteFetcher
from .row_validator import RowValidator, SkipReason
from .run_state import (
    ImportRunState, OutcomeCounters, RunLock, RunProgress, RunStateStore, MAX_LOG_MESSAGES,
)


PROGRESS_MESSAGE_EVERY = 10


def _issue(kind: ErrorKind, row, reason: str, detail: Optional[str]) -> Dict:
    return {
        "row": row.row_number,
        "part_number": row.part_number,
        "kind": kind.value,
        "reason": reason,
        "detail": detail or "",
    }


@dataclass
class StartResult:
    """Outcome of phase 1."""
    success: bool
    cache_key: Optional[str] = None
    total_rows: int = 0
    header: List[str] = field(default_factory=list)
    file_size: int = 0
    is_chunked: bool = False
    message: str = ''
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


@dataclass
class BatchResult:
    """Outcome of one phase 2 call."""
    success: bool
    cache_key: str
    offset: int
    next_offset: int = 0
    total_rows: int = 0
    progress: int = 0
    done: bool = False
    batch: OutcomeCounters = field(default_factory=OutcomeCounters)
    totals: OutcomeCounters = field(default_factory=OutcomeCounters)
    log_messages: List[str] = field(default_factory=list)
    issues: List[Dict] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def imported(self) -> int:
        return self.totals.imported

    @property
    def updated(self) -> int:
        return self.totals.updated

    @property
    def skipped(self) -> int:
        return self.totals.skipped

    @property
    def deactivated(self) -> int:
        return self.totals.deactivated


class FeedImporter:
    """
    Sequences fetch, parse, cache, validate, reconcile and sweep.

    Args:
        conn: Open catalog connection (caller commits)
        store: Key-value store for cache, run state and probe results
        settings: ImportSettings for this process
        fetcher: RemoteFetcher (defaults to the installed SFTP transports)
        probe: ImageProbe, or None to build one from settings
    """

    def __init__(self, conn, store: KeyValueStore, settings: ImportSettings,
                 fetcher: Optional[RemoteFetcher] = None,
                 probe: Optional[ImageProbe] = None):
        self.conn = conn
        self.store = store
        self.settings = settings
        self.fetcher = fetcher or RemoteFetcher()
        self.cache = ChunkedCache(store, settings.cache_ttl, settings.chunk_rows,
                                  settings.chunk_threshold_bytes)
        self.run_state = RunStateStore(store, settings.cache_ttl)
        self.lock = RunLock(store, settings.cache_ttl)
        self.policy = CategoryPolicy(store, settings.hidden_categories,
                                     taxonomy=TAG_MAP.get(settings.category_column, 'brand'))
        if probe is None and settings.validate_images:
            probe = ImageProbe(store, settings.probe_ttl, settings.probe_timeout,
                               settings.probe_workers)
        self.probe = probe if settings.validate_images else None
        self.validator = RowValidator(self.policy, self.probe, settings.category_column)

    # -------------------------------------------------------------------------
    # Phase 1
    # -------------------------------------------------------------------------

    def start_fetch(self) -> StartResult:
        """Download the configured remote file and cache it for batch processing."""
        errors = self.settings.config_errors(remote=True)
        if errors:
            return StartResult(success=False, error='; '.join(errors), error_kind=ErrorKind.CONFIG)

        cache_key = new_cache_key()
        locked = self._acquire_lock(cache_key)
        if locked:
            return locked

        s = self.settings
        log(f"Downloading {s.sftp_path} from {s.sftp_host}:{s.sftp_port}...")
        fetched = self.fetcher.fetch(s.sftp_host, s.sftp_port, s.sftp_username,
                                     s.sftp_password, s.sftp_path)
        if not fetched.success:
            self.lock.release(cache_key)
            self._log_failure(s.file_type, f"Download failed: {fetched.error}")
            return StartResult(success=False, error=fetched.error, error_kind=ErrorKind.FETCH)

        return self._cache_feed(cache_key, fetched.data, s.file_type)

    def start_from_bytes(self, data: bytes, file_type: Optional[str] = None) -> StartResult:
        """Phase 1 for a local file instead of SFTP."""
        file_type = (file_type or self.settings.file_type).lower()
        if file_type not in SUPPORTED_FILE_TYPES:
            return StartResult(success=False, error=f"Unsupported file type: {file_type}",
                               error_kind=ErrorKind.CONFIG)

        cache_key = new_cache_key()
        locked = self._acquire_lock(cache_key)
        if locked:
            return locked
        return self._cache_feed(cache_key, data, file_type)

    def _acquire_lock(self, cache_key: str) -> Optional[StartResult]:
        acquired, holder = self.lock.acquire(cache_key, self.cache.exists)
        if acquired:
            self.store.purge_expired()
            # Any saved state belongs to an expired run
            stale = self.run_state.get()
            if stale and not self.cache.exists(stale.cache_key):
                self.run_state.clear()
            return None
        return StartResult(
            success=False,
            error=f"Another import is in progress ({holder}). Resume or discard it first.",
            error_kind=ErrorKind.LOCKED,
        )

    def _cache_feed(self, cache_key: str, data: bytes, file_type: str) -> StartResult:
        parsed = parse_feed(data, file_type)
        if not parsed.success:
            self.lock.release(cache_key)
            self._log_failure(file_type, f"Parse failed: {parsed.error}")
            return StartResult(success=False, error=parsed.error, error_kind=ErrorKind.PARSE)

        is_chunked = self.cache.store_dataset(cache_key, parsed.header, parsed.rows)
        RunProgress(self.store, cache_key, self.settings.cache_ttl).begin(
            file_type=file_type, file_size=len(data))

        message = f"Downloaded {len(data):,} bytes, {parsed.total_rows} rows ready to import"
        if parsed.defect_count:
            message += f" ({parsed.defect_count} malformed rows will be skipped)"
        log(message)
        return StartResult(
            success=True,
            cache_key=cache_key,
            total_rows=parsed.total_rows,
            header=parsed.header,
            file_size=len(data),
            is_chunked=is_chunked,
            message=message,
        )

    def test_connection(self) -> Dict:
        """Download and count the remote feed without caching or importing it."""
        errors = self.settings.config_errors(remote=True)
        if errors:
            return {'success': False, 'error': '; '.join(errors), 'error_kind': ErrorKind.CONFIG}

        s = self.settings
        fetched = self.fetcher.fetch(s.sftp_host, s.sftp_port, s.sftp_username,
                                     s.sftp_password, s.sftp_path)
        if not fetched.success:
            return {'success': False, 'error': fetched.error, 'error_kind': ErrorKind.FETCH}

        parsed = parse_feed(fetched.data, s.file_type)
        if not parsed.success:
            return {'success': False, 'error': parsed.error, 'error_kind': ErrorKind.PARSE}

        return {
            'success': True,
            'transport': fetched.transport,
            'file_type': s.file_type,
            'file_size': fetched.file_size,
            'rows': parsed.total_rows,
            'header': parsed.header,
            'message': f"Connected via {fetched.transport}: {parsed.total_rows} rows in {s.sftp_path}",
        }

    # -------------------------------------------------------------------------
    # Phase 2
    # -------------------------------------------------------------------------

    def process_batch(self, cache_key: str, offset: int,
                      batch_size: Optional[int] = None) -> BatchResult:
        """Validate and write rows [offset, offset + batch_size) of a cached feed."""
        batch_size = batch_size or self.settings.batch_size
        if offset < 0 or batch_size < 1:
            raise ValueError(f"Invalid batch offset={offset} size={batch_size}")

        window = self.cache.read_window(cache_key, offset, batch_size)
        if window is None:
            message = "Cached feed expired or not found. Please re-download the file."
            return BatchResult(success=False, cache_key=cache_key, offset=offset,
                               error=message, error_kind=ErrorKind.CACHE_EXPIRED,
                               log_messages=[f"❌ {message}"])

        total = window.total_rows
        index = ExistingRecordIndex(self.conn, self.store, cache_key, self.settings.index_ttl)
        index.load(rebuild=(offset == 0))
        reconciler = Reconciler(self.conn, index)

        if offset == 0:
            messages = [f"Loaded {len(index)} existing wheels"]
        else:
            messages = []

        if self.probe is not None:
            self.probe.prefetch(
                row.image_url for row in window.rows
                if not row.defect and row.part_number
                and not self.policy.is_hidden(row.get(self.settings.category_column))
            )

        counters = OutcomeCounters()
        processed = set()
        issues = []
        for position, row in enumerate(window.rows, start=offset + 1):
            check = self.validator.validate(row)
            if not check.accepted:
                if check.reason == SkipReason.INVALID_IMAGE:
                    counters.skipped_no_image += 1
                elif check.reason == SkipReason.HIDDEN_CATEGORY:
                    counters.skipped_hidden_category += 1
                else:
                    counters.skipped_invalid += 1
                    messages.append(f"⚠️ Row {row.row_number} skipped ({check.detail})")
                issues.append(_issue(ErrorKind.ROW_DEFECT, row, check.reason.value, check.detail))
                if check.counts_as_processed:
                    processed.add(row.part_number)
                continue

            part_number = row.part_number
            processed.add(part_number)
            result = reconciler.reconcile(row)
            if not result.success:
                counters.write_failures += 1
                messages.append(f"❌ Failed to save {part_number}: {result.error}")
                issues.append(_issue(ErrorKind.WRITE_FAILURE, row, "write failed", result.error))
            elif result.outcome == Outcome.CREATED:
                counters.imported += 1
            else:
                counters.updated += 1

            if position % PROGRESS_MESSAGE_EVERY == 0:
                messages.append(f"Processed {position} of {total} rows")

        if counters.skipped_no_image:
            messages.append(f"Skipped {counters.skipped_no_image} items with missing or invalid images")
        if counters.skipped_hidden_category:
            messages.append(f"Skipped {counters.skipped_hidden_category} items from hidden brands")

        index.save()
        progress = RunProgress(self.store, cache_key, self.settings.cache_ttl)
        totals = progress.record_batch(offset, counters, processed, rows=len(window.rows))

        actual_end = min(offset + batch_size, total)
        result = BatchResult(
            success=True,
            cache_key=cache_key,
            offset=offset,
            next_offset=actual_end,
            total_rows=total,
            progress=actual_end * 100 // total if total else 100,
            done=actual_end >= total,
            batch=counters,
            totals=totals,
            log_messages=messages,
            issues=issues,
        )

        if result.done:
            self._finish_run(cache_key, progress, index, result)
        else:
            previous = self.run_state.get()
            carried = previous.messages if previous and previous.cache_key == cache_key else []
            self.run_state.save(ImportRunState(
                cache_key=cache_key,
                offset=actual_end,
                total_rows=total,
                imported=totals.imported,
                updated=totals.updated,
                skipped=totals.skipped,
                file_type=progress.info().get('file_type', self.settings.file_type),
                messages=(carried + messages)[-MAX_LOG_MESSAGES:],
            ))
        return result

    def _finish_run(self, cache_key: str, progress: RunProgress,
                    index: ExistingRecordIndex, result: BatchResult) -> None:
        processed = progress.processed_keys(result.total_rows)
        if processed is None:
            deactivated = 0
            result.log_messages.append(
                "⚠️ Deactivation skipped: progress for some batches is missing")
        else:
            deactivated = len(deactivate_missing_records(self.conn, processed))
        result.totals.deactivated = deactivated

        totals = result.totals
        summary = (f"Import complete: {totals.imported} imported, {totals.updated} updated, "
                   f"{totals.skipped} skipped, {deactivated} deactivated.")
        result.log_messages.append(f"✅ {summary}")
        log(summary)

        add_import_log(self.conn, progress.info().get('file_type', self.settings.file_type),
                       totals.imported, totals.updated, totals.skipped, deactivated,
                       'success', summary)

        self.cache.purge(cache_key)
        index.discard()
        progress.purge()
        self.run_state.clear()
        self.lock.release(cache_key)

    # -------------------------------------------------------------------------
    # Run state for drivers
    # -------------------------------------------------------------------------

    def get_run_state(self) -> Optional[ImportRunState]:
        return self.run_state.get()

    def is_resumable(self, state: Optional[ImportRunState]) -> bool:
        return state is not None and self.cache.exists(state.cache_key)

    def save_run_state(self, state: ImportRunState) -> ImportRunState:
        return self.run_state.save(state)

    def clear_run_state(self) -> None:
        self.run_state.clear()

    def discard(self, cache_key: Optional[str] = None) -> Optional[str]:
        """Purge a not-yet-finished run and clear its state. Returns the discarded key."""
        state = self.run_state.get()
        key = cache_key or (state.cache_key if state else None) or self.lock.holder()
        if key:
            self.cache.purge(key)
            ExistingRecordIndex(self.conn, self.store, key).discard()
            RunProgress(self.store, key, self.settings.cache_ttl).purge()
            self.lock.release(key)
            log(f"Discarded import run {key}")
        if state is None or key is None or state.cache_key == key:
            self.run_state.clear()
        return key

    def _log_failure(self, file_type: str, message: str) -> None:
        log(message)
        add_import_log(self.conn, file_type, 0, 0, 0, 0, 'error', message)
