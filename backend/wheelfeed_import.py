#!/usr/bin/env python3
"""
WheelFeed importer command line.

Drives the same two-phase import the API exposes: fetch the vendor feed
once, then process it batch by batch, committing after every batch so an
interrupted run can be resumed.

Usage:
    python wheelfeed_import.py run                      # SFTP fetch + full import
    python wheelfeed_import.py run --file feed.csv      # Import a local file
    python wheelfeed_import.py resume                   # Continue an interrupted run
    python wheelfeed_import.py status                   # Show saved progress
    python wheelfeed_import.py discard                  # Drop an unfinished run
    python wheelfeed_import.py test-connection          # Check SFTP settings
    python wheelfeed_import.py logs --limit 10          # Recent import history

Requirements:
    pip install -e .            (paramiko, requests, pandas, python-dotenv)

Settings come from FEED_* environment variables or backend/.env.
"""

import argparse
import os
import sys
import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pandas as pd

from wheelfeed.services.catalog import get_import_logs, init_schema
from wheelfeed.services.config import SUPPORTED_FILE_TYPES, ImportSettings, load_settings
from wheelfeed.services.console import timestamp
from wheelfeed.services.database import connect_database
from wheelfeed.services.importer import BatchResult, FeedImporter
from wheelfeed.services.kv_store import DatabaseStore
from wheelfeed.services.remote_fetcher import RemoteFetcher


OUTPUT_DIR = "output"


# =============================================================================
# Progress and reporting
# =============================================================================

class ProgressTracker:
    """Per-batch progress line with rate and ETA."""

    def __init__(self, total: int, start: int = 0):
        self.total = total
        self.start = start
        self.start_time = time.time()

    def update(self, result: BatchResult):
        done_rows = result.next_offset - self.start
        elapsed = time.time() - self.start_time
        rate = done_rows / elapsed if elapsed > 0 else 0
        remaining = self.total - result.next_offset
        eta = str(timedelta(seconds=int(remaining / rate))) if rate > 0 else "?"
        pct = (result.next_offset / self.total) * 100 if self.total else 100.0
        batch = result.batch

        print(f"[{timestamp()}] [{result.next_offset}/{self.total}] ({pct:5.1f}%) "
              f"+{batch.imported} new, +{batch.updated} updated, {batch.skipped} skipped "
              f"| {rate:.1f} rows/s | ETA: {eta}", flush=True)


class RunReport:
    """Collects what a driven run did for the final report."""

    def __init__(self):
        self.started_at = datetime.now()
        self.batches = 0
        self.issues: List[Dict] = []
        self.result: Optional[BatchResult] = None

    def add(self, result: BatchResult):
        self.batches += 1
        self.issues.extend(result.issues)
        self.result = result

    def print_report(self):
        """Print the final import statistics report to console."""
        duration = datetime.now() - self.started_at
        duration_str = str(timedelta(seconds=int(duration.total_seconds())))

        print("\n" + "=" * 70)
        print("IMPORT STATISTICS REPORT")
        print("=" * 70)
        print(f"\nRun Duration: {duration_str}")
        print(f"Batches: {self.batches}")

        if self.result is None:
            print("\nNo batches were processed.")
            print("=" * 70)
            return

        totals = self.result.totals
        print(f"Completed: {'Yes' if self.result.done else 'No'}")

        print("\n--- WHEELS ---")
        print(f"  Created:       {totals.imported:>6}")
        print(f"  Updated:       {totals.updated:>6}")
        print(f"  Deactivated:   {totals.deactivated:>6}")

        print("\n--- SKIPPED ---")
        print(f"  No image:      {totals.skipped_no_image:>6}")
        print(f"  Hidden brand:  {totals.skipped_hidden_category:>6}")
        print(f"  Invalid row:   {totals.skipped_invalid:>6}")
        print(f"  Write failed:  {totals.write_failures:>6}")
        print(f"  Total:         {totals.skipped:>6}")

        reasons: Dict[str, int] = {}
        for issue in self.issues:
            reasons[issue['reason']] = reasons.get(issue['reason'], 0) + 1
        if reasons:
            print("\n--- SKIP REASONS (this session) ---")
            for reason, count in sorted(reasons.items()):
                print(f"  {reason:<25} {count:>6}")

        print("\n" + "=" * 70)


def save_skipped_rows(issues: List[Dict], output_dir: str = OUTPUT_DIR) -> str:
    """Save skipped and failed rows to CSV for review."""
    if not issues:
        return ""

    os.makedirs(output_dir, exist_ok=True)
    df = pd.DataFrame(issues)
    ordered_cols = [c for c in ['row', 'part_number', 'kind', 'reason', 'detail'] if c in df.columns]
    df = df[ordered_cols].sort_values('row')

    stamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
    filepath = os.path.join(output_dir, f"skipped_rows_{stamp}.csv")
    df.to_csv(filepath, index=False)

    print(f"Saved {len(issues)} skipped rows to: {filepath}")
    return filepath


# =============================================================================
# Helpers
# =============================================================================

def open_importer(settings: ImportSettings, fetcher: Optional[RemoteFetcher] = None):
    """Open the catalog connection and build an importer on it."""
    conn = connect_database(settings.database_url, settings.sqlite_path)
    init_schema(conn)
    conn.commit()
    return conn, FeedImporter(conn, DatabaseStore(conn), settings, fetcher=fetcher)


def _print_batch_messages(result: BatchResult):
    for message in result.log_messages:
        if message.startswith(("⚠️", "❌", "✅")):
            print(f"    {message}", flush=True)


def drive_batches(conn, importer: FeedImporter, cache_key: str, offset: int,
                  total_rows: int, batch_size: Optional[int] = None,
                  report: Optional[RunReport] = None,
                  single: bool = False) -> Optional[BatchResult]:
    """
    Process batches from offset until the run is done.

    Commits after every batch. Returns the last BatchResult (a failed one
    if a batch could not run).
    """
    tracker = ProgressTracker(total_rows, start=offset)
    result = None
    while True:
        try:
            result = importer.process_batch(cache_key, offset, batch_size)
            conn.commit()
        except Exception:
            conn.rollback()
            raise

        if not result.success:
            print(f"\n✗ {result.error}", flush=True)
            return result

        if report is not None:
            report.add(result)
        _print_batch_messages(result)
        tracker.update(result)

        if result.done or single:
            return result
        offset = result.next_offset


def _finish(report: RunReport, result: Optional[BatchResult]) -> int:
    report.print_report()
    if report.issues:
        save_skipped_rows(report.issues)
    if result is None or not result.success:
        return 1
    return 0


# =============================================================================
# Commands
# =============================================================================

def cmd_run(args, settings: ImportSettings) -> int:
    conn, importer = open_importer(settings)
    try:
        if args.file:
            print(f"Reading {args.file}...")
            with open(args.file, 'rb') as f:
                data = f.read()
            file_type = args.file_type or os.path.splitext(args.file)[1].lstrip('.').lower()
            started = importer.start_from_bytes(data, file_type or None)
        else:
            started = importer.start_fetch()
        conn.commit()

        if not started.success:
            print(f"\n✗ {started.error}")
            return 1
        print(f"✓ {started.message}")
        print(f"  Cache key: {started.cache_key}\n")

        report = RunReport()
        result = drive_batches(conn, importer, started.cache_key, 0, started.total_rows,
                               args.batch_size, report)
        return _finish(report, result)
    finally:
        conn.close()


def cmd_fetch(args, settings: ImportSettings) -> int:
    conn, importer = open_importer(settings)
    try:
        started = importer.start_fetch()
        conn.commit()
        if not started.success:
            print(f"✗ {started.error}")
            return 1
        print(f"✓ {started.message}")
        print(f"Cache key: {started.cache_key}")
        print(f"Next: python wheelfeed_import.py process --cache-key {started.cache_key}")
        return 0
    finally:
        conn.close()


def cmd_process(args, settings: ImportSettings) -> int:
    conn, importer = open_importer(settings)
    try:
        facts = importer.cache.describe(args.cache_key)
        total_rows = facts['total_rows'] if facts else 0
        report = RunReport()
        result = drive_batches(conn, importer, args.cache_key, args.offset, total_rows,
                               args.batch_size, report, single=args.once)
        if args.once and result is not None and result.success and not result.done:
            print(f"Next offset: {result.next_offset}")
            return 0
        return _finish(report, result)
    finally:
        conn.close()


def cmd_resume(args, settings: ImportSettings) -> int:
    conn, importer = open_importer(settings)
    try:
        state = importer.get_run_state()
        if state is None:
            print("No unfinished import to resume")
            return 0
        if not importer.is_resumable(state):
            print("Cached feed expired or not found. Please re-download the file.")
            print("Run 'discard' and then 'run' to start over.")
            return 1

        print(f"✓ Resuming {state.cache_key} at row {state.offset} of {state.total_rows} "
              f"({state.progress}%)")
        report = RunReport()
        result = drive_batches(conn, importer, state.cache_key, state.offset, state.total_rows,
                               args.batch_size, report)
        return _finish(report, result)
    finally:
        conn.close()


def cmd_status(args, settings: ImportSettings) -> int:
    conn, importer = open_importer(settings)
    try:
        state = importer.get_run_state()
        holder = importer.lock.holder()
        if state is None:
            print("No unfinished import")
            if holder:
                print(f"Lock held by: {holder}")
            return 0

        print(f"Cache key:  {state.cache_key}")
        print(f"Progress:   {state.offset}/{state.total_rows} ({state.progress}%)")
        print(f"Imported:   {state.imported}")
        print(f"Updated:    {state.updated}")
        print(f"Skipped:    {state.skipped}")
        print(f"Saved at:   {state.saved_at}")
        print(f"Resumable:  {'Yes' if importer.is_resumable(state) else 'No (cache expired)'}")
        for message in state.messages[-10:]:
            print(f"  {message}")
        return 0
    finally:
        conn.close()


def cmd_discard(args, settings: ImportSettings) -> int:
    conn, importer = open_importer(settings)
    try:
        discarded = importer.discard(args.cache_key)
        conn.commit()
        print(f"Discarded import {discarded}" if discarded else "No import to discard")
        return 0
    finally:
        conn.close()


def cmd_test_connection(args, settings: ImportSettings) -> int:
    conn, importer = open_importer(settings)
    try:
        result = importer.test_connection()
        if not result['success']:
            print(f"✗ {result['error']}")
            return 1
        print(f"✓ {result['message']}")
        print(f"  File size: {result['file_size']:,} bytes")
        print(f"  Columns:   {', '.join(result['header'])}")
        return 0
    finally:
        conn.close()


def cmd_logs(args, settings: ImportSettings) -> int:
    conn, _importer = open_importer(settings)
    try:
        logs = get_import_logs(conn, args.limit)
    finally:
        conn.close()

    if not logs:
        print("No imports logged yet")
        return 0

    df = pd.DataFrame(logs)
    cols = ['created_at', 'status', 'file_type', 'imported', 'updated', 'skipped', 'deactivated']
    print(df[cols].to_string(index=False))
    return 0


COMMANDS = {
    'run': cmd_run,
    'fetch': cmd_fetch,
    'process': cmd_process,
    'resume': cmd_resume,
    'status': cmd_status,
    'discard': cmd_discard,
    'test-connection': cmd_test_connection,
    'logs': cmd_logs,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='WheelFeed vendor feed importer')
    sub = parser.add_subparsers(dest='command', required=True)

    run = sub.add_parser('run', help='Fetch the feed and import every batch')
    run.add_argument('--file', default=None, help='Import a local file instead of SFTP')
    run.add_argument('--file-type', choices=SUPPORTED_FILE_TYPES, default=None,
                     help='Format of --file (default: from extension)')
    run.add_argument('--batch-size', type=int, default=None,
                     help='Rows per batch (default: FEED_BATCH_SIZE)')

    sub.add_parser('fetch', help='Download and cache the feed only')

    process = sub.add_parser('process', help='Process batches of a cached feed')
    process.add_argument('--cache-key', required=True)
    process.add_argument('--offset', type=int, default=0)
    process.add_argument('--batch-size', type=int, default=None)
    process.add_argument('--once', action='store_true', help='Process a single batch and stop')

    resume = sub.add_parser('resume', help='Continue an interrupted import')
    resume.add_argument('--batch-size', type=int, default=None)

    sub.add_parser('status', help='Show saved progress')

    discard = sub.add_parser('discard', help='Drop an unfinished import')
    discard.add_argument('--cache-key', default=None)

    sub.add_parser('test-connection', help='Download the feed and count its rows')

    logs = sub.add_parser('logs', help='Show recent import runs')
    logs.add_argument('--limit', type=int, default=20)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the importer."""
    args = build_parser().parse_args(argv)
    settings = load_settings()

    print("=" * 60)
    print(f"WheelFeed Importer - {args.command}")
    print("=" * 60)

    return COMMANDS[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
