"""
Feed import routes.

The admin screen (or any automation) drives an import in two phases:
POST /fetch once, then POST /{cache_key}/batches?offset=N repeatedly with
the returned next_offset until done is true. GET /state tells a returning
admin whether a run can be resumed.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..services.catalog import get_import_logs
from ..services.config import ImportSettings
from ..services.database import db_pool
from ..services.remote_fetcher import RemoteFetcher
from ..services.run_state import ImportRunState
from .deps import get_fetcher, get_settings, http_error, importer_for


router = APIRouter(prefix="/api/imports", tags=["imports"])


class FetchResponse(BaseModel):
    """Phase 1 result."""
    cache_key: str
    total_rows: int
    header: List[str]
    file_size: int
    is_chunked: bool
    message: str


class BatchResponse(BaseModel):
    """Phase 2 result for one batch. Counters are run totals."""
    cache_key: str
    offset: int
    next_offset: int
    total_rows: int
    progress: int
    done: bool
    imported: int
    updated: int
    skipped: int
    skipped_no_image: int
    skipped_hidden_category: int
    deactivated: int
    log_messages: List[str]
    issues: List[Dict[str, Any]] = []


class RunState(BaseModel):
    """Resumable progress snapshot."""
    cache_key: str
    offset: int
    total_rows: int
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    file_type: str = 'csv'
    saved_at: Optional[str] = None
    progress: int = 0
    messages: List[str] = []


class RunStateResponse(BaseModel):
    state: Optional[RunState] = None
    resumable: bool = False


class SaveRunStateRequest(BaseModel):
    cache_key: str
    offset: int
    total_rows: int
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    file_type: str = 'csv'
    messages: List[str] = []


class DiscardRequest(BaseModel):
    cache_key: Optional[str] = None


class DiscardResponse(BaseModel):
    discarded: Optional[str] = None
    message: str


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    transport: Optional[str] = None
    file_type: Optional[str] = None
    file_size: int = 0
    rows: int = 0
    header: List[str] = []


class ImportLog(BaseModel):
    """One finished or failed import run."""
    log_id: int
    file_type: Optional[str] = None
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    deactivated: int = 0
    status: Optional[str] = None
    message: Optional[str] = None
    created_at: Optional[str] = None


class ImportLogsResponse(BaseModel):
    logs: List[ImportLog]
    total: int


def _state_model(state: Optional[ImportRunState]) -> Optional[RunState]:
    if state is None:
        return None
    return RunState(**state.to_dict())


@router.post("/fetch", response_model=FetchResponse)
def start_fetch(settings: ImportSettings = Depends(get_settings),
                fetcher: RemoteFetcher = Depends(get_fetcher)):
    """
    Phase 1: download the feed over SFTP, parse it and cache it.

    Raises:
        HTTPException: 400 bad settings, 409 another run active,
                       422 unreadable file, 502 download failed
    """
    try:
        with db_pool.get_connection() as conn:
            result = importer_for(conn, settings, fetcher).start_fetch()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Fetch failed: {str(e)}")

    if not result.success:
        raise http_error(result.error_kind, result.error)

    return FetchResponse(
        cache_key=result.cache_key,
        total_rows=result.total_rows,
        header=result.header,
        file_size=result.file_size,
        is_chunked=result.is_chunked,
        message=result.message,
    )


@router.post("/{cache_key}/batches", response_model=BatchResponse)
def process_batch(cache_key: str,
                  offset: int = Query(0, ge=0),
                  batch_size: Optional[int] = Query(None, ge=1, le=500),
                  settings: ImportSettings = Depends(get_settings)):
    """
    Phase 2: process one batch starting at offset.

    Retrying the same offset is safe. A 410 means the cached feed is
    gone and the import must start again from /fetch.
    """
    try:
        with db_pool.get_connection() as conn:
            result = importer_for(conn, settings).process_batch(cache_key, offset, batch_size)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Batch failed: {str(e)}")

    if not result.success:
        raise http_error(result.error_kind, result.error)

    totals = result.totals
    return BatchResponse(
        cache_key=result.cache_key,
        offset=result.offset,
        next_offset=result.next_offset,
        total_rows=result.total_rows,
        progress=result.progress,
        done=result.done,
        imported=totals.imported,
        updated=totals.updated,
        skipped=totals.skipped,
        skipped_no_image=totals.skipped_no_image,
        skipped_hidden_category=totals.skipped_hidden_category,
        deactivated=totals.deactivated,
        log_messages=result.log_messages,
        issues=result.issues,
    )


@router.get("/state", response_model=RunStateResponse)
def get_run_state(settings: ImportSettings = Depends(get_settings)):
    """Saved progress of an unfinished run, and whether its cache is still there."""
    try:
        with db_pool.get_connection() as conn:
            importer = importer_for(conn, settings)
            state = importer.get_run_state()
            resumable = importer.is_resumable(state)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to read run state: {str(e)}")

    return RunStateResponse(state=_state_model(state), resumable=resumable)


@router.put("/state", response_model=RunStateResponse)
def save_run_state(request: SaveRunStateRequest,
                   settings: ImportSettings = Depends(get_settings)):
    """Overwrite the saved progress (used by drivers that track offsets themselves)."""
    try:
        with db_pool.get_connection() as conn:
            importer = importer_for(conn, settings)
            state = importer.save_run_state(ImportRunState(
                cache_key=request.cache_key,
                offset=request.offset,
                total_rows=request.total_rows,
                imported=request.imported,
                updated=request.updated,
                skipped=request.skipped,
                file_type=request.file_type,
                messages=request.messages,
            ))
            resumable = importer.is_resumable(state)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to save run state: {str(e)}")

    return RunStateResponse(state=_state_model(state), resumable=resumable)


@router.delete("/state")
def clear_run_state(settings: ImportSettings = Depends(get_settings)):
    """Forget saved progress without touching the cached feed."""
    try:
        with db_pool.get_connection() as conn:
            importer_for(conn, settings).clear_run_state()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to clear run state: {str(e)}")

    return {"success": True, "message": "Run state cleared"}


@router.post("/discard", response_model=DiscardResponse)
def discard_run(request: Optional[DiscardRequest] = None,
                settings: ImportSettings = Depends(get_settings)):
    """Purge an unfinished run's cache and state so a fresh fetch can start."""
    cache_key = request.cache_key if request else None
    try:
        with db_pool.get_connection() as conn:
            discarded = importer_for(conn, settings).discard(cache_key)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Discard failed: {str(e)}")

    message = f"Discarded import {discarded}" if discarded else "No import to discard"
    return DiscardResponse(discarded=discarded, message=message)


@router.post("/test-connection", response_model=ConnectionTestResponse)
def test_connection(settings: ImportSettings = Depends(get_settings),
                    fetcher: RemoteFetcher = Depends(get_fetcher)):
    """Download the feed once and report its row count without importing."""
    try:
        with db_pool.get_connection() as conn:
            result = importer_for(conn, settings, fetcher).test_connection()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Connection test failed: {str(e)}")

    if not result['success']:
        return ConnectionTestResponse(success=False, message=result['error'])

    return ConnectionTestResponse(
        success=True,
        message=result['message'],
        transport=result['transport'],
        file_type=result['file_type'],
        file_size=result['file_size'],
        rows=result['rows'],
        header=result['header'],
    )


@router.get("/logs", response_model=ImportLogsResponse)
def list_import_logs(limit: int = Query(20, ge=1, le=200)):
    """Recent import runs, newest first."""
    try:
        with db_pool.get_connection() as conn:
            logs = get_import_logs(conn, limit)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load import logs: {str(e)}")

    return ImportLogsResponse(logs=[ImportLog(**log) for log in logs], total=len(logs))
