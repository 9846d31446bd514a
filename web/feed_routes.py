"""
Feed Admin Routes - Feed Configuration and On-Demand Imports

Routes:
- GET    /admin/feeds                - List feeds
- POST   /admin/feeds                - Create feed
- GET    /admin/feeds/{id}           - Feed detail
- PUT    /admin/feeds/{id}           - Update feed
- DELETE /admin/feeds/{id}           - Delete feed and its records
- POST   /admin/feeds/{id}/refresh   - Pull a URL feed now
- POST   /admin/import/run           - Import an upload, URL or JSON rows
- POST   /admin/import/preview       - Dry-run an upload, URL or JSON rows
- GET    /admin/import/runs          - Run history, newest first

Authentication is handled in front of the app, not here.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.catalog import (
    EntityKind,
    Feed,
    FeedFormat,
    FeedMode,
    RunStatus,
    slugify,
)
from core.ingestion import (
    FeedError,
    FeedFetchError,
    FeedRefreshScheduler,
    IngestionEngine,
    preview_rows,
)
from core.ingestion.preview import DEFAULT_PREVIEW_LIMIT
from core.ingestion.rows import RawRow, as_rows


logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

router = APIRouter(prefix="/admin", tags=["feeds"])


def get_engine(request: Request) -> IngestionEngine:
    """Engine created by the app factory."""
    return request.app.state.engine


def get_scheduler(request: Request) -> FeedRefreshScheduler:
    """Refresh scheduler created by the app factory."""
    return request.app.state.scheduler


# =============================================================================
# Request Models
# =============================================================================


class FeedPayload(BaseModel):
    """Feed definition as submitted by the admin UI."""

    id: Optional[str] = None
    name: str
    mode: FeedMode = FeedMode.UPLOAD
    format: FeedFormat = FeedFormat.JSON
    is_active: bool = True
    url: Optional[str] = None
    mapping: dict[str, str] = Field(default_factory=dict)
    auto_refresh: bool = False
    refresh_interval_hours: Optional[float] = None


# =============================================================================
# Helpers
# =============================================================================


def _build_feed(payload: FeedPayload, feed_id: str, existing: Optional[Feed] = None) -> Feed:
    try:
        feed = Feed(
            id=feed_id,
            name=payload.name,
            mode=payload.mode,
            format=payload.format,
            is_active=payload.is_active,
            url=payload.url or None,
            mapping=payload.mapping,
            auto_refresh=payload.auto_refresh,
            refresh_interval_hours=payload.refresh_interval_hours,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if existing is not None:
        feed.created_at = existing.created_at
        feed.last_auto_refresh = existing.last_auto_refresh
    return feed


def _require_feed(engine: IngestionEngine, feed_id: str) -> Feed:
    feed = engine.catalog.get_feed(feed_id)
    if feed is None:
        raise HTTPException(status_code=404, detail=f"Feed not found: {feed_id}")
    return feed


def _parse_json_field(value: Optional[str], name: str):
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid {name} JSON: {e.msg}")


def _parse_rows_field(value: Optional[str]) -> Optional[list[RawRow]]:
    data = _parse_json_field(value, "rows")
    if data is None:
        return None
    if not isinstance(data, list):
        raise HTTPException(status_code=400, detail="rows must be a JSON array")
    return as_rows(data)


def _parse_mapping_field(value: Optional[str]) -> Optional[dict[str, str]]:
    data = _parse_json_field(value, "mapping")
    if data is None:
        return None
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="mapping must be a JSON object")
    return {str(k): str(v) for k, v in data.items()}


def _feed_error_response(error: FeedError) -> JSONResponse:
    status = 502 if isinstance(error, FeedFetchError) else 400
    return JSONResponse({"error": str(error)}, status_code=status)


# =============================================================================
# Feeds
# =============================================================================


@router.get("/feeds")
async def list_feeds(engine: IngestionEngine = Depends(get_engine)):
    """List all configured feeds."""
    feeds = sorted(engine.catalog.list_feeds(), key=lambda f: f.created_at)
    return {"feeds": [f.to_dict() for f in feeds]}


@router.post("/feeds", status_code=201)
async def create_feed(payload: FeedPayload, engine: IngestionEngine = Depends(get_engine)):
    """Create a feed; the id defaults to a slug of the name."""
    feed_id = payload.id or slugify(payload.name)
    if engine.catalog.get_feed(feed_id) is not None:
        raise HTTPException(status_code=409, detail=f"Feed already exists: {feed_id}")

    feed = engine.catalog.save_feed(_build_feed(payload, feed_id))
    logger.info("Created feed %s (%s, %s)", feed.id, feed.mode.value, feed.format.value)
    return feed.to_dict()


@router.get("/feeds/{feed_id}")
async def get_feed(feed_id: str, engine: IngestionEngine = Depends(get_engine)):
    """Feed detail with its latest run."""
    feed = _require_feed(engine, feed_id)
    runs = engine.catalog.list_runs(feed_id)
    return {"feed": feed.to_dict(), "lastRun": runs[0].to_dict() if runs else None}


@router.put("/feeds/{feed_id}")
async def update_feed(
    feed_id: str, payload: FeedPayload, engine: IngestionEngine = Depends(get_engine)
):
    """Replace a feed's settings, keeping its id, creation time and refresh stamp."""
    existing = _require_feed(engine, feed_id)
    feed = engine.catalog.save_feed(_build_feed(payload, feed_id, existing))
    return feed.to_dict()


@router.delete("/feeds/{feed_id}")
async def delete_feed(feed_id: str, engine: IngestionEngine = Depends(get_engine)):
    """Delete a feed together with the records it owns."""
    if not engine.catalog.delete_feed(feed_id):
        raise HTTPException(status_code=404, detail=f"Feed not found: {feed_id}")
    logger.info("Deleted feed %s", feed_id)
    return {"deleted": feed_id}


@router.post("/feeds/{feed_id}/refresh")
async def refresh_feed(
    feed_id: str,
    engine: IngestionEngine = Depends(get_engine),
    scheduler: FeedRefreshScheduler = Depends(get_scheduler),
):
    """Pull a URL feed now and import its units."""
    feed = _require_feed(engine, feed_id)
    if feed.mode is not FeedMode.URL or not feed.url:
        raise HTTPException(status_code=400, detail="Only URL feeds can be refreshed")

    # Shares the scheduler's in-flight set so a feed never refreshes twice at once
    if not scheduler.claim(feed.id):
        raise HTTPException(status_code=409, detail=f"Feed is already refreshing: {feed.id}")
    try:
        run, result = await engine.execute(feed.id, EntityKind.UNIT, url=feed.url)
    finally:
        scheduler.release(feed.id)
    return _run_response(run, result)


# =============================================================================
# Imports
# =============================================================================


def _run_response(run, result) -> JSONResponse:
    body = {"run": run.to_dict(), "result": result.to_dict() if result else None}
    status = 422 if run.status is RunStatus.FAILED else 200
    return JSONResponse(body, status_code=status)


@router.post("/import/run")
async def run_import(
    source_id: str = Form(...),
    entity: EntityKind = Form(EntityKind.UNIT),
    url: Optional[str] = Form(None),
    rows: Optional[str] = Form(None),
    mapping: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    engine: IngestionEngine = Depends(get_engine),
):
    """
    Import into an existing feed.

    The payload is, in order of preference: an uploaded file, a JSON array
    of rows, an explicit URL, or the feed's own URL.
    """
    feed = _require_feed(engine, source_id)
    parsed_rows = _parse_rows_field(rows)
    parsed_mapping = _parse_mapping_field(mapping)

    content = filename = None
    if file is not None:
        content = await file.read()
        filename = file.filename
    elif parsed_rows is None:
        url = url or feed.url
        if not url:
            raise HTTPException(status_code=400, detail="Provide a file, rows or a URL")

    run, result = await engine.execute(
        feed.id,
        entity,
        content=content,
        rows=parsed_rows if content is None else None,
        url=url,
        filename=filename,
        mapping=parsed_mapping,
    )
    return _run_response(run, result)


@router.post("/import/preview")
async def preview_import(
    entity: EntityKind = Form(EntityKind.UNIT),
    source_id: Optional[str] = Form(None),
    url: Optional[str] = Form(None),
    rows: Optional[str] = Form(None),
    mapping: Optional[str] = Form(None),
    limit: int = Form(DEFAULT_PREVIEW_LIMIT),
    file: Optional[UploadFile] = File(None),
    engine: IngestionEngine = Depends(get_engine),
):
    """Validate a payload against a mapping without touching the catalog."""
    parsed_rows = _parse_rows_field(rows)
    parsed_mapping = _parse_mapping_field(mapping)
    feed = engine.catalog.get_feed(source_id) if source_id else None
    if parsed_mapping is None and feed is not None:
        parsed_mapping = feed.mapping

    if parsed_rows is None:
        try:
            if file is not None:
                parsed_rows = await engine.load_rows(
                    source_id or "", content=await file.read(), filename=file.filename
                )
            elif url or (feed and feed.url):
                parsed_rows = await engine.load_rows(source_id or "", url=url or feed.url)
            else:
                raise HTTPException(status_code=400, detail="Provide a file, rows or a URL")
        except FeedError as e:
            return _feed_error_response(e)

    return preview_rows(parsed_rows, entity, parsed_mapping, limit=limit).to_dict()


@router.get("/import/runs")
async def list_runs(
    source_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    engine: IngestionEngine = Depends(get_engine),
):
    """Run history, newest first."""
    runs = engine.catalog.list_runs(source_id)[:limit]
    return {"runs": [r.to_dict() for r in runs]}
