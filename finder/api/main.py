from __future__ import annotations

import math
import os
import queue
import threading
import time
from datetime import datetime
from functools import partial
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from finder.api.deps import current_user, db_session
from finder.config import Settings, get_settings
from finder.core.aggregator import RunOptions, SearchRun, collect_search
from finder.core.emitter import EventEmitter
from finder.core.normalize import JobPosting, SearchQuery
from finder.db.crud import cleanup_expired, list_history, record_search, store_jobs
from finder.db.session import get_session
from finder.providers import preflight, searchers_for_query

ADMIN_TOKEN = os.getenv("FINDER_ADMIN_TOKEN", "")

def require_admin(x_token: str | None) -> None:
    if not ADMIN_TOKEN or x_token != ADMIN_TOKEN:
        raise HTTPException(status_code=401, detail="Unauthorized")


# -------------------------
# FastAPI setup
# -------------------------
app = FastAPI(title="Hidden Jobs Finder API", version="0.3.0")
LOGGER = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}
STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
STREAM_POLL_SECONDS = 0.5

# Aggregated results for the non-stream endpoint, keyed by SearchQuery.cache_key
_RESULT_CACHE: dict[str, tuple[float, list[JobPosting]]] = {}
_RESULT_CACHE_LOCK = threading.Lock()


# -------------------------
# Pydantic response models
# -------------------------
class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_page: int = Field(alias="currentPage")
    total_pages: int = Field(alias="totalPages")
    total_jobs: int = Field(alias="totalJobs")
    jobs_per_page: int = Field(alias="jobsPerPage")
    has_next_page: bool = Field(alias="hasNextPage")
    has_prev_page: bool = Field(alias="hasPrevPage")


class SearchResponse(BaseModel):
    jobs: List[JobPosting]
    pagination: Pagination


class SearchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    query: str
    platform: str
    location: Optional[str] = None
    result_count: int = Field(alias="resultCount")
    searched_at: datetime = Field(alias="searchedAt")


def _run_options(settings: Settings) -> RunOptions:
    return RunOptions(
        platform_timeout=settings.platform_timeout,
        max_workers=settings.max_workers,
        dedup_key=settings.dedup_key,
    )


def _persist_search(query: SearchQuery, jobs: list[JobPosting], user_id: Optional[str] = None) -> None:
    """Fire-and-forget bookkeeping after a completed run; never fails the search."""
    try:
        with get_session() as session:
            store_jobs(session, jobs)
            record_search(
                session,
                query.query,
                len(jobs),
                platform=query.site,
                location=query.location,
                user_id=user_id,
            )
    except SQLAlchemyError:
        LOGGER.exception("failed to record search %r", query.query)


def _paginate(jobs: list[JobPosting], page: int, limit: int) -> SearchResponse:
    total = len(jobs)
    pages = math.ceil(total / limit) if total else 0
    start = (page - 1) * limit
    return SearchResponse(
        jobs=jobs[start:start + limit],
        pagination=Pagination(
            current_page=page,
            total_pages=pages,
            total_jobs=total,
            jobs_per_page=limit,
            has_next_page=page < pages,
            has_prev_page=page > 1,
        ),
    )


def _error_envelope(status: int, error: str, message: str) -> JSONResponse:
    empty = Pagination(
        current_page=1, total_pages=0, total_jobs=0, jobs_per_page=25,
        has_next_page=False, has_prev_page=False,
    )
    body = {
        "error": error,
        "message": message,
        "jobs": [],
        "pagination": empty.model_dump(by_alias=True),
    }
    return JSONResponse(status_code=status, content=body, headers=NO_CACHE_HEADERS)


def _cached_jobs(key: str, ttl: int) -> Optional[list[JobPosting]]:
    with _RESULT_CACHE_LOCK:
        hit = _RESULT_CACHE.get(key)
        if hit and time.monotonic() - hit[0] < ttl:
            return hit[1]
        _RESULT_CACHE.pop(key, None)
    return None


def clear_result_cache() -> None:
    with _RESULT_CACHE_LOCK:
        _RESULT_CACHE.clear()


# -------------------------
# Routes
# -------------------------
@app.get("/", tags=["meta"])
async def root():
    return {"message": "Hidden Jobs Finder API is running"}


@app.get("/healthz", tags=["meta"])
async def healthz():
    return {"status": "ok"}


def _drive(run: SearchRun, frames: "queue.Queue[Optional[str]]") -> None:
    try:
        run.run()
    finally:
        frames.put(None)


@app.get("/api/search-stream", tags=["search"])
async def search_stream(
    request: Request,
    query: Optional[str] = Query(None, description="Job title / keywords"),
    site: str = Query("all", description="ATS domain to search, or 'all'"),
    location: str = Query("all"),
    time_filter: str = Query("all", alias="timeFilter"),
    user_id: Optional[str] = Depends(current_user),
):
    """Stream one search as Server-Sent Events.

    Parameters are validated inside the run so that even a bad request sees
    ``start`` followed by ``error``.
    """
    settings = get_settings()
    params = {"query": query or "", "site": site, "location": location, "timeFilter": time_filter}
    frames: "queue.Queue[Optional[str]]" = queue.Queue()
    run = SearchRun(
        params,
        resolve=searchers_for_query,
        emitter=EventEmitter(frames.put),
        options=_run_options(settings),
        preflight=preflight,
        on_finish=partial(_persist_search, user_id=user_id),
    )

    async def event_stream():
        worker = threading.Thread(target=_drive, args=(run, frames), name="search-run", daemon=True)
        worker.start()
        try:
            while True:
                if await request.is_disconnected():
                    LOGGER.info("client disconnected from search stream")
                    run.cancel()
                    break
                try:
                    frame = await run_in_threadpool(frames.get, True, STREAM_POLL_SECONDS)
                except queue.Empty:
                    continue
                if frame is None:
                    break
                yield frame
        finally:
            run.cancel()

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=STREAM_HEADERS)


@app.get("/api/search", tags=["search"])
def search(
    query: Optional[str] = Query(None),
    site: str = Query("all"),
    location: str = Query("all"),
    time_filter: str = Query("all", alias="timeFilter"),
    page: int = Query(1),
    limit: int = Query(25),
    user_id: Optional[str] = Depends(current_user),
):
    """Non-stream fallback: wait for the run to finish and return one page."""
    settings = get_settings()
    try:
        q = SearchQuery.model_validate({
            "query": query or "",
            "site": site,
            "location": location,
            "timeFilter": time_filter,
            "page": page,
            "limit": limit,
        })
    except ValidationError as exc:
        first = exc.errors()[0]
        return _error_envelope(400, "Invalid search parameters", str(first.get("msg", "invalid value")))

    jobs = _cached_jobs(q.cache_key, settings.result_cache_seconds)
    if jobs is None:
        outcome = collect_search(
            q,
            resolve=searchers_for_query,
            options=_run_options(settings),
            preflight=preflight,
            on_finish=partial(_persist_search, user_id=user_id),
        )
        if not outcome.ok:
            return _error_envelope(500, "Search completed with errors", outcome.error or "Search failed")
        jobs = outcome.jobs
        with _RESULT_CACHE_LOCK:
            _RESULT_CACHE[q.cache_key] = (time.monotonic(), jobs)
    else:
        LOGGER.debug("result cache hit %s", q.cache_key)

    body = _paginate(jobs, q.page, q.limit)
    return JSONResponse(content=body.model_dump(mode="json", by_alias=True), headers=NO_CACHE_HEADERS)


@app.get("/api/searches", tags=["data"])
def recent_searches(
    user_id: Optional[str] = Depends(current_user),
    session: Session = Depends(db_session),
):
    rows = list_history(session, user_id, limit=get_settings().history_limit)
    return {"searches": [SearchOut.model_validate(r).model_dump(mode="json", by_alias=True) for r in rows]}


@app.delete("/api/jobs/cleanup", tags=["admin"])
def cleanup_jobs(
    x_token: str | None = Header(default=None),
    session: Session = Depends(db_session),
):
    require_admin(x_token)
    hours = get_settings().job_retention_hours
    deleted = cleanup_expired(session, hours)
    LOGGER.info("cleanup removed %d jobs older than %dh", deleted, hours)
    return {"deleted": deleted, "message": f"Removed {deleted} jobs older than {hours} hours"}
