"""
Thread Engine: API Server
=========================

HTTP surface for the per-user thread views and the thread state writes.

Endpoints:
- GET  /health
- GET  /api/v1/threads/{thread_id}?user_id=            -> Thread (403 hidden, 404 unknown)
- GET  /api/v1/threads/{thread_id}/visibility?user_id=
- GET  /api/v1/users/{user_id}/open-threads
- GET  /api/v1/users/{user_id}/recent-threads?group_id=&window_days=&limit=
- GET  /api/v1/groups/{group_id}/tags
- POST /api/v1/threads/{thread_id}/hide|show|unsubscribe|bump-last-open
- POST /api/v1/threads/{thread_id}/tags

Usage:
    uvicorn thread_engine.api.server:app --reload
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..contracts.errors import (
    FactStoreError, GroupMismatchError, SchemaViolationError, ThreadEngineError,
    ThreadNotFoundError, ThreadNotVisibleError, TransactionConflictError
)
from ..engine import EngineConfig, ThreadEngine
from ..observability import setup_logging
from .mapper import (
    map_error_to_dto, map_report_to_dto, map_tag_summary_to_dto,
    map_thread_to_dto, map_time_to_dto
)

logger = logging.getLogger(__name__)

# =============================================================================
# INFRASTRUCTURE SETUP
# =============================================================================

# Global Engine Instance
engine_instance: Optional[ThreadEngine] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine from the environment on startup."""
    global engine_instance

    config = EngineConfig.from_env()
    setup_logging(config.observability.log_level)
    logger.info("Initializing thread engine (storage=%s, dir=%s)",
                config.storage.backend_type, config.storage.storage_dir)

    try:
        engine_instance = ThreadEngine(config)
    except ThreadEngineError:
        logger.exception("Failed to initialize thread engine")
        raise

    logger.info("Thread engine initialized")
    yield

    logger.info("Shutting down thread engine")
    engine_instance = None


app = FastAPI(
    title="Thread Engine API",
    version="0.1.0",
    description="Thread visibility, subscription and recency service",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def _status_for(exc: ThreadEngineError) -> int:
    if isinstance(exc, ThreadNotFoundError):
        return 404
    if isinstance(exc, ThreadNotVisibleError):
        return 403
    if isinstance(exc, TransactionConflictError):
        return 409
    if isinstance(exc, (SchemaViolationError, GroupMismatchError)):
        return 422
    if isinstance(exc, FactStoreError):
        return 503
    return 500


@app.exception_handler(ThreadEngineError)
async def thread_engine_error_handler(request: Request, exc: ThreadEngineError):
    status = _status_for(exc)
    logger.warning("%s %s failed with %s: %s",
                   request.method, request.url.path, exc.error.code.name, exc.error.message)
    return JSONResponse(status_code=status, content={"error": map_error_to_dto(exc)})


def get_engine() -> ThreadEngine:
    if not engine_instance:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine_instance


# =============================================================================
# REQUEST MODELS
# =============================================================================

class UserThreadRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class TagThreadRequest(BaseModel):
    group_id: str = Field(..., min_length=1)
    tag_id: str = Field(..., min_length=1)


# =============================================================================
# READ ENDPOINTS
# =============================================================================

@app.get("/health")
async def health_check():
    """System status."""
    engine = get_engine()
    is_valid, _ = engine.verify_integrity()
    return {
        "status": "online" if is_valid else "degraded",
        "basis": engine.store.basis,
        "storage": engine.config.storage.backend_type,
    }


@app.get("/api/v1/threads/{thread_id}")
def get_thread(thread_id: str, user_id: str = Query(..., min_length=1)):
    engine = get_engine()
    thread = engine.thread_by_id(thread_id)
    if thread is None:
        raise ThreadNotFoundError(f"Thread {thread_id} not found", (("thread_id", thread_id),))
    if not engine.can_user_see_thread(user_id, thread_id):
        raise ThreadNotVisibleError(
            f"Thread {thread_id} not visible to {user_id}",
            (("thread_id", thread_id), ("user_id", user_id))
        )
    thread = thread.with_last_open_at(engine.last_open_at(thread_id, user_id))
    return map_thread_to_dto(thread)


@app.get("/api/v1/threads/{thread_id}/visibility")
def get_thread_visibility(thread_id: str, user_id: str = Query(..., min_length=1)):
    engine = get_engine()
    return {
        "thread_id": thread_id,
        "user_id": user_id,
        "visible": engine.can_user_see_thread(user_id, thread_id),
        "has_tags": engine.thread_has_tags(thread_id),
        "newest_message_at": map_time_to_dto(engine.newest_message_time(thread_id)),
    }


@app.get("/api/v1/users/{user_id}/open-threads")
def get_open_threads(user_id: str):
    threads = get_engine().open_threads_for_user(user_id)
    return {"user_id": user_id, "threads": [map_thread_to_dto(t) for t in threads]}


@app.get("/api/v1/users/{user_id}/recent-threads")
def get_recent_threads(
    user_id: str,
    group_id: str = Query(..., min_length=1),
    window_days: Optional[int] = Query(None, ge=0),
    limit: Optional[int] = Query(None, ge=0)
):
    threads = get_engine().recent_threads(
        user_id, group_id, window_days=window_days, limit=limit
    )
    return {
        "user_id": user_id,
        "group_id": group_id,
        "threads": [map_thread_to_dto(t) for t in threads],
    }


@app.get("/api/v1/groups/{group_id}/tags")
def get_group_tags(group_id: str):
    summaries = get_engine().tag_summaries(group_id)
    return {"group_id": group_id, "tags": [map_tag_summary_to_dto(s) for s in summaries]}


# =============================================================================
# WRITE ENDPOINTS
# =============================================================================

@app.post("/api/v1/threads/{thread_id}/hide")
def hide_thread(thread_id: str, body: UserThreadRequest):
    return map_report_to_dto(get_engine().hide_thread(body.user_id, thread_id))


@app.post("/api/v1/threads/{thread_id}/show")
def show_thread(thread_id: str, body: UserThreadRequest):
    return map_report_to_dto(get_engine().show_thread(body.user_id, thread_id))


@app.post("/api/v1/threads/{thread_id}/unsubscribe")
def unsubscribe_thread(thread_id: str, body: UserThreadRequest):
    return map_report_to_dto(get_engine().unsubscribe(body.user_id, thread_id))


@app.post("/api/v1/threads/{thread_id}/bump-last-open")
def bump_last_open(thread_id: str, body: UserThreadRequest):
    engine = get_engine()
    bumped = engine.bump_last_open(body.user_id, thread_id)
    return {
        "thread_id": thread_id,
        "user_id": body.user_id,
        "bumped": bumped,
        "last_open_at": map_time_to_dto(engine.last_open_at(thread_id, body.user_id)),
    }


@app.post("/api/v1/threads/{thread_id}/tags")
def tag_thread(thread_id: str, body: TagThreadRequest):
    return map_report_to_dto(get_engine().tag_thread(body.group_id, thread_id, body.tag_id))
