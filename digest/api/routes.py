"""
API route handlers for the daily digest.
"""

import asyncio
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from fastapi.responses import StreamingResponse

from digest.api.models import (
    ConfigSaveResponse,
    ErrorResponse,
    HealthResponse,
    RoutineResponse,
    StatusResponse,
    SyncRequest,
)
from digest.notebook.sessions import SessionManager
from digest.pipeline.orchestrator import (
    DailyRoutine,
    NoItemsToSync,
    ResyncRejected,
    RunNotFound,
    get_routine,
)
from digest.registry import AppConfig, ConfigError, ConfigStore, parse_config
from digest.run_log import RunLogEntry, RunLogStore

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_DONE = "DONE"


def get_config_store() -> ConfigStore:
    return ConfigStore()


def get_run_log() -> RunLogStore:
    return RunLogStore()


def get_session_manager() -> SessionManager:
    return SessionManager()


def _sse(message: str) -> str:
    return f"data: {json.dumps({'message': message}, ensure_ascii=False)}\n\n"


@router.post(
    "/trigger",
    response_model=RoutineResponse,
    responses={429: {"model": RoutineResponse}, 500: {"model": ErrorResponse}},
)
async def trigger(response: Response, routine: DailyRoutine = Depends(get_routine)):
    """
    Run the daily routine to completion and return its result.

    Answers 429 with a "skipped" result while another run is in flight.
    """
    logger.info("Received trigger request")
    try:
        result = await routine.run()
    except Exception as e:
        logger.exception("Error in trigger endpoint")
        raise HTTPException(status_code=500, detail=str(e))

    if result.status == "skipped":
        response.status_code = 429
    return RoutineResponse(**result.to_dict())


@router.get("/run")
async def run_stream(routine: DailyRoutine = Depends(get_routine)):
    """
    Run the daily routine, streaming progress as Server-Sent Events.

    Each frame is ``data: {"message": ...}``; the last one carries DONE.
    """
    queue: asyncio.Queue[Optional[str]] = asyncio.Queue()

    async def run_routine():
        try:
            result = await routine.run(on_progress=queue.put_nowait)
            if result.status == "skipped":
                queue.put_nowait(result.message)
        except Exception as e:
            logger.exception("Error in streaming run")
            queue.put_nowait(f"FATAL ERROR: {e}")
        finally:
            queue.put_nowait(None)

    async def generate():
        task = asyncio.create_task(run_routine())
        yield _sse("Starting session...")
        while True:
            message = await queue.get()
            if message is None:
                break
            yield _sse(message)
        await task
        yield _sse(STREAM_DONE)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/config", response_model=AppConfig, responses={500: {"model": ErrorResponse}})
async def read_config(store: ConfigStore = Depends(get_config_store)):
    """Return the source registry, upgrading a legacy file on the way."""
    try:
        return store.read()
    except ConfigError as e:
        logger.exception("Error reading config")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/config", response_model=ConfigSaveResponse, responses={400: {"model": ErrorResponse}})
async def write_config(
    payload: dict[str, Any] = Body(...),
    store: ConfigStore = Depends(get_config_store),
):
    """
    Replace the source registry.

    Accepts any known registry version; legacy shapes are upgraded before saving.
    """
    try:
        config, migrated = parse_config(payload)
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    store.write(config)
    logger.info("Config saved via API")
    return ConfigSaveResponse(success=True, migrated=migrated)


@router.get("/logs", response_model=list[RunLogEntry])
async def read_logs(
    limit: Optional[int] = Query(None, ge=1, description="Newest entries to return"),
    run_log: RunLogStore = Depends(get_run_log),
):
    """Recorded runs, newest first."""
    entries = run_log.read_all()
    return entries[:limit] if limit else entries


@router.get("/status", response_model=StatusResponse, responses={500: {"model": ErrorResponse}})
async def status(
    routine: DailyRoutine = Depends(get_routine),
    store: ConfigStore = Depends(get_config_store),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Whether each platform has a usable session or credential."""
    try:
        config = store.read()
    except ConfigError as e:
        logger.exception("Error reading config for status")
        raise HTTPException(status_code=500, detail=str(e))

    return StatusResponse(running=routine.is_running, platforms=sessions.status(config))


@router.post(
    "/sync",
    response_model=RoutineResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        429: {"model": RoutineResponse},
        500: {"model": RoutineResponse},
    },
)
async def resync(
    request: SyncRequest,
    response: Response,
    routine: DailyRoutine = Depends(get_routine),
):
    """
    Push the items of a recorded run into the notebook again.

    The browser is left open afterwards so the result can be inspected.
    """
    try:
        result = await routine.resync(request.log_id, close_on_finish=False)
    except RunNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NoItemsToSync as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ResyncRejected as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.exception("Error in sync endpoint")
        raise HTTPException(status_code=500, detail=str(e))

    if result.status == "skipped":
        response.status_code = 429
    elif result.status == "failed":
        response.status_code = 500
    return RoutineResponse(**result.to_dict())


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version="1.0.0")
