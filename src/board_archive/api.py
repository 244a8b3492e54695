"""HTTP trigger surface: run a cycle on demand and read the change log."""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from src.board_archive._exceptions import CycleInProgressError, StoreError
from src.board_archive._models import ChangeEvent
from src.board_archive.pipeline import RECENT_EVENTS_LIMIT, watch
from src.utils._logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from src.board_archive.pipeline import BoardArchivePipeline

_log = get_logger(__name__)


def create_app(
    pipeline: BoardArchivePipeline,
    *,
    watch_interval_seconds: float | None = None,
) -> FastAPI:
    """Build the FastAPI app around a pipeline.

    When ``watch_interval_seconds`` is set, cycles also run in the background
    on that interval for the lifetime of the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        task: asyncio.Task[None] | None = None
        if watch_interval_seconds:
            task = asyncio.create_task(watch(pipeline, watch_interval_seconds))
        _log.info("api_started", board_id=pipeline.config.board.board_id)
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    app = FastAPI(
        title="Board Archive",
        description="Polls a discussion board and archives engagement changes",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "cycle_running": pipeline.is_running}

    @app.api_route("/crawl", methods=["GET", "POST"], response_model=None)
    async def crawl() -> dict[str, Any] | JSONResponse:
        try:
            result = await pipeline.run_cycle()
        except CycleInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except Exception as exc:
            # Cycle-level failure only; details stay in the service log
            _log.error("crawl_request_failed", error=str(exc), error_type=type(exc).__name__)
            return JSONResponse(
                status_code=500,
                content={"status": "failed", "detail": "Crawling failed"},
            )
        return {"status": "completed", "result": result.model_dump(mode="json")}

    @app.get("/logs", response_model=list[ChangeEvent])
    async def logs() -> list[ChangeEvent]:
        try:
            return await pipeline.recent_events(RECENT_EVENTS_LIMIT)
        except StoreError as exc:
            _log.error("log_retrieval_failed", error=str(exc))
            raise HTTPException(status_code=500, detail="Failed to retrieve logs") from exc

    return app
