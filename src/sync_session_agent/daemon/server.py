"""FastAPI server running over Unix Domain Socket."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import BackgroundTasks, FastAPI
from fastapi.responses import JSONResponse, Response

from sync_session_agent import __version__
from sync_session_agent.daemon.core import DaemonCore
from sync_session_agent.errors import SessionError, not_started_error

logger = structlog.get_logger()

ResponsePayload = dict[str, Any]
EndpointResponse = Response | ResponsePayload


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage daemon lifecycle."""
    logger.info("daemon_starting")
    app.state.core = DaemonCore()
    await app.state.core.start()
    yield
    logger.info("daemon_stopping")
    await app.state.core.stop()


app = FastAPI(
    title="Sync Session Agent Daemon",
    version=__version__,
    lifespan=lifespan,
)


def _error_response(error: SessionError, status_code: int = 400) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "error": error.to_dict()},
    )


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check endpoint with session status."""
    core: DaemonCore = app.state.core
    session = core.session_summary()
    return {
        "status": "ok" if session["error"] is None else "degraded",
        "running": core.is_running,
        "version": __version__,
        "session": session,
    }


@app.get("/session", response_model=None)
async def session_status() -> EndpointResponse:
    """Current sync state and initialization status."""
    core: DaemonCore = app.state.core
    if core.controller is None:
        return _error_response(core.start_error or not_started_error(), status_code=503)
    return {"status": "done", **core.session_summary()}


@app.get("/session/transitions")
async def session_transitions() -> dict[str, Any]:
    """Recent raw sync state notifications, oldest first."""
    core: DaemonCore = app.state.core
    return {
        "status": "done",
        "transitions": [transition.to_dict() for transition in core.transitions],
    }


@app.post("/session/logout", response_model=None)
async def session_logout(background: BackgroundTasks) -> EndpointResponse:
    """Log out and wipe all local data. The daemon restarts afterwards."""
    core: DaemonCore = app.state.core
    if core.controller is None:
        return _error_response(core.start_error or not_started_error(), status_code=503)
    background.add_task(core.controller.logout)
    logger.info("session_logout_requested")
    return {"status": "accepted", "operation": "logout"}


@app.post("/session/clear-cache", response_model=None)
async def session_clear_cache(background: BackgroundTasks) -> EndpointResponse:
    """Drop the local cache, keep keys and credentials. The daemon restarts afterwards."""
    core: DaemonCore = app.state.core
    if core.controller is None:
        return _error_response(core.start_error or not_started_error(), status_code=503)
    background.add_task(core.controller.clear_cache_and_reload)
    logger.info("session_clear_cache_requested")
    return {"status": "accepted", "operation": "clear_cache"}
