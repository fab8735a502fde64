"""Daemon core - composition root owning the session controller."""

from __future__ import annotations

from collections import deque
from typing import Any

import structlog

from sync_session_agent import config
from sync_session_agent.credentials import CredentialStore
from sync_session_agent.errors import SessionError
from sync_session_agent.events import EventBus, SyncTransition, Topic
from sync_session_agent.session.controller import SessionController
from sync_session_agent.session.reloader import ProcessReloader
from sync_session_agent.store.models import StorePair
from sync_session_agent.store.settings import SettingsCache

logger = structlog.get_logger()

TRANSITION_HISTORY = 50


class DaemonCore:
    """Builds every collaborator and hands them to one SessionController."""

    def __init__(self) -> None:
        self.credential_store = CredentialStore()
        self.bus = EventBus()
        self.stores = StorePair()
        self.settings = SettingsCache()
        self.reloader = ProcessReloader(cleanup_paths=[config.SOCKET_PATH])
        self.controller: SessionController | None = None
        self.start_error: SessionError | None = None
        self.transitions: deque[SyncTransition] = deque(maxlen=TRANSITION_HISTORY)
        self._unsubscribe = self.bus.subscribe(Topic.SYNC_STATE, self.transitions.append)
        self._running = False

    async def start(self) -> None:
        """Load credentials and start the session.

        A failed start is kept in ``start_error`` instead of raised, so the
        daemon stays reachable for 'session logout' to reset local state.
        """
        logger.info("daemon_core_starting")
        try:
            credentials = self.credential_store.load()
            self.controller = SessionController(
                credentials,
                self.stores,
                self.bus,
                self.settings,
                self.reloader,
            )
            await self.controller.init()
        except SessionError as exc:
            self.start_error = exc
            logger.error("daemon_core_session_failed", code=exc.code, message=exc.message)
        self._running = True
        logger.info("daemon_core_started")

    async def stop(self) -> None:
        """Gracefully shutdown the session without wiping it."""
        logger.info("daemon_core_stopping")
        self._running = False
        if self.controller is not None and not self.controller.terminated:
            await self.controller.close()
        self._unsubscribe()
        logger.info("daemon_core_stopped")

    @property
    def is_running(self) -> bool:
        """Check if daemon is running."""
        return self._running

    def session_summary(self) -> dict[str, Any]:
        controller = self.controller
        error = self.start_error
        if controller is not None and controller.bootstrap_failure is not None:
            error = controller.bootstrap_failure
        summary: dict[str, Any] = {
            "started": controller is not None and controller.engine is not None,
            "initialized": controller.initialized if controller else False,
            "state": controller.state.current.value if controller else None,
            "previous": None,
            "error": error.to_dict() if error else None,
        }
        if controller and controller.state.previous:
            summary["previous"] = controller.state.previous.value
        return summary
