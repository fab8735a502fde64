"""Event bus - explicit publish/subscribe channel owned by the controller."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from sync_session_agent.sync.state import SyncState

logger = structlog.get_logger()

Handler = Callable[[Any], Awaitable[None] | None]


class Topic(Enum):
    """Event bus topics."""

    INIT_LOADING_FINISHED = "init_loading_finished"
    SYNC_STATE = "sync_state"
    SUBSYSTEM_READY = "subsystem_ready"


@dataclass(frozen=True)
class SyncTransition:
    """One raw state notification as reported by the sync engine."""

    state: SyncState
    previous: SyncState | None
    at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "previous": self.previous.value if self.previous else None,
            "at": self.at.isoformat(),
        }


class EventBus:
    """Topic-keyed listeners, registered and removed explicitly.

    Handlers may be plain callables or coroutine functions. ``publish``
    awaits them in subscription order; a failing handler is logged and
    does not stop delivery to the rest.
    """

    def __init__(self) -> None:
        self._handlers: dict[Topic, list[Handler]] = {}

    def subscribe(self, topic: Topic, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` and return a callable that unregisters it."""
        self._handlers.setdefault(topic, []).append(handler)
        return lambda: self.unsubscribe(topic, handler)

    def unsubscribe(self, topic: Topic, handler: Handler) -> bool:
        handlers = self._handlers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def listener_count(self, topic: Topic) -> int:
        return len(self._handlers.get(topic, []))

    async def publish(self, topic: Topic, payload: Any = None) -> None:
        """Deliver ``payload`` to every handler subscribed to ``topic``."""
        for handler in list(self._handlers.get(topic, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("event_handler_error", topic=topic.value)

    def clear(self) -> None:
        self._handlers.clear()
