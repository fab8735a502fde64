"""Notification dispatcher - permission handling and room notifications."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import structlog

from sync_session_agent.events import EventBus, Topic

if TYPE_CHECKING:
    from sync_session_agent.store.settings import SettingsCache
    from sync_session_agent.subsystems.room_index import RoomIndex

logger = structlog.get_logger()

PermissionRequester = Callable[[], bool | Awaitable[bool]]

SHOW_NOTIFICATIONS_KEY = "show_notifications"


def grant_all() -> bool:
    """Default requester for headless hosts where no prompt exists."""
    return True


class NotificationDispatcher:
    """Resolves room names through the room index and gates on permission."""

    def __init__(
        self,
        room_index: RoomIndex,
        bus: EventBus,
        settings: SettingsCache,
        permission_requester: PermissionRequester | None = None,
    ) -> None:
        self._room_index = room_index
        self._bus = bus
        self._settings = settings
        self._request_permission = permission_requester or grant_all
        self.permission_granted = False
        self.rearm_count = 0
        self.sent: list[dict[str, Any]] = []

    async def rearm(self) -> bool:
        """Request notification permission again and announce the result."""
        result = self._request_permission()
        if inspect.isawaitable(result):
            result = await result
        self.permission_granted = bool(result)
        self.rearm_count += 1
        logger.info("notifications_rearmed", granted=self.permission_granted)
        await self._bus.publish(
            Topic.SUBSYSTEM_READY,
            {"subsystem": "notifications", "permission_granted": self.permission_granted},
        )
        return self.permission_granted

    def notify(self, room_id: str, body: str) -> dict[str, Any] | None:
        """Dispatch a notification; None when muted or not permitted."""
        if not self.permission_granted:
            return None
        if not self._settings.get(SHOW_NOTIFICATIONS_KEY, True):
            return None
        notification = {"room_id": room_id, "title": self._room_index.display_name(room_id), "body": body}
        self.sent.append(notification)
        logger.info("notification_dispatched", room_id=room_id)
        return notification

    def close(self) -> None:
        self.permission_granted = False
        self.sent.clear()
