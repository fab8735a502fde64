"""Account-metadata cache built on top of the room index."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from sync_session_agent.subsystems.room_index import RoomIndex
    from sync_session_agent.sync.engine import SyncEngine

logger = structlog.get_logger()

DIRECT_EVENT_TYPE = "m.direct"


class AccountDataCache:
    def __init__(self, room_index: RoomIndex, engine: SyncEngine) -> None:
        self._room_index = room_index
        self._engine = engine
        self._data: dict[str, dict[str, Any]] = dict(engine.account_data)
        logger.info("account_data_built", types=len(self._data))

    def get(self, event_type: str) -> dict[str, Any] | None:
        return self._data.get(event_type)

    def direct_rooms(self) -> set[str]:
        """Rooms flagged as direct chats that the room index knows about."""
        content = self._data.get(DIRECT_EVENT_TYPE, {})
        rooms: set[str] = set()
        for room_ids in content.values():
            if isinstance(room_ids, list):
                rooms.update(r for r in room_ids if r in self._room_index)
        return rooms

    def refresh(self) -> None:
        self._data.update(self._engine.account_data)

    def close(self) -> None:
        self._data.clear()
