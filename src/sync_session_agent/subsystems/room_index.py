"""Room index - joined rooms and their display names."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from sync_session_agent.store.models import GeneralStore
    from sync_session_agent.sync.engine import SyncEngine

logger = structlog.get_logger()


class RoomIndex:
    """Snapshot of the engine's joined rooms, refreshable from the store."""

    def __init__(self, engine: SyncEngine, store: GeneralStore) -> None:
        self._engine = engine
        self._store = store
        self._rooms: dict[str, str | None] = dict(engine.rooms)
        logger.info("room_index_built", rooms=len(self._rooms))

    @property
    def room_ids(self) -> list[str]:
        return sorted(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def display_name(self, room_id: str) -> str:
        """Room name, falling back to the room ID."""
        return self._rooms.get(room_id) or room_id

    def refresh(self) -> None:
        """Pick up rooms the engine learned about since construction."""
        self._rooms.update(self._engine.rooms)

    async def reload(self) -> None:
        """Re-read the persisted room list."""
        self._rooms.update(await self._store.list_rooms())

    def close(self) -> None:
        self._rooms.clear()
