"""Outbound-action queue - actions waiting to be sent to rooms."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from sync_session_agent.subsystems.room_index import RoomIndex
    from sync_session_agent.sync.engine import SyncEngine

logger = structlog.get_logger()


@dataclass
class OutboundAction:
    room_id: str
    content: dict[str, Any]
    txn_id: str = field(default_factory=lambda: f"t-{uuid.uuid4().hex[:12]}")
    queued_at: datetime = field(default_factory=datetime.now)


class OutboundQueue:
    """FIFO of pending actions; only rooms in the index are accepted."""

    def __init__(self, engine: SyncEngine, room_index: RoomIndex) -> None:
        self._engine = engine
        self._room_index = room_index
        self._pending: list[OutboundAction] = []
        self._closed = False

    @property
    def pending(self) -> list[OutboundAction]:
        return list(self._pending)

    def enqueue(self, room_id: str, content: dict[str, Any]) -> OutboundAction:
        if self._closed:
            raise RuntimeError("Outbound queue is closed")
        if room_id not in self._room_index:
            raise KeyError(f"Unknown room: {room_id}")
        action = OutboundAction(room_id=room_id, content=content)
        self._pending.append(action)
        logger.debug("outbound_queued", room_id=room_id, txn_id=action.txn_id)
        return action

    def drain(self) -> list[OutboundAction]:
        """Remove and return every pending action in FIFO order."""
        drained, self._pending = self._pending, []
        return drained

    def close(self) -> None:
        if self._pending:
            logger.warning("outbound_dropped", count=len(self._pending))
        self._pending.clear()
        self._closed = True
