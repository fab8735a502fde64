"""Sync state enumeration and the controller's view of it."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SyncState(Enum):
    """Connection states reported by the sync engine."""

    NULL = "NULL"
    SYNCING = "SYNCING"
    PREPARED = "PREPARED"
    RECONNECTING = "RECONNECTING"
    CATCHUP = "CATCHUP"
    ERROR = "ERROR"
    STOPPED = "STOPPED"


@dataclass(frozen=True)
class SessionState:
    """Current sync state plus the last distinct value before it."""

    current: SyncState = SyncState.NULL
    previous: SyncState | None = None

    def advance(self, state: SyncState) -> SessionState:
        """Return the state after observing ``state``; repeats keep ``previous``."""
        if state == self.current:
            return self
        return SessionState(current=state, previous=self.current)
