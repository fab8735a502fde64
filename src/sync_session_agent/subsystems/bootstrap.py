"""Dependent-subsystem bootstrap - ordered, all-or-nothing construction."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from sync_session_agent.errors import bootstrap_error
from sync_session_agent.events import EventBus
from sync_session_agent.store.models import GeneralStore
from sync_session_agent.store.settings import SettingsCache
from sync_session_agent.subsystems.account_data import AccountDataCache
from sync_session_agent.subsystems.notifications import (
    NotificationDispatcher,
    PermissionRequester,
)
from sync_session_agent.subsystems.outbound import OutboundQueue
from sync_session_agent.subsystems.room_index import RoomIndex
from sync_session_agent.sync.engine import SyncEngine

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class BootstrapContext:
    """Borrowed references handed to every subsystem."""

    engine: SyncEngine
    store: GeneralStore
    bus: EventBus
    settings: SettingsCache


@dataclass
class SubsystemSet:
    room_index: RoomIndex
    account_data: AccountDataCache
    outbound: OutboundQueue
    notifications: NotificationDispatcher

    def close(self) -> None:
        """Close in reverse construction order."""
        for name, subsystem in reversed(list(vars(self).items())):
            _close_quietly(name, subsystem)


class SubsystemFactory:
    """Builds room index, account cache, outbound queue and notifications, in that order.

    Later subsystems receive the earlier ones, so the order is fixed. Each
    constructor can be swapped out, which is how tests count and fail
    construction.
    """

    def __init__(
        self,
        *,
        room_index: Callable[..., RoomIndex] = RoomIndex,
        account_data: Callable[..., AccountDataCache] = AccountDataCache,
        outbound: Callable[..., OutboundQueue] = OutboundQueue,
        notifications: Callable[..., NotificationDispatcher] = NotificationDispatcher,
        permission_requester: PermissionRequester | None = None,
    ) -> None:
        self._room_index = room_index
        self._account_data = account_data
        self._outbound = outbound
        self._notifications = notifications
        self._permission_requester = permission_requester

    def build(self, ctx: BootstrapContext) -> SubsystemSet:
        """Construct every subsystem or none.

        Raises:
            BootstrapError: Naming the first subsystem that failed; the ones
                already built are closed before raising.
        """
        built: list[tuple[str, Any]] = []
        room_index = self._construct(
            "room_index", built, lambda: self._room_index(ctx.engine, ctx.store)
        )
        account_data = self._construct(
            "account_data", built, lambda: self._account_data(room_index, ctx.engine)
        )
        outbound = self._construct(
            "outbound", built, lambda: self._outbound(ctx.engine, room_index)
        )
        notifications = self._construct(
            "notifications",
            built,
            lambda: self._notifications(
                room_index, ctx.bus, ctx.settings, self._permission_requester
            ),
        )
        logger.info("subsystems_built", order=[name for name, _ in built])
        return SubsystemSet(
            room_index=room_index,
            account_data=account_data,
            outbound=outbound,
            notifications=notifications,
        )

    @staticmethod
    def _construct(name: str, built: list[tuple[str, Any]], make: Callable[[], T]) -> T:
        try:
            subsystem = make()
        except Exception as exc:
            logger.error("subsystem_construct_failed", subsystem=name, error=str(exc))
            for done_name, done in reversed(built):
                _close_quietly(done_name, done)
            raise bootstrap_error(name, str(exc)) from exc
        built.append((name, subsystem))
        return subsystem


def _close_quietly(name: str, subsystem: Any) -> None:
    try:
        subsystem.close()
    except Exception:
        logger.exception("subsystem_close_failed", subsystem=name)
