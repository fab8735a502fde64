"""Tests for SessionController startup."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sync_session_agent.errors import CryptoInitError, StoreOpenError, SyncStartError
from sync_session_agent.events import EventBus
from sync_session_agent.session.controller import SessionController
from sync_session_agent.store.models import StorePair
from sync_session_agent.store.settings import SettingsCache
from sync_session_agent.subsystems.bootstrap import SubsystemFactory
from sync_session_agent.subsystems.room_index import RoomIndex
from sync_session_agent.sync.engine import IDENTITY_KEY_ID
from sync_session_agent.sync.state import SyncState
from tests.fakes import FakeSyncEngine


class TestStart:
    """Tests for the ordered startup sequence."""

    @pytest.mark.asyncio
    async def test_start_opens_stores_and_starts_engine(
        self,
        make_controller: Callable[..., SessionController],
        engines: list[FakeSyncEngine],
        store_pair: StorePair,
    ) -> None:
        """Should open both stores, load keys and start streaming."""
        controller = make_controller()

        await controller.start()

        assert store_pair.general.is_open
        assert store_pair.crypto.is_open
        assert len(engines) == 1
        engine = engines[0]
        assert controller.engine is engine
        assert engine.start_calls == 1
        assert await store_pair.crypto.get_key(IDENTITY_KEY_ID) == b"\x01" * 32
        assert len(engine.sync_listeners) == 1
        assert len(engine.logged_out_listeners) == 1
        assert controller.state.current is SyncState.NULL

    @pytest.mark.asyncio
    async def test_second_start_is_noop(
        self,
        make_controller: Callable[..., SessionController],
        engines: list[FakeSyncEngine],
    ) -> None:
        """Should not build a second engine or second subsystem set."""
        room_index = MagicMock(side_effect=RoomIndex)
        controller = make_controller(subsystem_factory=SubsystemFactory(room_index=room_index))

        await controller.init()
        await engines[0].emit(SyncState.SYNCING, SyncState.PREPARED)
        await controller.init()
        await controller.start()

        assert len(engines) == 1
        assert engines[0].start_calls == 1
        assert room_index.call_count == 1

    @pytest.mark.asyncio
    async def test_start_after_teardown_is_ignored(
        self,
        make_controller: Callable[..., SessionController],
        engines: list[FakeSyncEngine],
    ) -> None:
        """Should not restart in place once torn down."""
        controller = make_controller()
        await controller.start()
        await controller.clear_cache_and_reload()

        await controller.start()

        assert len(engines) == 1
        assert controller.engine is None

    @pytest.mark.asyncio
    async def test_init_wait_ready_returns_after_bootstrap(
        self,
        make_controller: Callable[..., SessionController],
        engines: list[FakeSyncEngine],
    ) -> None:
        """wait_until_ready should resolve once the first PREPARED bootstrapped."""
        controller = make_controller()
        await controller.init()
        await engines[0].emit(SyncState.SYNCING, SyncState.PREPARED)

        await controller.wait_until_ready(timeout=1.0)

        assert controller.initialized is True


class TestStartFailures:
    """Tests for rollback when startup fails."""

    @pytest.mark.asyncio
    async def test_store_open_error_leaves_nothing_allocated(
        self,
        credentials,
        tmp_path: Path,
        bus: EventBus,
        settings: SettingsCache,
        reloader: MagicMock,
        engine_factory,
        engines: list[FakeSyncEngine],
    ) -> None:
        """A store that cannot be opened should abort before any engine exists."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        stores = StorePair(blocker / "general.db", tmp_path / "crypto.db")
        controller = SessionController(
            credentials, stores, bus, settings, reloader, engine_factory=engine_factory
        )

        with pytest.raises(StoreOpenError) as exc_info:
            await controller.start()

        assert exc_info.value.code == "ERR_STORE_OPEN"
        assert engines == []
        assert controller.engine is None
        assert controller.subsystems is None
        assert controller.state.current is SyncState.NULL
        assert controller.state.previous is None
        assert not stores.general.is_open
        assert not stores.crypto.is_open

    @pytest.mark.asyncio
    async def test_crypto_store_failure_closes_general_store(
        self,
        credentials,
        tmp_path: Path,
        bus: EventBus,
        settings: SettingsCache,
        reloader: MagicMock,
        engine_factory,
    ) -> None:
        """Should close the already-opened general store when the crypto store fails."""
        corrupt = tmp_path / "crypto.db"
        corrupt.write_bytes(b"this is not a sqlite database" * 100)
        stores = StorePair(tmp_path / "general.db", corrupt)
        controller = SessionController(
            credentials, stores, bus, settings, reloader, engine_factory=engine_factory
        )

        with pytest.raises(StoreOpenError) as exc_info:
            await controller.start()

        assert exc_info.value.context["store"] == "crypto"
        assert not stores.general.is_open

    @pytest.mark.asyncio
    async def test_crypto_init_error_rolls_back(
        self,
        make_controller: Callable[..., SessionController],
        engines: list[FakeSyncEngine],
        store_pair: StorePair,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Should wrap key loading failures and never start streaming."""
        monkeypatch.setattr(FakeSyncEngine, "init_crypto", _raise_runtime_error)
        controller = make_controller()

        with pytest.raises(CryptoInitError) as exc_info:
            await controller.start()

        assert "key store locked" in exc_info.value.message
        assert engines[0].start_calls == 0
        assert engines[0].sync_listeners == []
        assert controller.engine is None
        assert not store_pair.general.is_open

    @pytest.mark.asyncio
    async def test_engine_start_failure_is_sync_start_error(
        self,
        make_controller: Callable[..., SessionController],
        engines: list[FakeSyncEngine],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Should detach handlers and raise SyncStartError."""

        async def failing_start(self: FakeSyncEngine, config: object) -> None:
            raise OSError("network unreachable")

        monkeypatch.setattr(FakeSyncEngine, "start", failing_start)
        controller = make_controller()

        with pytest.raises(SyncStartError):
            await controller.start()

        assert engines[0].sync_listeners == []
        assert engines[0].logged_out_listeners == []
        assert controller.engine is None

    @pytest.mark.asyncio
    async def test_start_can_be_retried_after_failure(
        self,
        make_controller: Callable[..., SessionController],
        engines: list[FakeSyncEngine],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A failed start leaves the controller startable."""
        controller = make_controller()
        monkeypatch.setattr(FakeSyncEngine, "init_crypto", _raise_runtime_error)
        with pytest.raises(CryptoInitError):
            await controller.start()
        monkeypatch.undo()

        await controller.start()

        assert len(engines) == 2
        assert controller.engine is engines[1]


async def _raise_runtime_error(self: FakeSyncEngine) -> None:
    raise RuntimeError("key store locked")
