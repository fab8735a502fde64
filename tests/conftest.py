"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from sync_session_agent.credentials import Credentials
from sync_session_agent.events import EventBus
from sync_session_agent.session.controller import SessionController
from sync_session_agent.store.models import CryptoStore, GeneralStore, StorePair
from sync_session_agent.store.settings import SettingsCache
from tests.fakes import FakeSyncEngine


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        server_url="https://matrix.example.org",
        access_token="syt_secret_token",
        user_id="@alice:example.org",
        device_id="DEVICEABC",
    )


@pytest_asyncio.fixture
async def store_pair(tmp_path: Path) -> AsyncGenerator[StorePair, None]:
    """Store pair under tmp_path, closed after the test."""
    pair = StorePair(tmp_path / "general.db", tmp_path / "crypto.db")
    yield pair
    await pair.close()


@pytest.fixture
def settings(tmp_path: Path) -> SettingsCache:
    cache = SettingsCache(tmp_path / "settings.json")
    cache.set("show_notifications", True)
    return cache


@pytest.fixture
def engines() -> list[FakeSyncEngine]:
    """Every FakeSyncEngine built by ``engine_factory``, in order."""
    return []


@pytest.fixture
def engine_factory(engines: list[FakeSyncEngine]) -> Callable[..., FakeSyncEngine]:
    def make(creds: Credentials, store: GeneralStore, crypto: CryptoStore) -> FakeSyncEngine:
        engine = FakeSyncEngine(creds, store, crypto)
        engines.append(engine)
        return engine

    return make


@pytest.fixture
def reloader() -> MagicMock:
    return MagicMock()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def make_controller(
    credentials: Credentials,
    store_pair: StorePair,
    bus: EventBus,
    settings: SettingsCache,
    reloader: MagicMock,
    engine_factory: Callable[..., FakeSyncEngine],
) -> Callable[..., SessionController]:
    """Build a SessionController wired to the fixtures above."""

    def make(**kwargs: Any) -> SessionController:
        return SessionController(
            credentials,
            store_pair,
            bus,
            settings,
            reloader,
            engine_factory=engine_factory,
            **kwargs,
        )

    return make
