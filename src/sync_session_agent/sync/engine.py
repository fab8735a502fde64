"""Sync engine - protocol consumed by the controller plus an HTTP long-poll engine."""

from __future__ import annotations

import asyncio
import contextlib
import json
import secrets
import sqlite3
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx
import structlog

from sync_session_agent.config import SyncConfig
from sync_session_agent.credentials import Credentials
from sync_session_agent.errors import (
    SessionError,
    crypto_init_error,
    remote_logout_error,
)
from sync_session_agent.store.models import CryptoStore, GeneralStore
from sync_session_agent.sync.state import SyncState

logger = structlog.get_logger()

SyncListener = Callable[[SyncState, SyncState | None], Awaitable[None]]
LoggedOutListener = Callable[[], Awaitable[None]]

SYNC_PATH = "/_matrix/client/v3/sync"
LOGOUT_PATH = "/_matrix/client/v3/logout"
SYNC_TOKEN_KEY = "sync_token"
IDENTITY_KEY_ID = "device_identity"
IDENTITY_KEY_BYTES = 32


class SyncEngine(Protocol):
    """What the session controller needs from a sync engine."""

    rooms: dict[str, str | None]
    account_data: dict[str, dict[str, Any]]

    @property
    def is_running(self) -> bool: ...

    async def init_crypto(self) -> None: ...

    async def start(self, config: SyncConfig) -> None: ...

    async def stop(self) -> None: ...

    async def logout(self) -> None: ...

    def on_sync(self, listener: SyncListener) -> None: ...

    def off_sync(self, listener: SyncListener) -> None: ...

    def on_session_logged_out(self, listener: LoggedOutListener) -> None: ...

    def off_session_logged_out(self, listener: LoggedOutListener) -> None: ...


class _TokenRevoked(Exception):
    """Server rejected the access token."""


class HttpSyncEngine:
    """Long-polls the server's sync endpoint and reports connection state.

    State flow: NULL -> SYNCING on the first request, SYNCING -> PREPARED on
    the first success. Once ready, a failed request moves to RECONNECTING and
    ``error_threshold`` consecutive failures move to ERROR. The next success
    goes through CATCHUP back to PREPARED. ``stop()`` ends in STOPPED.
    """

    def __init__(
        self,
        credentials: Credentials,
        store: GeneralStore,
        crypto_store: CryptoStore,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._credentials = credentials
        self.store = store
        self.crypto_store = crypto_store
        self._transport = transport
        self._sleep = sleep
        self._config = SyncConfig()
        self._client: httpx.AsyncClient | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._state = SyncState.NULL
        self._ever_prepared = False
        self._sync_listeners: list[SyncListener] = []
        self._logged_out_listeners: list[LoggedOutListener] = []
        self.identity_key: bytes | None = None
        self.rooms: dict[str, str | None] = {}
        self.account_data: dict[str, dict[str, Any]] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def state(self) -> SyncState:
        return self._state

    # Listener registration

    def on_sync(self, listener: SyncListener) -> None:
        self._sync_listeners.append(listener)

    def off_sync(self, listener: SyncListener) -> None:
        if listener in self._sync_listeners:
            self._sync_listeners.remove(listener)

    def on_session_logged_out(self, listener: LoggedOutListener) -> None:
        self._logged_out_listeners.append(listener)

    def off_session_logged_out(self, listener: LoggedOutListener) -> None:
        if listener in self._logged_out_listeners:
            self._logged_out_listeners.remove(listener)

    # Lifecycle

    async def init_crypto(self) -> None:
        """Load the device identity key, generating one on first use."""
        try:
            key = await self.crypto_store.get_key(IDENTITY_KEY_ID)
            if key is None:
                key = secrets.token_bytes(IDENTITY_KEY_BYTES)
                await self.crypto_store.save_key(IDENTITY_KEY_ID, key)
                logger.info("crypto_identity_generated", device_id=self._credentials.device_id)
        except (sqlite3.Error, RuntimeError) as exc:
            raise crypto_init_error(str(exc)) from None
        if len(key) != IDENTITY_KEY_BYTES:
            raise crypto_init_error(f"identity key is {len(key)} bytes, expected 32")
        self.identity_key = key
        logger.info("crypto_initialized", device_id=self._credentials.device_id)

    async def start(self, config: SyncConfig) -> None:
        """Start the streaming loop in a background task."""
        if self._running:
            return
        self._config = config
        self.rooms = await self.store.list_rooms()
        self.account_data = await self.store.list_account_data()
        self._client = self._new_client()
        self._running = True
        self._task = asyncio.create_task(self._sync_loop())
        self._task.add_done_callback(self._on_loop_done)
        logger.info("sync_engine_started", user_id=self._credentials.user_id)

    async def stop(self) -> None:
        """Stop the streaming loop and close the HTTP client."""
        was_active = self._running or self._task is not None
        self._running = False
        task, self._task = self._task, None
        # The loop may be the caller (a listener stopping the engine).
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._client:
            await self._client.aclose()
            self._client = None
        if was_active:
            await self._set_state(SyncState.STOPPED)
            logger.info("sync_engine_stopped", user_id=self._credentials.user_id)

    async def logout(self) -> None:
        """Invalidate the access token server-side.

        Raises:
            RemoteLogoutError: If the request fails or is rejected.
        """
        client = self._client or self._new_client()
        try:
            resp = await client.post(LOGOUT_PATH, json={})
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise remote_logout_error(self._credentials.server_url, str(exc)) from None
        finally:
            if client is not self._client:
                await client.aclose()
        logger.info("remote_logout_done", user_id=self._credentials.user_id)

    # Internals

    def _new_client(self) -> httpx.AsyncClient:
        poll_seconds = self._config.timeout_ms / 1000
        return httpx.AsyncClient(
            base_url=self._credentials.server_url,
            headers={"Authorization": f"Bearer {self._credentials.access_token}"},
            transport=self._transport,
            timeout=httpx.Timeout(10.0, read=poll_seconds + 10.0),
        )

    async def _set_state(self, state: SyncState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        for listener in list(self._sync_listeners):
            try:
                await listener(state, previous)
            except SessionError as exc:
                logger.warning("sync_listener_error", code=exc.code, state=state.value)
            except Exception:
                logger.exception("sync_listener_error", state=state.value)

    def _on_loop_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self._running = False
        logger.error(
            "sync_loop_crashed",
            user_id=self._credentials.user_id,
            error=repr(exc),
            state=self._state.value,
        )

    async def _emit_logged_out(self) -> None:
        for listener in list(self._logged_out_listeners):
            try:
                await listener()
            except Exception:
                logger.exception("logged_out_listener_error")

    async def _sync_loop(self) -> None:
        since = await self.store.get_value(SYNC_TOKEN_KEY)
        failures = 0
        backoff = self._config.initial_backoff
        await self._set_state(SyncState.SYNCING)

        while self._running:
            try:
                since = await self._sync_once(since)
            except _TokenRevoked:
                logger.warning("sync_token_revoked", user_id=self._credentials.user_id)
                self._running = False
                await self._emit_logged_out()
                return
            except (httpx.HTTPError, ValueError, sqlite3.Error) as exc:
                failures += 1
                logger.warning("sync_request_failed", error=str(exc), failures=failures)
                if failures >= self._config.error_threshold:
                    await self._set_state(SyncState.ERROR)
                elif self._ever_prepared:
                    await self._set_state(SyncState.RECONNECTING)
                await self._sleep(backoff)
                backoff = min(backoff * 2, self._config.max_backoff)
                continue

            if failures and self._ever_prepared:
                await self._set_state(SyncState.CATCHUP)
            failures = 0
            backoff = self._config.initial_backoff
            self._ever_prepared = True
            await self._set_state(SyncState.PREPARED)

    async def _sync_once(self, since: str | None) -> str | None:
        if self._client is None:
            raise httpx.TransportError("client closed")
        params: dict[str, Any] = {"timeout": self._config.timeout_ms}
        if since:
            params["since"] = since
        if self._config.lazy_load_members:
            params["filter"] = json.dumps({"room": {"state": {"lazy_load_members": True}}})

        resp = await self._client.get(SYNC_PATH, params=params)
        if resp.status_code == 401 and _errcode(resp) == "M_UNKNOWN_TOKEN":
            raise _TokenRevoked()
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, dict):
            raise ValueError("sync response is not an object")

        # Validate the whole batch before persisting any of it.
        rooms = _joined_rooms(payload)
        account_events = _account_data_events(payload)
        if rooms:
            await self.store.save_rooms(rooms)
            for room_id, name in rooms.items():
                if name or room_id not in self.rooms:
                    self.rooms[room_id] = name
        for event in account_events:
            content = event.get("content", {})
            await self.store.save_account_data(event["type"], content)
            self.account_data[event["type"]] = content

        next_batch = payload.get("next_batch")
        if next_batch:
            await self.store.set_value(SYNC_TOKEN_KEY, next_batch)
            return str(next_batch)
        return since


def _errcode(resp: httpx.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    return body.get("errcode") if isinstance(body, dict) else None


def _section(parent: dict[str, Any], key: str, kind: type) -> Any:
    """Return ``parent[key]``, empty when absent; raise ValueError on the wrong type."""
    if key not in parent:
        return kind()
    value = parent[key]
    if not isinstance(value, kind):
        raise ValueError(f"sync response field {key!r} is {type(value).__name__}")
    return value


def _joined_rooms(payload: dict[str, Any]) -> dict[str, str | None]:
    """Map joined room IDs to the latest m.room.name seen in this batch."""
    joined = _section(_section(payload, "rooms", dict), "join", dict)
    rooms: dict[str, str | None] = {}
    for room_id, room in joined.items():
        if not isinstance(room, dict):
            raise ValueError(f"joined room {room_id} is not an object")
        name: str | None = None
        events = _section(_section(room, "state", dict), "events", list) + _section(
            _section(room, "timeline", dict), "events", list
        )
        for event in events:
            if not isinstance(event, dict) or event.get("type") != "m.room.name":
                continue
            content = event.get("content")
            if isinstance(content, dict):
                name = content.get("name") or name
        rooms[room_id] = name
    return rooms


def _account_data_events(payload: dict[str, Any]) -> list[dict[str, Any]]:
    events = _section(_section(payload, "account_data", dict), "events", list)
    return [event for event in events if isinstance(event, dict) and "type" in event]
