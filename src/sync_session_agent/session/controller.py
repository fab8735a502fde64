"""Session lifecycle controller - startup, sync state machine and teardown."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable

import structlog

from sync_session_agent.config import LifecycleOptions, SyncConfig
from sync_session_agent.credentials import Credentials
from sync_session_agent.errors import (
    BootstrapError,
    CryptoInitError,
    RemoteLogoutError,
    SessionError,
    crypto_init_error,
    sync_start_error,
)
from sync_session_agent.events import EventBus, SyncTransition, Topic
from sync_session_agent.session.reloader import Reloader
from sync_session_agent.store.models import CryptoStore, GeneralStore, StorePair
from sync_session_agent.store.settings import SettingsCache
from sync_session_agent.subsystems.bootstrap import (
    BootstrapContext,
    SubsystemFactory,
    SubsystemSet,
)
from sync_session_agent.sync.engine import HttpSyncEngine, SyncEngine
from sync_session_agent.sync.state import SessionState, SyncState

logger = structlog.get_logger()

EngineFactory = Callable[[Credentials, GeneralStore, CryptoStore], SyncEngine]

# States that are only logged and published
PASSIVE_STATES = frozenset(
    {
        SyncState.NULL,
        SyncState.SYNCING,
        SyncState.RECONNECTING,
        SyncState.CATCHUP,
        SyncState.ERROR,
        SyncState.STOPPED,
    }
)


class SessionController:
    """Owns the sync engine, the store pair and the dependent subsystems.

    State notifications and teardown run one at a time under ``_serial``.
    ``start()`` and teardown additionally share ``_start_lock`` (always
    taken first), so a logout can never interleave with a half-finished
    startup or bootstrap. A teardown requested from inside the serial
    context (a bus listener reacting to a state) is queued as a task and
    runs once the current holder releases the locks.
    """

    def __init__(
        self,
        credentials: Credentials,
        stores: StorePair,
        bus: EventBus,
        settings: SettingsCache,
        reloader: Reloader,
        *,
        engine_factory: EngineFactory = HttpSyncEngine,
        subsystem_factory: SubsystemFactory | None = None,
        sync_config: SyncConfig | None = None,
        options: LifecycleOptions | None = None,
    ) -> None:
        self._credentials = credentials
        self._stores = stores
        self._bus = bus
        self._settings = settings
        self._reloader = reloader
        self._engine_factory = engine_factory
        self._subsystem_factory = subsystem_factory or SubsystemFactory()
        self._sync_config = sync_config or SyncConfig()
        self._options = options or LifecycleOptions()

        self._engine: SyncEngine | None = None
        self._subsystems: SubsystemSet | None = None
        self._state = SessionState()
        self._initialized = False
        self._bootstrap_failure: BootstrapError | None = None
        self._terminated = False
        self._ready = asyncio.Event()
        self._start_lock = asyncio.Lock()
        self._serial = asyncio.Lock()
        self._serial_owner: asyncio.Task[object] | None = None
        self._teardown_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def engine(self) -> SyncEngine | None:
        return self._engine

    @property
    def subsystems(self) -> SubsystemSet | None:
        return self._subsystems

    @property
    def bootstrap_failure(self) -> BootstrapError | None:
        return self._bootstrap_failure

    @property
    def terminated(self) -> bool:
        return self._terminated

    # Startup

    async def init(self, wait_ready: bool = False) -> None:
        """Idempotent entry point; optionally waits for the first bootstrap."""
        await self.start()
        if wait_ready:
            await self.wait_until_ready()

    async def start(self) -> None:
        """Open stores, build the engine, load keys and start streaming.

        Raises:
            StoreOpenError: A store could not be opened.
            CryptoInitError: Key material could not be loaded or generated.
            SyncStartError: The streaming loop would not start.
        """
        async with self._start_lock:
            if self._engine is not None:
                logger.warning("session_already_started", user_id=self._credentials.user_id)
                return
            if self._terminated:
                logger.warning("session_start_after_teardown", user_id=self._credentials.user_id)
                return

            logger.info(
                "session_starting",
                user_id=self._credentials.user_id,
                device_id=self._credentials.device_id,
                server_url=self._credentials.server_url,
            )
            try:
                general = await self._stores.open_general_store()
                crypto = await self._stores.open_crypto_store()
                self._engine = self._engine_factory(self._credentials, general, crypto)
                await self._init_crypto(self._engine)
                self._engine.on_sync(self._on_sync)
                self._engine.on_session_logged_out(self._on_session_logged_out)
                await self._start_engine(self._engine)
            except Exception as exc:
                logger.error("session_start_failed", error=str(exc))
                await self._abort_start()
                raise
            logger.info("session_started", user_id=self._credentials.user_id)

    async def wait_until_ready(self, timeout: float | None = None) -> None:
        """Block until the first PREPARED bootstrap finished.

        Raises:
            BootstrapError: If that bootstrap failed.
        """
        await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        if self._bootstrap_failure is not None:
            raise self._bootstrap_failure

    async def _init_crypto(self, engine: SyncEngine) -> None:
        try:
            await engine.init_crypto()
        except CryptoInitError:
            raise
        except Exception as exc:
            raise crypto_init_error(str(exc)) from exc

    async def _start_engine(self, engine: SyncEngine) -> None:
        try:
            await engine.start(self._sync_config)
        except SessionError:
            raise
        except Exception as exc:
            raise sync_start_error(str(exc)) from exc

    async def _abort_start(self) -> None:
        """Undo a partial start so the controller is back to not-started."""
        async with self._serialized():
            await self._stop_engine(publish=False)
            self._destroy_subsystems()
            await self._stores.close()
            self._state = SessionState()
            self._initialized = False

    @contextlib.asynccontextmanager
    async def _serialized(self) -> AsyncIterator[None]:
        async with self._serial:
            self._serial_owner = asyncio.current_task()
            try:
                yield
            finally:
                self._serial_owner = None

    # Sync state machine

    async def _on_sync(self, state: SyncState, previous: SyncState | None) -> None:
        async with self._serialized():
            await self._handle_transition(state, previous)

    async def _handle_transition(self, state: SyncState, previous: SyncState | None) -> None:
        self._state = self._state.advance(state)
        logger.info(
            "sync_state_changed",
            state=state.value,
            previous=previous.value if previous else None,
        )
        await self._bus.publish(Topic.SYNC_STATE, SyncTransition(state, previous))

        if self._bootstrap_failure is not None:
            logger.warning("sync_state_ignored", state=state.value, reason="bootstrap_failed")
            return

        if state is SyncState.PREPARED:
            if not self._initialized:
                await self._bootstrap(previous)
            elif self._options.rearm_on_reconnect:
                await self._rearm()
        elif state not in PASSIVE_STATES:
            raise ValueError(f"Unhandled sync state: {state!r}")

    async def _bootstrap(self, previous: SyncState | None) -> None:
        """Build the dependent subsystems on the first PREPARED.

        "First" means the controller is not yet initialized. ``previous`` is
        only logged: the engine normally reaches PREPARED through SYNCING,
        so requiring ``previous`` to be NULL would never bootstrap.
        """
        if self._engine is None:
            return
        ctx = BootstrapContext(
            engine=self._engine,
            store=self._stores.general,
            bus=self._bus,
            settings=self._settings,
        )
        try:
            subsystems = self._subsystem_factory.build(ctx)
        except BootstrapError as exc:
            self._bootstrap_failure = exc
            self._ready.set()
            logger.error("session_bootstrap_failed", code=exc.code, **exc.context)
            return

        self._subsystems = subsystems
        self._initialized = True
        logger.info("session_bootstrapped", previous=previous.value if previous else None)
        await self._bus.publish(Topic.INIT_LOADING_FINISHED, subsystems)
        self._ready.set()
        if self._options.rearm_on_first_prepared:
            await self._rearm()

    async def _rearm(self) -> None:
        if self._subsystems is None:
            return
        try:
            await self._subsystems.notifications.rearm()
        except Exception:
            logger.exception("notification_rearm_failed")

    # Teardown

    async def _on_session_logged_out(self) -> None:
        logger.warning("session_invalidated", user_id=self._credentials.user_id)
        self._queue_teardown("invalidated", remote_logout=False, full_wipe=True)

    async def logout(self) -> None:
        """Stop, log out remotely (best-effort), wipe both stores and settings, reload.

        Called from a bus listener while a state is being handled, the
        teardown is queued and this returns before it runs.
        """
        if self._in_serial_context():
            self._queue_teardown("logout", remote_logout=True, full_wipe=True)
            return
        await self._teardown("logout", remote_logout=True, full_wipe=True)

    async def clear_cache_and_reload(self) -> None:
        """Stop, wipe the general store only, reload. Keys and credentials survive."""
        if self._in_serial_context():
            self._queue_teardown("clear_cache", remote_logout=False, full_wipe=False)
            return
        await self._teardown("clear_cache", remote_logout=False, full_wipe=False)

    @property
    def teardown_task(self) -> asyncio.Task[None] | None:
        """The queued teardown, if one was requested from a handler."""
        return self._teardown_task

    def _in_serial_context(self) -> bool:
        return self._serial_owner is not None and asyncio.current_task() is self._serial_owner

    def _queue_teardown(self, reason: str, *, remote_logout: bool, full_wipe: bool) -> None:
        if self._teardown_task is not None or self._terminated:
            logger.info("session_teardown_already_pending", reason=reason)
            return
        logger.info("session_teardown_queued", reason=reason)
        self._teardown_task = asyncio.create_task(
            self._teardown(reason, remote_logout=remote_logout, full_wipe=full_wipe)
        )

    async def close(self) -> None:
        """Shut down without wiping anything."""
        async with self._start_lock, self._serialized():
            await self._stop_engine()
            self._destroy_subsystems()
            await self._stores.close()
        logger.info("session_closed", user_id=self._credentials.user_id)

    async def _teardown(self, reason: str, *, remote_logout: bool, full_wipe: bool) -> None:
        logger.info("session_teardown_starting", reason=reason)
        async with self._start_lock, self._serialized():
            self._terminated = True
            engine = await self._stop_engine()
            if remote_logout and engine is not None:
                await self._remote_logout(engine)
            self._destroy_subsystems()

            handles: list[GeneralStore | CryptoStore] = [self._stores.general]
            if full_wipe:
                handles.append(self._stores.crypto)
            for handle in handles:
                try:
                    await self._stores.clear_all(handle)
                except Exception:
                    logger.exception("session_store_clear_failed", store=handle.name)
            if full_wipe:
                try:
                    self._settings.clear()
                except OSError:
                    logger.exception("session_settings_clear_failed")
            try:
                await self._stores.close()
            except Exception:
                logger.exception("session_store_close_failed")

        logger.info("session_teardown_complete", reason=reason)
        self._reloader.reload()

    async def _stop_engine(self, publish: bool = True) -> SyncEngine | None:
        """Detach from and stop the engine; returns the engine that was live."""
        engine, self._engine = self._engine, None
        if engine is None:
            return None
        # Detach first so the engine's STOPPED notification cannot re-enter
        # the handler while ``_serial`` is held.
        engine.off_sync(self._on_sync)
        engine.off_session_logged_out(self._on_session_logged_out)
        try:
            await engine.stop()
        except Exception:
            logger.exception("session_engine_stop_failed")
        if publish and self._state.current != SyncState.STOPPED:
            previous = self._state.current
            self._state = self._state.advance(SyncState.STOPPED)
            await self._bus.publish(Topic.SYNC_STATE, SyncTransition(SyncState.STOPPED, previous))
        return engine

    async def _remote_logout(self, engine: SyncEngine) -> None:
        try:
            await engine.logout()
        except RemoteLogoutError as exc:
            logger.warning("session_logout_remote_failed", code=exc.code, reason=exc.message)
        except Exception as exc:
            logger.warning("session_logout_remote_failed", reason=str(exc))

    def _destroy_subsystems(self) -> None:
        subsystems, self._subsystems = self._subsystems, None
        if subsystems is not None:
            subsystems.close()
