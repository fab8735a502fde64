"""Paths, environment variables and tunables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

HOME_ENV = "SYNC_SESSION_AGENT_HOME"

ENV_SERVER_URL = "SYNC_SESSION_SERVER_URL"
ENV_ACCESS_TOKEN = "SYNC_SESSION_ACCESS_TOKEN"
ENV_USER_ID = "SYNC_SESSION_USER_ID"
ENV_DEVICE_ID = "SYNC_SESSION_DEVICE_ID"


def state_dir() -> Path:
    """Return the state directory, honoring SYNC_SESSION_AGENT_HOME."""
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".sync-session-agent"


STATE_DIR = state_dir()
GENERAL_STORE_PATH = STATE_DIR / "web-sync-store.db"
CRYPTO_STORE_PATH = STATE_DIR / "crypto-store.db"
SETTINGS_PATH = STATE_DIR / "settings.json"
CREDENTIALS_PATH = STATE_DIR / "credentials.json"
SOCKET_PATH = Path("/tmp/sync-session-agent.sock")
PID_FILE = STATE_DIR / "daemon.pid"
LOG_FILE = STATE_DIR / "daemon.log"


@dataclass(frozen=True)
class SyncConfig:
    """Options handed to the sync engine when streaming starts."""

    timeout_ms: int = 30_000
    lazy_load_members: bool = True
    initial_backoff: float = 1.0
    max_backoff: float = 30.0
    error_threshold: int = 3  # consecutive failures before ERROR


@dataclass(frozen=True)
class LifecycleOptions:
    """Toggles for the notification re-arm on PREPARED entries."""

    rearm_on_first_prepared: bool = True
    rearm_on_reconnect: bool = True
