"""Daemon process control and the Unix-socket HTTP client used by CLI commands."""

from __future__ import annotations

import json
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Any

import httpx

from sync_session_agent import config

BASE_URL = "http://sync-session-agent"
SERVER_APP = "sync_session_agent.daemon.server:app"
STARTUP_TIMEOUT = 5.0
RESTART_TIMEOUT = 15.0
POLL_INTERVAL = 0.1


def _socket_client(socket_path: Path, timeout: float) -> httpx.Client:
    return httpx.Client(
        transport=httpx.HTTPTransport(uds=str(socket_path)),
        base_url=BASE_URL,
        timeout=timeout,
    )


def _probe_health(client: httpx.Client) -> bool:
    try:
        return client.get("/health").status_code == 200
    except httpx.TransportError:
        return False


class DaemonController:
    """Start, stop and inspect the daemon process through its pid file.

    A teardown re-executes the daemon in place, so the pid survives a
    logout or cache clear while the socket is briefly gone.
    """

    def __init__(self, socket_path: Path = config.SOCKET_PATH) -> None:
        self.socket_path = socket_path
        self.pid_file = config.PID_FILE
        self.log_file = config.LOG_FILE
        config.STATE_DIR.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _alive(pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except OSError:
            return False
        return True

    def _read_pid(self) -> int | None:
        try:
            return int(self.pid_file.read_text().strip())
        except (OSError, ValueError):
            return None

    def _live_pid(self) -> int | None:
        """Pid from the pid file if that process still exists; drops stale files."""
        pid = self._read_pid()
        if pid is None:
            return None
        if self._alive(pid):
            return pid
        self.pid_file.unlink(missing_ok=True)
        return None

    def health(self) -> bool:
        """Return True if the daemon socket responds to /health."""
        if not self.socket_path.exists():
            return False
        with _socket_client(self.socket_path, timeout=1.0) as client:
            return _probe_health(client)

    def start(self) -> int:
        """Spawn uvicorn on the socket; returns the pid, or -1 if an unknown daemon answers."""
        pid = self._live_pid()
        if pid is not None:
            return pid
        if self.health():
            return -1

        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        command = [
            sys.executable,
            "-m",
            "uvicorn",
            SERVER_APP,
            "--uds",
            str(self.socket_path),
            "--log-level",
            "info",
        ]
        with self.log_file.open("a", encoding="utf-8") as log:
            proc = subprocess.Popen(command, stdout=log, stderr=log, start_new_session=True)
        self.pid_file.write_text(str(proc.pid))
        return proc.pid

    def stop(self, grace: float = 2.0) -> bool:
        """Send SIGTERM and wait up to ``grace`` seconds for the process to exit."""
        pid = self._live_pid()
        if pid is None:
            return False
        os.kill(pid, signal.SIGTERM)
        deadline = time.monotonic() + grace
        while time.monotonic() < deadline:
            if not self._alive(pid):
                self.pid_file.unlink(missing_ok=True)
                return True
            time.sleep(POLL_INTERVAL)
        return False

    def status(self) -> dict[str, Any]:
        """Return daemon status summary."""
        pid = self._read_pid()
        return {
            "pid": pid,
            "pid_running": self._alive(pid) if pid else False,
            "socket": str(self.socket_path),
            "socket_exists": self.socket_path.exists(),
        }


class DaemonClient:
    """Synchronous client for the daemon API; starts the daemon on demand."""

    def __init__(
        self,
        socket_path: Path = config.SOCKET_PATH,
        *,
        auto_start: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.auto_start = auto_start
        self.controller = DaemonController(socket_path)
        self._client = _socket_client(socket_path, timeout)

    def close(self) -> None:
        self._client.close()

    def request(
        self, method: str, path: str, json_body: dict[str, Any] | None = None
    ) -> httpx.Response:
        if self.auto_start and not _probe_health(self._client):
            self._spawn_and_wait()
        try:
            return self._client.request(method, path, json=json_body)
        except httpx.TransportError:
            if not self.auto_start:
                raise
            self._spawn_and_wait()
            return self._client.request(method, path, json=json_body)

    def wait_for_restart(self, timeout: float = RESTART_TIMEOUT) -> None:
        """Wait for the daemon to go away and come back after a teardown.

        Raises:
            RuntimeError: If it is not healthy again within ``timeout``.
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline and _probe_health(self._client):
            time.sleep(POLL_INTERVAL)
        self._wait_healthy(deadline)

    def _spawn_and_wait(self) -> None:
        self.controller.start()
        self._wait_healthy(time.monotonic() + STARTUP_TIMEOUT)

    def _wait_healthy(self, deadline: float) -> None:
        while time.monotonic() < deadline:
            if _probe_health(self._client):
                return
            time.sleep(POLL_INTERVAL)
        raise RuntimeError("Daemon did not become healthy in time")


def format_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=True)
