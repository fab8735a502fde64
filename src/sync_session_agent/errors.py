"""Error model - Actionable errors with remediation hints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SessionError(Exception):
    """
    Base error with context and remediation guidance.

    All errors should be actionable - tell the caller what went wrong
    and what they can do about it.
    """

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    remediation: str = ""

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "remediation": self.remediation,
        }


class StoreOpenError(SessionError):
    """Persistent storage is unavailable or corrupt."""


class CryptoInitError(SessionError):
    """Key material could not be loaded or generated."""


class BootstrapError(SessionError):
    """A dependent subsystem failed to construct."""


class RemoteLogoutError(SessionError):
    """The server did not acknowledge a logout request."""


class SyncStartError(SessionError):
    """The sync engine streaming loop could not be started."""


class CredentialsError(SessionError):
    """Credentials are missing or malformed."""


# Specific error constructors for common cases


def store_open_error(store: str, path: str, reason: str) -> StoreOpenError:
    """Create error for a store that cannot be opened."""
    return StoreOpenError(
        code="ERR_STORE_OPEN",
        message=f"Cannot open {store} store: {reason}",
        context={"store": store, "path": path, "reason": reason},
        remediation="Check the state directory is writable, or run 'session logout' to reset it",
    )


def crypto_init_error(reason: str) -> CryptoInitError:
    """Create error for crypto initialization failure."""
    return CryptoInitError(
        code="ERR_CRYPTO_INIT",
        message=f"Crypto initialization failed: {reason}",
        context={"reason": reason},
        remediation="Key material may be corrupt; run 'session logout' to start a fresh device",
    )


def bootstrap_error(subsystem: str, reason: str) -> BootstrapError:
    """Create error for a dependent subsystem that failed to construct."""
    return BootstrapError(
        code="ERR_BOOTSTRAP",
        message=f"Failed to construct {subsystem}: {reason}",
        context={"subsystem": subsystem, "reason": reason},
        remediation="Restart the daemon; if it persists run 'session clear-cache'",
    )


def remote_logout_error(server_url: str, reason: str) -> RemoteLogoutError:
    """Create error for a failed remote logout call."""
    return RemoteLogoutError(
        code="ERR_REMOTE_LOGOUT",
        message=f"Remote logout failed: {reason}",
        context={"server_url": server_url, "reason": reason},
        remediation="Local session data is still cleared; the token may stay valid server-side",
    )


def sync_start_error(reason: str) -> SyncStartError:
    """Create error for a sync engine that would not start."""
    return SyncStartError(
        code="ERR_SYNC_START",
        message=f"Sync engine failed to start: {reason}",
        context={"reason": reason},
        remediation="Check the server URL and network connectivity, then retry",
    )


def credentials_error(reason: str, source: str | None = None) -> CredentialsError:
    """Create error for missing or invalid credentials."""
    return CredentialsError(
        code="ERR_CREDENTIALS",
        message=f"Invalid credentials: {reason}",
        context={"source": source},
        remediation="Write credentials.json in the state directory or set SYNC_SESSION_* env vars",
    )


def not_started_error() -> SessionError:
    """Create error for operations that need a running session."""
    return SessionError(
        code="ERR_NOT_STARTED",
        message="Session is not started",
        context={},
        remediation="Start the daemon with 'daemon start' and check 'daemon status'",
    )
