"""Client-side cached settings persisted as a JSON object."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog

from sync_session_agent import config

logger = structlog.get_logger()


class SettingsCache:
    """Small key/value cache of client preferences.

    Unreadable or non-object content is treated as empty rather than
    raising, so a corrupt file never blocks a session from starting.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or config.SETTINGS_PATH

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("settings_unreadable", path=str(self.path))
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")

    def all(self) -> dict[str, Any]:
        return self._read()

    def clear(self) -> None:
        """Drop every cached setting."""
        self.path.unlink(missing_ok=True)
        logger.info("settings_cleared", path=str(self.path))
