"""Credential store - read-only source of the session identity."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from sync_session_agent import config
from sync_session_agent.errors import CredentialsError, credentials_error

logger = structlog.get_logger()


class Credentials(BaseModel):
    """Server URL, access token, user ID and device ID for one session."""

    model_config = ConfigDict(frozen=True)

    server_url: str
    access_token: str
    user_id: str
    device_id: str

    @field_validator("server_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("server_url must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("access_token", "user_id", "device_id")
    @classmethod
    def _check_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    def redacted(self) -> dict[str, Any]:
        """Return a loggable view without the access token."""
        return {
            "server_url": self.server_url,
            "access_token": "***REDACTED***",
            "user_id": self.user_id,
            "device_id": self.device_id,
        }


class CredentialStore:
    """Loads credentials from a JSON file, falling back to environment variables."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or config.CREDENTIALS_PATH

    def load(self) -> Credentials:
        """Load and validate credentials.

        Raises:
            CredentialsError: If no source holds a complete, valid set.
        """
        if self.path.exists():
            return self._from_file()
        return self._from_env()

    def _from_file(self) -> Credentials:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise credentials_error(f"unreadable file: {exc}", source=str(self.path)) from None
        if not isinstance(raw, dict):
            raise credentials_error("file must hold a JSON object", source=str(self.path))
        creds = self._validate(raw, source=str(self.path))
        logger.info("credentials_loaded", source="file", user_id=creds.user_id)
        return creds

    def _from_env(self) -> Credentials:
        raw = {
            "server_url": os.environ.get(config.ENV_SERVER_URL),
            "access_token": os.environ.get(config.ENV_ACCESS_TOKEN),
            "user_id": os.environ.get(config.ENV_USER_ID),
            "device_id": os.environ.get(config.ENV_DEVICE_ID),
        }
        missing = sorted(key for key, value in raw.items() if not value)
        if missing:
            raise credentials_error(f"missing {', '.join(missing)}", source="env")
        creds = self._validate(raw, source="env")
        logger.info("credentials_loaded", source="env", user_id=creds.user_id)
        return creds

    @staticmethod
    def _validate(raw: dict[str, Any], source: str) -> Credentials:
        try:
            return Credentials.model_validate(raw)
        except ValidationError as exc:
            fields = ", ".join(str(err["loc"][0]) for err in exc.errors() if err["loc"])
            raise credentials_error(f"invalid fields: {fields}", source=source) from None


__all__ = ["CredentialStore", "Credentials", "CredentialsError"]
