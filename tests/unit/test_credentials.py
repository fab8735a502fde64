"""Tests for credential loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from sync_session_agent import config
from sync_session_agent.credentials import Credentials, CredentialStore
from sync_session_agent.errors import CredentialsError

VALID = {
    "server_url": "https://matrix.example.org/",
    "access_token": "syt_abc",
    "user_id": "@alice:example.org",
    "device_id": "DEVICEABC",
}


class TestCredentials:
    """Tests for the Credentials model."""

    def test_trailing_slash_is_stripped(self) -> None:
        creds = Credentials(**VALID)
        assert creds.server_url == "https://matrix.example.org"

    def test_rejects_non_http_url(self) -> None:
        with pytest.raises(ValidationError):
            Credentials(**{**VALID, "server_url": "matrix.example.org"})

    def test_rejects_blank_token(self) -> None:
        with pytest.raises(ValidationError):
            Credentials(**{**VALID, "access_token": "   "})

    def test_redacted_hides_token(self) -> None:
        """Should never expose the access token."""
        redacted = Credentials(**VALID).redacted()
        assert redacted["access_token"] == "***REDACTED***"
        assert "syt_abc" not in json.dumps(redacted)

    def test_is_frozen(self) -> None:
        creds = Credentials(**VALID)
        with pytest.raises(ValidationError):
            creds.user_id = "@mallory:example.org"  # type: ignore[misc]


class TestCredentialStore:
    """Tests for CredentialStore.load."""

    def test_load_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "credentials.json"
        path.write_text(json.dumps(VALID))

        creds = CredentialStore(path).load()

        assert creds.user_id == "@alice:example.org"

    def test_corrupt_file(self, tmp_path: Path) -> None:
        """Should raise CredentialsError naming the file."""
        path = tmp_path / "credentials.json"
        path.write_text("{not json")

        with pytest.raises(CredentialsError) as exc_info:
            CredentialStore(path).load()

        assert exc_info.value.context["source"] == str(path)

    def test_file_must_be_object(self, tmp_path: Path) -> None:
        path = tmp_path / "credentials.json"
        path.write_text(json.dumps([VALID]))

        with pytest.raises(CredentialsError):
            CredentialStore(path).load()

    def test_invalid_field_is_named(self, tmp_path: Path) -> None:
        path = tmp_path / "credentials.json"
        path.write_text(json.dumps({**VALID, "server_url": "ftp://x"}))

        with pytest.raises(CredentialsError) as exc_info:
            CredentialStore(path).load()

        assert "server_url" in exc_info.value.message

    def test_load_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should fall back to environment variables when no file exists."""
        monkeypatch.setenv(config.ENV_SERVER_URL, "https://hs.example.net")
        monkeypatch.setenv(config.ENV_ACCESS_TOKEN, "syt_env")
        monkeypatch.setenv(config.ENV_USER_ID, "@bob:example.net")
        monkeypatch.setenv(config.ENV_DEVICE_ID, "ENVDEVICE")

        creds = CredentialStore(tmp_path / "missing.json").load()

        assert creds.server_url == "https://hs.example.net"
        assert creds.device_id == "ENVDEVICE"

    def test_env_missing_fields(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should list every missing variable."""
        for name in (
            config.ENV_SERVER_URL,
            config.ENV_ACCESS_TOKEN,
            config.ENV_USER_ID,
            config.ENV_DEVICE_ID,
        ):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv(config.ENV_SERVER_URL, "https://hs.example.net")

        with pytest.raises(CredentialsError) as exc_info:
            CredentialStore(tmp_path / "missing.json").load()

        assert "access_token, device_id, user_id" in exc_info.value.message
        assert exc_info.value.context["source"] == "env"
