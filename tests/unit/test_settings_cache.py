"""Tests for SettingsCache."""

from __future__ import annotations

from pathlib import Path

from sync_session_agent.store.settings import SettingsCache


class TestSettingsCache:
    def test_get_default_when_missing(self, tmp_path: Path) -> None:
        cache = SettingsCache(tmp_path / "settings.json")
        assert cache.get("show_notifications", True) is True
        assert cache.all() == {}

    def test_set_and_get(self, tmp_path: Path) -> None:
        cache = SettingsCache(tmp_path / "nested" / "settings.json")

        cache.set("show_notifications", False)
        cache.set("theme", "dark")

        assert cache.get("show_notifications") is False
        assert cache.all() == {"show_notifications": False, "theme": "dark"}

    def test_corrupt_file_reads_as_empty(self, tmp_path: Path) -> None:
        """Should not raise on unreadable content."""
        path = tmp_path / "settings.json"
        path.write_text("[1, 2")
        assert SettingsCache(path).all() == {}

    def test_non_object_reads_as_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]")
        assert SettingsCache(path).all() == {}

    def test_clear_removes_file(self, tmp_path: Path) -> None:
        cache = SettingsCache(tmp_path / "settings.json")
        cache.set("theme", "dark")

        cache.clear()
        cache.clear()

        assert not cache.path.exists()
        assert cache.get("theme") is None
