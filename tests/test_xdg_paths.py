"""Tests for ccwatch.xdg_paths module."""

from pathlib import Path

import pytest

from ccwatch.xdg_paths import get_config_dir, get_config_file_path, get_default_log_base_dir


class TestXdgPaths:
    """Tests for config and log directory resolution."""

    def test_config_dir_follows_xdg_config_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should place the config under $XDG_CONFIG_HOME/ccwatch."""
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert get_config_dir() == tmp_path / "ccwatch"
        assert get_config_file_path() == tmp_path / "ccwatch" / "config.yaml"

    def test_log_base_dir_is_under_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should default the log base to ~/.claude-code."""
        monkeypatch.setenv("HOME", str(tmp_path))
        assert get_default_log_base_dir() == tmp_path / ".claude-code"
