"""Tests for the ccwatch command line interface."""

import json
import os
from pathlib import Path

import pytest
from typer.testing import CliRunner

from ccwatch import __version__
from ccwatch.__main__ import app

runner = CliRunner()


@pytest.fixture
def isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point config lookups at an empty temp tree and return a log dir."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.delenv("CUSTOM_HOOK_SCRIPT", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path / "logs"


def _write_session(log_dir: Path, session_id: str, pid: int) -> None:
    hooks = log_dir / "hooks"
    hooks.mkdir(parents=True, exist_ok=True)
    (hooks / f"{session_id}.jsonl").write_text("")
    (hooks / f"{session_id}.meta").write_text(
        json.dumps({"sessionId": session_id, "pid": pid, "startTime": 1_700_000_000_000, "cwd": "/w"})
    )


class TestVersion:
    """Tests for --version option."""

    def test_prints_version(self) -> None:
        """Should print the package version."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestHookCommand:
    """Tests for the hook subcommand."""

    def test_records_event(self, isolated: Path) -> None:
        """Should append the enriched event to the session log."""
        payload = {"session_id": "cli-sess", "hook_event_name": "Stop", "stop_hook_active": False}

        result = runner.invoke(app, ["--log-dir", str(isolated), "hook", "Stop"], input=json.dumps(payload))

        assert result.exit_code == 0
        lines = (isolated / "hooks" / "cli-sess.jsonl").read_text().splitlines()
        record = json.loads(lines[0])
        assert record["eventType"] == "Stop"
        assert record["sessionId"] == "cli-sess"
        assert (isolated / "hooks" / "cli-sess.meta").exists()

    def test_invalid_payload(self, isolated: Path) -> None:
        """Should exit with a non-blocking error on bad JSON."""
        result = runner.invoke(app, ["--log-dir", str(isolated), "hook", "Stop"], input="not json")
        assert result.exit_code == 1


class TestSessionCommands:
    """Tests for list and cleanup subcommands."""

    def test_list_shows_live_session(self, isolated: Path) -> None:
        """Should list sessions whose process is alive."""
        _write_session(isolated, "live-one", os.getpid())

        result = runner.invoke(app, ["--log-dir", str(isolated), "list"])

        assert result.exit_code == 0
        assert "live-one" in result.output

    def test_list_empty(self, isolated: Path) -> None:
        """Should say when there are no sessions."""
        result = runner.invoke(app, ["--log-dir", str(isolated), "list"])
        assert result.exit_code == 0
        assert "No active Claude Code sessions found" in result.output

    def test_cleanup_removes_dead_sessions(self, isolated: Path) -> None:
        """Should delete files of sessions whose pid is gone."""
        _write_session(isolated, "dead-one", 0)
        _write_session(isolated, "live-one", os.getpid())

        result = runner.invoke(app, ["--log-dir", str(isolated), "cleanup"])

        assert result.exit_code == 0
        assert "Removed dead-one" in result.output
        assert not (isolated / "hooks" / "dead-one.jsonl").exists()
        assert (isolated / "hooks" / "live-one.jsonl").exists()


class TestConfigCommands:
    """Tests for init-config and config subcommands."""

    def test_init_config(self, isolated: Path, tmp_path: Path) -> None:
        """Should create the config file once."""
        result = runner.invoke(app, ["init-config"])
        assert result.exit_code == 0
        assert (tmp_path / "config" / "ccwatch" / "config.yaml").exists()

        again = runner.invoke(app, ["init-config"])
        assert again.exit_code == 1

    def test_show_includes_overrides(self, isolated: Path) -> None:
        """Should print the effective config with CLI overrides applied."""
        result = runner.invoke(app, ["--max-events", "7", "--no-telemetry", "config", "show"])
        assert result.exit_code == 0
        assert "max_events: 7" in result.output
        assert "show_telemetry: false" in result.output

    def test_validate_reports_bad_values(self, isolated: Path, tmp_path: Path) -> None:
        """Should exit 1 when a config file has invalid values."""
        bad = tmp_path / "bad.yaml"
        bad.write_text("monitor:\n  max_events: lots\n")

        result = runner.invoke(app, ["config", "validate", "--config", str(bad)])

        assert result.exit_code == 1


class TestSetupCommand:
    """Tests for setup and check subcommands."""

    def test_setup_then_check(self, isolated: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should install user hooks that the check then accepts."""
        monkeypatch.setenv("HOME", str(tmp_path / "home"))

        assert runner.invoke(app, ["check"]).exit_code == 1

        result = runner.invoke(app, ["setup", "--yes"])
        assert result.exit_code == 0
        assert (tmp_path / "home" / ".claude" / "settings.json").exists()

        assert runner.invoke(app, ["check"]).exit_code == 0

    def test_setup_declined(self, isolated: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should write nothing when the prompt is declined."""
        monkeypatch.setenv("HOME", str(tmp_path / "home"))

        result = runner.invoke(app, ["setup", "--project"], input="n\n")

        assert result.exit_code == 1
        assert not (tmp_path / ".claude" / "settings.local.json").exists()
