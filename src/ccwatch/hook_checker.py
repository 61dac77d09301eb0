"""Detect and install Claude Code hooks that feed ccwatch."""

from __future__ import annotations

import json
import logging
import shutil
import time
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

HOOK_COMMAND = "ccwatch hook"
HOOK_COMMAND_MARKERS = (HOOK_COMMAND, "ccwatch-hook", "claude-companion-hook")

# Every hook kind the monitor displays; the parser drops PreToolUse.
HOOK_EVENT_NAMES = (
    "SessionStart",
    "UserPromptSubmit",
    "PostToolUse",
    "Stop",
    "SubagentStop",
    "Notification",
    "PreCompact",
    "SessionEnd",
)


class HookLocation(StrEnum):
    """Which Claude Code settings file to use."""

    USER = "user"
    PROJECT = "project"


def settings_path(location: HookLocation, home: Path | None = None, project_dir: Path | None = None) -> Path:
    """~/.claude/settings.json for the user, <project>/.claude/settings.local.json otherwise."""
    if location == HookLocation.USER:
        return (home or Path.home()) / ".claude" / "settings.json"
    return (project_dir or Path.cwd()) / ".claude" / "settings.local.json"


@dataclass
class HookCheckResult:
    """Outcome of inspecting the user and project settings files."""

    user_settings: Path
    project_settings: Path
    has_user_hooks: bool = False
    has_project_hooks: bool = False
    user_uses_ccwatch: bool = False
    project_uses_ccwatch: bool = False

    @property
    def is_configured(self) -> bool:
        return self.user_uses_ccwatch or self.project_uses_ccwatch

    @property
    def status_message(self) -> str:
        """One-line summary for the terminal."""
        if not self.has_user_hooks and not self.has_project_hooks:
            return "No Claude Code hooks found."
        if not self.is_configured:
            return "Claude Code hooks exist but none call `ccwatch hook`."
        locations = []
        if self.user_uses_ccwatch:
            locations.append("user settings")
        if self.project_uses_ccwatch:
            locations.append("project settings")
        return f"Hooks configured in {' and '.join(locations)}."


@dataclass
class InstallResult:
    """What install_hooks() changed."""

    settings_path: Path
    backup_path: Path | None = None
    replaced_invalid: bool = False


def _load_settings(path: Path) -> dict[str, Any] | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _has_hooks(settings: dict[str, Any] | None) -> bool:
    if settings is None:
        return False
    hooks = settings.get("hooks")
    return isinstance(hooks, dict) and len(hooks) > 0


def _mentions_ccwatch(value: Any) -> bool:
    serialized = json.dumps(value)
    return any(marker in serialized for marker in HOOK_COMMAND_MARKERS)


def _uses_ccwatch(settings: dict[str, Any] | None) -> bool:
    if settings is None or not _has_hooks(settings):
        return False
    return _mentions_ccwatch(settings["hooks"])


def check_hooks(home: Path | None = None, project_dir: Path | None = None) -> HookCheckResult:
    """Inspect ~/.claude/settings.json and <project>/.claude/settings.local.json.

    Args:
        home: Home directory (defaults to the current user's).
        project_dir: Project directory (defaults to the cwd).

    Returns:
        What was found in each settings file.
    """
    user_settings = settings_path(HookLocation.USER, home=home)
    project_settings = settings_path(HookLocation.PROJECT, project_dir=project_dir)

    user = _load_settings(user_settings)
    project = _load_settings(project_settings)

    return HookCheckResult(
        user_settings=user_settings,
        project_settings=project_settings,
        has_user_hooks=_has_hooks(user),
        has_project_hooks=_has_hooks(project),
        user_uses_ccwatch=_uses_ccwatch(user),
        project_uses_ccwatch=_uses_ccwatch(project),
    )


def generate_hook_settings(command: str = HOOK_COMMAND) -> dict[str, list[dict[str, Any]]]:
    """The ``hooks`` mapping that routes every displayed event kind through ``command``."""
    return {
        name: [{"matcher": "*", "hooks": [{"type": "command", "command": f"{command} {name}"}]}]
        for name in HOOK_EVENT_NAMES
    }


def install_hooks(
    location: HookLocation,
    home: Path | None = None,
    project_dir: Path | None = None,
    command: str = HOOK_COMMAND,
) -> InstallResult:
    """Merge ccwatch hook entries into a Claude Code settings file.

    Matcher groups that do not call ccwatch are kept. Groups that already
    call it are replaced, so running setup again never duplicates entries.
    An existing file is first copied to ``<name>.backup.<ms>``; if it does
    not hold a JSON object, it is replaced by a fresh settings object.

    Args:
        location: User or project settings.
        home: Home directory (defaults to the current user's).
        project_dir: Project directory (defaults to the cwd).
        command: Hook command prefix; the event name is appended.

    Returns:
        The written file and any backup taken.
    """
    path = settings_path(location, home=home, project_dir=project_dir)
    result = InstallResult(settings_path=path)
    path.parent.mkdir(parents=True, exist_ok=True)

    settings: dict[str, Any] = {}
    if path.exists():
        result.backup_path = path.with_name(f"{path.name}.backup.{int(time.time() * 1000)}")
        shutil.copy2(path, result.backup_path)
        loaded = _load_settings(path)
        if loaded is None:
            logger.warning("Could not parse %s; writing a new settings file", path)
            result.replaced_invalid = True
        else:
            settings = loaded

    hooks = settings.get("hooks")
    if not isinstance(hooks, dict):
        hooks = {}
    for name, groups in generate_hook_settings(command).items():
        existing = hooks.get(name)
        kept = [group for group in existing if not _mentions_ccwatch(group)] if isinstance(existing, list) else []
        hooks[name] = kept + groups
    settings["hooks"] = hooks

    path.write_text(json.dumps(settings, indent=2) + "\n", encoding="utf-8")
    logger.info("Installed ccwatch hooks in %s", path)
    return result
