"""Producer side: record hook events for the monitor to tail.

``ccwatch hook <EventName>`` is configured as the agent's hook command. It
reads the event JSON from stdin, optionally runs the user's own hook script,
appends an enriched record to the session log and then mirrors the user
hook's stdout, stderr and exit code back to the agent.
"""

from __future__ import annotations

import getpass
import json
import logging
import os
import subprocess
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import IO, Any

from ccwatch.sessions import LogLayout, SessionMetadata

logger = logging.getLogger(__name__)

# Exit codes understood by the agent
EXIT_ALLOW = 0
EXIT_ERROR = 1
EXIT_BLOCK = 2

CUSTOM_HOOK_ENV = "CUSTOM_HOOK_SCRIPT"
SESSION_ID_ENV = "CLAUDE_SESSION_ID"

# snake_case field -> camelCase field in the enriched record
_FIELD_RENAMES: dict[str, str] = {
    "session_id": "sessionId",
    "transcript_path": "transcriptPath",
    "permission_mode": "permissionMode",
    "tool_name": "toolName",
    "tool_input": "toolInput",
    "tool_response": "toolResult",
    "stop_hook_active": "stopHookActive",
    "notification_type": "notificationType",
    "custom_instructions": "customInstructions",
}
_PASSTHROUGH_FIELDS = ("id", "cwd", "prompt", "duration", "reason", "message", "trigger", "source")


class HookLogWriter:
    """Appends events to one session's hook log.

    Use as a context manager: the log is opened on entry and flushed and
    closed on exit. With ``cleanup_on_close`` the log and metadata files
    are deleted on exit as well.
    """

    def __init__(
        self,
        session_id: str,
        layout: LogLayout | None = None,
        pid: int | None = None,
        cleanup_on_close: bool = False,
    ) -> None:
        self.session_id = session_id
        self.layout = layout or LogLayout.default()
        self.pid = pid if pid is not None else os.getppid()
        self.cleanup_on_close = cleanup_on_close
        self._file: IO[str] | None = None

    @property
    def log_path(self) -> Path:
        return self.layout.hook_log_path(self.session_id)

    @property
    def metadata_path(self) -> Path:
        return self.layout.metadata_path(self.session_id)

    def __enter__(self) -> HookLogWriter:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def open(self) -> None:
        """Create the directory, write metadata once and open the log for append."""
        if self._file is not None:
            return
        self.layout.hooks_dir.mkdir(parents=True, exist_ok=True)
        self.write_metadata()
        self._file = self.log_path.open("a", encoding="utf-8")

    def write_metadata(self) -> None:
        """Write the session metadata file if it does not exist yet."""
        if self.metadata_path.exists():
            return
        try:
            user = getpass.getuser()
        except (KeyError, OSError):
            user = ""
        metadata = SessionMetadata(
            session_id=self.session_id,
            pid=self.pid,
            start_time=int(time.time() * 1000),
            cwd=os.getcwd(),
            user=user,
        )
        self.metadata_path.write_text(json.dumps(metadata.model_dump(by_alias=True), indent=2), encoding="utf-8")

    def write_event(self, record: dict[str, Any]) -> None:
        """Append one record as a single JSON line.

        Fills in ``id``, ``timestamp`` (ms) and ``sessionId`` when missing.
        """
        if self._file is None:
            raise RuntimeError("HookLogWriter is not open")
        full = {
            **record,
            "id": record.get("id") or uuid.uuid4().hex,
            "timestamp": record.get("timestamp") or int(time.time() * 1000),
            "sessionId": record.get("sessionId") or self.session_id,
        }
        # One write call per line so concurrent appenders don't interleave
        self._file.write(json.dumps(full, separators=(",", ":")) + "\n")
        self._file.flush()

    def close(self) -> None:
        """Flush and close; delete the files when cleanup_on_close is set. Idempotent."""
        if self._file is not None:
            self._file.close()
            self._file = None
        if self.cleanup_on_close:
            self.log_path.unlink(missing_ok=True)
            self.metadata_path.unlink(missing_ok=True)


@dataclass
class CustomHookResult:
    """Captured execution of the user's own hook script."""

    command: str
    exit_code: int
    stdout: str
    stderr: str

    @property
    def response(self) -> dict[str, Any] | None:
        """Structured response when stdout is a JSON object."""
        if not self.stdout.strip():
            return None
        try:
            decoded = json.loads(self.stdout)
        except json.JSONDecodeError:
            return None
        return decoded if isinstance(decoded, dict) else None


@dataclass
class HookOutcome:
    """What the wrapper returns to the agent."""

    exit_code: int = EXIT_ALLOW
    stdout: str = ""
    stderr: str = ""


def run_custom_hook(script: Path, event_json: str, timeout: float = 60.0) -> CustomHookResult:
    """Run the user's hook script with the event JSON on stdin.

    Args:
        script: Executable to run.
        event_json: Raw event JSON as received from the agent.
        timeout: Seconds before the script is considered failed.

    Returns:
        The captured result; launch failures become a non-blocking error.
    """
    try:
        result = subprocess.run(
            [str(script)],
            input=event_json,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        return CustomHookResult(command=str(script), exit_code=EXIT_ERROR, stdout="", stderr=str(e))
    return CustomHookResult(
        command=str(script),
        exit_code=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
    )


def enrich_event(
    event: dict[str, Any],
    event_name: str,
    session_id: str,
    custom: CustomHookResult | None = None,
) -> dict[str, Any]:
    """Rewrite an agent hook payload into the camelCase log record.

    Args:
        event: Payload received on stdin.
        event_name: Hook event name (e.g. ``PostToolUse``).
        session_id: Owning session.
        custom: Result of the user's hook, if one ran.

    Returns:
        Record with ``None`` values removed.
    """
    record: dict[str, Any] = {"eventType": event_name, "sessionId": session_id}
    for key, value in event.items():
        if key in _FIELD_RENAMES:
            record[_FIELD_RENAMES[key]] = value
        elif key in _PASSTHROUGH_FIELDS:
            record[key] = value
    record["sessionId"] = session_id
    if isinstance(event.get("timestamp"), int | float):
        record["timestamp"] = event["timestamp"]

    if custom is not None:
        record["hookCommand"] = custom.command
        record["hookOutput"] = custom.stdout or None
        record["hookExitCode"] = custom.exit_code
        record["hookResponse"] = custom.response

    return {k: v for k, v in record.items() if v is not None}


def resolve_session_id(event: dict[str, Any]) -> str:
    """Session id from the payload, then the environment, then a fresh id."""
    for key in ("session_id", "sessionId"):
        value = event.get(key)
        if isinstance(value, str) and value:
            return value
    return os.environ.get(SESSION_ID_ENV) or uuid.uuid4().hex[:16]


def run_hook(
    event_json: str,
    event_name: str | None = None,
    layout: LogLayout | None = None,
    custom_hook: Path | None = None,
) -> HookOutcome:
    """Record one hook invocation and compute the response for the agent.

    Exit code contract: 0 allows, 2 blocks (stderr goes to the agent), any
    other non-zero code is a non-blocking error shown to the operator.

    Args:
        event_json: Raw stdin payload.
        event_name: Event name from the command line; falls back to the
            payload's ``hook_event_name``.
        layout: Log layout; defaults to ~/.claude-code.
        custom_hook: User hook script to delegate to.

    Returns:
        Exit code plus the stdout/stderr to forward.
    """
    try:
        event = json.loads(event_json)
    except json.JSONDecodeError as e:
        return HookOutcome(exit_code=EXIT_ERROR, stderr=f"ccwatch hook: invalid event JSON: {e}")
    if not isinstance(event, dict):
        return HookOutcome(exit_code=EXIT_ERROR, stderr="ccwatch hook: event JSON must be an object")

    name = event_name or event.get("hook_event_name") or event.get("eventType") or "unknown"
    session_id = resolve_session_id(event)

    custom = run_custom_hook(custom_hook, event_json) if custom_hook and custom_hook.is_file() else None

    try:
        with HookLogWriter(session_id, layout=layout) as writer:
            writer.write_event(enrich_event(event, name, session_id, custom))
    except OSError as e:
        # Logging must never change the agent's behavior
        logger.warning("Failed to record %s event: %s", name, e)

    if custom is None:
        return HookOutcome()
    return HookOutcome(exit_code=custom.exit_code, stdout=custom.stdout, stderr=custom.stderr)
