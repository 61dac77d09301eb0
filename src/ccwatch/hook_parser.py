"""Parse hook-schema JSONL lines into normalized events."""

from __future__ import annotations

import json
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, cast

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, JsonValue, ValidationError

from ccwatch.events import (
    HOOK_EVENT_KINDS,
    CompactTrigger,
    EventKind,
    HookResponse,
    JsonObject,
    LogEvent,
    NotificationEvent,
    PreCompactEvent,
    SessionEndEvent,
    SessionEndReason,
    SessionStartEvent,
    SessionStartSource,
    StopEvent,
    SubagentStopEvent,
    ToolUseEvent,
    UserPromptSubmitEvent,
)

logger = logging.getLogger(__name__)

# Wire names that map onto a normalized kind other than their own.
# PreToolUse is dropped: PostToolUse carries input, result and duration.
_EVENT_NAME_ALIASES: dict[str, EventKind] = {
    "PostToolUse": EventKind.TOOL_USE,
}
_DROPPED_EVENT_NAMES = frozenset({"PreToolUse"})

_END_REASON_ALIASES: dict[str, SessionEndReason] = {
    "prompt_input_exit": SessionEndReason.PROMPT_EXIT,
}


@dataclass
class ParseError:
    """A line that could not be decoded, kept for observability."""

    line: str
    cause: str


@dataclass
class ParsedLine:
    """Result of parsing one line: zero or more events, or an error."""

    events: list[LogEvent] = field(default_factory=list)
    error: ParseError | None = None

    @property
    def ok(self) -> bool:
        """Whether the line decoded (it may still have produced no events)."""
        return self.error is None


def _alias(*names: str) -> Any:
    return Field(default=None, validation_alias=AliasChoices(*names))


class HookRecord(BaseModel):
    """One hook-schema line as written by the producer.

    Accepts both the snake_case names the agent passes to hooks and the
    camelCase names the wrapper script writes.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    event_name: str | None = _alias("hook_event_name", "eventType", "event_type")
    session_id: str | None = _alias("session_id", "sessionId")
    timestamp: float | None = None
    transcript_path: str | None = _alias("transcript_path", "transcriptPath")
    cwd: str | None = None
    permission_mode: str | None = _alias("permission_mode", "permissionMode")

    tool_name: str | None = _alias("tool_name", "toolName")
    tool_input: JsonObject | None = _alias("tool_input", "toolInput")
    tool_result: JsonValue = _alias("tool_response", "toolResult", "toolResponse")
    duration: float | None = None

    prompt: str | None = None
    reason: str | None = None
    stop_hook_active: bool | None = _alias("stop_hook_active", "stopHookActive")
    notification_type: str | None = _alias("notification_type", "notificationType")
    message: str | None = None
    trigger: str | None = None
    custom_instructions: str | None = _alias("custom_instructions", "customInstructions")
    source: str | None = None

    hook_command: str | None = _alias("hookCommand", "hook_command")
    hook_output: str | None = _alias("hookOutput", "hook_output")
    hook_exit_code: int | None = _alias("hookExitCode", "hook_exit_code")
    hook_response: JsonObject | None = _alias("hookResponse", "hook_response")


def resolve_event_kind(event_name: str | None) -> EventKind | None:
    """Map a wire event name to a hook event kind.

    Args:
        event_name: Value of ``hook_event_name`` / ``eventType``.

    Returns:
        The normalized kind, or None when the record should be dropped
        (the "before" half of a tool call, or an unknown name).
    """
    if not event_name or event_name in _DROPPED_EVENT_NAMES:
        return None
    if event_name in _EVENT_NAME_ALIASES:
        return _EVENT_NAME_ALIASES[event_name]
    try:
        kind = EventKind(event_name)
    except ValueError:
        return None
    return kind if kind in HOOK_EVENT_KINDS else None


def parse_hook_response(raw: JsonObject | None, hook_output: str | None = None) -> HookResponse | None:
    """Build a HookResponse from the recorded response or the raw hook stdout.

    Args:
        raw: The ``hookResponse`` object if the producer already parsed it.
        hook_output: Captured stdout of the user hook.

    Returns:
        Parsed response, or None when neither source holds a valid object.
    """
    if raw is None and hook_output:
        try:
            decoded = json.loads(hook_output)
        except ValueError:
            return None
        if not isinstance(decoded, dict):
            return None
        raw = cast(JsonObject, decoded)

    if raw is None:
        return None

    try:
        return HookResponse.model_validate(raw)
    except ValidationError as e:
        logger.debug("Ignoring invalid hook response: %s", e)
        return None


def _session_end_reason(value: str | None) -> SessionEndReason:
    if value in _END_REASON_ALIASES:
        return _END_REASON_ALIASES[value]
    try:
        return SessionEndReason(value)
    except ValueError:
        return SessionEndReason.OTHER


def _start_source(value: str | None) -> SessionStartSource:
    try:
        return SessionStartSource(value)
    except ValueError:
        return SessionStartSource.STARTUP


def _compact_trigger(value: str | None) -> CompactTrigger:
    try:
        return CompactTrigger(value)
    except ValueError:
        return CompactTrigger.AUTO


def normalize_hook_record(record: HookRecord, default_session_id: str = "") -> LogEvent | None:
    """Convert a validated hook record into its normalized event.

    Args:
        record: The decoded wire record.
        default_session_id: Session id to use when the record has none.

    Returns:
        The typed event, or None if the record's kind is dropped.
    """
    kind = resolve_event_kind(record.event_name)
    if kind is None:
        return None

    if record.timestamp is not None and math.isfinite(record.timestamp):
        timestamp = int(record.timestamp)
    else:
        timestamp = int(time.time() * 1000)
    common: dict[str, Any] = {
        "id": record.id or uuid.uuid4().hex,
        "timestamp": timestamp,
        "session_id": record.session_id or default_session_id,
        "cwd": record.cwd,
        "permission_mode": record.permission_mode,
        "transcript_path": record.transcript_path,
        "hook_command": record.hook_command,
        "hook_output": record.hook_output,
        "hook_exit_code": record.hook_exit_code,
        "hook_response": parse_hook_response(record.hook_response, record.hook_output),
    }

    match kind:
        case EventKind.TOOL_USE:
            return ToolUseEvent(
                **common,
                tool_name=record.tool_name or "",
                tool_input=record.tool_input or {},
                tool_result=record.tool_result,
                duration=record.duration,
            )
        case EventKind.USER_PROMPT_SUBMIT:
            return UserPromptSubmitEvent(**common, prompt=record.prompt or "")
        case EventKind.STOP:
            return StopEvent(**common, reason=record.reason, stop_hook_active=record.stop_hook_active)
        case EventKind.SUBAGENT_STOP:
            return SubagentStopEvent(**common, reason=record.reason, stop_hook_active=record.stop_hook_active)
        case EventKind.NOTIFICATION:
            return NotificationEvent(
                **common,
                notification_type=record.notification_type or "",
                message=record.message or "",
            )
        case EventKind.PRE_COMPACT:
            return PreCompactEvent(
                **common,
                trigger=_compact_trigger(record.trigger),
                custom_instructions=record.custom_instructions,
            )
        case EventKind.SESSION_START:
            return SessionStartEvent(**common, source=_start_source(record.source))
        case EventKind.SESSION_END:
            return SessionEndEvent(**common, reason=_session_end_reason(record.reason))
        case _:
            return None


def parse_hook_line(line: str, default_session_id: str = "") -> ParsedLine:
    """Parse one hook-schema JSONL line.

    Never raises: malformed JSON or a record that fails validation comes
    back as a ParsedLine carrying a ParseError. Unknown and dropped event
    names yield an empty, error-free result.

    Args:
        line: Raw line without its newline.
        default_session_id: Session owning the log file.

    Returns:
        ParsedLine with at most one event.
    """
    stripped = line.strip()
    if not stripped:
        return ParsedLine()

    try:
        data = json.loads(stripped)
    except ValueError as e:
        return ParsedLine(error=ParseError(line=line, cause=f"invalid JSON: {e}"))

    if not isinstance(data, dict):
        return ParsedLine(error=ParseError(line=line, cause="expected a JSON object"))

    try:
        record = HookRecord.model_validate(data)
    except ValidationError as e:
        return ParsedLine(error=ParseError(line=line, cause=f"invalid hook record: {e.error_count()} error(s)"))

    try:
        event = normalize_hook_record(record, default_session_id)
    except (OverflowError, ValueError) as e:
        return ParsedLine(error=ParseError(line=line, cause=f"unusable hook record: {e}"))
    return ParsedLine(events=[event] if event is not None else [])
