"""Normalized event model shared by the hook and telemetry parsers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, JsonValue
from pydantic.alias_generators import to_camel


class EventKind(StrEnum):
    """Event-kind tag carried by every normalized event."""

    TOOL_USE = "ToolUse"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    STOP = "Stop"
    SUBAGENT_STOP = "SubagentStop"
    NOTIFICATION = "Notification"
    PRE_COMPACT = "PreCompact"
    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"
    OTEL_API_REQUEST = "OTelAPIRequest"
    OTEL_API_ERROR = "OTelAPIError"
    OTEL_TOOL_RESULT = "OTelToolResult"
    OTEL_METRIC_UPDATE = "OTelMetricUpdate"
    OTEL_USER_PROMPT = "OTelUserPrompt"
    OTEL_TOOL_DECISION = "OTelToolDecision"


HOOK_EVENT_KINDS: frozenset[EventKind] = frozenset(
    {
        EventKind.TOOL_USE,
        EventKind.USER_PROMPT_SUBMIT,
        EventKind.STOP,
        EventKind.SUBAGENT_STOP,
        EventKind.NOTIFICATION,
        EventKind.PRE_COMPACT,
        EventKind.SESSION_START,
        EventKind.SESSION_END,
    }
)

TELEMETRY_EVENT_KINDS: frozenset[EventKind] = frozenset(set(EventKind) - HOOK_EVENT_KINDS)


class CompactTrigger(StrEnum):
    """What started a context compaction."""

    MANUAL = "manual"
    AUTO = "auto"


class SessionStartSource(StrEnum):
    """Why a session started."""

    STARTUP = "startup"
    RESUME = "resume"
    CLEAR = "clear"
    COMPACT = "compact"


class SessionEndReason(StrEnum):
    """Why a session ended."""

    CLEAR = "clear"
    LOGOUT = "logout"
    PROMPT_EXIT = "prompt-exit"
    OTHER = "other"


# Leaf values allowed in flat attribute maps (OTLP attributes, metric labels).
Scalar: TypeAlias = str | int | float | bool
AttributeMap: TypeAlias = dict[str, Scalar]
JsonObject: TypeAlias = dict[str, JsonValue]


class HookResponse(BaseModel):
    """Structured response printed by a user hook on stdout.

    Covers the common fields every hook kind may return plus the
    decision fields specific to tool, prompt and stop hooks. Unknown keys
    are preserved so newer producer versions round-trip unchanged.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    continue_: bool | None = Field(default=None, alias="continue")
    stop_reason: str | None = None
    suppress_output: bool | None = None
    system_message: str | None = None

    permission_decision: Literal["allow", "deny", "ask"] | None = None
    permission_decision_reason: str | None = None
    updated_input: JsonObject | None = None
    additional_context: str | None = None

    # Prompt/stop hooks use "block"; older tool hooks use "approve"/"block"
    decision: Literal["approve", "block"] | None = None
    reason: str | None = None

    @property
    def stops_producer(self) -> bool:
        """True when the hook asked the agent to stop processing."""
        return self.continue_ is False


@dataclass(kw_only=True)
class BaseEvent:
    """Fields common to every normalized event."""

    id: str
    timestamp: int  # milliseconds since epoch, producer supplied
    session_id: str
    event_type: EventKind = field(init=False)
    cwd: str | None = None
    permission_mode: str | None = None
    transcript_path: str | None = None

    # Hook execution metadata, present when a wrapped user hook ran
    hook_command: str | None = None
    hook_output: str | None = None
    hook_exit_code: int | None = None
    hook_response: HookResponse | None = None

    @property
    def is_telemetry(self) -> bool:
        """Whether the event came from the telemetry exporter."""
        return self.event_type in TELEMETRY_EVENT_KINDS

    def to_dict(self) -> dict[str, Any]:
        """Serialize to plain data (hook response flattened to its wire form)."""
        data = asdict(self)
        if self.hook_response is not None:
            data["hook_response"] = self.hook_response.model_dump(by_alias=True, exclude_none=True)
        return data


@dataclass(kw_only=True)
class ToolUseEvent(BaseEvent):
    """One completed tool invocation (input, result and duration)."""

    event_type: EventKind = field(default=EventKind.TOOL_USE, init=False)
    tool_name: str
    tool_input: JsonObject = field(default_factory=dict)
    tool_result: JsonValue = None
    duration: float | None = None


@dataclass(kw_only=True)
class UserPromptSubmitEvent(BaseEvent):
    event_type: EventKind = field(default=EventKind.USER_PROMPT_SUBMIT, init=False)
    prompt: str


@dataclass(kw_only=True)
class StopEvent(BaseEvent):
    event_type: EventKind = field(default=EventKind.STOP, init=False)
    reason: str | None = None
    stop_hook_active: bool | None = None


@dataclass(kw_only=True)
class SubagentStopEvent(StopEvent):
    event_type: EventKind = field(default=EventKind.SUBAGENT_STOP, init=False)


@dataclass(kw_only=True)
class NotificationEvent(BaseEvent):
    event_type: EventKind = field(default=EventKind.NOTIFICATION, init=False)
    notification_type: str
    message: str


@dataclass(kw_only=True)
class PreCompactEvent(BaseEvent):
    event_type: EventKind = field(default=EventKind.PRE_COMPACT, init=False)
    trigger: CompactTrigger
    custom_instructions: str | None = None


@dataclass(kw_only=True)
class SessionStartEvent(BaseEvent):
    event_type: EventKind = field(default=EventKind.SESSION_START, init=False)
    source: SessionStartSource


@dataclass(kw_only=True)
class SessionEndEvent(BaseEvent):
    event_type: EventKind = field(default=EventKind.SESSION_END, init=False)
    reason: SessionEndReason


@dataclass(kw_only=True)
class ApiRequestEvent(BaseEvent):
    """Telemetry: one model API request with cost and token usage."""

    event_type: EventKind = field(default=EventKind.OTEL_API_REQUEST, init=False)
    model: str = ""
    cost_usd: float = 0.0
    duration_ms: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0


@dataclass(kw_only=True)
class ApiErrorEvent(BaseEvent):
    event_type: EventKind = field(default=EventKind.OTEL_API_ERROR, init=False)
    error_message: str = ""
    model: str | None = None
    status_code: int | None = None
    duration_ms: float | None = None
    attempt: int | None = None


@dataclass(kw_only=True)
class ToolResultEvent(BaseEvent):
    event_type: EventKind = field(default=EventKind.OTEL_TOOL_RESULT, init=False)
    tool_name: str = ""
    success: bool = False
    duration_ms: float = 0.0
    error_message: str | None = None
    decision: str | None = None
    source: str | None = None
    tool_parameters: JsonObject | None = None


@dataclass(kw_only=True)
class MetricUpdateEvent(BaseEvent):
    """Telemetry: one metric data point, flattened."""

    event_type: EventKind = field(default=EventKind.OTEL_METRIC_UPDATE, init=False)
    metric_name: str
    value: float
    unit: str | None = None
    attributes: AttributeMap = field(default_factory=dict)


@dataclass(kw_only=True)
class TelemetryPromptEvent(BaseEvent):
    event_type: EventKind = field(default=EventKind.OTEL_USER_PROMPT, init=False)
    prompt_length: int = 0
    prompt_content: str | None = None


@dataclass(kw_only=True)
class ToolDecisionEvent(BaseEvent):
    event_type: EventKind = field(default=EventKind.OTEL_TOOL_DECISION, init=False)
    tool_name: str = ""
    decision: str = ""
    source: str = ""


LogEvent: TypeAlias = (
    ToolUseEvent
    | UserPromptSubmitEvent
    | StopEvent
    | SubagentStopEvent
    | NotificationEvent
    | PreCompactEvent
    | SessionStartEvent
    | SessionEndEvent
    | ApiRequestEvent
    | ApiErrorEvent
    | ToolResultEvent
    | MetricUpdateEvent
    | TelemetryPromptEvent
    | ToolDecisionEvent
)

EVENT_CLASSES: dict[EventKind, type[BaseEvent]] = {
    EventKind.TOOL_USE: ToolUseEvent,
    EventKind.USER_PROMPT_SUBMIT: UserPromptSubmitEvent,
    EventKind.STOP: StopEvent,
    EventKind.SUBAGENT_STOP: SubagentStopEvent,
    EventKind.NOTIFICATION: NotificationEvent,
    EventKind.PRE_COMPACT: PreCompactEvent,
    EventKind.SESSION_START: SessionStartEvent,
    EventKind.SESSION_END: SessionEndEvent,
    EventKind.OTEL_API_REQUEST: ApiRequestEvent,
    EventKind.OTEL_API_ERROR: ApiErrorEvent,
    EventKind.OTEL_TOOL_RESULT: ToolResultEvent,
    EventKind.OTEL_METRIC_UPDATE: MetricUpdateEvent,
    EventKind.OTEL_USER_PROMPT: TelemetryPromptEvent,
    EventKind.OTEL_TOOL_DECISION: ToolDecisionEvent,
}


def sort_by_timestamp(events: list[LogEvent]) -> list[LogEvent]:
    """Return events ordered by producer timestamp (stable for ties).

    Arrival order is what the aggregator preserves; callers that need
    temporal order across sources sort explicitly with this.
    """
    return sorted(events, key=lambda e: e.timestamp)
