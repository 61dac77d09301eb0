"""Running telemetry summary built from OTel events."""

from __future__ import annotations

from dataclasses import dataclass, field

from ccwatch.events import (
    ApiErrorEvent,
    ApiRequestEvent,
    LogEvent,
    MetricUpdateEvent,
    ToolResultEvent,
)

RECENT_REQUEST_LIMIT = 10

# Counter metrics exported by Claude Code
LINES_OF_CODE_METRIC = "claude_code.lines_of_code.count"
COMMIT_METRIC = "claude_code.commit.count"
PULL_REQUEST_METRIC = "claude_code.pull_request.count"
ACTIVE_TIME_METRIC = "claude_code.active_time.total"


@dataclass
class ModelUsage:
    """Per-model API usage."""

    count: int = 0
    cost: float = 0.0
    tokens: int = 0


@dataclass
class MetricsSummary:
    """Aggregated cost, token, tool and code metrics for a session."""

    total_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_read_tokens: int = 0
    total_cache_creation_tokens: int = 0

    api_request_count: int = 0
    api_error_count: int = 0
    total_api_duration_ms: float = 0.0

    tool_executions: int = 0
    tool_successes: int = 0
    tool_failures: int = 0
    total_tool_duration_ms: float = 0.0

    lines_added: float = 0
    lines_removed: float = 0
    commits_created: float = 0
    pull_requests_created: float = 0
    active_time_seconds: float = 0

    model_usage: dict[str, ModelUsage] = field(default_factory=dict)
    recent_api_requests: list[ApiRequestEvent] = field(default_factory=list)

    @property
    def avg_api_duration_ms(self) -> float:
        if not self.api_request_count:
            return 0.0
        return self.total_api_duration_ms / self.api_request_count

    @property
    def avg_tool_duration_ms(self) -> float:
        if not self.tool_executions:
            return 0.0
        return self.total_tool_duration_ms / self.tool_executions

    @property
    def has_data(self) -> bool:
        return bool(self.api_request_count or self.api_error_count or self.tool_executions or self.active_time_seconds)

    def update(self, event: LogEvent) -> None:
        """Fold one event into the summary; non-telemetry events are ignored."""
        if isinstance(event, ApiRequestEvent):
            self.total_cost += event.cost_usd
            self.total_input_tokens += event.input_tokens
            self.total_output_tokens += event.output_tokens
            self.total_cache_read_tokens += event.cache_read_tokens
            self.total_cache_creation_tokens += event.cache_creation_tokens
            self.api_request_count += 1
            self.total_api_duration_ms += event.duration_ms

            usage = self.model_usage.setdefault(event.model or "unknown", ModelUsage())
            usage.count += 1
            usage.cost += event.cost_usd
            usage.tokens += event.input_tokens + event.output_tokens

            self.recent_api_requests = [event, *self.recent_api_requests][:RECENT_REQUEST_LIMIT]
        elif isinstance(event, ApiErrorEvent):
            self.api_error_count += 1
        elif isinstance(event, ToolResultEvent):
            self.tool_executions += 1
            if event.success:
                self.tool_successes += 1
            else:
                self.tool_failures += 1
            self.total_tool_duration_ms += event.duration_ms
        elif isinstance(event, MetricUpdateEvent):
            self._update_counter(event)

    def _update_counter(self, event: MetricUpdateEvent) -> None:
        # Counters are cumulative; the latest point is authoritative
        name = event.metric_name
        if name == LINES_OF_CODE_METRIC:
            if event.attributes.get("type") == "added":
                self.lines_added = event.value
            elif event.attributes.get("type") == "removed":
                self.lines_removed = event.value
        elif name == COMMIT_METRIC:
            self.commits_created = event.value
        elif name == PULL_REQUEST_METRIC:
            self.pull_requests_created = event.value
        elif name == ACTIVE_TIME_METRIC:
            self.active_time_seconds = event.value


def summarize(events: list[LogEvent]) -> MetricsSummary:
    """Build a summary from a list of events."""
    summary = MetricsSummary()
    for event in events:
        summary.update(event)
    return summary
