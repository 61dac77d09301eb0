"""Real-time terminal monitor for Claude Code hook and telemetry logs."""

from __future__ import annotations

import json
import logging
import shutil
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ccwatch.aggregator import ConnectionStatus, SessionAggregator
from ccwatch.config import Config
from ccwatch.controller import ControllerState, SessionController
from ccwatch.events import (
    ApiErrorEvent,
    ApiRequestEvent,
    EventKind,
    LogEvent,
    MetricUpdateEvent,
    NotificationEvent,
    PreCompactEvent,
    SessionEndEvent,
    SessionStartEvent,
    StopEvent,
    TelemetryPromptEvent,
    ToolDecisionEvent,
    ToolResultEvent,
    ToolUseEvent,
    UserPromptSubmitEvent,
)
from ccwatch.filters import FilterState
from ccwatch.keyboard import KeyReader
from ccwatch.metrics import MetricsSummary
from ccwatch.sessions import LogLayout, Session, SessionRegistry
from ccwatch.utils import compress_path, compress_paths_in_text, relativize_paths

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventStyle:
    """How an event kind is drawn in the events panel."""

    symbol: str
    color: str
    label: str


EVENT_STYLES: dict[EventKind, EventStyle] = {
    EventKind.TOOL_USE: EventStyle("▶", "cyan", "Tool"),
    EventKind.USER_PROMPT_SUBMIT: EventStyle(">", "green", "Prompt"),
    EventKind.STOP: EventStyle("■", "yellow", "Stop"),
    EventKind.SUBAGENT_STOP: EventStyle("□", "yellow", "SubStop"),
    EventKind.NOTIFICATION: EventStyle("!", "magenta", "Notify"),
    EventKind.PRE_COMPACT: EventStyle("≡", "blue", "Compact"),
    EventKind.SESSION_START: EventStyle("●", "bold green", "Start"),
    EventKind.SESSION_END: EventStyle("○", "red", "End"),
    EventKind.OTEL_API_REQUEST: EventStyle("$", "bright_yellow", "API"),
    EventKind.OTEL_API_ERROR: EventStyle("✗", "bold red", "APIErr"),
    EventKind.OTEL_TOOL_RESULT: EventStyle("✓", "bright_cyan", "Result"),
    EventKind.OTEL_METRIC_UPDATE: EventStyle("#", "dim", "Metric"),
    EventKind.OTEL_USER_PROMPT: EventStyle(">", "dim green", "OTPrompt"),
    EventKind.OTEL_TOOL_DECISION: EventStyle("?", "dim cyan", "Decision"),
}

# Number keys toggle these kinds in the event list
TOGGLE_KEYS: dict[str, EventKind] = {
    "1": EventKind.TOOL_USE,
    "2": EventKind.USER_PROMPT_SUBMIT,
    "3": EventKind.STOP,
    "4": EventKind.SUBAGENT_STOP,
    "5": EventKind.NOTIFICATION,
    "6": EventKind.PRE_COMPACT,
    "7": EventKind.SESSION_START,
    "8": EventKind.SESSION_END,
}

STATUS_STYLES: dict[ConnectionStatus, str] = {
    ConnectionStatus.DISCONNECTED: "dim",
    ConnectionStatus.CONNECTING: "yellow",
    ConnectionStatus.CONNECTED: "bold green",
    ConnectionStatus.ERROR: "bold red",
}

KEY_HELP = "q quit  c clear  r reset filters  1-8 toggle kinds  m metrics"

_INPUT_SUMMARY_KEYS = ("file_path", "command", "pattern", "path", "url", "query", "description")


def get_terminal_size() -> tuple[int, int]:
    """Get terminal width and height.

    Returns:
        Tuple of (columns, lines).
    """
    try:
        size = shutil.get_terminal_size()
        return size.columns, size.lines
    except (AttributeError, ValueError):
        return 80, 24


def get_visible_event_count(show_metrics: bool = True) -> int:
    """How many events fit under the header panels."""
    _, terminal_height = get_terminal_size()
    # Status panel (5) + metrics panel (6) + events borders (4)
    reserved = 15 if show_metrics else 9
    # Each event takes up to 2 lines (summary + hook detail)
    return max(5, (terminal_height - reserved) // 2)


@dataclass
class EventWindow:
    """Windowed view of events for display."""

    events: list[LogEvent]
    start_index: int
    end_index: int
    total_count: int

    @property
    def has_events_above(self) -> bool:
        return self.start_index > 0

    @property
    def events_above_count(self) -> int:
        return self.start_index


def calculate_event_window(events: list[LogEvent], max_visible: int) -> EventWindow:
    """Keep the most recent events that fit.

    Args:
        events: Events in arrival order.
        max_visible: Maximum events to show.

    Returns:
        EventWindow over the tail of the list.
    """
    total = len(events)
    start = max(0, total - max_visible)
    return EventWindow(events=events[start:], start_index=start, end_index=total, total_count=total)


def _format_tokens(count: int) -> str:
    """Format token count as e.g. "1.2K" or "1.5M"."""
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return str(count)


def _format_duration(ms: float | None) -> str:
    if ms is None:
        return ""
    if ms >= 1000:
        return f"{ms / 1000:.1f}s"
    return f"{ms:.0f}ms"


def _format_time(timestamp_ms: int) -> str:
    try:
        return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%H:%M:%S")
    except (OSError, OverflowError, ValueError):
        return "--:--:--"


def _first_line(text: str) -> str:
    return text.strip().split("\n", 1)[0]


def summarize_tool_input(tool_input: dict[str, Any], base_dir: str | None = None) -> str:
    """One-line digest of a tool's input, preferring path and command fields."""
    if not tool_input:
        return ""
    tool_input = relativize_paths(tool_input, base_dir)
    for key in _INPUT_SUMMARY_KEYS:
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return _first_line(value)
    return json.dumps(tool_input, default=str, separators=(",", ":"))


def event_summary(event: LogEvent, base_dir: str | None = None) -> str:
    """Human readable one-liner for an event.

    Args:
        event: Event to describe.
        base_dir: Session working directory; paths inside it are shown relative.

    Returns:
        Summary text, possibly empty.
    """
    match event:
        case ToolUseEvent():
            parts = [event.tool_name]
            if digest := summarize_tool_input(event.tool_input, base_dir):
                parts.append(digest)
            if event.duration is not None:
                parts.append(f"({_format_duration(event.duration)})")
            return " ".join(parts)
        case UserPromptSubmitEvent():
            return _first_line(event.prompt)
        case StopEvent():
            return event.reason or ("hook active" if event.stop_hook_active else "")
        case NotificationEvent():
            return event.message
        case PreCompactEvent():
            if event.custom_instructions:
                return f"{event.trigger}: {_first_line(event.custom_instructions)}"
            return str(event.trigger)
        case SessionStartEvent():
            return str(event.source)
        case SessionEndEvent():
            return str(event.reason)
        case ApiRequestEvent():
            tokens = f"{_format_tokens(event.input_tokens)} in / {_format_tokens(event.output_tokens)} out"
            return f"{event.model} {tokens} ${event.cost_usd:.4f} {_format_duration(event.duration_ms)}"
        case ApiErrorEvent():
            code = f"[{event.status_code}] " if event.status_code is not None else ""
            return f"{code}{event.error_message}"
        case ToolResultEvent():
            status = "ok" if event.success else "failed"
            return f"{event.tool_name} {status} {_format_duration(event.duration_ms)}"
        case MetricUpdateEvent():
            unit = f" {event.unit}" if event.unit else ""
            return f"{event.metric_name} = {event.value:g}{unit}"
        case TelemetryPromptEvent():
            return f"{event.prompt_length} chars"
        case ToolDecisionEvent():
            return f"{event.tool_name} {event.decision} ({event.source})"
        case _:
            return ""


def hook_detail(event: LogEvent) -> Text | None:
    """Badges describing the wrapped user hook's result, if one ran."""
    if event.hook_exit_code is None and event.hook_response is None:
        return None

    text = Text()
    if event.hook_exit_code is not None:
        if event.hook_exit_code == 0:
            text.append("✓ hook", style="green")
        else:
            text.append(f"✗ hook exit {event.hook_exit_code}", style="red")

    response = event.hook_response
    if response is not None:
        if response.permission_decision:
            text.append(f" [{response.permission_decision}]", style="dim")
        elif response.decision == "block":
            text.append(" [blocked]", style="yellow")
        if response.stops_producer:
            text.append(" [stopped]", style="bold red")
        if response.system_message:
            text.append(f" [msg: {response.system_message}]", style="dim")
    return text


def build_status_panel(
    controller: SessionController,
    aggregator: SessionAggregator,
    filters: FilterState,
) -> Panel:
    """Connection status, session identity and filter summary."""
    text = Text()

    status = aggregator.status
    text.append("Status: ", style="dim")
    text.append(f"{status}  ", style=STATUS_STYLES.get(status, ""))

    session = controller.current
    text.append("Session: ", style="dim")
    text.append(session.display_name if session else "none", style="bold cyan")

    if session and session.metadata:
        text.append("\nCWD: ", style="dim")
        text.append(compress_path(session.metadata.cwd), style="blue")
        if session.metadata.pid:
            text.append(f"  PID: {session.metadata.pid}", style="dim")

    visible = len(filters.apply(aggregator.events))
    text.append("\nEvents: ", style="dim")
    text.append(f"{visible}/{len(aggregator.events)}", style="bold")
    if aggregator.parse_error_count:
        text.append(f"  Parse errors: {aggregator.parse_error_count}", style="red")
    if filters.tool_names:
        text.append(f"  Tools: {', '.join(sorted(filters.tool_names))}", style="cyan")
    if filters.search_text:
        text.append(f"  Search: {filters.search_text!r}", style="yellow")
    if aggregator.error:
        text.append(f"\n{aggregator.error}", style="red")

    text.append(f"\n{KEY_HELP}", style="dim")
    return Panel(text, title="ccwatch", border_style="blue")


def build_metrics_panel(summary: MetricsSummary) -> Panel:
    """Cost, token, tool and code counters from telemetry."""
    text = Text()
    if not summary.has_data:
        text.append("No telemetry yet", style="dim")
        return Panel(text, title="Telemetry", border_style="magenta")

    text.append("Cost: ", style="dim")
    text.append(f"${summary.total_cost:.2f}  ", style="bold yellow")
    text.append("Requests: ", style="dim")
    text.append(f"{summary.api_request_count}", style="bold")
    if summary.api_error_count:
        text.append(f" ({summary.api_error_count} errors)", style="red")
    text.append(f"  avg {_format_duration(summary.avg_api_duration_ms)}", style="dim")

    text.append("\nTokens: ", style="dim")
    text.append(f"{_format_tokens(summary.total_input_tokens)} in", style="bold")
    if summary.total_cache_read_tokens:
        text.append(f" ({_format_tokens(summary.total_cache_read_tokens)} cached)", style="dim")
    text.append(f" / {_format_tokens(summary.total_output_tokens)} out", style="bold")

    text.append("\nTools: ", style="dim")
    text.append(f"{summary.tool_executions} runs  ", style="bold")
    text.append(f"{summary.tool_successes} ok", style="green")
    if summary.tool_failures:
        text.append(f" / {summary.tool_failures} failed", style="red")
    text.append(f"  avg {_format_duration(summary.avg_tool_duration_ms)}", style="dim")

    text.append("\nCode: ", style="dim")
    text.append(f"+{summary.lines_added:g} -{summary.lines_removed:g}", style="bold")
    text.append(f"  Commits: {summary.commits_created:g}  PRs: {summary.pull_requests_created:g}", style="dim")
    if summary.active_time_seconds:
        text.append(f"  Active: {summary.active_time_seconds / 60:.1f}m", style="dim")

    if summary.model_usage:
        text.append("\nModels: ", style="dim")
        parts = [f"{model} x{usage.count} ${usage.cost:.2f}" for model, usage in summary.model_usage.items()]
        text.append("  ".join(parts), style="cyan")

    return Panel(text, title="Telemetry", border_style="magenta")


def build_events_panel(
    window: EventWindow,
    show_hook_details: bool = True,
    base_dir: str | None = None,
    max_content_length: int = 160,
) -> Panel:
    """Most recent events, one line each plus optional hook badges."""
    text = Text()

    if window.has_events_above:
        text.append(f"  ▲ {window.events_above_count} earlier events\n", style="dim yellow")

    if not window.events:
        text.append("Waiting for events...", style="dim")

    for event in window.events:
        style = EVENT_STYLES.get(event.event_type, EventStyle("·", "", str(event.event_type)))
        text.append(f"{_format_time(event.timestamp)} ", style="dim")
        text.append(f"{style.symbol} ", style=style.color)
        text.append(f"{style.label:<8} ", style=f"bold {style.color}")

        content = compress_paths_in_text(event_summary(event, base_dir), base_dir)
        if len(content) > max_content_length:
            content = content[:max_content_length] + "..."
        text.append(content)
        text.append("\n")

        if show_hook_details and (detail := hook_detail(event)) is not None:
            text.append("           ")
            text.append_text(detail)
            text.append("\n")

    return Panel(text, title="Events", border_style="cyan")


def build_switch_prompt(session: Session) -> Panel:
    """Banner offered while a newer session is pending."""
    text = Text()
    text.append("New session detected: ", style="bold yellow")
    text.append(session.display_name, style="bold cyan")
    text.append("\nPress ", style="dim")
    text.append("s", style="bold")
    text.append(" to switch or ", style="dim")
    text.append("i", style="bold")
    text.append(" to ignore", style="dim")
    return Panel(text, border_style="yellow")


def build_waiting_panel(message: str | None) -> Panel:
    """Shown while no session is attached."""
    text = Text()
    text.append(message or "Waiting for a session...", style="yellow")
    text.append("\nStart Claude Code with ccwatch hooks enabled, or press ", style="dim")
    text.append("r", style="bold")
    text.append(" to retry. ", style="dim")
    text.append("q", style="bold")
    text.append(" quits.", style="dim")
    return Panel(text, title="ccwatch", border_style="yellow")


class LiveMonitor:
    """Wires the session core to the rich presentation and the keyboard.

    The loop is single threaded: each tick polls the attached readers and,
    less often, the session directory. Key presses are handled between ticks.
    """

    def __init__(
        self,
        config: Config,
        requested_session_id: str | None = None,
        registry: SessionRegistry | None = None,
    ) -> None:
        self.config = config
        self.filters = FilterState.from_names(
            config.filters.event_kinds,
            config.filters.tool_names,
            config.filters.search_text,
            include_telemetry=config.filters.include_telemetry_events,
        )
        self.summary = MetricsSummary()
        self.show_metrics = config.monitor.show_metrics_panel and config.monitor.show_telemetry
        self.running = True

        self.registry = registry or SessionRegistry(LogLayout(config.resolved_log_dir))
        self.aggregator = SessionAggregator(
            on_event=self._on_event,
            include_telemetry=config.monitor.show_telemetry,
            max_events=config.monitor.max_events,
        )
        self.controller = SessionController(
            self.registry,
            self.aggregator,
            requested_session_id=requested_session_id,
            cleanup_stale=config.monitor.cleanup_on_start,
            on_session_change=self._on_session_change,
        )
        self._last_scan = 0.0

    def _on_event(self, event: LogEvent) -> None:
        self.summary.update(event)

    def _on_session_change(self, _session: Session) -> None:
        self.summary = MetricsSummary()

    def start(self) -> None:
        self.controller.start()
        self._last_scan = time.monotonic()

    def stop(self) -> None:
        self.controller.stop()

    def tick(self, now: float | None = None) -> None:
        """Poll the readers, and the session directory when the scan interval elapsed."""
        now = time.monotonic() if now is None else now
        self.aggregator.poll()
        if now - self._last_scan >= self.config.monitor.session_scan_interval:
            self._last_scan = now
            self.controller.poll()

    def handle_key(self, key: str) -> None:
        """Apply one keypress."""
        if key in ("q", "Q"):
            self.running = False
        elif key == "s":
            self.controller.switch()
        elif key == "i":
            self.controller.ignore()
        elif key == "r":
            if self.controller.state == ControllerState.NO_SESSION:
                self.controller.retry()
            else:
                self.filters.clear()
        elif key == "c":
            self.aggregator.clear_events()
        elif key == "m":
            self.show_metrics = not self.show_metrics
        elif key in TOGGLE_KEYS:
            self.filters.toggle_event_kind(TOGGLE_KEYS[key])

    def _session_cwd(self) -> str | None:
        session = self.controller.current
        if session is None or session.metadata is None:
            return None
        return session.metadata.cwd or None

    def render(self, max_visible: int | None = None) -> Group:
        """Build the full screen for the current state."""
        if self.controller.state == ControllerState.NO_SESSION:
            return Group(build_waiting_panel(self.controller.error))

        if max_visible is None:
            max_visible = get_visible_event_count(self.show_metrics)
        visible_events = self.filters.apply(self.aggregator.events)

        panels: list[Panel] = [build_status_panel(self.controller, self.aggregator, self.filters)]
        if self.controller.state == ControllerState.SWITCH_PENDING and self.controller.pending is not None:
            panels.append(build_switch_prompt(self.controller.pending))
        if self.show_metrics:
            panels.append(build_metrics_panel(self.summary))
        panels.append(
            build_events_panel(
                calculate_event_window(visible_events, max_visible),
                show_hook_details=self.config.monitor.show_hook_details,
                base_dir=self._session_cwd(),
            )
        )
        return Group(*panels)


def run_monitor(
    config: Config,
    session_id: str | None = None,
    console: Console | None = None,
) -> int:
    """Run the live monitor until the user quits.

    Args:
        config: Loaded configuration.
        session_id: Explicit session (full id or unique prefix) to attach to.
        console: Console to draw on.

    Returns:
        Process exit code; always 0, including when no session was found.
    """
    console = console or Console()
    monitor = LiveMonitor(config, requested_session_id=session_id)
    monitor.start()
    poll_interval = config.monitor.poll_interval

    try:
        with KeyReader() as keys, Live(monitor.render(), console=console, refresh_per_second=10) as live:
            while monitor.running:
                time.sleep(poll_interval)
                while (key := keys.read_key()) is not None:
                    monitor.handle_key(key)
                monitor.tick()
                live.update(monitor.render())
    except KeyboardInterrupt:
        pass
    finally:
        monitor.stop()

    console.print("[dim]Monitor stopped.[/]")
    return 0


def list_sessions(registry: SessionRegistry, console: Console | None = None) -> None:
    """Print active sessions, newest first.

    Args:
        registry: Registry to discover sessions from.
        console: Console to print to.
    """
    console = console or Console()
    sessions = sorted(registry.discover_sessions(), key=lambda s: s.start_time, reverse=True)

    if not sessions:
        console.print("[yellow]No active Claude Code sessions found.[/]")
        console.print(f"[dim]Log directory: {compress_path(str(registry.layout.hooks_dir))}[/]")
        return

    table = Table(title="Active sessions")
    table.add_column("Session", style="cyan")
    table.add_column("PID", justify="right")
    table.add_column("Started")
    table.add_column("CWD", style="blue")
    table.add_column("Log size", justify="right")

    for session in sessions:
        metadata = session.metadata
        started = (
            datetime.fromtimestamp(metadata.start_time / 1000).strftime("%Y-%m-%d %H:%M") if metadata else "unknown"
        )
        try:
            size = f"{session.log_path.stat().st_size / 1024:.1f} KB"
        except OSError:
            size = "-"
        table.add_row(
            session.session_id,
            str(metadata.pid) if metadata else "-",
            started,
            compress_path(metadata.cwd) if metadata else "",
            size,
        )

    console.print(table)
