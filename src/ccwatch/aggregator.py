"""Merge the hook and telemetry streams of one session into one event list."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum
from functools import partial
from pathlib import Path

from ccwatch.events import LogEvent
from ccwatch.hook_parser import ParseError, parse_hook_line
from ccwatch.otlp_parser import parse_otlp_log_line, parse_otlp_metric_line
from ccwatch.sessions import Session
from ccwatch.tailer import TailingReader

logger = logging.getLogger(__name__)


class ConnectionStatus(StrEnum):
    """Connectivity of the attached session, as shown to the user."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class LogSource(StrEnum):
    """The files a session can be read from."""

    HOOKS = "hooks"
    OTEL_LOGS = "otel-logs"
    OTEL_METRICS = "otel-metrics"


class SessionAggregator:
    """Owns one TailingReader per source of the selected session.

    Events are appended in arrival order across readers; no sorting by
    timestamp is attempted. A missing telemetry file never affects the hook
    stream: every reader opens and polls independently.
    """

    def __init__(
        self,
        on_event: Callable[[LogEvent], None] | None = None,
        on_parse_error: Callable[[LogSource, ParseError], None] | None = None,
        include_telemetry: bool = True,
        max_events: int | None = None,
    ) -> None:
        self._on_event = on_event
        self._on_parse_error = on_parse_error
        self.include_telemetry = include_telemetry
        self.max_events = max_events
        self._session: Session | None = None
        self._readers: dict[LogSource, TailingReader] = {}
        self._events: list[LogEvent] = []
        self.status = ConnectionStatus.DISCONNECTED
        self.error: str | None = None
        self.parse_error_count = 0
        self._added = 0

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def events(self) -> list[LogEvent]:
        """Accumulated events in arrival order."""
        return self._events

    @property
    def readers(self) -> dict[LogSource, TailingReader]:
        return dict(self._readers)

    def source_paths(self, session: Session) -> dict[LogSource, Path]:
        """Files to tail for a session (telemetry only when enabled)."""
        paths = {LogSource.HOOKS: session.log_path}
        if self.include_telemetry:
            paths[LogSource.OTEL_LOGS] = session.otel_logs_path
            paths[LogSource.OTEL_METRICS] = session.otel_metrics_path
        return paths

    def attach(self, session: Session) -> None:
        """Start streaming a session, replaying each source from its start.

        Any previously attached session is detached first.
        """
        self.detach()
        self._session = session
        self.status = ConnectionStatus.CONNECTING
        self.error = None

        for source, path in self.source_paths(session).items():
            reader = TailingReader(
                on_line=partial(self._handle_line, source),
                on_open=self._mark_connected if source == LogSource.HOOKS else None,
            )
            self._readers[source] = reader
            try:
                reader.open(path)
            except OSError as e:
                logger.warning("Could not open %s log %s: %s", source, path, e)
                if source == LogSource.HOOKS:
                    self.status = ConnectionStatus.ERROR
                    self.error = str(e)

        logger.info("Attached to session %s", session.session_id)

    def detach(self) -> None:
        """Close every reader. Idempotent."""
        for reader in self._readers.values():
            reader.close()
        self._readers = {}
        if self._session is not None:
            logger.info("Detached from session %s", self._session.session_id)
        self._session = None
        self.status = ConnectionStatus.DISCONNECTED

    def poll(self) -> int:
        """Poll every reader once.

        Returns:
            Number of events added by this poll.
        """
        before = self._added
        for reader in list(self._readers.values()):
            reader.poll()
        return self._added - before

    def clear_events(self) -> None:
        """Forget accumulated events; readers keep their cursors."""
        self._events = []

    def _mark_connected(self) -> None:
        self.status = ConnectionStatus.CONNECTED

    def _handle_line(self, source: LogSource, line: str) -> None:
        session_id = self._session.session_id if self._session else ""

        match source:
            case LogSource.HOOKS:
                parsed = parse_hook_line(line, session_id)
                if parsed.error is not None:
                    self.parse_error_count += 1
                    logger.debug("Parse error in %s: %s", source, parsed.error.cause)
                    if self._on_parse_error is not None:
                        self._on_parse_error(source, parsed.error)
                    return
                new_events = parsed.events
            case LogSource.OTEL_LOGS:
                new_events = parse_otlp_log_line(line, session_id)
            case LogSource.OTEL_METRICS:
                new_events = parse_otlp_metric_line(line, session_id)
            case _:
                return

        for event in new_events:
            self._events.append(event)
            self._added += 1
            if self._on_event is not None:
                self._on_event(event)

        if self.max_events is not None and len(self._events) > self.max_events:
            del self._events[: len(self._events) - self.max_events]
