"""Tests for ccwatch.aggregator module."""

import json
from pathlib import Path

from ccwatch.aggregator import ConnectionStatus, LogSource, SessionAggregator
from ccwatch.events import EventKind, LogEvent
from ccwatch.hook_parser import ParseError
from ccwatch.sessions import LogLayout, Session


def _session(tmp_path: Path, session_id: str = "s1") -> Session:
    layout = LogLayout(tmp_path)
    layout.hooks_dir.mkdir(parents=True, exist_ok=True)
    layout.otel_dir.mkdir(parents=True, exist_ok=True)
    return Session(
        session_id=session_id,
        log_path=layout.hook_log_path(session_id),
        otel_logs_path=layout.otel_logs_path(session_id),
        otel_metrics_path=layout.otel_metrics_path(session_id),
    )


def _hook(event_type: str, timestamp: int = 1, **fields: object) -> str:
    return json.dumps({"eventType": event_type, "timestamp": timestamp, **fields}) + "\n"


def _api_request_batch(session_id: str = "s1") -> str:
    return (
        json.dumps(
            {
                "resourceLogs": [
                    {
                        "resource": {"attributes": [{"key": "session.id", "value": {"stringValue": session_id}}]},
                        "scopeLogs": [
                            {
                                "logRecords": [
                                    {"timeUnixNano": "5000000", "body": {"stringValue": "claude_code.api_request"}},
                                    {"timeUnixNano": "6000000", "body": {"stringValue": "claude_code.api_error"}},
                                ]
                            }
                        ],
                    }
                ]
            }
        )
        + "\n"
    )


def _metric_batch() -> str:
    return (
        json.dumps(
            {
                "resourceMetrics": [
                    {
                        "scopeMetrics": [
                            {"metrics": [{"name": "claude_code.commit.count", "sum": {"dataPoints": [{"asInt": "2"}]}}]}
                        ]
                    }
                ]
            }
        )
        + "\n"
    )


def _append(path: Path, text: str) -> None:
    with path.open("a", encoding="utf-8") as f:
        f.write(text)


class TestAttach:
    """Tests for SessionAggregator.attach."""

    def test_replays_hook_log_and_connects(self, tmp_path: Path) -> None:
        """Should replay existing hook events and report connected."""
        session = _session(tmp_path)
        session.log_path.write_text(_hook("SessionStart", source="startup") + _hook("Stop"))
        aggregator = SessionAggregator()

        aggregator.attach(session)

        assert [e.event_type for e in aggregator.events] == [EventKind.SESSION_START, EventKind.STOP]
        assert aggregator.status == ConnectionStatus.CONNECTED
        assert all(e.session_id == "s1" for e in aggregator.events)

    def test_opens_one_reader_per_source(self, tmp_path: Path) -> None:
        """Should tail hooks and both telemetry files."""
        aggregator = SessionAggregator()
        aggregator.attach(_session(tmp_path))
        assert set(aggregator.readers) == {LogSource.HOOKS, LogSource.OTEL_LOGS, LogSource.OTEL_METRICS}

    def test_telemetry_disabled(self, tmp_path: Path) -> None:
        """Should tail only the hook log without telemetry."""
        aggregator = SessionAggregator(include_telemetry=False)
        aggregator.attach(_session(tmp_path))
        assert set(aggregator.readers) == {LogSource.HOOKS}

    def test_missing_telemetry_files_do_not_block_hooks(self, tmp_path: Path) -> None:
        """Should stream hook events when the telemetry files never appear."""
        session = _session(tmp_path)
        session.log_path.write_text("")
        aggregator = SessionAggregator()
        aggregator.attach(session)

        _append(session.log_path, _hook("UserPromptSubmit", prompt="hi"))
        added = aggregator.poll()

        assert added == 1
        assert aggregator.events[0].event_type == EventKind.USER_PROMPT_SUBMIT

    def test_reattach_replaces_readers(self, tmp_path: Path) -> None:
        """Should detach the previous session before attaching a new one."""
        first = _session(tmp_path, "one")
        second = _session(tmp_path, "two")
        first.log_path.write_text(_hook("Stop"))
        second.log_path.write_text("")
        aggregator = SessionAggregator()
        aggregator.attach(first)
        old_reader = aggregator.readers[LogSource.HOOKS]

        aggregator.attach(second)

        assert not old_reader.is_open
        assert aggregator.session is second


class TestPoll:
    """Tests for merged streaming."""

    def test_merges_all_sources_in_arrival_order(self, tmp_path: Path) -> None:
        """Should append events from every reader as they arrive."""
        session = _session(tmp_path)
        session.log_path.write_text("")
        aggregator = SessionAggregator()
        aggregator.attach(session)

        _append(session.log_path, _hook("UserPromptSubmit", timestamp=9, prompt="go"))
        _append(session.otel_logs_path, _api_request_batch())
        _append(session.otel_metrics_path, _metric_batch())
        added = aggregator.poll()

        assert added == 4
        assert [e.event_type for e in aggregator.events] == [
            EventKind.USER_PROMPT_SUBMIT,
            EventKind.OTEL_API_REQUEST,
            EventKind.OTEL_API_ERROR,
            EventKind.OTEL_METRIC_UPDATE,
        ]
        # Metric resource has no session.id: the owning session is used
        assert aggregator.events[-1].session_id == "s1"

    def test_on_event_callback(self, tmp_path: Path) -> None:
        """Should notify the consumer for every appended event."""
        session = _session(tmp_path)
        session.log_path.write_text(_hook("Stop"))
        seen: list[LogEvent] = []
        aggregator = SessionAggregator(on_event=seen.append)

        aggregator.attach(session)

        assert len(seen) == 1

    def test_parse_errors_are_counted(self, tmp_path: Path) -> None:
        """Should count and report bad hook lines without stopping."""
        session = _session(tmp_path)
        session.log_path.write_text("{bad\n" + _hook("Stop"))
        errors: list[tuple[LogSource, ParseError]] = []
        aggregator = SessionAggregator(on_parse_error=lambda source, err: errors.append((source, err)))

        aggregator.attach(session)

        assert aggregator.parse_error_count == 1
        assert errors[0][0] == LogSource.HOOKS
        assert errors[0][1].line == "{bad"
        assert len(aggregator.events) == 1

    def test_non_finite_lines_do_not_stop_replay(self, tmp_path: Path) -> None:
        """Should keep reading past hook and telemetry lines holding huge or non-finite numbers."""
        session = _session(tmp_path)
        session.log_path.write_text(
            '{"eventType": "Stop", "timestamp": 1e400}\n'
            + '{"eventType": "Stop", "timestamp": '
            + "9" * 5000
            + "}\n"
            + _hook("SessionEnd", timestamp=7, reason="clear")
        )
        session.otel_logs_path.write_text(
            '{"resourceLogs": [{"scopeLogs": [{"logRecords": [{"timeUnixNano": 1e400}]}]}]}\n' + _api_request_batch()
        )
        aggregator = SessionAggregator()

        aggregator.attach(session)

        kinds = [e.event_type for e in aggregator.events]
        assert kinds.count(EventKind.STOP) == 1
        assert EventKind.SESSION_END in kinds
        assert EventKind.OTEL_API_REQUEST in kinds
        assert aggregator.parse_error_count == 1
        assert aggregator.status == ConnectionStatus.CONNECTED

    def test_max_events_keeps_newest(self, tmp_path: Path) -> None:
        """Should drop the oldest events past the cap."""
        session = _session(tmp_path)
        session.log_path.write_text("".join(_hook("Stop", timestamp=i) for i in range(5)))
        aggregator = SessionAggregator(max_events=3)

        aggregator.attach(session)

        assert [e.timestamp for e in aggregator.events] == [2, 3, 4]

    def test_poll_without_session(self) -> None:
        """Should be a no-op when nothing is attached."""
        assert SessionAggregator().poll() == 0


class TestDetachAndClear:
    """Tests for detach and clear_events."""

    def test_detach_is_idempotent(self, tmp_path: Path) -> None:
        """Should close readers and tolerate repeated calls."""
        aggregator = SessionAggregator()
        aggregator.attach(_session(tmp_path))

        aggregator.detach()
        aggregator.detach()

        assert aggregator.readers == {}
        assert aggregator.status == ConnectionStatus.DISCONNECTED

    def test_clear_events_keeps_cursor(self, tmp_path: Path) -> None:
        """Should drop accumulated events without replaying old lines."""
        session = _session(tmp_path)
        session.log_path.write_text(_hook("Stop"))
        aggregator = SessionAggregator()
        aggregator.attach(session)

        aggregator.clear_events()
        _append(session.log_path, _hook("SessionEnd", reason="clear"))
        aggregator.poll()

        assert [e.event_type for e in aggregator.events] == [EventKind.SESSION_END]
