"""Tests for ccwatch.otlp_parser module."""

import json
from typing import Any

from ccwatch.events import (
    ApiErrorEvent,
    ApiRequestEvent,
    EventKind,
    MetricUpdateEvent,
    TelemetryPromptEvent,
    ToolDecisionEvent,
    ToolResultEvent,
)
from ccwatch.otlp_parser import (
    extract_attributes,
    extract_value,
    nanos_to_millis,
    parse_otlp_log_line,
    parse_otlp_logs,
    parse_otlp_metric_line,
)


def _attr(key: str, value: Any) -> dict[str, Any]:
    if isinstance(value, bool):
        return {"key": key, "value": {"boolValue": value}}
    if isinstance(value, int):
        return {"key": key, "value": {"intValue": str(value)}}
    if isinstance(value, float):
        return {"key": key, "value": {"doubleValue": value}}
    return {"key": key, "value": {"stringValue": value}}


def _log_record(event_name: str, time_nanos: str = "1700000000123456789", **attrs: Any) -> dict[str, Any]:
    return {
        "timeUnixNano": time_nanos,
        "body": {"stringValue": event_name},
        "attributes": [_attr(k, v) for k, v in attrs.items()],
    }


def _logs_batch(*records: dict[str, Any], session_id: str | None = "sess-1") -> str:
    resource_attrs = [_attr("service.name", "claude-code")]
    if session_id is not None:
        resource_attrs.append(_attr("session.id", session_id))
    return json.dumps(
        {
            "resourceLogs": [
                {
                    "resource": {"attributes": resource_attrs},
                    "scopeLogs": [{"logRecords": list(records)}],
                }
            ]
        }
    )


def _metrics_batch(metrics: list[Any], session_id: str = "sess-1") -> str:
    return json.dumps(
        {
            "resourceMetrics": [
                {
                    "resource": {"attributes": [_attr("session.id", session_id)]},
                    "scopeMetrics": [{"metrics": metrics}],
                }
            ]
        }
    )


class TestExtractValue:
    """Tests for extract_value function."""

    def test_scalars(self) -> None:
        """Should decode each scalar wrapper."""
        assert extract_value({"stringValue": "x"}) == "x"
        assert extract_value({"intValue": "42"}) == 42
        assert extract_value({"intValue": 7}) == 7
        assert extract_value({"doubleValue": 1.5}) == 1.5
        assert extract_value({"boolValue": True}) is True

    def test_nested_values(self) -> None:
        """Should decode arrays and key/value lists recursively."""
        value = {
            "kvlistValue": {
                "values": [
                    {"key": "a", "value": {"arrayValue": {"values": [{"intValue": "1"}, {"stringValue": "b"}]}}},
                ]
            }
        }
        assert extract_value(value) == {"a": [1, "b"]}

    def test_unknown_shape(self) -> None:
        """Should return None for unknown wrappers."""
        assert extract_value({}) is None
        assert extract_value("raw") is None


class TestExtractAttributes:
    """Tests for extract_attributes function."""

    def test_keeps_scalars_only(self) -> None:
        """Should leave nested values out of the flat map."""
        attrs = [
            _attr("model", "sonnet"),
            {"key": "nested", "value": {"kvlistValue": {"values": []}}},
            {"key": "list", "value": {"arrayValue": {"values": [{"intValue": "1"}]}}},
        ]
        assert extract_attributes(attrs) == {"model": "sonnet"}

    def test_non_list(self) -> None:
        """Should return an empty map for a missing attribute list."""
        assert extract_attributes(None) == {}


class TestNanosToMillis:
    """Tests for nanos_to_millis function."""

    def test_string_nanos(self) -> None:
        """Should floor-divide a nanosecond string to milliseconds."""
        assert nanos_to_millis("1700000000123456789") == 1700000000123

    def test_invalid(self) -> None:
        """Should return None for non-numeric input."""
        assert nanos_to_millis("soon") is None
        assert nanos_to_millis(None) is None


class TestParseOtlpLogs:
    """Tests for OTLP logs parsing."""

    def test_batch_fans_out(self) -> None:
        """Should produce one event per log record in the batch."""
        line = _logs_batch(
            _log_record("claude_code.api_request", model="sonnet", cost_usd=0.01),
            _log_record("claude_code.tool_result", tool_name="Bash", success="true", duration_ms=12.0),
            _log_record("claude_code.user_prompt", prompt_length=11),
        )

        events = parse_otlp_log_line(line)

        assert [e.event_type for e in events] == [
            EventKind.OTEL_API_REQUEST,
            EventKind.OTEL_TOOL_RESULT,
            EventKind.OTEL_USER_PROMPT,
        ]
        assert all(e.session_id == "sess-1" for e in events)
        assert all(e.timestamp == 1700000000123 for e in events)

    def test_api_request_fields(self) -> None:
        """Should map cost, duration and token attributes."""
        line = _logs_batch(
            _log_record(
                "claude_code.api_request",
                model="claude-sonnet",
                cost_usd=0.25,
                duration_ms=1500.0,
                input_tokens=1000,
                output_tokens=200,
                cache_read_tokens=50,
                cache_creation_tokens=5,
            )
        )

        event = parse_otlp_log_line(line)[0]

        assert isinstance(event, ApiRequestEvent)
        assert event.model == "claude-sonnet"
        assert event.cost_usd == 0.25
        assert event.duration_ms == 1500.0
        assert event.input_tokens == 1000
        assert event.output_tokens == 200
        assert event.cache_read_tokens == 50
        assert event.cache_creation_tokens == 5

    def test_api_error_fields(self) -> None:
        """Should map the error message and status code."""
        line = _logs_batch(_log_record("claude_code.api_error", error="overloaded", status_code=529, attempt=2))
        event = parse_otlp_log_line(line)[0]
        assert isinstance(event, ApiErrorEvent)
        assert event.error_message == "overloaded"
        assert event.status_code == 529
        assert event.attempt == 2

    def test_tool_result_success_and_parameters(self) -> None:
        """Should accept boolean or string success and decode tool parameters."""
        line = _logs_batch(
            _log_record("claude_code.tool_result", tool_name="Bash", success=True, tool_parameters='{"cmd": "ls"}'),
            _log_record("claude_code.tool_result", tool_name="Read", success="false", tool_parameters="not json"),
        )
        ok, failed = parse_otlp_log_line(line)
        assert isinstance(ok, ToolResultEvent)
        assert ok.success is True
        assert ok.tool_parameters == {"cmd": "ls"}
        assert isinstance(failed, ToolResultEvent)
        assert failed.success is False
        assert failed.tool_parameters is None

    def test_tool_decision_and_prompt(self) -> None:
        """Should map tool decision and prompt records."""
        line = _logs_batch(
            _log_record("claude_code.tool_decision", tool_name="Edit", decision="accept", source="config"),
            _log_record("claude_code.user_prompt", prompt_length=5, prompt="hello"),
        )
        decision, prompt = parse_otlp_log_line(line)
        assert isinstance(decision, ToolDecisionEvent)
        assert decision.decision == "accept"
        assert isinstance(prompt, TelemetryPromptEvent)
        assert prompt.prompt_length == 5
        assert prompt.prompt_content == "hello"

    def test_event_name_from_attribute(self) -> None:
        """Should fall back to the event.name attribute when the body is empty."""
        record = _log_record("", **{"event.name": "claude_code.api_error", "error": "x"})
        record["body"] = {}
        events = parse_otlp_log_line(_logs_batch(record))
        assert [e.event_type for e in events] == [EventKind.OTEL_API_ERROR]

    def test_observed_time_fallback(self) -> None:
        """Should use observedTimeUnixNano when timeUnixNano is zero."""
        record = _log_record("claude_code.api_error", time_nanos="0")
        record["observedTimeUnixNano"] = "2000000000"
        records = parse_otlp_logs(json.loads(_logs_batch(record)))
        assert records[0].timestamp_ms == 2000

    def test_missing_session_id_uses_default(self) -> None:
        """Should fall back to the owning session when the resource has none."""
        line = _logs_batch(_log_record("claude_code.api_error"), session_id=None)
        assert parse_otlp_log_line(line, default_session_id="owner")[0].session_id == "owner"

    def test_unknown_event_names_are_skipped(self) -> None:
        """Should drop records with unknown event names."""
        line = _logs_batch(_log_record("claude_code.something_else"), _log_record("claude_code.api_error"))
        assert len(parse_otlp_log_line(line)) == 1

    def test_malformed_lines_yield_nothing(self) -> None:
        """Should never raise on bad input."""
        assert parse_otlp_log_line("{broken") == []
        assert parse_otlp_log_line("") == []
        assert parse_otlp_log_line("[]") == []
        assert parse_otlp_log_line('{"resourceLogs": [{"scopeLogs": 5}]}') == []

    def test_non_finite_numbers_do_not_raise(self) -> None:
        """Should drop NaN and infinite numeric attributes instead of raising."""
        record = _log_record("claude_code.api_request", cost_usd=0.5)
        record["attributes"] += [
            {"key": "input_tokens", "value": {"doubleValue": "NaN"}},
            {"key": "output_tokens", "value": {"doubleValue": "Infinity"}},
        ]
        line = _logs_batch(record)

        events = parse_otlp_log_line(line)

        assert len(events) == 1
        event = events[0]
        assert isinstance(event, ApiRequestEvent)
        assert event.cost_usd == 0.5
        assert event.input_tokens == 0
        assert event.output_tokens == 0

    def test_infinite_int_value_and_timestamp(self) -> None:
        """Should treat an infinite intValue or time as missing."""
        record = _log_record("claude_code.user_prompt")
        record["timeUnixNano"] = 1e400
        record["attributes"] = [{"key": "prompt_length", "value": {"intValue": 1e400}}]
        line = _logs_batch(record)

        events = parse_otlp_log_line(line)

        assert len(events) == 1
        assert isinstance(events[0], TelemetryPromptEvent)
        assert events[0].prompt_length == 0

    def test_oversized_integer_line_yields_nothing(self) -> None:
        """Should skip a line holding an integer too long to decode."""
        line = '{"resourceLogs": [], "n": ' + "9" * 5000 + "}"
        assert parse_otlp_log_line(line) == []

    def test_bad_entries_do_not_drop_siblings(self) -> None:
        """Should skip non-object entries and keep the valid records beside them."""
        batch = json.loads(_logs_batch(_log_record("claude_code.api_error")))
        batch["resourceLogs"].insert(0, "junk")
        batch["resourceLogs"][1]["scopeLogs"][0]["logRecords"].insert(0, 7)

        events = parse_otlp_log_line(json.dumps(batch))

        assert len(events) == 1
        assert isinstance(events[0], ApiErrorEvent)


class TestParseOtlpMetrics:
    """Tests for OTLP metrics parsing."""

    def test_sum_gauge_and_histogram(self) -> None:
        """Should emit one event per data point across metric kinds."""
        line = _metrics_batch(
            [
                {
                    "name": "claude_code.lines_of_code.count",
                    "unit": "count",
                    "sum": {
                        "dataPoints": [
                            {"asInt": "12", "timeUnixNano": "3000000", "attributes": [_attr("type", "added")]},
                            {"asInt": "4", "timeUnixNano": "3000000", "attributes": [_attr("type", "removed")]},
                        ]
                    },
                },
                {"name": "claude_code.active_time.total", "gauge": {"dataPoints": [{"asDouble": 61.5}]}},
                {"name": "claude_code.latency", "histogram": {"dataPoints": [{"sum": 9.0, "count": "3"}]}},
            ]
        )

        events = parse_otlp_metric_line(line)

        assert len(events) == 4
        assert all(isinstance(e, MetricUpdateEvent) for e in events)
        added = events[0]
        assert isinstance(added, MetricUpdateEvent)
        assert added.metric_name == "claude_code.lines_of_code.count"
        assert added.value == 12
        assert added.unit == "count"
        assert added.attributes == {"type": "added"}
        assert added.timestamp == 3
        assert added.session_id == "sess-1"
        assert events[2].value == 61.5  # type: ignore[union-attr]
        assert events[3].value == 9.0  # type: ignore[union-attr]

    def test_missing_timestamp_uses_now(self) -> None:
        """Should stamp data points without a time."""
        line = _metrics_batch([{"name": "m", "gauge": {"dataPoints": [{"asDouble": 1.0}]}}])
        assert parse_otlp_metric_line(line)[0].timestamp > 0

    def test_malformed_lines_yield_nothing(self) -> None:
        """Should never raise on bad input."""
        assert parse_otlp_metric_line("nope") == []
        assert parse_otlp_metric_line('{"resourceMetrics": "x"}') == []

    def test_bad_data_point_keeps_the_rest_of_the_batch(self) -> None:
        """Should skip only the unusable data points of a batch."""
        line = _metrics_batch(
            [
                {
                    "name": "claude_code.cost.usage",
                    "sum": {
                        "dataPoints": [
                            {"asDouble": "lots"},
                            {"asDouble": 1.25},
                            "not a point",
                            {"asDouble": "Infinity"},
                        ]
                    },
                },
                "not a metric",
                {"name": "claude_code.commit.count", "sum": {"dataPoints": [{"asInt": "3"}]}},
            ]
        )

        events = parse_otlp_metric_line(line)

        assert [(e.metric_name, e.value) for e in events] == [  # type: ignore[union-attr]
            ("claude_code.cost.usage", 1.25),
            ("claude_code.commit.count", 3.0),
        ]

    def test_huge_histogram_sum_is_skipped(self) -> None:
        """Should skip a point whose value overflows a float."""
        line = _metrics_batch(
            [
                {"name": "claude_code.latency", "histogram": {"dataPoints": [{"sum": 1e400}, {"sum": 2.0}]}},
                {"name": "claude_code.big", "sum": {"dataPoints": [{"asInt": "9" * 400}]}},
            ]
        )

        events = parse_otlp_metric_line(line)

        assert len(events) == 1
        assert events[0].value == 2.0  # type: ignore[union-attr]
