"""OTLP JSON (file exporter) parsing for telemetry logs and metrics.

Each line of an exporter file is one batch: ``resourceLogs`` for events,
``resourceMetrics`` for metrics. A single line can therefore decode into
many normalized events.
"""

from __future__ import annotations

import json
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, cast

from pydantic import JsonValue

from ccwatch.events import (
    ApiErrorEvent,
    ApiRequestEvent,
    AttributeMap,
    JsonObject,
    LogEvent,
    MetricUpdateEvent,
    Scalar,
    TelemetryPromptEvent,
    ToolDecisionEvent,
    ToolResultEvent,
)

logger = logging.getLogger(__name__)

NANOS_PER_MILLI = 1_000_000

# Metric payload kinds that carry dataPoints with asInt/asDouble values
_METRIC_DATA_KINDS = ("sum", "gauge", "histogram")


@dataclass
class OtelLogRecord:
    """One flattened OTLP log record."""

    timestamp_ms: int
    event_name: str
    session_id: str | None = None
    resource_attributes: AttributeMap = field(default_factory=dict)
    attributes: AttributeMap = field(default_factory=dict)


@dataclass
class OtelMetricPoint:
    """One flattened OTLP metric data point."""

    metric_name: str
    value: float
    timestamp_ms: int | None = None
    unit: str | None = None
    session_id: str | None = None
    resource_attributes: AttributeMap = field(default_factory=dict)
    attributes: AttributeMap = field(default_factory=dict)


def _as_int(raw: Any) -> int | None:
    # OTLP JSON encodes 64-bit integers as strings
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        try:
            return int(raw)
        except ValueError:
            return None
    if isinstance(raw, float) and math.isfinite(raw):
        return int(raw)
    return None


def extract_value(value: Any) -> JsonValue:
    """Extract a plain value from an OTLP ``AnyValue`` object.

    Arrays become lists and key/value lists become dicts, recursively.

    Args:
        value: The ``value`` object of an attribute.

    Returns:
        The decoded value, or None for an empty/unknown shape.
    """
    if not isinstance(value, dict):
        return None
    data = cast(dict[str, Any], value)

    if "stringValue" in data:
        return str(data["stringValue"])
    if "intValue" in data:
        return _as_int(data["intValue"])
    if "doubleValue" in data:
        try:
            return float(data["doubleValue"])
        except (TypeError, ValueError):
            return None
    if "boolValue" in data:
        return bool(data["boolValue"])
    if "arrayValue" in data:
        array = data["arrayValue"] or {}
        return [extract_value(v) for v in array.get("values", []) or []]
    if "kvlistValue" in data:
        kvlist = data["kvlistValue"] or {}
        result: dict[str, JsonValue] = {}
        for kv in kvlist.get("values", []) or []:
            if isinstance(kv, dict) and "key" in kv:
                result[str(kv["key"])] = extract_value(kv.get("value"))
        return result
    return None


def extract_attributes(attributes: Any) -> AttributeMap:
    """Flatten an OTLP attribute list to a map of scalar values.

    Nested arrays and key/value lists are decoded but left out of the
    flat map; only string, number and boolean leaves are kept.

    Args:
        attributes: List of ``{"key": ..., "value": {...}}`` objects.

    Returns:
        Mapping of attribute key to scalar value.
    """
    result: AttributeMap = {}
    if not isinstance(attributes, list):
        return result
    for attr in cast(list[Any], attributes):
        if not isinstance(attr, dict) or "key" not in attr:
            continue
        value = extract_value(attr.get("value"))
        if isinstance(value, str | int | float | bool):
            result[str(attr["key"])] = value
    return result


def nanos_to_millis(nanos: Any) -> int | None:
    """Convert a nanoseconds-since-epoch value (string or int) to milliseconds."""
    parsed = _as_int(nanos)
    if parsed is None:
        return None
    return parsed // NANOS_PER_MILLI


def _session_id(resource_attributes: AttributeMap) -> str | None:
    value = resource_attributes.get("session.id")
    return str(value) if value is not None else None


def _entries(container: Any, key: str) -> list[dict[str, Any]]:
    # JSON-object entries of container[key]; anything else is skipped
    if not isinstance(container, dict):
        return []
    items = cast(dict[str, Any], container).get(key)
    if not isinstance(items, list):
        return []
    return [cast(dict[str, Any], item) for item in cast(list[Any], items) if isinstance(item, dict)]


def parse_otlp_logs(payload: Any) -> list[OtelLogRecord]:
    """Flatten an OTLP logs export payload into records.

    Args:
        payload: Decoded JSON object of one exporter line.

    Returns:
        One record per ``logRecords`` entry that is a JSON object.
    """
    records: list[OtelLogRecord] = []

    for resource_log in _entries(payload, "resourceLogs"):
        resource = resource_log.get("resource") or {}
        resource_attrs = extract_attributes(resource.get("attributes") if isinstance(resource, dict) else None)
        session_id = _session_id(resource_attrs)

        for scope_log in _entries(resource_log, "scopeLogs"):
            for log_record in _entries(scope_log, "logRecords"):
                attrs = extract_attributes(log_record.get("attributes"))
                body = extract_value(log_record.get("body"))
                event_name = body if isinstance(body, str) and body else str(attrs.get("event.name", "unknown"))
                timestamp = nanos_to_millis(log_record.get("timeUnixNano"))
                if timestamp is None or timestamp == 0:
                    timestamp = nanos_to_millis(log_record.get("observedTimeUnixNano")) or 0

                records.append(
                    OtelLogRecord(
                        timestamp_ms=timestamp,
                        event_name=event_name,
                        session_id=session_id,
                        resource_attributes=resource_attrs,
                        attributes=attrs,
                    )
                )

    return records


def _point_value(point: dict[str, Any]) -> float | None:
    try:
        if "asDouble" in point:
            value = float(point["asDouble"])
        elif "asInt" in point:
            value = float(_as_int(point["asInt"]) or 0)
        elif "sum" in point:
            # histogram points carry sum/count instead of a value
            value = float(point["sum"])
        else:
            value = 0.0
    except (OverflowError, TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def parse_otlp_metrics(payload: Any) -> list[OtelMetricPoint]:
    """Flatten an OTLP metrics export payload into data points.

    A data point whose value is missing, non-numeric or non-finite is
    skipped on its own; the rest of the batch is kept.

    Args:
        payload: Decoded JSON object of one exporter line.

    Returns:
        One point per usable data point of every sum, gauge or histogram metric.
    """
    points: list[OtelMetricPoint] = []

    for resource_metric in _entries(payload, "resourceMetrics"):
        resource = resource_metric.get("resource") or {}
        resource_attrs = extract_attributes(resource.get("attributes") if isinstance(resource, dict) else None)
        session_id = _session_id(resource_attrs)

        for scope_metric in _entries(resource_metric, "scopeMetrics"):
            for metric in _entries(scope_metric, "metrics"):
                data_points: list[dict[str, Any]] = []
                for kind in _METRIC_DATA_KINDS:
                    if metric.get(kind):
                        data_points = _entries(metric[kind], "dataPoints")
                        break

                for point in data_points:
                    value = _point_value(point)
                    if value is None:
                        logger.debug("Skipping unusable data point of %s", metric.get("name"))
                        continue

                    points.append(
                        OtelMetricPoint(
                            metric_name=str(metric.get("name", "")),
                            value=value,
                            timestamp_ms=nanos_to_millis(point.get("timeUnixNano")),
                            unit=str(metric["unit"]) if metric.get("unit") else None,
                            session_id=session_id,
                            resource_attributes=resource_attrs,
                            attributes=extract_attributes(point.get("attributes")),
                        )
                    )

    return points


def _str(attrs: AttributeMap, key: str) -> str | None:
    value = attrs.get(key)
    return None if value is None else str(value)


def _num(attrs: AttributeMap, key: str) -> float | None:
    value = attrs.get(key)
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (OverflowError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _int(attrs: AttributeMap, key: str) -> int | None:
    number = _num(attrs, key)
    return None if number is None else int(number)


def _bool(value: Scalar | None) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


def _json_object(raw: str | None) -> JsonObject | None:
    if not raw:
        return None
    try:
        decoded = json.loads(raw)
    except ValueError:
        return None
    return cast(JsonObject, decoded) if isinstance(decoded, dict) else None


def log_record_to_event(record: OtelLogRecord, default_session_id: str = "") -> LogEvent | None:
    """Map a flattened log record to a telemetry event by its event name.

    Args:
        record: The flattened record.
        default_session_id: Used when the resource carries no ``session.id``.

    Returns:
        The typed event, or None for an unrecognized event name.
    """
    attrs = record.attributes
    common: dict[str, Any] = {
        "id": uuid.uuid4().hex,
        "timestamp": record.timestamp_ms,
        "session_id": record.session_id or default_session_id,
        "cwd": _str(record.resource_attributes, "cwd"),
        "permission_mode": _str(record.resource_attributes, "permission_mode"),
    }

    match record.event_name:
        case "claude_code.api_request":
            return ApiRequestEvent(
                **common,
                model=_str(attrs, "model") or "",
                cost_usd=_num(attrs, "cost_usd") or 0.0,
                duration_ms=_num(attrs, "duration_ms") or 0.0,
                input_tokens=_int(attrs, "input_tokens") or 0,
                output_tokens=_int(attrs, "output_tokens") or 0,
                cache_read_tokens=_int(attrs, "cache_read_tokens") or 0,
                cache_creation_tokens=_int(attrs, "cache_creation_tokens") or 0,
            )
        case "claude_code.api_error":
            return ApiErrorEvent(
                **common,
                model=_str(attrs, "model"),
                error_message=_str(attrs, "error") or "",
                status_code=_int(attrs, "status_code"),
                duration_ms=_num(attrs, "duration_ms"),
                attempt=_int(attrs, "attempt"),
            )
        case "claude_code.tool_result":
            return ToolResultEvent(
                **common,
                tool_name=_str(attrs, "tool_name") or "",
                success=_bool(attrs.get("success")),
                duration_ms=_num(attrs, "duration_ms") or 0.0,
                error_message=_str(attrs, "error"),
                decision=_str(attrs, "decision"),
                source=_str(attrs, "source"),
                tool_parameters=_json_object(_str(attrs, "tool_parameters")),
            )
        case "claude_code.user_prompt":
            return TelemetryPromptEvent(
                **common,
                prompt_length=_int(attrs, "prompt_length") or 0,
                prompt_content=_str(attrs, "prompt"),
            )
        case "claude_code.tool_decision":
            return ToolDecisionEvent(
                **common,
                tool_name=_str(attrs, "tool_name") or "",
                decision=_str(attrs, "decision") or "",
                source=_str(attrs, "source") or "",
            )
        case _:
            return None


def metric_point_to_event(point: OtelMetricPoint, default_session_id: str = "") -> MetricUpdateEvent:
    """Wrap a metric data point as a metric-update event."""
    timestamp = point.timestamp_ms if point.timestamp_ms is not None else int(time.time() * 1000)
    return MetricUpdateEvent(
        id=uuid.uuid4().hex,
        timestamp=timestamp,
        session_id=point.session_id or default_session_id,
        cwd=_str(point.resource_attributes, "cwd"),
        permission_mode=_str(point.resource_attributes, "permission_mode"),
        metric_name=point.metric_name,
        value=point.value,
        unit=point.unit,
        attributes=point.attributes,
    )


def _load_line(line: str, kind: str) -> Any:
    stripped = line.strip()
    if not stripped:
        return None
    try:
        return json.loads(stripped)
    except ValueError as e:
        logger.debug("Skipping malformed OTLP %s line: %s", kind, e)
        return None


def parse_otlp_log_line(line: str, default_session_id: str = "") -> list[LogEvent]:
    """Parse one OTLP logs line into telemetry events.

    Never raises; malformed lines and unknown event names yield nothing.
    """
    events: list[LogEvent] = []
    try:
        for record in parse_otlp_logs(_load_line(line, "logs")):
            event = log_record_to_event(record, default_session_id)
            if event is not None:
                events.append(event)
    except (AttributeError, OverflowError, TypeError, ValueError) as e:
        logger.debug("Skipping OTLP logs line with unexpected shape: %s", e)
        return []
    return events


def parse_otlp_metric_line(line: str, default_session_id: str = "") -> list[LogEvent]:
    """Parse one OTLP metrics line into metric-update events.

    Never raises; malformed lines yield nothing.
    """
    try:
        points = parse_otlp_metrics(_load_line(line, "metrics"))
        return [metric_point_to_event(point, default_session_id) for point in points]
    except (AttributeError, OverflowError, TypeError, ValueError) as e:
        logger.debug("Skipping OTLP metrics line with unexpected shape: %s", e)
        return []
