"""Event filtering by kind, tool name and free text."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from ccwatch.events import HOOK_EVENT_KINDS, TELEMETRY_EVENT_KINDS, EventKind, LogEvent


def _default_kinds() -> set[EventKind]:
    return set(HOOK_EVENT_KINDS)


def event_tool_name(event: LogEvent) -> str | None:
    """Tool name for tool-related events, None for everything else."""
    name = getattr(event, "tool_name", None)
    return name if isinstance(name, str) and name else None


def available_tool_names(events: list[LogEvent]) -> list[str]:
    """Sorted distinct tool names seen in events."""
    return sorted({name for event in events if (name := event_tool_name(event))})


@dataclass
class FilterState:
    """Which events the presentation layer should show.

    By default every hook kind is visible and telemetry kinds are hidden;
    telemetry feeds the metrics panel instead of the event list.
    """

    event_kinds: set[EventKind] = field(default_factory=_default_kinds)
    tool_names: set[str] = field(default_factory=set)
    search_text: str = ""

    @classmethod
    def from_names(
        cls,
        event_kinds: list[str] | None = None,
        tool_names: list[str] | None = None,
        search_text: str = "",
        include_telemetry: bool = False,
    ) -> FilterState:
        """Build from configured names; unknown kind names are ignored."""
        kinds: set[EventKind] = set()
        for name in event_kinds or []:
            try:
                kinds.add(EventKind(name))
            except ValueError:
                continue
        if not kinds:
            kinds = _default_kinds()
        if include_telemetry:
            kinds |= TELEMETRY_EVENT_KINDS
        return cls(event_kinds=kinds, tool_names=set(tool_names or []), search_text=search_text)

    def toggle_event_kind(self, kind: EventKind) -> None:
        if kind in self.event_kinds:
            self.event_kinds.discard(kind)
        else:
            self.event_kinds.add(kind)

    def toggle_tool_name(self, name: str) -> None:
        if name in self.tool_names:
            self.tool_names.discard(name)
        else:
            self.tool_names.add(name)

    def set_search_text(self, text: str) -> None:
        self.search_text = text

    def clear(self) -> None:
        """Reset to showing every hook event."""
        self.event_kinds = _default_kinds()
        self.tool_names = set()
        self.search_text = ""

    def matches(self, event: LogEvent) -> bool:
        """Whether an event passes every active filter."""
        if event.event_type not in self.event_kinds:
            return False

        if self.tool_names and event_tool_name(event) not in self.tool_names:
            return False

        if self.search_text:
            haystack = json.dumps(event.to_dict(), default=str).lower()
            if self.search_text.lower() not in haystack:
                return False

        return True

    def apply(self, events: list[LogEvent]) -> list[LogEvent]:
        """Events that pass the filters, order preserved."""
        return [event for event in events if self.matches(event)]
