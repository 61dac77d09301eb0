"""ccwatch - live monitor for Claude Code hook and telemetry logs."""

__version__ = "0.3.0"
