"""Session discovery, liveness checks and stale log cleanup."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from ccwatch.xdg_paths import get_default_log_base_dir

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".jsonl"
META_SUFFIX = ".meta"


class SessionMetadata(BaseModel):
    """Metadata the producer writes once, next to the session's log."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str = ""
    pid: int
    start_time: int = 0  # milliseconds since epoch
    cwd: str = ""
    user: str = ""


@dataclass
class LogLayout:
    """Derives every on-disk path from the base directory and a session id.

    Layout::

        <base>/hooks/<id>.jsonl
        <base>/hooks/<id>.meta
        <base>/otel/<id>-logs.jsonl
        <base>/otel/<id>-metrics.jsonl
    """

    base_dir: Path

    @classmethod
    def default(cls) -> LogLayout:
        return cls(get_default_log_base_dir())

    @property
    def hooks_dir(self) -> Path:
        return self.base_dir / "hooks"

    @property
    def otel_dir(self) -> Path:
        return self.base_dir / "otel"

    def hook_log_path(self, session_id: str) -> Path:
        return self.hooks_dir / f"{session_id}{LOG_SUFFIX}"

    def metadata_path(self, session_id: str) -> Path:
        return self.hooks_dir / f"{session_id}{META_SUFFIX}"

    def otel_logs_path(self, session_id: str) -> Path:
        return self.otel_dir / f"{session_id}-logs{LOG_SUFFIX}"

    def otel_metrics_path(self, session_id: str) -> Path:
        return self.otel_dir / f"{session_id}-metrics{LOG_SUFFIX}"

    @staticmethod
    def session_id_from_path(path: Path) -> str:
        """Derive the session id from a hook log filename."""
        name = path.name
        return name[: -len(LOG_SUFFIX)] if name.endswith(LOG_SUFFIX) else path.stem


@dataclass
class Session:
    """Runtime record for one monitored session."""

    session_id: str
    log_path: Path
    otel_logs_path: Path
    otel_metrics_path: Path
    metadata: SessionMetadata | None = None
    is_active: bool = True

    @property
    def start_time(self) -> int:
        """Recorded start time in ms; sessions without metadata sort as oldest."""
        return self.metadata.start_time if self.metadata else 0

    @property
    def display_name(self) -> str:
        """Short id plus working directory name when known."""
        short = self.session_id[:8]
        if self.metadata and self.metadata.cwd:
            return f"{short}... ({Path(self.metadata.cwd).name})"
        return f"{short}..."


def is_process_alive(pid: int) -> bool:
    """Check whether a process exists using a zero signal.

    Best effort only: a recycled pid reads as alive.

    Args:
        pid: Process id to probe.

    Returns:
        True if the process exists (even if owned by another user).
    """
    if pid <= 0:
        # 0 and negatives address process groups, not a single process
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class SessionRegistry:
    """Owns the set of known sessions in the log directory.

    Discovery is a one-shot scan; the directory watch is polled by the
    owner through poll_watch(), which reports log files that appeared since
    the previous scan.
    """

    def __init__(
        self,
        layout: LogLayout | None = None,
        liveness_probe: Callable[[int], bool] = is_process_alive,
    ) -> None:
        self.layout = layout or LogLayout.default()
        self._is_alive = liveness_probe
        self._watch_callback: Callable[[Session], None] | None = None
        self._known_logs: dict[str, int] = {}

    def ensure_log_dir(self) -> None:
        """Create the hooks directory if missing."""
        self.layout.hooks_dir.mkdir(parents=True, exist_ok=True)

    def list_log_files(self) -> list[Path]:
        """All hook log files currently in the directory."""
        hooks_dir = self.layout.hooks_dir
        if not hooks_dir.is_dir():
            return []
        try:
            return sorted(p for p in hooks_dir.glob(f"*{LOG_SUFFIX}") if p.is_file())
        except OSError:
            return []

    def read_metadata(self, session_id: str) -> SessionMetadata | None:
        """Read a session's metadata file.

        Returns:
            The metadata, or None if the file is missing or unreadable.
        """
        meta_path = self.layout.metadata_path(session_id)
        try:
            raw = meta_path.read_text(encoding="utf-8")
        except OSError:
            return None
        try:
            return SessionMetadata.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.debug("Ignoring unreadable metadata %s: %s", meta_path, e)
            return None

    def is_metadata_alive(self, metadata: SessionMetadata | None) -> bool:
        """A session without metadata cannot be proven dead, so it counts as alive."""
        if metadata is None:
            return True
        return self._is_alive(metadata.pid)

    def build_session(self, session_id: str) -> Session | None:
        """Build a fully populated Session if its hook log exists.

        Args:
            session_id: Id to look up.

        Returns:
            Session (with liveness evaluated) or None when there is no log.
        """
        log_path = self.layout.hook_log_path(session_id)
        if not log_path.is_file():
            return None
        metadata = self.read_metadata(session_id)
        return Session(
            session_id=session_id,
            log_path=log_path,
            otel_logs_path=self.layout.otel_logs_path(session_id),
            otel_metrics_path=self.layout.otel_metrics_path(session_id),
            metadata=metadata,
            is_active=self.is_metadata_alive(metadata),
        )

    def discover_sessions(self) -> list[Session]:
        """Scan the log directory for active sessions.

        Returns:
            Sessions whose owner is alive or that have no metadata.
        """
        if not self.layout.hooks_dir.exists():
            self.ensure_log_dir()
            return []

        sessions: list[Session] = []
        for log_path in self.list_log_files():
            session = self.build_session(self.layout.session_id_from_path(log_path))
            if session is not None and session.is_active:
                sessions.append(session)
        return sessions

    def get_latest_session(self, sessions: list[Session] | None = None) -> Session | None:
        """Pick the active session with the greatest recorded start time."""
        candidates = self.discover_sessions() if sessions is None else sessions
        if not candidates:
            return None
        return max(candidates, key=lambda s: s.start_time)

    def find_session(self, session_id: str) -> Session | None:
        """Resolve an explicitly named session: exact id, then unique prefix.

        Returns:
            The active session, or None if missing, dead or ambiguous.
        """
        exact = self.build_session(session_id)
        if exact is not None:
            return exact if exact.is_active else None

        matches = [s for s in self.discover_sessions() if s.session_id.startswith(session_id)]
        if len(matches) == 1:
            return matches[0]
        return None

    def cleanup_stale_logs(self, exempt: set[str] | None = None) -> list[str]:
        """Delete log, metadata and telemetry files of sessions whose owner died.

        Sessions without metadata are never touched, nor are exempt ids.

        Args:
            exempt: Session ids to leave alone (e.g. the attached session).

        Returns:
            Ids of the sessions that were removed.
        """
        exempt = exempt or set()
        removed: list[str] = []

        for log_path in self.list_log_files():
            session_id = self.layout.session_id_from_path(log_path)
            if session_id in exempt:
                continue
            metadata = self.read_metadata(session_id)
            if metadata is None or self._is_alive(metadata.pid):
                continue

            paths = [
                log_path,
                self.layout.metadata_path(session_id),
                self.layout.otel_logs_path(session_id),
                self.layout.otel_metrics_path(session_id),
            ]
            try:
                for path in paths:
                    path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Failed to clean up logs for session %s: %s", session_id, e)
                continue

            self._known_logs.pop(log_path.name, None)
            removed.append(session_id)
            logger.info("Removed stale session %s (pid %d gone)", session_id, metadata.pid)

        return removed

    def _snapshot(self) -> dict[str, int]:
        snapshot: dict[str, int] = {}
        for log_path in self.list_log_files():
            try:
                snapshot[log_path.name] = log_path.stat().st_ino
            except OSError:
                continue
        return snapshot

    def watch_for_sessions(self, callback: Callable[[Session], None]) -> None:
        """Subscribe to new-session notifications.

        Log files present now are treated as already known; only files that
        appear (or are recreated) afterwards are reported by poll_watch().
        """
        self.ensure_log_dir()
        self._watch_callback = callback
        self._known_logs = self._snapshot()

    @property
    def is_watching(self) -> bool:
        return self._watch_callback is not None

    def poll_watch(self) -> list[Session]:
        """Check the directory for new log files and notify the subscriber.

        Returns:
            Sessions that were reported to the callback on this poll.
        """
        if self._watch_callback is None:
            return []

        current = self._snapshot()
        reported: list[Session] = []

        for name, inode in current.items():
            if self._known_logs.get(name) == inode:
                continue
            session = self.build_session(LogLayout.session_id_from_path(Path(name)))
            if session is None or not session.is_active:
                continue
            reported.append(session)

        self._known_logs = current
        for session in reported:
            # The callback may stop the watch
            if self._watch_callback is None:
                break
            self._watch_callback(session)
        return reported

    def stop_watching(self) -> None:
        """Unsubscribe; later poll_watch() calls are no-ops."""
        self._watch_callback = None
        self._known_logs = {}
