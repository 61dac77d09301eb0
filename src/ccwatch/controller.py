"""Decide which session is current and mediate switching between sessions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum

from ccwatch.aggregator import SessionAggregator
from ccwatch.sessions import Session, SessionRegistry

logger = logging.getLogger(__name__)

NO_SESSIONS_MESSAGE = "No active Claude Code sessions found"


class ControllerState(StrEnum):
    """Session lifecycle states."""

    NO_SESSION = "no-session"
    ACTIVE = "single-session-active"
    SWITCH_PENDING = "switch-pending"


class SessionController:
    """Tracks the current session and any pending switch candidate.

    Transitions happen only in discover()/poll() (watch notifications) and
    in the explicit switch()/ignore() actions. A pending switch never times
    out; the current session keeps streaming until the user decides.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        aggregator: SessionAggregator,
        requested_session_id: str | None = None,
        cleanup_stale: bool = True,
        on_session_change: Callable[[Session], None] | None = None,
    ) -> None:
        self.registry = registry
        self.aggregator = aggregator
        self.requested_session_id = requested_session_id
        self.cleanup_stale = cleanup_stale
        self.on_session_change = on_session_change
        self.state = ControllerState.NO_SESSION
        self.current: Session | None = None
        self.pending: Session | None = None
        self.error: str | None = None

    def start(self) -> None:
        """Run the initial discovery and subscribe to new sessions."""
        self.discover()
        self.registry.watch_for_sessions(self._on_new_session)

    def stop(self) -> None:
        """Unsubscribe from the directory and close all readers."""
        self.registry.stop_watching()
        self.aggregator.detach()

    def discover(self) -> Session | None:
        """Clean up dead sessions, then pick the requested or latest session.

        A miss is not an exception: it sets ``error`` and leaves the
        controller watching.

        Returns:
            The session that became current, if any.
        """
        if self.cleanup_stale:
            self.registry.cleanup_stale_logs(exempt=self._attached_ids())

        if self.requested_session_id:
            session = self.registry.find_session(self.requested_session_id)
            if session is None:
                self.error = f"Session {self.requested_session_id} not found or inactive"
                return None
        else:
            session = self.registry.get_latest_session()
            if session is None:
                self.error = NO_SESSIONS_MESSAGE
                return None

        self._activate(session)
        return session

    def retry(self) -> Session | None:
        """Manual retry from the no-session state; no-op once a session is current."""
        if self.state != ControllerState.NO_SESSION:
            return self.current
        return self.discover()

    def poll(self) -> None:
        """Handle directory watch notifications."""
        self.registry.poll_watch()

    def switch(self) -> bool:
        """Accept the pending session: drop old events and stream the new one.

        Returns:
            True if a switch happened.
        """
        if self.state != ControllerState.SWITCH_PENDING or self.pending is None:
            return False
        session = self.pending
        self.pending = None
        logger.info("Switching to session %s", session.session_id)
        self.aggregator.clear_events()
        self._activate(session)
        return True

    def ignore(self) -> bool:
        """Reject the pending session; the current stream is untouched.

        Returns:
            True if a pending candidate was discarded.
        """
        if self.state != ControllerState.SWITCH_PENDING:
            return False
        logger.info("Ignoring new session %s", self.pending.session_id if self.pending else "?")
        self.pending = None
        self.state = ControllerState.ACTIVE
        return True

    def _attached_ids(self) -> set[str]:
        ids: set[str] = set()
        if self.current is not None:
            ids.add(self.current.session_id)
        if self.pending is not None:
            ids.add(self.pending.session_id)
        return ids

    def _activate(self, session: Session) -> None:
        self.current = session
        self.error = None
        self.state = ControllerState.ACTIVE
        # Runs before attach, which replays the session files through on_event
        if self.on_session_change is not None:
            self.on_session_change(session)
        self.aggregator.attach(session)

    def _on_new_session(self, session: Session) -> None:
        if self.current is None:
            logger.info("Session %s detected", session.session_id)
            self._activate(session)
            return
        if session.session_id == self.current.session_id:
            return
        # A newer candidate replaces an older pending one
        logger.info("New session %s detected while %s is active", session.session_id, self.current.session_id)
        self.pending = session
        self.state = ControllerState.SWITCH_PENDING
