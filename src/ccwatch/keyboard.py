"""Non-blocking single-key input for the live monitor."""

from __future__ import annotations

import select
import sys
import termios
import tty
from types import TracebackType


class KeyReader:
    """Puts stdin in cbreak mode for the duration of a ``with`` block.

    When stdin is not a TTY the reader is inert and read_key() always
    returns None, so the monitor still runs under pipes and in tests.
    """

    def __init__(self) -> None:
        self._old_settings: list[object] | None = None
        self._fd: int | None = None

    @property
    def enabled(self) -> bool:
        return self._old_settings is not None

    def __enter__(self) -> KeyReader:
        try:
            fd = sys.stdin.fileno()
            self._old_settings = termios.tcgetattr(fd)
        except (termios.error, OSError, ValueError):
            # Not a TTY; skip keyboard input
            self._old_settings = None
            return self
        self._fd = fd
        tty.setcbreak(fd)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._old_settings is not None and self._fd is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._old_settings)
        self._old_settings = None
        self._fd = None

    def read_key(self) -> str | None:
        """Return one pending keypress, or None without blocking."""
        if self._fd is None:
            return None
        ready, _, _ = select.select([self._fd], [], [], 0)
        if not ready:
            return None
        ch = sys.stdin.read(1)
        return ch or None
