"""Byte-precise tailing of append-only JSONL files."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

logger = logging.getLogger(__name__)


class ReaderAlreadyOpenError(RuntimeError):
    """Raised when open() is called on a reader that is already open."""


class TailingReader:
    """Emit every line of a file once, then only newly appended lines.

    The reader keeps a byte cursor (bytes consumed so far) and a pending
    fragment holding any bytes after the last newline. Only complete,
    newline-terminated lines reach the consumer, so a line whose bytes land
    across two writes is emitted once, whole.

    Nothing here blocks or spawns threads: the owner calls poll() whenever
    the file may have changed (a watch notification or a poll tick).
    """

    def __init__(
        self,
        on_line: Callable[[str], None],
        on_open: Callable[[], None] | None = None,
    ) -> None:
        self._on_line = on_line
        self._on_open = on_open
        self._path: Path | None = None
        self._is_open = False
        self._cursor = 0
        self._pending = b""
        self._inode: int | None = None
        # Bumped by open() and close(); a read stops once it changes
        self._generation = 0

    @property
    def path(self) -> Path | None:
        """File being tailed, or None when closed."""
        return self._path

    @property
    def is_open(self) -> bool:
        """Whether the reader is currently tailing a file."""
        return self._is_open

    @property
    def cursor(self) -> int:
        """Byte offset of the next unread byte."""
        return self._cursor

    @property
    def pending(self) -> bytes:
        """Bytes read after the last newline, awaiting completion."""
        return self._pending

    def open(self, path: Path) -> None:
        """Replay the file's current content, then start tailing it.

        A missing file is not an error: the reader stays open and picks the
        file up once it appears.

        Args:
            path: File to tail.

        Raises:
            ReaderAlreadyOpenError: If this reader is already open.
        """
        if self._is_open:
            raise ReaderAlreadyOpenError(f"Reader already open for {self._path}")

        self._path = path
        self._is_open = True
        self._cursor = 0
        self._pending = b""
        self._inode = None
        self._generation += 1
        generation = self._generation

        self._read_from_cursor()

        if self._on_open is not None and self._generation == generation:
            self._on_open()

    def poll(self) -> int:
        """Handle a change notification: emit lines appended since the last read.

        Transient failures (file missing, stat or read error) are a no-op;
        the next poll retries from the same cursor.

        Returns:
            Number of lines emitted.
        """
        if not self._is_open or self._path is None:
            return 0
        return self._read_from_cursor()

    def close(self) -> None:
        """Stop tailing. Safe to call repeatedly or on a never-opened reader."""
        self._is_open = False
        self._path = None
        self._cursor = 0
        self._pending = b""
        self._inode = None
        self._generation += 1

    def _read_from_cursor(self) -> int:
        path = self._path
        if path is None:
            return 0

        try:
            stat = path.stat()
        except OSError:
            return 0

        replaced = self._inode is not None and stat.st_ino != self._inode
        if replaced or stat.st_size < self._cursor:
            # Truncated or rotated: treat as a fresh file
            logger.debug("File %s shrank or was replaced; replaying from start", path)
            self._cursor = 0
            self._pending = b""

        self._inode = stat.st_ino
        if stat.st_size <= self._cursor:
            return 0

        try:
            with path.open("rb") as f:
                f.seek(self._cursor)
                data = f.read(stat.st_size - self._cursor)
        except OSError as e:
            logger.debug("Transient read failure on %s: %s", path, e)
            return 0

        # Advance by what was actually read; a short read leaves the rest
        # for the next poll.
        self._cursor += len(data)
        return self._consume(data)

    def _consume(self, data: bytes) -> int:
        generation = self._generation
        *complete, self._pending = (self._pending + data).split(b"\n")

        emitted = 0
        for raw in complete:
            line = raw.decode("utf-8", errors="replace").rstrip("\r")
            if not line.strip():
                continue
            self._on_line(line)
            emitted += 1
            if self._generation != generation:
                # Consumer closed or reopened the reader from inside the callback
                break
        return emitted
