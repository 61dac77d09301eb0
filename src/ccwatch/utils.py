"""Path display helpers for ccwatch."""

from pathlib import Path
from typing import Any

DEFAULT_PATH_MAX_LEN = 50


def make_path_relative(path: str, base_dir: str | None) -> str:
    """Strip a session's working directory from the front of a path.

    Args:
        path: Absolute path reported by a tool.
        base_dir: Session working directory.

    Returns:
        ``./rest`` when path is inside base_dir, otherwise path unchanged.
    """
    if not base_dir or not path:
        return path
    base = base_dir.rstrip("/")
    if path == base:
        return "."
    if path.startswith(base + "/"):
        return "." + path[len(base) :]
    return path


def relativize_paths(value: Any, base_dir: str | None) -> Any:
    """Apply make_path_relative to every absolute path string in a JSON value."""
    if not base_dir:
        return value
    if isinstance(value, str):
        return make_path_relative(value, base_dir) if value.startswith("/") else value
    if isinstance(value, list):
        return [relativize_paths(item, base_dir) for item in value]
    if isinstance(value, dict):
        return {key: relativize_paths(item, base_dir) for key, item in value.items()}
    return value


def compress_path(path: str, max_len: int = DEFAULT_PATH_MAX_LEN) -> str:
    """Compress a file path by replacing home with ~ and truncating from the start.

    Args:
        path: The path to compress.
        max_len: Maximum length before truncation.

    Returns:
        Compressed path with ~ for home directory.
    """
    if not path:
        return ""

    home = str(Path.home())
    if path.startswith(home):
        path = "~" + path[len(home) :]

    if len(path) <= max_len:
        return path

    # Keep the tail; the filename is the useful part
    return "..." + path[-(max_len - 3) :]


def compress_paths_in_text(text: str, base_dir: str | None = None) -> str:
    """Shorten paths inside free text.

    The session directory becomes ``.`` and the home directory becomes ``~``.

    Args:
        text: Text containing paths.
        base_dir: Session working directory, if known.

    Returns:
        Text with the known prefixes replaced.
    """
    if not text:
        return ""
    if base_dir and base_dir.rstrip("/") not in ("", str(Path.home())):
        text = text.replace(base_dir.rstrip("/") + "/", "./")
    return text.replace(str(Path.home()), "~")
