"""XDG-compliant path management for ccwatch."""

from pathlib import Path

from xdg_base_dirs import xdg_config_home

APP_NAME = "ccwatch"

# Directory shared with the hook producer scripts, which hardcode it.
LOG_BASE_DIR_NAME = ".claude-code"


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    return xdg_config_home() / APP_NAME


def get_config_file_path() -> Path:
    """Get the config.yaml file path."""
    return get_config_dir() / "config.yaml"


def get_default_log_base_dir() -> Path:
    """Get the base directory holding the hooks/ and otel/ log folders."""
    return Path.home() / LOG_BASE_DIR_NAME
