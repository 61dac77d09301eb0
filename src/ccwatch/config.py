"""Configuration management for ccwatch."""

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import cast

import yaml
from pydantic import BaseModel, ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from ccwatch.utils import compress_path
from ccwatch.xdg_paths import get_config_file_path, get_default_log_base_dir

PROJECT_CONFIG_NAME = ".ccwatch.yaml"
PROJECT_LOCAL_CONFIG_NAME = ".ccwatch.yaml.local"


class ConfigPreset(StrEnum):
    """Predefined configuration presets."""

    DEFAULT = "default"
    MINIMAL = "minimal"
    VERBOSE = "verbose"
    DEBUG = "debug"


class MonitorConfig(BaseModel):
    """Configuration for the live monitor loop."""

    poll_interval: float = 0.05  # seconds between file polls
    session_scan_interval: float = 1.0  # seconds between directory scans
    max_events: int = 50
    show_telemetry: bool = True
    show_metrics_panel: bool = True
    show_hook_details: bool = True
    cleanup_on_start: bool = True


class FilterConfig(BaseModel):
    """Initial event filters."""

    event_kinds: list[str] = []  # empty = every hook event kind
    tool_names: list[str] = []
    search_text: str = ""
    include_telemetry_events: bool = False


@dataclass
class ConfigWarning:
    """A config validation warning."""

    file: str
    field_name: str
    message: str
    value: object = field(default=None, repr=False)


class Config(BaseModel):
    """Configuration settings for ccwatch."""

    # Base directory holding hooks/ and otel/; None means ~/.claude-code
    log_dir: Path | None = None
    skip_hook_check: bool = False

    # When true in a project config, ignore all parent configs (user config)
    ignore_parent_configs: bool = False

    monitor: MonitorConfig = MonitorConfig()
    filters: FilterConfig = FilterConfig()

    @property
    def resolved_log_dir(self) -> Path:
        """Log base directory with ~ expanded and the default applied."""
        return self.log_dir.expanduser() if self.log_dir else get_default_log_base_dir()


ConfigLayer = tuple[Path, dict[str, object]]


def _deep_merge(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    """Merge ``override`` into a copy of ``base``; nested mappings merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(cast(dict[str, object], current), cast(dict[str, object], value))
        else:
            merged[key] = value
    return merged


def _load_yaml_file(path: Path) -> tuple[dict[str, object], list[ConfigWarning]]:
    """Read one config layer.

    A missing file, or a document that is not a mapping, is an empty layer.
    Unreadable or malformed files are empty too, with a warning naming them.

    Args:
        path: YAML file to read.

    Returns:
        Tuple of (mapping, warnings).
    """
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}, []
    except yaml.YAMLError as e:
        return {}, [ConfigWarning(file=str(path), field_name="(file)", message=f"YAML parse error: {e}")]
    except OSError as e:
        return {}, [ConfigWarning(file=str(path), field_name="(file)", message=f"File read error: {e}")]
    if not isinstance(raw, dict):
        return {}, []
    return cast(dict[str, object], raw), []


def _config_layers(config_path: Path | None, project_dir: Path | None) -> tuple[list[ConfigLayer], list[ConfigWarning]]:
    paths = [config_path or get_config_file_path()]
    if project_dir is not None:
        paths += [project_dir / PROJECT_CONFIG_NAME, project_dir / PROJECT_LOCAL_CONFIG_NAME]

    layers: list[ConfigLayer] = []
    warnings: list[ConfigWarning] = []
    for path in paths:
        data, layer_warnings = _load_yaml_file(path)
        layers.append((path, data))
        warnings.extend(layer_warnings)

    # Either project file can cut the user file off
    if any(data.get("ignore_parent_configs") for _path, data in layers[1:]):
        layers = layers[1:]
    return layers, warnings


def _field_source(layers: list[ConfigLayer], loc: tuple[int | str, ...]) -> str:
    """Name the last layer that sets the field at ``loc``."""
    for path, data in reversed(layers):
        node: object = data
        for part in loc:
            if not isinstance(node, dict) or part not in node:
                break
            node = cast(dict[object, object], node)[part]
        else:
            return str(path)
    return "merged config"


def load_config(
    config_path: Path | None = None,
    project_dir: Path | None = None,
    strict: bool = False,
) -> tuple[Config, list[ConfigWarning]]:
    """Load the effective configuration.

    Layers, lowest precedence first: the user file
    (``~/.config/ccwatch/config.yaml``), ``.ccwatch.yaml`` and then
    ``.ccwatch.yaml.local`` in the project directory. Layers are deep merged.
    ``ignore_parent_configs: true`` in a project file drops the user file.

    Invalid values never raise. Each one becomes a warning naming the file
    that set it. Outside strict mode the offending top-level sections fall
    back to their defaults and the rest of the configuration is kept.

    Args:
        config_path: User config file; the XDG location if None.
        project_dir: Directory holding the project config files.
        strict: Return defaults instead of recovering from invalid values.

    Returns:
        Tuple of (Config, warnings).
    """
    layers, warnings = _config_layers(config_path, project_dir)

    merged: dict[str, object] = {}
    for _path, data in layers:
        merged = _deep_merge(merged, data)

    try:
        return Config.model_validate(merged), warnings
    except ValidationError as e:
        errors = e.errors()

    for error in errors:
        warnings.append(
            ConfigWarning(
                file=_field_source(layers, error["loc"]),
                field_name=".".join(str(part) for part in error["loc"]),
                message=error["msg"],
                value=error.get("input"),
            )
        )

    if strict:
        return Config(), warnings

    bad_sections = {str(error["loc"][0]) for error in errors if error["loc"]}
    recovered = {key: value for key, value in merged.items() if key not in bad_sections}
    try:
        return Config.model_validate(recovered), warnings
    except ValidationError:
        return Config(), warnings


def display_config_warnings(warnings: list[ConfigWarning], console: Console) -> None:
    """Print warnings in a panel, grouped by the file they came from."""
    if not warnings:
        return

    by_file: dict[str, list[ConfigWarning]] = {}
    for warning in warnings:
        by_file.setdefault(warning.file, []).append(warning)

    text = Text()
    for index, (file, file_warnings) in enumerate(by_file.items()):
        if index:
            text.append("\n")
        text.append(compress_path(file), style="dim")
        for warning in file_warnings:
            text.append("\n  ")
            text.append(warning.field_name, style="bold")
            text.append(f"  {warning.message}", style="yellow")
            if warning.value is not None:
                text.append(f" (got {warning.value!r})", style="dim")

    console.print(Panel(text, title="[yellow]Config Warnings[/]", border_style="yellow"))


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Write ``config`` as YAML, to the XDG location unless a path is given."""
    path = config_path or get_config_file_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(config.model_dump(mode="json"), default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )


def get_preset_config(preset: ConfigPreset) -> Config:
    """Get a preset configuration.

    Args:
        preset: The preset type.

    Returns:
        Config with preset values applied.
    """
    if preset == ConfigPreset.MINIMAL:
        return Config(
            monitor=MonitorConfig(
                max_events=20,
                show_telemetry=False,
                show_metrics_panel=False,
                show_hook_details=False,
            ),
        )
    elif preset == ConfigPreset.VERBOSE:
        return Config(
            monitor=MonitorConfig(max_events=100),
            filters=FilterConfig(include_telemetry_events=True),
        )
    elif preset == ConfigPreset.DEBUG:
        return Config(
            monitor=MonitorConfig(max_events=200, cleanup_on_start=False),
            filters=FilterConfig(include_telemetry_events=True),
        )
    return Config()
