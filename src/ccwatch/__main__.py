"""CLI entry point for ccwatch."""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler

from ccwatch import __version__
from ccwatch.config import (
    Config,
    ConfigPreset,
    display_config_warnings,
    get_preset_config,
    load_config,
    save_config,
)
from ccwatch.hook_checker import HOOK_EVENT_NAMES, HookLocation, check_hooks, install_hooks, settings_path
from ccwatch.hook_writer import CUSTOM_HOOK_ENV, run_hook
from ccwatch.monitor import list_sessions, run_monitor
from ccwatch.sessions import LogLayout, SessionRegistry
from ccwatch.xdg_paths import get_config_file_path

app = typer.Typer(
    name="ccwatch",
    help="Watch Claude Code hook and telemetry logs in real time.",
    no_args_is_help=False,
)

console = Console()
err_console = Console(stderr=True)


@dataclass
class CliState:
    """Options shared by every subcommand."""

    config: Config
    skip_check: bool = False
    session_id: str | None = None


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ccwatch {__version__}")
        raise typer.Exit()


def configure_logging(debug: bool) -> None:
    """Route library logging to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=debug, rich_tracebacks=debug)],
        force=True,
    )


def _state(ctx: typer.Context) -> CliState:
    state = ctx.find_root().obj
    if not isinstance(state, CliState):
        # Invoked without the root callback (e.g. from tests)
        state = CliState(config=Config())
        ctx.find_root().obj = state
    return state


def _registry(config: Config) -> SessionRegistry:
    return SessionRegistry(LogLayout(config.resolved_log_dir))


def _warn_if_hooks_missing() -> None:
    result = check_hooks()
    if result.is_configured:
        return
    err_console.print(f"[yellow]Warning:[/] {result.status_message}")
    err_console.print("[dim]Run 'ccwatch setup' to add them, or pass --skip-check to silence this.[/]")


def _run(state: CliState, session_id: str | None) -> None:
    if not (state.skip_check or state.config.skip_hook_check):
        _warn_if_hooks_missing()
    raise typer.Exit(run_monitor(state.config, session_id=session_id or state.session_id, console=console))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    session: Annotated[
        str | None,
        typer.Option("--session", "-s", help="Session id (or unique prefix) to attach to."),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-C", help="Config file path."),
    ] = None,
    preset: Annotated[
        ConfigPreset | None,
        typer.Option("--preset", help="Use preset configuration (minimal, verbose, debug)."),
    ] = None,
    log_dir: Annotated[
        Path | None,
        typer.Option("--log-dir", help="Base directory holding hooks/ and otel/ logs."),
    ] = None,
    interval: Annotated[
        float | None,
        typer.Option("--interval", "-i", help="Poll interval in seconds."),
    ] = None,
    max_events: Annotated[
        int | None,
        typer.Option("--max-events", "-m", help="Maximum events to keep."),
    ] = None,
    no_telemetry: Annotated[
        bool,
        typer.Option("--no-telemetry", help="Do not read OTel log and metric files."),
    ] = False,
    skip_check: Annotated[
        bool,
        typer.Option("--skip-check", help="Skip the hook configuration check."),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", "-D", help="Enable debug logging."),
    ] = False,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Exit with error on config validation warnings."),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True, help="Show version."),
    ] = None,
) -> None:
    """Monitor the most recent Claude Code session (or the one given by --session)."""
    configure_logging(debug)

    config, config_warnings = load_config(config_path, project_dir=Path.cwd(), strict=strict)
    if config_warnings:
        display_config_warnings(config_warnings, err_console)
        if strict:
            raise typer.Exit(1)

    if preset is not None:
        configured_dir = config.log_dir
        config = get_preset_config(preset)
        config.log_dir = configured_dir

    # CLI takes precedence over config
    if log_dir is not None:
        config.log_dir = log_dir
    if interval is not None:
        config.monitor.poll_interval = interval
    if max_events is not None:
        config.monitor.max_events = max_events
    if no_telemetry:
        config.monitor.show_telemetry = False

    state = CliState(config=config, skip_check=skip_check, session_id=session)
    ctx.obj = state

    if ctx.invoked_subcommand is None:
        _run(state, None)


@app.command()
def run(
    ctx: typer.Context,
    session_id: Annotated[
        str | None,
        typer.Argument(help="Session id or unique prefix; defaults to the latest active session."),
    ] = None,
) -> None:
    """Run the live monitor."""
    _run(_state(ctx), session_id)


@app.command("list")
def list_command(ctx: typer.Context) -> None:
    """List active sessions."""
    list_sessions(_registry(_state(ctx).config), console)


@app.command()
def cleanup(ctx: typer.Context) -> None:
    """Delete logs of sessions whose process has exited."""
    removed = _registry(_state(ctx).config).cleanup_stale_logs()
    if not removed:
        console.print("[dim]No stale sessions.[/]")
        return
    for session_id in removed:
        console.print(f"[green]✓[/] Removed {session_id}")


@app.command()
def hook(
    ctx: typer.Context,
    event_name: Annotated[
        str | None,
        typer.Argument(help="Hook event name (e.g. PostToolUse); read from the payload if omitted."),
    ] = None,
    custom_hook: Annotated[
        Path | None,
        typer.Option("--custom-hook", help=f"Hook script to delegate to (default: ${CUSTOM_HOOK_ENV})."),
    ] = None,
) -> None:
    """Record a hook event from stdin (configure this as the Claude Code hook command)."""
    if custom_hook is None and os.environ.get(CUSTOM_HOOK_ENV):
        custom_hook = Path(os.environ[CUSTOM_HOOK_ENV]).expanduser()

    layout = LogLayout(_state(ctx).config.resolved_log_dir)
    outcome = run_hook(sys.stdin.read(), event_name=event_name, layout=layout, custom_hook=custom_hook)

    # The agent reads these streams verbatim
    if outcome.stdout:
        typer.echo(outcome.stdout, nl=False)
    if outcome.stderr:
        typer.echo(outcome.stderr, err=True, nl=False)
    raise typer.Exit(outcome.exit_code)


@app.command()
def check() -> None:
    """Check whether Claude Code hooks are configured to call ccwatch."""
    result = check_hooks()

    for label, path, has_hooks, uses_ccwatch in (
        ("User settings", result.user_settings, result.has_user_hooks, result.user_uses_ccwatch),
        ("Project settings", result.project_settings, result.has_project_hooks, result.project_uses_ccwatch),
    ):
        if uses_ccwatch:
            mark = "[green]✓[/]"
        elif has_hooks:
            mark = "[yellow]~[/]"
        else:
            mark = "[dim]-[/]"
        console.print(f"{mark} {label}: [dim]{path}[/]")

    if result.is_configured:
        console.print(f"[green]{result.status_message}[/]")
        return

    err_console.print(f"[yellow]{result.status_message}[/]")
    err_console.print('[dim]Run "ccwatch setup" to add hooks whose command is "ccwatch hook <EventName>".[/]')
    raise typer.Exit(1)


@app.command()
def setup(
    project: Annotated[
        bool,
        typer.Option("--project", "-p", help="Write .claude/settings.local.json in the current directory."),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation."),
    ] = False,
) -> None:
    """Add ccwatch hooks to Claude Code settings (user settings by default)."""
    location = HookLocation.PROJECT if project else HookLocation.USER
    path = settings_path(location)

    console.print(f"Hooks for [cyan]{', '.join(HOOK_EVENT_NAMES)}[/] will call [bold]ccwatch hook[/].")
    console.print(f"[dim]Settings file: {path}[/]")
    if not yes and not typer.confirm("Continue?", default=True):
        raise typer.Exit(1)

    result = install_hooks(location)
    if result.backup_path is not None:
        console.print(f"[dim]Backup created: {result.backup_path}[/]")
    if result.replaced_invalid:
        err_console.print(f"[yellow]Warning:[/] {path} was not valid JSON and has been replaced.")
    console.print(f"[green]✓[/] Hooks installed in {result.settings_path}")
    console.print("[dim]Restart Claude Code for the hooks to take effect.[/]")


@app.command()
def init_config() -> None:
    """Create default configuration file."""
    config_file = get_config_file_path()

    if config_file.exists():
        err_console.print(f"[yellow]Config file already exists:[/] {config_file}")
        raise typer.Exit(1)

    save_config(Config())
    console.print(f"[green]✓[/] Created config file: {config_file}")


config_app = typer.Typer(
    name="config",
    help="Configuration management commands.",
)
app.add_typer(config_app, name="config")


@config_app.command("validate")
def config_validate(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-C", help="Config file path."),
    ] = None,
    project: Annotated[
        Path | None,
        typer.Option("--project", "-p", help="Project directory."),
    ] = None,
) -> None:
    """Validate all config files and report warnings."""
    _config, warnings = load_config(config_path, project_dir=project or Path.cwd(), strict=True)

    if warnings:
        display_config_warnings(warnings, err_console)
        raise typer.Exit(1)

    console.print("[green]✓[/] All config files are valid.")


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Show the effective configuration, CLI overrides included."""
    console.print(yaml.dump(_state(ctx).config.model_dump(mode="json"), default_flow_style=False, sort_keys=False))


if __name__ == "__main__":
    app()
