"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from beatport_bridge import __version__
from beatport_bridge.api.diagnostics import run_diagnostics
from beatport_bridge.api.transport import ServiceTransport
from beatport_bridge.core.bridge import BridgeService
from beatport_bridge.exceptions import BridgeError, ConfigurationError
from beatport_bridge.models.config import QUALITY_MAP, BridgeConfig
from beatport_bridge.models.state import JobStatus
from beatport_bridge.storage.config_manager import ConfigManager
from beatport_bridge.utils.formatting import get_track_title

from .formatters import (
    format_error_with_suggestions,
    print_config,
    print_connection_state,
    print_diagnostics,
    print_queue_table,
    print_summary_panel,
    quality_label,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="WARNING",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("beatport_bridge")

app = typer.Typer(
    name="beatport-bridge",
    help=(
        "Queue track downloads on a local download service and follow them to"
        " completion. Use 'beatport-bridge <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "beatport-bridge"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"
LOG_DIR = CONFIG_DIR / "logs"


def _load_config(cli_options: dict[str, Any] | None = None) -> BridgeConfig:
    try:
        return ConfigManager(CONFIG_FILE).load_config(cli_options)
    except ConfigurationError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e


def _parse_metadata(pairs: list[str]) -> dict[str, str]:
    metadata = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            console.print(f"[red]✗ Invalid metadata '{pair}'. Use KEY=VALUE.[/red]")
            raise typer.Exit(code=1)
        metadata[key.strip()] = value.strip()
    return metadata


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """Beatport download bridge CLI"""
    if version:
        console.print(f"[bold]beatport-bridge[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose == 1:
        log_level = "INFO"
    elif verbose >= 2:
        log_level = "DEBUG"
    log.setLevel(log_level)

    if show_config:
        print_config(CONFIG_FILE, _load_config())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    host: str = typer.Option("localhost", "--host", help="Service host name."),
    port: int = typer.Option(1337, "--port", "-p", help="Service port."),
    quality: str = typer.Option(
        "flac", "--quality", "-q", help=f"Download format: {', '.join(QUALITY_MAP)}."
    ),
    notifications: bool = typer.Option(
        True, "--notifications/--no-notifications", help="Show download notifications."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Create the configuration file."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    try:
        ConfigManager(CONFIG_FILE).save_new_config(
            {
                "service_host": host,
                "service_port": port,
                "download_quality": quality,
                "notifications_enabled": notifications,
            }
        )
    except ConfigurationError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Check the service with: [cyan]beatport-bridge status[/cyan]")


@app.command()
def settings(
    host: str | None = typer.Option(None, "--host", help="Service host name."),
    port: int | None = typer.Option(None, "--port", "-p", help="Service port."),
    quality: str | None = typer.Option(
        None, "--quality", "-q", help=f"Download format: {', '.join(QUALITY_MAP)}."
    ),
    notifications: bool | None = typer.Option(
        None, "--notifications/--no-notifications", help="Show download notifications."
    ),
    event_log: bool | None = typer.Option(
        None, "--event-log/--no-event-log", help="Write lifecycle events as JSON lines."
    ),
):
    """Change one or more settings."""
    changes = {
        key: value
        for key, value in {
            "service_host": host,
            "service_port": port,
            "download_quality": quality,
            "notifications_enabled": notifications,
            "event_log": event_log,
        }.items()
        if value is not None
    }
    config = _load_config(changes)
    if changes:
        ConfigManager(CONFIG_FILE).update_settings(
            {key: getattr(config, key) for key in changes}
        )
        console.print("[green]✓ Settings saved.[/green]")
    print_config(CONFIG_FILE, config)


@app.command()
def status():
    """Check whether the download service is reachable."""
    config = _load_config()

    async def _status_async():
        bridge = BridgeService(config, ConfigManager(CONFIG_FILE))
        try:
            return await bridge.check_status()
        finally:
            await bridge.close()

    state = asyncio.run(_status_async())
    print_connection_state(state)
    if not state.connected:
        raise typer.Exit(code=1)


@app.command(name="download")
def download_command(
    track_ids: list[str] = typer.Argument(  # noqa: B008
        ..., help="One or more Beatport track IDs."
    ),
    quality: str | None = typer.Option(
        None, "--quality", "-q", help=f"Download format: {', '.join(QUALITY_MAP)}."
    ),
    meta: list[str] = typer.Option(  # noqa: B008
        [],
        "--meta",
        "-m",
        help="Metadata for a single track as KEY=VALUE (e.g. title=...).",
    ),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Follow the downloads until they finish."
    ),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Stop waiting after this many seconds."
    ),
):
    """Queue tracks for download on the service."""
    cli_options = {"download_quality": quality} if quality else None
    config = _load_config(cli_options)
    metadata = _parse_metadata(meta)
    if metadata and len(track_ids) > 1:
        console.print("[red]✗ --meta describes a single track; pass one track ID.[/red]")
        raise typer.Exit(code=1)

    async def _download_async():
        bridge = BridgeService(
            config, ConfigManager(CONFIG_FILE), log_dir=LOG_DIR if config.event_log else None
        )
        queued: list[str] = []
        start_time = time.monotonic()
        try:
            async with ProgressManager(
                console, bridge.events, show_notifications=config.notifications_enabled
            ) as progress:
                await bridge.start()
                console.print(
                    f"[bold cyan]🎵 Queueing {len(track_ids)} track(s) as "
                    f"{quality_label(config.download_quality)}...[/bold cyan]"
                )
                for track_id in track_ids:
                    progress.set_title(track_id, get_track_title(metadata, track_id))
                    try:
                        await bridge.submit(track_id, config.download_quality, metadata)
                        queued.append(track_id)
                    except BridgeError as e:
                        console.print(format_error_with_suggestions(e, {"track": track_id}))

                if wait and queued:
                    if not await progress.wait_for(queued, timeout):
                        console.print(
                            "[yellow]⚠️  Timed out waiting for downloads.[/yellow]"
                        )
            jobs = [j for j in bridge.tracker.get_snapshot() if j.track_id in queued]
        finally:
            await bridge.close()
        return jobs, time.monotonic() - start_time

    jobs, duration = asyncio.run(_download_async())
    if wait and jobs:
        print_summary_panel(jobs, duration)
    elif jobs:
        console.print(f"[green]✓ Queued {len(jobs)} track(s).[/green]")
    if len(jobs) < len(track_ids) or any(j.status == JobStatus.FAILED for j in jobs):
        raise typer.Exit(code=1)


@app.command()
def queue():
    """Show the service's download queue."""
    config = _load_config()

    async def _queue_async():
        transport = ServiceTransport()
        try:
            return await transport.fetch_queue(config.base_url)
        finally:
            await transport.close()

    try:
        entries = asyncio.run(_queue_async())
    except BridgeError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e
    print_queue_table(entries)


@app.command()
def diagnose():
    """Scan for the download service and test its endpoints."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    if CONFIG_FILE.is_file():
        console.print(f"[green]✓[/] Config file exists at: [dim]{CONFIG_FILE}[/dim]")
    else:
        console.print(
            "[yellow]○ No config file found; using defaults.[/] "
            "Run [cyan]beatport-bridge init[/cyan] to create one."
        )
    config = _load_config()
    console.print("[green]✓[/] Configuration is valid.")

    ports = [config.service_port] + [
        p for p in config.fallback_ports if p != config.service_port
    ]
    console.print(
        f"\n[dim]Scanning {config.service_host} on ports "
        f"{', '.join(map(str, ports))}...[/dim]"
    )

    async def _diagnose_async():
        transport = ServiceTransport(timeout=10)
        try:
            return await run_diagnostics(transport, config.service_host, ports)
        finally:
            await transport.close()

    report = asyncio.run(_diagnose_async())
    print_diagnostics(report)
    console.print()
    if not report.all_passed:
        raise typer.Exit(code=1)
