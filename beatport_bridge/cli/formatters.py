"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from beatport_bridge.api.diagnostics import DiagnosticsReport
from beatport_bridge.models.config import BridgeConfig, get_quality_info
from beatport_bridge.models.state import (
    ConnectionState,
    ConnectionStatus,
    Job,
    JobStatus,
    QueueEntry,
)
from beatport_bridge.utils.formatting import format_age, format_duration

STATUS_STYLES = {
    ConnectionStatus.CONNECTED: "green",
    ConnectionStatus.CONNECTING: "yellow",
    ConnectionStatus.DISCONNECTED: "red",
    JobStatus.QUEUED: "dim",
    JobStatus.DOWNLOADING: "cyan",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "NotConnectedError": [
            "• Make sure the download service is running.",
            "• Check the host and port with `beatport-bridge --show-config`.",
            "• Run `beatport-bridge diagnose` to scan for the service.",
        ],
        "ServiceUnreachableError": [
            "• The service stopped answering or returned an invalid response.",
            "• Check that no firewall blocks local connections.",
        ],
        "RemoteRejectedError": [
            "• The service refused the request; see the message above.",
            "• Verify the track ID and the requested quality.",
        ],
        "JobAlreadyTrackedError": [
            "• Wait for the current download of this track to finish.",
        ],
        "InvalidRequestError": [
            "• A non-empty track ID is required.",
        ],
        "ConfigurationError": [
            "• Fix the value in the configuration file, or",
            "• Run `beatport-bridge init --force` to recreate it.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config: BridgeConfig):
    """Displays the current configuration."""
    console = Console()
    content = ""
    for key in sorted(BridgeConfig.get_ini_keys()):
        value = getattr(config, key)
        if isinstance(value, list):
            value = ", ".join(map(str, value))
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            escape(content.strip()),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_connection_state(state: ConnectionState):
    """Displays the result of a service status check."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    style = STATUS_STYLES.get(state.status, "white")
    table.add_row("Status:", f"[{style}]{state.status.value}[/{style}]")
    table.add_row("Service URL:", state.endpoint.base_url)
    table.add_row("Failed Attempts:", str(state.attempt_count))
    table.add_row("Last Connected:", format_age(state.last_connected_at))
    for key, value in sorted(state.service_info.items()):
        if key != "status":
            table.add_row(f"Service {key}:", escape(str(value)))

    console.print(
        Panel(
            table,
            title="[bold]Download Service[/bold]",
            border_style=style,
            expand=False,
        )
    )


def print_queue_table(entries: list[QueueEntry]):
    """Displays the service's queue listing."""
    console = Console()
    if not entries:
        console.print("[dim]The service queue is empty.[/dim]")
        return

    table = Table(title="Service Queue", box=box.SIMPLE_HEAVY)
    table.add_column("Pos", justify="right", style="dim")
    table.add_column("Queue ID", style="cyan")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Error", style="red")

    for entry in sorted(entries, key=lambda e: e.position):
        style = STATUS_STYLES.get(JobStatus.from_remote(entry.status), "white")
        table.add_row(
            str(entry.position),
            escape(entry.id),
            f"[{style}]{escape(entry.status)}[/{style}]",
            f"{entry.progress}%",
            escape(entry.error or ""),
        )
    console.print(table)


def print_summary_panel(jobs: list[Job], duration_s: float):
    """Displays a final summary of a download session."""
    console = Console()

    completed = [j for j in jobs if j.status == JobStatus.COMPLETED]
    failed = [j for j in jobs if j.status == JobStatus.FAILED]
    pending = [j for j in jobs if not j.status.is_terminal]
    assumed = sum(1 for j in completed if j.assumed_complete)

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=16)
    stats_table.add_column(style="white", justify="left")

    downloaded = f"[bold green]{len(completed)}[/bold green]"
    if assumed:
        downloaded += f" [dim]({assumed} left the queue without a final status)[/dim]"
    stats_table.add_row("✓ Downloaded:", downloaded)
    if failed:
        stats_table.add_row("✗ Failed:", f"[bold red]{len(failed)}[/bold red]")
    if pending:
        stats_table.add_row("○ Still queued:", f"[yellow]{len(pending)}[/yellow]")
    stats_table.add_row("⏱ Duration:", format_duration(duration_s))

    for job in failed:
        stats_table.add_row(
            "", f"[red]{escape(job.title)}: {escape(job.error or 'Unknown error')}[/red]"
        )

    border = "red" if failed else "green"
    console.print(
        Panel(
            stats_table,
            title="[bold]Session Summary[/bold]",
            border_style=border,
            expand=False,
        )
    )


def print_diagnostics(report: DiagnosticsReport):
    """Displays the outcome of a connectivity scan."""
    console = Console()
    if report.working_port is None:
        ports = ", ".join(map(str, report.scanned_ports))
        console.print(
            f"[red]✗ Could not find the service on {report.host} "
            f"(ports tried: {ports}).[/red]"
        )
        console.print(
            "\n[bold yellow]Troubleshooting steps:[/bold yellow]\n"
            "  1. Make sure the download service is running.\n"
            "  2. Check whether the service uses a different port.\n"
            "  3. Verify that a firewall isn't blocking local connections."
        )
        return

    console.print(
        f"[green]✓[/] Service found on port [cyan]{report.working_port}[/cyan]."
    )

    table = Table(box=box.SIMPLE_HEAVY)
    table.add_column("Endpoint", style="cyan")
    table.add_column("Result")
    table.add_column("Time", justify="right")
    table.add_column("CORS")
    for check in report.checks:
        result = (
            "[green]✓ OK[/green]"
            if check.success
            else f"[red]✗ {escape(check.error or 'failed')}[/red]"
        )
        time_cell = f"{check.response_ms} ms" if check.response_ms is not None else "-"
        if check.cors_ok:
            cors = "[green]✓[/green]"
        elif check.missing_cors_headers:
            cors = f"[yellow]missing {', '.join(check.missing_cors_headers)}[/yellow]"
        else:
            cors = "[yellow]origin mismatch[/yellow]"
        table.add_row(f"/{check.endpoint}", result, time_cell, cors)
    console.print(table)

    console.print(
        f"Test complete: {report.passed}/{len(report.checks)} endpoints working."
    )
    if suggested := report.suggested_endpoint:
        console.print(
            "\n[bold green]✓ The service is correctly configured.[/bold green] "
            "Apply it with:\n"
            f"  [cyan]beatport-bridge settings --host {suggested.host} "
            f"--port {suggested.port}[/cyan]"
        )


def quality_label(quality: str) -> str:
    info = get_quality_info(quality)
    return f"[{info['color']}]{info['short']}[/{info['color']}]"

