"""
Renders download lifecycle events from the event bus as Rich progress bars.
"""

import asyncio
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from beatport_bridge.core.events import BridgeEvent, EventBus, EventType


class ProgressManager:
    """
    Subscribes to the event bus and keeps one progress bar per track.
    Also tracks which tracks reached a terminal state, so callers can wait
    for a whole batch.
    """

    def __init__(self, console: Console, events: EventBus, show_notifications: bool = True):
        self.console = console
        self.events = events
        self.show_notifications = show_notifications

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=30),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            TextColumn("{task.fields[status]}"),
            "•",
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )

        self._tasks: dict[str, TaskID] = {}
        self._titles: dict[str, str] = {}
        self._finished: set[str] = set()
        self._changed = asyncio.Event()
        self._unsubscribe = None

    async def __aenter__(self) -> "ProgressManager":
        self.progress.start()
        self._unsubscribe = self.events.subscribe(self.handle_event)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        self.progress.stop()

    def set_title(self, track_id: str, title: str) -> None:
        """Sets the label shown for a track before it is queued."""
        self._titles[track_id] = title

    def handle_event(self, event: BridgeEvent) -> None:
        payload = event.payload
        track_id = payload.get("trackId")

        if event.type == EventType.DOWNLOAD_QUEUED:
            self._add_task(track_id)
        elif event.type == EventType.DOWNLOAD_PROGRESS:
            self._update(
                track_id, completed=payload.get("progress", 0), status=payload.get("status")
            )
        elif event.type == EventType.DOWNLOAD_COMPLETE:
            self._update(track_id, completed=100, status="[green]✓ completed[/green]")
            self._mark_finished(track_id)
        elif event.type == EventType.DOWNLOAD_ERROR:
            error = escape(str(payload.get("error", "Unknown error")))
            self._update(track_id, status=f"[red]✗ {error}[/red]")
            self._mark_finished(track_id)
        elif event.type == EventType.CONNECTION_CHANGED:
            if payload.get("connected"):
                self.console.log("[green]Connected to download service.[/green]")
            else:
                self.console.log("[yellow]Lost connection to download service.[/yellow]")
        elif event.type == EventType.NOTIFICATION and self.show_notifications:
            self.console.log(
                f"[bold]{escape(payload.get('title', ''))}:[/bold] "
                f"{escape(payload.get('message', ''))}"
            )

    def is_finished(self, track_id: str) -> bool:
        return track_id in self._finished

    async def wait_for(self, track_ids: list[str], timeout: Optional[float] = None) -> bool:
        """
        Waits until every given track reached a terminal state. Returns False
        if the timeout elapsed first.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while not all(t in self._finished for t in track_ids):
            self._changed.clear()
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            try:
                await asyncio.wait_for(self._changed.wait(), remaining)
            except asyncio.TimeoutError:
                return False
        return True

    def _add_task(self, track_id: str) -> None:
        if track_id in self._tasks:
            self.progress.reset(self._tasks[track_id], total=100)
            self._finished.discard(track_id)
            return
        title = escape(self._titles.get(track_id, track_id))
        self._tasks[track_id] = self.progress.add_task(
            f"[cyan]{title}[/cyan]", total=100, status="[dim]queued[/dim]"
        )

    def _update(
        self, track_id: str, completed: Optional[int] = None, status: Optional[str] = None
    ) -> None:
        task_id = self._tasks.get(track_id)
        if task_id is None:
            return
        fields = {}
        if status is not None:
            fields["status"] = status
        self.progress.update(task_id, completed=completed, **fields)

    def _mark_finished(self, track_id: str) -> None:
        self._finished.add(track_id)
        self._changed.set()
