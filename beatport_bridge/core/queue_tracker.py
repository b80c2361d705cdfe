"""
Tracks download jobs submitted to the service and follows each one through
the service's queue until it completes, fails or disappears.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from beatport_bridge.api.transport import ServiceTransport
from beatport_bridge.exceptions import (
    CancelNotSupportedError,
    InvalidRequestError,
    JobAlreadyTrackedError,
    NotConnectedError,
    RemoteRejectedError,
    ServiceUnreachableError,
)
from beatport_bridge.models.policy import TrackerPolicy
from beatport_bridge.models.state import (
    Job,
    JobStatus,
    QueueEntry,
    QueueStatus,
    SubmitReceipt,
)
from beatport_bridge.utils.structured_logger import DownloadLogger

from .connection import ServiceConnectionManager
from .events import EventBus, EventType

log = logging.getLogger(__name__)

CONNECTION_LOST = "Connection lost"
CANCELLED = "Cancelled"


class DownloadQueueTracker:
    """
    Owns the table of submitted jobs.

    Each job gets its own poll task, so one job's errors and backoff never
    delay another's. A job is only ever replaced as a whole, which keeps
    snapshots consistent between suspension points. Finished jobs stay
    visible for `policy.retention` seconds before they are evicted.
    """

    def __init__(
        self,
        connection: ServiceConnectionManager,
        transport: ServiceTransport,
        events: EventBus,
        policy: Optional[TrackerPolicy] = None,
        default_quality: str = "flac",
        notifications_enabled: bool = True,
        logger: Optional[DownloadLogger] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._connection = connection
        self._transport = transport
        self._events = events
        self._policy = policy or TrackerPolicy()
        self.default_quality = default_quality
        self.notifications_enabled = notifications_enabled
        self._logger = logger
        self._clock = clock
        self._sleep = sleep

        self._jobs: dict[str, Job] = {}
        self._submitting: set[str] = set()
        self._poll_tasks: dict[str, asyncio.Task] = {}
        self._eviction_tasks: dict[str, asyncio.Task] = {}

    # Public API

    async def submit(
        self,
        track_id: str,
        quality: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> SubmitReceipt:
        """
        Submits a track to the service and starts tracking it.

        Raises:
            InvalidRequestError: `track_id` is empty.
            JobAlreadyTrackedError: the track already has an active job.
            NotConnectedError: the service is unreachable even after a
                fresh status check.
            RemoteRejectedError: the service refused the submission.
            ServiceUnreachableError: the submission request itself failed.
        """
        track_id = (track_id or "").strip()
        if not track_id:
            raise InvalidRequestError("Track ID is required.")

        existing = self._jobs.get(track_id)
        if track_id in self._submitting or (
            existing is not None and not existing.status.is_terminal
        ):
            raise JobAlreadyTrackedError(
                f"Track {track_id} is already queued for download."
            )

        self._submitting.add(track_id)
        try:
            if not self._connection.is_connected:
                await self._connection.check_status()
                if not self._connection.is_connected:
                    raise NotConnectedError("Download service is not available.")

            quality = quality or self.default_quality
            metadata = dict(metadata or {})
            receipt = await self._transport.enqueue(
                self._connection.endpoint.base_url, track_id, quality, metadata
            )
        except (RemoteRejectedError, ServiceUnreachableError) as e:
            log.error(f"[red]Error requesting download of {track_id}: {e}[/red]")
            raise
        finally:
            self._submitting.discard(track_id)

        self._discard_eviction(track_id)
        job = Job(
            track_id=track_id,
            remote_queue_id=receipt.queue_id,
            status=JobStatus.QUEUED,
            position=receipt.position,
            quality=quality,
            metadata=metadata,
            created_at=self._clock(),
        )
        self._jobs[track_id] = job

        log.info(
            f"Queued [cyan]{job.title}[/cyan] as {receipt.queue_id} "
            f"(position {receipt.position})"
        )
        if self._logger:
            self._logger.job_submitted(track_id, receipt.queue_id, quality)
        self._events.emit(
            EventType.DOWNLOAD_QUEUED, trackId=track_id, queueId=receipt.queue_id
        )
        self._notify("Download Queued", f"Track queued for download: {job.title}")

        self._poll_tasks[track_id] = asyncio.create_task(self._poll_loop(track_id))
        return SubmitReceipt(track_id=track_id, queue_id=receipt.queue_id)

    def get_snapshot(self) -> list[Job]:
        """Returns the tracked jobs, oldest first."""
        return sorted(self._jobs.values(), key=lambda j: j.created_at)

    def get_job(self, track_id: str) -> Optional[Job]:
        return self._jobs.get(track_id)

    def queue_status(self) -> QueueStatus:
        return QueueStatus(
            items=self.get_snapshot(),
            service_status=self._connection.state.status,
        )

    @property
    def active_count(self) -> int:
        return sum(1 for j in self._jobs.values() if not j.status.is_terminal)

    async def cancel(self, track_id: str) -> bool:
        """
        Asks the service to cancel a job. Returns False when the job is
        already finished or the service has no cancellation support, in which
        case the job keeps running to its natural end.
        """
        job = self._jobs.get(track_id)
        if job is None:
            raise InvalidRequestError(f"Track {track_id} is not being tracked.")
        if job.status.is_terminal:
            return False

        try:
            await self._transport.cancel(
                self._connection.endpoint.base_url, job.remote_queue_id
            )
        except CancelNotSupportedError as e:
            log.warning(f"[yellow]{e} Track {track_id} will run to completion.[/yellow]")
            return False

        task = self._poll_tasks.pop(track_id, None)
        if task and task is not asyncio.current_task():
            task.cancel()

        job = self._jobs.get(track_id)
        if job is None or job.status.is_terminal:
            return False
        self._finish(job.model_copy(update={"status": JobStatus.FAILED, "error": CANCELLED}))
        return True

    async def close(self) -> None:
        """Stops every poll loop and pending eviction."""
        tasks = list(self._poll_tasks.values()) + list(self._eviction_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_tasks.clear()
        self._eviction_tasks.clear()

    # Polling

    async def _poll_loop(self, track_id: str) -> None:
        delay = self._policy.initial_poll_delay
        while True:
            await self._sleep(delay)
            job = self._jobs.get(track_id)
            if job is None or job.status.is_terminal:
                return

            delay = await self._poll_once(job)
            if delay is None:
                return

    async def _poll_once(self, job: Job) -> Optional[float]:
        """
        Runs one poll cycle for `job`. Returns the delay before the next poll,
        or None once the job is finished.
        """
        try:
            entries = await self._transport.fetch_queue(
                self._connection.endpoint.base_url
            )
        except (ServiceUnreachableError, ValueError) as e:
            return self._on_poll_error(job, e)

        entry = next((e for e in entries if e.id == job.remote_queue_id), None)
        if entry is None:
            return self._on_missing(job)
        return self._on_entry(job, entry)

    def _on_entry(self, job: Job, entry: QueueEntry) -> Optional[float]:
        status = JobStatus.from_remote(entry.status)
        updated = job.model_copy(
            update={
                "status": status,
                "progress": entry.progress,
                "position": entry.position,
                "error": entry.error,
                "missing_count": 0,
            }
        )

        if status.is_terminal:
            self._finish(updated)
            return None

        self._jobs[job.track_id] = updated
        if status != job.status or self._policy.is_progress_heartbeat(entry.progress):
            self._events.emit(
                EventType.DOWNLOAD_PROGRESS,
                trackId=job.track_id,
                progress=updated.progress,
                status=status.value,
            )
        return self._policy.poll_interval

    def _on_missing(self, job: Job) -> Optional[float]:
        missing = job.missing_count + 1
        if missing < self._policy.missing_poll_limit:
            log.debug(
                f"Track {job.track_id} not in service queue ({missing}/"
                f"{self._policy.missing_poll_limit})"
            )
            self._jobs[job.track_id] = job.model_copy(
                update={"missing_count": missing}
            )
            return self._policy.poll_interval

        # The service is free to drop finished jobs from its listing
        log.info(
            f"Track {job.track_id} left the service queue; assuming it completed."
        )
        self._finish(
            job.model_copy(
                update={
                    "status": JobStatus.COMPLETED,
                    "progress": 100,
                    "missing_count": missing,
                    "assumed_complete": True,
                }
            )
        )
        return None

    def _on_poll_error(self, job: Job, error: Exception) -> Optional[float]:
        failures = job.poll_failure_count + 1
        log.warning(f"[yellow]Error polling status of {job.track_id}: {error}[/yellow]")
        if self._logger:
            self._logger.poll_failed(job.track_id, str(error), failures)

        if failures < self._policy.poll_failure_limit:
            self._jobs[job.track_id] = job.model_copy(
                update={"poll_failure_count": failures}
            )
            return self._policy.error_delay(failures)

        self._finish(
            job.model_copy(
                update={
                    "status": JobStatus.FAILED,
                    "error": CONNECTION_LOST,
                    "poll_failure_count": failures,
                }
            )
        )
        return None

    # Completion and eviction

    def _finish(self, job: Job) -> None:
        job = job.model_copy(update={"completed_at": self._clock()})
        self._jobs[job.track_id] = job
        self._poll_tasks.pop(job.track_id, None)

        if job.status == JobStatus.COMPLETED:
            log.info(f"[green]✓ Download complete: {job.title}[/green]")
            if self._logger:
                self._logger.job_completed(
                    job.track_id, job.completed_at - job.created_at, job.assumed_complete
                )
            self._events.emit(EventType.DOWNLOAD_COMPLETE, trackId=job.track_id)
            self._notify("Download Complete", f"Successfully downloaded: {job.title}")
        else:
            error = job.error or "Unknown error"
            log.error(f"[red]✗ Download failed: {job.title} - {error}[/red]")
            if self._logger:
                self._logger.job_failed(job.track_id, error, job.poll_failure_count)
            self._events.emit(
                EventType.DOWNLOAD_ERROR, trackId=job.track_id, error=error
            )
            self._notify("Download Failed", f"Failed to download: {job.title} - {error}")

        self._discard_eviction(job.track_id)
        self._eviction_tasks[job.track_id] = asyncio.create_task(self._evict_later(job))

    async def _evict_later(self, job: Job) -> None:
        await self._sleep(self._policy.retention)
        # A resubmission replaces the job; only evict the one we scheduled for
        if self._jobs.get(job.track_id) is job:
            del self._jobs[job.track_id]
            log.debug(f"Evicted finished job {job.track_id}")
            if self._logger:
                self._logger.job_evicted(job.track_id)
        self._eviction_tasks.pop(job.track_id, None)

    def _discard_eviction(self, track_id: str) -> None:
        task = self._eviction_tasks.pop(track_id, None)
        if task and task is not asyncio.current_task():
            task.cancel()

    def _notify(self, title: str, message: str) -> None:
        if self.notifications_enabled:
            self._events.emit(EventType.NOTIFICATION, title=title, message=message)
