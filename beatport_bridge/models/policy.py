"""
Retry, polling and retention thresholds for the connection manager and the
queue tracker. All durations are in seconds.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ReconnectPolicy:
    """Backoff schedule for health checks against the download service."""

    base_delay: float = 1.0
    max_delay: float = 30.0
    fast_attempts: int = 5
    slow_retry_delay: float = 120.0
    health_check_interval: float = 30.0

    def retry_delay(self, attempt_count: int) -> float:
        """
        Delay before the next health check after `attempt_count` consecutive
        failed checks: exponential while under `fast_attempts`, then a fixed
        slow cadence.
        """
        if attempt_count >= self.fast_attempts:
            return self.slow_retry_delay
        return min(self.base_delay * 2**attempt_count, self.max_delay)


@dataclass(frozen=True)
class TrackerPolicy:
    """Polling cadence and give-up thresholds for tracked download jobs."""

    initial_poll_delay: float = 1.0
    poll_interval: float = 2.0
    missing_poll_limit: int = 5
    poll_failure_limit: int = 5
    error_backoff_base: float = 2.0
    error_backoff_factor: float = 1.5
    error_backoff_max: float = 30.0
    progress_event_step: int = 10
    retention: float = 60.0

    def error_delay(self, failure_count: int) -> float:
        """Delay before re-polling after the job's `failure_count`-th failed poll."""
        return min(
            self.error_backoff_base * self.error_backoff_factor**failure_count,
            self.error_backoff_max,
        )

    def is_progress_heartbeat(self, progress: int) -> bool:
        return self.progress_event_step > 0 and progress % self.progress_event_step == 0
