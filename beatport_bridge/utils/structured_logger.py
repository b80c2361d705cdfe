"""
Structured logging for connection and download lifecycle events.
Writes human-readable lines through the standard logger and, optionally,
JSON lines to a file for later analysis.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from rich.markup import escape


class StructuredLogger:
    """
    Logger that outputs both human-readable and machine-parseable entries.

    Usage:
        logger = StructuredLogger("beatport_bridge")
        logger.info("job_submitted", track_id="12345", queue_id="q-1")
    """

    def __init__(
        self,
        name: str,
        log_dir: Optional[Path] = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = disabled)
            enable_json: Enable JSON file logging
            enable_console: Enable output through the standard logger
        """
        self.name = name
        self.log_dir = log_dir
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console

        self._logger = logging.getLogger(name)

        self._json_file = None
        self.json_log_path: Optional[Path] = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.json_log_path = log_dir / f"beatport_bridge_{timestamp}.jsonl"
            self._json_file = open(self.json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        # Session context (added to all log entries)
        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
        }

    def set_session_context(self, **kwargs) -> None:
        """Set session-level context that appears in all logs."""
        self._session_context.update(kwargs)

    def _format_message(self, event: str, **context) -> str:
        parts = [f"[{event}]"]
        for key, value in context.items():
            parts.append(f"{key}={value}")
        return " ".join(parts)

    def _write_json(self, level: str, event: str, **context) -> None:
        if not self._json_file or self._json_file.closed:
            return

        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }

        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except OSError as e:
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def _log(self, level: int, event: str, **context) -> None:
        if self.enable_console:
            self._logger.log(level, escape(self._format_message(event, **context)))
        if self.enable_json:
            self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context) -> None:
        self._log(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        self._log(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        self._log(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        self._log(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()


class ConnectionLogger:
    """Specialized logger for service connection events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def check_failed(self, base_url: str, error: str, attempt: int):
        self.logger.debug(
            "service_check_failed", base_url=base_url, error=error, attempt=attempt
        )

    def connected(self, base_url: str, service_info: dict[str, Any]):
        self.logger.info(
            "service_connected",
            base_url=base_url,
            version=service_info.get("version"),
        )

    def disconnected(self, base_url: str, attempt: int):
        self.logger.warning("service_disconnected", base_url=base_url, attempt=attempt)

    def port_discovered(self, host: str, port: int, previous_port: int):
        self.logger.info(
            "service_port_discovered",
            host=host,
            port=port,
            previous_port=previous_port,
        )

    def retry_scheduled(self, attempt: int, delay_s: float):
        self.logger.debug(
            "service_retry_scheduled", attempt=attempt, delay_s=round(delay_s, 2)
        )


class DownloadLogger:
    """Specialized logger for download job events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def job_submitted(self, track_id: str, queue_id: str, quality: str):
        self.logger.info(
            "job_submitted", track_id=track_id, queue_id=queue_id, quality=quality
        )

    def job_completed(self, track_id: str, duration_s: float, assumed: bool):
        self.logger.info(
            "job_completed",
            track_id=track_id,
            duration_s=round(duration_s, 2),
            assumed=assumed,
        )

    def job_failed(self, track_id: str, error: str, poll_failures: int):
        self.logger.error(
            "job_failed", track_id=track_id, error=error, poll_failures=poll_failures
        )

    def poll_failed(self, track_id: str, error: str, failure_count: int):
        self.logger.debug(
            "job_poll_failed",
            track_id=track_id,
            error=error,
            failure_count=failure_count,
        )

    def job_evicted(self, track_id: str):
        self.logger.debug("job_evicted", track_id=track_id)


def create_structured_logger(
    log_dir: Optional[Path] = None, enable_json: bool = False
) -> tuple[StructuredLogger, ConnectionLogger, DownloadLogger]:
    """
    Create all structured loggers.

    Returns:
        Tuple of (base_logger, connection_logger, download_logger)
    """
    base = StructuredLogger("beatport_bridge", log_dir=log_dir, enable_json=enable_json)
    return base, ConnectionLogger(base), DownloadLogger(base)
