"""
Pydantic models for the connection state machine and the tracked download jobs.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from beatport_bridge.utils.formatting import get_track_title


class ConnectionStatus(str, Enum):
    """Settled and transient states of the service connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class JobStatus(str, Enum):
    """Lifecycle of a download job as seen by the tracker."""

    QUEUED = "queued"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @classmethod
    def from_remote(cls, value: Optional[str]) -> "JobStatus":
        """
        Maps a status string reported by the service onto a local status.
        Anything that is not downloading or terminal counts as still queued.
        """
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.QUEUED


class ServiceEndpoint(BaseModel):
    """Host and port of the download service."""

    host: str
    port: int = Field(ge=1, le=65535)

    class Config:
        frozen = True

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def with_port(self, port: int) -> "ServiceEndpoint":
        return ServiceEndpoint(host=self.host, port=port)


class ConnectionState(BaseModel):
    """A point-in-time view of the connection to the service."""

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    endpoint: ServiceEndpoint
    attempt_count: int = Field(0, ge=0)
    last_checked_at: Optional[float] = None
    last_connected_at: Optional[float] = None
    service_info: dict[str, Any] = Field(default_factory=dict)

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED


class Job(BaseModel):
    """
    A download submitted to the service. Instances are frozen; the tracker
    replaces the whole job on every update.
    """

    track_id: str
    remote_queue_id: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    progress: int = Field(0, ge=0, le=100)
    position: int = Field(0, ge=0)
    poll_failure_count: int = 0
    missing_count: int = 0
    error: Optional[str] = None
    quality: str = "flac"
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: float
    completed_at: Optional[float] = None
    assumed_complete: bool = False

    class Config:
        frozen = True

    @property
    def title(self) -> str:
        """Best human-readable label for notifications and progress bars."""
        return get_track_title(self.metadata, self.track_id)


class QueueEntry(BaseModel):
    """One row of the service's queue listing."""

    id: str
    status: str = "queued"
    progress: int = 0
    position: int = 0
    error: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("progress", mode="before")
    @classmethod
    def clamp_progress(cls, v: Any) -> int:
        try:
            return max(0, min(100, int(v or 0)))
        except (TypeError, ValueError):
            return 0

    @field_validator("position", mode="before")
    @classmethod
    def clamp_position(cls, v: Any) -> int:
        try:
            return max(0, int(v or 0))
        except (TypeError, ValueError):
            return 0


class EnqueueReceipt(BaseModel):
    """The service's answer to a download submission."""

    queue_id: str = Field(alias="queueId")
    status: str = "queued"
    position: int = 0

    class Config:
        populate_by_name = True

    @field_validator("queue_id", mode="before")
    @classmethod
    def coerce_queue_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("position", mode="before")
    @classmethod
    def clamp_position(cls, v: Any) -> int:
        try:
            return max(0, int(v or 0))
        except (TypeError, ValueError):
            return 0


class SubmitReceipt(BaseModel):
    """Returned to callers of a successful submission."""

    track_id: str
    queue_id: str


class QueueStatus(BaseModel):
    """Tracked jobs together with the current service status."""

    items: list[Job]
    service_status: ConnectionStatus
