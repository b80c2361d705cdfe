"""
Data Models Layer.

This package contains Pydantic models that define the core data structures
used throughout the application, such as configuration, connection state and
download jobs.
"""

from .config import BridgeConfig
from .policy import ReconnectPolicy, TrackerPolicy
from .state import (
    ConnectionState,
    ConnectionStatus,
    EnqueueReceipt,
    Job,
    JobStatus,
    QueueEntry,
    QueueStatus,
    ServiceEndpoint,
    SubmitReceipt,
)

__all__ = [
    "BridgeConfig",
    "ConnectionState",
    "ConnectionStatus",
    "EnqueueReceipt",
    "Job",
    "JobStatus",
    "QueueEntry",
    "QueueStatus",
    "ReconnectPolicy",
    "ServiceEndpoint",
    "SubmitReceipt",
    "TrackerPolicy",
]
