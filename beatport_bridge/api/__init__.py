"""
Service API Layer.

This package handles all communication with the local download service.
"""

from .diagnostics import DiagnosticsReport, run_diagnostics
from .transport import ServiceTransport

__all__ = ["DiagnosticsReport", "ServiceTransport", "run_diagnostics"]
