"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class BridgeError(Exception):
    """Base exception for all application-specific errors."""


class ServiceUnreachableError(BridgeError):
    """Raised when the download service cannot be reached or answers garbage."""


class NotConnectedError(BridgeError):
    """Raised when a download is submitted while the service is disconnected."""


class InvalidRequestError(BridgeError):
    """Raised when a request is missing a required identifier."""


class JobAlreadyTrackedError(InvalidRequestError):
    """Raised when a track is submitted again while its job is still active."""


class RemoteRejectedError(BridgeError):
    """Raised when the service answers a submission with a non-2xx status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Service error ({status_code}): {body}")


class CancelNotSupportedError(BridgeError):
    """Raised when the service does not expose job cancellation."""


class ConfigurationError(BridgeError):
    """Raised for issues related to configuration loading or validation."""
