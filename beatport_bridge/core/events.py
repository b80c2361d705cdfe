"""
Event contract between the bridge and whatever displays its state.
"""

import logging
import time
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

log = logging.getLogger(__name__)


class EventType(str, Enum):
    """Names of the events emitted to the event sink."""

    CONNECTION_CHANGED = "connectionChanged"
    DOWNLOAD_QUEUED = "downloadQueued"
    DOWNLOAD_PROGRESS = "downloadProgress"
    DOWNLOAD_COMPLETE = "downloadComplete"
    DOWNLOAD_ERROR = "downloadError"
    NOTIFICATION = "notification"
    SETTINGS_CHANGED = "settingsChanged"


class BridgeEvent(BaseModel):
    """A single event with its camelCase payload."""

    type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)

    class Config:
        frozen = True


EventListener = Callable[[BridgeEvent], None]


class EventBus:
    """
    Synchronous fan-out of events to registered listeners.

    A listener that raises is logged and skipped; it never interrupts the
    component that emitted the event.
    """

    def __init__(self):
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Registers a listener and returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event_type: EventType, **payload: Any) -> BridgeEvent:
        event = BridgeEvent(type=event_type, payload=payload)
        log.debug(f"Emitting {event_type.value} event")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception(f"Event listener failed while handling {event_type.value}")
        return event
