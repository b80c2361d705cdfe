"""
Wires configuration, transport, connection manager, queue tracker and event
bus into a single service object.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from beatport_bridge.api.transport import ServiceTransport
from beatport_bridge.exceptions import ConfigurationError
from beatport_bridge.models.config import BridgeConfig
from beatport_bridge.models.policy import ReconnectPolicy, TrackerPolicy
from beatport_bridge.models.state import (
    ConnectionState,
    QueueStatus,
    ServiceEndpoint,
    SubmitReceipt,
)
from beatport_bridge.storage.config_manager import ConfigManager
from beatport_bridge.utils.structured_logger import create_structured_logger

from .connection import ServiceConnectionManager
from .events import EventBus, EventType
from .queue_tracker import DownloadQueueTracker

log = logging.getLogger(__name__)


class BridgeService:
    """
    The application's composition root.

    Usage:
        async with BridgeService(config, config_manager) as bridge:
            bridge.events.subscribe(print)
            await bridge.submit("12345")
    """

    def __init__(
        self,
        config: BridgeConfig,
        config_manager: Optional[ConfigManager] = None,
        transport: Optional[ServiceTransport] = None,
        events: Optional[EventBus] = None,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        tracker_policy: Optional[TrackerPolicy] = None,
        log_dir: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.config_manager = config_manager
        self.events = events or EventBus()
        self.transport = transport or ServiceTransport()

        self._structured, connection_logger, download_logger = (
            create_structured_logger(
                log_dir=log_dir, enable_json=config.event_log and log_dir is not None
            )
        )
        self._structured.set_session_context(service=config.base_url)

        self.connection = ServiceConnectionManager(
            self.transport,
            ServiceEndpoint(host=config.service_host, port=config.service_port),
            fallback_ports=config.fallback_ports,
            policy=reconnect_policy,
            on_port_discovered=self._save_discovered_port,
            logger=connection_logger,
            clock=clock,
            sleep=sleep,
        )
        self.connection.on_state_change(self._broadcast_connection)

        self.tracker = DownloadQueueTracker(
            self.connection,
            self.transport,
            self.events,
            policy=tracker_policy,
            default_quality=config.download_quality,
            notifications_enabled=config.notifications_enabled,
            logger=download_logger,
            clock=clock,
            sleep=sleep,
        )

    async def __aenter__(self) -> "BridgeService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def start(self) -> ConnectionState:
        """Connects to the service and starts background health checks."""
        return await self.connection.start()

    async def close(self) -> None:
        await self.tracker.close()
        await self.connection.close()
        await self.transport.close()
        self._structured.close()

    async def check_status(self) -> ConnectionState:
        return await self.connection.check_status()

    async def submit(
        self,
        track_id: str,
        quality: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> SubmitReceipt:
        return await self.tracker.submit(track_id, quality, metadata)

    def queue_status(self) -> QueueStatus:
        return self.tracker.queue_status()

    async def update_settings(self, **changes: Any) -> BridgeConfig:
        """
        Validates, persists and applies a partial settings change. A new host
        or port triggers an immediate reconnect.
        """
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            return self.config

        try:
            updated = BridgeConfig(**{**self.config.model_dump(), **changes})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings:\n{e}") from e

        if self.config_manager:
            self.config_manager.update_settings(changes)

        endpoint_changed = (
            updated.service_host != self.config.service_host
            or updated.service_port != self.config.service_port
        )
        log.info(f"Settings updated: {', '.join(sorted(changes))}")
        self.config = updated
        self.tracker.default_quality = updated.download_quality
        self.tracker.notifications_enabled = updated.notifications_enabled
        self.events.emit(EventType.SETTINGS_CHANGED, changes=changes)

        if endpoint_changed:
            await self.connection.reconfigure(
                updated.service_host, updated.service_port
            )
        return updated

    def _save_discovered_port(self, port: int) -> None:
        self.config = self.config.model_copy(update={"service_port": port})
        if self.config_manager:
            self.config_manager.save_port(port)

    def _broadcast_connection(self, state: ConnectionState) -> None:
        self.events.emit(
            EventType.CONNECTION_CHANGED,
            status=state.status.value,
            connected=state.connected,
        )
