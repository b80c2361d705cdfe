"""
Discovery and health monitoring of the local download service.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from beatport_bridge.api.transport import ServiceTransport
from beatport_bridge.exceptions import ServiceUnreachableError
from beatport_bridge.models.config import FALLBACK_PORTS
from beatport_bridge.models.policy import ReconnectPolicy
from beatport_bridge.models.state import (
    ConnectionState,
    ConnectionStatus,
    ServiceEndpoint,
)
from beatport_bridge.utils.structured_logger import ConnectionLogger

log = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState], None]


class ServiceConnectionManager:
    """
    Owns the connection state machine for the download service.

    `check_status` probes the configured endpoint; until the first successful
    connection it also sweeps a list of fallback ports. Failed checks are
    retried by a background task with exponential backoff, and `start` adds a
    periodic watchdog check. Checks never raise: every failure ends in the
    `disconnected` state with a retry scheduled.
    """

    def __init__(
        self,
        transport: ServiceTransport,
        endpoint: ServiceEndpoint,
        fallback_ports: Optional[list[int]] = None,
        policy: Optional[ReconnectPolicy] = None,
        on_port_discovered: Optional[Callable[[int], None]] = None,
        logger: Optional[ConnectionLogger] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initializes the manager.

        Args:
            transport: HTTP transport used for health probes.
            endpoint: Initial host and port of the service.
            fallback_ports: Ports tried in order before the first success.
            policy: Retry schedule; defaults to `ReconnectPolicy()`.
            on_port_discovered: Called with the port when the sweep finds the
                service on a fallback port, so it can be persisted.
            logger: Structured logger for lifecycle events.
            clock: Returns the current epoch time in seconds.
            sleep: Awaitable delay, replaceable for deterministic scheduling.
        """
        self._transport = transport
        self._fallback_ports = list(
            FALLBACK_PORTS if fallback_ports is None else fallback_ports
        )
        self._policy = policy or ReconnectPolicy()
        self._on_port_discovered = on_port_discovered
        self._logger = logger
        self._clock = clock
        self._sleep = sleep

        self._state = ConnectionState(endpoint=endpoint)
        self._settled_status = ConnectionStatus.DISCONNECTED
        self._listeners: list[StateListener] = []
        self._retry_task: Optional[asyncio.Task] = None
        self._watchdog_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def state(self) -> ConnectionState:
        """A copy of the current connection state."""
        return self._state.model_copy(deep=True)

    @property
    def endpoint(self) -> ServiceEndpoint:
        return self._state.endpoint

    @property
    def is_connected(self) -> bool:
        return self._state.status == ConnectionStatus.CONNECTED

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """
        Registers a listener called with the new state whenever the settled
        status flips between connected and disconnected. Returns a callable
        that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> ConnectionState:
        """Runs the first check and starts the periodic health watchdog."""
        self._closed = False
        state = await self.check_status()
        if self._watchdog_task is None or self._watchdog_task.done():
            self._watchdog_task = asyncio.create_task(self._watchdog())
        return state

    async def close(self) -> None:
        """Cancels the watchdog and any pending retry."""
        self._closed = True
        tasks = [t for t in (self._watchdog_task, self._retry_task) if t]
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        await asyncio.gather(
            *(t for t in tasks if t is not current), return_exceptions=True
        )
        self._watchdog_task = None
        self._retry_task = None

    async def reconfigure(self, host: str, port: int) -> ConnectionState:
        """Points the manager at a new endpoint and checks it right away."""
        endpoint = ServiceEndpoint(host=host, port=port)
        log.info(f"Service endpoint changed to [cyan]{endpoint.base_url}[/cyan]")
        self._state = self._state.model_copy(update={"endpoint": endpoint})
        # An in-flight check notices the endpoint change and re-runs itself
        if self._state.status == ConnectionStatus.CONNECTING:
            return self.state
        return await self.check_status()

    async def check_status(self) -> ConnectionState:
        """
        Probes the service and returns the resulting state. Returns the current
        state untouched when a check is already running.
        """
        if self._state.status == ConnectionStatus.CONNECTING:
            return self.state

        endpoint = self._state.endpoint
        self._update(status=ConnectionStatus.CONNECTING, last_checked_at=self._clock())
        try:
            found = await self._probe_endpoint(endpoint)
            if found is None and self._state.last_connected_at is None:
                found = await self._sweep_fallback_ports(endpoint)

            if self._state.endpoint != endpoint:
                log.debug("Endpoint changed during check; checking again.")
                self._update(status=self._settled_status)
                return await self.check_status()

            if found is not None:
                return self._on_connected(*found)
            return self._on_failed(endpoint)
        finally:
            # A cancelled check must not leave the mutex held
            if self._state.status == ConnectionStatus.CONNECTING:
                self._update(status=self._settled_status)

    async def _probe_endpoint(
        self, endpoint: ServiceEndpoint
    ) -> Optional[tuple[ServiceEndpoint, dict[str, Any]]]:
        log.debug(f"Checking service status at {endpoint.base_url}/status")
        try:
            info = await self._transport.probe(endpoint.base_url)
        except (ServiceUnreachableError, ValueError) as e:
            log.debug(f"Service check failed: {e}")
            if self._logger:
                self._logger.check_failed(
                    endpoint.base_url, str(e), self._state.attempt_count + 1
                )
            return None
        return endpoint, info

    async def _sweep_fallback_ports(
        self, primary: ServiceEndpoint
    ) -> Optional[tuple[ServiceEndpoint, dict[str, Any]]]:
        """Tries each fallback port on the same host; first success wins."""
        for port in self._fallback_ports:
            if port == primary.port:
                continue
            log.debug(f"Trying alternate port {port}...")
            found = await self._probe_endpoint(primary.with_port(port))
            if found is None:
                continue

            log.info(f"[green]Service found on port {port}[/green]")
            if self._logger:
                self._logger.port_discovered(primary.host, port, primary.port)
            self._persist_port(port)
            return found
        return None

    def _persist_port(self, port: int) -> None:
        if not self._on_port_discovered:
            return
        try:
            self._on_port_discovered(port)
        except Exception as e:
            log.warning(f"[yellow]Could not save discovered port {port}: {e}[/yellow]")

    def _on_connected(
        self, endpoint: ServiceEndpoint, info: dict[str, Any]
    ) -> ConnectionState:
        self._update(
            status=ConnectionStatus.CONNECTED,
            endpoint=endpoint,
            attempt_count=0,
            last_connected_at=self._clock(),
            service_info=info,
        )
        self._cancel_retry()
        if self._logger and self._settled_status != ConnectionStatus.CONNECTED:
            self._logger.connected(endpoint.base_url, info)
        self._notify()
        return self.state

    def _on_failed(self, endpoint: ServiceEndpoint) -> ConnectionState:
        attempt = self._state.attempt_count + 1
        self._update(status=ConnectionStatus.DISCONNECTED, attempt_count=attempt)
        if self._logger and self._settled_status == ConnectionStatus.CONNECTED:
            self._logger.disconnected(endpoint.base_url, attempt)
        self._notify()

        delay = self._policy.retry_delay(attempt)
        self._schedule_retry(delay)
        if self._logger:
            self._logger.retry_scheduled(attempt, delay)
        return self.state

    def _update(self, **changes: Any) -> None:
        self._state = self._state.model_copy(update=changes)

    def _notify(self) -> None:
        status = self._state.status
        if status == self._settled_status:
            return
        self._settled_status = status
        log.info(f"Service status: [bold]{status.value}[/bold]")

        state = self.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                log.exception("Connection state listener failed")

    def _schedule_retry(self, delay: float) -> None:
        if self._closed:
            return
        self._cancel_retry()
        self._retry_task = asyncio.create_task(self._retry_after(delay))

    def _cancel_retry(self) -> None:
        task = self._retry_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._retry_task = None

    async def _retry_after(self, delay: float) -> None:
        await self._sleep(delay)
        # Detach before checking so a failed check can schedule the next retry
        self._retry_task = None
        await self.check_status()

    async def _watchdog(self) -> None:
        while not self._closed:
            await self._sleep(self._policy.health_check_interval)
            await self.check_status()
