"""
Tests for ServiceConnectionManager: probing, fallback discovery, backoff and
state-change notifications.
"""

import asyncio

import pytest

from beatport_bridge.core.connection import ServiceConnectionManager
from beatport_bridge.models.state import ConnectionStatus, ServiceEndpoint


def make_manager(transport, clock, **kwargs):
    return ServiceConnectionManager(
        transport,
        ServiceEndpoint(host="localhost", port=1337),
        clock=clock.time,
        sleep=clock.sleep,
        **kwargs,
    )


class TestCheckStatus:
    @pytest.mark.asyncio
    async def test_connects_on_primary_port(self, transport, clock):
        transport.healthy_ports = {1337}
        manager = make_manager(transport, clock)
        changes = []
        manager.on_state_change(changes.append)

        state = await manager.check_status()

        assert state.status == ConnectionStatus.CONNECTED
        assert state.attempt_count == 0
        assert state.last_connected_at == clock.now
        assert state.last_checked_at == clock.now
        assert state.service_info["version"] == "1.2.0"
        assert transport.probed == ["http://localhost:1337"]
        assert [s.status for s in changes] == [ConnectionStatus.CONNECTED]
        assert clock.pending == []

    @pytest.mark.asyncio
    async def test_concurrent_check_does_not_probe_twice(self, transport, clock):
        transport.healthy_ports = {1337}
        transport.probe_gate = asyncio.Event()
        manager = make_manager(transport, clock)

        first = asyncio.create_task(manager.check_status())
        await clock.settle()
        second = await manager.check_status()

        assert second.status == ConnectionStatus.CONNECTING
        assert len(transport.probed) == 1

        transport.probe_gate.set()
        assert (await first).status == ConnectionStatus.CONNECTED
        assert len(transport.probed) == 1

    @pytest.mark.asyncio
    async def test_cancelled_check_releases_the_mutex(self, transport, clock):
        transport.probe_gate = asyncio.Event()
        manager = make_manager(transport, clock)

        task = asyncio.create_task(manager.check_status())
        await clock.settle()
        assert manager.state.status == ConnectionStatus.CONNECTING

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        assert manager.state.status == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_state_is_a_copy(self, transport, clock):
        transport.healthy_ports = {1337}
        manager = make_manager(transport, clock)
        state = await manager.check_status()
        state.service_info["version"] = "tampered"
        assert manager.state.service_info["version"] == "1.2.0"


class TestFallbackPorts:
    @pytest.mark.asyncio
    async def test_sweeps_fallback_ports_in_order(self, transport, clock):
        transport.healthy_ports = {1338}
        discovered = []
        manager = make_manager(transport, clock, on_port_discovered=discovered.append)

        state = await manager.check_status()

        assert transport.probed == [
            "http://localhost:1337",
            "http://localhost:8337",
            "http://localhost:1338",
        ]
        assert state.status == ConnectionStatus.CONNECTED
        assert state.endpoint.port == 1338
        assert manager.endpoint.base_url == "http://localhost:1338"
        assert discovered == [1338]

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_break_the_check(self, transport, clock):
        transport.healthy_ports = {7777}

        def broken(port):
            raise OSError("read-only")

        manager = make_manager(transport, clock, on_port_discovered=broken)
        state = await manager.check_status()
        assert state.status == ConnectionStatus.CONNECTED
        assert state.endpoint.port == 7777

    @pytest.mark.asyncio
    async def test_no_sweep_after_a_successful_connection(self, transport, clock):
        transport.healthy_ports = {1337, 8337}
        manager = make_manager(transport, clock)
        changes = []
        manager.on_state_change(changes.append)
        await manager.check_status()

        transport.healthy_ports = {8337}
        transport.probed.clear()
        state = await manager.check_status()

        assert transport.probed == ["http://localhost:1337"]
        assert state.status == ConnectionStatus.DISCONNECTED
        assert state.endpoint.port == 1337
        assert state.last_connected_at is not None
        assert [s.status for s in changes] == [
            ConnectionStatus.CONNECTED,
            ConnectionStatus.DISCONNECTED,
        ]

    @pytest.mark.asyncio
    async def test_primary_port_is_not_probed_twice(self, transport, clock):
        manager = make_manager(transport, clock, fallback_ports=[1337, 1338])
        await manager.check_status()
        assert transport.probed == ["http://localhost:1337", "http://localhost:1338"]


class TestBackoff:
    @pytest.mark.asyncio
    async def test_failed_check_schedules_retry(self, transport, clock):
        manager = make_manager(transport, clock)
        changes = []
        manager.on_state_change(changes.append)

        state = await manager.check_status()
        await clock.settle()

        assert state.status == ConnectionStatus.DISCONNECTED
        assert state.attempt_count == 1
        assert manager.retry_pending
        assert clock.pending == [clock.now + 2.0]
        # Already disconnected: no transition to report
        assert changes == []

    @pytest.mark.asyncio
    async def test_retry_schedule_backs_off_then_slows_down(self, transport, clock):
        manager = make_manager(transport, clock, fallback_ports=[])
        await manager.check_status()

        attempts = [manager.state.attempt_count]
        for delay in (2.0, 4.0, 8.0, 16.0, 120.0):
            await clock.advance(delay)
            attempts.append(manager.state.attempt_count)

        assert clock.delays == [2.0, 4.0, 8.0, 16.0, 120.0, 120.0]
        assert attempts == [1, 2, 3, 4, 5, 6]
        assert len(transport.probed) == 6
        await manager.close()

    @pytest.mark.asyncio
    async def test_success_resets_attempts_and_stops_retrying(self, transport, clock):
        manager = make_manager(transport, clock, fallback_ports=[])
        changes = []
        manager.on_state_change(changes.append)
        await manager.check_status()
        await clock.advance(2.0)
        await clock.advance(4.0)
        assert manager.state.attempt_count == 3

        transport.healthy_ports = {1337}
        await clock.advance(8.0)

        state = manager.state
        assert state.status == ConnectionStatus.CONNECTED
        assert state.attempt_count == 0
        assert not manager.retry_pending
        assert clock.pending == []
        assert [s.status for s in changes] == [ConnectionStatus.CONNECTED]

    @pytest.mark.asyncio
    async def test_undecodable_answer_keeps_retrying(self, transport, clock):
        transport.healthy_ports = {1337}
        transport.probe_error = UnicodeDecodeError(
            "utf-8", b"\xff", 0, 1, "invalid start byte"
        )
        manager = make_manager(transport, clock, fallback_ports=[])

        state = await manager.check_status()
        assert state.status == ConnectionStatus.DISCONNECTED

        await clock.advance(2.0)
        assert manager.state.attempt_count == 2
        assert manager.retry_pending

        transport.probe_error = None
        await clock.advance(4.0)
        assert manager.is_connected
        assert clock.delays == [2.0, 4.0]
        await manager.close()

    @pytest.mark.asyncio
    async def test_manual_check_replaces_pending_retry(self, transport, clock):
        manager = make_manager(transport, clock, fallback_ports=[])
        await manager.check_status()
        await manager.check_status()
        await clock.settle()

        assert manager.state.attempt_count == 2
        assert clock.pending == [clock.now + 4.0]

    @pytest.mark.asyncio
    async def test_close_cancels_pending_retry(self, transport, clock):
        manager = make_manager(transport, clock)
        await manager.check_status()
        assert manager.retry_pending

        await manager.close()

        assert not manager.retry_pending
        assert clock.pending == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_watchdog_checks_periodically(self, transport, clock):
        transport.healthy_ports = {1337}
        manager = make_manager(transport, clock)
        await manager.start()
        assert len(transport.probed) == 1

        await clock.advance(30.0)
        await clock.advance(30.0)
        assert len(transport.probed) == 3

        await manager.close()
        assert clock.pending == []

    @pytest.mark.asyncio
    async def test_watchdog_detects_lost_service(self, transport, clock):
        transport.healthy_ports = {1337}
        manager = make_manager(transport, clock)
        changes = []
        manager.on_state_change(changes.append)
        await manager.start()

        transport.healthy_ports = set()
        await clock.advance(30.0)

        assert manager.state.status == ConnectionStatus.DISCONNECTED
        assert manager.retry_pending
        assert [s.status for s in changes][-1] == ConnectionStatus.DISCONNECTED
        await manager.close()

    @pytest.mark.asyncio
    async def test_reconfigure_checks_new_endpoint(self, transport, clock):
        transport.healthy_ports = {9000}
        manager = make_manager(transport, clock, fallback_ports=[])

        state = await manager.reconfigure("127.0.0.1", 9000)

        assert transport.probed == ["http://127.0.0.1:9000"]
        assert state.status == ConnectionStatus.CONNECTED
        assert state.endpoint == ServiceEndpoint(host="127.0.0.1", port=9000)

    @pytest.mark.asyncio
    async def test_reconfigure_during_check_rechecks(self, transport, clock):
        transport.healthy_ports = {9000}
        transport.probe_gate = asyncio.Event()
        manager = make_manager(transport, clock, fallback_ports=[])

        first = asyncio.create_task(manager.check_status())
        await clock.settle()
        pending = await manager.reconfigure("localhost", 9000)
        assert pending.status == ConnectionStatus.CONNECTING

        transport.probe_gate.set()
        state = await first

        assert state.status == ConnectionStatus.CONNECTED
        assert state.endpoint.port == 9000
        assert transport.probed[-1] == "http://localhost:9000"

    @pytest.mark.asyncio
    async def test_unsubscribed_listener_is_not_called(self, transport, clock):
        transport.healthy_ports = {1337}
        manager = make_manager(transport, clock)
        changes = []
        unsubscribe = manager.on_state_change(changes.append)
        unsubscribe()

        await manager.check_status()
        assert changes == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_check(self, transport, clock):
        transport.healthy_ports = {1337}
        manager = make_manager(transport, clock)

        def broken(state):
            raise RuntimeError("sink is down")

        received = []
        manager.on_state_change(broken)
        manager.on_state_change(received.append)

        state = await manager.check_status()
        assert state.status == ConnectionStatus.CONNECTED
        assert len(received) == 1
