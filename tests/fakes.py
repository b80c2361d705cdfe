"""
Test doubles: a virtual clock that drives every scheduled delay, and a
scripted fake of the service transport.
"""

import asyncio
import heapq
from collections import deque
from typing import Any, Optional

from beatport_bridge.exceptions import ServiceUnreachableError
from beatport_bridge.models.state import EnqueueReceipt, QueueEntry


class VirtualClock:
    """
    Replaces `time.time` and `asyncio.sleep` for the components under test.
    Sleepers only wake when the test advances the clock past their deadline.
    """

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.delays: list[float] = []
        self._sleepers: list[tuple[float, int, asyncio.Future]] = []
        self._seq = 0

    def time(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self.now + seconds, self._seq, future))
        self._seq += 1
        await future

    @property
    def pending(self) -> list[float]:
        """Deadlines of sleepers that are still waiting."""
        return sorted(w for w, _, f in self._sleepers if not f.done())

    async def settle(self, rounds: int = 50) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Moves time forward, waking sleepers in deadline order."""
        target = self.now + seconds
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            wake, _, future = heapq.heappop(self._sleepers)
            self.now = max(self.now, wake)
            if not future.done():
                future.set_result(None)
            await self.settle()
        self.now = target
        await self.settle()


class FakeTransport:
    """Scripted stand-in for `ServiceTransport`."""

    def __init__(self):
        self.healthy_ports: set[int] = set()
        self.probed: list[str] = []
        self.enqueued: list[dict[str, Any]] = []
        self.enqueue_error: Optional[Exception] = None
        self.queue_script: deque = deque()
        self.queue_default: Any = []
        self.fetch_count = 0
        self.cancelled: list[str] = []
        self.cancel_error: Optional[Exception] = None
        self.probe_error: Optional[Exception] = None
        self.probe_gate: Optional[asyncio.Event] = None
        self.closed = False
        self._next_id = 1

    async def probe(self, base_url: str) -> dict[str, Any]:
        self.probed.append(base_url)
        if self.probe_gate is not None:
            await self.probe_gate.wait()
        if self.probe_error is not None:
            raise self.probe_error
        port = int(base_url.rsplit(":", 1)[1])
        if port in self.healthy_ports:
            return {"status": "running", "version": "1.2.0"}
        raise ServiceUnreachableError(f"Connection refused: {base_url}")

    async def enqueue(
        self, base_url: str, track_id: str, quality: str, metadata: dict[str, Any]
    ) -> EnqueueReceipt:
        if self.enqueue_error is not None:
            raise self.enqueue_error
        queue_id = f"q-{self._next_id}"
        self._next_id += 1
        self.enqueued.append(
            {
                "base_url": base_url,
                "track_id": track_id,
                "quality": quality,
                "metadata": metadata,
                "queue_id": queue_id,
            }
        )
        return EnqueueReceipt(queue_id=queue_id, status="queued", position=len(self.enqueued))

    def script(self, *outcomes: Any) -> None:
        """
        Queues the results of upcoming `fetch_queue` calls. Each outcome is a
        list of QueueEntry (or dicts) or an exception to raise.
        """
        self.queue_script.extend(outcomes)

    async def fetch_queue(self, base_url: str) -> list[QueueEntry]:
        self.fetch_count += 1
        outcome = self.queue_script.popleft() if self.queue_script else self.queue_default
        if callable(outcome):
            outcome = outcome()
        if isinstance(outcome, Exception):
            raise outcome
        return [
            e if isinstance(e, QueueEntry) else QueueEntry.model_validate(e)
            for e in outcome
        ]

    async def cancel(self, base_url: str, queue_id: str) -> None:
        if self.cancel_error is not None:
            raise self.cancel_error
        self.cancelled.append(queue_id)

    async def close(self) -> None:
        self.closed = True


def entry(queue_id: str, status: str, progress: int = 0, **extra: Any) -> QueueEntry:
    return QueueEntry(id=queue_id, status=status, progress=progress, **extra)

