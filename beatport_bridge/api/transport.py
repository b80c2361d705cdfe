"""
Async HTTP transport for the local download service.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import ValidationError

from beatport_bridge import __version__
from beatport_bridge.exceptions import (
    CancelNotSupportedError,
    RemoteRejectedError,
    ServiceUnreachableError,
)
from beatport_bridge.models.state import EnqueueReceipt, QueueEntry

log = logging.getLogger(__name__)

CLIENT_ORIGIN = "app://beatport-bridge"

# Answers that mean the service has no cancellation endpoint
CANCEL_UNSUPPORTED_STATUSES = (404, 405, 501)


class ServiceTransport:
    """
    Thin async client for the download service's HTTP surface.

    Every method takes the base URL explicitly so the connection manager can
    probe candidate ports without mutating shared state. Network failures and
    unusable bodies surface as `ServiceUnreachableError`; a rejected
    submission surfaces as `RemoteRejectedError`.
    """

    def __init__(self, timeout: float = 30.0, connect_timeout: float = 5.0):
        """
        Initializes the transport.

        Args:
            timeout: Total time budget for a single request, in seconds.
            connect_timeout: Time budget for establishing the TCP connection.
        """
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "User-Agent": f"beatport-bridge/{__version__}",
                    "Accept": "application/json",
                },
                timeout=aiohttp.ClientTimeout(
                    total=self.timeout, connect=self.connect_timeout
                ),
            )
        return self._session

    async def get_session(self) -> aiohttp.ClientSession:
        """Returns the shared session, creating it if needed."""
        return await self._initialize_session()

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    @staticmethod
    def _cache_buster() -> Dict[str, str]:
        return {"_": str(int(time.time() * 1000))}

    async def _get_json(
        self, url: str, *, params: Optional[Dict[str, str]] = None, **kwargs: Any
    ) -> Any:
        session = await self._initialize_session()
        try:
            async with session.get(url, params=params, **kwargs) as r:
                if r.status < 200 or r.status >= 300:
                    raise ServiceUnreachableError(
                        f"Service responded with status {r.status} for {url}"
                    )
                return await r.json(content_type=None)
        except ServiceUnreachableError:
            raise
        # ValueError covers bodies that are not JSON or not valid UTF-8
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ServiceUnreachableError(f"Request to {url} failed: {e}") from e

    async def probe(self, base_url: str) -> Dict[str, Any]:
        """
        Health-checks the service at `base_url`.

        Returns the decoded status body. Raises `ServiceUnreachableError` unless
        the service answers 2xx with a JSON object whose status is "running".
        """
        data = await self._get_json(
            f"{base_url}/status",
            params=self._cache_buster(),
            headers={
                "Content-Type": "application/json",
                "Origin": CLIENT_ORIGIN,
                "Cache-Control": "no-cache",
                "Pragma": "no-cache",
            },
        )
        if not isinstance(data, dict):
            raise ServiceUnreachableError(
                f"Malformed status body from {base_url}: {data!r}"
            )
        if data.get("status") != "running":
            raise ServiceUnreachableError(
                f"Service at {base_url} reported status {data.get('status')!r}"
            )
        return data

    async def enqueue(
        self,
        base_url: str,
        track_id: str,
        quality: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EnqueueReceipt:
        """Submits a track for download and returns the service's receipt."""
        session = await self._initialize_session()
        url = f"{base_url}/download/{track_id}"
        try:
            async with session.post(
                url,
                json={"quality": quality, "metadata": metadata or {}},
                headers={"Content-Type": "application/json"},
            ) as r:
                if r.status < 200 or r.status >= 300:
                    raise RemoteRejectedError(r.status, await r.text(errors="replace"))
                data = await r.json(content_type=None)
        except RemoteRejectedError:
            raise
        # ValueError covers bodies that are not JSON or not valid UTF-8
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ServiceUnreachableError(f"Request to {url} failed: {e}") from e

        if not isinstance(data, dict) or data.get("queueId") is None:
            raise ServiceUnreachableError(
                f"Malformed submission response from {url}: {data!r}"
            )
        try:
            return EnqueueReceipt.model_validate(data)
        except ValidationError as e:
            raise ServiceUnreachableError(
                f"Malformed submission response from {url}: {data!r}"
            ) from e

    async def fetch_queue(self, base_url: str) -> List[QueueEntry]:
        """Fetches the service's full queue listing."""
        data = await self._get_json(
            f"{base_url}/queue", headers={"Content-Type": "application/json"}
        )
        if not isinstance(data, dict):
            raise ServiceUnreachableError(
                f"Malformed queue body from {base_url}: {data!r}"
            )

        items = data.get("items") or []
        if not isinstance(items, list):
            raise ServiceUnreachableError(
                f"Malformed queue listing from {base_url}: {items!r}"
            )

        entries = []
        for item in items:
            if not isinstance(item, dict) or item.get("id") is None:
                log.debug(f"Skipping malformed queue row: {item!r}")
                continue
            try:
                entries.append(QueueEntry.model_validate(item))
            except ValidationError:
                log.debug(f"Skipping malformed queue row: {item!r}")
        return entries

    async def cancel(self, base_url: str, queue_id: str) -> None:
        """
        Asks the service to drop a queued job.

        Raises `CancelNotSupportedError` when the service has no such endpoint.
        """
        session = await self._initialize_session()
        url = f"{base_url}/queue/{queue_id}"
        try:
            async with session.delete(url) as r:
                if r.status in CANCEL_UNSUPPORTED_STATUSES:
                    raise CancelNotSupportedError(
                        f"Service does not support cancellation ({r.status})."
                    )
                if r.status < 200 or r.status >= 300:
                    raise RemoteRejectedError(r.status, await r.text(errors="replace"))
        except (CancelNotSupportedError, RemoteRejectedError):
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ServiceUnreachableError(f"Request to {url} failed: {e}") from e
