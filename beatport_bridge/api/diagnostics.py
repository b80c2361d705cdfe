"""
Connectivity diagnostics for the download service.

Scans candidate ports for a running service, then exercises every diagnostic
endpoint on the first port that answers and checks the CORS headers a
browser-based client would need.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp

from beatport_bridge.models.state import ServiceEndpoint

from .transport import CLIENT_ORIGIN, ServiceTransport

log = logging.getLogger(__name__)

ENDPOINTS = ("status", "echo", "test")

CORS_HEADERS = (
    "Access-Control-Allow-Origin",
    "Access-Control-Allow-Methods",
    "Access-Control-Allow-Headers",
    "Access-Control-Allow-Credentials",
)


@dataclass
class EndpointCheck:
    """Outcome of exercising one endpoint on one port."""

    port: int
    endpoint: str
    success: bool
    status_code: Optional[int] = None
    response_ms: Optional[int] = None
    cors_headers: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    data: Any = None

    @property
    def missing_cors_headers(self) -> list[str]:
        return [h for h in CORS_HEADERS if h not in self.cors_headers]

    @property
    def origin_allowed(self) -> bool:
        origin = self.cors_headers.get("Access-Control-Allow-Origin")
        return origin in ("*", CLIENT_ORIGIN)

    @property
    def cors_ok(self) -> bool:
        return not self.missing_cors_headers and self.origin_allowed


@dataclass
class DiagnosticsReport:
    """Aggregated result of a connectivity scan."""

    host: str
    scanned_ports: list[int]
    working_port: Optional[int] = None
    checks: list[EndpointCheck] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for c in self.checks if c.success)

    @property
    def all_passed(self) -> bool:
        return bool(self.checks) and self.passed == len(self.checks)

    @property
    def suggested_endpoint(self) -> Optional[ServiceEndpoint]:
        """Endpoint to configure once every diagnostic endpoint works."""
        if self.working_port is None or not self.all_passed:
            return None
        return ServiceEndpoint(host=self.host, port=self.working_port)


async def check_endpoint(
    transport: ServiceTransport, host: str, port: int, endpoint: str
) -> EndpointCheck:
    """Exercises a single diagnostic endpoint. Never raises."""
    session = await transport.get_session()
    url = f"http://{host}:{port}/{endpoint}"
    method = "POST" if endpoint == "test" else "GET"
    body = None
    if method == "POST":
        body = {
            "test": True,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "client": CLIENT_ORIGIN,
        }

    start_time = time.monotonic()
    try:
        async with session.request(
            method,
            url,
            params={"_": str(int(time.time() * 1000))},
            json=body,
            headers={
                "Content-Type": "application/json",
                "Origin": CLIENT_ORIGIN,
                "X-Test-Header": "Beatport-Bridge-Test",
            },
        ) as r:
            response_ms = round((time.monotonic() - start_time) * 1000)
            cors = {h: r.headers[h] for h in CORS_HEADERS if h in r.headers}
            if r.status < 200 or r.status >= 300:
                return EndpointCheck(
                    port=port,
                    endpoint=endpoint,
                    success=False,
                    status_code=r.status,
                    response_ms=response_ms,
                    cors_headers=cors,
                    error=f"HTTP error! Status: {r.status}",
                )
            data = await r.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        log.debug(f"Endpoint {url} failed: {e}")
        return EndpointCheck(
            port=port,
            endpoint=endpoint,
            success=False,
            error=str(e) or type(e).__name__,
        )

    return EndpointCheck(
        port=port,
        endpoint=endpoint,
        success=True,
        status_code=r.status,
        response_ms=response_ms,
        cors_headers=cors,
        data=data,
    )


async def find_working_port(
    transport: ServiceTransport, host: str, ports: list[int]
) -> Optional[int]:
    """Returns the first port whose status endpoint answers, if any."""
    for port in ports:
        log.debug(f"Testing port {port}...")
        result = await check_endpoint(transport, host, port, "status")
        if result.success:
            log.info(f"[green]Service found on port {port}[/green]")
            return port
        log.debug(f"Port {port} is not available: {result.error}")
    return None


async def run_diagnostics(
    transport: ServiceTransport, host: str, ports: list[int]
) -> DiagnosticsReport:
    """Finds a working port and tests every diagnostic endpoint on it."""
    report = DiagnosticsReport(host=host, scanned_ports=list(ports))
    report.working_port = await find_working_port(transport, host, ports)
    if report.working_port is None:
        return report

    for endpoint in ENDPOINTS:
        report.checks.append(
            await check_endpoint(transport, host, report.working_port, endpoint)
        )
    return report
