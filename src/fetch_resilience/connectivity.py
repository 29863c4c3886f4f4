"""
Connectivity diagnostics.

Advisory checks for internet access and backend reachability. Nothing here
blocks a request on its own; the pipeline only consults the probe for its
pre-flight warning and the explicit fail-fast helpers.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence

import httpx

from .types import (
    ConnectionQualityResult,
    ConnectivitySnapshot,
    QualityTier,
    ServerCheckResult,
)


logger = logging.getLogger("fetch_resilience.connectivity")


DEFAULT_INTERNET_ENDPOINTS = [
    "https://www.google.com/generate_204",
    "https://www.cloudflare.com/cdn-cgi/trace",
]

DEFAULT_HEALTH_PATH = "/health"
DEFAULT_INTERNET_TIMEOUT_SECONDS = 5.0
DEFAULT_SERVER_TIMEOUT_SECONDS = 15.0
DEFAULT_PING_TIMEOUT_SECONDS = 3.0

# Latency tier upper bounds (milliseconds)
EXCELLENT_LATENCY_MS = 100
GOOD_LATENCY_MS = 300
FAIR_LATENCY_MS = 1000


def latency_tier(latency_ms: float) -> QualityTier:
    """Map a single latency measurement to a quality tier."""
    if latency_ms < EXCELLENT_LATENCY_MS:
        return QualityTier.EXCELLENT
    if latency_ms < GOOD_LATENCY_MS:
        return QualityTier.GOOD
    if latency_ms < FAIR_LATENCY_MS:
        return QualityTier.FAIR
    return QualityTier.POOR


def _quality_from_samples(average_latency_ms: float, success_rate: float) -> QualityTier:
    if average_latency_ms < EXCELLENT_LATENCY_MS and success_rate == 100:
        return QualityTier.EXCELLENT
    if average_latency_ms < GOOD_LATENCY_MS and success_rate >= 66:
        return QualityTier.GOOD
    if average_latency_ms < FAIR_LATENCY_MS and success_rate >= 33:
        return QualityTier.FAIR
    return QualityTier.POOR


_TIER_RECOMMENDATIONS = {
    QualityTier.EXCELLENT: ["Excellent connection quality"],
    QualityTier.GOOD: ["Good connection quality"],
    QualityTier.FAIR: [
        "Fair connection quality - requests may be slower",
        "Consider moving closer to your WiFi router",
    ],
    QualityTier.POOR: [
        "Poor connection quality - expect delays",
        "Check your internet connection",
        "Try switching to a different network",
    ],
}


class ConnectivityProbe:
    """
    Checks internet access and backend reachability over httpx.

    Every call builds a fresh result; nothing is cached between calls.

    Example:
        probe = ConnectivityProbe(backend_url="https://api.example.com")
        snapshot = await probe.snapshot()
        print(snapshot.quality_tier, snapshot.recommendations)
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        backend_url: Optional[str] = None,
        health_path: str = DEFAULT_HEALTH_PATH,
        internet_endpoints: Optional[Sequence[str]] = None,
        internet_timeout_seconds: float = DEFAULT_INTERNET_TIMEOUT_SECONDS,
        server_timeout_seconds: float = DEFAULT_SERVER_TIMEOUT_SECONDS,
        ping_timeout_seconds: float = DEFAULT_PING_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self.backend_url = backend_url.rstrip("/") if backend_url else None
        self.health_path = health_path
        self.internet_endpoints = list(internet_endpoints or DEFAULT_INTERNET_ENDPOINTS)
        self.internet_timeout_seconds = internet_timeout_seconds
        self.server_timeout_seconds = server_timeout_seconds
        self.ping_timeout_seconds = ping_timeout_seconds
        self._clock = clock
        self._sleep = sleep

    @property
    def health_url(self) -> Optional[str]:
        if not self.backend_url:
            return None
        return f"{self.backend_url}{self.health_path}"

    async def _head_ok(self, url: str) -> bool:
        try:
            response = await self._client.head(
                url,
                headers={"Cache-Control": "no-cache"},
                timeout=self.internet_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.debug(f"ConnectivityProbe._head_ok: {url} failed: {e!r}")
            return False
        return response.is_success

    async def check_internet(self) -> bool:
        """
        Race HEAD requests against the reliable endpoints.

        Returns True on the first 2xx answer, False when every endpoint
        failed or the shared budget ran out.
        """
        tasks = [asyncio.ensure_future(self._head_ok(url)) for url in self.internet_endpoints]
        try:
            for next_done in asyncio.as_completed(tasks, timeout=self.internet_timeout_seconds):
                if await next_done:
                    logger.debug("ConnectivityProbe.check_internet: online")
                    return True
        except asyncio.TimeoutError:
            logger.debug(
                f"ConnectivityProbe.check_internet: no answer within "
                f"{self.internet_timeout_seconds}s"
            )
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("ConnectivityProbe.check_internet: offline")
        return False

    async def check_server(self) -> ServerCheckResult:
        """
        GET the backend health endpoint.

        A non-2xx answer still counts as reachable, with the status in
        ``error``.
        """
        if not self.health_url:
            return ServerCheckResult(reachable=False, error="Backend URL not configured")

        start = self._clock()
        try:
            response = await asyncio.wait_for(
                self._client.get(
                    self.health_url,
                    headers={"Content-Type": "application/json"},
                    timeout=self.server_timeout_seconds,
                ),
                timeout=self.server_timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            latency_ms = (self._clock() - start) * 1000
            logger.warning(
                f"ConnectivityProbe.check_server: {self.health_url} timed out "
                f"after {latency_ms:.0f}ms"
            )
            return ServerCheckResult(
                reachable=False,
                latency_ms=latency_ms,
                error=(
                    "Connection timeout - server took too long to respond "
                    f"({self.server_timeout_seconds:g}s+)"
                ),
            )
        except httpx.HTTPError as e:
            latency_ms = (self._clock() - start) * 1000
            logger.warning(f"ConnectivityProbe.check_server: {self.health_url} failed: {e!r}")
            return ServerCheckResult(
                reachable=False,
                latency_ms=latency_ms,
                error=str(e) or "Failed to reach server",
            )

        latency_ms = (self._clock() - start) * 1000
        logger.debug(
            f"ConnectivityProbe.check_server: status={response.status_code}, "
            f"latency={latency_ms:.0f}ms"
        )
        if response.is_success:
            return ServerCheckResult(
                reachable=True,
                latency_ms=latency_ms,
                status_code=response.status_code,
            )
        return ServerCheckResult(
            reachable=True,
            latency_ms=latency_ms,
            status_code=response.status_code,
            error=f"Server returned status {response.status_code}",
        )

    async def snapshot(self) -> ConnectivitySnapshot:
        """Run the full diagnostic and build recommendations."""
        snapshot = ConnectivitySnapshot()

        snapshot.has_internet = await self.check_internet()
        if not snapshot.has_internet:
            snapshot.recommendations.extend([
                "No internet connection detected",
                "Check your WiFi or mobile data connection",
                "Try toggling airplane mode on and off",
            ])
            return snapshot

        server = await self.check_server()
        snapshot.server_reachable = server.reachable
        snapshot.latency_ms = server.latency_ms

        if not server.reachable:
            snapshot.recommendations.extend([
                "Cannot reach backend server",
                f"Backend URL: {self.backend_url}",
                "Verify the backend server is running",
                "Check if the URL is correct in your environment settings",
            ])
            if server.error and "timeout" in server.error.lower():
                snapshot.recommendations.extend([
                    f"Server is taking too long to respond ({self.server_timeout_seconds:g}s+)",
                    "The server might be overloaded or experiencing issues",
                ])
            return snapshot

        if snapshot.latency_ms is not None:
            snapshot.quality_tier = latency_tier(snapshot.latency_ms)
            snapshot.recommendations.extend(_TIER_RECOMMENDATIONS[snapshot.quality_tier])

        return snapshot

    async def ping_server(self) -> bool:
        """Fast liveness check: HEAD on the health endpoint."""
        if not self.health_url:
            return False
        try:
            response = await asyncio.wait_for(
                self._client.head(self.health_url, timeout=self.ping_timeout_seconds),
                timeout=self.ping_timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.HTTPError):
            return False
        return response.is_success

    async def test_connection_quality(
        self,
        attempts: int = 3,
        interval_seconds: float = 0.5,
    ) -> ConnectionQualityResult:
        """Measure latency over several health checks."""
        samples: List[float] = []
        for _ in range(attempts):
            result = await self.check_server()
            if result.reachable and result.latency_ms is not None:
                samples.append(result.latency_ms)
            await self._sleep(interval_seconds)

        success_rate = len(samples) / attempts * 100 if attempts > 0 else 0
        average = sum(samples) / len(samples) if samples else 0

        return ConnectionQualityResult(
            average_latency_ms=average,
            min_latency_ms=min(samples) if samples else 0,
            max_latency_ms=max(samples) if samples else 0,
            success_rate=success_rate,
            quality=_quality_from_samples(average, success_rate),
        )

    async def wait_for_network(
        self,
        max_wait_seconds: float = 30.0,
        check_interval_seconds: float = 2.0,
    ) -> bool:
        """Poll check_internet() until online or the wait budget is spent."""
        start = self._clock()
        while self._clock() - start < max_wait_seconds:
            if await self.check_internet():
                return True
            await self._sleep(check_interval_seconds)
        logger.warning(
            f"ConnectivityProbe.wait_for_network: still offline after {max_wait_seconds}s"
        )
        return False

    async def aclose(self) -> None:
        """Close the client if the probe created it."""
        if self._owns_client:
            await self._client.aclose()
