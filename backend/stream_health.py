"""
Stream Health Checks

Probes stream URLs over HTTP and folds the outcomes into stored stream
records:

    HLS (.m3u8)  GET, healthy when 2xx and the body or content type is a playlist
    other        HEAD, healthy when 2xx

Batch probes run with bounded fan-out (asyncio.Semaphore). Results are
applied to the store one at a time in completion order; for a single stream
the result with the latest checked_at wins.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import httpx

from catalog_schema import MediaStream, StreamHealthStatus, utcnow
from library_store import LibraryStore

logger = logging.getLogger(__name__)

DEFAULT_DEAD_THRESHOLD = 3
DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT = 10.0

_PLAYLIST_MARKERS = ("#EXTM3U", "#EXT-X-")


@dataclass
class HealthCheckResult:
    stream_id: str
    url: str
    is_healthy: bool
    status_code: Optional[int] = None
    response_time: Optional[float] = None
    error: Optional[str] = None
    checked_at: datetime = field(default_factory=utcnow)


def determine_health_status(
    is_healthy: bool,
    current_failure_count: int,
    dead_threshold: int = DEFAULT_DEAD_THRESHOLD,
) -> tuple[StreamHealthStatus, int]:
    """
    Threshold rule: success resets to (ok, 0); a failure increments the
    count and reports flaky below the threshold, dead at or above it.
    """
    if is_healthy:
        return StreamHealthStatus.OK, 0
    failures = current_failure_count + 1
    if failures >= dead_threshold:
        return StreamHealthStatus.DEAD, failures
    return StreamHealthStatus.FLAKY, failures


def _request_headers(stream: MediaStream) -> dict:
    headers = {}
    if stream.user_agent:
        headers["User-Agent"] = stream.user_agent
    if stream.referrer:
        headers["Referer"] = stream.referrer
    return headers


def _looks_like_playlist(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "").lower()
    if "mpegurl" in content_type:
        return True
    text = response.content.decode("utf-8", errors="ignore")
    return any(marker in text for marker in _PLAYLIST_MARKERS)


class StreamHealthChecker:
    """
    Usage:
        checker = StreamHealthChecker(timeout=10, max_concurrency=5)
        results = await checker.check_batch(streams)
        await apply_health_results(store, results)
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, max_concurrency: int = DEFAULT_CONCURRENCY):
        self.timeout = timeout
        self.max_concurrency = max(1, max_concurrency)

    async def check(self, stream: MediaStream, client: Optional[httpx.AsyncClient] = None) -> HealthCheckResult:
        """Probe one stream. Never raises for transport failures or malformed URLs."""
        if client is None:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as own_client:
                return await self._probe(stream, own_client)
        return await self._probe(stream, client)

    async def _probe(self, stream: MediaStream, client: httpx.AsyncClient) -> HealthCheckResult:
        start = time.perf_counter()
        headers = _request_headers(stream)
        try:
            if stream.is_hls:
                response = await client.get(stream.url, headers=headers)
            else:
                response = await client.head(stream.url, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("[HEALTH] Stream %s unreachable: %s", stream.id, e)
            return HealthCheckResult(
                stream_id=stream.id,
                url=stream.url,
                is_healthy=False,
                response_time=time.perf_counter() - start,
                error=str(e) or type(e).__name__,
            )

        elapsed = time.perf_counter() - start
        ok_status = response.is_success
        error = None
        healthy = ok_status
        if ok_status and stream.is_hls and not _looks_like_playlist(response):
            healthy = False
            error = "Not a valid HLS playlist"
        elif not ok_status:
            error = f"HTTP {response.status_code}"

        return HealthCheckResult(
            stream_id=stream.id,
            url=stream.url,
            is_healthy=healthy,
            status_code=response.status_code,
            response_time=elapsed,
            error=error,
        )

    async def check_batch(self, streams: list[MediaStream]) -> list[HealthCheckResult]:
        """Probe many streams, at most max_concurrency at once; results in completion order."""
        if not streams:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)
        logger.info("[HEALTH] Checking %s streams (concurrency=%s)", len(streams), self.max_concurrency)

        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:

            async def bounded(stream: MediaStream) -> HealthCheckResult:
                async with semaphore:
                    return await self._probe(stream, client)

            results = []
            for finished in asyncio.as_completed([bounded(s) for s in streams]):
                results.append(await finished)

        healthy = sum(1 for r in results if r.is_healthy)
        logger.info("[HEALTH] %s/%s streams healthy", healthy, len(results))
        return results


async def apply_health_results(
    store: LibraryStore,
    results: list[HealthCheckResult],
    dead_threshold: int = DEFAULT_DEAD_THRESHOLD,
) -> int:
    """
    Fold probe results into stored streams, one at a time.

    Results are applied oldest-first by checked_at, and a result older than
    the stream's stored last_check_at is skipped. Returns how many were applied.
    """
    applied = 0
    for result in sorted(results, key=lambda r: r.checked_at):
        stream = await store.fetch_stream(result.stream_id)
        if stream is None:
            logger.debug("[HEALTH] Skipping result for missing stream %s", result.stream_id)
            continue
        if stream.last_check_at is not None and result.checked_at < stream.last_check_at:
            logger.debug("[HEALTH] Skipping stale result for stream %s", result.stream_id)
            continue

        status, failures = determine_health_status(result.is_healthy, stream.failure_count, dead_threshold)
        await store.update_stream_health(result.stream_id, status, failures, result.checked_at)
        applied += 1

        if status != stream.health_status:
            logger.info(
                "[HEALTH] Stream %s: %s -> %s (failures=%s)",
                result.stream_id, stream.health_status.value, status.value, failures,
            )
    return applied
