"""
Async HTTP client wrapper for upstream feed requests.
Includes retry with exponential backoff, timeout management, and metrics collection.
"""
from __future__ import annotations

import asyncio
import random
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import FEED_LATENCY, FEED_REQUESTS

logger = get_logger(__name__)


class FeedHTTPClient:
    """
    Async HTTP client for one upstream feed.
    Retries 429 / 5xx / timeouts with capped exponential backoff plus jitter.
    """

    def __init__(
        self,
        feed_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        base_delay_s: float | None = None,
        max_delay_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._feed = feed_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.feed_request_timeout_s
        self._max_retries = max_retries if max_retries is not None else settings.feed_max_retries
        self._base_delay = base_delay_s if base_delay_s is not None else settings.feed_retry_base_delay_s
        self._max_delay = max_delay_s if max_delay_s is not None else settings.feed_retry_max_delay_s
        self._default_headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Accept": "application/json", **self._default_headers},
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _backoff(self, attempt: int, retry_after: str | None = None) -> float:
        if retry_after:
            try:
                return min(float(retry_after), self._max_delay)
            except ValueError:
                pass
        delay = min(self._base_delay * (2 ** attempt), self._max_delay)
        return delay + random.uniform(0, self._base_delay / 4)

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET `path` and decode the JSON body.

        Raises:
            httpx.HTTPStatusError: On non-retryable HTTP errors or once retries are exhausted.
            httpx.TransportError: If every attempt failed at the transport level.
        """
        if not self._client:
            raise RuntimeError("FeedHTTPClient not started. Call start() first.")

        last_exc: Optional[Exception] = None
        attempts = self._max_retries + 1

        for attempt in range(attempts):
            start_time = time.perf_counter()
            status = "error"
            try:
                resp = await self._client.get(path, params=params)
                status = str(resp.status_code)
                retryable = resp.status_code == 429 or resp.status_code >= 500
                if retryable and attempt < attempts - 1:
                    delay = self._backoff(attempt, resp.headers.get("Retry-After"))
                    logger.warning(
                        "feed_retryable_status",
                        feed=self._feed,
                        path=path,
                        status=resp.status_code,
                        attempt=attempt + 1,
                        retry_in_s=round(delay, 2),
                    )
                    await asyncio.sleep(delay)
                    continue
                resp.raise_for_status()
                logger.debug(
                    "feed_request_success",
                    feed=self._feed,
                    path=path,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return resp.json()

            except httpx.TimeoutException as exc:
                status = "timeout"
                last_exc = exc
                logger.warning("feed_timeout", feed=self._feed, path=path, attempt=attempt + 1)
                if attempt < attempts - 1:
                    await asyncio.sleep(self._backoff(attempt))

            except httpx.HTTPStatusError:
                raise

            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning(
                    "feed_transport_error",
                    feed=self._feed,
                    path=path,
                    error=str(exc),
                    attempt=attempt + 1,
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(self._backoff(attempt))

            finally:
                FEED_REQUESTS.labels(feed=self._feed, endpoint=path, status=status).inc()
                FEED_LATENCY.labels(feed=self._feed, endpoint=path).observe(
                    time.perf_counter() - start_time
                )

        if last_exc:
            raise last_exc
        raise RuntimeError(f"Feed request failed after {attempts} attempts")
