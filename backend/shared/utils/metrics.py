"""
Metrics for the tracker.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
FEED_REQUESTS = Counter(
    "lt_feed_requests_total",
    "Total upstream feed HTTP requests",
    ["feed", "endpoint", "status"],
)
DATA_ISSUES = Counter(
    "lt_data_issues_total",
    "Data-quality issues recorded while tracking",
    ["severity", "step"],
)
CACHE_LOOKUPS = Counter(
    "lt_cache_lookups_total",
    "Response cache lookups",
    ["backend", "result"],
)
BASELINES_CREATED = Counter(
    "lt_baselines_created_total",
    "Fallback baseline prices persisted from a live offer",
)

# ── Histograms ──────────────────────────────────────────────────────────
FEED_LATENCY = Histogram(
    "lt_feed_latency_seconds",
    "Upstream feed request latency in seconds",
    ["feed", "endpoint"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
TRACKING_BUILD = Histogram(
    "lt_tracking_build_seconds",
    "Time to assemble one tracking response (cache misses only)",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server if enabled."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
