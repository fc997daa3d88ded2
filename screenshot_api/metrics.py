"""Prometheus collectors for capture, cache, and retention activity."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUESTS_TOTAL = Counter(
    "screenshot_requests_total",
    "Screenshot requests received by the API",
)
CACHE_HITS_TOTAL = Counter(
    "screenshot_cache_hits_total",
    "Requests served from an existing cache entry",
)
CACHE_MISSES_TOTAL = Counter(
    "screenshot_cache_misses_total",
    "Requests that triggered a render",
)
COALESCED_TOTAL = Counter(
    "screenshot_coalesced_total",
    "Requests that joined a capture already in flight for the same fingerprint",
)
ERRORS_TOTAL = Counter(
    "screenshot_errors_total",
    "Requests that failed with a server-side error",
)
UPLOADS_TOTAL = Counter(
    "screenshot_uploads_total",
    "Artifacts uploaded to the object store",
    labelnames=("outcome",),
)
RENDER_DURATION_SECONDS = Histogram(
    "screenshot_render_duration_seconds",
    "Time spent rendering a page in the browser",
    buckets=(0.5, 1, 2, 5, 10, 20, 30, 60),
)
ENCODE_DURATION_SECONDS = Histogram(
    "screenshot_encode_duration_seconds",
    "Time spent encoding a raw capture",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)
RENDERS_IN_FLIGHT = Gauge(
    "screenshot_renders_in_flight",
    "Distinct fingerprints currently being captured",
)
RETENTION_DELETED_TOTAL = Counter(
    "screenshot_retention_deleted_total",
    "Cache entries removed by retention sweeps",
)
RETENTION_FREED_BYTES_TOTAL = Counter(
    "screenshot_retention_freed_bytes_total",
    "Bytes reclaimed by retention sweeps",
)


def observe_render(seconds: float) -> None:
    RENDER_DURATION_SECONDS.observe(max(0.0, seconds))


def observe_encode(seconds: float) -> None:
    ENCODE_DURATION_SECONDS.observe(max(0.0, seconds))


def record_sweep(deleted: int, freed_bytes: int) -> None:
    if deleted:
        RETENTION_DELETED_TOTAL.inc(deleted)
    if freed_bytes:
        RETENTION_FREED_BYTES_TOTAL.inc(freed_bytes)
