"""Process-wide usage counters surfaced on ``/stats``."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass

from screenshot_api import metrics


@dataclass(frozen=True, slots=True)
class UsageStats:
    """Point-in-time copy of the counters."""

    total_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    errors: int = 0
    uploads: int = 0
    upload_failures: int = 0
    coalesced: int = 0

    @property
    def hit_rate(self) -> float:
        """Cache hits as a percentage of total requests."""

        if self.total_requests == 0:
            return 0.0
        return self.cache_hits / self.total_requests * 100

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class StatsCollector:
    """Increment-only counters, safe to bump from any thread or task."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = UsageStats().to_dict()

    def _bump(self, field: str) -> None:
        with self._lock:
            self._counts[field] += 1

    def record_request(self) -> None:
        self._bump("total_requests")
        metrics.REQUESTS_TOTAL.inc()

    def record_hit(self) -> None:
        self._bump("cache_hits")
        metrics.CACHE_HITS_TOTAL.inc()

    def record_miss(self) -> None:
        self._bump("cache_misses")
        metrics.CACHE_MISSES_TOTAL.inc()

    def record_coalesced(self) -> None:
        self._bump("coalesced")
        metrics.COALESCED_TOTAL.inc()

    def record_error(self) -> None:
        self._bump("errors")
        metrics.ERRORS_TOTAL.inc()

    def record_upload(self) -> None:
        self._bump("uploads")
        metrics.UPLOADS_TOTAL.labels(outcome="success").inc()

    def record_upload_failure(self) -> None:
        self._bump("upload_failures")
        metrics.UPLOADS_TOTAL.labels(outcome="failure").inc()

    def snapshot(self) -> UsageStats:
        with self._lock:
            return UsageStats(**self._counts)
