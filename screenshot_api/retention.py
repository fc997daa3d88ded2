"""Age- and size-bounded retention for the screenshot cache."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from screenshot_api import metrics
from screenshot_api.cache import FileCacheStore
from screenshot_api.settings import RetentionSettings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SweepResult:
    deleted: int
    freed_bytes: int

    @property
    def freed_mb(self) -> float:
        return self.freed_bytes / (1024 * 1024)


class RetentionManager:
    """Deletes cache entries that are too old or that push storage over budget.

    A sweep walks entries oldest first. An entry goes when its age exceeds
    ``max_age_seconds`` or while the running total is above
    ``max_storage_bytes``; the total shrinks after each deletion, so the
    size rule stops as soon as the cache fits.
    """

    def __init__(
        self,
        cache: FileCacheStore,
        *,
        max_age_seconds: float,
        max_storage_bytes: int,
        interval_seconds: float = 3600,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache
        self.max_age_seconds = max_age_seconds
        self.max_storage_bytes = max_storage_bytes
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._shutdown = False

    @classmethod
    def from_settings(cls, cache: FileCacheStore, settings: RetentionSettings) -> RetentionManager:
        return cls(
            cache,
            max_age_seconds=settings.max_file_age_seconds,
            max_storage_bytes=settings.max_storage_bytes,
            interval_seconds=settings.interval_seconds,
            enabled=settings.enabled,
        )

    def sweep(self) -> SweepResult:
        """Run one retention pass and report what was removed."""

        now = self._clock()
        entries = sorted(self.cache.enumerate(), key=lambda entry: entry.modified_at)
        total = sum(entry.size_bytes for entry in entries)
        deleted = 0
        freed = 0

        for entry in entries:
            expired = now - entry.modified_at > self.max_age_seconds
            if not expired and total <= self.max_storage_bytes:
                continue
            removed = self.cache.delete(entry.key)
            total -= entry.size_bytes
            if removed == 0:
                # Already gone (another sweep or a manual purge got there first).
                continue
            deleted += 1
            freed += removed

        metrics.record_sweep(deleted, freed)
        if deleted:
            LOGGER.info("Retention sweep removed %d entries (%.2f MB)", deleted, freed / (1024 * 1024))
        return SweepResult(deleted=deleted, freed_bytes=freed)

    def start(self) -> None:
        """Start the periodic sweep task when retention is enabled."""
        if not self.enabled:
            LOGGER.info("Retention sweeps disabled")
            return
        if self._task is None or self._task.done():
            self._shutdown = False
            self._task = asyncio.create_task(self._sweep_loop())
            LOGGER.info("Retention sweeps scheduled every %ds", self.interval_seconds)

    async def stop(self) -> None:
        self._shutdown = True
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            LOGGER.info("Retention sweeps stopped")
        self._task = None

    async def _sweep_loop(self) -> None:
        while not self._shutdown:
            await asyncio.sleep(self.interval_seconds)
            try:
                await asyncio.to_thread(self.sweep)
            except Exception as exc:  # pragma: no cover - filesystem dependent
                LOGGER.exception("Retention sweep failed: %s", exc)
