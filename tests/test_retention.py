from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from screenshot_api.cache import FileCacheStore
from screenshot_api.retention import RetentionManager

NOW = 1_700_000_000.0
DAY = 86_400


def _seed(store: FileCacheStore, name: str, size: int, age_seconds: float) -> str:
    key = name * 64 + ".webp"
    path = store.write(key, b"x" * size)
    stamp = NOW - age_seconds
    os.utime(path, (stamp, stamp))
    return key


def test_sweep_deletes_entries_older_than_max_age(tmp_path: Path) -> None:
    store = FileCacheStore(tmp_path)
    old = _seed(store, "a", 10, 8 * DAY)
    fresh = _seed(store, "b", 10, 1 * DAY)
    manager = RetentionManager(store, max_age_seconds=7 * DAY, max_storage_bytes=10_000, clock=lambda: NOW)

    result = manager.sweep()

    assert result.deleted == 1
    assert result.freed_bytes == 10
    assert not store.exists(old)
    assert store.exists(fresh)


def test_sweep_trims_oldest_first_until_under_budget(tmp_path: Path) -> None:
    store = FileCacheStore(tmp_path)
    oldest = _seed(store, "a", 400, 300)
    middle = _seed(store, "b", 400, 200)
    newest = _seed(store, "c", 400, 100)
    manager = RetentionManager(store, max_age_seconds=7 * DAY, max_storage_bytes=900, clock=lambda: NOW)

    result = manager.sweep()

    assert result.deleted == 1
    assert not store.exists(oldest)
    assert store.exists(middle)
    assert store.exists(newest)
    assert store.usage().total_bytes <= 900


def test_sweep_on_cache_within_limits_removes_nothing(tmp_path: Path) -> None:
    store = FileCacheStore(tmp_path)
    _seed(store, "a", 10, 60)
    manager = RetentionManager(store, max_age_seconds=DAY, max_storage_bytes=1_000, clock=lambda: NOW)

    result = manager.sweep()

    assert result.deleted == 0
    assert result.freed_mb == 0


def test_sweep_on_empty_cache(tmp_path: Path) -> None:
    manager = RetentionManager(
        FileCacheStore(tmp_path), max_age_seconds=DAY, max_storage_bytes=1, clock=lambda: NOW
    )

    assert manager.sweep().deleted == 0


@pytest.mark.asyncio
async def test_disabled_manager_does_not_schedule_sweeps(tmp_path: Path) -> None:
    manager = RetentionManager(
        FileCacheStore(tmp_path), max_age_seconds=DAY, max_storage_bytes=1, enabled=False
    )

    manager.start()

    assert manager._task is None
    await manager.stop()


@pytest.mark.asyncio
async def test_background_loop_sweeps_periodically(tmp_path: Path) -> None:
    store = FileCacheStore(tmp_path)
    key = _seed(store, "a", 10, 2 * DAY)
    manager = RetentionManager(
        store, max_age_seconds=DAY, max_storage_bytes=10_000, interval_seconds=0.01, clock=lambda: NOW
    )

    manager.start()
    for _ in range(100):
        if not store.exists(key):
            break
        await asyncio.sleep(0.01)
    await manager.stop()

    assert not store.exists(key)
    assert manager._task is None
