from __future__ import annotations

import os
import time
from pathlib import Path

from typer.testing import CliRunner

from scripts import cache_admin
from screenshot_api.cache import FileCacheStore

runner = CliRunner()


def _seed(root: Path, name: str, size: int, age_days: float) -> str:
    store = FileCacheStore(root)
    key = name * 64 + ".webp"
    path = store.write(key, b"x" * size)
    stamp = time.time() - age_days * 86_400
    os.utime(path, (stamp, stamp))
    return key


def test_stats_json_reports_entries(tmp_path: Path) -> None:
    _seed(tmp_path, "a", 10, 1)
    _seed(tmp_path, "b", 20, 2)

    result = runner.invoke(cache_admin.cli, ["stats", "--images-dir", str(tmp_path), "--json"])

    assert result.exit_code == 0, result.output
    assert "\"entries\": 2" in result.stdout
    assert "\"totalBytes\": 30" in result.stdout


def test_stats_table_renders(tmp_path: Path) -> None:
    result = runner.invoke(cache_admin.cli, ["stats", "--images-dir", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "Screenshot Cache" in result.stdout


def test_sweep_uses_overrides(tmp_path: Path) -> None:
    old = _seed(tmp_path, "a", 10, 3)
    fresh = _seed(tmp_path, "b", 10, 0.1)

    result = runner.invoke(
        cache_admin.cli,
        ["sweep", "--images-dir", str(tmp_path), "--max-age-days", "1"],
    )

    assert result.exit_code == 0, result.output
    assert "Removed 1 entries" in result.stdout
    store = FileCacheStore(tmp_path)
    assert not store.exists(old)
    assert store.exists(fresh)


def test_purge_requires_confirmation(tmp_path: Path) -> None:
    key = _seed(tmp_path, "a", 10, 1)

    declined = runner.invoke(cache_admin.cli, ["purge", "--images-dir", str(tmp_path)], input="n\n")

    assert declined.exit_code == 1
    assert FileCacheStore(tmp_path).exists(key)


def test_purge_older_than_with_yes(tmp_path: Path) -> None:
    old = _seed(tmp_path, "a", 10, 5)
    fresh = _seed(tmp_path, "b", 10, 0.5)

    result = runner.invoke(
        cache_admin.cli,
        ["purge", "--images-dir", str(tmp_path), "--older-than-days", "2", "--yes"],
    )

    assert result.exit_code == 0, result.output
    assert "Purged 1 entries" in result.stdout
    store = FileCacheStore(tmp_path)
    assert not store.exists(old)
    assert store.exists(fresh)
