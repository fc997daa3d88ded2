#!/usr/bin/env python3
"""Operator commands for inspecting and trimming the screenshot cache."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from screenshot_api.cache import FileCacheStore
from screenshot_api.retention import RetentionManager
from screenshot_api.settings import get_settings

console = Console()
cli = typer.Typer(help="Inspect and trim the Screenshot API image cache.", add_completion=False)

_GB = 1024 * 1024 * 1024


def _store(images_dir: Optional[Path]) -> FileCacheStore:
    return FileCacheStore(images_dir or get_settings().storage.images_dir)


def _timestamp(value: float) -> str:
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


@cli.command()
def stats(
    images_dir: Optional[Path] = typer.Option(None, "--images-dir", help="Cache directory (default IMAGES_DIR)."),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """Show entry count, size, and age range of the cache."""

    store = _store(images_dir)
    entries = list(store.enumerate())
    total = sum(entry.size_bytes for entry in entries)
    oldest = min((entry.modified_at for entry in entries), default=None)
    newest = max((entry.modified_at for entry in entries), default=None)

    if json_output:
        console.print_json(
            data={
                "root": str(store.root),
                "entries": len(entries),
                "totalBytes": total,
                "oldest": oldest,
                "newest": newest,
            }
        )
        return

    table = Table("Field", "Value", title="Screenshot Cache")
    table.add_row("Directory", str(store.root))
    table.add_row("Entries", str(len(entries)))
    table.add_row("Size (MB)", f"{total / (1024 * 1024):.2f}")
    table.add_row("Oldest", _timestamp(oldest) if oldest is not None else "-")
    table.add_row("Newest", _timestamp(newest) if newest is not None else "-")
    console.print(table)


@cli.command()
def sweep(
    images_dir: Optional[Path] = typer.Option(None, "--images-dir", help="Cache directory (default IMAGES_DIR)."),
    max_age_days: Optional[float] = typer.Option(None, "--max-age-days", help="Override MAX_FILE_AGE_DAYS."),
    max_storage_gb: Optional[float] = typer.Option(None, "--max-storage-gb", help="Override MAX_STORAGE_GB."),
) -> None:
    """Run one retention pass with the configured (or overridden) budgets."""

    retention = get_settings().retention
    manager = RetentionManager(
        _store(images_dir),
        max_age_seconds=(
            max_age_days * 86_400 if max_age_days is not None else retention.max_file_age_seconds
        ),
        max_storage_bytes=(
            int(max_storage_gb * _GB) if max_storage_gb is not None else retention.max_storage_bytes
        ),
    )
    result = manager.sweep()
    if result.deleted:
        console.print(f"[green]Removed {result.deleted} entries ({result.freed_mb:.2f} MB).[/]")
    else:
        console.print("[dim]Nothing to remove.[/]")


@cli.command()
def purge(
    images_dir: Optional[Path] = typer.Option(None, "--images-dir", help="Cache directory (default IMAGES_DIR)."),
    older_than_days: Optional[float] = typer.Option(
        None, "--older-than-days", help="Only delete entries older than this many days."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete cached images outright."""

    store = _store(images_dir)
    cutoff = time.time() - older_than_days * 86_400 if older_than_days is not None else None
    victims = [
        entry for entry in store.enumerate() if cutoff is None or entry.modified_at < cutoff
    ]
    if not victims:
        console.print("[dim]Nothing to purge.[/]")
        return
    if not yes and not typer.confirm(f"Delete {len(victims)} cached images from {store.root}?"):
        raise typer.Exit(code=1)

    freed = sum(store.delete(entry.key) for entry in victims)
    console.print(f"[green]Purged {len(victims)} entries ({freed / (1024 * 1024):.2f} MB).[/]")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
