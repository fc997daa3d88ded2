"""Filesystem cache of encoded screenshots keyed by fingerprint filename."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from screenshot_api.errors import CacheEntryNotFound

LOGGER = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
_IMAGE_SUFFIXES = frozenset({".webp", ".png", ".jpeg", ".jpg"})
_TEMP_PREFIX = ".tmp-"


@dataclass(frozen=True, slots=True)
class CacheEntryInfo:
    """Listing row produced by :meth:`FileCacheStore.enumerate`."""

    key: str
    size_bytes: int
    modified_at: float

    @property
    def modified_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.modified_at, tz=timezone.utc)


@dataclass(frozen=True, slots=True)
class CacheUsage:
    entries: int
    total_bytes: int

    @property
    def total_mb(self) -> float:
        return self.total_bytes / (1024 * 1024)


def is_valid_key(key: str) -> bool:
    """True for plain filenames made of safe characters with an image suffix."""

    if not key or ".." in key or not _KEY_PATTERN.match(key):
        return False
    return Path(key).suffix.lower() in _IMAGE_SUFFIXES


class FileCacheStore:
    """Maps cache keys (``<fingerprint>.<format>``) to files in one directory.

    The directory listing is the whole index. Writes land in a temporary file
    that is renamed over the target, so readers never observe partial bytes.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        """Resolve a key to its file path, refusing anything but a plain image filename."""

        if not is_valid_key(key):
            raise ValueError(f"Invalid cache key: {key!r}")
        return self.root / key

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def read(self, key: str) -> bytes:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise CacheEntryNotFound(key) from exc

    def write(self, key: str, data: bytes) -> Path:
        """Atomically replace the value stored under ``key``."""

        target = self.path_for(key)
        fd, tmp_name = tempfile.mkstemp(prefix=_TEMP_PREFIX, dir=self.root)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        LOGGER.debug("cache write", extra={"key": key, "size": len(data)})
        return target

    def delete(self, key: str) -> int:
        """Remove ``key`` if present; returns the bytes freed (0 when already gone)."""

        path = self.path_for(key)
        try:
            size = path.stat().st_size
            path.unlink()
        except FileNotFoundError:
            return 0
        return size

    def enumerate(self) -> Iterator[CacheEntryInfo]:
        """Yield every stored entry lazily; entries deleted mid-scan are skipped."""

        try:
            candidates = os.scandir(self.root)
        except FileNotFoundError:
            return
        with candidates:
            for item in candidates:
                if item.name.startswith(_TEMP_PREFIX) or not is_valid_key(item.name):
                    continue
                try:
                    if not item.is_file():
                        continue
                    stat = item.stat()
                except FileNotFoundError:
                    continue
                yield CacheEntryInfo(key=item.name, size_bytes=stat.st_size, modified_at=stat.st_mtime)

    def usage(self) -> CacheUsage:
        entries = 0
        total = 0
        for info in self.enumerate():
            entries += 1
            total += info.size_bytes
        return CacheUsage(entries=entries, total_bytes=total)
