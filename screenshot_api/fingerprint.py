"""Content-addressed cache keys for screenshot requests."""

from __future__ import annotations

import hashlib
import re

from screenshot_api.schemas import CaptureRequest, ImageFormat

FINGERPRINT_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def _flag(value: bool) -> str:
    return "true" if value else "false"


def compute_fingerprint(
    url: str,
    width: int,
    height: int,
    dark: bool,
    format: ImageFormat | str,
    full_page: bool,
) -> str:
    """Compute the deterministic cache key for a capture.

    Only the fields that change what the browser renders or how the file is
    named participate. Quality, delay, wait selector, user agent and crop do
    not, so requests differing only in those share one cache entry.

    Returns:
        Hex-encoded SHA256 hash (64 characters)
    """
    fmt = format.value if isinstance(format, ImageFormat) else ImageFormat.parse(format).value
    material = f"{url}:{width}:{height}:{_flag(dark)}:{fmt}:{_flag(full_page)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def fingerprint_request(request: CaptureRequest) -> str:
    """Convenience wrapper extracting the cache-relevant fields of a request."""

    return compute_fingerprint(
        url=request.url,
        width=request.width,
        height=request.height,
        dark=request.dark,
        format=request.format,
        full_page=request.full_page,
    )


def cache_filename(fingerprint: str, format: ImageFormat | str) -> str:
    """Storage filename for a fingerprint: ``<fingerprint>.<format>``."""

    fmt = format.value if isinstance(format, ImageFormat) else ImageFormat.parse(format).value
    return f"{fingerprint}.{fmt}"
