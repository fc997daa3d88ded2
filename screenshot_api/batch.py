"""Batch capture of up to ten URLs with fixed preview parameters."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from screenshot_api.coordinator import ArtifactResult, CaptureCoordinator
from screenshot_api.errors import InputError, PolicyError, ScreenshotError
from screenshot_api.safety import SafetyGate
from screenshot_api.schemas import (
    DEFAULT_HEIGHT,
    DEFAULT_WIDTH,
    BatchItemResult,
    BatchResponse,
    CaptureRequest,
    ImageFormat,
)

LOGGER = logging.getLogger(__name__)

MAX_BATCH_URLS = 10
BATCH_QUALITY = 80


def validate_batch(urls: Sequence[object], gate: SafetyGate) -> list[str]:
    """Reject the whole batch up front (size, type, then URL policy) before any render."""

    if not isinstance(urls, (list, tuple)) or not urls:
        raise InputError("Provide an array of URLs", error="Invalid request")
    if len(urls) > MAX_BATCH_URLS:
        raise InputError(f"Maximum {MAX_BATCH_URLS} URLs per batch", error="Too many URLs")
    checked: list[str] = []
    for url in urls:
        if not isinstance(url, str) or not url.strip():
            raise InputError("Every batch entry must be a non-empty URL string", error="Invalid request")
        verdict = gate.check_url(url)
        if not verdict:
            raise PolicyError(f"{url}: {verdict.reason}", error="Blocked URL in batch")
        checked.append(url)
    return checked


def batch_request(url: str) -> CaptureRequest:
    return CaptureRequest(
        url=url,
        width=DEFAULT_WIDTH,
        height=DEFAULT_HEIGHT,
        format=ImageFormat.WEBP,
        quality=BATCH_QUALITY,
    )


async def run_batch(
    urls: Sequence[object],
    *,
    coordinator: CaptureCoordinator,
    gate: SafetyGate,
) -> BatchResponse:
    """Capture every URL concurrently; failures are reported per item."""

    checked = validate_batch(urls, gate)
    outcomes = await asyncio.gather(
        *(coordinator.resolve(batch_request(url)) for url in checked),
        return_exceptions=True,
    )
    results = [_item_result(url, outcome) for url, outcome in zip(checked, outcomes)]
    failed = sum(1 for item in results if not item.success)
    if failed:
        LOGGER.warning("Batch finished with %d/%d failures", failed, len(results))
    return BatchResponse(total=len(checked), results=results)


def _item_result(url: str, outcome: ArtifactResult | BaseException) -> BatchItemResult:
    if isinstance(outcome, BaseException):
        if isinstance(outcome, ScreenshotError):
            message = outcome.message
        else:
            message = str(outcome) or "Failed"
        return BatchItemResult(success=False, url=url, error=message)
    return BatchItemResult(
        success=True,
        url=url,
        filename=outcome.filename,
        cached=outcome.cached,
        size=outcome.size,
        local_path=outcome.local_path,
        metadata=outcome.metadata,
    )
