"""Cache-aware capture orchestration with per-fingerprint request coalescing."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from screenshot_api import metrics
from screenshot_api.cache import FileCacheStore
from screenshot_api.encoder import ImageEncoder
from screenshot_api.errors import (
    CacheEntryNotFound,
    NotCachedError,
    RenderTimeoutError,
    ScreenshotError,
    UploadFailure,
)
from screenshot_api.fingerprint import cache_filename, fingerprint_request
from screenshot_api.renderer import PageRenderer, RenderOptions
from screenshot_api.schemas import CacheDirective, CaptureRequest, ImageFormat, PageMetadata
from screenshot_api.stats import StatsCollector
from screenshot_api.upload import ObjectStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ArtifactResult:
    """Outcome of :meth:`CaptureCoordinator.resolve`."""

    fingerprint: str
    filename: str
    data: bytes
    format: ImageFormat
    cached: bool
    metadata: PageMetadata | None = None
    coalesced: bool = False
    upload_url: str | None = None
    upload_error: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def local_path(self) -> str:
        return f"/images/{self.filename}"


@dataclass(slots=True)
class _Capture:
    data: bytes
    metadata: PageMetadata | None


class CaptureCoordinator:
    """Resolves capture requests against the cache, rendering at most once per key.

    The in-flight registry maps a fingerprint to the task producing it. It is
    owned by the event loop thread and the lookup-then-insert in
    :meth:`_join_or_start` contains no ``await``, so two callers can never both
    start a capture for the same fingerprint. Late arrivals await the existing
    task through :func:`asyncio.shield`, which keeps a disconnecting client from
    cancelling a capture other callers are waiting on.
    """

    def __init__(
        self,
        *,
        cache: FileCacheStore,
        renderer: PageRenderer,
        encoder: ImageEncoder,
        stats: StatsCollector | None = None,
        object_store: ObjectStore | None = None,
        max_concurrent_renders: int = 4,
        request_timeout_s: float = 255.0,
    ) -> None:
        if max_concurrent_renders < 1:
            raise ValueError("max_concurrent_renders must be >= 1")
        self.cache = cache
        self.renderer = renderer
        self.encoder = encoder
        self.stats = stats or StatsCollector()
        self.object_store = object_store
        self.request_timeout_s = request_timeout_s
        self._render_slots = asyncio.Semaphore(max_concurrent_renders)
        self._in_flight: dict[str, asyncio.Task[_Capture]] = {}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def resolve(self, request: CaptureRequest) -> ArtifactResult:
        """Return the artifact for ``request``, rendering only on a cache miss.

        Every failure with a 5xx status, or outside the error hierarchy, is
        counted exactly once here.
        """

        try:
            return await self._resolve(request)
        except ScreenshotError as exc:
            if exc.status_code >= 500:
                self.stats.record_error()
            raise
        except Exception:
            self.stats.record_error()
            raise

    async def _resolve(self, request: CaptureRequest) -> ArtifactResult:
        fingerprint = fingerprint_request(request)
        filename = cache_filename(fingerprint, request.format)

        if request.cache is not CacheDirective.REFRESH:
            cached = await self._read_cached(filename)
            if cached is not None:
                self.stats.record_hit()
                result = ArtifactResult(
                    fingerprint=fingerprint,
                    filename=filename,
                    data=cached,
                    format=request.format,
                    cached=True,
                )
                if request.upload:
                    await self._upload(result)
                return result
            if request.cache is CacheDirective.ONLY:
                raise NotCachedError("Screenshot not in cache")

        capture, coalesced = await self._join_or_start(fingerprint, filename, request)

        result = ArtifactResult(
            fingerprint=fingerprint,
            filename=filename,
            data=capture.data,
            format=request.format,
            cached=False,
            metadata=capture.metadata if request.metadata else None,
            coalesced=coalesced,
        )
        if request.upload:
            await self._upload(result)
        return result

    async def _read_cached(self, filename: str) -> bytes | None:
        if not self.cache.exists(filename):
            return None
        try:
            return await asyncio.to_thread(self.cache.read, filename)
        except CacheEntryNotFound:
            # Swept between the existence check and the read; treat as a miss.
            LOGGER.debug("cache entry vanished before read", extra={"key": filename})
            return None

    async def _join_or_start(
        self, fingerprint: str, filename: str, request: CaptureRequest
    ) -> tuple[_Capture, bool]:
        task = self._in_flight.get(fingerprint)
        coalesced = task is not None
        if task is None:
            task = asyncio.create_task(self._run_capture(fingerprint, filename, request))
            task.add_done_callback(_retrieve_exception)
            self._in_flight[fingerprint] = task
            self.stats.record_miss()
        else:
            self.stats.record_coalesced()
            LOGGER.debug("joining in-flight capture", extra={"fingerprint": fingerprint})
        return await asyncio.shield(task), coalesced

    async def _run_capture(self, fingerprint: str, filename: str, request: CaptureRequest) -> _Capture:
        metrics.RENDERS_IN_FLIGHT.inc()
        try:
            try:
                capture, render_ms = await asyncio.wait_for(
                    self._render_encode(request),
                    timeout=self.request_timeout_s,
                )
            except asyncio.TimeoutError as exc:
                raise RenderTimeoutError(
                    f"Capture exceeded {self.request_timeout_s:g}s request timeout"
                ) from exc
            # Outside the timeout so a timed-out capture never commits a file.
            await asyncio.to_thread(self.cache.write, filename, capture.data)
            LOGGER.info(
                "captured %s",
                request.url,
                extra={"key": filename, "bytes": len(capture.data), "render_ms": render_ms},
            )
            return capture
        finally:
            metrics.RENDERS_IN_FLIGHT.dec()
            if self._in_flight.get(fingerprint) is asyncio.current_task():
                del self._in_flight[fingerprint]

    async def _render_encode(self, request: CaptureRequest) -> tuple[_Capture, int]:
        options = RenderOptions.from_request(request)
        # Coalesced callers may want metadata even when the first caller did not.
        options.extract_metadata = True

        async with self._render_slots:
            started = time.perf_counter()
            rendered = await self.renderer.render(options)
            metrics.observe_render(time.perf_counter() - started)
            if request.wait_for and rendered.selector_found is False:
                LOGGER.info(
                    "capturing without selector %r for %s", request.wait_for, request.url
                )

            started = time.perf_counter()
            encoded = await self.encoder.encode(
                rendered.png_bytes,
                format=request.format,
                quality=request.quality,
                crop=request.crop,
            )
            metrics.observe_encode(time.perf_counter() - started)

        return _Capture(data=encoded.data, metadata=rendered.metadata), rendered.render_ms

    async def _upload(self, result: ArtifactResult) -> None:
        """Upload failures are recorded on the result and never raised."""

        if self.object_store is None:
            result.upload_error = "Object storage is not configured"
            return
        try:
            result.upload_url = await self.object_store.upload(
                result.filename, result.data, content_type=result.format.content_type
            )
        except UploadFailure as exc:
            LOGGER.warning("upload failed for %s: %s", result.filename, exc.message)
            result.upload_error = exc.message
            self.stats.record_upload_failure()
            return
        except Exception as exc:
            LOGGER.exception("unexpected upload error for %s", result.filename)
            result.upload_error = f"Upload failed: {exc}" if str(exc) else "Upload failed"
            self.stats.record_upload_failure()
            return
        self.stats.record_upload()


def _retrieve_exception(task: asyncio.Task[_Capture]) -> None:
    # Marks the exception as retrieved when every waiter went away first.
    if not task.cancelled():
        task.exception()
