"""In-memory stand-ins for the renderer, encoder, and object store seams."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from screenshot_api.cache import FileCacheStore
from screenshot_api.coordinator import CaptureCoordinator
from screenshot_api.encoder import EncodedImage
from screenshot_api.errors import UploadFailure
from screenshot_api.renderer import RenderedPage, RenderOptions
from screenshot_api.schemas import CropRect, ImageFormat, PageMetadata
from screenshot_api.stats import StatsCollector


class FakeRenderer:
    def __init__(
        self,
        *,
        delay: float = 0.0,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
        selector_found: bool | None = None,
    ) -> None:
        self.delay = delay
        self.error = error
        self.gate = gate
        self.selector_found = selector_found
        self.calls: list[RenderOptions] = []
        self.connected = False
        self.closed = False

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def render(self, options: RenderOptions) -> RenderedPage:
        self.calls.append(options)
        self.connected = True
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return RenderedPage(
            png_bytes=f"png:{options.url}:{options.width}x{options.height}".encode(),
            metadata=PageMetadata(title="Example Domain", url=options.url),
            selector_found=self.selector_found,
            render_ms=12,
        )

    async def close(self) -> None:
        self.closed = True
        self.connected = False


class FakeEncoder:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def encode(
        self,
        raw: bytes,
        *,
        format: ImageFormat,
        quality: int,
        crop: CropRect | None = None,
    ) -> EncodedImage:
        self.calls.append({"format": format, "quality": quality, "crop": crop})
        data = raw + f"|{format.value}|q{quality}".encode()
        return EncodedImage(data=data, width=1, height=1, format=format)


class FakeObjectStore:
    def __init__(self, *, fail: bool = False, error: Exception | None = None) -> None:
        self.fail = fail
        self.error = error
        self.uploads: dict[str, bytes] = {}
        self.closed = False

    async def upload(self, key: str, data: bytes, *, content_type: str) -> str:
        if self.error is not None:
            raise self.error
        if self.fail:
            raise UploadFailure(f"bucket unavailable for {key}")
        self.uploads[key] = data
        return f"https://cdn.example.com/{key}"

    async def close(self) -> None:
        self.closed = True


def build_coordinator(
    tmp_path: Path,
    *,
    renderer: FakeRenderer | None = None,
    object_store: FakeObjectStore | None = None,
    max_concurrent_renders: int = 4,
    request_timeout_s: float = 5.0,
) -> tuple[CaptureCoordinator, FakeRenderer, FakeEncoder, FileCacheStore, StatsCollector]:
    renderer = renderer or FakeRenderer()
    encoder = FakeEncoder()
    cache = FileCacheStore(tmp_path / "images")
    stats = StatsCollector()
    coordinator = CaptureCoordinator(
        cache=cache,
        renderer=renderer,
        encoder=encoder,
        stats=stats,
        object_store=object_store,
        max_concurrent_renders=max_concurrent_renders,
        request_timeout_s=request_timeout_s,
    )
    return coordinator, renderer, encoder, cache, stats
