"""Entry point for the FastAPI application."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from prometheus_client import start_http_server
from prometheus_fastapi_instrumentator import Instrumentator
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from screenshot_api.batch import run_batch
from screenshot_api.cache import FileCacheStore, is_valid_key
from screenshot_api.coordinator import ArtifactResult, CaptureCoordinator
from screenshot_api.encoder import ImageEncoder, PyvipsImageEncoder
from screenshot_api.errors import ImageNotFound, InputError, PolicyError, ScreenshotError
from screenshot_api.rate_limit import FixedWindowRateLimiter, enforce_rate_limit
from screenshot_api.renderer import PageRenderer, PlaywrightPageRenderer
from screenshot_api.retention import RetentionManager
from screenshot_api.safety import SafetyGate
from screenshot_api.schemas import (
    CaptureRequest,
    HealthResponse,
    ImageFormat,
    OutputMode,
    ScreenshotDescriptor,
    ScreenshotParams,
    StatsResponse,
)
from screenshot_api.settings import Settings, settings
from screenshot_api.stats import StatsCollector
from screenshot_api.upload import ObjectStore, S3ObjectStore

SERVICE_NAME = "Screenshot API"
SERVICE_VERSION = "2.0.0"

LOGGER = logging.getLogger(__name__)
_PROMETHEUS_EXPORTER_STARTED = False

_CORS = {
    "allow_origins": ["*"],
    "allow_methods": ["GET", "POST", "OPTIONS"],
    "allow_headers": ["Content-Type"],
}


@dataclass
class Services:
    """Everything a request handler needs, owned by one application instance."""

    settings: Settings
    gate: SafetyGate
    limiter: FixedWindowRateLimiter
    cache: FileCacheStore
    stats: StatsCollector
    renderer: PageRenderer
    coordinator: CaptureCoordinator
    retention: RetentionManager
    object_store: ObjectStore | None = None
    started_at: float = field(default_factory=time.time)
    _prune_task: asyncio.Task[None] | None = None

    def start_background(self) -> None:
        self.retention.start()
        if self.settings.rate_limit.enabled and self._prune_task is None:
            self._prune_task = asyncio.create_task(self._prune_rate_limits())

    async def aclose(self) -> None:
        await self.retention.stop()
        if self._prune_task is not None:
            self._prune_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._prune_task
            self._prune_task = None
        await self.renderer.close()
        if self.object_store is not None:
            await self.object_store.close()

    async def _prune_rate_limits(self) -> None:
        interval = max(60, self.settings.rate_limit.window_seconds)
        while True:
            await asyncio.sleep(interval)
            removed = self.limiter.prune_expired()
            if removed:
                LOGGER.info("Pruned %d expired rate-limit windows", removed)


def build_services(
    active_settings: Settings,
    *,
    renderer: PageRenderer | None = None,
    encoder: ImageEncoder | None = None,
    object_store: ObjectStore | None = None,
) -> Services:
    """Wire the production collaborators from settings."""

    if encoder is None:
        encoder = PyvipsImageEncoder()
    if renderer is None:
        renderer = PlaywrightPageRenderer(
            channel=active_settings.render.playwright_channel,
            navigation_timeout_ms=active_settings.render.navigation_timeout_ms,
            wait_for_timeout_ms=active_settings.render.wait_for_timeout_ms,
        )
    if object_store is None and active_settings.upload.enabled:
        object_store = S3ObjectStore.from_settings(active_settings.upload)

    cache = FileCacheStore(active_settings.storage.images_dir)
    stats = StatsCollector()
    coordinator = CaptureCoordinator(
        cache=cache,
        renderer=renderer,
        encoder=encoder,
        stats=stats,
        object_store=object_store,
        max_concurrent_renders=active_settings.render.max_concurrent_renders,
        request_timeout_s=active_settings.render.request_timeout_s,
    )
    return Services(
        settings=active_settings,
        gate=SafetyGate(),
        limiter=FixedWindowRateLimiter.from_settings(active_settings.rate_limit),
        cache=cache,
        stats=stats,
        renderer=renderer,
        coordinator=coordinator,
        retention=RetentionManager.from_settings(cache, active_settings.retention),
        object_store=object_store,
    )


async def _start_prometheus_exporter(port: int) -> None:
    """Expose Prometheus metrics on the configured auxiliary port."""

    global _PROMETHEUS_EXPORTER_STARTED
    if _PROMETHEUS_EXPORTER_STARTED or port <= 0:
        return
    try:
        start_http_server(port)
    except OSError as exc:  # pragma: no cover - system dependent
        LOGGER.warning("Prometheus exporter failed to bind on port %s: %s", port, exc)
        return
    _PROMETHEUS_EXPORTER_STARTED = True
    LOGGER.info("Prometheus exporter listening on port %s", port)


router = APIRouter()


def _services(request: Request) -> Services:
    return request.app.state.services


@router.get("/")
async def index() -> dict[str, Any]:
    """Describe the service and its endpoints."""

    return {
        "name": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "features": [
            "Multiple formats (webp, png, jpeg)",
            "Full page screenshots",
            "Wait/Delay support",
            "Metadata extraction",
            "Batch processing",
            "Cache control",
            "S3/R2 upload",
            "Auto cleanup",
            "Usage stats",
        ],
        "endpoints": {
            "screenshot": "GET/POST /api/screenshot",
            "batch": "POST /api/batch",
            "images": "GET /images/<filename>",
            "stats": "GET /stats",
            "health": "GET /health",
        },
    }


@router.get("/health", tags=["health"], response_model=HealthResponse)
async def healthcheck(request: Request) -> HealthResponse:
    services = _services(request)
    usage = await asyncio.to_thread(services.cache.usage)
    return HealthResponse(
        status="ok",
        uptime=int(time.time() - services.started_at),
        images=usage.entries,
        storage_mb=f"{usage.total_mb:.2f}",
        browser="connected" if services.renderer.is_connected else "not started",
        s3_enabled=services.object_store is not None,
    )


@router.get("/stats", response_model=StatsResponse)
async def usage_stats(request: Request) -> StatsResponse:
    services = _services(request)
    snapshot = services.stats.snapshot()
    usage = await asyncio.to_thread(services.cache.usage)
    return StatsResponse(
        total_requests=snapshot.total_requests,
        cache_hits=snapshot.cache_hits,
        cache_misses=snapshot.cache_misses,
        cache_hit_rate=f"{snapshot.hit_rate:.2f}%",
        errors=snapshot.errors,
        uploaded_to_s3=snapshot.uploads,
        upload_failures=snapshot.upload_failures,
        coalesced=snapshot.coalesced,
        storage_mb=f"{usage.total_mb:.2f}",
        total_images=usage.entries,
    )


@router.get("/api/screenshot")
async def screenshot_get(request: Request) -> Response:
    params = _parse_params(dict(request.query_params))
    return await _handle_screenshot(request, params, default_output=OutputMode.IMAGE)


@router.post("/api/screenshot")
async def screenshot_post(request: Request) -> Response:
    body = await _json_body(request)
    params = _parse_params(body)
    return await _handle_screenshot(request, params, default_output=OutputMode.JSON)


@router.post("/api/batch")
async def batch(request: Request) -> JSONResponse:
    services = _services(request)
    body = await _json_body(request)
    result = await run_batch(
        body.get("urls", []),
        coordinator=services.coordinator,
        gate=services.gate,
    )
    return JSONResponse(result.model_dump(by_alias=True, exclude_none=True))


@router.get("/images/{filename}")
async def image(request: Request, filename: str) -> FileResponse:
    services = _services(request)
    if not is_valid_key(filename) or not services.cache.exists(filename):
        raise ImageNotFound(f"No cached image named {filename}")
    return FileResponse(
        services.cache.path_for(filename),
        media_type=_content_type_for(filename),
        headers={"Cache-Control": "public, max-age=31536000"},
    )


async def _handle_screenshot(request: Request, params: ScreenshotParams, *, default_output: OutputMode) -> Response:
    services = _services(request)
    started = time.perf_counter()
    services.stats.record_request()

    if not params.url:
        raise InputError("Please provide a 'url' parameter", error="Missing URL parameter")

    quality = params.quality if params.quality is not None else services.settings.render.default_quality
    verdict = services.gate.evaluate(
        params.url,
        {
            "width": params.width,
            "height": params.height,
            "delay": params.delay,
            "quality": quality,
            "format": params.format,
        },
    )
    if not verdict:
        if verdict.kind == "url":
            raise PolicyError(verdict.reason or "URL is not allowed")
        raise InputError(verdict.reason or "Invalid parameters")

    rate_headers = enforce_rate_limit(services.limiter, request)
    capture_request = _to_capture_request(params, quality=quality)

    try:
        result = await services.coordinator.resolve(capture_request)
    except ScreenshotError:
        raise
    except Exception as exc:
        LOGGER.exception("Unexpected capture failure for %s", capture_request.url)
        raise ScreenshotError(str(exc) or "Unknown error") from exc

    response_ms = int((time.perf_counter() - started) * 1000)
    output = params.output or default_output
    if output is OutputMode.JSON:
        return JSONResponse(_descriptor(capture_request, result, response_ms), headers=rate_headers)

    return Response(
        content=result.data,
        media_type=result.format.content_type,
        headers={
            "Cache-Control": "public, max-age=86400",
            "X-Cached": "true" if result.cached else "false",
            "X-Response-Time": f"{response_ms}ms",
            **rate_headers,
        },
    )


def _descriptor(request: CaptureRequest, result: ArtifactResult, response_ms: int) -> dict[str, Any]:
    descriptor = ScreenshotDescriptor(
        url=request.url,
        filename=result.filename,
        local_path=result.local_path,
        s3_url=result.upload_url,
        width=request.width,
        height=request.height,
        format=request.format.value,
        full_page=request.full_page,
        dark=request.dark,
        quality=request.quality,
        size=result.size,
        size_kb=f"{result.size / 1024:.2f}",
        cached=result.cached,
        response_time=response_ms,
        metadata=result.metadata,
    )
    payload = descriptor.model_dump(by_alias=True)
    if payload.get("s3Url") is None:
        payload.pop("s3Url", None)
    return payload


def _parse_params(raw: dict[str, Any]) -> ScreenshotParams:
    try:
        return ScreenshotParams.model_validate(raw)
    except ValidationError as exc:
        raise InputError(_validation_message(exc)) from exc


def _to_capture_request(params: ScreenshotParams, *, quality: int) -> CaptureRequest:
    fields: dict[str, Any] = {
        "url": params.url,
        "format": params.format,
        "quality": quality,
        "full_page": params.full_page,
        "dark": params.dark,
        "delay_ms": params.delay or 0,
        "wait_for": params.wait_for,
        "user_agent": params.user_agent,
        "crop": params.crop,
        "cache": params.cache,
        "upload": params.upload,
        "metadata": params.metadata,
    }
    if params.width is not None:
        fields["width"] = params.width
    if params.height is not None:
        fields["height"] = params.height
    try:
        return CaptureRequest(**fields)
    except ValidationError as exc:
        raise InputError(_validation_message(exc)) from exc


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise InputError("Request body must be valid JSON", error="Invalid request") from exc
    if not isinstance(body, dict):
        raise InputError("Request body must be a JSON object", error="Invalid request")
    return body


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid parameters"


def _content_type_for(filename: str) -> str:
    suffix = filename.rsplit(".", 1)[-1].lower()
    if suffix == "jpg":
        return ImageFormat.JPEG.content_type
    try:
        return ImageFormat(suffix).content_type
    except ValueError:
        return "application/octet-stream"


async def _screenshot_error_handler(_: Request, exc: ScreenshotError) -> JSONResponse:
    if exc.status_code >= 500:
        LOGGER.warning("Request failed: %s", exc.message)
    headers = getattr(exc, "headers", None)
    return JSONResponse(exc.to_payload(), status_code=exc.status_code, headers=headers)


async def _http_error_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        payload = {"error": "Method not allowed", "message": str(exc.detail)}
    elif exc.status_code == status.HTTP_404_NOT_FOUND:
        payload = {"error": "Not Found", "message": str(exc.detail)}
    else:
        payload = {"error": str(exc.detail), "message": str(exc.detail)}
    return JSONResponse(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def _request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    message = "; ".join(str(error.get("msg")) for error in exc.errors()) or "Invalid parameters"
    return JSONResponse(
        {"error": "Invalid parameters", "message": message},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


def create_app(services: Services | None = None, *, active_settings: Settings | None = None) -> FastAPI:
    """Build the ASGI app; production services are wired at startup when none are given."""

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        current = services or build_services(active_settings or settings)
        app.state.services = current
        await _start_prometheus_exporter(current.settings.telemetry.prometheus_port)
        current.start_background()
        LOGGER.info(
            "%s %s serving images from %s (rate limit %s/window, s3 %s)",
            SERVICE_NAME,
            SERVICE_VERSION,
            current.settings.storage.images_dir,
            current.settings.rate_limit.max_requests,
            "enabled" if current.object_store is not None else "disabled",
        )
        try:
            yield
        finally:
            await current.aclose()

    application = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION, lifespan=_lifespan)
    if services is not None:
        application.state.services = services
    application.add_middleware(CORSMiddleware, **_CORS)
    application.add_exception_handler(ScreenshotError, _screenshot_error_handler)
    application.add_exception_handler(StarletteHTTPException, _http_error_handler)
    application.add_exception_handler(RequestValidationError, _request_validation_handler)
    application.include_router(router)
    return application


app = create_app()
instrumentator = Instrumentator(should_instrument_requests_inprogress=True)
instrumentator.instrument(app)
try:
    instrumentator.expose(app, include_in_schema=False, should_gzip=True)
except ValueError:  # pragma: no cover - already registered
    LOGGER.debug("Prometheus /metrics endpoint already exposed")

__all__ = ["Services", "app", "build_services", "create_app"]
