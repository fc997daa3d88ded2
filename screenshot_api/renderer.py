"""Playwright-based page rendering (navigation, selector wait, metadata, capture)."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlsplit

from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Page,
    Playwright,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from screenshot_api.errors import RenderFailure, RenderTimeoutError
from screenshot_api.safety import is_blocked_host
from screenshot_api.schemas import CaptureRequest, PageMetadata

LOGGER = logging.getLogger(__name__)

_LAUNCH_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
)
_EXTRA_HEADERS = {
    "X-Requested-With": "Screenshot-API",
    "Accept-Language": "en-US,en;q=0.9",
}
_BLOCKED_RESOURCE_TYPES = frozenset({"font", "media"})
_BLOCKED_URL_MARKERS = ("ads", "analytics")

_METADATA_SCRIPT = """
() => {
    const getMetaContent = (name) => {
        const meta = document.querySelector(`meta[name="${name}"], meta[property="${name}"]`);
        return meta ? meta.getAttribute("content") : null;
    };
    const icon = document.querySelector('link[rel="icon"]');
    return {
        title: document.title || "",
        description: getMetaContent("description") || getMetaContent("og:description"),
        ogImage: getMetaContent("og:image"),
        favicon: icon ? icon.getAttribute("href") : null,
        url: window.location.href,
    };
}
"""


@dataclass(slots=True)
class RenderOptions:
    """Inputs that describe how we should drive Chromium for one capture."""

    url: str
    width: int
    height: int
    dark: bool = False
    full_page: bool = False
    delay_ms: int = 0
    wait_for: str | None = None
    user_agent: str | None = None
    extract_metadata: bool = True

    @classmethod
    def from_request(cls, request: CaptureRequest) -> RenderOptions:
        return cls(
            url=request.url,
            width=request.width,
            height=request.height,
            dark=request.dark,
            full_page=request.full_page,
            delay_ms=request.delay_ms,
            wait_for=request.wait_for,
            user_agent=request.user_agent,
            extract_metadata=request.metadata,
        )


@dataclass(slots=True)
class RenderedPage:
    """Raw full-resolution PNG plus what we learned about the page."""

    png_bytes: bytes
    metadata: PageMetadata | None
    selector_found: bool | None
    render_ms: int


class PageRenderer(Protocol):
    """Produces a raw PNG capture for a URL."""

    @property
    def is_connected(self) -> bool: ...

    async def render(self, options: RenderOptions) -> RenderedPage: ...

    async def close(self) -> None: ...


_CHANNEL_ALIASES = {
    "cft": "chrome",
    "chrome-for-testing": "chrome",
}


class PlaywrightPageRenderer:
    """Shares one headless Chromium across requests; each render gets its own context."""

    def __init__(
        self,
        *,
        channel: str = "chromium",
        navigation_timeout_ms: int = 30_000,
        wait_for_timeout_ms: int = 10_000,
    ) -> None:
        self.channel = _normalize_channel(channel)
        self.navigation_timeout_ms = navigation_timeout_ms
        self.wait_for_timeout_ms = wait_for_timeout_ms
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._launch_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def _ensure_browser(self) -> Browser:
        if self._browser is not None and self._browser.is_connected():
            return self._browser
        async with self._launch_lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            launch_kwargs: dict[str, Any] = {"headless": True, "args": list(_LAUNCH_ARGS)}
            if self.channel != "chromium":
                launch_kwargs["channel"] = self.channel
            LOGGER.info("launching chromium", extra={"channel": self.channel})
            self._browser = await self._playwright.chromium.launch(**launch_kwargs)
            return self._browser

    async def render(self, options: RenderOptions) -> RenderedPage:
        start = time.perf_counter()
        try:
            browser = await self._ensure_browser()
        except PlaywrightError as exc:
            raise RenderFailure(f"Browser launch failed: {exc.message}") from exc

        context_options: dict[str, Any] = {
            "viewport": {"width": options.width, "height": options.height},
            "color_scheme": "dark" if options.dark else "light",
            "locale": "en-US",
            "extra_http_headers": dict(_EXTRA_HEADERS),
        }
        if options.user_agent:
            context_options["user_agent"] = options.user_agent

        context = await browser.new_context(**context_options)
        try:
            await context.route("**/*", _filter_route)
            page = await context.new_page()
            await _mask_automation(page)
            try:
                await page.goto(
                    options.url,
                    wait_until="networkidle",
                    timeout=self.navigation_timeout_ms,
                )
            except PlaywrightTimeoutError as exc:
                raise RenderTimeoutError(
                    f"Navigation timeout of {self.navigation_timeout_ms} ms exceeded"
                ) from exc

            selector_found: bool | None = None
            if options.wait_for:
                selector_found = await wait_for_selector(
                    page, options.wait_for, timeout_ms=self.wait_for_timeout_ms
                )
            if options.delay_ms > 0:
                await page.wait_for_timeout(options.delay_ms)

            page_metadata = await _extract_metadata(page) if options.extract_metadata else None
            png_bytes = await page.screenshot(type="png", full_page=options.full_page, caret="hide")
        except PlaywrightTimeoutError as exc:
            raise RenderTimeoutError(f"Render timed out: {exc.message}") from exc
        except PlaywrightError as exc:
            raise RenderFailure(exc.message) from exc
        finally:
            await context.close()

        return RenderedPage(
            png_bytes=png_bytes,
            metadata=page_metadata,
            selector_found=selector_found,
            render_ms=int((time.perf_counter() - start) * 1000),
        )

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


async def wait_for_selector(page: Page, selector: str, *, timeout_ms: int) -> bool:
    """Wait for ``selector`` up to ``timeout_ms``; report whether it appeared."""

    try:
        await page.wait_for_selector(selector, timeout=timeout_ms)
    except PlaywrightTimeoutError:
        LOGGER.info("selector did not appear", extra={"selector": selector, "timeout_ms": timeout_ms})
        return False
    except PlaywrightError as exc:
        LOGGER.warning("selector wait failed for %r: %s", selector, exc.message)
        return False
    return True


def should_block_request(url: str, resource_type: str, *, navigation: bool = False) -> bool:
    """Request policy: private-network targets are always dropped (redirects included);
    subresources additionally lose fonts, media, and ad/analytics hits."""

    try:
        parts = urlsplit(url)
    except ValueError:
        return True
    if parts.scheme in {"http", "https"} and is_blocked_host(parts.hostname or ""):
        return True
    if navigation:
        return False
    if resource_type in _BLOCKED_RESOURCE_TYPES:
        return True
    return any(marker in url for marker in _BLOCKED_URL_MARKERS)


async def _filter_route(route: Route) -> None:
    request = route.request
    if should_block_request(
        request.url, request.resource_type, navigation=request.is_navigation_request()
    ):
        await route.abort()
    else:
        await route.continue_()


async def _mask_automation(page: Page) -> None:
    await page.add_init_script(
        """
        Object.defineProperty(navigator, 'webdriver', {
            get: () => undefined,
        });
        """
    )


async def _extract_metadata(page: Page) -> PageMetadata:
    payload = await page.evaluate(_METADATA_SCRIPT)
    return PageMetadata.model_validate(payload)


def _normalize_channel(channel: str) -> str:
    if not channel:
        return "chromium"
    lowered = channel.strip().lower()
    return _CHANNEL_ALIASES.get(lowered, lowered)
