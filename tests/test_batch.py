from __future__ import annotations

from pathlib import Path

import pytest

from capture_fakes import FakeRenderer, build_coordinator
from screenshot_api.batch import MAX_BATCH_URLS, batch_request, run_batch, validate_batch
from screenshot_api.errors import InputError, PolicyError, RenderFailure
from screenshot_api.renderer import RenderOptions
from screenshot_api.safety import SafetyGate
from screenshot_api.schemas import ImageFormat


class FlakyRenderer(FakeRenderer):
    async def render(self, options: RenderOptions):  # type: ignore[override]
        if "broken" in options.url:
            self.calls.append(options)
            raise RenderFailure(f"Navigation to {options.url} failed")
        return await super().render(options)


def test_batch_request_uses_fixed_preview_parameters() -> None:
    request = batch_request("https://example.com")

    assert (request.width, request.height) == (1200, 630)
    assert request.format is ImageFormat.WEBP
    assert request.quality == 80


@pytest.mark.parametrize("urls", [[], "https://example.com", None])
def test_validate_batch_requires_a_non_empty_list(urls) -> None:
    with pytest.raises(InputError) as excinfo:
        validate_batch(urls, SafetyGate())

    assert excinfo.value.message == "Provide an array of URLs"


def test_validate_batch_rejects_more_than_ten_urls() -> None:
    urls = [f"https://example.com/{i}" for i in range(MAX_BATCH_URLS + 1)]

    with pytest.raises(InputError) as excinfo:
        validate_batch(urls, SafetyGate())

    assert excinfo.value.error == "Too many URLs"


def test_validate_batch_rejects_whole_batch_on_one_blocked_url() -> None:
    with pytest.raises(PolicyError) as excinfo:
        validate_batch(["https://example.com", "http://169.254.169.254/"], SafetyGate())

    assert excinfo.value.status_code == 403
    assert excinfo.value.message.startswith("http://169.254.169.254/:")


@pytest.mark.asyncio
async def test_oversized_batch_never_renders(tmp_path: Path) -> None:
    coordinator, renderer, _, _, _ = build_coordinator(tmp_path)
    urls = [f"https://example.com/{i}" for i in range(11)]

    with pytest.raises(InputError):
        await run_batch(urls, coordinator=coordinator, gate=SafetyGate())

    assert renderer.calls == []


@pytest.mark.asyncio
async def test_run_batch_reports_per_item_results_in_order(tmp_path: Path) -> None:
    coordinator, renderer, _, _, _ = build_coordinator(tmp_path, renderer=FlakyRenderer())
    urls = ["https://example.com/a", "https://broken.example.com/", "https://example.com/b"]

    response = await run_batch(urls, coordinator=coordinator, gate=SafetyGate())

    assert response.total == 3
    assert [item.url for item in response.results] == urls
    assert [item.success for item in response.results] == [True, False, True]
    failed = response.results[1]
    assert failed.error == "Navigation to https://broken.example.com/ failed"
    assert failed.filename is None
    ok = response.results[0]
    assert ok.local_path == f"/images/{ok.filename}"
    assert ok.cached is False
    assert len(renderer.calls) == 3


@pytest.mark.asyncio
async def test_duplicate_urls_in_a_batch_coalesce(tmp_path: Path) -> None:
    coordinator, renderer, _, _, _ = build_coordinator(tmp_path)

    response = await run_batch(
        ["https://example.com", "https://example.com"], coordinator=coordinator, gate=SafetyGate()
    )

    assert all(item.success for item in response.results)
    assert len(renderer.calls) == 1
