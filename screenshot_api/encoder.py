"""Image encoding helpers backed by pyvips."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

import pyvips

from screenshot_api.errors import EncodeFailure
from screenshot_api.schemas import CropRect, ImageFormat

_PNG_ENCODE_ARGS = {
    "compression": 9,
    "interlace": False,
}
_WEBP_EFFORT = 6


@dataclass(slots=True)
class EncodedImage:
    data: bytes
    width: int
    height: int
    format: ImageFormat

    @property
    def size(self) -> int:
        return len(self.data)


class ImageEncoder(Protocol):
    """Turns a raw PNG capture into the requested output format."""

    async def encode(
        self,
        raw: bytes,
        *,
        format: ImageFormat,
        quality: int,
        crop: CropRect | None = None,
    ) -> EncodedImage: ...


class PyvipsImageEncoder:
    """Encodes off the event loop; libvips releases the GIL while it works."""

    async def encode(
        self,
        raw: bytes,
        *,
        format: ImageFormat,
        quality: int,
        crop: CropRect | None = None,
    ) -> EncodedImage:
        return await asyncio.to_thread(encode_sync, raw, format, quality, crop)


def encode_sync(
    raw: bytes,
    format: ImageFormat,
    quality: int,
    crop: CropRect | None = None,
) -> EncodedImage:
    try:
        image = pyvips.Image.new_from_buffer(raw, "")
    except pyvips.Error as exc:
        raise EncodeFailure(f"Unreadable capture: {exc.message}") from exc

    if crop is not None:
        if crop.x + crop.width > image.width or crop.y + crop.height > image.height:
            msg = (
                f"Crop {crop.width}x{crop.height}+{crop.x}+{crop.y} exceeds "
                f"capture bounds {image.width}x{image.height}"
            )
            raise EncodeFailure(msg)
        image = image.crop(crop.x, crop.y, crop.width, crop.height)

    suffix, options = _save_options(format, quality)
    try:
        data = image.write_to_buffer(suffix, **options)
    except pyvips.Error as exc:
        raise EncodeFailure(f"Encoding to {format.value} failed: {exc.message}") from exc
    return EncodedImage(data=data, width=image.width, height=image.height, format=format)


def _save_options(format: ImageFormat, quality: int) -> tuple[str, dict[str, Any]]:
    if format is ImageFormat.WEBP:
        return ".webp", {"Q": quality, "effort": _WEBP_EFFORT}
    if format is ImageFormat.JPEG:
        return ".jpg", {"Q": quality}
    return ".png", dict(_PNG_ENCODE_ARGS)
