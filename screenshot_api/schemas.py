"""Pydantic DTOs shared across endpoints."""

from __future__ import annotations

from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_WIDTH = 1200
DEFAULT_HEIGHT = 630


class ImageFormat(str, Enum):
    """Encoded output formats supported by the encoder."""

    WEBP = "webp"
    PNG = "png"
    JPEG = "jpeg"

    @classmethod
    def parse(cls, value: str) -> ImageFormat:
        normalized = value.strip().lower()
        if normalized == "jpg":
            normalized = "jpeg"
        return cls(normalized)

    @property
    def content_type(self) -> str:
        return f"image/{self.value}"


class CacheDirective(str, Enum):
    """How the coordinator should treat an existing cache entry."""

    DEFAULT = "default"
    REFRESH = "refresh"
    ONLY = "only"


class OutputMode(str, Enum):
    IMAGE = "image"
    JSON = "json"


class CropRect(BaseModel):
    """Rectangle extracted from the raw capture before encoding."""

    model_config = ConfigDict(frozen=True)

    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(ge=1)
    height: int = Field(ge=1)


class PageMetadata(BaseModel):
    """Document metadata extracted from the rendered page."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    description: str | None = None
    og_image: str | None = Field(default=None, alias="ogImage")
    favicon: str | None = None
    url: str = ""


class CaptureRequest(BaseModel):
    """Validated, immutable description of a single screenshot request."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(min_length=1, description="Target URL to capture")
    width: int = Field(default=DEFAULT_WIDTH, ge=320, le=3840)
    height: int = Field(default=DEFAULT_HEIGHT, ge=240, le=2160)
    format: ImageFormat = ImageFormat.WEBP
    quality: int = Field(default=80, ge=1, le=100)
    full_page: bool = False
    dark: bool = False
    delay_ms: int = Field(default=0, ge=0, le=10_000)
    wait_for: str | None = None
    user_agent: str | None = None
    crop: CropRect | None = None
    cache: CacheDirective = CacheDirective.DEFAULT
    upload: bool = False
    metadata: bool = True

    @field_validator("format", mode="before")
    @classmethod
    def _normalize_format(cls, value: object) -> object:
        if isinstance(value, str):
            return ImageFormat.parse(value)
        return value


class ScreenshotParams(BaseModel):
    """Loose inbound parameters for ``/api/screenshot`` (query string or JSON body)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str | None = None
    width: int | None = None
    height: int | None = None
    dark: bool = False
    quality: int | None = None
    format: str = "webp"
    output: OutputMode | None = Field(
        default=None, validation_alias=AliasChoices("output", "outputFormat")
    )
    full_page: bool = Field(default=False, validation_alias=AliasChoices("fullPage", "full_page"))
    delay: int | None = None
    wait_for: str | None = Field(default=None, validation_alias=AliasChoices("waitFor", "wait_for"))
    user_agent: str | None = Field(
        default=None, validation_alias=AliasChoices("userAgent", "user_agent")
    )
    cache: CacheDirective = CacheDirective.DEFAULT
    upload: bool = Field(default=False, validation_alias=AliasChoices("uploadToS3", "upload"))
    metadata: bool = True
    crop: CropRect | None = None

    @field_validator("format", mode="before")
    @classmethod
    def _lower_format(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower() or "webp"
        return value

    @field_validator("wait_for", "user_agent", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ScreenshotDescriptor(BaseModel):
    """JSON descriptor returned when ``output=json``."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    url: str
    filename: str
    local_path: str = Field(alias="localPath")
    s3_url: str | None = Field(default=None, alias="s3Url")
    width: int
    height: int
    format: str
    full_page: bool = Field(alias="fullPage")
    dark: bool
    quality: int
    size: int
    size_kb: str = Field(alias="sizeKB")
    cached: bool
    response_time: int = Field(alias="responseTime")
    metadata: PageMetadata | None = None


class BatchItemResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    url: str
    filename: str | None = None
    cached: bool | None = None
    size: int | None = None
    local_path: str | None = Field(default=None, alias="localPath")
    metadata: PageMetadata | None = None
    error: str | None = None


class BatchResponse(BaseModel):
    success: bool = True
    total: int
    results: list[BatchItemResult]


class StatsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_requests: int = Field(alias="totalRequests")
    cache_hits: int = Field(alias="cacheHits")
    cache_misses: int = Field(alias="cacheMisses")
    cache_hit_rate: str = Field(alias="cacheHitRate")
    errors: int
    uploaded_to_s3: int = Field(alias="uploadedToS3")
    upload_failures: int = Field(alias="uploadFailures")
    coalesced: int
    storage_mb: str = Field(alias="storageMB")
    total_images: int = Field(alias="totalImages")


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    uptime: int
    images: int
    storage_mb: str = Field(alias="storageMB")
    browser: str
    s3_enabled: bool = Field(alias="s3Enabled")
