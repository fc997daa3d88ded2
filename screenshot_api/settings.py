"""Typed configuration objects backed by python-decouple settings."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final

from decouple import Config as DecoupleConfig, RepositoryEmpty, RepositoryEnv

__all__ = [
    "ServerSettings",
    "RenderSettings",
    "StorageSettings",
    "RateLimitSettings",
    "RetentionSettings",
    "UploadSettings",
    "TelemetrySettings",
    "Settings",
    "load_config",
    "get_settings",
]

_GB = 1024 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class ServerSettings:
    """Bind address for the HTTP surface."""

    host: str
    port: int


@dataclass(frozen=True, slots=True)
class RenderSettings:
    """Browser + encoder knobs applied to every capture."""

    playwright_channel: str
    navigation_timeout_ms: int
    wait_for_timeout_ms: int
    request_timeout_s: float
    max_concurrent_renders: int
    default_quality: int


@dataclass(frozen=True, slots=True)
class StorageSettings:
    """Filesystem layout for cached artifacts."""

    images_dir: Path


@dataclass(frozen=True, slots=True)
class RateLimitSettings:
    """Fixed-window limits applied per client address."""

    enabled: bool
    max_requests: int
    window_seconds: int
    max_clients: int


@dataclass(frozen=True, slots=True)
class RetentionSettings:
    """Age and size budgets enforced by the retention sweep."""

    enabled: bool
    max_storage_bytes: int
    max_file_age_seconds: int
    interval_seconds: int


@dataclass(frozen=True, slots=True)
class UploadSettings:
    """S3-compatible object store used for optional uploads."""

    enabled: bool
    bucket: str
    region: str
    endpoint: str
    access_key: str | None
    secret_key: str | None
    public_url: str


@dataclass(frozen=True, slots=True)
class TelemetrySettings:
    """Ports for the Prometheus exporter."""

    prometheus_port: int


@dataclass(frozen=True, slots=True)
class Settings:
    """Top-level immutable configuration container."""

    env_path: str
    server: ServerSettings
    render: RenderSettings
    storage: StorageSettings
    rate_limit: RateLimitSettings
    retention: RetentionSettings
    upload: UploadSettings
    telemetry: TelemetrySettings


def load_config(env_path: str = ".env") -> DecoupleConfig:
    """Return a python-decouple config anchored to the repository .env file.

    Falls back to the process environment alone when the file is absent.
    """

    if Path(env_path).is_file():
        return DecoupleConfig(RepositoryEnv(env_path))
    return DecoupleConfig(RepositoryEmpty())


def _int(cfg: DecoupleConfig, key: str, *, default: int) -> int:
    return cfg(key, cast=int, default=default)


def _float(cfg: DecoupleConfig, key: str, *, default: float) -> float:
    return cfg(key, cast=float, default=default)


def _bool(cfg: DecoupleConfig, key: str, *, default: bool) -> bool:
    return cfg(key, cast=bool, default=default)


@lru_cache(maxsize=1)
def get_settings(env_path: str = ".env") -> Settings:
    """Load and memoize structured settings for the current process."""

    cfg = load_config(env_path)

    render = RenderSettings(
        playwright_channel=cfg("PLAYWRIGHT_CHANNEL", default="chromium"),
        navigation_timeout_ms=_int(cfg, "SCREENSHOT_TIMEOUT_MS", default=30_000),
        wait_for_timeout_ms=_int(cfg, "WAIT_FOR_TIMEOUT_MS", default=10_000),
        request_timeout_s=_float(cfg, "REQUEST_TIMEOUT_S", default=255.0),
        max_concurrent_renders=_int(cfg, "MAX_CONCURRENT_RENDERS", default=4),
        default_quality=_int(cfg, "WEBP_QUALITY", default=80),
    )
    if render.max_concurrent_renders < 1:
        msg = "MAX_CONCURRENT_RENDERS must be >= 1"
        raise ValueError(msg)
    if not 1 <= render.default_quality <= 100:
        msg = "WEBP_QUALITY must be between 1 and 100"
        raise ValueError(msg)

    rate_limit = RateLimitSettings(
        enabled=_bool(cfg, "ENABLE_RATE_LIMIT", default=True),
        max_requests=_int(cfg, "MAX_REQUESTS_PER_IP", default=100),
        window_seconds=_int(cfg, "RATE_LIMIT_WINDOW_S", default=3600),
        max_clients=_int(cfg, "RATE_LIMIT_MAX_CLIENTS", default=10_000),
    )
    retention = RetentionSettings(
        enabled=_bool(cfg, "AUTO_CLEANUP_ENABLED", default=False),
        max_storage_bytes=_int(cfg, "MAX_STORAGE_GB", default=10) * _GB,
        max_file_age_seconds=_int(cfg, "MAX_FILE_AGE_DAYS", default=7) * 86_400,
        interval_seconds=_int(cfg, "CLEANUP_INTERVAL_S", default=3600),
    )
    upload = UploadSettings(
        enabled=_bool(cfg, "S3_ENABLED", default=False),
        bucket=cfg("S3_BUCKET", default=""),
        region=cfg("S3_REGION", default="auto"),
        endpoint=cfg("S3_ENDPOINT", default=""),
        access_key=cfg("S3_ACCESS_KEY", default=None) or None,
        secret_key=cfg("S3_SECRET_KEY", default=None) or None,
        public_url=cfg("S3_PUBLIC_URL", default=""),
    )
    if upload.enabled and not upload.bucket:
        msg = "S3_BUCKET is required when S3_ENABLED is set"
        raise ValueError(msg)

    return Settings(
        env_path=env_path,
        server=ServerSettings(
            host=cfg("HOST", default="0.0.0.0"),
            port=_int(cfg, "PORT", default=3000),
        ),
        render=render,
        storage=StorageSettings(images_dir=Path(cfg("IMAGES_DIR", default="./images"))),
        rate_limit=rate_limit,
        retention=retention,
        upload=upload,
        telemetry=TelemetrySettings(
            prometheus_port=_int(cfg, "PROMETHEUS_PORT", default=0),
        ),
    )


# Statically importable settings singleton for modules that prefer constants over DI.
settings: Final[Settings] = get_settings()
