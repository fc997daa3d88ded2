"""Object store adapters for optional artifact uploads."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from screenshot_api.errors import UploadFailure
from screenshot_api.settings import UploadSettings

LOGGER = logging.getLogger(__name__)

CLIENT_CONFIG = BotoConfig(
    connect_timeout=10,
    read_timeout=60,
    retries={"max_attempts": 3, "mode": "standard"},
)


class ObjectStore(Protocol):
    """Uploads bytes under a key and returns the URL clients should use."""

    async def upload(self, key: str, data: bytes, *, content_type: str) -> str: ...

    async def close(self) -> None: ...


class S3ObjectStore:
    """Writes artifacts to S3 or an S3-compatible bucket (R2, MinIO).

    boto3 clients are blocking, so each ``put_object`` runs in a worker thread.
    """

    def __init__(
        self,
        *,
        bucket: str,
        region: str | None = None,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        public_url: str = "",
        client: Any | None = None,
    ) -> None:
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        if client is None:
            kwargs: dict[str, Any] = {"config": CLIENT_CONFIG}
            if region:
                kwargs["region_name"] = region
            if endpoint_url:
                kwargs["endpoint_url"] = endpoint_url
            if access_key and secret_key:
                kwargs["aws_access_key_id"] = access_key
                kwargs["aws_secret_access_key"] = secret_key
            client = boto3.client("s3", **kwargs)
        self._s3 = client

    @classmethod
    def from_settings(cls, settings: UploadSettings) -> S3ObjectStore:
        return cls(
            bucket=settings.bucket,
            region=settings.region,
            endpoint_url=settings.endpoint or None,
            access_key=settings.access_key,
            secret_key=settings.secret_key,
            public_url=settings.public_url,
        )

    def public_url_for(self, key: str) -> str:
        return f"{self.public_url}/{key}" if self.public_url else key

    async def upload(self, key: str, data: bytes, *, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "Unknown")
            raise UploadFailure(f"Object store rejected {key}: {code}") from exc
        except BotoCoreError as exc:
            raise UploadFailure(f"Object store request failed for {key}: {exc}") from exc
        LOGGER.info("uploaded artifact", extra={"key": key, "bytes": len(data), "bucket": self.bucket})
        return self.public_url_for(key)

    async def close(self) -> None:
        await asyncio.to_thread(self._s3.close)
