from __future__ import annotations

import boto3
import pytest
from botocore.exceptions import EndpointConnectionError
from botocore.stub import ANY, Stubber

from screenshot_api.errors import UploadFailure
from screenshot_api.settings import UploadSettings
from screenshot_api.upload import S3ObjectStore


def _client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="test-key",
        aws_secret_access_key="test-secret",
    )


@pytest.mark.asyncio
async def test_upload_puts_object_and_returns_public_url() -> None:
    client = _client()
    store = S3ObjectStore(bucket="shots", public_url="https://cdn.example.com/", client=client)

    with Stubber(client) as stubber:
        stubber.add_response(
            "put_object",
            {"ETag": '"abc"'},
            {"Bucket": "shots", "Key": "abc.webp", "Body": ANY, "ContentType": "image/webp"},
        )
        url = await store.upload("abc.webp", b"data", content_type="image/webp")
        stubber.assert_no_pending_responses()

    assert url == "https://cdn.example.com/abc.webp"


@pytest.mark.asyncio
async def test_upload_without_public_url_returns_key() -> None:
    client = _client()
    store = S3ObjectStore(bucket="shots", client=client)

    with Stubber(client) as stubber:
        stubber.add_response("put_object", {}, None)
        assert await store.upload("abc.png", b"x", content_type="image/png") == "abc.png"


@pytest.mark.asyncio
async def test_rejected_put_becomes_upload_failure() -> None:
    client = _client()
    store = S3ObjectStore(bucket="shots", client=client)

    with Stubber(client) as stubber:
        stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(UploadFailure) as excinfo:
            await store.upload("abc.webp", b"x", content_type="image/webp")

    assert "AccessDenied" in excinfo.value.message


@pytest.mark.asyncio
async def test_connection_error_becomes_upload_failure() -> None:
    class UnreachableClient:
        def put_object(self, **kwargs):
            raise EndpointConnectionError(endpoint_url="https://r2.example.com/shots/abc.webp")

        def close(self) -> None:
            pass

    store = S3ObjectStore(bucket="shots", client=UnreachableClient())

    with pytest.raises(UploadFailure) as excinfo:
        await store.upload("abc.webp", b"x", content_type="image/webp")

    assert "r2.example.com" in excinfo.value.message
    await store.close()


def test_from_settings_builds_signed_client_for_custom_endpoint() -> None:
    store = S3ObjectStore.from_settings(
        UploadSettings(
            enabled=True,
            bucket="shots",
            region="auto",
            endpoint="https://account.r2.cloudflarestorage.com",
            access_key="key-id",
            secret_key="secret",
            public_url="https://cdn.example.com",
        )
    )

    assert store.bucket == "shots"
    assert store._s3.meta.endpoint_url == "https://account.r2.cloudflarestorage.com"
    assert store._s3.meta.region_name == "auto"
    credentials = store._s3._request_signer._credentials
    assert credentials.access_key == "key-id"
    assert credentials.secret_key == "secret"
