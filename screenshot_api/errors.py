"""Exception taxonomy shared by the gate, coordinator, and HTTP layer."""

from __future__ import annotations

from fastapi import status


class ScreenshotError(Exception):
    """Base class for failures that map onto an HTTP status and JSON envelope."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Screenshot failed"

    def __init__(self, message: str, *, error: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error

    def to_payload(self) -> dict[str, str]:
        return {"error": self.error, "message": self.message}


class InputError(ScreenshotError):
    """Malformed or missing URL, or out-of-range parameters."""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid parameters"


class PolicyError(ScreenshotError):
    """URL rejected by the safety gate."""

    status_code = status.HTTP_403_FORBIDDEN
    error = "Blocked URL"


class RateLimitError(ScreenshotError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error = "Rate limit exceeded"

    def __init__(self, message: str, *, retry_after: int, headers: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
        self.headers = dict(headers or {})
        self.headers["Retry-After"] = str(retry_after)


class NotCachedError(ScreenshotError):
    """``cache=only`` asked for a fingerprint that has no stored artifact."""

    status_code = status.HTTP_404_NOT_FOUND
    error = "Not cached"


class ImageNotFound(ScreenshotError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Image not found"


class RenderTimeoutError(ScreenshotError):
    error = "Screenshot failed"


class RenderFailure(ScreenshotError):
    """Navigation or browser failure while rendering the page."""

    error = "Screenshot failed"


class EncodeFailure(ScreenshotError):
    error = "Image processing failed"


class UploadFailure(ScreenshotError):
    """Object store rejected or failed an upload; never fails the capture."""

    error = "Upload failed"


class CacheEntryNotFound(FileNotFoundError):
    """Raised by the cache store when a key has no file on disk."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Cache entry {key} not found")
        self.key = key
