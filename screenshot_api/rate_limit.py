"""Per-client fixed-window rate limiting."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict

from fastapi import Request

from screenshot_api.errors import RateLimitError
from screenshot_api.settings import RateLimitSettings

Clock = Callable[[], float]


def extract_rate_limit_key(request: Request) -> str:
    """Return the limiter key for a request (client address)."""

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


@dataclass
class RateLimitWindow:
    """Request count for one client inside the current fixed window."""

    count: int
    reset_at: float

    def expired(self, now: float) -> bool:
        return now > self.reset_at


class FixedWindowRateLimiter:
    """In-memory limiter with one fixed window per client.

    The first request opens a window ending at ``now + window_seconds``; later
    requests increment the counter until the window expires, after which it is
    replaced outright (the count restarts at 1). The table keeps at most
    ``max_clients`` windows, evicting the least recently seen client first.
    """

    def __init__(
        self,
        max_requests: int = 100,
        *,
        window_seconds: float = 3600,
        enabled: bool = True,
        max_clients: int = 10_000,
        clock: Clock = time.time,
    ) -> None:
        if max_requests <= 0:
            raise ValueError(f"max_requests must be positive, got {max_requests}")
        if max_clients <= 0:
            raise ValueError(f"max_clients must be positive, got {max_clients}")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.enabled = enabled
        self.max_clients = max_clients
        self._clock = clock
        self._windows: OrderedDict[str, RateLimitWindow] = OrderedDict()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: RateLimitSettings) -> FixedWindowRateLimiter:
        return cls(
            settings.max_requests,
            window_seconds=settings.window_seconds,
            enabled=settings.enabled,
            max_clients=settings.max_clients,
        )

    def __len__(self) -> int:
        return len(self._windows)

    def admit(self, client_id: str) -> bool:
        """Record a request for ``client_id``; False when its window is exhausted."""

        allowed, _ = self.check(client_id)
        return allowed

    def check(self, client_id: str) -> tuple[bool, Dict[str, Any]]:
        """Admit or reject a request and return header-friendly window stats.

        Returns:
            (allowed, stats) where stats holds ``limit``, ``remaining``, ``reset``
            and, when rejected, ``retry_after`` in seconds.
        """
        if not self.enabled:
            return True, {"limit": self.max_requests, "remaining": self.max_requests, "reset": 0}

        now = self._clock()
        with self._lock:
            window = self._windows.get(client_id)
            if window is None or window.expired(now):
                window = RateLimitWindow(count=1, reset_at=now + self.window_seconds)
                self._windows[client_id] = window
                self._windows.move_to_end(client_id)
                self._evict_overflow()
                allowed = True
            elif window.count >= self.max_requests:
                allowed = False
            else:
                window.count += 1
                self._windows.move_to_end(client_id)
                allowed = True

            stats: Dict[str, Any] = {
                "limit": self.max_requests,
                "remaining": max(0, self.max_requests - window.count),
                "reset": int(window.reset_at),
            }
            if not allowed:
                stats["retry_after"] = max(1, int(window.reset_at - now) + 1)
        return allowed, stats

    def window_for(self, client_id: str) -> RateLimitWindow | None:
        with self._lock:
            window = self._windows.get(client_id)
            if window is None:
                return None
            return RateLimitWindow(count=window.count, reset_at=window.reset_at)

    def prune_expired(self) -> int:
        """Drop windows whose reset time has passed.

        Returns:
            Number of windows removed
        """
        now = self._clock()
        with self._lock:
            stale_keys = [key for key, window in self._windows.items() if window.expired(now)]
            for key in stale_keys:
                del self._windows[key]
        return len(stale_keys)

    def _evict_overflow(self) -> None:
        while len(self._windows) > self.max_clients:
            self._windows.popitem(last=False)


def enforce_rate_limit(limiter: FixedWindowRateLimiter, request: Request) -> Dict[str, str]:
    """Admit the request or raise :class:`RateLimitError`; return rate-limit headers."""

    allowed, stats = limiter.check(extract_rate_limit_key(request))
    headers = {
        "X-RateLimit-Limit": str(stats["limit"]),
        "X-RateLimit-Remaining": str(stats["remaining"]),
        "X-RateLimit-Reset": str(stats["reset"]),
    }
    if not allowed:
        raise RateLimitError(
            f"Maximum {limiter.max_requests} requests per hour"
            if limiter.window_seconds == 3600
            else f"Maximum {limiter.max_requests} requests per {int(limiter.window_seconds)}s",
            retry_after=stats["retry_after"],
            headers=headers,
        )
    return headers
