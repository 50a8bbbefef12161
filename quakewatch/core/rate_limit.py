"""
Fixed-window rate limiting keyed by client identity.

Each limiter counts requests per key inside a window that starts with the
key's first request. Once the count reaches the limit, further requests are
rejected until the window expires.
"""

import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable

from fastapi import Request

from quakewatch.core.csrf import bearer_token
from quakewatch.errors import RateLimitedError

logger = logging.getLogger(__name__)


def client_address(request: Request) -> str:
    """Key requests by the client's network address."""
    return request.client.host if request.client else "unknown"


def client_identity(request: Request) -> str:
    """
    Key requests by client address and bearer token.

    Users sharing an address (office network, household) get separate
    budgets. Anonymous requests fall back to the address alone.
    """
    address = client_address(request)
    token = bearer_token(request)
    if token:
        return f"{address}.{token}"
    return address


@dataclass
class _Window:
    started_at: float
    count: int = 0


class RateLimiter:
    def __init__(
        self,
        name: str,
        limit: int,
        window_seconds: float,
        message: str = "Too many requests, please try again later.",
        key_func: Callable[[Request], str] = client_address,
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval: float = 3600,
    ):
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.message = message
        self.key_func = key_func
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = Lock()
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = clock()

    def key_for(self, request: Request) -> str:
        return self.key_func(request)

    def hit(self, key: str) -> int:
        """Count one request for ``key``; raise once the limit is exceeded."""
        with self._lock:
            now = self._clock()
            self._cleanup(now)
            window = self._current(key, now)
            if window.count >= self.limit:
                raise self._limited(window, now)
            window.count += 1
            return window.count

    def release(self, key: str) -> None:
        """Refund one request counted by ``hit``, e.g. after a successful login."""
        with self._lock:
            window = self._windows.get(key)
            if window is not None and window.count > 0:
                window.count -= 1

    def check(self, key: str) -> None:
        """Raise if ``key`` has no budget left, without counting a request."""
        with self._lock:
            now = self._clock()
            window = self._current(key, now)
            if window.count >= self.limit:
                raise self._limited(window, now)

    def remaining(self, key: str) -> int:
        with self._lock:
            window = self._current(key, self._clock())
            return max(self.limit - window.count, 0)

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def _current(self, key: str, now: float) -> _Window:
        window = self._windows.get(key)
        if window is None or now - window.started_at >= self.window_seconds:
            window = _Window(started_at=now)
            self._windows[key] = window
        return window

    def _limited(self, window: _Window, now: float) -> RateLimitedError:
        retry_after = max(math.ceil(window.started_at + self.window_seconds - now), 1)
        logger.warning("Rate limit '%s' exceeded", self.name)
        return RateLimitedError(
            f"{self.message} Retry in {retry_after} seconds.", retry_after=retry_after
        )

    def _cleanup(self, now: float) -> None:
        # Called with the lock held.
        if now - self._last_cleanup < self._cleanup_interval:
            return
        expired = [
            key
            for key, window in self._windows.items()
            if now - window.started_at >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.info("Cleaned up %d expired rate-limit windows", len(expired))
        self._last_cleanup = now
