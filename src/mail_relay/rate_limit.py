# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Fixed-window rate limiter keyed by client identity.

Each limiter key gets ``max_requests`` slots per ``window_seconds``. The
window for a key opens with its first request and resets once it expires.
A request reserves a slot before it is handled; if the response turns out
to be a failure the slot is given back with :meth:`RateLimiter.release_slot`,
so only successful traffic counts toward the quota.

Counters live in memory and are guarded by an ``asyncio.Lock``, so
overlapping requests on the same event loop are accounted exactly.

Example:
    Guarding a handler::

        limiter = RateLimiter(max_requests=5, window_seconds=60)
        try:
            quota = await limiter.acquire(client_ip)
        except RateLimitExceeded as exc:
            return too_many_requests(retry_after=exc.retry_after)
        response = await handler()
        if response.status_code >= 400:
            await limiter.release_slot(client_ip, quota.window_opened_at)
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from .errors import RateLimitExceeded

DEFAULT_MAX_REQUESTS = 5
DEFAULT_WINDOW_SECONDS = 60.0


@dataclass
class _Window:
    opened_at: float
    hits: int = 0


@dataclass(frozen=True)
class Quota:
    """Snapshot of a key's quota after a successful reservation."""

    limit: int
    remaining: int
    reset_after: int
    window_opened_at: float


class RateLimiter:
    """In-memory fixed-window limiter.

    Attributes:
        max_requests: Slots available to a key in each window.
        window_seconds: Window length in seconds.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Create a limiter; ``clock`` must be monotonic and is replaced in tests."""
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: dict[str, _Window] = {}
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_purge = clock()

    def _reset_after(self, window: _Window, now: float) -> int:
        return max(0, math.ceil(window.opened_at + self.window_seconds - now))

    def _purge_expired(self, now: float) -> None:
        if now - self._last_purge < self.window_seconds:
            return
        self._last_purge = now
        expired = [key for key, w in self._windows.items() if now - w.opened_at >= self.window_seconds]
        for key in expired:
            del self._windows[key]

    async def acquire(self, key: str) -> Quota:
        """Reserve one slot for ``key``.

        Raises:
            RateLimitExceeded: The key already used every slot of its
                current window. Rejected requests do not consume a slot.
        """
        now = self._clock()
        async with self._lock:
            self._purge_expired(now)
            window = self._windows.get(key)
            if window is None or now - window.opened_at >= self.window_seconds:
                window = _Window(opened_at=now)
                self._windows[key] = window
            if window.hits >= self.max_requests:
                raise RateLimitExceeded(retry_after=max(1, self._reset_after(window, now)))
            window.hits += 1
            return Quota(
                limit=self.max_requests,
                remaining=self.max_requests - window.hits,
                reset_after=self._reset_after(window, now),
                window_opened_at=window.opened_at,
            )

    async def release_slot(self, key: str, window_opened_at: float) -> None:
        """Give back a slot reserved by a request that ended in failure.

        Args:
            key: Limiter key the slot was reserved for.
            window_opened_at: ``Quota.window_opened_at`` from the reservation.
                Slots reserved in a window that has since been replaced are
                not returned to the new one.
        """
        async with self._lock:
            window = self._windows.get(key)
            if window is not None and window.opened_at == window_opened_at and window.hits > 0:
                window.hits -= 1

    async def remaining(self, key: str) -> int:
        """Slots still available to ``key`` in its current window."""
        now = self._clock()
        async with self._lock:
            window = self._windows.get(key)
            if window is None or now - window.opened_at >= self.window_seconds:
                return self.max_requests
            return self.max_requests - window.hits
