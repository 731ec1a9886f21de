"""
Bounded-duration operations.

A Deadline is created once per fetch. Every HTTP request made on behalf of
that fetch gets its timeouts clipped to the time that is left, and long
running loops call check() so an expired fetch aborts promptly.
"""
from __future__ import annotations

import time
from typing import Callable

import httpx

from .errors import FetchTimeoutError

__all__ = ["Deadline"]


class Deadline:
    """Absolute point in time after which a fetch must give up."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(self._expires_at - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, what: str) -> None:
        """
        Raise if the deadline has passed.

        Raises:
            FetchTimeoutError: If no time is left
        """
        if self.expired:
            raise FetchTimeoutError(f"{what}: exceeded {self.seconds:g}s fetch deadline")

    def clip(self, timeout: httpx.Timeout) -> httpx.Timeout:
        """Return timeout with every phase limited to the remaining time."""
        left = self.remaining()

        def _clip(value):
            return left if value is None else min(value, left)

        return httpx.Timeout(
            connect=_clip(timeout.connect),
            read=_clip(timeout.read),
            write=_clip(timeout.write),
            pool=_clip(timeout.pool),
        )
