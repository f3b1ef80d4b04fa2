from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable

from ecosystem_auth.core.config import PUBLIC_RATE_LIMIT, PUBLIC_RATE_WINDOW_SECONDS


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int


class RateLimiterService(ABC):
    @abstractmethod
    def check(self, *, client_key: str, scope: str) -> RateLimitDecision:
        """Count one hit from ``client_key`` against ``scope`` and decide whether it may proceed."""


class InMemoryRateLimiterService(RateLimiterService):
    """Sliding window per (client, scope).

    Buckets whose newest hit has left the window are dropped, at most once per
    window, so clients that never return do not accumulate. Single-process
    only.
    """

    def __init__(
        self,
        *,
        limit: int = PUBLIC_RATE_LIMIT,
        window_seconds: int = PUBLIC_RATE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._buckets: dict[tuple[str, str], deque[float]] = {}
        self._next_sweep = 0.0
        self._lock = Lock()

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._buckets)

    def _sweep(self, now: float) -> None:
        cutoff = now - self.window_seconds
        stale = [key for key, hits in self._buckets.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._buckets[key]
        self._next_sweep = now + self.window_seconds

    def check(self, *, client_key: str, scope: str) -> RateLimitDecision:
        now = self._clock()
        key = (client_key, scope)

        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)

            hits = self._buckets.get(key)
            if hits is not None:
                cutoff = now - self.window_seconds
                while hits and hits[0] <= cutoff:
                    hits.popleft()

            if hits and len(hits) >= self.limit:
                return RateLimitDecision(
                    allowed=False,
                    limit=self.limit,
                    remaining=0,
                    retry_after_seconds=max(1, int(self.window_seconds - (now - hits[0]))),
                )

            if hits is None:
                hits = self._buckets[key] = deque()
            hits.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=self.limit,
                remaining=max(0, self.limit - len(hits)),
                retry_after_seconds=0,
            )
