import time
from collections.abc import Callable

import structlog

logger = structlog.get_logger()


class InMemoryRateLimiter:
    """Fixed-window request counter per key (per-process only)."""

    def __init__(self, limit: int, window_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._counters: dict[str, tuple[int, float]] = {}

    def check(self, key: str) -> tuple[bool, int]:
        """Count one request for ``key``; returns ``(allowed, remaining)``."""
        now = self._clock()
        count, expires_at = self._counters.get(key, (0, 0.0))
        if now >= expires_at:
            count, expires_at = 0, now + self.window_seconds
        count += 1
        self._counters[key] = (count, expires_at)
        self._prune(now)

        allowed = count <= self.limit
        if not allowed:
            logger.warning("rate_limit_exceeded", key=key, current=count, limit=self.limit)
        return allowed, max(0, self.limit - count)

    def _prune(self, now: float) -> None:
        if len(self._counters) < 10_000:
            return
        for key in [k for k, (_, expires_at) in self._counters.items() if expires_at <= now]:
            del self._counters[key]
