"""Sliding-window request limiter keyed by caller identifier."""

from __future__ import annotations

import time
from collections import deque

import structlog

logger = structlog.get_logger(__name__)


class RateLimiter:
    def __init__(self, max_requests: int = 10, window_seconds: float = 300.0) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._requests: dict[str, deque[float]] = {}
        self._last_sweep = time.monotonic()

    def _prune(self, identifier: str) -> deque[float]:
        window_start = time.monotonic() - self._window
        timestamps = self._requests.setdefault(identifier, deque())
        while timestamps and timestamps[0] <= window_start:
            timestamps.popleft()
        if not timestamps:
            del self._requests[identifier]
            return deque()
        return timestamps

    def _sweep(self) -> None:
        """Forget identifiers idle for a full window. Runs at most once per window."""
        now = time.monotonic()
        if now - self._last_sweep < self._window:
            return
        self._last_sweep = now
        window_start = now - self._window
        stale = [key for key, stamps in self._requests.items() if not stamps or stamps[-1] <= window_start]
        for key in stale:
            del self._requests[key]
        if stale:
            logger.debug("rate_limit_swept", identifiers=len(stale))

    def is_rate_limited(self, identifier: str) -> bool:
        return len(self._prune(identifier)) >= self._max_requests

    def record_request(self, identifier: str) -> None:
        self._sweep()
        self._prune(identifier)
        self._requests.setdefault(identifier, deque()).append(time.monotonic())

    def remaining(self, identifier: str) -> int:
        return max(0, self._max_requests - len(self._prune(identifier)))

    def time_until_reset(self, identifier: str) -> float:
        timestamps = self._prune(identifier)
        if not timestamps:
            return 0.0
        return max(0.0, timestamps[0] + self._window - time.monotonic())

    def acquire(self, identifier: str) -> bool:
        """Record a request unless the identifier is over its limit."""
        if self.is_rate_limited(identifier):
            logger.info("rate_limited", identifier=identifier)
            return False
        self.record_request(identifier)
        return True
