"""Fixed-window request quota for the protected route.

Every key gets ``limit`` admissions per window. The window for a key opens
on its first admitted request and the full quota is restored once
``window_seconds`` have elapsed. The default key is global; callers may key
by verified user instead.

Thread-safe: all state is guarded by a ``threading.Lock``. Expired windows
are swept at most once per window, so the key map only holds keys seen
within roughly the last two windows.
"""

import logging
import math
import threading
from collections.abc import Callable
from dataclasses import dataclass
from time import monotonic
from typing import Protocol

logger = logging.getLogger("bookmatch.ratelimit")

GLOBAL_KEY = "global"


class RateLimitExceededError(Exception):
    """Raised when a key has used its quota for the current window."""

    def __init__(self, key: str, limit: int, retry_after_s: int):
        self.key = key
        self.limit = limit
        self.retry_after_s = retry_after_s
        super().__init__(
            f"Rate limit of {limit} requests exceeded for {key}; retry in {retry_after_s}s"
        )


class RateLimiter(Protocol):
    def acquire(self, key: str = GLOBAL_KEY) -> int:
        """Consume one admission and return how many are left, or raise
        RateLimitExceededError."""


@dataclass
class _Window:
    opened_at: float
    used: int = 0


class FixedWindowRateLimiter:
    def __init__(
        self,
        limit: int = 10,
        window_seconds: float = 30.0,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def acquire(self, key: str = GLOBAL_KEY) -> int:
        with self._lock:
            now = self._clock()
            self._sweep(now)
            window = self._current_window(key, now)
            if window.used >= self._limit:
                elapsed = now - window.opened_at
                retry_after = max(1, math.ceil(self._window_seconds - elapsed))
                logger.info(
                    "rate_limit_exceeded",
                    extra={"rate_limit_key": key, "retry_after_s": retry_after},
                )
                raise RateLimitExceededError(key=key, limit=self._limit, retry_after_s=retry_after)
            window.used += 1
            return self._limit - window.used

    def _current_window(self, key: str, now: float) -> _Window:
        window = self._windows.get(key)
        if window is None or self._expired(window, now):
            window = _Window(opened_at=now)
            self._windows[key] = window
        return window

    def _expired(self, window: _Window, now: float) -> bool:
        return now - window.opened_at >= self._window_seconds

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self._window_seconds:
            return
        self._last_sweep = now
        stale = [key for key, window in self._windows.items() if self._expired(window, now)]
        for key in stale:
            del self._windows[key]
        if stale:
            logger.debug("rate_limit_windows_swept: %d", len(stale))
