"""Non-blocking fixed-window rate limiter for outbound AI calls."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


class RateLimiter:
    """Allow at most ``max_calls`` per ``window_seconds``.

    :meth:`allow` never sleeps: it either consumes one call from the current
    window's budget and returns ``True``, or returns ``False`` right away. The
    window restarts once ``window_seconds`` have elapsed since it opened, as
    measured by ``clock`` (monotonic by default). State lives in memory only.
    """

    def __init__(
        self,
        max_calls: int,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_calls < 0:
            raise ValueError("max_calls must be >= 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._window_start = clock()
        self._used = 0

    def _roll(self, now: float) -> None:
        if now - self._window_start >= self.window_seconds:
            self._window_start = now
            self._used = 0

    def allow(self) -> bool:
        with self._lock:
            self._roll(self._clock())
            if self._used >= self.max_calls:
                return False
            self._used += 1
            return True

    def remaining(self) -> int:
        with self._lock:
            self._roll(self._clock())
            return self.max_calls - self._used


__all__ = ["RateLimiter"]
