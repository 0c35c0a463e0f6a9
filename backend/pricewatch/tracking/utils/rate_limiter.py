"""Sliding window rate limiter for per-domain request limiting."""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict


@dataclass(frozen=True)
class DomainLimit:
    """Request budget for a single domain."""

    per_minute: int
    min_interval_seconds: float = 0.0


class SlidingWindow:
    """Timestamps of granted requests over a trailing window.

    A request is granted only while fewer than `limit` timestamps fall
    inside the window. Rejections leave the window untouched.
    """

    def __init__(self, limit: DomainLimit, window_seconds: float):
        self.limit = limit
        self.window_seconds = window_seconds
        self.timestamps: Deque[float] = deque()
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()

    def try_acquire(self, clock: Callable[[], float]) -> bool:
        """Grant a slot if the window has room.

        The clock is read under the lock so granted timestamps stay ordered.
        """
        with self._lock:
            now = clock()
            self._evict(now)
            if len(self.timestamps) >= self.limit.per_minute:
                return False
            if (
                self.limit.min_interval_seconds > 0
                and self.timestamps
                and now - self.timestamps[-1] < self.limit.min_interval_seconds
            ):
                return False
            self.timestamps.append(now)
            return True

    def remaining(self, clock: Callable[[], float]) -> int:
        with self._lock:
            self._evict(clock())
            return max(0, self.limit.per_minute - len(self.timestamps))


class DomainRateLimiter:
    """Per-domain sliding window rate limiter.

    Each domain gets its own window and its own lock, so callers working
    on unrelated domains never wait on each other. allow() never blocks:
    a rejected request is simply tried again on a later scheduler tick.
    """

    WINDOW_SECONDS = 60.0

    # Default rate limit for domains without a registered source
    DEFAULT_RPM = 10

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._limits: Dict[str, DomainLimit] = {}
        self._windows: Dict[str, SlidingWindow] = {}
        self._registry_lock = threading.Lock()

    def configure(self, domain: str, per_minute: int, min_interval_seconds: float = 0.0) -> None:
        """Set the request budget for a domain.

        Args:
            domain: Domain name (e.g., "www.amazon.com")
            per_minute: Requests allowed in any 60 second window
            min_interval_seconds: Minimum gap between two granted requests

        Note:
            Reconfiguring a domain resets its window.
        """
        if per_minute < 1:
            raise ValueError("per_minute must be at least 1")
        limit = DomainLimit(per_minute=per_minute, min_interval_seconds=min_interval_seconds)
        with self._registry_lock:
            self._limits[domain.lower()] = limit
            self._windows[domain.lower()] = SlidingWindow(limit, self.WINDOW_SECONDS)

    def _get_window(self, domain: str) -> SlidingWindow:
        domain = domain.lower()
        with self._registry_lock:
            window = self._windows.get(domain)
            if window is None:
                limit = self._limits.get(domain, DomainLimit(per_minute=self.DEFAULT_RPM))
                window = SlidingWindow(limit, self.WINDOW_SECONDS)
                self._windows[domain] = window
            return window

    def allow(self, domain: str) -> bool:
        """Record a request for a domain if its budget has room.

        Returns:
            True if the request may proceed (and was recorded), False otherwise
        """
        return self._get_window(domain).try_acquire(self._clock)

    def remaining(self, domain: str) -> int:
        """Free request slots in the current window for a domain."""
        return self._get_window(domain).remaining(self._clock)

    def get_limit(self, domain: str) -> DomainLimit:
        return self._get_window(domain).limit
