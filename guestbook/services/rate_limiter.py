"""
In-memory sliding-window rate limiter for sign-in and anonymous writes.
"""

import time
from collections import defaultdict, deque
from dataclasses import dataclass, field

from guestbook.settings import settings


@dataclass
class RateLimitEntry:
    """Request timestamps inside the current window for one key."""

    requests: deque[float] = field(default_factory=deque)


class RateLimiter:
    """Allow at most ``requests_per_minute`` hits per key."""

    def __init__(self, requests_per_minute: int = 10, window_seconds: float = 60, clock=time.monotonic):
        self.requests_per_minute = requests_per_minute
        self.window_seconds = window_seconds
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = defaultdict(RateLimitEntry)

    def _prune(self, entry: RateLimitEntry, now: float) -> None:
        window_start = now - self.window_seconds
        while entry.requests and entry.requests[0] <= window_start:
            entry.requests.popleft()

    def is_allowed(self, key: str) -> bool:
        """Record a hit for the key if it is under the limit."""
        entry = self._entries[key]
        now = self._clock()
        self._prune(entry, now)

        if len(entry.requests) < self.requests_per_minute:
            entry.requests.append(now)
            return True
        return False

    def remaining(self, key: str) -> int:
        """Get remaining requests for the key."""
        entry = self._entries[key]
        self._prune(entry, self._clock())
        return max(0, self.requests_per_minute - len(entry.requests))

    def reset_time(self, key: str) -> float:
        """Seconds until the oldest hit leaves the window."""
        entry = self._entries[key]
        if not entry.requests:
            return 0
        return max(0, entry.requests[0] + self.window_seconds - self._clock())

    def reset(self) -> None:
        """Forget every key."""
        self._entries.clear()


# Global rate limiters
auth_rate_limiter = RateLimiter(requests_per_minute=settings.rate_limit_auth_per_minute)
post_rate_limiter = RateLimiter(requests_per_minute=settings.rate_limit_posts_per_minute)
