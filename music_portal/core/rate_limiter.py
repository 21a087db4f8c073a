import math
import time
from typing import Dict, Tuple

from .exceptions import RateLimitExceeded

MAX_TRACKED_KEYS = 10000


class RateLimiter:
    """Fixed-window counter keyed by an arbitrary string (school id, email)."""

    def __init__(self, max_requests: int, window: int, message: str = "Rate limit exceeded."):
        self.max_requests = max_requests
        self.window = window
        self.message = message
        self.windows: Dict[str, Tuple[float, int]] = {}

    def check(self, key: str):
        """Count one request for key, raising once the window is full"""
        if len(self.windows) > MAX_TRACKED_KEYS:
            self.cleanup()
        now = time.monotonic()
        started, count = self.windows.get(key, (now, 0))

        if now - started >= self.window:
            started, count = now, 0

        if count >= self.max_requests:
            retry_after = max(1, math.ceil(started + self.window - now))
            raise RateLimitExceeded(
                f"{self.message} Please try again in {retry_after} seconds.",
                retry_after=retry_after,
            )

        self.windows[key] = (started, count + 1)

    def remaining(self, key: str) -> int:
        now = time.monotonic()
        entry = self.windows.get(key)
        if not entry or now - entry[0] >= self.window:
            return self.max_requests
        return max(0, self.max_requests - entry[1])

    def reset(self, key: str = None):
        if key is None:
            self.windows.clear()
        else:
            self.windows.pop(key, None)

    def cleanup(self):
        """Drop windows that expired more than one window ago"""
        now = time.monotonic()
        stale = [key for key, (started, _) in self.windows.items() if now - started >= self.window * 2]
        for key in stale:
            del self.windows[key]
