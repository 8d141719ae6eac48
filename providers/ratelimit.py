"""
Rolling-window request quota, owned by one provider instance.

Unsplash allows a handful of requests per hour on a demo key. Rather than
let the API reject us, the client asks the quota first and skips the call
when the window is full.
"""

import logging
import threading
from collections import deque
from datetime import datetime, timezone, timedelta
from typing import Callable

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestQuota:
    def __init__(
        self,
        max_requests: int,
        window: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = _utcnow,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._history: deque[datetime] = deque()
        self._lock = threading.Lock()

    def _expire(self, now: datetime):
        cutoff = now - self.window
        while self._history and self._history[0] <= cutoff:
            self._history.popleft()

    def try_acquire(self) -> bool:
        """Record a request if the window has room. False means skip the call."""
        with self._lock:
            now = self._clock()
            self._expire(now)
            if len(self._history) >= self.max_requests:
                return False
            self._history.append(now)
            return True

    def remaining(self) -> int:
        with self._lock:
            self._expire(self._clock())
            return self.max_requests - len(self._history)

    def retry_after(self) -> timedelta:
        """How long until the oldest request leaves the window."""
        with self._lock:
            now = self._clock()
            self._expire(now)
            if len(self._history) < self.max_requests:
                return timedelta(0)
            return self._history[0] + self.window - now
