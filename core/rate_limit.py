import threading
import time
from collections import deque
from typing import Deque, Dict


class RateLimiter:
    """Sliding-window counter keyed by arbitrary strings (client IP, ``otp:<mobile>``...).

    Keys whose newest attempt has left its window are dropped by ``sweep``, which
    also runs on its own every ``sweep_every`` hits.
    """

    sweep_every = 1000

    def __init__(self):
        self.hits: Dict[str, Deque[float]] = {}
        self.windows: Dict[str, int] = {}
        self._calls = 0
        self._lock = threading.Lock()

    def hit(self, key: str, limit: int, window: int) -> bool:
        """Record an attempt for ``key``. Returns True when the key is already over ``limit``."""
        now = time.monotonic()
        with self._lock:
            self._calls += 1
            if self._calls % self.sweep_every == 0:
                self._sweep(now)
            attempts = self.hits.setdefault(key, deque())
            self.windows[key] = window
            while attempts and now - attempts[0] >= window:
                attempts.popleft()
            if len(attempts) >= limit:
                return True
            attempts.append(now)
            return False

    def sweep(self) -> int:
        with self._lock:
            return self._sweep(time.monotonic())

    def _sweep(self, now: float) -> int:
        idle = [key for key, attempts in self.hits.items()
                if not attempts or now - attempts[-1] >= self.windows.get(key, 0)]
        for key in idle:
            del self.hits[key]
            self.windows.pop(key, None)
        return len(idle)

    def reset(self, key: str | None = None):
        with self._lock:
            if key is None:
                self.hits.clear()
                self.windows.clear()
            else:
                self.hits.pop(key, None)
                self.windows.pop(key, None)


limiter = RateLimiter()
