import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class Window:
    started_at: float
    count: int = 0


class FixedWindowRateLimiter:
    """
    Fixed-window limiter keyed by caller-chosen strings (tenant + user + route).

    At most ``limit`` hits are allowed per ``window_seconds`` for one key.
    Stale windows are swept once the key table reaches ``max_keys`` so memory
    stays bounded.
    """

    def __init__(
        self,
        limit: int = 5,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 10_000,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._windows: Dict[str, Window] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        """Record one attempt; True when it is within the limit."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window.started_at >= self.window_seconds:
                if window is None and len(self._windows) >= self.max_keys:
                    self._sweep(now)
                window = Window(started_at=now)
                self._windows[key] = window
            if window.count >= self.limit:
                return False
            window.count += 1
            return True

    def retry_after(self, key: str) -> float:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return 0.0
            return max(0.0, self.window_seconds - (now - window.started_at))

    def _sweep(self, now: float) -> None:
        stale = [k for k, w in self._windows.items() if now - w.started_at >= self.window_seconds]
        for k in stale:
            del self._windows[k]
        # Every key is still live: drop the oldest windows to stay bounded.
        while len(self._windows) >= self.max_keys:
            oldest = min(self._windows, key=lambda k: self._windows[k].started_at)
            del self._windows[oldest]


def rate_limit_key(org_id: str, user_id: Optional[str], route: str) -> str:
    return f"{org_id}:{user_id or '-'}:{route}"
