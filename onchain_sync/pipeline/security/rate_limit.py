import threading
import time
from collections import deque
from typing import Callable, Mapping, Optional


def client_identity(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """First hop of ``x-forwarded-for``, then ``x-real-ip``, then the socket peer."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer or "unknown"


class SlidingWindowRateLimiter:
    """
    At most ``max_requests`` per identity within any ``window_seconds`` window.

    In-process state; each API worker enforces its own budget.
    """

    def __init__(self, max_requests: int = 100, window_seconds: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def allow(self, identity: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now

            hits = self._hits.get(identity)
            if hits is None:
                hits = self._hits[identity] = deque()
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.max_requests:
                if not hits:
                    del self._hits[identity]
                return False
            hits.append(now)
            return True

    def _sweep(self, cutoff: float) -> None:
        # identities whose newest hit has left the window
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]

    @property
    def tracked(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
