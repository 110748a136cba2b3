"""Simple in-memory IP rate limiter."""
from __future__ import annotations

import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, Dict


class RateLimiter:
    """Tracks requests per client IP within a sliding window.

    A ``limit`` of zero disables the limiter. Clients with no requests left in
    the window are dropped at most once per window.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.limit = limit
        self.window = window_seconds
        self._clock = clock
        self._requests: Dict[str, Deque[float]] = {}
        self._lock = Lock()
        self._last_prune = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    def allow(self, client_ip: str) -> bool:
        if self.limit <= 0:
            return True
        now = self._clock()
        with self._lock:
            if now - self._last_prune >= self.window:
                self._prune(now)
            q = self._requests.setdefault(client_ip, deque())
            while q and q[0] <= now - self.window:
                q.popleft()
            if len(q) >= self.limit:
                return False
            q.append(now)
            return True

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        stale = [ip for ip, q in self._requests.items() if not q or q[-1] <= cutoff]
        for ip in stale:
            del self._requests[ip]
        self._last_prune = now
