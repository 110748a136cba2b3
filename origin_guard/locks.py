"""Striped per-origin locks shared by the stores, the pipeline and the reaper."""
from __future__ import annotations

import zlib
from contextlib import contextmanager
from threading import RLock
from typing import Iterator, List


class OriginLocks:
    """Fixed table of re-entrant locks; each origin always maps to the same stripe.

    Operations on one origin are serialized while different origins only contend
    when they hash to the same stripe. The table never grows with the number of
    origins seen.
    """

    def __init__(self, stripes: int = 64) -> None:
        if stripes <= 0:
            raise ValueError("stripes must be positive")
        self._locks: List[RLock] = [RLock() for _ in range(stripes)]

    def _index(self, origin: str) -> int:
        return zlib.crc32(origin.encode("utf-8")) % len(self._locks)

    def lock_for(self, origin: str) -> RLock:
        return self._locks[self._index(origin)]

    @contextmanager
    def hold(self, origin: str) -> Iterator[None]:
        with self.lock_for(origin):
            yield
