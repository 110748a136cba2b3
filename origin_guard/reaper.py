"""Background sweep that expires stale blocks and idle ledgers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Event, Thread
from typing import Optional

from origin_guard.blocklist import BlocklistStore
from origin_guard.ledger import LedgerStore
from origin_guard.utils.time import Clock, now_ms

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    blocks_cleared: int
    ledgers_removed: int


class Reaper:
    """Periodically clears expired bans and forgets origins idle past the horizon."""

    def __init__(
        self,
        ledger: LedgerStore,
        blocklist: BlocklistStore,
        *,
        interval_ms: int = 60_000,
        idle_horizon_ms: int = 24 * 60 * 60 * 1000,
        clock: Clock = now_ms,
    ) -> None:
        self._ledger = ledger
        self._blocklist = blocklist
        self._interval = interval_ms / 1000
        self._idle_horizon_ms = idle_horizon_ms
        self._clock = clock
        self._stopped = Event()
        self._thread: Optional[Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def sweep(self, now: Optional[int] = None) -> SweepResult:
        """Run one cleanup cycle at ``now`` (defaults to the clock)."""

        now = self._clock() if now is None else now
        blocks_cleared = sum(
            1
            for origin in self._blocklist.expired_origins(now)
            if self._blocklist.clear_if_expired(origin, now)
        )
        cutoff = now - self._idle_horizon_ms
        ledgers_removed = sum(
            1 for origin in self._ledger.idle_origins(cutoff) if self._forget(origin, now, cutoff)
        )
        LOGGER.debug(
            "Cleanup finished",
            extra={
                "data": {
                    "blocksCleared": blocks_cleared,
                    "ledgersRemoved": ledgers_removed,
                    "blockedIPs": len(self._blocklist),
                    "trackedIPs": len(self._ledger),
                }
            },
        )
        return SweepResult(blocks_cleared=blocks_cleared, ledgers_removed=ledgers_removed)

    def _forget(self, origin: str, now: int, cutoff: int) -> bool:
        """Drop an idle ledger and, unless a ban still holds it, its suspicion marker."""

        with self._ledger.locks.hold(origin):
            if not self._ledger.discard_if_idle(origin, cutoff):
                return False
            if self._blocklist.is_blocked(origin, now).info is None:
                self._blocklist.unmark_suspicious(origin)
            return True

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._thread = Thread(target=self._run, name="guard-reaper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            try:
                self.sweep()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Cleanup sweep failed")
