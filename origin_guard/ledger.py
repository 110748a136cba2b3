"""Per-origin sliding-window request ledger."""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from threading import Lock
from typing import Deque, Dict, List, Optional, Tuple

from origin_guard.locks import OriginLocks
from origin_guard.utils.time import minute_bucket

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestEvent:
    arrival_ms: int
    url: str
    method: str
    user_agent: str = ""

    @property
    def minute(self) -> int:
        return minute_bucket(self.arrival_ms)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable view of one origin's ledger right after an update."""

    origin: str
    events: Tuple[RequestEvent, ...]
    total_request_count: int
    last_seen_ms: int

    @property
    def events_in_window(self) -> int:
        return len(self.events)


@dataclass
class _LedgerEntry:
    events: Deque[RequestEvent]
    total_request_count: int = 0
    last_seen_ms: int = 0


def requests_in_minute(snapshot: LedgerSnapshot, minute: int) -> int:
    """Count the events of ``snapshot`` that landed in ``minute``."""

    return sum(1 for event in snapshot.events if event.minute == minute)


class LedgerStore:
    """Thread-safe store of recent request events keyed by origin."""

    def __init__(self, locks: OriginLocks, retention_minutes: int = 5) -> None:
        self._locks = locks
        self._retention = retention_minutes
        self._entries: Dict[str, _LedgerEntry] = {}
        self._registry = Lock()

    @property
    def locks(self) -> OriginLocks:
        return self._locks

    def __len__(self) -> int:
        with self._registry:
            return len(self._entries)

    def __contains__(self, origin: object) -> bool:
        with self._registry:
            return origin in self._entries

    def record_event(self, origin: str, event: RequestEvent) -> LedgerSnapshot:
        """Append ``event``, evict events older than the window and return a snapshot."""

        with self._locks.hold(origin):
            with self._registry:
                entry = self._entries.get(origin)
                if entry is None:
                    entry = _LedgerEntry(events=deque())
                    self._entries[origin] = entry

            if entry.events and event.arrival_ms < entry.last_seen_ms:
                LOGGER.warning(
                    "Clock moved backwards, clamping event time",
                    extra={
                        "origin": origin,
                        "data": {"arrivalMs": event.arrival_ms, "lastSeenMs": entry.last_seen_ms},
                    },
                )
                event = replace(event, arrival_ms=entry.last_seen_ms)

            oldest_allowed = event.minute - self._retention
            while entry.events and entry.events[0].minute < oldest_allowed:
                entry.events.popleft()
            entry.events.append(event)
            entry.total_request_count += 1
            entry.last_seen_ms = event.arrival_ms
            return self._snapshot(origin, entry)

    def get(self, origin: str) -> Optional[LedgerSnapshot]:
        with self._locks.hold(origin):
            with self._registry:
                entry = self._entries.get(origin)
            if entry is None:
                return None
            return self._snapshot(origin, entry)

    def idle_origins(self, cutoff_ms: int) -> List[str]:
        """Return origins not seen since ``cutoff_ms`` (exclusive)."""

        with self._registry:
            items = list(self._entries.items())
        return [origin for origin, entry in items if entry.last_seen_ms < cutoff_ms]

    def discard_if_idle(self, origin: str, cutoff_ms: int) -> bool:
        """Drop the ledger for ``origin`` unless it was touched at or after ``cutoff_ms``."""

        with self._locks.hold(origin):
            with self._registry:
                entry = self._entries.get(origin)
                if entry is None or entry.last_seen_ms >= cutoff_ms:
                    return False
                del self._entries[origin]
                return True

    @staticmethod
    def _snapshot(origin: str, entry: _LedgerEntry) -> LedgerSnapshot:
        return LedgerSnapshot(
            origin=origin,
            events=tuple(entry.events),
            total_request_count=entry.total_request_count,
            last_seen_ms=entry.last_seen_ms,
        )
