"""Time-bounded per-origin blocklist and suspicion markers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Optional, Set

from origin_guard.locks import OriginLocks

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockEntry:
    blocked_at_ms: int
    expires_at_ms: int
    reason: str


@dataclass(frozen=True)
class BlockStatus:
    blocked: bool
    info: Optional[BlockEntry] = None


@dataclass(frozen=True)
class BlockedOrigin:
    origin: str
    blocked_at_ms: int
    expires_at_ms: int
    reason: str


class BlocklistStore:
    """Thread-safe map of origin to :class:`BlockEntry` plus the suspicious set."""

    def __init__(self, locks: OriginLocks) -> None:
        self._locks = locks
        self._entries: Dict[str, BlockEntry] = {}
        self._suspicious: Set[str] = set()
        self._registry = Lock()

    def __len__(self) -> int:
        with self._registry:
            return len(self._entries)

    def is_blocked(self, origin: str, now_ms: int) -> BlockStatus:
        """Report whether ``origin`` is banned at ``now_ms``.

        ``info`` is populated whenever an entry exists, including an expired one,
        so callers can tell "never blocked" from "block ran out".
        """

        with self._registry:
            entry = self._entries.get(origin)
        if entry is None:
            return BlockStatus(blocked=False)
        return BlockStatus(blocked=entry.expires_at_ms > now_ms, info=entry)

    def block(self, origin: str, now_ms: int, duration_ms: int, reason: str) -> BlockEntry:
        """Create or replace the ban for ``origin``; the most recent write wins."""

        if duration_ms <= 0:
            raise ValueError("duration_ms must be positive")
        entry = BlockEntry(blocked_at_ms=now_ms, expires_at_ms=now_ms + duration_ms, reason=reason)
        with self._locks.hold(origin):
            with self._registry:
                current = self._entries.get(origin)
                if current is not None and current.blocked_at_ms > now_ms:
                    LOGGER.warning(
                        "Ignoring stale block write",
                        extra={
                            "origin": origin,
                            "data": {
                                "reason": reason,
                                "blockedAtMs": now_ms,
                                "currentBlockedAtMs": current.blocked_at_ms,
                            },
                        },
                    )
                    return current
                self._entries[origin] = entry
        return entry

    def clear(self, origin: str) -> None:
        with self._locks.hold(origin):
            with self._registry:
                self._entries.pop(origin, None)
                self._suspicious.discard(origin)

    def clear_if_expired(self, origin: str, now_ms: int) -> bool:
        """Clear ``origin`` only if its ban has run out at ``now_ms``."""

        with self._locks.hold(origin):
            status = self.is_blocked(origin, now_ms)
            if status.info is None or status.blocked:
                return False
            self.clear(origin)
            return True

    def mark_suspicious(self, origin: str) -> None:
        with self._locks.hold(origin):
            with self._registry:
                self._suspicious.add(origin)

    def unmark_suspicious(self, origin: str) -> None:
        with self._locks.hold(origin):
            with self._registry:
                self._suspicious.discard(origin)

    def is_suspicious(self, origin: str) -> bool:
        with self._registry:
            return origin in self._suspicious

    def suspicious_origins(self) -> List[str]:
        with self._registry:
            return sorted(self._suspicious)

    @property
    def suspicious_count(self) -> int:
        with self._registry:
            return len(self._suspicious)

    def expired_origins(self, now_ms: int) -> List[str]:
        with self._registry:
            items = list(self._entries.items())
        return [origin for origin, entry in items if entry.expires_at_ms <= now_ms]

    def entries(self) -> List[BlockedOrigin]:
        """Return every ban, oldest first."""

        with self._registry:
            items = list(self._entries.items())
        details = [
            BlockedOrigin(
                origin=origin,
                blocked_at_ms=entry.blocked_at_ms,
                expires_at_ms=entry.expires_at_ms,
                reason=entry.reason,
            )
            for origin, entry in items
        ]
        details.sort(key=lambda item: (item.blocked_at_ms, item.origin))
        return details
