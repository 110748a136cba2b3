"""Time helpers."""
from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Callable

Clock = Callable[[], int]

MS_PER_MINUTE = 60_000


def now_ms() -> int:
    """Return wall-clock time in epoch milliseconds."""

    return int(time.time() * 1000)


def minute_bucket(timestamp_ms: int) -> int:
    """Return the whole-minute bucket a millisecond timestamp falls into."""

    return timestamp_ms // MS_PER_MINUTE


def to_iso(timestamp_ms: int | None) -> str | None:
    """Render epoch milliseconds as an ISO-8601 UTC string."""

    if timestamp_ms is None:
        return None
    value = datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
