"""Origin parsing helpers."""
from __future__ import annotations

from typing import Iterable, Optional

UNKNOWN_ORIGIN = "unknown"


def first_forwarded_hop(header: str | None) -> str | None:
    """Return the client entry of an ``X-Forwarded-For`` header."""

    if not header:
        return None
    first = header.split(",", 1)[0].strip()
    return first or None


def resolve_origin(
    client_host: Optional[str],
    forwarded_for: Optional[str] = None,
    *,
    trust_forwarded: bool = False,
) -> str:
    """Pick the identifier a request is attributed to."""

    forwarded = first_forwarded_hop(forwarded_for)
    if trust_forwarded and forwarded:
        return forwarded
    return client_host or forwarded or UNKNOWN_ORIGIN


def parse_list(value: str | None) -> tuple[str, ...]:
    """Split a comma separated setting, dropping blanks."""

    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def contains_any(text: str, needles: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(needle.lower() in lowered for needle in needles)
