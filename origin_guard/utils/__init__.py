"""Utility helpers."""
from .origins import contains_any, first_forwarded_hop, parse_list, resolve_origin  # noqa: F401
from .time import Clock, minute_bucket, now_ms, to_iso  # noqa: F401
