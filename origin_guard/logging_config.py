"""Logging helpers for structured guard logs."""
from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any, Dict, Optional


class JsonFormatter(logging.Formatter):
    """Render log records as structured JSON."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for attr in ("origin", "data"):
            if value := getattr(record, attr, None):
                payload[attr] = value
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure root logger with JSON formatting, optionally mirrored to a file."""

    formatter = JsonFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers, force=True)
