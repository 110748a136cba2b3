"""Guard settings and environment loading utilities."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from origin_guard.utils.origins import parse_list

DEFAULT_SUSPICIOUS_USER_AGENTS = (
    "bot",
    "crawler",
    "spider",
    "scraper",
    "curl",
    "wget",
    "python-requests",
)
DEFAULT_ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD")


class ConfigError(RuntimeError):
    """Raised when settings are missing or out of range."""


def _load_dotenv() -> None:
    env_path = Path(".env")
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


_load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return parse_list(raw)


@dataclass(frozen=True)
class Settings:
    """Runtime configuration derived from environment variables."""

    whitelist: frozenset[str] = frozenset({"127.0.0.1", "::1"})
    suspicious_threshold: int = 900
    block_duration_ms: int = 30 * 60 * 1000
    ledger_retention_minutes: int = 5
    idle_horizon_ms: int = 24 * 60 * 60 * 1000
    reaper_interval_ms: int = 60_000
    evaluator_timeout_ms: int = 250
    evaluator_workers: int = 4
    policy_url: Optional[str] = None
    trust_forwarded_for: bool = False
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60
    rate_limit_message: str = "Too many requests from this IP, please try again later."
    max_url_length: int = 2000
    suspicious_user_agents: tuple[str, ...] = DEFAULT_SUSPICIOUS_USER_AGENTS
    allowed_methods: tuple[str, ...] = DEFAULT_ALLOWED_METHODS
    cors_origins: tuple[str, ...] = ("*",)
    log_level: str = "INFO"
    log_file: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 3000

    def __post_init__(self) -> None:
        self.validate()

    @property
    def flood_cutoff(self) -> float:
        """Per-bucket request count above which an origin is flooding."""

        return self.suspicious_threshold / 60

    def validate(self) -> None:
        """Raise :class:`ConfigError` for settings the guard cannot run with."""

        positive = {
            "suspicious_threshold": self.suspicious_threshold,
            "block_duration_ms": self.block_duration_ms,
            "ledger_retention_minutes": self.ledger_retention_minutes,
            "idle_horizon_ms": self.idle_horizon_ms,
            "reaper_interval_ms": self.reaper_interval_ms,
            "evaluator_timeout_ms": self.evaluator_timeout_ms,
            "evaluator_workers": self.evaluator_workers,
            "rate_limit_window_seconds": self.rate_limit_window_seconds,
            "max_url_length": self.max_url_length,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigError(f"{name} must be positive, got {value}")
        if self.rate_limit_requests < 0:
            raise ConfigError("rate_limit_requests must be zero (disabled) or positive")
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"Invalid port number: {self.port}")
        if self.policy_url is not None and not self.policy_url.startswith(("http://", "https://")):
            raise ConfigError(f"policy_url must be an http(s) URL, got {self.policy_url!r}")
        if not self.allowed_methods:
            raise ConfigError("allowed_methods must not be empty")
        if self.log_level not in logging.getLevelNamesMapping():
            raise ConfigError(f"Unknown log level: {self.log_level!r}")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            whitelist=frozenset(_env_list("GUARD_WHITELIST", ("127.0.0.1", "::1"))),
            suspicious_threshold=_env_int("GUARD_SUSPICIOUS_THRESHOLD", 900),
            block_duration_ms=_env_int("GUARD_BLOCK_DURATION_MS", 30 * 60 * 1000),
            ledger_retention_minutes=_env_int("GUARD_LEDGER_RETENTION_MINUTES", 5),
            idle_horizon_ms=_env_int("GUARD_IDLE_HORIZON_MS", 24 * 60 * 60 * 1000),
            reaper_interval_ms=_env_int("GUARD_REAPER_INTERVAL_MS", 60_000),
            evaluator_timeout_ms=_env_int("GUARD_EVALUATOR_TIMEOUT_MS", 250),
            evaluator_workers=_env_int("GUARD_EVALUATOR_WORKERS", 4),
            policy_url=os.getenv("GUARD_POLICY_URL") or None,
            trust_forwarded_for=_env_bool("GUARD_TRUST_FORWARDED_FOR"),
            rate_limit_requests=_env_int("GUARD_RATE_LIMIT_REQUESTS", 100),
            rate_limit_window_seconds=_env_int("GUARD_RATE_LIMIT_WINDOW_SECONDS", 15 * 60),
            rate_limit_message=os.getenv(
                "GUARD_RATE_LIMIT_MESSAGE",
                "Too many requests from this IP, please try again later.",
            ),
            max_url_length=_env_int("GUARD_MAX_URL_LENGTH", 2000),
            suspicious_user_agents=_env_list(
                "GUARD_SUSPICIOUS_USER_AGENTS", DEFAULT_SUSPICIOUS_USER_AGENTS
            ),
            allowed_methods=tuple(
                method.upper()
                for method in _env_list("GUARD_ALLOWED_METHODS", DEFAULT_ALLOWED_METHODS)
            ),
            cors_origins=_env_list("GUARD_CORS_ORIGINS", ("*",)),
            log_level=os.getenv("GUARD_LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("GUARD_LOG_FILE") or None,
            host=os.getenv("GUARD_HOST", "0.0.0.0"),
            port=_env_int("GUARD_PORT", 3000),
        )


@lru_cache()
def get_settings() -> Settings:
    """Return cached guard settings."""

    return Settings.from_env()
