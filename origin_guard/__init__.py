"""Origin guard package exports commonly used helpers for convenience."""

from .config import ConfigError, Settings, get_settings
from .logging_config import configure_logging
from .pipeline import AdmissionGuard, Decision, InboundRequest, Outcome
from .policy import Verdict

__all__ = [
    "AdmissionGuard",
    "ConfigError",
    "Decision",
    "InboundRequest",
    "Outcome",
    "Settings",
    "Verdict",
    "configure_logging",
    "get_settings",
]
