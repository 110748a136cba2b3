"""Heuristic policy evaluation: verdicts, evaluators and the timeout wrapper."""
from __future__ import annotations

import enum
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Protocol, Union

from origin_guard.utils.origins import contains_any


class Verdict(str, enum.Enum):
    ALLOW = "ALLOW"
    SUSPICIOUS = "SUSPICIOUS"
    BLOCK = "BLOCK"


class PolicyError(RuntimeError):
    """Base class for evaluator failures; the guard treats all of them as neutral."""


class EvaluatorUnavailable(PolicyError):
    """Raised when the evaluator cannot produce a verdict."""


class EvaluatorTimeout(EvaluatorUnavailable):
    """Raised when the evaluator does not answer within its time budget."""


class EvaluatorMalformedVerdict(PolicyError):
    """Raised when the evaluator answers with something that is not a verdict."""


@dataclass(frozen=True)
class FeatureSnapshot:
    """Read-only features handed to an evaluator for one request."""

    origin: str
    events_in_window: int
    total_request_count: int
    url: str
    method: str
    user_agent: str
    url_length: int
    suspicious_threshold: int

    def as_payload(self) -> Dict[str, Any]:
        return {
            "ip": self.origin,
            "requestCount": self.events_in_window,
            "totalRequests": self.total_request_count,
            "url": self.url,
            "method": self.method,
            "userAgent": self.user_agent,
            "urlLength": self.url_length,
            "suspiciousThreshold": self.suspicious_threshold,
        }


RawVerdict = Union[Verdict, str, None]


class PolicyEvaluator(Protocol):
    def evaluate(self, snapshot: FeatureSnapshot) -> RawVerdict:
        ...


def coerce_verdict(value: Any) -> Verdict:
    """Normalize an evaluator answer into a :class:`Verdict`."""

    if isinstance(value, Verdict):
        return value
    if isinstance(value, str):
        try:
            return Verdict(value.strip().upper())
        except ValueError:
            pass
    raise EvaluatorMalformedVerdict(f"Unrecognised verdict: {value!r}")


class PatternEvaluator:
    """In-process evaluator built from simple request pattern rules."""

    def __init__(
        self,
        *,
        max_url_length: int = 2000,
        suspicious_user_agents: Iterable[str] = (),
        allowed_methods: Iterable[str] = (),
    ) -> None:
        self.max_url_length = max_url_length
        self.suspicious_user_agents = tuple(suspicious_user_agents)
        self.allowed_methods = frozenset(method.upper() for method in allowed_methods)

    def evaluate(self, snapshot: FeatureSnapshot) -> Verdict:
        if snapshot.events_in_window >= snapshot.suspicious_threshold:
            return Verdict.BLOCK
        if self._looks_suspicious(snapshot):
            return Verdict.SUSPICIOUS
        return Verdict.ALLOW

    def _looks_suspicious(self, snapshot: FeatureSnapshot) -> bool:
        if snapshot.url_length > self.max_url_length:
            return True
        if not snapshot.user_agent.strip():
            return True
        if contains_any(snapshot.user_agent, self.suspicious_user_agents):
            return True
        if self.allowed_methods and snapshot.method.upper() not in self.allowed_methods:
            return True
        return snapshot.events_in_window > snapshot.suspicious_threshold / 2


class TimedEvaluator:
    """Run an evaluator on a bounded worker pool and cap how long callers wait."""

    def __init__(self, evaluator: PolicyEvaluator, timeout_ms: int, workers: int = 4) -> None:
        self._evaluator = evaluator
        self._timeout = timeout_ms / 1000
        self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="policy")

    def evaluate(self, snapshot: FeatureSnapshot) -> Verdict:
        """Return the verdict or raise a :class:`PolicyError` subclass."""

        future = self._pool.submit(self._evaluator.evaluate, snapshot)
        try:
            raw = future.result(timeout=self._timeout)
        except FutureTimeout as exc:
            future.cancel()
            raise EvaluatorTimeout(
                f"Evaluator did not answer within {self._timeout:.3f}s"
            ) from exc
        except PolicyError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise EvaluatorUnavailable(f"Evaluator failed: {exc}") from exc
        return coerce_verdict(raw)

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

