"""Per-request admission pipeline."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import AbstractSet, List, Optional

from origin_guard.blocklist import BlockedOrigin, BlocklistStore
from origin_guard.config import Settings
from origin_guard.ledger import LedgerSnapshot, LedgerStore, RequestEvent, requests_in_minute
from origin_guard.locks import OriginLocks
from origin_guard.policy import (
    EvaluatorMalformedVerdict,
    EvaluatorTimeout,
    FeatureSnapshot,
    PolicyError,
    PolicyEvaluator,
    Verdict,
    coerce_verdict,
)
from origin_guard.utils.time import Clock, now_ms, to_iso

LOGGER = logging.getLogger(__name__)

POLICY_REASON = "policy-triggered"
FLOOD_REASON = "request-flood"


class Outcome(str, enum.Enum):
    ALLOW = "ALLOW"
    BLOCKED = "BLOCKED"
    RATE_LIMITED = "RATE_LIMITED"


@dataclass(frozen=True)
class InboundRequest:
    origin: str
    url: str
    method: str
    user_agent: str = ""


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    reason: Optional[str] = None
    expires_at_ms: Optional[int] = None
    verdict: Optional[Verdict] = None
    suspicious: bool = False

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW

    @property
    def status_code(self) -> Optional[int]:
        """HTTP status for a rejection; admissions have none."""

        if self.outcome is Outcome.RATE_LIMITED:
            return 429
        if self.outcome is Outcome.BLOCKED:
            return 403
        return None


@dataclass(frozen=True)
class StatusSnapshot:
    tracked_origin_count: int
    blocked_count: int
    suspicious_count: int


class AdmissionGuard:
    """Decides, per request, whether an origin is admitted, flagged or denied."""

    def __init__(
        self,
        settings: Settings,
        evaluator: PolicyEvaluator,
        *,
        ledger: LedgerStore | None = None,
        blocklist: BlocklistStore | None = None,
        locks: OriginLocks | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.settings = settings
        self.locks = locks or OriginLocks()
        self.ledger = ledger or LedgerStore(self.locks, settings.ledger_retention_minutes)
        self.blocklist = blocklist or BlocklistStore(self.locks)
        self.evaluator = evaluator
        self.clock = clock

    @property
    def whitelist(self) -> AbstractSet[str]:
        return self.settings.whitelist

    def decide(self, request: InboundRequest) -> Decision:
        """Run the admission steps for one request; never raises for per-request failures."""

        origin = request.origin
        if origin in self.whitelist:
            return Decision(Outcome.ALLOW)

        now = self.clock()
        with self.locks.hold(origin):
            status = self.blocklist.is_blocked(origin, now)
            if status.blocked and status.info is not None:
                LOGGER.warning(
                    "Blocked origin attempted access",
                    extra={
                        "origin": origin,
                        "data": {"url": request.url, "reason": status.info.reason},
                    },
                )
                return Decision(
                    Outcome.BLOCKED,
                    reason=status.info.reason,
                    expires_at_ms=status.info.expires_at_ms,
                )
            if status.info is not None:
                self.blocklist.clear(origin)
                LOGGER.info("Block expired", extra={"origin": origin})

        event = RequestEvent(
            arrival_ms=now, url=request.url, method=request.method, user_agent=request.user_agent
        )
        snapshot = self.ledger.record_event(origin, event)

        verdict = self._evaluate(request, snapshot)
        suspicious = False
        if verdict is Verdict.SUSPICIOUS:
            suspicious = True
            self.blocklist.mark_suspicious(origin)
            LOGGER.warning(
                "Suspicious activity detected",
                extra={
                    "origin": origin,
                    "data": {"url": request.url, "requestCount": snapshot.events_in_window},
                },
            )
        elif verdict is Verdict.BLOCK:
            entry = self.blocklist.block(origin, now, self.settings.block_duration_ms, POLICY_REASON)
            LOGGER.error(
                "Origin blocked by policy",
                extra={
                    "origin": origin,
                    "data": {
                        "requestCount": snapshot.events_in_window,
                        "blockedUntil": to_iso(entry.expires_at_ms),
                    },
                },
            )
            return Decision(
                Outcome.BLOCKED,
                reason=entry.reason,
                expires_at_ms=entry.expires_at_ms,
                verdict=verdict,
                suspicious=suspicious,
            )

        requests_this_minute = requests_in_minute(snapshot, snapshot.events[-1].minute)
        if requests_this_minute > self.settings.flood_cutoff:
            entry = self.blocklist.block(origin, now, self.settings.block_duration_ms, FLOOD_REASON)
            LOGGER.error(
                "Request flood, origin blocked",
                extra={
                    "origin": origin,
                    "data": {
                        "requestsPerMinute": requests_this_minute,
                        "blockedUntil": to_iso(entry.expires_at_ms),
                    },
                },
            )
            return Decision(
                Outcome.RATE_LIMITED,
                reason=entry.reason,
                expires_at_ms=entry.expires_at_ms,
                verdict=verdict,
                suspicious=suspicious,
            )

        return Decision(Outcome.ALLOW, verdict=verdict, suspicious=suspicious)

    def _evaluate(self, request: InboundRequest, snapshot: LedgerSnapshot) -> Optional[Verdict]:
        """Ask the evaluator for a verdict; ``None`` means no signal."""

        features = FeatureSnapshot(
            origin=request.origin,
            events_in_window=snapshot.events_in_window,
            total_request_count=snapshot.total_request_count,
            url=request.url,
            method=request.method,
            user_agent=request.user_agent,
            url_length=len(request.url),
            suspicious_threshold=self.settings.suspicious_threshold,
        )
        try:
            return coerce_verdict(self.evaluator.evaluate(features))
        except EvaluatorTimeout as exc:
            failure = "timeout"
            detail = str(exc)
        except EvaluatorMalformedVerdict as exc:
            failure = "malformed-verdict"
            detail = str(exc)
        except PolicyError as exc:
            failure = "unavailable"
            detail = str(exc)
        except Exception as exc:  # noqa: BLE001
            failure = "error"
            detail = repr(exc)
        LOGGER.warning(
            "Policy evaluator gave no verdict",
            extra={"origin": request.origin, "data": {"failure": failure, "detail": detail}},
        )
        return None

    def status(self) -> StatusSnapshot:
        return StatusSnapshot(
            tracked_origin_count=len(self.ledger),
            blocked_count=len(self.blocklist),
            suspicious_count=self.blocklist.suspicious_count,
        )

    def blocked_origins(self) -> List[BlockedOrigin]:
        return self.blocklist.entries()

    def suspicious_origins(self) -> List[str]:
        return self.blocklist.suspicious_origins()
