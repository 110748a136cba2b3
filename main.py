"""FastAPI application that screens inbound traffic before it reaches the service."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from origin_guard.clients.policy_service import PolicyServiceClient
from origin_guard.config import Settings, get_settings
from origin_guard.logging_config import configure_logging
from origin_guard.pipeline import AdmissionGuard, Decision, InboundRequest, Outcome
from origin_guard.policy import PatternEvaluator, PolicyEvaluator, TimedEvaluator
from origin_guard.rate_limit import RateLimiter
from origin_guard.reaper import Reaper
from origin_guard.utils import Clock, now_ms, resolve_origin, to_iso

LOGGER = logging.getLogger(__name__)

VERSION = "1.0.0"


def build_evaluator(
    settings: Settings, evaluator: Optional[PolicyEvaluator] = None
) -> TimedEvaluator:
    """Wrap the configured evaluator with the guard's time budget."""

    if evaluator is None:
        if settings.policy_url:
            evaluator = PolicyServiceClient(settings)
        else:
            evaluator = PatternEvaluator(
                max_url_length=settings.max_url_length,
                suspicious_user_agents=settings.suspicious_user_agents,
                allowed_methods=settings.allowed_methods,
            )
    return TimedEvaluator(evaluator, settings.evaluator_timeout_ms, settings.evaluator_workers)


def request_origin(request: Request, settings: Settings) -> str:
    return resolve_origin(
        request.client.host if request.client else None,
        request.headers.get("x-forwarded-for"),
        trust_forwarded=settings.trust_forwarded_for,
    )


def rejection_body(decision: Decision) -> Dict[str, Any]:
    if decision.outcome is Outcome.RATE_LIMITED:
        error = "Too many requests. Your IP has been temporarily blocked."
    else:
        error = "Your IP has been temporarily blocked due to suspicious activity."
    return {
        "error": error,
        "reason": decision.reason,
        "blockedUntil": to_iso(decision.expires_at_ms),
    }


def create_app(
    settings: Optional[Settings] = None,
    *,
    evaluator: Optional[PolicyEvaluator] = None,
    clock: Clock = now_ms,
) -> FastAPI:
    """Assemble the guard, its reaper and the HTTP surface."""

    settings = settings or get_settings()
    timed_evaluator = build_evaluator(settings, evaluator)
    guard = AdmissionGuard(settings, timed_evaluator, clock=clock)
    reaper = Reaper(
        guard.ledger,
        guard.blocklist,
        interval_ms=settings.reaper_interval_ms,
        idle_horizon_ms=settings.idle_horizon_ms,
        clock=clock,
    )
    rate_limiter = RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reaper.start()
        LOGGER.info(
            "Origin guard started",
            extra={"data": {"version": VERSION, "port": settings.port}},
        )
        try:
            yield
        finally:
            reaper.stop()
            timed_evaluator.shutdown()
            LOGGER.info("Origin guard stopped")

    app = FastAPI(title="Origin Guard", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.guard = guard
    app.state.reaper = reaper
    app.state.rate_limiter = rate_limiter

    @app.middleware("http")
    async def guard_requests(request: Request, call_next):  # type: ignore[override]
        origin = request_origin(request, settings)
        url = request.url.path
        if request.url.query:
            url = f"{url}?{request.url.query}"

        if not rate_limiter.allow(origin):
            LOGGER.warning("Rate limit exceeded", extra={"origin": origin, "data": {"url": url}})
            return JSONResponse(status_code=429, content={"error": settings.rate_limit_message})

        decision = await run_in_threadpool(
            guard.decide,
            InboundRequest(
                origin=origin,
                url=url,
                method=request.method,
                user_agent=request.headers.get("user-agent", ""),
            ),
        )
        if not decision.allowed:
            return JSONResponse(status_code=decision.status_code, content=rejection_body(decision))

        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Unhandled exception", extra={"origin": origin, "data": {"url": url}})
            raise exc
        return response

    # Outermost layer; guard rejections must carry CORS headers.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "timestamp": to_iso(clock())},
        )

    @app.get("/")
    async def index(request: Request) -> dict:
        """Confirm the guard is active for the caller."""

        return {
            "message": "Origin guard is active.",
            "timestamp": to_iso(clock()),
            "yourIP": request_origin(request, settings),
        }

    @app.get("/health")
    async def health() -> dict:
        status = guard.status()
        return {
            "status": "OK",
            "timestamp": to_iso(clock()),
            "protection": "active",
            "blockedIPs": status.blocked_count,
            "suspiciousIPs": status.suspicious_count,
        }

    @app.get("/admin/status")
    async def admin_status() -> dict:
        """Expose tracking counts and current bans."""

        status = guard.status()
        return {
            "trackedOrigins": status.tracked_origin_count,
            "blockedCount": status.blocked_count,
            "suspiciousCount": status.suspicious_count,
            "blocked": [
                {
                    "origin": item.origin,
                    "blockedAt": to_iso(item.blocked_at_ms),
                    "blockedAtMs": item.blocked_at_ms,
                    "until": to_iso(item.expires_at_ms),
                    "expiresAtMs": item.expires_at_ms,
                    "reason": item.reason,
                }
                for item in guard.blocked_origins()
            ],
            "suspicious": guard.suspicious_origins(),
        }

    return app


settings = get_settings()
configure_logging(settings.log_level, settings.log_file)
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.host, port=settings.port)
