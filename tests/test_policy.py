from __future__ import annotations

import threading
from unittest import mock

import pytest
import requests

from origin_guard.clients.policy_service import PolicyServiceClient
from origin_guard.config import Settings
from origin_guard.policy import (
    EvaluatorMalformedVerdict,
    EvaluatorTimeout,
    EvaluatorUnavailable,
    FeatureSnapshot,
    PatternEvaluator,
    TimedEvaluator,
    Verdict,
    coerce_verdict,
)

from conftest import StaticEvaluator


def make_snapshot(**overrides) -> FeatureSnapshot:
    values = {
        "origin": "192.0.2.10",
        "events_in_window": 3,
        "total_request_count": 3,
        "url": "/",
        "method": "GET",
        "user_agent": "Mozilla/5.0",
        "url_length": 1,
        "suspicious_threshold": 900,
    }
    values.update(overrides)
    return FeatureSnapshot(**values)


def make_pattern_evaluator() -> PatternEvaluator:
    return PatternEvaluator(
        max_url_length=50,
        suspicious_user_agents=("bot", "curl"),
        allowed_methods=("GET", "POST"),
    )


def test_coerce_verdict_accepts_strings_and_members():
    assert coerce_verdict(Verdict.BLOCK) is Verdict.BLOCK
    assert coerce_verdict(" suspicious\n") is Verdict.SUSPICIOUS
    assert coerce_verdict("ALLOW") is Verdict.ALLOW


@pytest.mark.parametrize("value", [None, "", "MAYBE", 1, {"verdict": "BLOCK"}])
def test_coerce_verdict_rejects_anything_else(value):
    with pytest.raises(EvaluatorMalformedVerdict):
        coerce_verdict(value)


def test_pattern_evaluator_allows_ordinary_request():
    assert make_pattern_evaluator().evaluate(make_snapshot()) is Verdict.ALLOW


@pytest.mark.parametrize(
    "overrides",
    [
        {"url_length": 51},
        {"user_agent": ""},
        {"user_agent": "curl/8.4.0"},
        {"user_agent": "GoogleBot"},
        {"method": "TRACE"},
        {"events_in_window": 451},
    ],
)
def test_pattern_evaluator_flags_suspicious_patterns(overrides):
    verdict = make_pattern_evaluator().evaluate(make_snapshot(**overrides))

    assert verdict is Verdict.SUSPICIOUS


def test_pattern_evaluator_blocks_window_volume_at_threshold():
    verdict = make_pattern_evaluator().evaluate(make_snapshot(events_in_window=900))

    assert verdict is Verdict.BLOCK


def test_timed_evaluator_returns_normalised_verdict():
    timed = TimedEvaluator(StaticEvaluator("block"), timeout_ms=1000, workers=1)
    try:
        assert timed.evaluate(make_snapshot()) is Verdict.BLOCK
    finally:
        timed.shutdown()


def test_timed_evaluator_times_out_slow_evaluators():
    release = threading.Event()

    class SlowEvaluator:
        def evaluate(self, snapshot):
            release.wait(5)
            return "ALLOW"

    timed = TimedEvaluator(SlowEvaluator(), timeout_ms=20, workers=1)
    try:
        with pytest.raises(EvaluatorTimeout):
            timed.evaluate(make_snapshot())
    finally:
        release.set()
        timed.shutdown()


def test_timed_evaluator_wraps_unexpected_errors():
    timed = TimedEvaluator(StaticEvaluator(ZeroDivisionError("boom")), timeout_ms=1000)
    try:
        with pytest.raises(EvaluatorUnavailable):
            timed.evaluate(make_snapshot())
    finally:
        timed.shutdown()


def test_timed_evaluator_reports_malformed_answers():
    timed = TimedEvaluator(StaticEvaluator(42), timeout_ms=1000)
    try:
        with pytest.raises(EvaluatorMalformedVerdict):
            timed.evaluate(make_snapshot())
    finally:
        timed.shutdown()


def make_client(session: mock.Mock) -> PolicyServiceClient:
    settings = Settings(policy_url="http://policy.internal/evaluate", evaluator_timeout_ms=500)
    return PolicyServiceClient(settings, session=session)


def test_policy_service_client_posts_snapshot_and_reads_verdict():
    session = mock.Mock()
    session.headers = {}
    session.post.return_value = mock.Mock(
        ok=True, json=mock.Mock(return_value={"verdict": "SUSPICIOUS"})
    )
    client = make_client(session)

    assert client.evaluate(make_snapshot()) == "SUSPICIOUS"
    _, kwargs = session.post.call_args
    assert kwargs["json"]["ip"] == "192.0.2.10"
    assert kwargs["json"]["suspiciousThreshold"] == 900
    assert kwargs["timeout"] == 0.5


def test_policy_service_client_raises_on_http_error():
    session = mock.Mock()
    session.headers = {}
    session.post.return_value = mock.Mock(ok=False, status_code=503, text="overloaded")
    client = make_client(session)

    with pytest.raises(EvaluatorUnavailable, match="503"):
        client.evaluate(make_snapshot())


def test_policy_service_client_raises_on_transport_error():
    session = mock.Mock()
    session.headers = {}
    session.post.side_effect = requests.ConnectionError("refused")
    client = make_client(session)

    with pytest.raises(EvaluatorUnavailable):
        client.evaluate(make_snapshot())


def test_policy_service_client_requires_url():
    with pytest.raises(ValueError):
        PolicyServiceClient(Settings())
