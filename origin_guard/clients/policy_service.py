"""HTTP client for a remote policy evaluation service."""
from __future__ import annotations

import logging
from typing import Any, Dict

import requests
from requests import Response

from origin_guard.config import Settings
from origin_guard.policy import EvaluatorUnavailable, FeatureSnapshot

LOGGER = logging.getLogger(__name__)


class PolicyServiceClient:
    """Posts feature snapshots to ``policy_url`` and returns the raw verdict string."""

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        if not settings.policy_url:
            raise ValueError("PolicyServiceClient requires settings.policy_url")
        self._url = settings.policy_url
        self._timeout = settings.evaluator_timeout_ms / 1000
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    def evaluate(self, snapshot: FeatureSnapshot) -> Any:
        try:
            response = self._session.post(
                self._url, json=snapshot.as_payload(), timeout=self._timeout
            )
        except requests.RequestException as exc:
            raise EvaluatorUnavailable(f"Policy service unreachable: {exc}") from exc
        self._raise_for_status(response)
        try:
            payload: Dict[str, Any] = response.json()
        except ValueError as exc:
            raise EvaluatorUnavailable("Policy service returned invalid JSON.") from exc
        if not isinstance(payload, dict):
            return payload
        return payload.get("verdict")

    def _raise_for_status(self, response: Response) -> None:
        """Raise descriptive errors for policy service responses."""

        if response.ok:
            return
        status = response.status_code
        detail = response.text
        if status in (401, 403):
            message = "Policy service rejected our credentials."
        elif status == 404:
            message = "Policy endpoint not found."
        elif status >= 500:
            message = f"Policy service failure ({status})."
        else:
            message = f"Policy service error ({status})."
        LOGGER.error("policy request failed", extra={"data": {"status": status, "detail": detail[:200]}})
        raise EvaluatorUnavailable(f"{message} Response: {detail[:200]}")
