from __future__ import annotations

import pytest

# 2024-01-01T00:00:00Z, aligned to a minute boundary.
EPOCH_MS = 1_704_067_200_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = EPOCH_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class StaticEvaluator:
    """Evaluator double returning a fixed answer (or raising it)."""

    def __init__(self, answer) -> None:
        self.answer = answer
        self.calls = []

    def evaluate(self, snapshot):
        self.calls.append(snapshot)
        if isinstance(self.answer, BaseException):
            raise self.answer
        return self.answer


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
