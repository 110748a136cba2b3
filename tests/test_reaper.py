from __future__ import annotations

import time

from origin_guard.blocklist import BlocklistStore
from origin_guard.ledger import LedgerStore, RequestEvent
from origin_guard.locks import OriginLocks
from origin_guard.reaper import Reaper

DAY = 24 * 60 * 60 * 1000


def make_reaper(clock, interval_ms: int = 60_000):
    locks = OriginLocks()
    ledger = LedgerStore(locks)
    blocklist = BlocklistStore(locks)
    reaper = Reaper(ledger, blocklist, interval_ms=interval_ms, idle_horizon_ms=DAY, clock=clock)
    return reaper, ledger, blocklist


def test_block_survives_until_its_expiry(clock):
    reaper, _, blocklist = make_reaper(clock)
    expires = clock() + 1000
    blocklist.block("198.51.100.7", clock(), 1000, "request-flood")
    blocklist.mark_suspicious("198.51.100.7")

    assert reaper.sweep(expires - 1).blocks_cleared == 0
    assert len(blocklist) == 1

    assert reaper.sweep(expires).blocks_cleared == 1
    assert len(blocklist) == 0
    assert not blocklist.is_suspicious("198.51.100.7")


def test_idle_ledger_removed_only_after_horizon(clock):
    reaper, ledger, _ = make_reaper(clock)
    last_seen = clock()
    ledger.record_event("198.51.100.8", RequestEvent(arrival_ms=last_seen, url="/", method="GET"))

    assert reaper.sweep(last_seen + DAY).ledgers_removed == 0
    assert "198.51.100.8" in ledger

    assert reaper.sweep(last_seen + DAY + 1).ledgers_removed == 1
    assert "198.51.100.8" not in ledger


def test_rearmed_block_is_not_cleared(clock):
    _, _, blocklist = make_reaper(clock)
    blocklist.block("198.51.100.9", clock(), 1000, "request-flood")
    now = clock() + 1000
    candidates = blocklist.expired_origins(now)

    blocklist.block("198.51.100.9", now, 1000, "policy-triggered")

    assert candidates == ["198.51.100.9"]
    assert not blocklist.clear_if_expired("198.51.100.9", now)
    assert blocklist.is_blocked("198.51.100.9", now).blocked


def test_sweep_defaults_to_clock(clock):
    reaper, _, blocklist = make_reaper(clock)
    blocklist.block("198.51.100.10", clock(), 1000, "request-flood")
    clock.advance(1000)

    assert reaper.sweep().blocks_cleared == 1


def test_background_thread_sweeps_and_stops(clock):
    reaper, _, blocklist = make_reaper(clock, interval_ms=10)
    blocklist.block("198.51.100.11", clock(), 1000, "request-flood")
    clock.advance(5000)

    reaper.start()
    try:
        deadline = time.monotonic() + 2
        while len(blocklist) and time.monotonic() < deadline:
            time.sleep(0.01)
        assert reaper.running
    finally:
        reaper.stop()

    assert len(blocklist) == 0
    assert not reaper.running


def test_idle_sweep_forgets_suspicion_markers(clock):
    reaper, ledger, blocklist = make_reaper(clock)
    for n in range(100):
        origin = f"198.51.100.{n}"
        ledger.record_event(origin, RequestEvent(arrival_ms=clock(), url="/", method="GET"))
        blocklist.mark_suspicious(origin)

    assert reaper.sweep(clock() + DAY + 1).ledgers_removed == 100
    assert len(ledger) == 0
    assert blocklist.suspicious_count == 0


def test_idle_sweep_keeps_marker_while_banned(clock):
    reaper, ledger, blocklist = make_reaper(clock)
    ledger.record_event("198.51.100.12", RequestEvent(arrival_ms=clock(), url="/", method="GET"))
    blocklist.mark_suspicious("198.51.100.12")
    blocklist.block("198.51.100.12", clock(), 2 * DAY, "policy-triggered")

    reaper.sweep(clock() + DAY + 1)

    assert "198.51.100.12" not in ledger
    assert blocklist.is_suspicious("198.51.100.12")
