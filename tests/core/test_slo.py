"""Tests for SLO evaluation logic.

The SLO module is pure functions: give it counts, get back a status.
No registry, no I/O.
"""

from __future__ import annotations

from lms_tracking.core.slo import (
    ALL_SLOS,
    evaluate_availability,
    evaluate_rollup_latency,
    evaluate_rollup_success,
)

# ---- Availability SLO (target: 99.5%) ----


def test_availability_healthy() -> None:
    status = evaluate_availability(total_requests=10000, error_requests=10)
    assert status.healthy is True
    assert status.current == 99.9
    assert status.budget_remaining > 0


def test_availability_breached() -> None:
    status = evaluate_availability(total_requests=10000, error_requests=100)
    assert status.healthy is False
    assert status.current == 99.0
    assert status.budget_remaining < 0


def test_availability_zero_requests() -> None:
    """No requests means nothing failed."""
    status = evaluate_availability(total_requests=0, error_requests=0)
    assert status.healthy is True
    assert status.current == 100.0


# ---- Rollup success SLO (target: 99.9%) ----


def test_rollup_success_healthy() -> None:
    status = evaluate_rollup_success(total_rollups=10000, failed_rollups=5)
    assert status.healthy is True
    assert status.current == 99.95


def test_rollup_success_breached_by_detached_failures() -> None:
    status = evaluate_rollup_success(total_rollups=1000, failed_rollups=3)
    assert status.healthy is False
    assert status.current == 99.7


# ---- Rollup latency SLO (target: 95% under 250ms) ----


def test_rollup_latency_healthy() -> None:
    status = evaluate_rollup_latency(total_rollups=1000, fast_rollups=990)
    assert status.healthy is True
    assert status.current == 99.0


def test_rollup_latency_breached() -> None:
    status = evaluate_rollup_latency(total_rollups=100, fast_rollups=90)
    assert status.healthy is False
    assert status.current == 90.0


def test_rollup_latency_no_samples() -> None:
    status = evaluate_rollup_latency(total_rollups=0, fast_rollups=0)
    assert status.healthy is True
    assert status.current == 100.0


def test_slo_names_are_unique() -> None:
    names = [slo.name for slo in ALL_SLOS]
    assert names == ["availability", "rollup_success", "rollup_latency"]
