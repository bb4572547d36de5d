"""Service level objectives for the tracking service.

Three objectives are evaluated from in-process Prometheus samples and
reported by ``/health``:

  availability     share of HTTP responses that are not 5xx
  rollup_success   share of rollup recomputes that did not fail; detached
                   failures never reach a response, so this is the only
                   place they show up besides the logs
  rollup_latency   share of recomputes finishing within 250ms

The evaluation functions are pure: they take counts and return a
status, so they can be unit tested without a registry.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SLODefinition:
    name: str
    description: str
    target: float  # percent
    window: str


@dataclass(frozen=True, slots=True)
class SLOStatus:
    slo: SLODefinition
    current: float
    budget_remaining: float
    healthy: bool


AVAILABILITY_SLO = SLODefinition(
    name="availability",
    description="Percentage of non-5xx HTTP responses",
    target=99.5,
    window="30d",
)

ROLLUP_SUCCESS_SLO = SLODefinition(
    name="rollup_success",
    description="Percentage of rollup recomputes that completed without error",
    target=99.9,
    window="7d",
)

ROLLUP_LATENCY_SLO = SLODefinition(
    name="rollup_latency",
    description="Percentage of rollup recomputes finishing within 250ms",
    target=95.0,
    window="7d",
)

# Upper bound of the rollup histogram bucket that counts as "fast".
ROLLUP_LATENCY_THRESHOLD_SECONDS = 0.25

ALL_SLOS = [AVAILABILITY_SLO, ROLLUP_SUCCESS_SLO, ROLLUP_LATENCY_SLO]


def _ratio_status(slo: SLODefinition, total: int, bad: int) -> SLOStatus:
    # No samples yet counts as fully healthy.
    current = 100.0 if total <= 0 else (total - bad) / total * 100
    return SLOStatus(
        slo=slo,
        current=round(current, 3),
        budget_remaining=round(current - slo.target, 3),
        healthy=current >= slo.target,
    )


def evaluate_availability(total_requests: int, error_requests: int) -> SLOStatus:
    """10,000 requests with 10 errors is 99.9%, healthy against 99.5%."""
    return _ratio_status(AVAILABILITY_SLO, total_requests, error_requests)


def evaluate_rollup_success(total_rollups: int, failed_rollups: int) -> SLOStatus:
    return _ratio_status(ROLLUP_SUCCESS_SLO, total_rollups, failed_rollups)


def evaluate_rollup_latency(total_rollups: int, fast_rollups: int) -> SLOStatus:
    return _ratio_status(
        ROLLUP_LATENCY_SLO, total_rollups, max(total_rollups - fast_rollups, 0)
    )
