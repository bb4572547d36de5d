"""Liveness and readiness endpoints.

``/health`` always answers 200 while the process can respond; its body
says whether Redis and PostgreSQL are reachable and how the tracking
SLOs look from this process's metrics.  ``/ready`` answers 503 when the
database is configured but unreachable, so the load balancer stops
routing writes to an instance that cannot persist them.  Redis is not
critical: only queued rollups and certificate tasks need it.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from prometheus_client import REGISTRY
from sqlalchemy import text

from lms_tracking.core.slo import (
    ROLLUP_LATENCY_THRESHOLD_SECONDS,
    evaluate_availability,
    evaluate_rollup_latency,
    evaluate_rollup_success,
)
from lms_tracking.db.engine import engine
from lms_tracking.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _sample_sum(sample_name: str, label_filter: dict | None = None) -> float:
    """Sum a sample over every label combination matching ``label_filter``."""
    total = 0.0
    for metric in REGISTRY.collect():
        for sample in metric.samples:
            if sample.name != sample_name:
                continue
            if label_filter and not all(
                sample.labels.get(k) == v for k, v in label_filter.items()
            ):
                continue
            total += sample.value
    return total


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok"


def _slo_report() -> dict:
    total_requests = _sample_sum("http_requests_total")
    server_errors = sum(
        _sample_sum("http_requests_total", {"status_code": str(code)})
        for code in range(500, 512)
    )
    total_rollups = _sample_sum("progress_rollups_total")
    failed_rollups = _sample_sum("progress_rollups_total", {"outcome": "error"})
    timed_rollups = _sample_sum("progress_rollup_duration_seconds_count")
    fast_rollups = _sample_sum(
        "progress_rollup_duration_seconds_bucket",
        {"le": str(ROLLUP_LATENCY_THRESHOLD_SECONDS)},
    )

    statuses = [
        evaluate_availability(int(total_requests), int(server_errors)),
        evaluate_rollup_success(int(total_rollups), int(failed_rollups)),
        evaluate_rollup_latency(int(timed_rollups), int(fast_rollups)),
    ]
    return {
        s.slo.name: {
            "current": s.current,
            "target": s.slo.target,
            "healthy": s.healthy,
        }
        for s in statuses
    }


@router.get("/health")
async def health() -> dict:
    checks = {
        "redis": await _check_redis(),
        "database": await _check_database(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks, "slos": _slo_report()}


@router.get("/ready")
async def ready() -> Response:
    if await _check_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
