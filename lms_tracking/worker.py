"""Background worker process.

RUN:  python -m lms_tracking.worker

Consumes the two tracking queues:

  progress_rollup        rollups deferred by ROLLUP_MODE=queued
  certificate_issuance   first completion of a course

Same image as the API, different command.  Rollups are idempotent, so
a task redelivered after a crash recomputes the same aggregates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any
from uuid import UUID

from lms_tracking.core.config import SETTINGS
from lms_tracking.core.logging import setup_logging
from lms_tracking.core.metrics import ROLLUPS
from lms_tracking.models.tracking import TenantScope, TrackingStatus
from lms_tracking.services.rollup import rollup_aggregator
from lms_tracking.services.task_queue import (
    CERTIFICATE_QUEUE,
    ROLLUP_QUEUE,
    task_queue,
)

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


def _scope(payload: dict) -> TenantScope:
    return TenantScope(
        tenant_id=payload["tenant_id"], organisation_id=payload["organisation_id"]
    )


@register_handler(ROLLUP_QUEUE)
async def handle_progress_rollup(payload: dict) -> None:
    lesson_id = payload.get("lesson_id")
    trigger = payload.get("trigger")
    try:
        await rollup_aggregator.recompute(
            _scope(payload),
            UUID(payload["learner_id"]),
            UUID(payload["course_id"]),
            lesson_id=UUID(lesson_id) if lesson_id else None,
            trigger=TrackingStatus(trigger) if trigger else None,
        )
    except Exception:
        ROLLUPS.labels(mode="queued", outcome="error").inc()
        raise
    ROLLUPS.labels(mode="queued", outcome="ok").inc()


@register_handler(CERTIFICATE_QUEUE)
async def handle_certificate_issuance(payload: dict) -> None:
    track = await rollup_aggregator.issue_certificate(
        _scope(payload), UUID(payload["learner_id"]), UUID(payload["course_id"])
    )
    logger.info(
        "Certificate issued for learner=%s course=%s",
        track.user_id,
        track.course_id,
        extra={"learner_id": str(track.user_id), "course_id": str(track.course_id)},
    )


async def process_task(queue_name: str, timeout: int = 1) -> bool:
    """Dequeue and handle one task; False when the queue was empty.

    Handler failures are logged and the task is dropped.
    """
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False
    try:
        await HANDLERS[queue_name](task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        logger.exception(
            "Task %s on [%s] failed",
            task.id,
            queue_name,
            extra={
                "learner_id": task.payload.get("learner_id"),
                "course_id": task.payload.get("course_id"),
            },
        )
    return True


async def run_pending() -> int:
    """Handle every task already waiting, without blocking; returns the count."""
    handled = 0
    for queue_name in HANDLERS:
        while await process_task(queue_name, timeout=0):
            handled += 1
    return handled


async def run_worker() -> None:
    """Poll the registered queues round-robin until cancelled."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)
    while True:
        for queue_name in queues:
            await process_task(queue_name)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
