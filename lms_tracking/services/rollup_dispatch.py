"""How a rollup runs after an attempt write: inline, detached or queued.

  inline    awaited before the caller gets its response; failures
            propagate like any other error.
  detached  an asyncio task owned by the dispatcher.  The attempt write
            has already been committed, so a failing rollup must not
            fail the request: it is logged with the learner, course and
            lesson that triggered it and counted in progress_rollups_total.
  queued    a task on the ``progress_rollup`` queue, picked up by the
            worker process (python -m lms_tracking.worker).

Detached tasks are tracked so shutdown can wait for them (``drain``).
"""

from __future__ import annotations

import asyncio
import logging
from uuid import UUID

from lms_tracking.core.config import SETTINGS, RollupMode
from lms_tracking.core.metrics import DETACHED_ROLLUPS_IN_FLIGHT, ROLLUPS
from lms_tracking.models.tracking import TenantScope, TrackingStatus
from lms_tracking.services.rollup import RollupAggregator, rollup_aggregator
from lms_tracking.services.task_queue import ROLLUP_QUEUE, TaskQueue, task_queue

logger = logging.getLogger(__name__)


def rollup_payload(
    scope: TenantScope,
    learner_id: UUID,
    course_id: UUID,
    lesson_id: UUID | None,
    trigger: TrackingStatus | None,
) -> dict:
    return {
        "tenant_id": scope.tenant_id,
        "organisation_id": scope.organisation_id,
        "learner_id": str(learner_id),
        "course_id": str(course_id),
        "lesson_id": str(lesson_id) if lesson_id is not None else None,
        "trigger": trigger.value if trigger is not None else None,
    }


class RollupDispatcher:
    def __init__(
        self,
        aggregator: RollupAggregator,
        *,
        mode: RollupMode = "detached",
        queue: TaskQueue = task_queue,
    ) -> None:
        self._aggregator = aggregator
        self._mode: RollupMode = mode
        self._queue = queue
        self._tasks: set[asyncio.Task] = set()

    @property
    def mode(self) -> RollupMode:
        return self._mode

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def dispatch(
        self,
        scope: TenantScope,
        learner_id: UUID,
        course_id: UUID,
        *,
        lesson_id: UUID | None = None,
        trigger: TrackingStatus | None = None,
        mode: RollupMode | None = None,
    ) -> None:
        mode = mode or self._mode

        if mode == "inline":
            try:
                await self._aggregator.recompute(
                    scope, learner_id, course_id, lesson_id=lesson_id, trigger=trigger
                )
            except Exception:
                ROLLUPS.labels(mode="inline", outcome="error").inc()
                raise
            ROLLUPS.labels(mode="inline", outcome="ok").inc()
            return

        if mode == "queued":
            task = await self._queue.enqueue(
                ROLLUP_QUEUE,
                rollup_payload(scope, learner_id, course_id, lesson_id, trigger),
            )
            logger.debug("Queued rollup task %s for course %s", task.id, course_id)
            return

        task = asyncio.create_task(
            self._run_detached(scope, learner_id, course_id, lesson_id, trigger),
            name=f"rollup:{learner_id}:{course_id}",
        )
        self._tasks.add(task)
        DETACHED_ROLLUPS_IN_FLIGHT.inc()
        task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        DETACHED_ROLLUPS_IN_FLIGHT.dec()

    async def _run_detached(
        self,
        scope: TenantScope,
        learner_id: UUID,
        course_id: UUID,
        lesson_id: UUID | None,
        trigger: TrackingStatus | None,
    ) -> None:
        try:
            await self._aggregator.recompute(
                scope, learner_id, course_id, lesson_id=lesson_id, trigger=trigger
            )
        except Exception:
            ROLLUPS.labels(mode="detached", outcome="error").inc()
            logger.exception(
                "Detached rollup failed for learner %s course %s",
                learner_id,
                course_id,
                extra={
                    "tenant_id": scope.tenant_id,
                    "organisation_id": scope.organisation_id,
                    "learner_id": str(learner_id),
                    "course_id": str(course_id),
                    "lesson_id": str(lesson_id) if lesson_id else None,
                    "rollup_mode": "detached",
                },
            )
        else:
            ROLLUPS.labels(mode="detached", outcome="ok").inc()

    async def drain(self) -> None:
        """Wait for every detached rollup started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


rollup_dispatcher = RollupDispatcher(rollup_aggregator, mode=SETTINGS.rollup_mode)
