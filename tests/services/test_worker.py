"""Worker tests: queued rollups and certificate issuance.

The in-memory queue stands in for Redis; ``run_pending`` drains it the
same way the worker loop does, without blocking.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from lms_tracking.models.tracking import TrackingStatus
from lms_tracking.services.attempts import (
    AttemptService,
    ProgressUpdate,
    attempt_service,
)
from lms_tracking.services.rollup import rollup_aggregator
from lms_tracking.services.rollup_dispatch import RollupDispatcher
from lms_tracking.services.stores import aggregate_repo
from lms_tracking.services.task_queue import CERTIFICATE_QUEUE, ROLLUP_QUEUE, task_queue
from lms_tracking.worker import HANDLERS, process_task, run_pending
from tests.conftest import SCOPE, enroll_and_track, seed_course


def _queued_service() -> AttemptService:
    dispatcher = RollupDispatcher(rollup_aggregator, mode="queued", queue=task_queue)
    return AttemptService(dispatcher=dispatcher)


def test_handlers_registered_for_both_queues() -> None:
    assert set(HANDLERS) == {ROLLUP_QUEUE, CERTIFICATE_QUEUE}


def test_empty_queue_returns_false() -> None:
    assert asyncio.run(process_task(ROLLUP_QUEUE, timeout=0)) is False


def test_queued_rollup_completes_course_and_issues_certificate(
    learner_id: uuid.UUID,
) -> None:
    seeded = seed_course(lessons=1)
    enroll_and_track(learner_id, seeded.id)
    track = asyncio.run(
        attempt_service.start_or_resume(SCOPE, seeded.lessons[0].id, learner_id)
    )
    asyncio.run(
        _queued_service().update_progress(
            SCOPE,
            track.id,
            learner_id,
            ProgressUpdate(status=TrackingStatus.COMPLETED),
        )
    )

    course = asyncio.run(aggregate_repo.get_course_track(SCOPE, learner_id, seeded.id))
    assert course.status == TrackingStatus.INCOMPLETE
    assert asyncio.run(task_queue.queue_length(ROLLUP_QUEUE)) == 1

    handled = asyncio.run(run_pending())

    assert handled == 2
    course = asyncio.run(aggregate_repo.get_course_track(SCOPE, learner_id, seeded.id))
    assert course.status == TrackingStatus.COMPLETED
    assert course.certificate_issued is True
    assert asyncio.run(task_queue.queue_length(CERTIFICATE_QUEUE)) == 0


def test_failing_task_is_logged_and_dropped(caplog) -> None:
    asyncio.run(
        task_queue.enqueue(
            CERTIFICATE_QUEUE,
            {
                "tenant_id": SCOPE.tenant_id,
                "organisation_id": SCOPE.organisation_id,
                "learner_id": str(uuid.uuid4()),
                "course_id": str(uuid.uuid4()),
            },
        )
    )

    with caplog.at_level(logging.ERROR, logger="worker"):
        assert asyncio.run(process_task(CERTIFICATE_QUEUE, timeout=0)) is True

    assert any("failed" in r.getMessage() for r in caplog.records)
    assert asyncio.run(task_queue.queue_length(CERTIFICATE_QUEUE)) == 0
