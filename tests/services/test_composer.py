from __future__ import annotations

import asyncio
import uuid

import pytest

from lms_tracking.core.errors import NotFoundError
from lms_tracking.models.content import Module
from lms_tracking.models.tracking import TrackingStatus
from lms_tracking.services.attempts import ProgressUpdate, attempt_service
from lms_tracking.services.composer import tracking_composer
from lms_tracking.services.stores import content_repo
from tests.conftest import SCOPE, add_lesson, enroll_and_track, seed_course


def _hierarchy(course_id, learner_id):
    return asyncio.run(
        tracking_composer.course_hierarchy_with_tracking(SCOPE, course_id, learner_id)
    )


def test_untouched_course_reports_not_started(learner_id: uuid.UUID) -> None:
    seeded = seed_course(lessons=2)

    view = _hierarchy(seeded.id, learner_id)

    assert view.title == "Leadership Basics"
    assert view.tracking.status == TrackingStatus.NOT_STARTED
    assert view.tracking.total_lessons == 2
    assert view.last_accessed_lesson is None
    [module] = view.modules
    assert module.tracking.status == "not_started"
    assert [ls.title for ls in module.lessons] == ["Lesson 1", "Lesson 2"]
    assert all(ls.tracking.attempt is None for ls in module.lessons)


def test_hierarchy_nests_submodules_and_flags_locked_lessons(
    learner_id: uuid.UUID,
) -> None:
    seeded = seed_course(lessons=1)
    sub = Module.new(
        course=seeded.course, title="Deep dive", parent_id=seeded.module.id
    )
    content_repo.add_module(sub)
    locked = add_lesson(sub, title="Case study", prerequisites=(seeded.lessons[0].id,))

    view = _hierarchy(seeded.id, learner_id)

    [module] = view.modules
    [submodule] = module.submodules
    assert submodule.title == "Deep dive"
    [lesson] = submodule.lessons
    assert lesson.lesson_id == locked.id
    assert lesson.eligibility.is_eligible is False
    assert lesson.eligibility.unmet_prerequisites == [str(seeded.lessons[0].id)]


def test_in_progress_course_points_at_last_accessed_lesson(
    learner_id: uuid.UUID,
) -> None:
    seeded = seed_course(lessons=2)
    enroll_and_track(learner_id, seeded.id)
    track = asyncio.run(
        attempt_service.start_or_resume(SCOPE, seeded.lessons[1].id, learner_id)
    )
    asyncio.run(
        attempt_service.update_progress(
            SCOPE,
            track.id,
            learner_id,
            ProgressUpdate(current_position=3, total_content=10, time_spent=30),
        )
    )

    view = _hierarchy(seeded.id, learner_id)

    assert view.tracking.status == TrackingStatus.INCOMPLETE
    assert view.tracking.time_spent == 30
    assert view.last_accessed_lesson is not None
    assert view.last_accessed_lesson.lesson_id == seeded.lessons[1].id
    lesson = view.modules[0].lessons[1]
    assert lesson.tracking.status == TrackingStatus.INCOMPLETE
    assert lesson.tracking.progress == 30


def test_completed_course_has_no_last_accessed_lesson(learner_id: uuid.UUID) -> None:
    seeded = seed_course(lessons=1)
    enroll_and_track(learner_id, seeded.id)
    track = asyncio.run(
        attempt_service.start_or_resume(SCOPE, seeded.lessons[0].id, learner_id)
    )
    asyncio.run(
        attempt_service.update_progress(
            SCOPE,
            track.id,
            learner_id,
            ProgressUpdate(status=TrackingStatus.COMPLETED),
        )
    )

    view = _hierarchy(seeded.id, learner_id)

    assert view.tracking.status == TrackingStatus.COMPLETED
    assert view.tracking.progress == 100
    assert view.last_accessed_lesson is None
    assert view.modules[0].tracking.status == "completed"


def test_course_tracking_missing_raises(learner_id: uuid.UUID) -> None:
    seeded = seed_course()

    with pytest.raises(NotFoundError):
        asyncio.run(
            tracking_composer.get_course_tracking(SCOPE, seeded.id, learner_id)
        )


def test_unknown_course_hierarchy_raises(learner_id: uuid.UUID) -> None:
    with pytest.raises(NotFoundError):
        _hierarchy(uuid.uuid4(), learner_id)


def test_child_lesson_prerequisite_agrees_with_start_gate(
    learner_id: uuid.UUID,
) -> None:
    seeded = seed_course(lessons=1)
    worksheet = add_lesson(
        seeded.module,
        title="Worksheet",
        parent_id=seeded.lessons[0].id,
        ordering=2,
    )
    reflection = add_lesson(
        seeded.module, title="Reflection", prerequisites=(worksheet.id,), ordering=3
    )
    enroll_and_track(learner_id, seeded.id)
    track = asyncio.run(
        attempt_service.start_or_resume(SCOPE, worksheet.id, learner_id)
    )
    asyncio.run(
        attempt_service.update_progress(
            SCOPE,
            track.id,
            learner_id,
            ProgressUpdate(status=TrackingStatus.COMPLETED),
        )
    )

    view = _hierarchy(seeded.id, learner_id)

    shown = {ls.lesson_id: ls for ls in view.modules[0].lessons}
    assert worksheet.id not in shown
    assert shown[reflection.id].eligibility.is_eligible is True
    assert shown[reflection.id].eligibility.unmet_prerequisites == []
    started = asyncio.run(
        attempt_service.start_or_resume(SCOPE, reflection.id, learner_id)
    )
    assert started.attempt == 1
