"""Attempt state machine tests (service level, in-memory stores)."""

from __future__ import annotations

import asyncio
import uuid

import pytest

from lms_tracking.core.errors import (
    ConflictError,
    InvalidTransitionError,
    MaxAttemptsReachedError,
    NoExistingAttemptError,
    NotFoundError,
)
from lms_tracking.models.content import LessonFormat
from lms_tracking.models.tracking import LessonTrack, TrackingStatus
from lms_tracking.repos.attempt_repo import InMemoryAttemptRepo
from lms_tracking.services.attempts import (
    ExternalSignal,
    ProgressUpdate,
    attempt_service,
)
from lms_tracking.services.stores import aggregate_repo, attempt_repo
from tests.conftest import SCOPE, enroll, enroll_and_track, seed_course


def _rows(lesson_id: uuid.UUID, learner_id: uuid.UUID) -> list:
    return sorted(
        (
            t
            for t in attempt_repo._store.values()
            if t.lesson_id == lesson_id and t.user_id == learner_id
        ),
        key=lambda t: t.attempt,
    )


def _start(lesson_id, learner_id):
    return asyncio.run(attempt_service.start_or_resume(SCOPE, lesson_id, learner_id))


def _complete(track, learner_id):
    return asyncio.run(
        attempt_service.update_progress(
            SCOPE,
            track.id,
            learner_id,
            ProgressUpdate(status=TrackingStatus.COMPLETED),
        )
    )


# ---- start_or_resume ----


def test_first_start_creates_attempt_one(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    enroll_and_track(learner_id, seeded.id)

    track = _start(seeded.lessons[0].id, learner_id)

    assert track.attempt == 1
    assert track.status == TrackingStatus.STARTED
    course = asyncio.run(aggregate_repo.get_course_track(SCOPE, learner_id, seeded.id))
    assert course is not None
    assert course.status == TrackingStatus.INCOMPLETE


def test_start_resumes_in_progress_attempt(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    enroll_and_track(learner_id, seeded.id)
    first = _start(seeded.lessons[0].id, learner_id)

    again = _start(seeded.lessons[0].id, learner_id)

    assert again.id == first.id
    assert len(_rows(seeded.lessons[0].id, learner_id)) == 1


def test_start_after_completion_creates_next_attempt(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    enroll_and_track(learner_id, seeded.id)
    _complete(_start(seeded.lessons[0].id, learner_id), learner_id)

    second = _start(seeded.lessons[0].id, learner_id)

    assert second.attempt == 2
    assert [t.attempt for t in _rows(seeded.lessons[0].id, learner_id)] == [1, 2]


def test_start_rejects_when_max_attempts_reached(learner_id: uuid.UUID) -> None:
    seeded = seed_course(max_attempts=1)
    enroll_and_track(learner_id, seeded.id)
    _complete(_start(seeded.lessons[0].id, learner_id), learner_id)

    with pytest.raises(MaxAttemptsReachedError):
        _start(seeded.lessons[0].id, learner_id)


def test_start_requires_enrollment(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    with pytest.raises(NotFoundError):
        _start(seeded.lessons[0].id, learner_id)


def test_start_requires_initialised_tracking(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    enroll(learner_id, seeded.id)
    with pytest.raises(NotFoundError):
        _start(seeded.lessons[0].id, learner_id)
    assert _rows(seeded.lessons[0].id, learner_id) == []


def test_start_on_completed_course_is_rejected(learner_id: uuid.UUID) -> None:
    seeded = seed_course(lessons=1)
    enroll_and_track(learner_id, seeded.id)
    lesson_id = seeded.lessons[0].id
    _complete(_start(lesson_id, learner_id), learner_id)

    with pytest.raises(InvalidTransitionError, match="already completed"):
        _start(lesson_id, learner_id)

    assert [t.attempt for t in _rows(lesson_id, learner_id)] == [1]
    course = asyncio.run(aggregate_repo.get_course_track(SCOPE, learner_id, seeded.id))
    assert course is not None
    assert course.status == TrackingStatus.COMPLETED
    assert course.completed_lessons == 1


def test_start_unknown_lesson_is_not_found(learner_id: uuid.UUID) -> None:
    with pytest.raises(NotFoundError):
        _start(uuid.uuid4(), learner_id)


def test_start_in_resubmission_mode_needs_existing_slot(learner_id: uuid.UUID) -> None:
    seeded = seed_course(allow_resubmission=True)
    enroll_and_track(learner_id, seeded.id)
    with pytest.raises(NoExistingAttemptError):
        _start(seeded.lessons[0].id, learner_id)


def test_concurrent_starts_get_distinct_increasing_numbers(
    learner_id: uuid.UUID,
) -> None:
    seeded = seed_course(resume=False)
    enroll_and_track(learner_id, seeded.id)
    lesson_id = seeded.lessons[0].id

    async def _burst():
        return await asyncio.gather(
            *(
                attempt_service.start_or_resume(SCOPE, lesson_id, learner_id)
                for _ in range(5)
            )
        )

    tracks = asyncio.run(_burst())

    assert sorted(t.attempt for t in tracks) == [1, 2, 3, 4, 5]
    assert [t.attempt for t in _rows(lesson_id, learner_id)] == [1, 2, 3, 4, 5]


# ---- start_over ----


def test_start_over_twice_keeps_single_resubmission_slot(
    learner_id: uuid.UUID,
) -> None:
    seeded = seed_course(allow_resubmission=True)
    enroll_and_track(learner_id, seeded.id)
    lesson_id = seeded.lessons[0].id

    first = asyncio.run(attempt_service.start_over(SCOPE, lesson_id, learner_id))
    _complete(first, learner_id)
    second = asyncio.run(attempt_service.start_over(SCOPE, lesson_id, learner_id))

    rows = _rows(lesson_id, learner_id)
    assert len(rows) == 1
    assert second.id == first.id
    assert rows[0].status == TrackingStatus.STARTED
    assert rows[0].end_datetime is None
    assert rows[0].time_spent == 0


def test_start_over_replaces_attempt_with_same_number(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    enroll_and_track(learner_id, seeded.id)
    lesson_id = seeded.lessons[0].id
    first = _start(lesson_id, learner_id)

    fresh = asyncio.run(attempt_service.start_over(SCOPE, lesson_id, learner_id))

    rows = _rows(lesson_id, learner_id)
    assert len(rows) == 1
    assert fresh.attempt == 1
    assert fresh.id != first.id


def test_start_over_rejects_completed_attempt(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    enroll_and_track(learner_id, seeded.id)
    lesson_id = seeded.lessons[0].id
    _complete(_start(lesson_id, learner_id), learner_id)

    with pytest.raises(InvalidTransitionError):
        asyncio.run(attempt_service.start_over(SCOPE, lesson_id, learner_id))


def test_start_over_without_attempts(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    enroll_and_track(learner_id, seeded.id)
    with pytest.raises(NoExistingAttemptError):
        asyncio.run(
            attempt_service.start_over(SCOPE, seeded.lessons[0].id, learner_id)
        )


# ---- resume and status ----


def test_resume_disabled_is_invalid(learner_id: uuid.UUID) -> None:
    seeded = seed_course(resume=False)
    enroll_and_track(learner_id, seeded.id)
    lesson_id = seeded.lessons[0].id
    _start(lesson_id, learner_id)

    with pytest.raises(InvalidTransitionError):
        asyncio.run(attempt_service.resume(SCOPE, lesson_id, learner_id))


def test_resume_without_attempt(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    with pytest.raises(NoExistingAttemptError):
        asyncio.run(attempt_service.resume(SCOPE, seeded.lessons[0].id, learner_id))


def test_lesson_status_before_any_attempt(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    status = asyncio.run(
        attempt_service.get_lesson_status(SCOPE, seeded.lessons[0].id, learner_id)
    )
    assert status.can_resume is False
    assert status.can_reattempt is True
    assert status.last_attempt_status == TrackingStatus.NOT_STARTED
    assert status.last_attempt_id is None
    assert status.is_eligible is True


def test_lesson_status_after_completion_respects_max_attempts(
    learner_id: uuid.UUID,
) -> None:
    seeded = seed_course(max_attempts=1)
    enroll_and_track(learner_id, seeded.id)
    lesson_id = seeded.lessons[0].id
    track = _complete(_start(lesson_id, learner_id), learner_id)

    status = asyncio.run(
        attempt_service.get_lesson_status(SCOPE, lesson_id, learner_id)
    )
    assert status.can_resume is False
    assert status.can_reattempt is False
    assert status.last_attempt_id == track.id
    assert status.last_attempt_status == TrackingStatus.COMPLETED


def test_get_attempt_of_another_learner_is_not_found(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    enroll_and_track(learner_id, seeded.id)
    track = _start(seeded.lessons[0].id, learner_id)
    with pytest.raises(NotFoundError):
        asyncio.run(attempt_service.get_attempt(SCOPE, track.id, uuid.uuid4()))


# ---- update_progress ----


def test_progress_accumulates_time_and_derives_incomplete(
    learner_id: uuid.UUID,
) -> None:
    seeded = seed_course()
    enroll_and_track(learner_id, seeded.id)
    track = _start(seeded.lessons[0].id, learner_id)

    for _ in range(2):
        track = asyncio.run(
            attempt_service.update_progress(
                SCOPE,
                track.id,
                learner_id,
                ProgressUpdate(current_position=30, total_content=120, time_spent=15),
            )
        )

    assert track.time_spent == 30
    assert track.completion_percentage == 25
    assert track.status == TrackingStatus.INCOMPLETE
    assert track.end_datetime is None


def test_progress_reaching_the_end_completes(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    enroll_and_track(learner_id, seeded.id)
    track = _start(seeded.lessons[0].id, learner_id)

    track = asyncio.run(
        attempt_service.update_progress(
            SCOPE,
            track.id,
            learner_id,
            ProgressUpdate(
                current_position=120, total_content=120, params={"player": "html5"}
            ),
        )
    )

    assert track.status == TrackingStatus.COMPLETED
    assert track.completion_percentage == 100
    assert track.end_datetime is not None
    assert track.params == {"player": "html5"}
    course = asyncio.run(aggregate_repo.get_course_track(SCOPE, learner_id, seeded.id))
    assert course is not None
    assert course.completed_lessons == 1


def test_explicit_status_overrides_derived_one(learner_id: uuid.UUID) -> None:
    seeded = seed_course()
    enroll_and_track(learner_id, seeded.id)
    track = _start(seeded.lessons[0].id, learner_id)

    track = asyncio.run(
        attempt_service.update_progress(
            SCOPE,
            track.id,
            learner_id,
            ProgressUpdate(completion_percentage=100, status=TrackingStatus.SUBMITTED),
        )
    )

    assert track.status == TrackingStatus.SUBMITTED
    assert track.end_datetime is not None


# ---- external signals ----


def test_pass_signal_completes_new_attempt(learner_id: uuid.UUID) -> None:
    seeded = seed_course(lessons=1, format=LessonFormat.TEST, source_key="test-42")
    enroll_and_track(learner_id, seeded.id)

    track = asyncio.run(
        attempt_service.complete_by_external_signal(
            SCOPE,
            "test-42",
            ExternalSignal(
                learner_id=learner_id, result="pass", score=9, reviewed_by="grader-1"
            ),
        )
    )

    assert track.attempt == 1
    assert track.status == TrackingStatus.COMPLETED
    assert track.score == 9
    assert track.completion_percentage == 100
    assert track.params["reviewed_by"] == "grader-1"
    course = asyncio.run(aggregate_repo.get_course_track(SCOPE, learner_id, seeded.id))
    assert course is not None
    assert course.status == TrackingStatus.COMPLETED


def test_fail_signal_lands_on_open_attempt(learner_id: uuid.UUID) -> None:
    seeded = seed_course(lessons=1, format=LessonFormat.TEST, source_key="test-7")
    enroll_and_track(learner_id, seeded.id)
    open_attempt = _start(seeded.lessons[0].id, learner_id)

    track = asyncio.run(
        attempt_service.complete_by_external_signal(
            SCOPE, "test-7", ExternalSignal(learner_id=learner_id, result="fail")
        )
    )

    assert track.id == open_attempt.id
    assert track.status == TrackingStatus.SUBMITTED


def test_event_signal_always_targets_attempt_one(learner_id: uuid.UUID) -> None:
    seeded = seed_course(lessons=1, format=LessonFormat.EVENT, source_key="event-1")
    enroll_and_track(learner_id, seeded.id)

    for result in ("fail", "pass"):
        asyncio.run(
            attempt_service.complete_by_external_signal(
                SCOPE, "event-1", ExternalSignal(learner_id=learner_id, result=result)
            )
        )

    rows = _rows(seeded.lessons[0].id, learner_id)
    assert [t.attempt for t in rows] == [1]
    assert rows[0].status == TrackingStatus.COMPLETED


def test_signal_for_unknown_source_is_not_found(learner_id: uuid.UUID) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(
            attempt_service.complete_by_external_signal(
                SCOPE, "nope", ExternalSignal(learner_id=learner_id, result="pass")
            )
        )


def test_signal_without_result_or_status_is_invalid(learner_id: uuid.UUID) -> None:
    with pytest.raises(InvalidTransitionError):
        asyncio.run(
            attempt_service.complete_by_external_signal(
                SCOPE, "any", ExternalSignal(learner_id=learner_id)
            )
        )


def _set_status(track, learner_id, status):
    return asyncio.run(
        attempt_service.update_progress(
            SCOPE, track.id, learner_id, ProgressUpdate(status=status)
        )
    )


def test_regrade_from_submitted_to_completed_rolls_up(learner_id: uuid.UUID) -> None:
    seeded = seed_course(lessons=1)
    enroll_and_track(learner_id, seeded.id)
    track = _start(seeded.lessons[0].id, learner_id)

    track = _set_status(track, learner_id, TrackingStatus.SUBMITTED)
    course = asyncio.run(aggregate_repo.get_course_track(SCOPE, learner_id, seeded.id))
    assert course is not None
    assert course.completed_lessons == 0

    track = _set_status(track, learner_id, TrackingStatus.COMPLETED)

    assert track.status == TrackingStatus.COMPLETED
    course = asyncio.run(aggregate_repo.get_course_track(SCOPE, learner_id, seeded.id))
    assert course is not None
    assert course.status == TrackingStatus.COMPLETED
    assert course.completed_lessons == 1


def test_regrade_from_completed_to_submitted_drops_the_count(
    learner_id: uuid.UUID,
) -> None:
    seeded = seed_course(lessons=2)
    enroll_and_track(learner_id, seeded.id)
    track = _complete(_start(seeded.lessons[0].id, learner_id), learner_id)

    _set_status(track, learner_id, TrackingStatus.SUBMITTED)

    course = asyncio.run(aggregate_repo.get_course_track(SCOPE, learner_id, seeded.id))
    assert course is not None
    assert course.completed_lessons == 0


# ---- in-memory attempt store ----


def test_replace_conflict_keeps_the_original_row() -> None:
    repo = InMemoryAttemptRepo()
    learner, lesson, course = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

    def _track(number: int) -> LessonTrack:
        return LessonTrack.new(
            scope=SCOPE,
            user_id=learner,
            lesson_id=lesson,
            course_id=course,
            attempt=number,
            now=1000,
        )

    first, second = _track(1), _track(2)
    asyncio.run(repo.add(first))
    asyncio.run(repo.add(second))

    with pytest.raises(ConflictError):
        asyncio.run(repo.replace(first.id, _track(2)))

    assert asyncio.run(repo.get(SCOPE, first.id)) == first
    assert len(asyncio.run(repo.list_for_lesson(SCOPE, learner, lesson))) == 2


def test_replace_with_same_number_swaps_the_row() -> None:
    repo = InMemoryAttemptRepo()
    learner, lesson, course = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    old = LessonTrack.new(
        scope=SCOPE,
        user_id=learner,
        lesson_id=lesson,
        course_id=course,
        attempt=1,
        now=1000,
    )
    fresh = LessonTrack.new(
        scope=SCOPE,
        user_id=learner,
        lesson_id=lesson,
        course_id=course,
        attempt=1,
        now=2000,
    )
    asyncio.run(repo.add(old))

    asyncio.run(repo.replace(old.id, fresh))

    assert asyncio.run(repo.get(SCOPE, old.id)) is None
    assert asyncio.run(repo.get(SCOPE, fresh.id)) == fresh
