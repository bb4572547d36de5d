"""Grading resolver tests.

Pure functions: attempts in, outcome out.  No stores, no event loop.
"""

from __future__ import annotations

import uuid
from dataclasses import replace

from lms_tracking.models.content import (
    Course,
    GradeMethod,
    Lesson,
    LessonFormat,
    Module,
)
from lms_tracking.models.tracking import LessonTrack, TrackingStatus
from lms_tracking.services.grading import (
    NOT_ATTEMPTED,
    RESOLVERS,
    resolve,
    resolve_many,
)
from tests.conftest import SCOPE

_COURSE = Course.new(
    tenant_id=SCOPE.tenant_id, organisation_id=SCOPE.organisation_id, title="C"
)
_MODULE = Module.new(course=_COURSE, title="M")
_LEARNER = uuid.uuid4()


def _lesson(**policy: object) -> Lesson:
    return Lesson.new(module=_MODULE, title="L", **policy)  # type: ignore[arg-type]


def _attempt(
    lesson: Lesson,
    number: int,
    *,
    score: int = 0,
    status: TrackingStatus = TrackingStatus.COMPLETED,
    percentage: int = 100,
    time_spent: int = 0,
) -> LessonTrack:
    track = LessonTrack.new(
        scope=SCOPE,
        user_id=_LEARNER,
        lesson_id=lesson.id,
        course_id=lesson.course_id,
        attempt=number,
        now=1_700_000_000 + number,
    )
    return replace(
        track,
        score=score,
        status=status,
        completion_percentage=percentage,
        time_spent=time_spent,
    )


def test_every_grade_method_has_a_resolver() -> None:
    assert set(RESOLVERS) == set(GradeMethod)


def test_no_attempts_is_not_completed() -> None:
    outcome = resolve([], _lesson())
    assert outcome is NOT_ATTEMPTED
    assert outcome.completed is False
    assert outcome.score == 0


# ---- AVERAGE ----


def test_average_passes_when_mean_reaches_passing_marks() -> None:
    lesson = _lesson(
        grade_method=GradeMethod.AVERAGE, passing_marks=50, total_marks=100
    )
    attempts = [_attempt(lesson, 1, score=40), _attempt(lesson, 2, score=70)]
    outcome = resolve(attempts, lesson)
    assert outcome.completed is True
    assert outcome.score == 55
    assert outcome.attempt is None


def test_average_fails_below_passing_marks() -> None:
    lesson = _lesson(
        grade_method=GradeMethod.AVERAGE, passing_marks=50, total_marks=100
    )
    attempts = [_attempt(lesson, 1, score=30), _attempt(lesson, 2, score=40)]
    outcome = resolve(attempts, lesson)
    assert outcome.completed is False
    assert outcome.score == 35


def test_average_rounds_half_up() -> None:
    lesson = _lesson(grade_method=GradeMethod.AVERAGE, passing_marks=3, total_marks=10)
    attempts = [_attempt(lesson, 1, score=2), _attempt(lesson, 2, score=3)]
    outcome = resolve(attempts, lesson)
    assert outcome.score == 3
    assert outcome.completed is True


def test_average_without_thresholds_counts_any_attempt() -> None:
    lesson = _lesson(grade_method=GradeMethod.AVERAGE)
    attempts = [_attempt(lesson, 1, score=0, status=TrackingStatus.INCOMPLETE)]
    assert resolve(attempts, lesson).completed is True


# ---- FIRST / LAST / HIGHEST ----


def test_first_attempt_decides_even_if_later_attempt_completed() -> None:
    lesson = _lesson(grade_method=GradeMethod.FIRST_ATTEMPT)
    attempts = [
        _attempt(lesson, 2, score=90, status=TrackingStatus.COMPLETED),
        _attempt(lesson, 1, score=10, status=TrackingStatus.SUBMITTED),
    ]
    outcome = resolve(attempts, lesson)
    assert outcome.completed is False
    assert outcome.attempt is not None
    assert outcome.attempt.attempt == 1


def test_last_attempt_uses_highest_attempt_number() -> None:
    lesson = _lesson(grade_method=GradeMethod.LAST_ATTEMPT)
    attempts = [
        _attempt(lesson, 1, status=TrackingStatus.COMPLETED),
        _attempt(lesson, 2, status=TrackingStatus.INCOMPLETE),
    ]
    assert resolve(attempts, lesson).completed is False


def test_highest_picks_best_score() -> None:
    lesson = _lesson(grade_method=GradeMethod.HIGHEST)
    attempts = [
        _attempt(lesson, 1, score=30, status=TrackingStatus.SUBMITTED),
        _attempt(lesson, 2, score=80, status=TrackingStatus.COMPLETED),
        _attempt(lesson, 3, score=50, status=TrackingStatus.SUBMITTED),
    ]
    outcome = resolve(attempts, lesson)
    assert outcome.score == 80
    assert outcome.completed is True


def test_highest_keeps_earliest_attempt_on_tie() -> None:
    lesson = _lesson(grade_method=GradeMethod.HIGHEST)
    attempts = [
        _attempt(lesson, 1, score=60, status=TrackingStatus.SUBMITTED),
        _attempt(lesson, 2, score=60, status=TrackingStatus.COMPLETED),
    ]
    outcome = resolve(attempts, lesson)
    assert outcome.attempt is not None
    assert outcome.attempt.attempt == 1
    assert outcome.completed is False


# ---- event format ----


def test_event_completed_if_any_attempt_completed() -> None:
    lesson = _lesson(format=LessonFormat.EVENT, grade_method=GradeMethod.FIRST_ATTEMPT)
    attempts = [
        _attempt(lesson, 1, status=TrackingStatus.SUBMITTED),
        _attempt(lesson, 2, status=TrackingStatus.COMPLETED),
    ]
    assert resolve(attempts, lesson).completed is True


def test_resolve_many_covers_lessons_without_attempts() -> None:
    done = _lesson()
    untouched = _lesson()
    other = _lesson()
    outcomes = resolve_many(
        [_attempt(done, 1), _attempt(other, 1)], [done, untouched]
    )
    assert set(outcomes) == {done.id, untouched.id}
    assert outcomes[done.id].completed is True
    assert outcomes[untouched.id].completed is False
