"""Grading resolver: many attempts in, one verdict out.

A lesson may be attempted several times.  Rollups, eligibility checks
and batch completion all need a single answer to "has this learner
completed this lesson?", and that answer depends on the lesson's
grading method:

  first_attempt  the earliest attempt decides
  last_attempt   the most recent attempt decides
  highest        the best-scoring attempt decides
  average        a synthetic attempt with the mean score decides,
                 measured against the lesson's passing marks

Event lessons ignore the method entirely: attending once is enough.

Everything here is pure.  No store access, no clock, no logging, so
every caller that resolves the same attempts gets the same outcome.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from uuid import UUID

from lms_tracking.models.content import GradeMethod, Lesson, LessonFormat
from lms_tracking.models.tracking import LessonTrack, TrackingStatus, round_half_up


@dataclass(frozen=True, slots=True)
class EffectiveOutcome:
    """The single verdict for one learner at one lesson.

    attempt: the attempt the verdict was taken from, or None for the
             synthetic AVERAGE record and for lessons never attempted.
    """

    completed: bool
    score: int = 0
    completion_percentage: int = 0
    time_spent: int = 0
    attempt: LessonTrack | None = None


NOT_ATTEMPTED = EffectiveOutcome(completed=False)


def _from_attempt(attempt: LessonTrack) -> EffectiveOutcome:
    return EffectiveOutcome(
        completed=attempt.status == TrackingStatus.COMPLETED,
        score=attempt.score,
        completion_percentage=attempt.completion_percentage,
        time_spent=attempt.time_spent,
        attempt=attempt,
    )


def _first_attempt(attempts: Sequence[LessonTrack], lesson: Lesson) -> EffectiveOutcome:
    return _from_attempt(attempts[0])


def _last_attempt(attempts: Sequence[LessonTrack], lesson: Lesson) -> EffectiveOutcome:
    return _from_attempt(attempts[-1])


def _highest(attempts: Sequence[LessonTrack], lesson: Lesson) -> EffectiveOutcome:
    best = attempts[0]
    for candidate in attempts[1:]:
        # strict comparison keeps the earliest attempt on ties
        if candidate.score > best.score:
            best = candidate
    return _from_attempt(best)


def _mean(values: list[int]) -> int:
    return round_half_up(sum(values) / len(values))


def _average(attempts: Sequence[LessonTrack], lesson: Lesson) -> EffectiveOutcome:
    score = _mean([a.score for a in attempts])
    percentage = _mean([a.completion_percentage for a in attempts])
    time_spent = _mean([a.time_spent for a in attempts])

    if lesson.passing_marks is not None and lesson.total_marks:
        achieved = score / lesson.total_marks * 100
        required = lesson.passing_marks / lesson.total_marks * 100
        completed = achieved >= required
    else:
        completed = True

    return EffectiveOutcome(
        completed=completed,
        score=score,
        completion_percentage=percentage,
        time_spent=time_spent,
    )


_Resolver = Callable[[Sequence[LessonTrack], Lesson], EffectiveOutcome]

RESOLVERS: dict[GradeMethod, _Resolver] = {
    GradeMethod.FIRST_ATTEMPT: _first_attempt,
    GradeMethod.LAST_ATTEMPT: _last_attempt,
    GradeMethod.HIGHEST: _highest,
    GradeMethod.AVERAGE: _average,
}


def _event(attempts: Sequence[LessonTrack]) -> EffectiveOutcome:
    for attempt in attempts:
        if attempt.status == TrackingStatus.COMPLETED:
            return _from_attempt(attempt)
    return _from_attempt(attempts[-1])


def resolve(attempts: Sequence[LessonTrack], lesson: Lesson) -> EffectiveOutcome:
    """Collapse one learner's attempts at ``lesson`` into a single outcome.

    ``attempts`` may arrive in any order; they are sorted by attempt
    number here so the resolvers can rely on index 0 being the first.
    """
    if not attempts:
        return NOT_ATTEMPTED

    ordered = sorted(attempts, key=lambda a: a.attempt)
    if lesson.format == LessonFormat.EVENT:
        return _event(ordered)
    return RESOLVERS[lesson.grade_method](ordered, lesson)


def resolve_many(
    attempts: Sequence[LessonTrack], lessons: Sequence[Lesson]
) -> dict[UUID, EffectiveOutcome]:
    """Group a batch of attempts by lesson and resolve each lesson.

    Returns ``{lesson_id: EffectiveOutcome}`` for every lesson given,
    including lessons with no attempts.
    """
    by_lesson: dict[UUID, list[LessonTrack]] = {lesson.id: [] for lesson in lessons}
    for attempt in attempts:
        if attempt.lesson_id in by_lesson:
            by_lesson[attempt.lesson_id].append(attempt)
    return {lesson.id: resolve(by_lesson[lesson.id], lesson) for lesson in lessons}
