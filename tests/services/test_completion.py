from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace

import pytest

from lms_tracking.core.errors import NotFoundError
from lms_tracking.models.content import LessonFormat, LessonSubFormat
from lms_tracking.models.tracking import LessonTrack, TrackingStatus
from lms_tracking.services.completion import CompletionCriterion, completion_checker
from lms_tracking.services.stores import attempt_repo
from tests.conftest import SCOPE, add_lesson, seed_course

VIDEOS = CompletionCriterion(
    lesson_format=LessonFormat.VIDEO,
    lesson_sub_format=LessonSubFormat.YOUTUBE,
    completion_rule=2,
)
QUIZZES = CompletionCriterion(
    lesson_format=LessonFormat.TEST,
    lesson_sub_format=LessonSubFormat.QUIZ,
    completion_rule=1,
)


def _complete(lesson, learner_id) -> None:
    track = LessonTrack.new(
        scope=SCOPE,
        user_id=learner_id,
        lesson_id=lesson.id,
        course_id=lesson.course_id,
        attempt=1,
        now=100,
    )
    asyncio.run(attempt_repo.add(replace(track, status=TrackingStatus.COMPLETED)))


def _check(cohort_id, learner_id, criteria):
    return asyncio.run(
        completion_checker.check(SCOPE, cohort_id, learner_id, criteria)
    )


def test_criteria_count_across_cohort_courses(learner_id: uuid.UUID) -> None:
    cohort_id = uuid.uuid4()
    first = seed_course(
        lessons=2, cohort_id=cohort_id, sub_format=LessonSubFormat.YOUTUBE
    )
    second = seed_course(
        lessons=1,
        title="Follow-up",
        cohort_id=cohort_id,
        sub_format=LessonSubFormat.YOUTUBE,
    )
    quiz = add_lesson(
        second.module,
        title="Quiz",
        format=LessonFormat.TEST,
        sub_format=LessonSubFormat.QUIZ,
    )
    _complete(first.lessons[0], learner_id)
    _complete(second.lessons[0], learner_id)

    report = _check(cohort_id, learner_id, [VIDEOS, QUIZZES])

    assert report.overall_status is False
    videos, quizzes = report.criteria_results
    assert videos.status is True
    assert videos.total_lessons == 3
    assert videos.completed_lessons == 2
    assert videos.message.startswith("Criterion met: 2 of 3")
    assert quizzes.status is False
    assert quizzes.total_lessons == 1
    assert quizzes.completed_lessons == 0

    _complete(quiz, learner_id)
    assert _check(cohort_id, learner_id, [VIDEOS, QUIZZES]).overall_status is True


def test_courses_outside_the_cohort_do_not_count(learner_id: uuid.UUID) -> None:
    cohort_id = uuid.uuid4()
    seed_course(lessons=1, cohort_id=cohort_id, sub_format=LessonSubFormat.YOUTUBE)
    other = seed_course(lessons=2, sub_format=LessonSubFormat.YOUTUBE)
    for lesson in other.lessons:
        _complete(lesson, learner_id)

    report = _check(cohort_id, learner_id, [VIDEOS])

    assert report.criteria_results[0].completed_lessons == 0
    assert report.criteria_results[0].message.startswith("Criterion not met")


def test_unknown_cohort_raises(learner_id: uuid.UUID) -> None:
    with pytest.raises(NotFoundError):
        _check(uuid.uuid4(), learner_id, [VIDEOS])
