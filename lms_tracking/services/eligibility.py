"""Prerequisite checks for lessons and courses.

Both checks look only at the recorded state of the direct
prerequisites (a completed attempt, a completed course aggregate).
They never recurse into a prerequisite's own prerequisites, so a cycle
in authored content cannot make them loop.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID

from lms_tracking.models.content import Course, Lesson
from lms_tracking.models.tracking import TenantScope, TrackingStatus
from lms_tracking.services.stores import Stores

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LessonEligibility:
    is_eligible: bool
    unmet_prerequisites: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CourseEligibility:
    is_eligible: bool
    required_courses: list[str] = field(default_factory=list)


async def completed_prerequisites(
    stores: Stores,
    scope: TenantScope,
    course_id: UUID,
    lessons: Iterable[Lesson],
    learner_id: UUID,
) -> set[UUID]:
    """Prerequisites of ``lessons`` that the learner has completed.

    Only prerequisites inside ``course_id`` can be met. Prerequisite
    lessons and the learner's attempts on them are loaded in one batch each.
    """
    wanted = {pid for lesson in lessons for pid in lesson.prerequisites}
    if not wanted:
        return set()

    in_course = [
        p.id
        for p in await stores.content.get_lessons(scope, wanted)
        if p.course_id == course_id
    ]
    attempts = await stores.attempts.list_for_lessons(scope, learner_id, in_course)
    return {a.lesson_id for a in attempts if a.status == TrackingStatus.COMPLETED}


def lesson_eligibility(lesson: Lesson, completed: set[UUID]) -> LessonEligibility:
    # Keep the authored order; a prerequisite missing from the course is unmet.
    unmet = [str(pid) for pid in lesson.prerequisites if pid not in completed]
    return LessonEligibility(is_eligible=not unmet, unmet_prerequisites=unmet)


async def check_lesson_eligibility(
    stores: Stores, scope: TenantScope, lesson: Lesson, learner_id: UUID
) -> LessonEligibility:
    if not lesson.prerequisites:
        return LessonEligibility(is_eligible=True)

    completed = await completed_prerequisites(
        stores, scope, lesson.course_id, [lesson], learner_id
    )
    result = lesson_eligibility(lesson, completed)
    if not result.is_eligible:
        logger.debug(
            "Lesson %s not eligible for learner %s: unmet=%s",
            lesson.id,
            learner_id,
            result.unmet_prerequisites,
        )
    return result


async def check_course_eligibility(
    stores: Stores, scope: TenantScope, course: Course, learner_id: UUID
) -> CourseEligibility:
    if not course.prerequisites:
        return CourseEligibility(is_eligible=True)

    own = await stores.aggregates.get_course_track(scope, learner_id, course.id)
    if own is not None and own.status == TrackingStatus.COMPLETED:
        return CourseEligibility(is_eligible=True)

    done = await stores.aggregates.completed_course_ids(
        scope, learner_id, course.prerequisites
    )
    required = [str(cid) for cid in course.prerequisites if cid not in done]
    return CourseEligibility(is_eligible=not required, required_courses=required)
