"""Paginated course reports for instructors.

Course level: one row per enrolled learner with the course aggregate.
Lesson level (``lesson_id`` given): one row per enrolled learner with
the latest attempt at that lesson.  Learner names come from the
identity service; a learner it does not know keeps empty name fields.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from lms_tracking.core.errors import NotFoundError
from lms_tracking.models.content import ContentStatus
from lms_tracking.models.tracking import TenantScope, TrackingStatus
from lms_tracking.services.composer import lesson_progress
from lms_tracking.services.identity_client import IdentityClient, identity_client
from lms_tracking.services.stores import Stores, run_in_unit_of_work


@dataclass(frozen=True, slots=True)
class CourseReportRow:
    learner_id: UUID
    name: str | None
    email: str | None
    course_title: str
    cohort_id: UUID | None
    status: TrackingStatus
    progress: int
    completed_lessons: int
    total_lessons: int
    last_accessed: int | None


@dataclass(frozen=True, slots=True)
class LessonReportRow:
    learner_id: UUID
    name: str | None
    email: str | None
    course_title: str
    lesson_title: str
    type: str
    status: TrackingStatus
    progress: int
    score: int | None
    attempt: int | None
    time_spent: int
    last_accessed: int | None


@dataclass(frozen=True, slots=True)
class CourseReport:
    data: list[CourseReportRow] | list[LessonReportRow]
    total_elements: int
    offset: int
    limit: int


class ReportService:
    def __init__(self, identity: IdentityClient = identity_client) -> None:
        self._identity = identity

    async def course_report(
        self,
        scope: TenantScope,
        course_id: UUID,
        *,
        lesson_id: UUID | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> CourseReport:
        async def _op(stores: Stores):
            course = await stores.content.get_course(scope, course_id)
            if course is None or course.status == ContentStatus.ARCHIVED:
                raise NotFoundError(f"course {course_id} not found")
            lesson = None
            if lesson_id is not None:
                lesson = await stores.content.get_lesson(scope, lesson_id)
                if (
                    lesson is None
                    or lesson.course_id != course_id
                    or lesson.status == ContentStatus.ARCHIVED
                ):
                    raise NotFoundError(f"lesson {lesson_id} not found in course")

            total = await stores.enrollments.count_for_course(scope, course_id)
            enrollments = await stores.enrollments.list_for_course(
                scope, course_id, offset=offset, limit=limit
            )
            learner_ids = [e.user_id for e in enrollments]
            if lesson is None:
                tracks = {
                    t.user_id: t
                    for t in await stores.aggregates.list_course_tracks(
                        scope, course_id
                    )
                }
                attempts = {}
            else:
                tracks = {}
                attempts = await stores.attempts.latest_for_users(
                    scope, lesson.id, learner_ids
                )
            return course, lesson, total, learner_ids, tracks, attempts

        course, lesson, total, learner_ids, tracks, attempts = (
            await run_in_unit_of_work(_op)
        )
        # Outside the unit of work: no transaction is held across the HTTP call.
        identities = await self._identity.fetch_learners(scope, learner_ids)

        rows: list = []
        for learner_id in learner_ids:
            who = identities.get(learner_id)
            name = who.name if who else None
            email = who.email if who else None
            if lesson is None:
                track = tracks.get(learner_id)
                rows.append(
                    CourseReportRow(
                        learner_id=learner_id,
                        name=name,
                        email=email,
                        course_title=course.title,
                        cohort_id=course.cohort_id,
                        status=track.status if track else TrackingStatus.NOT_STARTED,
                        progress=track.progress if track else 0,
                        completed_lessons=track.completed_lessons if track else 0,
                        total_lessons=track.no_of_lessons if track else 0,
                        last_accessed=track.last_accessed_date if track else None,
                    )
                )
            else:
                attempt = attempts.get(learner_id)
                rows.append(
                    LessonReportRow(
                        learner_id=learner_id,
                        name=name,
                        email=email,
                        course_title=course.title,
                        lesson_title=lesson.title,
                        type=lesson.format.value,
                        status=(
                            attempt.status if attempt else TrackingStatus.NOT_STARTED
                        ),
                        progress=lesson_progress(attempt) if attempt else 0,
                        score=attempt.score if attempt else None,
                        attempt=attempt.attempt if attempt else None,
                        time_spent=attempt.time_spent if attempt else 0,
                        last_accessed=attempt.updated_at if attempt else None,
                    )
                )
        return CourseReport(
            data=rows, total_elements=total, offset=offset, limit=limit
        )


report_service = ReportService()
