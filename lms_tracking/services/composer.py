"""Read side: course tracking and the course tree with tracking attached.

Nothing here writes.  The hierarchy view is assembled from a fixed
number of batch reads (modules, lessons, the learner's attempts for the
course, module aggregates, the course aggregate) regardless of course
size.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from lms_tracking.core.errors import NotFoundError
from lms_tracking.models.content import ContentStatus, Course, Lesson, Module
from lms_tracking.models.tracking import (
    CourseTrack,
    LessonTrack,
    ModuleTrack,
    TenantScope,
    TrackingStatus,
    percent,
)
from lms_tracking.services.eligibility import (
    CourseEligibility,
    LessonEligibility,
    check_course_eligibility,
    completed_prerequisites,
    lesson_eligibility,
)
from lms_tracking.services.stores import Stores, run_in_unit_of_work


@dataclass(frozen=True, slots=True)
class AttemptSummary:
    attempt_id: UUID
    attempt_number: int
    status: TrackingStatus
    start_datetime: int
    end_datetime: int | None
    score: int
    progress: int
    time_spent: int
    last_accessed: int
    total_content: int
    current_position: int


@dataclass(frozen=True, slots=True)
class LessonTracking:
    status: TrackingStatus = TrackingStatus.NOT_STARTED
    progress: int = 0
    last_accessed: int | None = None
    time_spent: int = 0
    score: int | None = None
    attempt: AttemptSummary | None = None


@dataclass(frozen=True, slots=True)
class LessonView:
    lesson_id: UUID
    title: str
    format: str
    sub_format: str | None
    ordering: int
    tracking: LessonTracking
    eligibility: LessonEligibility


@dataclass(frozen=True, slots=True)
class ModuleTracking:
    status: str
    progress: int
    completed_lessons: int
    total_lessons: int


@dataclass(frozen=True, slots=True)
class ModuleView:
    module_id: UUID
    title: str
    ordering: int
    tracking: ModuleTracking
    lessons: list[LessonView] = field(default_factory=list)
    submodules: list[ModuleView] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CourseTracking:
    status: TrackingStatus
    progress: int
    completed_lessons: int
    total_lessons: int
    time_spent: int
    start_datetime: int | None = None
    end_datetime: int | None = None
    last_accessed: int | None = None
    certificate_issued: bool = False


@dataclass(frozen=True, slots=True)
class LastAccessedLesson:
    lesson_id: UUID
    attempt: AttemptSummary


@dataclass(frozen=True, slots=True)
class CourseHierarchy:
    course_id: UUID
    title: str
    tracking: CourseTracking
    eligibility: CourseEligibility
    last_accessed_lesson: LastAccessedLesson | None
    modules: list[ModuleView]


def lesson_progress(track: LessonTrack) -> int:
    if track.status == TrackingStatus.COMPLETED:
        return 100
    if track.status == TrackingStatus.STARTED:
        return 0
    return min(percent(track.current_position, track.total_content), 99)


def _summarise(track: LessonTrack) -> AttemptSummary:
    return AttemptSummary(
        attempt_id=track.id,
        attempt_number=track.attempt,
        status=track.status,
        start_datetime=track.start_datetime,
        end_datetime=track.end_datetime,
        score=track.score,
        progress=lesson_progress(track),
        time_spent=track.time_spent,
        last_accessed=track.updated_at,
        total_content=track.total_content,
        current_position=track.current_position,
    )


class TrackingComposer:
    async def get_course_tracking(
        self, scope: TenantScope, course_id: UUID, learner_id: UUID
    ) -> CourseTrack:
        async def _op(stores: Stores) -> CourseTrack | None:
            return await stores.aggregates.get_course_track(
                scope, learner_id, course_id
            )

        track = await run_in_unit_of_work(_op)
        if track is None:
            raise NotFoundError(
                f"no course tracking for learner {learner_id} in course {course_id}"
            )
        return track

    async def course_hierarchy_with_tracking(
        self, scope: TenantScope, course_id: UUID, learner_id: UUID
    ) -> CourseHierarchy:
        async def _op(stores: Stores) -> CourseHierarchy:
            course = await stores.content.get_course(scope, course_id)
            if course is None or course.status == ContentStatus.ARCHIVED:
                raise NotFoundError(f"course {course_id} not found")

            modules = await stores.content.list_modules(scope, course_id)
            lessons = [
                lesson
                for lesson in await stores.content.list_lessons(scope, [course_id])
                if lesson.parent_id is None
            ]
            attempts = await stores.attempts.list_for_lessons(
                scope, learner_id, [lesson.id for lesson in lessons]
            )
            module_tracks = {
                t.module_id: t
                for t in await stores.aggregates.list_module_tracks(
                    scope, learner_id, course_id
                )
            }
            course_track = await stores.aggregates.get_course_track(
                scope, learner_id, course_id
            )
            eligibility = await check_course_eligibility(
                stores, scope, course, learner_id
            )
            completed = await completed_prerequisites(
                stores, scope, course_id, lessons, learner_id
            )
            return self._compose(
                course,
                modules,
                lessons,
                attempts,
                completed,
                module_tracks,
                course_track,
                eligibility,
            )

        return await run_in_unit_of_work(_op)

    def _compose(
        self,
        course: Course,
        modules: list[Module],
        lessons: list[Lesson],
        attempts: list[LessonTrack],
        met_prerequisites: set[UUID],
        module_tracks: dict[UUID, ModuleTrack],
        course_track: CourseTrack | None,
        eligibility: CourseEligibility,
    ) -> CourseHierarchy:
        latest: dict[UUID, LessonTrack] = {}
        for attempt in attempts:
            current = latest.get(attempt.lesson_id)
            if current is None or attempt.attempt > current.attempt:
                latest[attempt.lesson_id] = attempt

        def lesson_view(lesson: Lesson) -> LessonView:
            track = latest.get(lesson.id)
            if track is None:
                tracking = LessonTracking()
            else:
                tracking = LessonTracking(
                    status=track.status,
                    progress=lesson_progress(track),
                    last_accessed=track.updated_at,
                    time_spent=track.time_spent,
                    score=track.score,
                    attempt=_summarise(track),
                )
            return LessonView(
                lesson_id=lesson.id,
                title=lesson.title,
                format=lesson.format.value,
                sub_format=lesson.sub_format.value if lesson.sub_format else None,
                ordering=lesson.ordering,
                tracking=tracking,
                eligibility=lesson_eligibility(lesson, met_prerequisites),
            )

        def module_view(module: Module) -> ModuleView:
            own_lessons = [ls for ls in lessons if ls.module_id == module.id]
            agg = module_tracks.get(module.id)
            if agg is not None:
                tracking = ModuleTracking(
                    status=agg.status.value,
                    progress=agg.progress,
                    completed_lessons=agg.completed_lessons,
                    total_lessons=agg.total_lessons,
                )
            else:
                tracking = ModuleTracking(
                    status=TrackingStatus.NOT_STARTED.value,
                    progress=0,
                    completed_lessons=0,
                    total_lessons=sum(1 for ls in own_lessons if ls.is_countable),
                )
            return ModuleView(
                module_id=module.id,
                title=module.title,
                ordering=module.ordering,
                tracking=tracking,
                lessons=[lesson_view(ls) for ls in own_lessons],
                submodules=[
                    module_view(sub) for sub in modules if sub.parent_id == module.id
                ],
            )

        time_spent = sum(a.time_spent for a in attempts)
        if course_track is None:
            total = sum(1 for ls in lessons if ls.is_countable)
            tracking = CourseTracking(
                status=TrackingStatus.NOT_STARTED,
                progress=0,
                completed_lessons=0,
                total_lessons=total,
                time_spent=time_spent,
            )
        else:
            tracking = CourseTracking(
                status=course_track.status,
                progress=course_track.progress,
                completed_lessons=course_track.completed_lessons,
                total_lessons=course_track.no_of_lessons,
                time_spent=time_spent,
                start_datetime=course_track.start_datetime,
                end_datetime=course_track.end_datetime,
                last_accessed=course_track.last_accessed_date,
                certificate_issued=course_track.certificate_issued,
            )

        last_accessed_lesson = None
        if (
            course_track is not None
            and course_track.status != TrackingStatus.COMPLETED
            and attempts
        ):
            recent = max(attempts, key=lambda a: (a.updated_at, a.attempt))
            last_accessed_lesson = LastAccessedLesson(
                lesson_id=recent.lesson_id, attempt=_summarise(recent)
            )

        return CourseHierarchy(
            course_id=course.id,
            title=course.title,
            tracking=tracking,
            eligibility=eligibility,
            last_accessed_lesson=last_accessed_lesson,
            modules=[module_view(m) for m in modules if m.parent_id is None],
        )


tracking_composer = TrackingComposer()
