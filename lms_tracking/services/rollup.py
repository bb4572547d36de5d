"""Rollup aggregator: lesson outcomes into module and course aggregates.

The only writer of CourseTrack and ModuleTrack after enrollment.  One
recompute re-derives a learner's aggregates for one course from the
attempt store, so it is safe to run any number of times: with the same
attempts and the same clock it writes the same values.

Counting rule (also used at enrollment): a lesson counts when it is
not archived, is considered for passing and has no parent lesson.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from uuid import UUID

from lms_tracking.core.errors import InvalidTransitionError, NotFoundError
from lms_tracking.core.metrics import COURSE_COMPLETIONS, ROLLUP_DURATION
from lms_tracking.models.content import Lesson
from lms_tracking.models.tracking import (
    CourseTrack,
    ModuleTrack,
    ModuleTrackStatus,
    TenantScope,
    TrackingStatus,
    now_ts,
    percent,
)
from lms_tracking.services.grading import resolve_many
from lms_tracking.services.locks import KeyedLocks, tracking_locks
from lms_tracking.services.stores import Stores, run_in_unit_of_work
from lms_tracking.services.task_queue import CERTIFICATE_QUEUE, TaskQueue, task_queue

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RollupResult:
    course_track: CourseTrack
    module_tracks: list[ModuleTrack]
    newly_completed: bool = False


@dataclass(frozen=True, slots=True)
class RecalculationSummary:
    course_tracks_updated: int
    module_tracks_updated: int


def course_lock_key(scope: TenantScope, learner_id: UUID, course_id: UUID) -> tuple:
    return ("course", scope.tenant_id, scope.organisation_id, learner_id, course_id)


class RollupAggregator:
    def __init__(
        self,
        *,
        queue: TaskQueue = task_queue,
        locks: KeyedLocks = tracking_locks,
        clock: Callable[[], int] = now_ts,
    ) -> None:
        self._queue = queue
        self._locks = locks
        self._clock = clock

    async def recompute(
        self,
        scope: TenantScope,
        learner_id: UUID,
        course_id: UUID,
        *,
        lesson_id: UUID | None = None,
        trigger: TrackingStatus | None = None,
    ) -> RollupResult:
        """Recompute the learner's course aggregate and module aggregate(s).

        ``lesson_id`` limits the module pass to that lesson's module;
        without it every module of the course is recomputed.  ``trigger``
        is the status of the attempt write that caused the recompute;
        None marks a forced recompute.
        """
        start = time.monotonic()

        async def _op(stores: Stores) -> RollupResult:
            return await self._recompute(
                stores, scope, learner_id, course_id, lesson_id, trigger
            )

        result = await run_in_unit_of_work(
            _op,
            lock_key=course_lock_key(scope, learner_id, course_id),
            locks=self._locks,
        )
        ROLLUP_DURATION.observe(time.monotonic() - start)

        if result.newly_completed:
            COURSE_COMPLETIONS.inc()
            await self._queue.enqueue(
                CERTIFICATE_QUEUE,
                {
                    "tenant_id": scope.tenant_id,
                    "organisation_id": scope.organisation_id,
                    "learner_id": str(learner_id),
                    "course_id": str(course_id),
                },
            )
            logger.info(
                "Course %s completed by learner %s",
                course_id,
                learner_id,
                extra={"learner_id": str(learner_id), "course_id": str(course_id)},
            )
        return result

    async def _recompute(
        self,
        stores: Stores,
        scope: TenantScope,
        learner_id: UUID,
        course_id: UUID,
        lesson_id: UUID | None,
        trigger: TrackingStatus | None,
    ) -> RollupResult:
        course_track = await stores.aggregates.get_course_track(
            scope, learner_id, course_id, for_update=True
        )
        if course_track is None:
            raise NotFoundError(
                f"no course tracking for learner {learner_id} in course {course_id}"
            )

        lessons = [
            lesson
            for lesson in await stores.content.list_lessons(scope, [course_id])
            if lesson.is_countable
        ]
        attempts = await stores.attempts.list_for_lessons(
            scope, learner_id, [lesson.id for lesson in lessons]
        )
        outcomes = resolve_many(attempts, lessons)
        completed_ids = {lid for lid, outcome in outcomes.items() if outcome.completed}
        now = self._clock()

        updated_course = self._next_course_track(
            course_track, len(completed_ids), len(lessons), trigger, now
        )
        await stores.aggregates.save_course_track(updated_course)

        module_ids = await self._modules_to_update(stores, scope, course_id, lesson_id)
        module_tracks = []
        for module_id in module_ids:
            module_lessons = [ls for ls in lessons if ls.module_id == module_id]
            module_tracks.append(
                await self._update_module(
                    stores,
                    scope,
                    learner_id,
                    course_id,
                    module_id,
                    module_lessons,
                    completed_ids,
                    now,
                )
            )

        newly_completed = (
            updated_course.status == TrackingStatus.COMPLETED
            and course_track.status != TrackingStatus.COMPLETED
            and course_track.end_datetime is None
        )
        return RollupResult(
            course_track=updated_course,
            module_tracks=module_tracks,
            newly_completed=newly_completed,
        )

    @staticmethod
    def _next_course_track(
        current: CourseTrack,
        completed: int,
        total: int,
        trigger: TrackingStatus | None,
        now: int,
    ) -> CourseTrack:
        already_completed = current.status == TrackingStatus.COMPLETED
        if completed >= total and (
            trigger is None or trigger == TrackingStatus.COMPLETED or already_completed
        ):
            status = TrackingStatus.COMPLETED
        else:
            status = TrackingStatus.INCOMPLETE

        end_datetime = current.end_datetime
        if status == TrackingStatus.COMPLETED and end_datetime is None:
            end_datetime = now

        return replace(
            current,
            status=status,
            completed_lessons=completed,
            no_of_lessons=total,
            end_datetime=end_datetime,
            last_accessed_date=now,
        )

    @staticmethod
    async def _modules_to_update(
        stores: Stores, scope: TenantScope, course_id: UUID, lesson_id: UUID | None
    ) -> list[UUID]:
        if lesson_id is None:
            return [m.id for m in await stores.content.list_modules(scope, course_id)]
        lesson = await stores.content.get_lesson(scope, lesson_id)
        if lesson is None:
            return []
        module = await stores.content.get_module(scope, lesson.module_id)
        if module is None:
            logger.warning(
                "Lesson %s points at missing module %s", lesson_id, lesson.module_id
            )
            return []
        return [module.id]

    async def _update_module(
        self,
        stores: Stores,
        scope: TenantScope,
        learner_id: UUID,
        course_id: UUID,
        module_id: UUID,
        module_lessons: list[Lesson],
        completed_ids: set[UUID],
        now: int,
    ) -> ModuleTrack:
        current = await stores.aggregates.get_module_track(
            scope, learner_id, module_id, for_update=True
        )
        if current is None:
            current = ModuleTrack(
                tenant_id=scope.tenant_id,
                organisation_id=scope.organisation_id,
                user_id=learner_id,
                module_id=module_id,
                course_id=course_id,
            )

        total = len(module_lessons)
        completed = sum(1 for lesson in module_lessons if lesson.id in completed_ids)
        status = (
            ModuleTrackStatus.COMPLETED
            if total > 0 and completed >= total
            else ModuleTrackStatus.INCOMPLETE
        )
        updated = replace(
            current,
            status=status,
            completed_lessons=completed,
            total_lessons=total,
            progress=percent(completed, total),
            updated_at=now,
        )
        await stores.aggregates.save_module_track(updated)
        return updated

    async def recalculate_course(
        self, scope: TenantScope, course_id: UUID
    ) -> RecalculationSummary:
        """Forced recompute for every learner tracked on the course."""

        async def _learners(stores: Stores) -> list[UUID]:
            tracks = await stores.aggregates.list_course_tracks(scope, course_id)
            return [t.user_id for t in tracks]

        learner_ids = await run_in_unit_of_work(_learners)
        course_tracks = 0
        module_tracks = 0
        for learner_id in learner_ids:
            result = await self.recompute(scope, learner_id, course_id)
            course_tracks += 1
            module_tracks += len(result.module_tracks)

        logger.info(
            "Recalculated course %s: %d course tracks, %d module tracks",
            course_id,
            course_tracks,
            module_tracks,
            extra={"course_id": str(course_id)},
        )
        return RecalculationSummary(
            course_tracks_updated=course_tracks,
            module_tracks_updated=module_tracks,
        )

    async def issue_certificate(
        self, scope: TenantScope, learner_id: UUID, course_id: UUID
    ) -> CourseTrack:
        """Mark the certificate issued on a completed course aggregate."""

        async def _op(stores: Stores) -> CourseTrack:
            track = await stores.aggregates.get_course_track(
                scope, learner_id, course_id, for_update=True
            )
            if track is None:
                raise NotFoundError(
                    f"no course tracking for learner {learner_id} in course {course_id}"
                )
            if track.status != TrackingStatus.COMPLETED:
                raise InvalidTransitionError("course is not completed")
            if track.certificate_issued:
                return track
            issued = replace(
                track, certificate_issued=True, cert_gen_date=self._clock()
            )
            await stores.aggregates.save_course_track(issued)
            return issued

        return await run_in_unit_of_work(
            _op,
            lock_key=course_lock_key(scope, learner_id, course_id),
            locks=self._locks,
        )


rollup_aggregator = RollupAggregator()
