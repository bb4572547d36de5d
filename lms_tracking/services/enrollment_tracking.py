"""Tracking lifecycle of one enrollment: initialise and remove.

The enrollment itself belongs to the enrollment service.  When it
exists, this service creates the learner's course aggregate (totals
precomputed with the rollup's counting rule) and one module aggregate
per module.  Removal deletes the aggregates, and is refused while the
learner has any attempt in the course.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from uuid import UUID

from lms_tracking.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from lms_tracking.models.content import ContentStatus
from lms_tracking.models.tracking import (
    CourseTrack,
    ModuleTrack,
    TenantScope,
    TrackingStatus,
    now_ts,
)
from lms_tracking.services.eligibility import check_course_eligibility
from lms_tracking.services.locks import KeyedLocks, tracking_locks
from lms_tracking.services.rollup import course_lock_key
from lms_tracking.services.stores import Stores, run_in_unit_of_work

logger = logging.getLogger(__name__)


class EnrollmentTrackingService:
    def __init__(
        self,
        *,
        locks: KeyedLocks = tracking_locks,
        clock: Callable[[], int] = now_ts,
    ) -> None:
        self._locks = locks
        self._clock = clock

    async def initialize(
        self, scope: TenantScope, course_id: UUID, learner_id: UUID
    ) -> CourseTrack:
        async def _op(stores: Stores) -> CourseTrack:
            if not await stores.enrollments.exists(scope, learner_id, course_id):
                raise NotFoundError(
                    f"learner {learner_id} is not enrolled in course {course_id}"
                )
            course = await stores.content.get_course(scope, course_id)
            if course is None or course.status == ContentStatus.ARCHIVED:
                raise NotFoundError(f"course {course_id} not found")
            if await stores.aggregates.get_course_track(scope, learner_id, course_id):
                raise ConflictError("course tracking already exists")

            eligibility = await check_course_eligibility(
                stores, scope, course, learner_id
            )
            lessons = [
                lesson
                for lesson in await stores.content.list_lessons(scope, [course_id])
                if lesson.is_countable
            ]
            now = self._clock()
            track = CourseTrack(
                tenant_id=scope.tenant_id,
                organisation_id=scope.organisation_id,
                user_id=learner_id,
                course_id=course_id,
                status=(
                    TrackingStatus.STARTED
                    if eligibility.is_eligible
                    else TrackingStatus.NOT_ELIGIBLE
                ),
                no_of_lessons=len(lessons),
                start_datetime=now,
            )
            await stores.aggregates.add_course_track(track)

            for module in await stores.content.list_modules(scope, course_id):
                await stores.aggregates.save_module_track(
                    ModuleTrack(
                        tenant_id=scope.tenant_id,
                        organisation_id=scope.organisation_id,
                        user_id=learner_id,
                        module_id=module.id,
                        course_id=course_id,
                        total_lessons=sum(
                            1 for ls in lessons if ls.module_id == module.id
                        ),
                        updated_at=now,
                    )
                )
            return track

        track = await run_in_unit_of_work(
            _op,
            lock_key=course_lock_key(scope, learner_id, course_id),
            locks=self._locks,
        )
        logger.info(
            "Initialised tracking for learner %s in course %s (%s)",
            learner_id,
            course_id,
            track.status,
            extra={"learner_id": str(learner_id), "course_id": str(course_id)},
        )
        return track

    @staticmethod
    async def _ensure_removable(
        stores: Stores, scope: TenantScope, course_id: UUID, learner_id: UUID
    ) -> None:
        count = await stores.attempts.count_for_course(scope, learner_id, course_id)
        if count:
            raise InvalidTransitionError(
                f"learner has {count} lesson attempt(s) in this course"
            )

    async def check_removable(
        self, scope: TenantScope, course_id: UUID, learner_id: UUID
    ) -> None:
        async def _op(stores: Stores) -> None:
            await self._ensure_removable(stores, scope, course_id, learner_id)

        await run_in_unit_of_work(_op)

    async def remove(
        self, scope: TenantScope, course_id: UUID, learner_id: UUID
    ) -> None:
        async def _op(stores: Stores) -> None:
            await self._ensure_removable(stores, scope, course_id, learner_id)
            track = await stores.aggregates.get_course_track(
                scope, learner_id, course_id, for_update=True
            )
            if track is None:
                raise NotFoundError(
                    f"no course tracking for learner {learner_id} in course {course_id}"
                )
            await stores.aggregates.delete_for_course(scope, learner_id, course_id)

        await run_in_unit_of_work(
            _op,
            lock_key=course_lock_key(scope, learner_id, course_id),
            locks=self._locks,
        )
        logger.info(
            "Removed tracking for learner %s in course %s",
            learner_id,
            course_id,
            extra={"learner_id": str(learner_id), "course_id": str(course_id)},
        )


enrollment_tracking_service = EnrollmentTrackingService()
