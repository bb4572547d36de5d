"""Attempt state machine for one learner at one lesson.

Attempt numbers per (learner, lesson) start at 1 and only grow.  Every
path that creates or replaces an attempt runs under the per-lesson
keyed lock and inside one unit of work, and the attempt store's
uniqueness check turns a cross-process race into a ConflictError that
is retried once with fresh reads.

Resubmission lessons keep exactly one attempt row (the "slot"): it is
reset in place by start-over and updated in place by external graders.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from uuid import UUID

from lms_tracking.core.errors import (
    InvalidTransitionError,
    MaxAttemptsReachedError,
    NoExistingAttemptError,
    NotEligibleError,
    NotFoundError,
)
from lms_tracking.core.metrics import ATTEMPTS_CREATED
from lms_tracking.models.content import ContentStatus, Lesson, LessonFormat
from lms_tracking.models.tracking import (
    TERMINAL_STATUSES,
    LessonTrack,
    TenantScope,
    TrackingStatus,
    now_ts,
    percent,
)
from lms_tracking.services.eligibility import (
    check_course_eligibility,
    check_lesson_eligibility,
)
from lms_tracking.services.locks import KeyedLocks, tracking_locks
from lms_tracking.services.rollup_dispatch import RollupDispatcher, rollup_dispatcher
from lms_tracking.services.stores import Stores, run_in_unit_of_work

logger = logging.getLogger(__name__)

_SIGNAL_RESULTS = {
    "pass": TrackingStatus.COMPLETED,
    "fail": TrackingStatus.SUBMITTED,
}


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    """Fields a client may send with a progress update.

    None means "not sent".  ``time_spent`` is a delta in seconds and is
    added to the stored total; everything else overwrites.
    """

    current_position: int | None = None
    total_content: int | None = None
    score: int | None = None
    time_spent: int | None = None
    completion_percentage: int | None = None
    status: TrackingStatus | None = None
    params: dict | None = None


@dataclass(frozen=True, slots=True)
class ExternalSignal:
    """A verdict pushed by an external grader or event system."""

    learner_id: UUID
    result: str | None = None  # pass|fail
    status: TrackingStatus | None = None
    score: int | None = None
    time_spent: int | None = None
    reviewed_by: str | None = None


@dataclass(frozen=True, slots=True)
class LessonStatus:
    can_resume: bool
    can_reattempt: bool
    last_attempt_status: TrackingStatus
    last_attempt_id: UUID | None
    is_eligible: bool
    unmet_prerequisites: list[str] = field(default_factory=list)


def attempt_lock_key(scope: TenantScope, learner_id: UUID, lesson_id: UUID) -> tuple:
    return ("attempt", scope.tenant_id, scope.organisation_id, learner_id, lesson_id)


def _log_extra(track: LessonTrack) -> dict:
    return {
        "tenant_id": track.tenant_id,
        "organisation_id": track.organisation_id,
        "learner_id": str(track.user_id),
        "course_id": str(track.course_id),
        "lesson_id": str(track.lesson_id),
        "attempt_id": str(track.id),
    }


async def _load_lesson(stores: Stores, scope: TenantScope, lesson_id: UUID) -> Lesson:
    lesson = await stores.content.get_lesson(scope, lesson_id)
    if lesson is None or lesson.status == ContentStatus.ARCHIVED:
        raise NotFoundError(f"lesson {lesson_id} not found")
    return lesson


async def _require_open_course(
    stores: Stores, scope: TenantScope, learner_id: UUID, course_id: UUID
) -> None:
    # Start paths roll up inline; the course aggregate has to exist first.
    course_track = await stores.aggregates.get_course_track(
        scope, learner_id, course_id
    )
    if course_track is None:
        raise NotFoundError(
            f"course tracking for learner {learner_id} in course {course_id} "
            "is not initialised"
        )
    if course_track.status == TrackingStatus.COMPLETED:
        raise InvalidTransitionError(f"course {course_id} is already completed")


class AttemptService:
    def __init__(
        self,
        *,
        dispatcher: RollupDispatcher = rollup_dispatcher,
        locks: KeyedLocks = tracking_locks,
        clock: Callable[[], int] = now_ts,
    ) -> None:
        self._dispatcher = dispatcher
        self._locks = locks
        self._clock = clock

    # ------------------------------------------------------------------
    # Starting and resuming
    # ------------------------------------------------------------------

    async def start_or_resume(
        self, scope: TenantScope, lesson_id: UUID, learner_id: UUID
    ) -> LessonTrack:
        """Return the attempt the learner should work on, creating one if needed."""

        async def _op(stores: Stores) -> tuple[LessonTrack, bool]:
            lesson = await _load_lesson(stores, scope, lesson_id)
            if not await stores.enrollments.exists(scope, learner_id, lesson.course_id):
                raise NotFoundError(
                    f"learner {learner_id} is not enrolled in course {lesson.course_id}"
                )
            await _require_open_course(stores, scope, learner_id, lesson.course_id)
            await self._require_eligible(stores, scope, lesson, learner_id)

            attempts = await stores.attempts.list_for_lesson(
                scope, learner_id, lesson_id
            )
            if lesson.allow_resubmission:
                if not attempts:
                    raise NoExistingAttemptError(lesson_id)
                return attempts[0], False

            latest = attempts[0] if attempts else None
            if latest is not None:
                if latest.status != TrackingStatus.COMPLETED and lesson.resume:
                    return latest, False
                if lesson.max_attempts > 0 and latest.attempt >= lesson.max_attempts:
                    raise MaxAttemptsReachedError(lesson.max_attempts)

            track = LessonTrack.new(
                scope=scope,
                user_id=learner_id,
                lesson_id=lesson_id,
                course_id=lesson.course_id,
                attempt=latest.attempt + 1 if latest is not None else 1,
                now=self._clock(),
            )
            await stores.attempts.add(track)
            return track, True

        track, created = await run_in_unit_of_work(
            _op,
            lock_key=attempt_lock_key(scope, learner_id, lesson_id),
            locks=self._locks,
            retry_on_conflict=True,
        )
        if created:
            ATTEMPTS_CREATED.labels(operation="start").inc()
            logger.info(
                "Started attempt %d on lesson %s",
                track.attempt,
                lesson_id,
                extra=_log_extra(track),
            )
            await self._dispatcher.dispatch(
                scope,
                learner_id,
                track.course_id,
                lesson_id=lesson_id,
                trigger=track.status,
                mode="inline",
            )
        return track

    async def start_over(
        self, scope: TenantScope, lesson_id: UUID, learner_id: UUID
    ) -> LessonTrack:
        """Throw away the in-progress attempt and start it again from zero."""

        async def _op(stores: Stores) -> LessonTrack:
            lesson = await _load_lesson(stores, scope, lesson_id)
            await _require_open_course(stores, scope, learner_id, lesson.course_id)
            attempts = await stores.attempts.list_for_lesson(
                scope, learner_id, lesson_id
            )
            now = self._clock()

            if lesson.allow_resubmission:
                if attempts:
                    reset = replace(
                        attempts[0],
                        status=TrackingStatus.STARTED,
                        score=0,
                        completion_percentage=0,
                        current_position=0,
                        total_content=0,
                        time_spent=0,
                        start_datetime=now,
                        end_datetime=None,
                        updated_at=now,
                    )
                    await stores.attempts.save(reset)
                    return reset
                slot = LessonTrack.new(
                    scope=scope,
                    user_id=learner_id,
                    lesson_id=lesson_id,
                    course_id=lesson.course_id,
                    attempt=1,
                    now=now,
                )
                await stores.attempts.add(slot)
                return slot

            if not attempts:
                raise NoExistingAttemptError(lesson_id)
            latest = attempts[0]
            if latest.status == TrackingStatus.COMPLETED:
                raise InvalidTransitionError(
                    f"attempt {latest.attempt} is already completed"
                )
            if lesson.max_attempts > 0 and latest.attempt >= lesson.max_attempts:
                raise MaxAttemptsReachedError(lesson.max_attempts)

            fresh = LessonTrack.new(
                scope=scope,
                user_id=learner_id,
                lesson_id=lesson_id,
                course_id=lesson.course_id,
                attempt=latest.attempt,
                now=now,
            )
            await stores.attempts.replace(latest.id, fresh)
            return fresh

        track = await run_in_unit_of_work(
            _op,
            lock_key=attempt_lock_key(scope, learner_id, lesson_id),
            locks=self._locks,
            retry_on_conflict=True,
        )
        ATTEMPTS_CREATED.labels(operation="start_over").inc()
        logger.info(
            "Restarted attempt %d on lesson %s",
            track.attempt,
            lesson_id,
            extra=_log_extra(track),
        )
        await self._dispatcher.dispatch(
            scope,
            learner_id,
            track.course_id,
            lesson_id=lesson_id,
            trigger=track.status,
            mode="inline",
        )
        return track

    async def resume(
        self, scope: TenantScope, lesson_id: UUID, learner_id: UUID
    ) -> LessonTrack:
        async def _op(stores: Stores) -> LessonTrack:
            lesson = await _load_lesson(stores, scope, lesson_id)
            attempts = await stores.attempts.list_for_lesson(
                scope, learner_id, lesson_id
            )
            if not attempts:
                raise NoExistingAttemptError(lesson_id)
            if lesson.allow_resubmission:
                return attempts[0]
            if not lesson.resume:
                raise InvalidTransitionError("resume is disabled for this lesson")
            if attempts[0].status == TrackingStatus.COMPLETED:
                raise InvalidTransitionError(
                    f"attempt {attempts[0].attempt} is already completed"
                )
            return attempts[0]

        return await run_in_unit_of_work(_op)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_lesson_status(
        self, scope: TenantScope, lesson_id: UUID, learner_id: UUID
    ) -> LessonStatus:
        async def _op(stores: Stores) -> LessonStatus:
            lesson = await _load_lesson(stores, scope, lesson_id)
            eligibility = await check_lesson_eligibility(
                stores, scope, lesson, learner_id
            )
            attempts = await stores.attempts.list_for_lesson(
                scope, learner_id, lesson_id
            )

            if not attempts:
                return LessonStatus(
                    can_resume=False,
                    can_reattempt=True,
                    last_attempt_status=TrackingStatus.NOT_STARTED,
                    last_attempt_id=None,
                    is_eligible=eligibility.is_eligible,
                    unmet_prerequisites=eligibility.unmet_prerequisites,
                )

            latest = attempts[0]
            if lesson.allow_resubmission:
                can_resume = True
                can_reattempt = True
            else:
                can_resume = lesson.resume and latest.status in (
                    TrackingStatus.STARTED,
                    TrackingStatus.INCOMPLETE,
                )
                can_reattempt = latest.is_terminal and (
                    lesson.max_attempts == 0 or latest.attempt < lesson.max_attempts
                )
            return LessonStatus(
                can_resume=can_resume,
                can_reattempt=can_reattempt,
                last_attempt_status=latest.status,
                last_attempt_id=latest.id,
                is_eligible=eligibility.is_eligible,
                unmet_prerequisites=eligibility.unmet_prerequisites,
            )

        return await run_in_unit_of_work(_op)

    async def get_attempt(
        self, scope: TenantScope, attempt_id: UUID, learner_id: UUID
    ) -> LessonTrack:
        async def _op(stores: Stores) -> LessonTrack | None:
            return await stores.attempts.get(scope, attempt_id)

        track = await run_in_unit_of_work(_op)
        if track is None or track.user_id != learner_id:
            raise NotFoundError(f"attempt {attempt_id} not found")
        return track

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def update_progress(
        self,
        scope: TenantScope,
        attempt_id: UUID,
        learner_id: UUID,
        update: ProgressUpdate,
    ) -> LessonTrack:
        current = await self.get_attempt(scope, attempt_id, learner_id)

        async def _op(stores: Stores) -> tuple[LessonTrack, TrackingStatus]:
            track = await stores.attempts.get(scope, attempt_id)
            if track is None or track.user_id != learner_id:
                # replaced by a concurrent start-over
                raise NotFoundError(f"attempt {attempt_id} not found")
            updated = self._apply_progress(track, update, self._clock())
            await stores.attempts.save(updated)
            return updated, track.status

        updated, before = await run_in_unit_of_work(
            _op,
            lock_key=attempt_lock_key(scope, learner_id, current.lesson_id),
            locks=self._locks,
        )
        logger.debug(
            "Progress on attempt %s: %s -> %s",
            attempt_id,
            before,
            updated.status,
            extra=_log_extra(updated),
        )

        # status changes that touch the terminal set
        if updated.status != before and (
            before in TERMINAL_STATUSES or updated.status in TERMINAL_STATUSES
        ):
            await self._dispatcher.dispatch(
                scope,
                learner_id,
                updated.course_id,
                lesson_id=updated.lesson_id,
                trigger=updated.status,
            )
        return updated

    @staticmethod
    def _apply_progress(
        track: LessonTrack, update: ProgressUpdate, now: int
    ) -> LessonTrack:
        position = (
            update.current_position
            if update.current_position is not None
            else track.current_position
        )
        total = (
            update.total_content
            if update.total_content is not None
            else track.total_content
        )
        score = update.score if update.score is not None else track.score
        time_spent = track.time_spent + max(update.time_spent or 0, 0)

        if update.completion_percentage is not None:
            percentage = update.completion_percentage
        elif total > 0 and (
            update.current_position is not None or update.total_content is not None
        ):
            percentage = percent(position, total)
        else:
            percentage = track.completion_percentage
        percentage = min(max(percentage, 0), 100)

        if update.status is not None:
            status = update.status
        elif (total > 0 and position == total) or percentage >= 100:
            status = TrackingStatus.COMPLETED
        elif track.status == TrackingStatus.STARTED:
            status = TrackingStatus.INCOMPLETE
        else:
            status = track.status

        end_datetime = track.end_datetime
        if status != track.status and status in TERMINAL_STATUSES:
            end_datetime = now
        if status == TrackingStatus.COMPLETED:
            percentage = 100

        params = dict(track.params)
        if update.params:
            params.update(update.params)

        return replace(
            track,
            current_position=position,
            total_content=total,
            score=score,
            time_spent=time_spent,
            completion_percentage=percentage,
            status=status,
            end_datetime=end_datetime,
            updated_at=now,
            params=params,
        )

    async def complete_by_external_signal(
        self, scope: TenantScope, source_key: str, signal: ExternalSignal
    ) -> LessonTrack:
        """Record a verdict from an external grader on the right attempt."""
        if signal.status is not None:
            status = signal.status
        elif signal.result in _SIGNAL_RESULTS:
            status = _SIGNAL_RESULTS[signal.result]
        else:
            raise InvalidTransitionError(
                "signal needs a result (pass|fail) or a status"
            )

        async def _find(stores: Stores) -> Lesson:
            lesson = await stores.content.find_lesson_by_source(scope, source_key)
            if lesson is None:
                raise NotFoundError(f"no lesson mapped to {source_key!r}")
            return lesson

        lesson = await run_in_unit_of_work(_find)
        learner_id = signal.learner_id

        async def _op(stores: Stores) -> tuple[LessonTrack, bool]:
            attempts = await stores.attempts.list_for_lesson(
                scope, learner_id, lesson.id
            )
            now = self._clock()

            if lesson.allow_resubmission:
                target = attempts[0] if attempts else None
                number = 1
            elif lesson.format == LessonFormat.EVENT:
                target = next((a for a in attempts if a.attempt == 1), None)
                number = 1
            else:
                target = next((a for a in attempts if not a.is_terminal), None)
                number = attempts[0].attempt + 1 if attempts else 1

            created = target is None
            if target is None:
                target = LessonTrack.new(
                    scope=scope,
                    user_id=learner_id,
                    lesson_id=lesson.id,
                    course_id=lesson.course_id,
                    attempt=number,
                    now=now,
                )

            params = dict(target.params)
            if signal.reviewed_by is not None:
                params["reviewed_by"] = signal.reviewed_by
            terminal = status in TERMINAL_STATUSES
            updated = replace(
                target,
                status=status,
                score=signal.score if signal.score is not None else target.score,
                completion_percentage=100 if terminal else target.completion_percentage,
                time_spent=target.time_spent + max(signal.time_spent or 0, 0),
                end_datetime=now if terminal else target.end_datetime,
                updated_at=now,
                params=params,
            )
            if created:
                await stores.attempts.add(updated)
            else:
                await stores.attempts.save(updated)
            return updated, created

        track, created = await run_in_unit_of_work(
            _op,
            lock_key=attempt_lock_key(scope, learner_id, lesson.id),
            locks=self._locks,
            retry_on_conflict=True,
        )
        if created:
            ATTEMPTS_CREATED.labels(operation="external_signal").inc()
        logger.info(
            "External signal %s recorded on attempt %d of lesson %s",
            status,
            track.attempt,
            lesson.id,
            extra=_log_extra(track),
        )
        await self._dispatcher.dispatch(
            scope,
            learner_id,
            track.course_id,
            lesson_id=lesson.id,
            trigger=track.status,
        )
        return track

    # ------------------------------------------------------------------

    @staticmethod
    async def _require_eligible(
        stores: Stores, scope: TenantScope, lesson: Lesson, learner_id: UUID
    ) -> None:
        course = await stores.content.get_course(scope, lesson.course_id)
        if course is None or course.status == ContentStatus.ARCHIVED:
            raise NotFoundError(f"course {lesson.course_id} not found")
        course_check = await check_course_eligibility(stores, scope, course, learner_id)
        lesson_check = await check_lesson_eligibility(stores, scope, lesson, learner_id)
        if not (course_check.is_eligible and lesson_check.is_eligible):
            raise NotEligibleError(
                unmet_prerequisites=lesson_check.unmet_prerequisites,
                required_courses=course_check.required_courses,
            )


attempt_service = AttemptService()
