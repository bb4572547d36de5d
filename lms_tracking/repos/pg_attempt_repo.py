"""PostgreSQL implementation of AttemptRepo."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tracking.core.errors import ConflictError
from lms_tracking.db.tables import LessonTrackRow
from lms_tracking.models.tracking import LessonTrack, TenantScope, TrackingStatus


def _scoped(scope: TenantScope):
    return (
        LessonTrackRow.tenant_id == scope.tenant_id,
        LessonTrackRow.organisation_id == scope.organisation_id,
    )


class PgAttemptRepo:
    """Satisfies the AttemptRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, scope: TenantScope, attempt_id: UUID) -> LessonTrack | None:
        stmt = select(LessonTrackRow).where(
            LessonTrackRow.id == attempt_id, *_scoped(scope)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_track(row)

    async def list_for_lesson(
        self, scope: TenantScope, user_id: UUID, lesson_id: UUID
    ) -> list[LessonTrack]:
        stmt = (
            select(LessonTrackRow)
            .where(
                LessonTrackRow.user_id == user_id,
                LessonTrackRow.lesson_id == lesson_id,
                *_scoped(scope),
            )
            .order_by(LessonTrackRow.attempt.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_track(r) for r in rows]

    async def list_for_lessons(
        self, scope: TenantScope, user_id: UUID, lesson_ids: Iterable[UUID]
    ) -> list[LessonTrack]:
        ids = list(lesson_ids)
        if not ids:
            return []
        stmt = select(LessonTrackRow).where(
            LessonTrackRow.user_id == user_id,
            LessonTrackRow.lesson_id.in_(ids),
            *_scoped(scope),
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_track(r) for r in rows]

    async def latest_for_users(
        self, scope: TenantScope, lesson_id: UUID, user_ids: Iterable[UUID]
    ) -> dict[UUID, LessonTrack]:
        ids = list(user_ids)
        if not ids:
            return {}
        # DISTINCT ON keeps the first row per user in ORDER BY order
        stmt = (
            select(LessonTrackRow)
            .where(
                LessonTrackRow.lesson_id == lesson_id,
                LessonTrackRow.user_id.in_(ids),
                *_scoped(scope),
            )
            .order_by(LessonTrackRow.user_id, LessonTrackRow.attempt.desc())
            .distinct(LessonTrackRow.user_id)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return {r.user_id: _row_to_track(r) for r in rows}

    async def count_for_course(
        self, scope: TenantScope, user_id: UUID, course_id: UUID
    ) -> int:
        stmt = select(func.count()).where(
            LessonTrackRow.user_id == user_id,
            LessonTrackRow.course_id == course_id,
            *_scoped(scope),
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def add(self, track: LessonTrack) -> None:
        self._session.add(_track_to_row(track))
        try:
            await self._session.flush()
        except IntegrityError:
            raise ConflictError(
                f"attempt {track.attempt} already exists for lesson {track.lesson_id}"
            ) from None

    async def save(self, track: LessonTrack) -> None:
        row = await self._session.get(LessonTrackRow, track.id)
        if row is None:
            raise KeyError("attempt not found")
        row.status = track.status.value
        row.score = track.score
        row.completion_percentage = track.completion_percentage
        row.time_spent = track.time_spent
        row.current_position = track.current_position
        row.total_content = track.total_content
        row.start_datetime = track.start_datetime
        row.end_datetime = track.end_datetime
        row.updated_at = track.updated_at
        row.params = dict(track.params)
        await self._session.flush()

    async def replace(self, old_id: UUID, track: LessonTrack) -> None:
        await self._session.execute(
            delete(LessonTrackRow).where(LessonTrackRow.id == old_id)
        )
        await self.add(track)


def _track_to_row(track: LessonTrack) -> LessonTrackRow:
    return LessonTrackRow(
        id=track.id,
        tenant_id=track.tenant_id,
        organisation_id=track.organisation_id,
        user_id=track.user_id,
        lesson_id=track.lesson_id,
        course_id=track.course_id,
        attempt=track.attempt,
        status=track.status.value,
        score=track.score,
        completion_percentage=track.completion_percentage,
        time_spent=track.time_spent,
        current_position=track.current_position,
        total_content=track.total_content,
        start_datetime=track.start_datetime,
        end_datetime=track.end_datetime,
        updated_at=track.updated_at,
        params=dict(track.params),
    )


def _row_to_track(row: LessonTrackRow) -> LessonTrack:
    return LessonTrack(
        id=row.id,
        tenant_id=row.tenant_id,
        organisation_id=row.organisation_id,
        user_id=row.user_id,
        lesson_id=row.lesson_id,
        course_id=row.course_id,
        attempt=row.attempt,
        status=TrackingStatus(row.status),
        score=row.score,
        completion_percentage=row.completion_percentage,
        time_spent=row.time_spent,
        current_position=row.current_position,
        total_content=row.total_content,
        start_datetime=row.start_datetime,
        end_datetime=row.end_datetime,
        updated_at=row.updated_at,
        params=dict(row.params or {}),
    )
