"""PostgreSQL implementation of AggregateRepo.

Course and module rows are read with ``SELECT ... FOR UPDATE`` when the
rollup asks for it, so two processes recomputing the same learner's
course serialise on the row lock inside their transactions.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tracking.core.errors import ConflictError
from lms_tracking.db.tables import CourseTrackRow, ModuleTrackRow
from lms_tracking.models.tracking import (
    CourseTrack,
    ModuleTrack,
    ModuleTrackStatus,
    TenantScope,
    TrackingStatus,
)


class PgAggregateRepo:
    """Satisfies the AggregateRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_course_track(
        self,
        scope: TenantScope,
        user_id: UUID,
        course_id: UUID,
        *,
        for_update: bool = False,
    ) -> CourseTrack | None:
        stmt = select(CourseTrackRow).where(
            CourseTrackRow.tenant_id == scope.tenant_id,
            CourseTrackRow.organisation_id == scope.organisation_id,
            CourseTrackRow.user_id == user_id,
            CourseTrackRow.course_id == course_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_course_track(row)

    async def list_course_tracks(
        self, scope: TenantScope, course_id: UUID
    ) -> list[CourseTrack]:
        stmt = (
            select(CourseTrackRow)
            .where(
                CourseTrackRow.tenant_id == scope.tenant_id,
                CourseTrackRow.organisation_id == scope.organisation_id,
                CourseTrackRow.course_id == course_id,
            )
            .order_by(CourseTrackRow.start_datetime)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_course_track(r) for r in rows]

    async def completed_course_ids(
        self, scope: TenantScope, user_id: UUID, course_ids: Iterable[UUID]
    ) -> set[UUID]:
        ids = list(course_ids)
        if not ids:
            return set()
        stmt = select(CourseTrackRow.course_id).where(
            CourseTrackRow.tenant_id == scope.tenant_id,
            CourseTrackRow.organisation_id == scope.organisation_id,
            CourseTrackRow.user_id == user_id,
            CourseTrackRow.course_id.in_(ids),
            CourseTrackRow.status == TrackingStatus.COMPLETED.value,
        )
        return set((await self._session.execute(stmt)).scalars().all())

    async def add_course_track(self, track: CourseTrack) -> None:
        self._session.add(
            CourseTrackRow(
                tenant_id=track.tenant_id,
                organisation_id=track.organisation_id,
                user_id=track.user_id,
                course_id=track.course_id,
                status=track.status.value,
                completed_lessons=track.completed_lessons,
                no_of_lessons=track.no_of_lessons,
                start_datetime=track.start_datetime,
                end_datetime=track.end_datetime,
                last_accessed_date=track.last_accessed_date,
                certificate_issued=track.certificate_issued,
                cert_gen_date=track.cert_gen_date,
            )
        )
        try:
            await self._session.flush()
        except IntegrityError:
            raise ConflictError("course tracking already exists") from None

    async def save_course_track(self, track: CourseTrack) -> None:
        row = await self._session.get(
            CourseTrackRow,
            (track.tenant_id, track.organisation_id, track.user_id, track.course_id),
        )
        if row is None:
            raise KeyError("course tracking not found")
        row.status = track.status.value
        row.completed_lessons = track.completed_lessons
        row.no_of_lessons = track.no_of_lessons
        row.end_datetime = track.end_datetime
        row.last_accessed_date = track.last_accessed_date
        row.certificate_issued = track.certificate_issued
        row.cert_gen_date = track.cert_gen_date
        await self._session.flush()

    async def get_module_track(
        self,
        scope: TenantScope,
        user_id: UUID,
        module_id: UUID,
        *,
        for_update: bool = False,
    ) -> ModuleTrack | None:
        stmt = select(ModuleTrackRow).where(
            ModuleTrackRow.tenant_id == scope.tenant_id,
            ModuleTrackRow.organisation_id == scope.organisation_id,
            ModuleTrackRow.user_id == user_id,
            ModuleTrackRow.module_id == module_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_module_track(row)

    async def list_module_tracks(
        self, scope: TenantScope, user_id: UUID, course_id: UUID
    ) -> list[ModuleTrack]:
        stmt = select(ModuleTrackRow).where(
            ModuleTrackRow.tenant_id == scope.tenant_id,
            ModuleTrackRow.organisation_id == scope.organisation_id,
            ModuleTrackRow.user_id == user_id,
            ModuleTrackRow.course_id == course_id,
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_module_track(r) for r in rows]

    async def save_module_track(self, track: ModuleTrack) -> None:
        values = {
            "tenant_id": track.tenant_id,
            "organisation_id": track.organisation_id,
            "user_id": track.user_id,
            "module_id": track.module_id,
            "course_id": track.course_id,
            "status": track.status.value,
            "completed_lessons": track.completed_lessons,
            "total_lessons": track.total_lessons,
            "progress": track.progress,
            "updated_at": track.updated_at,
        }
        stmt = pg_insert(ModuleTrackRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "organisation_id", "user_id", "module_id"],
            set_={
                "status": stmt.excluded.status,
                "completed_lessons": stmt.excluded.completed_lessons,
                "total_lessons": stmt.excluded.total_lessons,
                "progress": stmt.excluded.progress,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self._session.execute(stmt)

    async def delete_for_course(
        self, scope: TenantScope, user_id: UUID, course_id: UUID
    ) -> None:
        await self._session.execute(
            delete(ModuleTrackRow).where(
                ModuleTrackRow.tenant_id == scope.tenant_id,
                ModuleTrackRow.organisation_id == scope.organisation_id,
                ModuleTrackRow.user_id == user_id,
                ModuleTrackRow.course_id == course_id,
            )
        )
        await self._session.execute(
            delete(CourseTrackRow).where(
                CourseTrackRow.tenant_id == scope.tenant_id,
                CourseTrackRow.organisation_id == scope.organisation_id,
                CourseTrackRow.user_id == user_id,
                CourseTrackRow.course_id == course_id,
            )
        )


def _row_to_course_track(row: CourseTrackRow) -> CourseTrack:
    return CourseTrack(
        tenant_id=row.tenant_id,
        organisation_id=row.organisation_id,
        user_id=row.user_id,
        course_id=row.course_id,
        status=TrackingStatus(row.status),
        completed_lessons=row.completed_lessons,
        no_of_lessons=row.no_of_lessons,
        start_datetime=row.start_datetime,
        end_datetime=row.end_datetime,
        last_accessed_date=row.last_accessed_date,
        certificate_issued=row.certificate_issued,
        cert_gen_date=row.cert_gen_date,
    )


def _row_to_module_track(row: ModuleTrackRow) -> ModuleTrack:
    return ModuleTrack(
        tenant_id=row.tenant_id,
        organisation_id=row.organisation_id,
        user_id=row.user_id,
        module_id=row.module_id,
        course_id=row.course_id,
        status=ModuleTrackStatus(row.status),
        completed_lessons=row.completed_lessons,
        total_lessons=row.total_lessons,
        progress=row.progress,
        updated_at=row.updated_at,
    )
