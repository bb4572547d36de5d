"""PostgreSQL implementation of EnrollmentRepo (read-only)."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tracking.db.tables import EnrollmentRow
from lms_tracking.models.tracking import Enrollment, TenantScope


class PgEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def exists(self, scope: TenantScope, user_id: UUID, course_id: UUID) -> bool:
        stmt = select(EnrollmentRow.user_id).where(
            EnrollmentRow.tenant_id == scope.tenant_id,
            EnrollmentRow.organisation_id == scope.organisation_id,
            EnrollmentRow.user_id == user_id,
            EnrollmentRow.course_id == course_id,
        )
        return (await self._session.execute(stmt)).first() is not None

    async def list_for_course(
        self, scope: TenantScope, course_id: UUID, *, offset: int = 0, limit: int = 10
    ) -> list[Enrollment]:
        stmt = (
            select(EnrollmentRow)
            .where(
                EnrollmentRow.tenant_id == scope.tenant_id,
                EnrollmentRow.organisation_id == scope.organisation_id,
                EnrollmentRow.course_id == course_id,
            )
            .order_by(EnrollmentRow.enrolled_at, EnrollmentRow.user_id)
            .offset(offset)
            .limit(limit)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [
            Enrollment(
                tenant_id=r.tenant_id,
                organisation_id=r.organisation_id,
                user_id=r.user_id,
                course_id=r.course_id,
                status=r.status,
                enrolled_at=r.enrolled_at,
            )
            for r in rows
        ]

    async def count_for_course(self, scope: TenantScope, course_id: UUID) -> int:
        stmt = select(func.count()).where(
            EnrollmentRow.tenant_id == scope.tenant_id,
            EnrollmentRow.organisation_id == scope.organisation_id,
            EnrollmentRow.course_id == course_id,
        )
        return int((await self._session.execute(stmt)).scalar_one())
