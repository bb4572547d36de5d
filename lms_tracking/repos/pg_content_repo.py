"""PostgreSQL implementation of ContentRepo (read-only)."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms_tracking.db.tables import CourseRow, LessonRow, ModuleRow
from lms_tracking.models.content import (
    ContentStatus,
    Course,
    GradeMethod,
    Lesson,
    LessonFormat,
    LessonSubFormat,
    Module,
)
from lms_tracking.models.tracking import TenantScope

_ARCHIVED = ContentStatus.ARCHIVED.value


class PgContentRepo:
    """Satisfies the ContentRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_course(self, scope: TenantScope, course_id: UUID) -> Course | None:
        stmt = select(CourseRow).where(
            CourseRow.id == course_id,
            CourseRow.tenant_id == scope.tenant_id,
            CourseRow.organisation_id == scope.organisation_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_course(row) if row is not None else None

    async def get_module(self, scope: TenantScope, module_id: UUID) -> Module | None:
        stmt = select(ModuleRow).where(
            ModuleRow.id == module_id,
            ModuleRow.tenant_id == scope.tenant_id,
            ModuleRow.organisation_id == scope.organisation_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_module(row) if row is not None else None

    async def get_lesson(self, scope: TenantScope, lesson_id: UUID) -> Lesson | None:
        stmt = select(LessonRow).where(
            LessonRow.id == lesson_id,
            LessonRow.tenant_id == scope.tenant_id,
            LessonRow.organisation_id == scope.organisation_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_lesson(row) if row is not None else None

    async def get_lessons(
        self, scope: TenantScope, lesson_ids: Iterable[UUID]
    ) -> list[Lesson]:
        ids = list(lesson_ids)
        if not ids:
            return []
        stmt = select(LessonRow).where(
            LessonRow.id.in_(ids),
            LessonRow.tenant_id == scope.tenant_id,
            LessonRow.organisation_id == scope.organisation_id,
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_lesson(r) for r in rows]

    async def list_modules(self, scope: TenantScope, course_id: UUID) -> list[Module]:
        stmt = (
            select(ModuleRow)
            .where(
                ModuleRow.course_id == course_id,
                ModuleRow.tenant_id == scope.tenant_id,
                ModuleRow.organisation_id == scope.organisation_id,
                ModuleRow.status != _ARCHIVED,
            )
            .order_by(ModuleRow.ordering)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_module(r) for r in rows]

    async def list_lessons(
        self, scope: TenantScope, course_ids: Iterable[UUID]
    ) -> list[Lesson]:
        ids = list(course_ids)
        if not ids:
            return []
        stmt = (
            select(LessonRow)
            .where(
                LessonRow.course_id.in_(ids),
                LessonRow.tenant_id == scope.tenant_id,
                LessonRow.organisation_id == scope.organisation_id,
                LessonRow.status != _ARCHIVED,
            )
            .order_by(LessonRow.ordering)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_lesson(r) for r in rows]

    async def find_lesson_by_source(
        self, scope: TenantScope, source_key: str
    ) -> Lesson | None:
        stmt = (
            select(LessonRow)
            .where(
                LessonRow.source_key == source_key,
                LessonRow.tenant_id == scope.tenant_id,
                LessonRow.organisation_id == scope.organisation_id,
                LessonRow.status != _ARCHIVED,
            )
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_lesson(row) if row is not None else None

    async def list_courses_by_cohort(
        self, scope: TenantScope, cohort_id: UUID
    ) -> list[Course]:
        stmt = select(CourseRow).where(
            CourseRow.cohort_id == cohort_id,
            CourseRow.tenant_id == scope.tenant_id,
            CourseRow.organisation_id == scope.organisation_id,
            CourseRow.status != _ARCHIVED,
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_course(r) for r in rows]


def _row_to_course(row: CourseRow) -> Course:
    return Course(
        id=row.id,
        tenant_id=row.tenant_id,
        organisation_id=row.organisation_id,
        title=row.title,
        status=ContentStatus(row.status),
        prerequisites=tuple(row.prerequisites or ()),
        cohort_id=row.cohort_id,
    )


def _row_to_module(row: ModuleRow) -> Module:
    return Module(
        id=row.id,
        course_id=row.course_id,
        tenant_id=row.tenant_id,
        organisation_id=row.organisation_id,
        title=row.title,
        status=ContentStatus(row.status),
        parent_id=row.parent_id,
        ordering=row.ordering,
    )


def _row_to_lesson(row: LessonRow) -> Lesson:
    return Lesson(
        id=row.id,
        course_id=row.course_id,
        module_id=row.module_id,
        tenant_id=row.tenant_id,
        organisation_id=row.organisation_id,
        title=row.title,
        format=LessonFormat(row.format),
        sub_format=LessonSubFormat(row.sub_format) if row.sub_format else None,
        status=ContentStatus(row.status),
        grade_method=GradeMethod(row.grade_method),
        max_attempts=row.max_attempts,
        allow_resubmission=row.allow_resubmission,
        resume=row.resume,
        consider_for_passing=row.consider_for_passing,
        passing_marks=row.passing_marks,
        total_marks=row.total_marks,
        prerequisites=tuple(row.prerequisites or ()),
        parent_id=row.parent_id,
        source_key=row.source_key,
        ordering=row.ordering,
    )
