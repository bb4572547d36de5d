from __future__ import annotations

from typing import Protocol
from uuid import UUID

from lms_tracking.models.tracking import Enrollment, TenantScope


class EnrollmentRepo(Protocol):
    async def exists(
        self, scope: TenantScope, user_id: UUID, course_id: UUID
    ) -> bool: ...
    async def list_for_course(
        self, scope: TenantScope, course_id: UUID, *, offset: int = 0, limit: int = 10
    ) -> list[Enrollment]: ...
    async def count_for_course(self, scope: TenantScope, course_id: UUID) -> int: ...


class InMemoryEnrollmentRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[str, str, UUID, UUID], Enrollment] = {}

    def add(self, enrollment: Enrollment) -> None:
        key = (
            enrollment.tenant_id,
            enrollment.organisation_id,
            enrollment.user_id,
            enrollment.course_id,
        )
        if key in self._store:
            raise ValueError("enrollment already exists")
        self._store[key] = enrollment

    async def exists(self, scope: TenantScope, user_id: UUID, course_id: UUID) -> bool:
        return (
            scope.tenant_id,
            scope.organisation_id,
            user_id,
            course_id,
        ) in self._store

    def _for_course(self, scope: TenantScope, course_id: UUID) -> list[Enrollment]:
        rows = [
            e
            for (tenant, org, _, cid), e in self._store.items()
            if (tenant, org) == (scope.tenant_id, scope.organisation_id)
            and cid == course_id
        ]
        return sorted(rows, key=lambda e: e.enrolled_at)

    async def list_for_course(
        self, scope: TenantScope, course_id: UUID, *, offset: int = 0, limit: int = 10
    ) -> list[Enrollment]:
        return self._for_course(scope, course_id)[offset : offset + limit]

    async def count_for_course(self, scope: TenantScope, course_id: UUID) -> int:
        return len(self._for_course(scope, course_id))
