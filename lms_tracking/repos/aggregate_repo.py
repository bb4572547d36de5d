from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from lms_tracking.core.errors import ConflictError
from lms_tracking.models.tracking import (
    CourseTrack,
    ModuleTrack,
    TenantScope,
    TrackingStatus,
)


class AggregateRepo(Protocol):
    async def get_course_track(
        self,
        scope: TenantScope,
        user_id: UUID,
        course_id: UUID,
        *,
        for_update: bool = False,
    ) -> CourseTrack | None: ...
    async def list_course_tracks(
        self, scope: TenantScope, course_id: UUID
    ) -> list[CourseTrack]: ...
    async def completed_course_ids(
        self, scope: TenantScope, user_id: UUID, course_ids: Iterable[UUID]
    ) -> set[UUID]: ...
    async def add_course_track(self, track: CourseTrack) -> None: ...
    async def save_course_track(self, track: CourseTrack) -> None: ...
    async def get_module_track(
        self,
        scope: TenantScope,
        user_id: UUID,
        module_id: UUID,
        *,
        for_update: bool = False,
    ) -> ModuleTrack | None: ...
    async def list_module_tracks(
        self, scope: TenantScope, user_id: UUID, course_id: UUID
    ) -> list[ModuleTrack]: ...
    async def save_module_track(self, track: ModuleTrack) -> None: ...
    async def delete_for_course(
        self, scope: TenantScope, user_id: UUID, course_id: UUID
    ) -> None: ...


class InMemoryAggregateRepo:
    """Course and module aggregates keyed by (tenant, org, user, entity).

    ``for_update`` is accepted for parity with the PostgreSQL repo; in a
    single process the rollup's keyed lock already serialises writers.
    """

    def __init__(self) -> None:
        self._courses: dict[tuple[str, str, UUID, UUID], CourseTrack] = {}
        self._modules: dict[tuple[str, str, UUID, UUID], ModuleTrack] = {}

    async def get_course_track(
        self,
        scope: TenantScope,
        user_id: UUID,
        course_id: UUID,
        *,
        for_update: bool = False,
    ) -> CourseTrack | None:
        return self._courses.get(
            (scope.tenant_id, scope.organisation_id, user_id, course_id)
        )

    async def list_course_tracks(
        self, scope: TenantScope, course_id: UUID
    ) -> list[CourseTrack]:
        return [
            t
            for (tenant, org, _, cid), t in self._courses.items()
            if (tenant, org) == (scope.tenant_id, scope.organisation_id)
            and cid == course_id
        ]

    async def completed_course_ids(
        self, scope: TenantScope, user_id: UUID, course_ids: Iterable[UUID]
    ) -> set[UUID]:
        done: set[UUID] = set()
        for course_id in course_ids:
            track = await self.get_course_track(scope, user_id, course_id)
            if track is not None and track.status == TrackingStatus.COMPLETED:
                done.add(course_id)
        return done

    async def add_course_track(self, track: CourseTrack) -> None:
        key = (track.tenant_id, track.organisation_id, track.user_id, track.course_id)
        if key in self._courses:
            raise ConflictError("course tracking already exists")
        self._courses[key] = track

    async def save_course_track(self, track: CourseTrack) -> None:
        key = (track.tenant_id, track.organisation_id, track.user_id, track.course_id)
        self._courses[key] = track

    async def get_module_track(
        self,
        scope: TenantScope,
        user_id: UUID,
        module_id: UUID,
        *,
        for_update: bool = False,
    ) -> ModuleTrack | None:
        return self._modules.get(
            (scope.tenant_id, scope.organisation_id, user_id, module_id)
        )

    async def list_module_tracks(
        self, scope: TenantScope, user_id: UUID, course_id: UUID
    ) -> list[ModuleTrack]:
        return [
            t
            for (tenant, org, uid, _), t in self._modules.items()
            if (tenant, org) == (scope.tenant_id, scope.organisation_id)
            and uid == user_id
            and t.course_id == course_id
        ]

    async def save_module_track(self, track: ModuleTrack) -> None:
        key = (track.tenant_id, track.organisation_id, track.user_id, track.module_id)
        self._modules[key] = track

    async def delete_for_course(
        self, scope: TenantScope, user_id: UUID, course_id: UUID
    ) -> None:
        self._courses.pop(
            (scope.tenant_id, scope.organisation_id, user_id, course_id), None
        )
        for key, track in list(self._modules.items()):
            if key[:3] == (scope.tenant_id, scope.organisation_id, user_id) and (
                track.course_id == course_id
            ):
                del self._modules[key]
