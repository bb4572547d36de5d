from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from lms_tracking.core.errors import ConflictError
from lms_tracking.models.tracking import LessonTrack, TenantScope


class AttemptRepo(Protocol):
    async def get(self, scope: TenantScope, attempt_id: UUID) -> LessonTrack | None: ...
    async def list_for_lesson(
        self, scope: TenantScope, user_id: UUID, lesson_id: UUID
    ) -> list[LessonTrack]: ...
    async def list_for_lessons(
        self, scope: TenantScope, user_id: UUID, lesson_ids: Iterable[UUID]
    ) -> list[LessonTrack]: ...
    async def latest_for_users(
        self, scope: TenantScope, lesson_id: UUID, user_ids: Iterable[UUID]
    ) -> dict[UUID, LessonTrack]: ...
    async def count_for_course(
        self, scope: TenantScope, user_id: UUID, course_id: UUID
    ) -> int: ...
    async def add(self, track: LessonTrack) -> None: ...
    async def save(self, track: LessonTrack) -> None: ...
    async def replace(self, old_id: UUID, track: LessonTrack) -> None: ...


def _in_scope(track: LessonTrack, scope: TenantScope) -> bool:
    return (
        track.tenant_id == scope.tenant_id
        and track.organisation_id == scope.organisation_id
    )


class InMemoryAttemptRepo:
    """Dict-backed attempts.

    Not transactional: a unit of work over the in-memory stores cannot be
    rolled back, so every write validates before it mutates.
    """

    def __init__(self) -> None:
        self._store: dict[UUID, LessonTrack] = {}

    async def get(self, scope: TenantScope, attempt_id: UUID) -> LessonTrack | None:
        track = self._store.get(attempt_id)
        if track is None or not _in_scope(track, scope):
            return None
        return track

    async def list_for_lesson(
        self, scope: TenantScope, user_id: UUID, lesson_id: UUID
    ) -> list[LessonTrack]:
        """Attempts of one learner at one lesson, newest attempt first."""
        tracks = [
            t
            for t in self._store.values()
            if _in_scope(t, scope) and t.user_id == user_id and t.lesson_id == lesson_id
        ]
        return sorted(tracks, key=lambda t: t.attempt, reverse=True)

    async def list_for_lessons(
        self, scope: TenantScope, user_id: UUID, lesson_ids: Iterable[UUID]
    ) -> list[LessonTrack]:
        wanted = set(lesson_ids)
        return [
            t
            for t in self._store.values()
            if _in_scope(t, scope) and t.user_id == user_id and t.lesson_id in wanted
        ]

    async def latest_for_users(
        self, scope: TenantScope, lesson_id: UUID, user_ids: Iterable[UUID]
    ) -> dict[UUID, LessonTrack]:
        wanted = set(user_ids)
        latest: dict[UUID, LessonTrack] = {}
        for t in self._store.values():
            if not _in_scope(t, scope) or t.lesson_id != lesson_id:
                continue
            if t.user_id not in wanted:
                continue
            current = latest.get(t.user_id)
            if current is None or t.attempt > current.attempt:
                latest[t.user_id] = t
        return latest

    async def count_for_course(
        self, scope: TenantScope, user_id: UUID, course_id: UUID
    ) -> int:
        return sum(
            1
            for t in self._store.values()
            if _in_scope(t, scope) and t.user_id == user_id and t.course_id == course_id
        )

    def _check_unique(self, track: LessonTrack, ignore: UUID | None = None) -> None:
        key = _unique_key(track)
        if any(
            _unique_key(t) == key for t in self._store.values() if t.id != ignore
        ):
            raise ConflictError(
                f"attempt {track.attempt} already exists for lesson {track.lesson_id}"
            )

    async def add(self, track: LessonTrack) -> None:
        self._check_unique(track)
        self._store[track.id] = track

    async def save(self, track: LessonTrack) -> None:
        if track.id not in self._store:
            raise KeyError("attempt not found")
        self._store[track.id] = track

    async def replace(self, old_id: UUID, track: LessonTrack) -> None:
        # validated before mutating: there is no rollback in memory
        self._check_unique(track, ignore=old_id)
        self._store.pop(old_id, None)
        self._store[track.id] = track


def _unique_key(track: LessonTrack) -> tuple:
    return (
        track.tenant_id,
        track.organisation_id,
        track.user_id,
        track.lesson_id,
        track.attempt,
    )
