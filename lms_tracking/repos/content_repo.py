"""Read access to course content.

Content is authored elsewhere.  The in-memory repo doubles as the seed
store for local runs and tests (``add_course`` / ``add_module`` /
``add_lesson``); the tracking engine itself only calls the read methods.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from lms_tracking.models.content import ContentStatus, Course, Lesson, Module
from lms_tracking.models.tracking import TenantScope


class ContentRepo(Protocol):
    async def get_course(
        self, scope: TenantScope, course_id: UUID
    ) -> Course | None: ...
    async def get_module(
        self, scope: TenantScope, module_id: UUID
    ) -> Module | None: ...
    async def get_lesson(
        self, scope: TenantScope, lesson_id: UUID
    ) -> Lesson | None: ...
    async def get_lessons(
        self, scope: TenantScope, lesson_ids: Iterable[UUID]
    ) -> list[Lesson]: ...
    async def list_modules(
        self, scope: TenantScope, course_id: UUID
    ) -> list[Module]: ...
    async def list_lessons(
        self, scope: TenantScope, course_ids: Iterable[UUID]
    ) -> list[Lesson]: ...
    async def find_lesson_by_source(
        self, scope: TenantScope, source_key: str
    ) -> Lesson | None: ...
    async def list_courses_by_cohort(
        self, scope: TenantScope, cohort_id: UUID
    ) -> list[Course]: ...


def _in_scope(item: Course | Module | Lesson, scope: TenantScope) -> bool:
    return (
        item.tenant_id == scope.tenant_id
        and item.organisation_id == scope.organisation_id
    )


class InMemoryContentRepo:
    def __init__(self) -> None:
        self._courses: dict[UUID, Course] = {}
        self._modules: dict[UUID, Module] = {}
        self._lessons: dict[UUID, Lesson] = {}

    def clear(self) -> None:
        self._courses.clear()
        self._modules.clear()
        self._lessons.clear()

    # --- seeding ---

    def add_course(self, course: Course) -> None:
        self._courses[course.id] = course

    def add_module(self, module: Module) -> None:
        self._modules[module.id] = module

    def add_lesson(self, lesson: Lesson) -> None:
        self._lessons[lesson.id] = lesson

    # --- reads ---

    async def get_course(self, scope: TenantScope, course_id: UUID) -> Course | None:
        course = self._courses.get(course_id)
        return course if course is not None and _in_scope(course, scope) else None

    async def get_module(self, scope: TenantScope, module_id: UUID) -> Module | None:
        module = self._modules.get(module_id)
        return module if module is not None and _in_scope(module, scope) else None

    async def get_lesson(self, scope: TenantScope, lesson_id: UUID) -> Lesson | None:
        lesson = self._lessons.get(lesson_id)
        return lesson if lesson is not None and _in_scope(lesson, scope) else None

    async def get_lessons(
        self, scope: TenantScope, lesson_ids: Iterable[UUID]
    ) -> list[Lesson]:
        found = (self._lessons.get(lid) for lid in set(lesson_ids))
        return [x for x in found if x is not None and _in_scope(x, scope)]

    async def list_modules(self, scope: TenantScope, course_id: UUID) -> list[Module]:
        modules = [
            m
            for m in self._modules.values()
            if _in_scope(m, scope)
            and m.course_id == course_id
            and m.status != ContentStatus.ARCHIVED
        ]
        return sorted(modules, key=lambda m: m.ordering)

    async def list_lessons(
        self, scope: TenantScope, course_ids: Iterable[UUID]
    ) -> list[Lesson]:
        """Non-archived lessons of the given courses, in authoring order."""
        wanted = set(course_ids)
        lessons = [
            lesson
            for lesson in self._lessons.values()
            if _in_scope(lesson, scope)
            and lesson.course_id in wanted
            and lesson.status != ContentStatus.ARCHIVED
        ]
        return sorted(lessons, key=lambda lesson: lesson.ordering)

    async def find_lesson_by_source(
        self, scope: TenantScope, source_key: str
    ) -> Lesson | None:
        for lesson in self._lessons.values():
            if (
                lesson.source_key == source_key
                and _in_scope(lesson, scope)
                and lesson.status != ContentStatus.ARCHIVED
            ):
                return lesson
        return None

    async def list_courses_by_cohort(
        self, scope: TenantScope, cohort_id: UUID
    ) -> list[Course]:
        return [
            c
            for c in self._courses.values()
            if _in_scope(c, scope)
            and c.cohort_id == cohort_id
            and c.status != ContentStatus.ARCHIVED
        ]
