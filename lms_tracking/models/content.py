"""Content read models: courses, modules, lessons.

Content is owned by the authoring service.  The tracking engine only
reads it, so these are frozen snapshots with the policy fields the
engine needs (grading method, attempt limits, prerequisites, ...).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID, uuid4


class ContentStatus(StrEnum):
    UNPUBLISHED = "unpublished"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class LessonFormat(StrEnum):
    VIDEO = "video"
    DOCUMENT = "document"
    TEST = "test"
    EVENT = "event"


class LessonSubFormat(StrEnum):
    YOUTUBE = "youtube.url"
    VIDEO = "video.url"
    PDF = "pdf"
    QUIZ = "quiz"
    EVENT = "event"


class GradeMethod(StrEnum):
    FIRST_ATTEMPT = "first_attempt"
    LAST_ATTEMPT = "last_attempt"
    HIGHEST = "highest"
    AVERAGE = "average"


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    tenant_id: str
    organisation_id: str
    title: str
    status: ContentStatus = ContentStatus.PUBLISHED
    prerequisites: tuple[UUID, ...] = ()
    cohort_id: UUID | None = None

    @staticmethod
    def new(
        *,
        tenant_id: str,
        organisation_id: str,
        title: str,
        prerequisites: tuple[UUID, ...] = (),
        cohort_id: UUID | None = None,
    ) -> Course:
        return Course(
            id=uuid4(),
            tenant_id=tenant_id,
            organisation_id=organisation_id,
            title=title,
            prerequisites=prerequisites,
            cohort_id=cohort_id,
        )


@dataclass(frozen=True, slots=True)
class Module:
    id: UUID
    course_id: UUID
    tenant_id: str
    organisation_id: str
    title: str
    status: ContentStatus = ContentStatus.PUBLISHED
    parent_id: UUID | None = None  # set for submodules
    ordering: int = 0

    @staticmethod
    def new(
        *,
        course: Course,
        title: str,
        parent_id: UUID | None = None,
        ordering: int = 0,
    ) -> Module:
        return Module(
            id=uuid4(),
            course_id=course.id,
            tenant_id=course.tenant_id,
            organisation_id=course.organisation_id,
            title=title,
            parent_id=parent_id,
            ordering=ordering,
        )


@dataclass(frozen=True, slots=True)
class Lesson:
    id: UUID
    course_id: UUID
    module_id: UUID
    tenant_id: str
    organisation_id: str
    title: str
    format: LessonFormat
    sub_format: LessonSubFormat | None = None
    status: ContentStatus = ContentStatus.PUBLISHED
    grade_method: GradeMethod = GradeMethod.LAST_ATTEMPT
    max_attempts: int = 0  # 0 = unlimited
    allow_resubmission: bool = False
    resume: bool = True
    consider_for_passing: bool = True
    passing_marks: int | None = None
    total_marks: int | None = None
    prerequisites: tuple[UUID, ...] = ()
    parent_id: UUID | None = None  # associated sub-content
    source_key: str | None = None  # test id / event id of external graders
    ordering: int = 0

    @property
    def is_countable(self) -> bool:
        """Whether this lesson counts toward module and course totals."""
        return (
            self.status != ContentStatus.ARCHIVED
            and self.consider_for_passing
            and self.parent_id is None
        )

    @staticmethod
    def new(
        *,
        module: Module,
        title: str,
        format: LessonFormat = LessonFormat.VIDEO,
        **policy: object,
    ) -> Lesson:
        return Lesson(
            id=uuid4(),
            course_id=module.course_id,
            module_id=module.id,
            tenant_id=module.tenant_id,
            organisation_id=module.organisation_id,
            title=title,
            format=format,
            **policy,  # type: ignore[arg-type]
        )
