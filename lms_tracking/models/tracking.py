from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID, uuid4


def now_ts() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


class TrackingStatus(StrEnum):
    NOT_STARTED = "not_started"
    STARTED = "started"
    INCOMPLETE = "incomplete"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    NOT_ELIGIBLE = "not_eligible"


# Statuses that end an attempt (end_datetime is set on entry).
TERMINAL_STATUSES = frozenset({TrackingStatus.COMPLETED, TrackingStatus.SUBMITTED})


class ModuleTrackStatus(StrEnum):
    INCOMPLETE = "incomplete"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class TenantScope:
    """Tenant and organisation every read and write is scoped to.

    Resolved once per request from the ``tenantid`` / ``organisationid``
    headers and passed down explicitly; stores never look it up themselves.
    """

    tenant_id: str
    organisation_id: str


@dataclass(frozen=True, slots=True)
class LessonTrack:
    """One attempt of one learner at one lesson."""

    id: UUID
    tenant_id: str
    organisation_id: str
    user_id: UUID
    lesson_id: UUID
    course_id: UUID
    attempt: int
    status: TrackingStatus = TrackingStatus.STARTED
    score: int = 0
    completion_percentage: int = 0
    time_spent: int = 0
    current_position: int = 0
    total_content: int = 0
    start_datetime: int = 0
    end_datetime: int | None = None
    updated_at: int = 0
    params: dict = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @staticmethod
    def new(
        *,
        scope: TenantScope,
        user_id: UUID,
        lesson_id: UUID,
        course_id: UUID,
        attempt: int,
        now: int,
    ) -> LessonTrack:
        return LessonTrack(
            id=uuid4(),
            tenant_id=scope.tenant_id,
            organisation_id=scope.organisation_id,
            user_id=user_id,
            lesson_id=lesson_id,
            course_id=course_id,
            attempt=attempt,
            start_datetime=now,
            updated_at=now,
        )


@dataclass(frozen=True, slots=True)
class ModuleTrack:
    tenant_id: str
    organisation_id: str
    user_id: UUID
    module_id: UUID
    course_id: UUID
    status: ModuleTrackStatus = ModuleTrackStatus.INCOMPLETE
    completed_lessons: int = 0
    total_lessons: int = 0
    progress: int = 0
    updated_at: int = 0


@dataclass(frozen=True, slots=True)
class CourseTrack:
    tenant_id: str
    organisation_id: str
    user_id: UUID
    course_id: UUID
    status: TrackingStatus = TrackingStatus.STARTED
    completed_lessons: int = 0
    no_of_lessons: int = 0
    start_datetime: int = 0
    end_datetime: int | None = None
    last_accessed_date: int | None = None
    certificate_issued: bool = False
    cert_gen_date: int | None = None

    @property
    def progress(self) -> int:
        return percent(self.completed_lessons, self.no_of_lessons)


@dataclass(frozen=True, slots=True)
class Enrollment:
    """Read-only view of an enrollment owned by the enrollment service."""

    tenant_id: str
    organisation_id: str
    user_id: UUID
    course_id: UUID
    status: str = "published"
    enrolled_at: int = 0


def round_half_up(value: float) -> int:
    """Round .5 away from zero for the non-negative values we store."""
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def percent(part: float, whole: float) -> int:
    if whole <= 0:
        return 0
    return round_half_up(part / whole * 100)
