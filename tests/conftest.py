from __future__ import annotations

import asyncio
import os
import sys
import uuid
from dataclasses import dataclass, field
from pathlib import Path

# Rollups must finish before a request returns for assertions to see them.
os.environ.setdefault("ROLLUP_MODE", "inline")
os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from lms_tracking.main import app  # noqa: E402
from lms_tracking.models.content import (  # noqa: E402
    Course,
    Lesson,
    LessonFormat,
    Module,
)
from lms_tracking.models.tracking import Enrollment, TenantScope  # noqa: E402
from lms_tracking.services.enrollment_tracking import (  # noqa: E402
    enrollment_tracking_service,
)
from lms_tracking.services.locks import tracking_locks  # noqa: E402
from lms_tracking.services.stores import (  # noqa: E402
    aggregate_repo,
    attempt_repo,
    content_repo,
    enrollment_repo,
)
from lms_tracking.services.task_queue import task_queue  # noqa: E402

# Ensure repo root is on sys.path so `import lms_tracking` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TENANT_ID = "tenant-a"
ORGANISATION_ID = "org-a"
SCOPE = TenantScope(tenant_id=TENANT_ID, organisation_id=ORGANISATION_ID)
HEADERS = {"tenantid": TENANT_ID, "organisationid": ORGANISATION_ID}


@pytest.fixture(autouse=True)
def reset_stores() -> None:
    """Clear every in-memory repository between tests."""
    attempt_repo._store.clear()
    aggregate_repo._courses.clear()
    aggregate_repo._modules.clear()
    content_repo.clear()
    enrollment_repo._store.clear()


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_locks() -> None:
    """Drop locks a failed test may have left behind (they bind to a loop)."""
    tracking_locks._locks.clear()
    tracking_locks._users.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def learner_id() -> uuid.UUID:
    return uuid.uuid4()


# ---------------------------------------------------------------------------
# Content and enrollment helpers
# ---------------------------------------------------------------------------


@dataclass
class SeededCourse:
    course: Course
    module: Module
    lessons: list[Lesson] = field(default_factory=list)

    @property
    def id(self) -> uuid.UUID:
        return self.course.id


def seed_course(
    *,
    lessons: int = 2,
    title: str = "Leadership Basics",
    scope: TenantScope = SCOPE,
    prerequisites: tuple[uuid.UUID, ...] = (),
    cohort_id: uuid.UUID | None = None,
    format: LessonFormat = LessonFormat.VIDEO,
    **lesson_policy: object,
) -> SeededCourse:
    """Create a course with one module and ``lessons`` lessons sharing a policy."""
    course = Course.new(
        tenant_id=scope.tenant_id,
        organisation_id=scope.organisation_id,
        title=title,
        prerequisites=prerequisites,
        cohort_id=cohort_id,
    )
    module = Module.new(course=course, title="Module 1")
    content_repo.add_course(course)
    content_repo.add_module(module)
    seeded = SeededCourse(course=course, module=module)
    for i in range(lessons):
        seeded.lessons.append(
            add_lesson(
                module,
                title=f"Lesson {i + 1}",
                ordering=i + 1,
                format=format,
                **lesson_policy,
            )
        )
    return seeded


def add_lesson(module: Module, *, title: str = "Lesson", **policy: object) -> Lesson:
    lesson = Lesson.new(module=module, title=title, **policy)  # type: ignore[arg-type]
    content_repo.add_lesson(lesson)
    return lesson


def enroll(
    learner_id: uuid.UUID, course_id: uuid.UUID, scope: TenantScope = SCOPE
) -> Enrollment:
    enrollment = Enrollment(
        tenant_id=scope.tenant_id,
        organisation_id=scope.organisation_id,
        user_id=learner_id,
        course_id=course_id,
    )
    enrollment_repo.add(enrollment)
    return enrollment


def enroll_and_track(
    learner_id: uuid.UUID, course_id: uuid.UUID, scope: TenantScope = SCOPE
) -> None:
    """Enroll the learner and initialise their course tracking."""
    enroll(learner_id, course_id, scope)
    asyncio.run(enrollment_tracking_service.initialize(scope, course_id, learner_id))
