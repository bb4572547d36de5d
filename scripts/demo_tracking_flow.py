"""Demo: one learner through a two-lesson course using FastAPI TestClient.

Seeds the in-memory content and enrollment stores, then drives the
HTTP API: initialise tracking, start, progress, complete, read the
course aggregate and the hierarchy view.

Run with:
    python scripts/demo_tracking_flow.py
"""

from __future__ import annotations

import os
import uuid

os.environ.setdefault("ROLLUP_MODE", "inline")

from fastapi.testclient import TestClient  # noqa: E402

from lms_tracking.main import app  # noqa: E402
from lms_tracking.models.content import Course, Lesson, LessonFormat, Module  # noqa: E402
from lms_tracking.models.tracking import Enrollment  # noqa: E402
from lms_tracking.services.stores import content_repo, enrollment_repo  # noqa: E402

TENANT = "demo-tenant"
ORG = "demo-org"
HEADERS = {"tenantid": TENANT, "organisationid": ORG}


def main() -> None:
    client = TestClient(app)
    learner = uuid.uuid4()

    # ── Seed data ───────────────────────────────────────────────────
    course = Course.new(tenant_id=TENANT, organisation_id=ORG, title="Leadership 101")
    module = Module.new(course=course, title="Basics")
    intro = Lesson.new(module=module, title="Intro video", ordering=1)
    quiz = Lesson.new(
        module=module,
        title="Quiz",
        format=LessonFormat.TEST,
        prerequisites=(intro.id,),
        ordering=2,
    )
    content_repo.add_course(course)
    content_repo.add_module(module)
    content_repo.add_lesson(intro)
    content_repo.add_lesson(quiz)
    enrollment_repo.add(
        Enrollment(
            tenant_id=TENANT, organisation_id=ORG, user_id=learner, course_id=course.id
        )
    )
    base = f"/v1/tracking/courses/{course.id}/learners/{learner}"

    # ── Step 1: initialise course tracking ──────────────────────────
    r = client.post(f"{base}/enrollment", headers=HEADERS)
    print(f"1. POST enrollment          -> {r.status_code}  {r.json()['status']}")

    # ── Step 2: quiz before intro is refused ────────────────────────
    body = {"learner_id": str(learner)}
    r = client.post(
        f"/v1/tracking/lessons/{quiz.id}/attempts", json=body, headers=HEADERS
    )
    print(f"2. start quiz (too early)   -> {r.status_code}  {r.json()['detail']}")

    # ── Step 3: watch the intro ─────────────────────────────────────
    r = client.post(
        f"/v1/tracking/lessons/{intro.id}/attempts", json=body, headers=HEADERS
    )
    attempt_id = r.json()["id"]
    print(f"3. start intro              -> {r.status_code}  attempt={attempt_id}")
    r = client.patch(
        f"/v1/tracking/attempts/{attempt_id}/progress",
        json={**body, "current_position": 120, "total_content": 120, "time_spent": 120},
        headers=HEADERS,
    )
    print(f"   finish intro             -> {r.status_code}  {r.json()['status']}")

    # ── Step 4: pass the quiz ───────────────────────────────────────
    r = client.post(
        f"/v1/tracking/lessons/{quiz.id}/attempts", json=body, headers=HEADERS
    )
    quiz_attempt = r.json()["id"]
    r = client.patch(
        f"/v1/tracking/attempts/{quiz_attempt}/progress",
        json={**body, "score": 8, "status": "completed"},
        headers=HEADERS,
    )
    print(f"4. pass quiz                -> {r.status_code}  {r.json()['status']}")

    # ── Step 5: read the aggregates ─────────────────────────────────
    r = client.get(base, headers=HEADERS)
    track = r.json()
    print(
        f"5. course tracking          -> {track['status']} "
        f"{track['completed_lessons']}/{track['no_of_lessons']} ({track['progress']}%)"
    )
    r = client.get(f"{base}/hierarchy", headers=HEADERS)
    for mod in r.json()["modules"]:
        print(f"   module {mod['title']!r}: {mod['tracking']['status']}")
        for lesson in mod["lessons"]:
            print(f"     - {lesson['title']}: {lesson['tracking']['status']}")


if __name__ == "__main__":
    main()
