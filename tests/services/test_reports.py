"""Course report and identity client tests.

The identity service is replaced by an ``httpx.MockTransport`` so the
real client code (request shape, error mapping, parsing) is exercised.
"""

from __future__ import annotations

import asyncio
import json
import uuid

import httpx
import pytest

from lms_tracking.core.errors import NotFoundError, UpstreamUnavailableError
from lms_tracking.models.tracking import TrackingStatus
from lms_tracking.services.attempts import attempt_service
from lms_tracking.services.identity_client import IdentityClient
from lms_tracking.services.reports import ReportService
from tests.conftest import SCOPE, enroll, enroll_and_track, seed_course

IDENTITY_URL = "http://identity.test"


def _identity(users: list[dict], seen: list | None = None) -> IdentityClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(200, json={"result": {"getUserDetails": users}})

    return IdentityClient(IDENTITY_URL, transport=httpx.MockTransport(handler))


def test_fetch_learners_sends_filter_and_tenant_headers() -> None:
    learner = uuid.uuid4()
    seen: list[httpx.Request] = []
    client = _identity(
        [
            {
                "userId": str(learner),
                "firstName": "Ada",
                "lastName": "Lovelace",
                "email": "ada@example.com",
            }
        ],
        seen,
    )

    identities = asyncio.run(client.fetch_learners(SCOPE, [learner]))

    assert identities[learner].name == "Ada Lovelace"
    assert identities[learner].email == "ada@example.com"
    [request] = seen
    assert request.url.path == "/user/v1/list"
    assert request.headers["tenantid"] == SCOPE.tenant_id
    assert request.headers["organisationid"] == SCOPE.organisation_id
    assert json.loads(request.content) == {
        "filters": {"userId": [str(learner)]},
        "limit": 1,
    }


def test_fetch_learners_falls_back_to_username_and_skips_bad_records() -> None:
    learner = uuid.uuid4()
    client = _identity(
        [
            {"userId": str(learner), "username": "grace"},
            {"firstName": "No id"},
            {"userId": "not-a-uuid"},
        ]
    )

    identities = asyncio.run(client.fetch_learners(SCOPE, [learner]))

    assert list(identities) == [learner]
    assert identities[learner].name == "grace"
    assert identities[learner].email == "grace"


def test_fetch_learners_maps_http_errors() -> None:
    client = IdentityClient(
        IDENTITY_URL,
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )

    with pytest.raises(UpstreamUnavailableError):
        asyncio.run(client.fetch_learners(SCOPE, [uuid.uuid4()]))


def test_fetch_learners_without_url_is_unavailable() -> None:
    with pytest.raises(UpstreamUnavailableError):
        asyncio.run(IdentityClient(None).fetch_learners(SCOPE, [uuid.uuid4()]))


def test_fetch_learners_with_no_ids_skips_the_call() -> None:
    assert asyncio.run(IdentityClient(None).fetch_learners(SCOPE, [])) == {}


def test_course_report_rows_per_enrolled_learner() -> None:
    seeded = seed_course(lessons=2)
    tracked, untracked = uuid.uuid4(), uuid.uuid4()
    enroll_and_track(tracked, seeded.id)
    enroll(untracked, seeded.id)
    service = ReportService(
        _identity([{"userId": str(tracked), "firstName": "Ada", "email": "a@x.io"}])
    )

    report = asyncio.run(service.course_report(SCOPE, seeded.id))

    assert report.total_elements == 2
    rows = {row.learner_id: row for row in report.data}
    assert rows[tracked].name == "Ada"
    assert rows[tracked].course_title == "Leadership Basics"
    assert rows[tracked].status == TrackingStatus.STARTED
    assert rows[tracked].total_lessons == 2
    assert rows[untracked].name is None
    assert rows[untracked].status == TrackingStatus.NOT_STARTED


def test_course_report_paginates() -> None:
    seeded = seed_course()
    for _ in range(3):
        enroll(uuid.uuid4(), seeded.id)

    report = asyncio.run(
        ReportService(_identity([])).course_report(
            SCOPE, seeded.id, offset=2, limit=2
        )
    )

    assert report.total_elements == 3
    assert len(report.data) == 1
    assert report.offset == 2


def test_lesson_report_uses_latest_attempt(learner_id: uuid.UUID) -> None:
    seeded = seed_course(lessons=1)
    enroll_and_track(learner_id, seeded.id)
    asyncio.run(
        attempt_service.start_or_resume(SCOPE, seeded.lessons[0].id, learner_id)
    )

    report = asyncio.run(
        ReportService(_identity([])).course_report(
            SCOPE, seeded.id, lesson_id=seeded.lessons[0].id
        )
    )

    [row] = report.data
    assert row.lesson_title == "Lesson 1"
    assert row.type == "video"
    assert row.attempt == 1
    assert row.status == TrackingStatus.STARTED


def test_lesson_from_another_course_is_not_found() -> None:
    seeded = seed_course()
    other = seed_course(title="Other")

    with pytest.raises(NotFoundError):
        asyncio.run(
            ReportService(_identity([])).course_report(
                SCOPE, seeded.id, lesson_id=other.lessons[0].id
            )
        )


def test_identity_failure_fails_the_report() -> None:
    seeded = seed_course()
    enroll(uuid.uuid4(), seeded.id)
    failing = IdentityClient(
        IDENTITY_URL,
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )

    with pytest.raises(UpstreamUnavailableError):
        asyncio.run(ReportService(failing).course_report(SCOPE, seeded.id))
