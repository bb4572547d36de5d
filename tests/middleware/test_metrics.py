"""Tests for Prometheus metrics middleware.

Counters in the global registry cannot be reset between tests, so every
assertion is on the delta around the request under test.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from tests.conftest import HEADERS


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/health")
    assert _get_sample("http_requests_total", labels) - before >= 1


def test_request_duration_histogram_observes(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health"}
    before = _get_sample("http_request_duration_seconds_count", labels)
    client.get("/health")
    assert _get_sample("http_request_duration_seconds_count", labels) - before >= 1


def test_endpoint_label_is_the_route_template(client: TestClient) -> None:
    template = {
        "method": "GET",
        "endpoint": "/v1/tracking/attempts/{attempt_id}",
        "status_code": "404",
    }
    before = _get_sample("http_requests_total", template)

    for _ in range(2):
        client.get(
            f"/v1/tracking/attempts/{uuid.uuid4()}",
            params={"learner_id": str(uuid.uuid4())},
            headers=HEADERS,
        )

    assert _get_sample("http_requests_total", template) - before == 2


def test_metrics_endpoint_returns_prometheus_format(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert "progress_rollups_total" in resp.text
    assert "lesson_attempts_created_total" in resp.text


def test_metrics_endpoint_not_self_instrumented(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/metrics", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/metrics")
    client.get("/metrics")
    assert _get_sample("http_requests_total", labels) == before
