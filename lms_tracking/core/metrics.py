"""Application metrics (Prometheus client).

Single inventory of everything the service measures.  Modules import
the metric they own and increment it at the point of action.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Tracking engine metrics
# ---------------------------------------------------------------------------

ATTEMPTS_CREATED = Counter(
    "lesson_attempts_created_total",
    "Lesson attempts created or restarted",
    ["operation"],  # start|start_over|external_signal
)

ATTEMPT_CONFLICTS = Counter(
    "lesson_attempt_conflicts_total",
    "Attempt creation races detected by the uniqueness constraint",
    ["outcome"],  # retried|surfaced
)

ROLLUPS = Counter(
    "progress_rollups_total",
    "Rollup recomputes by dispatch mode and outcome",
    ["mode", "outcome"],  # inline|detached|queued|forced, ok|error
)

ROLLUP_DURATION = Histogram(
    "progress_rollup_duration_seconds",
    "Time spent recomputing one learner's course and module aggregates",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

COURSE_COMPLETIONS = Counter(
    "course_completions_total",
    "Course aggregates that transitioned into completed",
)

DETACHED_ROLLUPS_IN_FLIGHT = Gauge(
    "detached_rollups_in_flight",
    "Detached rollup tasks that have not finished yet",
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],  # "progress_rollup", "certificate_issuance"
)
