"""Domain error taxonomy for the tracking engine.

Services raise these; routers translate them into HTTP responses.
NotFound / NotEligible / InvalidTransition are deterministic business
outcomes and are never retried.  Conflict is retried once by the
unit-of-work runner before it surfaces.  StoreTimeout is the only
error a caller should retry.
"""

from __future__ import annotations


class TrackingError(Exception):
    """Base class for every error the tracking engine raises on purpose."""


class NotFoundError(TrackingError):
    pass


class NoExistingAttemptError(NotFoundError):
    def __init__(self, lesson_id: object) -> None:
        super().__init__(f"no existing attempt for lesson {lesson_id}")
        self.lesson_id = lesson_id


class NotEligibleError(TrackingError):
    """Prerequisites are unmet.

    Carries the actionable lists so the caller can tell the learner
    what to finish first.
    """

    def __init__(
        self,
        *,
        unmet_prerequisites: list[str] | None = None,
        required_courses: list[str] | None = None,
    ) -> None:
        self.unmet_prerequisites = list(unmet_prerequisites or [])
        self.required_courses = list(required_courses or [])
        super().__init__("prerequisites not met")


class InvalidTransitionError(TrackingError):
    pass


class MaxAttemptsReachedError(InvalidTransitionError):
    def __init__(self, max_attempts: int) -> None:
        super().__init__(f"maximum attempts reached ({max_attempts})")
        self.max_attempts = max_attempts


class ConflictError(TrackingError):
    pass


class UpstreamUnavailableError(TrackingError):
    pass


class StoreTimeoutError(TrackingError):
    pass
