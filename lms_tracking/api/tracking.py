"""Tracking endpoints: attempts, progress, external signals, aggregates.

Every route is scoped by the ``tenantid`` / ``organisationid`` headers.
Learner ids are passed explicitly (path or body); authentication is the
gateway's job.  Domain errors are mapped by ``http_error``.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from lms_tracking.api.dependencies import http_error, require_tenant
from lms_tracking.core.errors import TrackingError
from lms_tracking.models.content import LessonFormat, LessonSubFormat
from lms_tracking.models.tracking import TenantScope, TrackingStatus
from lms_tracking.services.attempts import (
    ExternalSignal,
    ProgressUpdate,
    attempt_service,
)
from lms_tracking.services.completion import CompletionCriterion, completion_checker
from lms_tracking.services.composer import tracking_composer
from lms_tracking.services.enrollment_tracking import enrollment_tracking_service
from lms_tracking.services.rollup import rollup_aggregator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/tracking", tags=["tracking"])

Scope = Annotated[TenantScope, Depends(require_tenant)]


# --- Pydantic schemas ---


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class LearnerIn(BaseModel):
    learner_id: UUID


class AttemptOut(_FromAttributes):
    id: UUID
    user_id: UUID
    lesson_id: UUID
    course_id: UUID
    attempt: int
    status: TrackingStatus
    score: int
    completion_percentage: int
    time_spent: int
    current_position: int
    total_content: int
    start_datetime: int
    end_datetime: int | None
    updated_at: int
    params: dict


class LessonStatusOut(_FromAttributes):
    can_resume: bool
    can_reattempt: bool
    last_attempt_status: TrackingStatus
    last_attempt_id: UUID | None
    is_eligible: bool
    unmet_prerequisites: list[str]


class ProgressIn(BaseModel):
    learner_id: UUID
    current_position: int | None = Field(default=None, ge=0)
    total_content: int | None = Field(default=None, ge=0)
    score: int | None = Field(default=None, ge=0)
    time_spent: int | None = Field(default=None, ge=0)
    completion_percentage: int | None = Field(default=None, ge=0, le=100)
    status: TrackingStatus | None = None
    params: dict | None = None


class SignalIn(BaseModel):
    learner_id: UUID
    result: str | None = Field(default=None, pattern="^(pass|fail)$")
    status: TrackingStatus | None = None
    score: int | None = Field(default=None, ge=0)
    time_spent: int | None = Field(default=None, ge=0)
    reviewed_by: str | None = None


class CourseTrackOut(_FromAttributes):
    user_id: UUID
    course_id: UUID
    status: TrackingStatus
    completed_lessons: int
    no_of_lessons: int
    progress: int
    start_datetime: int | None
    end_datetime: int | None
    last_accessed_date: int | None
    certificate_issued: bool
    cert_gen_date: int | None


class AttemptSummaryOut(_FromAttributes):
    attempt_id: UUID
    attempt_number: int
    status: TrackingStatus
    start_datetime: int
    end_datetime: int | None
    score: int
    progress: int
    time_spent: int
    last_accessed: int
    total_content: int
    current_position: int


class LessonTrackingOut(_FromAttributes):
    status: TrackingStatus
    progress: int
    last_accessed: int | None
    time_spent: int
    score: int | None
    attempt: AttemptSummaryOut | None


class EligibilityOut(_FromAttributes):
    is_eligible: bool
    unmet_prerequisites: list[str] = []


class CourseEligibilityOut(_FromAttributes):
    is_eligible: bool
    required_courses: list[str] = []


class LessonViewOut(_FromAttributes):
    lesson_id: UUID
    title: str
    format: str
    sub_format: str | None
    ordering: int
    tracking: LessonTrackingOut
    eligibility: EligibilityOut


class ModuleTrackingOut(_FromAttributes):
    status: str
    progress: int
    completed_lessons: int
    total_lessons: int


class ModuleViewOut(_FromAttributes):
    module_id: UUID
    title: str
    ordering: int
    tracking: ModuleTrackingOut
    lessons: list[LessonViewOut]
    submodules: list[ModuleViewOut]


class CourseTrackingOut(_FromAttributes):
    status: TrackingStatus
    progress: int
    completed_lessons: int
    total_lessons: int
    time_spent: int
    start_datetime: int | None
    end_datetime: int | None
    last_accessed: int | None
    certificate_issued: bool


class LastAccessedLessonOut(_FromAttributes):
    lesson_id: UUID
    attempt: AttemptSummaryOut


class CourseHierarchyOut(_FromAttributes):
    course_id: UUID
    title: str
    tracking: CourseTrackingOut
    eligibility: CourseEligibilityOut
    last_accessed_lesson: LastAccessedLessonOut | None
    modules: list[ModuleViewOut]


class RemovableOut(BaseModel):
    removable: bool


class RecalculateIn(BaseModel):
    course_id: UUID


class RecalculateOut(_FromAttributes):
    course_tracks_updated: int
    module_tracks_updated: int


class CriterionIn(_FromAttributes):
    lesson_format: LessonFormat
    lesson_sub_format: LessonSubFormat
    completion_rule: int = Field(ge=0)


class CompletionIn(BaseModel):
    cohort_id: UUID
    learner_id: UUID
    criteria: list[CriterionIn] = Field(min_length=1)


class CriterionResultOut(_FromAttributes):
    criterion: CriterionIn
    status: bool
    total_lessons: int
    completed_lessons: int
    message: str


class CompletionOut(_FromAttributes):
    overall_status: bool
    criteria_results: list[CriterionResultOut]


# --- Attempts ---


@router.post(
    "/lessons/{lesson_id}/attempts",
    response_model=AttemptOut,
    status_code=status.HTTP_200_OK,
)
async def start_or_resume_attempt(
    lesson_id: UUID, body: LearnerIn, scope: Scope
) -> AttemptOut:
    try:
        track = await attempt_service.start_or_resume(scope, lesson_id, body.learner_id)
    except TrackingError as e:
        logger.warning("Start attempt rejected lesson=%s: %s", lesson_id, e)
        raise http_error(e) from None
    return AttemptOut.model_validate(track)


@router.post("/lessons/{lesson_id}/attempts/start-over", response_model=AttemptOut)
async def start_over_attempt(
    lesson_id: UUID, body: LearnerIn, scope: Scope
) -> AttemptOut:
    try:
        track = await attempt_service.start_over(scope, lesson_id, body.learner_id)
    except TrackingError as e:
        logger.warning("Start-over rejected lesson=%s: %s", lesson_id, e)
        raise http_error(e) from None
    return AttemptOut.model_validate(track)


@router.post("/lessons/{lesson_id}/attempts/resume", response_model=AttemptOut)
async def resume_attempt(lesson_id: UUID, body: LearnerIn, scope: Scope) -> AttemptOut:
    try:
        track = await attempt_service.resume(scope, lesson_id, body.learner_id)
    except TrackingError as e:
        logger.warning("Resume rejected lesson=%s: %s", lesson_id, e)
        raise http_error(e) from None
    return AttemptOut.model_validate(track)


@router.get(
    "/lessons/{lesson_id}/learners/{learner_id}/status",
    response_model=LessonStatusOut,
)
async def get_lesson_status(
    lesson_id: UUID, learner_id: UUID, scope: Scope
) -> LessonStatusOut:
    try:
        result = await attempt_service.get_lesson_status(scope, lesson_id, learner_id)
    except TrackingError as e:
        raise http_error(e) from None
    return LessonStatusOut.model_validate(result)


@router.get("/attempts/{attempt_id}", response_model=AttemptOut)
async def get_attempt(
    attempt_id: UUID, learner_id: Annotated[UUID, Query()], scope: Scope
) -> AttemptOut:
    try:
        track = await attempt_service.get_attempt(scope, attempt_id, learner_id)
    except TrackingError as e:
        raise http_error(e) from None
    return AttemptOut.model_validate(track)


@router.patch("/attempts/{attempt_id}/progress", response_model=AttemptOut)
async def update_progress(
    attempt_id: UUID, body: ProgressIn, scope: Scope
) -> AttemptOut:
    update = ProgressUpdate(**body.model_dump(exclude={"learner_id"}))
    try:
        track = await attempt_service.update_progress(
            scope, attempt_id, body.learner_id, update
        )
    except TrackingError as e:
        logger.warning("Progress update rejected attempt=%s: %s", attempt_id, e)
        raise http_error(e) from None
    return AttemptOut.model_validate(track)


@router.patch("/signals/{source_key}", response_model=AttemptOut)
async def complete_by_external_signal(
    source_key: str, body: SignalIn, scope: Scope
) -> AttemptOut:
    signal = ExternalSignal(**body.model_dump())
    try:
        track = await attempt_service.complete_by_external_signal(
            scope, source_key, signal
        )
    except TrackingError as e:
        logger.warning("External signal rejected source=%s: %s", source_key, e)
        raise http_error(e) from None
    return AttemptOut.model_validate(track)


# --- Course aggregates ---


@router.get(
    "/courses/{course_id}/learners/{learner_id}", response_model=CourseTrackOut
)
async def get_course_tracking(
    course_id: UUID, learner_id: UUID, scope: Scope
) -> CourseTrackOut:
    try:
        track = await tracking_composer.get_course_tracking(
            scope, course_id, learner_id
        )
    except TrackingError as e:
        raise http_error(e) from None
    return CourseTrackOut.model_validate(track)


@router.get(
    "/courses/{course_id}/learners/{learner_id}/hierarchy",
    response_model=CourseHierarchyOut,
)
async def get_course_hierarchy(
    course_id: UUID, learner_id: UUID, scope: Scope
) -> CourseHierarchyOut:
    try:
        view = await tracking_composer.course_hierarchy_with_tracking(
            scope, course_id, learner_id
        )
    except TrackingError as e:
        raise http_error(e) from None
    return CourseHierarchyOut.model_validate(view)


@router.post(
    "/courses/{course_id}/learners/{learner_id}/enrollment",
    response_model=CourseTrackOut,
    status_code=status.HTTP_201_CREATED,
)
async def initialize_enrollment_tracking(
    course_id: UUID, learner_id: UUID, scope: Scope
) -> CourseTrackOut:
    try:
        track = await enrollment_tracking_service.initialize(
            scope, course_id, learner_id
        )
    except TrackingError as e:
        logger.warning(
            "Tracking initialisation rejected course=%s learner=%s: %s",
            course_id,
            learner_id,
            e,
        )
        raise http_error(e) from None
    return CourseTrackOut.model_validate(track)


@router.get(
    "/courses/{course_id}/learners/{learner_id}/enrollment/removable",
    response_model=RemovableOut,
)
async def check_enrollment_removable(
    course_id: UUID, learner_id: UUID, scope: Scope
) -> RemovableOut:
    try:
        await enrollment_tracking_service.check_removable(scope, course_id, learner_id)
    except TrackingError as e:
        raise http_error(e) from None
    return RemovableOut(removable=True)


@router.delete(
    "/courses/{course_id}/learners/{learner_id}/enrollment",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_enrollment_tracking(
    course_id: UUID, learner_id: UUID, scope: Scope
) -> None:
    try:
        await enrollment_tracking_service.remove(scope, course_id, learner_id)
    except TrackingError as e:
        logger.warning(
            "Tracking removal rejected course=%s learner=%s: %s",
            course_id,
            learner_id,
            e,
        )
        raise http_error(e) from None


@router.post("/recalculate-progress", response_model=RecalculateOut)
async def recalculate_progress(body: RecalculateIn, scope: Scope) -> RecalculateOut:
    try:
        summary = await rollup_aggregator.recalculate_course(scope, body.course_id)
    except TrackingError as e:
        raise http_error(e) from None
    return RecalculateOut.model_validate(summary)


@router.post("/completion-status", response_model=CompletionOut)
async def check_batch_completion(body: CompletionIn, scope: Scope) -> CompletionOut:
    criteria = [
        CompletionCriterion(
            lesson_format=c.lesson_format,
            lesson_sub_format=c.lesson_sub_format,
            completion_rule=c.completion_rule,
        )
        for c in body.criteria
    ]
    try:
        report = await completion_checker.check(
            scope, body.cohort_id, body.learner_id, criteria
        )
    except TrackingError as e:
        raise http_error(e) from None
    return CompletionOut.model_validate(report)
