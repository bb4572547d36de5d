"""Instructor reports over course and lesson tracking."""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from lms_tracking.api.dependencies import http_error, require_tenant
from lms_tracking.core.errors import TrackingError
from lms_tracking.models.tracking import TenantScope, TrackingStatus
from lms_tracking.services.reports import report_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/reports", tags=["reports"])


class CourseReportIn(BaseModel):
    course_id: UUID
    lesson_id: UUID | None = None
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=10, ge=1, le=100)


class ReportRowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    learner_id: UUID
    name: str | None
    email: str | None
    course_title: str
    status: TrackingStatus
    progress: int
    last_accessed: int | None
    # course-level rows
    cohort_id: UUID | None = None
    completed_lessons: int | None = None
    total_lessons: int | None = None
    # lesson-level rows
    lesson_title: str | None = None
    type: str | None = None
    score: int | None = None
    attempt: int | None = None
    time_spent: int | None = None


class CourseReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    data: list[ReportRowOut]
    total_elements: int
    offset: int
    limit: int


@router.post("/course", response_model=CourseReportOut)
async def course_report(
    body: CourseReportIn,
    scope: Annotated[TenantScope, Depends(require_tenant)],
) -> CourseReportOut:
    try:
        report = await report_service.course_report(
            scope,
            body.course_id,
            lesson_id=body.lesson_id,
            offset=body.offset,
            limit=body.limit,
        )
    except TrackingError as e:
        logger.warning("Course report failed course=%s: %s", body.course_id, e)
        raise http_error(e) from None
    return CourseReportOut.model_validate(report)
