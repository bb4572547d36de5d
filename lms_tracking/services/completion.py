"""Batch completion check across the courses of a cohort.

Answers "has this learner completed at least N lessons of format F /
sub-format S across the cohort's courses?" for several criteria at
once.  Lessons are resolved with the same grading resolver the rollup
uses, so a lesson counts here exactly when it counts in the course
aggregate.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from lms_tracking.core.errors import NotFoundError
from lms_tracking.models.content import LessonFormat, LessonSubFormat
from lms_tracking.models.tracking import TenantScope
from lms_tracking.services.grading import resolve_many
from lms_tracking.services.stores import Stores, run_in_unit_of_work


@dataclass(frozen=True, slots=True)
class CompletionCriterion:
    lesson_format: LessonFormat
    lesson_sub_format: LessonSubFormat
    completion_rule: int  # minimum number of completed lessons


@dataclass(frozen=True, slots=True)
class CriterionResult:
    criterion: CompletionCriterion
    status: bool
    total_lessons: int
    completed_lessons: int
    message: str


@dataclass(frozen=True, slots=True)
class CompletionReport:
    overall_status: bool
    criteria_results: list[CriterionResult]


class CompletionChecker:
    async def check(
        self,
        scope: TenantScope,
        cohort_id: UUID,
        learner_id: UUID,
        criteria: list[CompletionCriterion],
    ) -> CompletionReport:
        async def _op(stores: Stores) -> CompletionReport:
            courses = await stores.content.list_courses_by_cohort(scope, cohort_id)
            if not courses:
                raise NotFoundError(f"no courses found for cohort {cohort_id}")

            lessons = [
                lesson
                for lesson in await stores.content.list_lessons(
                    scope, [c.id for c in courses]
                )
                if lesson.parent_id is None
            ]
            attempts = await stores.attempts.list_for_lessons(
                scope, learner_id, [lesson.id for lesson in lessons]
            )
            outcomes = resolve_many(attempts, lessons)

            results = []
            for criterion in criteria:
                matching = [
                    lesson
                    for lesson in lessons
                    if lesson.format == criterion.lesson_format
                    and lesson.sub_format == criterion.lesson_sub_format
                ]
                completed = sum(1 for ls in matching if outcomes[ls.id].completed)
                passed = completed >= criterion.completion_rule
                results.append(
                    CriterionResult(
                        criterion=criterion,
                        status=passed,
                        total_lessons=len(matching),
                        completed_lessons=completed,
                        message=_message(criterion, completed, len(matching), passed),
                    )
                )
            return CompletionReport(
                overall_status=all(r.status for r in results),
                criteria_results=results,
            )

        return await run_in_unit_of_work(_op)


def _message(
    criterion: CompletionCriterion, completed: int, total: int, passed: bool
) -> str:
    kind = f"{criterion.lesson_format.value}/{criterion.lesson_sub_format.value}"
    if passed:
        return (
            f"Criterion met: {completed} of {total} {kind} lessons completed "
            f"(required {criterion.completion_rule})"
        )
    return (
        f"Criterion not met: {completed} of {total} {kind} lessons completed "
        f"(required {criterion.completion_rule})"
    )


completion_checker = CompletionChecker()
