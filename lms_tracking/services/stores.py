"""Store wiring and the unit of work.

Services never build repositories themselves.  They ask for a
``Stores`` bundle through ``open_stores()``:

  - DATABASE_URL set:   one AsyncSession per unit of work, Pg* repos
                        bound to it, committed when the block exits
                        cleanly and rolled back otherwise.
  - DATABASE_URL unset: the module-level in-memory repos below, shared
                        by every caller in the process (local dev, tests).

``run_in_unit_of_work()`` adds the two policies every write path
shares: an optional keyed lock held for the whole unit (including the
commit), and a single retry in a fresh unit when a uniqueness conflict
is detected.  Timeouts from the driver or the connection pool surface
as StoreTimeoutError.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Hashable
from contextlib import asynccontextmanager, nullcontext
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from lms_tracking.core.errors import ConflictError, StoreTimeoutError
from lms_tracking.core.metrics import ATTEMPT_CONFLICTS
from lms_tracking.db.engine import async_session_factory
from lms_tracking.repos.aggregate_repo import AggregateRepo, InMemoryAggregateRepo
from lms_tracking.repos.attempt_repo import AttemptRepo, InMemoryAttemptRepo
from lms_tracking.repos.content_repo import ContentRepo, InMemoryContentRepo
from lms_tracking.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from lms_tracking.repos.pg_aggregate_repo import PgAggregateRepo
from lms_tracking.repos.pg_attempt_repo import PgAttemptRepo
from lms_tracking.repos.pg_content_repo import PgContentRepo
from lms_tracking.repos.pg_enrollment_repo import PgEnrollmentRepo
from lms_tracking.services.locks import KeyedLocks, tracking_locks

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Stores:
    attempts: AttemptRepo
    aggregates: AggregateRepo
    content: ContentRepo
    enrollments: EnrollmentRepo


# In-memory fallbacks (used when DATABASE_URL is not configured)
attempt_repo = InMemoryAttemptRepo()
aggregate_repo = InMemoryAggregateRepo()
content_repo = InMemoryContentRepo()
enrollment_repo = InMemoryEnrollmentRepo()

_memory_stores = Stores(
    attempts=attempt_repo,
    aggregates=aggregate_repo,
    content=content_repo,
    enrollments=enrollment_repo,
)


@asynccontextmanager
async def open_stores() -> AsyncIterator[Stores]:
    """Yield a store bundle scoped to one unit of work."""
    if async_session_factory is None:
        # no transaction here; in-memory repos validate before writing
        yield _memory_stores
        return

    try:
        async with async_session_factory() as session:
            async with session.begin():
                yield Stores(
                    attempts=PgAttemptRepo(session),
                    aggregates=PgAggregateRepo(session),
                    content=PgContentRepo(session),
                    enrollments=PgEnrollmentRepo(session),
                )
    except (TimeoutError, PoolTimeoutError) as exc:
        logger.warning("Store call timed out: %s", exc)
        raise StoreTimeoutError("store call timed out") from exc


async def run_in_unit_of_work(
    operation: Callable[[Stores], Awaitable[T]],
    *,
    lock_key: Hashable | None = None,
    locks: KeyedLocks = tracking_locks,
    retry_on_conflict: bool = False,
) -> T:
    """Run ``operation`` inside one unit of work and return its result.

    With ``retry_on_conflict`` a ConflictError from the first run is
    retried once in a fresh unit (fresh reads).  A second conflict is
    surfaced to the caller.
    """
    runs = 2 if retry_on_conflict else 1
    for run in range(1, runs + 1):
        try:
            async with locks.hold(lock_key) if lock_key is not None else nullcontext():
                async with open_stores() as stores:
                    return await operation(stores)
        except ConflictError:
            if run == runs:
                if retry_on_conflict:
                    ATTEMPT_CONFLICTS.labels(outcome="surfaced").inc()
                raise
            ATTEMPT_CONFLICTS.labels(outcome="retried").inc()
            logger.info("Conflict on %r, retrying in a fresh unit of work", lock_key)
    raise AssertionError("unreachable")
