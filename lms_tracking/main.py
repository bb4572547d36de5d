from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from lms_tracking.api.health import router as health_router
from lms_tracking.api.metrics_endpoint import router as metrics_router
from lms_tracking.api.reports import router as reports_router
from lms_tracking.api.tracking import router as tracking_router
from lms_tracking.core.config import SETTINGS
from lms_tracking.core.logging import setup_logging
from lms_tracking.db.engine import lifespan_db
from lms_tracking.db.redis import lifespan_redis
from lms_tracking.middleware.metrics import MetricsMiddleware
from lms_tracking.middleware.request_context import (
    RequestContextMiddleware,
    install_log_filter,
)
from lms_tracking.services.rollup_dispatch import rollup_dispatcher

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
install_log_filter()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Teardown runs in reverse order.  Detached rollups are drained first
    # while the database and Redis are still open.
    async with lifespan_db():
        async with lifespan_redis():
            yield
            if rollup_dispatcher.in_flight:
                logger.info(
                    "Waiting for %d detached rollups", rollup_dispatcher.in_flight
                )
            await rollup_dispatcher.drain()


app = FastAPI(
    title="lms-tracking",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last-added runs first: RequestContext (outermost) -> Metrics -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(tracking_router)
app.include_router(reports_router)

logger.info(
    "lms-tracking started  env=%s log_level=%s rollup_mode=%s port=%d",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.rollup_mode,
    SETTINGS.port,
)
