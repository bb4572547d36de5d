"""Redis client for the background task queues.

Only rollup and certificate tasks go through Redis; tracking state is in
PostgreSQL. Without REDIS_URL ``redis_pool`` is None and
services/task_queue.py keeps its queues in process memory.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from lms_tracking.core.config import SETTINGS

logger = logging.getLogger(__name__)

redis_pool: aioredis.Redis | None = None  # type: ignore[type-arg]
if SETTINGS.redis_url:
    redis_pool = aioredis.from_url(
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
        # must outlast the worker's BRPOP wait
        socket_timeout=SETTINGS.store_timeout_seconds + 5,
    )


@asynccontextmanager
async def lifespan_redis():
    """Ping Redis at start-up and close the pool at shutdown.

    A failed ping is logged and the app still starts: inline and detached
    rollups work without Redis.
    """
    if redis_pool is None:
        logger.info("REDIS_URL unset, task queues are in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
    except RedisError:
        logger.exception("Redis unreachable at start-up; queued work will fail")
        yield
        return

    logger.info("Redis task queue connected")
    try:
        yield
    finally:
        await redis_pool.aclose()
        logger.info("Redis pool closed")
