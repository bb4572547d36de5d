"""Queues that move tracking work off the request path.

``progress_rollup`` carries one learner's course recompute when
ROLLUP_MODE=queued. ``certificate_issuance`` receives a task the first
time a course aggregate becomes completed.

In Redis each queue is a list: the API pushes on the left and the worker
pops from the right, which keeps tasks in enqueue order. A task popped
by a worker that then crashes is gone; the next write to that course, or
POST /v1/tracking/recalculate-progress, rebuilds the aggregate.
"""

from __future__ import annotations

import json
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass
from typing import Protocol, runtime_checkable

from lms_tracking.core.metrics import QUEUE_DEPTH
from lms_tracking.db.redis import redis_pool

ROLLUP_QUEUE = "progress_rollup"
CERTIFICATE_QUEUE = "certificate_issuance"


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    queue: str
    payload: dict
    enqueued_at: int = 0

    @staticmethod
    def new(queue: str, payload: dict) -> Task:
        return Task(
            id=str(uuid.uuid4()),
            queue=queue,
            payload=payload,
            enqueued_at=int(time.time()),
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @staticmethod
    def from_json(raw: str | bytes) -> Task:
        return Task(**json.loads(raw))


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """Process-local queues, used when REDIS_URL is unset."""

    def __init__(self) -> None:
        self._queues: dict[str, deque[Task]] = {}

    def _queue(self, name: str) -> deque[Task]:
        return self._queues.setdefault(name, deque())

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task.new(queue, payload)
        pending = self._queue(queue)
        pending.append(task)
        QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        pending = self._queue(queue)
        if not pending:
            return None
        task = pending.popleft()
        QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
        return task

    async def queue_length(self, queue: str) -> int:
        return len(self._queue(queue))


class RedisTaskQueue:
    _KEY_PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    def _key(self, queue: str) -> str:
        return self._KEY_PREFIX + queue

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task.new(queue, payload)
        depth = await self._redis.lpush(self._key(queue), task.to_json())
        QUEUE_DEPTH.labels(queue_name=queue).set(depth)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        """Pop the oldest task, waiting up to ``timeout`` seconds.

        BRPOP reads a zero timeout as "block forever", so ``timeout <= 0``
        uses a plain RPOP instead.
        """
        key = self._key(queue)
        if timeout > 0:
            popped = await self._redis.brpop(key, timeout=timeout)
            raw = popped[1] if popped else None
        else:
            raw = await self._redis.rpop(key)
        return Task.from_json(raw) if raw is not None else None

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(self._key(queue))


task_queue: TaskQueue = (
    RedisTaskQueue(redis_pool) if redis_pool is not None else InMemoryTaskQueue()
)
