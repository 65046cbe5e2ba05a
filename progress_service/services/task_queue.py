"""Task queue decoupling the HTTP acknowledgement from the progress write.

The front door enqueues a mutation and answers 202 straight away; the
worker (``python -m progress_service.worker``) pops it and runs the
completion engine.  Two queues are used:

  progress_mutations     advance/retreat commands from the front door
  certificate_issuance   fire-and-forget requests from the certificate trigger

Redis implementation: LPUSH onto the head, BRPOP from the tail, so each
queue is FIFO.  Delivery is at-most-once: a worker that dies mid-task
loses that task, and the student re-sends the interaction.
"""

from __future__ import annotations

import json
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from progress_service.core.metrics import QUEUE_DEPTH
from progress_service.db.redis import redis_pool

PROGRESS_MUTATIONS_QUEUE = "progress_mutations"
CERTIFICATE_QUEUE = "certificate_issuance"


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of background work.

    id:      also the handle a client polls via /v1/progress/tasks/{id}.
    queue:   which queue (and therefore which handler) it belongs to.
    payload: JSON-serializable data the handler needs.
    """

    id: str
    queue: str
    payload: dict

    def to_json(self) -> str:
        return json.dumps({"id": self.id, "queue": self.queue, "payload": self.payload})

    @staticmethod
    def from_json(raw: str) -> Task:
        return Task(**json.loads(raw))


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(
        self, queue: str, payload: dict, *, task_id: str | None = None
    ) -> Task:
        """Append a task.

        ``task_id`` lets the caller record the task before a worker can
        pick it up; one is generated when omitted.
        """
        ...

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """In-process FIFO queue for dev and tests.

    Only useful when the consumer runs in the same process; tests drain
    it with ``progress_service.worker.drain``.
    """

    def __init__(self) -> None:
        self._queues: dict[str, deque[Task]] = {}

    async def enqueue(
        self, queue: str, payload: dict, *, task_id: str | None = None
    ) -> Task:
        task = Task(id=task_id or str(uuid.uuid4()), queue=queue, payload=payload)
        tasks = self._queues.setdefault(queue, deque())
        tasks.append(task)
        QUEUE_DEPTH.labels(queue_name=queue).set(len(tasks))
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        tasks = self._queues.get(queue)
        if not tasks:
            return None
        task = tasks.popleft()
        QUEUE_DEPTH.labels(queue_name=queue).set(len(tasks))
        return task

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, ()))


class RedisTaskQueue:
    """Redis-backed task queue using LPUSH/BRPOP."""

    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def enqueue(
        self, queue: str, payload: dict, *, task_id: str | None = None
    ) -> Task:
        task = Task(id=task_id or str(uuid.uuid4()), queue=queue, payload=payload)
        depth = await self._redis.lpush(f"{self._PREFIX}{queue}", task.to_json())
        QUEUE_DEPTH.labels(queue_name=queue).set(depth)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        # BRPOP returns None once ``timeout`` seconds pass with nothing queued.
        result = await self._redis.brpop(f"{self._PREFIX}{queue}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        return Task.from_json(task_json)

    async def queue_length(self, queue: str) -> int:
        depth = await self._redis.llen(f"{self._PREFIX}{queue}")
        QUEUE_DEPTH.labels(queue_name=queue).set(depth)
        return depth


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()
