"""Outcome tracking for detached progress mutations.

The client gets 202 before its mutation runs, so a rejected advance
(e.g. a lesson whose topics are not all done) would otherwise be visible
only in server logs.  The worker records each task's status here and
``GET /v1/progress/tasks/{task_id}`` reports it to the task's owner.

Statuses: queued → running → succeeded | failed.  A failed task carries
the ProgressError code (``incomplete_dependency``, ``course_locked``, ...).
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, replace
from typing import Literal, Protocol, runtime_checkable

from progress_service.db.redis import redis_pool

TaskStatus = Literal["queued", "running", "succeeded", "failed"]

_FINISHED: tuple[str, ...] = ("succeeded", "failed")


@dataclass(frozen=True, slots=True)
class TaskRecord:
    task_id: str
    student_id: str
    operation: str
    status: TaskStatus
    updated_at: float
    error_code: str | None = None
    detail: str | None = None


@runtime_checkable
class TaskTracker(Protocol):
    async def mark(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        student_id: str,
        operation: str,
        error_code: str | None = None,
        detail: str | None = None,
    ) -> TaskRecord: ...

    async def get(self, task_id: str) -> TaskRecord | None: ...


class InMemoryTaskTracker:
    """Keeps every unfinished task and the most recent finished ones."""

    def __init__(self, max_finished: int = 100) -> None:
        self._tasks: OrderedDict[str, TaskRecord] = OrderedDict()
        self._max_finished = max_finished

    async def mark(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        student_id: str,
        operation: str,
        error_code: str | None = None,
        detail: str | None = None,
    ) -> TaskRecord:
        existing = self._tasks.pop(task_id, None)
        if existing is None:
            record = TaskRecord(
                task_id=task_id,
                student_id=student_id,
                operation=operation,
                status=status,
                updated_at=time.time(),
                error_code=error_code,
                detail=detail,
            )
        else:
            record = replace(
                existing,
                status=status,
                updated_at=time.time(),
                error_code=error_code,
                detail=detail,
            )
        self._tasks[task_id] = record
        self._evict_finished()
        return record

    async def get(self, task_id: str) -> TaskRecord | None:
        return self._tasks.get(task_id)

    def _evict_finished(self) -> None:
        finished = [k for k, r in self._tasks.items() if r.status in _FINISHED]
        for task_id in finished[: max(0, len(finished) - self._max_finished)]:
            del self._tasks[task_id]


class RedisTaskTracker:
    """One Redis hash per task, expiring a day after its last update."""

    _PREFIX = "task_status:"
    _TTL_SECONDS = 24 * 60 * 60

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def mark(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        student_id: str,
        operation: str,
        error_code: str | None = None,
        detail: str | None = None,
    ) -> TaskRecord:
        record = TaskRecord(
            task_id=task_id,
            student_id=student_id,
            operation=operation,
            status=status,
            updated_at=time.time(),
            error_code=error_code,
            detail=detail,
        )
        key = f"{self._PREFIX}{task_id}"
        # Redis hashes cannot hold None; empty string stands in for "unset".
        mapping = {k: "" if v is None else str(v) for k, v in asdict(record).items()}
        await self._redis.hset(key, mapping=mapping)
        await self._redis.expire(key, self._TTL_SECONDS)
        return record

    async def get(self, task_id: str) -> TaskRecord | None:
        data = await self._redis.hgetall(f"{self._PREFIX}{task_id}")
        if not data:
            return None
        return TaskRecord(
            task_id=data["task_id"],
            student_id=data["student_id"],
            operation=data["operation"],
            status=data["status"],  # type: ignore[arg-type]
            updated_at=float(data["updated_at"]),
            error_code=data.get("error_code") or None,
            detail=data.get("detail") or None,
        )


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    task_tracker: TaskTracker = RedisTaskTracker(redis_pool)
else:
    task_tracker = InMemoryTaskTracker()
