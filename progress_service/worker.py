"""Background worker process.

RUN:  python -m progress_service.worker

Same image as the API, different command:
  api:    uvicorn progress_service.main:app --host 0.0.0.0 --port 8000
  worker: python -m progress_service.worker

The worker polls every registered queue round-robin, pops one task at a
time and hands its payload to the queue's handler:

  progress_mutations     run advance/retreat through the completion engine
  certificate_issuance   re-check eligibility and hand off issuance

Mutation outcomes are written to the task tracker so the client that got
202 can find out what happened.  A ProgressError is an expected
rejection (WARNING); anything else is a bug (ERROR with traceback).
Neither stops the loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from progress_service.core.config import SETTINGS
from progress_service.core.logging import setup_logging
from progress_service.core.metrics import (
    CERTIFICATE_ATTEMPTS,
    MUTATION_DURATION,
    PROGRESS_MUTATIONS,
)
from progress_service.middleware.request_context import request_id_var
from progress_service.models.progress import AdvanceCommand, RetreatCommand
from progress_service.repos.progress_repo import progress_repo
from progress_service.services.certificates import check_eligibility
from progress_service.services.completion_engine import completion_engine
from progress_service.services.errors import ProgressError
from progress_service.services.task_queue import (
    CERTIFICATE_QUEUE,
    PROGRESS_MUTATIONS_QUEUE,
    Task,
    task_queue,
)
from progress_service.services.task_tracker import task_tracker

TaskHandler = Callable[[Task], Coroutine[Any, Any, None]]

logger = logging.getLogger("progress_service.worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------


@register_handler(PROGRESS_MUTATIONS_QUEUE)
async def handle_progress_mutation(task: Task) -> None:
    payload = task.payload
    operation = payload.get("operation", "unknown")
    student_id = payload["student_id"]
    course_id = payload["course_id"]
    context = {
        "task_id": task.id,
        "student_id": student_id,
        "course_id": course_id,
        "operation": operation,
    }

    await task_tracker.mark(
        task.id, "running", student_id=student_id, operation=operation
    )
    start = time.perf_counter()
    try:
        if operation == "advance":
            await completion_engine.advance(AdvanceCommand.from_payload(payload))
        elif operation == "retreat":
            await completion_engine.retreat(RetreatCommand.from_payload(payload))
        else:
            raise ValueError(f"unknown progress operation {operation!r}")
    except ProgressError as e:
        PROGRESS_MUTATIONS.labels(operation=operation, outcome=e.code).inc()
        logger.warning(
            "Progress %s rejected: %s",
            operation,
            e,
            extra={**context, "error_code": e.code},
        )
        await task_tracker.mark(
            task.id,
            "failed",
            student_id=student_id,
            operation=operation,
            error_code=e.code,
            detail=str(e),
        )
        return
    except Exception:
        PROGRESS_MUTATIONS.labels(operation=operation, outcome="internal_error").inc()
        logger.exception("Progress %s crashed", operation, extra=context)
        await task_tracker.mark(
            task.id,
            "failed",
            student_id=student_id,
            operation=operation,
            error_code="internal_error",
        )
        return
    finally:
        MUTATION_DURATION.labels(operation=operation).observe(
            time.perf_counter() - start
        )

    PROGRESS_MUTATIONS.labels(operation=operation, outcome="ok").inc()
    await task_tracker.mark(
        task.id, "succeeded", student_id=student_id, operation=operation
    )


@register_handler(CERTIFICATE_QUEUE)
async def handle_certificate_issuance(task: Task) -> None:
    """Decide whether the student has earned a certificate.

    The rate in the payload is the one the engine saw; the record is
    re-read so a retreat queued in between is honored.
    """
    payload = task.payload
    student_id = payload["student_id"]
    course_id = payload["course_id"]
    context = {"task_id": task.id, "student_id": student_id, "course_id": course_id}

    record = await progress_repo.get(student_id, course_id)
    if not check_eligibility(record):
        CERTIFICATE_ATTEMPTS.labels(result="ineligible").inc()
        logger.info(
            "No certificate for student=%s course=%s rate=%s",
            student_id,
            course_id,
            None if record is None else record.completion_rate,
            extra=context,
        )
        return

    CERTIFICATE_ATTEMPTS.labels(result="eligible").inc()
    logger.info(
        "Certificate requested for %s (student=%s course=%s)",
        payload.get("student_name", "Student"),
        student_id,
        course_id,
        extra=context,
    )


# ---------------------------------------------------------------------------
# Dispatch and loop
# ---------------------------------------------------------------------------


async def process(task: Task) -> None:
    """Run one task under the request id that enqueued it, if any."""
    token = request_id_var.set(task.payload.get("request_id") or task.id)
    try:
        await HANDLERS[task.queue](task)
        logger.info("Task %s on [%s] completed", task.id, task.queue)
    except Exception:
        # At-most-once delivery: a failed task is logged and dropped.
        logger.exception("Task %s on [%s] failed", task.id, task.queue)
    finally:
        request_id_var.reset(token)


async def drain(queues: list[str] | None = None) -> int:
    """Process queued tasks until every queue is empty.  Returns the count.

    For in-process use (tests, one-shot scripts).  Certificate tasks
    enqueued while draining mutations are drained too.
    """
    names = queues or list(HANDLERS)
    processed = 0
    while True:
        progressed = False
        for queue_name in names:
            # BRPOP with timeout=0 blocks forever, so only pop non-empty queues.
            if await task_queue.queue_length(queue_name) == 0:
                continue
            task = await task_queue.dequeue(queue_name, timeout=1)
            if task is None:
                continue
            await process(task)
            processed += 1
            progressed = True
        if not progressed:
            return processed


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)

    while True:
        for queue_name in queues:
            task = await task_queue.dequeue(queue_name, timeout=1)
            if task is None:
                continue
            await process(task)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
