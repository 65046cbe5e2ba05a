"""Student progress endpoints.

Mutations are acknowledged before they run:

  Client -> POST /v1/progress/topics | /v1/progress/incomplete
  -> validate token, check enrollment (403 if not enrolled)
  -> mark task "queued", enqueue command on progress_mutations
  -> 202 Accepted {accepted, task_id}
  ... worker -> completion engine -> store, cache invalidation, certificate

A rejected mutation is NOT reported on the request that carried it.  The
client re-reads progress, or polls GET /v1/progress/tasks/{task_id}.

GET /v1/progress/courses/{course_id} is read-through cached under
``course_progress:{student}:{course}``; the engine invalidates that key
on every successful write.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from progress_service.api.dependencies import (
    ensure_enrolled,
    require_enrolled_in_path_course,
    require_user,
)
from progress_service.core.config import SETTINGS
from progress_service.middleware.request_context import request_id_var
from progress_service.models.principal import Principal
from progress_service.models.progress import (
    AdvanceCommand,
    RetreatCommand,
    progress_cache_key,
)
from progress_service.repos.progress_repo import progress_repo
from progress_service.services.cache import cache_service
from progress_service.services.task_queue import PROGRESS_MUTATIONS_QUEUE, task_queue
from progress_service.services.task_tracker import task_tracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/progress", tags=["progress"])


class AdvanceIn(BaseModel):
    course_id: str = Field(min_length=1)
    # null entries are accepted and ignored; clients send them for
    # standalone lessons that have no topic to report.
    new_completed_topic_ids: list[str | None] = Field(default_factory=list)
    is_lesson_completed: bool = False
    standalone_lesson_id: str | None = None


class RetreatIn(BaseModel):
    course_id: str = Field(min_length=1)
    topic_ids: list[str] | None = None
    lesson_ids: list[str] | None = None

    @model_validator(mode="after")
    def _require_target(self) -> RetreatIn:
        if self.topic_ids is None and self.lesson_ids is None:
            raise ValueError("Either topic_ids or lesson_ids must be provided")
        return self


class AcceptedOut(BaseModel):
    accepted: bool = True
    task_id: str


class ProgressOut(BaseModel):
    course_id: str
    completed_lessons: int = 0
    total_lessons: int = 0
    completed_lesson_ids: list[str] = Field(default_factory=list)
    completed_topic_ids: list[str] = Field(default_factory=list)
    total_topics: int = 0
    completion_rate: float = 0.0
    updated_at: int | None = None


class TaskStatusOut(BaseModel):
    task_id: str
    operation: str
    status: str
    error_code: str | None = None
    detail: str | None = None
    updated_at: float


# ---------------------------------------------------------------------------
# POST /v1/progress/topics: advance
# ---------------------------------------------------------------------------


@router.post(
    "/topics",
    response_model=AcceptedOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def advance_progress(
    body: AdvanceIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> AcceptedOut:
    await ensure_enrolled(principal, body.course_id)

    command = AdvanceCommand(
        student_id=principal.user_id,
        student_name=principal.name,
        course_id=body.course_id,
        new_completed_topic_ids=tuple(body.new_completed_topic_ids),
        is_lesson_completed=body.is_lesson_completed,
        standalone_lesson_id=body.standalone_lesson_id,
    )
    return await _accept(command.to_payload(), principal, body.course_id)


# ---------------------------------------------------------------------------
# POST /v1/progress/incomplete: retreat
# ---------------------------------------------------------------------------


@router.post(
    "/incomplete",
    response_model=AcceptedOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retreat_progress(
    body: RetreatIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> AcceptedOut:
    await ensure_enrolled(principal, body.course_id)

    command = RetreatCommand(
        student_id=principal.user_id,
        course_id=body.course_id,
        topic_ids=None if body.topic_ids is None else tuple(body.topic_ids),
        lesson_ids=None if body.lesson_ids is None else tuple(body.lesson_ids),
    )
    return await _accept(command.to_payload(), principal, body.course_id)


async def _accept(payload: dict, principal: Principal, course_id: str) -> AcceptedOut:
    payload["request_id"] = request_id_var.get()
    # Recorded before the enqueue: once queued, a worker may finish the
    # task before this coroutine resumes, and "queued" must not land last.
    task_id = str(uuid.uuid4())
    await task_tracker.mark(
        task_id,
        "queued",
        student_id=principal.user_id,
        operation=payload["operation"],
    )
    task = await task_queue.enqueue(PROGRESS_MUTATIONS_QUEUE, payload, task_id=task_id)
    logger.info(
        "Accepted %s task=%s student=%s course=%s",
        payload["operation"],
        task.id,
        principal.user_id,
        course_id,
        extra={
            "task_id": task.id,
            "student_id": principal.user_id,
            "course_id": course_id,
            "operation": payload["operation"],
        },
    )
    return AcceptedOut(task_id=task.id)


# ---------------------------------------------------------------------------
# GET /v1/progress/courses/{course_id}: read-through cached
# ---------------------------------------------------------------------------


@router.get("/courses/{course_id}", response_model=ProgressOut)
async def get_course_progress(
    course_id: str,
    principal: Annotated[Principal, Depends(require_enrolled_in_path_course)],
) -> ProgressOut:
    """Return the caller's progress, or zeroes if nothing is recorded yet."""
    cache_key = progress_cache_key(principal.user_id, course_id)

    cached = await cache_service.get(cache_key)
    if cached is not None:
        return ProgressOut(**json.loads(cached))

    record = await progress_repo.get(principal.user_id, course_id)
    if record is None:
        out = ProgressOut(course_id=course_id)
    else:
        out = ProgressOut(
            course_id=record.course_id,
            completed_lessons=record.completed_lessons,
            total_lessons=record.total_lessons,
            completed_lesson_ids=list(record.completed_lesson_ids),
            completed_topic_ids=list(record.completed_topic_ids),
            total_topics=record.total_topics,
            completion_rate=record.completion_rate,
            updated_at=record.updated_at,
        )

    await cache_service.set(
        cache_key, out.model_dump_json(), SETTINGS.progress_cache_ttl
    )
    return out


# ---------------------------------------------------------------------------
# GET /v1/progress/tasks/{task_id}: outcome of a detached mutation
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}", response_model=TaskStatusOut)
async def get_task_status(
    task_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> TaskStatusOut:
    record = await task_tracker.get(task_id)
    # Another student's task is reported as missing, not forbidden.
    if record is None or record.student_id != principal.user_id:
        raise HTTPException(status_code=404, detail="task not found")

    return TaskStatusOut(
        task_id=record.task_id,
        operation=record.operation,
        status=record.status,
        error_code=record.error_code,
        detail=record.detail,
        updated_at=record.updated_at,
    )
