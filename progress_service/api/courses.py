"""Course enrollment endpoints.

  Client -> POST /v1/courses/{course_id}/enroll
  -> course must exist (404), must not already be enrolled (409)
  -> insert enrollment, drop the enrolled-courses listing cache
  -> 201 Enrolled

Unenrolling also deletes the student's progress record for the course;
re-enrolling starts from zero.
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel

from progress_service.api.dependencies import require_user
from progress_service.core.config import SETTINGS
from progress_service.models.enrollment import Enrollment
from progress_service.models.principal import Principal
from progress_service.models.progress import (
    enrolled_courses_group,
    progress_cache_key,
)
from progress_service.repos.course_structure_repo import course_structure_repo
from progress_service.repos.enrollment_repo import enrollment_repo
from progress_service.repos.progress_repo import progress_repo
from progress_service.services.cache import cache_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/courses", tags=["courses"])


class EnrollmentOut(BaseModel):
    student_id: str
    course_id: str
    enrolled_at: int


class EnrolledCourseOut(BaseModel):
    course_id: str
    enrolled_at: int
    completed_lessons: int
    total_lessons: int
    completion_rate: float


def _enrolled_listing_key(student_id: str) -> str:
    return f"enrolled_courses:{student_id}:all"


@router.get("/enrolled", response_model=list[EnrolledCourseOut])
async def list_enrolled_courses(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[EnrolledCourseOut]:
    cache_key = _enrolled_listing_key(principal.user_id)
    cached = await cache_service.get(cache_key)
    if cached is not None:
        return [EnrolledCourseOut(**item) for item in json.loads(cached)]

    out: list[EnrolledCourseOut] = []
    enrollments = await enrollment_repo.list_by_student(principal.user_id)
    for enrollment in sorted(enrollments, key=lambda e: (e.enrolled_at, e.course_id)):
        record = await progress_repo.get(principal.user_id, enrollment.course_id)
        out.append(
            EnrolledCourseOut(
                course_id=enrollment.course_id,
                enrolled_at=enrollment.enrolled_at,
                completed_lessons=record.completed_lessons if record else 0,
                total_lessons=record.total_lessons if record else 0,
                completion_rate=record.completion_rate if record else 0.0,
            )
        )

    await cache_service.set_in_group(
        cache_key,
        json.dumps([item.model_dump() for item in out]),
        SETTINGS.progress_cache_ttl,
        enrolled_courses_group(principal.user_id),
    )
    return out


@router.post(
    "/{course_id}/enroll",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_in_course(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> EnrollmentOut:
    if await course_structure_repo.get(course_id) is None:
        raise HTTPException(status_code=404, detail="course not found")

    enrollment = Enrollment(
        student_id=principal.user_id,
        course_id=course_id,
        enrolled_at=int(datetime.datetime.now(datetime.UTC).timestamp()),
    )
    try:
        await enrollment_repo.add(enrollment)
    except ValueError:
        raise HTTPException(status_code=409, detail="already enrolled") from None

    await cache_service.invalidate_group(enrolled_courses_group(principal.user_id))
    logger.info(
        "Enrolled student=%s course=%s",
        principal.user_id,
        course_id,
        extra={"student_id": principal.user_id, "course_id": course_id},
    )
    return EnrollmentOut(
        student_id=enrollment.student_id,
        course_id=enrollment.course_id,
        enrolled_at=enrollment.enrolled_at,
    )


@router.delete("/{course_id}/enroll", status_code=status.HTTP_204_NO_CONTENT)
async def unenroll_from_course(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> Response:
    if not await enrollment_repo.remove(principal.user_id, course_id):
        raise HTTPException(status_code=404, detail="not enrolled")

    await progress_repo.delete(principal.user_id, course_id)
    await cache_service.invalidate(progress_cache_key(principal.user_id, course_id))
    await cache_service.invalidate_group(enrolled_courses_group(principal.user_id))
    logger.info(
        "Unenrolled student=%s course=%s",
        principal.user_id,
        course_id,
        extra={"student_id": principal.user_id, "course_id": course_id},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
