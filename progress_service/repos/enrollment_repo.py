from __future__ import annotations

from typing import Protocol

from progress_service.db.engine import async_session_factory
from progress_service.models.enrollment import Enrollment
from progress_service.repos.pg_enrollment_repo import PgEnrollmentRepo


class EnrollmentRepo(Protocol):
    async def is_enrolled(self, student_id: str, course_id: str) -> bool: ...
    async def add(self, enrollment: Enrollment) -> None: ...
    async def remove(self, student_id: str, course_id: str) -> bool: ...
    async def list_by_student(self, student_id: str) -> list[Enrollment]: ...


class InMemoryEnrollmentRepo:
    def __init__(self) -> None:
        self._enrollments: dict[tuple[str, str], Enrollment] = {}

    async def is_enrolled(self, student_id: str, course_id: str) -> bool:
        return (student_id, course_id) in self._enrollments

    async def add(self, enrollment: Enrollment) -> None:
        key = (enrollment.student_id, enrollment.course_id)
        if key in self._enrollments:
            raise ValueError("already enrolled")
        self._enrollments[key] = enrollment

    async def remove(self, student_id: str, course_id: str) -> bool:
        return self._enrollments.pop((student_id, course_id), None) is not None

    async def list_by_student(self, student_id: str) -> list[Enrollment]:
        return [e for e in self._enrollments.values() if e.student_id == student_id]


if async_session_factory is not None:
    enrollment_repo: EnrollmentRepo = PgEnrollmentRepo(async_session_factory)
else:
    enrollment_repo = InMemoryEnrollmentRepo()
