from __future__ import annotations

from typing import Protocol

from progress_service.db.engine import async_session_factory
from progress_service.models.course import CourseStructure
from progress_service.repos.pg_course_structure_repo import PgCourseStructureRepo


class CourseStructureRepo(Protocol):
    async def get(self, course_id: str) -> CourseStructure | None: ...


class InMemoryCourseStructureRepo:
    def __init__(self) -> None:
        self._courses: dict[str, CourseStructure] = {}

    async def get(self, course_id: str) -> CourseStructure | None:
        return self._courses.get(course_id)

    def put(self, course: CourseStructure) -> None:
        """Install or replace a course snapshot (dev seeding and tests)."""
        self._courses[course.course_id] = course


if async_session_factory is not None:
    course_structure_repo: CourseStructureRepo = PgCourseStructureRepo(
        async_session_factory
    )
else:
    course_structure_repo = InMemoryCourseStructureRepo()
    # Sample course so the endpoints can be exercised without a database.
    course_structure_repo.put(  # type: ignore[attr-defined]
        CourseStructure.build(
            "intro-course",
            {
                "welcome": [],
                "basics": ["basics-reading", "basics-quiz"],
                "wrap-up": ["wrap-up-project"],
            },
        )
    )
