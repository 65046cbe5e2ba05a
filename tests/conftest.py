from __future__ import annotations

import asyncio
import datetime
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from progress_service.main import app
from progress_service.models.course import CourseStructure
from progress_service.models.enrollment import Enrollment
from progress_service.repos.course_structure_repo import course_structure_repo
from progress_service.repos.enrollment_repo import enrollment_repo
from progress_service.repos.progress_repo import progress_repo
from progress_service.services import token_service
from progress_service.services.cache import cache_service
from progress_service.services.task_queue import task_queue
from progress_service.services.task_tracker import task_tracker
from progress_service.worker import drain

# Ensure repo root is on sys.path so `import progress_service` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

COURSE_ID = "course-1"

# Lesson A has two topics, lesson B is standalone.
SAMPLE_COURSE = {"lesson-a": ["t1", "t2"], "lesson-b": []}


@pytest.fixture(autouse=True)
def reset_progress_state() -> None:
    """Clear progress records, course structures and enrollments."""
    progress_repo._records.clear()  # type: ignore[union-attr]
    course_structure_repo._courses.clear()  # type: ignore[union-attr]
    enrollment_repo._enrollments.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache entries and group registries between tests."""
    cache_service._store.clear()  # type: ignore[union-attr]
    cache_service._groups.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues and tracked task outcomes between tests."""
    task_queue._queues.clear()  # type: ignore[union-attr]
    task_tracker._tasks.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "student-1",
    name: str | None = None,
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, name=name, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    return mint_token()


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


def seed_course(
    course_id: str = COURSE_ID, lessons: dict[str, list[str]] | None = None
) -> CourseStructure:
    course = CourseStructure.build(course_id, lessons or SAMPLE_COURSE)
    course_structure_repo.put(course)  # type: ignore[union-attr]
    return course


def enroll(student_id: str = "student-1", course_id: str = COURSE_ID) -> None:
    asyncio.run(
        enrollment_repo.add(
            Enrollment(
                student_id=student_id,
                course_id=course_id,
                enrolled_at=int(datetime.datetime.now(datetime.UTC).timestamp()),
            )
        )
    )


def run_worker() -> int:
    """Process everything queued so far, including follow-up tasks."""
    return asyncio.run(drain())
