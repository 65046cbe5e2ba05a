from __future__ import annotations

import time
from dataclasses import replace
from typing import Protocol

from progress_service.db.engine import async_session_factory
from progress_service.models.progress import ProgressRecord
from progress_service.repos.pg_progress_repo import PgProgressRepo
from progress_service.services.errors import ConcurrentUpdateError


class ProgressRepo(Protocol):
    async def get(self, student_id: str, course_id: str) -> ProgressRecord | None: ...

    async def save(
        self, record: ProgressRecord, *, expected_version: int | None
    ) -> ProgressRecord:
        """Compare-and-swap write.

        ``expected_version=None`` inserts and requires that no record exists;
        otherwise the stored version must equal ``expected_version``.
        Returns the stored record with its new version.
        Raises ConcurrentUpdateError when the precondition fails.
        """
        ...

    async def delete(self, student_id: str, course_id: str) -> bool: ...


class InMemoryProgressRepo:
    def __init__(self) -> None:
        self._records: dict[tuple[str, str], ProgressRecord] = {}

    async def get(self, student_id: str, course_id: str) -> ProgressRecord | None:
        return self._records.get((student_id, course_id))

    async def save(
        self, record: ProgressRecord, *, expected_version: int | None
    ) -> ProgressRecord:
        key = (record.student_id, record.course_id)
        current = self._records.get(key)
        current_version = None if current is None else current.version
        if current_version != expected_version:
            raise ConcurrentUpdateError(
                f"progress {key} is at version {current_version}, "
                f"expected {expected_version}"
            )

        stored = replace(
            record,
            version=(expected_version or 0) + 1,
            updated_at=int(time.time()),
        )
        self._records[key] = stored
        return stored

    async def delete(self, student_id: str, course_id: str) -> bool:
        return self._records.pop((student_id, course_id), None) is not None


if async_session_factory is not None:
    progress_repo: ProgressRepo = PgProgressRepo(async_session_factory)
else:
    progress_repo = InMemoryProgressRepo()
