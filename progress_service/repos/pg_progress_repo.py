"""PostgreSQL implementation of ProgressRepo.

Writes are conditional on the ``version`` column so two workers racing
on the same (student, course) cannot silently overwrite each other:
the loser sees zero affected rows and raises ConcurrentUpdateError,
and the completion engine re-reads and recomputes.
"""

from __future__ import annotations

import time

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progress_service.db.tables import ProgressRow
from progress_service.models.progress import ProgressRecord
from progress_service.services.errors import ConcurrentUpdateError


class PgProgressRepo:
    """Satisfies the ProgressRepo Protocol using PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, student_id: str, course_id: str) -> ProgressRecord | None:
        stmt = select(ProgressRow).where(
            ProgressRow.student_id == student_id,
            ProgressRow.course_id == course_id,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_record(row)

    async def save(
        self, record: ProgressRecord, *, expected_version: int | None
    ) -> ProgressRecord:
        now = int(time.time())
        new_version = (expected_version or 0) + 1
        values = {
            "completed_lesson_ids": list(record.completed_lesson_ids),
            "completed_topic_ids": list(record.completed_topic_ids),
            "completed_lessons": record.completed_lessons,
            "total_lessons": record.total_lessons,
            "total_topics": record.total_topics,
            "completion_rate": record.completion_rate,
            "version": new_version,
            "updated_at": now,
        }

        if expected_version is None:
            stmt = (
                insert(ProgressRow)
                .values(
                    student_id=record.student_id,
                    course_id=record.course_id,
                    **values,
                )
                .on_conflict_do_nothing(
                    index_elements=[ProgressRow.student_id, ProgressRow.course_id]
                )
            )
        else:
            stmt = (
                update(ProgressRow)
                .where(
                    ProgressRow.student_id == record.student_id,
                    ProgressRow.course_id == record.course_id,
                    ProgressRow.version == expected_version,
                )
                .values(**values)
            )

        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)

        if result.rowcount == 0:
            raise ConcurrentUpdateError(
                f"progress ({record.student_id}, {record.course_id}) changed "
                f"since version {expected_version}"
            )

        return ProgressRecord(
            student_id=record.student_id,
            course_id=record.course_id,
            completed_lesson_ids=record.completed_lesson_ids,
            completed_topic_ids=record.completed_topic_ids,
            completed_lessons=record.completed_lessons,
            total_lessons=record.total_lessons,
            total_topics=record.total_topics,
            completion_rate=record.completion_rate,
            version=new_version,
            updated_at=now,
        )

    async def delete(self, student_id: str, course_id: str) -> bool:
        stmt = delete(ProgressRow).where(
            ProgressRow.student_id == student_id,
            ProgressRow.course_id == course_id,
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
        return result.rowcount > 0


def _row_to_record(row: ProgressRow) -> ProgressRecord:
    return ProgressRecord(
        student_id=row.student_id,
        course_id=row.course_id,
        completed_lesson_ids=tuple(row.completed_lesson_ids or ()),
        completed_topic_ids=tuple(row.completed_topic_ids or ()),
        completed_lessons=row.completed_lessons,
        total_lessons=row.total_lessons,
        total_topics=row.total_topics,
        completion_rate=row.completion_rate,
        version=row.version,
        updated_at=row.updated_at,
    )
