"""PostgreSQL implementation of CourseStructureRepo."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progress_service.db.tables import CourseRow, LessonRow, TopicRow
from progress_service.models.course import CourseStructure, Lesson


class PgCourseStructureRepo:
    """Satisfies the CourseStructureRepo Protocol using PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, course_id: str) -> CourseStructure | None:
        async with self._session_factory() as session:
            exists = await session.scalar(
                select(CourseRow.id).where(CourseRow.id == course_id)
            )
            if exists is None:
                return None

            stmt = (
                select(LessonRow.id, TopicRow.id)
                .select_from(LessonRow)
                .outerjoin(TopicRow, TopicRow.lesson_id == LessonRow.id)
                .where(LessonRow.course_id == course_id)
                .order_by(LessonRow.position, LessonRow.id, TopicRow.position)
            )
            rows = (await session.execute(stmt)).all()

        topics_by_lesson: dict[str, list[str]] = {}
        for lesson_id, topic_id in rows:
            topics = topics_by_lesson.setdefault(lesson_id, [])
            if topic_id is not None:
                topics.append(topic_id)

        return CourseStructure(
            course_id=course_id,
            lessons=tuple(
                Lesson(id=lesson_id, topic_ids=tuple(topic_ids))
                for lesson_id, topic_ids in topics_by_lesson.items()
            ),
        )
