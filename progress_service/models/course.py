from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Lesson:
    id: str
    topic_ids: tuple[str, ...] = ()  # ordered, no duplicates

    @property
    def is_standalone(self) -> bool:
        return not self.topic_ids


@dataclass(frozen=True, slots=True)
class CourseStructure:
    """Read-only snapshot of a course's lessons and their topics.

    Supplied by the content store; the completion engine never writes it.
    """

    course_id: str
    lessons: tuple[Lesson, ...] = ()
    # Derived lookups, built once per snapshot.
    _lessons_by_id: dict[str, Lesson] = field(
        init=False, repr=False, compare=False
    )
    _lesson_by_topic: dict[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "_lessons_by_id", {lesson.id: lesson for lesson in self.lessons}
        )
        object.__setattr__(
            self,
            "_lesson_by_topic",
            {t: lesson.id for lesson in self.lessons for t in lesson.topic_ids},
        )

    @property
    def total_lessons(self) -> int:
        return len(self.lessons)

    @property
    def total_topics(self) -> int:
        return len(self._lesson_by_topic)

    @property
    def lesson_ids(self) -> frozenset[str]:
        return frozenset(self._lessons_by_id)

    @property
    def topic_ids(self) -> frozenset[str]:
        return frozenset(self._lesson_by_topic)

    def get_lesson(self, lesson_id: str) -> Lesson | None:
        return self._lessons_by_id.get(lesson_id)

    def lesson_for_topic(self, topic_id: str) -> str | None:
        return self._lesson_by_topic.get(topic_id)

    @staticmethod
    def build(course_id: str, lessons: dict[str, list[str]]) -> CourseStructure:
        """Convenience constructor: ``{lesson_id: [topic_id, ...]}`` in order."""
        return CourseStructure(
            course_id=course_id,
            lessons=tuple(
                Lesson(id=lesson_id, topic_ids=tuple(topic_ids))
                for lesson_id, topic_ids in lessons.items()
            ),
        )
