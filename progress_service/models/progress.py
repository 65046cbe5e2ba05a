from __future__ import annotations

from dataclasses import asdict, dataclass

# The engine never reports more than this.  The remaining points are
# awarded by processes outside this service (e.g. assignment approval).
COMPLETION_CEILING = 90.0


def compute_completion_rate(completed_lessons: int, total_lessons: int) -> float:
    """``min(completed / total * 90, 90)``; 0.0 for a course without lessons."""
    if total_lessons <= 0:
        return 0.0
    return min(completed_lessons / total_lessons * COMPLETION_CEILING, COMPLETION_CEILING)


def progress_cache_key(student_id: str, course_id: str) -> str:
    return f"course_progress:{student_id}:{course_id}"


def enrolled_courses_group(student_id: str) -> str:
    return f"enrolled_courses:{student_id}"


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    """Per-(student, course) completion state.

    ``completed_lessons`` and ``completion_rate`` are derived from
    ``completed_lesson_ids`` and the structure snapshot; build records
    through ``with_completions`` so they never drift.
    ``version`` is 0 for a record that has never been stored.
    """

    student_id: str
    course_id: str
    completed_lesson_ids: tuple[str, ...] = ()
    completed_topic_ids: tuple[str, ...] = ()
    completed_lessons: int = 0
    total_lessons: int = 0
    total_topics: int = 0
    completion_rate: float = 0.0
    version: int = 0
    updated_at: int | None = None

    @staticmethod
    def empty(student_id: str, course_id: str) -> ProgressRecord:
        return ProgressRecord(student_id=student_id, course_id=course_id)

    @property
    def is_stored(self) -> bool:
        return self.version > 0

    @property
    def is_locked(self) -> bool:
        return self.completion_rate >= COMPLETION_CEILING

    def with_completions(
        self,
        *,
        lesson_ids: tuple[str, ...],
        topic_ids: tuple[str, ...],
        total_lessons: int,
        total_topics: int,
    ) -> ProgressRecord:
        return ProgressRecord(
            student_id=self.student_id,
            course_id=self.course_id,
            completed_lesson_ids=lesson_ids,
            completed_topic_ids=topic_ids,
            completed_lessons=len(lesson_ids),
            total_lessons=total_lessons,
            total_topics=total_topics,
            completion_rate=compute_completion_rate(len(lesson_ids), total_lessons),
            version=self.version,
            updated_at=self.updated_at,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["completed_lesson_ids"] = list(self.completed_lesson_ids)
        data["completed_topic_ids"] = list(self.completed_topic_ids)
        return data


# ---------------------------------------------------------------------------
# Commands: JSON payloads carried from the front door to the worker
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AdvanceCommand:
    student_id: str
    course_id: str
    student_name: str = "Student"
    new_completed_topic_ids: tuple[str | None, ...] = ()
    is_lesson_completed: bool = False
    standalone_lesson_id: str | None = None

    @property
    def is_standalone(self) -> bool:
        return bool(self.standalone_lesson_id) and self.is_lesson_completed

    def to_payload(self) -> dict:
        return {
            "operation": "advance",
            "student_id": self.student_id,
            "student_name": self.student_name,
            "course_id": self.course_id,
            "new_completed_topic_ids": list(self.new_completed_topic_ids),
            "is_lesson_completed": self.is_lesson_completed,
            "standalone_lesson_id": self.standalone_lesson_id,
        }

    @staticmethod
    def from_payload(payload: dict) -> AdvanceCommand:
        return AdvanceCommand(
            student_id=payload["student_id"],
            course_id=payload["course_id"],
            student_name=payload.get("student_name") or "Student",
            new_completed_topic_ids=tuple(payload.get("new_completed_topic_ids") or ()),
            is_lesson_completed=bool(payload.get("is_lesson_completed", False)),
            standalone_lesson_id=payload.get("standalone_lesson_id"),
        )


@dataclass(frozen=True, slots=True)
class RetreatCommand:
    student_id: str
    course_id: str
    topic_ids: tuple[str, ...] | None = None
    lesson_ids: tuple[str, ...] | None = None

    def to_payload(self) -> dict:
        return {
            "operation": "retreat",
            "student_id": self.student_id,
            "course_id": self.course_id,
            "topic_ids": None if self.topic_ids is None else list(self.topic_ids),
            "lesson_ids": None if self.lesson_ids is None else list(self.lesson_ids),
        }

    @staticmethod
    def from_payload(payload: dict) -> RetreatCommand:
        topic_ids = payload.get("topic_ids")
        lesson_ids = payload.get("lesson_ids")
        return RetreatCommand(
            student_id=payload["student_id"],
            course_id=payload["course_id"],
            topic_ids=None if topic_ids is None else tuple(topic_ids),
            lesson_ids=None if lesson_ids is None else tuple(lesson_ids),
        )
