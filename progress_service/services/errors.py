"""Progress error taxonomy.

Only NotEnrolledError reaches a client (as a 403 from the front door).
Every other error is raised inside a detached mutation; the worker logs
it and records ``code`` in the task tracker.
"""

from __future__ import annotations


class ProgressError(Exception):
    code = "progress_error"


class NotEnrolledError(ProgressError):
    code = "not_enrolled"

    def __init__(self, student_id: str, course_id: str) -> None:
        super().__init__(f"student {student_id} is not enrolled in course {course_id}")
        self.student_id = student_id
        self.course_id = course_id


class CourseNotFoundError(ProgressError):
    code = "course_not_found"

    def __init__(self, course_id: str) -> None:
        super().__init__(f"course {course_id} not found")
        self.course_id = course_id


class UnknownTopicError(ProgressError):
    code = "unknown_topic"

    def __init__(self, topic_ids: list[str]) -> None:
        super().__init__(f"topics not found in course: {', '.join(topic_ids)}")
        self.topic_ids = topic_ids


class UnknownLessonError(ProgressError):
    code = "unknown_lesson"

    def __init__(self, lesson_ids: list[str]) -> None:
        super().__init__(f"lessons not found in course: {', '.join(lesson_ids)}")
        self.lesson_ids = lesson_ids


class IncompleteDependencyError(ProgressError):
    code = "incomplete_dependency"

    def __init__(self, lesson_id: str, missing_topic_ids: list[str]) -> None:
        super().__init__(
            f"cannot complete lesson {lesson_id}: "
            f"{len(missing_topic_ids)} topic(s) not completed"
        )
        self.lesson_id = lesson_id
        self.missing_topic_ids = missing_topic_ids


class LessonAlreadyCompleteError(ProgressError):
    code = "lesson_already_complete"

    def __init__(self, topic_ids: list[str]) -> None:
        super().__init__(
            "cannot mark topics incomplete while their lesson is completed: "
            + ", ".join(topic_ids)
        )
        self.topic_ids = topic_ids


class CourseLockedError(ProgressError):
    code = "course_locked"

    def __init__(self, completion_rate: float) -> None:
        super().__init__(
            f"progress at {completion_rate:g} has reached the ceiling and is locked"
        )
        self.completion_rate = completion_rate


class NoProgressRecordError(ProgressError):
    code = "no_progress_record"

    def __init__(self, student_id: str, course_id: str) -> None:
        super().__init__(f"no progress recorded for {student_id} in {course_id}")


class ConcurrentUpdateError(ProgressError):
    """The stored record changed between read and write."""

    code = "concurrent_update"
