"""Completion engine: validates and applies progress transitions.

ADVANCE (mark complete) has two shapes:

  standalone   ``standalone_lesson_id`` + ``is_lesson_completed``: complete
               one lesson directly.  A lesson with topics qualifies only
               once every one of its topics is already complete.
  topic-driven union the supplied topic ids into the record; with
               ``is_lesson_completed`` also complete every lesson that owns
               a supplied topic, provided all of that lesson's topics are
               now complete.  One unqualified lesson fails the whole call.

RETREAT (mark incomplete) reopens lessons (cascading to their topics)
and/or topics.  It is refused once the record has reached the ceiling,
and a topic cannot be reopened while its lesson is still complete.

Every write is all-or-nothing and goes through ``_write``: read the
record, compute the next state, compare-and-swap it into the store.  A
concurrent write to the same (student, course) makes the swap fail; the
engine then re-reads and recomputes, up to ``max_write_attempts`` times.
Validation failures are raised before anything is written.

After a successful write the student's cached progress and
enrolled-course listings are invalidated; after a successful advance the
certificate trigger is called.  Both are best-effort.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from progress_service.core.config import SETTINGS
from progress_service.core.metrics import PROGRESS_WRITE_CONFLICTS
from progress_service.models.course import CourseStructure
from progress_service.models.progress import (
    AdvanceCommand,
    ProgressRecord,
    RetreatCommand,
    enrolled_courses_group,
    progress_cache_key,
)
from progress_service.repos.course_structure_repo import (
    CourseStructureRepo,
    course_structure_repo,
)
from progress_service.repos.progress_repo import ProgressRepo, progress_repo
from progress_service.services.cache import CacheInvalidator, cache_service
from progress_service.services.certificates import (
    CertificateTrigger,
    certificate_trigger,
)
from progress_service.services.errors import (
    ConcurrentUpdateError,
    CourseLockedError,
    CourseNotFoundError,
    IncompleteDependencyError,
    LessonAlreadyCompleteError,
    NoProgressRecordError,
    UnknownLessonError,
    UnknownTopicError,
)

logger = logging.getLogger(__name__)

Transition = Callable[[ProgressRecord], ProgressRecord]


class CompletionEngine:
    def __init__(
        self,
        *,
        progress: ProgressRepo,
        courses: CourseStructureRepo,
        cache: CacheInvalidator,
        certificates: CertificateTrigger,
        max_write_attempts: int = 3,
    ) -> None:
        self._progress = progress
        self._courses = courses
        self._cache = cache
        self._certificates = certificates
        self._max_write_attempts = max_write_attempts

    async def advance(self, cmd: AdvanceCommand) -> ProgressRecord:
        course = await self._load_course(cmd.course_id)

        if cmd.is_standalone:
            lesson_id = cmd.standalone_lesson_id or ""

            def transition(base: ProgressRecord) -> ProgressRecord:
                return complete_standalone_lesson(course, base, lesson_id)

        else:
            topic_ids = validate_topic_ids(course, cmd.new_completed_topic_ids)
            is_lesson_completed = cmd.is_lesson_completed

            def transition(base: ProgressRecord) -> ProgressRecord:
                return complete_topics(course, base, topic_ids, is_lesson_completed)

        saved = await self._write(
            cmd.student_id, cmd.course_id, "advance", transition, require_existing=False
        )
        logger.info(
            "Progress advanced student=%s course=%s lessons=%d/%d rate=%.2f",
            saved.student_id,
            saved.course_id,
            saved.completed_lessons,
            saved.total_lessons,
            saved.completion_rate,
            extra={"student_id": saved.student_id, "course_id": saved.course_id},
        )

        await self._invalidate_caches(cmd.student_id, cmd.course_id)
        await self._attempt_certificate(cmd, saved.completion_rate)
        return saved

    async def retreat(self, cmd: RetreatCommand) -> ProgressRecord:
        course = await self._load_course(cmd.course_id)

        def transition(base: ProgressRecord) -> ProgressRecord:
            return reopen(course, base, cmd.lesson_ids or (), cmd.topic_ids or ())

        saved = await self._write(
            cmd.student_id, cmd.course_id, "retreat", transition, require_existing=True
        )
        logger.info(
            "Progress retreated student=%s course=%s lessons=%d/%d rate=%.2f",
            saved.student_id,
            saved.course_id,
            saved.completed_lessons,
            saved.total_lessons,
            saved.completion_rate,
            extra={"student_id": saved.student_id, "course_id": saved.course_id},
        )

        await self._invalidate_caches(cmd.student_id, cmd.course_id)
        return saved

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load_course(self, course_id: str) -> CourseStructure:
        course = await self._courses.get(course_id)
        if course is None:
            raise CourseNotFoundError(course_id)
        return course

    async def _write(
        self,
        student_id: str,
        course_id: str,
        operation: str,
        transition: Transition,
        *,
        require_existing: bool,
    ) -> ProgressRecord:
        for attempt in range(1, self._max_write_attempts + 1):
            current = await self._progress.get(student_id, course_id)
            if current is None:
                if require_existing:
                    raise NoProgressRecordError(student_id, course_id)
                base = ProgressRecord.empty(student_id, course_id)
            else:
                base = current

            updated = transition(base)
            try:
                return await self._progress.save(
                    updated,
                    expected_version=None if current is None else current.version,
                )
            except ConcurrentUpdateError:
                PROGRESS_WRITE_CONFLICTS.labels(operation=operation).inc()
                logger.info(
                    "Version conflict on %s student=%s course=%s attempt=%d/%d",
                    operation,
                    student_id,
                    course_id,
                    attempt,
                    self._max_write_attempts,
                )

        raise ConcurrentUpdateError(
            f"{operation} for ({student_id}, {course_id}) lost "
            f"{self._max_write_attempts} consecutive write races"
        )

    async def _invalidate_caches(self, student_id: str, course_id: str) -> None:
        # The write is already committed; each entry that cannot be dropped
        # expires via TTL, and one failure must not skip the other.
        key = progress_cache_key(student_id, course_id)
        try:
            await self._cache.invalidate(key)
        except Exception:
            logger.exception(
                "Cache invalidation failed key=%s",
                key,
                extra={"student_id": student_id, "course_id": course_id},
            )

        group = enrolled_courses_group(student_id)
        try:
            await self._cache.invalidate_group(group)
        except Exception:
            logger.exception(
                "Cache group invalidation failed group=%s",
                group,
                extra={"student_id": student_id, "course_id": course_id},
            )

    async def _attempt_certificate(self, cmd: AdvanceCommand, rate: float) -> None:
        try:
            await self._certificates.attempt(
                cmd.student_id, cmd.course_id, rate, cmd.student_name
            )
        except Exception:
            # The advance is already committed.
            logger.exception(
                "Certificate trigger failed student=%s course=%s",
                cmd.student_id,
                cmd.course_id,
                extra={"student_id": cmd.student_id, "course_id": cmd.course_id},
            )


# ---------------------------------------------------------------------------
# Transitions (pure: structure + current record in, next record out)
# ---------------------------------------------------------------------------


def validate_topic_ids(
    course: CourseStructure, topic_ids: Iterable[str | None]
) -> tuple[str, ...]:
    """Drop null placeholders and duplicates; reject ids outside the course."""
    supplied = _unique(t for t in topic_ids if t is not None)
    known = course.topic_ids
    unknown = [t for t in supplied if t not in known]
    if unknown:
        raise UnknownTopicError(unknown)
    return supplied


def complete_standalone_lesson(
    course: CourseStructure, base: ProgressRecord, lesson_id: str
) -> ProgressRecord:
    lesson = course.get_lesson(lesson_id)
    if lesson is None:
        raise UnknownLessonError([lesson_id])

    done = set(base.completed_topic_ids)
    missing = [t for t in lesson.topic_ids if t not in done]
    if missing:
        raise IncompleteDependencyError(lesson.id, missing)

    return base.with_completions(
        lesson_ids=_unique((*base.completed_lesson_ids, lesson.id)),
        topic_ids=base.completed_topic_ids,
        total_lessons=course.total_lessons,
        total_topics=course.total_topics,
    )


def complete_topics(
    course: CourseStructure,
    base: ProgressRecord,
    topic_ids: tuple[str, ...],
    is_lesson_completed: bool,
) -> ProgressRecord:
    topics = _unique((*base.completed_topic_ids, *topic_ids))
    lessons = base.completed_lesson_ids

    if is_lesson_completed and topic_ids:
        done = set(topics)
        already = set(lessons)
        newly_completed: list[str] = []
        for lesson_id in _unique(course.lesson_for_topic(t) for t in topic_ids):
            if lesson_id is None or lesson_id in already:
                continue
            lesson = course.get_lesson(lesson_id)
            if lesson is None:
                continue
            missing = [t for t in lesson.topic_ids if t not in done]
            if missing:
                raise IncompleteDependencyError(lesson_id, missing)
            newly_completed.append(lesson_id)
        lessons = _unique((*lessons, *newly_completed))

    return base.with_completions(
        lesson_ids=lessons,
        topic_ids=topics,
        total_lessons=course.total_lessons,
        total_topics=course.total_topics,
    )


def reopen(
    course: CourseStructure,
    base: ProgressRecord,
    lesson_ids: Iterable[str],
    topic_ids: Iterable[str],
) -> ProgressRecord:
    if base.is_locked:
        raise CourseLockedError(base.completion_rate)

    lessons = base.completed_lesson_ids
    topics = base.completed_topic_ids

    reopened_lessons = _unique(lesson_ids)
    if reopened_lessons:
        known = course.lesson_ids
        unknown = [lesson_id for lesson_id in reopened_lessons if lesson_id not in known]
        if unknown:
            raise UnknownLessonError(unknown)

        lesson_set = set(reopened_lessons)
        cascade = {
            t
            for lesson_id in reopened_lessons
            for t in course.get_lesson(lesson_id).topic_ids  # type: ignore[union-attr]
        }
        lessons = tuple(lesson_id for lesson_id in lessons if lesson_id not in lesson_set)
        topics = tuple(t for t in topics if t not in cascade)

    reopened_topics = _unique(topic_ids)
    if reopened_topics:
        known = course.topic_ids
        unknown = [t for t in reopened_topics if t not in known]
        if unknown:
            raise UnknownTopicError(unknown)

        still_complete = set(lessons)
        blocked = [
            t for t in reopened_topics if course.lesson_for_topic(t) in still_complete
        ]
        if blocked:
            raise LessonAlreadyCompleteError(blocked)

        topic_set = set(reopened_topics)
        topics = tuple(t for t in topics if t not in topic_set)

    return base.with_completions(
        lesson_ids=lessons,
        topic_ids=topics,
        total_lessons=course.total_lessons,
        total_topics=course.total_topics,
    )


def _unique(items: Iterable) -> tuple:
    """Order-preserving de-duplication."""
    return tuple(dict.fromkeys(items))


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

completion_engine = CompletionEngine(
    progress=progress_repo,
    courses=course_structure_repo,
    cache=cache_service,
    certificates=certificate_trigger,
    max_write_attempts=SETTINGS.progress_max_write_attempts,
)
