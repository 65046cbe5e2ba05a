"""Worker dispatch: tracker updates, metrics, certificate follow-ups."""

from __future__ import annotations

import asyncio
import logging

import pytest
from prometheus_client import REGISTRY

from progress_service.models.progress import AdvanceCommand, ProgressRecord
from progress_service.repos.progress_repo import progress_repo
from progress_service.services.task_queue import (
    CERTIFICATE_QUEUE,
    PROGRESS_MUTATIONS_QUEUE,
    Task,
    task_queue,
)
from progress_service.services.task_tracker import task_tracker
from progress_service.worker import (
    HANDLERS,
    drain,
    handle_certificate_issuance,
    process,
)
from tests.conftest import COURSE_ID, seed_course


def _enqueue_advance(**kwargs) -> Task:
    cmd = AdvanceCommand(student_id="student-1", course_id=COURSE_ID, **kwargs)
    task = asyncio.run(task_queue.enqueue(PROGRESS_MUTATIONS_QUEUE, cmd.to_payload()))
    asyncio.run(
        task_tracker.mark(task.id, "queued", student_id="student-1", operation="advance")
    )
    return task


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_handlers_registered_for_both_queues() -> None:
    assert set(HANDLERS) == {PROGRESS_MUTATIONS_QUEUE, CERTIFICATE_QUEUE}


def test_successful_advance_marks_task_and_enqueues_certificate() -> None:
    seed_course()
    task = _enqueue_advance(new_completed_topic_ids=("t1", "t2"), is_lesson_completed=True)
    before = _sample("certificate_attempts_total", {"result": "ineligible"})

    processed = asyncio.run(drain())

    # The mutation plus the certificate follow-up it enqueued.
    assert processed == 2
    assert asyncio.run(task_tracker.get(task.id)).status == "succeeded"  # type: ignore[union-attr]
    # 45 is nowhere near the certificate threshold.
    assert _sample("certificate_attempts_total", {"result": "ineligible"}) == before + 1


def test_rejected_advance_is_logged_with_code(caplog: pytest.LogCaptureFixture) -> None:
    seed_course()
    task = _enqueue_advance(standalone_lesson_id="lesson-a", is_lesson_completed=True)
    before = _sample(
        "progress_mutations_total",
        {"operation": "advance", "outcome": "incomplete_dependency"},
    )

    with caplog.at_level(logging.WARNING, logger="progress_service.worker"):
        asyncio.run(drain([PROGRESS_MUTATIONS_QUEUE]))

    record = asyncio.run(task_tracker.get(task.id))
    assert record.status == "failed"  # type: ignore[union-attr]
    assert record.error_code == "incomplete_dependency"  # type: ignore[union-attr]
    assert any(
        getattr(r, "error_code", None) == "incomplete_dependency" for r in caplog.records
    )
    assert (
        _sample(
            "progress_mutations_total",
            {"operation": "advance", "outcome": "incomplete_dependency"},
        )
        == before + 1
    )
    # No certificate attempt for a rejected advance.
    assert asyncio.run(task_queue.queue_length(CERTIFICATE_QUEUE)) == 0


def test_unknown_operation_fails_task_without_stopping_drain() -> None:
    seed_course()
    bad = asyncio.run(
        task_queue.enqueue(
            PROGRESS_MUTATIONS_QUEUE,
            {"operation": "teleport", "student_id": "student-1", "course_id": COURSE_ID},
        )
    )
    good = _enqueue_advance(new_completed_topic_ids=("t1",))

    asyncio.run(drain([PROGRESS_MUTATIONS_QUEUE]))

    failed = asyncio.run(task_tracker.get(bad.id))
    assert failed.status == "failed"  # type: ignore[union-attr]
    assert failed.error_code == "internal_error"  # type: ignore[union-attr]
    assert asyncio.run(task_tracker.get(good.id)).status == "succeeded"  # type: ignore[union-attr]


def test_certificate_handler_counts_eligible_record() -> None:
    asyncio.run(
        progress_repo.save(
            ProgressRecord("student-1", COURSE_ID, completion_rate=100.0),
            expected_version=None,
        )
    )
    before = _sample("certificate_attempts_total", {"result": "eligible"})

    task = Task(
        id="cert-1",
        queue=CERTIFICATE_QUEUE,
        payload={
            "student_id": "student-1",
            "course_id": COURSE_ID,
            "completion_rate": 100.0,
            "student_name": "Ada",
        },
    )
    asyncio.run(handle_certificate_issuance(task))

    assert _sample("certificate_attempts_total", {"result": "eligible"}) == before + 1


def test_process_swallows_handler_crash(caplog: pytest.LogCaptureFixture) -> None:
    task = Task(id="cert-2", queue=CERTIFICATE_QUEUE, payload={})
    with caplog.at_level(logging.ERROR, logger="progress_service.worker"):
        asyncio.run(process(task))
    assert any("cert-2" in r.getMessage() for r in caplog.records)
