from __future__ import annotations

import asyncio

from progress_service.services.task_tracker import InMemoryTaskTracker


def test_mark_creates_then_updates_status() -> None:
    tracker = InMemoryTaskTracker()
    asyncio.run(tracker.mark("t1", "queued", student_id="s1", operation="advance"))
    asyncio.run(
        tracker.mark(
            "t1",
            "failed",
            student_id="s1",
            operation="advance",
            error_code="incomplete_dependency",
            detail="cannot complete lesson A",
        )
    )

    record = asyncio.run(tracker.get("t1"))
    assert record is not None
    assert record.status == "failed"
    assert record.error_code == "incomplete_dependency"
    assert record.student_id == "s1"


def test_later_status_clears_stale_error() -> None:
    tracker = InMemoryTaskTracker()
    asyncio.run(
        tracker.mark("t1", "failed", student_id="s1", operation="retreat", error_code="x")
    )
    asyncio.run(tracker.mark("t1", "succeeded", student_id="s1", operation="retreat"))
    record = asyncio.run(tracker.get("t1"))
    assert record.error_code is None  # type: ignore[union-attr]


def test_unknown_task_is_none() -> None:
    assert asyncio.run(InMemoryTaskTracker().get("missing")) is None


def test_finished_history_is_bounded_but_pending_tasks_are_kept() -> None:
    tracker = InMemoryTaskTracker(max_finished=2)
    asyncio.run(tracker.mark("pending", "queued", student_id="s1", operation="advance"))
    for i in range(4):
        asyncio.run(
            tracker.mark(f"done-{i}", "succeeded", student_id="s1", operation="advance")
        )

    assert asyncio.run(tracker.get("pending")) is not None
    assert asyncio.run(tracker.get("done-0")) is None
    assert asyncio.run(tracker.get("done-1")) is None
    assert asyncio.run(tracker.get("done-3")) is not None
