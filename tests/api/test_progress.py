"""Progress endpoints: synchronous checks, detached mutations, cached reads.

Mutations return 202 before the worker runs; tests call ``run_worker``
to drain the in-memory queues and then observe the outcome through the
read endpoint or the task status endpoint.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from progress_service.api import progress as progress_api
from progress_service.services.cache import RedisCacheService
from progress_service.services.task_queue import task_queue
from progress_service.worker import drain
from tests.conftest import COURSE_ID, auth, enroll, mint_token, run_worker, seed_course


def _advance(client: TestClient, token: str, **body):
    return client.post(
        "/v1/progress/topics",
        json={"course_id": COURSE_ID, **body},
        headers=auth(token),
    )


def _retreat(client: TestClient, token: str, **body):
    return client.post(
        "/v1/progress/incomplete",
        json={"course_id": COURSE_ID, **body},
        headers=auth(token),
    )


def _progress(client: TestClient, token: str) -> dict:
    resp = client.get(f"/v1/progress/courses/{COURSE_ID}", headers=auth(token))
    assert resp.status_code == 200
    return resp.json()


def _task(client: TestClient, token: str, task_id: str) -> dict:
    resp = client.get(f"/v1/progress/tasks/{task_id}", headers=auth(token))
    assert resp.status_code == 200
    return resp.json()


# ---- 401 / 403 / 422: answered synchronously ----


def test_advance_rejects_missing_token(client: TestClient) -> None:
    resp = client.post("/v1/progress/topics", json={"course_id": COURSE_ID})
    assert resp.status_code == 401


def test_advance_rejects_garbage_token(client: TestClient) -> None:
    resp = _advance(client, "not-a-jwt")
    assert resp.status_code == 401


def test_advance_requires_enrollment(client: TestClient, token: str) -> None:
    seed_course()
    resp = _advance(client, token, new_completed_topic_ids=["t1"])
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "not_enrolled"


def test_read_requires_enrollment(client: TestClient, token: str) -> None:
    resp = client.get(f"/v1/progress/courses/{COURSE_ID}", headers=auth(token))
    assert resp.status_code == 403


def test_retreat_requires_a_target_list(client: TestClient, token: str) -> None:
    seed_course()
    enroll()
    resp = _retreat(client, token)
    assert resp.status_code == 422


# ---- 202 then worker ----


def test_advance_is_accepted_before_it_runs(client: TestClient, token: str) -> None:
    seed_course()
    enroll()

    resp = _advance(client, token, new_completed_topic_ids=["t1"])

    assert resp.status_code == 202
    body = resp.json()
    assert body["accepted"] is True
    assert _task(client, token, body["task_id"])["status"] == "queued"
    # Nothing has been written yet.
    assert _progress(client, token)["completed_topic_ids"] == []


def test_read_returns_zeroed_default(client: TestClient, token: str) -> None:
    seed_course()
    enroll()
    assert _progress(client, token) == {
        "course_id": COURSE_ID,
        "completed_lessons": 0,
        "total_lessons": 0,
        "completed_lesson_ids": [],
        "completed_topic_ids": [],
        "total_topics": 0,
        "completion_rate": 0.0,
        "updated_at": None,
    }


def test_full_flow_topics_then_standalone(client: TestClient, token: str) -> None:
    seed_course()
    enroll()

    first = _advance(
        client, token, new_completed_topic_ids=["t1", "t2", None], is_lesson_completed=True
    )
    run_worker()
    assert _task(client, token, first.json()["task_id"])["status"] == "succeeded"

    progress = _progress(client, token)
    assert progress["completed_lesson_ids"] == ["lesson-a"]
    assert progress["completion_rate"] == 45.0
    assert progress["total_lessons"] == 2
    assert progress["total_topics"] == 2

    _advance(client, token, standalone_lesson_id="lesson-b", is_lesson_completed=True)
    run_worker()

    progress = _progress(client, token)
    assert progress["completed_lessons"] == 2
    assert progress["completion_rate"] == 90.0


def test_rejected_mutation_is_reported_on_task(client: TestClient, token: str) -> None:
    seed_course()
    enroll()

    resp = _advance(
        client, token, standalone_lesson_id="lesson-a", is_lesson_completed=True
    )
    assert resp.status_code == 202
    run_worker()

    task = _task(client, token, resp.json()["task_id"])
    assert task["status"] == "failed"
    assert task["error_code"] == "incomplete_dependency"
    assert task["operation"] == "advance"
    assert _progress(client, token)["completed_lesson_ids"] == []


def test_retreat_flow(client: TestClient, token: str) -> None:
    seed_course(lessons={"lesson-a": ["t1", "t2"], "lesson-b": [], "lesson-c": []})
    enroll()
    _advance(client, token, new_completed_topic_ids=["t1", "t2"], is_lesson_completed=True)
    run_worker()

    resp = _retreat(client, token, lesson_ids=["lesson-a"])
    assert resp.status_code == 202
    run_worker()

    assert _task(client, token, resp.json()["task_id"])["status"] == "succeeded"
    progress = _progress(client, token)
    assert progress["completed_lesson_ids"] == []
    assert progress["completed_topic_ids"] == []
    assert progress["completion_rate"] == 0.0


def test_retreat_at_ceiling_fails_with_course_locked(
    client: TestClient, token: str
) -> None:
    seed_course()
    enroll()
    _advance(client, token, new_completed_topic_ids=["t1", "t2"], is_lesson_completed=True)
    _advance(client, token, standalone_lesson_id="lesson-b", is_lesson_completed=True)
    run_worker()

    resp = _retreat(client, token, topic_ids=["t1"])
    run_worker()

    assert _task(client, token, resp.json()["task_id"])["error_code"] == "course_locked"
    assert _progress(client, token)["completion_rate"] == 90.0


# ---- read-through cache ----


def test_cached_read_is_invalidated_by_advance(client: TestClient, token: str) -> None:
    seed_course()
    enroll()

    assert _progress(client, token)["completed_topic_ids"] == []  # populates cache
    _advance(client, token, new_completed_topic_ids=["t1"])
    # Still cached until the worker commits.
    assert _progress(client, token)["completed_topic_ids"] == []

    run_worker()
    assert _progress(client, token)["completed_topic_ids"] == ["t1"]


def test_cache_is_per_student(client: TestClient) -> None:
    seed_course()
    enroll("alice")
    enroll("bob")
    alice = mint_token("alice")
    bob = mint_token("bob")

    _advance(client, alice, new_completed_topic_ids=["t1"])
    run_worker()

    assert _progress(client, alice)["completed_topic_ids"] == ["t1"]
    assert _progress(client, bob)["completed_topic_ids"] == []


# ---- fast worker: the task finishes before enqueue returns ----


def test_status_of_task_finished_during_enqueue_is_final(
    client: TestClient, token: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    seed_course()
    enroll()
    enqueue = task_queue.enqueue

    async def enqueue_and_process(queue: str, payload: dict, *, task_id=None):
        task = await enqueue(queue, payload, task_id=task_id)
        await drain([queue])
        return task

    monkeypatch.setattr(task_queue, "enqueue", enqueue_and_process)

    resp = _advance(client, token, new_completed_topic_ids=["t1"])
    assert resp.status_code == 202

    assert _task(client, token, resp.json()["task_id"])["status"] == "succeeded"
    assert _progress(client, token)["completed_topic_ids"] == ["t1"]


def test_rejection_during_enqueue_keeps_failed_status(
    client: TestClient, token: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    seed_course()
    enroll()
    enqueue = task_queue.enqueue

    async def enqueue_and_process(queue: str, payload: dict, *, task_id=None):
        task = await enqueue(queue, payload, task_id=task_id)
        await drain([queue])
        return task

    monkeypatch.setattr(task_queue, "enqueue", enqueue_and_process)

    resp = _advance(
        client, token, standalone_lesson_id="lesson-a", is_lesson_completed=True
    )

    task = _task(client, token, resp.json()["task_id"])
    assert task["status"] == "failed"
    assert task["error_code"] == "incomplete_dependency"


# ---- task status ownership ----


def test_task_status_hidden_from_other_students(client: TestClient) -> None:
    seed_course()
    enroll("alice")
    resp = _advance(client, mint_token("alice"), new_completed_topic_ids=["t1"])
    task_id = resp.json()["task_id"]

    other = client.get(
        f"/v1/progress/tasks/{task_id}", headers=auth(mint_token("mallory"))
    )
    assert other.status_code == 404


def test_unknown_task_is_404(client: TestClient, token: str) -> None:
    resp = client.get("/v1/progress/tasks/does-not-exist", headers=auth(token))
    assert resp.status_code == 404


# ---- cache outage ----


class _UnreachableRedis:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def setex(self, key, ttl, value):
        raise ConnectionError("redis down")


def test_progress_read_served_when_cache_is_down(
    client: TestClient, token: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    seed_course()
    enroll()
    _advance(client, token, new_completed_topic_ids=["t1"])
    run_worker()
    monkeypatch.setattr(
        progress_api, "cache_service", RedisCacheService(_UnreachableRedis())
    )

    resp = client.get(f"/v1/progress/courses/{COURSE_ID}", headers=auth(token))

    assert resp.status_code == 200
    assert resp.json()["completed_topic_ids"] == ["t1"]
