from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from progress_service.services.task_queue import PROGRESS_MUTATIONS_QUEUE, task_queue
from tests.conftest import COURSE_ID, auth, enroll, seed_course


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    resp = client.get("/health")
    uuid.UUID(resp.headers["x-request-id"])


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "req-abc"})
    assert resp.headers.get("x-request-id") == "req-abc"


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    resp = client.get(f"/v1/progress/courses/{COURSE_ID}")
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_request_id_travels_with_queued_mutation(
    client: TestClient, token: str
) -> None:
    seed_course()
    enroll()
    client.post(
        "/v1/progress/topics",
        json={"course_id": COURSE_ID, "new_completed_topic_ids": ["t1"]},
        headers={**auth(token), "X-Request-ID": "req-trace-1"},
    )
    queued = task_queue._queues[PROGRESS_MUTATIONS_QUEUE][0]  # type: ignore[union-attr]
    assert queued.payload["request_id"] == "req-trace-1"
