from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import COURSE_ID, auth, enroll, seed_course


def test_health_without_backing_services(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["checks"] == {"redis": "not_configured", "database": "not_configured"}
    assert body["queues"] == {"progress_mutations": 0, "certificate_issuance": 0}


def test_health_reports_queue_backlog(client: TestClient, token: str) -> None:
    seed_course()
    enroll()
    client.post(
        "/v1/progress/topics",
        json={"course_id": COURSE_ID, "new_completed_topic_ids": ["t1"]},
        headers=auth(token),
    )
    assert client.get("/health").json()["queues"]["progress_mutations"] == 1


def test_ready_without_backing_services(client: TestClient) -> None:
    assert client.get("/ready").status_code == 200


def test_metrics_endpoint_exposes_progress_series(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "http_requests_total" in resp.text
    assert "progress_mutations_total" in resp.text
