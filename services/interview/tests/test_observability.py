from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from interview.llm import DisabledLlmClient
from interview.main import create_app

pytestmark = pytest.mark.integration


@pytest.fixture
def client(tmp_path: Path):
    db_path = tmp_path / "interview.sqlite3"
    app = create_app(database_path=str(db_path), llm_client=DisabledLlmClient())
    with TestClient(app) as test_client:
        yield test_client


def test_request_id_header_and_metrics_snapshot(client: TestClient) -> None:
    first = client.get("/health")
    second = client.get("/health")
    unauthorized = client.get("/sessions")
    metrics = client.get("/metrics")

    assert first.status_code == 200
    assert second.status_code == 200
    assert unauthorized.status_code == 401
    assert metrics.status_code == 200

    first_request_id = first.headers.get("x-request-id")
    second_request_id = second.headers.get("x-request-id")
    assert first_request_id
    assert second_request_id
    assert first_request_id != second_request_id

    body = metrics.json()
    assert body["totals"]["requests"] >= 3
    assert body["totals"]["errors"] >= 1
    assert body["routes"]["GET /health"]["count"] >= 2
    assert body["routes"]["GET /sessions"]["4xx"] == 1


def test_metrics_group_paths_by_route_and_count_feedback_sources(client: TestClient) -> None:
    registered = client.post(
        "/auth/register",
        json={"email": "ada@example.com", "name": "Ada", "password": "correct-horse"},
    )
    headers = {"authorization": f"Bearer {registered.json()['token']}"}
    client.get("/sessions/missing-one", headers=headers)
    client.get("/sessions/missing-two", headers=headers)
    client.post(
        "/interview/analyze",
        headers=headers,
        json={"question": "Why us?", "answer": "I like the product.", "category": "general"},
    )

    body = client.get("/metrics").json()
    assert body["routes"]["GET /sessions/{session_id}"]["4xx"] == 2
    assert body["generation"]["feedback"] == {"heuristic": 1}


def test_incoming_request_id_is_preserved(client: TestClient) -> None:
    response = client.get("/health", headers={"x-request-id": "manual-request-id"})
    assert response.status_code == 200
    assert response.headers.get("x-request-id") == "manual-request-id"


def test_uncaught_errors_return_request_id(tmp_path: Path) -> None:
    class ExplodingLlm:
        model_name = "exploding"

        def generate(self, prompt: str) -> str:
            raise ZeroDivisionError("boom")

    app = create_app(database_path=str(tmp_path / "boom.sqlite3"), llm_client=ExplodingLlm())
    with TestClient(app, raise_server_exceptions=False) as client:
        registered = client.post(
            "/auth/register",
            json={"email": "boom@example.com", "name": "Boom", "password": "password123"},
        )
        token = registered.json()["token"]
        response = client.post(
            "/interview/analyze",
            headers={"authorization": f"Bearer {token}", "x-request-id": "req-boom"},
            json={
                "question": "Tell me about yourself.",
                "answer": "I build backend services in Python for a living.",
                "category": "general",
            },
        )

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal Server Error", "request_id": "req-boom"}
    assert response.headers.get("x-request-id") == "req-boom"
