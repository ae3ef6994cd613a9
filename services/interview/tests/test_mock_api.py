from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient
from interview.llm import DisabledLlmClient
from interview.main import create_app
from interview.practice import ANSWER_SECONDS, PREP_SECONDS

pytestmark = pytest.mark.integration

LONG_ANSWER = (
    "At my last job I owned the checkout service. When latency doubled after a release, "
    "I profiled the hot path, found an N+1 query, batched it, and added a regression test "
    "so p95 latency dropped back under two hundred milliseconds within a day."
)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def tick(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client(tmp_path: Path, clock: FakeClock):
    db_path = tmp_path / "interview.sqlite3"
    app = create_app(database_path=str(db_path), llm_client=DisabledLlmClient(), clock=clock)
    with TestClient(app) as test_client:
        yield test_client


def auth_headers(client: TestClient) -> dict[str, str]:
    response = client.post(
        "/auth/register",
        json={"email": "ada@example.com", "name": "Ada", "password": "correct-horse"},
    )
    return {"authorization": f"Bearer {response.json()['token']}"}


def create_session(client: TestClient, headers: dict[str, str], session_type: str = "MOCK") -> str:
    response = client.post(
        "/interview/session",
        headers=headers,
        json={"type": session_type, "category": "BEHAVIORAL", "total_questions": 2},
    )
    return response.json()["session_id"]


def mock_url(session_id: str, suffix: str = "") -> str:
    return f"/interview/sessions/{session_id}/mock{suffix}"


def test_full_mock_interview_completes_session(client: TestClient, clock: FakeClock) -> None:
    headers = auth_headers(client)
    session_id = create_session(client, headers)

    started = client.post(
        mock_url(session_id, "/start"),
        headers=headers,
        json={"questions": ["Tell me about a conflict.", "Describe a failure."]},
    )
    assert started.status_code == 200
    assert started.json()["phase"] == "prep"
    assert started.json()["seconds_left"] == PREP_SECONDS
    assert started.json()["question"] == "Tell me about a conflict."

    early = client.post(mock_url(session_id, "/answer"), headers=headers, json={"answer": "x"})
    assert early.status_code == 409

    clock.tick(PREP_SECONDS + 10)
    state = client.get(mock_url(session_id), headers=headers).json()
    assert state["phase"] == "answer"
    assert state["seconds_left"] == ANSWER_SECONDS - 10

    drafted = client.put(
        mock_url(session_id, "/draft"),
        headers=headers,
        json={"answer": "First thoughts"},
    )
    assert drafted.json()["draft_answer"] == "First thoughts"

    clock.tick(20)
    answered = client.post(
        mock_url(session_id, "/answer"),
        headers=headers,
        json={"answer": LONG_ANSWER},
    )
    assert answered.status_code == 200
    body = answered.json()
    assert body["phase"] == "review"
    assert body["feedback"]["generated_by"] == "heuristic"
    assert body["feedback"]["score"] == 7.5

    second = client.post(mock_url(session_id, "/next"), headers=headers)
    assert second.json()["phase"] == "prep"
    assert second.json()["question_index"] == 1
    assert second.json()["question"] == "Describe a failure."

    clock.tick(PREP_SECONDS)
    client.put(mock_url(session_id, "/draft"), headers=headers, json={"answer": LONG_ANSWER})
    clock.tick(30)
    client.post(mock_url(session_id, "/answer"), headers=headers, json={"answer": LONG_ANSWER})

    finished = client.post(mock_url(session_id, "/next"), headers=headers)
    assert finished.json()["phase"] == "finished"
    assert finished.json()["question"] is None

    detail = client.get(f"/sessions/{session_id}", headers=headers).json()
    assert detail["status"] == "COMPLETED"
    assert detail["questions_answered"] == 2
    assert detail["score"] == 7.5
    assert detail["duration"] == 2
    assert detail["completed_at"]
    assert [item["question"] for item in detail["questions"]] == [
        "Tell me about a conflict.",
        "Describe a failure.",
    ]

    again = client.post(mock_url(session_id, "/next"), headers=headers)
    assert again.status_code == 409


def test_expired_answer_window_submits_draft(client: TestClient, clock: FakeClock) -> None:
    headers = auth_headers(client)
    session_id = create_session(client, headers)
    client.post(mock_url(session_id, "/start"), headers=headers, json={"questions": ["Q1", "Q2"]})

    clock.tick(PREP_SECONDS + 1)
    client.put(mock_url(session_id, "/draft"), headers=headers, json={"answer": "Partial answer"})

    clock.tick(ANSWER_SECONDS)
    state = client.get(mock_url(session_id), headers=headers).json()

    assert state["phase"] == "review"
    assert state["auto_submitted"] is True
    assert state["feedback"]["score"] == 2.0

    detail = client.get(f"/sessions/{session_id}", headers=headers).json()
    assert detail["questions_answered"] == 1
    assert detail["questions"][0]["answer"] == "Partial answer"

    late = client.put(mock_url(session_id, "/draft"), headers=headers, json={"answer": "more"})
    assert late.status_code == 409


def test_empty_draft_is_auto_submitted_with_minimum_feedback(
    client: TestClient,
    clock: FakeClock,
) -> None:
    headers = auth_headers(client)
    session_id = create_session(client, headers)
    client.post(mock_url(session_id, "/start"), headers=headers, json={"questions": ["Q1"]})

    clock.tick(PREP_SECONDS + ANSWER_SECONDS + 1)
    state = client.get(mock_url(session_id), headers=headers).json()

    assert state["auto_submitted"] is True
    assert state["feedback"]["score"] == 2.0
    assert state["feedback"]["generated_by"] == "heuristic"


def test_start_picks_bank_questions_when_none_given(client: TestClient) -> None:
    headers = auth_headers(client)
    session_id = create_session(client, headers)
    state = client.post(mock_url(session_id, "/start"), headers=headers, json={}).json()

    assert state["total_questions"] == 2
    assert state["question"]


def test_start_rejects_non_mock_and_repeated_start(client: TestClient) -> None:
    headers = auth_headers(client)
    text_session = create_session(client, headers, "TEXT")
    mock_session = create_session(client, headers)

    wrong_type = client.post(mock_url(text_session, "/start"), headers=headers, json={})
    first = client.post(mock_url(mock_session, "/start"), headers=headers, json={})
    repeated = client.post(mock_url(mock_session, "/start"), headers=headers, json={})

    assert wrong_type.status_code == 409
    assert first.status_code == 200
    assert repeated.status_code == 409


def test_state_before_start_is_not_found(client: TestClient) -> None:
    headers = auth_headers(client)
    session_id = create_session(client, headers)
    response = client.get(mock_url(session_id), headers=headers)
    assert response.status_code == 404
    assert response.json()["detail"] == "Mock interview not started"


def test_mock_run_is_private(client: TestClient) -> None:
    headers = auth_headers(client)
    session_id = create_session(client, headers)
    client.post(mock_url(session_id, "/start"), headers=headers, json={})

    other = client.post(
        "/auth/register",
        json={"email": "grace@example.com", "name": "Grace", "password": "correct-horse"},
    ).json()
    response = client.get(
        mock_url(session_id),
        headers={"authorization": f"Bearer {other['token']}"},
    )
    assert response.status_code == 404


def test_start_without_body_uses_bank_questions(client: TestClient) -> None:
    headers = auth_headers(client)
    session_id = create_session(client, headers)

    response = client.post(mock_url(session_id, "/start"), headers=headers)

    assert response.status_code == 200
    assert response.json()["phase"] == "prep"
    assert response.json()["total_questions"] == 2


def test_second_answer_for_same_question_is_rejected(client: TestClient, clock: FakeClock) -> None:
    headers = auth_headers(client)
    session_id = create_session(client, headers)
    client.post(mock_url(session_id, "/start"), headers=headers, json={"questions": ["Q1", "Q2"]})
    clock.tick(PREP_SECONDS + 5)

    first = client.post(mock_url(session_id, "/answer"), headers=headers, json={"answer": LONG_ANSWER})
    second = client.post(mock_url(session_id, "/answer"), headers=headers, json={"answer": LONG_ANSWER})

    assert first.status_code == 200
    assert second.status_code == 409
    detail = client.get(f"/sessions/{session_id}", headers=headers).json()
    assert detail["questions_answered"] == 1
    assert len(detail["questions"]) == 1


async def register_async(http: httpx.AsyncClient) -> dict[str, str]:
    response = await http.post(
        "/auth/register",
        json={"email": "ada@example.com", "name": "Ada", "password": "correct-horse"},
    )
    return {"authorization": f"Bearer {response.json()['token']}"}


async def start_async_run(http: httpx.AsyncClient, headers: dict[str, str]) -> str:
    created = await http.post(
        "/interview/session",
        headers=headers,
        json={"type": "MOCK", "category": "BEHAVIORAL", "total_questions": 2},
    )
    session_id = created.json()["session_id"]
    await http.post(mock_url(session_id, "/start"), headers=headers, json={"questions": ["Q1", "Q2"]})
    return session_id


@pytest.mark.asyncio
async def test_concurrent_polls_auto_submit_once(tmp_path: Path) -> None:
    clock = FakeClock()
    app = create_app(
        database_path=str(tmp_path / "interview.sqlite3"),
        llm_client=DisabledLlmClient(),
        clock=clock,
    )
    transport = httpx.ASGITransport(app=app)
    async with app.router.lifespan_context(app):
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
            headers = await register_async(http)
            session_id = await start_async_run(http, headers)
            clock.tick(PREP_SECONDS + 1)
            await http.put(mock_url(session_id, "/draft"), headers=headers, json={"answer": LONG_ANSWER})
            clock.tick(ANSWER_SECONDS + 60)

            polls = await asyncio.gather(
                *(http.get(mock_url(session_id), headers=headers) for _ in range(4))
            )
            detail = (await http.get(f"/sessions/{session_id}", headers=headers)).json()

    states = [poll.json() for poll in polls]
    assert all(state["phase"] == "review" for state in states)
    assert sum(state["auto_submitted"] for state in states) == 1
    assert detail["questions_answered"] == 1
    assert [item["answer"] for item in detail["questions"]] == [LONG_ANSWER]


@pytest.mark.asyncio
async def test_concurrent_answers_store_one_result(tmp_path: Path) -> None:
    clock = FakeClock()
    app = create_app(
        database_path=str(tmp_path / "interview.sqlite3"),
        llm_client=DisabledLlmClient(),
        clock=clock,
    )
    transport = httpx.ASGITransport(app=app)
    async with app.router.lifespan_context(app):
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
            headers = await register_async(http)
            session_id = await start_async_run(http, headers)
            clock.tick(PREP_SECONDS + 5)
            answer_url = mock_url(session_id, "/answer")

            answers = await asyncio.gather(
                *(http.post(answer_url, headers=headers, json={"answer": LONG_ANSWER}) for _ in range(3))
            )
            detail = (await http.get(f"/sessions/{session_id}", headers=headers)).json()

    assert sorted(answer.status_code for answer in answers) == [200, 409, 409]
    assert detail["questions_answered"] == 1
