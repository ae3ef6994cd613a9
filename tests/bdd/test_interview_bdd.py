from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from interview.llm import DisabledLlmClient
from interview.main import create_app
from pytest_bdd import given, parsers, scenario, then, when

pytestmark = pytest.mark.bdd

FREE_SESSIONS = 2
ANSWER = (
    "A process has its own address space while threads share the memory of the process "
    "that owns them, so switching threads is cheaper but shared state needs locking."
)


@scenario("features/interview.feature", "Answer a practice question and see it on the dashboard")
def test_answer_question_and_see_dashboard() -> None:
    pass


@scenario("features/interview.feature", "Free plan stops new sessions at the limit")
def test_free_plan_limit() -> None:
    pass


@pytest.fixture
def client(tmp_path: Path):
    app = create_app(
        database_path=str(tmp_path / "bdd.sqlite3"),
        llm_client=DisabledLlmClient(),
        free_session_limit=FREE_SESSIONS,
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def context() -> dict[str, object]:
    return {}


@given("a registered candidate")
def given_registered_candidate(client: TestClient, context: dict[str, object]) -> None:
    response = client.post(
        "/auth/register",
        json={"email": "candidate@example.com", "name": "Candidate", "password": "correct-horse"},
    )
    context["headers"] = {"authorization": f"Bearer {response.json()['token']}"}


@given(parsers.parse('a text practice session for "{category}" questions'))
def given_text_session(client: TestClient, context: dict[str, object], category: str) -> None:
    response = client.post(
        "/interview/session",
        headers=context["headers"],
        json={"type": "text", "category": category},
    )
    context["session_id"] = response.json()["session_id"]
    context["category"] = category


@given("the candidate has used every free session")
def given_free_sessions_used(client: TestClient, context: dict[str, object]) -> None:
    for _ in range(FREE_SESSIONS):
        client.post(
            "/interview/session",
            headers=context["headers"],
            json={"type": "TEXT", "category": "GENERAL"},
        )


@when(parsers.parse('the candidate answers "{question}"'), target_fixture="response")
def when_candidate_answers(client: TestClient, context: dict[str, object], question: str):
    return client.post(
        "/interview/analyze",
        headers=context["headers"],
        json={
            "session_id": context["session_id"],
            "question": question,
            "answer": ANSWER,
            "category": context["category"],
        },
    )


@when("the candidate starts another session", target_fixture="response")
def when_candidate_starts_session(client: TestClient, context: dict[str, object]):
    return client.post(
        "/interview/session",
        headers=context["headers"],
        json={"type": "TEXT", "category": "GENERAL"},
    )


@then("the answer feedback has a score between 1 and 10")
def then_feedback_score_in_range(response) -> None:
    assert response.status_code == 200
    assert 1 <= response.json()["feedback"]["score"] <= 10


@then(parsers.parse("the session has {count:d} answered question"))
def then_session_answer_count(client: TestClient, context: dict[str, object], count: int) -> None:
    detail = client.get(f"/sessions/{context['session_id']}", headers=context["headers"]).json()
    assert detail["questions_answered"] == count


@then(parsers.parse("the dashboard shows {count:d} session"))
def then_dashboard_count(client: TestClient, context: dict[str, object], count: int) -> None:
    summary = client.get("/dashboard/summary", headers=context["headers"]).json()
    assert summary["stats"]["sessions_count"] == count


@then(parsers.parse("the session is refused with status {status:d}"))
def then_session_refused(response, status: int) -> None:
    assert response.status_code == status


@then("the usage summary reports the limit was reached")
def then_usage_limit_reached(client: TestClient, context: dict[str, object]) -> None:
    usage = client.get("/usage", headers=context["headers"]).json()
    assert usage["has_reached_limit"] is True
    assert usage["used"] == FREE_SESSIONS
    assert usage["remaining"] == 0
