from __future__ import annotations

import random
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from interview.llm import DisabledLlmClient
from interview.main import create_app
from interview.questions import (
    FALLBACK_QUESTIONS,
    QUESTION_BANK,
    fallback_questions,
    pick_questions,
    question_pool,
)


@pytest.mark.unit
def test_mixed_pool_draws_from_every_category() -> None:
    pool = question_pool("mixed")
    assert pool == [
        *QUESTION_BANK["technical"][:3],
        *QUESTION_BANK["behavioral"][:4],
        *QUESTION_BANK["general"][:3],
    ]


@pytest.mark.unit
def test_unknown_category_uses_general_bank() -> None:
    assert question_pool("astrology") == QUESTION_BANK["general"]
    assert set(pick_questions("astrology", 10, random.Random(1))) == set(QUESTION_BANK["general"])


@pytest.mark.unit
def test_pick_questions_is_deterministic_for_a_seeded_rng() -> None:
    first = pick_questions("technical", 4, random.Random(42))
    second = pick_questions("TECHNICAL", 4, random.Random(42))
    assert first == second
    assert len(first) == 4
    assert len(set(first)) == 4
    assert set(first) <= set(QUESTION_BANK["technical"])


@pytest.mark.unit
def test_pick_questions_defaults_to_five_and_never_mutates_bank() -> None:
    before = list(QUESTION_BANK["behavioral"])
    picked = pick_questions("behavioral", None, random.Random(3))
    assert len(picked) == 5
    assert QUESTION_BANK["behavioral"] == before


@pytest.mark.unit
def test_fallback_questions_slice_to_count() -> None:
    assert fallback_questions("mixed", 2) == FALLBACK_QUESTIONS["mixed"][:2]
    assert fallback_questions("unknown") == FALLBACK_QUESTIONS["general"]


@pytest.mark.integration
def test_question_bank_endpoint_needs_no_auth(tmp_path: Path) -> None:
    app = create_app(
        database_path=str(tmp_path / "interview.sqlite3"),
        llm_client=DisabledLlmClient(),
        rng=random.Random(7),
    )
    with TestClient(app) as client:
        response = client.post(
            "/interview/questions",
            json={"category": "Behavioral", "difficulty": "Advanced", "count": 3},
        )
        invalid = client.post("/interview/questions", json={"difficulty": "expert"})

    assert response.status_code == 200
    questions = response.json()["questions"]
    assert len(questions) == 3
    assert set(questions) <= set(QUESTION_BANK["behavioral"])
    assert invalid.status_code == 422
