"""Mock interview phase flow.

A mock run walks every question through ``prep -> answer -> review``. Phase
deadlines are derived from ``phase_started_at`` and the caller's clock, so the
run only has to be persisted when a transition actually happens.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from common.utils import parse_iso_datetime
from pydantic import BaseModel, Field

from interview.models import AnswerFeedback, MockPhase, MockState

PREP_SECONDS = 30
ANSWER_SECONDS = 120


class PhaseError(ValueError):
    pass


class MockRun(BaseModel):
    session_id: str
    questions: list[str] = Field(..., min_length=1)
    current_index: int = 0
    phase: MockPhase = "prep"
    phase_started_at: str
    started_at: str
    draft_answer: str = ""
    last_feedback: AnswerFeedback | None = None

    @property
    def current_question(self) -> str | None:
        if self.phase == "finished":
            return None
        return self.questions[self.current_index]

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= len(self.questions) - 1


@dataclass
class PhaseResolution:
    run: MockRun
    changed: bool
    auto_submit_due: bool
    seconds_left: int | None


def _started_at(run: MockRun) -> datetime:
    started = parse_iso_datetime(run.phase_started_at)
    if started is None:
        raise PhaseError(f"Invalid phase_started_at: {run.phase_started_at!r}")
    return started


def _seconds_until(deadline: datetime, now: datetime) -> int:
    return max(math.ceil((deadline - now).total_seconds()), 0)


def start_run(session_id: str, questions: list[str], now: datetime) -> MockRun:
    cleaned = [question.strip() for question in questions if question.strip()]
    if not cleaned:
        raise PhaseError("A mock run needs at least one question.")
    started = now.astimezone(UTC).isoformat()
    return MockRun(
        session_id=session_id,
        questions=cleaned,
        phase="prep",
        phase_started_at=started,
        started_at=started,
    )


def resolve_phase(run: MockRun, now: datetime) -> PhaseResolution:
    """Apply any transition the clock has made due since the run was stored.

    An expired prep window turns into an answer window that began exactly when
    prep ended. An expired answer window is reported as ``auto_submit_due``;
    submitting the draft is left to the caller.
    """
    changed = False
    if run.phase == "prep":
        prep_ends = _started_at(run) + timedelta(seconds=PREP_SECONDS)
        if now < prep_ends:
            return PhaseResolution(run, False, False, _seconds_until(prep_ends, now))
        run = run.model_copy(
            update={
                "phase": "answer",
                "phase_started_at": prep_ends.isoformat(),
                "draft_answer": "",
            }
        )
        changed = True

    if run.phase == "answer":
        answer_ends = _started_at(run) + timedelta(seconds=ANSWER_SECONDS)
        if now < answer_ends:
            return PhaseResolution(run, changed, False, _seconds_until(answer_ends, now))
        return PhaseResolution(run, changed, True, 0)

    return PhaseResolution(run, changed, False, None)


def save_draft(run: MockRun, answer: str) -> MockRun:
    if run.phase != "answer":
        raise PhaseError(f"Drafts can only be saved while answering, not during {run.phase}.")
    return run.model_copy(update={"draft_answer": answer})


def record_answer(run: MockRun, feedback: AnswerFeedback, now: datetime) -> MockRun:
    if run.phase != "answer":
        raise PhaseError(f"Answers can only be submitted while answering, not during {run.phase}.")
    return run.model_copy(
        update={
            "phase": "review",
            "phase_started_at": now.astimezone(UTC).isoformat(),
            "draft_answer": "",
            "last_feedback": feedback,
        }
    )


def advance(run: MockRun, now: datetime) -> MockRun:
    if run.phase != "review":
        raise PhaseError(f"Cannot move to the next question during {run.phase}.")
    stamp = now.astimezone(UTC).isoformat()
    if run.is_last_question:
        return run.model_copy(update={"phase": "finished", "phase_started_at": stamp})
    return run.model_copy(
        update={
            "phase": "prep",
            "phase_started_at": stamp,
            "current_index": run.current_index + 1,
            "last_feedback": None,
        }
    )


def elapsed_minutes(run: MockRun, now: datetime) -> int:
    started = parse_iso_datetime(run.started_at) or now
    return max(1, round((now - started).total_seconds() / 60))


def to_state(
    run: MockRun,
    *,
    seconds_left: int | None,
    auto_submitted: bool = False,
) -> MockState:
    return MockState(
        session_id=run.session_id,
        phase=run.phase,
        question_index=run.current_index,
        total_questions=len(run.questions),
        question=run.current_question,
        seconds_left=seconds_left,
        draft_answer=run.draft_answer,
        feedback=run.last_feedback,
        auto_submitted=auto_submitted,
        phase_started_at=run.phase_started_at,
    )
