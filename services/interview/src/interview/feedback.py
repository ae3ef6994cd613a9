"""LLM-backed interview feedback, question generation and resume analysis.

Every call here goes through a single ``LlmClient.generate`` round trip. Feedback
and question generation never fail outright: a provider error or malformed
output is logged and answered from deterministic fallbacks instead.
"""

from __future__ import annotations

import json
import logging
from typing import Literal

from common.utils import clamp, word_count
from pydantic import ValidationError

from interview.llm import LlmClient, LlmError, extract_json_array, extract_json_object
from interview.models import AnswerFeedback, CandidateContext, ResumeData
from interview.questions import fallback_questions

LOGGER = logging.getLogger("prepmate.interview")

FEEDBACK_PROMPT = """You are an interview coach reviewing one answer from a practice interview.

QUESTION: "{question}"
ANSWER: "{answer}"
CATEGORY: {category}
{candidate}
Reply with a single JSON object and nothing else:
{{"score": 1-10, "strengths": [2-4 items], "weaknesses": [2-3 items],
"suggestions": [2-3 items], "confidence": 1-100, "clarity": 1-100,
"relevance": 1-100, "grammarScore": 1-100, "keywordMatch": 1-100,
"sentiment": "positive|neutral|negative"}}

Answers under ten words or left unfinished score 1-3. Reserve 7-10 for complete,
structured answers with concrete examples.
"""

QUESTIONS_PROMPT = """Write {count} {difficulty} level {category} interview questions.
{candidate}
Make each question specific to the candidate where possible and avoid generic prompts.
Reply with a JSON array of strings and nothing else.
"""

RESUME_PROMPT = """Extract structured data from the resume below.

RESUME:
{resume_text}

Reply with a single JSON object and nothing else, shaped as:
{{"personal_info": {{"name": "", "email": "", "phone": "", "location": ""}},
"summary": "", "experience": [{{"title": "", "company": "", "duration": "", "description": ""}}],
"education": [{{"degree": "", "school": "", "year": ""}}],
"skills": [], "certifications": [], "languages": []}}
"""


def describe_candidate(candidate: CandidateContext | None) -> str:
    if candidate is None:
        return ""
    lines = [
        "CANDIDATE:",
        f"- Experience: {candidate.experience or 'Not specified'}",
        f"- Skills: {', '.join(candidate.skills) or 'Not specified'}",
        f"- Target role: {candidate.target_role or 'Not specified'}",
    ]
    if candidate.resume_highlights:
        lines.append(f"- Resume highlights: {json.dumps(candidate.resume_highlights)}")
    return "\n".join(lines) + "\n"


def heuristic_feedback(answer: str) -> AnswerFeedback:
    text = answer.strip()
    length = len(text)
    words = word_count(text)

    if length < 20 or words < 5:
        score = 2.0
        strengths = ["Attempted to answer"]
        weaknesses = [
            "Answer is too short",
            "Lacks detail and substance",
            "Does not fully address the question",
        ]
        suggestions = [
            "Provide a complete response",
            "Include specific examples",
            "Elaborate on your points with more detail",
        ]
    elif length < 50 or words < 15:
        score = 4.0
        strengths = ["Started to address the question"]
        weaknesses = ["Answer needs more development", "Lacks specific examples"]
        suggestions = [
            "Expand your response with more details",
            "Include concrete examples",
            "Structure your answer more clearly",
        ]
    elif length < 100 or words < 30:
        score = 6.0
        strengths = ["Addresses the question", "Shows some thought"]
        weaknesses = ["Could provide more depth", "Needs more specific examples"]
        suggestions = [
            "Add more detailed examples",
            "Include quantifiable achievements",
            "Expand on key points",
        ]
    else:
        score = 7.5
        strengths = ["Clear communication", "Relevant examples"]
        weaknesses = ["Could be more specific", "Add more details"]
        suggestions = ["Include quantifiable results", "Structure your answer better"]

    return AnswerFeedback(
        score=score,
        strengths=strengths,
        weaknesses=weaknesses,
        suggestions=suggestions,
        confidence=clamp(length * 2, 20, 90),
        clarity=clamp(words * 3, 30, 95),
        relevance=clamp(length * 1.5, 25, 85),
        grammar_score=clamp(words * 4, 40, 95),
        keyword_match=clamp(length * 1.2, 20, 80),
        sentiment="positive" if length > 50 else "neutral",
        generated_by="heuristic",
    )


def analyze_answer(
    llm: LlmClient,
    *,
    question: str,
    answer: str,
    category: str,
    candidate: CandidateContext | None = None,
) -> AnswerFeedback:
    prompt = FEEDBACK_PROMPT.format(
        question=question,
        answer=answer,
        category=category,
        candidate=describe_candidate(candidate),
    )
    try:
        payload = extract_json_object(llm.generate(prompt))
        payload["generated_by"] = "llm"
        return AnswerFeedback.model_validate(payload)
    except (LlmError, ValidationError) as exc:
        LOGGER.warning(
            json.dumps(
                {
                    "event": "feedback_fallback",
                    "category": category,
                    "answer_chars": len(answer.strip()),
                    "error": str(exc),
                }
            )
        )
        return heuristic_feedback(answer)


def generate_questions(
    llm: LlmClient,
    *,
    category: str,
    difficulty: str,
    count: int,
    candidate: CandidateContext | None = None,
) -> tuple[list[str], Literal["llm", "fallback"]]:
    prompt = QUESTIONS_PROMPT.format(
        count=count,
        difficulty=difficulty,
        category=category,
        candidate=describe_candidate(candidate),
    )
    try:
        raw_questions = extract_json_array(llm.generate(prompt))
        questions = [str(item).strip() for item in raw_questions if str(item).strip()]
        if not questions:
            raise LlmError("Model returned no questions.")
        return questions[:count], "llm"
    except LlmError as exc:
        LOGGER.warning(
            json.dumps(
                {
                    "event": "questions_fallback",
                    "category": category,
                    "difficulty": difficulty,
                    "error": str(exc),
                }
            )
        )
        return fallback_questions(category, count), "fallback"


def analyze_resume(llm: LlmClient, resume_text: str) -> ResumeData:
    """Structure resume text with the model.

    Raises ``LlmError`` when the output is unusable or carries no candidate
    name, so callers can fall back to the regex parser.
    """
    payload = extract_json_object(llm.generate(RESUME_PROMPT.format(resume_text=resume_text)))
    try:
        resume = ResumeData.model_validate(payload)
    except ValidationError as exc:
        raise LlmError(f"Resume payload failed validation: {exc}") from exc
    if not resume.personal_info.name.strip():
        raise LlmError("Resume payload is missing personal_info.name.")
    return resume
