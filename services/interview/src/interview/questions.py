from __future__ import annotations

import random

QUESTION_BANK: dict[str, list[str]] = {
    "technical": [
        "Explain the difference between let, const, and var in JavaScript.",
        "How does React's virtual DOM work?",
        "What is the time complexity of binary search?",
        "Describe how you would implement a REST API.",
        "What are the principles of object-oriented programming?",
        "How do you handle asynchronous operations in JavaScript?",
        "Explain the concept of database normalization.",
        "What is the difference between SQL and NoSQL databases?",
        "How would you optimize a slow-performing web application?",
        "Describe the MVC architecture pattern.",
    ],
    "behavioral": [
        "Tell me about yourself.",
        "Describe a challenging project you worked on.",
        "How do you handle tight deadlines?",
        "Tell me about a time you had to work with a difficult team member.",
        "What motivates you in your work?",
        "Describe a situation where you had to learn something new quickly.",
        "How do you prioritize tasks when everything seems urgent?",
        "Tell me about a mistake you made and how you handled it.",
        "What are your career goals for the next 5 years?",
        "How do you handle constructive criticism?",
    ],
    "general": [
        "Why are you interested in this position?",
        "What do you know about our company?",
        "What are your greatest strengths?",
        "What is your biggest weakness?",
        "Where do you see yourself in 5 years?",
        "Why are you leaving your current job?",
        "What salary range are you looking for?",
        "Do you have any questions for us?",
        "What makes you unique?",
        "How do you handle stress and pressure?",
    ],
}

FALLBACK_QUESTIONS: dict[str, list[str]] = {
    "technical": [
        "Explain the difference between REST and GraphQL APIs.",
        "How would you optimize a slow database query?",
        "Describe your approach to debugging a production issue.",
        "What are the trade-offs between microservices and monolithic architecture?",
        "How do you ensure code quality in your projects?",
    ],
    "behavioral": [
        "Tell me about a time when you had to work with a difficult team member.",
        "Describe a situation where you had to meet a tight deadline.",
        "How do you handle constructive criticism?",
        "Tell me about a project you're particularly proud of.",
        "Describe a time when you had to learn a new technology quickly.",
    ],
    "general": [
        "Tell me about yourself and your background.",
        "Why are you interested in this role?",
        "What are your greatest strengths and weaknesses?",
        "Where do you see yourself in 5 years?",
        "Why are you looking to leave your current position?",
    ],
    "mixed": [
        "Tell me about yourself and your technical background.",
        "Describe a challenging technical project and how you managed it.",
        "How do you stay updated with new technologies?",
        "Tell me about a time you had to explain a technical concept to a non-technical person.",
        "What interests you most about this role and our company?",
    ],
}

DEFAULT_QUESTION_COUNT = 5


def question_pool(category: str | None) -> list[str]:
    key = (category or "mixed").strip().lower()
    if key == "mixed":
        return [
            *QUESTION_BANK["technical"][:3],
            *QUESTION_BANK["behavioral"][:4],
            *QUESTION_BANK["general"][:3],
        ]
    return list(QUESTION_BANK.get(key, QUESTION_BANK["general"]))


def pick_questions(
    category: str | None,
    count: int | None = None,
    rng: random.Random | None = None,
) -> list[str]:
    pool = question_pool(category)
    (rng or random.Random()).shuffle(pool)
    return pool[: count or DEFAULT_QUESTION_COUNT]


def fallback_questions(category: str | None, count: int | None = None) -> list[str]:
    key = (category or "general").strip().lower()
    questions = FALLBACK_QUESTIONS.get(key, FALLBACK_QUESTIONS["general"])
    return list(questions[: count or DEFAULT_QUESTION_COUNT])
