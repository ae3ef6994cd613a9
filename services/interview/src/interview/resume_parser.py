from __future__ import annotations

import re

from interview.models import PersonalInfo, ResumeData, ResumeEducation, ResumeExperience

EMAIL_RE = re.compile(r"[\w.-]+@[\w.-]+\.\w+")
PHONE_RE = re.compile(r"(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}")
NAME_RE = re.compile(r"^[A-Za-z\s]+$")
LOCATION_RE = re.compile(r"([A-Za-z ]+),\s*([A-Z]{2})\b")
YEAR_RE = re.compile(r"[0-9]{4}")
EXPERIENCE_PATTERNS = (
    re.compile(
        r"^[ \t]*([A-Za-z ]+?)[ \t]*\|[ \t]*([A-Za-z &.,]+?)[ \t]*\|[ \t]*"
        r"([0-9]{4}[ \t-]*(?:Present|[0-9]{4}))",
        re.MULTILINE,
    ),
    re.compile(
        r"^[ \t]*([A-Za-z ]+?)[ \t]+at[ \t]+([A-Za-z &.,]+?)[ \t]*"
        r"\(([0-9]{4}[ \t-]*(?:Present|[0-9]{4}))\)",
        re.MULTILINE,
    ),
)

SKILL_KEYWORDS = (
    "JavaScript",
    "TypeScript",
    "React",
    "Node.js",
    "Python",
    "Java",
    "C++",
    "C#",
    "HTML",
    "CSS",
    "SQL",
    "MongoDB",
    "PostgreSQL",
    "MySQL",
    "AWS",
    "Azure",
    "Docker",
    "Kubernetes",
    "Git",
    "Linux",
    "Windows",
    "MacOS",
    "Agile",
    "Scrum",
    "REST",
    "API",
    "GraphQL",
    "Redux",
    "Vue.js",
    "Angular",
    "Express",
    "Django",
    "Flask",
    "Spring",
    "Laravel",
    "PHP",
    "Ruby",
    "Go",
    "Rust",
    "Swift",
    "Kotlin",
    "Dart",
    "Flutter",
    "React Native",
)
MAX_SKILLS = 15
EDUCATION_KEYWORDS = ("Bachelor", "Master", "PhD", "University", "College", "Institute")
SUMMARY_HEADERS = ("SUMMARY", "OBJECTIVE", "PROFILE", "ABOUT")
CERTIFICATION_KEYWORDS = ("Certified", "Certification", "AWS", "Google Cloud", "Microsoft", "Oracle")


def _skill_pattern(skill: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![A-Za-z0-9]){re.escape(skill)}(?![A-Za-z0-9+#])", re.IGNORECASE)


SKILL_PATTERNS = tuple((skill, _skill_pattern(skill)) for skill in SKILL_KEYWORDS)


def _find_name(lines: list[str]) -> str:
    for line in lines[:5]:
        if not 2 < len(line) < 50:
            continue
        if "@" in line or "(" in line or "http" in line:
            continue
        if NAME_RE.match(line):
            return line
    return ""


def _find_experience(text: str) -> list[ResumeExperience]:
    entries: list[ResumeExperience] = []
    for pattern in EXPERIENCE_PATTERNS:
        for match in pattern.finditer(text):
            entries.append(
                ResumeExperience(
                    title=match.group(1).strip(),
                    company=match.group(2).strip(),
                    duration=match.group(3).strip(),
                    description="Experience details extracted from resume",
                )
            )
    return entries


def _find_education(lines: list[str]) -> list[ResumeEducation]:
    entries: list[ResumeEducation] = []
    for line in lines:
        if not any(keyword in line for keyword in EDUCATION_KEYWORDS):
            continue
        year_match = YEAR_RE.search(line)
        if "University" in line:
            school = line.split("University")[0] + "University"
        else:
            school = "Educational Institution"
        entries.append(
            ResumeEducation(
                degree=line,
                school=school.strip(),
                year=year_match.group(0) if year_match else "N/A",
            )
        )
    return entries


def _find_summary(lines: list[str]) -> str:
    for index, line in enumerate(lines):
        if not any(header in line.upper() for header in SUMMARY_HEADERS):
            continue
        summary_lines = [
            candidate
            for candidate in lines[index + 1 : index + 5]
            if len(candidate) > 20
            and "EXPERIENCE" not in candidate.upper()
            and "EDUCATION" not in candidate.upper()
        ]
        if summary_lines:
            return " ".join(summary_lines)
    return ""


def parse_resume_text(text: str) -> ResumeData:
    """Pull resume fields out of plain text with keyword and regex heuristics."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]

    email_match = EMAIL_RE.search(text)
    phone_match = PHONE_RE.search(text)
    location_match = LOCATION_RE.search(text)
    location = ""
    if location_match:
        location = f"{location_match.group(1).strip()}, {location_match.group(2)}"

    skills = [skill for skill, pattern in SKILL_PATTERNS if pattern.search(text)][:MAX_SKILLS]

    summary = _find_summary(lines)
    if not summary and skills:
        summary = f"Professional with experience in {', '.join(skills[:3])} and other technologies."

    certifications = [
        line
        for line in lines
        if len(line) < 100 and any(keyword in line for keyword in CERTIFICATION_KEYWORDS)
    ]

    return ResumeData(
        personal_info=PersonalInfo(
            name=_find_name(lines),
            email=email_match.group(0) if email_match else "",
            phone=phone_match.group(0) if phone_match else "",
            location=location,
        ),
        summary=summary,
        experience=_find_experience(text),
        education=_find_education(lines),
        skills=skills,
        certifications=certifications,
    )
