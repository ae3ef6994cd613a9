from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator

SessionType = Literal["VOICE", "TEXT", "MOCK"]
Category = Literal["TECHNICAL", "BEHAVIORAL", "GENERAL", "MIXED"]
SessionStatus = Literal["IN_PROGRESS", "COMPLETED", "ABANDONED"]
Difficulty = Literal["beginner", "intermediate", "advanced"]
Plan = Literal["free", "pro"]
MockPhase = Literal["prep", "answer", "review", "finished"]


def _upper(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


def _lower(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class RegisterRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=120)
    password: str = Field(..., min_length=8, max_length=128)


class SignInRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class UserAccount(BaseModel):
    user_id: str
    email: str
    name: str
    plan: Plan
    subscription_id: str | None = None
    created_at: str
    updated_at: str


class AuthTokenResponse(BaseModel):
    token: str
    expires_at: str
    user: UserAccount


class AuthContext(BaseModel):
    user: UserAccount
    token_id: str


class AuditEvent(BaseModel):
    event_id: int
    request_id: str | None = None
    occurred_at: str
    method: str
    path: str
    action: str
    user_id: str | None = None
    source_ip: str | None = None
    user_agent: str | None = None
    status: str
    message: str | None = None


class CreateSessionRequest(BaseModel):
    type: SessionType
    category: Category
    total_questions: int = Field(default=5, ge=1, le=50)

    @field_validator("type", "category", mode="before")
    @classmethod
    def normalize_fields(cls, value: Any) -> Any:
        return _upper(value)


class CreateSessionResponse(BaseModel):
    session_id: str


class UpdateSessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    status: SessionStatus | None = None
    duration: int | None = Field(default=None, ge=0, le=1440)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_fields(cls, value: Any) -> Any:
        return _upper(value)


class InterviewSession(BaseModel):
    session_id: str
    user_id: str
    type: SessionType
    category: Category
    status: SessionStatus
    total_questions: int
    questions_answered: int
    score: float | None = None
    duration: int | None = None
    created_at: str
    updated_at: str
    completed_at: str | None = None


class UpdateSessionResponse(BaseModel):
    session: InterviewSession


class SessionListResponse(BaseModel):
    sessions: list[InterviewSession]


class AnsweredQuestion(BaseModel):
    question_id: int
    question: str
    answer: str
    score: float | None = None
    feedback: dict[str, Any] | None = None
    created_at: str


class SessionDetail(InterviewSession):
    questions: list[AnsweredQuestion] = Field(default_factory=list)


class QuestionsRequest(BaseModel):
    category: str = "mixed"
    difficulty: Difficulty = "intermediate"
    count: int = Field(default=5, ge=1, le=20)

    @field_validator("category", "difficulty", mode="before")
    @classmethod
    def normalize_fields(cls, value: Any) -> Any:
        return _lower(value)


class QuestionsResponse(BaseModel):
    questions: list[str]


class GeneratedQuestionsResponse(BaseModel):
    questions: list[str]
    generated_by: Literal["llm", "fallback"]


class AnswerFeedback(BaseModel):
    score: float = Field(..., ge=1, le=10)
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0, le=100)
    clarity: float = Field(..., ge=0, le=100)
    relevance: float = Field(..., ge=0, le=100)
    grammar_score: float | None = Field(
        default=None,
        ge=0,
        le=100,
        validation_alias=AliasChoices("grammar_score", "grammarScore"),
    )
    keyword_match: float | None = Field(
        default=None,
        ge=0,
        le=100,
        validation_alias=AliasChoices("keyword_match", "keywordMatch"),
    )
    sentiment: Literal["positive", "neutral", "negative"] | None = None
    generated_by: Literal["llm", "heuristic"] = "llm"

    @field_validator("sentiment", mode="before")
    @classmethod
    def normalize_fields(cls, value: Any) -> Any:
        return _lower(value)


class AnalyzeRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000)
    answer: str = Field(..., min_length=1, max_length=20000)
    category: str = Field(..., min_length=1, max_length=32)
    session_id: str | None = None

    @field_validator("category", mode="before")
    @classmethod
    def normalize_fields(cls, value: Any) -> Any:
        return _lower(value)


class AnalyzeResponse(BaseModel):
    feedback: AnswerFeedback


class CandidateContext(BaseModel):
    experience: str | None = None
    skills: list[str] = Field(default_factory=list)
    target_role: str | None = None
    resume_highlights: dict[str, Any] | None = None


class PersonalInfo(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    location: str = ""


class ResumeExperience(BaseModel):
    title: str = ""
    company: str = ""
    duration: str = ""
    description: str = ""


class ResumeEducation(BaseModel):
    degree: str = ""
    school: str = ""
    year: str = ""


class ResumeData(BaseModel):
    personal_info: PersonalInfo = Field(
        default_factory=PersonalInfo,
        validation_alias=AliasChoices("personal_info", "personalInfo"),
    )
    summary: str = ""
    experience: list[ResumeExperience] = Field(default_factory=list)
    education: list[ResumeEducation] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)


class ResumeRecord(BaseModel):
    resume_id: str
    filename: str
    file_size: int
    mime_type: str | None = None
    created_at: str
    extracted_data: ResumeData


class ResumeAnalyzeResponse(BaseModel):
    resume_id: str
    extracted_data: ResumeData
    generated_by: Literal["llm", "parser"]
    message: str


class ResumeListResponse(BaseModel):
    resumes: list[ResumeRecord]


class ResumeQuestionsRequest(BaseModel):
    resume_data: dict[str, Any]
    job_role: str | None = Field(default=None, max_length=120)
    difficulty: Difficulty = "intermediate"
    category: str = "mixed"
    count: int = Field(default=5, ge=1, le=20)

    @field_validator("category", "difficulty", mode="before")
    @classmethod
    def normalize_fields(cls, value: Any) -> Any:
        return _lower(value)


class ProfilePersonalInfo(BaseModel):
    name: str = Field(default="", max_length=120)
    email: str = ""
    phone: str = ""
    location: str = ""
    bio: str = Field(default="", max_length=2000)
    avatar: str = ""


class ProfileProfessional(BaseModel):
    current_role: str = ""
    company: str = ""
    experience: str = ""
    industry: str = ""
    target_role: str = ""
    skills: list[str] = Field(default_factory=list)


class ProfileEducation(BaseModel):
    degree: str = ""
    school: str = ""
    graduation_year: str = ""
    gpa: str = ""


class ProfileSocial(BaseModel):
    linkedin: str = ""
    github: str = ""
    twitter: str = ""
    website: str = ""


class ProfilePreferences(BaseModel):
    interview_types: list[str] = Field(default_factory=list)
    focus_areas: list[str] = Field(default_factory=list)
    availability: str = ""
    timezone: str = ""


class UserProfile(BaseModel):
    personal_info: ProfilePersonalInfo = Field(default_factory=ProfilePersonalInfo)
    professional: ProfileProfessional = Field(default_factory=ProfileProfessional)
    education: ProfileEducation = Field(default_factory=ProfileEducation)
    social: ProfileSocial = Field(default_factory=ProfileSocial)
    preferences: ProfilePreferences = Field(default_factory=ProfilePreferences)

    def candidate_context(self, resume_highlights: dict[str, Any] | None = None) -> CandidateContext:
        return CandidateContext(
            experience=self.professional.experience or None,
            skills=self.professional.skills,
            target_role=self.professional.target_role or None,
            resume_highlights=resume_highlights,
        )


class RequiredPersonalInfo(ProfilePersonalInfo):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr


class ProfileUpdateRequest(UserProfile):
    personal_info: RequiredPersonalInfo


class ProfileUpdateResponse(BaseModel):
    message: str
    profile: UserProfile


class UsageSummary(BaseModel):
    plan: Plan
    used: int
    limit: int | None
    remaining: int | None
    has_reached_limit: bool


class CheckoutResponse(BaseModel):
    session_id: str
    checkout_url: str | None = None


class VerifyPaymentRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=255)


class VerifyPaymentResponse(BaseModel):
    success: bool
    plan: Plan
    customer_email: str | None = None
    subscription_id: str | None = None


class MockStartRequest(BaseModel):
    questions: list[str] = Field(default_factory=list, max_length=50)


class MockAnswerRequest(BaseModel):
    answer: str = Field(default="", max_length=20000)


class MockState(BaseModel):
    session_id: str
    phase: MockPhase
    question_index: int
    total_questions: int
    question: str | None = None
    seconds_left: int | None = None
    draft_answer: str = ""
    feedback: AnswerFeedback | None = None
    auto_submitted: bool = False
    phase_started_at: str


class DashboardStats(BaseModel):
    sessions_count: int
    average_score: float | None = None
    total_minutes: int
    achievements: int
    streak: int
    sessions_this_week: int


class DashboardGoals(BaseModel):
    weekly_target: int
    weekly_completed: int
    score_target: float


class Achievement(BaseModel):
    title: str
    description: str


class RecentSession(BaseModel):
    id: str
    type: Category
    mode: SessionType
    score: float | None = None
    created_at: str
    duration: int | None = None
    status: SessionStatus


class DashboardSummary(BaseModel):
    stats: DashboardStats
    goals: DashboardGoals
    achievements_list: list[Achievement]
    recent_sessions: list[RecentSession]


class KeyMetrics(BaseModel):
    overall_score: float
    score_change: float
    sessions_this_month: int
    sessions_last_month: int
    practice_time_hours: float
    practice_time_change: float
    improvement_rate: float
    improvement_change: float


class PerformancePoint(BaseModel):
    month: str
    voice: float | None = None
    text: float | None = None
    mock: float | None = None


class CategoryBreakdown(BaseModel):
    category: Category
    score: float | None = None
    sessions: int
    improvement: str
    total_questions: int
    average_time: float


class AnalyticsSession(BaseModel):
    id: str
    date: str
    type: SessionType
    category: Category
    score: float | None = None
    duration: int | None = None
    improvement: str
    questions_answered: int
    total_questions: int


class QuickStats(BaseModel):
    day_streak: int
    completion_rate: float
    global_ranking: str
    total_sessions: int
    total_practice_time: int
    average_score: float
    best_score: float
    most_improved_category: str


class WeeklyActivity(BaseModel):
    day: str
    sessions: int
    score: float | None = None


class AnalyticsReport(BaseModel):
    key_metrics: KeyMetrics
    performance_data: list[PerformancePoint]
    category_breakdown: list[CategoryBreakdown]
    recent_sessions: list[AnalyticsSession]
    quick_stats: QuickStats
    weekly_activity: list[WeeklyActivity]


class LlmDiagnostics(BaseModel):
    ok: bool
    model: str
    reply: str


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    routes: dict[str, dict[str, float | int]]
    generation: dict[str, dict[str, int]] = Field(default_factory=dict)
