from __future__ import annotations

import asyncio
import io
import json
import logging
import os
import random
import tempfile
import threading
import time
import uuid
from collections import Counter
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import PyPDF2
from common.utils import now_utc_iso
from fastapi import FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from PyPDF2.errors import PdfReadError

from interview.analytics import build_analytics, build_dashboard_summary
from interview.billing import (
    PaymentError,
    PaymentGateway,
    PaymentNotConfiguredError,
    build_payment_gateway,
)
from interview.feedback import analyze_answer, analyze_resume, generate_questions, heuristic_feedback
from interview.llm import LlmClient, LlmError, build_llm_client
from interview.models import (
    AnalyticsReport,
    AnalyzeRequest,
    AnalyzeResponse,
    AnswerFeedback,
    AuditEvent,
    AuthContext,
    AuthTokenResponse,
    CandidateContext,
    CheckoutResponse,
    CreateSessionRequest,
    CreateSessionResponse,
    DashboardSummary,
    GeneratedQuestionsResponse,
    InterviewSession,
    LlmDiagnostics,
    MetricsSnapshot,
    MockAnswerRequest,
    MockStartRequest,
    MockState,
    ProfilePersonalInfo,
    ProfileUpdateRequest,
    ProfileUpdateResponse,
    QuestionsRequest,
    QuestionsResponse,
    RegisterRequest,
    ResumeAnalyzeResponse,
    ResumeData,
    ResumeListResponse,
    ResumeQuestionsRequest,
    SessionDetail,
    SessionListResponse,
    SignInRequest,
    UpdateSessionRequest,
    UpdateSessionResponse,
    UsageSummary,
    UserAccount,
    UserProfile,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from interview.practice import (
    PREP_SECONDS,
    MockRun,
    PhaseError,
    advance,
    elapsed_minutes,
    record_answer,
    resolve_phase,
    save_draft,
    start_run,
    to_state,
)
from interview.questions import pick_questions
from interview.repository import DuplicateEmailError, InterviewRepository
from interview.resume_parser import parse_resume_text
from interview.usage import DEFAULT_FREE_SESSION_LIMIT, can_start_session, summarize_usage

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "prepmate", "interview.sqlite3")
DEFAULT_PUBLIC_URL = "http://localhost:3000"
DEFAULT_TOKEN_TTL_DAYS = 30
MIN_RESUME_TEXT_CHARS = 100
LOGGER = logging.getLogger("prepmate.interview")


class MetricsStore:
    """Per-route request stats plus a tally of where generated content came from."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._totals = {"requests": 0, "errors": 0}
        self._routes: dict[str, dict[str, float | int]] = {}
        self._generation: dict[str, Counter[str]] = {}

    def observe(self, *, method: str, route: str, status_code: int, duration_ms: float) -> None:
        with self._lock:
            self._totals["requests"] += 1
            if status_code >= 400:
                self._totals["errors"] += 1
            stats = self._routes.setdefault(
                f"{method} {route}",
                {"count": 0, "2xx": 0, "4xx": 0, "5xx": 0, "latency_ms_max": 0.0},
            )
            stats["count"] = int(stats["count"]) + 1
            status_class = f"{status_code // 100}xx"
            if status_class in stats:
                stats[status_class] = int(stats[status_class]) + 1
            stats["latency_ms_max"] = max(float(stats["latency_ms_max"]), round(duration_ms, 3))

    def record_generation(self, kind: str, source: str) -> None:
        with self._lock:
            self._generation.setdefault(kind, Counter())[source] += 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals=dict(self._totals),
                routes={key: dict(value) for key, value in self._routes.items()},
                generation={kind: dict(counts) for kind, counts in self._generation.items()},
            )


def route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def extract_resume_text(filename: str | None, content_type: str | None, contents: bytes) -> str:
    mime = (content_type or "").lower()
    name = (filename or "").lower()
    if "pdf" in mime or name.endswith(".pdf"):
        reader = PyPDF2.PdfReader(io.BytesIO(contents))
        return "\n".join(page.extract_text() or "" for page in reader.pages)
    return contents.decode("utf-8", errors="ignore")


def merge_resume_into_profile(profile: UserProfile, resume: ResumeData) -> UserProfile:
    personal = profile.personal_info.model_copy(
        update={
            key: value
            for key, value in {
                "name": resume.personal_info.name.strip(),
                "phone": resume.personal_info.phone.strip(),
                "location": resume.personal_info.location.strip(),
            }.items()
            if value
        }
    )
    skills = list(profile.professional.skills)
    known = {skill.lower() for skill in skills}
    for skill in resume.skills:
        if skill.lower() not in known:
            skills.append(skill)
            known.add(skill.lower())
    professional = profile.professional.model_copy(update={"skills": skills})
    return profile.model_copy(update={"personal_info": personal, "professional": professional})


def parse_int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer.") from exc


def create_app(
    *,
    database_path: str | None = None,
    llm_client: LlmClient | None = None,
    payment_gateway: PaymentGateway | None = None,
    rng: random.Random | None = None,
    clock: Callable[[], datetime] | None = None,
    free_session_limit: int | None = None,
    token_ttl_days: int | None = None,
    public_url: str | None = None,
) -> FastAPI:
    resolved_path = database_path or os.getenv("PREPMATE_DB_PATH", DEFAULT_DB_PATH)
    resolved_public_url = (
        public_url or os.getenv("PREPMATE_PUBLIC_URL", "").strip() or DEFAULT_PUBLIC_URL
    )
    resolved_free_limit = (
        free_session_limit
        if free_session_limit is not None
        else parse_int_env("PREPMATE_FREE_SESSION_LIMIT", DEFAULT_FREE_SESSION_LIMIT)
    )
    resolved_ttl_days = (
        token_ttl_days
        if token_ttl_days is not None
        else parse_int_env("PREPMATE_TOKEN_TTL_DAYS", DEFAULT_TOKEN_TTL_DAYS)
    )
    resolved_llm = llm_client or build_llm_client(
        os.getenv("GEMINI_API_KEY", "").strip() or None,
        os.getenv("GEMINI_MODEL", "").strip() or None,
    )
    resolved_payments = payment_gateway or build_payment_gateway(
        secret_key=os.getenv("STRIPE_SECRET_KEY", "").strip() or None,
        price_id=os.getenv("STRIPE_PRICE_ID", "").strip() or None,
        public_url=resolved_public_url,
    )
    resolved_rng = rng or random.Random()
    resolved_clock = clock or (lambda: datetime.now(UTC))

    repository = InterviewRepository(database_path=resolved_path)
    # One lock per session; phase transitions and stored answers happen under it.
    mock_locks: dict[str, asyncio.Lock] = {}

    def mock_lock(session_id: str) -> asyncio.Lock:
        return mock_locks.setdefault(session_id, asyncio.Lock())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        app.state.repository = repository
        app.state.metrics = MetricsStore()
        try:
            yield
        finally:
            await run_in_threadpool(repository.close)

    app = FastAPI(title="PrepMate Interview", version="1.0.0", lifespan=lifespan)

    async def write_audit_event(
        request: Request,
        *,
        action: str,
        status: str,
        message: str | None = None,
        user_id: str | None = None,
    ) -> int:
        request_id = getattr(request.state, "request_id", None)
        source_ip = request.client.host if request.client else None
        user_agent = request.headers.get("user-agent")
        return await run_in_threadpool(
            request.app.state.repository.record_audit_event,
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            action=action,
            user_id=user_id,
            source_ip=source_ip,
            user_agent=user_agent,
            status=status,
            message=message,
        )

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            request.app.state.metrics.observe(
                method=request.method,
                route=route_template(request),
                status_code=500,
                duration_ms=duration_ms,
            )
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "request_complete",
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": 500,
                        "duration_ms": round(duration_ms, 3),
                        "error": str(exc),
                    }
                )
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"x-request-id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        request.app.state.metrics.observe(
            method=request.method,
            route=route_template(request),
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers["x-request-id"] = request_id
        LOGGER.info(
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 3),
                    "source_ip": request.client.host if request.client else None,
                }
            )
        )
        return response

    async def require_user(request: Request, *, action: str) -> AuthContext:
        header = request.headers.get("authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            await write_audit_event(
                request,
                action=action,
                status="unauthorized",
                message="missing bearer token",
            )
            raise HTTPException(status_code=401, detail="Unauthorized")

        context = await run_in_threadpool(
            request.app.state.repository.resolve_auth_token,
            token.strip(),
            source_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        if context is None:
            await write_audit_event(
                request,
                action=action,
                status="unauthorized",
                message="invalid, expired, or revoked token",
            )
            raise HTTPException(status_code=401, detail="Unauthorized")
        return context

    async def load_profile(request: Request, user: UserAccount) -> UserProfile:
        profile = await run_in_threadpool(request.app.state.repository.get_profile, user.user_id)
        if profile is not None:
            return profile
        return UserProfile(personal_info=ProfilePersonalInfo(name=user.name, email=user.email))

    async def load_candidate(request: Request, user: UserAccount) -> CandidateContext | None:
        profile = await run_in_threadpool(request.app.state.repository.get_profile, user.user_id)
        if profile is None:
            return None
        return profile.candidate_context()

    async def load_owned_session(
        request: Request,
        session_id: str,
        user: UserAccount,
    ) -> InterviewSession:
        session = await run_in_threadpool(
            request.app.state.repository.get_session,
            session_id,
            user_id=user.user_id,
        )
        if session is None:
            raise HTTPException(status_code=404, detail="Unknown session")
        return session

    async def store_answer(
        request: Request,
        session_id: str,
        *,
        question: str,
        answer: str,
        feedback: AnswerFeedback,
    ) -> InterviewSession:
        return await run_in_threadpool(
            request.app.state.repository.add_session_question,
            session_id,
            question=question,
            answer=answer,
            score=feedback.score,
            feedback_json=feedback.model_dump_json(),
        )

    async def score_answer(
        request: Request,
        user: UserAccount,
        *,
        question: str,
        answer: str,
        category: str,
    ) -> AnswerFeedback:
        if not answer.strip():
            feedback = heuristic_feedback("")
        else:
            candidate = await load_candidate(request, user)
            feedback = await run_in_threadpool(
                analyze_answer,
                resolved_llm,
                question=question,
                answer=answer,
                category=category,
                candidate=candidate,
            )
        request.app.state.metrics.record_generation("feedback", feedback.generated_by)
        return feedback

    async def load_mock_run(
        request: Request,
        session_id: str,
        user: UserAccount,
    ) -> tuple[InterviewSession, MockRun]:
        session = await load_owned_session(request, session_id, user)
        run = await run_in_threadpool(request.app.state.repository.get_mock_run, session_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Mock interview not started")
        return session, run

    async def settle_mock_run(
        request: Request,
        session: InterviewSession,
        run: MockRun,
        user: UserAccount,
    ) -> tuple[MockRun, int | None, bool]:
        now = resolved_clock()
        resolution = resolve_phase(run, now)
        run = resolution.run
        if resolution.auto_submit_due:
            question = run.current_question or ""
            draft = run.draft_answer
            feedback = await score_answer(
                request,
                user,
                question=question,
                answer=draft,
                category=session.category.lower(),
            )
            await store_answer(
                request,
                session.session_id,
                question=question,
                answer=draft,
                feedback=feedback,
            )
            run = record_answer(run, feedback, now)
            await run_in_threadpool(request.app.state.repository.save_mock_run, run)
            LOGGER.info(
                json.dumps(
                    {
                        "event": "mock_auto_submit",
                        "session_id": session.session_id,
                        "question_index": run.current_index,
                        "draft_chars": len(draft.strip()),
                    }
                )
            )
            return run, None, True
        if resolution.changed:
            await run_in_threadpool(request.app.state.repository.save_mock_run, run)
        return run, resolution.seconds_left, False

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "interview"}

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()

    @app.post("/auth/register", response_model=AuthTokenResponse)
    async def register(
        payload: RegisterRequest,
        request: Request,
        response: Response,
    ) -> AuthTokenResponse:
        try:
            user = await run_in_threadpool(
                request.app.state.repository.create_user,
                email=str(payload.email),
                name=payload.name,
                password=payload.password,
            )
        except DuplicateEmailError as exc:
            await write_audit_event(
                request,
                action="register",
                status="conflict",
                message="email already registered",
            )
            raise HTTPException(status_code=409, detail="Email already registered") from exc
        token, expires_at = await run_in_threadpool(
            request.app.state.repository.issue_auth_token,
            user.user_id,
            ttl_days=resolved_ttl_days,
        )
        event_id = await write_audit_event(
            request,
            action="register",
            status="ok",
            user_id=user.user_id,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return AuthTokenResponse(token=token, expires_at=expires_at, user=user)

    @app.post("/auth/signin", response_model=AuthTokenResponse)
    async def signin(
        payload: SignInRequest,
        request: Request,
        response: Response,
    ) -> AuthTokenResponse:
        user = await run_in_threadpool(
            request.app.state.repository.authenticate_user,
            str(payload.email),
            payload.password,
        )
        if user is None:
            await write_audit_event(
                request,
                action="signin",
                status="unauthorized",
                message="invalid credentials",
            )
            raise HTTPException(status_code=401, detail="Invalid email or password")
        token, expires_at = await run_in_threadpool(
            request.app.state.repository.issue_auth_token,
            user.user_id,
            ttl_days=resolved_ttl_days,
        )
        event_id = await write_audit_event(
            request,
            action="signin",
            status="ok",
            user_id=user.user_id,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return AuthTokenResponse(token=token, expires_at=expires_at, user=user)

    @app.post("/auth/signout")
    async def signout(request: Request, response: Response) -> dict[str, bool]:
        context = await require_user(request, action="signout")
        revoked = await run_in_threadpool(
            request.app.state.repository.revoke_auth_token,
            context.token_id,
        )
        event_id = await write_audit_event(
            request,
            action="signout",
            status="ok",
            user_id=context.user.user_id,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return {"signed_out": revoked}

    @app.get("/auth/me", response_model=UserAccount)
    async def me(request: Request) -> UserAccount:
        context = await require_user(request, action="me")
        return context.user

    @app.post("/interview/session", response_model=CreateSessionResponse)
    async def create_session(
        payload: CreateSessionRequest,
        request: Request,
        response: Response,
    ) -> CreateSessionResponse:
        context = await require_user(request, action="session_create")
        user = context.user
        used = await run_in_threadpool(request.app.state.repository.count_sessions, user.user_id)
        if not can_start_session(user, used, resolved_free_limit):
            await write_audit_event(
                request,
                action="session_create",
                status="limit_reached",
                message=f"used={used} limit={resolved_free_limit}",
                user_id=user.user_id,
            )
            raise HTTPException(status_code=402, detail="Free session limit reached")
        session = await run_in_threadpool(
            request.app.state.repository.create_session,
            user.user_id,
            session_type=payload.type,
            category=payload.category,
            total_questions=payload.total_questions,
        )
        event_id = await write_audit_event(
            request,
            action="session_create",
            status="ok",
            message=f"session_id={session.session_id}",
            user_id=user.user_id,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return CreateSessionResponse(session_id=session.session_id)

    @app.put("/interview/session", response_model=UpdateSessionResponse)
    async def update_session(payload: UpdateSessionRequest, request: Request) -> UpdateSessionResponse:
        context = await require_user(request, action="session_update")
        session = await run_in_threadpool(
            request.app.state.repository.update_session,
            payload.session_id,
            user_id=context.user.user_id,
            status=payload.status,
            duration=payload.duration,
        )
        if session is None:
            raise HTTPException(status_code=404, detail="Unknown session")
        return UpdateSessionResponse(session=session)

    @app.get("/sessions", response_model=SessionListResponse)
    async def list_sessions(
        request: Request,
        limit: int = Query(default=50, ge=1, le=200),
    ) -> SessionListResponse:
        context = await require_user(request, action="session_list")
        sessions = await run_in_threadpool(
            request.app.state.repository.list_sessions,
            context.user.user_id,
            limit=limit,
        )
        return SessionListResponse(sessions=sessions)

    @app.get("/sessions/{session_id}", response_model=SessionDetail)
    async def get_session(session_id: str, request: Request) -> SessionDetail:
        context = await require_user(request, action="session_detail")
        detail = await run_in_threadpool(
            request.app.state.repository.get_session_detail,
            session_id,
            user_id=context.user.user_id,
        )
        if detail is None:
            raise HTTPException(status_code=404, detail="Unknown session")
        return detail

    @app.post("/interview/questions", response_model=QuestionsResponse)
    async def bank_questions(payload: QuestionsRequest) -> QuestionsResponse:
        return QuestionsResponse(
            questions=pick_questions(payload.category, payload.count, resolved_rng)
        )

    @app.post("/resume/generate-questions", response_model=GeneratedQuestionsResponse)
    async def resume_questions(
        payload: ResumeQuestionsRequest,
        request: Request,
    ) -> GeneratedQuestionsResponse:
        context = await require_user(request, action="resume_questions")
        profile = await load_profile(request, context.user)
        candidate = profile.candidate_context(resume_highlights=payload.resume_data)
        if payload.job_role:
            candidate.target_role = payload.job_role
        questions, generated_by = await run_in_threadpool(
            generate_questions,
            resolved_llm,
            category=payload.category,
            difficulty=payload.difficulty,
            count=payload.count,
            candidate=candidate,
        )
        request.app.state.metrics.record_generation("questions", generated_by)
        return GeneratedQuestionsResponse(questions=questions, generated_by=generated_by)

    @app.get("/diagnostics/llm", response_model=LlmDiagnostics)
    async def llm_diagnostics(request: Request) -> LlmDiagnostics:
        await require_user(request, action="llm_diagnostics")
        try:
            reply = await run_in_threadpool(resolved_llm.generate, "Say hello")
        except LlmError as exc:
            LOGGER.warning(json.dumps({"event": "llm_diagnostics_failed", "error": str(exc)}))
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return LlmDiagnostics(ok=True, model=resolved_llm.model_name, reply=reply.strip())

    @app.post("/interview/analyze", response_model=AnalyzeResponse)
    async def analyze(payload: AnalyzeRequest, request: Request) -> AnalyzeResponse:
        context = await require_user(request, action="answer_analyze")
        session = None
        if payload.session_id:
            session = await load_owned_session(request, payload.session_id, context.user)
        feedback = await score_answer(
            request,
            context.user,
            question=payload.question,
            answer=payload.answer,
            category=payload.category,
        )
        if session is not None:
            await store_answer(
                request,
                session.session_id,
                question=payload.question,
                answer=payload.answer,
                feedback=feedback,
            )
        return AnalyzeResponse(feedback=feedback)

    @app.post("/resume/analyze", response_model=ResumeAnalyzeResponse)
    async def resume_analyze(
        request: Request,
        response: Response,
        file: UploadFile = File(...),
    ) -> ResumeAnalyzeResponse:
        context = await require_user(request, action="resume_analyze")
        user = context.user
        contents = await file.read()
        try:
            resume_text = await run_in_threadpool(
                extract_resume_text,
                file.filename,
                file.content_type,
                contents,
            )
        except (PdfReadError, ValueError, KeyError) as exc:
            raise HTTPException(status_code=422, detail=f"Could not read PDF: {exc}") from exc
        if len(resume_text.strip()) < MIN_RESUME_TEXT_CHARS:
            raise HTTPException(
                status_code=422,
                detail="Could not extract enough text from the resume",
            )

        generated_by = "llm"
        try:
            extracted = await run_in_threadpool(analyze_resume, resolved_llm, resume_text)
        except LlmError as exc:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "resume_fallback",
                        "user_id": user.user_id,
                        "error": str(exc),
                    }
                )
            )
            extracted = parse_resume_text(resume_text)
            generated_by = "parser"
        request.app.state.metrics.record_generation("resume", generated_by)

        record = await run_in_threadpool(
            request.app.state.repository.create_resume,
            user.user_id,
            filename=file.filename or "resume",
            file_size=len(contents),
            mime_type=file.content_type,
            extracted=extracted,
        )
        profile = await load_profile(request, user)
        await run_in_threadpool(
            request.app.state.repository.upsert_profile,
            user.user_id,
            merge_resume_into_profile(profile, extracted),
        )
        event_id = await write_audit_event(
            request,
            action="resume_analyze",
            status="ok",
            message=f"resume_id={record.resume_id} generated_by={generated_by}",
            user_id=user.user_id,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return ResumeAnalyzeResponse(
            resume_id=record.resume_id,
            extracted_data=extracted,
            generated_by=generated_by,
            message="Resume analyzed successfully",
        )

    @app.get("/resume/list", response_model=ResumeListResponse)
    async def resume_list(request: Request) -> ResumeListResponse:
        context = await require_user(request, action="resume_list")
        resumes = await run_in_threadpool(
            request.app.state.repository.list_resumes,
            context.user.user_id,
        )
        return ResumeListResponse(resumes=resumes)

    @app.get("/profile", response_model=UserProfile)
    async def get_profile(request: Request) -> UserProfile:
        context = await require_user(request, action="profile_read")
        return await load_profile(request, context.user)

    @app.put("/profile", response_model=ProfileUpdateResponse)
    async def update_profile(
        payload: ProfileUpdateRequest,
        request: Request,
        response: Response,
    ) -> ProfileUpdateResponse:
        context = await require_user(request, action="profile_update")
        stored = await run_in_threadpool(
            request.app.state.repository.upsert_profile,
            context.user.user_id,
            UserProfile.model_validate(payload.model_dump()),
        )
        event_id = await write_audit_event(
            request,
            action="profile_update",
            status="ok",
            user_id=context.user.user_id,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return ProfileUpdateResponse(message="Profile updated successfully", profile=stored)

    @app.get("/usage", response_model=UsageSummary)
    async def usage(request: Request) -> UsageSummary:
        context = await require_user(request, action="usage")
        used = await run_in_threadpool(
            request.app.state.repository.count_sessions,
            context.user.user_id,
        )
        return summarize_usage(context.user, used, resolved_free_limit)

    @app.post("/billing/checkout", response_model=CheckoutResponse)
    async def billing_checkout(request: Request, response: Response) -> CheckoutResponse:
        context = await require_user(request, action="billing_checkout")
        user = context.user
        try:
            checkout = await run_in_threadpool(
                resolved_payments.create_checkout,
                user_id=user.user_id,
                customer_email=user.email,
            )
        except PaymentNotConfiguredError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except PaymentError as exc:
            await write_audit_event(
                request,
                action="billing_checkout",
                status="error",
                message=str(exc),
                user_id=user.user_id,
            )
            raise HTTPException(status_code=502, detail="Payment provider error") from exc
        event_id = await write_audit_event(
            request,
            action="billing_checkout",
            status="ok",
            message=f"checkout_session={checkout.session_id}",
            user_id=user.user_id,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return CheckoutResponse(session_id=checkout.session_id, checkout_url=checkout.url)

    @app.post("/billing/verify", response_model=VerifyPaymentResponse)
    async def billing_verify(
        payload: VerifyPaymentRequest,
        request: Request,
        response: Response,
    ) -> VerifyPaymentResponse:
        context = await require_user(request, action="billing_verify")
        user = context.user
        try:
            status = await run_in_threadpool(resolved_payments.retrieve_checkout, payload.session_id)
        except PaymentNotConfiguredError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except PaymentError as exc:
            await write_audit_event(
                request,
                action="billing_verify",
                status="error",
                message=str(exc),
                user_id=user.user_id,
            )
            raise HTTPException(status_code=502, detail="Payment provider error") from exc

        if status.metadata.get("userId") != user.user_id:
            raise HTTPException(status_code=404, detail="Unknown checkout session")
        if not status.paid:
            await write_audit_event(
                request,
                action="billing_verify",
                status="unpaid",
                message=f"payment_status={status.payment_status}",
                user_id=user.user_id,
            )
            raise HTTPException(status_code=400, detail="Payment not completed")

        updated = await run_in_threadpool(
            request.app.state.repository.set_user_plan,
            user.user_id,
            plan="pro",
            subscription_id=status.subscription_id,
        )
        event_id = await write_audit_event(
            request,
            action="billing_verify",
            status="ok",
            message=f"checkout_session={status.session_id}",
            user_id=user.user_id,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return VerifyPaymentResponse(
            success=True,
            plan=updated.plan,
            customer_email=status.customer_email,
            subscription_id=status.subscription_id,
        )

    @app.post("/interview/sessions/{session_id}/mock/start", response_model=MockState)
    async def mock_start(
        session_id: str,
        request: Request,
        payload: MockStartRequest | None = None,
    ) -> MockState:
        context = await require_user(request, action="mock_start")
        session = await load_owned_session(request, session_id, context.user)
        if session.type != "MOCK":
            raise HTTPException(status_code=409, detail="Mock flow requires a MOCK session")

        requested = payload.questions if payload is not None else []
        questions = [question for question in requested if question.strip()]
        if not questions:
            questions = pick_questions(session.category, session.total_questions, resolved_rng)
        async with mock_lock(session_id):
            existing = await run_in_threadpool(request.app.state.repository.get_mock_run, session_id)
            if existing is not None:
                raise HTTPException(status_code=409, detail="Mock interview already started")
            run = start_run(session_id, questions, resolved_clock())
            await run_in_threadpool(request.app.state.repository.save_mock_run, run)
        return to_state(run, seconds_left=PREP_SECONDS)

    @app.get("/interview/sessions/{session_id}/mock", response_model=MockState)
    async def mock_state(session_id: str, request: Request) -> MockState:
        context = await require_user(request, action="mock_state")
        async with mock_lock(session_id):
            session, run = await load_mock_run(request, session_id, context.user)
            run, seconds_left, auto_submitted = await settle_mock_run(
                request, session, run, context.user
            )
        return to_state(run, seconds_left=seconds_left, auto_submitted=auto_submitted)

    @app.put("/interview/sessions/{session_id}/mock/draft", response_model=MockState)
    async def mock_draft(
        session_id: str,
        payload: MockAnswerRequest,
        request: Request,
    ) -> MockState:
        context = await require_user(request, action="mock_draft")
        async with mock_lock(session_id):
            session, run = await load_mock_run(request, session_id, context.user)
            run, seconds_left, auto_submitted = await settle_mock_run(
                request, session, run, context.user
            )
            try:
                run = save_draft(run, payload.answer)
            except PhaseError as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            await run_in_threadpool(request.app.state.repository.save_mock_run, run)
        return to_state(run, seconds_left=seconds_left, auto_submitted=auto_submitted)

    @app.post("/interview/sessions/{session_id}/mock/answer", response_model=MockState)
    async def mock_answer(
        session_id: str,
        payload: MockAnswerRequest,
        request: Request,
    ) -> MockState:
        context = await require_user(request, action="mock_answer")
        async with mock_lock(session_id):
            session, run = await load_mock_run(request, session_id, context.user)
            run, _, auto_submitted = await settle_mock_run(request, session, run, context.user)
            if run.phase != "answer":
                raise HTTPException(
                    status_code=409,
                    detail=f"Answers can only be submitted while answering, not during {run.phase}.",
                )

            question = run.current_question or ""
            feedback = await score_answer(
                request,
                context.user,
                question=question,
                answer=payload.answer,
                category=session.category.lower(),
            )
            run = record_answer(run, feedback, resolved_clock())
            await store_answer(
                request,
                session_id,
                question=question,
                answer=payload.answer,
                feedback=feedback,
            )
            await run_in_threadpool(request.app.state.repository.save_mock_run, run)
        return to_state(run, seconds_left=None, auto_submitted=auto_submitted)

    @app.post("/interview/sessions/{session_id}/mock/next", response_model=MockState)
    async def mock_next(session_id: str, request: Request) -> MockState:
        context = await require_user(request, action="mock_next")
        async with mock_lock(session_id):
            session, run = await load_mock_run(request, session_id, context.user)
            run, _, _ = await settle_mock_run(request, session, run, context.user)
            now = resolved_clock()
            try:
                run = advance(run, now)
            except PhaseError as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            await run_in_threadpool(request.app.state.repository.save_mock_run, run)
            if run.phase == "finished":
                await run_in_threadpool(
                    request.app.state.repository.update_session,
                    session_id,
                    user_id=context.user.user_id,
                    status="COMPLETED",
                    duration=elapsed_minutes(run, now),
                )
                return to_state(run, seconds_left=None)
        return to_state(run, seconds_left=PREP_SECONDS)

    @app.get("/dashboard/summary", response_model=DashboardSummary)
    async def dashboard_summary(request: Request) -> DashboardSummary:
        context = await require_user(request, action="dashboard_summary")
        sessions = await run_in_threadpool(
            request.app.state.repository.list_sessions,
            context.user.user_id,
        )
        return build_dashboard_summary(sessions, resolved_clock())

    @app.get("/analytics", response_model=AnalyticsReport)
    async def analytics(request: Request) -> AnalyticsReport:
        context = await require_user(request, action="analytics")
        sessions = await run_in_threadpool(
            request.app.state.repository.list_sessions,
            context.user.user_id,
        )
        averages = await run_in_threadpool(request.app.state.repository.list_session_averages)
        return build_analytics(sessions, resolved_clock(), peer_averages=averages.values())

    @app.get("/audit-events", response_model=list[AuditEvent])
    async def list_audit_events(
        request: Request,
        limit: int = Query(default=100, ge=1, le=1000),
        action: str | None = Query(default=None),
        status: str | None = Query(default=None),
    ) -> list[AuditEvent]:
        context = await require_user(request, action="audit_read")
        return await run_in_threadpool(
            request.app.state.repository.list_audit_events,
            user_id=context.user.user_id,
            limit=limit,
            action=action,
            status=status,
        )

    return app


app = create_app()
