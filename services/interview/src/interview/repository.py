from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from common.utils import now_utc_iso

from interview.models import (
    AnsweredQuestion,
    AuditEvent,
    AuthContext,
    InterviewSession,
    ResumeData,
    ResumeRecord,
    SessionDetail,
    UserAccount,
    UserProfile,
)
from interview.practice import MockRun
from interview.security import generate_token, hash_password, hash_token, verify_password


class DuplicateEmailError(ValueError):
    pass


class InterviewRepository:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys=ON")
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    password_hash TEXT NOT NULL,
                    plan TEXT NOT NULL DEFAULT 'free',
                    subscription_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS auth_tokens (
                    token_id TEXT PRIMARY KEY,
                    token_hash TEXT NOT NULL UNIQUE,
                    user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    revoked_at TEXT,
                    last_used_at TEXT,
                    last_used_ip TEXT,
                    last_used_user_agent TEXT
                );

                CREATE TABLE IF NOT EXISTS audit_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    occurred_at TEXT NOT NULL,
                    request_id TEXT,
                    method TEXT NOT NULL,
                    path TEXT NOT NULL,
                    action TEXT NOT NULL,
                    user_id TEXT,
                    source_ip TEXT,
                    user_agent TEXT,
                    status TEXT NOT NULL,
                    message TEXT
                );

                CREATE TABLE IF NOT EXISTS profiles (
                    user_id TEXT PRIMARY KEY REFERENCES users(user_id) ON DELETE CASCADE,
                    profile_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS resumes (
                    resume_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
                    filename TEXT NOT NULL,
                    file_size INTEGER NOT NULL,
                    mime_type TEXT,
                    extracted_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS interview_sessions (
                    session_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
                    type TEXT NOT NULL,
                    category TEXT NOT NULL,
                    status TEXT NOT NULL,
                    total_questions INTEGER NOT NULL,
                    questions_answered INTEGER NOT NULL DEFAULT 0,
                    score REAL,
                    duration INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT
                );

                CREATE TABLE IF NOT EXISTS interview_questions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL
                        REFERENCES interview_sessions(session_id) ON DELETE CASCADE,
                    question TEXT NOT NULL,
                    answer TEXT NOT NULL,
                    score REAL,
                    feedback_json TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS mock_runs (
                    session_id TEXT PRIMARY KEY
                        REFERENCES interview_sessions(session_id) ON DELETE CASCADE,
                    run_json TEXT NOT NULL,
                    phase TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_sessions_user_created
                    ON interview_sessions(user_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_questions_session
                    ON interview_questions(session_id);
                """
            )
            self._ensure_columns(
                "users",
                {
                    "plan": "TEXT NOT NULL DEFAULT 'free'",
                    "subscription_id": "TEXT",
                },
            )
            self._ensure_columns(
                "interview_sessions",
                {
                    "questions_answered": "INTEGER NOT NULL DEFAULT 0",
                    "completed_at": "TEXT",
                },
            )
            self._ensure_columns(
                "auth_tokens",
                {
                    "last_used_at": "TEXT",
                    "last_used_ip": "TEXT",
                    "last_used_user_agent": "TEXT",
                },
            )
            self._connection.commit()

    def _ensure_columns(self, table: str, required_definitions: dict[str, str]) -> None:
        column_rows = self.connection.execute(f"PRAGMA table_info({table})").fetchall()
        existing = {row["name"] for row in column_rows}
        for column_name, definition in required_definitions.items():
            if column_name in existing:
                continue
            self.connection.execute(f"ALTER TABLE {table} ADD COLUMN {column_name} {definition}")

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    # Accounts

    def create_user(self, *, email: str, name: str, password: str) -> UserAccount:
        with self._lock:
            now = now_utc_iso()
            user_id = str(uuid.uuid4())
            try:
                self.connection.execute(
                    """
                    INSERT INTO users (
                        user_id,
                        email,
                        name,
                        password_hash,
                        plan,
                        created_at,
                        updated_at
                    )
                    VALUES (?, ?, ?, ?, 'free', ?, ?)
                    """,
                    (user_id, email.lower(), name.strip(), hash_password(password), now, now),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateEmailError(f"Email already registered: {email}") from exc
            self.connection.commit()
            return self.get_user_or_raise(user_id)

    def authenticate_user(self, email: str, password: str) -> UserAccount | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT user_id, password_hash FROM users WHERE email = ?",
                (email.lower(),),
            ).fetchone()
            if row is None or not verify_password(password, row["password_hash"]):
                return None
            return self.get_user_or_raise(row["user_id"])

    def get_user_or_raise(self, user_id: str) -> UserAccount:
        user = self.get_user(user_id)
        if user is None:
            raise KeyError(f"Unknown user_id: {user_id}")
        return user

    def get_user(self, user_id: str) -> UserAccount | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT
                    user_id,
                    email,
                    name,
                    plan,
                    subscription_id,
                    created_at,
                    updated_at
                FROM users
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return UserAccount(**dict(row))

    def set_user_plan(
        self,
        user_id: str,
        *,
        plan: str,
        subscription_id: str | None,
    ) -> UserAccount:
        with self._lock:
            cursor = self.connection.execute(
                """
                UPDATE users
                SET plan = ?, subscription_id = ?, updated_at = ?
                WHERE user_id = ?
                """,
                (plan, subscription_id, now_utc_iso(), user_id),
            )
            self.connection.commit()
            if cursor.rowcount == 0:
                raise KeyError(f"Unknown user_id: {user_id}")
            return self.get_user_or_raise(user_id)

    def issue_auth_token(self, user_id: str, *, ttl_days: int) -> tuple[str, str]:
        with self._lock:
            now = datetime.now(UTC)
            raw_token = generate_token()
            expires_at = (now + timedelta(days=ttl_days)).isoformat()
            self.connection.execute(
                """
                INSERT INTO auth_tokens (
                    token_id,
                    token_hash,
                    user_id,
                    created_at,
                    expires_at
                )
                VALUES (?, ?, ?, ?, ?)
                """,
                (str(uuid.uuid4()), hash_token(raw_token), user_id, now.isoformat(), expires_at),
            )
            self.connection.commit()
            return raw_token, expires_at

    def resolve_auth_token(
        self,
        token_value: str,
        *,
        source_ip: str | None,
        user_agent: str | None,
    ) -> AuthContext | None:
        with self._lock:
            now = now_utc_iso()
            row = self.connection.execute(
                """
                SELECT token_id, user_id
                FROM auth_tokens
                WHERE token_hash = ?
                  AND revoked_at IS NULL
                  AND expires_at > ?
                """,
                (hash_token(token_value), now),
            ).fetchone()
            if row is None:
                return None
            user = self.get_user(row["user_id"])
            if user is None:
                return None
            self.connection.execute(
                """
                UPDATE auth_tokens
                SET
                    last_used_at = ?,
                    last_used_ip = ?,
                    last_used_user_agent = ?
                WHERE token_id = ?
                """,
                (now, source_ip, user_agent, row["token_id"]),
            )
            self.connection.commit()
            return AuthContext(user=user, token_id=row["token_id"])

    def revoke_auth_token(self, token_id: str) -> bool:
        with self._lock:
            cursor = self.connection.execute(
                """
                UPDATE auth_tokens
                SET revoked_at = ?
                WHERE token_id = ? AND revoked_at IS NULL
                """,
                (now_utc_iso(), token_id),
            )
            self.connection.commit()
            return cursor.rowcount > 0

    # Audit trail

    def record_audit_event(
        self,
        *,
        request_id: str | None,
        method: str,
        path: str,
        action: str,
        user_id: str | None,
        source_ip: str | None,
        user_agent: str | None,
        status: str,
        message: str | None,
    ) -> int:
        with self._lock:
            cursor = self.connection.execute(
                """
                INSERT INTO audit_events (
                    occurred_at,
                    request_id,
                    method,
                    path,
                    action,
                    user_id,
                    source_ip,
                    user_agent,
                    status,
                    message
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    now_utc_iso(),
                    request_id,
                    method,
                    path,
                    action,
                    user_id,
                    source_ip,
                    user_agent,
                    status,
                    message,
                ),
            )
            self.connection.commit()
            return int(cursor.lastrowid)

    def list_audit_events(
        self,
        *,
        user_id: str,
        limit: int,
        action: str | None,
        status: str | None,
    ) -> list[AuditEvent]:
        with self._lock:
            query = """
                SELECT
                    id AS event_id,
                    occurred_at,
                    request_id,
                    method,
                    path,
                    action,
                    user_id,
                    source_ip,
                    user_agent,
                    status,
                    message
                FROM audit_events
                WHERE user_id = ?
            """
            params: list[Any] = [user_id]
            if action:
                query += " AND action = ?"
                params.append(action)
            if status:
                query += " AND status = ?"
                params.append(status)
            query += " ORDER BY id DESC LIMIT ?"
            params.append(limit)
            cursor = self.connection.execute(query, tuple(params))
            return [AuditEvent(**dict(row)) for row in cursor.fetchall()]

    # Profiles and resumes

    def get_profile(self, user_id: str) -> UserProfile | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT profile_json FROM profiles WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return UserProfile.model_validate_json(row["profile_json"])

    def upsert_profile(self, user_id: str, profile: UserProfile) -> UserProfile:
        with self._lock:
            now = now_utc_iso()
            stored = UserProfile.model_validate(profile.model_dump())
            self.connection.execute(
                """
                INSERT INTO profiles (
                    user_id,
                    profile_json,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    profile_json = excluded.profile_json,
                    updated_at = excluded.updated_at
                """,
                (user_id, stored.model_dump_json(), now, now),
            )
            if stored.personal_info.name:
                self.connection.execute(
                    "UPDATE users SET name = ?, updated_at = ? WHERE user_id = ?",
                    (stored.personal_info.name, now, user_id),
                )
            self.connection.commit()
            return stored

    def create_resume(
        self,
        user_id: str,
        *,
        filename: str,
        file_size: int,
        mime_type: str | None,
        extracted: ResumeData,
    ) -> ResumeRecord:
        with self._lock:
            resume_id = str(uuid.uuid4())
            now = now_utc_iso()
            self.connection.execute(
                """
                INSERT INTO resumes (
                    resume_id,
                    user_id,
                    filename,
                    file_size,
                    mime_type,
                    extracted_json,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    resume_id,
                    user_id,
                    filename,
                    file_size,
                    mime_type,
                    extracted.model_dump_json(),
                    now,
                ),
            )
            self.connection.commit()
            return ResumeRecord(
                resume_id=resume_id,
                filename=filename,
                file_size=file_size,
                mime_type=mime_type,
                created_at=now,
                extracted_data=extracted,
            )

    def list_resumes(self, user_id: str) -> list[ResumeRecord]:
        with self._lock:
            cursor = self.connection.execute(
                """
                SELECT
                    resume_id,
                    filename,
                    file_size,
                    mime_type,
                    extracted_json,
                    created_at
                FROM resumes
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (user_id,),
            )
            return [
                ResumeRecord(
                    resume_id=row["resume_id"],
                    filename=row["filename"],
                    file_size=row["file_size"],
                    mime_type=row["mime_type"],
                    created_at=row["created_at"],
                    extracted_data=ResumeData.model_validate_json(row["extracted_json"]),
                )
                for row in cursor.fetchall()
            ]

    # Interview sessions

    def create_session(
        self,
        user_id: str,
        *,
        session_type: str,
        category: str,
        total_questions: int,
    ) -> InterviewSession:
        with self._lock:
            session_id = str(uuid.uuid4())
            now = now_utc_iso()
            self.connection.execute(
                """
                INSERT INTO interview_sessions (
                    session_id,
                    user_id,
                    type,
                    category,
                    status,
                    total_questions,
                    questions_answered,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, 'IN_PROGRESS', ?, 0, ?, ?)
                """,
                (session_id, user_id, session_type, category, total_questions, now, now),
            )
            self.connection.commit()
            return self.get_session_or_raise(session_id)

    def count_sessions(self, user_id: str) -> int:
        with self._lock:
            row = self.connection.execute(
                "SELECT COUNT(1) AS c FROM interview_sessions WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            return int(row["c"])

    def get_session_or_raise(self, session_id: str) -> InterviewSession:
        session = self.get_session(session_id)
        if session is None:
            raise KeyError(f"Unknown session_id: {session_id}")
        return session

    def get_session(self, session_id: str, *, user_id: str | None = None) -> InterviewSession | None:
        with self._lock:
            query = """
                SELECT
                    session_id,
                    user_id,
                    type,
                    category,
                    status,
                    total_questions,
                    questions_answered,
                    score,
                    duration,
                    created_at,
                    updated_at,
                    completed_at
                FROM interview_sessions
                WHERE session_id = ?
            """
            params: list[Any] = [session_id]
            if user_id is not None:
                query += " AND user_id = ?"
                params.append(user_id)
            row = self.connection.execute(query, tuple(params)).fetchone()
            if row is None:
                return None
            return InterviewSession(**dict(row))

    def list_sessions(self, user_id: str, *, limit: int | None = None) -> list[InterviewSession]:
        with self._lock:
            query = """
                SELECT
                    session_id,
                    user_id,
                    type,
                    category,
                    status,
                    total_questions,
                    questions_answered,
                    score,
                    duration,
                    created_at,
                    updated_at,
                    completed_at
                FROM interview_sessions
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
            """
            params: list[Any] = [user_id]
            if limit is not None:
                query += " LIMIT ?"
                params.append(limit)
            cursor = self.connection.execute(query, tuple(params))
            return [InterviewSession(**dict(row)) for row in cursor.fetchall()]

    def update_session(
        self,
        session_id: str,
        *,
        user_id: str,
        status: str | None,
        duration: int | None,
    ) -> InterviewSession | None:
        with self._lock:
            now = now_utc_iso()
            cursor = self.connection.execute(
                """
                UPDATE interview_sessions
                SET
                    status = COALESCE(?, status),
                    duration = COALESCE(?, duration),
                    completed_at = CASE
                        WHEN ? = 'COMPLETED' AND completed_at IS NULL THEN ?
                        ELSE completed_at
                    END,
                    updated_at = ?
                WHERE session_id = ? AND user_id = ?
                """,
                (status, duration, status, now, now, session_id, user_id),
            )
            self.connection.commit()
            if cursor.rowcount == 0:
                return None
            return self.get_session_or_raise(session_id)

    def add_session_question(
        self,
        session_id: str,
        *,
        question: str,
        answer: str,
        score: float,
        feedback_json: str,
    ) -> InterviewSession:
        with self._lock:
            now = now_utc_iso()
            self.connection.execute(
                """
                INSERT INTO interview_questions (
                    session_id,
                    question,
                    answer,
                    score,
                    feedback_json,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (session_id, question, answer, score, feedback_json, now),
            )
            aggregate = self.connection.execute(
                """
                SELECT COUNT(1) AS answered, AVG(COALESCE(score, 0)) AS average_score
                FROM interview_questions
                WHERE session_id = ?
                """,
                (session_id,),
            ).fetchone()
            self.connection.execute(
                """
                UPDATE interview_sessions
                SET score = ?, questions_answered = ?, updated_at = ?
                WHERE session_id = ?
                """,
                (aggregate["average_score"], aggregate["answered"], now, session_id),
            )
            self.connection.commit()
            return self.get_session_or_raise(session_id)

    def get_session_detail(self, session_id: str, *, user_id: str) -> SessionDetail | None:
        with self._lock:
            session = self.get_session(session_id, user_id=user_id)
            if session is None:
                return None
            cursor = self.connection.execute(
                """
                SELECT
                    id AS question_id,
                    question,
                    answer,
                    score,
                    feedback_json,
                    created_at
                FROM interview_questions
                WHERE session_id = ?
                ORDER BY id
                """,
                (session_id,),
            )
            questions = [self._to_answered_question(row) for row in cursor.fetchall()]
            return SessionDetail(**session.model_dump(), questions=questions)

    def list_session_averages(self) -> dict[str, float]:
        with self._lock:
            cursor = self.connection.execute(
                """
                SELECT user_id, AVG(score) AS average_score
                FROM interview_sessions
                WHERE score IS NOT NULL
                GROUP BY user_id
                """
            )
            return {row["user_id"]: float(row["average_score"]) for row in cursor.fetchall()}

    # Mock runs

    def get_mock_run(self, session_id: str) -> MockRun | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT run_json FROM mock_runs WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            if row is None:
                return None
            return MockRun.model_validate_json(row["run_json"])

    def save_mock_run(self, run: MockRun) -> MockRun:
        with self._lock:
            self.connection.execute(
                """
                INSERT INTO mock_runs (session_id, run_json, phase, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    run_json = excluded.run_json,
                    phase = excluded.phase,
                    updated_at = excluded.updated_at
                """,
                (run.session_id, run.model_dump_json(), run.phase, now_utc_iso()),
            )
            self.connection.commit()
            return run

    def _to_answered_question(self, row: sqlite3.Row) -> AnsweredQuestion:
        feedback: dict[str, Any] | None = None
        if row["feedback_json"]:
            try:
                decoded = json.loads(row["feedback_json"])
            except json.JSONDecodeError:
                decoded = None
            if isinstance(decoded, dict):
                feedback = decoded
        return AnsweredQuestion(
            question_id=row["question_id"],
            question=row["question"],
            answer=row["answer"],
            score=row["score"],
            feedback=feedback,
            created_at=row["created_at"],
        )
