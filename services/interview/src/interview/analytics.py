"""Dashboard and analytics aggregation.

Everything here is a pure function of the caller's sessions and a ``now``;
the route handlers load the rows and pass the clock in.
"""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta

from common.utils import parse_iso_datetime

from interview.models import (
    Achievement,
    AnalyticsReport,
    AnalyticsSession,
    CategoryBreakdown,
    DashboardGoals,
    DashboardStats,
    DashboardSummary,
    InterviewSession,
    KeyMetrics,
    PerformancePoint,
    QuickStats,
    RecentSession,
    WeeklyActivity,
)

STREAK_LOOKBACK_DAYS = 60
MARATHON_LOOKBACK_DAYS = 60
MARATHON_SESSIONS_PER_DAY = 5
HIGH_SCORE = 9.0
PERSONAL_BEST_SCORE = 9.5
ON_FIRE_STREAK = 7
WEEKLY_TARGET = 5
SCORE_TARGET = 9.0
RECENT_DASHBOARD_SESSIONS = 5
RECENT_ANALYTICS_SESSIONS = 10
PERFORMANCE_MONTHS = 6


def _created(session: InterviewSession) -> datetime:
    return parse_iso_datetime(session.created_at) or datetime.fromtimestamp(0, UTC)


def _created_day(session: InterviewSession) -> date:
    return _created(session).astimezone(UTC).date()


def _mean(values: Iterable[float]) -> float | None:
    collected = list(values)
    if not collected:
        return None
    return sum(collected) / len(collected)


def _round(value: float | None, digits: int = 1) -> float | None:
    if value is None:
        return None
    return round(value, digits)


def _scores(sessions: Iterable[InterviewSession]) -> list[float]:
    return [session.score for session in sessions if session.score is not None]


def _format_delta(delta: float | None) -> str:
    if delta is None:
        return "N/A"
    if delta > 0:
        return f"+{delta:.1f}"
    return f"{delta:.1f}"


def _month_start(moment: date, months_back: int = 0) -> date:
    month_index = moment.year * 12 + (moment.month - 1) - months_back
    return date(month_index // 12, month_index % 12 + 1, 1)


def day_streak(days: Iterable[date], today: date) -> int:
    """Count consecutive days ending today that have at least one session."""
    active = set(days)
    streak = 0
    for offset in range(STREAK_LOOKBACK_DAYS):
        if today - timedelta(days=offset) not in active:
            break
        streak += 1
    return streak


def build_dashboard_summary(sessions: list[InterviewSession], now: datetime) -> DashboardSummary:
    today = now.astimezone(UTC).date()
    days = [_created_day(session) for session in sessions]
    scores = _scores(sessions)

    high_scores = sum(1 for score in scores if score >= HIGH_SCORE)
    streak = day_streak(days, today)
    week_start = today - timedelta(days=6)
    sessions_this_week = sum(1 for day in days if day >= week_start)
    total_minutes = sum(session.duration or 0 for session in sessions)
    personal_best = max(scores) if scores else None

    marathon_start = today - timedelta(days=MARATHON_LOOKBACK_DAYS)
    per_day = Counter(day for day in days if day >= marathon_start)
    busiest_day = max(per_day.values(), default=0)

    achievements: list[Achievement] = []
    if sessions:
        achievements.append(
            Achievement(title="Getting Started", description="Completed your first session")
        )
    if high_scores:
        achievements.append(
            Achievement(title="High Performer", description="Scored 9 or higher in a session")
        )
    if personal_best is not None and personal_best >= PERSONAL_BEST_SCORE:
        achievements.append(
            Achievement(title="Personal Best", description=f"Top score {round(personal_best, 1)}/10")
        )
    if streak >= ON_FIRE_STREAK:
        achievements.append(Achievement(title="On Fire", description=f"Current streak {streak} days"))
    if busiest_day >= MARATHON_SESSIONS_PER_DAY:
        achievements.append(
            Achievement(title="Marathoner", description="Completed 5 sessions in a day")
        )

    newest_first = sorted(sessions, key=_created, reverse=True)
    recent = [
        RecentSession(
            id=session.session_id,
            type=session.category,
            mode=session.type,
            score=_round(session.score),
            created_at=session.created_at,
            duration=session.duration,
            status=session.status,
        )
        for session in newest_first[:RECENT_DASHBOARD_SESSIONS]
    ]

    return DashboardSummary(
        stats=DashboardStats(
            sessions_count=len(sessions),
            average_score=_round(_mean(scores), 2),
            total_minutes=total_minutes,
            achievements=high_scores,
            streak=streak,
            sessions_this_week=sessions_this_week,
        ),
        goals=DashboardGoals(
            weekly_target=WEEKLY_TARGET,
            weekly_completed=sessions_this_week,
            score_target=SCORE_TARGET,
        ),
        achievements_list=achievements,
        recent_sessions=recent,
    )


def global_ranking(user_average: float | None, peer_averages: Iterable[float]) -> str:
    if user_average is None:
        return "No data"
    averages = list(peer_averages)
    if not averages:
        return "No data"
    ahead = sum(1 for average in averages if average > user_average)
    top_percent = max(1, math.ceil((ahead + 1) / len(averages) * 100))
    return f"Top {min(top_percent, 100)}%"


def _improvement_rate(current: float | None, previous: float | None) -> float:
    if current is None or previous is None or previous == 0:
        return 0.0
    return round((current - previous) / previous * 100, 1)


def _category_improvement(sessions: list[InterviewSession]) -> float | None:
    scored = [session.score for session in sorted(sessions, key=_created) if session.score is not None]
    if len(scored) < 2:
        return None
    return scored[-1] - scored[0]


def build_analytics(
    sessions: list[InterviewSession],
    now: datetime,
    *,
    peer_averages: Iterable[float] = (),
) -> AnalyticsReport:
    today = now.astimezone(UTC).date()
    oldest_first = sorted(sessions, key=_created)
    scores = _scores(oldest_first)
    average = _mean(scores)

    def sessions_between(start: date, end: date) -> list[InterviewSession]:
        return [session for session in oldest_first if start <= _created_day(session) <= end]

    this_week = sessions_between(today - timedelta(days=6), today)
    last_week = sessions_between(today - timedelta(days=13), today - timedelta(days=7))
    this_week_avg = _mean(_scores(this_week))
    last_week_avg = _mean(_scores(last_week))
    score_change = 0.0
    if this_week_avg is not None and last_week_avg is not None:
        score_change = round(this_week_avg - last_week_avg, 1)

    month_starts = [_month_start(today, back) for back in range(PERFORMANCE_MONTHS)]
    by_month: dict[date, list[InterviewSession]] = defaultdict(list)
    for session in oldest_first:
        by_month[_month_start(_created_day(session))].append(session)

    this_month_avg = _mean(_scores(by_month[month_starts[0]]))
    last_month_avg = _mean(_scores(by_month[month_starts[1]]))
    two_months_avg = _mean(_scores(by_month[month_starts[2]]))
    improvement_rate = _improvement_rate(this_month_avg, last_month_avg)
    previous_rate = _improvement_rate(last_month_avg, two_months_avg)

    total_minutes = sum(session.duration or 0 for session in oldest_first)
    week_minutes = sum(session.duration or 0 for session in this_week)
    last_week_minutes = sum(session.duration or 0 for session in last_week)

    key_metrics = KeyMetrics(
        overall_score=_round(average) or 0.0,
        score_change=score_change,
        sessions_this_month=len(by_month[month_starts[0]]),
        sessions_last_month=len(by_month[month_starts[1]]),
        practice_time_hours=round(total_minutes / 60, 1),
        practice_time_change=round((week_minutes - last_week_minutes) / 60, 1),
        improvement_rate=improvement_rate,
        improvement_change=round(improvement_rate - previous_rate, 1),
    )

    performance_data = []
    for month_start in reversed(month_starts):
        month_sessions = by_month[month_start]
        performance_data.append(
            PerformancePoint(
                month=month_start.strftime("%b"),
                voice=_round(_mean(_scores(s for s in month_sessions if s.type == "VOICE"))),
                text=_round(_mean(_scores(s for s in month_sessions if s.type == "TEXT"))),
                mock=_round(_mean(_scores(s for s in month_sessions if s.type == "MOCK"))),
            )
        )

    by_category: dict[str, list[InterviewSession]] = defaultdict(list)
    for session in oldest_first:
        by_category[session.category].append(session)
    category_breakdown = []
    improvements: dict[str, float] = {}
    for category, category_sessions in by_category.items():
        improvement = _category_improvement(category_sessions)
        if improvement is not None:
            improvements[category] = improvement
        durations = [s.duration for s in category_sessions if s.duration is not None]
        category_breakdown.append(
            CategoryBreakdown(
                category=category,
                score=_round(_mean(_scores(category_sessions))),
                sessions=len(category_sessions),
                improvement=_format_delta(improvement),
                total_questions=sum(s.questions_answered for s in category_sessions),
                average_time=_round(_mean(durations)) or 0.0,
            )
        )

    previous_score: float | None = None
    chronological: list[AnalyticsSession] = []
    for session in oldest_first:
        delta = None
        if session.score is not None and previous_score is not None:
            delta = session.score - previous_score
        chronological.append(
            AnalyticsSession(
                id=session.session_id,
                date=session.created_at,
                type=session.type,
                category=session.category,
                score=_round(session.score),
                duration=session.duration,
                improvement=_format_delta(delta),
                questions_answered=session.questions_answered,
                total_questions=session.total_questions,
            )
        )
        if session.score is not None:
            previous_score = session.score
    recent_sessions = list(reversed(chronological))[:RECENT_ANALYTICS_SESSIONS]

    completed = sum(1 for session in oldest_first if session.status == "COMPLETED")
    most_improved = "None"
    positive = {category: value for category, value in improvements.items() if value > 0}
    if positive:
        most_improved = max(positive, key=positive.get)

    quick_stats = QuickStats(
        day_streak=day_streak((_created_day(s) for s in oldest_first), today),
        completion_rate=round(completed / len(oldest_first) * 100, 1) if oldest_first else 0.0,
        global_ranking=global_ranking(average, peer_averages),
        total_sessions=len(oldest_first),
        total_practice_time=total_minutes,
        average_score=_round(average) or 0.0,
        best_score=max(scores) if scores else 0.0,
        most_improved_category=most_improved,
    )

    weekly_activity = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        day_sessions = [s for s in this_week if _created_day(s) == day]
        weekly_activity.append(
            WeeklyActivity(
                day=day.strftime("%a"),
                sessions=len(day_sessions),
                score=_round(_mean(_scores(day_sessions))),
            )
        )

    return AnalyticsReport(
        key_metrics=key_metrics,
        performance_data=performance_data,
        category_breakdown=category_breakdown,
        recent_sessions=recent_sessions,
        quick_stats=quick_stats,
        weekly_activity=weekly_activity,
    )
