from __future__ import annotations

from interview.models import UsageSummary, UserAccount

DEFAULT_FREE_SESSION_LIMIT = 5


def summarize_usage(user: UserAccount, used: int, free_limit: int) -> UsageSummary:
    if user.plan == "pro":
        return UsageSummary(
            plan="pro",
            used=used,
            limit=None,
            remaining=None,
            has_reached_limit=False,
        )
    return UsageSummary(
        plan=user.plan,
        used=used,
        limit=free_limit,
        remaining=max(0, free_limit - used),
        has_reached_limit=used >= free_limit,
    )


def can_start_session(user: UserAccount, used: int, free_limit: int) -> bool:
    return not summarize_usage(user, used, free_limit).has_reached_limit
