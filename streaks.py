"""
Streak tracking for study sessions.

Daily streaks advance once per calendar day of study; weekly streaks count
consecutive ISO weeks with at least WEEKLY_DAYS_REQUIRED study days.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

WEEKLY_DAYS_REQUIRED = 4


@dataclass
class ProfileStats:
    total_sessions: int = 0
    total_cards_studied: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_session_date: str | None = None

    def to_dict(self) -> dict:
        return {
            "total_sessions": self.total_sessions,
            "total_cards_studied": self.total_cards_studied,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_session_date": self.last_session_date,
        }


def _as_date(value: str | None) -> date | None:
    if not value:
        return None
    return datetime.fromisoformat(value).date()


def is_new_session(stats: ProfileStats, today: date) -> bool:
    """True when nothing has been recorded yet today."""
    return _as_date(stats.last_session_date) != today


def update_stats(stats: ProfileStats, new_session: bool, now: datetime | None = None) -> ProfileStats:
    """Apply one card review to the profile counters and daily streak."""
    now = now or datetime.now()
    today = now.date()
    last = _as_date(stats.last_session_date)

    current = stats.current_streak
    if last != today:
        if last is not None and (today - last).days == 1:
            current += 1
        else:
            current = 1

    return ProfileStats(
        total_sessions=stats.total_sessions + (1 if new_session else 0),
        total_cards_studied=stats.total_cards_studied + 1,
        current_streak=current,
        longest_streak=max(stats.longest_streak, current),
        last_session_date=now.isoformat(timespec="seconds"),
    )


# ── Weekly streak ────────────────────────────────────────────────────


def iso_week(day: date) -> str:
    """ISO week key, e.g. '2026-W07'."""
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def _week_index(week: str | None) -> int | None:
    """Monotonic week number, so consecutive ISO weeks differ by exactly one."""
    if not week:
        return None
    year, num = week.split("-W")
    monday = date.fromisocalendar(int(year), int(num), 1)
    return monday.toordinal() // 7


@dataclass
class WeeklyStreak:
    current_weekly_streak: int = 0
    longest_weekly_streak: int = 0
    week_study_days: dict[str, list[int]] = field(default_factory=dict)
    last_week_completed: str | None = None
    streak_freezes: int = 0

    def days_this_week(self, today: date) -> int:
        return len(self.week_study_days.get(iso_week(today), []))


def update_weekly_streak(state: WeeklyStreak, today: date | None = None) -> WeeklyStreak:
    """Record a study day and advance or break the weekly streak."""
    today = today or date.today()
    week = iso_week(today)
    weekday = today.isoweekday()

    days = {k: list(v) for k, v in state.week_study_days.items()}
    this_week = days.setdefault(week, [])
    if weekday not in this_week:
        this_week.append(weekday)

    streak = state.current_weekly_streak
    longest = state.longest_weekly_streak
    last_completed = state.last_week_completed
    current_idx = _week_index(week)

    if len(this_week) >= WEEKLY_DAYS_REQUIRED and last_completed != week:
        last_idx = _week_index(last_completed)
        if last_idx is None or current_idx == last_idx + 1:
            streak += 1
        else:
            streak = 1
        longest = max(longest, streak)
        last_completed = week

    days = {k: v for k, v in days.items() if _week_index(k) >= current_idx - 1}

    if last_completed and current_idx > _week_index(last_completed) + 1:
        streak = 0

    return WeeklyStreak(
        current_weekly_streak=streak,
        longest_weekly_streak=longest,
        week_study_days=days,
        last_week_completed=last_completed,
        streak_freezes=state.streak_freezes,
    )
