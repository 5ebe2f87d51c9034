"""Reminder cadence and template tier selection."""

from __future__ import annotations

from datetime import date, datetime, timedelta


# Delay after the n-th successful send (index n-1). Cumulative offsets from
# creation: day 0, 3, 7, 14, 18, 25.
REMINDER_DELAYS: tuple[timedelta, ...] = (
    timedelta(days=3),
    timedelta(days=4),
    timedelta(days=7),
    timedelta(days=4),
    timedelta(days=7),
)
# Beyond the listed cadence (only reachable with a raised max_attempts).
FALLBACK_DELAY = timedelta(days=7)

TEMPLATE_INVITE_INITIAL = "invite_initial"
TEMPLATE_REMINDER_SOFT = "reminder_soft"
TEMPLATE_REMINDER_HARD = "reminder_hard"
TEMPLATE_ESCALATION = "escalation"
TEMPLATE_MONTHLY_REFRESH = "monthly_refresh"

DEFAULT_MONTHLY_REFRESH_DAYS: tuple[int, ...] = (3, 10, 17, 24)


def delay_after_attempt(attempt_number: int) -> timedelta:
    """Delay until the next run once `attempt_number` sends have succeeded."""
    if attempt_number < 1:
        raise ValueError("attempt_number starts at 1")
    if attempt_number <= len(REMINDER_DELAYS):
        return REMINDER_DELAYS[attempt_number - 1]
    return FALLBACK_DELAY


def next_run_after(attempt_number: int, *, at: datetime) -> datetime:
    return at + delay_after_attempt(attempt_number)


def select_template(attempts: int, max_attempts: int) -> str:
    """Template tier for a send made while the job has `attempts` prior sends."""
    if attempts < 0:
        raise ValueError("attempts must be >= 0")
    if attempts >= max_attempts:
        return TEMPLATE_ESCALATION
    if attempts == 0:
        return TEMPLATE_INVITE_INITIAL
    if attempts <= 2:
        return TEMPLATE_REMINDER_SOFT
    return TEMPLATE_REMINDER_HARD


def is_escalation(attempts: int, max_attempts: int) -> bool:
    return select_template(attempts, max_attempts) == TEMPLATE_ESCALATION


def is_monthly_refresh_day(day: date, refresh_days: tuple[int, ...] = DEFAULT_MONTHLY_REFRESH_DAYS) -> bool:
    return day.day in refresh_days
