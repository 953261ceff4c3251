from __future__ import annotations

from datetime import datetime

from ctp.domain.models import MS_PER_HOUR


def money(value: float) -> float:
    return round(float(value), 2)


def session_cost(clock_in: datetime, clock_out: datetime, hourly_rate: float) -> tuple[int, float, bool]:
    """
    Returns (duration_ms, cost, skewed).

    A clock_out earlier than clock_in yields a zero-length, zero-cost session
    with skewed=True.
    """
    duration_ms = int(round((clock_out - clock_in).total_seconds() * 1000))
    skewed = duration_ms < 0
    if skewed:
        duration_ms = 0
    cost = money(duration_ms / MS_PER_HOUR * float(hourly_rate))
    return duration_ms, cost, skewed


def hours(duration_ms: int | None) -> float:
    return (duration_ms or 0) / MS_PER_HOUR
