"""Current-balance computation with per-second compound interest.

Classes carry a monthly interest rate. A month is treated as 30 days and the
rate is compounded every second from the investment date until ``now``, or
until the end of the class's final day once that has passed.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time

from vcoin.metrics import InvestmentRecord

SECONDS_PER_MONTH = 30 * 24 * 3600
DEFAULT_MONTHLY_RATE = 0.01


@dataclass(frozen=True)
class ClassSettings:
    """Interest settings of the class a student belongs to."""

    end_date: date | None
    monthly_interest_rate: float | None = None


def seconds_rate(monthly_rate: float) -> float:
    """Per-second rate equivalent to ``monthly_rate`` over a 30-day month."""
    return (1 + monthly_rate) ** (1 / SECONDS_PER_MONTH) - 1


def class_end(settings: ClassSettings) -> datetime | None:
    """Last instant of the class (end of its final day, UTC)."""
    if settings.end_date is None:
        return None
    return datetime.combine(settings.end_date, time.max, tzinfo=UTC)


def balance_at(
    at: datetime,
    investments: Sequence[InvestmentRecord],
    monthly_rate: float,
) -> float:
    """Compounded value of all investments made strictly before ``at``."""
    if not investments:
        return 0.0

    rate = seconds_rate(monthly_rate)
    total = 0.0
    for inv in investments:
        start = datetime.combine(inv.date, time.min, tzinfo=UTC)
        elapsed = int((at - start).total_seconds())
        if elapsed <= 0:
            continue
        total += inv.amount * (1 + rate) ** elapsed
    return total


def current_balance(
    investments: Sequence[InvestmentRecord],
    settings: ClassSettings,
    now: datetime,
    default_rate: float = DEFAULT_MONTHLY_RATE,
) -> float:
    """Balance right now, frozen at the class end once it has been reached."""
    rate = (
        default_rate
        if settings.monthly_interest_rate is None
        else settings.monthly_interest_rate
    )
    end = class_end(settings)
    if end is not None and now >= end:
        return balance_at(end, investments, rate)
    return balance_at(now, investments, rate)
