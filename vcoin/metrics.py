"""Behavioural metrics derived from a student's investment history.

The metrics map is a flat ``name -> number`` mapping computed once per
evaluation pass, so every achievement in that pass sees the same snapshot.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime

MetricsMap = dict[str, float]

INVESTMENT_COUNT = "investment_count"
TOTAL_INVESTED = "total_invested"
CURRENT_AMOUNT = "current_amount"
ORIGINAL_INVESTED = "original_invested"
STREAK_DAYS = "streak_days"


def category_metric(category_id: int) -> str:
    """Metric name holding the number of investments in a category."""
    return f"category_{category_id}_count"


@dataclass(frozen=True)
class InvestmentRecord:
    """A single ledger entry as consumed by the engine (read-only)."""

    date: date
    amount: float
    category_id: int | None = None
    id: int | None = None


def _as_day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def compute_streak(dates: Iterable[date | datetime], today: date) -> int:
    """Current run of consecutive calendar days with at least one investment.

    Several investments on the same day count once. The streak is only
    current when the latest active day is today or yesterday; otherwise it
    is 0.
    """
    days = sorted({_as_day(d) for d in dates}, reverse=True)
    if not days:
        return 0

    if (today - days[0]).days > 1:
        return 0

    streak = 1
    for previous, current in zip(days, days[1:]):
        if (previous - current).days != 1:
            break
        streak += 1
    return streak


def compute_metrics(
    investments: Sequence[InvestmentRecord],
    current_balance: float,
    today: date,
) -> MetricsMap:
    """Build the metrics map for one student.

    ``current_balance`` comes from the accrual collaborator and is ignored
    (reported as 0) for an empty history.
    """
    balance = float(current_balance) if investments else 0.0
    metrics: MetricsMap = {
        INVESTMENT_COUNT: len(investments),
        TOTAL_INVESTED: balance,
        CURRENT_AMOUNT: balance,
        ORIGINAL_INVESTED: float(sum(inv.amount for inv in investments)),
        STREAK_DAYS: compute_streak((inv.date for inv in investments), today),
    }

    for inv in investments:
        if inv.category_id is None:
            continue
        key = category_metric(inv.category_id)
        metrics[key] = metrics.get(key, 0) + 1

    return metrics
