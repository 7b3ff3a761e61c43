"""
fines.py

Overdue fine calculation.

Lateness is counted in calendar days, never elapsed hours: a book returned any
time on its due date owes nothing, and one returned the next morning owes one
day.
"""

from __future__ import annotations
import datetime
from decimal import Decimal
from typing import Optional, Union

DateLike = Union[datetime.date, datetime.datetime]


def _as_date(value: DateLike) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    return value


def days_late(due_date: DateLike, evaluation_date: DateLike) -> int:
    """Whole calendar days from ``due_date`` to ``evaluation_date``, never negative."""
    return max(0, (_as_date(evaluation_date) - _as_date(due_date)).days)


def calculate_fine(due_date: DateLike,
                   evaluation_date: DateLike,
                   rate_per_day: Union[Decimal, int, float, str],
                   grace_period_days: int = 0,
                   max_fine: Optional[Union[Decimal, int, float, str]] = None) -> Decimal:
    """
    Compute the fine owed for a loan evaluated on ``evaluation_date``.

    Args:
        due_date: date the loan was due back.
        evaluation_date: return date (or any date the fine is evaluated at).
        rate_per_day: amount charged per chargeable late day.
        grace_period_days: late days forgiven before charging starts.
        max_fine: optional cap on the amount.

    Returns:
        The fine as a Decimal, zero when the loan is not late.
    """
    rate = Decimal(str(rate_per_day))
    chargeable = max(0, days_late(due_date, evaluation_date) - max(0, int(grace_period_days)))
    amount = rate * chargeable
    if max_fine is not None:
        amount = min(amount, Decimal(str(max_fine)))
    return amount
