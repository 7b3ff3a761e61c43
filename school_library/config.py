"""
config.py

Configuration defaults for the school library engine.

Module-level constants hold the defaults used when a school has not saved its
own library settings. The database URL and school id can be overridden from
the environment so the CLI and the tests can point at a different store.
"""

from __future__ import annotations
import dataclasses
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping

# Configuration
DEFAULT_DATABASE_URL = "sqlite:///school_library.db"
DEFAULT_SCHOOL_ID = "default"

DATABASE_URL_ENV = "SCHOOL_LIBRARY_DATABASE_URL"
SCHOOL_ID_ENV = "SCHOOL_LIBRARY_SCHOOL_ID"

DEFAULT_FINE_PER_DAY = Decimal("1.00")
DEFAULT_GRACE_PERIOD_DAYS = 0
DEFAULT_MAX_FINE_AMOUNT = Decimal("100.00")
DEFAULT_MAX_RENEWALS = 2
DEFAULT_RESERVATION_HOLD_DAYS = 7

# Keyed by member type
DEFAULT_BORROWING_LIMITS = {"student": 3, "teacher": 5, "staff": 3}
DEFAULT_LOAN_DAYS = {"student": 14, "teacher": 30, "staff": 21}

MEMBER_TYPES = ("student", "teacher", "staff")


def database_url_from_env() -> str:
    """Return the database URL, honouring the environment override."""
    return os.environ.get(DATABASE_URL_ENV, DEFAULT_DATABASE_URL)


def school_id_from_env() -> str:
    """Return the school (organization) id, honouring the environment override."""
    return os.environ.get(SCHOOL_ID_ENV, DEFAULT_SCHOOL_ID)


@dataclass(frozen=True)
class LibrarySettings:
    """
    Per-school lending policy.

    Borrowing limits and loan periods are per member type; the fine rate,
    grace period, cap and renewal limit apply to every loan of the school, and
    the hold period to every reservation.
    """

    fine_per_day: Decimal = DEFAULT_FINE_PER_DAY
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS
    max_fine_amount: Decimal = DEFAULT_MAX_FINE_AMOUNT
    student_borrowing_limit: int = DEFAULT_BORROWING_LIMITS["student"]
    teacher_borrowing_limit: int = DEFAULT_BORROWING_LIMITS["teacher"]
    staff_borrowing_limit: int = DEFAULT_BORROWING_LIMITS["staff"]
    student_borrowing_days: int = DEFAULT_LOAN_DAYS["student"]
    teacher_borrowing_days: int = DEFAULT_LOAN_DAYS["teacher"]
    staff_borrowing_days: int = DEFAULT_LOAN_DAYS["staff"]
    max_renewals: int = DEFAULT_MAX_RENEWALS
    reservation_hold_days: int = DEFAULT_RESERVATION_HOLD_DAYS

    def borrowing_limit_for(self, member_type: str) -> int:
        return int(getattr(self, f"{member_type}_borrowing_limit"))

    def loan_days_for(self, member_type: str) -> int:
        return int(getattr(self, f"{member_type}_borrowing_days"))

    def validate(self) -> list:
        """
        Check the settings for values the engine cannot work with.

        Returns a list of human-readable problems; an empty list means valid.
        """
        problems = []
        if self.fine_per_day < 0:
            problems.append("fine_per_day must not be negative")
        if self.max_fine_amount < 0:
            problems.append("max_fine_amount must not be negative")
        if self.grace_period_days < 0:
            problems.append("grace_period_days must not be negative")
        if self.max_renewals < 0:
            problems.append("max_renewals must not be negative")
        if self.reservation_hold_days <= 0:
            problems.append("reservation_hold_days must be positive")
        for member_type in MEMBER_TYPES:
            if self.borrowing_limit_for(member_type) <= 0:
                problems.append(f"{member_type}_borrowing_limit must be positive")
            if self.loan_days_for(member_type) <= 0:
                problems.append(f"{member_type}_borrowing_days must be positive")
        return problems

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "LibrarySettings":
        """
        Build settings from a mapping, ignoring unknown keys and coercing types.

        Money fields become Decimal, everything else int.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in values.items():
            if key not in known or value is None:
                continue
            if key in ("fine_per_day", "max_fine_amount"):
                kwargs[key] = Decimal(str(value))
            else:
                kwargs[key] = int(value)
        return cls(**kwargs)
