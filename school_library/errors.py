"""
errors.py

Outcome types returned by every lending operation.

Operations report domain failures as a failed ``Result`` carrying an
``ErrorKind`` and a human-readable message instead of raising, the same way
the borrow/return calls report ``(success, message)``.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    NOT_AVAILABLE = "not_available"
    MEMBER_INELIGIBLE = "member_ineligible"
    BORROWING_LIMIT_EXCEEDED = "borrowing_limit_exceeded"
    RENEWAL_LIMIT_EXCEEDED = "renewal_limit_exceeded"
    ALREADY_RETURNED = "already_returned"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    ALREADY_MEMBER = "already_member"
    VALIDATION_ERROR = "validation_error"
    LOOKUP_FAILED = "lookup_failed"


@dataclass(frozen=True)
class Result:
    """
    Result of a single engine operation.

    ``ok`` tells success from failure; ``value`` holds the affected record on
    success, ``error`` the failure kind otherwise. ``message`` is always set to
    something an operator can read.
    """

    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: Any = None, message: str = "") -> "Result":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> "Result":
        return cls(ok=False, error=error, message=message)

    def __bool__(self) -> bool:
        return self.ok
