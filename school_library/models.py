"""
models.py

Database tables for the library lending engine.

Every row is scoped by ``school_id``. Availability, membership uniqueness and
loan bounds are backed by table constraints so that they hold even when two
requests race.
"""

from __future__ import annotations
import datetime
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# Loan statuses
ISSUED = "issued"
RETURNED = "returned"
OVERDUE = "overdue"
LOST = "lost"

ACTIVE_LOAN_STATUSES = (ISSUED, OVERDUE)
TERMINAL_LOAN_STATUSES = (RETURNED, LOST)

# Reservation statuses
PENDING = "pending"
AVAILABLE = "available"
FULFILLED = "fulfilled"
EXPIRED = "expired"
CANCELLED = "cancelled"

OPEN_RESERVATION_STATUSES = (PENDING, AVAILABLE)

# Person reference kinds
STUDENT = "student"
STAFF = "staff"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class PersonRef:
    """Reference to a person in the school's student or staff records."""

    kind: str
    person_id: str

    @classmethod
    def for_member_type(cls, member_type: str, person_id: str) -> "PersonRef":
        return cls(STUDENT if member_type == "student" else STAFF, str(person_id))


class Book(Base):
    """book table - one row per cataloged title, copies tracked in aggregate"""
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("total_copies >= 0", name="ck_books_total_copies"),
        CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_books_available_copies",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String(64), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    author = Column(String(300), nullable=False)
    isbn = Column(String(32))
    genre = Column(String(100))
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    loans = relationship("LoanTransaction", back_populates="book")

    def __repr__(self):
        return (f"<Book(id={self.id}, title='{self.title}', "
                f"available={self.available_copies}/{self.total_copies})>")


class Member(Base):
    """library member table - borrowing rights of one student or staff person"""
    __tablename__ = "library_members"
    __table_args__ = (
        UniqueConstraint("school_id", "member_code", name="uq_member_code"),
        CheckConstraint("borrowing_limit > 0", name="ck_member_borrowing_limit"),
        CheckConstraint("active_loans >= 0", name="ck_member_active_loans"),
        CheckConstraint(
            "(student_ref IS NULL AND staff_ref IS NOT NULL) OR "
            "(student_ref IS NOT NULL AND staff_ref IS NULL)",
            name="ck_member_single_person",
        ),
        # one active membership per person per school
        Index("uq_active_student_member", "school_id", "student_ref", unique=True,
              sqlite_where=text("is_active"), postgresql_where=text("is_active")),
        Index("uq_active_staff_member", "school_id", "staff_ref", unique=True,
              sqlite_where=text("is_active"), postgresql_where=text("is_active")),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String(64), nullable=False, index=True)
    member_code = Column(String(32), nullable=False)
    member_type = Column(String(16), nullable=False)
    student_ref = Column(String(64))
    staff_ref = Column(String(64))
    borrowing_limit = Column(Integer, nullable=False)
    # loans issued and not yet returned or lost; the issue guard updates it conditionally
    active_loans = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    suspended_until = Column(Date)
    suspension_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    loans = relationship("LoanTransaction", back_populates="member")

    @property
    def person_ref(self) -> PersonRef:
        if self.student_ref is not None:
            return PersonRef(STUDENT, self.student_ref)
        return PersonRef(STAFF, self.staff_ref)

    def is_suspended(self, today: Optional[datetime.date] = None) -> bool:
        today = today or datetime.date.today()
        return self.suspended_until is not None and self.suspended_until > today

    def __repr__(self):
        return (f"<Member(id={self.id}, code='{self.member_code}', "
                f"type='{self.member_type}', active={self.is_active})>")


class LoanTransaction(Base):
    """book transaction table - one loan from issue until return or loss"""
    __tablename__ = "book_transactions"
    __table_args__ = (
        CheckConstraint("renewal_count >= 0 AND renewal_count <= max_renewals",
                        name="ck_loan_renewals"),
        CheckConstraint("fine_amount >= 0", name="ck_loan_fine_amount"),
        CheckConstraint("due_date > issue_date", name="ck_loan_due_date"),
        Index("ix_loans_member_status", "member_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String(64), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("library_members.id"), nullable=False)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    return_date = Column(Date)
    status = Column(String(16), nullable=False, default=ISSUED)
    renewal_count = Column(Integer, nullable=False, default=0)
    max_renewals = Column(Integer, nullable=False)
    fine_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    fine_paid = Column(Boolean, nullable=False, default=False)
    fine_paid_date = Column(Date)
    issued_by = Column(String(64))
    returned_by = Column(String(64))
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    book = relationship("Book", back_populates="loans")
    member = relationship("Member", back_populates="loans")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_LOAN_STATUSES

    def effective_status(self, today: Optional[datetime.date] = None) -> str:
        """
        Status as seen on ``today``: an issued loan past its due date reads as overdue.
        """
        today = today or datetime.date.today()
        if self.status == ISSUED and today > self.due_date:
            return OVERDUE
        return self.status

    def __repr__(self):
        return (f"<LoanTransaction(id={self.id}, book_id={self.book_id}, "
                f"member_id={self.member_id}, status='{self.status}')>")


class LibrarySettingsRow(Base):
    """library settings table - lending policy, one row per school"""
    __tablename__ = "library_settings"

    school_id = Column(String(64), primary_key=True)
    fine_per_day = Column(Numeric(10, 2), nullable=False)
    grace_period_days = Column(Integer, nullable=False)
    max_fine_amount = Column(Numeric(10, 2), nullable=False)
    student_borrowing_limit = Column(Integer, nullable=False)
    teacher_borrowing_limit = Column(Integer, nullable=False)
    staff_borrowing_limit = Column(Integer, nullable=False)
    student_borrowing_days = Column(Integer, nullable=False)
    teacher_borrowing_days = Column(Integer, nullable=False)
    staff_borrowing_days = Column(Integer, nullable=False)
    max_renewals = Column(Integer, nullable=False)
    reservation_hold_days = Column(Integer, nullable=False, default=7)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class MemberCodeSequence(Base):
    """counter behind member codes, one row per (school, prefix, year)"""
    __tablename__ = "member_code_sequences"

    school_id = Column(String(64), primary_key=True)
    prefix = Column(String(8), primary_key=True)
    year = Column(Integer, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)


class BookReservation(Base):
    """book reservation table - a member's hold on a title until a copy is collected"""
    __tablename__ = "book_reservations"
    __table_args__ = (
        CheckConstraint("expiry_date >= reservation_date", name="ck_reservation_expiry"),
        # one open hold per member and title
        Index("uq_open_reservation", "school_id", "book_id", "member_id", unique=True,
              sqlite_where=text("status IN ('pending', 'available')"),
              postgresql_where=text("status IN ('pending', 'available')")),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String(64), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("library_members.id"), nullable=False, index=True)
    reservation_date = Column(Date, nullable=False)
    expiry_date = Column(Date, nullable=False)
    available_date = Column(Date)
    status = Column(String(16), nullable=False, default=PENDING)
    loan_id = Column(Integer, ForeignKey("book_transactions.id"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    book = relationship("Book")
    member = relationship("Member")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_RESERVATION_STATUSES

    def __repr__(self):
        return (f"<BookReservation(id={self.id}, book_id={self.book_id}, "
                f"member_id={self.member_id}, status='{self.status}')>")
