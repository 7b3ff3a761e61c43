"""
reports.py

Read-only reports over the lending data, returned as pandas DataFrames, and
the summary numbers shown on the library dashboard.

Overdue status is derived here from the due date, so the reports are correct
whether or not the overdue sweep has run.
"""

from __future__ import annotations
import datetime
from decimal import Decimal
from typing import Dict, Optional, Union

import pandas as pd
from sqlalchemy import func, select

from .database import Database
from .models import ACTIVE_LOAN_STATUSES, PENDING, Book, BookReservation, LoanTransaction, Member

BOOK_REPORT_COLUMNS = ["Book ID", "Title", "Author", "Genre", "Total Copies", "Available Copies", "Availability"]
LOAN_REPORT_COLUMNS = ["Loan ID", "Book ID", "Title", "Member Code", "Issue Date", "Due Date",
                       "Return Date", "Status", "Renewals", "Fine", "Fine Paid"]
RESERVATION_REPORT_COLUMNS = ["Reservation ID", "Book ID", "Title", "Member Code", "Reserved On",
                              "Expires On", "Available Since", "Status"]
MEMBER_REPORT_COLUMNS = ["Member ID", "Member Code", "Type", "Borrowing Limit", "Active Loans",
                         "Active", "Suspended Until"]


def export_report_books(db: Database, school_id: str) -> pd.DataFrame:
    """
    Inventory of active titles with human-friendly availability.

    A title with no free copy reads "Issued".
    """
    with db.session_scope() as session:
        books = session.scalars(select(Book).where(Book.school_id == school_id, Book.is_active.is_(True))
                                .order_by(Book.title)).all()
        rows = [{
            "Book ID": b.id, "Title": b.title, "Author": b.author, "Genre": b.genre or "",
            "Total Copies": b.total_copies, "Available Copies": b.available_copies,
        } for b in books]
    out = pd.DataFrame(rows, columns=BOOK_REPORT_COLUMNS[:-1])
    out["Availability"] = (out["Available Copies"] > 0).map({True: "Available", False: "Issued"})
    return out[BOOK_REPORT_COLUMNS]


def export_report_loans(db: Database, school_id: str,
                        today: Optional[datetime.date] = None) -> pd.DataFrame:
    """Every loan of the school, newest first, with its status as of ``today``."""
    today = today or datetime.date.today()
    stmt = (
        select(LoanTransaction, Book.title, Member.member_code)
        .join(Book, Book.id == LoanTransaction.book_id)
        .join(Member, Member.id == LoanTransaction.member_id)
        .where(LoanTransaction.school_id == school_id)
        .order_by(LoanTransaction.id.desc())
    )
    with db.session_scope() as session:
        rows = [{
            "Loan ID": loan.id, "Book ID": loan.book_id, "Title": title, "Member Code": code,
            "Issue Date": loan.issue_date, "Due Date": loan.due_date, "Return Date": loan.return_date,
            "Status": loan.effective_status(today), "Renewals": loan.renewal_count,
            "Fine": float(loan.fine_amount or 0), "Fine Paid": bool(loan.fine_paid),
        } for loan, title, code in session.execute(stmt)]
    return pd.DataFrame(rows, columns=LOAN_REPORT_COLUMNS)


def export_report_members(db: Database, school_id: str) -> pd.DataFrame:
    """
    Members with their current number of books on loan.

    Returns columns: Member ID, Member Code, Type, Borrowing Limit, Active Loans,
    Active, Suspended Until.
    """
    active_loans = (
        select(LoanTransaction.member_id, func.count(LoanTransaction.id).label("n"))
        .where(LoanTransaction.status.in_(ACTIVE_LOAN_STATUSES))
        .group_by(LoanTransaction.member_id)
        .subquery()
    )
    stmt = (
        select(Member, func.coalesce(active_loans.c.n, 0))
        .outerjoin(active_loans, active_loans.c.member_id == Member.id)
        .where(Member.school_id == school_id)
        .order_by(Member.member_code)
    )
    with db.session_scope() as session:
        rows = [{
            "Member ID": m.id, "Member Code": m.member_code, "Type": m.member_type,
            "Borrowing Limit": m.borrowing_limit, "Active Loans": int(n),
            "Active": bool(m.is_active), "Suspended Until": m.suspended_until,
        } for m, n in session.execute(stmt)]
    return pd.DataFrame(rows, columns=MEMBER_REPORT_COLUMNS)


def export_report_reservations(db: Database, school_id: str,
                               status: Optional[str] = None) -> pd.DataFrame:
    """Reservations with book title and member code, newest first."""
    stmt = (
        select(BookReservation, Book.title, Member.member_code)
        .join(Book, Book.id == BookReservation.book_id)
        .join(Member, Member.id == BookReservation.member_id)
        .where(BookReservation.school_id == school_id)
        .order_by(BookReservation.reservation_date.desc(), BookReservation.id.desc())
    )
    if status:
        stmt = stmt.where(BookReservation.status == status)
    with db.session_scope() as session:
        rows = [{
            "Reservation ID": r.id, "Book ID": r.book_id, "Title": title, "Member Code": code,
            "Reserved On": r.reservation_date, "Expires On": r.expiry_date,
            "Available Since": r.available_date, "Status": r.status,
        } for r, title, code in session.execute(stmt)]
    return pd.DataFrame(rows, columns=RESERVATION_REPORT_COLUMNS)


def library_stats(db: Database, school_id: str,
                  today: Optional[datetime.date] = None) -> Dict[str, Union[int, Decimal]]:
    """
    Dashboard counters: active books and members, loans out, overdue loans,
    the total of unpaid fines and the reservations waiting for a copy.
    """
    today = today or datetime.date.today()
    with db.session_scope() as session:
        total_books = session.scalar(select(func.count(Book.id)).where(
            Book.school_id == school_id, Book.is_active.is_(True)))
        total_members = session.scalar(select(func.count(Member.id)).where(
            Member.school_id == school_id, Member.is_active.is_(True)))
        books_issued = session.scalar(select(func.count(LoanTransaction.id)).where(
            LoanTransaction.school_id == school_id,
            LoanTransaction.status.in_(ACTIVE_LOAN_STATUSES)))
        overdue_books = session.scalar(select(func.count(LoanTransaction.id)).where(
            LoanTransaction.school_id == school_id,
            LoanTransaction.status.in_(ACTIVE_LOAN_STATUSES),
            LoanTransaction.due_date < today))
        unpaid = session.scalars(select(LoanTransaction.fine_amount).where(
            LoanTransaction.school_id == school_id,
            LoanTransaction.fine_paid.is_(False),
            LoanTransaction.fine_amount > 0)).all()
        pending_reservations = session.scalar(select(func.count(BookReservation.id)).where(
            BookReservation.school_id == school_id,
            BookReservation.status == PENDING))
    return {
        "total_books": total_books or 0,
        "total_members": total_members or 0,
        "books_issued": books_issued or 0,
        "overdue_books": overdue_books or 0,
        "total_fines": sum((Decimal(str(f)) for f in unpaid), Decimal("0")),
        "pending_reservations": pending_reservations or 0,
    }
