"""
loans.py

Loan Ledger: the lifecycle of a single loan.

    issue -> (renew)* -> return | lost

``overdue`` is normally derived at read time from the due date. The optional
sweep writes it into the status column for display and querying; it never
touches fines or renewals. ``returned`` and ``lost`` are terminal, except
that a fine can still be marked paid.

Issue, return and their catalog and member-slot counterparts run inside one
database transaction, so a failed step leaves neither a loan row nor a moved copy
behind.
"""

from __future__ import annotations
import datetime
import logging
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .catalog import CatalogTracker
from .database import Database
from .errors import ErrorKind, Result
from .fines import calculate_fine
from .membership import MembershipRegistry
from .models import (
    ACTIVE_LOAN_STATUSES,
    ISSUED,
    LOST,
    OVERDUE,
    RETURNED,
    LoanTransaction,
)

logger = logging.getLogger("SchoolLibrary.loans")

Amount = Union[Decimal, int, float, str]


class LoanLedger:
    """Issues, renews, returns and writes off loans for one school."""

    def __init__(self, db: Database, school_id: str, catalog: CatalogTracker,
                 members: MembershipRegistry, settings):
        self.db = db
        self.school_id = school_id
        self.catalog = catalog
        self.members = members
        self.settings = settings

    # ---------------- Transitions ----------------
    def issue(self, book_id: int, member_id: int,
              due_date: Optional[datetime.date] = None,
              issue_date: Optional[datetime.date] = None,
              max_renewals: Optional[int] = None,
              notes: Optional[str] = None,
              issued_by: Optional[str] = None) -> Result:
        """
        Lend one copy of a book to a member.

        ``due_date`` defaults to the member type's loan period after
        ``issue_date`` (today by default); ``max_renewals`` defaults to the
        school setting and is stored on the loan.

        The member's loan slot and then the copy are claimed with conditional
        UPDATEs in the same transaction as the loan insert. The copy comes
        last, so every earlier refusal leaves the catalog untouched.
        """
        issue_date = issue_date or datetime.date.today()
        settings = self.settings.get()
        if max_renewals is None:
            max_renewals = settings.max_renewals
        if int(max_renewals) < 0:
            return Result.failure(ErrorKind.VALIDATION_ERROR, "max_renewals must not be negative.")
        if due_date is not None and due_date <= issue_date:
            return Result.failure(ErrorKind.VALIDATION_ERROR,
                                  f"Due date {due_date.isoformat()} must be after issue date {issue_date.isoformat()}.")

        with self.db.session_scope() as session:
            book = self.catalog.get(book_id, session)
            if book is None or not book.is_active:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Book not found: {book_id}")

            member = self.members.get(member_id, session)
            if member is None:
                return Result.failure(ErrorKind.MEMBER_INELIGIBLE, f"Member not found: {member_id}")
            if not member.is_active:
                return Result.failure(ErrorKind.MEMBER_INELIGIBLE,
                                      f"Member {member.member_code} is not active.")
            if member.is_suspended(issue_date):
                return Result.failure(ErrorKind.MEMBER_INELIGIBLE,
                                      f"Member {member.member_code} is suspended until "
                                      f"{member.suspended_until.isoformat()}.")

            if not self.members.claim_loan_slot(member_id, session):
                logger.debug("Issue refused: member %s at limit %d", member.member_code, member.borrowing_limit)
                return Result.failure(ErrorKind.BORROWING_LIMIT_EXCEEDED,
                                      f"Member {member.member_code} already has "
                                      f"{self.members.active_loan_count(member_id, session)} of "
                                      f"{member.borrowing_limit} books on loan.")

            if due_date is None:
                due_date = issue_date + datetime.timedelta(days=settings.loan_days_for(member.member_type))

            reserved = self.catalog.reserve(book_id, session)
            if not reserved.ok:
                # give the member's slot back
                session.rollback()
                return reserved

            loan = LoanTransaction(
                school_id=self.school_id,
                book_id=book_id,
                member_id=member_id,
                issue_date=issue_date,
                due_date=due_date,
                status=ISSUED,
                renewal_count=0,
                max_renewals=int(max_renewals),
                fine_amount=Decimal("0"),
                fine_paid=False,
                issued_by=issued_by,
                notes=notes,
            )
            session.add(loan)
            session.flush()
            title = book.title
            code = member.member_code

        logger.info("Issued book %s to %s until %s (loan %s)", book_id, code, due_date, loan.id)
        return Result.success(loan, f"Book '{title}' issued to {code}. Due on {due_date.isoformat()}.")

    def renew(self, transaction_id: int,
              loan_period_days: Optional[int] = None) -> Result:
        """
        Extend a loan's due date by one loan period.

        The new due date counts from the current due date, also for a late
        renewal. No fine is written here: the return computes it from the
        final due date, so renewing never clears or charges a fine.
        """
        settings = self.settings.get()
        if loan_period_days is not None and int(loan_period_days) <= 0:
            return Result.failure(ErrorKind.VALIDATION_ERROR, "Loan period must be a positive number of days.")

        with self.db.session_scope() as session:
            loan = self._get(session, transaction_id)
            if loan is None:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Loan not found: {transaction_id}")
            refused = self._refuse_terminal(loan, "renew")
            if refused is not None:
                return refused
            if loan.renewal_count >= loan.max_renewals:
                logger.debug("Renewal refused for loan %s (%d/%d)", loan.id, loan.renewal_count, loan.max_renewals)
                return Result.failure(ErrorKind.RENEWAL_LIMIT_EXCEEDED,
                                      f"Loan {loan.id} has already been renewed {loan.renewal_count} "
                                      f"of {loan.max_renewals} times.")

            if loan_period_days is None:
                loan_period_days = settings.loan_days_for(loan.member.member_type)
            loan.due_date = loan.due_date + datetime.timedelta(days=int(loan_period_days))
            loan.renewal_count += 1
            loan.status = ISSUED

        logger.info("Renewed loan %s until %s (%d/%d)", loan.id, loan.due_date, loan.renewal_count, loan.max_renewals)
        return Result.success(loan, f"Loan {loan.id} renewed. Due on {loan.due_date.isoformat()}.")

    def return_loan(self, transaction_id: int,
                    return_date: Optional[datetime.date] = None,
                    fine_override: Optional[Amount] = None,
                    notes: Optional[str] = None,
                    returned_by: Optional[str] = None,
                    rate_per_day: Optional[Amount] = None) -> Result:
        """
        Close a loan and put the copy back on the shelf.

        The fine is computed from the due date and ``return_date`` with the
        school's rate, grace period and cap. ``fine_override`` replaces it
        (manual adjustment at the desk).
        """
        return_date = return_date or datetime.date.today()
        settings = self.settings.get()
        override = None
        if fine_override is not None:
            override, refused = _parse_amount(fine_override, "Fine amount")
            if refused is not None:
                return refused
        rate = settings.fine_per_day
        if rate_per_day is not None:
            rate, refused = _parse_amount(rate_per_day, "Fine rate")
            if refused is not None:
                return refused

        with self.db.session_scope() as session:
            loan = self._get(session, transaction_id)
            if loan is None:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Loan not found: {transaction_id}")
            refused = self._refuse_terminal(loan, "return")
            if refused is not None:
                return refused
            if return_date < loan.issue_date:
                return Result.failure(ErrorKind.VALIDATION_ERROR,
                                      f"Return date {return_date.isoformat()} is before the issue date.")

            if override is not None:
                fine = override
            else:
                fine = calculate_fine(loan.due_date, return_date, rate,
                                      settings.grace_period_days, settings.max_fine_amount)

            loan.fine_amount = fine
            loan.return_date = return_date
            loan.status = RETURNED
            loan.returned_by = returned_by
            if notes:
                loan.notes = notes
            session.flush()
            released = self.catalog.release(loan.book_id, session)
            if not released.ok:
                # the book row vanished; undo the status change with the whole transaction
                raise LookupError(released.message)
            self.members.release_loan_slot(loan.member_id, session)

        logger.info("Loan %s returned on %s, fine %s", loan.id, return_date, fine)
        return Result.success(loan, f"Loan {loan.id} returned. Fine: {fine:.2f}.")

    def mark_lost(self, transaction_id: int, replacement_fee: Amount) -> Result:
        """
        Write a loan off as lost and charge the replacement fee.

        The copy is not released: it no longer exists, and correcting
        ``total_copies`` is an inventory task. The member's loan slot is
        freed.
        """
        fee, refused = _parse_amount(replacement_fee, "Replacement fee")
        if refused is not None:
            return refused
        with self.db.session_scope() as session:
            loan = self._get(session, transaction_id)
            if loan is None:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Loan not found: {transaction_id}")
            refused = self._refuse_terminal(loan, "mark lost")
            if refused is not None:
                return refused
            loan.status = LOST
            loan.fine_amount = fee
            self.members.release_loan_slot(loan.member_id, session)
        logger.info("Loan %s marked lost, replacement fee %s", loan.id, fee)
        return Result.success(loan, f"Loan {loan.id} marked lost. Replacement fee: {fee:.2f}.")

    def pay_fine(self, transaction_id: int, paid_on: Optional[datetime.date] = None) -> Result:
        paid_on = paid_on or datetime.date.today()
        with self.db.session_scope() as session:
            loan = self._get(session, transaction_id)
            if loan is None:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Loan not found: {transaction_id}")
            if not loan.fine_amount or loan.fine_amount <= 0:
                return Result.failure(ErrorKind.VALIDATION_ERROR, f"Loan {loan.id} has no fine to pay.")
            if loan.fine_paid:
                return Result.failure(ErrorKind.INVALID_STATE_TRANSITION,
                                      f"The fine on loan {loan.id} is already paid.")
            loan.fine_paid = True
            loan.fine_paid_date = paid_on
        logger.info("Fine of %s paid on loan %s", loan.fine_amount, loan.id)
        return Result.success(loan, f"Fine of {loan.fine_amount:.2f} on loan {loan.id} marked as paid.")

    def sweep_overdue(self, today: Optional[datetime.date] = None) -> int:
        """
        Materialize the overdue status of issued loans past their due date.

        Idempotent; only the status column is written. Returns the number of
        loans flipped.
        """
        today = today or datetime.date.today()
        with self.db.session_scope() as session:
            flipped = session.execute(
                update(LoanTransaction)
                .where(LoanTransaction.school_id == self.school_id,
                       LoanTransaction.status == ISSUED,
                       LoanTransaction.due_date < today)
                .values(status=OVERDUE)
                .execution_options(synchronize_session=False)
            ).rowcount
        if flipped:
            logger.info("Marked %d loan(s) overdue as of %s", flipped, today)
        return flipped

    # ---------------- Queries ----------------
    def get(self, transaction_id: int) -> Optional[LoanTransaction]:
        with self.db.session_scope() as session:
            return self._get(session, transaction_id)

    def list_transactions(self, status: Optional[str] = None,
                          member_id: Optional[int] = None,
                          book_id: Optional[int] = None) -> List[LoanTransaction]:
        stmt = select(LoanTransaction).where(LoanTransaction.school_id == self.school_id)
        if status:
            stmt = stmt.where(LoanTransaction.status == status)
        if member_id is not None:
            stmt = stmt.where(LoanTransaction.member_id == member_id)
        if book_id is not None:
            stmt = stmt.where(LoanTransaction.book_id == book_id)
        with self.db.session_scope() as session:
            return list(session.scalars(stmt.order_by(LoanTransaction.id.desc())))

    def list_overdue(self, today: Optional[datetime.date] = None) -> List[LoanTransaction]:
        """Active loans whose due date has passed, whether or not the sweep has run."""
        today = today or datetime.date.today()
        stmt = select(LoanTransaction).where(
            LoanTransaction.school_id == self.school_id,
            LoanTransaction.status.in_(ACTIVE_LOAN_STATUSES),
            LoanTransaction.due_date < today,
        ).order_by(LoanTransaction.due_date)
        with self.db.session_scope() as session:
            return list(session.scalars(stmt))

    # ---------------- Internal helpers ----------------
    def _get(self, session: Session, transaction_id: int) -> Optional[LoanTransaction]:
        loan = session.get(LoanTransaction, transaction_id)
        if loan is None or loan.school_id != self.school_id:
            return None
        return loan

    @staticmethod
    def _refuse_terminal(loan: LoanTransaction, action: str) -> Optional[Result]:
        if loan.status == RETURNED:
            return Result.failure(ErrorKind.ALREADY_RETURNED, f"Loan {loan.id} has already been returned.")
        if loan.status not in ACTIVE_LOAN_STATUSES:
            return Result.failure(ErrorKind.INVALID_STATE_TRANSITION,
                                  f"Cannot {action} loan {loan.id} in status '{loan.status}'.")
        return None


def _parse_amount(value: Amount, label: str) -> Tuple[Optional[Decimal], Optional[Result]]:
    """
    Read a money amount given by a caller.

    Returns ``(amount, None)``, or ``(None, failure)`` when the value is not a
    non-negative number.
    """
    try:
        amount = Decimal(str(value).strip())
    except ArithmeticError:
        return None, Result.failure(ErrorKind.VALIDATION_ERROR, f"{label} is not a number: {value!r}")
    if not amount.is_finite() or amount < 0:
        return None, Result.failure(ErrorKind.VALIDATION_ERROR, f"{label} must be a non-negative number.")
    return amount, None
