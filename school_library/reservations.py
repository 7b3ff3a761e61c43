"""
reservations.py

Book reservations: a member's hold on a title that has no copy on the shelf.

    pending -> available -> fulfilled
    pending | available -> cancelled | expired

A reservation expires ``reservation_hold_days`` after it was placed. The
expiry sweep is idempotent. Reservations never move copies; the desk issues
the book through the loan ledger and then marks the hold fulfilled.
"""

from __future__ import annotations
import datetime
import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .catalog import CatalogTracker
from .database import Database
from .errors import ErrorKind, Result
from .membership import MembershipRegistry
from .models import (
    AVAILABLE,
    CANCELLED,
    EXPIRED,
    FULFILLED,
    OPEN_RESERVATION_STATUSES,
    PENDING,
    BookReservation,
)

logger = logging.getLogger("SchoolLibrary.reservations")

RESERVATION_STATUSES = (PENDING, AVAILABLE, FULFILLED, EXPIRED, CANCELLED)

# status -> statuses it may move to
TRANSITIONS = {
    PENDING: (AVAILABLE, CANCELLED, EXPIRED),
    AVAILABLE: (FULFILLED, CANCELLED, EXPIRED),
}


class ReservationRegistry:
    """Places, advances and expires reservations for one school."""

    def __init__(self, db: Database, school_id: str, catalog: CatalogTracker,
                 members: MembershipRegistry, settings):
        self.db = db
        self.school_id = school_id
        self.catalog = catalog
        self.members = members
        self.settings = settings

    def create(self, book_id: int, member_id: int,
               today: Optional[datetime.date] = None) -> Result:
        """
        Place a hold on a title for a member.

        The hold expires after the school's ``reservation_hold_days``. A
        member holds at most one open reservation per title.
        """
        today = today or datetime.date.today()
        hold_days = self.settings.get().reservation_hold_days
        try:
            with self.db.session_scope() as session:
                book = self.catalog.get(book_id, session)
                if book is None or not book.is_active:
                    return Result.failure(ErrorKind.LOOKUP_FAILED, f"Book not found: {book_id}")
                member = self.members.get(member_id, session)
                if member is None or not member.is_active or member.is_suspended(today):
                    return Result.failure(ErrorKind.MEMBER_INELIGIBLE,
                                          f"Member {member_id} cannot reserve books.")
                if self._open_for(session, book_id, member_id) is not None:
                    return Result.failure(ErrorKind.VALIDATION_ERROR,
                                          f"Member {member.member_code} already has an open reservation "
                                          f"for '{book.title}'.")
                reservation = BookReservation(
                    school_id=self.school_id,
                    book_id=book_id,
                    member_id=member_id,
                    reservation_date=today,
                    expiry_date=today + datetime.timedelta(days=hold_days),
                    status=PENDING,
                )
                session.add(reservation)
                session.flush()
                title = book.title
                code = member.member_code
        except IntegrityError:
            logger.debug("Reservation of book %s by member %s lost a race", book_id, member_id)
            return Result.failure(ErrorKind.VALIDATION_ERROR, "An open reservation already exists.")
        logger.info("Reserved book %s for %s until %s", book_id, code, reservation.expiry_date)
        return Result.success(reservation, f"'{title}' reserved for {code} until "
                                           f"{reservation.expiry_date.isoformat()}.")

    def update_status(self, reservation_id: int, status: str,
                      today: Optional[datetime.date] = None,
                      loan_id: Optional[int] = None) -> Result:
        """
        Move a reservation along its lifecycle.

        ``available`` records the day the copy was set aside; ``fulfilled``
        may link the loan that served the hold.
        """
        if status not in RESERVATION_STATUSES:
            return Result.failure(ErrorKind.VALIDATION_ERROR, f"Unknown reservation status: {status}")
        today = today or datetime.date.today()
        with self.db.session_scope() as session:
            reservation = self._get(session, reservation_id)
            if reservation is None:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Reservation not found: {reservation_id}")
            if status not in TRANSITIONS.get(reservation.status, ()):
                return Result.failure(ErrorKind.INVALID_STATE_TRANSITION,
                                      f"Reservation {reservation.id} is {reservation.status}; "
                                      f"it cannot become {status}.")
            reservation.status = status
            if status == AVAILABLE:
                reservation.available_date = today
            if status == FULFILLED and loan_id is not None:
                reservation.loan_id = loan_id
        logger.info("Reservation %s -> %s", reservation_id, status)
        return Result.success(reservation, f"Reservation {reservation_id} is now {status}.")

    def mark_available(self, reservation_id: int, today: Optional[datetime.date] = None) -> Result:
        return self.update_status(reservation_id, AVAILABLE, today=today)

    def fulfil(self, reservation_id: int, loan_id: Optional[int] = None) -> Result:
        return self.update_status(reservation_id, FULFILLED, loan_id=loan_id)

    def cancel(self, reservation_id: int) -> Result:
        return self.update_status(reservation_id, CANCELLED)

    def expire(self, today: Optional[datetime.date] = None) -> int:
        """Close open reservations past their expiry date. Returns how many were closed."""
        today = today or datetime.date.today()
        with self.db.session_scope() as session:
            expired = session.execute(
                update(BookReservation)
                .where(BookReservation.school_id == self.school_id,
                       BookReservation.status.in_(OPEN_RESERVATION_STATUSES),
                       BookReservation.expiry_date < today)
                .values(status=EXPIRED)
                .execution_options(synchronize_session=False)
            ).rowcount
        if expired:
            logger.info("Expired %d reservation(s) as of %s", expired, today)
        return expired

    # ---------------- Queries ----------------
    def get(self, reservation_id: int) -> Optional[BookReservation]:
        with self.db.session_scope() as session:
            return self._get(session, reservation_id)

    def list_reservations(self, status: Optional[str] = None,
                          book_id: Optional[int] = None) -> List[BookReservation]:
        """Reservations of the school, newest first."""
        stmt = select(BookReservation).where(BookReservation.school_id == self.school_id)
        if status:
            stmt = stmt.where(BookReservation.status == status)
        if book_id is not None:
            stmt = stmt.where(BookReservation.book_id == book_id)
        stmt = stmt.order_by(BookReservation.reservation_date.desc(), BookReservation.id.desc())
        with self.db.session_scope() as session:
            return list(session.scalars(stmt))

    def _get(self, session: Session, reservation_id: int) -> Optional[BookReservation]:
        reservation = session.get(BookReservation, reservation_id)
        if reservation is None or reservation.school_id != self.school_id:
            return None
        return reservation

    def _open_for(self, session: Session, book_id: int, member_id: int) -> Optional[BookReservation]:
        return session.scalar(select(BookReservation).where(
            BookReservation.school_id == self.school_id,
            BookReservation.book_id == book_id,
            BookReservation.member_id == member_id,
            BookReservation.status.in_(OPEN_RESERVATION_STATUSES)))
