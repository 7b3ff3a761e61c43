"""
membership.py

Membership Registry: who may borrow, how much, and under which member code.

A person holds at most one active membership per school. The registry checks
that before every insert, and a partial unique index on the members table
catches the case where two inserts race past the check.
"""

from __future__ import annotations
import datetime
import logging
from typing import List, Optional, Set

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import MEMBER_TYPES
from .database import Database
from .errors import ErrorKind, Result
from .models import (
    ACTIVE_LOAN_STATUSES,
    STAFF,
    STUDENT,
    LoanTransaction,
    Member,
    MemberCodeSequence,
    PersonRef,
)

logger = logging.getLogger("SchoolLibrary.membership")

MEMBER_CODE_PREFIXES = {"student": "STU", "teacher": "TCH", "staff": "STF"}


def expected_ref_kind(member_type: str) -> str:
    return STUDENT if member_type == "student" else STAFF


class MembershipRegistry:
    """Borrowing memberships of one school."""

    def __init__(self, db: Database, school_id: str, settings):
        self.db = db
        self.school_id = school_id
        # anything with get() -> LibrarySettings
        self.settings = settings

    # ---------------- Lookups ----------------
    def get(self, member_id: int, session: Optional[Session] = None) -> Optional[Member]:
        with self.db.session_scope(session) as s:
            member = s.get(Member, member_id)
            if member is None or member.school_id != self.school_id:
                return None
            return member

    def find_by_code(self, member_code: str) -> Optional[Member]:
        with self.db.session_scope() as session:
            return session.scalar(select(Member).where(
                Member.school_id == self.school_id, Member.member_code == member_code))

    def lookup_active(self, person_ref: PersonRef, session: Optional[Session] = None) -> Result:
        """Find the active membership held by a person, if any."""
        with self.db.session_scope(session) as s:
            member = s.scalar(self._active_stmt(person_ref))
        if member is None:
            return Result.failure(ErrorKind.LOOKUP_FAILED,
                                  f"No active membership for {person_ref.kind} {person_ref.person_id}.")
        return Result.success(member, f"Member {member.member_code}")

    def active_person_refs(self, kind: Optional[str] = None) -> Set[PersonRef]:
        """
        Return the persons that currently hold an active membership.

        ``kind`` restricts the answer to students or staff.
        """
        stmt = select(Member.student_ref, Member.staff_ref).where(
            Member.school_id == self.school_id, Member.is_active.is_(True))
        if kind == STUDENT:
            stmt = stmt.where(Member.student_ref.is_not(None))
        elif kind == STAFF:
            stmt = stmt.where(Member.staff_ref.is_not(None))
        refs: Set[PersonRef] = set()
        with self.db.session_scope() as session:
            for student_ref, staff_ref in session.execute(stmt):
                if student_ref is not None:
                    refs.add(PersonRef(STUDENT, student_ref))
                else:
                    refs.add(PersonRef(STAFF, staff_ref))
        return refs

    def list_members(self, member_type: Optional[str] = None, include_inactive: bool = False) -> List[Member]:
        stmt = select(Member).where(Member.school_id == self.school_id)
        if not include_inactive:
            stmt = stmt.where(Member.is_active.is_(True))
        if member_type:
            stmt = stmt.where(Member.member_type == member_type)
        with self.db.session_scope() as session:
            return list(session.scalars(stmt.order_by(Member.member_code)))

    def active_loan_count(self, member_id: int, session: Optional[Session] = None) -> int:
        """Number of loans the member holds that are issued or overdue."""
        with self.db.session_scope(session) as s:
            return s.scalar(select(func.count(LoanTransaction.id)).where(
                LoanTransaction.member_id == member_id,
                LoanTransaction.status.in_(ACTIVE_LOAN_STATUSES))) or 0

    def claim_loan_slot(self, member_id: int, session: Session) -> bool:
        """
        Count one more loan against the member, if the limit allows it.

        The limit check and the increment are one conditional UPDATE, so two
        issues racing for the member's last slot cannot both get it.
        """
        claimed = session.execute(
            update(Member)
            .where(Member.id == member_id, Member.school_id == self.school_id,
                   Member.active_loans < Member.borrowing_limit)
            .values(active_loans=Member.active_loans + 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        return claimed == 1

    def release_loan_slot(self, member_id: int, session: Session) -> None:
        session.execute(
            update(Member)
            .where(Member.id == member_id, Member.school_id == self.school_id)
            .values(active_loans=case((Member.active_loans > 0, Member.active_loans - 1), else_=0))
            .execution_options(synchronize_session=False)
        )

    # ---------------- Provisioning ----------------
    def provision(self, person_ref: PersonRef, member_type: str,
                  borrowing_limit: Optional[int] = None,
                  today: Optional[datetime.date] = None) -> Result:
        """
        Grant borrowing rights to a person.

        Fails with ALREADY_MEMBER when the person already holds an active
        membership. ``borrowing_limit`` defaults to the member type's
        configured limit.
        """
        if member_type not in MEMBER_TYPES:
            return Result.failure(ErrorKind.VALIDATION_ERROR, f"Unknown member type: {member_type}")
        if person_ref.kind != expected_ref_kind(member_type):
            return Result.failure(ErrorKind.VALIDATION_ERROR,
                                  f"A {member_type} membership needs a {expected_ref_kind(member_type)} reference.")
        if borrowing_limit is None:
            borrowing_limit = self.settings.get().borrowing_limit_for(member_type)
        if int(borrowing_limit) <= 0:
            return Result.failure(ErrorKind.VALIDATION_ERROR, "Borrowing limit must be a positive integer.")
        today = today or datetime.date.today()

        try:
            with self.db.session_scope() as session:
                existing = session.scalar(self._active_stmt(person_ref))
                if existing is not None:
                    logger.debug("Provision refused: %s already member %s", person_ref, existing.member_code)
                    return Result.failure(ErrorKind.ALREADY_MEMBER,
                                          f"Already a library member ({existing.member_code}).")
                member = Member(
                    school_id=self.school_id,
                    member_code=self._next_member_code(session, member_type, today),
                    member_type=member_type,
                    student_ref=person_ref.person_id if person_ref.kind == STUDENT else None,
                    staff_ref=person_ref.person_id if person_ref.kind == STAFF else None,
                    borrowing_limit=int(borrowing_limit),
                    active_loans=0,
                    is_active=True,
                )
                session.add(member)
                session.flush()
        except IntegrityError:
            logger.debug("Provision lost a race for %s", person_ref)
            return Result.failure(ErrorKind.ALREADY_MEMBER, "Already a library member.")
        logger.info("Provisioned %s member %s for %s", member_type, member.member_code, person_ref.person_id)
        return Result.success(member, f"Library member {member.member_code} created.")

    def _next_member_code(self, session: Session, member_type: str, today: datetime.date) -> str:
        """Prefix + 2-digit year + per-year counter, e.g. STU260001."""
        prefix = MEMBER_CODE_PREFIXES[member_type]
        year = today.year % 100
        key = (MemberCodeSequence.school_id == self.school_id,
               MemberCodeSequence.prefix == prefix,
               MemberCodeSequence.year == year)
        bumped = session.execute(
            update(MemberCodeSequence).where(*key)
            .values(last_value=MemberCodeSequence.last_value + 1)
            .execution_options(synchronize_session=False))
        if bumped.rowcount == 0:
            session.add(MemberCodeSequence(school_id=self.school_id, prefix=prefix, year=year, last_value=1))
            session.flush()
            value = 1
        else:
            value = session.scalar(select(MemberCodeSequence.last_value).where(*key))
        return f"{prefix}{year:02d}{value:04d}"

    # ---------------- Maintenance ----------------
    def update_limit(self, member_id: int, borrowing_limit: int) -> Result:
        if int(borrowing_limit) <= 0:
            return Result.failure(ErrorKind.VALIDATION_ERROR, "Borrowing limit must be a positive integer.")
        with self.db.session_scope() as session:
            member = self.get(member_id, session)
            if member is None:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Member not found: {member_id}")
            member.borrowing_limit = int(borrowing_limit)
        logger.info("Member %s borrowing limit -> %d", member.member_code, member.borrowing_limit)
        return Result.success(member, f"Borrowing limit of {member.member_code} set to {member.borrowing_limit}.")

    def suspend(self, member_id: int, until: datetime.date, reason: Optional[str] = None) -> Result:
        """Block borrowing until ``until`` without ending the membership."""
        with self.db.session_scope() as session:
            member = self.get(member_id, session)
            if member is None:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Member not found: {member_id}")
            member.suspended_until = until
            member.suspension_reason = reason
        logger.info("Suspended member %s until %s", member.member_code, until)
        return Result.success(member, f"Member {member.member_code} suspended until {until.isoformat()}.")

    def reinstate(self, member_id: int) -> Result:
        with self.db.session_scope() as session:
            member = self.get(member_id, session)
            if member is None:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Member not found: {member_id}")
            member.suspended_until = None
            member.suspension_reason = None
        logger.info("Reinstated member %s", member.member_code)
        return Result.success(member, f"Member {member.member_code} reinstated.")

    def deactivate(self, member_id: int) -> Result:
        """
        End a membership. Members are never deleted because loans reference
        them; one with books still out cannot be deactivated.
        """
        with self.db.session_scope() as session:
            member = self.get(member_id, session)
            if member is None:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Member not found: {member_id}")
            if not member.is_active:
                return Result.failure(ErrorKind.INVALID_STATE_TRANSITION,
                                      f"Member {member.member_code} is already inactive.")
            if self.active_loan_count(member_id, session) > 0:
                return Result.failure(ErrorKind.INVALID_STATE_TRANSITION,
                                      f"Member {member.member_code} still has books on loan.")
            member.is_active = False
        logger.info("Deactivated member %s", member.member_code)
        return Result.success(member, f"Member {member.member_code} deactivated.")

    def _active_stmt(self, person_ref: PersonRef):
        column = Member.student_ref if person_ref.kind == STUDENT else Member.staff_ref
        return select(Member).where(Member.school_id == self.school_id,
                                    Member.is_active.is_(True),
                                    column == person_ref.person_id)
