"""
system.py

LibrarySystem wires the catalog, membership registry, loan ledger, settings
and provisioner of one school over a shared database and offers a compact API.
"""

from __future__ import annotations
import datetime
import logging
from typing import Optional

import pandas as pd

from .catalog import CatalogTracker
from .collaborators import PersonDirectory, RosterSource
from .config import database_url_from_env, school_id_from_env
from .database import Database
from .errors import Result
from .loans import LoanLedger
from .membership import MembershipRegistry
from .models import PersonRef
from .provisioning import BulkProvisioner
from .reservations import ReservationRegistry
from . import reports
from .settings_store import SettingsStore

logger = logging.getLogger("SchoolLibrary")


class LibrarySystem:
    """
    Library lending engine of one school.

    Components are exposed as attributes (``catalog``, ``members``,
    ``loans``, ``reservations``, ``settings``, ``provisioner``) for callers
    that need more than the shortcuts below.
    """

    def __init__(self,
                 database_url: Optional[str] = None,
                 school_id: Optional[str] = None,
                 roster: Optional[RosterSource] = None,
                 directory: Optional[PersonDirectory] = None,
                 create_schema: bool = True,
                 db: Optional[Database] = None):
        """
        Initialize the LibrarySystem.

        Args:
            database_url: SQLAlchemy URL; defaults to the environment/config value.
            school_id: organization whose data this instance sees.
            roster: roster source for provisioning by group.
            directory: person directory for provisioning from uploads.
            create_schema: create missing tables on start.
            db: an existing Database to share instead of opening a new one.
        """
        self.school_id = school_id or school_id_from_env()
        self.db = db or Database(database_url or database_url_from_env())
        if create_schema:
            self.db.create_schema()

        self.settings = SettingsStore(self.db, self.school_id)
        self.catalog = CatalogTracker(self.db, self.school_id)
        self.members = MembershipRegistry(self.db, self.school_id, self.settings)
        self.loans = LoanLedger(self.db, self.school_id, self.catalog, self.members, self.settings)
        self.reservations = ReservationRegistry(self.db, self.school_id, self.catalog, self.members, self.settings)
        self.provisioner = BulkProvisioner(self.members, roster=roster, directory=directory)
        logger.debug("Library system ready for school %s", self.school_id)

    # ---- catalog
    def add_book(self, title: str, author: str, total_copies: int = 1,
                 isbn: Optional[str] = None, genre: Optional[str] = None) -> Result:
        return self.catalog.add_book(title, author, total_copies, isbn=isbn, genre=genre)

    # ---- membership
    def add_member(self, member_type: str, person_id: str,
                   borrowing_limit: Optional[int] = None) -> Result:
        return self.members.provision(PersonRef.for_member_type(member_type, person_id),
                                      member_type, borrowing_limit)

    # ---- circulation
    def issue(self, book_id: int, member_id: int,
              due_date: Optional[datetime.date] = None, **kwargs) -> Result:
        return self.loans.issue(book_id, member_id, due_date, **kwargs)

    def renew(self, transaction_id: int, **kwargs) -> Result:
        return self.loans.renew(transaction_id, **kwargs)

    def return_book(self, transaction_id: int, return_date: Optional[datetime.date] = None,
                    **kwargs) -> Result:
        return self.loans.return_loan(transaction_id, return_date, **kwargs)

    def mark_lost(self, transaction_id: int, replacement_fee) -> Result:
        return self.loans.mark_lost(transaction_id, replacement_fee)

    def pay_fine(self, transaction_id: int) -> Result:
        return self.loans.pay_fine(transaction_id)

    # ---- reservations
    def reserve_book(self, book_id: int, member_id: int, **kwargs) -> Result:
        return self.reservations.create(book_id, member_id, **kwargs)

    # ---- reporting
    def stats(self, today: Optional[datetime.date] = None) -> dict:
        return reports.library_stats(self.db, self.school_id, today)

    def report_books(self) -> pd.DataFrame:
        return reports.export_report_books(self.db, self.school_id)

    def report_loans(self, today: Optional[datetime.date] = None) -> pd.DataFrame:
        return reports.export_report_loans(self.db, self.school_id, today)

    def report_reservations(self, status: Optional[str] = None) -> pd.DataFrame:
        return reports.export_report_reservations(self.db, self.school_id, status)

    def report_members(self) -> pd.DataFrame:
        return reports.export_report_members(self.db, self.school_id)

    def close(self) -> None:
        self.db.dispose()
