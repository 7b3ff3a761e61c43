"""
catalog.py

Catalog Availability Tracker.

The tracker is the only writer of ``available_copies``. Reservation and
release are single conditional UPDATE statements, so the database itself
refuses to hand out a copy that is not there, whatever the number of
concurrent callers.
"""

from __future__ import annotations
import logging
from typing import List, Optional

from sqlalchemy import case, or_, select, update
from sqlalchemy.orm import Session

from .database import Database
from .errors import ErrorKind, Result
from .models import Book

logger = logging.getLogger("SchoolLibrary.catalog")

AVAILABILITY_FILTERS = ("all", "available", "issued")


class CatalogTracker:
    """Per-title copy counts and availability for one school."""

    def __init__(self, db: Database, school_id: str):
        self.db = db
        self.school_id = school_id

    # ---------------- Catalog records ----------------
    def add_book(self, title: str, author: str, total_copies: int = 1,
                 isbn: Optional[str] = None, genre: Optional[str] = None) -> Result:
        """
        Add a title to the catalog with all of its copies available.

        Returns a Result holding the new Book.
        """
        title = (title or "").strip()
        author = (author or "").strip()
        if not title or not author:
            return Result.failure(ErrorKind.VALIDATION_ERROR, "Title and author are required.")
        if int(total_copies) < 1:
            return Result.failure(ErrorKind.VALIDATION_ERROR, "A book needs at least one copy.")
        with self.db.session_scope() as session:
            book = Book(school_id=self.school_id, title=title, author=author, isbn=isbn, genre=genre,
                        total_copies=int(total_copies), available_copies=int(total_copies))
            session.add(book)
            session.flush()
        logger.info("Added book %s '%s' with %d copies", book.id, title, book.total_copies)
        return Result.success(book, f"Book '{title}' added.")

    def get(self, book_id: int, session: Optional[Session] = None) -> Optional[Book]:
        with self.db.session_scope(session) as s:
            book = s.get(Book, book_id)
            if book is None or book.school_id != self.school_id:
                return None
            return book

    def search(self, text: Optional[str] = None, genre: Optional[str] = None,
               availability: str = "all") -> List[Book]:
        """
        Search active books by title, author or ISBN using a case-insensitive substring match.

        ``availability`` narrows to titles with a free copy ("available") or
        with none ("issued").
        """
        if availability not in AVAILABILITY_FILTERS:
            raise ValueError(f"availability must be one of {AVAILABILITY_FILTERS}")
        stmt = select(Book).where(Book.school_id == self.school_id, Book.is_active.is_(True))
        q = (text or "").strip()
        if q:
            pattern = f"%{q}%"
            stmt = stmt.where(or_(Book.title.ilike(pattern), Book.author.ilike(pattern),
                                  Book.isbn.ilike(pattern)))
        if genre:
            stmt = stmt.where(Book.genre == genre)
        if availability == "available":
            stmt = stmt.where(Book.available_copies > 0)
        elif availability == "issued":
            stmt = stmt.where(Book.available_copies == 0)
        with self.db.session_scope() as session:
            return list(session.scalars(stmt.order_by(Book.title)))

    def deactivate(self, book_id: int) -> Result:
        """Soft-delete a title; it stays referenced by its loan history."""
        with self.db.session_scope() as session:
            book = self.get(book_id, session)
            if book is None:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Book not found: {book_id}")
            book.is_active = False
        logger.info("Deactivated book %s", book_id)
        return Result.success(book, f"Book '{book.title}' removed from the catalog.")

    # ---------------- Availability ----------------
    def reserve(self, book_id: int, session: Optional[Session] = None) -> Result:
        """
        Take one copy of a book off the shelf.

        Succeeds only while ``available_copies > 0``; the check and the
        decrement are one statement. Pass ``session`` to make the reservation
        part of a larger transaction.
        """
        with self.db.session_scope(session) as s:
            stmt = (
                update(Book)
                .where(Book.id == book_id, Book.school_id == self.school_id,
                       Book.is_active.is_(True), Book.available_copies > 0)
                .values(available_copies=Book.available_copies - 1)
                .execution_options(synchronize_session=False)
            )
            if s.execute(stmt).rowcount == 1:
                book = self._refresh(s, book_id)
                logger.debug("Reserved a copy of book %s (%d left)", book_id, book.available_copies)
                return Result.success(book, f"Copy of '{book.title}' reserved.")
            book = self.get(book_id, s)
        if book is None or not book.is_active:
            return Result.failure(ErrorKind.LOOKUP_FAILED, f"Book not found: {book_id}")
        logger.debug("No copy of book %s available", book_id)
        return Result.failure(ErrorKind.NOT_AVAILABLE,
                              f"Book '{book.title}' ({book_id}) has no copies available.")

    def release(self, book_id: int, session: Optional[Session] = None) -> Result:
        """
        Put one copy of a book back on the shelf.

        The increment is clamped at ``total_copies`` so a repeated release can
        never invent copies.
        """
        with self.db.session_scope(session) as s:
            stmt = (
                update(Book)
                .where(Book.id == book_id, Book.school_id == self.school_id)
                .values(available_copies=case(
                    (Book.available_copies < Book.total_copies, Book.available_copies + 1),
                    else_=Book.total_copies,
                ))
                .execution_options(synchronize_session=False)
            )
            if s.execute(stmt).rowcount != 1:
                return Result.failure(ErrorKind.LOOKUP_FAILED, f"Book not found: {book_id}")
            book = self._refresh(s, book_id)
        logger.debug("Released a copy of book %s (%d available)", book_id, book.available_copies)
        return Result.success(book, f"Copy of '{book.title}' released.")

    @staticmethod
    def _refresh(session: Session, book_id: int) -> Book:
        book = session.get(Book, book_id)
        session.refresh(book)
        return book
