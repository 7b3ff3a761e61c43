"""
database.py

Engine and session handling for the lending engine.

``Database.session_scope`` is the single unit-of-work helper: it commits when
the block finishes, rolls back when it raises, and joins an already open
session when one is passed in so that several components can share one
transaction.
"""

from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger("SchoolLibrary.database")

# seconds a SQLite writer waits for another transaction to finish
SQLITE_BUSY_TIMEOUT = 30


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Owns the SQLAlchemy engine and hands out transactional sessions.

    An in-memory SQLite URL is pinned to a single shared connection so every
    session sees the same data.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        if _is_memory_sqlite(url):
            self.engine: Engine = create_engine(
                url, echo=echo, poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        elif url.startswith("sqlite"):
            # pooled connections move between threads; writers wait for the lock
            self.engine = create_engine(
                url, echo=echo,
                connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
            )
        else:
            self.engine = create_engine(url, echo=echo)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.info("Schema ready on %s", self.engine.url.render_as_string(hide_password=True))

    def drop_schema(self) -> None:
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session_scope(self, session: Optional[Session] = None) -> Iterator[Session]:
        """
        Provide a transactional scope around a series of operations.

        When ``session`` is given the caller owns the transaction: it is yielded
        unchanged and neither committed nor closed here.
        """
        if session is not None:
            yield session
            return
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
