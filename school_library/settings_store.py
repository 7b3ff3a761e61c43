"""
settings_store.py

Persisted per-school library settings.

A school without a saved row gets the defaults from ``config``.
"""

from __future__ import annotations
import logging
from typing import Any

from .config import LibrarySettings
from .database import Database
from .errors import ErrorKind, Result
from .models import LibrarySettingsRow

logger = logging.getLogger("SchoolLibrary.settings")


class SettingsStore:
    """Settings provider backed by the ``library_settings`` table."""

    def __init__(self, db: Database, school_id: str):
        self.db = db
        self.school_id = school_id

    def get(self) -> LibrarySettings:
        with self.db.session_scope() as session:
            row = session.get(LibrarySettingsRow, self.school_id)
            if row is None:
                return LibrarySettings()
            return LibrarySettings.from_mapping(
                {name: getattr(row, name) for name in LibrarySettings().to_dict()})

    def update(self, **changes: Any) -> Result:
        """
        Save new values for some settings, keeping the others.

        Unknown names and invalid values are refused as a whole.
        """
        current = self.get().to_dict()
        unknown = sorted(set(changes) - set(current))
        if unknown:
            return Result.failure(ErrorKind.VALIDATION_ERROR, f"Unknown settings: {', '.join(unknown)}")
        current.update({k: v for k, v in changes.items() if v is not None})
        try:
            settings = LibrarySettings.from_mapping(current)
        except (ValueError, ArithmeticError) as exc:
            return Result.failure(ErrorKind.VALIDATION_ERROR, f"Invalid setting value: {exc}")
        problems = settings.validate()
        if problems:
            return Result.failure(ErrorKind.VALIDATION_ERROR, "; ".join(problems))

        with self.db.session_scope() as session:
            row = session.get(LibrarySettingsRow, self.school_id)
            if row is None:
                row = LibrarySettingsRow(school_id=self.school_id)
                session.add(row)
            for name, value in settings.to_dict().items():
                setattr(row, name, value)
        logger.info("Updated library settings for school %s: %s", self.school_id, sorted(changes))
        return Result.success(settings, "Library settings updated.")
