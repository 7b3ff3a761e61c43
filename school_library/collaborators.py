"""
collaborators.py

Interfaces to the rest of the school system, plus CSV-backed implementations.

The lending engine only needs two things from outside: the active students of
a roster group (course batch, class) and a way to resolve an uploaded row to a
real student or staff record. The CSV implementations load exports of those
records with pandas, the same way the catalog exports are read.
"""

from __future__ import annotations
import logging
import pathlib
from dataclasses import dataclass
from typing import List, Optional, Protocol, Union

import pandas as pd

from .models import STAFF, STUDENT, PersonRef

logger = logging.getLogger("SchoolLibrary.collaborators")

ROSTER_COLUMNS = ["group_id", "person_id", "first_name", "last_name", "email", "status"]
PERSON_COLUMNS = ["person_id", "first_name", "last_name", "email"]


@dataclass(frozen=True)
class PersonRecord:
    """A person as the roster knows them."""

    ref: PersonRef
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class RosterSource(Protocol):
    def active_members(self, group_id: str) -> List[PersonRecord]:
        """Active persons belonging to a roster group."""


class PersonDirectory(Protocol):
    def find(self, member_type: str, email: str) -> Optional[PersonRef]:
        """Resolve a contact email to a student or staff reference."""


def _read_records(path: pathlib.Path, columns: List[str], what: str) -> pd.DataFrame:
    """
    Load a CSV export as strings, or an empty frame with ``columns`` if missing.
    """
    if not path.exists():
        logger.warning("%s CSV not found: %s (starting empty)", what, path)
        return pd.DataFrame(columns=columns)
    df = pd.read_csv(path, dtype=str).fillna("")
    df.columns = [str(c).strip().lower() for c in df.columns]
    for col in columns:
        if col not in df.columns:
            df[col] = ""
    for col in df.columns:
        df[col] = df[col].astype(str).str.strip()
    logger.info("Loaded %d %s records", len(df), what)
    return df


class CsvRosterSource:
    """
    Roster groups read from one CSV with columns
    group_id, person_id, first_name, last_name, email, status.

    Only rows whose status is empty or "active" count as active members.
    """

    def __init__(self, roster_csv: Union[str, pathlib.Path]):
        self.roster_csv = pathlib.Path(roster_csv)
        self.roster_df = _read_records(self.roster_csv, ROSTER_COLUMNS, "roster")

    def active_members(self, group_id: str) -> List[PersonRecord]:
        df = self.roster_df
        mask = (df["group_id"] == str(group_id)) & df["status"].str.lower().isin(["", "active"])
        return [
            PersonRecord(PersonRef(STUDENT, row["person_id"]), row["first_name"], row["last_name"], row["email"])
            for _, row in df.loc[mask].iterrows()
        ]

    def groups(self) -> List[str]:
        return sorted(self.roster_df["group_id"].unique().tolist())


class CsvPersonDirectory:
    """
    Students and staff read from two CSV exports.

    The staff file may carry an ``is_teacher`` column; teachers are only
    resolved for teacher memberships and other staff only for staff ones.
    """

    def __init__(self, students_csv: Union[str, pathlib.Path],
                 staff_csv: Union[str, pathlib.Path]):
        self.students_df = _read_records(pathlib.Path(students_csv), PERSON_COLUMNS, "student")
        self.staff_df = _read_records(pathlib.Path(staff_csv), PERSON_COLUMNS + ["is_teacher"], "staff")

    def find(self, member_type: str, email: str) -> Optional[PersonRef]:
        email = (email or "").strip().lower()
        if not email:
            return None
        if member_type == "student":
            df = self.students_df
            mask = df["email"].str.lower() == email
            kind = STUDENT
        else:
            df = self.staff_df
            is_teacher = df["is_teacher"].str.lower().isin(["true", "1", "yes", "y"])
            wanted = is_teacher if member_type == "teacher" else ~is_teacher
            mask = (df["email"].str.lower() == email) & wanted
            kind = STAFF
        hits = df.loc[mask]
        if hits.empty:
            return None
        return PersonRef(kind, hits.iloc[0]["person_id"])
