"""
provisioning.py

Bulk Membership Provisioner.

Turns a roster selection or an uploaded member list into library memberships:

1. validate rows (first name, last name and email are mandatory; invalid rows
   are set aside and not counted) and resolve each row to a person;
2. drop persons who already hold an active membership, and repeats of a
   person within the same batch (set aside, not counted);
3. provision the remaining entries one at a time, recording success or the
   reason for failure per row - one failed row never stops the batch;
4. report ``{success, failed, total}`` together with the per-row outcome.

Rows are processed strictly in order so each row sees the memberships created
by the rows before it. A cancellation token is checked between rows.
"""

from __future__ import annotations
import io
import os
import logging
import pathlib
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, IO, Iterable, List, Optional, Union

import pandas as pd

from .collaborators import PersonDirectory, PersonRecord, RosterSource
from .config import MEMBER_TYPES
from .errors import ErrorKind, Result
from .membership import MembershipRegistry, expected_ref_kind
from .models import PersonRef

logger = logging.getLogger("SchoolLibrary.provisioning")

# Accepted header spellings per canonical column
UPLOAD_COLUMNS = {
    "first_name": ["first_name", "firstname"],
    "last_name": ["last_name", "lastname"],
    "email": ["email"],
    "employee_id": ["employee_id", "employeeid"],
    "admission_number": ["admission_number", "admissionnumber"],
    "borrowing_limit": ["borrowing_limit", "borrowinglimit"],
}
REQUIRED_FIELDS = ("first_name", "last_name", "email")

# Per-row statuses
PENDING = "pending"
SUCCESS = "success"
ERROR = "error"
SKIPPED = "skipped"
INVALID = "invalid"

ProgressCallback = Callable[[int, int], None]
UploadSource = Union[str, pathlib.Path, IO[str]]


class CancellationToken:
    """Cooperative cancellation flag shared between a batch job and its caller."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class BatchReport:
    """
    Outcome of one provisioning batch.

    ``total`` counts the entries actually processed (success + failed);
    ``planned`` is the size of the work list after validation and dedup.
    ``rows`` has one line per input row with ``status`` and ``error_message``.
    """

    success: int = 0
    failed: int = 0
    total: int = 0
    planned: int = 0
    skipped: int = 0
    invalid: int = 0
    cancelled: bool = False
    rows: pd.DataFrame = field(default_factory=pd.DataFrame)

    def counts(self) -> Dict[str, int]:
        return {"success": self.success, "failed": self.failed, "total": self.total}


@dataclass
class _WorkItem:
    row: int
    ref: Optional[PersonRef]
    borrowing_limit: Optional[int] = None
    lookup_error: str = ""


# ---------------- Upload file handling ----------------
def find_first_col(columns: Iterable[str], candidates: List[str]) -> Optional[str]:
    """
    Return the first column whose normalised name matches one of ``candidates``.

    Names are compared case-insensitively with spaces treated as underscores.
    """
    normalised = {str(c).strip().lower().replace(" ", "_"): c for c in columns}
    for cand in candidates:
        if cand in normalised:
            return normalised[cand]
    return None


def _is_contents(source: UploadSource) -> bool:
    """A string holding the file text rather than a path to the file."""
    if not isinstance(source, str):
        return False
    if not source.strip():
        return True
    return "\n" in source or ("," in source and not os.path.exists(source))


def _read_delimited(source: UploadSource) -> pd.DataFrame:
    if _is_contents(source):
        source = io.StringIO(source)
    return pd.read_csv(source, dtype=str, skipinitialspace=True).fillna("")


def read_upload(source: UploadSource) -> pd.DataFrame:
    """
    Read an uploaded member list into a DataFrame with canonical column names.

    ``source`` is a path, an open text file or the file contents as a string.
    """
    return canonicalise_upload(_read_delimited(source))


def canonicalise_upload(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename known header spellings to canonical names.

    Every value is kept as a stripped string; canonical columns missing from
    the file are added empty. Columns the engine does not know are kept as
    they are so the report can show the original row.
    """
    renames = {}
    for canonical, candidates in UPLOAD_COLUMNS.items():
        col = find_first_col(df.columns, candidates)
        if col is not None:
            renames[col] = canonical
    df = df.rename(columns=renames)
    for canonical in UPLOAD_COLUMNS:
        if canonical not in df.columns:
            df[canonical] = ""
    for col in df.columns:
        df[col] = df[col].astype(str).str.strip()
    return df.reset_index(drop=True)


def missing_header_columns(source_columns: Iterable[str]) -> List[str]:
    cols = list(source_columns)
    return [c for c in REQUIRED_FIELDS if find_first_col(cols, UPLOAD_COLUMNS[c]) is None]


def parse_borrowing_limit(value: str) -> Optional[int]:
    """Positive integer from a cell, or None when blank or not a positive integer."""
    try:
        limit = int(str(value).strip())
    except ValueError:
        return None
    return limit if limit > 0 else None


def upload_template(member_type: str, default_limit: int) -> pd.DataFrame:
    """
    Template for the member upload, with one example row.

    Column order: first_name, last_name, email, admission_number (students)
    or employee_id (teachers, staff), borrowing_limit.
    """
    id_column, example_id = (("admission_number", "ADM001") if member_type == "student"
                             else ("employee_id", "EMP001"))
    return pd.DataFrame(
        [["John", "Doe", "john.doe@example.com", example_id, str(default_limit)]],
        columns=["first_name", "last_name", "email", id_column, "borrowing_limit"],
    )


def write_template(path: Union[str, pathlib.Path], member_type: str, default_limit: int) -> pathlib.Path:
    path = pathlib.Path(path)
    upload_template(member_type, default_limit).to_csv(path, index=False)
    logger.info("Wrote %s upload template to %s", member_type, path)
    return path


# ---------------- Provisioner ----------------
class BulkProvisioner:
    """Creates memberships in batches from roster groups or uploaded lists."""

    def __init__(self, registry: MembershipRegistry,
                 roster: Optional[RosterSource] = None,
                 directory: Optional[PersonDirectory] = None):
        self.registry = registry
        self.roster = roster
        self.directory = directory

    def provision_groups(self, group_ids: Iterable[str],
                         member_type: str = "student",
                         borrowing_limit: Optional[int] = None,
                         progress: Optional[ProgressCallback] = None,
                         token: Optional[CancellationToken] = None) -> Result:
        """
        Provision every active member of the selected roster groups.

        Returns a Result holding a BatchReport.
        """
        if self.roster is None:
            return Result.failure(ErrorKind.LOOKUP_FAILED, "No roster source configured.")
        if member_type not in MEMBER_TYPES:
            return Result.failure(ErrorKind.VALIDATION_ERROR, f"Unknown member type: {member_type}")

        records: List[PersonRecord] = []
        for group_id in group_ids:
            records.extend(self.roster.active_members(group_id))
        rows = pd.DataFrame(
            [{"person_id": r.ref.person_id, "first_name": r.first_name,
              "last_name": r.last_name, "email": r.email} for r in records],
            columns=["person_id", "first_name", "last_name", "email"],
        )
        self._init_status_columns(rows)

        items = []
        for idx, record in enumerate(records):
            if self._mark_invalid(rows, idx):
                continue
            items.append(_WorkItem(row=idx, ref=record.ref, borrowing_limit=borrowing_limit))
        return self._run(rows, items, member_type, progress, token)

    def provision_upload(self, source: UploadSource,
                         member_type: str,
                         default_limit: Optional[int] = None,
                         progress: Optional[ProgressCallback] = None,
                         token: Optional[CancellationToken] = None) -> Result:
        """
        Provision the persons listed in an uploaded delimited file.

        Each valid row is resolved through the person directory by email; a
        row with no matching person fails with a lookup error. Returns a
        Result holding a BatchReport whose rows are the original file rows
        plus status columns.
        """
        if self.directory is None:
            return Result.failure(ErrorKind.LOOKUP_FAILED, "No person directory configured.")
        if member_type not in MEMBER_TYPES:
            return Result.failure(ErrorKind.VALIDATION_ERROR, f"Unknown member type: {member_type}")

        try:
            raw = _read_delimited(source)
        except FileNotFoundError:
            return Result.failure(ErrorKind.VALIDATION_ERROR, f"Upload file not found: {source}")
        except pd.errors.EmptyDataError:
            return Result.failure(ErrorKind.VALIDATION_ERROR, "Upload is empty; a header row is required.")
        missing = missing_header_columns(raw.columns)
        if missing:
            return Result.failure(ErrorKind.VALIDATION_ERROR,
                                  f"Upload header is missing required column(s): {', '.join(missing)}")
        rows = canonicalise_upload(raw)
        self._init_status_columns(rows)

        items = []
        for idx, row in rows.iterrows():
            if self._mark_invalid(rows, idx):
                continue
            limit = parse_borrowing_limit(row["borrowing_limit"]) or default_limit
            ref = self.directory.find(member_type, row["email"])
            if ref is None:
                items.append(_WorkItem(row=idx, ref=None, borrowing_limit=limit,
                                       lookup_error=f"{member_type} not found with email: {row['email']}"))
            else:
                items.append(_WorkItem(row=idx, ref=ref, borrowing_limit=limit))
        return self._run(rows, items, member_type, progress, token)

    # ---------------- Internal helpers ----------------
    @staticmethod
    def _init_status_columns(rows: pd.DataFrame) -> None:
        rows["status"] = PENDING
        rows["error_message"] = ""
        rows["member_code"] = ""

    @staticmethod
    def _mark_invalid(rows: pd.DataFrame, idx: int) -> bool:
        missing = [f for f in REQUIRED_FIELDS if not str(rows.at[idx, f]).strip()]
        if not missing:
            return False
        rows.at[idx, "status"] = INVALID
        rows.at[idx, "error_message"] = f"Missing {', '.join(missing)}"
        return True

    def _dedup(self, rows: pd.DataFrame, items: List[_WorkItem], member_type: str) -> List[_WorkItem]:
        """Drop existing members and repeated persons, keeping first occurrences in order."""
        existing = self.registry.active_person_refs(expected_ref_kind(member_type))
        seen = set()
        work = []
        for item in items:
            if item.ref is not None and item.ref in existing:
                rows.at[item.row, "status"] = SKIPPED
                rows.at[item.row, "error_message"] = "Already a library member"
                continue
            if item.ref is not None and item.ref in seen:
                rows.at[item.row, "status"] = SKIPPED
                rows.at[item.row, "error_message"] = "Listed more than once in this batch"
                continue
            if item.ref is not None:
                seen.add(item.ref)
            work.append(item)
        return work

    def _run(self, rows: pd.DataFrame, items: List[_WorkItem], member_type: str,
             progress: Optional[ProgressCallback],
             token: Optional[CancellationToken]) -> Result:
        work = self._dedup(rows, items, member_type)
        report = BatchReport(planned=len(work), rows=rows)
        report.invalid = int((rows["status"] == INVALID).sum())
        report.skipped = int((rows["status"] == SKIPPED).sum())
        logger.info("Provisioning %d %s member(s) (%d invalid, %d already members or repeated)",
                    report.planned, member_type, report.invalid, report.skipped)

        for done, item in enumerate(work, start=1):
            if token is not None and token.cancelled:
                report.cancelled = True
                logger.info("Provisioning cancelled after %d of %d row(s)", report.total, report.planned)
                break
            if item.ref is None:
                outcome = Result.failure(ErrorKind.LOOKUP_FAILED, item.lookup_error)
            else:
                outcome = self.registry.provision(item.ref, member_type, item.borrowing_limit)

            if outcome.ok:
                report.success += 1
                rows.at[item.row, "status"] = SUCCESS
                rows.at[item.row, "member_code"] = outcome.value.member_code
            else:
                report.failed += 1
                rows.at[item.row, "status"] = ERROR
                rows.at[item.row, "error_message"] = outcome.message
                logger.debug("Row %d failed: %s", item.row, outcome.message)
            report.total += 1
            if progress is not None:
                progress(done, report.planned)

        logger.info("Provisioning finished: %d succeeded, %d failed of %d",
                    report.success, report.failed, report.total)
        return Result.success(report, f"Added {report.success} library member(s); {report.failed} failed.")
