"""
School library lending engine.

Catalog availability, memberships, loans and fines, and bulk member
provisioning for one school, on top of a SQLAlchemy database.
"""

from .config import LibrarySettings
from .errors import ErrorKind, Result
from .fines import calculate_fine
from .models import PersonRef
from .provisioning import BatchReport, CancellationToken
from .system import LibrarySystem

__all__ = [
    "LibrarySettings",
    "ErrorKind",
    "Result",
    "calculate_fine",
    "PersonRef",
    "BatchReport",
    "CancellationToken",
    "LibrarySystem",
]
