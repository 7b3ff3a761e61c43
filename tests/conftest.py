import datetime

import pytest

from school_library import LibrarySystem, PersonRef
from school_library.models import STAFF, STUDENT

D = datetime.date(2026, 3, 2)


class FakeDirectory:
    """Person directory over a dict of (member_type, email) -> person id."""

    def __init__(self, people):
        self.people = {(t, e.lower()): pid for (t, e), pid in people.items()}

    def find(self, member_type, email):
        pid = self.people.get((member_type, (email or "").lower()))
        if pid is None:
            return None
        return PersonRef(STUDENT if member_type == "student" else STAFF, pid)


class FakeRoster:
    def __init__(self, groups):
        self.groups = groups

    def active_members(self, group_id):
        return list(self.groups.get(group_id, []))


@pytest.fixture
def lib():
    system = LibrarySystem("sqlite://", "school-a")
    yield system
    system.close()


@pytest.fixture
def book(lib):
    return lib.add_book("Dune", "Frank Herbert", total_copies=1, genre="Sci-Fi").value


@pytest.fixture
def student(lib):
    return lib.add_member("student", "S001").value


def make_student(lib, person_id, limit=None):
    result = lib.add_member("student", person_id, limit)
    assert result.ok, result.message
    return result.value


def available(lib, book_id):
    return lib.catalog.get(book_id).available_copies
