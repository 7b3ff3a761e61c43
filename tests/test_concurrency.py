import threading

import pytest

from school_library import ErrorKind, LibrarySystem

from conftest import D, available, make_student

WORKERS = 8


@pytest.fixture
def file_lib(tmp_path):
    system = LibrarySystem(f"sqlite:///{tmp_path / 'library.db'}", "school-a")
    yield system
    system.close()


def race(calls):
    """Run the calls on separate threads, released together, and return their results in order."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)
    errors = []

    def worker(i, call):
        barrier.wait()
        try:
            results[i] = call()
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert not errors, errors
    return results


def test_last_copy_goes_to_exactly_one_issue(file_lib):
    book = file_lib.add_book("Dune", "Frank Herbert", total_copies=1).value
    members = [make_student(file_lib, f"S{i:03d}") for i in range(WORKERS)]

    results = race([lambda m=m: file_lib.issue(book.id, m.id, issue_date=D) for m in members])

    assert sum(r.ok for r in results) == 1
    assert {r.error for r in results if not r.ok} == {ErrorKind.NOT_AVAILABLE}
    assert available(file_lib, book.id) == 0
    assert len(file_lib.loans.list_transactions()) == 1
    # losers got their loan slot back
    assert sum(file_lib.members.get(m.id).active_loans for m in members) == 1


def test_member_limit_holds_under_concurrent_issues(file_lib):
    member = make_student(file_lib, "S001", limit=1)
    books = [file_lib.add_book(f"Book {i}", "Author", 1).value for i in range(WORKERS)]

    results = race([lambda b=b: file_lib.issue(b.id, member.id, issue_date=D) for b in books])

    assert sum(r.ok for r in results) == 1
    assert {r.error for r in results if not r.ok} == {ErrorKind.BORROWING_LIMIT_EXCEEDED}
    assert file_lib.members.active_loan_count(member.id) == 1
    assert file_lib.members.get(member.id).active_loans == 1
    assert sum(available(file_lib, b.id) for b in books) == WORKERS - 1
