import datetime
from decimal import Decimal

from conftest import D, make_student


def test_stats_counts(lib):
    dune = lib.add_book("Dune", "Frank Herbert", total_copies=2).value
    emma = lib.add_book("Emma", "Jane Austen").value
    retired = lib.add_book("Old Atlas", "Anon").value
    lib.catalog.deactivate(retired.id)
    a = make_student(lib, "S001")
    b = make_student(lib, "S002")

    on_time = lib.issue(dune.id, a.id, D + datetime.timedelta(days=14), issue_date=D).value
    late = lib.issue(emma.id, b.id, D + datetime.timedelta(days=1), issue_date=D).value
    returned = lib.issue(dune.id, b.id, D + datetime.timedelta(days=2), issue_date=D).value
    lib.return_book(returned.id, D + datetime.timedelta(days=5))

    stats = lib.stats(today=D + datetime.timedelta(days=4))
    assert stats["total_books"] == 2
    assert stats["total_members"] == 2
    assert stats["books_issued"] == 2
    assert stats["overdue_books"] == 1
    assert stats["total_fines"] == Decimal("3")
    assert stats["pending_reservations"] == 0

    lib.pay_fine(returned.id)
    assert lib.stats(today=D)["total_fines"] == Decimal("0")


def test_book_report_availability_label(lib, book, student):
    lib.add_book("Emma", "Jane Austen")
    lib.issue(book.id, student.id)

    df = lib.report_books()
    assert list(df.columns) == ["Book ID", "Title", "Author", "Genre", "Total Copies",
                                "Available Copies", "Availability"]
    labels = dict(zip(df["Title"], df["Availability"]))
    assert labels == {"Dune": "Issued", "Emma": "Available"}


def test_empty_reports_keep_their_columns(lib):
    assert lib.report_books().empty
    assert "Availability" in lib.report_books().columns
    assert lib.report_loans().empty
    assert "Status" in lib.report_loans().columns


def test_loan_report_derives_overdue(lib, book, student):
    loan = lib.issue(book.id, student.id, D + datetime.timedelta(days=3), issue_date=D).value

    assert lib.report_loans(today=D).loc[0, "Status"] == "issued"
    df = lib.report_loans(today=D + datetime.timedelta(days=10))
    assert df.loc[0, "Loan ID"] == loan.id
    assert df.loc[0, "Status"] == "overdue"
    assert df.loc[0, "Member Code"] == student.member_code
    assert df.loc[0, "Title"] == "Dune"


def test_member_report_counts_active_loans(lib, book, student):
    other = make_student(lib, "S002")
    lib.issue(book.id, student.id)

    df = lib.report_members().set_index("Member ID")
    assert df.loc[student.id, "Active Loans"] == 1
    assert df.loc[other.id, "Active Loans"] == 0
    assert df.loc[student.id, "Type"] == "student"
