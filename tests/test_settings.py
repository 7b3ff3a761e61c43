from decimal import Decimal

from school_library import ErrorKind, LibrarySettings, LibrarySystem


def test_defaults_without_saved_row(lib):
    settings = lib.settings.get()
    assert settings == LibrarySettings()
    assert settings.fine_per_day == Decimal("1.00")
    assert settings.borrowing_limit_for("teacher") == 5
    assert settings.loan_days_for("staff") == 21
    assert settings.max_renewals == 2


def test_update_keeps_other_values(lib):
    result = lib.settings.update(fine_per_day="0.50", teacher_borrowing_limit=8)
    assert result.ok
    settings = lib.settings.get()
    assert settings.fine_per_day == Decimal("0.50")
    assert settings.teacher_borrowing_limit == 8
    assert settings.student_borrowing_limit == 3

    lib.settings.update(max_renewals="1")
    assert lib.settings.get().fine_per_day == Decimal("0.50")
    assert lib.settings.get().max_renewals == 1


def test_unknown_and_invalid_values_are_refused(lib):
    assert lib.settings.update(colour="blue").error == ErrorKind.VALIDATION_ERROR
    assert lib.settings.update(fine_per_day="lots").error == ErrorKind.VALIDATION_ERROR
    assert lib.settings.update(student_borrowing_days="two").error == ErrorKind.VALIDATION_ERROR
    result = lib.settings.update(student_borrowing_limit=0, fine_per_day="-1")
    assert result.error == ErrorKind.VALIDATION_ERROR
    assert "student_borrowing_limit must be positive" in result.message
    assert lib.settings.get() == LibrarySettings()


def test_settings_are_per_school(lib):
    lib.settings.update(student_borrowing_limit=6)
    other = LibrarySystem(db=lib.db, school_id="school-b", create_schema=False)
    assert other.settings.get().student_borrowing_limit == 3


def test_new_members_and_loans_follow_settings(lib):
    lib.settings.update(student_borrowing_limit=1, student_borrowing_days=7, max_renewals=0)
    member = lib.add_member("student", "S010").value
    assert member.borrowing_limit == 1

    book = lib.add_book("Holes", "Louis Sachar", total_copies=2).value
    loan = lib.issue(book.id, member.id).value
    assert (loan.due_date - loan.issue_date).days == 7
    assert loan.max_renewals == 0
    assert lib.renew(loan.id).error == ErrorKind.RENEWAL_LIMIT_EXCEEDED
    assert lib.issue(book.id, member.id).error == ErrorKind.BORROWING_LIMIT_EXCEEDED


def test_from_mapping_coerces_and_ignores_unknown():
    settings = LibrarySettings.from_mapping({"fine_per_day": 2, "grace_period_days": "3", "other": 1})
    assert settings.fine_per_day == Decimal("2")
    assert settings.grace_period_days == 3
    assert settings.validate() == []
