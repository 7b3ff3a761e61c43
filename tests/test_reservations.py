import datetime

from school_library import ErrorKind
from school_library.models import AVAILABLE, CANCELLED, EXPIRED, FULFILLED, PENDING

from conftest import D, make_student

DAY = datetime.timedelta(days=1)


def test_reservation_holds_for_the_configured_days(lib, book, student):
    result = lib.reserve_book(book.id, student.id, today=D)
    assert result.ok, result.message
    reservation = result.value
    assert reservation.status == PENDING
    assert reservation.reservation_date == D
    assert reservation.expiry_date == D + 7 * DAY

    lib.settings.update(reservation_hold_days=3)
    other = make_student(lib, "S002")
    assert lib.reserve_book(book.id, other.id, today=D).value.expiry_date == D + 3 * DAY


def test_one_open_reservation_per_member_and_title(lib, book, student):
    first = lib.reserve_book(book.id, student.id, today=D).value
    assert lib.reserve_book(book.id, student.id, today=D).error == ErrorKind.VALIDATION_ERROR

    lib.reservations.cancel(first.id)
    assert lib.reserve_book(book.id, student.id, today=D).ok


def test_reservation_needs_a_book_and_an_eligible_member(lib, book, student):
    assert lib.reserve_book(999, student.id, today=D).error == ErrorKind.LOOKUP_FAILED
    assert lib.reserve_book(book.id, 999, today=D).error == ErrorKind.MEMBER_INELIGIBLE
    lib.members.suspend(student.id, D + 5 * DAY)
    assert lib.reserve_book(book.id, student.id, today=D).error == ErrorKind.MEMBER_INELIGIBLE


def test_reservation_lifecycle(lib, book, student):
    reservation = lib.reserve_book(book.id, student.id, today=D).value

    # a pending hold cannot be fulfilled before a copy is set aside
    assert lib.reservations.fulfil(reservation.id).error == ErrorKind.INVALID_STATE_TRANSITION

    ready = lib.reservations.mark_available(reservation.id, today=D + 2 * DAY).value
    assert ready.status == AVAILABLE
    assert ready.available_date == D + 2 * DAY

    loan = lib.issue(book.id, student.id, issue_date=D + 2 * DAY).value
    done = lib.reservations.fulfil(reservation.id, loan_id=loan.id).value
    assert done.status == FULFILLED
    assert done.loan_id == loan.id

    assert lib.reservations.cancel(reservation.id).error == ErrorKind.INVALID_STATE_TRANSITION
    assert lib.reservations.update_status(reservation.id, "lent").error == ErrorKind.VALIDATION_ERROR
    assert lib.reservations.cancel(4242).error == ErrorKind.LOOKUP_FAILED


def test_expiry_sweep_is_idempotent(lib, book, student):
    other = make_student(lib, "S002")
    old = lib.reserve_book(book.id, student.id, today=D).value
    recent = lib.reserve_book(book.id, other.id, today=D + 5 * DAY).value

    assert lib.reservations.expire(D + 8 * DAY) == 1
    assert lib.reservations.expire(D + 8 * DAY) == 0
    assert lib.reservations.get(old.id).status == EXPIRED
    assert lib.reservations.get(recent.id).status == PENDING
    assert [r.id for r in lib.reservations.list_reservations(status=EXPIRED)] == [old.id]


def test_reservations_never_move_copies(lib, book, student):
    reservation = lib.reserve_book(book.id, student.id, today=D).value
    lib.reservations.mark_available(reservation.id, today=D)
    lib.reservations.cancel(reservation.id)
    assert lib.catalog.get(book.id).available_copies == 1
    assert lib.reservations.get(reservation.id).status == CANCELLED


def test_pending_reservations_in_stats_and_report(lib, book, student):
    other = make_student(lib, "S002")
    pending = lib.reserve_book(book.id, student.id, today=D).value
    ready = lib.reserve_book(book.id, other.id, today=D).value
    lib.reservations.mark_available(ready.id, today=D)

    assert lib.stats(today=D)["pending_reservations"] == 1

    df = lib.report_reservations()
    assert list(df["Reservation ID"]) == [ready.id, pending.id]
    assert list(df["Status"]) == ["available", "pending"]
    assert df.loc[1, "Member Code"] == student.member_code
    assert list(lib.report_reservations(status="pending")["Reservation ID"]) == [pending.id]
