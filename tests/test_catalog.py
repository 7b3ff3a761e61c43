from sqlalchemy import select

from school_library import ErrorKind
from school_library.models import Book

from conftest import available


def test_add_book_starts_fully_available(lib):
    result = lib.add_book("Clean Code", "Robert C. Martin", total_copies=3)
    assert result.ok
    assert result.value.total_copies == 3
    assert result.value.available_copies == 3


def test_add_book_requires_title_and_copies(lib):
    assert lib.add_book("", "Someone").error == ErrorKind.VALIDATION_ERROR
    assert lib.add_book("Title", "Someone", total_copies=0).error == ErrorKind.VALIDATION_ERROR


def test_reserve_decrements_until_empty(lib):
    book = lib.add_book("Clean Code", "Robert C. Martin", total_copies=2).value
    assert lib.catalog.reserve(book.id).ok
    assert lib.catalog.reserve(book.id).ok
    assert available(lib, book.id) == 0

    result = lib.catalog.reserve(book.id)
    assert not result.ok
    assert result.error == ErrorKind.NOT_AVAILABLE
    assert available(lib, book.id) == 0


def test_release_is_clamped_at_total(lib, book):
    result = lib.catalog.release(book.id)
    assert result.ok
    assert available(lib, book.id) == 1

    lib.catalog.reserve(book.id)
    lib.catalog.release(book.id)
    lib.catalog.release(book.id)
    assert available(lib, book.id) == 1


def test_unknown_book_is_a_lookup_failure(lib):
    assert lib.catalog.reserve(999).error == ErrorKind.LOOKUP_FAILED
    assert lib.catalog.release(999).error == ErrorKind.LOOKUP_FAILED


def test_deactivated_book_cannot_be_reserved(lib, book):
    assert lib.catalog.deactivate(book.id).ok
    assert lib.catalog.reserve(book.id).error == ErrorKind.LOOKUP_FAILED
    assert lib.catalog.search("Dune") == []


def test_search_filters(lib):
    dune = lib.add_book("Dune", "Frank Herbert", total_copies=1, genre="Sci-Fi").value
    lib.add_book("Emma", "Jane Austen", total_copies=1, genre="Classic", isbn="9780141439587")
    lib.catalog.reserve(dune.id)

    assert [b.title for b in lib.catalog.search("herbert")] == ["Dune"]
    assert [b.title for b in lib.catalog.search("97801414")] == ["Emma"]
    assert [b.title for b in lib.catalog.search(genre="Classic")] == ["Emma"]
    assert [b.title for b in lib.catalog.search(availability="available")] == ["Emma"]
    assert [b.title for b in lib.catalog.search(availability="issued")] == ["Dune"]


def test_books_are_scoped_to_school(lib, book):
    other = type(lib)(db=lib.db, school_id="school-b")
    assert other.catalog.get(book.id) is None
    assert other.catalog.reserve(book.id).error == ErrorKind.LOOKUP_FAILED


def test_reserve_checks_stored_count_not_a_stale_read(tmp_path):
    # two sessions on separate connections of a file database
    from school_library import LibrarySystem

    lib = LibrarySystem(f"sqlite:///{tmp_path / 'library.db'}", "school-a")
    try:
        book = lib.add_book("Dune", "Frank Herbert", total_copies=1).value
        with lib.db.session_scope() as session:
            stale = session.scalar(select(Book).where(Book.id == book.id))
            assert stale.available_copies == 1

            # another request takes the last copy and commits
            assert lib.catalog.reserve(book.id).ok

            result = lib.catalog.reserve(book.id, session)
            assert result.error == ErrorKind.NOT_AVAILABLE
        assert available(lib, book.id) == 0
    finally:
        lib.close()
