"""
cli.py

Command line for the school library engine.

Typical usage:
    school-library add-book --title "Dune" --author "Frank Herbert" --copies 2
    school-library add-member --type student --person-id S001
    school-library issue --book 1 --member 1
    school-library return --loan 1 --date 2026-11-05
    school-library bulk-upload members.csv --type student --students-csv students.csv
"""

from __future__ import annotations
import argparse
import datetime
import logging
import sys
from typing import List, Optional

from .collaborators import CsvPersonDirectory, CsvRosterSource
from .config import MEMBER_TYPES
from .errors import Result
from .provisioning import write_template
from .system import LibrarySystem

logger = logging.getLogger("SchoolLibrary.cli")


def _date(value: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value}")


def _emit(result: Result) -> int:
    print(result.message)
    return 0 if result.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="school-library", description="School library lending engine")
    parser.add_argument("--db", default=None, help="SQLAlchemy database URL")
    parser.add_argument("--school", default=None, help="School (organization) id")
    parser.add_argument("--verbose", action="store_true", help="Log debug messages")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database tables")

    p = sub.add_parser("add-book", help="Add a title to the catalog")
    p.add_argument("--title", required=True)
    p.add_argument("--author", required=True)
    p.add_argument("--copies", type=int, default=1)
    p.add_argument("--isbn")
    p.add_argument("--genre")

    p = sub.add_parser("books", help="Search the catalog")
    p.add_argument("--search", default="")
    p.add_argument("--genre")
    p.add_argument("--availability", choices=["all", "available", "issued"], default="all")

    p = sub.add_parser("add-member", help="Provision a single member")
    p.add_argument("--type", choices=MEMBER_TYPES, required=True)
    p.add_argument("--person-id", required=True)
    p.add_argument("--limit", type=int)

    p = sub.add_parser("bulk-upload", help="Provision members from an uploaded CSV")
    p.add_argument("file")
    p.add_argument("--type", choices=MEMBER_TYPES, required=True)
    p.add_argument("--students-csv", default="students.csv")
    p.add_argument("--staff-csv", default="staff.csv")
    p.add_argument("--default-limit", type=int)
    p.add_argument("--report", help="Write the per-row status to this CSV")

    p = sub.add_parser("bulk-groups", help="Provision all active students of roster groups")
    p.add_argument("groups", nargs="+")
    p.add_argument("--roster-csv", default="roster.csv")
    p.add_argument("--limit", type=int)

    p = sub.add_parser("template", help="Write the bulk upload template")
    p.add_argument("--type", choices=MEMBER_TYPES, required=True)
    p.add_argument("--out", default=None)

    p = sub.add_parser("issue", help="Issue a book to a member")
    p.add_argument("--book", type=int, required=True)
    p.add_argument("--member", type=int, required=True)
    p.add_argument("--due", type=_date)
    p.add_argument("--max-renewals", type=int)
    p.add_argument("--notes")

    p = sub.add_parser("renew", help="Renew a loan")
    p.add_argument("--loan", type=int, required=True)
    p.add_argument("--days", type=int)

    p = sub.add_parser("return", help="Return a loan")
    p.add_argument("--loan", type=int, required=True)
    p.add_argument("--date", type=_date)
    p.add_argument("--fine", help="Fine amount overriding the computed one")
    p.add_argument("--notes")

    p = sub.add_parser("lost", help="Mark a loan as lost")
    p.add_argument("--loan", type=int, required=True)
    p.add_argument("--fee", required=True)

    p = sub.add_parser("pay-fine", help="Mark a loan's fine as paid")
    p.add_argument("--loan", type=int, required=True)

    p = sub.add_parser("reserve", help="Reserve a book for a member")
    p.add_argument("--book", type=int, required=True)
    p.add_argument("--member", type=int, required=True)

    p = sub.add_parser("reservation", help="Move a reservation to a new status")
    p.add_argument("--id", type=int, required=True)
    p.add_argument("--to", choices=["available", "fulfilled", "cancelled"], required=True)
    p.add_argument("--loan", type=int, help="Loan that fulfilled the reservation")

    sub.add_parser("expire-reservations", help="Expire reservations past their hold period")

    sub.add_parser("sweep", help="Mark issued loans past their due date as overdue")
    sub.add_parser("stats", help="Show library counters")

    p = sub.add_parser("report", help="Print or export a report")
    p.add_argument("kind", choices=["books", "loans", "members", "reservations"])
    p.add_argument("--out", help="Write the report to this CSV instead of printing")

    p = sub.add_parser("settings", help="Show or change library settings")
    p.add_argument("--set", action="append", default=[], metavar="NAME=VALUE")
    return parser


def run(args: argparse.Namespace) -> int:
    roster = CsvRosterSource(args.roster_csv) if args.command == "bulk-groups" else None
    directory = (CsvPersonDirectory(args.students_csv, args.staff_csv)
                 if args.command == "bulk-upload" else None)
    lib = LibrarySystem(args.db, args.school, roster=roster, directory=directory)
    try:
        return _dispatch(lib, args)
    finally:
        lib.close()


def _dispatch(lib: LibrarySystem, args: argparse.Namespace) -> int:
    cmd = args.command
    if cmd == "init-db":
        print("Database ready.")
        return 0
    if cmd == "add-book":
        result = lib.add_book(args.title, args.author, args.copies, isbn=args.isbn, genre=args.genre)
        if result.ok:
            print(f"Book ID: {result.value.id}")
        return _emit(result)
    if cmd == "books":
        books = lib.catalog.search(args.search, genre=args.genre, availability=args.availability)
        print(f"Found {len(books)} result(s):")
        for b in books:
            print(f"{b.id}: {b.title} | {b.author} | {b.available_copies}/{b.total_copies} available")
        return 0
    if cmd == "add-member":
        result = lib.add_member(args.type, args.person_id, args.limit)
        if result.ok:
            print(f"Member ID: {result.value.id}")
        return _emit(result)
    if cmd == "bulk-upload":
        result = lib.provisioner.provision_upload(args.file, args.type, args.default_limit,
                                                  progress=_print_progress)
        if result.ok and args.report:
            result.value.rows.to_csv(args.report, index=False)
            print(f"Per-row status written to {args.report}")
        return _emit_batch(result)
    if cmd == "bulk-groups":
        result = lib.provisioner.provision_groups(args.groups, "student", args.limit,
                                                  progress=_print_progress)
        return _emit_batch(result)
    if cmd == "template":
        default_limit = lib.settings.get().borrowing_limit_for(args.type)
        out = args.out or f"library_members_template_{args.type}.csv"
        write_template(out, args.type, default_limit)
        print(f"Template written to {out}")
        return 0
    if cmd == "issue":
        return _emit(lib.issue(args.book, args.member, args.due,
                               max_renewals=args.max_renewals, notes=args.notes))
    if cmd == "renew":
        return _emit(lib.renew(args.loan, loan_period_days=args.days))
    if cmd == "return":
        return _emit(lib.return_book(args.loan, args.date, fine_override=args.fine, notes=args.notes))
    if cmd == "lost":
        return _emit(lib.mark_lost(args.loan, args.fee))
    if cmd == "pay-fine":
        return _emit(lib.pay_fine(args.loan))
    if cmd == "reserve":
        return _emit(lib.reserve_book(args.book, args.member))
    if cmd == "reservation":
        return _emit(lib.reservations.update_status(args.id, args.to, loan_id=args.loan))
    if cmd == "expire-reservations":
        print(f"Expired {lib.reservations.expire()} reservation(s).")
        return 0
    if cmd == "sweep":
        print(f"Marked {lib.loans.sweep_overdue()} loan(s) overdue.")
        return 0
    if cmd == "stats":
        for key, value in lib.stats().items():
            print(f"{key}: {value}")
        return 0
    if cmd == "report":
        df = {"books": lib.report_books, "loans": lib.report_loans, "members": lib.report_members,
              "reservations": lib.report_reservations}[args.kind]()
        if args.out:
            df.to_csv(args.out, index=False)
            print(f"Saved {len(df)} row(s) to {args.out}")
        else:
            print(df.to_string(index=False))
        return 0
    if cmd == "settings":
        if args.set:
            changes = {}
            for item in args.set:
                name, sep, value = item.partition("=")
                if not sep:
                    print(f"Expected NAME=VALUE, got: {item}")
                    return 2
                changes[name.strip()] = value.strip()
            return _emit(lib.settings.update(**changes))
        for key, value in lib.settings.get().to_dict().items():
            print(f"{key}: {value}")
        return 0
    raise ValueError(f"unknown command: {cmd}")


def _print_progress(done: int, total: int) -> None:
    print(f"\rProcessed {done}/{total}", end="" if done < total else "\n", flush=True)


def _emit_batch(result: Result) -> int:
    if not result.ok:
        return _emit(result)
    report = result.value
    print(result.message)
    print(f"success: {report.success}  failed: {report.failed}  total: {report.total}")
    if report.skipped or report.invalid:
        print(f"skipped (already members or repeated): {report.skipped}  invalid rows: {report.invalid}")
    return 0 if report.failed == 0 else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s: %(message)s")
    try:
        return run(args)
    except Exception as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
