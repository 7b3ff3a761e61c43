import pandas as pd

from school_library.cli import main


def run(tmp_path, *args):
    return main(["--db", f"sqlite:///{tmp_path / 'library.db'}", "--school", "school-a", *args])


def test_add_book_member_issue_and_return(tmp_path, capsys):
    assert run(tmp_path, "init-db") == 0
    assert run(tmp_path, "add-book", "--title", "Dune", "--author", "Frank Herbert", "--copies", "1") == 0
    assert run(tmp_path, "add-member", "--type", "student", "--person-id", "S001") == 0
    assert run(tmp_path, "issue", "--book", "1", "--member", "1") == 0
    # no copy left
    assert run(tmp_path, "issue", "--book", "1", "--member", "1") == 1
    assert run(tmp_path, "return", "--loan", "1") == 0
    assert run(tmp_path, "return", "--loan", "1") == 1

    out = capsys.readouterr().out
    assert "Book ID: 1" in out
    assert "Member ID: 1" in out


def test_template_is_written(tmp_path):
    out = tmp_path / "template.csv"
    assert run(tmp_path, "template", "--type", "teacher", "--out", str(out)) == 0
    df = pd.read_csv(out, dtype=str)
    assert list(df.columns) == ["first_name", "last_name", "email", "employee_id", "borrowing_limit"]
    assert df.loc[0, "borrowing_limit"] == "5"


def test_bulk_upload_writes_row_report(tmp_path):
    students = tmp_path / "students.csv"
    students.write_text("person_id,first_name,last_name,email\nS001,Asha,Rao,asha@school.test\n")
    upload = tmp_path / "upload.csv"
    upload.write_text("first_name,last_name,email\nAsha,Rao,asha@school.test\nEve,Stone,eve@school.test\n")
    report = tmp_path / "report.csv"

    code = run(tmp_path, "bulk-upload", str(upload), "--type", "student",
               "--students-csv", str(students), "--staff-csv", str(tmp_path / "staff.csv"),
               "--report", str(report))
    assert code == 1
    df = pd.read_csv(report, dtype=str).fillna("")
    assert list(df["status"]) == ["success", "error"]


def test_bulk_groups_from_roster(tmp_path, capsys):
    roster = tmp_path / "roster.csv"
    roster.write_text(
        "group_id,person_id,first_name,last_name,email,status\n"
        "7A,S001,Asha,Rao,asha@school.test,active\n"
        "7A,S002,Ben,Okafor,ben@school.test,inactive\n"
        "7B,S001,Asha,Rao,asha@school.test,\n"
    )
    assert run(tmp_path, "bulk-groups", "7A", "7B", "--roster-csv", str(roster)) == 0
    assert "success: 1  failed: 0  total: 1" in capsys.readouterr().out


def test_settings_and_report(tmp_path, capsys):
    assert run(tmp_path, "settings", "--set", "fine_per_day=0.25") == 0
    assert run(tmp_path, "settings", "--set", "fine_per_day") == 2
    assert run(tmp_path, "settings") == 0
    assert "fine_per_day: 0.25" in capsys.readouterr().out

    out = tmp_path / "books.csv"
    assert run(tmp_path, "report", "books", "--out", str(out)) == 0
    assert out.exists()


def test_reservations_from_the_command_line(tmp_path, capsys):
    run(tmp_path, "add-book", "--title", "Dune", "--author", "Frank Herbert")
    run(tmp_path, "add-member", "--type", "student", "--person-id", "S001")
    assert run(tmp_path, "reserve", "--book", "1", "--member", "1") == 0
    assert run(tmp_path, "reservation", "--id", "1", "--to", "fulfilled") == 1
    assert run(tmp_path, "reservation", "--id", "1", "--to", "available") == 0
    assert run(tmp_path, "expire-reservations") == 0
    assert run(tmp_path, "stats") == 0
    assert "pending_reservations: 0" in capsys.readouterr().out


def test_malformed_fee_is_reported_not_raised(tmp_path, capsys):
    run(tmp_path, "add-book", "--title", "Dune", "--author", "Frank Herbert")
    run(tmp_path, "add-member", "--type", "student", "--person-id", "S001")
    run(tmp_path, "issue", "--book", "1", "--member", "1")
    assert run(tmp_path, "lost", "--loan", "1", "--fee", "abc") == 1
    assert "Replacement fee is not a number" in capsys.readouterr().out
