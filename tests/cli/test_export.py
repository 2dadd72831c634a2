"""Tests for kindstore export / import."""

import json
import os

from tests.cli.conftest import invoke


def _read(path):
    with open(path) as f:
        return [json.loads(line) for line in f]


def test_export_basic(runner, seeded_db, tmp_path):
    out_dir = str(tmp_path / "export_out")
    result = invoke(runner, ["export", "--output", out_dir], seeded_db)
    assert result.exit_code == 0
    assert "Exported 4 entities" in result.output

    assert sorted(os.listdir(out_dir)) == ["Employee.jsonl", "Task.jsonl"]
    rows = _read(os.path.join(out_dir, "Task.jsonl"))
    assert [r["key"]["path"] for r in rows] == [["Task", 1], ["Task", 2], ["Task", 3]]
    assert rows[0]["data"] == {"title": "write", "priority": 3, "done": False}


def test_export_kind_filter(runner, seeded_db, tmp_path):
    out_dir = str(tmp_path / "export_filter")
    result = invoke(runner, ["--json", "export", "--output", out_dir, "--kind", "Employee"], seeded_db)
    assert result.exit_code == 0
    assert json.loads(result.output)["counts"] == {"Employee": 1}
    assert os.listdir(out_dir) == ["Employee.jsonl"]
    (row,) = _read(os.path.join(out_dir, "Employee.jsonl"))
    assert row["exclude_from_indexes"] == ["name"]


def test_export_then_import(runner, seeded_db, tmp_path):
    out_dir = str(tmp_path / "dump")
    invoke(runner, ["export", "--output", out_dir], seeded_db)

    fresh = str(tmp_path / "fresh.db")
    result = invoke(runner, ["import", out_dir, "--batch-size", "2"], fresh)
    assert result.exit_code == 0
    assert "Imported 4 entities in 2 commit(s)" in result.output

    result = invoke(runner, ["--json", "get", '["Company", "acme", "Employee", 7]'], fresh)
    row = json.loads(result.output)["found"][0]
    assert row["data"] == {"name": "Ada", "badge": 9007199254740993}
    assert row["exclude_from_indexes"] == ["name"]


def test_import_single_file(runner, cli_db, tmp_path):
    path = tmp_path / "rows.jsonl"
    path.write_text(
        json.dumps({"key": {"path": ["Note", "a"]}, "data": {"blob": {"$blob": "aGk="}}})
        + "\n\n"
        + json.dumps({"key": ["Note", "b"], "data": {}})
        + "\n"
    )
    result = invoke(runner, ["--json", "import", str(path)], cli_db)
    assert json.loads(result.output) == {"imported": 2, "commits": 1}
    result = invoke(runner, ["--json", "get", '["Note", "a"]'], cli_db)
    assert json.loads(result.output)["found"][0]["data"] == {"blob": {"$blob": "aGk="}}


def test_import_errors(runner, cli_db, tmp_path):
    result = invoke(runner, ["import", str(tmp_path / "nope.jsonl")], cli_db)
    assert result.exit_code == 2
    assert "Input path not found" in result.output

    bad = tmp_path / "bad.jsonl"
    bad.write_text("{not json}\n")
    result = invoke(runner, ["import", str(bad)], cli_db)
    assert result.exit_code == 2
    assert "bad.jsonl:1" in result.output

    missing_key = tmp_path / "nokey.jsonl"
    missing_key.write_text(json.dumps({"data": {}}) + "\n")
    result = invoke(runner, ["import", str(missing_key)], cli_db)
    assert result.exit_code == 2


def test_import_empty(runner, cli_db, tmp_path):
    empty = tmp_path / "empty.jsonl"
    empty.write_text("")
    result = invoke(runner, ["import", str(empty)], cli_db)
    assert result.exit_code == 0
    assert "No records to import." in result.output
