"""Tests for kindstore get / put / delete / allocate."""

import json

from tests.cli.conftest import invoke


def test_get_json(runner, seeded_db):
    result = invoke(runner, ["--json", "get", '["Task", 1]', '["Task", 99]'], seeded_db)
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["found"] == [
        {"key": {"path": ["Task", 1]}, "data": {"title": "write", "priority": 3, "done": False}}
    ]
    assert data["missing"] == [{"path": ["Task", 99]}]


def test_get_tagged_values(runner, seeded_db):
    result = invoke(runner, ["--json", "get", '["Company", "acme", "Employee", 7]'], seeded_db)
    row = json.loads(result.output)["found"][0]
    assert row["data"]["badge"] == 9007199254740993
    assert row["exclude_from_indexes"] == ["name"]


def test_get_text(runner, seeded_db):
    result = invoke(runner, ["get", '["Task", 2]', '["Task", 42]'], seeded_db)
    assert result.exit_code == 0
    assert "test" in result.output
    assert "missing: ['Task', 42]" in result.output


def test_get_invalid_key(runner, seeded_db):
    result = invoke(runner, ["get", '["Task", 0]'], seeded_db)
    assert result.exit_code == 2
    assert "Error:" in result.output


def test_get_invalid_json(runner, seeded_db):
    result = invoke(runner, ["get", "Task:1"], seeded_db)
    assert result.exit_code == 2
    assert "Invalid JSON" in result.output


def test_put_allocates_id(runner, cli_db):
    result = invoke(runner, ["--json", "put", '["Task"]', '{"title": "new"}'], cli_db)
    assert result.exit_code == 0
    key = json.loads(result.output)["key"]
    assert key["path"][0] == "Task" and isinstance(key["path"][1], int)

    result = invoke(runner, ["--json", "get", json.dumps(key)], cli_db)
    assert json.loads(result.output)["found"][0]["data"] == {"title": "new"}


def test_put_tagged_values_and_exclusions(runner, cli_db):
    data = json.dumps(
        {
            "when": {"$timestamp": "2024-01-02T03:04:05Z"},
            "owner": {"$key": ["User", "ada"]},
            "body": "long text",
        }
    )
    result = invoke(runner, ["put", '["Doc", "d1"]', data, "--exclude", "body"], cli_db)
    assert result.exit_code == 0
    assert "upsert" in result.output

    result = invoke(runner, ["--json", "get", '["Doc", "d1"]'], cli_db)
    row = json.loads(result.output)["found"][0]
    assert row["data"]["owner"] == {"$key": {"path": ["User", "ada"]}}
    assert row["data"]["when"] == {"$timestamp": "2024-01-02T03:04:05Z"}
    assert row["exclude_from_indexes"] == ["body"]


def test_put_insert_conflict(runner, seeded_db):
    result = invoke(runner, ["put", '["Task", 1]', "{}", "--method", "insert"], seeded_db)
    assert result.exit_code == 5
    assert "ALREADY_EXISTS" in result.output


def test_put_unknown_method(runner, cli_db):
    result = invoke(runner, ["put", '["Task", 1]', "{}", "--method", "replace"], cli_db)
    assert result.exit_code == 2


def test_delete(runner, seeded_db):
    result = invoke(runner, ["delete", '["Task", 1]', '["Task", 404]'], seeded_db)
    assert result.exit_code == 0
    assert "Deleted 2 key(s)" in result.output
    result = invoke(runner, ["--json", "get", '["Task", 1]'], seeded_db)
    assert json.loads(result.output)["found"] == []


def test_allocate(runner, seeded_db):
    result = invoke(runner, ["--json", "allocate", '["Task"]', "--count", "2"], seeded_db)
    assert result.exit_code == 0
    keys = json.loads(result.output)
    assert len(keys) == 2
    assert all(k["path"][1] > 3 for k in keys)


def test_allocate_complete_key(runner, seeded_db):
    result = invoke(runner, ["allocate", '["Task", 1]'], seeded_db)
    assert result.exit_code == 2


def test_namespace_option(runner, cli_db):
    invoke(runner, ["--namespace", "tenant", "put", '["Task", 1]', '{"a": 1}'], cli_db)
    result = invoke(runner, ["--json", "get", '["Task", 1]'], cli_db)
    assert json.loads(result.output)["found"] == []
    result = invoke(runner, ["--json", "-n", "tenant", "get", '["Task", 1]'], cli_db)
    assert json.loads(result.output)["found"][0]["key"] == {"path": ["Task", 1], "namespace": "tenant"}
