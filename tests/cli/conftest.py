"""Shared fixtures for CLI tests."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from kindstore import Client, Key
from kindstore.cli import app

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_db(tmp_path):
    """A temp emulator DB path for the CLI."""
    return str(tmp_path / "cli_test.db")


@pytest.fixture
def seeded_db(cli_db):
    """Create a DB with some seed data."""

    async def _seed() -> None:
        async with Client(api_endpoint=f"sqlite:///{cli_db}") as client:
            await client.save(
                [
                    {"key": Key("Task", 1), "data": {"title": "write", "priority": 3, "done": False}},
                    {"key": Key("Task", 2), "data": {"title": "test", "priority": 5, "done": True}},
                    {"key": Key("Task", 3), "data": {"title": "ship", "priority": 1, "done": False}},
                    {
                        "key": Key("Company", "acme", "Employee", 7),
                        "data": {"name": "Ada", "badge": client.int("9007199254740993")},
                        "exclude_from_indexes": ["name"],
                    },
                ]
            )

    asyncio.run(_seed())
    return cli_db


def invoke(runner: CliRunner, args: list[str], db_path: str | None = None) -> "Result":
    """Invoke CLI with proper state setup."""
    if db_path:
        # Inject --db before subcommand
        args = ["--db", db_path] + args
    result = runner.invoke(app, args, catch_exceptions=False)
    return result
