"""kindstore CLI: operator console for a kindstore endpoint."""

from __future__ import annotations

import logging
from typing import Optional

import typer
from click.core import ParameterSource

from kindstore.cli import allocate, entities, export_cmd, import_cmd, info, query

app = typer.Typer(
    name="kindstore",
    help="kindstore CLI: read, write and query entities in a kindstore endpoint.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    db: str = "kindstore.db"
    endpoint: str | None = None
    namespace: str | None = None
    project: str | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("kindstore")
        except Exception:
            v = "unknown"
        print(f"kindstore {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        envvar="KINDSTORE_DB",
        help="Emulator database file (default: kindstore.db)",
    ),
    endpoint: Optional[str] = typer.Option(
        None,
        "--endpoint",
        envvar="KINDSTORE_API_ENDPOINT",
        help="api_endpoint URI (e.g. sqlite:///kindstore.db or memory://)",
    ),
    namespace: Optional[str] = typer.Option(
        None, "--namespace", "-n", envvar="KINDSTORE_NAMESPACE", help="Default namespace"
    ),
    project: Optional[str] = typer.Option(
        None, "--project", envvar="KINDSTORE_PROJECT_ID", help="Project id"
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log RPCs at DEBUG level"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all kindstore commands."""
    from kindstore.transport import parse_endpoint

    db_source = ctx.get_parameter_source("db")
    endpoint_source = ctx.get_parameter_source("endpoint")

    resolved_endpoint = endpoint
    # Explicit --db overrides KINDSTORE_API_ENDPOINT when --endpoint is not given.
    if db_source == ParameterSource.COMMANDLINE and endpoint_source == ParameterSource.ENVIRONMENT:
        resolved_endpoint = None
    if resolved_endpoint:
        try:
            parse_endpoint(resolved_endpoint)
        except Exception as e:
            raise typer.BadParameter(str(e))

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s"
        )

    state.db = db or "kindstore.db"
    state.endpoint = resolved_endpoint
    state.namespace = namespace
    state.project = project
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.command(name="get")(entities.get_cmd)
app.command(name="put")(entities.put_cmd)
app.command(name="delete")(entities.delete_cmd)
app.command(name="query")(query.query_cmd)
app.command(name="allocate")(allocate.allocate_cmd)
app.command(name="info")(info.info_cmd)
app.command(name="export")(export_cmd.export_cmd)
app.command(name="import")(import_cmd.import_cmd)


def main() -> None:
    """Entry point for the kindstore CLI."""
    app()
