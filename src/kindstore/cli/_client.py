"""Client construction and error handling shared by CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

import typer

from kindstore.cli import _exitcodes as ec
from kindstore.cli._output import print_error
from kindstore.client import Client
from kindstore.errors import (
    KindstoreError,
    MutationConflictError,
    TransportError,
    ValidationError,
)

T = TypeVar("T")


def resolve_endpoint() -> str:
    """Endpoint from global state; defaults to the emulator file given by --db."""
    from kindstore.cli import state

    return state.endpoint or f"sqlite:///{state.db}"


def open_client() -> Client:
    from kindstore.cli import state

    return Client(
        namespace=state.namespace,
        project_id=state.project,
        api_endpoint=resolve_endpoint(),
    )


def run_with_client(body: Callable[[Client], Awaitable[T]]) -> T:
    """Open a client, run ``body`` against it on a fresh event loop, then close it."""

    async def _main() -> T:
        client = open_client()
        try:
            return await body(client)
        finally:
            await client.close()

    return asyncio.run(_main())


@contextmanager
def command_errors() -> Iterator[None]:
    """Map kindstore errors to an error message and exit code."""
    try:
        yield
    except ValidationError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except MutationConflictError as e:
        print_error(str(e))
        raise typer.Exit(ec.CONFLICT)
    except TransportError as e:
        print_error(str(e))
        raise typer.Exit(ec.STORE_ERROR)
    except KindstoreError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
