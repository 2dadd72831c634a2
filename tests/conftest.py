"""Shared test fixtures for kindstore tests."""

from __future__ import annotations

from typing import Any

import pytest

from kindstore import Client, KindstoreConfig
from kindstore.emulator import EmulatorTransport

PROJECT = "test-project"


class RecordingTransport:
    """Wraps a transport and records every (method, request) sent through it."""

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def send(self, method: str, request: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((method, request))
        return await self.inner.send(method, request)

    async def close(self) -> None:
        await self.inner.close()

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    def reset(self) -> None:
        self.calls.clear()


class FailingTransport(RecordingTransport):
    """Raises ``error`` for the given methods, passes everything else through."""

    def __init__(self, inner: Any, error: Exception, methods: tuple[str, ...]) -> None:
        super().__init__(inner)
        self.error = error
        self.methods = methods

    async def send(self, method: str, request: dict[str, Any]) -> dict[str, Any]:
        if method in self.methods:
            self.calls.append((method, request))
            raise self.error
        return await super().send(method, request)


@pytest.fixture
def make_client():
    """Build an emulator-backed client; keyword args go to KindstoreConfig."""

    def _make(namespace: str | None = None, **options: Any) -> Client:
        config = KindstoreConfig(**options)
        emulator = EmulatorTransport(":memory:", project_id=PROJECT, config=config)
        return Client(
            namespace=namespace,
            project_id=PROJECT,
            transport=RecordingTransport(emulator),
            config=config,
        )

    return _make


@pytest.fixture
def client(make_client) -> Client:
    return make_client()


@pytest.fixture
def rpc(client) -> RecordingTransport:
    """The recording transport behind ``client``."""
    return client.transport
