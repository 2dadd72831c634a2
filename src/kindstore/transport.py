"""Transport contract and endpoint resolution."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlparse

from kindstore.config import KindstoreConfig
from kindstore.errors import TransportError

logger = logging.getLogger(__name__)

METHODS = ("allocateIds", "lookup", "runQuery", "commit", "beginTransaction", "rollback")


@runtime_checkable
class Transport(Protocol):
    """The collaborator that carries requests to the store.

    ``send`` takes one of ``METHODS`` and a JSON-shaped request dict and
    returns the JSON-shaped response dict, raising on failure.
    """

    async def send(self, method: str, request: dict[str, Any]) -> dict[str, Any]: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class TransportOptions:
    """Client options handed to transport factories untouched."""

    project_id: str | None = None
    api_endpoint: str | None = None
    credentials: dict[str, Any] | None = None
    key_filename: str | None = None


TransportFactory = Callable[[TransportOptions, KindstoreConfig], Transport]

_FACTORIES: dict[str, TransportFactory] = {}


def register_transport(scheme: str, factory: TransportFactory) -> None:
    """Register a factory for endpoints of the form ``<scheme>://...``."""
    _FACTORIES[scheme.lower()] = factory


@dataclass(frozen=True)
class EndpointTarget:
    """Resolved api_endpoint."""

    scheme: str
    uri: str
    db_path: str | None = None


def parse_endpoint(api_endpoint: str) -> EndpointTarget:
    """Resolve an api_endpoint URI.

    ``sqlite:///rel/path``, ``sqlite:////abs/path`` and ``memory://`` name the
    bundled emulator; every other scheme is left to a registered factory.
    """
    parsed = urlparse(api_endpoint)
    scheme = parsed.scheme.lower()
    if not scheme:
        raise TransportError("open_transport", f"api_endpoint '{api_endpoint}' has no scheme")

    if scheme == "memory":
        return EndpointTarget(scheme=scheme, uri=api_endpoint, db_path=":memory:")

    if scheme == "sqlite":
        sqlite_path = parsed.path
        if parsed.netloc:
            sqlite_path = f"{parsed.netloc}{sqlite_path}"
        elif sqlite_path.startswith("//"):
            # sqlite:////abs/path -> /abs/path
            sqlite_path = sqlite_path[1:]
        elif sqlite_path.startswith("/"):
            sqlite_path = sqlite_path[1:]
        if sqlite_path in ("", ":memory:", "/:memory:"):
            sqlite_path = ":memory:"
        return EndpointTarget(scheme=scheme, uri=api_endpoint, db_path=sqlite_path)

    return EndpointTarget(scheme=scheme, uri=api_endpoint)


def open_transport(
    options: TransportOptions, config: KindstoreConfig | None = None
) -> Transport:
    """Open the transport named by ``options.api_endpoint``."""
    cfg = config or KindstoreConfig()
    if not options.api_endpoint:
        raise TransportError(
            "open_transport",
            "No api_endpoint configured; pass api_endpoint='sqlite:///path.db', "
            "register a transport factory, or pass transport=",
        )
    target = parse_endpoint(options.api_endpoint)
    logger.debug("Opening %s transport for %s", target.scheme, target.uri)

    if target.scheme in ("sqlite", "memory"):
        from kindstore.emulator import EmulatorTransport

        assert target.db_path is not None
        return EmulatorTransport(target.db_path, project_id=options.project_id, config=cfg)

    factory = _FACTORIES.get(target.scheme)
    if factory is None:
        raise TransportError(
            "open_transport",
            f"Unsupported api_endpoint scheme '{target.scheme}' for '{target.uri}'",
        )
    return factory(options, cfg)


__all__ = [
    "METHODS",
    "Transport",
    "TransportOptions",
    "TransportFactory",
    "EndpointTarget",
    "parse_endpoint",
    "open_transport",
    "register_transport",
]
