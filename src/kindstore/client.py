"""The kindstore client."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from kindstore._adapters import store_operation
from kindstore.config import KindstoreConfig
from kindstore.key import Key, is_key
from kindstore.query import MoreResults, Query
from kindstore.request import ReadOperations, RequestCore, ResultStream
from kindstore.transaction import Transaction
from kindstore.transport import Transport, TransportOptions, open_transport
from kindstore.values import Double, GeoPoint, Int, is_double, is_geo_point, is_int

logger = logging.getLogger(__name__)


class Client:
    """Entry point for reads, writes, queries and transactions.

    Store operations validate their arguments immediately and return an
    awaitable; pass ``callback=fn`` instead to have ``fn(err, result)`` called
    once the operation completes. Connection options are handed untouched to
    the transport factory selected by ``api_endpoint``.
    """

    MORE_RESULTS_AFTER_CURSOR = MoreResults.MORE_RESULTS_AFTER_CURSOR
    MORE_RESULTS_AFTER_LIMIT = MoreResults.MORE_RESULTS_AFTER_LIMIT
    NO_MORE_RESULTS = MoreResults.NO_MORE_RESULTS

    def __init__(
        self,
        namespace: str | None = None,
        project_id: str | None = None,
        api_endpoint: str | None = None,
        credentials: dict[str, Any] | None = None,
        key_filename: str | None = None,
        *,
        transport: Transport | None = None,
        config: KindstoreConfig | None = None,
    ) -> None:
        cfg = config or KindstoreConfig()
        self.config = cfg
        self.namespace = namespace if namespace is not None else cfg.namespace
        self.project_id = project_id or cfg.project_id
        self.options = TransportOptions(
            project_id=self.project_id,
            api_endpoint=api_endpoint or cfg.api_endpoint,
            credentials=credentials if credentials is not None else cfg.credentials,
            key_filename=key_filename or cfg.key_filename,
        )
        self.transport = transport if transport is not None else open_transport(self.options, cfg)
        self._core = RequestCore(
            self.transport,
            project_id=self.project_id,
            namespace=self.namespace,
            wrap_numbers=cfg.wrap_numbers,
            max_api_calls=cfg.max_api_calls,
        )
        self._reads = ReadOperations(self._core, self)
        logger.debug(
            "Client ready (project=%s, namespace=%s, endpoint=%s)",
            self.project_id,
            self.namespace,
            self.options.api_endpoint,
        )

    # --- Value helpers ---

    def key(
        self,
        *path: Any,
        namespace: str | None = None,
        parent: Key | None = None,
    ) -> Key:
        """Build a key in the client's namespace.

        Accepts a flat path (``key("Company", "acme")``), a list, or a mapping
        ``{"path": [...], "namespace": ...}``.
        """
        if len(path) == 1 and isinstance(path[0], Mapping):
            options = path[0]
            path = tuple(options.get("path") or ())
            namespace = options.get("namespace", namespace)
        if namespace is None and parent is None:
            namespace = self.namespace
        return Key(*path, parent=parent, namespace=namespace, project=self.project_id)

    is_key = staticmethod(is_key)
    is_int = staticmethod(is_int)
    is_double = staticmethod(is_double)
    is_geo_point = staticmethod(is_geo_point)

    @staticmethod
    def int(value: int | str | Int) -> Int:
        return Int(value)

    @staticmethod
    def double(value: float | int | str | Double) -> Double:
        return Double(value)

    @staticmethod
    def geo_point(coordinates: Mapping[str, float] | GeoPoint) -> GeoPoint:
        if isinstance(coordinates, GeoPoint):
            return coordinates
        return GeoPoint.from_coordinates(dict(coordinates))

    # --- Reads ---

    def create_query(self, kind: str | None = None, *, namespace: str | None = None) -> Query:
        """A query bound to this client; ``namespace`` defaults to the client's."""
        return self._reads.create_query(kind, namespace=namespace)

    def get(self, keys: Any, **options: Any) -> Any:
        """Look up one key (entity or None) or a list of keys (found entities, input order).

        Options: ``consistency`` ("strong" or "eventual"), ``wrap_numbers`` and
        ``callback``.
        """
        return self._reads.get(keys, **options)

    def create_read_stream(self, keys: Any, **options: Any) -> ResultStream:
        """Stream found entities as lookup responses arrive."""
        return self._reads.create_read_stream(keys, **options)

    def run_query(self, query: Query, **options: Any) -> Any:
        """Run a query to completion; resolves to a QueryResult.

        Options: ``consistency``, ``max_api_calls``, ``wrap_numbers`` and
        ``callback``.
        """
        return self._reads.run_query(query, **options)

    def run_query_stream(self, query: Query, **options: Any) -> ResultStream:
        return self._reads.run_query_stream(query, **options)

    def allocate_ids(self, incomplete_key: Key, n: int, **options: Any) -> Any:
        """Reserve ``n`` ids for an incomplete key; resolves to completed keys."""
        return self._reads.allocate_ids(incomplete_key, n, **options)

    # --- Writes ---

    @store_operation
    def save(self, entities: Any) -> Any:
        """Write entities, each with its own method (upsert unless it says otherwise)."""
        return self._core.commit(self._core.prepare_writes(entities, None))

    @store_operation
    def insert(self, entities: Any) -> Any:
        return self._core.commit(self._core.prepare_writes(entities, "insert"))

    @store_operation
    def update(self, entities: Any) -> Any:
        return self._core.commit(self._core.prepare_writes(entities, "update"))

    @store_operation
    def upsert(self, entities: Any) -> Any:
        return self._core.commit(self._core.prepare_writes(entities, "upsert"))

    @store_operation
    def delete(self, keys: Any) -> Any:
        return self._core.commit(self._core.prepare_deletes(keys))

    # --- Transactions ---

    def transaction(self, *, read_only: bool = False) -> Transaction:
        """A new, not yet started transaction sharing this client's transport."""
        return Transaction(self._core, read_only=read_only)

    async def close(self) -> None:
        await self.transport.close()

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"Client(project_id={self.project_id!r}, namespace={self.namespace!r}, "
            f"api_endpoint={self.options.api_endpoint!r})"
        )
