"""kindstore: async client for a hierarchical-key document store."""

__version__ = "0.1.0"

from kindstore.client import Client
from kindstore.config import KindstoreConfig
from kindstore.entity import Entity
from kindstore.errors import (
    InvalidEntityValueError,
    InvalidKeyPathError,
    InvalidQueryError,
    InvalidTransactionStateError,
    KindstoreError,
    MutationConflictError,
    TransactionAbortedError,
    TransportError,
    ValidationError,
)
from kindstore.key import Key
from kindstore.query import MoreResults, Query, QueryInfo, QueryResult
from kindstore.request import CommitResponse, MutationResult, ResultStream
from kindstore.transaction import Transaction, TransactionState
from kindstore.transport import Transport, TransportOptions, open_transport, register_transport
from kindstore.values import Double, GeoPoint, Int

__all__ = [
    "__version__",
    "Client",
    "KindstoreConfig",
    "Key",
    "Entity",
    "Int",
    "Double",
    "GeoPoint",
    "Query",
    "QueryInfo",
    "QueryResult",
    "MoreResults",
    "CommitResponse",
    "MutationResult",
    "ResultStream",
    "Transaction",
    "TransactionState",
    "Transport",
    "TransportOptions",
    "open_transport",
    "register_transport",
    "KindstoreError",
    "ValidationError",
    "InvalidKeyPathError",
    "InvalidEntityValueError",
    "InvalidQueryError",
    "InvalidTransactionStateError",
    "MutationConflictError",
    "TransportError",
    "TransactionAbortedError",
]
