"""Structured error types for kindstore."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from kindstore.key import Key


class KindstoreError(Exception):
    """Base error for all kindstore errors."""


class ValidationError(KindstoreError):
    """Raised for malformed input detected locally, before any RPC is sent."""


class InvalidKeyPathError(ValidationError):
    """Raised when a key path is malformed or a key is unusable for an operation."""

    def __init__(self, message: str, path: Any = None) -> None:
        self.path = path
        super().__init__(message)


class InvalidEntityValueError(ValidationError):
    """Raised when a property value or save payload has an unsupported shape."""

    def __init__(self, message: str, name: str | None = None) -> None:
        self.name = name
        if name:
            message = f"Property '{name}': {message}"
        super().__init__(message)


class InvalidQueryError(ValidationError):
    """Raised when a query is built with an unsupported operator or argument."""


class InvalidTransactionStateError(KindstoreError):
    """Raised when a transaction operation is attempted from the wrong state."""

    def __init__(self, operation: str, state: str, allowed: str = "ACTIVE") -> None:
        self.operation = operation
        self.state = state
        super().__init__(
            f"Cannot {operation} a transaction in state {state}; it must be {allowed}"
        )


class MutationConflictError(KindstoreError):
    """Raised (or attached to a mutation result) when an existence precondition fails.

    Inserts conflict when the key already exists; updates conflict when it does
    not. Within a non-transactional batch the conflict is reported per mutation
    and siblings keep their results.
    """

    def __init__(
        self,
        key: Key | None,
        mutation: str,
        reason: str,
        *,
        response: Any = None,
    ) -> None:
        self.key = key
        self.mutation = mutation
        self.reason = reason
        self.response = response
        super().__init__(f"{mutation} of {key!r} failed: {reason}")


class TransportError(KindstoreError):
    """Raised when the transport collaborator fails or the store rejects a call."""

    def __init__(self, operation: str, detail: str, *, code: str | None = None) -> None:
        self.operation = operation
        self.detail = detail
        self.code = code
        prefix = f"[{code}] " if code else ""
        super().__init__(f"{prefix}Transport error during {operation}: {detail}")


class TransactionAbortedError(TransportError):
    """Raised when the store aborts a commit because of concurrent modification."""

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(operation, detail, code="ABORTED")
