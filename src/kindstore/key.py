"""Hierarchical keys: namespace-scoped paths of (kind, identifier) pairs."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any, Union

from kindstore.errors import InvalidKeyPathError
from kindstore.values import INT64_MAX, Int

PathElement = Union[str, int, Int, None]
Pair = tuple[str, Union[str, int, None]]


def _normalize_identifier(kind: str, ident: Any, *, last: bool) -> str | int | None:
    if ident is None:
        if not last:
            raise InvalidKeyPathError(
                f"Only the final path element may omit its identifier (kind '{kind}')"
            )
        return None
    if isinstance(ident, Int):
        ident = int(ident)
    if isinstance(ident, bool):
        raise InvalidKeyPathError(f"Identifier for kind '{kind}' cannot be a boolean")
    if isinstance(ident, int):
        if ident <= 0 or ident > INT64_MAX:
            raise InvalidKeyPathError(
                f"Integer identifier for kind '{kind}' must be in [1, 2**63 - 1], got {ident}"
            )
        return ident
    if isinstance(ident, str):
        if not ident:
            raise InvalidKeyPathError(f"Name for kind '{kind}' must not be empty")
        return ident
    raise InvalidKeyPathError(
        f"Identifier for kind '{kind}' must be str, int or absent, got {type(ident).__name__}"
    )


def _normalize_kind(kind: Any) -> str:
    if not isinstance(kind, str) or not kind:
        raise InvalidKeyPathError(f"Kind must be a non-empty string, got {kind!r}")
    return kind


def _pairs_from_flat(path: Sequence[Any]) -> tuple[Pair, ...]:
    items = list(path)
    if not items:
        raise InvalidKeyPathError("Key path must not be empty", path=path)
    if len(items) % 2 == 1:
        # A trailing kind without identifier: incomplete key.
        items.append(None)
    pairs: list[Pair] = []
    last_index = len(items) - 2
    for i in range(0, len(items), 2):
        kind = _normalize_kind(items[i])
        pairs.append((kind, _normalize_identifier(kind, items[i + 1], last=i == last_index)))
    return tuple(pairs)


def _identifier_sort_key(ident: str | int | None) -> tuple[int, Any]:
    # Store ordering: integer ids sort before names.
    if ident is None:
        return (2, "")
    if isinstance(ident, int):
        return (0, ident)
    return (1, ident)


class Key:
    """Immutable key identifying an entity.

    ``Key("Company", "acme", "Employee", 5)`` addresses employee 5 of company
    "acme". A trailing kind with no identifier makes an incomplete key, which
    is only valid for id allocation and insert/upsert.
    """

    __slots__ = ("_pairs", "_namespace", "_project")

    def __init__(
        self,
        *path: Any,
        parent: Key | None = None,
        namespace: str | None = None,
        project: str | None = None,
    ) -> None:
        if len(path) == 1 and isinstance(path[0], (list, tuple)):
            path = tuple(path[0])
        pairs = _pairs_from_flat(path)
        if parent is not None:
            if not isinstance(parent, Key):
                raise InvalidKeyPathError(f"parent must be a Key, got {type(parent).__name__}")
            if not parent.is_complete:
                raise InvalidKeyPathError("parent key must be complete", path=parent.path())
            if namespace is not None and (namespace or "") != parent.namespace:
                raise InvalidKeyPathError(
                    f"namespace '{namespace}' does not match parent namespace '{parent.namespace}'"
                )
            namespace = parent.namespace
            project = project or parent.project
            pairs = parent._pairs + pairs
        if namespace is not None and not isinstance(namespace, str):
            raise InvalidKeyPathError(f"namespace must be a string, got {namespace!r}")
        self._pairs: tuple[Pair, ...] = pairs
        self._namespace: str = namespace or ""
        self._project: str | None = project

    @classmethod
    def from_pairs(
        cls,
        pairs: Iterable[tuple[str, PathElement]],
        *,
        namespace: str | None = None,
        project: str | None = None,
    ) -> Key:
        flat: list[Any] = []
        for pair in pairs:
            if len(pair) != 2:
                raise InvalidKeyPathError(f"Key pairs must be (kind, identifier), got {pair!r}")
            flat.extend(pair)
        return cls(*flat, namespace=namespace, project=project)

    @classmethod
    def _from_normalized(
        cls, pairs: tuple[Pair, ...], namespace: str, project: str | None
    ) -> Key:
        key = cls.__new__(cls)
        key._pairs = pairs
        key._namespace = namespace
        key._project = project
        return key

    # --- accessors ---

    @property
    def kind(self) -> str:
        return self._pairs[-1][0]

    @property
    def id(self) -> int | None:
        ident = self._pairs[-1][1]
        return ident if isinstance(ident, int) else None

    @property
    def name(self) -> str | None:
        ident = self._pairs[-1][1]
        return ident if isinstance(ident, str) else None

    @property
    def id_or_name(self) -> str | int | None:
        return self._pairs[-1][1]

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def project(self) -> str | None:
        return self._project

    @property
    def is_complete(self) -> bool:
        return self._pairs[-1][1] is not None

    def pairs(self) -> tuple[Pair, ...]:
        return self._pairs

    def path(self) -> list[str | int]:
        """Flattened [kind, id, kind, id, ...] path; incomplete keys end with a kind."""
        flat: list[str | int] = []
        for kind, ident in self._pairs:
            flat.append(kind)
            if ident is not None:
                flat.append(ident)
        return flat

    def parent(self) -> Key | None:
        if len(self._pairs) == 1:
            return None
        return Key._from_normalized(self._pairs[:-1], self._namespace, self._project)

    def root(self) -> Key:
        return Key._from_normalized(self._pairs[:1], self._namespace, self._project)

    def is_ancestor_of(self, other: Key) -> bool:
        """True if ``other`` lies under this key; a key is its own ancestor."""
        if self._namespace != other._namespace:
            return False
        n = len(self._pairs)
        return len(other._pairs) >= n and other._pairs[:n] == self._pairs

    def complete_with(self, id_or_name: int | str | Int) -> Key:
        if self.is_complete:
            raise InvalidKeyPathError("Key is already complete", path=self.path())
        kind = self.kind
        ident = _normalize_identifier(kind, id_or_name, last=True)
        pairs = self._pairs[:-1] + ((kind, ident),)
        return Key._from_normalized(pairs, self._namespace, self._project)

    def sort_key(self) -> tuple[Any, ...]:
        return (
            self._namespace,
            tuple((kind, _identifier_sort_key(ident)) for kind, ident in self._pairs),
        )

    # --- value semantics ---

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self._namespace == other._namespace and self._pairs == other._pairs

    def __hash__(self) -> int:
        return hash((self._namespace, self._pairs))

    def __lt__(self, other: Key) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __le__(self, other: Key) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self.sort_key() <= other.sort_key()

    def __gt__(self, other: Key) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self.sort_key() > other.sort_key()

    def __ge__(self, other: Key) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self.sort_key() >= other.sort_key()

    def __repr__(self) -> str:
        args = ", ".join(repr(p) for p in self.path())
        if self._namespace:
            args += f", namespace={self._namespace!r}"
        return f"Key({args})"


def require_complete(key: Any, operation: str) -> Key:
    """Return ``key`` if it is a complete Key, else raise InvalidKeyPathError."""
    if not isinstance(key, Key):
        raise InvalidKeyPathError(f"{operation} requires Key objects, got {type(key).__name__}")
    if not key.is_complete:
        raise InvalidKeyPathError(
            f"{operation} requires a complete key, got incomplete {key!r}", path=key.path()
        )
    return key


def is_key(value: Any) -> bool:
    return isinstance(value, Key)
