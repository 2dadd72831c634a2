"""Entity wrapper and normalization of save payloads."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel

from kindstore.errors import InvalidEntityValueError, InvalidKeyPathError
from kindstore.key import Key

M = TypeVar("M", bound=BaseModel)

WRITE_METHODS = ("insert", "update", "upsert")


class Entity(MutableMapping[str, Any]):
    """A key plus a mapping of property values.

    The key lives beside the properties rather than among them, so a property
    literally named ``key`` is an ordinary property.
    """

    def __init__(
        self,
        key: Key | None = None,
        data: Mapping[str, Any] | None = None,
        *,
        exclude_from_indexes: Iterable[str] = (),
    ) -> None:
        if key is not None and not isinstance(key, Key):
            raise InvalidKeyPathError(f"Entity key must be a Key, got {type(key).__name__}")
        self.key = key
        self._data: dict[str, Any] = dict(data or {})
        self.exclude_from_indexes: set[str] = set(exclude_from_indexes)

    @classmethod
    def from_model(
        cls,
        key: Key | None,
        model: BaseModel,
        *,
        exclude_from_indexes: Iterable[str] = (),
    ) -> Entity:
        return cls(key, model.model_dump(), exclude_from_indexes=exclude_from_indexes)

    def to_model(self, model_cls: type[M]) -> M:
        return model_cls.model_validate(self._data)

    def __getitem__(self, name: str) -> Any:
        return self._data[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self._data[name] = value

    def __delitem__(self, name: str) -> None:
        del self._data[name]
        self.exclude_from_indexes.discard(name)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Entity):
            return (
                self.key == other.key
                and self._data == other._data
                and self.exclude_from_indexes == other.exclude_from_indexes
            )
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Entity(key={self.key!r}, data={self._data!r})"


@dataclass
class EntityWrite:
    """A save payload normalized to one shape, ready for encoding."""

    key: Key
    properties: dict[str, Any]
    exclude_from_indexes: frozenset[str]
    method: str | None = None
    source: Entity | None = None


def _check_method(method: Any) -> str | None:
    if method is None:
        return None
    if method not in WRITE_METHODS:
        raise InvalidEntityValueError(
            f"Unsupported save method {method!r}; expected one of {', '.join(WRITE_METHODS)}"
        )
    return method


def _long_form(data: list[Any]) -> tuple[dict[str, Any], set[str]]:
    properties: dict[str, Any] = {}
    excluded: set[str] = set()
    for item in data:
        if not isinstance(item, Mapping) or "name" not in item or "value" not in item:
            raise InvalidEntityValueError(
                "Long-form entity data must be a list of {'name', 'value'} mappings"
            )
        name = item["name"]
        if not isinstance(name, str) or not name:
            raise InvalidEntityValueError(f"Property name must be a non-empty string, got {name!r}")
        properties[name] = item["value"]
        if item.get("exclude_from_indexes"):
            excluded.add(name)
    return properties, excluded


def normalize_write(item: Any) -> EntityWrite:
    """Normalize an Entity, short-form or long-form mapping into an EntityWrite."""
    if isinstance(item, Entity):
        if item.key is None:
            raise InvalidKeyPathError("Cannot save an Entity without a key")
        return EntityWrite(
            key=item.key,
            properties=dict(item),
            exclude_from_indexes=frozenset(item.exclude_from_indexes),
            source=item,
        )

    if not isinstance(item, Mapping) or "key" not in item:
        raise InvalidEntityValueError(
            f"Save expects an Entity or a mapping with 'key' and 'data', got {type(item).__name__}"
        )
    key = item["key"]
    if not isinstance(key, Key):
        raise InvalidKeyPathError(f"Save payload key must be a Key, got {type(key).__name__}")
    unknown = set(item) - {"key", "data", "exclude_from_indexes", "method"}
    if unknown:
        raise InvalidEntityValueError(f"Unknown save payload fields: {sorted(unknown)}")

    data = item.get("data", {})
    excluded = set(item.get("exclude_from_indexes") or ())
    if isinstance(data, BaseModel):
        properties = data.model_dump()
    elif isinstance(data, Mapping):
        properties = dict(data)
    elif isinstance(data, list):
        properties, long_excluded = _long_form(data)
        excluded |= long_excluded
    else:
        raise InvalidEntityValueError(
            f"Entity data must be a mapping or a list of properties, got {type(data).__name__}"
        )
    for name in excluded:
        if not isinstance(name, str):
            raise InvalidEntityValueError(f"exclude_from_indexes entries must be names, got {name!r}")

    return EntityWrite(
        key=key,
        properties=properties,
        exclude_from_indexes=frozenset(excluded),
        method=_check_method(item.get("method")),
    )
