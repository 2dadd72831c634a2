"""JSON forms of keys and property values used on the command line and in exports.

Plain JSON maps to itself. Values JSON cannot carry directly use a one-field
object tagged with ``$``:

    {"$key": ["Company", "acme"]}            a key (or {"path": [...], "namespace": ...})
    {"$int": "9007199254740993"}             an exact 64-bit integer
    {"$double": 1.0}                         a double, also "NaN" / "Infinity"
    {"$timestamp": "2024-01-01T00:00:00Z"}   a timestamp
    {"$blob": "aGVsbG8="}                    base64 bytes
    {"$geo": {"latitude": 1, "longitude": 2}}
    {"$entity": {"key": ..., "data": {...}, "exclude_from_indexes": [...]}}
"""

from __future__ import annotations

import base64
import binascii
import json
import math
from datetime import datetime, timezone
from typing import Any

from kindstore.entity import Entity
from kindstore.errors import InvalidEntityValueError, InvalidKeyPathError, ValidationError
from kindstore.key import Key
from kindstore.values import Double, GeoPoint, Int

_TAGS = ("$key", "$int", "$double", "$timestamp", "$blob", "$geo", "$entity")


def load_json(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON for {what}: {e.msg} in {text!r}") from e


# --- keys ---


def key_to_json(key: Key) -> dict[str, Any]:
    data: dict[str, Any] = {"path": key.path()}
    if key.namespace:
        data["namespace"] = key.namespace
    return data


def key_from_json(obj: Any, namespace: str | None = None) -> Key:
    """A key from ``[kind, id, ...]`` or ``{"path": [...], "namespace": ...}``."""
    if isinstance(obj, list):
        return Key(*obj, namespace=namespace)
    if isinstance(obj, dict) and isinstance(obj.get("path"), list):
        return Key(*obj["path"], namespace=obj.get("namespace", namespace))
    raise InvalidKeyPathError(
        f"Key must be a JSON array path or an object with 'path', got {obj!r}", path=obj
    )


def parse_key(text: str, namespace: str | None = None) -> Key:
    return key_from_json(load_json(text, "key"), namespace)


# --- values ---


def _double_to_json(number: float) -> Any:
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    return number


def value_to_json(value: Any) -> Any:
    """Convert a decoded property value to its JSON form."""
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return {"$double": _double_to_json(value)}
        return value
    if isinstance(value, Int):
        return {"$int": value.value}
    if isinstance(value, Double):
        return {"$double": _double_to_json(value.value)}
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return {"$timestamp": value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")}
    if isinstance(value, bytes):
        return {"$blob": base64.b64encode(value).decode("ascii")}
    if isinstance(value, GeoPoint):
        return {"$geo": value.to_coordinates()}
    if isinstance(value, Key):
        return {"$key": key_to_json(value)}
    if isinstance(value, Entity):
        embedded: dict[str, Any] = {"data": properties_to_json(value)}
        if value.key is not None:
            embedded["key"] = key_to_json(value.key)
        if value.exclude_from_indexes:
            embedded["exclude_from_indexes"] = sorted(value.exclude_from_indexes)
        return {"$entity": embedded}
    if isinstance(value, dict):
        return properties_to_json(value)
    if isinstance(value, list):
        return [value_to_json(v) for v in value]
    raise InvalidEntityValueError(f"Cannot render {type(value).__name__} as JSON")


def properties_to_json(data: Any) -> dict[str, Any]:
    return {name: value_to_json(v) for name, v in data.items()}


def properties_from_json(data: dict[str, Any], namespace: str | None = None) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise InvalidEntityValueError(f"Entity data must be an object, got {data!r}")
    return {name: value_from_json(v, namespace) for name, v in data.items()}


def value_from_json(obj: Any, namespace: str | None = None) -> Any:
    """Convert a JSON form back to a property value."""
    if isinstance(obj, list):
        return [value_from_json(v, namespace) for v in obj]
    if not isinstance(obj, dict):
        return obj
    if len(obj) == 1:
        tag, raw = next(iter(obj.items()))
        if tag in _TAGS:
            return _tagged(tag, raw, namespace)
    return {name: value_from_json(v, namespace) for name, v in obj.items()}


def _tagged(tag: str, raw: Any, namespace: str | None) -> Any:
    if tag == "$key":
        return key_from_json(raw, namespace)
    if tag == "$int":
        return Int(raw)
    if tag == "$double":
        return Double(raw)
    if tag == "$timestamp":
        try:
            parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidEntityValueError(f"Invalid timestamp {raw!r}") from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    if tag == "$blob":
        try:
            return base64.b64decode(str(raw), validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidEntityValueError(f"Invalid base64 blob {raw!r}") from e
    if tag == "$geo":
        if not isinstance(raw, dict) or "latitude" not in raw or "longitude" not in raw:
            raise InvalidEntityValueError(f"$geo needs latitude and longitude, got {raw!r}")
        return GeoPoint.from_coordinates(raw)
    # $entity
    if not isinstance(raw, dict):
        raise InvalidEntityValueError(f"$entity must be an object, got {raw!r}")
    key = key_from_json(raw["key"], namespace) if raw.get("key") is not None else None
    data = properties_from_json(raw.get("data") or {}, namespace)
    return Entity(key, data, exclude_from_indexes=raw.get("exclude_from_indexes") or ())


def entity_to_json(entity: Entity) -> dict[str, Any]:
    """An entity as an export row: key, data and unindexed property names."""
    assert entity.key is not None
    row: dict[str, Any] = {"key": key_to_json(entity.key), "data": properties_to_json(entity)}
    if entity.exclude_from_indexes:
        row["exclude_from_indexes"] = sorted(entity.exclude_from_indexes)
    return row


def entity_from_json(row: Any, namespace: str | None = None) -> Entity:
    if not isinstance(row, dict) or "key" not in row:
        raise InvalidEntityValueError(f"Entity row must be an object with 'key', got {row!r}")
    return Entity(
        key_from_json(row["key"], namespace),
        properties_from_json(row.get("data") or {}, namespace),
        exclude_from_indexes=row.get("exclude_from_indexes") or (),
    )
