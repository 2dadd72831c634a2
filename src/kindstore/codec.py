"""Encode and decode keys, values and entities in the store's JSON form.

Every property value is one of a closed set of tagged variants::

    nullValue | booleanValue | integerValue | doubleValue | timestampValue
    | stringValue | blobValue | geoPointValue | keyValue | entityValue
    | arrayValue

Integers travel as decimal strings so 64-bit values survive JSON. Timestamps
are RFC 3339 strings in UTC. Blobs are base64.
"""

from __future__ import annotations

import base64
import binascii
import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from kindstore.entity import Entity
from kindstore.errors import InvalidEntityValueError, InvalidKeyPathError
from kindstore.key import Key
from kindstore.values import INT64_MAX, INT64_MIN, Double, GeoPoint, Int

VALUE_TAGS = (
    "nullValue",
    "booleanValue",
    "integerValue",
    "doubleValue",
    "timestampValue",
    "stringValue",
    "blobValue",
    "geoPointValue",
    "keyValue",
    "entityValue",
    "arrayValue",
)


# --- keys ---


def key_to_wire(key: Key, *, project_id: str | None = None) -> dict[str, Any]:
    partition: dict[str, str] = {}
    project = key.project or project_id
    if project:
        partition["projectId"] = project
    if key.namespace:
        partition["namespaceId"] = key.namespace
    path: list[dict[str, str]] = []
    for kind, ident in key.pairs():
        element = {"kind": kind}
        if isinstance(ident, int):
            element["id"] = str(ident)
        elif ident is not None:
            element["name"] = ident
        path.append(element)
    return {"partitionId": partition, "path": path}


def key_from_wire(wire: Mapping[str, Any]) -> Key:
    path = wire.get("path")
    if not path:
        raise InvalidKeyPathError("Wire key has an empty path", path=path)
    partition = wire.get("partitionId") or {}
    pairs: list[tuple[str, Any]] = []
    for element in path:
        ident: str | int | None = None
        if "id" in element:
            try:
                ident = int(element["id"])
            except (TypeError, ValueError) as e:
                raise InvalidKeyPathError(f"Wire key id is not an integer: {element['id']!r}") from e
        elif "name" in element:
            ident = element["name"]
        pairs.append((element.get("kind"), ident))
    return Key.from_pairs(
        pairs,
        namespace=partition.get("namespaceId") or None,
        project=partition.get("projectId") or None,
    )


# --- values ---


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_timestamp(text: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidEntityValueError(f"Invalid timestamp {text!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _encode_double(number: float) -> float | str:
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    return number


def _check_int64(number: int, name: str | None) -> int:
    if number < INT64_MIN or number > INT64_MAX:
        raise InvalidEntityValueError(f"Integer {number} is outside the 64-bit range", name=name)
    return number


def encode_value(
    value: Any,
    *,
    exclude: bool = False,
    name: str | None = None,
    project_id: str | None = None,
    _nested: bool = False,
) -> dict[str, Any]:
    """Encode a Python value into its tagged wire form."""
    if isinstance(value, (list, tuple)):
        if _nested:
            raise InvalidEntityValueError("Arrays cannot contain arrays", name=name)
        values = [
            encode_value(v, exclude=exclude, name=name, project_id=project_id, _nested=True)
            for v in value
        ]
        wire: dict[str, Any] = {"arrayValue": {"values": values}}
        # An empty array has no element to carry the flag.
        if exclude and not values:
            wire["excludeFromIndexes"] = True
        return wire

    if value is None:
        wire = {"nullValue": None}
    elif isinstance(value, bool):
        wire = {"booleanValue": value}
    elif isinstance(value, Int):
        wire = {"integerValue": value.value}
    elif isinstance(value, int):
        wire = {"integerValue": str(_check_int64(value, name))}
    elif isinstance(value, Double):
        wire = {"doubleValue": _encode_double(value.value)}
    elif isinstance(value, float):
        wire = {"doubleValue": _encode_double(value)}
    elif isinstance(value, datetime):
        wire = {"timestampValue": _format_timestamp(value)}
    elif isinstance(value, str):
        wire = {"stringValue": value}
    elif isinstance(value, (bytes, bytearray, memoryview)):
        wire = {"blobValue": base64.b64encode(bytes(value)).decode("ascii")}
    elif isinstance(value, GeoPoint):
        wire = {"geoPointValue": value.to_coordinates()}
    elif isinstance(value, Key):
        wire = {"keyValue": key_to_wire(value, project_id=project_id)}
    elif isinstance(value, Entity):
        embedded = encode_properties(
            value, value.exclude_from_indexes, project_id=project_id
        )
        if value.key is not None:
            embedded = {"key": key_to_wire(value.key, project_id=project_id), **embedded}
        wire = {"entityValue": embedded}
    elif isinstance(value, Mapping):
        wire = {"entityValue": encode_properties(value, (), project_id=project_id)}
    else:
        raise InvalidEntityValueError(
            f"Unsupported value type {type(value).__name__}", name=name
        )
    if exclude:
        wire["excludeFromIndexes"] = True
    return wire


def encode_properties(
    properties: Mapping[str, Any],
    exclude_from_indexes: Any = (),
    *,
    project_id: str | None = None,
) -> dict[str, Any]:
    excluded = set(exclude_from_indexes)
    encoded: dict[str, Any] = {}
    for name, value in properties.items():
        if not isinstance(name, str) or not name:
            raise InvalidEntityValueError(f"Property names must be non-empty strings, got {name!r}")
        encoded[name] = encode_value(
            value, exclude=name in excluded, name=name, project_id=project_id
        )
    return {"properties": encoded}


def encode_entity(
    key: Key,
    properties: Mapping[str, Any],
    exclude_from_indexes: Any = (),
    *,
    project_id: str | None = None,
) -> dict[str, Any]:
    return {
        "key": key_to_wire(key, project_id=project_id),
        **encode_properties(properties, exclude_from_indexes, project_id=project_id),
    }


def is_excluded(wire: Mapping[str, Any]) -> bool:
    """Whether an encoded value is excluded from indexes."""
    if wire.get("excludeFromIndexes"):
        return True
    if "arrayValue" in wire:
        values = (wire["arrayValue"] or {}).get("values") or []
        return any(v.get("excludeFromIndexes") for v in values)
    return False


def _value_tag(wire: Mapping[str, Any]) -> str:
    tags = [tag for tag in VALUE_TAGS if tag in wire]
    if len(tags) != 1:
        raise InvalidEntityValueError(f"Value must carry exactly one type tag, got {sorted(wire)}")
    return tags[0]


def decode_value(wire: Mapping[str, Any], *, wrap_numbers: bool = False) -> Any:
    """Decode a tagged wire value into a Python value."""
    if not isinstance(wire, Mapping):
        raise InvalidEntityValueError(f"Wire value must be a mapping, got {type(wire).__name__}")
    tag = _value_tag(wire)
    raw = wire[tag]
    if tag == "nullValue":
        return None
    if tag == "booleanValue":
        return bool(raw)
    if tag == "integerValue":
        number = Int(raw)
        return number if wrap_numbers else int(number)
    if tag == "doubleValue":
        number = float(raw)
        return Double(number) if wrap_numbers else number
    if tag == "timestampValue":
        return _parse_timestamp(raw)
    if tag == "stringValue":
        return raw
    if tag == "blobValue":
        try:
            return base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidEntityValueError(f"Invalid base64 blob {raw!r}") from e
    if tag == "geoPointValue":
        return GeoPoint.from_coordinates(raw)
    if tag == "keyValue":
        return key_from_wire(raw)
    if tag == "entityValue":
        return _decode_embedded(raw or {}, wrap_numbers=wrap_numbers)
    if tag == "arrayValue":
        return [decode_value(v, wrap_numbers=wrap_numbers) for v in (raw or {}).get("values") or []]
    raise InvalidEntityValueError(f"Unhandled value tag {tag}")


def decode_properties(
    properties: Mapping[str, Any], *, wrap_numbers: bool = False
) -> tuple[dict[str, Any], set[str]]:
    data: dict[str, Any] = {}
    excluded: set[str] = set()
    for name, wire in properties.items():
        data[name] = decode_value(wire, wrap_numbers=wrap_numbers)
        if is_excluded(wire):
            excluded.add(name)
    return data, excluded


def _decode_embedded(raw: Mapping[str, Any], *, wrap_numbers: bool) -> Any:
    data, excluded = decode_properties(raw.get("properties") or {}, wrap_numbers=wrap_numbers)
    if "key" in raw or excluded:
        key = key_from_wire(raw["key"]) if raw.get("key") else None
        return Entity(key, data, exclude_from_indexes=excluded)
    return data


def decode_entity(wire: Mapping[str, Any], *, wrap_numbers: bool = False) -> Entity:
    """Decode a top-level entity; its key is required."""
    if not wire.get("key"):
        raise InvalidEntityValueError("Wire entity has no key")
    data, excluded = decode_properties(wire.get("properties") or {}, wrap_numbers=wrap_numbers)
    return Entity(key_from_wire(wire["key"]), data, exclude_from_indexes=excluded)
