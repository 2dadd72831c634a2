"""Exact-number and geo point value wrappers, with their type predicates."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from kindstore.errors import InvalidEntityValueError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


@dataclass(frozen=True, init=False)
class Int:
    """An exact 64-bit integer, held as its decimal string.

    Use this for integers read from or written to the store when the value
    must never pass through a float.
    """

    value: str

    def __init__(self, value: int | str | Int) -> None:
        if isinstance(value, Int):
            text = value.value
        elif isinstance(value, bool):
            raise InvalidEntityValueError(f"Int() does not accept booleans, got {value!r}")
        elif isinstance(value, int):
            text = str(value)
        elif isinstance(value, str):
            try:
                text = str(int(value.strip()))
            except ValueError as e:
                raise InvalidEntityValueError(
                    f"Int() requires an integer string, got {value!r}"
                ) from e
        else:
            raise InvalidEntityValueError(
                f"Int() requires an int or integer string, got {type(value).__name__}"
            )
        parsed = int(text)
        if parsed < INT64_MIN or parsed > INT64_MAX:
            raise InvalidEntityValueError(f"Integer {text} is outside the 64-bit range")
        object.__setattr__(self, "value", text)

    def __int__(self) -> int:
        return int(self.value)

    def __index__(self) -> int:
        return int(self.value)

    def __repr__(self) -> str:
        return f"Int({self.value})"


@dataclass(frozen=True, init=False)
class Double:
    """A floating point value that should be stored as a double even if integral."""

    value: float

    def __init__(self, value: float | int | str | Double) -> None:
        if isinstance(value, Double):
            number = value.value
        elif isinstance(value, bool):
            raise InvalidEntityValueError(f"Double() does not accept booleans, got {value!r}")
        else:
            try:
                number = float(value)
            except (TypeError, ValueError) as e:
                raise InvalidEntityValueError(f"Double() requires a number, got {value!r}") from e
        object.__setattr__(self, "value", number)

    def __float__(self) -> float:
        return self.value

    def __repr__(self) -> str:
        return f"Double({self.value!r})"


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in degrees."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        for name, bound in (("latitude", 90.0), ("longitude", 180.0)):
            raw = getattr(self, name)
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise InvalidEntityValueError(f"GeoPoint {name} must be a number, got {raw!r}")
            if math.isnan(raw) or not -bound <= raw <= bound:
                raise InvalidEntityValueError(
                    f"GeoPoint {name} must be within [-{bound:g}, {bound:g}], got {raw!r}"
                )
            object.__setattr__(self, name, float(raw))

    @classmethod
    def from_coordinates(cls, coordinates: dict[str, Any]) -> GeoPoint:
        return cls(latitude=coordinates["latitude"], longitude=coordinates["longitude"])

    def to_coordinates(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


def is_int(value: Any) -> bool:
    return isinstance(value, Int)


def is_double(value: Any) -> bool:
    return isinstance(value, Double)


def is_geo_point(value: Any) -> bool:
    return isinstance(value, GeoPoint)
