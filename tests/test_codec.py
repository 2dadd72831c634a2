"""Tests for the wire codec: keys, tagged values and entities."""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest

from kindstore import Double, Entity, GeoPoint, Int, InvalidEntityValueError, Key
from kindstore.codec import (
    decode_entity,
    decode_value,
    encode_entity,
    encode_value,
    key_from_wire,
    key_to_wire,
)


class TestKeys:
    def test_key_to_wire(self):
        key = Key("Company", "acme", "Employee", 5, namespace="ns")
        assert key_to_wire(key, project_id="p") == {
            "partitionId": {"projectId": "p", "namespaceId": "ns"},
            "path": [{"kind": "Company", "name": "acme"}, {"kind": "Employee", "id": "5"}],
        }

    def test_incomplete_key_has_bare_kind(self):
        wire = key_to_wire(Key("Task"))
        assert wire == {"partitionId": {}, "path": [{"kind": "Task"}]}

    def test_key_project_wins_over_default(self):
        wire = key_to_wire(Key("A", 1, project="own"), project_id="default")
        assert wire["partitionId"]["projectId"] == "own"

    def test_key_from_wire(self):
        key = key_from_wire(
            {
                "partitionId": {"projectId": "p", "namespaceId": "ns"},
                "path": [{"kind": "A", "id": "9223372036854775807"}, {"kind": "B"}],
            }
        )
        assert key == Key("A", 2**63 - 1, "B", namespace="ns")
        assert key.project == "p"
        assert not key.is_complete


class TestEncodeValue:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, {"nullValue": None}),
            (True, {"booleanValue": True}),
            (5, {"integerValue": "5"}),
            (Int("9007199254740993"), {"integerValue": "9007199254740993"}),
            (1.5, {"doubleValue": 1.5}),
            (Double(2), {"doubleValue": 2.0}),
            (float("nan"), {"doubleValue": "NaN"}),
            (float("-inf"), {"doubleValue": "-Infinity"}),
            ("hi", {"stringValue": "hi"}),
            (b"hi", {"blobValue": "aGk="}),
            (GeoPoint(1, 2), {"geoPointValue": {"latitude": 1.0, "longitude": 2.0}}),
        ],
    )
    def test_scalars(self, value, expected):
        assert encode_value(value) == expected

    def test_bool_is_not_an_integer(self):
        assert encode_value(False) == {"booleanValue": False}

    def test_timestamp_is_utc(self):
        aware = datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)
        assert encode_value(aware) == {"timestampValue": "2024-01-02T03:04:05.123456Z"}
        assert encode_value(datetime(2024, 1, 2)) == {"timestampValue": "2024-01-02T00:00:00.000000Z"}

    def test_key_value(self):
        assert encode_value(Key("A", 1), project_id="p") == {
            "keyValue": {"partitionId": {"projectId": "p"}, "path": [{"kind": "A", "id": "1"}]}
        }

    def test_integer_out_of_range(self):
        with pytest.raises(InvalidEntityValueError, match="64-bit"):
            encode_value(2**63, name="n")

    def test_mapping_becomes_entity_value(self):
        assert encode_value({"a": 1}) == {
            "entityValue": {"properties": {"a": {"integerValue": "1"}}}
        }

    def test_embedded_entity_keeps_key_and_exclusions(self):
        embedded = Entity(Key("A", 1), {"note": "x"}, exclude_from_indexes={"note"})
        wire = encode_value(embedded)
        assert wire["entityValue"]["key"]["path"] == [{"kind": "A", "id": "1"}]
        assert wire["entityValue"]["properties"]["note"]["excludeFromIndexes"] is True

    def test_excluded_array_flags_each_element(self):
        wire = encode_value([1, "a"], exclude=True)
        assert wire == {
            "arrayValue": {
                "values": [
                    {"integerValue": "1", "excludeFromIndexes": True},
                    {"stringValue": "a", "excludeFromIndexes": True},
                ]
            }
        }

    def test_excluded_empty_array_flags_itself(self):
        assert encode_value([], exclude=True) == {
            "arrayValue": {"values": []},
            "excludeFromIndexes": True,
        }

    def test_nested_arrays_rejected(self):
        with pytest.raises(InvalidEntityValueError, match="Arrays cannot contain arrays"):
            encode_value([[1]])

    def test_unsupported_type(self):
        with pytest.raises(InvalidEntityValueError, match="Unsupported value type set"):
            encode_value({1, 2})


class TestDecodeValue:
    def test_integers_are_exact(self):
        assert decode_value({"integerValue": "9007199254740993"}) == 9007199254740993

    def test_wrap_numbers(self):
        assert decode_value({"integerValue": "5"}, wrap_numbers=True) == Int(5)
        assert decode_value({"doubleValue": 2.0}, wrap_numbers=True) == Double(2.0)

    def test_special_doubles(self):
        assert math.isnan(decode_value({"doubleValue": "NaN"}))
        assert decode_value({"doubleValue": "Infinity"}) == float("inf")

    def test_timestamp(self):
        value = decode_value({"timestampValue": "2024-01-02T03:04:05.5Z"})
        assert value == datetime(2024, 1, 2, 3, 4, 5, 500000, tzinfo=timezone.utc)

    def test_blob_and_array(self):
        assert decode_value({"blobValue": "aGk="}) == b"hi"
        wire = {"arrayValue": {"values": [{"integerValue": "1"}, {"nullValue": None}]}}
        assert decode_value(wire) == [1, None]
        assert decode_value({"arrayValue": {}}) == []

    def test_embedded_entity_without_key_is_a_dict(self):
        assert decode_value({"entityValue": {"properties": {"a": {"stringValue": "x"}}}}) == {
            "a": "x"
        }

    def test_embedded_entity_with_key(self):
        value = decode_value(
            {"entityValue": {"key": key_to_wire(Key("A", 1)), "properties": {}}}
        )
        assert isinstance(value, Entity)
        assert value.key == Key("A", 1)

    def test_value_needs_exactly_one_tag(self):
        with pytest.raises(InvalidEntityValueError):
            decode_value({"stringValue": "x", "integerValue": "1"})
        with pytest.raises(InvalidEntityValueError):
            decode_value({})


class TestEntities:
    def test_encode_entity_marks_exclusions(self):
        wire = encode_entity(Key("A", 1), {"a": 1, "b": "long"}, {"b"}, project_id="p")
        assert wire["key"]["partitionId"] == {"projectId": "p"}
        assert "excludeFromIndexes" not in wire["properties"]["a"]
        assert wire["properties"]["b"]["excludeFromIndexes"] is True

    def test_decode_entity_restores_exclusions(self):
        wire = encode_entity(Key("A", 1), {"a": 1, "b": "long"}, {"b"})
        entity = decode_entity(wire)
        assert entity.key == Key("A", 1)
        assert dict(entity) == {"a": 1, "b": "long"}
        assert entity.exclude_from_indexes == {"b"}

    def test_decode_entity_requires_key(self):
        with pytest.raises(InvalidEntityValueError, match="no key"):
            decode_entity({"properties": {}})
