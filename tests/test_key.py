"""Tests for keys: construction, validation, hierarchy and value semantics."""

from __future__ import annotations

import pytest

from kindstore import InvalidKeyPathError, Int, Key
from kindstore.key import is_key, require_complete


class TestConstruction:
    def test_complete_key(self):
        key = Key("Company", "acme", "Employee", 5)
        assert key.kind == "Employee"
        assert key.id == 5
        assert key.name is None
        assert key.id_or_name == 5
        assert key.is_complete
        assert key.namespace == ""
        assert key.path() == ["Company", "acme", "Employee", 5]

    def test_named_key(self):
        key = Key("Company", "acme")
        assert key.name == "acme"
        assert key.id is None

    def test_odd_length_path_is_incomplete(self):
        key = Key("Task")
        assert not key.is_complete
        assert key.id_or_name is None
        assert key.path() == ["Task"]
        assert key.pairs() == (("Task", None),)

    def test_list_path(self):
        assert Key(["Company", "acme"]) == Key("Company", "acme")

    def test_parent_argument(self):
        parent = Key("Company", "acme", namespace="ns")
        child = Key("Employee", 5, parent=parent)
        assert child == Key("Company", "acme", "Employee", 5, namespace="ns")
        assert child.namespace == "ns"

    def test_from_pairs(self):
        key = Key.from_pairs([("Company", "acme"), ("Employee", None)], namespace="x")
        assert key == Key("Company", "acme", "Employee", namespace="x")
        assert not key.is_complete

    def test_int_wrapper_identifier(self):
        assert Key("Task", Int("42")).id == 42

    def test_project_is_carried(self):
        assert Key("A", 1, project="p").project == "p"


class TestValidation:
    @pytest.mark.parametrize(
        "path",
        [
            (),
            ("A", None, "B", 1),
            ("A", 0),
            ("A", -1),
            ("A", 2**63),
            ("A", True),
            ("A", ""),
            ("", 1),
            (5, 1),
            ("A", 1.5),
        ],
    )
    def test_invalid_paths(self, path):
        with pytest.raises(InvalidKeyPathError):
            Key(*path)

    def test_max_int64_identifier_is_valid(self):
        assert Key("A", 2**63 - 1).id == 2**63 - 1

    def test_incomplete_parent_rejected(self):
        with pytest.raises(InvalidKeyPathError):
            Key("Employee", 1, parent=Key("Company"))

    def test_parent_namespace_mismatch(self):
        with pytest.raises(InvalidKeyPathError, match="namespace"):
            Key("Employee", 1, parent=Key("Company", "acme", namespace="a"), namespace="b")

    def test_non_string_namespace(self):
        with pytest.raises(InvalidKeyPathError):
            Key("A", 1, namespace=5)

    def test_require_complete(self):
        assert require_complete(Key("A", 1), "get") == Key("A", 1)
        with pytest.raises(InvalidKeyPathError, match="complete"):
            require_complete(Key("A"), "get")
        with pytest.raises(InvalidKeyPathError, match="Key objects"):
            require_complete(["A", 1], "get")


class TestHierarchy:
    def test_parent_and_root(self):
        key = Key("A", 1, "B", 2, "C", "x")
        assert key.parent() == Key("A", 1, "B", 2)
        assert key.root() == Key("A", 1)
        assert Key("A", 1).parent() is None

    def test_is_ancestor_of(self):
        ancestor = Key("Company", "acme")
        assert ancestor.is_ancestor_of(Key("Company", "acme", "Employee", 5))
        assert ancestor.is_ancestor_of(ancestor)
        assert not Key("Company", "acme", "Employee", 5).is_ancestor_of(ancestor)
        assert not ancestor.is_ancestor_of(Key("Company", "other", "Employee", 5))

    def test_ancestry_is_namespace_scoped(self):
        assert not Key("A", 1, namespace="x").is_ancestor_of(Key("A", 1, "B", 2))

    def test_complete_with(self):
        assert Key("Task").complete_with(7) == Key("Task", 7)
        assert Key("P", 1, "Task").complete_with("n") == Key("P", 1, "Task", "n")
        with pytest.raises(InvalidKeyPathError):
            Key("Task", 1).complete_with(2)


class TestValueSemantics:
    def test_equality_ignores_project(self):
        a = Key("A", 1, project="p1")
        b = Key("A", 1, project="p2")
        assert a == b
        assert hash(a) == hash(b)

    def test_namespace_distinguishes_keys(self):
        assert Key("A", 1, namespace="ns") != Key("A", 1)

    def test_id_and_name_distinct(self):
        assert Key("A", 1) != Key("A", "1")

    def test_usable_as_dict_key(self):
        index = {Key("A", 1): "one"}
        assert index[Key("A", 1)] == "one"

    def test_ordering_ids_before_names(self):
        keys = [Key("A", "b"), Key("A", 2), Key("A", "a"), Key("A", 1)]
        assert sorted(keys) == [Key("A", 1), Key("A", 2), Key("A", "a"), Key("A", "b")]

    def test_ordering_parent_first(self):
        assert Key("A", 1) < Key("A", 1, "B", 1)

    def test_repr(self):
        assert repr(Key("A", 1, namespace="ns")) == "Key('A', 1, namespace='ns')"
        assert repr(Key("Task")) == "Key('Task')"

    def test_is_key(self):
        assert is_key(Key("A", 1))
        assert not is_key(["A", 1])
