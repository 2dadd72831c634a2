"""Tests for reads and writes through the client: batching, ordering, conflicts."""

from __future__ import annotations

import pytest

from kindstore import (
    Entity,
    Int,
    InvalidEntityValueError,
    InvalidKeyPathError,
    InvalidQueryError,
    Key,
    MutationConflictError,
    Query,
    TransportError,
    ValidationError,
)
from kindstore.request import CommitResponse, RequestCore
from tests.conftest import FailingTransport, RecordingTransport


async def _seed(client, n: int, kind: str = "Task") -> list[Key]:
    keys = [Key(kind, i) for i in range(1, n + 1)]
    await client.save([{"key": k, "data": {"n": i}} for i, k in enumerate(keys, 1)])
    return keys


class TestLookup:
    async def test_save_then_get(self, client):
        key = Key("Task", "write-tests")
        await client.save({"key": key, "data": {"title": "Write tests", "done": False}})
        entity = await client.get(key)
        assert isinstance(entity, Entity)
        assert entity.key == key
        assert entity == {"title": "Write tests", "done": False}

    async def test_single_missing_key_is_none(self, client):
        assert await client.get(Key("Task", 404)) is None

    async def test_list_in_input_order_without_missing(self, client):
        keys = await _seed(client, 3)
        found = await client.get([keys[2], Key("Task", 99), keys[0], keys[1]])
        assert [e.key for e in found] == [keys[2], keys[0], keys[1]]

    async def test_duplicate_keys_requested_once(self, client, rpc):
        keys = await _seed(client, 1)
        rpc.reset()
        found = await client.get([keys[0], keys[0]])
        assert len(found) == 1
        (method, request), = rpc.calls
        assert method == "lookup"
        assert len(request["keys"]) == 1

    async def test_deferred_keys_are_re_requested(self, make_client):
        client = make_client(emulator_max_lookup=2)
        keys = await _seed(client, 5)
        client.transport.reset()
        found = await client.get(keys)
        assert [e.key for e in found] == keys
        assert client.transport.count("lookup") == 3

    async def test_read_stream(self, make_client):
        client = make_client(emulator_max_lookup=2)
        keys = await _seed(client, 3)
        stream = client.create_read_stream(keys)
        seen = [e.key async for e in stream]
        assert sorted(seen) == keys

    async def test_incomplete_key_rejected_before_rpc(self, client, rpc):
        with pytest.raises(InvalidKeyPathError):
            client.get(Key("Task"))
        with pytest.raises(InvalidKeyPathError):
            client.get(["Task", 1])
        assert rpc.calls == []

    async def test_consistency(self, client, rpc):
        await client.get(Key("Task", 1), consistency="eventual")
        assert rpc.calls[-1][1]["readOptions"] == {"readConsistency": "EVENTUAL"}
        with pytest.raises(ValidationError, match="consistency"):
            client.get(Key("Task", 1), consistency="sometimes")

    async def test_wrap_numbers(self, client):
        key = Key("Counter", 1)
        await client.save({"key": key, "data": {"n": 2**60 + 1, "ratio": 2.0}})
        plain = await client.get(key)
        assert plain["n"] == 2**60 + 1
        wrapped = await client.get(key, wrap_numbers=True)
        assert wrapped["n"] == Int(2**60 + 1)
        assert client.is_double(wrapped["ratio"])


class TestWrites:
    async def test_one_commit_per_call(self, client, rpc):
        await client.save([{"key": Key("Task", i), "data": {}} for i in range(1, 6)])
        assert rpc.count("commit") == 1
        assert len(rpc.calls[0][1]["mutations"]) == 5
        assert rpc.calls[0][1]["mode"] == "NON_TRANSACTIONAL"

    async def test_empty_save_sends_nothing(self, client, rpc):
        response = await client.save([])
        assert response == CommitResponse([], 0)
        assert rpc.calls == []

    async def test_allocated_key_written_back(self, client):
        entity = Entity(Key("Task"), {"title": "new"})
        response = await client.save(entity)
        assert entity.key.is_complete
        assert response.mutation_results[0].key == entity.key
        assert (await client.get(entity.key))["title"] == "new"

    async def test_method_per_item(self, client, rpc):
        await client.save(
            [
                {"key": Key("Task", 1), "data": {}, "method": "insert"},
                {"key": Key("Task", 2), "data": {}},
            ]
        )
        ops = [next(iter(m)) for m in rpc.calls[0][1]["mutations"]]
        assert ops == ["insert", "upsert"]

    async def test_insert_conflict_is_per_mutation(self, client):
        await client.insert({"key": Key("Task", 1), "data": {"v": 1}})
        response = await client.insert(
            [{"key": Key("Task", 1), "data": {"v": 2}}, {"key": Key("Task", 2), "data": {"v": 2}}]
        )
        first, second = response.mutation_results
        assert first.conflict_detected
        assert "ALREADY_EXISTS" in first.error.reason
        assert not second.conflict_detected
        assert (await client.get(Key("Task", 1)))["v"] == 1
        assert (await client.get(Key("Task", 2)))["v"] == 2
        with pytest.raises(MutationConflictError):
            response.raise_for_conflicts()

    async def test_update_missing_conflicts(self, client):
        response = await client.update({"key": Key("Task", 5), "data": {}})
        assert response.conflicts[0].error.mutation == "update"
        assert "NOT_FOUND" in response.conflicts[0].error.reason
        assert await client.get(Key("Task", 5)) is None

    async def test_update_requires_complete_key(self, client, rpc):
        with pytest.raises(InvalidKeyPathError):
            client.update({"key": Key("Task"), "data": {}})
        assert rpc.calls == []

    async def test_upsert_replaces_properties(self, client):
        key = Key("Task", 1)
        await client.upsert({"key": key, "data": {"a": 1, "b": 2}})
        await client.upsert({"key": key, "data": {"a": 3}})
        assert await client.get(key) == {"a": 3}

    async def test_delete(self, client):
        keys = await _seed(client, 2)
        await client.delete(keys[0])
        await client.delete(Key("Task", 99))
        assert [e.key for e in await client.get(keys)] == [keys[1]]

    async def test_delete_requires_complete_key(self, client, rpc):
        with pytest.raises(InvalidKeyPathError):
            client.delete(Key("Task"))
        with pytest.raises(InvalidKeyPathError):
            client.delete([Key("Task", 1), Key("Task")])
        assert rpc.calls == []

    async def test_invalid_value_rejected_before_rpc(self, client, rpc):
        with pytest.raises(InvalidEntityValueError):
            client.save({"key": Key("Task", 1), "data": {"bad": object()}})
        assert rpc.calls == []

    async def test_exclusions_round_trip(self, client):
        key = Key("Doc", 1)
        await client.save({"key": key, "data": {"body": "x" * 2000}, "exclude_from_indexes": ["body"]})
        assert (await client.get(key)).exclude_from_indexes == {"body"}


class TestAllocateIds:
    async def test_allocates_distinct_complete_keys(self, client):
        keys = await client.allocate_ids(Key("Task"), 3)
        assert len(set(keys)) == 3
        assert all(k.is_complete and k.kind == "Task" for k in keys)

    async def test_allocation_skips_explicit_ids(self, client):
        await client.save({"key": Key("Task", 10), "data": {}})
        (key,) = await client.allocate_ids(Key("Task"), 1)
        assert key.id > 10

    async def test_invalid_arguments(self, client):
        with pytest.raises(InvalidKeyPathError):
            client.allocate_ids(Key("Task", 1), 1)
        for bad in (0, -1, 1.5, True):
            with pytest.raises(ValidationError):
                client.allocate_ids(Key("Task"), bad)


class TestTransportFailures:
    async def test_foreign_errors_are_wrapped(self, client):
        failing = FailingTransport(client.transport, RuntimeError("socket closed"), ("lookup",))
        core = RequestCore(failing, project_id="p")
        with pytest.raises(TransportError, match="socket closed"):
            await core.lookup([Key("A", 1)], {})

    async def test_malformed_response(self):
        class Broken(RecordingTransport):
            async def send(self, method, request):
                return {"batch": {"entityResults": "nope"}}

        core = RequestCore(Broken(None))
        with pytest.raises(TransportError, match="Malformed response"):
            await core.run_query(Query(kind="A"), {})

    async def test_mutation_count_mismatch(self):
        class Short(RecordingTransport):
            async def send(self, method, request):
                return {"mutationResults": []}

        core = RequestCore(Short(None))
        mutations = core.prepare_writes([{"key": Key("A", 1)}], None)
        with pytest.raises(TransportError, match="Expected 1 mutation results"):
            await core.commit(mutations)

    async def test_malformed_rollback_response(self):
        class Broken(RecordingTransport):
            async def send(self, method, request):
                return "nope"

        core = RequestCore(Broken(None))
        with pytest.raises(TransportError, match="Malformed response"):
            await core.rollback("tx-1")


class TestQueryValidation:
    async def test_ancestor_outside_client_namespace(self, make_client):
        client = make_client(namespace="tenant-a")
        query = Query(kind="Employee").has_ancestor(Key("Company", "acme"))
        with pytest.raises(InvalidQueryError, match="namespace"):
            client.run_query(query)
        with pytest.raises(InvalidQueryError, match="namespace"):
            client.run_query_stream(query)
        assert client.transport.calls == []

    async def test_ancestor_in_client_namespace(self, make_client):
        client = make_client(namespace="tenant-a")
        acme = client.key("Company", "acme")
        await client.save({"key": client.key("Employee", 1, parent=acme), "data": {}})
        entities, _ = await client.run_query(Query(kind="Employee").has_ancestor(acme))
        assert [e.key.id for e in entities] == [1]
