"""Tests for TrackedDict, TrackedList and proxy identity across generations."""

from collections.abc import Mapping, Sequence

import pytest

from statetracker import (
    HydrationError,
    StateTrackerError,
    TrackedDict,
    TrackedList,
    peek,
    perform,
    produce,
    raw,
    tracking,
)
from statetracker._arena import ProxyArena


def _ids(items):
    return [item.get_tracker().get_id() for item in items]


class TestTrackedDict:
    def test_reads(self):
        state = produce({"a": {"b": 1}, "c": 2})
        assert isinstance(state, TrackedDict)
        assert isinstance(state, Mapping)
        assert isinstance(state["a"], TrackedDict)
        assert state["a"]["b"] == 1
        assert state.get("missing", 9) == 9
        assert "c" in state
        assert len(state) == 2
        assert list(state) == ["a", "c"]
        assert dict(state["a"]) == {"b": 1}

    def test_missing_key_raises(self):
        state = produce({"a": 1})
        with pytest.raises(KeyError):
            state["nope"]

    def test_same_child_proxy_is_returned(self):
        state = produce({"a": {"b": 1}})
        assert state["a"] is state["a"]

    def test_raw_and_unlink(self):
        data = {"a": {"b": 1}}
        state = produce(data)
        assert raw(state) is data
        assert state.unlink() is data
        assert raw(state["a"]) is data["a"]

    def test_produce_rejects_non_dict(self):
        with pytest.raises(TypeError):
            produce([1, 2])

    def test_write_updates_base_and_clock(self):
        data = {"a": {"b": 1}}
        state = produce(data)
        context = state.get_context()
        before = context.time
        state["a"]["b"] = 2
        assert data["a"]["b"] == 2
        assert context.time == before + 1

    def test_write_same_value_is_noop(self):
        state = produce({"a": 1})
        context = state.get_context()
        before = context.time
        state["a"] = 1
        assert context.time == before

    def test_write_invalidates_child_proxy(self):
        state = produce({"a": {"b": 1}})
        old = state["a"]
        state["a"] = {"b": 2}
        assert state["a"] is not old
        assert state["a"]["b"] == 2

    def test_delete(self):
        state = produce({"a": 1, "b": 2})
        del state["a"]
        assert "a" not in state
        assert state.unlink() == {"b": 2}

    def test_items_values(self):
        state = produce({"a": {"x": 1}, "b": 2})
        assert [k for k, _ in state.items()] == ["a", "b"]
        assert state.values()[1] == 2

    def test_repr(self):
        state = produce({"a": 1})
        assert "TrackedDict" in repr(state)

    def test_equality(self):
        state = produce({"a": {"b": 1, "c": [1, {"d": 2}]}})
        assert state["a"] == {"b": 1, "c": [1, {"d": 2}]}
        assert {"b": 1, "c": [1, {"d": 2}]} == state["a"]
        assert state["a"] != {"b": 2, "c": [1, {"d": 2}]}
        assert state["a"] != "a"

    def test_pop(self):
        data = {"a": 1, "b": 2}
        state = produce(data)
        context = state.get_context()
        before = context.time
        assert state.pop("a") == 1
        assert state.pop("missing", None) is None
        with pytest.raises(KeyError):
            state.pop("missing")
        assert data == {"b": 2}
        assert context.time == before + 1

    def test_setdefault(self):
        data = {"a": 1}
        state = produce(data)
        assert state.setdefault("a", 5) == 1
        assert isinstance(state.setdefault("b", {}), TrackedDict)
        assert data == {"a": 1, "b": {}}

    def test_clear(self):
        data = {"a": {"x": 1}, "b": 2}
        state = produce(data)
        old = state["a"]
        context = state.get_context()
        before = context.time
        state.clear()
        assert data == {}
        assert context.time == before + 1
        state["a"] = {"x": 1}
        assert state["a"] is not old


class TestTrackedList:
    def test_reads(self):
        state = produce({"items": [{"v": 0}, {"v": 1}, {"v": 2}]})
        items = state["items"]
        assert isinstance(items, TrackedList)
        assert isinstance(items, Sequence)
        assert len(items) == 3
        assert items[-1]["v"] == 2
        assert [item["v"] for item in items] == [0, 1, 2]
        assert [item["v"] for item in items[1:]] == [1, 2]

    def test_length_is_recorded(self):
        state = produce({"items": [1, 2]})
        with tracking(state, "len") as record:
            len(state["items"])
        assert record.state_graph.find(("items", "length")) is not None
        assert record.affected_path_value[("items", "length")] == 2

    def test_negative_index_records_positive_path(self):
        state = produce({"items": [1, 2, 3]})
        with tracking(state, "last") as record:
            assert state["items"][-1] == 3
        assert record.state_graph.find(("items", 2)) is not None

    def test_mutations(self):
        data = {"items": [1, 2]}
        state = produce(data)
        items = state["items"]
        items.append(3)
        items.insert(0, 0)
        assert items.pop() == 3
        items[0] = 10
        del items[1]
        assert data["items"] == [10, 2]

    def test_contains(self):
        inner = {"v": 1}
        state = produce({"items": [inner, 2]})
        assert inner in state["items"]
        assert 2 in state["items"]
        assert 5 not in state["items"]

    def test_index_count_and_equality(self):
        state = produce({"items": [{"v": 1}, 2, 2, 3]})
        items = state["items"]
        assert items.index(2) == 1
        assert items.index({"v": 1}) == 0
        assert items.count(2) == 2
        assert items == [{"v": 1}, 2, 2, 3]
        assert items != [2, 3]
        with pytest.raises(ValueError):
            items.index(9)

    def test_remove_and_clear(self):
        data = {"items": [1, 2, 3]}
        state = produce(data)
        items = state["items"]
        items.remove(2)
        assert data["items"] == [1, 3]
        with pytest.raises(ValueError):
            items.remove(9)
        items.clear()
        assert data["items"] == []
        assert len(items) == 0

    def test_restructure_keeps_remaining_identities(self):
        state = produce({"items": [{"v": 0}, {"v": 1}, {"v": 2}]})
        items = state["items"]
        first, _, last = list(items)
        items.pop(1)
        assert items[0] is first
        assert items[1] is last
        assert items[1].get_tracker().access_path == ("items", 1)


class TestPeek:
    def test_peek_does_not_record(self):
        state = produce({"a": {"b": 1}})
        with tracking(state, "peek") as record:
            assert state.peek(["a", "b"]) == 1
        assert len(record.state_graph) == 0

    def test_peek_missing_returns_none(self):
        state = produce({"a": {"b": 1}})
        assert state.peek(["a", "x", "y"]) is None

    def test_peek_raw_tree(self):
        assert peek({"a": [10, 20]}, ["a", 1]) == 20
        assert peek({"a": 1}, ["a", "b"]) is None

    def test_peek_restores_peeking_flag(self):
        state = produce({"a": {"b": 1}})
        state.peek(["a", "b"])
        assert state.get_tracker().is_peeking is False
        assert state["a"].get_tracker().is_peeking is False


class TestRelinkHydrate:
    def test_relink_bumps_clock(self):
        state = produce({"a": {"b": 1}})
        context = state.get_context()
        before = context.time
        state.relink(["a", "b"], 2)
        assert state["a"]["b"] == 2
        assert context.time == before + 1

    def test_relink_through_scalar_raises(self):
        state = produce({"a": {"b": 1}})
        with pytest.raises(StateTrackerError):
            state.relink(["a", "b", "c"], 2)

    def test_relink_empty_path_raises(self):
        state = produce({"a": 1})
        with pytest.raises(StateTrackerError):
            state.relink([], 2)

    def test_hydrate_sets_once(self):
        state = produce({"a": {}})
        context = state.get_context()
        before = context.time
        state.hydrate(["a", "b"], 1)
        assert state["a"]["b"] == 1
        assert context.time == before

    def test_hydrate_defined_path_raises(self):
        state = produce({"a": {"b": 1}})
        with pytest.raises(HydrationError, match="initial stage"):
            state.hydrate(["a", "b"], 2)
        assert state["a"]["b"] == 1

    def test_hydration_error_is_value_error(self):
        assert issubclass(HydrationError, ValueError)

    def test_batch_relink_is_one_generation(self):
        state = produce({"a": {"v": 1}, "b": {"v": 2}})
        context = state.get_context()
        before = context.time
        touched = state.batch_relink([(["a", "v"], 5), (["b"], {"v": 7})])
        assert touched == [("a", "v"), ("b",)]
        assert context.time == before + 1
        assert state.peek(["a", "v"]) == 5
        assert state.peek(["b", "v"]) == 7


class TestStaleProxies:
    def test_captured_proxy_reads_latest_generation(self):
        state = produce({"a": {"v": 1}})
        a = state["a"]
        state.relink(["a"], {"v": 2})
        assert a["v"] == 2

    def test_captured_proxy_records_its_own_path(self):
        state = produce({"a": {"v": 1}})
        a = state["a"]
        state.relink(["a"], {"v": 2})
        with tracking(state, "stale") as record:
            a["v"]
        assert record.affected_path_value[("a", "v")] == 2


class TestStructuralSharing:
    def test_partial_update_keeps_unchanged_identities(self):
        data = {"a": {"a1": [{"value": 0}, {"value": 1}, {"value": 2}, {"value": 3}]}}
        state = produce(data)
        with tracking(state, "list"):
            before = _ids(state["a"]["a1"])

        items = list(data["a"]["a1"])
        items[2] = dict(items[2])
        state.relink(["a"], {"a1": items})

        with tracking(state, "list"):
            after = _ids(state["a"]["a1"])

        assert after[0] == before[0]
        assert after[1] == before[1]
        assert after[2] != before[2]
        assert after[3] == before[3]

    def test_partial_update_from_proxies(self):
        state = produce({"a": {"a1": [{"value": 0}, {"value": 1}, {"value": 2}, {"value": 3}]}})
        with tracking(state, "list"):
            before = _ids(state["a"]["a1"])

        items = list(state["a"]["a1"])
        items[2] = dict(items[2])
        state.relink(["a"], {"a1": items})

        with tracking(state, "list"):
            after = _ids(state["a"]["a1"])

        assert after[0] == before[0]
        assert after[1] == before[1]
        assert after[2] != before[2]
        assert after[3] == before[3]
        assert state["a"]["a1"][2]["value"] == 2

    def test_removal_reindexes_to_existing_identities(self):
        data = {"a": {"a1": [{"id": i} for i in range(5)]}}
        state = produce(data)
        with tracking(state, "list"):
            rows = state.peek(["a"])["a1"]

        ids = {}
        for index in range(5):
            with tracking(state, f"item{index}"):
                assert rows[index]["id"] == index
                ids[index] = rows[index].get_tracker().get_id()

        remaining = data["a"]["a1"][:]
        del remaining[2]
        state["a"]["a1"] = remaining

        with tracking(state, "list"):
            next_rows = state.peek(["a"])["a1"]

        expected = {0: 0, 1: 1, 2: 3, 3: 4}
        for index, old_index in expected.items():
            with tracking(state, f"item{index}"):
                assert next_rows[index]["id"] == old_index
                assert next_rows[index].get_tracker().get_id() == ids[old_index]

    def test_value_moved_to_other_root_gets_derived_proxy(self):
        shared = {"b": {"c": 1}}
        state = produce({"x": shared, "a": {}})
        original = state["x"]
        state.relink(["a"], shared)
        moved = state["a"]
        assert moved is not original
        assert moved.get_tracker().access_path == ("a",)
        assert raw(moved) is not shared
        assert raw(moved) == shared
        # the original slot keeps its proxy
        assert state["x"] is original

    def test_reused_proxy_follows_its_new_slot(self):
        data = {"a": {"a1": [{"id": i} for i in range(5)]}, "other": 0}
        state = produce(data)
        for row in state["a"]["a1"]:
            row["id"]

        remaining = data["a"]["a1"][:]
        del remaining[2]
        state["a"]["a1"] = remaining

        item = state["a"]["a1"][2]
        assert item["id"] == 3
        assert item.get_tracker().access_path == ("a", "a1", 2)

        state["other"] = 1
        assert item["id"] == 3
        with tracking(state, "moved") as record:
            item["id"]
        assert record.affected_path_value[("a", "a1", 2, "id")] == 3


class TestCacheLifetime:
    def test_cache_stays_bounded_across_generations(self):
        state = produce({"a": {"v": -1}})
        arena = state.get_context().arena
        for i in range(200):
            perform(state, {"a": {"v": i}})
            assert state["a"]["v"] == i
        assert len(arena) <= ProxyArena.sweep_floor + 1

    def test_sweep_keeps_reachable_proxies(self):
        state = produce({"a": {"v": 1}, "b": {"v": 2}})
        a = state["a"]
        state["b"]
        state.relink(["b"], {"v": 3})
        arena = state.get_context().arena
        assert len(arena) == 2
        assert arena.sweep(state.unlink()) == 1
        assert len(arena) == 1
        assert state["a"] is a

    def test_restructure_releases_removed_items(self):
        state = produce({"items": [{"v": 0}, {"v": 1}]})
        items = state["items"]
        list(items)
        items.pop(0)
        assert len(items.get_tracker().next_child_proxies) == 1
