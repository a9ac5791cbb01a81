"""Tests for treestate.draft: copy-on-write drafts and finalization."""

import pytest

from treestate.draft import DraftArena, DraftDict, DraftList, DraftSet
from treestate.errors import StoreError


def _run(state, mutator):
    arena = DraftArena(state)
    try:
        return arena.commit(mutator(arena.root))
    finally:
        arena.revoke()


class TestReads:
    def test_nested_containers_are_drafts(self):
        arena = DraftArena({"a": {"b": [1]}, "s": {1}})
        assert isinstance(arena.root, DraftDict)
        assert isinstance(arena.root["a"], DraftDict)
        assert isinstance(arena.root["a"]["b"], DraftList)
        assert isinstance(arena.root["s"], DraftSet)

    def test_same_handle_on_repeated_reads(self):
        arena = DraftArena({"a": {"b": 1}})
        assert arena.root["a"] is arena.root["a"]

    def test_leaves_are_plain(self):
        arena = DraftArena({"n": 1, "s": "x"})
        assert arena.root["n"] == 1
        assert arena.root["s"] == "x"


class TestCommit:
    def test_untouched_returns_base(self):
        state = {"a": {"b": 1}}
        assert _run(state, lambda d: None) is state

    def test_read_only_visit_returns_base(self):
        state = {"a": {"b": [1, 2]}}

        def visit(d):
            len(d["a"]["b"])
            list(d["a"])

        assert _run(state, visit) is state

    def test_nested_write_shares_siblings(self):
        state = {"a": {"b": 1}, "other": {"x": [1]}}

        def mutate(d):
            d["a"]["b"] = 2

        result = _run(state, mutate)
        assert result == {"a": {"b": 2}, "other": {"x": [1]}}
        assert result["other"] is state["other"]
        assert state["a"]["b"] == 1

    def test_delete_key(self):
        def mutate(d):
            del d["a"]

        assert _run({"a": 1, "b": 2}, mutate) == {"b": 2}

    def test_list_operations(self):
        state = {"xs": [3, 1, 2]}

        def mutate(d):
            xs = d["xs"]
            xs.append(4)
            xs.sort()
            xs.reverse()
            xs.insert(0, 10)
            del xs[1]

        assert _run(state, mutate) == {"xs": [10, 3, 2, 1]}
        assert state["xs"] == [3, 1, 2]

    def test_list_of_dicts(self):
        state = {"todos": [{"id": 1, "done": False}, {"id": 2, "done": False}]}

        def mutate(d):
            d["todos"][1]["done"] = True

        result = _run(state, mutate)
        assert result["todos"][1] == {"id": 2, "done": True}
        assert result["todos"][0] is state["todos"][0]

    def test_sort_with_key_on_nested(self):
        state = {"rows": [{"n": 2}, {"n": 1}]}

        def mutate(d):
            d["rows"].sort(key=lambda r: r["n"])

        assert _run(state, mutate) == {"rows": [{"n": 1}, {"n": 2}]}

    def test_default_sort_after_nested_read(self):
        state = {"m": [[2], [1]]}

        def mutate(d):
            d["m"][0]
            d["m"].sort()

        result = _run(state, mutate)
        assert result == {"m": [[1], [2]]}
        assert result["m"][0] is state["m"][1]

    def test_default_sort_sees_nested_writes(self):
        state = {"m": [[2], [1], [3]]}

        def mutate(d):
            d["m"][2][0] = 0
            d["m"].sort(reverse=True)

        assert _run(state, mutate) == {"m": [[2], [1], [0]]}

    def test_default_sort_of_scalars(self):
        state = {"xs": [3, 1, 2]}
        assert _run(state, lambda d: d["xs"].sort()) == {"xs": [1, 2, 3]}

    def test_set_operations(self):
        state = {"tags": {"a", "b"}}

        def mutate(d):
            d["tags"].add("c")
            d["tags"].discard("a")

        assert _run(state, mutate) == {"tags": {"b", "c"}}

    def test_tuple_stays_tuple(self):
        state = {"t": (1, 2)}

        def mutate(d):
            d["t"][0] = 5

        assert _run(state, mutate) == {"t": (5, 2)}

    def test_returned_replacement(self):
        state = {"a": {"b": 1}, "c": 2}
        result = _run(state, lambda d: {"a": d["a"], "z": 1})
        assert result == {"a": {"b": 1}, "z": 1}
        assert result["a"] is state["a"]

    def test_moving_a_branch(self):
        state = {"src": {"x": 1}, "dst": None}

        def mutate(d):
            d["dst"] = d["src"]
            d["src"]["x"] = 2

        result = _run(state, mutate)
        assert result == {"src": {"x": 2}, "dst": {"x": 2}}

    def test_write_then_revert_keeps_base(self):
        state = {"a": {"b": 1}}

        def mutate(d):
            d["a"]["b"] = 2
            d["a"]["b"] = 1

        result = _run(state, mutate)
        assert result is state


class TestRevocation:
    def test_use_after_revoke_raises(self):
        arena = DraftArena({"a": {"b": 1}})
        leaked = arena.root["a"]
        arena.revoke()
        with pytest.raises(StoreError):
            leaked["b"]
        with pytest.raises(StoreError):
            arena.root["a"] = 1

    def test_foreign_draft_rejected(self):
        first = DraftArena({"a": {}})
        second = DraftArena({"b": {}})
        with pytest.raises(StoreError):
            second.root["x"] = first.root["a"]
