"""Tests for treestate.diff: change sets and root patches."""

from treestate.diff import Change, apply_patch, diff_states, root_patch, touches
from treestate.paths import DELETE, MISSING


class TestDiffStates:
    def test_identical_is_empty(self):
        state = {"a": {"b": 1}}
        assert diff_states(state, state) == []

    def test_equal_copies_are_empty(self):
        assert diff_states({"a": [1, 2]}, {"a": [1, 2]}) == []

    def test_changed_leaf(self):
        assert diff_states({"a": {"b": 1}}, {"a": {"b": 2}}) == [Change(("a", "b"), 1, 2)]

    def test_added_and_removed_keys(self):
        changes = diff_states({"a": 1}, {"b": 2})
        assert Change(("a",), 1, MISSING) in changes
        assert Change(("b",), MISSING, 2) in changes
        kinds = {c.path: c.kind for c in changes}
        assert kinds == {("a",): "removed", ("b",): "added"}

    def test_list_tail(self):
        changes = diff_states({"xs": [1, 2]}, {"xs": [1, 2, 3]})
        assert changes == [Change(("xs", 2), MISSING, 3)]

    def test_skips_shared_branches(self):
        shared = {"deep": [1, 2, 3]}
        changes = diff_states({"s": shared, "n": 1}, {"s": shared, "n": 2})
        assert [c.path for c in changes] == [("n",)]

    def test_type_change_is_leaf_change(self):
        changes = diff_states({"a": [1]}, {"a": {"0": 1}})
        assert changes == [Change(("a",), [1], {"0": 1})]


class TestTouches:
    def test_exact_ancestor_and_descendant(self):
        changes = [Change(("a", "b", "c"), 1, 2)]
        assert touches(changes, "a.b.c")
        assert touches(changes, "a")
        assert touches(changes, "a.b.c.d")
        assert not touches(changes, "a.x")

    def test_int_and_str_keys_match(self):
        changes = [Change(("xs", 0), 1, 2)]
        assert touches(changes, "xs.0")


class TestPatches:
    def test_root_patch(self):
        shared = {"x": 1}
        before = {"keep": shared, "change": 1, "gone": 2}
        after = {"keep": shared, "change": 3, "new": 4}
        assert root_patch(before, after) == {"change": 3, "new": 4, "gone": DELETE}

    def test_apply_patch_replaces_root_branches(self):
        state = {"a": {"x": 1, "y": 2}, "b": 1}
        result = apply_patch(state, {"a": {"x": 5}})
        assert result == {"a": {"x": 5}, "b": 1}

    def test_apply_patch_noop_returns_same_object(self):
        state = {"a": {"x": 1}}
        assert apply_patch(state, {"a": {"x": 1}}) is state

    def test_apply_patch_keeps_equal_references(self):
        state = {"a": {"x": 1}, "b": 1}
        result = apply_patch(state, {"a": {"x": 1}, "b": 2})
        assert result["a"] is state["a"]

    def test_apply_patch_delete(self):
        assert apply_patch({"a": 1, "b": 2}, {"a": DELETE}) == {"b": 2}
        state = {"b": 2}
        assert apply_patch(state, {"a": DELETE}) is state
