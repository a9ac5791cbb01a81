"""Tests for Store.update_path: path-scoped writes."""

from treestate import DELETE, PathError, create_store


def _store(initial, **kwargs):
    errors = []
    return create_store(initial, on_error=errors.append, **kwargs), errors


class TestUpdatePath:
    def test_literal_value(self):
        store, _ = _store({"user": {"name": "ada", "age": 36}})
        store.update_path(["user", "name"], "grace")
        assert store.get_state() == {"user": {"name": "grace", "age": 36}}

    def test_dotted_path_with_index(self):
        store, _ = _store({"items": [{"name": "a"}, {"name": "b"}]})
        store.update_path("items.1.name", "B")
        assert store.get_state()["items"][1] == {"name": "B"}

    def test_updater_function(self):
        store, _ = _store({"counter": {"value": 1}})
        store.update_path("counter.value", lambda v: v + 1)
        assert store.get_state()["counter"]["value"] == 2

    def test_only_branch_is_reallocated(self):
        store, _ = _store({"a": {"b": {"c": 1}, "d": {"e": 2}}, "f": {"g": 3}})
        before = store.get_state()
        store.update_path("a.b.c", 5)
        after = store.get_state()
        assert after is not before
        assert after["a"] is not before["a"]
        assert after["a"]["d"] is before["a"]["d"]
        assert after["f"] is before["f"]

    def test_creates_missing_intermediates(self):
        store, _ = _store({})
        store.update_path(["settings", "panels", 0, "open"], True)
        assert store.get_state() == {"settings": {"panels": [{"open": True}]}}

    def test_pads_list(self):
        store, _ = _store({"xs": []})
        store.update_path(["xs", 2], "c")
        assert store.get_state() == {"xs": [None, None, "c"]}

    def test_literal_none_is_stored(self):
        store, _ = _store({"a": 1})
        store.update_path("a", None)
        assert store.get_state() == {"a": None}

    def test_updater_returning_none_deletes(self):
        store, _ = _store({"a": {"b": 1, "c": 2}})
        store.update_path("a.b", lambda v: None)
        assert store.get_state() == {"a": {"c": 2}}
        before = store.get_state()
        store.update_path("a.b", lambda v: None)
        assert store.get_state() is before

    def test_delete_sentinel(self):
        store, _ = _store({"xs": [1, 2, 3]})
        store.update_path(["xs", 0], DELETE)
        assert store.get_state() == {"xs": [2, 3]}

    def test_deleting_absent_branch_creates_nothing(self):
        store, _ = _store({"a": 1})
        calls = []
        store.subscribe(lambda new, old: calls.append(new))
        store.update_path("x.y", lambda v: None)
        assert store.get_state() == {"a": 1}
        assert calls == []

    def test_equal_value_is_noop(self):
        store, _ = _store({"a": {"b": [1, 2]}}, history_limit=10)
        calls = []
        store.subscribe(lambda new, old: calls.append(new))
        before = store.get_state()
        store.update_path("a.b", [1, 2])
        assert store.get_state() is before
        assert calls == []
        assert store.can_undo() is False

    def test_through_scalar_reports_path_error(self):
        store, errors = _store({"a": 5})
        store.update_path("a.b", 1)
        assert store.get_state() == {"a": 5}
        assert isinstance(errors[0], PathError)
        assert errors[0].operation == "update_path"

    def test_empty_path_reports_path_error(self):
        store, errors = _store({"a": 5})
        store.update_path([], 1)
        assert isinstance(errors[0], PathError)

    def test_raising_updater_reported(self):
        store, errors = _store({"a": 5})

        def updater(value):
            raise ZeroDivisionError

        store.update_path("a", updater)
        assert store.get_state() == {"a": 5}
        assert isinstance(errors[0].cause, ZeroDivisionError)

    def test_one_notification_and_history_entry(self):
        store, _ = _store({"a": {"b": 1}}, history_limit=10)
        calls = []
        store.subscribe(lambda new, old: calls.append((new, old)))
        store.update_path("a.b", 2)
        assert len(calls) == 1
        assert calls[0][1] == {"a": {"b": 1}}
        assert len(store.get_history().entries) == 2
