"""Tests for plugin lifecycle hooks."""

from treestate import DELETE, Plugin, PluginError, create_store


class Recorder(Plugin):
    name = "recorder"

    def __init__(self):
        self.events = []

    def on_store_create(self, store):
        self.events.append(("create", store.get_name()))

    def on_state_change(self, new_state, prev_state, action, store):
        self.events.append(("change", dict(new_state), dict(prev_state)))

    def on_error(self, error, context, store):
        self.events.append(("error", context["operation"]))

    def on_destroy(self, store):
        self.events.append(("destroy",))


class TestLifecycle:
    def test_create_change_destroy(self):
        recorder = Recorder()
        store = create_store({"n": 0}, name="counter", plugins=[recorder])
        store.dispatch({"n": 1})
        store.destroy()
        assert recorder.events == [
            ("create", "counter"),
            ("change", {"n": 1}, {"n": 0}),
            ("destroy",),
        ]

    def test_error_hook_runs_before_on_error(self):
        order = []
        recorder = Recorder()
        store = create_store(
            {"n": 0},
            plugins=[recorder],
            on_error=lambda error: order.append(recorder.events[-1]),
        )
        store.update_path("n.x", 1)
        assert order == [("error", "update_path")]

    def test_plain_objects_work(self):
        class Minimal:
            def __init__(self):
                self.seen = 0

            def on_state_change(self, new_state, prev_state, action, store):
                self.seen += 1

        plugin = Minimal()
        store = create_store({"n": 0}, plugins=[plugin])
        store.dispatch({"n": 1})
        assert plugin.seen == 1


class TestBeforeStateChange:
    def test_can_transform_patch(self):
        class Clamp(Plugin):
            def before_state_change(self, action, prev_state, store):
                if "n" in action:
                    return {**action, "n": min(action["n"], 10)}
                return None

        store = create_store({"n": 0}, plugins=[Clamp()])
        store.dispatch({"n": 50})
        assert store.get_state() == {"n": 10}

    def test_patch_can_delete_keys(self):
        class StripSecret(Plugin):
            def before_state_change(self, action, prev_state, store):
                return {**action, "secret": DELETE}

        store = create_store({"secret": 1, "public": 1}, plugins=[StripSecret()])
        store.dispatch({"public": 2})
        assert store.get_state() == {"public": 2}


class TestFailingHooks:
    def test_failure_reported_and_others_still_run(self):
        class Broken(Plugin):
            name = "broken"

            def on_state_change(self, new_state, prev_state, action, store):
                raise RuntimeError("hook")

        errors = []
        recorder = Recorder()
        store = create_store({"n": 0}, plugins=[Broken(), recorder], on_error=errors.append)
        store.dispatch({"n": 1})
        assert store.get_state() == {"n": 1}
        assert ("change", {"n": 1}, {"n": 0}) in recorder.events
        assert isinstance(errors[0], PluginError)
        assert errors[0].context["plugin"] == "broken"
        assert errors[0].operation == "on_state_change"

    def test_failing_error_hook_is_logged(self, caplog):
        class Loud(Plugin):
            def on_error(self, error, context, store):
                raise RuntimeError("error hook")

        errors = []
        store = create_store({"n": 0}, plugins=[Loud()], on_error=errors.append)
        with caplog.at_level("ERROR", logger="treestate.plugins"):
            store.dispatch(3.5)
        assert len(errors) == 1
        assert "on_error failed" in caplog.text
