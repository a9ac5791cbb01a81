"""Tests for treestate.equality: reference and structural equality."""

from treestate.equality import deep_equal, is_same


class TestIsSame:
    def test_identity(self):
        obj = {"a": 1}
        assert is_same(obj, obj)

    def test_equal_scalars_are_same(self):
        assert is_same(1000, int("1000"))
        assert is_same("ab", "".join(["a", "b"]))

    def test_equal_containers_are_not_same(self):
        assert not is_same({"a": 1}, {"a": 1})
        assert not is_same([1], [1])

    def test_scalar_types_must_match(self):
        assert not is_same(1, 1.0)
        assert not is_same(1, True)

    def test_nan_is_same_as_nan(self):
        assert is_same(float("nan"), float("nan"))


class TestDeepEqual:
    def test_nested_structures(self):
        a = {"user": {"name": "ada", "tags": ["x", "y"]}, "n": 1}
        b = {"user": {"name": "ada", "tags": ["x", "y"]}, "n": 1}
        assert deep_equal(a, b)

    def test_detects_nested_difference(self):
        a = {"user": {"tags": ["x", "y"]}}
        b = {"user": {"tags": ["x", "z"]}}
        assert not deep_equal(a, b)

    def test_missing_key(self):
        assert not deep_equal({"a": 1}, {"b": 1})

    def test_list_vs_tuple(self):
        assert not deep_equal([1, 2], (1, 2))

    def test_sets(self):
        assert deep_equal({1, 2}, {2, 1})
        assert not deep_equal({1}, {1, 2})

    def test_bool_is_not_int(self):
        assert not deep_equal(True, 1)
        assert not deep_equal({"flag": True}, {"flag": 1})

    def test_int_and_float(self):
        assert deep_equal(1, 1.0)

    def test_nan(self):
        assert deep_equal({"x": float("nan")}, {"x": float("nan")})

    def test_none(self):
        assert deep_equal(None, None)
        assert not deep_equal(None, 0)

    def test_uncomparable_objects(self):
        class Weird:
            def __eq__(self, other):
                raise TypeError("no")

        assert not deep_equal(Weird(), Weird())
