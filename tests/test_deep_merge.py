# tests/test_deep_merge.py

from aeq_core.deep_merge import ArrayStrategy, compose, deep_merge


def test_nested_dicts_merge_and_override_wins():
    base = {"a": 1, "b": {"c": 2, "d": 3}}
    out = deep_merge(base, {"b": {"d": 4, "e": 5}, "f": 6})

    assert out == {"a": 1, "b": {"c": 2, "d": 4, "e": 5}, "f": 6}


def test_inputs_are_not_mutated():
    base = {"b": {"c": [1, 2]}}
    override = {"b": {"c": [3]}}
    out = deep_merge(base, override)
    out["b"]["c"].append(99)

    assert base == {"b": {"c": [1, 2]}}
    assert override == {"b": {"c": [3]}}


def test_array_strategies():
    base = {"xs": [{"id": "a", "v": 1}, {"id": "b", "v": 2}]}
    override = {"xs": [{"id": "b", "v": 20}, {"id": "c", "v": 3}]}

    assert deep_merge(base, override)["xs"] == override["xs"]
    assert len(deep_merge(base, override, ArrayStrategy.CONCAT)["xs"]) == 4

    merged = deep_merge(base, override, ArrayStrategy.MERGE_BY_ID)["xs"]
    assert merged == [{"id": "a", "v": 1}, {"id": "b", "v": 20}, {"id": "c", "v": 3}]


def test_type_mismatch_and_none_override():
    assert deep_merge({"a": {"x": 1}}, {"a": 5}) == {"a": 5}
    assert deep_merge({"a": 1}, None) == {"a": 1}


def test_compose_layers_left_to_right():
    out = compose({"Max": 2, "Conf": {"Min": 0.6}}, None, {"Conf": {"Min": 0.8}}, {"Max": 3})
    assert out == {"Max": 3, "Conf": {"Min": 0.8}}
