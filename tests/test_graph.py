import pytest

from takumi.graph import CycleError, Graph, Level


def test_new_graph_is_empty():
    g = Graph()
    assert g.nodes() == []


def test_add_node_and_nodes():
    g = Graph()
    g.add_node("a", None)
    g.add_node("b", ["a"])
    g.add_node("c", ["a", "b"])
    assert sorted(g.nodes()) == ["a", "b", "c"]


def test_deps_of():
    g = Graph()
    g.add_node("a", None)
    g.add_node("b", ["a"])
    assert g.deps_of("a") == []
    assert g.deps_of("b") == ["a"]
    assert g.deps_of("nonexistent") == []


def test_dependents():
    g = Graph()
    g.add_node("a", None)
    g.add_node("b", ["a"])
    g.add_node("c", ["a"])
    g.add_node("d", ["b", "c"])
    assert sorted(g.dependents("a")) == ["b", "c"]
    assert g.dependents("b") == ["d"]
    assert g.dependents("d") == []
    assert g.dependents("nonexistent") == []


def test_sort_linear():
    g = Graph()
    g.add_node("a", None)
    g.add_node("b", ["a"])
    g.add_node("c", ["b"])
    levels = g.sort()
    assert levels == [Level(0, ["a"]), Level(1, ["b"]), Level(2, ["c"])]


def test_sort_parallel():
    g = Graph()
    g.add_node("a", None)
    g.add_node("b", None)
    g.add_node("c", ["a", "b"])
    levels = g.sort()
    assert len(levels) == 2
    assert sorted(levels[0].packages) == ["a", "b"]
    assert levels[1].packages == ["c"]


def test_sort_diamond():
    g = Graph()
    g.add_node("a", None)
    g.add_node("b", ["a"])
    g.add_node("c", ["a"])
    g.add_node("d", ["b", "c"])
    levels = g.sort()
    assert len(levels) == 3
    assert levels[0].packages == ["a"]
    assert sorted(levels[1].packages) == ["b", "c"]
    assert levels[2].packages == ["d"]


def test_sort_single_node():
    g = Graph()
    g.add_node("solo", None)
    levels = g.sort()
    assert len(levels) == 1
    assert levels[0].packages == ["solo"]


def test_sort_all_independent():
    g = Graph()
    for name in ("a", "b", "c"):
        g.add_node(name, None)
    levels = g.sort()
    assert len(levels) == 1
    assert sorted(levels[0].packages) == ["a", "b", "c"]


def test_sort_empty():
    assert Graph().sort() == []


def test_sort_cycle_detected():
    g = Graph()
    g.add_node("a", ["c"])
    g.add_node("b", ["a"])
    g.add_node("c", ["b"])
    with pytest.raises(CycleError, match="dependency cycle detected") as info:
        g.sort()
    assert sorted(info.value.nodes) == ["a", "b", "c"]


def test_sort_self_cycle():
    g = Graph()
    g.add_node("a", ["a"])
    with pytest.raises(CycleError, match="dependency cycle detected"):
        g.sort()


def test_sort_partial_cycle():
    g = Graph()
    g.add_node("a", None)
    g.add_node("b", ["c"])
    g.add_node("c", ["b"])
    with pytest.raises(CycleError, match="dependency cycle detected") as info:
        g.sort()
    assert sorted(info.value.nodes) == ["b", "c"]


def test_sort_external_deps_ignored():
    g = Graph()
    g.add_node("a", None)
    g.add_node("b", ["a", "external-lib"])
    levels = g.sort()
    assert len(levels) == 2
    assert levels[0].packages == ["a"]
    assert levels[1].packages == ["b"]


def test_flatten():
    g = Graph()
    g.add_node("a", None)
    g.add_node("b", ["a"])
    g.add_node("c", ["b"])
    assert g.flatten() == ["a", "b", "c"]


def test_flatten_cycle_error():
    g = Graph()
    g.add_node("a", ["b"])
    g.add_node("b", ["a"])
    with pytest.raises(CycleError):
        g.flatten()


def test_transitive_dependents():
    g = Graph()
    g.add_node("a", None)
    g.add_node("b", ["a"])
    g.add_node("c", ["a"])
    g.add_node("d", ["b"])
    assert sorted(g.transitive_dependents("a")) == ["b", "c", "d"]
    assert g.transitive_dependents("b") == ["d"]
    assert g.transitive_dependents("d") == []


def test_transitive_dependents_deep():
    g = Graph()
    g.add_node("a", None)
    g.add_node("b", ["a"])
    g.add_node("c", ["b"])
    g.add_node("d", ["c"])
    g.add_node("e", ["d"])
    assert sorted(g.transitive_dependents("a")) == ["b", "c", "d", "e"]


def test_sort_complex():
    g = Graph()
    g.add_node("shared-utils", None)
    g.add_node("data-models", None)
    g.add_node("api-service", ["shared-utils", "data-models"])
    g.add_node("frontend", ["shared-utils"])
    g.add_node("integration-tests", ["api-service", "frontend"])
    levels = g.sort()
    assert len(levels) == 3
    assert sorted(levels[0].packages) == ["data-models", "shared-utils"]
    assert sorted(levels[1].packages) == ["api-service", "frontend"]
    assert levels[2].packages == ["integration-tests"]
    assert [level.index for level in levels] == [0, 1, 2]


def test_deps_of_returns_copy():
    g = Graph()
    g.add_node("b", ["a"])
    g.deps_of("b").append("x")
    assert g.deps_of("b") == ["a"]