"""
Unit tests for SimpleDijkstraEngine over a topology snapshot.
"""

from typing import Dict, Tuple

from dijkstra_engine import SimpleDijkstraEngine
from graph import Edge
from nodes import MeshNode
from topology import TopologySnapshot, TopologyStore


def build(costs: Dict[Tuple[str, str], float], extra_nodes=()) -> TopologySnapshot:
    store = TopologyStore()
    names = {n for pair in costs for n in pair} | set(extra_nodes)
    for name in sorted(names):
        store.upsert_node(MeshNode(name, name))
    for src, dst in costs:
        store.upsert_edge(Edge(src, dst))
    return store.snapshot()


def weight_from(costs: Dict[Tuple[str, str], float]):
    return lambda edge: costs[(edge.source, edge.target)]


def test_dijkstra_basic_paths():
    # A -> B (1), A -> C (4), B -> C (2)
    costs = {("A", "B"): 1.0, ("A", "C"): 4.0, ("B", "C"): 2.0}
    g = build(costs)

    labels = SimpleDijkstraEngine().shortest_paths(g, "A", weight_from(costs))

    assert labels["A"].cost == 0.0
    assert labels["B"].cost == 1.0
    # Shortest A->C is A->B->C with cost 3.0
    assert labels["C"].cost == 3.0
    assert labels["C"].path == ("A", "B", "C")
    assert labels["C"].hops == 2


def test_dijkstra_unreachable_node_absent():
    costs = {("A", "B"): 2.0}
    g = build(costs, extra_nodes=("C",))

    labels = SimpleDijkstraEngine().shortest_paths(g, "A", weight_from(costs))

    assert labels["B"].cost == 2.0
    # Unreachable node should not appear in the result
    assert "C" not in labels


def test_equal_cost_prefers_fewer_hops():
    costs = {("A", "B"): 1.0, ("B", "C"): 1.0, ("A", "C"): 2.0}
    g = build(costs)

    labels = SimpleDijkstraEngine().shortest_paths(g, "A", weight_from(costs))

    assert labels["C"].path == ("A", "C")


def test_equal_cost_and_hops_prefers_lexicographically_smaller_path():
    costs = {("A", "C"): 1.0, ("C", "D"): 1.0, ("A", "B"): 1.0, ("B", "D"): 1.0}
    g = build(costs)

    labels = SimpleDijkstraEngine().shortest_paths(g, "A", weight_from(costs))

    assert labels["D"].path == ("A", "B", "D")


def test_search_stops_once_targets_are_settled():
    costs = {("A", "B"): 1.0, ("B", "C"): 1.0, ("C", "D"): 1.0}
    g = build(costs)

    labels = SimpleDijkstraEngine().shortest_paths(g, "A", weight_from(costs), targets={"B"})

    assert labels["B"].path == ("A", "B")
    assert "D" not in labels


def test_unknown_source_yields_nothing():
    g = build({("A", "B"): 1.0})

    assert SimpleDijkstraEngine().shortest_paths(g, "Z", lambda e: 1.0) == {}


def test_instrumentation_counts_last_run():
    costs = {("A", "B"): 1.0, ("B", "C"): 1.0, ("A", "C"): 5.0}
    g = build(costs)
    engine = SimpleDijkstraEngine()

    engine.shortest_paths(g, "A", weight_from(costs))

    # A->B, A->C, B->C examined; A->B, A->C, then B->C improves C
    assert engine.last_edges_examined == 3
    assert engine.last_relaxed == 3
