"""
Unit tests for TopologyStore and TopologySnapshot.
"""

import pytest

from graph import Edge
from nodes import MeshNode
from topology import TopologyStore


def make_node(node_id: str, trust: float = 0.5, battery: float = 1.0, internet: bool = False) -> MeshNode:
    return MeshNode(node_id, node_id.upper(), battery_level=battery, trust_score=trust, has_internet_access=internet)


def test_edges_to_unknown_nodes_are_dropped():
    store = TopologyStore()
    store.upsert_node(make_node("a"))

    assert store.upsert_edge(Edge("a", "ghost", 0.9)) is False
    assert store.upsert_edge(Edge("ghost", "a", 0.9)) is False
    assert dict(store.snapshot().outgoing("a")) == {}


def test_upsert_edge_refreshes_existing_link():
    store = TopologyStore()
    store.upsert_node(make_node("a"))
    store.upsert_node(make_node("b"))

    assert store.upsert_edge(Edge("a", "b", 0.4))
    assert store.upsert_edge(Edge("a", "b", 0.8))

    out = store.snapshot().outgoing("a")
    assert set(out) == {"b"}
    assert out["b"].reliability == 0.8
    # Directed: nothing was added b -> a
    assert dict(store.snapshot().outgoing("b")) == {}


def test_resighting_refreshes_volatile_fields_but_keeps_trust():
    store = TopologyStore()
    store.upsert_node(make_node("a", trust=0.9, battery=0.8))
    store.set_trust_score("a", 0.3)

    stored = store.upsert_node(make_node("a", trust=0.9, battery=0.2))

    assert stored.trust_score == 0.3
    assert stored.battery_level == 0.2
    assert store.node("a").trust_score == 0.3


def test_gateway_ids_follow_node_state():
    store = TopologyStore()
    store.upsert_node(make_node("a"))
    assert store.gateway_ids() == frozenset()

    store.upsert_node(make_node("a", internet=True))
    assert store.gateway_ids() == {"a"}

    store.upsert_node(make_node("a", internet=False))
    assert store.gateway_ids() == frozenset()


def test_snapshot_is_isolated_from_later_mutation():
    store = TopologyStore()
    store.upsert_node(make_node("a"))
    store.upsert_node(make_node("b"))
    store.upsert_edge(Edge("a", "b", 0.9))
    snap = store.snapshot()

    store.upsert_node(make_node("c", internet=True))
    store.upsert_edge(Edge("a", "c", 0.9))

    assert "c" not in snap
    assert set(snap.outgoing("a")) == {"b"}
    assert snap.gateway_ids() == frozenset()
    assert "c" in store.snapshot()


def test_snapshot_maps_are_read_only():
    store = TopologyStore()
    store.upsert_node(make_node("a"))
    store.upsert_node(make_node("b"))
    store.upsert_edge(Edge("a", "b", 0.9))

    out = store.snapshot().outgoing("a")
    with pytest.raises(TypeError):
        out["x"] = Edge("a", "x")  # type: ignore[index]


def test_snapshot_is_reused_until_mutation():
    store = TopologyStore()
    store.upsert_node(make_node("a"))
    first = store.snapshot()

    assert store.snapshot() is first
    store.upsert_node(make_node("b"))
    assert store.snapshot() is not first


def test_gateway_listener_fires_on_empty_to_non_empty_transition():
    store = TopologyStore()
    seen = []
    store.add_gateway_listener(lambda gateways: seen.append(set(gateways)))

    store.upsert_node(make_node("a"))
    store.upsert_node(make_node("g1", internet=True))
    store.upsert_node(make_node("g2", internet=True))
    assert seen == [{"g1"}]

    store.evict("g1")
    store.evict("g2")
    store.upsert_node(make_node("g2", internet=True))
    assert seen == [{"g1"}, {"g2"}]


def test_evict_removes_incident_edges():
    store = TopologyStore()
    for node_id in ("a", "b", "c"):
        store.upsert_node(make_node(node_id))
    store.upsert_edge(Edge("a", "b"))
    store.upsert_edge(Edge("b", "c"))
    store.upsert_edge(Edge("c", "b"))

    assert store.evict("b") is True
    snap = store.snapshot()

    assert "b" not in snap
    assert dict(snap.outgoing("a")) == {}
    assert dict(snap.outgoing("c")) == {}
    assert store.evict("b") is False


def test_stale_node_ids_uses_last_seen():
    store = TopologyStore()
    store.upsert_node(MeshNode("old", "Old", last_seen=10.0))
    store.upsert_node(MeshNode("fresh", "Fresh", last_seen=95.0))

    assert store.stale_node_ids(now=100.0, freshness_window=60.0) == ["old"]


def test_node_rejects_out_of_range_unit_values():
    with pytest.raises(ValueError):
        MeshNode("a", "A", battery_level=1.5)
    with pytest.raises(ValueError):
        MeshNode("a", "A", trust_score=-0.1)


def test_set_trust_score_validates_target_and_range():
    store = TopologyStore()
    store.upsert_node(make_node("a"))

    with pytest.raises(KeyError):
        store.set_trust_score("ghost", 0.5)
    with pytest.raises(ValueError):
        store.set_trust_score("a", 1.5)
    assert store.node("a").trust_score == 0.5
