import asyncio

from discovery import DiscoveryFeed, EdgeQuality, NodeSighting, StaticDiscoverySource
from nodes import MeshNode
from topology import TopologyStore


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_sightings_are_applied_before_links():
    store = TopologyStore()
    store.upsert_node(MeshNode("A", "A"))
    feed = DiscoveryFeed(store, StaticDiscoverySource([]))

    dropped = feed.apply([EdgeQuality("A", "B", 0.8, 50.0), NodeSighting(MeshNode("B", "B"))])

    assert dropped == 0
    snap = store.snapshot()
    assert set(snap.outgoing("A")) == {"B"}
    assert set(snap.outgoing("B")) == {"A"}


def test_links_to_unseen_nodes_are_counted_as_dropped():
    store = TopologyStore()
    store.upsert_node(MeshNode("A", "A"))
    feed = DiscoveryFeed(store, StaticDiscoverySource([]))

    assert feed.apply([EdgeQuality("A", "ghost", 0.8, 50.0)]) == 2
    assert feed.apply([EdgeQuality("A", "ghost", 0.8, 50.0, symmetric=False)]) == 1


def test_stale_nodes_are_evicted_except_protected():
    clock = FakeClock(100.0)
    store = TopologyStore()
    store.upsert_node(MeshNode("local", "Local", last_seen=0.0))
    store.upsert_node(MeshNode("old", "Old", last_seen=10.0))
    store.upsert_node(MeshNode("fresh", "Fresh", last_seen=90.0))
    feed = DiscoveryFeed(store, StaticDiscoverySource([]), freshness_window_s=60.0, protected=("local",), clock=clock)

    assert feed.evict_stale() == ["old"]
    assert "local" in store.snapshot()
    assert "fresh" in store.snapshot()
    assert "old" not in store.snapshot()


def test_eviction_disabled_without_window():
    store = TopologyStore()
    store.upsert_node(MeshNode("old", "Old", last_seen=0.0))
    feed = DiscoveryFeed(store, StaticDiscoverySource([]), clock=FakeClock(1e6))

    assert feed.evict_stale() == []
    assert len(store) == 1


def test_tick_refreshes_last_seen_and_keeps_trust():
    clock = FakeClock(500.0)
    store = TopologyStore()
    events = [NodeSighting(MeshNode("B", "B", trust_score=0.9, last_seen=0.0))]
    feed = DiscoveryFeed(store, StaticDiscoverySource(events, clock=clock), freshness_window_s=60.0, clock=clock)

    asyncio.run(feed.tick())
    store.set_trust_score("B", 0.2)
    clock.now = 540.0
    asyncio.run(feed.tick())

    b = store.node("B")
    assert b.last_seen == 540.0
    assert b.trust_score == 0.2


def test_start_and_stop_run_periodic_refresh():
    store = TopologyStore()
    source = StaticDiscoverySource([NodeSighting(MeshNode("B", "B"))])
    feed = DiscoveryFeed(store, source, interval_s=0.01)

    async def scenario():
        await feed.start()
        await asyncio.sleep(0.05)
        await feed.stop()

    asyncio.run(scenario())

    assert "B" in store.snapshot()
