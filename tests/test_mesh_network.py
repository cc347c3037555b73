import asyncio

from config import RouterConfig
from discovery import EdgeQuality, NodeSighting, StaticDiscoverySource
from mesh_network import MeshNetwork
from nodes import MeshNode
from router_loop import MessageState
from transport import LoggingInternetForwarder, SimulatedTransport


def test_mesh_network_discovers_and_delivers():
    source = StaticDiscoverySource(
        [
            NodeSighting(MeshNode("gw", "Gateway", trust_score=0.9, has_internet_access=True)),
            EdgeQuality("local", "gw", 0.9, 100.0),
        ]
    )
    forwarder = LoggingInternetForwarder()
    network = MeshNetwork(
        source,
        SimulatedTransport(success_probability=1.0, seed=1),
        forwarder=forwarder,
        config=RouterConfig(processing_interval_s=0.01, discovery_interval_s=0.01),
    )

    async def scenario():
        await network.start()
        status = network.status()
        msg_id = network.send_message("safe", "family", requires_internet=True)
        for _ in range(100):
            if network.router.state_of(msg_id) is MessageState.DELIVERED:
                break
            await asyncio.sleep(0.01)
        await network.shutdown()
        return status, msg_id

    status, msg_id = asyncio.run(scenario())

    assert status.is_active
    assert status.discovered_node_count == 1
    assert status.gateway_count == 1
    assert status.active_connection_count == 1
    assert status.local_node.id == "local"
    assert network.router.state_of(msg_id) is MessageState.DELIVERED
    assert forwarder.delivered == [(msg_id, "gw")]
    assert network.status().is_active is False


def test_local_node_survives_stale_eviction():
    clock_now = [0.0]
    source = StaticDiscoverySource([], clock=lambda: clock_now[0])
    network = MeshNetwork(
        source,
        SimulatedTransport(seed=1),
        config=RouterConfig(freshness_window_s=10.0),
        clock=lambda: clock_now[0],
    )
    clock_now[0] = 1000.0

    assert network.discovery.evict_stale() == []
    assert "local" in network.topology.snapshot()
