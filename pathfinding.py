"""
Path finder: candidate routes from an origin to its targets.

Edge weights are a deterministic function of link quality and the message
being routed. Nothing here is learned; historical performance only enters
later, in the route scorer.
"""

from typing import List, Optional, Set
import logging

from algorithms import DijkstraEngine
from dijkstra_engine import SimpleDijkstraEngine
from graph import Edge, Graph
from messages import Message, MessageKind
from routing import PER_HOP_DELIVERY_MS, Route

logger = logging.getLogger(__name__)

LARGE_MESSAGE_BYTES = 64 * 1024
# Bandwidth (kbit/s) at which a large message pays no penalty.
REFERENCE_BANDWIDTH = 100.0
MIN_BATTERY = 0.1


def is_large(message: Message, large_message_bytes: int = LARGE_MESSAGE_BYTES) -> bool:
    return message.kind is MessageKind.FILE or message.size_bytes > large_message_bytes


def message_edge_weight(edge: Edge, message: Message, large_message_bytes: int = LARGE_MESSAGE_BYTES) -> float:
    """
    Cost of traversing edge for this message.

    Baseline is (2 - reliability), so a perfect link costs 1 and a dead one 2.
    Large messages are further scaled by how far the link falls short of the
    reference bandwidth.
    """
    weight = 2.0 - edge.reliability
    if is_large(message, large_message_bytes):
        weight *= REFERENCE_BANDWIDTH / max(edge.bandwidth, 1.0)
    return weight


def build_route(graph: Graph, path: tuple) -> Route:
    """
    Derive route metrics from the nodes on a path.

    Each known node multiplies reliability by (trust + 0.5) / 1.5, adds
    1 / battery to the energy cost and marks the route as internet-capable
    if it has internet access.
    """
    reliability = 1.0
    energy_cost = 0.0
    has_internet = False
    for node_id in path:
        node = graph.node(node_id)
        if node is None:
            continue
        reliability *= (node.trust_score + 0.5) / 1.5
        energy_cost += 1.0 / max(node.battery_level, MIN_BATTERY)
        if node.has_internet_access:
            has_internet = True

    return Route(
        path=tuple(path),
        reliability=reliability,
        estimated_delivery_ms=len(path) * PER_HOP_DELIVERY_MS,
        energy_cost=energy_cost,
        has_internet_path=has_internet,
    )


class PathFinder:
    """
    Enumerates one best route per reachable target for a message.
    """

    def __init__(self, engine: Optional[DijkstraEngine] = None, large_message_bytes: int = LARGE_MESSAGE_BYTES) -> None:
        self._engine = engine or SimpleDijkstraEngine()
        self._large_message_bytes = large_message_bytes

    def targets_for(self, message: Message, graph: Graph) -> Set[str]:
        """
        Recipient if the topology knows it, plus every gateway when the
        message needs the internet or is an SOS.
        """
        targets: Set[str] = set()
        if not message.is_broadcast and message.recipient in graph:
            targets.add(message.recipient)
        if message.requires_internet or message.kind is MessageKind.SOS:
            targets.update(node.id for node in graph.nodes() if node.has_internet_access)
        return targets

    def find_routes(self, message: Message, graph: Graph, origin: Optional[str] = None) -> List[Route]:
        """
        Run one search from the origin and build a Route for every target it
        reaches. Unreachable targets are simply absent from the result.
        """
        origin = origin or message.sender
        targets = self.targets_for(message, graph)
        if not targets or origin not in graph:
            return []

        labels = self._engine.shortest_paths(
            graph,
            origin,
            lambda edge: message_edge_weight(edge, message, self._large_message_bytes),
            targets=targets,
        )
        routes = [build_route(graph, labels[target].path) for target in sorted(targets) if target in labels]
        logger.debug(
            "Message %s: %d/%d targets reachable from %s", message.id, len(routes), len(targets), origin
        )
        return routes
