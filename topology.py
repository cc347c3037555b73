"""
Topology store for the mesh.

TopologyStore is the single mutable owner of known nodes and links. Discovery
writes into it; routing reads from immutable TopologySnapshot views so that a
decision is computed against one consistent topology.

Trust scores are not touched by discovery: a re-sighted node keeps the trust
it already has. An external trust updater (reputation service, operator
tooling) adjusts them through TopologyStore.set_trust_score.
"""

from dataclasses import replace
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional
import logging
import threading

from graph import Edge, Graph
from nodes import MeshNode

logger = logging.getLogger(__name__)

GatewayListener = Callable[[FrozenSet[str]], None]


class TopologySnapshot(Graph):
    """
    Read-only view of the topology at one instant.

    Backed by copies of the store's maps, so later store mutations are not
    visible through it.
    """

    def __init__(self, nodes: Mapping[str, MeshNode], edges: Mapping[str, Mapping[str, Edge]]) -> None:
        self._nodes: Mapping[str, MeshNode] = MappingProxyType(dict(nodes))
        self._edges: Mapping[str, Mapping[str, Edge]] = MappingProxyType(
            {src: MappingProxyType(dict(out)) for src, out in edges.items()}
        )
        self._gateways: FrozenSet[str] = frozenset(
            node_id for node_id, node in self._nodes.items() if node.has_internet_access
        )

    # --- Graph interface -----------------------------------------------------

    def nodes(self) -> Iterable[MeshNode]:
        return self._nodes.values()

    def node(self, node_id: str) -> Optional[MeshNode]:
        return self._nodes.get(node_id)

    def outgoing(self, node_id: str) -> Mapping[str, Edge]:
        return self._edges.get(node_id, MappingProxyType({}))

    # --- Convenience ---------------------------------------------------------

    def gateway_ids(self) -> FrozenSet[str]:
        return self._gateways

    def node_count(self) -> int:
        return len(self._nodes)


class TopologyStore:
    """
    Mutable node/edge registry shared between discovery and routing.

    All mutation is serialised by a re-entrant lock. Gateway listeners fire
    after the lock is released whenever the gateway set goes from empty to
    non-empty.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: Dict[str, MeshNode] = {}
        self._edges: Dict[str, Dict[str, Edge]] = {}
        self._snapshot: Optional[TopologySnapshot] = None
        self._gateway_listeners: List[GatewayListener] = []

    # --- Mutation API --------------------------------------------------------

    def upsert_node(self, node: MeshNode) -> MeshNode:
        """
        Insert a node, or refresh the volatile fields of a known one.

        The stored trust score survives re-sightings; use set_trust_score to
        change it.
        """
        with self._lock:
            had_gateways = self._has_gateways()
            existing = self._nodes.get(node.id)
            if existing is None:
                stored = node
                logger.debug("Discovered node %s (%s)", node.id, node.name)
            else:
                stored = replace(node, trust_score=existing.trust_score)
            self._nodes[node.id] = stored
            self._edges.setdefault(node.id, {})
            self._snapshot = None
            gateways_appeared = not had_gateways and self._has_gateways()
        if gateways_appeared:
            self._notify_gateways()
        return stored

    def upsert_edge(self, edge: Edge) -> bool:
        """
        Insert or refresh a directed edge.

        Returns False, leaving the topology untouched, if either endpoint is
        unknown.
        """
        with self._lock:
            if edge.source not in self._nodes or edge.target not in self._nodes:
                logger.debug("Dropping edge %s -> %s with unknown endpoint", edge.source, edge.target)
                return False
            self._edges.setdefault(edge.source, {})[edge.target] = edge
            self._snapshot = None
            return True

    def set_trust_score(self, node_id: str, trust_score: float) -> None:
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                raise KeyError(node_id)
            self._nodes[node_id] = replace(node, trust_score=trust_score)
            self._snapshot = None

    def evict(self, node_id: str) -> bool:
        """Remove a node together with every edge that touches it."""
        with self._lock:
            if self._nodes.pop(node_id, None) is None:
                return False
            self._edges.pop(node_id, None)
            for out in self._edges.values():
                out.pop(node_id, None)
            self._snapshot = None
            logger.debug("Evicted node %s", node_id)
            return True

    def add_gateway_listener(self, listener: GatewayListener) -> None:
        with self._lock:
            self._gateway_listeners.append(listener)

    # --- Read API ------------------------------------------------------------

    def gateway_ids(self) -> FrozenSet[str]:
        """Node ids that currently report internet access."""
        with self._lock:
            return frozenset(node_id for node_id, node in self._nodes.items() if node.has_internet_access)

    def stale_node_ids(self, now: float, freshness_window: float) -> List[str]:
        with self._lock:
            return [node_id for node_id, node in self._nodes.items() if node.is_stale(now, freshness_window)]

    def node(self, node_id: str) -> Optional[MeshNode]:
        with self._lock:
            return self._nodes.get(node_id)

    def snapshot(self) -> TopologySnapshot:
        """
        Immutable view for routing. Reused until the next mutation.
        """
        with self._lock:
            if self._snapshot is None:
                self._snapshot = TopologySnapshot(self._nodes, self._edges)
            return self._snapshot

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    # --- Internal helpers ----------------------------------------------------

    def _has_gateways(self) -> bool:
        return any(node.has_internet_access for node in self._nodes.values())

    def _notify_gateways(self) -> None:
        gateways = self.gateway_ids()
        with self._lock:
            listeners = list(self._gateway_listeners)
        logger.info("Internet gateways available: %s", ", ".join(sorted(gateways)))
        for listener in listeners:
            try:
                listener(gateways)
            except Exception:
                logger.exception("Gateway listener failed")
