"""
Directed graph abstraction for the mesh topology.

Nodes are addressed by id. Edges are directed: source -> target, carrying
link quality rather than a fixed weight, since the path finder derives the
weight per message.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from nodes import MeshNode


@dataclass(frozen=True)
class Edge:
    """
    Directed link between two mesh nodes.

    reliability is a unit-interval estimate of link quality; bandwidth is in
    kbit/s as reported by the radio layer.
    """

    source: str
    target: str
    reliability: float = 1.0
    bandwidth: float = 100.0
    protocol: str = "bluetooth"

    def __post_init__(self) -> None:
        if not 0.0 <= self.reliability <= 1.0:
            raise ValueError(f"reliability must be within [0, 1], got {self.reliability}")
        if self.bandwidth < 0:
            raise ValueError(f"bandwidth must be non-negative, got {self.bandwidth}")


class Graph(ABC):
    """Directed graph over MeshNode objects keyed by node id."""

    @abstractmethod
    def nodes(self) -> Iterable[MeshNode]:
        """Return all nodes in the graph."""
        raise NotImplementedError

    @abstractmethod
    def node(self, node_id: str) -> Optional[MeshNode]:
        """Return the node with this id, or None if unknown."""
        raise NotImplementedError

    @abstractmethod
    def outgoing(self, node_id: str) -> Mapping[str, Edge]:
        """
        Outgoing neighbours and their edges for a given node.

        Returns: dict[target_id, Edge]
        """
        raise NotImplementedError

    def __contains__(self, node_id: object) -> bool:
        return isinstance(node_id, str) and self.node(node_id) is not None
