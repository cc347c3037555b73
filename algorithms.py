"""
Algorithm interfaces for routing.

Keeps graph algorithms separate from router wiring and delivery policy.
"""

from abc import ABC, abstractmethod
from typing import Callable, Collection, Dict, NamedTuple, Optional, Tuple

from graph import Edge, Graph

# Maps a traversed edge to its (positive) cost for the message being routed.
EdgeWeight = Callable[[Edge], float]


class PathLabel(NamedTuple):
    """
    Best known way to reach a node: cumulative cost, hop count, full path.

    Tuple ordering doubles as the tie-break: cheaper first, then fewer hops,
    then the lexicographically smaller path.
    """

    cost: float
    hops: int
    path: Tuple[str, ...]


class DijkstraEngine(ABC):
    """
    Interface for single-source shortest-path computation.
    """

    @abstractmethod
    def shortest_paths(
        self,
        graph: Graph,
        source: str,
        weight: EdgeWeight,
        targets: Optional[Collection[str]] = None,
    ) -> Dict[str, PathLabel]:
        """
        Compute the best path from source to every reachable node.

        Args:
            graph: topology to search.
            source: origin node id.
            weight: per-edge cost function, evaluated on each traversal.
            targets: if given, the search may stop once all are settled.

        Returns:
            Mapping node_id -> PathLabel for each settled node (source included).
        """
        raise NotImplementedError
