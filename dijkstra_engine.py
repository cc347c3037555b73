"""
Heap-based DijkstraEngine implementation for the mesh.

Uses Python's heapq to compute single-source shortest paths over any Graph
implementation that satisfies the Graph interface.
"""

from typing import Collection, Dict, Optional, Set
import heapq

from algorithms import DijkstraEngine, EdgeWeight, PathLabel
from graph import Graph


class SimpleDijkstraEngine(DijkstraEngine):
    """
    Single-source Dijkstra using a binary heap keyed by PathLabel.

    Complexity:
        O(E log V) over the nodes reachable from the source.
    """

    def __init__(self) -> None:
        # Instrumentation for the last run.
        self.last_edges_examined = 0
        self.last_relaxed = 0

    def shortest_paths(
        self,
        graph: Graph,
        source: str,
        weight: EdgeWeight,
        targets: Optional[Collection[str]] = None,
    ) -> Dict[str, PathLabel]:
        """
        Dijkstra over message-dependent edge weights.

        Heap entries are full PathLabels, so when two paths cost the same the
        one with fewer hops wins, and after that the lexicographically smaller
        path. A node is settled the first time it is popped; the search stops
        early once every requested target is settled. Edges into nodes the
        graph does not know are ignored.
        """
        self.last_edges_examined = 0
        self.last_relaxed = 0
        if source not in graph:
            return {}

        best: Dict[str, PathLabel] = {source: PathLabel(0.0, 0, (source,))}
        settled: Dict[str, PathLabel] = {}
        remaining: Set[str] = set(targets) if targets is not None else set()
        pq = [best[source]]

        while pq:
            label = heapq.heappop(pq)
            u = label.path[-1]
            if u in settled:
                continue
            settled[u] = label

            if targets is not None:
                remaining.discard(u)
                if not remaining:
                    break

            for v, edge in graph.outgoing(u).items():
                self.last_edges_examined += 1
                if v in settled or v not in graph:
                    continue
                w = weight(edge)
                if w < 0:
                    raise ValueError(f"negative edge weight {w} on {u} -> {v}")
                candidate = PathLabel(label.cost + w, label.hops + 1, label.path + (v,))
                current = best.get(v)
                if current is None or candidate < current:
                    best[v] = candidate
                    self.last_relaxed += 1
                    heapq.heappush(pq, candidate)

        return settled
