"""
Routing data structures for the mesh.

Defines the Route candidate produced by the path finder and the
RoutingDecision handed to the router loop.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from messages import RetryStrategy

# Delivery time budget assumed per node on a path.
PER_HOP_DELIVERY_MS = 2000.0


@dataclass(frozen=True)
class Route:
    """
    Candidate path from sender to a target, plus derived quality metrics.

    A single-element path means "no path, stay local". reliability is the
    product of per-node factors along the path.
    """

    path: Tuple[str, ...]
    reliability: float
    estimated_delivery_ms: float
    energy_cost: float
    has_internet_path: bool
    score: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("Route path must contain at least the origin node")

    @property
    def hop_count(self) -> int:
        return len(self.path) - 1

    @property
    def key(self) -> str:
        """Performance ledger key for this path."""
        return "-".join(self.path)

    @property
    def origin(self) -> str:
        return self.path[0]

    @property
    def terminus(self) -> str:
        return self.path[-1]

    def describe(self) -> str:
        return " -> ".join(self.path)


def local_route(origin: str) -> Route:
    """Degenerate route used when nothing is reachable."""
    return Route(
        path=(origin,),
        reliability=0.0,
        estimated_delivery_ms=0.0,
        energy_cost=0.0,
        has_internet_path=False,
    )


@dataclass(frozen=True)
class RoutingDecision:
    """
    Outcome of one routing computation for one message.
    """

    selected_route: Route
    confidence: float
    reasoning: str
    alternatives: Tuple[Route, ...] = field(default_factory=tuple)
    should_store: bool = False
    retry_strategy: RetryStrategy = RetryStrategy.BACKOFF
    scorer_version: str = ""

    def candidates(self) -> Tuple[Route, ...]:
        """Selected route followed by the ranked alternatives."""
        return (self.selected_route, *self.alternatives)
