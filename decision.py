"""
Decision assembler: turns scored candidate routes into one RoutingDecision.
"""

from typing import List, Optional
import logging

from errors import NoRouteFound
from messages import Message, RetryStrategy
from pathfinding import PathFinder
from routing import Route, RoutingDecision, local_route
from scoring import RouteScorer
from topology import TopologySnapshot

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 3
SHORT_PATH_HOPS = 2
CONFIDENT_PATH_HOPS = 3
HIGH_RELIABILITY = 0.8
STORE_BELOW_RELIABILITY = 0.5
IMMEDIATE_ABOVE_RELIABILITY = 0.7

DEFAULT_REASONING = "Default routing selected"


def confidence_for(route: Route, message: Message) -> float:
    confidence = 0.6 * route.reliability
    if route.has_internet_path and message.requires_internet:
        confidence += 0.3
    if route.hop_count <= CONFIDENT_PATH_HOPS:
        confidence += 0.1
    return min(1.0, confidence)


def reasoning_for(route: Route, message: Message) -> str:
    reasons: List[str] = []
    if route.has_internet_path:
        reasons.append("Route has internet gateway access")
    if route.hop_count <= SHORT_PATH_HOPS:
        reasons.append("Short path with minimal hops")
    if route.reliability > HIGH_RELIABILITY:
        reasons.append("High reliability based on node history")
    if message.is_emergency:
        reasons.append("Emergency message prioritized")
    return "; ".join(reasons) or DEFAULT_REASONING


def should_store(route: Route, message: Message) -> bool:
    return route.reliability < STORE_BELOW_RELIABILITY or (message.requires_internet and not route.has_internet_path)


def retry_strategy_for(route: Route, message: Message, gateway_count: int) -> RetryStrategy:
    if message.is_emergency:
        return RetryStrategy.BROADCAST
    if route.has_internet_path and route.reliability > IMMEDIATE_ABOVE_RELIABILITY:
        return RetryStrategy.IMMEDIATE
    if gateway_count == 0:
        return RetryStrategy.WAIT_FOR_GATEWAY
    return RetryStrategy.BACKOFF


class DecisionAssembler:
    """
    Combines the path finder and a route scorer into a routing decision.
    """

    def __init__(self, path_finder: PathFinder, scorer: RouteScorer) -> None:
        self._path_finder = path_finder
        self._scorer = scorer

    def decide(self, message: Message, graph: TopologySnapshot, origin: Optional[str] = None) -> RoutingDecision:
        origin = origin or message.sender
        try:
            ranked = self.candidates(message, graph, origin)
        except NoRouteFound as exc:
            logger.info("%s; staying local at %s", exc, origin)
            ranked = []
        return self.assemble(message, ranked, len(graph.gateway_ids()), origin)

    def candidates(self, message: Message, graph: TopologySnapshot, origin: str) -> List[Route]:
        """Scored routes, best first. Raises NoRouteFound when no target is reachable."""
        routes = self._path_finder.find_routes(message, graph, origin=origin)
        if not routes:
            raise NoRouteFound(message.id)
        return self._scorer.rank(routes, message, graph)

    def assemble(self, message: Message, ranked: List[Route], gateway_count: int, origin: Optional[str] = None) -> RoutingDecision:
        """Build the decision from routes already ranked best first."""
        selected = ranked[0] if ranked else local_route(origin or message.sender)
        return RoutingDecision(
            selected_route=selected,
            confidence=confidence_for(selected, message),
            reasoning=reasoning_for(selected, message),
            alternatives=tuple(ranked[1 : 1 + MAX_ALTERNATIVES]),
            should_store=should_store(selected, message),
            retry_strategy=retry_strategy_for(selected, message, gateway_count),
            scorer_version=self._scorer.version,
        )
