"""
Route scoring.

RouteScorer is the seam for swapping in a trained model. The shipped
HeuristicRouteScorer is a fixed, auditable formula identified by
SCORER_VERSION so decisions can be traced back to the scoring rules that
produced them.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Iterable, List

from graph import Graph
from ledger import PerformanceLedger
from messages import Message
from routing import Route

SCORER_VERSION = "heuristic-v1"

BASE_SCORE = 100.0
HOP_PENALTY = 5.0
RELIABILITY_WEIGHT = 30.0
INTERNET_MATCH_BONUS = 50.0
EMERGENCY_INTERNET_BONUS = 40.0
EMERGENCY_SHORT_PATH_BONUS = 20.0
EMERGENCY_SHORT_PATH_HOPS = 3
ENERGY_WEIGHT = 0.1
HISTORY_SUCCESS_WEIGHT = 20.0
HISTORY_LATENCY_WEIGHT = 0.001
TRUST_WEIGHT = 15.0
UNKNOWN_TRUST = 0.5


class RouteScorer(ABC):
    """Assigns a desirability score to candidate routes."""

    version: str = ""

    @abstractmethod
    def score(self, route: Route, message: Message, graph: Graph) -> float:
        raise NotImplementedError

    def rank(self, routes: Iterable[Route], message: Message, graph: Graph) -> List[Route]:
        """
        Annotate each route with its score and sort best first.

        Equal scores prefer fewer hops, then the smaller path.
        """
        scored = [replace(route, score=self.score(route, message, graph)) for route in routes]
        return sorted(scored, key=lambda r: (-r.score, r.hop_count, r.path))


class HeuristicRouteScorer(RouteScorer):
    """
    Additive score from a base of 100, floored at 0:

        - 5 * hops
        + 30 * reliability
        + 50 if the message needs internet and the route has it
        + 40 / + 20 for emergencies with internet / at most 3 hops
        - 0.1 * energy cost
        + 20 * success rate - 0.001 * average latency (ms), if the ledger
          has seen this path
        + 15 * mean trust of the nodes on the path
    """

    version = SCORER_VERSION

    def __init__(self, ledger: PerformanceLedger) -> None:
        self._ledger = ledger

    def score(self, route: Route, message: Message, graph: Graph) -> float:
        score = BASE_SCORE
        score -= HOP_PENALTY * route.hop_count
        score += RELIABILITY_WEIGHT * route.reliability

        if message.requires_internet and route.has_internet_path:
            score += INTERNET_MATCH_BONUS

        if message.is_emergency:
            if route.has_internet_path:
                score += EMERGENCY_INTERNET_BONUS
            if route.hop_count <= EMERGENCY_SHORT_PATH_HOPS:
                score += EMERGENCY_SHORT_PATH_BONUS

        score -= ENERGY_WEIGHT * route.energy_cost

        history = self._ledger.get(route.key)
        if history is not None:
            score += HISTORY_SUCCESS_WEIGHT * history.success_rate
            score -= HISTORY_LATENCY_WEIGHT * history.average_latency_ms

        score += TRUST_WEIGHT * self._mean_trust(route, graph)
        return max(0.0, score)

    def _mean_trust(self, route: Route, graph: Graph) -> float:
        total = 0.0
        for node_id in route.path:
            node = graph.node(node_id)
            total += node.trust_score if node is not None else UNKNOWN_TRUST
        return total / len(route.path)
