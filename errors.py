"""
Routing failure taxonomy.

These are control-flow signals inside the router. Ordinary routing failures
are absorbed and surface to callers as terminal outcomes with a reason; only
contract violations (empty route path, negative TTL) raise ValueError.
"""


class MeshRoutingError(Exception):
    """Base class for routing failures."""


class NoRouteFound(MeshRoutingError):
    """No target is reachable; routing degrades to the local-only route."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"message {message_id}: no route to any target")
        self.message_id = message_id


class AttemptFailed(MeshRoutingError):
    """A single send attempt over one route did not succeed."""

    def __init__(self, route_key: str, reason: str = "") -> None:
        super().__init__(f"attempt over {route_key} failed" + (f": {reason}" if reason else ""))
        self.route_key = route_key
        self.reason = reason


class GatewayUnavailable(AttemptFailed):
    """The internet forwarder timed out or errored; handled like AttemptFailed."""


class AllRoutesExhausted(MeshRoutingError):
    """The selected route and every alternative failed."""

    def __init__(self, message_id: str, attempts: int) -> None:
        super().__init__(f"message {message_id}: all {attempts} route attempts failed")
        self.message_id = message_id
        self.attempts = attempts


class TtlExpired(MeshRoutingError):
    """The message ran out of hop budget before delivery."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"message {message_id}: TTL expired")
        self.message_id = message_id
