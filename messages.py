"""
Message model for mesh routing.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple
import time
import uuid

from errors import TtlExpired

# Recipient sentinel for messages addressed to every reachable node.
BROADCAST = "*"

DEFAULT_TTL = 10
EMERGENCY_TTL = 20


class Priority(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    EMERGENCY = "emergency"


class MessageKind(Enum):
    TEXT = "text"
    LOCATION = "location"
    SOS = "sos"
    FILE = "file"
    COMMAND = "command"


class RetryStrategy(Enum):
    """
    Policy applied once every candidate route for a message has failed.

    IMMEDIATE: requeue with no delay (at most once in a row).
    BACKOFF: requeue after an exponentially growing delay.
    BROADCAST: fan out to every neighbour regardless of score.
    WAIT_FOR_GATEWAY: persist until an internet gateway appears.
    """

    IMMEDIATE = "immediate"
    BACKOFF = "backoff"
    BROADCAST = "broadcast"
    WAIT_FOR_GATEWAY = "wait_for_gateway"


@dataclass(frozen=True)
class Message:
    """
    A message in flight.

    ttl is the remaining hop budget. route lists the node ids the message has
    traversed so far, starting with the sender.
    """

    id: str
    sender: str
    recipient: str
    content: str
    timestamp: float
    priority: Priority = Priority.NORMAL
    ttl: int = DEFAULT_TTL
    route: Tuple[str, ...] = ()
    retry_count: int = 0
    requires_internet: bool = False
    kind: MessageKind = MessageKind.TEXT
    last_retry_strategy: Optional[RetryStrategy] = None

    def __post_init__(self) -> None:
        if self.ttl < 0:
            raise ValueError(f"ttl must be non-negative, got {self.ttl}")
        if not self.route:
            object.__setattr__(self, "route", (self.sender,))

    @classmethod
    def create(
        cls,
        sender: str,
        recipient: str,
        content: str,
        priority: Priority = Priority.NORMAL,
        requires_internet: bool = False,
        kind: MessageKind = MessageKind.TEXT,
        ttl: Optional[int] = None,
        timestamp: Optional[float] = None,
    ) -> "Message":
        if ttl is None:
            ttl = EMERGENCY_TTL if priority is Priority.EMERGENCY else DEFAULT_TTL
        return cls(
            id=f"msg-{uuid.uuid4().hex[:12]}",
            sender=sender,
            recipient=recipient,
            content=content,
            timestamp=time.time() if timestamp is None else timestamp,
            priority=priority,
            ttl=ttl,
            requires_internet=requires_internet,
            kind=kind,
        )

    @property
    def is_broadcast(self) -> bool:
        return self.recipient == BROADCAST

    @property
    def is_emergency(self) -> bool:
        return self.priority is Priority.EMERGENCY

    @property
    def size_bytes(self) -> int:
        return len(self.content.encode("utf-8"))

    def consume_hop(self) -> "Message":
        """Spend one hop of TTL. Raises TtlExpired when none is left."""
        if self.ttl <= 0:
            raise TtlExpired(self.id)
        return replace(self, ttl=self.ttl - 1)

    def traversed(self, path: Tuple[str, ...]) -> "Message":
        """Extend the route-so-far with the nodes of a delivered path."""
        extra = tuple(node_id for node_id in path if node_id not in self.route)
        return replace(self, route=self.route + extra)
