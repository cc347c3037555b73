"""
Interfaces for the router's external collaborators, plus simple in-process
implementations used by the scenario runner and tests.

The router never talks to radios, uplinks or disks directly. It hands a
message and a route to a Transport, a message and a gateway id to an
InternetForwarder, and messages it cannot deliver yet to a MessageStore.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, List, Optional, Protocol, runtime_checkable
import asyncio
import logging
import random

from messages import Message
from routing import Route

logger = logging.getLogger(__name__)


@runtime_checkable
class Transport(Protocol):
    async def send(self, message: Message, route: Route) -> bool:
        """
        Push message along route. True on acknowledged delivery.

        Implementations may also raise AttemptFailed. The router applies its
        own timeout around this call.
        """
        ...


@runtime_checkable
class InternetForwarder(Protocol):
    async def deliver(self, message: Message, gateway_id: str) -> bool:
        """Hand message to gateway_id for off-mesh delivery (email, SMS, API, ...)."""
        ...


@runtime_checkable
class MessageStore(Protocol):
    def store_message_for_later(self, message: Message) -> None:
        ...

    def drain(self) -> List[Message]:
        """Remove and return every stored message."""
        ...


class SimulatedTransport:
    """
    Seeded random transport: each attempt succeeds with success_probability.

    latency_s adds a fixed delay per hop so timeouts can be exercised.
    """

    def __init__(self, success_probability: float = 0.7, seed: Optional[int] = None, latency_s: float = 0.0) -> None:
        if not 0.0 <= success_probability <= 1.0:
            raise ValueError("success_probability must be within [0, 1]")
        self._rng = random.Random(seed)
        self._success_probability = success_probability
        self._latency_s = latency_s
        self.attempts = 0

    async def send(self, message: Message, route: Route) -> bool:
        self.attempts += 1
        if self._latency_s:
            await asyncio.sleep(self._latency_s * max(route.hop_count, 1))
        ok = self._rng.random() < self._success_probability
        logger.debug("Simulated send of %s via %s: %s", message.id, route.describe(), "ok" if ok else "lost")
        return ok


class LoggingInternetForwarder:
    """Accepts every hand-off and only records it."""

    def __init__(self) -> None:
        self.delivered: List[tuple[str, str]] = []

    async def deliver(self, message: Message, gateway_id: str) -> bool:
        logger.info("Message %s forwarded to internet via gateway %s", message.id, gateway_id)
        self.delivered.append((message.id, gateway_id))
        return True


class InMemoryMessageStore:
    """FIFO holding area for messages waiting on a gateway."""

    def __init__(self) -> None:
        self._messages: Deque[Message] = deque()

    def store_message_for_later(self, message: Message) -> None:
        self._messages.append(message)
        logger.info("Stored message %s for later delivery", message.id)

    def drain(self) -> List[Message]:
        drained = list(self._messages)
        self._messages.clear()
        return drained

    def __len__(self) -> int:
        return len(self._messages)
