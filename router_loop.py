"""
Router loop: drains the message queue, routes each message, attempts
delivery and applies fallback and retry policy.

Per-message state machine:

    queued -> routing -> attempting -> delivered | stored | requeued | dropped

requeued returns to queued; delivered, stored and dropped are terminal.
Ordinary routing failures never escape process(); they end as a terminal
DeliveryOutcome with a reason.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Deque, Dict, FrozenSet, List, Optional
import asyncio
import logging
import threading
import time

from config import RouterConfig
from decision import DecisionAssembler
from errors import AllRoutesExhausted, AttemptFailed, GatewayUnavailable
from ledger import PerformanceLedger
from messages import BROADCAST, Message, MessageKind, Priority, RetryStrategy
from nodes import MeshNode
from pathfinding import PathFinder, build_route
from routing import Route, RoutingDecision
from scoring import HeuristicRouteScorer, RouteScorer
from topology import TopologySnapshot, TopologyStore
from transport import InMemoryMessageStore, InternetForwarder, MessageStore, Transport

logger = logging.getLogger(__name__)


class MessageState(Enum):
    QUEUED = "queued"
    ROUTING = "routing"
    ATTEMPTING = "attempting"
    DELIVERED = "delivered"
    STORED = "stored"
    REQUEUED = "requeued"
    DROPPED = "dropped"

    @property
    def is_terminal(self) -> bool:
        return self in (MessageState.DELIVERED, MessageState.STORED, MessageState.DROPPED)


@dataclass(frozen=True)
class DeliveryOutcome:
    message_id: str
    state: MessageState
    reason: str
    route: Optional[Route] = None
    retry_count: int = 0


@dataclass(frozen=True)
class NetworkStatus:
    is_active: bool
    discovered_node_count: int
    active_connection_count: int
    gateway_count: int
    queued_message_count: int
    local_node: MeshNode


OutcomeListener = Callable[[DeliveryOutcome], None]
GatewayCallback = Callable[[FrozenSet[str]], None]


@dataclass
class _QueueEntry:
    message: Message
    eligible_at: float


class MessageQueue:
    """
    FIFO of messages with per-entry eligibility times.

    push never blocks and is safe to call from any thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Deque[_QueueEntry] = deque()

    def push(self, message: Message, eligible_at: float = 0.0) -> None:
        with self._lock:
            self._entries.append(_QueueEntry(message, eligible_at))

    def push_front(self, message: Message) -> None:
        with self._lock:
            self._entries.appendleft(_QueueEntry(message, 0.0))

    def pop_ready(self, now: float) -> Optional[Message]:
        """Remove and return the oldest message whose delay has elapsed."""
        with self._lock:
            for entry in self._entries:
                if entry.eligible_at <= now:
                    self._entries.remove(entry)
                    return entry.message
            return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RouterLoop:
    """
    Process-wide scheduler for outbound mesh traffic from the local node.

    Owns the message queue and the performance ledger; reads the topology
    only through snapshots.
    """

    def __init__(
        self,
        topology: TopologyStore,
        local_node: MeshNode,
        transport: Transport,
        forwarder: Optional[InternetForwarder] = None,
        store: Optional[MessageStore] = None,
        config: Optional[RouterConfig] = None,
        ledger: Optional[PerformanceLedger] = None,
        scorer: Optional[RouteScorer] = None,
        clock: Callable[[], float] = time.time,
        on_gateways_available: Optional[GatewayCallback] = None,
    ) -> None:
        self._config = config or RouterConfig()
        self._topology = topology
        self._transport = transport
        self._forwarder = forwarder
        self._store: MessageStore = store if store is not None else InMemoryMessageStore()
        self._ledger = ledger if ledger is not None else PerformanceLedger(self._config.ledger_max_entries)
        self._scorer = scorer or HeuristicRouteScorer(self._ledger)
        self._assembler = DecisionAssembler(PathFinder(large_message_bytes=self._config.large_message_bytes), self._scorer)
        self._clock = clock
        self._on_gateways_available = on_gateways_available

        self._queue = MessageQueue()
        self._states: Dict[str, MessageState] = {}
        self._outcomes: Deque[DeliveryOutcome] = deque(maxlen=self._config.outcome_history)
        self._listeners: List[OutcomeListener] = []

        self._active = False
        self._task: Optional[asyncio.Task] = None

        self._local_node = topology.upsert_node(local_node)
        self._local_id = self._local_node.id
        topology.add_gateway_listener(self._gateways_available)

    # --- Producer API --------------------------------------------------------

    def enqueue(
        self,
        content: str,
        recipient: str = BROADCAST,
        priority: Priority = Priority.NORMAL,
        requires_internet: bool = False,
        kind: MessageKind = MessageKind.TEXT,
    ) -> str:
        """Queue a new message from the local node and return its id."""
        ttl = self._config.emergency_ttl if priority is Priority.EMERGENCY else self._config.default_ttl
        message = Message.create(
            sender=self._local_id,
            recipient=recipient,
            content=content,
            priority=priority,
            requires_internet=requires_internet,
            kind=kind,
            ttl=ttl,
            timestamp=self._clock(),
        )
        self.submit(message)
        logger.info("Queued message %s for %s (priority=%s)", message.id, recipient, priority.value)
        return message.id

    def submit(self, message: Message) -> None:
        """Queue an already-built message, e.g. one coming back from storage."""
        self._queue.push(message)
        self._states[message.id] = MessageState.QUEUED

    def resubmit_stored(self) -> int:
        """Move every stored message back onto the queue."""
        messages = self._store.drain()
        for message in messages:
            self.submit(message)
        if messages:
            logger.info("Resubmitted %d stored message(s)", len(messages))
        return len(messages)

    # --- Consumer API --------------------------------------------------------

    def add_outcome_listener(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    @property
    def recent_outcomes(self) -> List[DeliveryOutcome]:
        return list(self._outcomes)

    @property
    def ledger(self) -> PerformanceLedger:
        return self._ledger

    @property
    def local_id(self) -> str:
        return self._local_id

    @property
    def is_active(self) -> bool:
        return self._active

    def state_of(self, message_id: str) -> Optional[MessageState]:
        state = self._states.get(message_id)
        if state is not None:
            return state
        for outcome in reversed(self._outcomes):
            if outcome.message_id == message_id:
                return outcome.state
        return None

    def status(self) -> NetworkStatus:
        snapshot = self._topology.snapshot()
        local = snapshot.node(self._local_id)
        if local is None:
            # Evicted by someone else; report the node this loop was built with.
            local = self._local_node
            discovered = snapshot.node_count()
        else:
            discovered = snapshot.node_count() - 1
        return NetworkStatus(
            is_active=self._active,
            discovered_node_count=discovered,
            active_connection_count=len(snapshot.outgoing(self._local_id)),
            gateway_count=len(snapshot.gateway_ids()),
            queued_message_count=len(self._queue),
            local_node=local,
        )

    def decide(self, message: Message) -> RoutingDecision:
        """Routing decision for message against the current topology, without sending."""
        return self._assembler.decide(message, self._topology.snapshot(), origin=self._local_id)

    # --- Scheduling ----------------------------------------------------------

    async def start(self) -> None:
        if self._active:
            return
        self._active = True
        self._task = asyncio.create_task(self.run())
        logger.info("Router loop started for %s", self._local_id)

    async def stop(self) -> None:
        """Stop the loop; returns only once the running tick has finished or been abandoned."""
        if not self._active:
            return
        self._active = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Router loop stopped")

    async def run(self) -> None:
        while self._active:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Router tick failed")
            await asyncio.sleep(self._config.processing_interval_s)

    async def tick(self) -> List[DeliveryOutcome]:
        """Process up to messages_per_tick eligible messages."""
        outcomes: List[DeliveryOutcome] = []
        for _ in range(self._config.messages_per_tick):
            message = self._queue.pop_ready(self._clock())
            if message is None:
                break
            try:
                outcome = await self.process(message)
            except asyncio.CancelledError:
                # Abandoned mid-flight; put it back untouched.
                self._queue.push_front(message)
                self._states[message.id] = MessageState.QUEUED
                raise
            except Exception:
                logger.exception("Routing message %s failed", message.id)
                outcome = self._finish(message, MessageState.DROPPED, "internal_error")
            outcomes.append(outcome)
        return outcomes

    # --- Per-message processing ----------------------------------------------

    async def process(self, message: Message) -> DeliveryOutcome:
        self._states[message.id] = MessageState.ROUTING
        if message.ttl <= 0:
            return self._finish(message, MessageState.DROPPED, "ttl_expired")

        snapshot = self._topology.snapshot()
        if message.is_broadcast and not message.requires_internet:
            self._states[message.id] = MessageState.ATTEMPTING
            return await self._fan_out(message.consume_hop(), snapshot)

        decision = self._assembler.decide(message, snapshot, origin=self._local_id)
        logger.info(
            "Routing decision for %s: %s (confidence=%.0f%%, strategy=%s) - %s",
            message.id,
            decision.selected_route.describe(),
            decision.confidence * 100,
            decision.retry_strategy.value,
            decision.reasoning,
        )

        if decision.should_store:
            return self._persist(message, "store_verdict")

        self._states[message.id] = MessageState.ATTEMPTING
        message = message.consume_hop()
        try:
            route = await self._attempt_all(message, decision, snapshot)
        except AllRoutesExhausted as exc:
            logger.info("%s", exc)
            return await self._apply_retry(message, decision, snapshot)
        return self._finish(message.traversed(route.path), MessageState.DELIVERED, "delivered", route)

    async def _attempt_all(self, message: Message, decision: RoutingDecision, snapshot: TopologySnapshot) -> Route:
        candidates = decision.candidates()
        for route in candidates:
            if await self._attempt(message, route, snapshot):
                return route
        raise AllRoutesExhausted(message.id, len(candidates))

    async def _attempt(self, message: Message, route: Route, snapshot: TopologySnapshot) -> bool:
        """One delivery attempt over one route; the outcome goes into the ledger."""
        try:
            await self._send(message, route, snapshot)
        except AttemptFailed as exc:
            logger.debug("%s", exc)
            self._ledger.record(route.key, False)
            return False
        latency_ms = max(0.0, (self._clock() - message.timestamp) * 1000.0)
        self._ledger.record(route.key, True, latency_ms)
        return True

    async def _send(self, message: Message, route: Route, snapshot: TopologySnapshot) -> None:
        if route.hop_count > 0:
            try:
                ok = await asyncio.wait_for(
                    self._transport.send(message, route), timeout=self._config.attempt_timeout_s
                )
            except AttemptFailed:
                raise
            except asyncio.TimeoutError as exc:
                raise AttemptFailed(route.key, "timed out") from exc
            except Exception as exc:
                logger.debug("Transport raised on %s", route.key, exc_info=True)
                raise AttemptFailed(route.key, f"{type(exc).__name__}: {exc}") from exc
            if not ok:
                raise AttemptFailed(route.key, "not acknowledged")

        if self._needs_internet_handoff(message, route, snapshot):
            await self._forward_to_internet(message, route)

    def _needs_internet_handoff(self, message: Message, route: Route, snapshot: TopologySnapshot) -> bool:
        if not (message.requires_internet or message.kind is MessageKind.SOS):
            return False
        if route.terminus == message.recipient:
            return False
        gateway = snapshot.node(route.terminus)
        return gateway is not None and gateway.has_internet_access

    async def _forward_to_internet(self, message: Message, route: Route) -> None:
        if self._forwarder is None:
            raise GatewayUnavailable(route.key, "no internet forwarder configured")
        try:
            ok = await asyncio.wait_for(
                self._forwarder.deliver(message, route.terminus), timeout=self._config.gateway_timeout_s
            )
        except GatewayUnavailable:
            raise
        except asyncio.TimeoutError as exc:
            raise GatewayUnavailable(route.key, "gateway timed out") from exc
        except Exception as exc:
            logger.debug("Forwarder raised on %s", route.key, exc_info=True)
            raise GatewayUnavailable(route.key, f"{type(exc).__name__}: {exc}") from exc
        if not ok:
            raise GatewayUnavailable(route.key, "gateway refused hand-off")

    async def _apply_retry(self, message: Message, decision: RoutingDecision, snapshot: TopologySnapshot) -> DeliveryOutcome:
        if message.ttl <= 0:
            return self._finish(message, MessageState.DROPPED, "ttl_expired")

        strategy = decision.retry_strategy
        if strategy is RetryStrategy.IMMEDIATE and message.last_retry_strategy is RetryStrategy.IMMEDIATE:
            strategy = RetryStrategy.BACKOFF
        logger.info("Applying retry strategy %s to %s", strategy.value, message.id)

        if strategy is RetryStrategy.BROADCAST:
            return await self._fan_out(message, snapshot)
        if strategy is RetryStrategy.WAIT_FOR_GATEWAY:
            return self._persist(message, "waiting_for_gateway")

        delay = self._config.backoff_delay(message.retry_count) if strategy is RetryStrategy.BACKOFF else 0.0
        requeued = replace(message, retry_count=message.retry_count + 1, last_retry_strategy=strategy)
        self._queue.push(requeued, eligible_at=self._clock() + delay)
        outcome = DeliveryOutcome(message.id, MessageState.REQUEUED, strategy.value, retry_count=requeued.retry_count)
        self._states[message.id] = MessageState.QUEUED
        self._notify(outcome)
        return outcome

    async def _fan_out(self, message: Message, snapshot: TopologySnapshot) -> DeliveryOutcome:
        """Attempt every neighbour of the local node at once, regardless of score."""
        neighbours = sorted(snapshot.outgoing(self._local_id))
        if not neighbours:
            return self._finish(message, MessageState.DROPPED, "no_neighbours")

        routes = [build_route(snapshot, (self._local_id, neighbour)) for neighbour in neighbours]
        results = await asyncio.gather(
            *(self._attempt(message, route, snapshot) for route in routes), return_exceptions=True
        )
        accepted: List[Route] = []
        for route, result in zip(routes, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error("Fan-out attempt over %s failed", route.key, exc_info=result)
                self._ledger.record(route.key, False)
            elif result:
                accepted.append(route)
        if not accepted:
            return self._finish(message, MessageState.DROPPED, "broadcast_unanswered")
        return self._finish(message.traversed(accepted[0].path), MessageState.DELIVERED, "broadcast", accepted[0])

    def _persist(self, message: Message, reason: str) -> DeliveryOutcome:
        self._store.store_message_for_later(message)
        return self._finish(message, MessageState.STORED, reason)

    def _finish(self, message: Message, state: MessageState, reason: str, route: Optional[Route] = None) -> DeliveryOutcome:
        outcome = DeliveryOutcome(message.id, state, reason, route, message.retry_count)
        self._states.pop(message.id, None)
        self._outcomes.append(outcome)
        if state is MessageState.DROPPED:
            logger.warning("Dropped message %s: %s", message.id, reason)
        else:
            logger.info("Message %s %s (%s)", message.id, state.value, reason)
        self._notify(outcome)
        return outcome

    def _notify(self, outcome: DeliveryOutcome) -> None:
        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception:
                logger.exception("Outcome listener failed for %s", outcome.message_id)

    def _gateways_available(self, gateways: FrozenSet[str]) -> None:
        if self._on_gateways_available is not None:
            self._on_gateways_available(gateways)
        else:
            self.resubmit_stored()
