"""
Discovery feed: applies neighbour sightings to the topology store on its
own cadence.

The radio layer (Bluetooth, WiFi Direct, ...) is outside this package; it is
represented by a DiscoverySource that yields sighting and link-quality events.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Collection, Iterable, List, Optional, Protocol, Sequence, Union
import asyncio
import logging
import time

from graph import Edge
from nodes import MeshNode
from topology import TopologyStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeSighting:
    node: MeshNode


@dataclass(frozen=True)
class EdgeQuality:
    source: str
    target: str
    reliability: float
    bandwidth: float
    protocol: str = "bluetooth"
    symmetric: bool = True

    def edges(self) -> List[Edge]:
        forward = Edge(self.source, self.target, self.reliability, self.bandwidth, self.protocol)
        if not self.symmetric:
            return [forward]
        return [forward, Edge(self.target, self.source, self.reliability, self.bandwidth, self.protocol)]


DiscoveryEvent = Union[NodeSighting, EdgeQuality]


class DiscoverySource(Protocol):
    async def poll(self) -> Iterable[DiscoveryEvent]:
        """Return the events observed since the previous poll."""
        ...


class StaticDiscoverySource:
    """Replays the same events on every poll, refreshing last_seen each time."""

    def __init__(self, events: Sequence[DiscoveryEvent], clock: Callable[[], float] = time.time) -> None:
        self._events = list(events)
        self._clock = clock

    async def poll(self) -> Iterable[DiscoveryEvent]:
        now = self._clock()
        refreshed: List[DiscoveryEvent] = []
        for event in self._events:
            if isinstance(event, NodeSighting):
                event = NodeSighting(replace(event.node, last_seen=now))
            refreshed.append(event)
        return refreshed


class DiscoveryFeed:
    """
    Periodic discovery refresh.

    Each tick polls the source, applies node sightings before link reports
    (so links to newly seen nodes are not dropped), then evicts nodes that
    have been silent longer than the freshness window.
    """

    def __init__(
        self,
        topology: TopologyStore,
        source: DiscoverySource,
        interval_s: float = 5.0,
        freshness_window_s: Optional[float] = None,
        protected: Collection[str] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._topology = topology
        self._source = source
        self._interval_s = interval_s
        self._freshness_window_s = freshness_window_s
        self._protected = set(protected)
        self._clock = clock
        self._active = False
        self._task: Optional[asyncio.Task] = None

    def apply(self, events: Iterable[DiscoveryEvent]) -> int:
        """Apply events to the topology; returns the number of edges dropped."""
        events = list(events)
        dropped = 0
        for event in events:
            if isinstance(event, NodeSighting):
                self._topology.upsert_node(event.node)
        for event in events:
            if isinstance(event, EdgeQuality):
                for edge in event.edges():
                    if not self._topology.upsert_edge(edge):
                        dropped += 1
        return dropped

    def evict_stale(self) -> List[str]:
        if self._freshness_window_s is None:
            return []
        stale = [
            node_id
            for node_id in self._topology.stale_node_ids(self._clock(), self._freshness_window_s)
            if node_id not in self._protected
        ]
        for node_id in stale:
            self._topology.evict(node_id)
        if stale:
            logger.info("Evicted %d stale node(s): %s", len(stale), ", ".join(stale))
        return stale

    async def tick(self) -> None:
        events = await self._source.poll()
        dropped = self.apply(events)
        if dropped:
            logger.debug("Discovery dropped %d edge(s) with unknown endpoints", dropped)
        self.evict_stale()

    async def start(self) -> None:
        if self._active:
            return
        self._active = True
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
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

    async def run(self) -> None:
        while self._active:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Discovery cycle failed")
            await asyncio.sleep(self._interval_s)
