"""
MeshNetwork: the owning service object for one local device.

Holds the topology store, router loop and discovery feed, and runs the two
periodic activities side by side.
"""

from __future__ import annotations

from typing import Callable, Optional
import logging
import time

from config import RouterConfig
from discovery import DiscoveryFeed, DiscoverySource
from messages import BROADCAST, MessageKind, Priority
from nodes import Capability, DeviceClass, MeshNode, TransportKind
from router_loop import NetworkStatus, RouterLoop
from topology import TopologyStore
from transport import InternetForwarder, MessageStore, Transport

logger = logging.getLogger(__name__)


def default_local_node(config: RouterConfig, now: float) -> MeshNode:
    return MeshNode(
        _id=config.local_node_id,
        name=config.local_node_name,
        device_class=DeviceClass.PHONE,
        battery_level=0.8,
        signal_strength=1.0,
        last_seen=now,
        capabilities=(
            Capability(TransportKind.BLUETOOTH, strength=0.8, range_m=100.0),
            Capability(TransportKind.WIFI_DIRECT, strength=0.9, range_m=200.0),
        ),
        trust_score=1.0,
    )


class MeshNetwork:
    """
    Wires discovery and routing around one shared TopologyStore.
    """

    def __init__(
        self,
        source: DiscoverySource,
        transport: Transport,
        forwarder: Optional[InternetForwarder] = None,
        store: Optional[MessageStore] = None,
        config: Optional[RouterConfig] = None,
        local_node: Optional[MeshNode] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or RouterConfig()
        self.topology = TopologyStore()
        local = local_node or default_local_node(self.config, clock())
        self.router = RouterLoop(
            self.topology,
            local,
            transport,
            forwarder=forwarder,
            store=store,
            config=self.config,
            clock=clock,
        )
        self.discovery = DiscoveryFeed(
            self.topology,
            source,
            interval_s=self.config.discovery_interval_s,
            freshness_window_s=self.config.freshness_window_s,
            protected=(self.router.local_id,),
            clock=clock,
        )

    async def start(self) -> None:
        # One discovery pass first so the first routing tick has a topology.
        await self.discovery.tick()
        await self.discovery.start()
        await self.router.start()
        logger.info("Mesh network started")

    async def shutdown(self) -> None:
        """Stop both loops; nothing touches shared state once this returns."""
        await self.router.stop()
        await self.discovery.stop()
        logger.info("Mesh network shut down")

    def send_message(
        self,
        content: str,
        recipient: str = BROADCAST,
        priority: Priority = Priority.NORMAL,
        requires_internet: bool = False,
        kind: MessageKind = MessageKind.TEXT,
    ) -> str:
        return self.router.enqueue(content, recipient, priority, requires_internet, kind)

    def status(self) -> NetworkStatus:
        return self.router.status()
