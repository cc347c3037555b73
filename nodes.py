"""
Node abstraction for the mesh.

Concrete mesh devices (phones, tablets, relay bots, gateways) implement this
interface. Nodes are immutable snapshots of the last sighting; the topology
store replaces them wholesale when a device is seen again.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class Node(ABC):
    """Abstract node in the mesh."""

    @property
    @abstractmethod
    def id(self) -> str:
        """
        Stable identifier across sightings.
        """
        raise NotImplementedError


class DeviceClass(Enum):
    PHONE = "phone"
    TABLET = "tablet"
    COMPUTER = "computer"
    RELAY_BOT = "relay_bot"


class TransportKind(Enum):
    """Radio or uplink a node can use to move traffic."""

    BLUETOOTH = "bluetooth"
    WIFI_DIRECT = "wifi_direct"
    LORA = "lora"
    CELLULAR = "cellular"
    INTERNET_GATEWAY = "internet_gateway"


@dataclass(frozen=True)
class Capability:
    transport: TransportKind
    strength: float
    range_m: float
    active: bool = True


@dataclass(frozen=True)
class Position:
    lat: float  # degrees
    lng: float  # degrees
    accuracy: Optional[float] = None  # metres


def _check_unit(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


@dataclass(frozen=True)
class MeshNode(Node):
    """
    Concrete mesh device as last reported by discovery.

    battery_level, signal_strength and trust_score are unit-interval values.
    last_seen is an epoch timestamp in seconds.
    """

    _id: str
    name: str
    device_class: DeviceClass = DeviceClass.PHONE
    battery_level: float = 1.0
    signal_strength: float = 1.0
    is_gateway: bool = False
    has_internet_access: bool = False
    last_seen: float = 0.0
    capabilities: Tuple[Capability, ...] = ()
    trust_score: float = 0.5
    position: Optional[Position] = None

    def __post_init__(self) -> None:
        _check_unit("battery_level", self.battery_level)
        _check_unit("signal_strength", self.signal_strength)
        _check_unit("trust_score", self.trust_score)

    @property
    def id(self) -> str:
        return self._id

    def is_stale(self, now: float, freshness_window: float) -> bool:
        """True once the node has not been sighted for longer than the window."""
        return now - self.last_seen > freshness_window
