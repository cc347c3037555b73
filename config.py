"""
Router and scenario configuration loaded from YAML.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ledger import DEFAULT_MAX_ENTRIES
from messages import DEFAULT_TTL, EMERGENCY_TTL
from pathfinding import LARGE_MESSAGE_BYTES


@dataclass(frozen=True)
class RouterConfig:
    local_node_id: str = "local"
    local_node_name: str = "Local Device"
    discovery_interval_s: float = 5.0
    processing_interval_s: float = 1.0
    messages_per_tick: int = 1
    attempt_timeout_s: float = 5.0
    gateway_timeout_s: float = 10.0
    backoff_base_s: float = 1.0
    backoff_max_s: float = 60.0
    default_ttl: int = DEFAULT_TTL
    emergency_ttl: int = EMERGENCY_TTL
    ledger_max_entries: int = DEFAULT_MAX_ENTRIES
    # None disables stale-node eviction.
    freshness_window_s: Optional[float] = 60.0
    large_message_bytes: int = LARGE_MESSAGE_BYTES
    outcome_history: int = 256

    def __post_init__(self) -> None:
        for name in ("discovery_interval_s", "processing_interval_s", "attempt_timeout_s", "gateway_timeout_s"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.messages_per_tick < 1:
            raise ValueError("messages_per_tick must be at least 1")
        if self.backoff_base_s < 0 or self.backoff_max_s < self.backoff_base_s:
            raise ValueError("backoff bounds must satisfy 0 <= base <= max")
        if self.default_ttl < 0 or self.emergency_ttl < 0:
            raise ValueError("TTLs must be non-negative")

    def backoff_delay(self, retry_count: int) -> float:
        return min(self.backoff_base_s * (2 ** retry_count), self.backoff_max_s)


@dataclass(frozen=True)
class NodeSpec:
    id: str
    name: str
    trust_score: float = 0.5
    battery_level: float = 1.0
    has_internet_access: bool = False


@dataclass(frozen=True)
class EdgeSpec:
    source: str
    target: str
    reliability: float = 1.0
    bandwidth: float = 100.0
    symmetric: bool = True


@dataclass(frozen=True)
class MessageSpec:
    content: str
    recipient: str
    priority: str = "normal"
    requires_internet: bool = False
    kind: str = "text"


@dataclass(frozen=True)
class ScenarioConfig:
    name: str
    nodes: Sequence[NodeSpec]
    edges: Sequence[EdgeSpec]
    messages: Sequence[MessageSpec]
    success_probability: float = 0.7
    max_ticks: int = 50


@dataclass(frozen=True)
class RunnerConfig:
    seed: int
    seed_count: int
    router: RouterConfig
    scenarios: Sequence[ScenarioConfig]


def _build(cls, data: Optional[Mapping[str, Any]]):
    data = dict(data or {})
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"unknown {cls.__name__} keys: {', '.join(unknown)}")
    return cls(**data)


def router_config_from_dict(data: Optional[Mapping[str, Any]]) -> RouterConfig:
    return _build(RouterConfig, data)


def scenario_from_dict(data: Mapping[str, Any]) -> ScenarioConfig:
    payload: Dict[str, Any] = dict(data)
    payload["nodes"] = [_build(NodeSpec, n) for n in payload.get("nodes", [])]
    payload["edges"] = [_build(EdgeSpec, e) for e in payload.get("edges", [])]
    payload["messages"] = [_build(MessageSpec, m) for m in payload.get("messages", [])]
    return _build(ScenarioConfig, payload)


def load_router_config(path: Path) -> RouterConfig:
    import yaml  # type: ignore

    data = yaml.safe_load(path.read_text()) or {}
    return router_config_from_dict(data.get("router", data))


def load_config(path: Path) -> RunnerConfig:
    import yaml  # type: ignore

    data = yaml.safe_load(path.read_text())
    scenarios: List[ScenarioConfig] = [scenario_from_dict(s) for s in data["scenarios"]]
    return RunnerConfig(
        seed=int(data["seed"]),
        seed_count=int(data["seed_count"]),
        router=router_config_from_dict(data.get("router")),
        scenarios=scenarios,
    )
