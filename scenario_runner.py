"""
CLI to run routing scenarios across multiple seeds.

Reads scenarios/scenarios.yml, builds a static mesh per scenario, drives a
RouterLoop over a seeded SimulatedTransport on a simulated clock, and writes
per-run and aggregate delivery metrics.
"""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Set, Tuple
import asyncio
import csv
from concurrent.futures import ProcessPoolExecutor, as_completed
import time

from config import (
    RouterConfig,
    ScenarioConfig,
    load_config,
    router_config_from_dict,
    scenario_from_dict,
)
from graph import Edge
from mesh_network import default_local_node
from messages import MessageKind, Priority
from nodes import MeshNode
from router_loop import DeliveryOutcome, MessageState, RouterLoop
from topology import TopologyStore
from transport import InMemoryMessageStore, LoggingInternetForwarder, SimulatedTransport

RUN_FIELDS = [
    "scenario",
    "seed",
    "nodes",
    "edges",
    "messages",
    "delivered",
    "stored",
    "dropped",
    "pending",
    "delivery_ratio",
    "ticks",
    "transport_attempts",
    "ledger_entries",
    "duration_sec",
]

AGGREGATE_FIELDS = [
    "scenario",
    "runs",
    "avg_delivery_ratio",
    "avg_delivered",
    "avg_stored",
    "avg_dropped",
    "avg_ticks",
]


class _SimClock:
    """Manually advanced clock so backoff delays elapse without sleeping."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def build_topology(scenario: ScenarioConfig, router_cfg: RouterConfig, now: float) -> Tuple[TopologyStore, MeshNode]:
    store = TopologyStore()
    local = default_local_node(router_cfg, now)
    for spec in scenario.nodes:
        node = MeshNode(
            _id=spec.id,
            name=spec.name,
            battery_level=spec.battery_level,
            has_internet_access=spec.has_internet_access,
            is_gateway=spec.has_internet_access,
            last_seen=now,
            trust_score=spec.trust_score,
        )
        if node.id == router_cfg.local_node_id:
            local = node
        else:
            store.upsert_node(node)
    # The router loop inserts the local node itself; edges need it present now.
    store.upsert_node(local)
    for spec in scenario.edges:
        store.upsert_edge(Edge(spec.source, spec.target, spec.reliability, spec.bandwidth))
        if spec.symmetric:
            store.upsert_edge(Edge(spec.target, spec.source, spec.reliability, spec.bandwidth))
    return store, local


async def _drive(scenario: ScenarioConfig, router_cfg: RouterConfig, seed: int) -> Dict[str, object]:
    clock = _SimClock()
    topology, local = build_topology(scenario, router_cfg, clock())
    transport = SimulatedTransport(scenario.success_probability, seed=seed)
    router = RouterLoop(
        topology,
        local,
        transport,
        forwarder=LoggingInternetForwarder(),
        store=InMemoryMessageStore(),
        config=router_cfg,
        clock=clock,
    )
    for spec in scenario.messages:
        router.enqueue(
            spec.content,
            spec.recipient,
            priority=Priority(spec.priority),
            requires_internet=spec.requires_internet,
            kind=MessageKind(spec.kind),
        )

    counts = {state: 0 for state in (MessageState.DELIVERED, MessageState.STORED, MessageState.DROPPED)}

    def count(outcome: DeliveryOutcome) -> None:
        if outcome.state in counts:
            counts[outcome.state] += 1

    router.add_outcome_listener(count)

    ticks = 0
    while ticks < scenario.max_ticks and router.status().queued_message_count:
        await router.tick()
        clock.now += router_cfg.processing_interval_s
        ticks += 1

    total = len(scenario.messages)
    delivered = counts[MessageState.DELIVERED]
    return {
        "nodes": topology.snapshot().node_count(),
        "edges": len(scenario.edges),
        "messages": total,
        "delivered": delivered,
        "stored": counts[MessageState.STORED],
        "dropped": counts[MessageState.DROPPED],
        "pending": router.status().queued_message_count,
        "delivery_ratio": delivered / total if total else 0.0,
        "ticks": ticks,
        "transport_attempts": transport.attempts,
        "ledger_entries": len(router.ledger),
    }


def _run_task(scenario_dict: Dict[str, object], router_dict: Dict[str, object], seed: int) -> Dict[str, object]:
    start_run = time.time()
    scenario = scenario_from_dict(scenario_dict)
    router_cfg = router_config_from_dict(router_dict)
    metrics = asyncio.run(_drive(scenario, router_cfg, seed))
    return {
        "scenario": scenario.name,
        "seed": seed,
        "metrics": metrics,
        "duration_sec": time.time() - start_run,
    }


def run_scenarios(
    config_path: Path,
    runs_csv: Path | None = None,
    aggregates_csv: Path | None = None,
    max_workers: int | None = None,
    use_processes: bool = True,
) -> List[Dict[str, object]]:
    cfg = load_config(config_path)
    start = time.time()

    existing_runs = load_runs_csv(runs_csv) if runs_csv else []
    seen_keys: Set[Tuple[str, int]] = {(str(r.get("scenario")), int(r.get("seed"))) for r in existing_runs}

    router_dict = asdict(cfg.router)
    tasks: List[tuple[ScenarioConfig, int]] = []
    for scenario in cfg.scenarios:
        for offset in range(cfg.seed_count):
            seed = cfg.seed + offset
            if (scenario.name, seed) in seen_keys:
                continue
            tasks.append((scenario, seed))

    print(f"[run] queued {len(tasks)} new tasks (existing runs: {len(seen_keys)})")

    new_results: List[Dict[str, object]] = []
    if tasks:
        if use_processes:
            try:
                with ProcessPoolExecutor(max_workers=max_workers) as executor:
                    future_to_task = {
                        executor.submit(_run_task, asdict(scenario), router_dict, seed): (scenario.name, seed)
                        for scenario, seed in tasks
                    }
                    for future in as_completed(future_to_task):
                        name, seed = future_to_task[future]
                        try:
                            res = future.result()
                            new_results.append(res)
                            if runs_csv:
                                append_run_row(runs_csv, res)
                            print(f"[run] completed scenario={name} seed={seed} duration={res['duration_sec']:.2f}s")
                        except Exception as exc:
                            print(f"[run] failed scenario={name} seed={seed}: {exc}")
            except (PermissionError, NotImplementedError, OSError) as exc:
                print(f"[run] process pool unavailable ({exc}), falling back to sequential execution")
                use_processes = False
        else:
            print("[run] using sequential execution")

        if not use_processes:
            for scenario, seed in tasks:
                res = _run_task(asdict(scenario), router_dict, seed)
                new_results.append(res)
                if runs_csv:
                    append_run_row(runs_csv, res)
                print(f"[run] completed scenario={scenario.name} seed={seed} duration={res['duration_sec']:.2f}s")

    results = existing_runs + new_results

    if aggregates_csv:
        write_aggregates_csv(aggregate_by_scenario(results), aggregates_csv)

    elapsed = time.time() - start
    print(f"[run] completed {len(results)} total runs in {elapsed:.2f}s")
    return results


def _metrics_of(res: Mapping[str, object]) -> Mapping[str, object]:
    metrics = res.get("metrics")
    if metrics is None:
        # Resumed rows carry metrics flattened at the top level.
        return res
    return metrics  # type: ignore[return-value]


def aggregate_by_scenario(results: Iterable[Mapping[str, object]]) -> List[Dict[str, object]]:
    """
    Average delivery metrics per scenario across seeds.
    """
    sums: Dict[str, Dict[str, float]] = {}
    counts: Dict[str, int] = {}
    for res in results:
        name = str(res["scenario"])
        metrics = _metrics_of(res)
        counts[name] = counts.get(name, 0) + 1
        bucket = sums.setdefault(name, {"delivery_ratio": 0.0, "delivered": 0.0, "stored": 0.0, "dropped": 0.0, "ticks": 0.0})
        for key in bucket:
            bucket[key] += float(metrics.get(key, 0.0))  # type: ignore[arg-type]

    rows: List[Dict[str, object]] = []
    for name, bucket in sums.items():
        n = counts[name]
        rows.append(
            {
                "scenario": name,
                "runs": n,
                "avg_delivery_ratio": bucket["delivery_ratio"] / n,
                "avg_delivered": bucket["delivered"] / n,
                "avg_stored": bucket["stored"] / n,
                "avg_dropped": bucket["dropped"] / n,
                "avg_ticks": bucket["ticks"] / n,
            }
        )
    return rows


def _run_row(res: Mapping[str, object]) -> Dict[str, object]:
    metrics = _metrics_of(res)
    row: Dict[str, object] = {"scenario": res.get("scenario"), "seed": res.get("seed"), "duration_sec": res.get("duration_sec", 0.0)}
    for key in RUN_FIELDS:
        if key not in row:
            row[key] = metrics.get(key)
    return row


def load_runs_csv(path: Path | None) -> List[Dict[str, object]]:
    if path is None or not path.exists():
        return []
    with path.open() as f:
        rows: List[Dict[str, object]] = []
        for row in csv.DictReader(f):
            parsed: Dict[str, object] = dict(row)
            # Normalise numeric fields so aggregation works on resumed runs.
            parsed["seed"] = int(row.get("seed", 0))
            for key in ("nodes", "edges", "messages", "delivered", "stored", "dropped", "pending", "ticks", "transport_attempts", "ledger_entries"):
                if row.get(key):
                    parsed[key] = int(row[key])
            for key in ("delivery_ratio", "duration_sec"):
                if row.get(key):
                    parsed[key] = float(row[key])
            rows.append(parsed)
        return rows


def append_run_row(path: Path, res: Mapping[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    write_header = not path.exists()
    with path.open("a", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=RUN_FIELDS)
        if write_header:
            writer.writeheader()
        writer.writerow(_run_row(res))


def write_aggregates_csv(aggregated: Iterable[Mapping[str, object]], path: Path) -> None:
    """
    Write aggregated metrics by scenario to CSV.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=AGGREGATE_FIELDS)
        writer.writeheader()
        for row in aggregated:
            writer.writerow({key: row.get(key, "") for key in AGGREGATE_FIELDS})


def main() -> None:
    config_path = Path(__file__).parent / "scenarios" / "scenarios.yml"
    out_dir = Path(__file__).parent / "scenarios" / "results"
    runs_csv = out_dir / "runs.csv"
    aggregates_csv = out_dir / "aggregates.csv"

    results = run_scenarios(config_path, runs_csv=runs_csv, aggregates_csv=aggregates_csv)
    print("Aggregated by scenario:", aggregate_by_scenario(results))
    print(f"Wrote runs to {runs_csv} and aggregates to {aggregates_csv}")


if __name__ == "__main__":
    main()
