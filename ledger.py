"""
Performance ledger: per-path delivery history fed back into route scoring.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_AVERAGE_LATENCY_MS = 1000.0
DEFAULT_MAX_ENTRIES = 10_000


@dataclass
class LedgerEntry:
    attempts: int = 0
    successes: int = 0
    total_latency_ms: float = 0.0
    success_rate: float = 0.0
    average_latency_ms: float = DEFAULT_AVERAGE_LATENCY_MS


@dataclass
class PerformanceLedger:
    """
    Bernoulli delivery record per path key, bounded by an LRU cap.

    success_rate(k) = successes[k] / attempts[k]
    average_latency_ms(k) = total_latency_ms[k] / successes[k], holding its
    previous value while successes[k] is 0.

    Recording a key marks it most recently used; once more than max_entries
    keys are held, the least recently used one is evicted.
    """

    max_entries: int = DEFAULT_MAX_ENTRIES
    _entries: "OrderedDict[str, LedgerEntry]" = field(default_factory=OrderedDict)

    def __post_init__(self) -> None:
        if self.max_entries <= 0:
            raise ValueError("max_entries must be positive")

    def record(self, path_key: str, success: bool, latency_ms: float = 0.0) -> LedgerEntry:
        entry = self._entries.get(path_key)
        if entry is None:
            entry = LedgerEntry()
            self._entries[path_key] = entry
        self._entries.move_to_end(path_key)

        entry.attempts += 1
        if success:
            entry.successes += 1
            entry.total_latency_ms += latency_ms

        entry.success_rate = entry.successes / entry.attempts
        if entry.successes:
            entry.average_latency_ms = entry.total_latency_ms / entry.successes

        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return entry

    def get(self, path_key: str) -> Optional[LedgerEntry]:
        return self._entries.get(path_key)

    def __contains__(self, path_key: object) -> bool:
        return path_key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
