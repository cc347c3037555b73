import pytest

from ledger import DEFAULT_AVERAGE_LATENCY_MS, PerformanceLedger


def test_success_rate_is_successes_over_attempts():
    ledger = PerformanceLedger()
    for _ in range(3):
        ledger.record("A-B", True, 100.0)
    for _ in range(2):
        ledger.record("A-B", False)

    entry = ledger.get("A-B")
    assert entry is not None
    assert entry.attempts == 5
    assert entry.successes == 3
    assert entry.success_rate == 3 / 5


def test_average_latency_counts_successes_only():
    ledger = PerformanceLedger()
    ledger.record("A-B", True, 100.0)
    ledger.record("A-B", False, 99999.0)
    ledger.record("A-B", True, 300.0)

    assert ledger.get("A-B").average_latency_ms == pytest.approx(200.0)


def test_failures_only_keep_default_latency():
    ledger = PerformanceLedger()
    ledger.record("A-B", False)
    ledger.record("A-B", False)

    entry = ledger.get("A-B")
    assert entry.success_rate == 0.0
    assert entry.average_latency_ms == DEFAULT_AVERAGE_LATENCY_MS


def test_unknown_key_has_no_entry():
    ledger = PerformanceLedger()

    assert ledger.get("A-B") is None
    assert "A-B" not in ledger
    assert len(ledger) == 0


def test_least_recently_used_key_is_evicted():
    ledger = PerformanceLedger(max_entries=2)
    ledger.record("a", True)
    ledger.record("b", True)
    ledger.record("a", False)
    ledger.record("c", True)

    assert "b" not in ledger
    assert "a" in ledger and "c" in ledger
    assert len(ledger) == 2
    assert ledger.get("a").attempts == 2


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        PerformanceLedger(max_entries=0)
