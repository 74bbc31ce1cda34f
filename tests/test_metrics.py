"""Tests for CoinMetrics Prometheus integration."""

import pytest
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from growthbank.observability import CoinMetrics


@pytest.fixture
def registry():
    return CollectorRegistry()


class TestCoinMetricsCreation:
    """Verify metrics are created with correct names and types."""

    def test_types(self, registry):
        m = CoinMetrics(registry=registry)
        assert isinstance(m.ledger_entries_total, Counter)
        assert isinstance(m.user_balance, Gauge)
        assert isinstance(m.decay_cycle_seconds, Histogram)

    def test_instances_need_separate_registries(self, registry):
        CoinMetrics(registry=registry)
        with pytest.raises(ValueError):
            CoinMetrics(registry=registry)
        CoinMetrics(registry=CollectorRegistry())

    def test_custom_prefix(self, registry):
        m = CoinMetrics(registry=registry, prefix="school")
        m.record_rejected_spend()
        assert registry.get_sample_value("school_rejected_spends_total") == 1.0


class TestRecording:
    def test_record_entry(self, registry):
        m = CoinMetrics(registry=registry)
        m.record_entry("decayed", -7)
        m.record_entry("decayed", -3)
        assert registry.get_sample_value(
            "growthbank_ledger_entries_total", {"change_kind": "decayed"}
        ) == 2.0
        assert registry.get_sample_value(
            "growthbank_coins_moved_total", {"change_kind": "decayed"}
        ) == 10.0

    def test_record_balance(self, registry):
        m = CoinMetrics(registry=registry)
        m.record_balance("alice", 40)
        m.record_balance("alice", 15)
        assert registry.get_sample_value("growthbank_user_balance", {"user_id": "alice"}) == 15.0

    def test_balance_tracking_can_be_disabled(self, registry):
        m = CoinMetrics(registry=registry, track_user_balances=False)
        m.record_balance("alice", 40)
        assert registry.get_sample_value("growthbank_user_balance", {"user_id": "alice"}) is None

    def test_decay_metrics(self, registry):
        m = CoinMetrics(registry=registry)
        m.record_decay("general-30d")
        m.record_decay_failure("session")
        m.observe_cycle("full", 1.5)
        assert registry.get_sample_value(
            "growthbank_decay_entries_total", {"rule_id": "general-30d"}
        ) == 1.0
        assert registry.get_sample_value(
            "growthbank_decay_failures_total", {"stage": "session"}
        ) == 1.0
        assert registry.get_sample_value(
            "growthbank_decay_cycle_seconds_sum", {"lane": "full"}
        ) == 1.5
