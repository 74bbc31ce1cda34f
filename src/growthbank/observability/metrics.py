"""
Prometheus Metrics Integration.

Provides metrics collection and export for the coin engine.
"""

from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    REGISTRY,
    start_http_server,
)


class CoinMetrics:
    """
    Prometheus metrics collector for GrowthBank.

    Exposes metrics:
    - growthbank_ledger_entries_total{change_kind="..."}
    - growthbank_coins_moved_total{change_kind="..."}
    - growthbank_rejected_spends_total
    - growthbank_user_balance{user_id="..."}
    - growthbank_decay_entries_total{rule_id="..."}
    - growthbank_decay_failures_total{stage="..."}
    - growthbank_decay_cycle_seconds{lane="full|urgent|manual"}

    Pass a dedicated ``CollectorRegistry`` when several instances live in
    one process (tests, multiple engines).
    """

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        prefix: str = "growthbank",
        track_user_balances: bool = True,
    ):
        self.registry = registry if registry is not None else REGISTRY
        self.track_user_balances = track_user_balances

        self.ledger_entries_total = Counter(
            f"{prefix}_ledger_entries_total",
            "Ledger entries appended",
            ["change_kind"],
            registry=self.registry,
        )
        self.coins_moved_total = Counter(
            f"{prefix}_coins_moved_total",
            "Absolute coins moved through the ledger",
            ["change_kind"],
            registry=self.registry,
        )
        self.rejected_spends_total = Counter(
            f"{prefix}_rejected_spends_total",
            "Spends rejected for insufficient balance",
            registry=self.registry,
        )
        self.user_balance = Gauge(
            f"{prefix}_user_balance",
            "Current balance per user",
            ["user_id"],
            registry=self.registry,
        )
        self.decay_entries_total = Counter(
            f"{prefix}_decay_entries_total",
            "Decay entries written",
            ["rule_id"],
            registry=self.registry,
        )
        self.decay_failures_total = Counter(
            f"{prefix}_decay_failures_total",
            "Decay triples or users that failed and were skipped",
            ["stage"],
            registry=self.registry,
        )
        self.decay_cycle_seconds = Histogram(
            f"{prefix}_decay_cycle_seconds",
            "Decay cycle duration in seconds",
            ["lane"],
            registry=self.registry,
        )

    def record_entry(self, change_kind: str, amount: int) -> None:
        self.ledger_entries_total.labels(change_kind=change_kind).inc()
        self.coins_moved_total.labels(change_kind=change_kind).inc(abs(amount))

    def record_balance(self, user_id: str, balance: int) -> None:
        if self.track_user_balances:
            self.user_balance.labels(user_id=user_id).set(balance)

    def record_rejected_spend(self) -> None:
        self.rejected_spends_total.inc()

    def record_decay(self, rule_id: str) -> None:
        self.decay_entries_total.labels(rule_id=rule_id).inc()

    def record_decay_failure(self, stage: str) -> None:
        self.decay_failures_total.labels(stage=stage).inc()

    def observe_cycle(self, lane: str, seconds: float) -> None:
        self.decay_cycle_seconds.labels(lane=lane).observe(seconds)

    def serve(self, port: int = 9090, addr: str = "0.0.0.0") -> None:
        """Start an HTTP endpoint exposing this collector's registry."""
        start_http_server(port, addr=addr, registry=self.registry)
