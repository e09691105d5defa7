"""Prometheus metrics for the monitor.

Metrics are bound to an explicitly passed CollectorRegistry so several
monitors (and test cases) never collide on the process-global registry.
"""

from __future__ import annotations

from typing import Optional, Sequence

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from infragraph.core.graph import AlertInstance, SyncRecord


class MonitorMetrics:
    """Cycle, alert, dispatch and discovery metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.cycles = Counter(
            "infragraph_monitor_cycles_total",
            "Monitor cycles by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.cycle_duration = Histogram(
            "infragraph_monitor_cycle_duration_seconds",
            "Monitor cycle duration in seconds",
            buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0],
            registry=self.registry,
        )
        self.alerts = Counter(
            "infragraph_alerts_total",
            "Alerts fired by rule and severity",
            ["rule", "severity"],
            registry=self.registry,
        )
        self.alerts_suppressed = Counter(
            "infragraph_alerts_suppressed_total",
            "Alerts dropped by cooldown or the per-cycle cap",
            ["reason"],
            registry=self.registry,
        )
        self.dispatch_failures = Counter(
            "infragraph_dispatch_failures_total",
            "Failed alert deliveries by destination",
            ["destination"],
            registry=self.registry,
        )
        self.nodes_discovered = Gauge(
            "infragraph_nodes_discovered",
            "Nodes discovered by the last sync of each provider",
            ["provider"],
            registry=self.registry,
        )

    def record_cycle(self, outcome: str, duration_seconds: float) -> None:
        self.cycles.labels(outcome=outcome).inc()
        self.cycle_duration.observe(duration_seconds)

    def record_syncs(self, records: Sequence[SyncRecord]) -> None:
        for record in records:
            self.nodes_discovered.labels(provider=record.provider).set(record.nodes_discovered)

    def record_alerts(self, alerts: Sequence[AlertInstance]) -> None:
        for alert in alerts:
            self.alerts.labels(rule=alert.rule_id, severity=alert.severity.value).inc()

    def record_suppressed(self, reason: str, count: int) -> None:
        if count:
            self.alerts_suppressed.labels(reason=reason).inc(count)

    def record_dispatch_failure(self, destination: str) -> None:
        self.dispatch_failures.labels(destination=destination).inc()

    def render(self) -> bytes:
        """Text exposition of every metric in the registry."""
        return generate_latest(self.registry)
