"""Tests for alert destinations and monitor metrics."""

import logging
import pytest
import requests
from unittest.mock import MagicMock

from prometheus_client import CollectorRegistry

from infragraph.config import Settings
from infragraph.core.graph import AlertInstance, Severity, SyncRecord, SyncStatus, utcnow
from infragraph.errors import DispatchError
from infragraph.monitoring.destinations import CallbackDestination, LogDestination, WebhookDestination
from infragraph.monitoring.metrics import MonitorMetrics


def _alert(severity=Severity.WARNING, rule_id="orphan"):
    return AlertInstance(rule_id, "cost", severity, "Orphaned resource", ["aws:1:us-east-1:compute:i-1"], 12.5)


class TestWebhookDestination:
    """Tests for WebhookDestination."""

    def test_posts_json_payload(self):
        """Test alerts are posted as a JSON batch."""
        session = MagicMock()
        destination = WebhookDestination("https://hooks.example.com/x", timeout=5, session=session)

        destination.deliver([_alert()])

        kwargs = session.post.call_args.kwargs
        assert session.post.call_args[0][0] == "https://hooks.example.com/x"
        assert kwargs["json"]["count"] == 1
        assert kwargs["json"]["alerts"][0]["rule_id"] == "orphan"
        assert kwargs["json"]["alerts"][0]["severity"] == "warning"
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert kwargs["timeout"] == 5
        session.post.return_value.raise_for_status.assert_called_once()

    def test_no_timeout_by_default(self):
        """Test the request waits indefinitely unless a timeout is set."""
        session = MagicMock()
        WebhookDestination("https://hooks.example.com/x", session=session).deliver([_alert()])
        assert session.post.call_args.kwargs["timeout"] is None

    def test_request_failure_raises_dispatch_error(self):
        """Test transport errors become DispatchError."""
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(DispatchError) as exc_info:
            WebhookDestination("https://hooks.example.com/x", session=session).deliver([_alert()])

        assert exc_info.value.destination == "webhook"

    def test_http_error_raises_dispatch_error(self):
        """Test non-2xx responses become DispatchError."""
        session = MagicMock()
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("500")
        with pytest.raises(DispatchError):
            WebhookDestination("https://hooks.example.com/x", session=session).deliver([_alert()])

    def test_from_settings(self, clean_environment):
        """Test a webhook is only built when a URL is configured."""
        assert WebhookDestination.from_settings(Settings()) is None
        destination = WebhookDestination.from_settings(
            Settings(webhook_url="https://hooks.example.com/x", webhook_timeout=3)
        )
        assert destination.url == "https://hooks.example.com/x"
        assert destination.timeout == 3


class TestLogDestination:
    """Tests for LogDestination."""

    def test_levels_follow_severity(self, caplog):
        """Test critical alerts log at ERROR and warnings at WARNING."""
        with caplog.at_level(logging.INFO, logger="infragraph.alerts"):
            LogDestination().deliver([_alert(Severity.CRITICAL, "spof"), _alert(Severity.WARNING)])

        levels = [(r.levelno, r.getMessage()) for r in caplog.records]
        assert levels[0][0] == logging.ERROR
        assert "[critical] spof" in levels[0][1]
        assert levels[1][0] == logging.WARNING


class TestCallbackDestination:
    """Tests for CallbackDestination."""

    def test_receives_list(self):
        """Test the callback receives the alerts as a list."""
        received = []
        CallbackDestination(received.append).deliver((_alert(),))
        assert len(received[0]) == 1

    def test_callback_error_wrapped(self):
        """Test callback exceptions become DispatchError."""
        def broken(alerts):
            raise RuntimeError("boom")

        with pytest.raises(DispatchError):
            CallbackDestination(broken, name="pager").deliver([_alert()])


class TestMonitorMetrics:
    """Tests for MonitorMetrics."""

    @pytest.fixture
    def metrics(self):
        return MonitorMetrics(CollectorRegistry())

    def test_cycle_and_alert_counters(self, metrics):
        """Test cycles and alerts are counted with their labels."""
        metrics.record_cycle("ok", 1.5)
        metrics.record_alerts([_alert(Severity.CRITICAL), _alert(Severity.CRITICAL)])

        registry = metrics.registry
        assert registry.get_sample_value("infragraph_monitor_cycles_total", {"outcome": "ok"}) == 1.0
        assert registry.get_sample_value(
            "infragraph_alerts_total", {"rule": "orphan", "severity": "critical"}
        ) == 2.0
        assert registry.get_sample_value("infragraph_monitor_cycle_duration_seconds_count") == 1.0

    def test_suppressed_ignores_zero(self, metrics):
        """Test zero suppressions leave the counter unlabelled."""
        metrics.record_suppressed("cap", 0)
        metrics.record_suppressed("cooldown", 3)
        registry = metrics.registry
        assert registry.get_sample_value("infragraph_alerts_suppressed_total", {"reason": "cap"}) is None
        assert registry.get_sample_value("infragraph_alerts_suppressed_total", {"reason": "cooldown"}) == 3.0

    def test_nodes_discovered_gauge(self, metrics):
        """Test the gauge holds the last sync's count per provider."""
        record = SyncRecord("aws", SyncStatus.COMPLETED, started_at=utcnow(), nodes_discovered=42)
        metrics.record_syncs([record])
        assert metrics.registry.get_sample_value("infragraph_nodes_discovered", {"provider": "aws"}) == 42.0

    def test_render(self, metrics):
        """Test the text exposition includes the metric names."""
        metrics.record_dispatch_failure("webhook")
        output = metrics.render()
        assert b"infragraph_dispatch_failures_total" in output
        assert b'destination="webhook"' in output

    def test_separate_registries(self):
        """Test two instances never collide on metric names."""
        MonitorMetrics(CollectorRegistry())
        MonitorMetrics(CollectorRegistry())
