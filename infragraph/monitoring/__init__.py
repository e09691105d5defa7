"""Continuous monitoring: alert rules, destinations and the scheduler."""

from infragraph.monitoring.destinations import (
    AlertDestination,
    CallbackDestination,
    LogDestination,
    WebhookDestination,
)
from infragraph.monitoring.metrics import MonitorMetrics
from infragraph.monitoring.monitor import CycleResult, InfraMonitor
from infragraph.monitoring.rules import (
    AlertEvaluationContext,
    AlertRule,
    RuleThresholds,
    builtin_rules,
    cost_anomaly_rule,
    disappeared_rule,
    orphan_rule,
    spof_rule,
    unauthorized_change_rule,
)

__all__ = [
    "AlertDestination",
    "AlertEvaluationContext",
    "AlertRule",
    "CallbackDestination",
    "CycleResult",
    "InfraMonitor",
    "LogDestination",
    "MonitorMetrics",
    "RuleThresholds",
    "WebhookDestination",
    "builtin_rules",
    "cost_anomaly_rule",
    "disappeared_rule",
    "orphan_rule",
    "spof_rule",
    "unauthorized_change_rule",
]
