"""Alert rules evaluated by the InfraMonitor.

Every rule is a pure function of an AlertEvaluationContext: it reads the
graph through the context and returns the alerts that hold right now.
Cooldown, truncation and dispatch are the monitor's job.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from infragraph.core.graph import (
    AlertInstance,
    ChangeType,
    GraphStats,
    InitiatorType,
    NodeStatus,
    Severity,
    SyncRecord,
)
from infragraph.repositories.base import ChangeFilter, GraphStorage

# Categories
CATEGORY_COST = "cost"
CATEGORY_RESILIENCE = "resilience"
CATEGORY_SECURITY = "security"
CATEGORY_LIFECYCLE = "lifecycle"

DISAPPEARED_CRITICAL_COUNT = 5
COST_ANOMALY_TOP_NODES = 10

UNAUTHORIZED_CHANGE_TYPES = (
    ChangeType.NODE_CREATED,
    ChangeType.NODE_UPDATED,
    ChangeType.NODE_DRIFTED,
    ChangeType.NODE_DELETED,
)


@dataclass
class RuleThresholds:
    """Thresholds of the built-in rules."""

    orphan_critical_cost: float = 1000.0
    spof_min_out_degree: int = 5
    cost_anomaly_threshold: float = 0.20
    cost_anomaly_critical: float = 0.50

    @classmethod
    def from_settings(cls, settings) -> "RuleThresholds":
        return cls(
            orphan_critical_cost=settings.orphan_critical_cost,
            spof_min_out_degree=settings.spof_min_out_degree,
            cost_anomaly_threshold=settings.cost_anomaly_threshold,
            cost_anomaly_critical=settings.cost_anomaly_critical,
        )


@dataclass
class AlertEvaluationContext:
    """Everything a rule may read during one cycle.

    Attributes:
        storage: Graph storage
        sync_records: SyncRecords written during this cycle
        previous_stats: Stats of the previous cycle, None on the first cycle
        current_stats: Stats recomputed after this cycle's syncs
        engine: The GraphEngine, for rules needing traversals
        thresholds: Rule thresholds
    """

    storage: GraphStorage
    sync_records: Sequence[SyncRecord] = field(default_factory=list)
    previous_stats: Optional[GraphStats] = None
    current_stats: Optional[GraphStats] = None
    engine: Any = None
    thresholds: RuleThresholds = field(default_factory=RuleThresholds)


RuleEvaluator = Callable[[AlertEvaluationContext], List[AlertInstance]]


@dataclass
class AlertRule:
    """A named, toggleable alert rule."""

    id: str
    name: str
    category: str
    evaluate: RuleEvaluator
    description: str = ""
    enabled: bool = True


def _degrees(ctx: AlertEvaluationContext):
    edges = ctx.storage.list_edges()
    degree: Dict[str, int] = defaultdict(int)
    outgoing: Dict[str, set] = defaultdict(set)
    incoming: Dict[str, set] = defaultdict(set)
    for edge in edges:
        degree[edge.source_node_id] += 1
        degree[edge.target_node_id] += 1
        outgoing[edge.source_node_id].add(edge.target_node_id)
        incoming[edge.target_node_id].add(edge.source_node_id)
    return degree, outgoing, incoming


def orphan_rule(ctx: AlertEvaluationContext) -> List[AlertInstance]:
    """One alert per stored node without any edge."""
    degree, _, _ = _degrees(ctx)
    alerts = []
    for node in ctx.storage.list_nodes():
        if node.status == NodeStatus.DISAPPEARED or degree.get(node.id, 0) > 0:
            continue
        cost = node.cost_monthly or 0.0
        severity = Severity.CRITICAL if cost > ctx.thresholds.orphan_critical_cost else Severity.WARNING
        alerts.append(AlertInstance(
            rule_id="orphan",
            category=CATEGORY_COST,
            severity=severity,
            message=f"Orphaned {node.resource_type} '{node.name}' has no relationships (${cost:,.2f}/mo)",
            affected_node_ids=[node.id],
            cost_impact=node.cost_monthly,
        ))
    return alerts


def spof_rule(ctx: AlertEvaluationContext) -> List[AlertInstance]:
    """Star-shaped nodes whose dependents have no other upstream."""
    _, outgoing, incoming = _degrees(ctx)
    alerts = []
    for hub, leaves in sorted(outgoing.items()):
        leaves = leaves - {hub}
        if len(leaves) <= ctx.thresholds.spof_min_out_degree:
            continue
        # A leaf is uniquely reachable when the hub is its only upstream
        if any(incoming[leaf] - {hub, leaf} for leaf in leaves):
            continue
        node = ctx.storage.get_node(hub)
        if node is None or node.status == NodeStatus.DISAPPEARED:
            continue
        alerts.append(AlertInstance(
            rule_id="spof",
            category=CATEGORY_RESILIENCE,
            severity=Severity.CRITICAL,
            message=f"{node.resource_type} '{node.name}' is a single point of failure for {len(leaves)} resources",
            affected_node_ids=[hub] + sorted(leaves),
        ))
    return alerts


def cost_anomaly_rule(ctx: AlertEvaluationContext) -> List[AlertInstance]:
    """Alert when total monthly cost grew by more than the threshold."""
    if ctx.previous_stats is None or ctx.current_stats is None:
        return []
    previous = ctx.previous_stats.total_cost_monthly
    current = ctx.current_stats.total_cost_monthly
    if previous <= 0:
        return []
    ratio = (current - previous) / previous
    if ratio <= ctx.thresholds.cost_anomaly_threshold:
        return []

    top = sorted(
        (n for n in ctx.storage.list_nodes() if n.cost_monthly and n.status != NodeStatus.DISAPPEARED),
        key=lambda n: n.cost_monthly,
        reverse=True,
    )[:COST_ANOMALY_TOP_NODES]
    severity = Severity.CRITICAL if ratio > ctx.thresholds.cost_anomaly_critical else Severity.WARNING
    return [AlertInstance(
        rule_id="cost-anomaly",
        category=CATEGORY_COST,
        severity=severity,
        message=f"Monthly cost rose {ratio:.0%} from ${previous:,.2f} to ${current:,.2f}",
        affected_node_ids=[n.id for n in top],
        cost_impact=round(current - previous, 2),
    )]


def unauthorized_change_rule(ctx: AlertEvaluationContext) -> List[AlertInstance]:
    """Changes in this cycle with neither a human initiator nor a correlation id."""
    if not ctx.sync_records:
        return []
    since = min(r.started_at for r in ctx.sync_records)
    changes = ctx.storage.get_changes(ChangeFilter(since=since, change_types=UNAUTHORIZED_CHANGE_TYPES))
    targets: List[str] = []
    for change in changes:
        if change.metadata.get("baseline"):
            continue
        if change.initiator_type == InitiatorType.HUMAN or change.correlation_id is not None:
            continue
        if change.target_id not in targets:
            targets.append(change.target_id)
    if not targets:
        return []
    return [AlertInstance(
        rule_id="unauthorized-change",
        category=CATEGORY_SECURITY,
        severity=Severity.CRITICAL,
        message=f"{len(targets)} resource(s) changed without a human initiator or tracked change",
        affected_node_ids=targets,
    )]


def disappeared_rule(ctx: AlertEvaluationContext) -> List[AlertInstance]:
    """One alert aggregating every disappearance of this cycle."""
    records = [r for r in ctx.sync_records if r.nodes_disappeared > 0]
    if not records:
        return []
    since = min(r.started_at for r in records)
    changes = ctx.storage.get_changes(ChangeFilter(since=since, change_types=[ChangeType.NODE_DISAPPEARED]))
    targets = list(dict.fromkeys(c.target_id for c in changes))
    if not targets:
        return []
    severity = Severity.CRITICAL if len(targets) > DISAPPEARED_CRITICAL_COUNT else Severity.WARNING
    return [AlertInstance(
        rule_id="disappeared",
        category=CATEGORY_LIFECYCLE,
        severity=severity,
        message=f"{len(targets)} resource(s) disappeared since the last sync",
        affected_node_ids=targets,
    )]


def builtin_rules() -> List[AlertRule]:
    """Fresh instances of the built-in rules, enabled."""
    return [
        AlertRule("orphan", "Orphaned resource", CATEGORY_COST, orphan_rule,
                  "Resource with no relationships"),
        AlertRule("spof", "Single point of failure", CATEGORY_RESILIENCE, spof_rule,
                  "High fan-out resource whose dependents have no redundant path"),
        AlertRule("cost-anomaly", "Cost anomaly", CATEGORY_COST, cost_anomaly_rule,
                  "Total monthly cost increased beyond the threshold"),
        AlertRule("unauthorized-change", "Unauthorized change", CATEGORY_SECURITY, unauthorized_change_rule,
                  "Change without a human initiator or correlation id"),
        AlertRule("disappeared", "Disappeared resources", CATEGORY_LIFECYCLE, disappeared_rule,
                  "Resources no longer observed by a covering sync"),
    ]
