"""Timeline, diff and cost-trend views over recorded changes."""

from __future__ import annotations

from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from infragraph.core.graph import ChangeType, GraphChange, SyncStatus, utcnow
from infragraph.repositories.base import ChangeFilter, GraphStorage

COST_FIELD = "cost_monthly"

_REMOVAL_TYPES = (ChangeType.NODE_DELETED, ChangeType.NODE_DISAPPEARED)
_MODIFICATION_TYPES = (ChangeType.NODE_UPDATED, ChangeType.NODE_DRIFTED)


@dataclass
class TimelineSummary:
    since: datetime
    until: datetime
    total_changes: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    by_initiator: Dict[str, int] = field(default_factory=dict)
    affected_resource_count: int = 0
    changes: List[GraphChange] = field(default_factory=list)


@dataclass
class GraphDiff:
    since: datetime
    until: datetime
    created: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    modified: Dict[str, List[GraphChange]] = field(default_factory=dict)


@dataclass
class CostTrendPoint:
    timestamp: datetime
    sync_id: str
    provider: str
    nodes_discovered: int
    cost_changes: int


def get_timeline_summary(
    storage: GraphStorage,
    since: datetime,
    until: Optional[datetime] = None,
) -> TimelineSummary:
    """Summarize the changes recorded in a time window.

    Args:
        storage: Graph storage
        since: Inclusive start of the window
        until: Inclusive end of the window, now when omitted

    Returns:
        Counts by change type and initiator plus the changes themselves
    """
    until = until or utcnow()
    changes = storage.get_changes(ChangeFilter(since=since, until=until))
    by_type = Counter(c.change_type.value for c in changes)
    by_initiator = Counter(c.initiator or "unknown" for c in changes)
    return TimelineSummary(
        since=since,
        until=until,
        total_changes=len(changes),
        by_type=dict(by_type),
        by_initiator=dict(by_initiator),
        affected_resource_count=len({c.target_id for c in changes}),
        changes=changes,
    )


def get_graph_diff(
    storage: GraphStorage,
    since: datetime,
    until: Optional[datetime] = None,
) -> GraphDiff:
    """Nodes created, removed and modified between two points in time."""
    until = until or utcnow()
    diff = GraphDiff(since=since, until=until)
    modified: "OrderedDict[str, List[GraphChange]]" = OrderedDict()
    for change in storage.get_changes(ChangeFilter(since=since, until=until)):
        if change.change_type == ChangeType.NODE_CREATED:
            if change.target_id not in diff.created:
                diff.created.append(change.target_id)
        elif change.change_type in _REMOVAL_TYPES:
            if change.target_id not in diff.deleted:
                diff.deleted.append(change.target_id)
        elif change.change_type in _MODIFICATION_TYPES:
            modified.setdefault(change.target_id, []).append(change)
    diff.modified = dict(modified)
    return diff


def get_cost_trend(storage: GraphStorage, limit: int = 30) -> List[CostTrendPoint]:
    """One point per completed sync, most recent first.

    ``cost_changes`` counts the cost_monthly updates that sync recorded.
    """
    trend = []
    for record in storage.list_sync_records(limit=limit):
        if record.status != SyncStatus.COMPLETED:
            continue
        changes = storage.get_changes(ChangeFilter(
            since=record.started_at,
            until=record.completed_at,
            change_types=_MODIFICATION_TYPES,
        ))
        cost_changes = sum(
            1 for c in changes
            if c.field == COST_FIELD and c.metadata.get("sync_id", record.id) == record.id
        )
        if cost_changes or record.nodes_discovered:
            trend.append(CostTrendPoint(
                timestamp=record.started_at,
                sync_id=record.id,
                provider=record.provider,
                nodes_discovered=record.nodes_discovered,
                cost_changes=cost_changes,
            ))
    return trend
