"""Canonical graph data model.

Nodes and edges carry deterministic ids so that re-discovering the same
resource always upserts instead of duplicating. Changes, sync records and
alerts are write-once values.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_node_id(provider: str, account: str, region: str, resource_type: str, native_id: str) -> str:
    """Build the canonical node id for a resource.

    The id is a pure function of its inputs and is stable across runs.

    Args:
        provider: Cloud provider ('aws', 'gcp', 'azure')
        account: Account, project or subscription id
        region: Region, or 'global' for global resources
        resource_type: Canonical resource type (e.g. 'compute')
        native_id: Provider-native identifier

    Returns:
        Node id of the form provider:account:region:resource_type:native_id
    """
    return f"{provider}:{account}:{region}:{resource_type}:{native_id}"


def build_edge_id(source_node_id: str, relationship_type: str, target_node_id: str) -> str:
    return f"{source_node_id}--{relationship_type}--{target_node_id}"


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


class NodeStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    CREATING = "creating"
    DELETING = "deleting"
    ERROR = "error"
    # Lifecycle marker set by the recorder, never by an adapter
    DISAPPEARED = "disappeared"


class ChangeType(str, Enum):
    NODE_CREATED = "node-created"
    NODE_UPDATED = "node-updated"
    NODE_DELETED = "node-deleted"
    NODE_DISAPPEARED = "node-disappeared"
    NODE_DRIFTED = "node-drifted"
    EDGE_CREATED = "edge-created"
    EDGE_REMOVED = "edge-removed"


class DiscoveryMethod(str, Enum):
    CONFIG_SCAN = "config-scan"
    API_FIELD = "api-field"
    RUNTIME_TRACE = "runtime-trace"
    EVENT_STREAM = "event-stream"
    ID_HIERARCHY = "id-hierarchy"
    PARENT_CHILD = "parent-child"


class DetectionSource(str, Enum):
    SYNC = "sync"
    EVENT_STREAM = "event-stream"


class InitiatorType(str, Enum):
    HUMAN = "human"
    AGENT = "agent"
    SYSTEM = "system"


class SyncStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class GraphNode:
    """Canonical representation of one cloud resource.

    Attributes:
        id: Deterministic id, see build_node_id
        provider: Cloud provider
        resource_type: Canonical resource type
        native_id: Provider-native identifier (ARN, selfLink, resource id)
        name: Display name
        region: Region or 'global'
        account: Account, project or subscription id
        status: Normalized status
        tags: Resource tags
        metadata: Provider-specific attributes and workload flags
        cost_monthly: Estimated monthly cost in USD
        owner: Owner derived from tags
        created_at: Provider-reported creation time
        discovered_at: First time the node was observed
        last_seen_at: Last time the node was observed
    """

    id: str
    provider: str
    resource_type: str
    native_id: str
    name: str
    region: str
    account: str
    status: NodeStatus = NodeStatus.RUNNING
    tags: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    cost_monthly: Optional[float] = None
    owner: Optional[str] = None
    created_at: Optional[datetime] = None
    discovered_at: datetime = field(default_factory=utcnow)
    last_seen_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        provider: str,
        account: str,
        region: str,
        resource_type: str,
        native_id: str,
        name: Optional[str] = None,
        **kwargs: Any,
    ) -> "GraphNode":
        """Create a node whose id is derived from its identity fields."""
        return cls(
            id=build_node_id(provider, account, region, resource_type, native_id),
            provider=provider,
            resource_type=resource_type,
            native_id=native_id,
            name=name or native_id,
            region=region,
            account=account,
            **kwargs,
        )

    def copy(self, **changes: Any) -> "GraphNode":
        return replace(self, tags=dict(self.tags), metadata=dict(self.metadata), **changes)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class GraphEdge:
    """Relationship between two nodes of the same discovery batch."""

    id: str
    source_node_id: str
    target_node_id: str
    relationship_type: str
    confidence: float = 1.0
    discovered_via: DiscoveryMethod = DiscoveryMethod.API_FIELD
    metadata: Dict[str, Any] = field(default_factory=dict)
    discovered_at: datetime = field(default_factory=utcnow)
    last_seen_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Edge confidence must be within [0, 1], got {self.confidence}")

    @classmethod
    def create(
        cls,
        source_node_id: str,
        relationship_type: str,
        target_node_id: str,
        **kwargs: Any,
    ) -> "GraphEdge":
        return cls(
            id=build_edge_id(source_node_id, relationship_type, target_node_id),
            source_node_id=source_node_id,
            target_node_id=target_node_id,
            relationship_type=relationship_type,
            **kwargs,
        )

    def copy(self, **changes: Any) -> "GraphEdge":
        return replace(self, metadata=dict(self.metadata), **changes)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class GraphChange:
    """Immutable record of one observed change."""

    target_id: str
    change_type: ChangeType
    field: Optional[str] = None
    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    detected_at: datetime = dataclasses.field(default_factory=utcnow)
    detected_via: DetectionSource = DetectionSource.SYNC
    correlation_id: Optional[str] = None
    initiator: Optional[str] = None
    initiator_type: Optional[InitiatorType] = None
    metadata: Dict[str, Any] = dataclasses.field(default_factory=dict)
    id: str = dataclasses.field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class SyncRecord:
    """Summary of one discovery cycle for one provider."""

    provider: str
    status: SyncStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    nodes_discovered: int = 0
    nodes_created: int = 0
    nodes_updated: int = 0
    nodes_disappeared: int = 0
    edges_discovered: int = 0
    edges_created: int = 0
    edges_removed: int = 0
    changes_recorded: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: float = 0.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class GraphStats:
    """Aggregate snapshot of the stored graph."""

    total_nodes: int = 0
    total_edges: int = 0
    total_changes: int = 0
    nodes_by_provider: Dict[str, int] = field(default_factory=dict)
    nodes_by_resource_type: Dict[str, int] = field(default_factory=dict)
    edges_by_relationship_type: Dict[str, int] = field(default_factory=dict)
    total_cost_monthly: float = 0.0
    last_sync_at: Optional[datetime] = None
    oldest_change: Optional[datetime] = None
    newest_change: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class AlertInstance:
    """One fired alert. Append-only in the monitor's alert history."""

    rule_id: str
    category: str
    severity: Severity
    message: str
    affected_node_ids: List[str] = field(default_factory=list)
    cost_impact: Optional[float] = None
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def cooldown_key(self):
        return (self.rule_id, frozenset(self.affected_node_ids))

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class CloudEvent:
    """Provider audit-log record normalized to a canonical shape."""

    provider: str
    event_id: str
    event_type: str
    actor: str
    resource_id: Optional[str]
    region: Optional[str]
    timestamp: datetime
    read_only: bool = False
    success: bool = True
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data = _serialize(asdict(self))
        data.pop("raw", None)
        return data
