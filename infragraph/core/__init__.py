"""Core data model, event bus and call telemetry."""

from infragraph.core.bus import EventBus
from infragraph.core.graph import (
    AlertInstance,
    ChangeType,
    CloudEvent,
    DetectionSource,
    DiscoveryMethod,
    GraphChange,
    GraphEdge,
    GraphNode,
    GraphStats,
    InitiatorType,
    NodeStatus,
    Severity,
    SyncRecord,
    SyncStatus,
    build_edge_id,
    build_node_id,
)
from infragraph.core.telemetry import instrumented

__all__ = [
    "AlertInstance",
    "ChangeType",
    "CloudEvent",
    "DetectionSource",
    "DiscoveryMethod",
    "EventBus",
    "GraphChange",
    "GraphEdge",
    "GraphNode",
    "GraphStats",
    "InitiatorType",
    "NodeStatus",
    "Severity",
    "SyncRecord",
    "SyncStatus",
    "build_edge_id",
    "build_node_id",
    "instrumented",
]
