"""InfraGraph - Multi-cloud infrastructure knowledge graph.

A continuously refreshed graph of cloud resources that:
- Discovers resources and their relationships across providers (AWS, Azure, GCP)
- Records every observed change with attribution from cloud audit logs
- Evaluates alert rules (orphans, SPOFs, cost anomalies, drift) on a schedule
- Dispatches alerts to callbacks, webhooks and logs
"""

__version__ = "0.1.0"

from infragraph.core.graph import (
    AlertInstance,
    ChangeType,
    CloudEvent,
    GraphChange,
    GraphEdge,
    GraphNode,
    GraphStats,
    NodeStatus,
    Severity,
    SyncRecord,
    build_edge_id,
    build_node_id,
)
from infragraph.engine import GraphEngine
from infragraph.monitoring.monitor import InfraMonitor
from infragraph.repositories import InMemoryGraphStorage, Neo4jGraphStorage

__all__ = [
    # Version info
    "__version__",
    # Data model
    "AlertInstance",
    "ChangeType",
    "CloudEvent",
    "GraphChange",
    "GraphEdge",
    "GraphNode",
    "GraphStats",
    "NodeStatus",
    "Severity",
    "SyncRecord",
    "build_edge_id",
    "build_node_id",
    # Entry points
    "GraphEngine",
    "InfraMonitor",
    "InMemoryGraphStorage",
    "Neo4jGraphStorage",
]
