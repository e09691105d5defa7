"""In-memory implementation of the GraphStorage interface."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Dict, List, Optional

from infragraph.core.graph import (
    GraphChange,
    GraphEdge,
    GraphNode,
    GraphStats,
    NodeStatus,
    SyncRecord,
)
from infragraph.repositories.base import ChangeFilter, EdgeFilter, GraphStorage, NodeFilter

logger = logging.getLogger(__name__)


def _limited(items: list, limit: Optional[int]) -> list:
    return items if limit is None else items[:limit]


class InMemoryGraphStorage(GraphStorage):
    """Thread-safe dictionary-backed storage.

    Suitable for tests and for single-process deployments that rebuild
    the graph on start-up.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, GraphNode] = {}
        self._edges: Dict[str, GraphEdge] = {}
        self._changes: List[GraphChange] = []
        self._sync_records: List[SyncRecord] = []
        self._lock = threading.RLock()

    def upsert_node(self, node: GraphNode) -> None:
        with self._lock:
            existing = self._nodes.get(node.id)
            if existing is not None:
                node = node.copy(discovered_at=existing.discovered_at)
            else:
                node = node.copy()
            self._nodes[node.id] = node

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        with self._lock:
            node = self._nodes.get(node_id)
            return node.copy() if node else None

    def list_nodes(self, filters: Optional[NodeFilter] = None) -> List[GraphNode]:
        filters = filters or NodeFilter()
        with self._lock:
            nodes = [n.copy() for _, n in sorted(self._nodes.items()) if filters.matches(n)]
        return _limited(nodes, filters.limit)

    def upsert_edge(self, edge: GraphEdge) -> None:
        with self._lock:
            existing = self._edges.get(edge.id)
            if existing is not None:
                edge = edge.copy(discovered_at=existing.discovered_at)
            else:
                edge = edge.copy()
            self._edges[edge.id] = edge

    def get_edge(self, edge_id: str) -> Optional[GraphEdge]:
        with self._lock:
            edge = self._edges.get(edge_id)
            return edge.copy() if edge else None

    def remove_edge(self, edge_id: str) -> bool:
        with self._lock:
            return self._edges.pop(edge_id, None) is not None

    def list_edges(self, filters: Optional[EdgeFilter] = None) -> List[GraphEdge]:
        filters = filters or EdgeFilter()
        with self._lock:
            edges = [e.copy() for _, e in sorted(self._edges.items()) if filters.matches(e)]
        return _limited(edges, filters.limit)

    def append_change(self, change: GraphChange) -> None:
        with self._lock:
            self._changes.append(change)

    def get_changes(self, filters: Optional[ChangeFilter] = None) -> List[GraphChange]:
        filters = filters or ChangeFilter()
        with self._lock:
            changes = [c for c in self._changes if filters.matches(c)]
        changes.sort(key=lambda c: c.detected_at)
        return _limited(changes, filters.limit)

    def save_sync_record(self, record: SyncRecord) -> None:
        with self._lock:
            self._sync_records.append(record)

    def list_sync_records(
        self,
        limit: Optional[int] = None,
        provider: Optional[str] = None,
    ) -> List[SyncRecord]:
        with self._lock:
            records = [r for r in self._sync_records if provider is None or r.provider == provider]
        records.sort(key=lambda r: r.started_at, reverse=True)
        return _limited(records, limit)

    def get_stats(self) -> GraphStats:
        with self._lock:
            active = [n for n in self._nodes.values() if n.status != NodeStatus.DISAPPEARED]
            edges = list(self._edges.values())
            detected = [c.detected_at for c in self._changes]
            last_sync = max((r.completed_at or r.started_at for r in self._sync_records), default=None)

            return GraphStats(
                total_nodes=len(active),
                total_edges=len(edges),
                total_changes=len(self._changes),
                nodes_by_provider=dict(Counter(n.provider for n in active)),
                nodes_by_resource_type=dict(Counter(n.resource_type for n in active)),
                edges_by_relationship_type=dict(Counter(e.relationship_type for e in edges)),
                total_cost_monthly=round(sum(n.cost_monthly or 0.0 for n in active), 2),
                last_sync_at=last_sync,
                oldest_change=min(detected, default=None),
                newest_change=max(detected, default=None),
            )

    def health_check(self) -> bool:
        return True
