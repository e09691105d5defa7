"""Abstract base classes for InfraGraph storage.

This module defines the persistence contract for nodes, edges, changes
and sync records, allowing different backends to be swapped without
changing the recorder, the monitor or the timeline helpers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from infragraph.core.graph import (
    ChangeType,
    GraphChange,
    GraphEdge,
    GraphNode,
    GraphStats,
    NodeStatus,
    SyncRecord,
)


@dataclass
class NodeFilter:
    """Filter criteria for node queries.

    Attributes:
        provider: Filter by cloud provider (e.g., 'aws', 'gcp')
        resource_type: Filter by canonical resource type
        region: Filter by region
        account: Filter by account or project
        status: Filter by status
        tags: Every key/value pair must be present on the node
        native_id: Filter by provider-native identifier
        limit: Maximum number of results, None for all
    """

    provider: Optional[str] = None
    resource_type: Optional[str] = None
    region: Optional[str] = None
    account: Optional[str] = None
    status: Optional[NodeStatus] = None
    tags: dict = field(default_factory=dict)
    native_id: Optional[str] = None
    limit: Optional[int] = None

    def matches(self, node: GraphNode) -> bool:
        if self.provider and node.provider != self.provider:
            return False
        if self.resource_type and node.resource_type != self.resource_type:
            return False
        if self.region and node.region != self.region:
            return False
        if self.account and node.account != self.account:
            return False
        if self.status and node.status != self.status:
            return False
        if self.native_id and node.native_id != self.native_id:
            return False
        return all(node.tags.get(k) == v for k, v in self.tags.items())


@dataclass
class EdgeFilter:
    """Filter criteria for edge queries."""

    source_node_id: Optional[str] = None
    target_node_id: Optional[str] = None
    relationship_type: Optional[str] = None
    limit: Optional[int] = None

    def matches(self, edge: GraphEdge) -> bool:
        if self.source_node_id and edge.source_node_id != self.source_node_id:
            return False
        if self.target_node_id and edge.target_node_id != self.target_node_id:
            return False
        if self.relationship_type and edge.relationship_type != self.relationship_type:
            return False
        return True


@dataclass
class ChangeFilter:
    """Filter criteria for change queries.

    Attributes:
        since: Inclusive lower bound on detected_at
        until: Inclusive upper bound on detected_at
        change_types: Only these change types
        target_id: Only changes of this node or edge
        limit: Maximum number of results, None for all
    """

    since: Optional[datetime] = None
    until: Optional[datetime] = None
    change_types: Sequence[ChangeType] = ()
    target_id: Optional[str] = None
    limit: Optional[int] = None

    def matches(self, change: GraphChange) -> bool:
        if self.since and change.detected_at < self.since:
            return False
        if self.until and change.detected_at > self.until:
            return False
        if self.change_types and change.change_type not in self.change_types:
            return False
        if self.target_id and change.target_id != self.target_id:
            return False
        return True


class GraphStorage(ABC):
    """Abstract base class for graph persistence.

    Storage is the sole owner of nodes, edges, changes and sync records.
    Node and edge writes are keyed by deterministic ids and resolve by
    last-write-wins; changes and sync records are append-only.

    All implementations raise StorageError for backend failures.

    Example:
        >>> storage = InMemoryGraphStorage()
        >>> storage.upsert_node(node)
        >>> storage.get_stats().total_nodes
        1
    """

    # Nodes

    @abstractmethod
    def upsert_node(self, node: GraphNode) -> None:
        """Insert or replace a node by id.

        The first-seen timestamp of an existing node is preserved.

        Args:
            node: Node to store
        """
        pass

    def upsert_nodes(self, nodes: Sequence[GraphNode]) -> None:
        for node in nodes:
            self.upsert_node(node)

    @abstractmethod
    def get_node(self, node_id: str) -> Optional[GraphNode]:
        """Get a node by id.

        Args:
            node_id: Node id

        Returns:
            The node if stored, None otherwise
        """
        pass

    @abstractmethod
    def list_nodes(self, filters: Optional[NodeFilter] = None) -> List[GraphNode]:
        """List nodes matching the given filters, ordered by id."""
        pass

    # Edges

    @abstractmethod
    def upsert_edge(self, edge: GraphEdge) -> None:
        """Insert or replace an edge by id."""
        pass

    def upsert_edges(self, edges: Sequence[GraphEdge]) -> None:
        for edge in edges:
            self.upsert_edge(edge)

    @abstractmethod
    def get_edge(self, edge_id: str) -> Optional[GraphEdge]:
        pass

    @abstractmethod
    def remove_edge(self, edge_id: str) -> bool:
        """Delete an edge that is no longer observed.

        Returns:
            True if the edge existed
        """
        pass

    @abstractmethod
    def list_edges(self, filters: Optional[EdgeFilter] = None) -> List[GraphEdge]:
        """List edges matching the given filters, ordered by id."""
        pass

    def get_edges_for_node(self, node_id: str, direction: str = "both") -> List[GraphEdge]:
        """Get the edges touching a node.

        Args:
            node_id: Node id
            direction: 'outgoing', 'incoming' or 'both'

        Returns:
            List of edges

        Raises:
            ValueError: If direction is not recognised
        """
        if direction not in ("outgoing", "incoming", "both"):
            raise ValueError(f"Invalid direction '{direction}'")
        edges: List[GraphEdge] = []
        if direction in ("outgoing", "both"):
            edges.extend(self.list_edges(EdgeFilter(source_node_id=node_id)))
        if direction in ("incoming", "both"):
            edges.extend(
                e for e in self.list_edges(EdgeFilter(target_node_id=node_id))
                if e.source_node_id != node_id or direction == "incoming"
            )
        return edges

    # Changes

    @abstractmethod
    def append_change(self, change: GraphChange) -> None:
        """Append a change. Prior entries are never mutated."""
        pass

    def append_changes(self, changes: Sequence[GraphChange]) -> None:
        for change in changes:
            self.append_change(change)

    @abstractmethod
    def get_changes(self, filters: Optional[ChangeFilter] = None) -> List[GraphChange]:
        """Get changes ordered by detection time."""
        pass

    def list_changes_since(self, since: datetime) -> List[GraphChange]:
        return self.get_changes(ChangeFilter(since=since))

    def get_node_timeline(self, node_id: str, limit: Optional[int] = None) -> List[GraphChange]:
        return self.get_changes(ChangeFilter(target_id=node_id, limit=limit))

    # Sync records

    @abstractmethod
    def save_sync_record(self, record: SyncRecord) -> None:
        pass

    @abstractmethod
    def list_sync_records(
        self,
        limit: Optional[int] = None,
        provider: Optional[str] = None,
    ) -> List[SyncRecord]:
        """List sync records, most recent first."""
        pass

    def get_last_sync_record(self, provider: Optional[str] = None) -> Optional[SyncRecord]:
        records = self.list_sync_records(limit=1, provider=provider)
        return records[0] if records else None

    # Aggregates

    @abstractmethod
    def get_stats(self) -> GraphStats:
        """Compute the aggregate stats snapshot in a single query."""
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """Check backend connectivity. Never raises."""
        pass
