"""GraphEngine: runs discovery adapters into storage and answers graph queries."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from infragraph.core.bus import EventBus
from infragraph.core.graph import CloudEvent, GraphChange, GraphEdge, GraphNode, GraphStats, SyncRecord
from infragraph.discovery.base import DiscoverOptions, DiscoveryAdapter
from infragraph.discovery.registry import AdapterRegistry
from infragraph.repositories.base import GraphStorage, NodeFilter
from infragraph.sync.recorder import ChangeRecorder, DriftPolicy

logger = logging.getLogger(__name__)

DEFAULT_TRAVERSAL_DEPTH = 3


@dataclass
class BlastRadius:
    """Nodes reachable from a root node, with hop distances."""

    root_node_id: str
    nodes: Dict[str, GraphNode] = field(default_factory=dict)
    edges: List[GraphEdge] = field(default_factory=list)
    hops: Dict[str, int] = field(default_factory=dict)
    total_cost_monthly: float = 0.0


class GraphEngine:
    """Coordinates adapters, the recorder and storage.

    Example:
        >>> registry = AdapterRegistry()
        >>> registry.register(AwsDiscoveryAdapter(boto3.Session()))
        >>> engine = GraphEngine(InMemoryGraphStorage(), registry)
        >>> records = engine.sync()
    """

    def __init__(
        self,
        storage: GraphStorage,
        registry: Optional[AdapterRegistry] = None,
        recorder: Optional[ChangeRecorder] = None,
        drift_policy: Optional[DriftPolicy] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.storage = storage
        self.registry = registry or AdapterRegistry()
        self.event_bus = event_bus
        self.recorder = recorder or ChangeRecorder(storage, drift_policy=drift_policy, event_bus=event_bus)

    def register_adapter(self, adapter: DiscoveryAdapter) -> None:
        self.registry.register(adapter)

    def sync(
        self,
        options: Optional[DiscoverOptions] = None,
        events: Sequence[CloudEvent] = (),
    ) -> List[SyncRecord]:
        """Run every available adapter and record its batch.

        Zero adapters produce zero records. One SyncRecord is written per
        adapter, including adapters whose discovery failed entirely.

        Args:
            options: Discovery options shared by every adapter
            events: Audit events used to attribute changes

        Returns:
            The SyncRecords written, in adapter order

        Raises:
            StorageError: If storage fails while recording
        """
        records = []
        for adapter in self.registry.available():
            result = adapter.discover(options)
            records.append(self.recorder.record(result, events))
        return records

    def get_stats(self) -> GraphStats:
        return self.storage.get_stats()

    def get_node_timeline(self, node_id: str, limit: Optional[int] = None) -> List[GraphChange]:
        return self.storage.get_node_timeline(node_id, limit=limit)

    def get_topology(self, filters: Optional[NodeFilter] = None) -> Dict[str, list]:
        """Nodes matching a filter and the edges between them."""
        nodes = self.storage.list_nodes(filters)
        ids = {n.id for n in nodes}
        edges = [
            e for e in self.storage.list_edges()
            if e.source_node_id in ids and e.target_node_id in ids
        ]
        return {"nodes": nodes, "edges": edges}

    def get_blast_radius(
        self,
        node_id: str,
        depth: int = DEFAULT_TRAVERSAL_DEPTH,
        direction: str = "both",
    ) -> BlastRadius:
        """Breadth-first traversal from a node.

        Args:
            node_id: Root node id
            depth: Maximum number of hops
            direction: 'outgoing', 'incoming' or 'both'

        Returns:
            BlastRadius; empty when the root is not stored
        """
        result = BlastRadius(root_node_id=node_id)
        root = self.storage.get_node(node_id)
        if root is None:
            return result

        result.nodes[node_id] = root
        result.hops[node_id] = 0
        seen_edges = set()
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            if result.hops[current] >= depth:
                continue
            for edge in self.storage.get_edges_for_node(current, direction):
                if edge.id not in seen_edges:
                    seen_edges.add(edge.id)
                    result.edges.append(edge)
                neighbour = edge.target_node_id if edge.source_node_id == current else edge.source_node_id
                if neighbour in result.hops:
                    continue
                node = self.storage.get_node(neighbour)
                if node is None:
                    continue
                result.nodes[neighbour] = node
                result.hops[neighbour] = result.hops[current] + 1
                queue.append(neighbour)

        result.total_cost_monthly = round(sum(n.cost_monthly or 0.0 for n in result.nodes.values()), 2)
        return result
