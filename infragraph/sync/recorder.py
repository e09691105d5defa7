"""Change/sync recorder.

Diffs a discovery batch against storage, appends one GraphChange per
observed difference and writes exactly one SyncRecord per batch.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from infragraph.constants import DIFFED_NODE_FIELDS
from infragraph.core.bus import CHANGE_RECORDED, SYNC_COMPLETED, EventBus
from infragraph.core.graph import (
    ChangeType,
    CloudEvent,
    GraphChange,
    GraphEdge,
    GraphNode,
    NodeStatus,
    SyncRecord,
    SyncStatus,
    utcnow,
)
from infragraph.discovery.base import ANY_REGION, DiscoveryResult
from infragraph.discovery.fieldpath import extract_resource_id
from infragraph.errors import StorageError
from infragraph.events.sources import classify_actor
from infragraph.repositories.base import GraphStorage, NodeFilter

logger = logging.getLogger(__name__)

# Decides whether a change to a field of a node is drift rather than an update
DriftPolicy = Callable[[GraphNode, str], bool]


def never_drift(node: GraphNode, field_name: str) -> bool:
    return False


def drift_on_fields(*fields: str) -> DriftPolicy:
    """Build a policy that reports changes to the given fields as drift.

    Example:
        >>> recorder = ChangeRecorder(storage, drift_policy=drift_on_fields("tags", "metadata"))
    """
    sensitive = frozenset(fields)

    def policy(node: GraphNode, field_name: str) -> bool:
        return field_name in sensitive

    return policy


def encode_value(value: Any) -> Optional[str]:
    """Encode a field value for previous_value/new_value."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def diff_nodes(previous: GraphNode, current: GraphNode) -> List[str]:
    """Names of the diffed fields whose value differs between two versions."""
    return [
        name for name in DIFFED_NODE_FIELDS
        if encode_value(getattr(previous, name)) != encode_value(getattr(current, name))
    ]


class ChangeRecorder:
    """Record the changes implied by discovery batches.

    Args:
        storage: Graph storage receiving nodes, edges, changes and sync records
        drift_policy: Classifies changed fields as drift; nothing drifts by default
        event_bus: Receives 'change.recorded' and 'sync.completed' events
        clock: Returns the current time, injectable for tests
    """

    def __init__(
        self,
        storage: GraphStorage,
        drift_policy: Optional[DriftPolicy] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], Any] = utcnow,
    ):
        self.storage = storage
        self.drift_policy = drift_policy or never_drift
        self.event_bus = event_bus
        self.clock = clock

    def record(self, result: DiscoveryResult, events: Sequence[CloudEvent] = ()) -> SyncRecord:
        """Apply a discovery batch to storage and record what changed.

        Args:
            result: Complete discovery result of one adapter
            events: Audit events used to attribute changes to an initiator

        Returns:
            The SyncRecord written for this batch

        Raises:
            StorageError: If storage fails mid-batch; a failed SyncRecord is
                still written when storage allows it
        """
        recording_started = self.clock()
        started_at = recording_started - timedelta(milliseconds=result.duration_ms)
        errors = [str(e) for e in result.errors]
        if result.cancelled:
            errors.append("discovery cancelled")

        if result.unavailable:
            record = SyncRecord(
                provider=result.provider,
                status=SyncStatus.FAILED,
                started_at=started_at,
                completed_at=recording_started,
                errors=errors,
                duration_ms=result.duration_ms,
            )
            self.storage.save_sync_record(record)
            self._emit(SYNC_COMPLETED, record.to_dict())
            return record

        sync_id = str(uuid.uuid4())
        counts: Dict[str, int] = dict.fromkeys(
            ("nodes_created", "nodes_updated", "nodes_disappeared",
             "edges_created", "edges_removed", "changes_recorded"),
            0,
        )
        try:
            baseline = not self._has_completed_sync(result.provider)
            initiators = self._initiators(result.provider, events)
            self._record_nodes(result, sync_id, baseline, initiators, counts)
            self._record_edges(result, sync_id, counts)
        except StorageError as e:
            logger.error("Recording %s sync failed: %s", result.provider, e)
            failed = SyncRecord(
                provider=result.provider,
                status=SyncStatus.FAILED,
                started_at=started_at,
                completed_at=self.clock(),
                nodes_discovered=len(result.nodes),
                edges_discovered=len(result.edges),
                errors=errors + [str(e)],
                duration_ms=result.duration_ms,
                id=sync_id,
                **counts,
            )
            try:
                self.storage.save_sync_record(failed)
            except StorageError as save_error:
                logger.error("Could not save failed sync record: %s", save_error)
            raise

        completed_at = self.clock()
        record = SyncRecord(
            provider=result.provider,
            status=SyncStatus.COMPLETED,
            started_at=started_at,
            completed_at=completed_at,
            nodes_discovered=len(result.nodes),
            edges_discovered=len(result.edges),
            errors=errors,
            duration_ms=result.duration_ms,
            id=sync_id,
            **counts,
        )
        self.storage.save_sync_record(record)
        logger.info(
            "Recorded %s sync: %d nodes, %d created, %d updated, %d disappeared",
            result.provider, record.nodes_discovered, record.nodes_created,
            record.nodes_updated, record.nodes_disappeared,
        )
        self._emit(SYNC_COMPLETED, record.to_dict())
        return record

    def _has_completed_sync(self, provider: str) -> bool:
        return any(
            r.status == SyncStatus.COMPLETED
            for r in self.storage.list_sync_records(provider=provider)
        )

    # Nodes

    def _record_nodes(
        self,
        result: DiscoveryResult,
        sync_id: str,
        baseline: bool,
        initiators: Dict[str, CloudEvent],
        counts: Dict[str, int],
    ) -> None:
        seen: Set[str] = set()
        for node in result.nodes:
            seen.add(node.id)
            event = initiators.get(extract_resource_id(node.native_id))
            existing = self.storage.get_node(node.id)
            if existing is None:
                metadata: Dict[str, Any] = {"sync_id": sync_id}
                if baseline:
                    metadata["baseline"] = True
                self.storage.upsert_node(node)
                self._append(GraphChange(
                    target_id=node.id,
                    change_type=ChangeType.NODE_CREATED,
                    new_value=node.name,
                    detected_at=self.clock(),
                    metadata=metadata,
                    **self._attribution(event),
                ), counts)
                counts["nodes_created"] += 1
                continue

            changed = diff_nodes(existing, node)
            self.storage.upsert_node(node)
            for field_name in changed:
                drifted = self.drift_policy(node, field_name)
                self._append(GraphChange(
                    target_id=node.id,
                    change_type=ChangeType.NODE_DRIFTED if drifted else ChangeType.NODE_UPDATED,
                    field=field_name,
                    previous_value=encode_value(getattr(existing, field_name)),
                    new_value=encode_value(getattr(node, field_name)),
                    detected_at=self.clock(),
                    metadata={"sync_id": sync_id},
                    **self._attribution(event),
                ), counts)
            if changed:
                counts["nodes_updated"] += 1

        for stored in self.storage.list_nodes(NodeFilter(provider=result.provider)):
            if stored.id in seen or stored.status == NodeStatus.DISAPPEARED:
                continue
            if not self._in_scope(stored, result):
                continue
            self.storage.upsert_node(stored.copy(status=NodeStatus.DISAPPEARED))
            event = initiators.get(extract_resource_id(stored.native_id))
            self._append(GraphChange(
                target_id=stored.id,
                change_type=ChangeType.NODE_DISAPPEARED,
                field="status",
                previous_value=encode_value(stored.status),
                new_value=NodeStatus.DISAPPEARED.value,
                detected_at=self.clock(),
                metadata={"sync_id": sync_id},
                **self._attribution(event),
            ), counts)
            counts["nodes_disappeared"] += 1

    @staticmethod
    def _in_scope(node: GraphNode, result: DiscoveryResult) -> bool:
        scopes = result.scanned_scopes
        return (node.region, node.resource_type) in scopes or (ANY_REGION, node.resource_type) in scopes

    # Edges

    def _record_edges(self, result: DiscoveryResult, sync_id: str, counts: Dict[str, int]) -> None:
        observed: Set[str] = set()
        for edge in result.edges:
            observed.add(edge.id)
            is_new = self.storage.get_edge(edge.id) is None
            self.storage.upsert_edge(edge)
            if is_new:
                self._append(GraphChange(
                    target_id=edge.id,
                    change_type=ChangeType.EDGE_CREATED,
                    field="relationship_type",
                    new_value=edge.relationship_type,
                    detected_at=self.clock(),
                    metadata={"sync_id": sync_id},
                ), counts)
                counts["edges_created"] += 1

        provider_nodes = {
            n.id: n for n in self.storage.list_nodes(NodeFilter(provider=result.provider))
        }
        for edge in self._stale_edges(observed, provider_nodes, result):
            if self.storage.remove_edge(edge.id):
                self._append(GraphChange(
                    target_id=edge.id,
                    change_type=ChangeType.EDGE_REMOVED,
                    field="relationship_type",
                    previous_value=edge.relationship_type,
                    detected_at=self.clock(),
                    metadata={"sync_id": sync_id},
                ), counts)
                counts["edges_removed"] += 1

    def _stale_edges(
        self,
        observed: Set[str],
        provider_nodes: Dict[str, GraphNode],
        result: DiscoveryResult,
    ) -> Iterable[GraphEdge]:
        """Unobserved edges whose both ends were rescanned this cycle.

        An edge whose target type was not scanned (or failed) cannot have
        been re-inferred, so it is kept unless the target is gone.
        """
        scoped = {nid for nid, n in provider_nodes.items() if self._in_scope(n, result)}
        if not scoped:
            return []
        stale = []
        for edge in self.storage.list_edges():
            if edge.id in observed or edge.source_node_id not in scoped:
                continue
            target = provider_nodes.get(edge.target_node_id) or self.storage.get_node(edge.target_node_id)
            if (
                target is None
                or target.status == NodeStatus.DISAPPEARED
                or edge.target_node_id in scoped
            ):
                stale.append(edge)
        return stale

    # Attribution

    @staticmethod
    def _initiators(provider: str, events: Sequence[CloudEvent]) -> Dict[str, CloudEvent]:
        """Latest successful mutating event per short resource id."""
        latest: Dict[str, CloudEvent] = {}
        for event in sorted(events, key=lambda e: e.timestamp):
            if event.provider != provider or event.read_only or not event.success:
                continue
            if event.resource_id:
                latest[extract_resource_id(event.resource_id)] = event
        return latest

    @staticmethod
    def _attribution(event: Optional[CloudEvent]) -> Dict[str, Any]:
        if event is None:
            return {}
        return {"initiator": event.actor, "initiator_type": classify_actor(event.actor)}

    def _append(self, change: GraphChange, counts: Dict[str, int]) -> None:
        self.storage.append_change(change)
        counts["changes_recorded"] += 1
        self._emit(CHANGE_RECORDED, change.to_dict())

    def _emit(self, topic: str, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(topic, payload)


__all__ = [
    "ChangeRecorder",
    "DriftPolicy",
    "diff_nodes",
    "drift_on_fields",
    "encode_value",
    "never_drift",
]
