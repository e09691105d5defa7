"""Neo4j implementation of the GraphStorage interface.

This module encapsulates all Cypher queries and Neo4j-specific logic.
Resources are stored as ``:Resource`` nodes, relationships as ``:RELATES``
relationships carrying the canonical edge id, and changes and sync
records as standalone ``:Change`` and ``:SyncRecord`` nodes.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from neo4j import Driver
from neo4j.exceptions import DriverError, Neo4jError

from infragraph.core.graph import (
    ChangeType,
    DetectionSource,
    DiscoveryMethod,
    GraphChange,
    GraphEdge,
    GraphNode,
    GraphStats,
    InitiatorType,
    NodeStatus,
    SyncRecord,
    SyncStatus,
)
from infragraph.errors import StorageError
from infragraph.repositories.base import ChangeFilter, EdgeFilter, GraphStorage, NodeFilter

logger = logging.getLogger(__name__)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _node_props(node: GraphNode) -> Dict[str, Any]:
    return {
        "id": node.id,
        "provider": node.provider,
        "resource_type": node.resource_type,
        "native_id": node.native_id,
        "name": node.name,
        "region": node.region,
        "account": node.account,
        "status": node.status.value,
        "tags": json.dumps(node.tags, sort_keys=True),
        "metadata": json.dumps(node.metadata, sort_keys=True, default=str),
        "cost_monthly": node.cost_monthly,
        "owner": node.owner,
        "created_at": _ts(node.created_at),
        "discovered_at": _ts(node.discovered_at),
        "last_seen_at": _ts(node.last_seen_at),
    }


def _node_from_props(props: Dict[str, Any]) -> GraphNode:
    return GraphNode(
        id=props["id"],
        provider=props["provider"],
        resource_type=props["resource_type"],
        native_id=props["native_id"],
        name=props.get("name") or props["native_id"],
        region=props["region"],
        account=props["account"],
        status=NodeStatus(props.get("status") or NodeStatus.RUNNING.value),
        tags=json.loads(props.get("tags") or "{}"),
        metadata=json.loads(props.get("metadata") or "{}"),
        cost_monthly=props.get("cost_monthly"),
        owner=props.get("owner"),
        created_at=_parse_ts(props.get("created_at")),
        discovered_at=_parse_ts(props.get("discovered_at")),
        last_seen_at=_parse_ts(props.get("last_seen_at")),
    )


def _edge_from_props(props: Dict[str, Any]) -> GraphEdge:
    return GraphEdge(
        id=props["id"],
        source_node_id=props["source_node_id"],
        target_node_id=props["target_node_id"],
        relationship_type=props["relationship_type"],
        confidence=props.get("confidence", 1.0),
        discovered_via=DiscoveryMethod(props.get("discovered_via") or DiscoveryMethod.API_FIELD.value),
        metadata=json.loads(props.get("metadata") or "{}"),
        discovered_at=_parse_ts(props.get("discovered_at")),
        last_seen_at=_parse_ts(props.get("last_seen_at")),
    )


def _change_from_props(props: Dict[str, Any]) -> GraphChange:
    initiator_type = props.get("initiator_type")
    return GraphChange(
        id=props["id"],
        target_id=props["target_id"],
        change_type=ChangeType(props["change_type"]),
        field=props.get("field"),
        previous_value=props.get("previous_value"),
        new_value=props.get("new_value"),
        detected_at=_parse_ts(props["detected_at"]),
        detected_via=DetectionSource(props.get("detected_via") or DetectionSource.SYNC.value),
        correlation_id=props.get("correlation_id"),
        initiator=props.get("initiator"),
        initiator_type=InitiatorType(initiator_type) if initiator_type else None,
        metadata=json.loads(props.get("metadata") or "{}"),
    )


def _sync_from_props(props: Dict[str, Any]) -> SyncRecord:
    return SyncRecord(
        id=props["id"],
        provider=props["provider"],
        status=SyncStatus(props["status"]),
        started_at=_parse_ts(props["started_at"]),
        completed_at=_parse_ts(props.get("completed_at")),
        nodes_discovered=props.get("nodes_discovered", 0),
        nodes_created=props.get("nodes_created", 0),
        nodes_updated=props.get("nodes_updated", 0),
        nodes_disappeared=props.get("nodes_disappeared", 0),
        edges_discovered=props.get("edges_discovered", 0),
        edges_created=props.get("edges_created", 0),
        edges_removed=props.get("edges_removed", 0),
        changes_recorded=props.get("changes_recorded", 0),
        errors=list(props.get("errors") or []),
        duration_ms=props.get("duration_ms", 0.0),
    )


def _where(conditions: Iterable[str]) -> str:
    conditions = list(conditions)
    return "WHERE " + " AND ".join(conditions) + " " if conditions else ""


def _limit(limit: Optional[int]) -> str:
    return f"LIMIT {int(limit)}" if limit is not None else ""


class Neo4jGraphStorage(GraphStorage):
    """Neo4j implementation of GraphStorage.

    Attributes:
        driver: Neo4j driver instance
    """

    def __init__(self, driver: Driver, database: Optional[str] = None):
        """Initialize the storage with a Neo4j driver.

        Args:
            driver: Configured Neo4j driver instance
            database: Target database, None for the server default
        """
        self.driver = driver
        self.database = database

    def _run(self, operation: str, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        try:
            with self.driver.session(database=self.database) as session:
                result = session.run(query, params or {})
                return [record.data() for record in result]
        except (Neo4jError, DriverError) as e:
            logger.error("Neo4j %s failed: %s", operation, e)
            raise StorageError(operation, e) from e

    def ensure_constraints(self) -> None:
        """Create uniqueness constraints for the id-keyed labels."""
        for label in ("Resource", "Change", "SyncRecord"):
            self._run(
                "ensure_constraints",
                f"CREATE CONSTRAINT {label.lower()}_id IF NOT EXISTS "
                f"FOR (n:{label}) REQUIRE n.id IS UNIQUE",
            )

    # Nodes

    def upsert_node(self, node: GraphNode) -> None:
        self.upsert_nodes([node])

    def upsert_nodes(self, nodes: List[GraphNode]) -> None:
        if not nodes:
            return
        # discovered_at is first-seen time, written only when the node is created
        query = """
        UNWIND $rows AS row
        MERGE (n:Resource {id: row.id})
        ON CREATE SET n.discovered_at = row.discovered_at
        SET n += row.props
        """
        rows = []
        for node in nodes:
            props = _node_props(node)
            discovered_at = props.pop("discovered_at")
            rows.append({"id": node.id, "discovered_at": discovered_at, "props": props})
        self._run("upsert_nodes", query, {"rows": rows})

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        rows = self._run(
            "get_node",
            "MATCH (n:Resource {id: $id}) RETURN properties(n) AS props",
            {"id": node_id},
        )
        return _node_from_props(rows[0]["props"]) if rows else None

    def list_nodes(self, filters: Optional[NodeFilter] = None) -> List[GraphNode]:
        filters = filters or NodeFilter()
        params: Dict[str, Any] = {}
        conditions = []
        for attr in ("provider", "resource_type", "region", "account", "native_id"):
            value = getattr(filters, attr)
            if value:
                conditions.append(f"n.{attr} = ${attr}")
                params[attr] = value
        if filters.status:
            conditions.append("n.status = $status")
            params["status"] = NodeStatus(filters.status).value

        query = (
            "MATCH (n:Resource) " + _where(conditions)
            + "RETURN properties(n) AS props ORDER BY n.id "
        )
        # Tags are stored as JSON, so tag filters apply client-side before the limit
        if not filters.tags:
            query += _limit(filters.limit)
        nodes = [_node_from_props(r["props"]) for r in self._run("list_nodes", query, params)]
        if filters.tags:
            nodes = [n for n in nodes if filters.matches(n)]
            if filters.limit is not None:
                nodes = nodes[:filters.limit]
        return nodes

    # Edges

    def upsert_edge(self, edge: GraphEdge) -> None:
        self.upsert_edges([edge])

    def upsert_edges(self, edges: List[GraphEdge]) -> None:
        if not edges:
            return
        query = """
        UNWIND $rows AS row
        MATCH (a:Resource {id: row.source_node_id}), (b:Resource {id: row.target_node_id})
        MERGE (a)-[r:RELATES {id: row.id}]->(b)
        ON CREATE SET r.discovered_at = row.discovered_at
        SET r.relationship_type = row.relationship_type,
            r.confidence = row.confidence,
            r.discovered_via = row.discovered_via,
            r.metadata = row.metadata,
            r.last_seen_at = row.last_seen_at
        """
        rows = [
            {
                "id": e.id,
                "source_node_id": e.source_node_id,
                "target_node_id": e.target_node_id,
                "relationship_type": e.relationship_type,
                "confidence": e.confidence,
                "discovered_via": DiscoveryMethod(e.discovered_via).value,
                "metadata": json.dumps(e.metadata, sort_keys=True, default=str),
                "discovered_at": _ts(e.discovered_at),
                "last_seen_at": _ts(e.last_seen_at),
            }
            for e in edges
        ]
        self._run("upsert_edges", query, {"rows": rows})

    _EDGE_RETURN = """
        RETURN r.id AS id, a.id AS source_node_id, b.id AS target_node_id,
               r.relationship_type AS relationship_type, r.confidence AS confidence,
               r.discovered_via AS discovered_via, r.metadata AS metadata,
               r.discovered_at AS discovered_at, r.last_seen_at AS last_seen_at
    """

    def get_edge(self, edge_id: str) -> Optional[GraphEdge]:
        rows = self._run(
            "get_edge",
            "MATCH (a:Resource)-[r:RELATES {id: $id}]->(b:Resource) " + self._EDGE_RETURN,
            {"id": edge_id},
        )
        return _edge_from_props(rows[0]) if rows else None

    def remove_edge(self, edge_id: str) -> bool:
        rows = self._run(
            "remove_edge",
            "MATCH ()-[r:RELATES {id: $id}]->() DELETE r RETURN count(r) AS count",
            {"id": edge_id},
        )
        return bool(rows and rows[0]["count"])

    def list_edges(self, filters: Optional[EdgeFilter] = None) -> List[GraphEdge]:
        filters = filters or EdgeFilter()
        params: Dict[str, Any] = {}
        conditions = []
        if filters.source_node_id:
            conditions.append("a.id = $source")
            params["source"] = filters.source_node_id
        if filters.target_node_id:
            conditions.append("b.id = $target")
            params["target"] = filters.target_node_id
        if filters.relationship_type:
            conditions.append("r.relationship_type = $rel")
            params["rel"] = filters.relationship_type

        query = (
            "MATCH (a:Resource)-[r:RELATES]->(b:Resource) " + _where(conditions)
            + self._EDGE_RETURN + " ORDER BY r.id " + _limit(filters.limit)
        )
        return [_edge_from_props(r) for r in self._run("list_edges", query, params)]

    # Changes

    def append_change(self, change: GraphChange) -> None:
        self.append_changes([change])

    def append_changes(self, changes: List[GraphChange]) -> None:
        if not changes:
            return
        rows = []
        for change in changes:
            row = change.to_dict()
            row["metadata"] = json.dumps(row["metadata"], sort_keys=True, default=str)
            rows.append(row)
        # CREATE, never MERGE: prior entries are immutable
        self._run("append_changes", "UNWIND $rows AS row CREATE (c:Change) SET c = row", {"rows": rows})

    def get_changes(self, filters: Optional[ChangeFilter] = None) -> List[GraphChange]:
        filters = filters or ChangeFilter()
        params: Dict[str, Any] = {}
        conditions = []
        # ISO-8601 strings in UTC compare lexicographically
        if filters.since:
            conditions.append("c.detected_at >= $since")
            params["since"] = _ts(filters.since)
        if filters.until:
            conditions.append("c.detected_at <= $until")
            params["until"] = _ts(filters.until)
        if filters.change_types:
            conditions.append("c.change_type IN $types")
            params["types"] = [ChangeType(t).value for t in filters.change_types]
        if filters.target_id:
            conditions.append("c.target_id = $target")
            params["target"] = filters.target_id

        query = (
            "MATCH (c:Change) " + _where(conditions)
            + "RETURN properties(c) AS props ORDER BY c.detected_at " + _limit(filters.limit)
        )
        return [_change_from_props(r["props"]) for r in self._run("get_changes", query, params)]

    # Sync records

    def save_sync_record(self, record: SyncRecord) -> None:
        self._run("save_sync_record", "CREATE (s:SyncRecord) SET s = $props", {"props": record.to_dict()})

    def list_sync_records(
        self,
        limit: Optional[int] = None,
        provider: Optional[str] = None,
    ) -> List[SyncRecord]:
        params: Dict[str, Any] = {}
        conditions = []
        if provider:
            conditions.append("s.provider = $provider")
            params["provider"] = provider
        query = (
            "MATCH (s:SyncRecord) " + _where(conditions)
            + "RETURN properties(s) AS props ORDER BY s.started_at DESC " + _limit(limit)
        )
        return [_sync_from_props(r["props"]) for r in self._run("list_sync_records", query, params)]

    # Aggregates

    def get_stats(self) -> GraphStats:
        query = """
        CALL {
            MATCH (n:Resource) WHERE n.status <> 'disappeared'
            RETURN count(n) AS total_nodes,
                   sum(COALESCE(n.cost_monthly, 0.0)) AS total_cost,
                   collect(n.provider) AS providers,
                   collect(n.resource_type) AS resource_types
        }
        CALL {
            MATCH ()-[r:RELATES]->()
            RETURN count(r) AS total_edges, collect(r.relationship_type) AS relationship_types
        }
        CALL {
            MATCH (c:Change)
            RETURN count(c) AS total_changes, min(c.detected_at) AS oldest, max(c.detected_at) AS newest
        }
        CALL {
            MATCH (s:SyncRecord)
            RETURN max(COALESCE(s.completed_at, s.started_at)) AS last_sync
        }
        RETURN total_nodes, total_cost, providers, resource_types, total_edges,
               relationship_types, total_changes, oldest, newest, last_sync
        """
        rows = self._run("get_stats", query)
        if not rows:
            return GraphStats()
        row = rows[0]

        def counts(values: List[str]) -> Dict[str, int]:
            result: Dict[str, int] = {}
            for value in values or []:
                result[value] = result.get(value, 0) + 1
            return result

        return GraphStats(
            total_nodes=row["total_nodes"] or 0,
            total_edges=row["total_edges"] or 0,
            total_changes=row["total_changes"] or 0,
            nodes_by_provider=counts(row["providers"]),
            nodes_by_resource_type=counts(row["resource_types"]),
            edges_by_relationship_type=counts(row["relationship_types"]),
            total_cost_monthly=round(row["total_cost"] or 0.0, 2),
            last_sync_at=_parse_ts(row["last_sync"]),
            oldest_change=_parse_ts(row["oldest"]),
            newest_change=_parse_ts(row["newest"]),
        )

    def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            with self.driver.session(database=self.database) as session:
                session.run("RETURN 1")
            return True
        except Exception as e:
            logger.warning(f"Health check failed: {type(e).__name__}")
            return False
