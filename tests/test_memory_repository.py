"""Tests for the in-memory graph storage."""

from datetime import timedelta

import pytest

from infragraph.core.graph import (
    ChangeType,
    GraphChange,
    NodeStatus,
    SyncRecord,
    SyncStatus,
    utcnow,
)
from infragraph.repositories.base import ChangeFilter, EdgeFilter, NodeFilter
from infragraph.repositories.memory_repository import InMemoryGraphStorage

from conftest import make_edge, make_node


class TestNodes:
    """Tests for node upserts and queries."""

    def test_upsert_and_get(self, storage):
        """Test a stored node can be read back by id."""
        node = make_node("i-1")
        storage.upsert_node(node)
        assert storage.get_node(node.id).native_id == "i-1"

    def test_get_missing(self, storage):
        """Test an unknown id returns None."""
        assert storage.get_node("missing") is None

    def test_upsert_is_last_write_wins(self, storage):
        """Test a second upsert replaces attributes."""
        storage.upsert_node(make_node("i-1", name="old"))
        storage.upsert_node(make_node("i-1", name="new"))
        assert len(storage.list_nodes()) == 1
        assert storage.list_nodes()[0].name == "new"

    def test_upsert_preserves_discovered_at(self, storage):
        """Test the first-seen timestamp survives re-upserts."""
        first = make_node("i-1")
        first.discovered_at = utcnow() - timedelta(days=3)
        storage.upsert_node(first)
        storage.upsert_node(make_node("i-1"))
        assert storage.get_node(first.id).discovered_at == first.discovered_at

    def test_returned_nodes_are_copies(self, storage):
        """Test mutating a returned node does not touch storage."""
        node = make_node("i-1")
        storage.upsert_node(node)
        storage.get_node(node.id).tags["x"] = "y"
        assert storage.get_node(node.id).tags == {}

    def test_list_nodes_filters(self, populated_storage):
        """Test filtering by type, tag and limit."""
        assert len(populated_storage.list_nodes(NodeFilter(resource_type="compute"))) == 2
        tagged = populated_storage.list_nodes(NodeFilter(tags={"Owner": "platform"}))
        assert [n.native_id for n in tagged] == ["i-1"]
        assert len(populated_storage.list_nodes(NodeFilter(limit=1))) == 1

    def test_list_nodes_ordered_by_id(self, populated_storage):
        """Test node listings are ordered by id."""
        ids = [n.id for n in populated_storage.list_nodes()]
        assert ids == sorted(ids)


class TestEdges:
    """Tests for edge operations."""

    def test_edges_for_node_directions(self, populated_storage, sample_nodes):
        """Test outgoing, incoming and both directions."""
        _, subnet, _, _ = sample_nodes
        assert len(populated_storage.get_edges_for_node(subnet.id, "outgoing")) == 1
        assert len(populated_storage.get_edges_for_node(subnet.id, "incoming")) == 2
        assert len(populated_storage.get_edges_for_node(subnet.id)) == 3

    def test_invalid_direction(self, populated_storage):
        """Test an unknown direction raises ValueError."""
        with pytest.raises(ValueError):
            populated_storage.get_edges_for_node("x", "sideways")

    def test_remove_edge(self, populated_storage, sample_edges):
        """Test removal reports whether the edge existed."""
        assert populated_storage.remove_edge(sample_edges[0].id) is True
        assert populated_storage.remove_edge(sample_edges[0].id) is False
        assert populated_storage.get_edge(sample_edges[0].id) is None

    def test_list_edges_by_relationship(self, populated_storage):
        """Test filtering edges by relationship type."""
        assert len(populated_storage.list_edges(EdgeFilter(relationship_type="runs-in"))) == 3
        assert populated_storage.list_edges(EdgeFilter(relationship_type="uses")) == []

    def test_edge_upsert_preserves_discovered_at(self, storage):
        """Test re-upserting an edge keeps its first-seen time."""
        a, b = make_node("a"), make_node("b")
        first = make_edge(a, "uses", b)
        first.discovered_at = utcnow() - timedelta(days=1)
        storage.upsert_edge(first)
        storage.upsert_edge(make_edge(a, "uses", b))
        assert storage.get_edge(first.id).discovered_at == first.discovered_at

    def test_upsert_does_not_mutate_argument(self, storage):
        """Test the caller's edge keeps its own timestamps after an upsert."""
        a, b = make_node("a"), make_node("b")
        first = make_edge(a, "uses", b)
        first.discovered_at = utcnow() - timedelta(days=1)
        storage.upsert_edge(first)
        second = make_edge(a, "uses", b)
        seen_at = second.discovered_at

        storage.upsert_edge(second)

        assert second.discovered_at == seen_at

    def test_returned_edges_are_copies(self, storage):
        """Test mutating a returned or upserted edge does not touch storage."""
        a, b = make_node("a"), make_node("b")
        edge = make_edge(a, "uses", b, metadata={"field": "Role"})
        storage.upsert_edge(edge)
        edge.metadata["field"] = "changed"

        storage.get_edge(edge.id).metadata["x"] = "y"
        storage.list_edges()[0].confidence = 0.1

        stored = storage.get_edge(edge.id)
        assert stored.metadata == {"field": "Role"}
        assert stored.confidence == 1.0


class TestChanges:
    """Tests for the append-only change log."""

    def test_changes_ordered_by_detection(self, storage):
        """Test changes come back oldest first regardless of append order."""
        now = utcnow()
        late = GraphChange("n", ChangeType.NODE_UPDATED, detected_at=now)
        early = GraphChange("n", ChangeType.NODE_CREATED, detected_at=now - timedelta(minutes=5))
        storage.append_changes([late, early])
        assert [c.id for c in storage.get_changes()] == [early.id, late.id]

    def test_window_is_inclusive(self, storage):
        """Test since and until bounds are inclusive."""
        now = utcnow()
        change = GraphChange("n", ChangeType.NODE_CREATED, detected_at=now)
        storage.append_change(change)
        assert storage.get_changes(ChangeFilter(since=now, until=now)) == [change]

    def test_filter_by_type_and_target(self, storage):
        """Test change type and target filters."""
        storage.append_changes([
            GraphChange("a", ChangeType.NODE_CREATED),
            GraphChange("b", ChangeType.NODE_DISAPPEARED),
        ])
        assert len(storage.get_changes(ChangeFilter(change_types=[ChangeType.NODE_DISAPPEARED]))) == 1
        assert [c.target_id for c in storage.get_node_timeline("a")] == ["a"]


class TestSyncRecords:
    """Tests for sync record persistence."""

    def test_most_recent_first(self, storage):
        """Test listing orders by start time descending."""
        now = utcnow()
        old = SyncRecord("aws", SyncStatus.COMPLETED, started_at=now - timedelta(hours=1))
        new = SyncRecord("aws", SyncStatus.COMPLETED, started_at=now)
        storage.save_sync_record(old)
        storage.save_sync_record(new)
        assert storage.list_sync_records()[0].id == new.id
        assert storage.get_last_sync_record("aws").id == new.id

    def test_filter_by_provider(self, storage):
        """Test provider filtering."""
        storage.save_sync_record(SyncRecord("aws", SyncStatus.COMPLETED, started_at=utcnow()))
        assert storage.get_last_sync_record("gcp") is None


class TestStats:
    """Tests for the aggregate stats snapshot."""

    def test_empty_stats(self):
        """Test stats of an empty store."""
        stats = InMemoryGraphStorage().get_stats()
        assert stats.total_nodes == 0
        assert stats.total_cost_monthly == 0.0
        assert stats.last_sync_at is None

    def test_stats_counts(self, populated_storage):
        """Test counts and cost totals."""
        stats = populated_storage.get_stats()
        assert stats.total_nodes == 4
        assert stats.total_edges == 3
        assert stats.nodes_by_resource_type["compute"] == 2
        assert stats.edges_by_relationship_type == {"runs-in": 3}
        assert stats.total_cost_monthly == pytest.approx(140.16)

    def test_disappeared_nodes_excluded(self, storage):
        """Test disappeared nodes do not count toward totals or cost."""
        storage.upsert_node(make_node("i-1", cost_monthly=10.0))
        storage.upsert_node(make_node("i-2", cost_monthly=5.0, status=NodeStatus.DISAPPEARED))
        stats = storage.get_stats()
        assert stats.total_nodes == 1
        assert stats.total_cost_monthly == 10.0

    def test_health_check(self, storage):
        """Test the in-memory backend is always healthy."""
        assert storage.health_check() is True

