"""Tests for GraphEngine sync orchestration and graph queries."""

import pytest

from infragraph.core.graph import ChangeType, SyncStatus
from infragraph.discovery.registry import AdapterRegistry
from infragraph.engine import GraphEngine
from infragraph.repositories.base import NodeFilter

from conftest import StaticAdapter


class OtherAdapter(StaticAdapter):
    provider = "other"


class TestSync:
    """Tests for GraphEngine.sync."""

    def test_one_record_per_adapter(self, storage, static_adapter_factory):
        """Test each registered adapter writes one sync record."""
        engine = GraphEngine(storage)
        engine.register_adapter(static_adapter_factory({("compute", "r1"): [{"id": "c1"}]}))
        engine.register_adapter(OtherAdapter({("network", "r1"): [{"id": "n1"}]}))

        records = engine.sync()

        assert [r.provider for r in records] == ["test", "other"]
        assert all(r.status == SyncStatus.COMPLETED for r in records)
        assert engine.get_stats().nodes_by_provider == {"test": 1, "other": 1}

    def test_no_adapters(self, storage):
        """Test zero adapters produce zero records."""
        assert GraphEngine(storage).sync() == []
        assert storage.list_sync_records() == []

    def test_probed_unhealthy_adapter_skipped(self, storage):
        """Test adapters that failed their probe are not synced."""
        registry = AdapterRegistry()
        registry.register(StaticAdapter(healthy=False))
        registry.register(OtherAdapter())
        registry.probe()

        records = GraphEngine(storage, registry).sync()

        assert [r.provider for r in records] == ["other"]

    def test_timeline_after_sync(self, storage, static_adapter_factory):
        """Test the node timeline starts with its creation."""
        engine = GraphEngine(storage)
        engine.register_adapter(static_adapter_factory({("compute", "r1"): [{"id": "c1"}]}))
        engine.sync()

        timeline = engine.get_node_timeline("test:acct:r1:compute:c1")

        assert len(timeline) == 1
        assert timeline[0].change_type == ChangeType.NODE_CREATED


class TestBlastRadius:
    """Tests for blast-radius traversal."""

    def test_both_directions(self, populated_storage, sample_nodes):
        """Test the traversal follows edges both ways with hop counts."""
        vpc, subnet, i1, i2 = sample_nodes

        radius = GraphEngine(populated_storage).get_blast_radius(vpc.id)

        assert radius.hops == {vpc.id: 0, subnet.id: 1, i1.id: 2, i2.id: 2}
        assert len(radius.edges) == 3
        assert radius.total_cost_monthly == 140.16

    def test_depth_limit(self, populated_storage, sample_nodes):
        """Test nodes beyond the depth are not visited."""
        vpc, subnet, _, _ = sample_nodes

        radius = GraphEngine(populated_storage).get_blast_radius(vpc.id, depth=1)

        assert set(radius.nodes) == {vpc.id, subnet.id}
        assert len(radius.edges) == 1

    def test_outgoing_only(self, populated_storage, sample_nodes):
        """Test an outgoing traversal follows dependencies only."""
        vpc, subnet, i1, _ = sample_nodes
        engine = GraphEngine(populated_storage)

        assert engine.get_blast_radius(i1.id, direction="outgoing").hops == {i1.id: 0, subnet.id: 1, vpc.id: 2}
        assert list(engine.get_blast_radius(vpc.id, direction="outgoing").nodes) == [vpc.id]

    def test_unknown_root(self, storage):
        """Test an unknown root yields an empty result."""
        radius = GraphEngine(storage).get_blast_radius("missing")
        assert radius.nodes == {}
        assert radius.total_cost_monthly == 0.0

    def test_invalid_direction(self, populated_storage, sample_nodes):
        """Test an unknown direction is rejected."""
        with pytest.raises(ValueError):
            GraphEngine(populated_storage).get_blast_radius(sample_nodes[0].id, direction="sideways")


class TestTopology:
    """Tests for filtered topology views."""

    def test_full_topology(self, populated_storage):
        """Test an unfiltered view returns every node and edge."""
        topology = GraphEngine(populated_storage).get_topology()
        assert len(topology["nodes"]) == 4
        assert len(topology["edges"]) == 3

    def test_edges_limited_to_selected_nodes(self, populated_storage):
        """Test only edges between selected nodes are returned."""
        topology = GraphEngine(populated_storage).get_topology(NodeFilter(resource_type="compute"))
        assert len(topology["nodes"]) == 2
        assert topology["edges"] == []
