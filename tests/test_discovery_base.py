"""Tests for the generic discovery adapter pipeline."""

import threading

import pytest

from infragraph.core.graph import NodeStatus
from infragraph.discovery.base import (
    ALL_RESOURCE_TYPES,
    DiscoverOptions,
    ResourceMapping,
    parse_timestamp,
)
from infragraph.errors import AdapterUnavailable, ConfigurationError

from conftest import StaticAdapter


COMPUTE = {"id": "c1", "name": "web", "state": "on", "size": "small", "network_id": "n1",
           "tags": {"Owner": "platform", "env": "prod"}}
COMPUTE_2 = {"id": "c2", "name": "worker", "size": "large", "network_id": "n1", "tags": {"env": "dev"}}
NETWORK = {"id": "n1", "name": "net"}


def _records():
    return {
        ("compute", "r1"): [COMPUTE, COMPUTE_2],
        ("network", "r1"): [NETWORK],
    }


class UnavailableAdapter(StaticAdapter):
    def ensure_available(self):
        raise AdapterUnavailable(self.provider, "no credentials")


class TestBuildNode:
    """Tests for canonical node construction."""

    def test_node_fields(self, static_adapter_factory):
        """Test identity, name, tags, owner and metadata of a built node."""
        result = static_adapter_factory(_records()).discover()
        node = next(n for n in result.nodes if n.native_id == "c1")

        assert node.id == "test:acct:r1:compute:c1"
        assert node.name == "web"
        assert node.region == "r1"
        assert node.owner == "platform"
        assert node.metadata["instanceType"] == "small"
        assert node.status == NodeStatus.RUNNING

    def test_record_without_id_is_skipped(self, static_adapter_factory):
        """Test records lacking an identifier produce no node."""
        records = {("compute", "r1"): [{"name": "nameless"}], ("network", "r1"): []}
        result = static_adapter_factory(records).discover()
        assert result.nodes == []
        assert result.errors == []

    def test_created_at_parsed(self):
        """Test ISO timestamps with a Z suffix become aware datetimes."""
        parsed = parse_timestamp("2024-01-02T03:04:05Z")
        assert parsed.tzinfo is not None
        assert parse_timestamp("not a date") is None


class TestDiscover:
    """Tests for discovery orchestration."""

    def test_nodes_and_edges(self, static_adapter_factory):
        """Test nodes of every type and the inferred edges."""
        result = static_adapter_factory(_records()).discover()

        assert len(result.nodes) == 3
        assert {(e.source_node_id, e.target_node_id) for e in result.edges} == {
            ("test:acct:r1:compute:c1", "test:acct:r1:network:n1"),
            ("test:acct:r1:compute:c2", "test:acct:r1:network:n1"),
        }
        assert result.scanned_scopes == {("r1", "compute"), ("r1", "network")}
        assert result.duration_ms >= 0

    def test_partial_failure_isolated_per_type(self, static_adapter_factory):
        """Test a failing type yields one error listing every failed region."""
        records = {
            ("network", "r1"): [NETWORK],
            ("network", "r2"): [],
        }
        failures = {
            ("compute", "r1"): RuntimeError("throttled"),
            ("compute", "r2"): RuntimeError("throttled"),
        }
        adapter = static_adapter_factory(records, regions=("r1", "r2"), failures=failures)

        result = adapter.discover()

        assert [n.native_id for n in result.nodes] == ["n1"]
        assert len(result.errors) == 1
        assert result.errors[0].resource_type == "compute"
        assert sorted(result.errors[0].regions) == ["r1", "r2"]
        assert result.errors[0].code == "RuntimeError"
        assert ("r1", "compute") not in result.scanned_scopes
        assert ("r2", "network") in result.scanned_scopes

    def test_unavailable_adapter(self):
        """Test an unavailable client yields one top-level error and no nodes."""
        result = UnavailableAdapter().discover()

        assert result.nodes == []
        assert len(result.errors) == 1
        assert result.errors[0].resource_type == ALL_RESOURCE_TYPES
        assert result.unavailable is True

    def test_resource_type_filter(self, static_adapter_factory):
        """Test only the requested types are fetched."""
        result = static_adapter_factory(_records()).discover(DiscoverOptions(resource_types=["network"]))
        assert [n.resource_type for n in result.nodes] == ["network"]
        assert result.edges == []

    def test_unknown_resource_type(self, static_adapter_factory):
        """Test selecting no known types yields a top-level error."""
        result = static_adapter_factory(_records()).discover(DiscoverOptions(resource_types=["nope"]))
        assert result.nodes == []
        assert result.errors[0].code == "NoResourceTypes"

    def test_region_override(self, static_adapter_factory):
        """Test explicit regions replace the adapter's own list."""
        adapter = static_adapter_factory({("network", "r9"): [NETWORK]})
        result = adapter.discover(DiscoverOptions(regions=["r9"]))
        assert [n.region for n in result.nodes] == ["r9"]

    def test_tag_filter_marks_no_scope_complete(self, static_adapter_factory):
        """Test a tag filter hides resources so no scope counts as scanned."""
        result = static_adapter_factory(_records()).discover(DiscoverOptions(tags={"env": "prod"}))
        assert [n.native_id for n in result.nodes] == ["c1"]
        assert result.scanned_scopes == set()

    def test_limit_truncates(self, static_adapter_factory):
        """Test the node limit stops discovery and leaves the scope incomplete."""
        result = static_adapter_factory(_records()).discover(
            DiscoverOptions(resource_types=["compute"], limit=1)
        )
        assert len(result.nodes) == 1
        assert ("r1", "compute") not in result.scanned_scopes

    def test_cancelled_before_start(self, static_adapter_factory):
        """Test a pre-set cancel signal skips every fetch."""
        signal = threading.Event()
        signal.set()
        result = static_adapter_factory(_records()).discover(DiscoverOptions(cancel_signal=signal))
        assert result.cancelled is True
        assert result.nodes == []
        assert result.scanned_scopes == set()

    def test_global_mapping_scope(self):
        """Test non-regional mappings are fetched once and scoped to 'global'."""
        mappings = [ResourceMapping("dns", "svc", "list_zones", "", "id", regional=False)]
        adapter = StaticAdapter({("dns", None): [{"id": "z1"}]}, mappings=mappings, regions=("r1", "r2"))

        result = adapter.discover()

        assert [n.region for n in result.nodes] == ["global"]
        assert result.scanned_scopes == {("global", "dns")}

    def test_supported_resource_types(self, static_adapter_factory):
        """Test resource types are listed once in mapping order."""
        assert static_adapter_factory().supported_resource_types() == ["compute", "network"]


class TestResourceMapping:
    """Tests for mapping construction."""

    def test_malformed_path_rejected(self):
        """Test a mapping with an unparseable path cannot be built."""
        with pytest.raises(ConfigurationError) as exc_info:
            ResourceMapping("compute", "svc", "list_compute", "", "id", name_field="Tags..Name")
        assert exc_info.value.field == "name_field"

    def test_id_field_required(self):
        """Test an empty id path is rejected while other paths may be omitted."""
        with pytest.raises(ConfigurationError):
            ResourceMapping("compute", "svc", "list_compute", "", "")
        assert ResourceMapping("compute", "svc", "list_compute", "", "id").name_field is None
