"""Tests for the GCP discovery adapter."""

import pytest
from unittest.mock import MagicMock

from infragraph.core.graph import NodeStatus
from infragraph.discovery.base import DiscoverOptions
from infragraph.discovery.gcp import (
    GCP_RESOURCE_MAPPINGS,
    GcpDiscoveryAdapter,
    extract_location,
)

PROJECT = "demo-project"
COMPUTE_API = "https://www.googleapis.com/compute/v1/projects/demo-project"

NETWORK = {
    "name": f"//compute.googleapis.com/projects/{PROJECT}/global/networks/default",
    "assetType": "compute.googleapis.com/Network",
    "resource": {"data": {"name": "default", "selfLink": f"{COMPUTE_API}/global/networks/default"}},
}

INSTANCE = {
    "name": f"//compute.googleapis.com/projects/{PROJECT}/zones/us-central1-a/instances/vm-1",
    "assetType": "compute.googleapis.com/Instance",
    "resource": {
        "location": "us-central1-a",
        "data": {
            "name": "vm-1",
            "status": "TERMINATED",
            "machineType": f"{COMPUTE_API}/zones/us-central1-a/machineTypes/e2-medium",
            "labels": {"owner": "data-team"},
            "creationTimestamp": "2024-03-01T10:00:00.000-07:00",
            "networkInterfaces": [{"network": f"{COMPUTE_API}/global/networks/default"}],
            "serviceAccounts": [{"email": "app@demo-project.iam.gserviceaccount.com"}],
        },
    },
}

SERVICE_ACCOUNT = {
    "name": f"//iam.googleapis.com/projects/{PROJECT}/serviceAccounts/1234",
    "assetType": "iam.googleapis.com/ServiceAccount",
    "resource": {"data": {"name": "app", "email": "app@demo-project.iam.gserviceaccount.com"}},
}


def _client(*assets):
    client = MagicMock()

    def list_assets(parent, asset_types):
        return [a for a in assets if a["assetType"] in asset_types]

    client.list_assets.side_effect = list_assets
    return client


def _mappings(*asset_types):
    return [m for m in GCP_RESOURCE_MAPPINGS if m.service in asset_types]


class TestExtractLocation:
    """Tests for asset location parsing."""

    @pytest.mark.parametrize("asset,expected", [
        ({"resource": {"location": "us-central1-a"}}, "us-central1"),
        ({"resource": {"location": "europe-west4"}}, "europe-west4"),
        ({"resource": {"location": "US"}}, "US"),
        ({"name": "//compute.googleapis.com/projects/p/zones/asia-east1-b/disks/d"}, "asia-east1"),
        ({"name": "//compute.googleapis.com/projects/p/regions/us-east1/subnetworks/s"}, "us-east1"),
        ({"name": "//run.googleapis.com/projects/p/locations/us-west1/services/api"}, "us-west1"),
        ({"name": "//storage.googleapis.com/bucket"}, "global"),
    ])
    def test_extract_location(self, asset, expected):
        """Test zones collapse to regions and unlocated assets are global."""
        assert extract_location(asset) == expected


class TestGcpDiscovery:
    """Tests for asset-inventory discovery."""

    def test_discovers_instance_with_edges(self):
        """Test node construction and URL-based relationship resolution."""
        adapter = GcpDiscoveryAdapter(
            PROJECT,
            client=_client(NETWORK, INSTANCE, SERVICE_ACCOUNT),
            mappings=_mappings(
                "compute.googleapis.com/Network",
                "compute.googleapis.com/Instance",
                "iam.googleapis.com/ServiceAccount",
            ),
        )

        result = adapter.discover()

        assert result.errors == []
        vm = next(n for n in result.nodes if n.resource_type == "compute")
        assert vm.id == f"gcp:{PROJECT}:us-central1:compute:{INSTANCE['name']}"
        assert vm.name == "vm-1"
        assert vm.status == NodeStatus.STOPPED
        assert vm.owner == "data-team"
        assert vm.cost_monthly == 24.46
        assert vm.metadata["machineType"] == "e2-medium"
        assert vm.created_at is not None

        targets = {(e.relationship_type, e.target_node_id.split(":")[3]) for e in result.edges
                   if e.source_node_id == vm.id}
        assert targets == {("runs-in", "vpc"), ("uses", "identity")}

    def test_scopes_cover_every_region(self):
        """Test asset-inventory scopes use the any-region marker."""
        adapter = GcpDiscoveryAdapter(
            PROJECT, client=_client(NETWORK), mappings=_mappings("compute.googleapis.com/Network"),
        )
        result = adapter.discover()
        assert result.scanned_scopes == {("*", "vpc")}
        assert result.nodes[0].region == "global"

    def test_client_is_called_with_project_parent(self):
        """Test list_assets receives the project parent and one asset type."""
        client = _client()
        GcpDiscoveryAdapter(PROJECT, client=client, mappings=_mappings("pubsub.googleapis.com/Topic")).discover()
        client.list_assets.assert_called_once_with(f"projects/{PROJECT}", ["pubsub.googleapis.com/Topic"])

    def test_failure_isolated(self):
        """Test a failing asset type yields one error."""
        client = MagicMock()
        client.list_assets.side_effect = PermissionError("denied")
        adapter = GcpDiscoveryAdapter(PROJECT, client=client, mappings=_mappings("pubsub.googleapis.com/Topic"))

        result = adapter.discover()

        assert len(result.errors) == 1
        assert result.errors[0].resource_type == "topic"
        assert result.errors[0].code == "PermissionError"

    def test_no_client_is_unavailable(self):
        """Test a missing client yields an unavailable result."""
        result = GcpDiscoveryAdapter(PROJECT).discover(DiscoverOptions())
        assert result.unavailable is True
        assert GcpDiscoveryAdapter(PROJECT).health_check() is False


class TestGcpCosts:
    """Tests for GCP cost estimation."""

    def _mapping(self, asset_type):
        return _mappings(asset_type)[0]

    def test_gke_cluster_cost(self):
        """Test GKE cost is the management fee plus node pools."""
        raw = {"resource": {"data": {"nodePools": [
            {"initialNodeCount": 3, "config": {"machineType": "e2-standard-2"}},
        ]}}}
        cost = GcpDiscoveryAdapter(PROJECT).lookup_cost(self._mapping("container.googleapis.com/Cluster"), raw)
        assert cost == round(73.00 + 3 * 48.92, 2)

    def test_redis_cost(self):
        """Test Memorystore cost scales with memory size."""
        raw = {"resource": {"data": {"memorySizeGb": 2}}}
        assert GcpDiscoveryAdapter(PROJECT).lookup_cost(self._mapping("redis.googleapis.com/Instance"), raw) == 96.0

    def test_bucket_static_cost(self):
        """Test buckets fall back to the static estimate."""
        mapping = self._mapping("storage.googleapis.com/Bucket")
        adapter = GcpDiscoveryAdapter(PROJECT)
        assert adapter.lookup_cost(mapping, {}) is None
        assert adapter.static_cost(mapping, {}) == 0.02

    def test_gpu_machine_flagged(self):
        """Test accelerator-optimized machines are AI workloads."""
        raw = {"resource": {"data": {"machineType": "zones/us-central1-a/machineTypes/a2-highgpu-1g"}}}
        flags = GcpDiscoveryAdapter(PROJECT).classify_workload(self._mapping("compute.googleapis.com/Instance"), raw)
        assert flags == {"gpuInstance": True, "aiWorkload": True}

    def test_vertex_endpoint_flagged(self):
        """Test Vertex AI assets are AI workloads."""
        flags = GcpDiscoveryAdapter(PROJECT).classify_workload(self._mapping("aiplatform.googleapis.com/Endpoint"), {})
        assert flags == {"aiWorkload": True}
