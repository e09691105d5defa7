"""GCP discovery adapter over Cloud Asset Inventory records.

The asset client is injected and only needs one call::

    client.list_assets(parent: str, asset_types: List[str]) -> Iterable[dict]

returning Cloud Asset records shaped like
``{"name": "//compute.googleapis.com/projects/p/zones/z/instances/vm",
"assetType": "compute.googleapis.com/Instance", "resource": {"data": {...},
"location": "..."}}``. proto-plus messages (``Asset.to_dict(asset)``) are
accepted as well.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from infragraph.constants import GPU_INSTANCE_PATTERN
from infragraph.core.bus import EventBus
from infragraph.core.graph import NodeStatus
from infragraph.core.telemetry import instrumented
from infragraph.discovery.base import ANY_REGION, GLOBAL_REGION, DiscoveryAdapter, ResourceMapping
from infragraph.discovery.fieldpath import extract_resource_id, first_raw_value, first_value
from infragraph.discovery.relationships import RelationshipRule
from infragraph.errors import AdapterUnavailable

logger = logging.getLogger(__name__)

_DATA = "resource.data"


def _asset(resource_type: str, asset_type: str, type_field: Optional[str] = None) -> ResourceMapping:
    return ResourceMapping(
        resource_type=resource_type,
        service=asset_type,
        operation="list_assets",
        items_path="",
        id_field="name",
        name_field=f"{_DATA}.name",
        arn_field=f"{_DATA}.selfLink",
        regional=False,
        type_field=type_field,
        status_field=f"{_DATA}.status",
    )


GCP_RESOURCE_MAPPINGS = [
    _asset("compute", "compute.googleapis.com/Instance", type_field=f"{_DATA}.machineType"),
    _asset("vpc", "compute.googleapis.com/Network"),
    _asset("subnet", "compute.googleapis.com/Subnetwork"),
    _asset("security-group", "compute.googleapis.com/Firewall"),
    _asset("load-balancer", "compute.googleapis.com/ForwardingRule"),
    _asset("storage", "compute.googleapis.com/Disk", type_field=f"{_DATA}.type"),
    _asset("storage", "storage.googleapis.com/Bucket"),
    _asset("cluster", "container.googleapis.com/Cluster"),
    _asset("serverless-function", "cloudfunctions.googleapis.com/CloudFunction"),
    _asset("database", "sqladmin.googleapis.com/Instance", type_field=f"{_DATA}.settings.tier"),
    _asset("cache", "redis.googleapis.com/Instance"),
    _asset("topic", "pubsub.googleapis.com/Topic"),
    _asset("queue", "pubsub.googleapis.com/Subscription"),
    _asset("secret", "secretmanager.googleapis.com/Secret"),
    _asset("identity", "iam.googleapis.com/ServiceAccount"),
    _asset("dns", "dns.googleapis.com/ManagedZone"),
    _asset("ml-endpoint", "aiplatform.googleapis.com/Endpoint"),
    _asset("ml-model", "aiplatform.googleapis.com/Model"),
]

GCP_RELATIONSHIP_RULES = [
    RelationshipRule("compute", f"{_DATA}.networkInterfaces[].network", "runs-in",
                     is_array=True, target_resource_type="vpc"),
    RelationshipRule("compute", f"{_DATA}.networkInterfaces[].subnetwork", "runs-in",
                     is_array=True, target_resource_type="subnet"),
    RelationshipRule("compute", f"{_DATA}.disks[].source", "attached-to",
                     is_array=True, bidirectional=True, target_resource_type="storage"),
    RelationshipRule("compute", f"{_DATA}.serviceAccounts[].email", "uses",
                     is_array=True, target_resource_type="identity"),
    RelationshipRule("subnet", f"{_DATA}.network", "runs-in", target_resource_type="vpc"),
    RelationshipRule("security-group", f"{_DATA}.network", "secures", target_resource_type="vpc"),
    RelationshipRule("load-balancer", f"{_DATA}.network", "runs-in", target_resource_type="vpc"),
    RelationshipRule("cluster", f"{_DATA}.network", "runs-in", target_resource_type="vpc"),
    RelationshipRule("cluster", f"{_DATA}.subnetwork", "runs-in", target_resource_type="subnet"),
    RelationshipRule("serverless-function", f"{_DATA}.serviceAccountEmail", "uses",
                     target_resource_type="identity"),
    RelationshipRule("queue", f"{_DATA}.topic", "subscribes-to", target_resource_type="topic"),
    RelationshipRule("database", f"{_DATA}.settings.ipConfiguration.privateNetwork", "runs-in",
                     target_resource_type="vpc"),
    RelationshipRule("ml-endpoint", f"{_DATA}.deployedModels[].model", "depends-on",
                     is_array=True, target_resource_type="ml-model"),
]

# Machine type -> monthly USD
GCP_VM_COSTS = {
    "e2-micro": 6.11, "e2-small": 12.23, "e2-medium": 24.46,
    "e2-standard-2": 48.92, "e2-standard-4": 97.83, "e2-standard-8": 195.67,
    "n2-standard-2": 69.35, "n2-standard-4": 138.70, "n2-standard-8": 277.40,
    "n2d-standard-2": 60.12, "n2d-standard-4": 120.25,
    "c2-standard-4": 152.06, "c2-standard-8": 304.12,
    "a2-highgpu-1g": 2556.14, "a2-highgpu-2g": 5112.28, "a2-highgpu-8g": 20449.12,
    "a3-highgpu-8g": 28032.00,
    "g2-standard-4": 513.36, "g2-standard-8": 857.52,
}

# Cloud SQL tier -> monthly USD
GCP_SQL_COSTS = {
    "db-f1-micro": 8.61, "db-g1-small": 26.73,
    "db-n1-standard-1": 51.10, "db-n1-standard-2": 102.20, "db-n1-standard-4": 204.40,
}

GKE_MANAGEMENT_FEE = 73.00
REDIS_GB_MONTHLY = 48.00

GCP_STATIC_COSTS = {
    "storage.googleapis.com/Bucket": 0.02,
    "pubsub.googleapis.com/Topic": 0.01,
    "secretmanager.googleapis.com/Secret": 0.06,
    "dns.googleapis.com/ManagedZone": 0.20,
    "compute.googleapis.com/ForwardingRule": 18.25,
}

GCP_GPU_FAMILIES = ("a2-", "a3-", "g2-")
AI_ASSET_PREFIXES = ("aiplatform.googleapis.com/", "notebooks.googleapis.com/", "tpu.googleapis.com/")

_STATUS_MAP = {
    "RUNNING": NodeStatus.RUNNING,
    "READY": NodeStatus.RUNNING,
    "ACTIVE": NodeStatus.RUNNING,
    "SERVING": NodeStatus.RUNNING,
    "RUNNABLE": NodeStatus.RUNNING,
    "TERMINATED": NodeStatus.STOPPED,
    "STOPPED": NodeStatus.STOPPED,
    "SUSPENDED": NodeStatus.STOPPED,
    "STAGING": NodeStatus.CREATING,
    "PROVISIONING": NodeStatus.CREATING,
    "CREATING": NodeStatus.CREATING,
    "PENDING_CREATE": NodeStatus.CREATING,
    "STOPPING": NodeStatus.DELETING,
    "DELETING": NodeStatus.DELETING,
    "ERROR": NodeStatus.ERROR,
    "FAILED": NodeStatus.ERROR,
}

_ZONE_RE = re.compile(r"/zones/([^/]+)(?:/|$)")
_REGION_RE = re.compile(r"/regions/([^/]+)(?:/|$)")
_LOCATION_RE = re.compile(r"/locations/([^/]+)(?:/|$)")
_ZONE_SUFFIX_RE = re.compile(r"-[a-z]$")


def _as_dict(record: Any) -> Any:
    if isinstance(record, dict):
        return record
    # proto-plus messages convert through their class
    to_dict = getattr(type(record), "to_dict", None)
    return to_dict(record, preserving_proto_field_name=False) if callable(to_dict) else record


def _zone_to_region(location: str) -> str:
    # us-central1-a -> us-central1; regions and multi-regions pass through
    if location.count("-") >= 2 and _ZONE_SUFFIX_RE.search(location):
        return _ZONE_SUFFIX_RE.sub("", location)
    return location


def extract_location(asset: Dict[str, Any]) -> str:
    """Region of an asset: resource.location, else the zone/region/location path segment."""
    location = first_value(asset, "resource.location")
    if location:
        return _zone_to_region(str(location))
    name = str(asset.get("name", ""))
    zone = _ZONE_RE.search(name)
    if zone:
        return _zone_to_region(zone.group(1))
    for pattern in (_REGION_RE, _LOCATION_RE):
        match = pattern.search(name)
        if match:
            return match.group(1)
    return GLOBAL_REGION


class GcpDiscoveryAdapter(DiscoveryAdapter):
    """Discover GCP resources of one project through Cloud Asset Inventory."""

    provider = "gcp"
    # Asset inventory lists every region at once
    global_scope_region = ANY_REGION
    created_at_fields = (f"{_DATA}.creationTimestamp", f"{_DATA}.createTime", f"{_DATA}.timeCreated")

    def __init__(
        self,
        project_id: str,
        client: Optional[Any] = None,
        mappings: Sequence[ResourceMapping] = tuple(GCP_RESOURCE_MAPPINGS),
        relationship_rules: Sequence[RelationshipRule] = tuple(GCP_RELATIONSHIP_RULES),
        event_bus: Optional[EventBus] = None,
        max_workers: int = 8,
    ):
        super().__init__(project_id, mappings, relationship_rules, event_bus, max_workers)
        self.project_id = project_id
        self.client = client

    @property
    def parent(self) -> str:
        return f"projects/{self.project_id}"

    def ensure_available(self) -> None:
        if self.client is None:
            raise AdapterUnavailable(self.provider, "no Cloud Asset client configured")

    def health_check(self) -> bool:
        if self.client is None:
            return False
        try:
            list(self.client.list_assets(self.parent, ["compute.googleapis.com/Instance"]))
            return True
        except Exception as e:
            logger.warning("GCP health check failed: %s", type(e).__name__)
            return False

    def list_regions(self) -> List[str]:
        # Asset inventory is queried per project, not per region
        return []

    def fetch(self, mapping: ResourceMapping, region: Optional[str]) -> List[Dict[str, Any]]:
        list_assets = instrumented(self.client.list_assets, self.event_bus, "gcp", "cloudasset", mapping.service)
        records = [_as_dict(r) for r in list_assets(self.parent, [mapping.service])]
        return [r for r in records if isinstance(r, dict) and r.get("assetType", mapping.service) == mapping.service]

    # Normalization

    def node_region(self, mapping: ResourceMapping, raw: Dict[str, Any], region: Optional[str]) -> str:
        return extract_location(raw)

    def normalize_status(self, raw_status: Any) -> NodeStatus:
        if raw_status is None:
            return NodeStatus.RUNNING
        return _STATUS_MAP.get(str(raw_status).upper(), NodeStatus.RUNNING)

    def extract_tags(self, raw: Dict[str, Any]) -> Dict[str, str]:
        labels = first_raw_value(raw, f"{_DATA}.labels")
        if not isinstance(labels, dict):
            return {}
        return {str(k): str(v) for k, v in labels.items()}

    def aliases(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> List[Any]:
        aliases = super().aliases(mapping, raw)
        # Service accounts are referenced by email
        aliases.append(first_value(raw, f"{_DATA}.email"))
        return aliases

    def _machine_type(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Optional[str]:
        value = first_value(raw, mapping.type_field) if mapping.type_field else None
        return extract_resource_id(value).lower() if value else None

    def lookup_cost(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Optional[float]:
        asset_type = mapping.service
        if asset_type == "compute.googleapis.com/Instance":
            return GCP_VM_COSTS.get(self._machine_type(mapping, raw) or "")
        if asset_type == "sqladmin.googleapis.com/Instance":
            return GCP_SQL_COSTS.get(self._machine_type(mapping, raw) or "")
        if asset_type == "redis.googleapis.com/Instance":
            size = first_value(raw, f"{_DATA}.memorySizeGb")
            return round(float(size) * REDIS_GB_MONTHLY, 2) if isinstance(size, (int, float)) else None
        if asset_type == "container.googleapis.com/Cluster":
            total = GKE_MANAGEMENT_FEE
            for pool in first_raw_value(raw, f"{_DATA}.nodePools") or []:
                if not isinstance(pool, dict):
                    continue
                machine = extract_resource_id(first_value(pool, "config.machineType", "")).lower()
                total += GCP_VM_COSTS.get(machine, 0.0) * int(pool.get("initialNodeCount") or 1)
            return round(total, 2)
        return None

    def static_cost(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Optional[float]:
        return GCP_STATIC_COSTS.get(mapping.service)

    def classify_workload(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Dict[str, Any]:
        flags: Dict[str, Any] = {}
        machine = self._machine_type(mapping, raw) or ""
        accelerators = first_raw_value(raw, f"{_DATA}.guestAccelerators")
        if accelerators or machine.startswith(GCP_GPU_FAMILIES) or GPU_INSTANCE_PATTERN.match(machine):
            flags["gpuInstance"] = True
            flags["aiWorkload"] = True
        if mapping.service.startswith(AI_ASSET_PREFIXES):
            flags["aiWorkload"] = True
        return flags

    def extract_metadata(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"assetType": mapping.service}
        machine = self._machine_type(mapping, raw)
        if machine:
            metadata["machineType"] = machine
        self_link = first_value(raw, f"{_DATA}.selfLink")
        if self_link:
            metadata["selfLink"] = self_link
        return metadata
