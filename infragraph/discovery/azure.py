"""Azure discovery adapter over Azure Resource Graph.

The Resource Graph client is injected and only needs one call::

    client.resources(query: QueryRequest) -> QueryResponse

as offered by ``azure.mgmt.resourcegraph.ResourceGraphClient``. Responses
carry ``data`` (a list of records in ``objectArray`` format) and a
``skip_token`` for the next page. Records are shaped like
``{"id": "/subscriptions/s/resourceGroups/rg/providers/Microsoft.Compute/virtualMachines/vm",
"name": "vm", "type": "microsoft.compute/virtualmachines", "location": "eastus",
"resourceGroup": "rg", "subscriptionId": "s", "tags": {...}, "properties": {...},
"sku": {...}}``.

Azure resource ids compare ignoring case. Native ids are stored lowercase.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from azure.core.exceptions import HttpResponseError
from azure.identity import DefaultAzureCredential
from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions

from infragraph.core.bus import EventBus
from infragraph.core.graph import NodeStatus
from infragraph.core.telemetry import instrumented
from infragraph.discovery.base import ANY_REGION, GLOBAL_REGION, DiscoveryAdapter, ResourceMapping
from infragraph.discovery.fieldpath import first_raw_value, first_value
from infragraph.discovery.relationships import RelationshipRule
from infragraph.errors import AdapterUnavailable, ConfigurationError

logger = logging.getLogger(__name__)

VNET_TYPE = "microsoft.network/virtualnetworks"
SUBNET_TYPE = "microsoft.network/virtualnetworks/subnets"

# Key of the parent resource id added to child records
PARENT_FIELD = "parentId"
# Key of the provisioning/power state summary added to every record
STATUS_FIELD = "statusSummary"

_PROJECTION = "id, name, type, kind, location, resourceGroup, subscriptionId, tags, properties, sku"


def _resource(resource_type: str, azure_type: str, type_field: str = "sku.name") -> ResourceMapping:
    return ResourceMapping(
        resource_type=resource_type,
        service=azure_type,
        operation="resources",
        items_path="",
        id_field="id",
        name_field="name",
        regional=False,
        type_field=type_field,
        status_field=STATUS_FIELD,
    )


AZURE_RESOURCE_MAPPINGS = [
    # Compute
    _resource("compute", "microsoft.compute/virtualmachines", type_field="properties.hardwareProfile.vmSize"),
    _resource("compute", "microsoft.compute/virtualmachinescalesets"),
    _resource("cluster", "microsoft.containerservice/managedclusters"),
    _resource("container", "microsoft.containerinstance/containergroups"),
    _resource("container", "microsoft.app/containerapps"),
    _resource("serverless-function", "microsoft.web/sites"),
    _resource("compute", "microsoft.web/serverfarms"),
    # Networking
    _resource("vpc", VNET_TYPE),
    _resource("subnet", SUBNET_TYPE),
    _resource("security-group", "microsoft.network/networksecuritygroups"),
    _resource("load-balancer", "microsoft.network/loadbalancers"),
    _resource("load-balancer", "microsoft.network/applicationgateways"),
    _resource("network", "microsoft.network/publicipaddresses"),
    _resource("network", "microsoft.network/networkinterfaces"),
    _resource("network", "microsoft.network/virtualnetworkgateways"),
    _resource("nat-gateway", "microsoft.network/natgateways"),
    _resource("dns", "microsoft.network/dnszones"),
    _resource("dns", "microsoft.network/privatednszones"),
    _resource("cdn", "microsoft.cdn/profiles"),
    _resource("cdn", "microsoft.network/frontdoors"),
    # Data
    _resource("database", "microsoft.sql/servers"),
    _resource("database", "microsoft.sql/servers/databases", type_field="properties.currentServiceObjectiveName"),
    _resource("database", "microsoft.dbformysql/flexibleservers"),
    _resource("database", "microsoft.dbforpostgresql/flexibleservers"),
    _resource("database", "microsoft.documentdb/databaseaccounts"),
    _resource("cache", "microsoft.cache/redis"),
    _resource("cache", "microsoft.cache/redisenterprise"),
    _resource("storage", "microsoft.storage/storageaccounts"),
    _resource("storage", "microsoft.compute/disks"),
    # Messaging
    _resource("queue", "microsoft.servicebus/namespaces"),
    _resource("stream", "microsoft.eventhub/namespaces"),
    _resource("topic", "microsoft.eventgrid/topics"),
    # Security and identity
    _resource("secret", "microsoft.keyvault/vaults"),
    _resource("identity", "microsoft.managedidentity/userassignedidentities"),
    _resource("api-gateway", "microsoft.apimanagement/service"),
    # AI
    _resource("custom", "microsoft.cognitiveservices/accounts"),
    _resource("custom", "microsoft.machinelearningservices/workspaces"),
    _resource("custom", "microsoft.machinelearningservices/workspaces/onlineendpoints"),
    _resource("custom", "microsoft.search/searchservices"),
]

AZURE_RELATIONSHIP_RULES = [
    RelationshipRule("compute", "properties.networkProfile.networkInterfaces[].id", "attached-to",
                     is_array=True, target_resource_type="network"),
    RelationshipRule("network", "properties.ipConfigurations[].properties.subnet.id", "runs-in",
                     is_array=True, target_resource_type="subnet"),
    RelationshipRule("network", "properties.networkSecurityGroup.id", "secured-by",
                     target_resource_type="security-group"),
    RelationshipRule("subnet", PARENT_FIELD, "runs-in", target_resource_type="vpc"),
    RelationshipRule("subnet", "properties.networkSecurityGroup.id", "secured-by",
                     target_resource_type="security-group"),
    RelationshipRule("security-group", "properties.subnets[].id", "secures",
                     is_array=True, target_resource_type="subnet"),
    RelationshipRule("load-balancer", "properties.frontendIPConfigurations[].properties.publicIPAddress.id",
                     "uses", is_array=True, target_resource_type="network"),
    RelationshipRule("cluster", "properties.agentPoolProfiles[].vnetSubnetID", "runs-in",
                     is_array=True, target_resource_type="subnet"),
    RelationshipRule("serverless-function", "properties.serverFarmId", "runs-in",
                     target_resource_type="compute"),
    RelationshipRule("database", PARENT_FIELD, "runs-in", target_resource_type="database"),
    RelationshipRule("secret", "properties.accessPolicies[].objectId", "used-by",
                     is_array=True, target_resource_type="identity"),
]

# VM size -> monthly USD, pay-as-you-go
AZURE_VM_COSTS = {
    "standard_b1s": 7.59, "standard_b2s": 30.37, "standard_b2ms": 60.74,
    "standard_d2s_v3": 70.08, "standard_d4s_v3": 140.16, "standard_d8s_v3": 280.32,
    "standard_d2s_v5": 70.08, "standard_d4s_v5": 140.16, "standard_d8s_v5": 280.32,
    "standard_e2s_v3": 91.98, "standard_e4s_v3": 183.96, "standard_e8s_v3": 367.92,
    "standard_f2s_v2": 62.05, "standard_f4s_v2": 124.10, "standard_f8s_v2": 248.20,
    "standard_nc6s_v3": 2190.24, "standard_nc12s_v3": 4380.48, "standard_nc24s_v3": 8760.96,
    "standard_nd96asr_v4": 21900.00, "standard_nd96amsr_a100_v4": 26280.00,
    "standard_nc24ads_a100_v4": 2700.00,
}

# SQL Database service objective -> monthly USD
AZURE_SQL_COSTS = {
    "s0": 14.72, "s1": 29.43, "s2": 73.58, "s3": 147.17,
    "p1": 453.98, "p2": 907.97, "p4": 1815.93, "p6": 3631.87,
    "gp_s_gen5_1": 57.02, "gp_s_gen5_2": 114.04,
    "gp_gen5_2": 332.55, "gp_gen5_4": 665.10,
    "bc_gen5_2": 872.63, "bc_gen5_4": 1745.26,
}

# "<tier>_<sku>" -> monthly USD
AZURE_REDIS_COSTS = {
    "basic_c0": 16.06, "basic_c1": 33.58, "basic_c2": 62.05,
    "standard_c0": 32.12, "standard_c1": 67.16, "standard_c2": 124.10,
    "premium_p1": 248.20, "premium_p2": 496.40, "premium_p3": 963.44,
}

COGNITIVE_S0_COST = 75.00
COGNITIVE_STANDARD_COST = 150.00

AZURE_GPU_SIZE_PATTERN = re.compile(r"^standard_n[a-z]")
AI_RESOURCE_PREFIXES = (
    "microsoft.cognitiveservices/",
    "microsoft.machinelearningservices/",
    "microsoft.search/",
)

_STATUS_MAP = {
    "succeeded": NodeStatus.RUNNING,
    "running": NodeStatus.RUNNING,
    "creating": NodeStatus.CREATING,
    "updating": NodeStatus.CREATING,
    "deleting": NodeStatus.DELETING,
    "failed": NodeStatus.ERROR,
}


def _as_dict(record: Any) -> Any:
    if isinstance(record, dict):
        return record
    as_dict = getattr(record, "as_dict", None)
    return as_dict() if callable(as_dict) else record


def parent_resource_id(resource_id: str) -> Optional[str]:
    """Id of the resource a child resource is nested under.

    Example:
        >>> parent_resource_id("/subscriptions/s/resourceGroups/rg/providers/"
        ...                    "Microsoft.Network/virtualNetworks/v/subnets/a")
        '/subscriptions/s/resourceGroups/rg/providers/Microsoft.Network/virtualNetworks/v'
    """
    parts = resource_id.split("/")
    # Top-level ids end at segment 9: /subscriptions/s/resourceGroups/rg/providers/ns/type/name
    if len(parts) >= 10:
        return "/".join(parts[:-2])
    return None


def summarize_status(record: Dict[str, Any]) -> Optional[str]:
    """Provisioning state, refined by the VM power state when provisioning succeeded."""
    provisioning = first_value(record, "properties.provisioningState")
    power = first_value(record, "properties.extended.instanceView.powerState.displayStatus")
    if power and str(provisioning or "").lower() in ("succeeded", "running"):
        return str(power)
    return str(provisioning) if provisioning else None


def _subnets(vnet: Dict[str, Any]) -> List[Dict[str, Any]]:
    subnets = []
    for subnet in first_raw_value(vnet, "properties.subnets") or []:
        if not isinstance(subnet, dict) or not subnet.get("id"):
            continue
        subnets.append({
            **subnet,
            "type": SUBNET_TYPE,
            "location": vnet.get("location"),
            "resourceGroup": vnet.get("resourceGroup"),
            "subscriptionId": vnet.get("subscriptionId"),
        })
    return subnets


def _quote(value: str) -> str:
    return "'" + value.replace("'", "\\'") + "'"


class AzureDiscoveryAdapter(DiscoveryAdapter):
    """Discover Azure resources of one subscription through Resource Graph.

    Subnets are not listed by Resource Graph; they are read from the
    ``properties.subnets`` of their virtual network.

    Example:
        >>> client = ResourceGraphClient(DefaultAzureCredential())
        >>> adapter = AzureDiscoveryAdapter("0000-1111", client=client, resource_groups=["prod"])
        >>> result = adapter.discover()
    """

    provider = "azure"
    # Resource Graph lists every region at once
    global_scope_region = ANY_REGION
    case_insensitive_ids = True
    created_at_fields = ("properties.createdTime", "properties.timeCreated", "properties.creationDate")

    def __init__(
        self,
        subscription_id: str,
        client: Optional[Any] = None,
        resource_groups: Optional[Sequence[str]] = None,
        mappings: Sequence[ResourceMapping] = tuple(AZURE_RESOURCE_MAPPINGS),
        relationship_rules: Sequence[RelationshipRule] = tuple(AZURE_RELATIONSHIP_RULES),
        event_bus: Optional[EventBus] = None,
        max_workers: int = 8,
        page_size: int = 1000,
    ):
        super().__init__(subscription_id, mappings, relationship_rules, event_bus, max_workers)
        self.subscription_id = subscription_id
        self.client = client
        self.resource_groups = list(resource_groups or [])
        self.page_size = page_size

    @classmethod
    def from_settings(cls, settings, event_bus: Optional[EventBus] = None) -> "AzureDiscoveryAdapter":
        """Build an adapter from a Settings instance.

        Credentials come from ``DefaultAzureCredential``: environment
        variables, workload or managed identity, or the Azure CLI login.

        Raises:
            ConfigurationError: If no subscription id is configured
        """
        if not settings.azure_subscription_id:
            raise ConfigurationError("Azure subscription id is required", field="azure_subscription_id")
        client = ResourceGraphClient(DefaultAzureCredential())
        return cls(
            settings.azure_subscription_id,
            client=client,
            resource_groups=settings.azure_resource_groups,
            event_bus=event_bus,
            max_workers=settings.discovery_max_workers,
        )

    def ensure_available(self) -> None:
        if self.client is None:
            raise AdapterUnavailable(self.provider, "no Resource Graph client configured")
        if not self.subscription_id:
            raise AdapterUnavailable(self.provider, "no subscription id configured")

    def health_check(self) -> bool:
        if self.client is None:
            return False
        try:
            self.client.resources(self._request("Resources | project id | limit 1"))
            return True
        except Exception as e:
            logger.warning("Azure health check failed: %s", type(e).__name__)
            return False

    def list_regions(self) -> List[str]:
        # Resource Graph is queried per subscription, not per region
        return []

    def error_code(self, error: BaseException) -> Optional[str]:
        if isinstance(error, HttpResponseError):
            code = getattr(error.error, "code", None) if error.error is not None else None
            return code or (str(error.status_code) if error.status_code else type(error).__name__)
        return type(error).__name__

    def build_query(self, azure_type: str) -> str:
        """Resource Graph query listing one resource type."""
        parts = ["Resources", f"| where type =~ {_quote(azure_type)}"]
        if self.resource_groups:
            groups = ", ".join(_quote(g) for g in self.resource_groups)
            parts.append(f"| where resourceGroup in~ ({groups})")
        parts.append(f"| project {_PROJECTION}")
        return " ".join(parts)

    def _request(self, query: str, skip_token: Optional[str] = None) -> QueryRequest:
        options = QueryRequestOptions(result_format="objectArray", top=self.page_size, skip_token=skip_token)
        return QueryRequest(subscriptions=[self.subscription_id], query=query, options=options)

    def _query(self, azure_type: str, operation: str) -> List[Dict[str, Any]]:
        run = instrumented(self.client.resources, self.event_bus, "azure", "resourcegraph", operation)
        query = self.build_query(azure_type)
        records: List[Dict[str, Any]] = []
        skip_token = None
        while True:
            response = run(self._request(query, skip_token))
            records.extend(r for r in (_as_dict(r) for r in response.data or []) if isinstance(r, dict))
            skip_token = getattr(response, "skip_token", None)
            if not skip_token:
                return records

    def fetch(self, mapping: ResourceMapping, region: Optional[str]) -> List[Dict[str, Any]]:
        if mapping.service == SUBNET_TYPE:
            records = [s for vnet in self._query(VNET_TYPE, mapping.service) for s in _subnets(vnet)]
        else:
            records = self._query(mapping.service, mapping.service)
        return [self._normalize(r) for r in records]

    @staticmethod
    def _normalize(record: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(record)
        if record.get("id"):
            record["id"] = str(record["id"]).lower()
            parent_id = parent_resource_id(record["id"])
            if parent_id:
                record[PARENT_FIELD] = parent_id
        record[STATUS_FIELD] = summarize_status(record)
        return record

    # Normalization

    def node_region(self, mapping: ResourceMapping, raw: Dict[str, Any], region: Optional[str]) -> str:
        location = raw.get("location")
        return str(location).lower() if location else GLOBAL_REGION

    def normalize_status(self, raw_status: Any) -> NodeStatus:
        if raw_status is None:
            return NodeStatus.RUNNING
        status = str(raw_status).lower()
        # VM power states read "VM running", "VM deallocated"
        if "running" in status:
            return NodeStatus.RUNNING
        if "stopped" in status or "deallocat" in status:
            return NodeStatus.STOPPED
        return _STATUS_MAP.get(status, NodeStatus.RUNNING)

    def aliases(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> List[Any]:
        aliases = super().aliases(mapping, raw)
        # Access policies reference identities by principal id
        aliases.append(first_value(raw, "properties.principalId"))
        aliases.append(first_value(raw, "properties.defaultHostName"))
        return aliases

    def _sku(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> str:
        value = first_value(raw, mapping.type_field) if mapping.type_field else None
        return str(value).lower() if value else ""

    def lookup_cost(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Optional[float]:
        azure_type = mapping.service
        if azure_type == "microsoft.compute/virtualmachines":
            return AZURE_VM_COSTS.get(self._sku(mapping, raw))
        if azure_type == "microsoft.sql/servers/databases":
            return AZURE_SQL_COSTS.get(self._sku(mapping, raw))
        if azure_type == "microsoft.cache/redis":
            tier = first_value(raw, "sku.tier", "standard")
            name = first_value(raw, "sku.name", "c1")
            return AZURE_REDIS_COSTS.get(f"{tier}_{name}".lower())
        if azure_type == "microsoft.containerservice/managedclusters":
            # The AKS control plane is free; cost is in the node pools
            total = 0.0
            for pool in first_raw_value(raw, "properties.agentPoolProfiles") or []:
                if not isinstance(pool, dict):
                    continue
                size = str(pool.get("vmSize") or "").lower()
                total += AZURE_VM_COSTS.get(size, 0.0) * int(pool.get("count") or 1)
            return round(total, 2) if total > 0 else None
        if azure_type == "microsoft.cognitiveservices/accounts":
            if first_value(raw, "sku.name") == "S0":
                return COGNITIVE_S0_COST
            if first_value(raw, "sku.tier") == "Standard":
                return COGNITIVE_STANDARD_COST
        return None

    def classify_workload(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Dict[str, Any]:
        flags: Dict[str, Any] = {}
        if mapping.service == "microsoft.compute/virtualmachines":
            if AZURE_GPU_SIZE_PATTERN.match(self._sku(mapping, raw)):
                flags["gpuInstance"] = True
                flags["aiWorkload"] = True
        if mapping.service.startswith(AI_RESOURCE_PREFIXES):
            flags["aiWorkload"] = True
        if mapping.service == "microsoft.cognitiveservices/accounts" and first_value(raw, "kind") == "OpenAI":
            flags["azureOpenAI"] = True
        return flags

    def extract_metadata(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"azureType": mapping.service}
        if raw.get("resourceGroup"):
            metadata["resourceGroup"] = raw["resourceGroup"]
        for key, path in (("skuName", "sku.name"), ("skuTier", "sku.tier"), ("skuCapacity", "sku.capacity")):
            value = first_value(raw, path)
            if value is not None:
                metadata[key] = value

        azure_type = mapping.service
        if azure_type == "microsoft.compute/virtualmachines":
            size = first_value(raw, "properties.hardwareProfile.vmSize")
            if size:
                metadata["vmSize"] = size
            computer_name = first_value(raw, "properties.osProfile.computerName")
            if computer_name:
                metadata["computerName"] = computer_name
        elif azure_type == "microsoft.containerservice/managedclusters":
            version = first_value(raw, "properties.kubernetesVersion")
            if version:
                metadata["k8sVersion"] = version
            pools = [p for p in first_raw_value(raw, "properties.agentPoolProfiles") or [] if isinstance(p, dict)]
            if pools:
                metadata["nodePoolCount"] = len(pools)
                metadata["totalNodes"] = sum(int(p.get("count") or 0) for p in pools)
        elif azure_type == "microsoft.sql/servers/databases":
            max_size = first_value(raw, "properties.maxSizeBytes")
            if max_size:
                metadata["maxSizeGb"] = float(max_size) / (1024 ** 3)
            objective = first_value(raw, "properties.currentServiceObjectiveName")
            if objective:
                metadata["serviceObjective"] = objective
        elif azure_type == "microsoft.cognitiveservices/accounts":
            kind = first_value(raw, "kind") or first_value(raw, "properties.kind")
            if kind:
                metadata["cognitiveKind"] = kind
        elif azure_type == "microsoft.storage/storageaccounts":
            if first_value(raw, "properties.supportsHttpsTrafficOnly") is False:
                metadata["httpOnly"] = True
            if (first_value(raw, "properties.allowBlobPublicAccess") is True
                    or first_value(raw, "properties.networkAcls.defaultAction") == "Allow"):
                metadata["publicAccess"] = True
        elif azure_type == "microsoft.web/sites":
            for key, path in (("appKind", "kind"), ("appState", "properties.state"),
                              ("defaultHostName", "properties.defaultHostName")):
                value = first_value(raw, path)
                if value:
                    metadata[key] = value
        return metadata
