"""AWS discovery adapter backed by boto3."""

from __future__ import annotations

import json
import logging
import re
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from infragraph.constants import AI_SERVICE_PREFIXES, GPU_INSTANCE_PATTERN
from infragraph.core.bus import EventBus
from infragraph.core.graph import NodeStatus
from infragraph.core.telemetry import instrumented
from infragraph.discovery.aws_tables import (
    AWS_CREATED_AT_FIELDS,
    AWS_RELATIONSHIP_RULES,
    AWS_SERVICE_MAPPINGS,
    DEFAULT_REGIONS,
    EBS_GB_COSTS,
    EC2_COSTS,
    ELASTICACHE_COSTS,
    RDS_COSTS,
    STATIC_COSTS,
    AwsResourceMapping,
)
from infragraph.discovery.base import DiscoveryAdapter, ResourceMapping
from infragraph.discovery.fieldpath import first_raw_value, first_value, resolve_items
from infragraph.discovery.relationships import RelationshipRule
from infragraph.errors import AdapterUnavailable

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "running": NodeStatus.RUNNING,
    "available": NodeStatus.RUNNING,
    "active": NodeStatus.RUNNING,
    "in-service": NodeStatus.RUNNING,
    "in-use": NodeStatus.RUNNING,
    "enabled": NodeStatus.RUNNING,
    "inservice": NodeStatus.RUNNING,
    "deployed": NodeStatus.RUNNING,
    "stopped": NodeStatus.STOPPED,
    "stopping": NodeStatus.STOPPED,
    "inactive": NodeStatus.STOPPED,
    "disabled": NodeStatus.STOPPED,
    "pending": NodeStatus.CREATING,
    "provisioning": NodeStatus.CREATING,
    "starting": NodeStatus.CREATING,
    "creating": NodeStatus.CREATING,
    "modifying": NodeStatus.CREATING,
    "updating": NodeStatus.CREATING,
    "inprogress": NodeStatus.CREATING,
    "shutting-down": NodeStatus.DELETING,
    "terminating": NodeStatus.DELETING,
    "terminated": NodeStatus.DELETING,
    "deleting": NodeStatus.DELETING,
    "deleted": NodeStatus.DELETING,
    "error": NodeStatus.ERROR,
    "failed": NodeStatus.ERROR,
    "unhealthy": NodeStatus.ERROR,
    "impaired": NodeStatus.ERROR,
}


def _client_error_code(error: BaseException) -> Optional[str]:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "Unknown")
    return type(error).__name__


def _decode_json_fields(record: Dict[str, Any], fields: Sequence[str]) -> None:
    for name in fields:
        value = record.get(name)
        if not isinstance(value, str):
            continue
        try:
            record[name] = json.loads(value)
        except ValueError:
            logger.debug("Field %s is not valid JSON, keeping the raw string", name)


# REST API Lambda integrations wrap the function ARN in an invocation URI
_LAMBDA_INVOCATION_RE = re.compile(r"/functions/(arn:[^/]+)/invocations")


def _api_integrations(resources: Any) -> List[Dict[str, Any]]:
    """Flatten API Gateway integrations to ``[{"Uri": target}]``.

    Handles REST API resources (``resourceMethods.<METHOD>.methodIntegration.uri``)
    and HTTP API integrations (``IntegrationUri``).
    """
    uris: List[str] = []
    for resource in resources if isinstance(resources, list) else []:
        if not isinstance(resource, dict):
            continue
        if resource.get("IntegrationUri"):
            uris.append(resource["IntegrationUri"])
        methods = resource.get("resourceMethods")
        for method in methods.values() if isinstance(methods, dict) else []:
            uri = first_value(method, "methodIntegration.uri")
            if uri:
                uris.append(uri)
    integrations = []
    for uri in dict.fromkeys(uris):
        match = _LAMBDA_INVOCATION_RE.search(uri)
        integrations.append({"Uri": match.group(1) if match else uri})
    return integrations


class AwsDiscoveryAdapter(DiscoveryAdapter):
    """Discover AWS resources across regions.

    The boto3 session is injected; tests pass a fake whose ``client()``
    returns objects with the same list/describe call shapes.

    Example:
        >>> adapter = AwsDiscoveryAdapter(boto3.Session(profile_name="prod"), regions=["us-east-1"])
        >>> result = adapter.discover()
    """

    provider = "aws"
    created_at_fields = AWS_CREATED_AT_FIELDS

    def __init__(
        self,
        session: Optional[Any],
        account_id: Optional[str] = None,
        regions: Optional[Sequence[str]] = None,
        mappings: Sequence[ResourceMapping] = tuple(AWS_SERVICE_MAPPINGS),
        relationship_rules: Sequence[RelationshipRule] = tuple(AWS_RELATIONSHIP_RULES),
        event_bus: Optional[EventBus] = None,
        max_workers: int = 8,
    ):
        super().__init__(account_id or "", mappings, relationship_rules, event_bus, max_workers)
        self.session = session
        self.regions = list(regions) if regions else []
        self._clients: Dict[Tuple[str, Optional[str]], Any] = {}
        self._clients_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, event_bus: Optional[EventBus] = None) -> "AwsDiscoveryAdapter":
        """Build an adapter from a Settings instance."""
        session = boto3.Session(profile_name=settings.aws_profile)
        return cls(
            session,
            regions=settings.get_aws_regions(),
            event_bus=event_bus,
            max_workers=settings.discovery_max_workers,
        )

    def _client(self, service: str, region: Optional[str] = None) -> Any:
        key = (service, region)
        with self._clients_lock:
            if key not in self._clients:
                if region:
                    self._clients[key] = self.session.client(service, region_name=region)
                else:
                    self._clients[key] = self.session.client(service)
            return self._clients[key]

    def _caller_identity(self) -> Dict[str, Any]:
        sts = self._client("sts")
        call = instrumented(sts.get_caller_identity, self.event_bus, "aws", "sts", "get_caller_identity")
        return call()

    def ensure_available(self) -> None:
        if self.session is None:
            raise AdapterUnavailable(self.provider, "no boto3 session configured")
        if self.account:
            return
        try:
            self.account = self._caller_identity()["Account"]
        except (BotoCoreError, ClientError) as e:
            raise AdapterUnavailable(self.provider, f"{_client_error_code(e)}: {e}") from e

    def health_check(self) -> bool:
        if self.session is None:
            return False
        try:
            self._caller_identity()
            return True
        except Exception as e:
            logger.warning("AWS health check failed: %s", type(e).__name__)
            return False

    def list_regions(self) -> List[str]:
        if self.regions:
            return list(self.regions)
        region = getattr(self.session, "region_name", None)
        return [region] if isinstance(region, str) and region else list(DEFAULT_REGIONS[:1])

    def error_code(self, error: BaseException) -> Optional[str]:
        return _client_error_code(error)

    def _collect(self, client: Any, mapping: ResourceMapping) -> List[Any]:
        if client.can_paginate(mapping.operation):
            items: List[Any] = []
            for page in client.get_paginator(mapping.operation).paginate():
                items.extend(resolve_items(page, mapping.items_path))
            return items
        return resolve_items(getattr(client, mapping.operation)(), mapping.items_path)

    def fetch(self, mapping: ResourceMapping, region: Optional[str]) -> List[Dict[str, Any]]:
        client = self._client(mapping.service, region)
        collect = instrumented(self._collect, self.event_bus, "aws", mapping.service, mapping.operation)
        items = collect(client, mapping)

        item_key = getattr(mapping, "item_key", None)
        records = [{item_key: item} if isinstance(item, str) and item_key else item for item in items]

        if isinstance(mapping, AwsResourceMapping):
            if mapping.detail_operation:
                records = self._add_details(client, mapping, records)
            for record in records:
                _decode_json_fields(record, mapping.json_fields)
        if mapping.service in ("apigateway", "apigatewayv2"):
            for record in records:
                record["Integrations"] = _api_integrations(record.get("Resources"))
        return records

    def _add_details(
        self,
        client: Any,
        mapping: AwsResourceMapping,
        records: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """Merge one detail call per record; a failed call keeps the listed record."""
        describe = instrumented(
            getattr(client, mapping.detail_operation), self.event_bus, "aws",
            mapping.service, mapping.detail_operation,
        )
        extra = {k: list(v) if isinstance(v, tuple) else v for k, v in mapping.detail_args}
        detailed = []
        for record in records:
            item_id = first_value(record, mapping.id_field)
            try:
                response = describe(**{mapping.detail_param: item_id}, **extra)
            except (BotoCoreError, ClientError) as e:
                logger.warning(
                    "%s %s failed for %s: %s",
                    mapping.service, mapping.detail_operation, item_id, _client_error_code(e),
                )
                detailed.append(record)
                continue
            detail = first_raw_value(response, mapping.detail_path)
            if isinstance(detail, dict):
                detail = {k: v for k, v in detail.items() if k != "ResponseMetadata"}
            if mapping.detail_key:
                detailed.append({**record, mapping.detail_key: detail})
            elif isinstance(detail, dict):
                detailed.append({**record, **detail})
            else:
                detailed.append(record)
        return detailed

    # Normalization

    def normalize_status(self, raw_status: Any) -> NodeStatus:
        if raw_status is None:
            return NodeStatus.RUNNING
        key = str(raw_status).lower().replace("_", "-")
        return _STATUS_MAP.get(key, _STATUS_MAP.get(key.replace("-", ""), NodeStatus.RUNNING))

    def extract_tags(self, raw: Dict[str, Any]) -> Dict[str, str]:
        tags: Dict[str, str] = {}
        for key in ("Tags", "tags", "TagList", "TagSet"):
            value = raw.get(key)
            if isinstance(value, list):
                for item in value:
                    if isinstance(item, dict) and "Key" in item:
                        tags[str(item["Key"])] = str(item.get("Value", ""))
            elif isinstance(value, dict):
                tags.update({str(k): str(v) for k, v in value.items()})
        return tags

    def lookup_cost(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Optional[float]:
        instance_type = first_value(raw, mapping.type_field) if mapping.type_field else None
        if instance_type is None:
            return None
        if mapping.service == "ec2" and mapping.resource_type == "compute":
            return EC2_COSTS.get(instance_type)
        if mapping.service == "rds":
            return RDS_COSTS.get(instance_type)
        if mapping.service == "elasticache":
            cost = ELASTICACHE_COSTS.get(instance_type)
            if cost is not None:
                return round(cost * int(raw.get("NumCacheNodes") or 1), 2)
            return None
        if mapping.service == "ec2" and mapping.resource_type == "storage":
            rate = EBS_GB_COSTS.get(instance_type)
            size = raw.get("Size")
            if rate is not None and isinstance(size, (int, float)):
                return round(rate * size, 2)
        return None

    def aliases(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> List[Any]:
        aliases = super().aliases(mapping, raw)
        # CloudFront origins reference buckets and load balancers by DNS name
        if mapping.service == "s3" and raw.get("Name"):
            bucket = raw["Name"]
            aliases.append(f"{bucket}.s3.amazonaws.com")
            aliases.extend(f"{bucket}.s3.{region}.amazonaws.com" for region in self.list_regions())
        if raw.get("DNSName"):
            aliases.append(raw["DNSName"])
        return aliases

    def static_cost(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Optional[float]:
        return STATIC_COSTS.get((mapping.service, mapping.resource_type))

    def classify_workload(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Dict[str, Any]:
        flags: Dict[str, Any] = {}
        instance_type = first_value(raw, mapping.type_field) if mapping.type_field else None
        if isinstance(instance_type, str):
            family = instance_type[3:] if instance_type.startswith("ml.") else instance_type
            if GPU_INSTANCE_PATTERN.match(family):
                flags["gpuInstance"] = True
                flags["aiWorkload"] = True

        arn = first_value(raw, mapping.arn_field) if mapping.arn_field else None
        arn_service = str(arn).split(":")[2] if isinstance(arn, str) and arn.startswith("arn:") else ""
        if mapping.service.startswith(AI_SERVICE_PREFIXES) or arn_service.startswith(AI_SERVICE_PREFIXES):
            flags["aiWorkload"] = True
        return flags

    def extract_metadata(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Dict[str, Any]:
        metadata = super().extract_metadata(mapping, raw)
        arn = first_value(raw, mapping.arn_field) if mapping.arn_field else None
        if arn is not None:
            metadata["arn"] = arn
        for key in ("AvailabilityZone", "Engine", "Runtime", "Scheme", "Type"):
            value = raw.get(key)
            if isinstance(value, (str, int, float, bool)):
                metadata[key[0].lower() + key[1:]] = value
        return metadata

