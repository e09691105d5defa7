"""Generic discovery adapter skeleton.

A provider adapter declares its resource mappings and relationship rules
and implements ``fetch`` for one (mapping, region) pair. ``discover``
handles the rest: parallel fan-out of fetches, per-type failure
isolation, cancellation, canonical node construction, relationship
inference and the scope bookkeeping the recorder needs to detect
disappeared resources.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from infragraph.constants import COST_SOURCE_PRICING_TABLE, COST_SOURCE_STATIC, OWNER_TAG_KEYS
from infragraph.core.bus import EventBus
from infragraph.core.graph import GraphEdge, GraphNode, NodeStatus
from infragraph.discovery.fieldpath import first_raw_value, first_value, validate_field_path
from infragraph.discovery.relationships import NodeIndex, RelationshipEngine, RelationshipRule
from infragraph.errors import AdapterUnavailable, ConfigurationError

logger = logging.getLogger(__name__)

GLOBAL_REGION = "global"
# Scope region of mappings that list every region at once
ANY_REGION = "*"
ALL_RESOURCE_TYPES = "*"

Scope = Tuple[str, str]


@dataclass(frozen=True)
class ResourceMapping:
    """How one resource type is listed from a provider service.

    Attributes:
        resource_type: Canonical resource type produced
        service: Provider service (boto3 client name, asset type family)
        operation: List/describe operation to call
        items_path: Field path from the response to the resource records
        id_field: Field path to the native identifier
        name_field: Field path to the display name
        arn_field: Field path to a fully qualified identifier, indexed as an alias
        regional: False for global services
        type_field: Field path to the SKU/instance type used for cost lookup
        status_field: Field path to the provider status
    """

    resource_type: str
    service: str
    operation: str
    items_path: str
    id_field: str
    name_field: Optional[str] = None
    arn_field: Optional[str] = None
    regional: bool = True
    type_field: Optional[str] = None
    status_field: Optional[str] = None

    def __post_init__(self):
        self._validate_paths("id_field", "items_path", "name_field", "arn_field", "type_field", "status_field")

    def _validate_paths(self, *names: str) -> None:
        for name in names:
            path = getattr(self, name)
            if not path and name != "id_field":
                continue
            try:
                validate_field_path(path)
            except ValueError as e:
                raise ConfigurationError(f"Mapping for {self.resource_type}: {e}", field=name) from e


@dataclass
class DiscoveryError:
    """A non-fatal discovery failure, collected into the result."""

    resource_type: str
    message: str
    regions: List[str] = field(default_factory=list)
    code: Optional[str] = None

    def __str__(self) -> str:
        where = f" [{', '.join(self.regions)}]" if self.regions else ""
        return f"{self.resource_type}{where}: {self.message}"


@dataclass
class DiscoverOptions:
    """Options for one discovery run.

    Attributes:
        resource_types: Only these resource types, None for all
        regions: Only these regions, None for the adapter's regions
        tags: Only resources carrying every key/value pair
        limit: Maximum number of nodes returned
        cancel_signal: Set to stop discovery between resources
    """

    resource_types: Optional[Sequence[str]] = None
    regions: Optional[Sequence[str]] = None
    tags: Dict[str, str] = field(default_factory=dict)
    limit: Optional[int] = None
    cancel_signal: Optional[threading.Event] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_signal is not None and self.cancel_signal.is_set()


@dataclass
class DiscoveryResult:
    """Complete result of one adapter run, consumed by the recorder as a batch.

    ``scanned_scopes`` lists the (region, resource_type) pairs that were
    fetched completely: every resource of that scope is in ``nodes``.
    Region "*" covers every region of the type.
    """

    provider: str
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)
    errors: List[DiscoveryError] = field(default_factory=list)
    duration_ms: float = 0.0
    scanned_scopes: Set[Scope] = field(default_factory=set)
    cancelled: bool = False

    @property
    def unavailable(self) -> bool:
        return not self.nodes and any(e.resource_type == ALL_RESOURCE_TYPES for e in self.errors)


@dataclass
class _FetchOutcome:
    mapping: ResourceMapping
    region: str
    records: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[BaseException] = None
    skipped: bool = False


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class DiscoveryAdapter(ABC):
    """Base class for provider discovery adapters.

    Subclasses set ``provider``, pass their mappings and relationship rules,
    and implement ``fetch``, ``list_regions`` and ``health_check``.
    Normalization hooks (status, tags, cost, workload flags) have generic
    defaults that providers override.
    """

    provider: str = ""
    created_at_fields: Tuple[str, ...] = ()
    # Scope region recorded for mappings fetched once rather than per region
    global_scope_region: str = GLOBAL_REGION
    # Providers whose identifiers compare ignoring case
    case_insensitive_ids: bool = False

    def __init__(
        self,
        account: str,
        mappings: Sequence[ResourceMapping],
        relationship_rules: Sequence[RelationshipRule] = (),
        event_bus: Optional[EventBus] = None,
        max_workers: int = 8,
    ):
        self.account = account
        self.mappings = list(mappings)
        self.relationships = RelationshipEngine(relationship_rules)
        self.event_bus = event_bus
        self.max_workers = max(1, max_workers)

    # Provider-specific operations

    @abstractmethod
    def fetch(self, mapping: ResourceMapping, region: Optional[str]) -> List[Dict[str, Any]]:
        """Fetch the raw records of one mapping in one region.

        Args:
            mapping: Resource mapping to list
            region: Region, None for global mappings

        Returns:
            Raw provider records

        Raises:
            Exception: Any failure; it is isolated to this resource type
        """

    @abstractmethod
    def list_regions(self) -> List[str]:
        """Regions scanned when the options do not name any."""

    @abstractmethod
    def health_check(self) -> bool:
        """Perform the cheapest authenticated call. Never raises."""

    def ensure_available(self) -> None:
        """Raise AdapterUnavailable when no usable client exists."""

    def error_code(self, error: BaseException) -> Optional[str]:
        return type(error).__name__

    def supports_incremental_sync(self) -> bool:
        return False

    def supported_resource_types(self) -> List[str]:
        return list(OrderedDict.fromkeys(m.resource_type for m in self.mappings))

    # Normalization hooks

    def normalize_status(self, raw_status: Any) -> NodeStatus:
        return NodeStatus.RUNNING

    def extract_tags(self, raw: Dict[str, Any]) -> Dict[str, str]:
        tags = raw.get("tags") or raw.get("labels") or {}
        return {str(k): str(v) for k, v in tags.items()} if isinstance(tags, dict) else {}

    def extract_owner(self, tags: Dict[str, str]) -> Optional[str]:
        for key in OWNER_TAG_KEYS:
            if tags.get(key):
                return tags[key]
        return None

    def lookup_cost(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Optional[float]:
        """Exact SKU/instance-type cost, None when the table has no entry."""
        return None

    def static_cost(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Optional[float]:
        """Flat per-resource-type estimate, None when there is none."""
        return None

    def classify_workload(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    def extract_metadata(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"service": mapping.service}
        if mapping.type_field:
            instance_type = first_value(raw, mapping.type_field)
            if instance_type is not None:
                metadata["instanceType"] = instance_type
        return metadata

    def node_region(self, mapping: ResourceMapping, raw: Dict[str, Any], region: Optional[str]) -> str:
        return region or GLOBAL_REGION

    def aliases(self, mapping: ResourceMapping, raw: Dict[str, Any]) -> List[Any]:
        """Identifiers other resources may use to reference this one."""
        aliases = []
        if mapping.arn_field:
            aliases.append(first_value(raw, mapping.arn_field))
        if mapping.name_field:
            aliases.append(first_value(raw, mapping.name_field))
        return aliases

    # Node construction

    def build_node(
        self,
        mapping: ResourceMapping,
        raw: Dict[str, Any],
        region: Optional[str],
    ) -> Optional[GraphNode]:
        """Build the canonical node for one raw record.

        Returns:
            The node, or None when the record has no identifier
        """
        native_id = first_value(raw, mapping.id_field)
        if native_id is None or native_id == "":
            return None
        native_id = str(native_id)

        name = first_value(raw, mapping.name_field) if mapping.name_field else None
        raw_status = first_value(raw, mapping.status_field) if mapping.status_field else None
        tags = self.extract_tags(raw)
        metadata = self.extract_metadata(mapping, raw)
        metadata.update(self.classify_workload(mapping, raw))

        cost = self.lookup_cost(mapping, raw)
        if cost is not None:
            metadata["costSource"] = COST_SOURCE_PRICING_TABLE
        else:
            cost = self.static_cost(mapping, raw)
            if cost is not None:
                metadata["costSource"] = COST_SOURCE_STATIC

        created_at = None
        for created_field in self.created_at_fields:
            created_at = parse_timestamp(first_raw_value(raw, created_field))
            if created_at is not None:
                break

        return GraphNode.create(
            self.provider,
            self.account,
            self.node_region(mapping, raw, region),
            mapping.resource_type,
            native_id,
            name=str(name) if name else native_id,
            status=self.normalize_status(raw_status),
            tags=tags,
            metadata=metadata,
            cost_monthly=cost,
            owner=self.extract_owner(tags),
            created_at=created_at,
        )

    # Discovery

    def _selected_mappings(self, options: DiscoverOptions) -> List[ResourceMapping]:
        if options.resource_types is None:
            return list(self.mappings)
        wanted = set(options.resource_types)
        return [m for m in self.mappings if m.resource_type in wanted]

    def _fetch_outcome(
        self,
        mapping: ResourceMapping,
        region: Optional[str],
        options: DiscoverOptions,
    ) -> _FetchOutcome:
        label = region or GLOBAL_REGION
        if options.cancelled:
            return _FetchOutcome(mapping, label, skipped=True)
        try:
            records = self.fetch(mapping, region)
        except Exception as e:
            logger.warning(
                "Discovery of %s/%s in %s failed: %s",
                self.provider, mapping.resource_type, label, e,
            )
            return _FetchOutcome(mapping, label, error=e)
        return _FetchOutcome(mapping, label, records=[r for r in records if isinstance(r, dict)])

    def discover(self, options: Optional[DiscoverOptions] = None) -> DiscoveryResult:
        """Discover resources and relationships.

        Never raises for expected failures: an unavailable client yields an
        empty result with a single top-level error, and a failing resource
        type yields one DiscoveryError while the other types continue.

        Args:
            options: Discovery options

        Returns:
            DiscoveryResult with nodes, edges, errors and scanned scopes
        """
        options = options or DiscoverOptions()
        start = time.perf_counter()
        result = DiscoveryResult(provider=self.provider)

        def finish() -> DiscoveryResult:
            result.duration_ms = round((time.perf_counter() - start) * 1000, 3)
            return result

        try:
            self.ensure_available()
        except AdapterUnavailable as e:
            logger.warning("%s", e)
            result.errors.append(DiscoveryError(ALL_RESOURCE_TYPES, e.reason, code="AdapterUnavailable"))
            return finish()

        mappings = self._selected_mappings(options)
        if not mappings:
            result.errors.append(
                DiscoveryError(ALL_RESOURCE_TYPES, "no collectible resource types", code="NoResourceTypes")
            )
            return finish()

        regions = list(options.regions) if options.regions is not None else self.list_regions()
        tasks: List[Tuple[ResourceMapping, Optional[str]]] = []
        for mapping in mappings:
            if mapping.regional:
                tasks.extend((mapping, region) for region in regions)
            else:
                tasks.append((mapping, None))

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self._fetch_outcome, m, r, options) for m, r in tasks]
            outcomes = [f.result() for f in futures]

        failures: "OrderedDict[str, DiscoveryError]" = OrderedDict()
        incomplete: Set[Scope] = set()
        attempted: Set[Scope] = set()
        nodes: "OrderedDict[str, GraphNode]" = OrderedDict()
        raw_by_id: Dict[str, Dict[str, Any]] = {}
        index = NodeIndex(case_insensitive=self.case_insensitive_ids)
        truncated = False

        for outcome in outcomes:
            scope_region = outcome.region if outcome.mapping.regional else self.global_scope_region
            scope = (scope_region, outcome.mapping.resource_type)
            attempted.add(scope)
            if outcome.error is not None:
                incomplete.add(scope)
                error = failures.get(outcome.mapping.resource_type)
                if error is None:
                    failures[outcome.mapping.resource_type] = DiscoveryError(
                        outcome.mapping.resource_type,
                        str(outcome.error),
                        regions=[outcome.region],
                        code=self.error_code(outcome.error),
                    )
                elif outcome.region not in error.regions:
                    error.regions.append(outcome.region)
                continue
            if outcome.skipped or result.cancelled or truncated:
                incomplete.add(scope)
                result.cancelled = result.cancelled or outcome.skipped
                continue

            for raw in outcome.records:
                if options.cancelled:
                    result.cancelled = True
                    incomplete.add(scope)
                    break
                if options.limit is not None and len(nodes) >= options.limit:
                    truncated = True
                    incomplete.add(scope)
                    break
                node = self.build_node(outcome.mapping, raw, outcome.region if outcome.mapping.regional else None)
                if node is None:
                    continue
                if options.tags and any(node.tags.get(k) != v for k, v in options.tags.items()):
                    continue
                nodes[node.id] = node
                raw_by_id[node.id] = raw
                index.add(node, self.aliases(outcome.mapping, raw))

        result.errors.extend(failures.values())
        result.nodes = list(nodes.values())
        result.edges = self.relationships.infer_batch(
            ((node, raw_by_id[node.id]) for node in result.nodes), index
        )
        # A tag filter hides resources, so no scope is complete
        if not options.tags:
            result.scanned_scopes = attempted - incomplete
        if result.cancelled:
            logger.info("Discovery of %s cancelled after %d nodes", self.provider, len(result.nodes))
        return finish()
