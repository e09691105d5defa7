"""Provider discovery adapters.

Adapters turn provider list/describe responses into canonical graph
nodes and edges. ``DiscoveryAdapter`` implements the shared pipeline;
``AwsDiscoveryAdapter``, ``AzureDiscoveryAdapter`` and ``GcpDiscoveryAdapter``
supply the provider calls and normalization tables.
"""

from infragraph.discovery.aws import AwsDiscoveryAdapter
from infragraph.discovery.azure import AzureDiscoveryAdapter
from infragraph.discovery.base import (
    ALL_RESOURCE_TYPES,
    ANY_REGION,
    GLOBAL_REGION,
    DiscoverOptions,
    DiscoveryAdapter,
    DiscoveryError,
    DiscoveryResult,
    ResourceMapping,
)
from infragraph.discovery.fieldpath import extract_resource_id, resolve_field_path
from infragraph.discovery.gcp import GcpDiscoveryAdapter
from infragraph.discovery.registry import AdapterRegistry
from infragraph.discovery.relationships import NodeIndex, RelationshipEngine, RelationshipRule

__all__ = [
    "ALL_RESOURCE_TYPES",
    "ANY_REGION",
    "GLOBAL_REGION",
    "AdapterRegistry",
    "AwsDiscoveryAdapter",
    "AzureDiscoveryAdapter",
    "DiscoverOptions",
    "DiscoveryAdapter",
    "DiscoveryError",
    "DiscoveryResult",
    "GcpDiscoveryAdapter",
    "NodeIndex",
    "RelationshipEngine",
    "RelationshipRule",
    "ResourceMapping",
    "extract_resource_id",
    "resolve_field_path",
]
