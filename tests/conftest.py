"""Pytest configuration and shared fixtures for InfraGraph tests.

This module provides common fixtures used across multiple test modules,
including mock Neo4j drivers, fake boto3 sessions, a controllable clock
and sample graph data.
"""

from __future__ import annotations

import os
import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

from infragraph.core.graph import GraphEdge, GraphNode
from infragraph.discovery.base import DiscoveryAdapter, ResourceMapping
from infragraph.discovery.relationships import RelationshipRule
from infragraph.repositories.memory_repository import InMemoryGraphStorage


# ============================================================================
# Custom Pytest Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring external services (Neo4j, AWS)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests that take a long time to run"
    )
    config.addinivalue_line(
        "markers", "aws: marks tests requiring AWS credentials or moto mocks"
    )


# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    """Manually advanced clock returning timezone-aware datetimes."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock starting at 2024-06-01 12:00 UTC."""
    return FakeClock()


# ============================================================================
# Neo4j Mock Fixtures
# ============================================================================

@pytest.fixture
def mock_neo4j_driver() -> MagicMock:
    """Create a mock Neo4j driver with session context manager.

    Returns:
        Mock driver with properly configured session().run() chain
    """
    driver = MagicMock()
    session = MagicMock()

    # Configure context manager for 'with driver.session() as session:'
    driver.session.return_value.__enter__ = MagicMock(return_value=session)
    driver.session.return_value.__exit__ = MagicMock(return_value=None)

    return driver


@pytest.fixture
def mock_neo4j_session(mock_neo4j_driver: MagicMock) -> MagicMock:
    """Get the mock session from a mock driver."""
    return mock_neo4j_driver.session.return_value.__enter__.return_value


def create_neo4j_record(**kwargs) -> MagicMock:
    """Helper to create a mock Neo4j record.

    Args:
        **kwargs: Key-value pairs to return from record[key]

    Returns:
        Mock record that supports both __getitem__ and .data()
    """
    record = MagicMock()
    record.__getitem__ = lambda self, key: kwargs.get(key)
    record.data.return_value = kwargs
    return record


# ============================================================================
# AWS Fakes
# ============================================================================

class FakeAwsClient:
    """boto3-shaped client answering list/describe calls from canned responses.

    ``responses`` maps an operation name to a response dict, or to an
    exception instance that the call raises.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses = responses or {}
        self.calls: List[tuple] = []

    def can_paginate(self, operation: str) -> bool:
        return False

    def __getattr__(self, operation: str):
        if operation.startswith("_") or operation not in self.responses:
            raise AttributeError(operation)

        def call(**kwargs):
            self.calls.append((operation, kwargs))
            response = self.responses[operation]
            if isinstance(response, Exception):
                raise response
            if callable(response):
                return response(**kwargs)
            return response

        return call


class FakeAwsSession:
    """boto3.Session stand-in handing out FakeAwsClient per (service, region)."""

    def __init__(self, clients: Optional[Dict[str, FakeAwsClient]] = None, region_name: str = "us-east-1"):
        self.clients = clients or {}
        self.region_name = region_name
        self.requested: List[tuple] = []

    def client(self, service: str, region_name: Optional[str] = None):
        self.requested.append((service, region_name))
        key = f"{service}:{region_name}"
        if key in self.clients:
            return self.clients[key]
        return self.clients.setdefault(service, FakeAwsClient())


@pytest.fixture
def fake_aws_session() -> FakeAwsSession:
    """Session whose sts client returns a fixed caller identity."""
    sts = FakeAwsClient({"get_caller_identity": {"Account": "123456789012", "Arn": "arn:aws:iam::123456789012:user/test"}})
    return FakeAwsSession({"sts": sts})


@pytest.fixture
def mock_boto3_session() -> MagicMock:
    """Create a mock boto3 Session.

    Returns:
        Mock boto3.Session with client() method
    """
    session = MagicMock()
    session.client.return_value = MagicMock()
    session.region_name = "us-east-1"
    return session


# ============================================================================
# Generic adapter for pipeline tests
# ============================================================================

class StaticAdapter(DiscoveryAdapter):
    """Adapter serving raw records from a dict keyed by (resource_type, region)."""

    provider = "test"

    def __init__(self, records=None, mappings=None, rules=(), regions=("r1",), failures=None, healthy=True):
        mappings = mappings or [
            ResourceMapping("compute", "svc", "list_compute", "", "id", name_field="name",
                            status_field="state", type_field="size"),
            ResourceMapping("network", "svc", "list_networks", "", "id", name_field="name"),
        ]
        super().__init__("acct", mappings, rules, max_workers=2)
        self.records = records or {}
        self.regions = list(regions)
        self.failures = failures or {}
        self.healthy = healthy

    def fetch(self, mapping, region):
        error = self.failures.get((mapping.resource_type, region))
        if error is not None:
            raise error
        return list(self.records.get((mapping.resource_type, region), []))

    def list_regions(self):
        return list(self.regions)

    def health_check(self):
        return self.healthy


@pytest.fixture
def static_adapter_factory():
    """Build StaticAdapter instances with a compute -> network rule."""
    def factory(records=None, **kwargs):
        kwargs.setdefault("rules", [RelationshipRule("compute", "network_id", "runs-in")])
        return StaticAdapter(records=records, **kwargs)
    return factory


# ============================================================================
# Graph data
# ============================================================================

def make_node(native_id: str, resource_type: str = "compute", provider: str = "aws",
              region: str = "us-east-1", account: str = "123456789012", **kwargs) -> GraphNode:
    """Build a GraphNode with sensible defaults."""
    return GraphNode.create(provider, account, region, resource_type, native_id, **kwargs)


def make_edge(source: GraphNode, relationship: str, target: GraphNode, **kwargs) -> GraphEdge:
    return GraphEdge.create(source.id, relationship, target.id, **kwargs)


@pytest.fixture
def storage() -> InMemoryGraphStorage:
    """Provide an empty in-memory storage."""
    return InMemoryGraphStorage()


@pytest.fixture
def sample_nodes() -> List[GraphNode]:
    """A VPC, a subnet and two instances."""
    return [
        make_node("vpc-1", "vpc", name="main"),
        make_node("subnet-1", "subnet", name="private-a"),
        make_node("i-1", "compute", name="web-1", cost_monthly=70.08, tags={"Owner": "platform"}),
        make_node("i-2", "compute", name="web-2", cost_monthly=70.08),
    ]


@pytest.fixture
def sample_edges(sample_nodes: List[GraphNode]) -> List[GraphEdge]:
    """Instances and subnet running in the VPC."""
    vpc, subnet, i1, i2 = sample_nodes
    return [
        make_edge(subnet, "runs-in", vpc),
        make_edge(i1, "runs-in", subnet),
        make_edge(i2, "runs-in", subnet),
    ]


@pytest.fixture
def populated_storage(storage, sample_nodes, sample_edges) -> InMemoryGraphStorage:
    """Storage holding the sample nodes and edges."""
    storage.upsert_nodes(sample_nodes)
    storage.upsert_edges(sample_edges)
    return storage


# ============================================================================
# Environment
# ============================================================================

@pytest.fixture
def clean_environment():
    """Fixture that cleans InfraGraph environment variables.

    Removes INFRAGRAPH_* env vars before test and restores after.
    """
    saved = {k: v for k, v in os.environ.items() if k.startswith("INFRAGRAPH_")}
    for key in saved:
        del os.environ[key]

    yield

    for key in [k for k in os.environ if k.startswith("INFRAGRAPH_")]:
        del os.environ[key]
    os.environ.update(saved)
