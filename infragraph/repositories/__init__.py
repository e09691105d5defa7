"""InfraGraph storage layer.

This module provides the persistence contract shared by the recorder,
the monitor and the timeline helpers, with in-memory and Neo4j
implementations.
"""

from infragraph.repositories.base import (
    ChangeFilter,
    EdgeFilter,
    GraphStorage,
    NodeFilter,
)
from infragraph.repositories.memory_repository import InMemoryGraphStorage
from infragraph.repositories.neo4j_repository import Neo4jGraphStorage

__all__ = [
    "ChangeFilter",
    "EdgeFilter",
    "GraphStorage",
    "NodeFilter",
    "InMemoryGraphStorage",
    "Neo4jGraphStorage",
]
