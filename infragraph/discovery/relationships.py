"""Table-driven relationship inference between discovered nodes."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from infragraph.constants import DEFAULT_EDGE_CONFIDENCE, REVERSE_RELATIONSHIPS
from infragraph.core.graph import DiscoveryMethod, GraphEdge, GraphNode
from infragraph.discovery.fieldpath import extract_resource_id, resolve_field_path, validate_field_path
from infragraph.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelationshipRule:
    """One row of a relationship table.

    Attributes:
        source_resource_type: Resource type the rule applies to
        field: Field path into the raw record holding target identifiers
        relationship_type: Relationship name (e.g. 'runs-in')
        is_array: Whether the field yields several targets
        bidirectional: Also emit the reverse edge
        target_resource_type: Restricts matching to one resource type
        confidence: Confidence of the inferred edge
        discovered_via: Discovery method recorded on the edge
    """

    source_resource_type: str
    field: str
    relationship_type: str
    is_array: bool = False
    bidirectional: bool = False
    target_resource_type: Optional[str] = None
    confidence: float = DEFAULT_EDGE_CONFIDENCE
    discovered_via: DiscoveryMethod = DiscoveryMethod.API_FIELD

    def __post_init__(self):
        try:
            validate_field_path(self.field)
        except ValueError as e:
            raise ConfigurationError(
                f"Relationship rule for {self.source_resource_type}: {e}", field="field"
            ) from e


def reverse_relationship(relationship_type: str) -> str:
    return REVERSE_RELATIONSHIPS.get(relationship_type, relationship_type)


class NodeIndex:
    """Lookup from raw provider identifiers to node ids of one batch.

    With ``case_insensitive`` set, identifiers are matched ignoring case.
    """

    def __init__(self, case_insensitive: bool = False) -> None:
        self._keys: Dict[str, List[Tuple[str, str]]] = defaultdict(list)
        self._node_ids: set = set()
        self.case_insensitive = case_insensitive

    def _key(self, value: str) -> str:
        return value.lower() if self.case_insensitive else value

    def add(self, node: GraphNode, aliases: Iterable[Any] = ()) -> None:
        """Index a node under its native id, its short id and any aliases."""
        self._node_ids.add(node.id)
        keys = {node.native_id, extract_resource_id(node.native_id)}
        for alias in aliases:
            if alias is not None and alias != "":
                keys.add(str(alias))
                keys.add(extract_resource_id(alias))
        for key in {self._key(k) for k in keys}:
            entry = (node.id, node.resource_type)
            if entry not in self._keys[key]:
                self._keys[key].append(entry)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._node_ids

    def __len__(self) -> int:
        return len(self._node_ids)

    def resolve(self, raw_value: Any, target_resource_type: Optional[str] = None) -> Optional[str]:
        """Resolve a raw identifier to a node id of this batch.

        Returns:
            The node id, or None when nothing or more than one node matches
        """
        raw = str(raw_value)
        for key in (raw, extract_resource_id(raw)):
            candidates = {
                node_id for node_id, resource_type in self._keys.get(self._key(key), [])
                if target_resource_type is None or resource_type == target_resource_type
            }
            if len(candidates) == 1:
                return candidates.pop()
            if len(candidates) > 1:
                logger.debug("Ambiguous identifier %s matches %d nodes", raw, len(candidates))
                return None
        return None


class RelationshipEngine:
    """Infer edges from raw resource records using a rule table.

    Edges are only emitted when both endpoints are part of the current
    batch; unmatched targets are dropped.

    Example:
        >>> engine = RelationshipEngine([RelationshipRule("compute", "VpcId", "runs-in")])
        >>> edges = engine.infer_batch([(instance_node, raw_instance)], index)
    """

    def __init__(self, rules: Sequence[RelationshipRule]):
        self.rules = list(rules)
        self._by_type: Dict[str, List[RelationshipRule]] = defaultdict(list)
        for rule in self.rules:
            self._by_type[rule.source_resource_type].append(rule)

    def rules_for(self, resource_type: str) -> List[RelationshipRule]:
        return list(self._by_type.get(resource_type, []))

    def infer(self, node: GraphNode, raw: Dict[str, Any], index: NodeIndex) -> List[GraphEdge]:
        """Infer the edges of one raw resource."""
        edges: List[GraphEdge] = []
        if node.id not in index:
            return edges

        for rule in self._by_type.get(node.resource_type, []):
            values = resolve_field_path(raw, rule.field)
            if not rule.is_array:
                values = values[:1]
            for value in values:
                target_id = index.resolve(value, rule.target_resource_type)
                if target_id is None or target_id == node.id:
                    continue
                edges.append(self._edge(node.id, rule.relationship_type, target_id, rule))
                if rule.bidirectional:
                    edges.append(
                        self._edge(target_id, reverse_relationship(rule.relationship_type), node.id, rule)
                    )
        return edges

    def infer_batch(
        self,
        items: Iterable[Tuple[GraphNode, Dict[str, Any]]],
        index: NodeIndex,
    ) -> List[GraphEdge]:
        """Infer edges for a whole batch, deduplicated by edge id."""
        seen: Dict[str, GraphEdge] = {}
        for node, raw in items:
            for edge in self.infer(node, raw, index):
                seen.setdefault(edge.id, edge)
        return list(seen.values())

    @staticmethod
    def _edge(source_id: str, relationship_type: str, target_id: str, rule: RelationshipRule) -> GraphEdge:
        return GraphEdge.create(
            source_id,
            relationship_type,
            target_id,
            confidence=rule.confidence,
            discovered_via=rule.discovered_via,
            metadata={"field": rule.field},
        )
