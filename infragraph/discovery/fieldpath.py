"""Field-path resolver for nested provider JSON.

Paths are dot-separated segments evaluated left to right over a working
set of candidate values that starts as ``[root]``:

    name        project a field
    name[]      expand an array field into the working set
    name[].sub  project ``sub`` from every element of the array
    name[Key]   select the ``Value`` of the ``{Key, Value}`` record whose key is Key

Absence is never an error: missing fields, nulls and non-object values
simply drop out of the working set. A malformed path resolves to nothing;
tables validate their paths up front with ``validate_field_path``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"^([^\[\]]+)(?:\[([^\[\]]*)\])?$")

SCALAR_TYPES = (str, int, float, bool)


@dataclass(frozen=True)
class FieldProject:
    name: str


@dataclass(frozen=True)
class ArrayExpand:
    name: str


@dataclass(frozen=True)
class ArrayProject:
    array: str
    field: str


@dataclass(frozen=True)
class TagLookup:
    name: str
    key: str


Segment = Union[FieldProject, ArrayExpand, ArrayProject, TagLookup]


@lru_cache(maxsize=2048)
def parse_field_path(path: str) -> Tuple[Segment, ...]:
    """Parse a field path into segments. Results are cached per path.

    Raises:
        ValueError: If a segment is malformed
    """
    tokens: List[Segment] = []
    for token in path.split("."):
        match = _SEGMENT_RE.match(token)
        if not match:
            raise ValueError(f"Invalid field path segment '{token}' in '{path}'")
        name, bracket = match.group(1), match.group(2)
        if bracket is None:
            tokens.append(FieldProject(name))
        elif bracket == "":
            tokens.append(ArrayExpand(name))
        else:
            tokens.append(TagLookup(name, bracket))

    segments: List[Segment] = []
    i = 0
    while i < len(tokens):
        token = tokens[i]
        following = tokens[i + 1] if i + 1 < len(tokens) else None
        if isinstance(token, ArrayExpand) and isinstance(following, FieldProject):
            segments.append(ArrayProject(token.name, following.name))
            i += 2
        else:
            segments.append(token)
            i += 1
    return tuple(segments)


def validate_field_path(path: str) -> None:
    """Check a path parses.

    Raises:
        ValueError: If the path is empty or a segment is malformed
    """
    if not isinstance(path, str) or not path:
        raise ValueError(f"Field path must be a non-empty string, got {path!r}")
    parse_field_path(path)


def _project(values: List[Any], name: str) -> List[Any]:
    out = []
    for value in values:
        # Projecting through a list without [] still reaches its elements
        candidates = value if isinstance(value, list) else [value]
        for candidate in candidates:
            if isinstance(candidate, dict):
                found = candidate.get(name)
                if found is not None:
                    out.append(found)
    return out


def _expand(values: List[Any]) -> List[Any]:
    out = []
    for value in values:
        if isinstance(value, list):
            out.extend(v for v in value if v is not None)
        elif value is not None:
            out.append(value)
    return out


def _tag_lookup(values: List[Any], name: str, key: str) -> List[Any]:
    out = []
    for container in _project(values, name):
        if isinstance(container, dict):
            if container.get(key) is not None:
                out.append(container[key])
            continue
        if not isinstance(container, list):
            continue
        for record in container:
            if not isinstance(record, dict):
                continue
            record_key = record.get("Key", record.get("key"))
            if record_key == key:
                found = record.get("Value", record.get("value"))
                if found is not None:
                    out.append(found)
    return out


def _evaluate(segment: Segment, values: List[Any]) -> List[Any]:
    if isinstance(segment, FieldProject):
        return _project(values, segment.name)
    if isinstance(segment, ArrayExpand):
        return _expand(_project(values, segment.name))
    if isinstance(segment, ArrayProject):
        return _project(_expand(_project(values, segment.array)), segment.field)
    return _tag_lookup(values, segment.name, segment.key)


def resolve_field_values(root: Any, path: str) -> List[Any]:
    """Resolve a path and return the matched values, objects included."""
    if root is None or not path or not isinstance(path, str):
        return []
    try:
        segments = parse_field_path(path)
    except ValueError:
        logger.debug("Ignoring malformed field path %r", path)
        return []
    values: List[Any] = [root]
    for segment in segments:
        values = _evaluate(segment, values)
        if not values:
            return []
    return values


def _flatten_scalars(values: List[Any], out: List[Any]) -> None:
    for value in values:
        if isinstance(value, list):
            _flatten_scalars(value, out)
        elif isinstance(value, SCALAR_TYPES):
            out.append(value)


def resolve_field_path(root: Any, path: str) -> List[Any]:
    """Resolve a path and return the matched scalar values in order.

    Example:
        >>> resolve_field_path({"A": {"B": [{"C": 1}, {"C": 2}]}}, "A.B[].C")
        [1, 2]
        >>> resolve_field_path({"Tags": [{"Key": "Name", "Value": "v"}]}, "Tags[Name]")
        ['v']
    """
    out: List[Any] = []
    _flatten_scalars(resolve_field_values(root, path), out)
    return out


def first_value(root: Any, path: str, default: Any = None) -> Any:
    values = resolve_field_path(root, path)
    return values[0] if values else default


def extract_resource_id(identifier: Any) -> str:
    """Canonicalize a provider identifier to its short resource id.

    ARNs resolve to their last resource segment, URLs and slash-separated
    paths to their last path segment; bare ids pass through unchanged.

    Example:
        >>> extract_resource_id("arn:aws:ec2:us-east-1:123456789012:instance/i-abc")
        'i-abc'
        >>> extract_resource_id("arn:aws:iam::123456789012:role/app/deployer")
        'deployer'
        >>> extract_resource_id("vpc-123")
        'vpc-123'
    """
    value = str(identifier).strip()
    if not value:
        return value

    if value.startswith("arn:"):
        parts = value.split(":", 5)
        resource = parts[5] if len(parts) == 6 else parts[-1]
        if "/" in resource:
            segments = [s for s in resource.split("/") if s]
            return segments[-1] if segments else resource
        if ":" in resource:
            return resource.rsplit(":", 1)[-1]
        return resource

    if "/" in value:
        path = value.split("?", 1)[0].split("#", 1)[0]
        segments = [s for s in path.split("/") if s]
        if segments:
            return segments[-1]
    return value


def first_raw_value(root: Any, path: Optional[str]) -> Any:
    """First matched value of a path, objects included. An empty path is the root."""
    if not path:
        return root
    values = resolve_field_values(root, path)
    return values[0] if values else None


def resolve_items(root: Any, path: str) -> List[Any]:
    """Resolve a path to a list of records, expanding arrays one level.

    ``Vpcs`` and ``Vpcs[]`` both yield the VPC records of a response.
    """
    items: List[Any] = []
    for value in resolve_field_values(root, path):
        if isinstance(value, list):
            items.extend(v for v in value if v is not None)
        else:
            items.append(value)
    return items
