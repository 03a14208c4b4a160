"""
Payload tree representation.

JSON payloads are converted into a tagged union of object, array and scalar
nodes so that walkers dispatch on node kind instead of guessing shapes of
arbitrary input.

The recorded DOM under a snapshot's `data` can nest hundreds of levels deep,
so it is kept as a single RawNode leaf that walkers never descend into.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Union

Scalar = Union[str, int, float, bool, None]

# Key under `properties` that holds a list of recorded snapshots
SNAPSHOT_DATA_KEY = '$snapshot_data'


class Node:
    """Base class of payload tree nodes."""

    kind = 'node'

    def to_python(self) -> Any:
        raise NotImplementedError


@dataclass
class ObjectNode(Node):
    fields: Dict[str, Node] = field(default_factory=dict)

    kind = 'object'

    def get(self, key: str) -> Optional[Node]:
        return self.fields.get(key)

    def scalar(self, key: str, default: Scalar = None) -> Scalar:
        """Value of a scalar field, or default when absent or not a scalar."""
        node = self.fields.get(key)
        if isinstance(node, ScalarNode):
            return node.value
        return default

    def set_scalar(self, key: str, value: Scalar) -> None:
        self.fields[key] = ScalarNode(value)

    def to_python(self) -> Dict[str, Any]:
        return {key: child.to_python() for key, child in self.fields.items()}


@dataclass
class ArrayNode(Node):
    items: List[Node] = field(default_factory=list)

    kind = 'array'

    def to_python(self) -> List[Any]:
        return [item.to_python() for item in self.items]


@dataclass
class ScalarNode(Node):
    value: Scalar = None

    kind = 'scalar'

    def to_python(self) -> Scalar:
        return self.value


@dataclass
class RawNode(Node):
    """Decoded JSON subtree carried through untouched."""

    value: Any = None

    kind = 'raw'

    def to_python(self) -> Any:
        return self.value


def _snapshot_node(item: Any) -> Node:
    if not isinstance(item, dict):
        return from_python(item)
    return ObjectNode({
        str(key): RawNode(child) if key == 'data' and isinstance(child, (dict, list)) else from_python(child)
        for key, child in item.items()
    })


def from_python(value: Any) -> Node:
    """Build a node tree from decoded JSON. Snapshot `data` trees become RawNode leaves."""
    if isinstance(value, dict):
        fields = {}
        for key, child in value.items():
            if key == SNAPSHOT_DATA_KEY and isinstance(child, list):
                fields[str(key)] = ArrayNode([_snapshot_node(item) for item in child])
            else:
                fields[str(key)] = from_python(child)
        return ObjectNode(fields)
    if isinstance(value, (list, tuple)):
        return ArrayNode([from_python(item) for item in value])
    if value is None or isinstance(value, (str, int, float, bool)):
        return ScalarNode(value)
    raise TypeError(f"Unsupported payload value of type {type(value).__name__}")


class NodeVisitor:
    """
    Walks a node tree, dispatching to `visit_object`, `visit_array` and
    `visit_scalar`. Unhandled kinds fall through to `generic_visit`.
    """

    def visit(self, node: Node) -> Any:
        method = getattr(self, f"visit_{node.kind}", self.generic_visit)
        return method(node)

    def generic_visit(self, node: Node) -> Any:
        if isinstance(node, ObjectNode):
            for child in node.fields.values():
                self.visit(child)
        elif isinstance(node, ArrayNode):
            for item in node.items:
                self.visit(item)
        return node


class NodeTransformer(NodeVisitor):
    """
    A NodeVisitor whose visit methods return the replacement node.
    Children are replaced in place with whatever their visit returns.
    """

    def generic_visit(self, node: Node) -> Node:
        if isinstance(node, ObjectNode):
            for key, child in list(node.fields.items()):
                node.fields[key] = self.visit(child)
        elif isinstance(node, ArrayNode):
            node.items = [self.visit(item) for item in node.items]
        return node


class SnapshotTransformer(NodeTransformer):
    """
    Transformer that hands every recorded snapshot to `visit_snapshot`.

    Snapshots live in `<event>.properties.$snapshot_data[*]`; only object
    entries of that list are visited.
    """

    def visit_object(self, node: ObjectNode) -> Node:
        node = self.generic_visit(node)
        properties = node.get('properties')
        if isinstance(properties, ObjectNode):
            snapshots = properties.get(SNAPSHOT_DATA_KEY)
            if isinstance(snapshots, ArrayNode):
                snapshots.items = [
                    self.visit_snapshot(item) if isinstance(item, ObjectNode) else item
                    for item in snapshots.items
                ]
        return node

    def visit_snapshot(self, snapshot: ObjectNode) -> Node:
        return snapshot


class ScalarRewriter(NodeTransformer):
    """Replaces string scalars that exactly match a key of `replacements`."""

    def __init__(self, replacements: Dict[str, str]):
        self.replacements = replacements

    def visit_scalar(self, node: ScalarNode) -> Node:
        if isinstance(node.value, str) and node.value in self.replacements:
            return ScalarNode(self.replacements[node.value])
        return node


class PatternRewriter(NodeTransformer):
    """Substitutes every match of `pattern` inside string scalars."""

    def __init__(self, pattern: Union[str, Pattern], replacement: str):
        self.pattern = re.compile(pattern)
        self.replacement = replacement

    def visit_scalar(self, node: ScalarNode) -> Node:
        if isinstance(node.value, str):
            return ScalarNode(self.pattern.sub(lambda _: self.replacement, node.value))
        return node
