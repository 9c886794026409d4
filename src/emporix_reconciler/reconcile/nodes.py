"""Tagged attribute nodes and presence markers.

An attribute tree is built from four node variants:

- ``Scalar``     -- text, integer, decimal, boolean or date leaf.
- ``MapNode``    -- string-keyed map (language-code maps); compared without
  regard to key order, displayed in insertion order.
- ``ListNode``   -- ordered sequence of nodes.
- ``ObjectNode`` -- ordered named fields, each wrapped in a ``FieldPresence``.

``FieldPresence`` is the tri-state marker that tells "never configured"
(``UNSET``) apart from "explicitly cleared" (``EXPLICIT_NULL``) and "has a
value".  Nodes are immutable; equality is structural.

Traversal goes through ``NodeVisitor``: every node has an ``accept`` method
that dispatches to the matching ``visit_*`` method.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ScalarKind(str, Enum):
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"


_NUMERIC_KINDS = (ScalarKind.INTEGER, ScalarKind.DECIMAL)


@dataclass(frozen=True, eq=False)
class Scalar:
    """A leaf value.

    Integers and decimals compare by numeric value (``0 == 0.0``) but keep
    their own kind for encoding.  Booleans never equal numbers.
    """

    value: str | int | float | bool | date
    kind: ScalarKind

    def accept(self, visitor: NodeVisitor[T], *args: Any) -> T:
        return visitor.visit_scalar(self, *args)

    @property
    def is_numeric(self) -> bool:
        return self.kind in _NUMERIC_KINDS

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Scalar):
            return NotImplemented
        if self.is_numeric and other.is_numeric:
            return self.value == other.value
        return self.kind == other.kind and self.value == other.value

    def __hash__(self) -> int:
        if self.is_numeric:
            return hash(("number", self.value))
        return hash((self.kind, self.value))


@dataclass(frozen=True, eq=False)
class MapNode:
    entries: tuple[tuple[str, AttributeNode], ...] = ()

    def accept(self, visitor: NodeVisitor[T], *args: Any) -> T:
        return visitor.visit_map(self, *args)

    def as_dict(self) -> dict[str, AttributeNode]:
        return dict(self.entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MapNode):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def __hash__(self) -> int:
        return hash(frozenset(self.entries))


@dataclass(frozen=True)
class ListNode:
    items: tuple[AttributeNode, ...] = ()

    def accept(self, visitor: NodeVisitor[T], *args: Any) -> T:
        return visitor.visit_list(self, *args)

    def __len__(self) -> int:
        return len(self.items)


class Presence(str, Enum):
    UNSET = "unset"
    EXPLICIT_NULL = "explicit_null"
    VALUE = "value"


@dataclass(frozen=True)
class FieldPresence:
    """Presence marker wrapping an optional node.

    Use the module constants ``UNSET`` and ``EXPLICIT_NULL`` for the empty
    states and ``FieldPresence.of(node)`` for a value.
    """

    presence: Presence
    node: AttributeNode | None = None

    def __post_init__(self) -> None:
        if (self.presence is Presence.VALUE) != (self.node is not None):
            raise ValueError(
                "FieldPresence carries a node if and only if it is VALUE"
            )

    @classmethod
    def of(cls, node: AttributeNode) -> FieldPresence:
        return cls(Presence.VALUE, node)

    @property
    def is_value(self) -> bool:
        return self.presence is Presence.VALUE

    @property
    def is_null(self) -> bool:
        return self.presence is Presence.EXPLICIT_NULL

    @property
    def is_unset(self) -> bool:
        return self.presence is Presence.UNSET

    def __repr__(self) -> str:
        if self.is_value:
            return f"Value({self.node!r})"
        return "ExplicitNull" if self.is_null else "Unset"


UNSET = FieldPresence(Presence.UNSET)
EXPLICIT_NULL = FieldPresence(Presence.EXPLICIT_NULL)


@dataclass(frozen=True, eq=False)
class ObjectNode:
    """Named fields in declaration order.

    Two objects are equal when the same fields hold values and those values
    are equal; ``UNSET`` and ``EXPLICIT_NULL`` fields carry no value and do
    not take part in the comparison.
    """

    fields: tuple[tuple[str, FieldPresence], ...] = ()

    def accept(self, visitor: NodeVisitor[T], *args: Any) -> T:
        return visitor.visit_object(self, *args)

    def get(self, name: str) -> FieldPresence:
        for field_name, presence in self.fields:
            if field_name == name:
                return presence
        return UNSET

    def values(self) -> dict[str, AttributeNode]:
        """Return only the fields holding a value."""
        return {
            name: presence.node
            for name, presence in self.fields
            if presence.node is not None
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ObjectNode):
            return NotImplemented
        return self.values() == other.values()

    def __hash__(self) -> int:
        return hash(frozenset(self.values().items()))


AttributeNode = Union[Scalar, MapNode, ListNode, ObjectNode]


class NodeVisitor(Generic[T]):
    """Base visitor over attribute nodes.

    Extra positional arguments given to ``visit`` are passed through to the
    ``visit_*`` method, which lets visitors walk a node together with its
    schema type or its path.
    """

    def visit(self, node: AttributeNode, *args: Any) -> T:
        return node.accept(self, *args)

    def visit_scalar(self, node: Scalar, *args: Any) -> T:
        raise NotImplementedError

    def visit_map(self, node: MapNode, *args: Any) -> T:
        raise NotImplementedError

    def visit_list(self, node: ListNode, *args: Any) -> T:
        raise NotImplementedError

    def visit_object(self, node: ObjectNode, *args: Any) -> T:
        raise NotImplementedError
