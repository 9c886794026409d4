"""Declared schema types for resource attributes.

A resource's attributes are described by an ``ObjectType`` whose fields are
``FieldSpec`` entries.  Field catalogs are plain data (see
``emporix_reconciler.catalog``); the tree builder and diff engine only read
them.

Per-field options:

- ``api_name``  -- wire name when it differs from the configuration name.
- ``required``  -- the desired configuration must supply a value.
- ``computed``  -- the server may fill the field in; leaving it out of the
  configuration never clears it.
- ``null_mode`` -- how a removed nested object is cleared: ``SUBTREE`` sends
  one null at the object root, ``LEAVES`` sends a null for each leaf that
  previously held a value.
- ``atomic``    -- any change inside the object resends the whole object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Mapping, TypeVar

T = TypeVar("T")


class NullMode(str, Enum):
    SUBTREE = "subtree"
    LEAVES = "leaves"


class SchemaType:
    """Base class of all declared attribute types."""

    type_name = "value"

    def accept(self, visitor: SchemaVisitor[T], *args: Any) -> T:
        method = getattr(visitor, f"visit_{self.type_name}")
        return method(self, *args)


@dataclass(frozen=True)
class TextType(SchemaType):
    type_name = "text"


@dataclass(frozen=True)
class NumberType(SchemaType):
    type_name = "number"

    integer: bool = False


@dataclass(frozen=True)
class BooleanType(SchemaType):
    type_name = "boolean"


@dataclass(frozen=True)
class DateType(SchemaType):
    type_name = "date"


@dataclass(frozen=True)
class EnumType(SchemaType):
    type_name = "enum"

    values: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReferenceType(SchemaType):
    """Identifier of another resource (``target`` is its kind name)."""

    type_name = "reference"

    target: str = ""


@dataclass(frozen=True)
class MapType(SchemaType):
    type_name = "map"

    value: SchemaType = field(default_factory=TextType)


@dataclass(frozen=True)
class ListType(SchemaType):
    """Sequence of elements.

    Attributes:
        element: Element type.
        order_insensitive: Element order carries no meaning; both sides are
            sorted into canonical order before comparison.
        sort_keys: Field names (for object elements) giving the canonical
            order, primary key first.  Scalar elements sort by value.
        unique_by: Field name that must not repeat across elements.
    """

    type_name = "list"

    element: SchemaType = field(default_factory=TextType)
    order_insensitive: bool = False
    sort_keys: tuple[str, ...] = ()
    unique_by: str | None = None


@dataclass(frozen=True)
class FieldSpec:
    type: SchemaType
    api_name: str | None = None
    required: bool = False
    computed: bool = False
    null_mode: NullMode = NullMode.SUBTREE
    atomic: bool = False


@dataclass(frozen=True, eq=False)
class ObjectType(SchemaType):
    type_name = "object"

    fields: Mapping[str, FieldSpec] = field(default_factory=dict)

    def wire_name(self, name: str) -> str:
        spec = self.fields[name]
        return spec.api_name or name

    def resolve(self, path: tuple[str, ...]) -> FieldSpec:
        """Return the ``FieldSpec`` reached by following *path*.

        Raises:
            KeyError: If a segment is not a declared field or descends
                into a non-object type.
        """
        current: ObjectType | None = self
        spec: FieldSpec | None = None
        for segment in path:
            if current is None:
                raise KeyError(segment)
            spec = current.fields[segment]
            current = spec.type if isinstance(spec.type, ObjectType) else None
        if spec is None:
            raise KeyError("empty path")
        return spec


def obj(**fields: FieldSpec | SchemaType) -> ObjectType:
    """Shorthand for ``ObjectType``; bare types become plain ``FieldSpec``."""
    return ObjectType(
        fields={
            name: spec if isinstance(spec, FieldSpec) else FieldSpec(spec)
            for name, spec in fields.items()
        }
    )


class SchemaVisitor(Generic[T]):
    """Base visitor over schema types, mirroring ``NodeVisitor``."""

    def visit(self, schema_type: SchemaType, *args: Any) -> T:
        return schema_type.accept(self, *args)

    def visit_text(self, t: TextType, *args: Any) -> T:
        raise NotImplementedError

    def visit_number(self, t: NumberType, *args: Any) -> T:
        raise NotImplementedError

    def visit_boolean(self, t: BooleanType, *args: Any) -> T:
        raise NotImplementedError

    def visit_date(self, t: DateType, *args: Any) -> T:
        raise NotImplementedError

    def visit_enum(self, t: EnumType, *args: Any) -> T:
        raise NotImplementedError

    def visit_reference(self, t: ReferenceType, *args: Any) -> T:
        raise NotImplementedError

    def visit_map(self, t: MapType, *args: Any) -> T:
        raise NotImplementedError

    def visit_list(self, t: ListType, *args: Any) -> T:
        raise NotImplementedError

    def visit_object(self, t: ObjectType, *args: Any) -> T:
        raise NotImplementedError
