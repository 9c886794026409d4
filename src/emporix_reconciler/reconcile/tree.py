"""Attribute trees: decode, encode and merge resource attributes.

An ``AttributeTree`` pairs a root ``ObjectNode`` with the resource's declared
``ObjectType``.  Trees are built in two ways:

- ``AttributeTree.from_config()`` -- from the desired configuration, using
  configuration field names.  Unknown keys are rejected.  A field that the
  prior tree held a value for but which is now missing becomes
  ``EXPLICIT_NULL``; a field that was never set stays ``UNSET``.
- ``AttributeTree.from_api()`` -- from an API response body, using wire
  field names.  Unknown keys (``metadata``, server-managed fields) are
  ignored.

Decoding is a ``SchemaVisitor`` walking the declared type next to the raw
value; encoding and canonical ordering are ``NodeVisitor`` walks over the
node next to its type.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Mapping, Sequence, Union

from ..errors import SchemaMismatch
from .nodes import (
    EXPLICIT_NULL,
    UNSET,
    AttributeNode,
    FieldPresence,
    ListNode,
    MapNode,
    NodeVisitor,
    ObjectNode,
    Scalar,
    ScalarKind,
)
from .schema import (
    BooleanType,
    DateType,
    EnumType,
    ListType,
    MapType,
    NumberType,
    ObjectType,
    ReferenceType,
    SchemaType,
    SchemaVisitor,
    TextType,
)

logger = logging.getLogger(__name__)

Path = tuple[Union[str, int], ...]


def format_path(path: Sequence[str | int]) -> str:
    """Render a path as ``home_base.location`` / ``ship_to[2].country``."""
    out = ""
    for segment in path:
        if isinstance(segment, int):
            out += f"[{segment}]"
        elif out:
            out += f".{segment}"
        else:
            out = segment
    return out


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class _Decoder(SchemaVisitor[AttributeNode]):
    """Decode a raw JSON-like value against a declared type.

    Args:
        wire: ``True`` for API bodies (wire names, unknown keys ignored),
            ``False`` for desired configuration (strict).
    """

    def __init__(self, *, wire: bool) -> None:
        self.wire = wire

    @staticmethod
    def _mismatch(path: Path, expected: str, raw: Any) -> SchemaMismatch:
        return SchemaMismatch(
            format_path(path),
            f"expected {expected}, got {type(raw).__name__}",
        )

    def visit_text(
        self, t: TextType, raw: Any, path: Path, prior: AttributeNode | None
    ) -> AttributeNode:
        if not isinstance(raw, str):
            raise self._mismatch(path, "text", raw)
        return Scalar(raw, ScalarKind.TEXT)

    def visit_number(
        self, t: NumberType, raw: Any, path: Path, prior: AttributeNode | None
    ) -> AttributeNode:
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise self._mismatch(path, "number", raw)
        if isinstance(raw, int):
            return Scalar(raw, ScalarKind.INTEGER)
        if t.integer:
            if not raw.is_integer():
                raise SchemaMismatch(
                    format_path(path), f"expected integer, got {raw!r}"
                )
            return Scalar(int(raw), ScalarKind.INTEGER)
        return Scalar(raw, ScalarKind.DECIMAL)

    def visit_boolean(
        self, t: BooleanType, raw: Any, path: Path, prior: AttributeNode | None
    ) -> AttributeNode:
        if not isinstance(raw, bool):
            raise self._mismatch(path, "boolean", raw)
        return Scalar(raw, ScalarKind.BOOLEAN)

    def visit_date(
        self, t: DateType, raw: Any, path: Path, prior: AttributeNode | None
    ) -> AttributeNode:
        if isinstance(raw, date):
            return Scalar(raw, ScalarKind.DATE)
        if not isinstance(raw, str):
            raise self._mismatch(path, "date", raw)
        try:
            parsed: date = (
                datetime.fromisoformat(raw)
                if "T" in raw
                else date.fromisoformat(raw)
            )
        except ValueError:
            raise SchemaMismatch(
                format_path(path), f"invalid ISO 8601 date {raw!r}"
            ) from None
        return Scalar(parsed, ScalarKind.DATE)

    def visit_enum(
        self, t: EnumType, raw: Any, path: Path, prior: AttributeNode | None
    ) -> AttributeNode:
        if not isinstance(raw, str):
            raise self._mismatch(path, "text", raw)
        if raw not in t.values:
            raise SchemaMismatch(
                format_path(path),
                f"{raw!r} is not one of {', '.join(t.values)}",
            )
        return Scalar(raw, ScalarKind.TEXT)

    def visit_reference(
        self,
        t: ReferenceType,
        raw: Any,
        path: Path,
        prior: AttributeNode | None,
    ) -> AttributeNode:
        if not isinstance(raw, str) or not raw.strip():
            raise SchemaMismatch(
                format_path(path),
                f"expected {t.target or 'resource'} identifier",
            )
        return Scalar(raw, ScalarKind.TEXT)

    def visit_map(
        self, t: MapType, raw: Any, path: Path, prior: AttributeNode | None
    ) -> AttributeNode:
        if not isinstance(raw, Mapping):
            raise self._mismatch(path, "map", raw)
        entries = []
        for key, value in raw.items():
            entry_path = path + (str(key),)
            if value is None:
                raise SchemaMismatch(
                    format_path(entry_path), "map entries cannot be null"
                )
            entries.append(
                (str(key), self.visit(t.value, value, entry_path, None))
            )
        return MapNode(tuple(entries))

    def visit_list(
        self, t: ListType, raw: Any, path: Path, prior: AttributeNode | None
    ) -> AttributeNode:
        if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
            raise self._mismatch(path, "list", raw)
        items = []
        for index, value in enumerate(raw):
            if value is None:
                raise SchemaMismatch(
                    format_path(path + (index,)), "list items cannot be null"
                )
            items.append(self.visit(t.element, value, path + (index,), None))
        node = ListNode(tuple(items))
        if t.unique_by and not self.wire:
            _check_unique(node, t.unique_by, path)
        return node

    def visit_object(
        self, t: ObjectType, raw: Any, path: Path, prior: AttributeNode | None
    ) -> AttributeNode:
        if not isinstance(raw, Mapping):
            raise self._mismatch(path, "object", raw)

        if not self.wire:
            unknown = sorted(set(raw) - set(t.fields))
            if unknown:
                raise SchemaMismatch(
                    format_path(path + (str(unknown[0]),)), "unknown field"
                )

        prior_obj = prior if isinstance(prior, ObjectNode) else None
        fields: list[tuple[str, FieldPresence]] = []
        for name, spec in t.fields.items():
            key = t.wire_name(name) if self.wire else name
            child_path = path + (name,)

            if key in raw and raw[key] is not None:
                prior_child = prior_obj.get(name).node if prior_obj else None
                child = self.visit(spec.type, raw[key], child_path, prior_child)
                fields.append((name, FieldPresence.of(child)))
                continue

            if spec.required and not self.wire:
                reason = "cannot be null" if key in raw else "is missing"
                raise SchemaMismatch(
                    format_path(child_path), f"required field {reason}"
                )

            if key in raw:
                fields.append((name, EXPLICIT_NULL))
            elif (
                prior_obj is not None
                and prior_obj.get(name).is_value
                and not spec.computed
            ):
                # Dropped from the source after holding a value: clear it.
                fields.append((name, EXPLICIT_NULL))
            else:
                fields.append((name, UNSET))
        return ObjectNode(tuple(fields))


def _check_unique(node: ListNode, field_name: str, path: Path) -> None:
    seen: set[AttributeNode] = set()
    for index, item in enumerate(node.items):
        if not isinstance(item, ObjectNode):
            continue
        key = item.get(field_name).node
        if key is None:
            continue
        if key in seen:
            value = key.value if isinstance(key, Scalar) else key
            raise SchemaMismatch(
                format_path(path + (index, field_name)),
                f"duplicate {field_name} {value!r}",
            )
        seen.add(key)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


class _Encoder(NodeVisitor[Any]):
    """Encode nodes back to plain JSON-compatible values."""

    def __init__(self, *, wire: bool, include_nulls: bool) -> None:
        self.wire = wire
        self.include_nulls = include_nulls

    def visit_scalar(self, node: Scalar, t: SchemaType) -> Any:
        if isinstance(node.value, date):
            return node.value.isoformat()
        return node.value

    def visit_map(self, node: MapNode, t: MapType) -> Any:
        return {key: self.visit(value, t.value) for key, value in node.entries}

    def visit_list(self, node: ListNode, t: ListType) -> Any:
        return [self.visit(item, t.element) for item in node.items]

    def visit_object(self, node: ObjectNode, t: ObjectType) -> Any:
        out: dict[str, Any] = {}
        for name, presence in node.fields:
            spec = t.fields[name]
            key = t.wire_name(name) if self.wire else name
            if presence.node is not None:
                out[key] = self.visit(presence.node, spec.type)
            elif presence.is_null and self.include_nulls:
                out[key] = None
        return out


def encode_node(
    node: AttributeNode,
    schema_type: SchemaType,
    *,
    wire: bool = True,
    include_nulls: bool = True,
) -> Any:
    """Encode a single node (used for patch values)."""
    return _Encoder(wire=wire, include_nulls=include_nulls).visit(
        node, schema_type
    )


# ---------------------------------------------------------------------------
# Canonical ordering
# ---------------------------------------------------------------------------


def _scalar_sort_key(node: AttributeNode | None) -> tuple[int, int, Any]:
    if node is None:
        return (0, 0, "")
    if isinstance(node, Scalar):
        if node.is_numeric:
            return (1, 0, float(node.value))  # type: ignore[arg-type]
        if node.kind is ScalarKind.BOOLEAN:
            return (1, 1, int(node.value))  # type: ignore[arg-type]
        if node.kind is ScalarKind.DATE:
            return (1, 2, node.value.isoformat())  # type: ignore[union-attr]
        return (1, 3, node.value)
    return (2, 0, repr(node))


def _element_sort_key(node: AttributeNode, t: ListType) -> tuple:
    if isinstance(node, ObjectNode):
        keys = t.sort_keys
        if not keys and isinstance(t.element, ObjectType):
            keys = tuple(t.element.fields)
        return tuple(_scalar_sort_key(node.get(k).node) for k in keys)
    return (_scalar_sort_key(node),)


class _Canonicalizer(NodeVisitor[AttributeNode]):
    """Sort order-insensitive lists (recursively) into canonical order."""

    def visit_scalar(self, node: Scalar, t: SchemaType) -> AttributeNode:
        return node

    def visit_map(self, node: MapNode, t: MapType) -> AttributeNode:
        return MapNode(
            tuple((key, self.visit(value, t.value)) for key, value in node.entries)
        )

    def visit_list(self, node: ListNode, t: ListType) -> AttributeNode:
        items = [self.visit(item, t.element) for item in node.items]
        if t.order_insensitive:
            items.sort(key=lambda item: _element_sort_key(item, t))
        return ListNode(tuple(items))

    def visit_object(self, node: ObjectNode, t: ObjectType) -> AttributeNode:
        fields = []
        for name, presence in node.fields:
            if presence.node is not None:
                child = self.visit(presence.node, t.fields[name].type)
                presence = FieldPresence.of(child)
            fields.append((name, presence))
        return ObjectNode(tuple(fields))


def canonicalize(node: AttributeNode, schema_type: SchemaType) -> AttributeNode:
    return _Canonicalizer().visit(node, schema_type)


# ---------------------------------------------------------------------------
# AttributeTree
# ---------------------------------------------------------------------------


class AttributeTree:
    """A resource's attributes: a root object node plus its declared type.

    Args:
        schema: Declared root type.
        root: Root node; defaults to every field ``UNSET``.
    """

    def __init__(self, schema: ObjectType, root: ObjectNode | None = None):
        self.schema = schema
        if root is None:
            root = ObjectNode(tuple((name, UNSET) for name in schema.fields))
        self.root = root

    @classmethod
    def from_config(
        cls,
        raw: Mapping[str, Any] | None,
        schema: ObjectType,
        prior: AttributeTree | None = None,
    ) -> AttributeTree:
        """Build a tree from desired configuration.

        Args:
            raw: Desired configuration using configuration field names.
            schema: Declared root type.
            prior: Previously applied tree; fields it held a value for and
                which *raw* omits become ``EXPLICIT_NULL``, except
                ``computed`` ones, which stay ``UNSET``.

        Raises:
            SchemaMismatch: On a type mismatch, unknown field, missing
                required field or duplicate key, naming the path.
        """
        root = _Decoder(wire=False).visit(
            schema,
            {} if raw is None else raw,
            (),
            prior.root if prior is not None else None,
        )
        return cls(schema, root)  # type: ignore[arg-type]

    @classmethod
    def from_api(
        cls, body: Mapping[str, Any] | None, schema: ObjectType
    ) -> AttributeTree:
        """Build a tree from an API response body (wire field names)."""
        root = _Decoder(wire=True).visit(schema, body or {}, (), None)
        return cls(schema, root)  # type: ignore[arg-type]

    def get(self, path: Sequence[str]) -> FieldPresence:
        """Return the presence marker at *path* (``UNSET`` if unreachable)."""
        presence = FieldPresence.of(self.root)
        for segment in path:
            node = presence.node
            if not isinstance(node, ObjectNode):
                return UNSET
            presence = node.get(segment)
        return presence

    def to_config(self) -> dict[str, Any]:
        """Encode with configuration names; explicit nulls become ``None``.

        ``AttributeTree.from_config(tree.to_config(), schema)`` rebuilds an
        equal tree, which makes this the form to persist.
        """
        return _Encoder(wire=False, include_nulls=True).visit(
            self.root, self.schema
        )

    def to_api(self, *, include_nulls: bool = False) -> dict[str, Any]:
        """Encode as a full request body with wire names."""
        return _Encoder(wire=True, include_nulls=include_nulls).visit(
            self.root, self.schema
        )

    def canonical(self) -> AttributeTree:
        return AttributeTree(
            self.schema,
            canonicalize(self.root, self.schema),  # type: ignore[arg-type]
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AttributeTree):
            return NotImplemented
        return (
            self.schema is other.schema
            and self.root.fields == other.root.fields
        )

    def __repr__(self) -> str:
        return f"AttributeTree({self.to_config()!r})"


# ---------------------------------------------------------------------------
# Merging server responses
# ---------------------------------------------------------------------------


def _overlay(
    t: ObjectType,
    basis: ObjectNode,
    observed: ObjectNode | None,
    keep_absent: bool,
) -> ObjectNode:
    fields: list[tuple[str, FieldPresence]] = []
    for name, spec in t.fields.items():
        mine = basis.get(name)
        theirs = observed.get(name) if observed is not None else UNSET

        if mine.is_value:
            if theirs.node is None:
                merged = mine if keep_absent else UNSET
            elif (
                isinstance(spec.type, ObjectType)
                and not spec.atomic
                and isinstance(mine.node, ObjectNode)
                and isinstance(theirs.node, ObjectNode)
            ):
                merged = FieldPresence.of(
                    _overlay(spec.type, mine.node, theirs.node, keep_absent)
                )
            else:
                merged = theirs
        elif spec.computed and theirs.is_value:
            merged = theirs
        else:
            merged = mine
        fields.append((name, merged))
    return ObjectNode(tuple(fields))


def applied_tree(
    desired: AttributeTree, response: AttributeTree | None
) -> AttributeTree:
    """Tree to record after a successful create/update.

    Fields the desired tree set take the server's echo when it returned one
    and keep the desired value otherwise.  Fields left out of the
    configuration stay out, except ``computed`` ones the server filled in.
    """
    root = _overlay(
        desired.schema,
        desired.root,
        response.root if response is not None else None,
        keep_absent=True,
    )
    return AttributeTree(desired.schema, root).canonical()


def observed_tree(
    prior: AttributeTree, observed: AttributeTree
) -> AttributeTree:
    """Tree to record after a refresh read.

    Only fields the prior tree tracked (plus ``computed`` ones) are taken
    from the server; a tracked field the server no longer returns becomes
    ``UNSET`` so the next reconciliation sends it again.
    """
    root = _overlay(prior.schema, prior.root, observed.root, keep_absent=False)
    for name, presence in root.fields:
        if prior.get((name,)).is_value and not presence.is_value:
            logger.debug("Drift: %s no longer set remotely", name)
    return AttributeTree(prior.schema, root).canonical()
