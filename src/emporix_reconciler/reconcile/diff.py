"""Structural diff between a prior-applied tree and a desired tree.

``DiffEngine.diff()`` walks both trees field by field and returns a
``PatchDocument`` holding, per changed path, either a new value or an
explicit null.  Unchanged paths are omitted, so an empty patch means no
update call is needed.

Rules, per object field:

1. desired unset, prior has a value       -> explicit null (field removed)
2. desired explicitly null                -> explicit null, unless the
   prior was already explicitly null
3. desired value differs from prior       -> the desired value
4. desired equals prior                   -> omitted

Order-insensitive lists are put in canonical order on both sides before
comparison.  Nested objects recurse unless declared ``atomic``; a removed
nested object is nulled at its root (``NullMode.SUBTREE``) or leaf by leaf
(``NullMode.LEAVES``).  Fields declared ``computed`` are never cleared by
omission.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator

from .nodes import EXPLICIT_NULL, FieldPresence, ObjectNode
from .schema import FieldSpec, NullMode, ObjectType
from .tree import AttributeTree, canonicalize, encode_node, format_path

logger = logging.getLogger(__name__)

FieldPath = tuple[str, ...]


class PatchDocument:
    """Minimal set of ``path -> value | explicit null`` instructions.

    Paths are tuples of configuration field names.  Entries keep the order
    in which the diff produced them (schema declaration order).
    """

    def __init__(
        self,
        schema: ObjectType,
        entries: dict[FieldPath, FieldPresence] | None = None,
    ) -> None:
        self.schema = schema
        self._entries: dict[FieldPath, FieldPresence] = dict(entries or {})

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[tuple[FieldPath, FieldPresence]]:
        return iter(self._entries.items())

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def get(self, path: FieldPath) -> FieldPresence | None:
        return self._entries.get(tuple(path))

    def paths(self) -> list[str]:
        return [format_path(path) for path in self._entries]

    def set(self, path: FieldPath, presence: FieldPresence) -> None:
        if presence.is_unset:
            raise ValueError("a patch entry is either a value or a null")
        self._entries[path] = presence

    def to_body(self) -> dict[str, Any]:
        """Render as a nested partial-update body with wire names.

        Explicit nulls become JSON ``null``; values are encoded with their
        declared type.
        """
        body: dict[str, Any] = {}
        for path, presence in self._entries.items():
            target = body
            current = self.schema
            for segment in path[:-1]:
                key = current.wire_name(segment)
                target = target.setdefault(key, {})
                current = current.fields[segment].type  # type: ignore[assignment]
            leaf = path[-1]
            spec = current.fields[leaf]
            target[current.wire_name(leaf)] = (
                None
                if presence.node is None
                else encode_node(presence.node, spec.type)
            )
        return body

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PatchDocument):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"PatchDocument({self._entries!r})"


class DiffEngine:
    """Compute patches for trees of one declared schema."""

    def __init__(self, schema: ObjectType) -> None:
        self.schema = schema

    def diff(
        self, prior: AttributeTree | None, desired: AttributeTree
    ) -> PatchDocument:
        """Compute the minimal patch turning *prior* into *desired*.

        Args:
            prior: Tree last applied (``None`` when creating).
            desired: Tree built from the desired configuration.

        Returns:
            The patch; empty when the trees are equivalent.
        """
        patch = PatchDocument(self.schema)
        prior_root = prior.root if prior is not None else ObjectNode()
        self._diff_object(self.schema, prior_root, desired.root, (), patch)
        if patch.is_empty:
            logger.debug("No changes detected")
        else:
            logger.debug("Patch paths: %s", ", ".join(patch.paths()))
        return patch

    # ------------------------------------------------------------------
    # Recursion
    # ------------------------------------------------------------------

    def _diff_object(
        self,
        t: ObjectType,
        prior: ObjectNode,
        desired: ObjectNode,
        path: FieldPath,
        patch: PatchDocument,
    ) -> None:
        for name, spec in t.fields.items():
            self._diff_field(
                spec, prior.get(name), desired.get(name), path + (name,), patch
            )

    def _diff_field(
        self,
        spec: FieldSpec,
        prior: FieldPresence,
        desired: FieldPresence,
        path: FieldPath,
        patch: PatchDocument,
    ) -> None:
        if desired.is_null:
            if prior.node is not None:
                self._remove(spec, prior.node, path, patch)
            elif not prior.is_null:
                patch.set(path, EXPLICIT_NULL)
            return

        if desired.node is None:
            if prior.node is not None and not spec.computed:
                self._remove(spec, prior.node, path, patch)
            return

        if prior.node is None:
            patch.set(path, FieldPresence.of(canonicalize(desired.node, spec.type)))
            return

        if (
            isinstance(spec.type, ObjectType)
            and not spec.atomic
            and isinstance(prior.node, ObjectNode)
            and isinstance(desired.node, ObjectNode)
        ):
            self._diff_object(spec.type, prior.node, desired.node, path, patch)
            return

        wanted = canonicalize(desired.node, spec.type)
        if wanted != canonicalize(prior.node, spec.type):
            patch.set(path, FieldPresence.of(wanted))

    def _remove(
        self,
        spec: FieldSpec,
        prior: Any,
        path: FieldPath,
        patch: PatchDocument,
    ) -> None:
        if (
            spec.null_mode is NullMode.LEAVES
            and isinstance(spec.type, ObjectType)
            and isinstance(prior, ObjectNode)
        ):
            before = len(patch)
            for name, child in spec.type.fields.items():
                held = prior.get(name).node
                if held is not None:
                    self._remove(child, held, path + (name,), patch)
            if len(patch) > before:
                return
        patch.set(path, EXPLICIT_NULL)
