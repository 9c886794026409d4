"""Patch and reconciliation report formatting.

- ``format_patch_preview`` -- dry-run preview of a patch.
- ``patch_to_json`` -- structured dict for a patch.
- ``format_report`` -- human-readable summary of one reconciliation.
- ``report_to_json`` -- structured dict for a report.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from .tree import encode_node, format_path

if TYPE_CHECKING:
    from .diff import FieldPath, PatchDocument
    from .models import ReconcileReport
    from .tree import AttributeTree


def _render(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _prior_value(
    prior: AttributeTree | None, path: FieldPath, patch: PatchDocument
) -> str | None:
    if prior is None:
        return None
    presence = prior.get(path)
    if presence.node is None:
        return "null" if presence.is_null else None
    spec = patch.schema.resolve(path)
    return _render(encode_node(presence.node, spec.type, wire=False))


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_patch_preview(
    patch: PatchDocument, prior: AttributeTree | None = None
) -> str:
    """Format a patch as a dry-run preview.

    Each entry is shown as ``[SET] path: old -> new`` or ``[NULL] path``.
    The old value is only shown when *prior* is given and held one.

    Args:
        patch: Patch from ``DiffEngine.diff`` or ``coordinator.plan``.
        prior: Tree the patch was computed against.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = ["DRY RUN -- No changes will be made", ""]

    if patch.is_empty:
        lines.append("No changes needed.")
        return "\n".join(lines)

    for path, presence in patch:
        label = format_path(path)
        old = _prior_value(prior, path, patch)
        if presence.node is None:
            suffix = f" (was {old})" if old is not None else ""
            lines.append(f"[NULL] {label}{suffix}")
            continue
        spec = patch.schema.resolve(path)
        new = _render(encode_node(presence.node, spec.type, wire=False))
        if old is None:
            lines.append(f"[SET] {label}: {new}")
        else:
            lines.append(f"[SET] {label}: {old} -> {new}")

    lines.append("")
    lines.append(f"{len(patch)} change(s)")
    return "\n".join(lines)


def patch_to_json(patch: PatchDocument) -> dict:
    """Convert a patch to a structured dict.

    Returns:
        Dict with the changed paths, nulled paths, and the wire body.
    """
    return {
        "empty": patch.is_empty,
        "paths": patch.paths(),
        "nulls": [format_path(path) for path, p in patch if p.is_null],
        "body": patch.to_body(),
    }


# ------------------------------------------------------------------
# Reconciliation report
# ------------------------------------------------------------------


def format_report(report: ReconcileReport) -> str:
    """Format one reconciliation report as human-readable text.

    Args:
        report: Report returned by the coordinator (or ``error.report``).

    Returns:
        Multi-line formatted string.
    """
    status = "OK" if report.success else "FAILED"
    lines: list[str] = [
        f"{report.operation} {report.identity}: {status}",
        f"Started: {report.started_at}",
    ]
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("Phases: " + " -> ".join(p.value for p in report.phases))

    if report.patch_paths:
        lines.append("Changed:")
        for path in report.patch_paths:
            lines.append(f"  {path}")
    elif report.operation == "update" and report.success:
        lines.append("No update call needed.")

    if report.version is not None:
        lines.append(f"Version: {report.version}")
    if report.error:
        lines.append(f"Error: {report.error}")

    return "\n".join(lines)


def report_to_json(report: ReconcileReport) -> dict:
    """Convert a report to a structured dict for JSON serialisation."""
    return report.model_dump(mode="json")
