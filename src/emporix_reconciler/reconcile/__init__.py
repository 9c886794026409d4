"""Declarative reconciliation of remote resources.

Turns a desired configuration plus the previously applied state into the
minimal set of API calls, and returns the state to persist.

Architecture
------------
Attribute values are held in typed trees whose fields carry a presence
marker: *unset* (never configured), *explicit null* (configured as absent)
or a value.  The diff between the prior tree and the desired tree is a
patch that clears removed fields with explicit nulls and never confuses a
null with a zero, an empty string or ``false``.

Modules:

- ``nodes``       -- attribute nodes and presence markers.
- ``schema``      -- declared attribute types and per-field options.
- ``tree``        -- ``AttributeTree``: decode, encode, canonical order,
  merging server responses.
- ``diff``        -- ``DiffEngine`` and ``PatchDocument``.
- ``locks``       -- ``TenantMutexRegistry``: per-tenant FIFO mutexes.
- ``tokens``      -- ``TokenCache``: single-flight OAuth2 token cache.
- ``coordinator`` -- ``ReconciliationCoordinator``: the state machine
  (import it from ``emporix_reconciler.reconcile.coordinator``; it depends
  on the resource catalog, which depends on this package).
- ``models``      -- identities, credentials, state, phases and reports.
- ``reporter``    -- human-readable and JSON output for patches/reports.

Usage example
-------------
::

    from emporix_reconciler.service import reconciler_session

    async with reconciler_session({"tenant": "acme"}) as coordinator:
        created = await coordinator.create(
            "shipping_zone",
            {"id": "eu", "name": {"en": "Europe"},
             "ship_to": [{"country": "DE"}, {"country": "FR"}]},
            site="main",
        )
        # Persist created.state.to_dict(); later:
        updated = await coordinator.update(created.state, desired)
"""

from .diff import DiffEngine, PatchDocument
from .locks import TenantMutexRegistry
from .models import (
    ReconcilePhase,
    ReconcileReport,
    ResourceIdentity,
    ResourceState,
    TenantCredentials,
    TenantToken,
)
from .nodes import EXPLICIT_NULL, UNSET, FieldPresence, Presence
from .reporter import (
    format_patch_preview,
    format_report,
    patch_to_json,
    report_to_json,
)
from .tokens import TokenCache
from .tree import AttributeTree

__all__ = [
    "AttributeTree",
    "DiffEngine",
    "EXPLICIT_NULL",
    "FieldPresence",
    "PatchDocument",
    "Presence",
    "ReconcilePhase",
    "ReconcileReport",
    "ResourceIdentity",
    "ResourceState",
    "TenantCredentials",
    "TenantMutexRegistry",
    "TenantToken",
    "TokenCache",
    "UNSET",
    "format_patch_preview",
    "format_report",
    "patch_to_json",
    "report_to_json",
]
