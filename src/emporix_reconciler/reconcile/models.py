"""Data contracts shared by the reconciliation modules.

- ``ResourceIdentity``: tenant/site/parent/id key of one remote resource.
- ``TenantCredentials`` / ``TenantToken``: OAuth2 inputs and the cached
  bearer token (never persisted, never shown in ``repr``).
- ``ResourceState``: last known tree and optimistic-locking version.
- ``ReconcilePhase`` / ``ReconcileReport``: what one reconciliation did.
- ``ApiGateway``: the HTTP capability the coordinator drives.

Pydantic models are frozen (immutable) like the rest of the contracts.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, SecretStr

from ..errors import Conflict

if TYPE_CHECKING:
    from .tree import AttributeTree


class ResourceIdentity(BaseModel):
    """Identity of one remote resource.

    Attributes:
        kind: Resource kind name from the catalog (``shipping_zone``).
        tenant: Tenant name, lower case.
        resource_id: Code or id of the resource.
        site: Site code for site-scoped kinds.
        parent_id: Parent resource id (the zone of a shipping method).
    """

    kind: str
    tenant: str
    resource_id: str
    site: str | None = None
    parent_id: str | None = None

    model_config = {"frozen": True}

    def path_params(self) -> dict[str, str]:
        return {
            "tenant": self.tenant.lower(),
            "site": self.site or "",
            "parent_id": self.parent_id or "",
            "id": self.resource_id,
        }

    def import_id(self) -> str:
        parts = [self.site, self.parent_id, self.resource_id]
        return ":".join(p for p in parts if p)

    def __str__(self) -> str:
        return f"{self.kind} {self.tenant}/{self.import_id()}"


class TenantCredentials(BaseModel):
    """Client-credentials pair or a pre-issued access token."""

    client_id: str | None = None
    client_secret: SecretStr | None = None
    scope: str | None = None
    access_token: SecretStr | None = None

    model_config = {"frozen": True}

    def fingerprint(self, tenant: str) -> str:
        """Stable cache key for *tenant* plus these credentials."""
        secret = (
            self.client_secret.get_secret_value() if self.client_secret else ""
        )
        raw = "\0".join(
            [tenant.lower(), self.client_id or "", secret, self.scope or ""]
        )
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class TenantToken(BaseModel):
    """Bearer token with its absolute expiry (epoch seconds).

    ``expires_at`` is ``None`` for pre-issued tokens, which never expire
    from the cache's point of view.
    """

    token: SecretStr
    expires_at: float | None = None

    model_config = {"frozen": True}

    def is_fresh(self, now: float, margin: float) -> bool:
        """True while more than *margin* seconds remain before expiry."""
        if self.expires_at is None:
            return True
        return now < self.expires_at - margin

    @property
    def bearer(self) -> str:
        return self.token.get_secret_value()


@dataclass(frozen=True)
class ResourceState:
    """Last known state of one resource.

    Owned by a single reconciliation at a time.  Updates never mutate a
    state in place; ``advance()`` returns the successor.
    """

    identity: ResourceIdentity
    tree: AttributeTree
    version: int | None = None

    def advance(
        self, tree: AttributeTree, version: int | None
    ) -> ResourceState:
        """Return the state after a successful call.

        Raises:
            Conflict: If *version* is older than the one already held.
        """
        if version is None:
            version = self.version
        elif self.version is not None and version < self.version:
            raise Conflict(
                f"stale version {version} (last observed {self.version})",
                identity=self.identity,
            )
        return replace(self, tree=tree, version=version)

    def to_dict(self) -> dict[str, Any]:
        """Serialisable form for the orchestrator to persist."""
        return {
            "identity": self.identity.model_dump(),
            "attributes": self.tree.to_config(),
            "version": self.version,
        }


class ReconcilePhase(str, Enum):
    START = "start"
    TOKEN_ACQUIRED = "token_acquired"
    LOCK_ACQUIRED = "lock_acquired"
    PATCH_COMPUTED = "patch_computed"
    DISPATCHED = "dispatched"
    APPLIED = "applied"
    FAILED = "failed"
    LOCK_RELEASED = "lock_released"


TERMINAL_PHASES = (ReconcilePhase.APPLIED, ReconcilePhase.FAILED)


class ReconcileReport(BaseModel):
    """What one reconciliation did.

    Attributes:
        operation: ``create``, ``update``, ``delete``, ``read`` or ``import``.
        identity: Rendered resource identity.
        phases: Phases visited, in order.
        patch_paths: Paths the patch touched (empty for no-op updates).
        dispatched: Whether a mutating call was sent.
        success: Whether the reconciliation reached ``APPLIED``.
        error: Error message on failure.
        version: Resource version after the call.
    """

    operation: str
    identity: str
    phases: list[ReconcilePhase] = []
    patch_paths: list[str] = []
    dispatched: bool = False
    success: bool = False
    error: str | None = None
    version: int | None = None
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}


class ApiGateway(Protocol):
    """Blocking HTTP capability for one tenant's API.

    Mutating calls return ``(body, version)`` where either may be ``None``
    (e.g. ``204 No Content``).  Failures raise ``ReconcileError``
    subclasses; conflicts raise ``Conflict``.
    """

    def create(
        self,
        path: str,
        body: Any,
        *,
        token: str,
        headers: dict[str, str] | None = None,
    ) -> tuple[Any, int | None]: ...

    def read(
        self,
        path: str,
        *,
        token: str,
        headers: dict[str, str] | None = None,
    ) -> tuple[Any, int | None]: ...

    def patch(
        self,
        path: str,
        body: dict[str, Any],
        version: int | None,
        *,
        token: str,
        headers: dict[str, str] | None = None,
        method: str = "PATCH",
        version_field: str = "metadata.version",
    ) -> tuple[Any, int | None]: ...

    def delete(
        self,
        path: str,
        *,
        token: str,
        headers: dict[str, str] | None = None,
    ) -> None: ...
