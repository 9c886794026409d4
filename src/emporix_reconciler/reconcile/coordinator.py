"""Reconciliation coordinator: drive one resource towards its desired state.

Every operation walks the same state machine::

    START -> TOKEN_ACQUIRED -> [LOCK_ACQUIRED] -> PATCH_COMPUTED
          -> DISPATCHED -> APPLIED | FAILED -> [LOCK_RELEASED]

- An empty patch goes straight from ``PATCH_COMPUTED`` to ``APPLIED``
  without a network call.
- ``LOCK_ACQUIRED`` / ``LOCK_RELEASED`` only appear for kinds with a lock
  scope; the lock is released on every exit path.
- The whole operation runs under one deadline; expiry raises ``Cancelled``.
- Gateway calls retry ``Transient`` failures only.  Every other error is
  raised with the resource identity attached and the run's report on
  ``error.report``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping

from ..catalog import (
    CreateMode,
    DestroyPolicy,
    ResourceCatalog,
    ResourceKind,
    parse_import_id,
)
from ..core.async_utils import run_sync_retrying
from ..errors import (
    ApiError,
    AuthenticationFailed,
    Cancelled,
    ReconcileError,
    SchemaMismatch,
)
from .diff import DiffEngine, PatchDocument
from .locks import TenantMutexRegistry
from .nodes import ObjectNode
from .models import (
    TERMINAL_PHASES,
    ApiGateway,
    ReconcilePhase,
    ReconcileReport,
    ResourceIdentity,
    ResourceState,
    TenantCredentials,
    TenantToken,
)
from .tokens import TokenCache
from .tree import AttributeTree, applied_tree, format_path, observed_tree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one successful reconciliation.

    Attributes:
        state: State to persist; ``None`` after a delete.
        patch: Patch that was computed (``None`` for reads and deletes).
        report: Phases visited and what was sent.
    """

    state: ResourceState | None
    patch: PatchDocument | None
    report: ReconcileReport


# State to persist and patch computed, per operation
_Outcome = tuple[ResourceState | None, PatchDocument | None]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Run:
    """Phase tracker for one reconciliation."""

    def __init__(self, operation: str, identity: ResourceIdentity) -> None:
        self.operation = operation
        self.identity = identity
        self.phases: list[ReconcilePhase] = []
        self.patch_paths: list[str] = []
        self.dispatched = False
        self.error: str | None = None
        self.version: int | None = None
        self.started_at = _now()
        self.advance(ReconcilePhase.START)

    @property
    def terminal(self) -> bool:
        return any(phase in TERMINAL_PHASES for phase in self.phases)

    def advance(self, phase: ReconcilePhase) -> None:
        self.phases.append(phase)
        logger.debug("%s %s: %s", self.operation, self.identity, phase.value)

    def dispatch(self) -> None:
        if not self.dispatched:
            self.dispatched = True
            self.advance(ReconcilePhase.DISPATCHED)

    def fail(self, error: BaseException) -> None:
        if not self.terminal:
            self.advance(ReconcilePhase.FAILED)
        self.error = str(error) or type(error).__name__

    def report(self) -> ReconcileReport:
        return ReconcileReport(
            operation=self.operation,
            identity=str(self.identity),
            phases=list(self.phases),
            patch_paths=list(self.patch_paths),
            dispatched=self.dispatched,
            success=ReconcilePhase.APPLIED in self.phases,
            error=self.error,
            version=self.version,
            started_at=self.started_at,
            completed_at=_now(),
        )


class ReconciliationCoordinator:
    """Create, read, update, delete and import resources for one tenant.

    Args:
        gateway: Blocking HTTP capability (``EmporixClient``).
        tokens: Shared token cache.
        locks: Shared tenant mutex registry.
        catalog: Resource kinds by name.
        tenant: Tenant name.
        credentials: Credentials used for every token request.
        deadline: Seconds one operation may take end to end.
        max_retries: Attempts per gateway call for ``Transient`` failures.
        backoff: Retry backoff multiplier in seconds.
    """

    def __init__(
        self,
        gateway: ApiGateway,
        tokens: TokenCache,
        locks: TenantMutexRegistry,
        catalog: ResourceCatalog,
        tenant: str,
        credentials: TenantCredentials,
        *,
        deadline: float | None = 30.0,
        max_retries: int = 3,
        backoff: float = 0.5,
    ) -> None:
        self.gateway = gateway
        self.tokens = tokens
        self.locks = locks
        self.catalog = catalog
        self.tenant = tenant.lower()
        self.credentials = credentials
        self.deadline = deadline
        self.max_retries = max_retries
        self.backoff = backoff

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create(
        self,
        kind: str | ResourceKind,
        desired: Mapping[str, Any],
        *,
        site: str | None = None,
        parent_id: str | None = None,
    ) -> ReconcileResult:
        """Create the resource described by *desired*.

        Kinds with ``CreateMode.ADOPT`` already exist remotely: the current
        resource is read and only the differences are patched.

        Raises:
            SchemaMismatch: *desired* does not match the kind's schema.
            Conflict: The resource already exists or the version moved.
        """
        kind = self._kind(kind)
        tree = AttributeTree.from_config(kind.prepare_config(desired), kind.schema)
        identity = self._new_identity(kind, tree, site, parent_id)

        async def body(run: _Run) -> _Outcome:
            token = await self._token(run)
            async with self._locked(kind, run):
                if kind.create_mode is CreateMode.ADOPT:
                    return await self._adopt(kind, identity, tree, token, run)
                return await self._post(kind, identity, tree, token, run)

        return await self._execute("create", identity, body)

    async def read(self, state: ResourceState) -> ReconcileResult:
        """Refresh *state* from the remote resource.

        Only fields the state tracks (and computed ones) are taken over;
        tracked fields the server no longer returns become unset.

        Raises:
            NotFound: The resource no longer exists.
        """
        kind = self.catalog.get(state.identity.kind)

        async def body(run: _Run) -> _Outcome:
            token = await self._token(run)
            async with self._locked(kind, run):
                remote, version = await self._read_remote(
                    kind, state.identity, token
                )
                tree = observed_tree(state.tree, remote)
                new_state = ResourceState(
                    state.identity,
                    tree,
                    version if version is not None else state.version,
                )
                run.version = new_state.version
                run.advance(ReconcilePhase.APPLIED)
                return new_state, None

        return await self._execute("read", state.identity, body)

    async def update(
        self, state: ResourceState, desired: Mapping[str, Any]
    ) -> ReconcileResult:
        """Apply *desired* on top of the previously recorded *state*.

        Fields *state* held a value for and *desired* leaves out are
        cleared with explicit nulls.

        Raises:
            SchemaMismatch: *desired* is malformed or changes an immutable
                field.
            Conflict: The server rejected the version or a concurrent
                mutation.
        """
        kind = self.catalog.get(state.identity.kind)

        async def body(run: _Run) -> _Outcome:
            tree = AttributeTree.from_config(
                kind.prepare_config(desired), kind.schema, prior=state.tree
            )
            token = await self._token(run)
            async with self._locked(kind, run):
                patch = self._compute_patch(kind, state.tree, tree, run)
                if patch.is_empty:
                    run.version = state.version
                    run.advance(ReconcilePhase.APPLIED)
                    return state, patch
                self._check_immutable(kind, patch)

                new_state = state
                if self._changes_main(kind, patch):
                    if kind.update_method == "PUT":
                        request = tree.to_api()
                    else:
                        request = patch.to_body()
                    new_state = await self._send_update(
                        kind, state, tree, self._wire_body(kind, request), token, run
                    )
                new_state = await self._sync_mixins(
                    kind, new_state, state.tree, tree, token, run
                )
                run.version = new_state.version
                run.advance(ReconcilePhase.APPLIED)
                return new_state, patch

        return await self._execute("update", state.identity, body)

    async def delete(self, state: ResourceState) -> ReconcileResult:
        """Remove the resource according to its kind's destroy policy.

        Raises:
            NotFound: The resource is already gone; callers may treat this
                as a successful delete.
        """
        kind = self.catalog.get(state.identity.kind)

        async def body(run: _Run) -> _Outcome:
            token = await self._token(run)
            async with self._locked(kind, run):
                url = kind.item_url(state.identity)
                match kind.destroy_policy:
                    case DestroyPolicy.DELETE:
                        run.dispatch()
                        await self._call(kind, self.gateway.delete, url, token=token)
                    case DestroyPolicy.DEACTIVATE:
                        run.dispatch()
                        await self._call(
                            kind,
                            self.gateway.patch,
                            url,
                            dict(kind.deactivate_body or {}),
                            state.version if kind.versioned else None,
                            token=token,
                            method=kind.update_method,
                            version_field=kind.version_field,
                        )
                    case DestroyPolicy.FORGET:
                        logger.info(
                            "%s cannot be deleted remotely, dropping it from state",
                            state.identity,
                        )
                run.advance(ReconcilePhase.APPLIED)
                return None, None

        return await self._execute("delete", state.identity, body)

    async def import_state(
        self, kind: str | ResourceKind, import_id: str
    ) -> ReconcileResult:
        """Adopt an existing resource by its import ID.

        The returned state holds every attribute the server reported.

        Raises:
            InvalidImportId: *import_id* does not match the kind's format.
            NotFound: No such resource.
        """
        kind = self._kind(kind)
        identity = parse_import_id(kind, import_id, self.tenant)

        async def body(run: _Run) -> _Outcome:
            token = await self._token(run)
            async with self._locked(kind, run):
                remote, version = await self._read_remote(kind, identity, token)
                state = ResourceState(identity, remote.canonical(), version)
                run.version = version
                run.advance(ReconcilePhase.APPLIED)
                return state, None

        return await self._execute("import", identity, body)

    def plan(
        self,
        kind: str | ResourceKind,
        desired: Mapping[str, Any],
        state: ResourceState | None = None,
    ) -> PatchDocument:
        """Dry run: the patch an update (or create) would send.

        No token is requested, no lock is taken and nothing is sent.

        Raises:
            SchemaMismatch: *desired* does not match the kind's schema.
        """
        kind = self._kind(kind)
        prior = state.tree if state is not None else None
        tree = AttributeTree.from_config(
            kind.prepare_config(desired), kind.schema, prior=prior
        )
        return DiffEngine(kind.schema).diff(prior, tree)

    # ------------------------------------------------------------------
    # State machine plumbing
    # ------------------------------------------------------------------

    async def _execute(
        self,
        operation: str,
        identity: ResourceIdentity,
        body: Callable[[_Run], Awaitable[_Outcome]],
    ) -> ReconcileResult:
        run = _Run(operation, identity)
        try:
            async with asyncio.timeout(self.deadline):
                state, patch = await body(run)
        except TimeoutError:
            err = Cancelled(
                f"{operation} did not finish within {self.deadline}s",
                identity=identity,
            )
            run.fail(err)
            err.report = run.report()
            logger.warning("%s", err)
            raise err from None
        except ReconcileError as e:
            e.with_identity(identity)
            run.fail(e)
            e.report = run.report()
            logger.warning("%s %s failed: %s", operation, identity, e.message)
            raise
        except asyncio.CancelledError as e:
            run.fail(e)
            raise

        logger.info(
            "%s %s: %s",
            operation,
            identity,
            " -> ".join(phase.value for phase in run.phases),
        )
        return ReconcileResult(state, patch, run.report())

    async def _token(self, run: _Run) -> TenantToken:
        token = await self.tokens.get_token(
            self.tenant, self.credentials, timeout=self.deadline
        )
        run.advance(ReconcilePhase.TOKEN_ACQUIRED)
        return token

    @asynccontextmanager
    async def _locked(self, kind: ResourceKind, run: _Run) -> AsyncIterator[None]:
        if not kind.requires_lock:
            yield
            return

        acquired = False
        try:
            async with self.locks.hold(kind.lock_key(self.tenant)):
                acquired = True
                run.advance(ReconcilePhase.LOCK_ACQUIRED)
                try:
                    yield
                except BaseException as e:
                    run.fail(e)
                    raise
        finally:
            if acquired:
                run.advance(ReconcilePhase.LOCK_RELEASED)

    async def _call(
        self,
        kind: ResourceKind,
        func: Callable[..., Any],
        *args: Any,
        token: TenantToken,
        **kwargs: Any,
    ) -> Any:
        """Invoke a gateway method in a worker thread with retries."""
        try:
            return await run_sync_retrying(
                func,
                *args,
                attempts=self.max_retries,
                backoff=self.backoff,
                token=token.bearer,
                headers=dict(kind.headers) or None,
                **kwargs,
            )
        except AuthenticationFailed:
            self.tokens.invalidate(self.tenant, self.credentials)
            raise

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _kind(self, kind: str | ResourceKind) -> ResourceKind:
        return kind if isinstance(kind, ResourceKind) else self.catalog.get(kind)

    def _new_identity(
        self,
        kind: ResourceKind,
        tree: AttributeTree,
        site: str | None,
        parent_id: str | None,
    ) -> ResourceIdentity:
        if kind.server_assigned_id:
            # Id is unknown until the create response arrives
            return ResourceIdentity(
                kind=kind.name,
                tenant=self.tenant,
                resource_id="",
                site=site,
                parent_id=parent_id,
            )
        node = tree.get((kind.id_field,)).node
        value = getattr(node, "value", None)
        if not isinstance(value, str):
            raise SchemaMismatch(kind.id_field, "required field is missing")
        return kind.identity(self.tenant, value, site=site, parent_id=parent_id)

    def _compute_patch(
        self,
        kind: ResourceKind,
        prior: AttributeTree | None,
        desired: AttributeTree,
        run: _Run,
    ) -> PatchDocument:
        patch = DiffEngine(kind.schema).diff(prior, desired)
        run.patch_paths = patch.paths()
        run.advance(ReconcilePhase.PATCH_COMPUTED)
        return patch

    @staticmethod
    def _check_immutable(kind: ResourceKind, patch: PatchDocument) -> None:
        for path, _ in patch:
            if path[0] in kind.immutable_fields:
                raise SchemaMismatch(
                    format_path(path),
                    "cannot be changed after creation; replace the resource",
                )

    async def _read_remote(
        self,
        kind: ResourceKind,
        identity: ResourceIdentity,
        token: TenantToken,
    ) -> tuple[AttributeTree, int | None]:
        body, version = await self._call(
            kind, self.gateway.read, kind.item_url(identity), token=token
        )
        if not isinstance(body, Mapping):
            raise ApiError(f"GET {kind.item_url(identity)} returned no resource")
        return AttributeTree.from_api(kind.from_wire(body), kind.schema), version

    def _response_tree(
        self, kind: ResourceKind, body: Any
    ) -> AttributeTree | None:
        if kind.create_as_list and isinstance(body, list):
            body = body[0] if body else None
        if not isinstance(body, Mapping):
            return None
        return AttributeTree.from_api(kind.from_wire(body), kind.schema)

    async def _post(
        self,
        kind: ResourceKind,
        identity: ResourceIdentity,
        tree: AttributeTree,
        token: TenantToken,
        run: _Run,
    ) -> _Outcome:
        patch = self._compute_patch(kind, None, tree, run)
        request: Any = self._wire_body(kind, tree.to_api())
        if kind.create_as_list:
            request = [request]

        run.dispatch()
        body, version = await self._call(
            kind,
            self.gateway.create,
            kind.collection_url(identity),
            request,
            token=token,
        )

        response = self._response_tree(kind, body)
        if kind.server_assigned_id:
            identity = self._assigned_identity(kind, identity, response)

        if response is None or (kind.versioned and version is None):
            # Read-after-write when the create response carries no resource
            response, version = await self._read_remote(kind, identity, token)

        state = ResourceState(identity, applied_tree(tree, response), version)
        run.identity = identity
        state = await self._sync_mixins(kind, state, None, tree, token, run)
        run.version = state.version
        run.advance(ReconcilePhase.APPLIED)
        return state, patch

    @staticmethod
    def _assigned_identity(
        kind: ResourceKind,
        identity: ResourceIdentity,
        response: AttributeTree | None,
    ) -> ResourceIdentity:
        node = response.get((kind.id_field,)).node if response else None
        value = getattr(node, "value", None)
        if not isinstance(value, str) or not value:
            raise ApiError(
                f"create response for {kind.name} carries no "
                f"'{kind.schema.wire_name(kind.id_field)}'"
            )
        return kind.identity(
            identity.tenant,
            value,
            site=identity.site,
            parent_id=identity.parent_id,
        )

    async def _adopt(
        self,
        kind: ResourceKind,
        identity: ResourceIdentity,
        tree: AttributeTree,
        token: TenantToken,
        run: _Run,
    ) -> _Outcome:
        remote, version = await self._read_remote(kind, identity, token)
        prior = observed_tree(tree, remote)
        state = ResourceState(identity, prior, version)

        patch = self._compute_patch(kind, prior, tree, run)
        new_state = state
        if self._changes_main(kind, patch):
            new_state = await self._send_update(
                kind, state, tree, self._wire_body(kind, patch.to_body()), token, run
            )
        new_state = await self._sync_mixins(kind, new_state, prior, tree, token, run)
        run.version = new_state.version
        run.advance(ReconcilePhase.APPLIED)
        return new_state, patch

    async def _send_update(
        self,
        kind: ResourceKind,
        state: ResourceState,
        desired: AttributeTree,
        request: dict[str, Any],
        token: TenantToken,
        run: _Run,
    ) -> ResourceState:
        url = kind.item_url(state.identity)
        run.dispatch()
        body, version = await self._call(
            kind,
            self.gateway.patch,
            url,
            request,
            state.version if kind.versioned else None,
            token=token,
            method=kind.update_method,
            version_field=kind.version_field,
        )

        response = self._response_tree(kind, body)
        if kind.versioned and version is None:
            response, version = await self._read_remote(
                kind, state.identity, token
            )

        return state.advance(applied_tree(desired, response), version)

    # ------------------------------------------------------------------
    # Mixins
    # ------------------------------------------------------------------

    @staticmethod
    def _mixin_fields(kind: ResourceKind) -> tuple[str, ...]:
        return kind.mixin_step.fields if kind.mixin_step is not None else ()

    def _changes_main(self, kind: ResourceKind, patch: PatchDocument) -> bool:
        """True when *patch* touches a field sent by the main request."""
        mixin_fields = self._mixin_fields(kind)
        return any(path[0] not in mixin_fields for path, _ in patch)

    def _wire_body(
        self, kind: ResourceKind, body: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Main request body: mixin fields removed, wire hook applied."""
        wire_names = {
            kind.schema.wire_name(name) for name in self._mixin_fields(kind)
        }
        main = {k: v for k, v in body.items() if k not in wire_names}
        return dict(kind.to_wire(main))

    async def _sync_mixins(
        self,
        kind: ResourceKind,
        state: ResourceState,
        prior: AttributeTree | None,
        desired: AttributeTree,
        token: TenantToken,
        run: _Run,
    ) -> ResourceState:
        """Delete removed mixins, then PATCH the remaining ones.

        Returns *state* with the mixin fields taken from *desired*.
        """
        step = kind.mixin_step
        if step is None:
            return state
        before = prior.to_config() if prior is not None else {}
        after = desired.to_config()
        if all(before.get(name) == after.get(name) for name in step.fields):
            return state

        run.dispatch()
        removed = sorted(
            set(before.get(step.entries_field) or {})
            - set(after.get(step.entries_field) or {})
        )
        for name in removed:
            logger.debug("Deleting mixin %s of %s", name, state.identity)
            await self._call(
                kind,
                self.gateway.delete,
                step.entry_url(state.identity, name),
                token=token,
            )

        api = desired.to_api()
        body = {
            wire: api[wire]
            for wire in (kind.schema.wire_name(name) for name in step.fields)
            if api.get(wire)
        }
        if body:
            await self._call(
                kind,
                self.gateway.patch,
                kind.item_url(state.identity),
                dict(kind.to_wire(body)),
                None,
                token=token,
                method="PATCH",
            )

        root = ObjectNode(
            tuple(
                (name, desired.get((name,)) if name in step.fields else presence)
                for name, presence in state.tree.root.fields
            )
        )
        return replace(state, tree=AttributeTree(kind.schema, root))
