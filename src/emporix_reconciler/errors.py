"""Error taxonomy for reconciliation.

Every failure a reconciliation can surface is a ``ReconcileError`` carrying an
``error_type`` category and a ``corrective_action`` telling the caller what to
do next, so an orchestrator can report it without knowing the subclass.

Only ``Transient`` is ever retried, and only before a mutating request is
known to have reached the server.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .reconcile.models import ReconcileReport, ResourceIdentity


class ReconcileError(Exception):
    """Base class for all reconciliation failures.

    Attributes:
        error_type: Category name (``schema_mismatch``, ``conflict``, ...).
        corrective_action: What the caller should do to recover.
        identity: Resource the failure belongs to, when known.
        report: Phases the failed reconciliation went through, when the
            error was raised by the coordinator.
    """

    error_type = "server_error"
    corrective_action = "Retry later or contact the tenant administrator."

    def __init__(
        self,
        message: str,
        *,
        identity: ResourceIdentity | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.identity = identity
        self.report: ReconcileReport | None = None

    def with_identity(self, identity: ResourceIdentity) -> ReconcileError:
        """Attach *identity* unless one is already set. Returns ``self``."""
        if self.identity is None:
            self.identity = identity
        return self

    def __str__(self) -> str:
        if self.identity is not None:
            return f"{self.message} [{self.identity}]"
        return self.message

    def describe(self) -> str:
        """Format the error with its category and corrective action."""
        return (
            f"Error ({self.error_type}): {self}\n\n"
            f"Action: {self.corrective_action}"
        )


class SchemaMismatch(ReconcileError):
    """Desired configuration does not match the declared schema."""

    error_type = "schema_mismatch"
    corrective_action = "Fix the configuration value at the reported path."

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class AuthenticationFailed(ReconcileError):
    error_type = "authentication_failed"
    corrective_action = (
        "Check EMPORIX_CLIENT_ID / EMPORIX_CLIENT_SECRET or the "
        "pre-issued access token and its scopes."
    )


class Conflict(ReconcileError):
    """Version mismatch or concurrent mutation rejected by the server."""

    error_type = "version_conflict"
    corrective_action = (
        "Re-read the resource to refresh its state and version, "
        "then apply the change again."
    )


class NotFound(ReconcileError):
    error_type = "not_found"
    corrective_action = (
        "Verify the resource exists; treat it as already deleted "
        "if this happened during destroy."
    )


class Cancelled(ReconcileError):
    """The caller's deadline expired before the operation completed."""

    error_type = "cancelled"
    corrective_action = (
        "Increase EMPORIX_REQUEST_TIMEOUT or retry; no state was changed."
    )


class Transient(ReconcileError):
    """Network failure before the request was confirmed sent."""

    error_type = "transient"
    corrective_action = "Retry later; the request never reached the server."


class ApiError(ReconcileError):
    """Any other non-retryable gateway failure."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        identity: ResourceIdentity | None = None,
    ) -> None:
        super().__init__(message, identity=identity)
        self.status = status


class InvalidImportId(ReconcileError):
    error_type = "validation_error"
    corrective_action = "Use the import ID format documented for the resource kind."


# ---------------------------------------------------------------------------
# HTTP status translation
# ---------------------------------------------------------------------------


def translate_http_error(
    status: int,
    body: Any,
    method: str,
    path: str,
) -> ReconcileError:
    """Translate an unexpected HTTP status into a ``ReconcileError``.

    Args:
        status: HTTP status code of the response.
        body: Response text (truncated for the message).
        method: HTTP method of the failed request.
        path: Request path, for context.

    Returns:
        The matching ``ReconcileError`` subclass instance.
    """
    detail = str(body or "")[:500]
    message = f"{method} {path} failed with status {status}: {detail}"

    match status:
        case 401 | 403:
            return AuthenticationFailed(message)
        case 404:
            return NotFound(message)
        case 409 | 412:
            return Conflict(message)
        case _:
            return ApiError(message, status=status)
