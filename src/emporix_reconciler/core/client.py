import json
import logging
import threading
from typing import Any

import requests
from urllib3.exceptions import MaxRetryError, NewConnectionError

from ..config import Config
from ..errors import ApiError, Transient, translate_http_error

logger = logging.getLogger(__name__)


def _never_sent(exc: requests.exceptions.ConnectionError) -> bool:
    """True when the connection failed before any byte of the request left."""
    if isinstance(exc, requests.exceptions.ConnectTimeout):
        return True
    reason = exc.args[0] if exc.args else None
    if isinstance(reason, MaxRetryError):
        reason = reason.reason
    return isinstance(reason, NewConnectionError)


def extract_version(body: Any) -> int | None:
    """Read the optimistic-locking version from a response body.

    Looks at ``metadata.version`` first and falls back to a top-level
    ``version`` (tenant configurations).
    """
    if not isinstance(body, dict):
        return None
    metadata = body.get("metadata")
    if isinstance(metadata, dict):
        version = metadata.get("version")
        if isinstance(version, int) and not isinstance(version, bool):
            return version
    version = body.get("version")
    if isinstance(version, int) and not isinstance(version, bool):
        return version
    return None


def inject_version(
    body: dict[str, Any],
    version: int | None,
    field: str = "metadata.version",
) -> dict[str, Any]:
    """Return *body* with the version written at *field* (unchanged if None).

    *field* is a dotted path: ``metadata.version`` for most kinds, a plain
    ``version`` for tenant configurations.
    """
    if version is None:
        return body
    head, _, rest = field.partition(".")
    if not rest:
        return {**body, head: version}
    nested = body.get(head)
    return {
        **body,
        head: inject_version(
            dict(nested) if isinstance(nested, dict) else {}, version, rest
        ),
    }


class EmporixClient:
    """Blocking REST gateway for one Emporix API base URL.

    Implements the ``ApiGateway`` protocol.  Each worker thread gets its own
    ``requests.Session``; the bearer token is passed per call so a single
    client serves every token refresh.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = config.api_url.rstrip("/")

    @property
    def session(self) -> requests.Session:
        """Current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = not self.config.insecure
        session.headers.update(
            {"Content-Type": "application/json", "Accept": "*/*"}
        )
        return session

    def _request(
        self,
        method: str,
        path: str,
        *,
        token: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        """
        Send one request and translate failures into ``ReconcileError``.

        Network failures become ``Transient`` when the request is known not
        to have been sent, or when it is a read.  A mutation whose outcome
        is unknown raises ``ApiError`` so it is never retried blindly.
        """
        url = f"{self.base_url}{path}"
        request_headers = {"Authorization": f"Bearer {token}"}
        request_headers.update(headers or {})

        logger.debug("API request %s %s", method, url)
        if body is not None and logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Request body (JSON):\n%s",
                json.dumps(body, indent=2, default=str),
            )

        is_read = method == "GET"
        try:
            response = self._get_session().request(
                method,
                url,
                json=body,
                headers=request_headers,
                timeout=(10, self.config.request_timeout),
            )
        except requests.exceptions.ConnectionError as e:
            if is_read or _never_sent(e):
                raise Transient(f"{method} {path}: connection failed: {e}") from e
            raise ApiError(
                f"{method} {path}: connection lost, outcome unknown: {e}"
            ) from e
        except requests.exceptions.Timeout as e:
            if is_read:
                raise Transient(f"{method} {path}: timed out: {e}") from e
            raise ApiError(f"{method} {path}: timed out, outcome unknown: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ApiError(f"{method} {path}: request failed: {e}") from e

        logger.debug(
            "API response %s %s -> %d", method, url, response.status_code
        )
        if not 200 <= response.status_code < 300:
            raise translate_http_error(
                response.status_code, response.text, method, path
            )
        return response

    @staticmethod
    def _json_body(response: requests.Response) -> Any:
        """Decode a response body; empty and 204 responses yield None."""
        if response.status_code == 204 or not response.content.strip():
            return None
        try:
            body = response.json()
        except ValueError:
            # Callers fall back to reading the resource
            logger.debug("Response body is not JSON, ignoring it")
            return None
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Response body (JSON):\n%s", json.dumps(body, indent=2)
            )
        return body

    def create(
        self,
        path: str,
        body: Any,
        *,
        token: str,
        headers: dict[str, str] | None = None,
    ) -> tuple[Any, int | None]:
        """
        Create a resource.

        Returns:
            (response body or None, version or None)

        Raises:
            Conflict: If the resource already exists.
            AuthenticationFailed: If the token was rejected.
        """
        response = self._request(
            "POST", path, token=token, body=body, headers=headers
        )
        result = self._json_body(response)
        if isinstance(result, list) and len(result) == 1:
            # List create endpoints answer with the created items
            return result, extract_version(result[0])
        return result, extract_version(result)

    def read(
        self,
        path: str,
        *,
        token: str,
        headers: dict[str, str] | None = None,
    ) -> tuple[Any, int | None]:
        """
        Read a resource.

        Raises:
            NotFound: If the resource does not exist.
        """
        response = self._request("GET", path, token=token, headers=headers)
        result = self._json_body(response)
        return result, extract_version(result)

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
    ) -> tuple[Any, int | None]:
        """
        Send a partial (PATCH) or full (PUT) update.

        Args:
            path: Item path of the resource
            body: Update document
            version: Version last observed, written at *version_field*
            method: ``PATCH`` or ``PUT``
            version_field: Dotted location of the version in the body

        Raises:
            Conflict: If the version is stale or a concurrent mutation won.
        """
        response = self._request(
            method,
            path,
            token=token,
            body=inject_version(body, version, version_field),
            headers=headers,
        )
        result = self._json_body(response)
        return result, extract_version(result)

    def delete(
        self,
        path: str,
        *,
        token: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        """
        Delete a resource.

        Raises:
            NotFound: If the resource is already gone.
        """
        self._request("DELETE", path, token=token, headers=headers)
