"""Connection configuration for the reconciliation core.

Reads tenant, credentials and API settings from explicit arguments,
environment variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    Explicit args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    EMPORIX_TENANT: Tenant name (required)
    EMPORIX_ACCESS_TOKEN: Pre-issued access token (optional)
    EMPORIX_CLIENT_ID: OAuth2 client id (required without access token)
    EMPORIX_CLIENT_SECRET: OAuth2 client secret (required without access token)
    EMPORIX_SCOPE: Space-separated OAuth2 scopes (optional)
    EMPORIX_API_URL: API base URL (optional, default: https://api.emporix.io)
    EMPORIX_INSECURE: Skip SSL verification (optional, default: false)
    EMPORIX_MAX_PARALLEL_REQUESTS: Max parallel API requests (optional, default: 5)
    EMPORIX_REQUEST_TIMEOUT: Per-reconciliation deadline in seconds (optional, default: 30)
"""

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from pydantic import SecretStr

if TYPE_CHECKING:
    from .reconcile.models import TenantCredentials

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.emporix.io"


@dataclass
class Config:
    tenant: str
    api_url: str = DEFAULT_API_URL
    client_id: str | None = None
    client_secret: str | None = None
    access_token: str | None = None
    scope: str | None = None
    insecure: bool = False
    debug: bool = False
    max_parallel_requests: int = 5
    request_timeout: float = 30.0
    token_refresh_margin: float = 30.0
    max_retries: int = 3

    def credentials(self) -> "TenantCredentials":
        """Credentials for the token cache (secrets wrapped in ``SecretStr``)."""
        from .reconcile.models import TenantCredentials

        return TenantCredentials(
            client_id=self.client_id,
            client_secret=(
                SecretStr(self.client_secret) if self.client_secret else None
            ),
            scope=self.scope or None,
            access_token=(
                SecretStr(self.access_token) if self.access_token else None
            ),
        )

    def __repr__(self) -> str:
        return (
            f"Config(tenant={self.tenant!r}, api_url={self.api_url!r}, "
            f"client_id={self.client_id!r}, scope={self.scope!r})"
        )


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate (normalised in place).

    Raises:
        ValueError: If the URL is invalid, the tenant is empty, or neither an
            access token nor a client id/secret pair is configured.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid API URL '{config.api_url}': URL must include a hostname"
        )

    config.api_url = config.api_url.removesuffix("/")

    if not config.tenant.strip():
        raise ValueError(
            "Tenant cannot be empty. Set EMPORIX_TENANT environment variable."
        )
    config.tenant = config.tenant.strip().lower()

    if not 1 <= config.max_parallel_requests <= 100:
        raise ValueError(
            f"Invalid max_parallel_requests {config.max_parallel_requests}: "
            "must be between 1 and 100"
        )
    if not 0 < config.request_timeout <= 3600:
        raise ValueError(
            f"Invalid request_timeout {config.request_timeout}: "
            "must be above 0 and at most 3600 seconds"
        )

    if not config.access_token:
        if not config.client_id:
            raise ValueError(
                "Either access_token or client_id must be provided. "
                "Set EMPORIX_ACCESS_TOKEN or EMPORIX_CLIENT_ID."
            )
        if not config.client_secret:
            raise ValueError(
                "Either access_token or client_secret must be provided. "
                "Set EMPORIX_ACCESS_TOKEN or EMPORIX_CLIENT_SECRET."
            )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_number_env(
    key: str, low: float, high: float, cast: type = int
) -> float | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    tenant: str | None = None,
    client_id: str | None = None,
    client_secret: str | None = None,
    access_token: str | None = None,
    api_url: str | None = None,
    scope: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    max_parallel_requests: int | None = None,
    request_timeout: float | None = None,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        explicit arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        tenant: Override tenant name.
        client_id: Override OAuth2 client id.
        client_secret: Override OAuth2 client secret.
        access_token: Override pre-issued access token.
        api_url: Override API base URL.
        scope: Override the space-separated OAuth2 scopes.
        insecure: Skip SSL verification.
        debug: Enable debug logging.
        max_parallel_requests: Override the concurrent request limit.
        request_timeout: Override the per-reconciliation deadline.
        yaml_fallbacks: Dict of values from the YAML config ``emporix``
            section, used when neither argument nor env var is set.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required settings are missing after checking all
            sources, or a numeric env var is out of range.
    """
    fb = yaml_fallbacks or {}

    final_tenant = tenant or os.getenv("EMPORIX_TENANT") or fb.get("tenant")
    if not final_tenant:
        raise ValueError(
            "Tenant not found. Set EMPORIX_TENANT environment variable, "
            "pass tenant explicitly, or add 'tenant' to config.yml."
        )

    final_api_url = (
        api_url
        or os.getenv("EMPORIX_API_URL")
        or fb.get("api_url")
        or DEFAULT_API_URL
    )

    def pick(value: str | None, env: str, key: str) -> str | None:
        return value or os.getenv(env) or fb.get(key) or None

    final_insecure = insecure
    if not final_insecure:
        env_insecure = _get_bool_env("EMPORIX_INSECURE")
        final_insecure = (
            env_insecure
            if env_insecure is not None
            else bool(fb.get("insecure", False))
        )

    final_debug = debug
    if not final_debug:
        env_debug = _get_bool_env("EMPORIX_DEBUG")
        final_debug = (
            env_debug if env_debug is not None else bool(fb.get("debug", False))
        )

    max_parallel = max_parallel_requests
    if max_parallel is None:
        max_parallel = _get_number_env("EMPORIX_MAX_PARALLEL_REQUESTS", 1, 100)
    if max_parallel is None:
        max_parallel = int(fb.get("max_parallel_requests", 5))

    if request_timeout is None:
        request_timeout = _get_number_env(
            "EMPORIX_REQUEST_TIMEOUT", 1, 3600, cast=float
        )
    if request_timeout is None:
        request_timeout = float(fb.get("request_timeout", 30.0))

    config = Config(
        tenant=final_tenant,
        api_url=final_api_url,
        client_id=pick(client_id, "EMPORIX_CLIENT_ID", "client_id"),
        client_secret=pick(
            client_secret, "EMPORIX_CLIENT_SECRET", "client_secret"
        ),
        access_token=pick(access_token, "EMPORIX_ACCESS_TOKEN", "access_token"),
        scope=pick(scope, "EMPORIX_SCOPE", "scope"),
        insecure=final_insecure,
        debug=final_debug,
        max_parallel_requests=int(max_parallel),
        request_timeout=float(request_timeout),
        token_refresh_margin=float(fb.get("token_refresh_margin", 30.0)),
        max_retries=int(fb.get("max_retries", 3)),
    )

    validate_config(config)

    return config
