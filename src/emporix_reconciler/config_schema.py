"""Settings file schema for emporix_reconciler.

Pydantic models for the three sections of a settings file: ``emporix``
(connection), ``reconcile`` (deadlines and retries) and ``logging``.
``yaml_fallbacks()`` flattens the first two into the fallback values
``load_config()`` consults after explicit arguments and env vars.

Usage:
    from emporix_reconciler.config_schema import build_config, yaml_fallbacks

    settings = build_config(load_hierarchical_config())
    config = load_config(yaml_fallbacks=yaml_fallbacks(settings))
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class EmporixConfig(BaseModel):
    """Emporix API connection settings.

    All fields are optional to support zero-config: env vars and explicit
    arguments can supply them at runtime instead.
    """

    api_url: str | None = Field(default=None, description="API base URL")
    tenant: str | None = Field(default=None, description="Tenant name")
    client_id: str | None = Field(
        default=None, description="OAuth2 client id"
    )
    client_secret: str | None = Field(
        default=None, description="OAuth2 client secret"
    )
    access_token: str | None = Field(
        default=None, description="Pre-issued access token"
    )
    scope: str | None = Field(
        default=None, description="Space-separated OAuth2 scopes"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent API requests (1-100)",
    )

    model_config = {"frozen": True}


class ReconcileConfig(BaseModel):
    """Reconciliation tuning.

    Attributes:
        request_timeout: Deadline in seconds for one reconciliation.
        token_refresh_margin: Seconds before expiry a token is refreshed.
        max_retries: Attempts for transient network failures.
    """

    request_timeout: float = Field(default=30.0, gt=0, le=3600)
    token_refresh_margin: float = Field(default=30.0, ge=0)
    max_retries: int = Field(default=3, ge=1, le=10)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL);
            unset means the default of the logging mode.
        file: Optional log file path.
    """

    level: str | None = Field(default=None, description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    emporix: EmporixConfig = Field(default_factory=EmporixConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Validate the raw dict returned by ``load_hierarchical_config()``.

    Missing or empty sections get defaults; unknown sections are logged
    and ignored.

    Raises:
        pydantic.ValidationError: If a value has the wrong type or is out
            of range.
    """
    sections = {k: v for k, v in (raw_data or {}).items() if v is not None}
    unknown = sorted(set(sections) - set(UnifiedConfig.model_fields))
    if unknown:
        logger.warning("Ignoring unknown config sections: %s", ", ".join(unknown))
    return UnifiedConfig(**sections)


def yaml_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten the file config into the ``yaml_fallbacks`` dict that
    ``load_config()`` consults after explicit args and env vars."""
    values = unified.emporix.model_dump(exclude_none=True)
    values.update(unified.reconcile.model_dump())
    return values

