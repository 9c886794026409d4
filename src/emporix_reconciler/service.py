"""Startup wiring for embedding the reconciler in an orchestrator."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from .catalog import ResourceCatalog, default_catalog
from .config import Config, load_config
from .config_loader import load_settings
from .config_schema import UnifiedConfig, yaml_fallbacks
from .core.async_utils import init_semaphore
from .core.client import EmporixClient
from .core.oauth import OAuthTokenClient
from .logger import setup_logging
from .reconcile.coordinator import ReconciliationCoordinator
from .reconcile.locks import TenantMutexRegistry
from .reconcile.models import ApiGateway
from .reconcile.tokens import TokenCache

logger = logging.getLogger(__name__)

# Keys of ``config_overrides`` handed to ``load_config()``
_OVERRIDE_KEYS = (
    "tenant",
    "client_id",
    "client_secret",
    "access_token",
    "api_url",
    "scope",
    "max_parallel_requests",
    "request_timeout",
)


def _resolve(
    config_overrides: dict[str, Any] | None,
) -> tuple[Config, UnifiedConfig]:
    try:
        # .env first so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        settings, source = load_settings()
        sources = [f"config file: {source}"] if source else []

        overrides = config_overrides or {}
        config = load_config(
            **{key: overrides.get(key) for key in _OVERRIDE_KEYS},
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=yaml_fallbacks(settings) if source else None,
        )
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise RuntimeError(
            f"Configuration error: {e}. Ensure EMPORIX_TENANT and either "
            "EMPORIX_ACCESS_TOKEN or EMPORIX_CLIENT_ID/EMPORIX_CLIENT_SECRET "
            "are set."
        ) from e

    if overrides:
        sources.append("explicit arguments")
    sources.append("environment variables")
    logger.info("Configuration loaded from: %s", ", ".join(sources))
    logger.info("Emporix API: %s (tenant %s)", config.api_url, config.tenant)
    return config, settings


def resolve_config(config_overrides: dict[str, Any] | None = None) -> Config:
    """Merge every configuration source into a validated ``Config``.

    Precedence: overrides > env vars (.env loaded first) > YAML > defaults.
    Recognised override keys: tenant, client_id, client_secret,
    access_token, api_url, scope, max_parallel_requests, request_timeout,
    insecure and debug.

    Raises:
        RuntimeError: If the configuration is incomplete or invalid.
    """
    config, _ = _resolve(config_overrides)
    return config

def build_coordinator(
    config: Config,
    *,
    gateway: ApiGateway | None = None,
    tokens: TokenCache | None = None,
    locks: TenantMutexRegistry | None = None,
    catalog: ResourceCatalog | None = None,
) -> ReconciliationCoordinator:
    """Assemble a coordinator for *config*.

    Token cache and lock registry are process-wide: pass the same instances
    to every coordinator that shares an event loop.
    """
    if tokens is None:
        tokens = TokenCache(
            OAuthTokenClient(config).request_token,
            refresh_margin=config.token_refresh_margin,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
        )
    return ReconciliationCoordinator(
        gateway if gateway is not None else EmporixClient(config),
        tokens,
        locks if locks is not None else TenantMutexRegistry(),
        catalog if catalog is not None else default_catalog(),
        config.tenant,
        config.credentials(),
        deadline=config.request_timeout,
        max_retries=config.max_retries,
    )


@asynccontextmanager
async def reconciler_session(
    config_overrides: dict[str, Any] | None = None,
    *,
    log_mode: str = "plugin",
) -> AsyncIterator[ReconciliationCoordinator]:
    """
    Load configuration and yield a ready coordinator.

    On startup:
    - Resolve configuration from all sources
    - Configure logging from the ``logging`` settings section
    - Bound parallel API requests with the shared semaphore
    - Build the HTTP gateway, token cache and lock registry

    Args:
        config_overrides: Optional explicit values (see ``resolve_config``)
            plus ``log_file``, which beats the settings file.
        log_mode: ``"plugin"`` logs to a file only, ``"cli"`` to stderr.

    Raises:
        RuntimeError: If configuration is invalid.
    """
    overrides = config_overrides or {}
    config, settings = _resolve(overrides)
    setup_logging(
        mode=log_mode,
        debug=config.debug,
        log_file=overrides.get("log_file") or settings.logging.file,
        level=settings.logging.level,
    )
    init_semaphore(config.max_parallel_requests)
    coordinator = build_coordinator(config)
    logger.info("Reconciler ready for tenant %s", config.tenant)

    yield coordinator

    logger.info("Reconciler session for tenant %s closed", config.tenant)
