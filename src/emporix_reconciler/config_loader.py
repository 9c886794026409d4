"""
Settings files for emporix_reconciler.

A global file under ``~/.config`` usually carries the shared OAuth2 client;
a project file under ``.emporix_reconciler/`` picks the tenant and tuning.
Files are merged section by section, ``${VAR}`` references are filled from
the environment, and the result is validated as ``UnifiedConfig``.

Usage:
    from emporix_reconciler.config_loader import load_settings

    settings, source = load_settings()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config_schema import UnifiedConfig, build_config

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".emporix_reconciler"
CONFIG_PATH_ENV = "EMPORIX_RECONCILER_CONFIG"

# ${NAME} or ${NAME:-fallback}
_REFERENCE = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Fill ``${NAME}`` references in *value* from the environment.

    ``${NAME:-fallback}`` gives *fallback* when NAME is unset or empty; a
    bare ``${NAME}`` gives an empty string.  Keep the client secret in the
    environment and write ``client_secret: ${EMPORIX_CLIENT_SECRET}``.
    """
    return _REFERENCE.sub(
        lambda m: os.environ.get(m.group(1)) or m.group(2) or "", value
    )


def _interpolate_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return interpolate_env_vars(data)
    if isinstance(data, dict):
        return {key: _interpolate_recursive(item) for key, item in data.items()}
    if isinstance(data, list):
        return [_interpolate_recursive(item) for item in data]
    return data


# ---------------------------------------------------------------------------
# YAML with !include
# ---------------------------------------------------------------------------


class IncludeLoader(yaml.SafeLoader):
    """SafeLoader accepting ``!include <path>``.

    Relative paths resolve against the including file.  The tag exists on
    this subclass only; ``yaml.safe_load`` stays unchanged.
    """

    include_chain: tuple[Path, ...] = ()


def _construct_include(loader: IncludeLoader, node: yaml.ScalarNode) -> Any:
    target = Path(loader.construct_scalar(node)).expanduser()
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    if target in loader.include_chain:
        cycle = " -> ".join(str(p) for p in (*loader.include_chain, target))
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.is_file():
        raise FileNotFoundError(
            f"Include file not found: {target} (referenced from {loader.name})"
        )
    return _read_yaml(target, loader.include_chain)


IncludeLoader.add_constructor("!include", _construct_include)


def _read_yaml(path: Path, chain: tuple[Path, ...] = ()) -> Any:
    path = path.resolve()
    with open(path, encoding="utf-8") as fh:
        loader = IncludeLoader(fh)
        loader.include_chain = (*chain, path)
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery and merge
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Existing settings files, highest precedence first.

    1. The file named by ``EMPORIX_RECONCILER_CONFIG``
    2. ``.emporix_reconciler/config.yml`` (or ``config.yaml``) in the
       working directory
    3. ``~/.config/emporix_reconciler/config.yml``
    """
    explicit = os.environ.get(CONFIG_PATH_ENV)
    project = Path.cwd() / CONFIG_DIR_NAME
    candidates = [
        *([Path(explicit).expanduser().resolve()] if explicit else []),
        project / "config.yml",
        project / "config.yaml",
        Path.home() / ".config" / "emporix_reconciler" / "config.yml",
    ]
    return [path for path in candidates if path.is_file()]


def _merge_sections(
    base: dict[str, Any], override: dict[str, Any]
) -> dict[str, Any]:
    merged = dict(base)
    for section, values in override.items():
        current = merged.get(section)
        if isinstance(current, dict) and isinstance(values, dict):
            merged[section] = {**current, **values}
        else:
            merged[section] = values
    return merged


def load_hierarchical_config(paths: list[Path] | None = None) -> dict[str, Any]:
    """Merge the raw contents of *paths* (default: the discovered files).

    Lower-precedence files load first.  A later file overrides single keys
    of a section and keeps the section's other keys, so a project file can
    name the tenant while the global file supplies the client.  ``${VAR}``
    references are filled in after merging.  No files gives ``{}``.
    """
    if paths is None:
        paths = discover_config_files()

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        data = _read_yaml(path)
        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring %s: top level is a %s, not a mapping",
                path,
                type(data).__name__,
            )
            continue
        merged = _merge_sections(merged, data)

    return _interpolate_recursive(merged)


def load_settings() -> tuple[UnifiedConfig, Path | None]:
    """Discover, merge and validate the settings files.

    Returns:
        The validated settings and the highest-precedence file, or
        defaults and ``None`` when there are no files.

    Raises:
        ValueError: A section holds a value of the wrong type or out of
            range; the message lists the files read.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return UnifiedConfig(), None

    raw = load_hierarchical_config(paths)
    try:
        settings = build_config(raw)
    except ValidationError as e:
        files = ", ".join(str(p) for p in paths)
        raise ValueError(f"invalid settings in {files}: {e}") from None
    return settings, paths[0]
