"""Configuration loading utilities with JSON, YAML and environment support."""

from __future__ import annotations

from collections.abc import Mapping
import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from charforge.core.config.models import ClientConfig

logger = logging.getLogger(__name__)

ENV_API_KEY = "CHARFORGE_API_KEY"
ENV_BASE_URL = "CHARFORGE_BASE_URL"
ENV_CACHE_DIR = "CHARFORGE_CACHE_DIR"
ENV_CACHE = "CHARFORGE_CACHE"

_FALSEY = {"0", "false", "no", "off"}


def detect_format(file_path: Path | str) -> str:
    """Detect config file format from extension.

    Raises:
        ValueError: If format cannot be determined

    Example:
        >>> detect_format("charforge.yml")
        'yaml'
    """
    suffix = Path(file_path).suffix.lower()
    if suffix == ".json":
        return "json"
    if suffix in (".yaml", ".yml"):
        return "yaml"
    raise ValueError(f"Unsupported config format: {suffix}")


def load_config(path: str | Path) -> dict[str, Any]:
    """Load and return raw configuration dictionary.

    Args:
        path: Path to config file (.json, .yaml, or .yml)

    Returns:
        Raw configuration dictionary

    Raises:
        FileNotFoundError: If config file does not exist
        ValueError: If format is not supported or file content is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file does not exist: {path}")

    fmt = detect_format(path)
    text = path.read_text(encoding="utf-8")

    if fmt == "json":
        try:
            content = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e
    else:
        try:
            content = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e

    # safe_load returns None for empty files
    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ValueError(f"Config root must be a mapping: {path}")
    return content


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    updates: dict[str, Any] = {}

    if api_key := environ.get(ENV_API_KEY):
        logger.debug("Loaded %s from environment", ENV_API_KEY)
        updates["api_key"] = api_key
    if base_url := environ.get(ENV_BASE_URL):
        updates["base_url"] = base_url
    if cache_flag := environ.get(ENV_CACHE):
        updates["cache_enabled"] = cache_flag.strip().lower() not in _FALSEY
    if cache_dir := environ.get(ENV_CACHE_DIR):
        updates["cache"] = {"directory": cache_dir}

    return updates


def _merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; ``updates`` wins."""
    out = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_client_config(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> ClientConfig:
    """Load and validate client configuration.

    Precedence (lowest to highest): model defaults, config file, environment
    (``CHARFORGE_*``), keyword overrides.

    Args:
        path: Optional config file (.json, .yaml, or .yml)
        environ: Environment mapping (defaults to ``os.environ``)
        **overrides: Top-level ClientConfig fields

    Returns:
        Validated ClientConfig

    Raises:
        FileNotFoundError: If ``path`` is given but missing
        ValidationError: If the merged config is invalid

    Example:
        >>> config = load_client_config("charforge.yaml", cache_enabled=False)
    """
    raw: dict[str, Any] = load_config(path) if path is not None else {}
    raw = _merge(raw, _env_overrides(os.environ if environ is None else environ))
    raw = _merge(raw, {k: v for k, v in overrides.items() if v is not None})
    return ClientConfig.model_validate(raw)
