"""Configuration loading utilities with JSON and YAML support."""

from __future__ import annotations

from collections.abc import Mapping
import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from spriteforge.core.config.models import AppConfig, ArtServiceConfig

logger = logging.getLogger(__name__)

_SETTING_ENV_VARS = {
    "ART_PROVIDER": "provider",
    "ART_CACHE_DIR": "cache_dir",
    "ART_CACHE_TTL_DAYS": "cache_ttl_days",
    "MAX_CONCURRENT_GENERATIONS": "max_concurrent_generations",
    "GENERATION_TIMEOUT_MS": "generation_timeout_ms",
}

# Credential env vars, applied only where the config file leaves the key unset.
_CREDENTIAL_ENV_VARS = {
    "replicate": "REPLICATE_API_TOKEN",
    "dalle": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
}


def detect_format(file_path: Path | str) -> str:
    """Detect config file format from extension.

    Args:
        file_path: Path to config file

    Returns:
        Format string: "json" or "yaml"

    Raises:
        ValueError: If format cannot be determined

    Example:
        >>> detect_format("spriteforge.json")
        'json'
        >>> detect_format("spriteforge.yml")
        'yaml'
    """
    suffix = Path(file_path).suffix.lower()

    if suffix == ".json":
        return "json"
    elif suffix in [".yaml", ".yml"]:
        return "yaml"
    else:
        raise ValueError(f"Unsupported config format: {suffix}")


def load_config(path: str | Path) -> dict[str, Any]:
    """Load and return a raw configuration dictionary.

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

    if fmt == "json":
        try:
            with path.open("r", encoding="utf-8") as f:
                content = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e
    else:
        try:
            with path.open("r", encoding="utf-8") as f:
                content = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
        # safe_load returns None for empty files
        if content is None:
            content = {}

    if not isinstance(content, dict):
        raise ValueError(f"Config root in {path} must be a mapping, got {type(content).__name__}")
    return content


def load_app_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load and validate application configuration.

    The file is optional: without one, defaults apply. Environment variables
    override service settings and fill in missing credentials.

    Args:
        path: Path to app config file. Defaults to spriteforge.yaml if present.
        environ: Environment mapping (os.environ if None).

    Returns:
        Validated AppConfig instance

    Raises:
        FileNotFoundError: If an explicit path does not exist
        ValidationError: If config or environment values are invalid
    """
    if path is None:
        default = AppConfig.default_path()
        raw_config = load_config(default) if default.exists() else {}
    else:
        raw_config = load_config(path)

    config = AppConfig.model_validate(raw_config)
    config.art = _apply_env_overrides(config.art, os.environ if environ is None else environ)
    return config


def _apply_env_overrides(art: ArtServiceConfig, environ: Mapping[str, str]) -> ArtServiceConfig:
    """Return a copy of the art config with environment overrides applied."""
    updates: dict[str, Any] = {}

    for env_var, field_name in _SETTING_ENV_VARS.items():
        if value := environ.get(env_var):
            updates[field_name] = value.lower() if field_name == "provider" else value

    for provider_field, env_var in _CREDENTIAL_ENV_VARS.items():
        provider_config = getattr(art, provider_field)
        if provider_config.api_key is None and (key := environ.get(env_var)):
            logger.debug("Loaded %s from environment", env_var)
            updates[provider_field] = provider_config.model_copy(update={"api_key": key})

    if not updates:
        return art
    # Round-trip through validation so env values get the same checks as file values.
    merged = art.model_dump() | updates
    return ArtServiceConfig.model_validate(merged)
