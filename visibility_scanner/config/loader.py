"""
Configuration loader for the visibility scanner.

Loads YAML scan configuration files, validates them with Pydantic models and
resolves API keys from environment variables into a RuntimeScanConfig.

Configuration schema (ScanConfig, safe to commit) is kept separate
from runtime configuration (RuntimeScanConfig, holds secrets in memory only).

Functions:
    load_config: Load, validate and resolve a scan config file
    load_scan_config: Load and validate without resolving API keys
    resolve_providers: Resolve provider env vars to API keys
"""

import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from visibility_scanner.exceptions import (
    APIKeyMissingError,
    ConfigFileNotFoundError,
    ConfigValidationError,
)

from .schema import RuntimeProvider, RuntimeScanConfig, ScanConfig


def load_scan_config(config_path: str | Path) -> ScanConfig:
    """
    Load and validate a scan config YAML file without touching the environment.

    Args:
        config_path: Path to the YAML file

    Returns:
        Validated ScanConfig

    Raises:
        ConfigFileNotFoundError: If the file does not exist
        ConfigValidationError: If YAML is invalid or validation fails
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    if raw_config is None:
        raise ConfigValidationError(f"Configuration file is empty: {config_path}")

    if not isinstance(raw_config, dict):
        raise ConfigValidationError(
            f"Configuration root must be a mapping in {config_path}"
        )

    try:
        return ScanConfig.model_validate(raw_config)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            error_messages.append(f"  - {loc}: {error['msg']}")

        raise ConfigValidationError(
            f"Configuration validation failed in {config_path}:\n"
            + "\n".join(error_messages)
        ) from e


def resolve_providers(config: ScanConfig) -> list[RuntimeProvider]:
    """
    Resolve each provider's env_api_key to the actual API key.

    Args:
        config: Validated ScanConfig

    Returns:
        RuntimeProvider list in configuration order

    Raises:
        APIKeyMissingError: If any required environment variable is unset or blank

    Security:
        - NEVER logs API keys (not even partial values)
        - API keys are only held in memory, never persisted
    """
    resolved: list[RuntimeProvider] = []

    for provider_config in config.providers:
        env_var_name = provider_config.env_api_key
        api_key = os.environ.get(env_var_name)

        if not api_key or api_key.isspace():
            raise APIKeyMissingError(
                f"Environment variable ${env_var_name} not set "
                f"(required for {provider_config.provider}/{provider_config.model_name}). "
                f"Please set it in your environment or .env file."
            )

        resolved.append(
            RuntimeProvider(
                name=provider_config.name,
                provider=provider_config.provider,
                model_name=provider_config.model_name,
                api_key=api_key,
                iterations=provider_config.iterations,
                credit_cost=provider_config.credit_cost,
            )
        )

    return resolved


def load_config(config_path: str | Path) -> RuntimeScanConfig:
    """
    Load a scan config file and resolve API keys from the environment.

    Args:
        config_path: Path to the YAML file (relative or absolute)

    Returns:
        RuntimeScanConfig ready for the planner and engine

    Raises:
        ConfigFileNotFoundError: If the file doesn't exist
        ConfigValidationError: If YAML is invalid or config validation fails
        APIKeyMissingError: If required API keys are missing from environment

    Example:
        >>> config = load_config("examples/scan.config.yaml")
        >>> config.providers[0].api_key  # Resolved from environment
        'sk-...'
    """
    scan_config = load_scan_config(config_path)
    providers = resolve_providers(scan_config)

    return RuntimeScanConfig(
        owner=scan_config.owner,
        brand=scan_config.brand,
        providers=providers,
        questions=scan_config.questions,
        sentiment=scan_config.sentiment,
        settings=scan_config.settings,
    )
