"""Configuration loader for DevFleet.

Reads config/dev.yml, substitutes ``${VAR}`` references and validates the
result into a ``DevConfig``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from devfleet.config.defaults import DEFAULT_CONFIG_PATH, DEFAULT_ENV_FILE
from devfleet.config.env_loader import load_env_file, substitute_env_vars
from devfleet.config.validator import flatten_pydantic_errors
from devfleet.lib.errors import ConfigError
from devfleet.models.config import DevConfig

logger = logging.getLogger(__name__)


def _read_yaml_with_env_substitution(path: Path) -> dict[str, Any] | None:
    """Read a YAML file, substituting environment variables first.

    Raises:
        OSError: If the file cannot be read
        yaml.YAMLError: If YAML parsing fails
        ConfigError: If env var substitution fails
    """
    raw_text = path.read_text(encoding="utf-8")
    content = yaml.safe_load(substitute_env_vars(raw_text))
    return content if content else None


def parse_config(data: dict[str, Any], source: str = "<config>") -> DevConfig:
    """Validate an already-parsed configuration mapping.

    Args:
        data: Parsed YAML mapping
        source: Where the mapping came from, for error messages

    Raises:
        ConfigError: If validation fails
    """
    try:
        return DevConfig.model_validate(data)
    except PydanticValidationError as exc:
        details = "\n".join(flatten_pydantic_errors(exc))
        raise ConfigError(
            field=source,
            message=f"Invalid configuration:\n{details}",
        ) from exc


def load_config(
    path: str | Path = DEFAULT_CONFIG_PATH,
    env_file: str | Path | None = DEFAULT_ENV_FILE,
) -> DevConfig:
    """Load and validate a dev.yml configuration file.

    Args:
        path: Path to the YAML configuration
        env_file: Optional .env file loaded before substitution

    Returns:
        Validated DevConfig

    Raises:
        ConfigError: If the file is missing, unreadable, not YAML or invalid
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigError(
            field="config",
            message=(
                f"Configuration file not found: {config_path}. "
                "Run `devfleet init` to create one."
            ),
        )

    if env_file is not None and load_env_file(env_file):
        logger.debug(f"Loaded environment from {env_file}")

    try:
        data = _read_yaml_with_env_substitution(config_path)
    except yaml.YAMLError as exc:
        raise ConfigError(
            field="config", message=f"Invalid YAML in {config_path}: {exc}"
        ) from exc
    except OSError as exc:
        raise ConfigError(
            field="config", message=f"Failed to read {config_path}: {exc}"
        ) from exc

    if data is None:
        raise ConfigError(field="config", message=f"{config_path} is empty")
    if not isinstance(data, dict):
        raise ConfigError(
            field="config",
            message=f"{config_path} must contain a YAML mapping at the top level",
        )

    config = parse_config(data, source=str(config_path))
    logger.debug(
        f"Loaded configuration for service '{config.service}' "
        f"(provider={config.provider.type.value})"
    )
    return config
