"""Configuration loading and validation for DevFleet.

Main components:
- load_config: Load and validate config/dev.yml into DevConfig
- Environment variable substitution (${VAR_NAME} pattern)
- Default configuration template used by `devfleet init`
"""

from devfleet.config.env_loader import get_env_var, load_env_file, substitute_env_vars
from devfleet.config.loader import load_config

__all__ = [
    "load_config",
    "substitute_env_vars",
    "get_env_var",
    "load_env_file",
]
