"""Environment variable helpers for configuration files."""

from __future__ import annotations

import os
import re
from pathlib import Path

from dotenv import load_dotenv

from devfleet.lib.errors import ConfigError

# ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def substitute_env_vars(text: str) -> str:
    """Replace ``${VAR}`` references with environment values.

    ``${VAR:-fallback}`` uses the fallback when VAR is unset.

    Raises:
        ConfigError: If a referenced variable is unset and has no fallback
    """

    def _replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        value = os.environ.get(name)
        if value is not None:
            return value
        if default is not None:
            return default
        raise ConfigError(
            field=name,
            message=f"Environment variable '{name}' is referenced but not set",
        )

    return _ENV_PATTERN.sub(_replace, text)


def get_env_var(name: str, default: str | None = None) -> str | None:
    """Return an environment variable, treating empty strings as unset."""
    value = os.environ.get(name)
    return value if value else default


def load_env_file(path: str | Path = ".env") -> bool:
    """Load a .env file without overriding variables already set.

    Returns:
        True if the file existed and was loaded
    """
    env_path = Path(path)
    if not env_path.is_file():
        return False
    return load_dotenv(env_path, override=False)
