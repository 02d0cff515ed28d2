"""Load deployment secrets and encode them for container injection.

The secrets file uses shell syntax (``export KEY="value"``); python-dotenv
parses it. Values are Base64-encoded and injected as ``<KEY>_B64`` so that
they survive shell quoting on the remote side.
"""

from __future__ import annotations

import base64
from collections.abc import Iterable
from pathlib import Path

from dotenv import dotenv_values

from devfleet.lib.errors import SecretsError
from devfleet.lib.logging_config import get_logger

logger = get_logger(__name__)


def encode_secret(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class SecretsLoader:
    """Read secrets from a dotenv-style file.

    Example:
        >>> SecretsLoader(".devfleet/secrets").load_for(["DATABASE_URL"])
        {'DATABASE_URL': 'cG9zdGdyZXM6Ly8uLi4='}
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load_all(self) -> dict[str, str]:
        """Return every secret in the file, Base64-encoded.

        Raises:
            SecretsError: If the file does not exist or cannot be read
        """
        if not self.path.is_file():
            raise SecretsError(str(self.path), "secrets file not found")
        try:
            values = dotenv_values(self.path)
        except (OSError, UnicodeDecodeError) as exc:
            raise SecretsError(str(self.path), f"failed to read: {exc}") from exc
        return {
            key: encode_secret(value) for key, value in values.items() if value is not None
        }

    def load_for(self, names: Iterable[str]) -> dict[str, str]:
        """Return the requested secrets; names absent from the file are skipped.

        A missing file is treated like an empty one.
        """
        wanted = list(names)
        if not wanted:
            return {}
        if not self.path.is_file():
            logger.warning(f"Secrets file {self.path} not found; no secrets injected")
            return {}
        available = self.load_all()
        missing = [name for name in wanted if name not in available]
        if missing:
            logger.warning(f"Secrets not found in {self.path}: {', '.join(missing)}")
        return {name: available[name] for name in wanted if name in available}
