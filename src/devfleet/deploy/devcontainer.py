"""Resolve a devcontainer.json into a RunSpec.

devcontainer.json allows ``//`` and ``/* */`` comments, so they are stripped
before the JSON is parsed.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from devfleet.lib.errors import ConfigError
from devfleet.models.run_spec import Mount, RunSpec

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
# Skips "//" preceded by ":" so URLs such as "https://..." survive.
_LINE_COMMENT = re.compile(r"(?<!:)//.*?$", re.MULTILINE)


def strip_json_comments(content: str) -> str:
    """Remove ``/* */`` and ``//`` comments from JSON text."""
    content = _BLOCK_COMMENT.sub("", content)
    return _LINE_COMMENT.sub("", content)


class DevcontainerParser:
    """Read a devcontainer.json file.

    Example:
        >>> parser = DevcontainerParser(".devcontainer/devcontainer.json")
        >>> parser.parse().image
        'ruby:3.2'
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] | None = None

    @property
    def data(self) -> dict[str, Any]:
        if self._data is None:
            self._data = self._load()
        return self._data

    def parse(self, secrets: dict[str, str] | None = None) -> RunSpec:
        """Return the RunSpec described by the file.

        Args:
            secrets: Base64-encoded secret values to attach

        Raises:
            ConfigError: If the file is missing, malformed or has no image
        """
        data = self.data
        image = data.get("image")
        if not image:
            if data.get("dockerfile") or data.get("build"):
                message = "Image property is required (Dockerfile builds are not supported)"
            else:
                message = (
                    "devcontainer.json must specify either 'image' or "
                    "'dockerComposeFile'"
                )
            raise ConfigError(field=str(self.path), message=message)

        return RunSpec(
            image=str(image),
            ports=[int(port) for port in _as_list(data.get("forwardPorts"))],
            mounts=[
                Mount(
                    source=str(mount["source"]),
                    target=str(mount["target"]),
                    type=mount.get("type") or "bind",
                )
                for mount in _as_list(data.get("mounts"))
                if isinstance(mount, dict)
            ],
            env={str(k): str(v) for k, v in (data.get("containerEnv") or {}).items()},
            secrets=dict(secrets or {}),
            options=[str(arg) for arg in _as_list(data.get("runArgs"))],
            user=data.get("remoteUser"),
            workspace=data.get("workspaceFolder"),
        )

    @property
    def uses_compose(self) -> bool:
        return bool(self.data.get("dockerComposeFile"))

    @property
    def compose_file_path(self) -> Path | None:
        """Compose file referenced by the devcontainer, if any.

        The path is relative to the devcontainer directory; of a list, the
        first entry is used.
        """
        compose = self.data.get("dockerComposeFile")
        if isinstance(compose, list):
            compose = compose[0] if compose else None
        if not compose:
            return None
        return self.path.parent / str(compose)

    def _load(self) -> dict[str, Any]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ConfigError(
                field=str(self.path), message="devcontainer.json not found"
            ) from exc
        try:
            data = json.loads(strip_json_comments(content))
        except json.JSONDecodeError as exc:
            raise ConfigError(
                field=str(self.path), message=f"Invalid JSON: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ConfigError(
                field=str(self.path), message="devcontainer.json must be an object"
            )
        return data


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]
