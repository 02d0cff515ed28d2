"""Deployment naming patterns.

Patterns use ``{service}`` and ``{index}`` placeholders; ``{index:03}``
zero-pads the index.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from devfleet.lib.errors import ConfigError
from devfleet.models.config import DEFAULT_NAMING_PATTERN, DOCKER_NAME_PATTERN

_INDEX_PLACEHOLDER = re.compile(r"\{index(?::(\d+))?\}")


class NamingPattern:
    """Formats and parses deployment names for one service.

    Example:
        >>> naming = NamingPattern("myapp", "{service}-{index:03}")
        >>> naming.format(7)
        'myapp-007'
        >>> naming.index_of("myapp-007")
        7
    """

    def __init__(self, service: str, pattern: str = DEFAULT_NAMING_PATTERN) -> None:
        self.service = service
        self.pattern = pattern
        self._regex = self._compile(service, pattern)

    @staticmethod
    def _compile(service: str, pattern: str) -> re.Pattern[str]:
        parts: list[str] = []
        position = 0
        for match in _INDEX_PLACEHOLDER.finditer(pattern):
            literal = pattern[position : match.start()]
            parts.append(re.escape(literal.replace("{service}", service)))
            parts.append(r"(\d+)")
            position = match.end()
        parts.append(re.escape(pattern[position:].replace("{service}", service)))
        return re.compile("^" + "".join(parts) + "$")

    def format(self, index: int) -> str:
        """Return the name for ``index``.

        Raises:
            ConfigError: If the result is not a valid Docker name
        """

        def _index(match: re.Match[str]) -> str:
            width = match.group(1)
            return f"{index:0{int(width)}d}" if width else str(index)

        name = _INDEX_PLACEHOLDER.sub(_index, self.pattern)
        name = name.replace("{service}", self.service)
        if not DOCKER_NAME_PATTERN.match(name):
            raise ConfigError(
                field="naming.pattern",
                message=(
                    f"Container name '{name}' is invalid. Docker names must start "
                    "with a letter or number and contain only [a-zA-Z0-9_.-]"
                ),
            )
        return name

    def index_of(self, name: str) -> int | None:
        """Return the numeric index encoded in ``name``, if it follows the pattern."""
        match = self._regex.match(name)
        return int(match.group(1)) if match else None

    def owns(self, name: str) -> bool:
        """Whether ``name`` belongs to this service."""
        return self.index_of(name) is not None or name.startswith(f"{self.service}-")

    def next_index(self, names: Iterable[str]) -> int:
        """Return one past the highest index in ``names`` (1 when there is none).

        Gaps are never refilled, so names removed out of band are not reused.
        """
        indices = [i for i in (self.index_of(n) for n in names) if i is not None]
        return max(indices) + 1 if indices else 1
