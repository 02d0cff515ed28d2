"""Docker Compose file handling for stack deployments.

The main service is the first one with a ``build`` section (or simply the
first one). Everything else is treated as a dependency that runs from a
published image, such as databases or caches.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

from devfleet.lib.errors import ConfigError
from devfleet.lib.logging_config import get_logger
from devfleet.models.run_spec import StackSpec

logger = get_logger(__name__)

_BIND_PREFIXES = (".", "/", "~")


class ComposeParser:
    """Parse a compose file and rewrite it for remote deployment.

    Example:
        >>> parser = ComposeParser(".devcontainer/compose.yaml")
        >>> parser.main_service
        'app'
        >>> parser.dependent_services
        ['postgres', 'redis']
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.data = self._load()

    @property
    def services(self) -> dict[str, dict[str, Any]]:
        return self.data["services"]

    @property
    def main_service(self) -> str:
        for name, service in self.services.items():
            if "build" in (service or {}):
                return name
        return next(iter(self.services))

    @property
    def dependent_services(self) -> list[str]:
        return [
            name
            for name, service in self.services.items()
            if "build" not in (service or {})
        ]

    def has_build_section(self, service: str) -> bool:
        return "build" in (self.services.get(service) or {})

    def service_build_context(self, service: str) -> str:
        build = (self.services.get(service) or {}).get("build")
        if isinstance(build, str):
            return build
        if isinstance(build, dict):
            return build.get("context") or "."
        return "."

    def service_dockerfile(self, service: str) -> str:
        build = (self.services.get(service) or {}).get("build")
        if isinstance(build, dict):
            return build.get("dockerfile") or "Dockerfile"
        return "Dockerfile"

    def transform_for_deployment(self, image: str) -> str:
        """Return compose YAML with the main service pointed at ``image``.

        The main service's ``build`` section is replaced by ``image`` and its
        local bind mounts (sources starting with ``.``, ``/`` or ``~``) are
        dropped, since the source tree does not exist on the remote machine.
        Named volumes are kept. The parsed file is left unchanged.
        """
        transformed = copy.deepcopy(self.data)
        main = self.main_service
        service = transformed["services"].get(main) or {}
        service.pop("build", None)
        service["image"] = image

        volumes = service.get("volumes")
        if volumes:
            kept = [v for v in volumes if not _is_bind_mount(v)]
            if len(kept) != len(volumes):
                logger.debug(
                    f"Dropped {len(volumes) - len(kept)} bind mount(s) from {main}"
                )
            if kept:
                service["volumes"] = kept
            else:
                service.pop("volumes")
        transformed["services"][main] = service

        return yaml.safe_dump(transformed, sort_keys=False, default_flow_style=False)

    def stack_spec(self, image: str) -> StackSpec:
        """Bundle the transformed compose file for the deploy executor."""
        return StackSpec(
            compose_yaml=self.transform_for_deployment(image),
            main_service=self.main_service,
            services=list(self.services),
            image=image,
        )

    def _load(self) -> dict[str, Any]:
        field = str(self.path)
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ConfigError(field=field, message="Compose file not found") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(
                field=field, message=f"Invalid YAML in compose file: {exc}"
            ) from exc

        if not isinstance(data, dict):
            raise ConfigError(field=field, message="Compose file must be a YAML mapping")
        if "services" not in data:
            raise ConfigError(
                field=field, message="Compose file must have a 'services' section"
            )
        if not isinstance(data["services"], dict) or not data["services"]:
            raise ConfigError(
                field=field, message="Compose file must define at least one service"
            )
        return data


def _is_bind_mount(volume: Any) -> bool:
    if isinstance(volume, str) and ":" in volume:
        source = volume.split(":", 1)[0]
        return source.startswith(_BIND_PREFIXES)
    if isinstance(volume, dict):
        return volume.get("type") == "bind"
    return False
