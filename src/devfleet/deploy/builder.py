"""Container image build and push for DevFleet.

Images are built and pushed with the Docker SDK and named
``{server}/{username}/{service}-dev:{tag}``.
"""

from __future__ import annotations

import subprocess  # nosec B404
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import APIError, DockerException
from docker.errors import BuildError as DockerBuildError

from devfleet.lib.errors import (
    BuildError,
    DeploymentError,
    DockerNotAvailableError,
    RegistryError,
)
from devfleet.lib.logging_config import get_logger

if TYPE_CHECKING:
    from docker.models.images import Image

logger = get_logger(__name__)


class TagStrategy(str, Enum):
    """How image tags are generated."""

    TIMESTAMP = "timestamp"
    GIT_SHA = "git_sha"
    CUSTOM = "custom"


@dataclass
class BuildResult:
    """Result of an image build.

    Attributes:
        image_id: The SHA256 ID of the built image
        image_name: Repository name without tag
        tag: The image tag
        full_name: Full image reference (name:tag)
        log_lines: Build log output lines
    """

    image_id: str
    image_name: str
    tag: str
    full_name: str
    log_lines: list[str] = field(default_factory=list)

    @classmethod
    def from_image(
        cls,
        image: Image,
        image_name: str,
        tag: str,
        log_lines: list[str] | None = None,
    ) -> BuildResult:
        return cls(
            image_id=image.id or "",
            image_name=image_name,
            tag=tag,
            full_name=f"{image_name}:{tag}",
            log_lines=log_lines or [],
        )


def generate_tag(strategy: TagStrategy, custom_tag: str | None = None) -> str:
    """Generate an image tag.

    Raises:
        ValueError: If the custom strategy is used without ``custom_tag``
        DeploymentError: If git is not available for the git_sha strategy

    Example:
        >>> generate_tag(TagStrategy.CUSTOM, custom_tag="v1.0.0")
        'v1.0.0'
    """
    if strategy == TagStrategy.TIMESTAMP:
        return str(int(time.time()))

    if strategy == TagStrategy.CUSTOM:
        if not custom_tag:
            raise ValueError("custom_tag is required when using CUSTOM strategy")
        return custom_tag

    if strategy == TagStrategy.GIT_SHA:
        result = subprocess.run(  # noqa: S603  # nosec B603 B607
            ["git", "rev-parse", "--short", "HEAD"],  # noqa: S607
            capture_output=True,
            text=True,
        )
        if result.returncode != 0 or not result.stdout.strip():
            raise DeploymentError(
                operation="tag_generation",
                message="Failed to get git SHA: not a git repository",
            )
        return result.stdout.strip()

    raise ValueError(f"Unknown tag strategy: {strategy}")


def image_name(server: str, username: str | None, service: str) -> str:
    """Return ``{server}/{username}/{service}-dev``.

    Raises:
        RegistryError: If no registry username is available
    """
    if not username:
        raise RegistryError("Registry username not configured")
    return f"{server}/{username}/{service}-dev"


class ContainerBuilder:
    """Build, tag and push images through the local Docker daemon.

    Example:
        >>> builder = ContainerBuilder()
        >>> result = builder.build(".", "ghcr.io/me/myapp-dev", "abc123f")
        >>> builder.push(result.image_name, result.tag)
    """

    def __init__(self, client: Any | None = None) -> None:
        """Connect to the Docker daemon.

        Raises:
            DockerNotAvailableError: If the daemon is not reachable
        """
        if client is not None:
            self.client = client
            return
        try:
            self.client = docker.from_env()  # type: ignore[attr-defined]
        except DockerException as e:
            raise DockerNotAvailableError(operation="build") from e

    def build(
        self,
        build_context: str,
        image_name: str,
        tag: str,
        dockerfile: str = "Dockerfile",
        platform: str = "linux/amd64",
        **build_kwargs: Any,
    ) -> BuildResult:
        """Build an image from ``build_context``.

        Args:
            build_context: Path to the build context directory
            image_name: Repository name for the image
            tag: Image tag
            dockerfile: Dockerfile path relative to the context
            platform: Target platform (machines are x86_64)
            **build_kwargs: Passed through to the Docker SDK

        Raises:
            BuildError: If the context is missing or the build fails
        """
        context_path = Path(build_context)
        if not context_path.exists():
            raise BuildError(f"Build context not found: {build_context}")

        full_tag = f"{image_name}:{tag}"
        logger.info(f"Building {full_tag} from {context_path} ({dockerfile})")
        try:
            image, build_logs = self.client.images.build(
                path=str(context_path),
                tag=full_tag,
                dockerfile=dockerfile,
                rm=True,
                platform=platform,
                **build_kwargs,
            )
        except DockerBuildError as e:
            raise BuildError(f"Docker build failed: {e.msg}") from e
        except DockerException as e:
            raise BuildError(f"Docker error during build: {e}") from e

        log_lines: list[str] = []
        for log_entry in build_logs:
            if not isinstance(log_entry, dict):
                continue
            if isinstance(log_entry.get("stream"), str):
                log_lines.append(log_entry["stream"].rstrip("\n"))
            elif "error" in log_entry:
                log_lines.append(f"ERROR: {log_entry['error']}")

        return BuildResult.from_image(image, image_name, tag, log_lines)

    def login(self, server: str, username: str, password: str) -> None:
        """Authenticate the local daemon against a registry.

        Raises:
            RegistryError: If the registry rejects the credentials
        """
        try:
            self.client.login(username=username, password=password, registry=server)
        except APIError as e:
            raise RegistryError(f"Docker login to {server} failed: {e.explanation}") from e
        except DockerException as e:
            raise RegistryError(f"Docker login to {server} failed: {e}") from e

    def push(self, image_name: str, tag: str) -> str:
        """Push ``image_name:tag`` and return the full reference.

        Raises:
            BuildError: If the push reports an error
        """
        full_name = f"{image_name}:{tag}"
        logger.info(f"Pushing {full_name}")
        try:
            for entry in self.client.images.push(
                image_name, tag=tag, stream=True, decode=True
            ):
                if isinstance(entry, dict) and entry.get("error"):
                    raise BuildError(f"Push of {full_name} failed: {entry['error']}")
        except DockerException as e:
            raise BuildError(f"Docker error during push: {e}") from e
        return full_name

    def image_exists(self, reference: str) -> bool:
        try:
            self.client.images.get(reference)
        except DockerException:
            return False
        return True
