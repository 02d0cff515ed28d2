"""Pydantic models for the dev.yml configuration file.

The YAML file is parsed once at the boundary into ``DevConfig``; nothing
downstream of the loader sees the raw mapping.
"""

from __future__ import annotations

import os
import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Docker container names: start with alphanumeric, then [a-zA-Z0-9_.-]
DOCKER_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")

DEFAULT_NAMING_PATTERN = "{service}-{index}"


class ProviderType(str, Enum):
    """Supported cloud backends."""

    UPCLOUD = "upcloud"


class BuildSourceType(str, Enum):
    """Where the image is built from."""

    DEVCONTAINER = "devcontainer"
    DOCKERFILE = "dockerfile"


class BuildConfig(BaseModel):
    """Image build source.

    Attributes:
        devcontainer: Path to a devcontainer.json
        dockerfile: Path to a Dockerfile
        context: Build context directory
    """

    model_config = ConfigDict(extra="forbid")

    devcontainer: str | None = None
    dockerfile: str | None = None
    context: str = "."

    @property
    def source_type(self) -> BuildSourceType | None:
        if self.devcontainer:
            return BuildSourceType.DEVCONTAINER
        if self.dockerfile:
            return BuildSourceType.DOCKERFILE
        return None

    @property
    def source_path(self) -> str | None:
        return self.devcontainer or self.dockerfile


class ProviderConfig(BaseModel):
    """Cloud provider selection and instance shape.

    Credentials may be given inline (usually via ``${VAR}`` substitution);
    otherwise the provider falls back to its own environment variables.
    """

    model_config = ConfigDict(extra="forbid")

    type: ProviderType = Field(..., description="Provider type tag")
    zone: str = Field(default="us-nyc1", description="Zone for new instances")
    plan: str = Field(default="1xCPU-2GB", description="Instance plan")
    username: str | None = Field(default=None, description="API username")
    password: str | None = Field(default=None, description="API password")
    storage_template: str | None = Field(
        default=None, description="OS template override"
    )
    disk_size: int = Field(default=25, ge=10, description="Disk size in GB")

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class VMsConfig(BaseModel):
    """Default machine count."""

    model_config = ConfigDict(extra="forbid")

    count: int = Field(default=1, ge=1)


class NamingConfig(BaseModel):
    """Naming pattern for deployments (``{service}``, ``{index}``, ``{index:03}``)."""

    model_config = ConfigDict(extra="forbid")

    pattern: str = DEFAULT_NAMING_PATTERN

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        if "{index" not in v:
            raise ValueError("Naming pattern must contain an {index} placeholder")
        return v


class SSHConfig(BaseModel):
    """SSH access to provisioned machines."""

    model_config = ConfigDict(extra="forbid")

    key_path: str = Field(
        default="~/.ssh/id_rsa.pub", description="Public key installed on machines"
    )
    user: str = Field(default="root", description="Remote user")
    connect_timeout: float = Field(default=5.0, gt=0)

    @property
    def public_key_path(self) -> str:
        return os.path.expanduser(self.key_path)

    @property
    def private_key_path(self) -> str:
        path = self.public_key_path
        return path[: -len(".pub")] if path.endswith(".pub") else path


class RegistryConfig(BaseModel):
    """Container registry settings.

    ``username`` and ``password`` name environment variables; the values are
    looked up when needed and never stored in the config.
    """

    model_config = ConfigDict(extra="forbid")

    server: str = Field(default="ghcr.io", description="Registry server")
    username: str | None = Field(
        default=None, description="Env var holding the registry username"
    )
    password: str | None = Field(
        default=None, description="Env var holding the registry password"
    )

    @field_validator("username", "password", mode="before")
    @classmethod
    def unwrap_list(cls, v: Any) -> Any:
        # Kamal-style secrets lists: `username: [REGISTRY_USER]`
        if isinstance(v, list):
            return v[0] if v else None
        return v

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    def resolve_username(self) -> str | None:
        return os.environ.get(self.username) if self.username else None

    def resolve_password(self) -> str | None:
        return os.environ.get(self.password) if self.password else None


class ProvisioningConfig(BaseModel):
    """Readiness polling and reconcile behaviour."""

    model_config = ConfigDict(extra="forbid")

    poll_timeout: float = Field(default=120.0, gt=0)
    poll_interval: float = Field(default=5.0, gt=0)
    max_parallel: int = Field(default=1, ge=1, le=16)
    reuse_failed: bool = True


class DevConfig(BaseModel):
    """Top-level dev.yml configuration."""

    model_config = ConfigDict(extra="forbid")

    service: str = Field(..., description="Service name")
    image: str = Field(..., description="Image reference or devcontainer.json path")
    build: BuildConfig | None = None
    provider: ProviderConfig
    vms: VMsConfig = Field(default_factory=VMsConfig)
    naming: NamingConfig = Field(default_factory=NamingConfig)
    secrets: list[str] = Field(default_factory=list)
    secrets_file: str = ".devfleet/secrets"
    ssh: SSHConfig = Field(default_factory=SSHConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    state_file: str = ".devfleet/dev_state.yml"

    @field_validator("service")
    @classmethod
    def validate_service(cls, v: str) -> str:
        if not DOCKER_NAME_PATTERN.match(v):
            raise ValueError(
                f"Service name '{v}' is invalid. Docker names must start with a "
                "letter or number and contain only [a-zA-Z0-9_.-]"
            )
        return v

    @field_validator("image")
    @classmethod
    def validate_image(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("image must not be empty")
        return v

    @model_validator(mode="after")
    def validate_build(self) -> DevConfig:
        if self.build and self.build.devcontainer and self.build.dockerfile:
            raise ValueError(
                "build.devcontainer and build.dockerfile are mutually exclusive"
            )
        return self

    @property
    def uses_devcontainer_json(self) -> bool:
        """Whether the run spec comes from a devcontainer.json file.

        Supports ``build.devcontainer`` and the older form where ``image``
        points at the JSON file.
        """
        if self.build and self.build.source_type == BuildSourceType.DEVCONTAINER:
            return True
        return self.image.endswith(".json") or "devcontainer" in self.image

    @property
    def devcontainer_path(self) -> str:
        if self.build and self.build.devcontainer:
            return self.build.devcontainer
        return self.image
