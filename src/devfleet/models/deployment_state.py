"""Deployment state models for persisted resources."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LifecycleStatus(str, Enum):
    """Lifecycle of a tracked machine.

    provisioning -> ready -> deploying -> running -> stopped -> removed,
    with failed reachable from any non-terminal state.
    """

    PROVISIONING = "provisioning"
    READY = "ready"
    DEPLOYING = "deploying"
    RUNNING = "running"
    STOPPED = "stopped"
    REMOVED = "removed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is LifecycleStatus.REMOVED


class DeploymentKind(str, Enum):
    """What runs on a tracked machine."""

    CONTAINER = "container"
    STACK = "stack"


class ContainerRecord(BaseModel):
    """A container running on a tracked machine."""

    model_config = ConfigDict(extra="forbid")

    service: str = Field(..., description="Service (or container) name")
    image: str = Field(..., description="Image reference")
    status: str = Field(..., description="Runtime status reported by Docker")
    name: str | None = Field(default=None, description="Docker container name")


class ResourceRecord(BaseModel):
    """Persisted record for one provisioned machine.

    ``name``, ``instance_id`` and ``created_at`` are set once and never
    change; status transitions go through ``with_status``.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Unique deployment name")
    instance_id: str = Field(..., description="Provider-assigned identifier")
    address: str | None = Field(default=None, description="Routable address")
    status: LifecycleStatus = Field(
        default=LifecycleStatus.PROVISIONING, description="Lifecycle status"
    )
    kind: DeploymentKind = Field(
        default=DeploymentKind.CONTAINER, description="Single container or stack"
    )
    containers: list[ContainerRecord] = Field(
        default_factory=list, description="Containers running on the machine"
    )
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime | None = Field(
        default=None, description="Last update timestamp"
    )

    def with_status(self, status: LifecycleStatus) -> ResourceRecord:
        """Return a copy with a new lifecycle status."""
        return self.model_copy(update={"status": status})


class DeploymentState(BaseModel):
    """Top-level deployment state stored on disk."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1.0", description="State file version")
    deployments: dict[str, ResourceRecord] = Field(
        default_factory=dict, description="Resources keyed by deployment name"
    )


@dataclass(frozen=True)
class ResourceFailure:
    """A target that failed during a reconcile run.

    Attributes:
        name: Deployment name (or the name it would have had)
        stage: "provision" or "deploy"
        error: The exception that stopped this target
    """

    name: str
    stage: str
    error: Exception

    @property
    def message(self) -> str:
        return str(self.error)
