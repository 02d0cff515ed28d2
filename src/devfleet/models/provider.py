"""Provider-facing models shared by every cloud backend."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class InstanceStatus(str, Enum):
    """Backend-neutral instance status."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


class InstanceSpec(BaseModel):
    """What to ask the provider for when creating an instance.

    Attributes:
        zone: Region or zone identifier
        plan: Size/plan identifier
        title: Human readable instance title
        public_key: SSH public key installed for access
        storage_template: Optional OS template override
        disk_size: Root disk size in GB
    """

    model_config = ConfigDict(extra="forbid")

    zone: str
    plan: str
    title: str
    public_key: str
    storage_template: str | None = None
    disk_size: int = Field(default=25, ge=10)


class Instance(BaseModel):
    """An instance as reported by the provider."""

    model_config = ConfigDict(extra="forbid")

    id: str
    address: str | None = None
    status: InstanceStatus = InstanceStatus.PENDING


class CostEstimate(BaseModel):
    """Advisory cost information; never a live pricing quote."""

    model_config = ConfigDict(extra="forbid")

    warning: str
    plan: str
    zone: str
    pricing_url: str
