"""Base interface for cloud providers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from devfleet.models.provider import CostEstimate, Instance, InstanceSpec, InstanceStatus


class BaseProvider(ABC):
    """Abstract base class for cloud VM backends."""

    name: str = "base"

    @abstractmethod
    def create_instance(self, spec: InstanceSpec) -> Instance:
        """Request a new instance and return as soon as the backend assigns an id.

        Does not wait for the instance to become ready.

        Args:
            spec: Zone, plan, title and public key for the new instance.

        Returns:
            Instance with id, best available address and current status.

        Raises:
            AuthenticationError: If credentials are invalid
            QuotaExceededError: If the account cannot allocate more capacity
            ProvisioningError: For any other backend rejection
        """

    @abstractmethod
    def query_status(self, instance_id: str) -> InstanceStatus:
        """Return the backend status mapped to pending/running/stopped/failed.

        Raises:
            AuthenticationError: If credentials are invalid
        """

    @abstractmethod
    def destroy_instance(self, instance_id: str) -> bool:
        """Destroy an instance and its storage.

        Idempotent: an instance that is already gone still returns True.

        Raises:
            AuthenticationError: If credentials are invalid
        """

    @abstractmethod
    def estimate_cost(self, spec: InstanceSpec) -> CostEstimate:
        """Return advisory cost information for ``spec``; no live pricing."""

    def instance_address(self, instance_id: str) -> str | None:
        """Look up the preferred address of an existing instance.

        Backends that cannot do this return None.
        """
        return None
