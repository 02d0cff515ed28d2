"""Custom exception hierarchy for DevFleet configuration and operations."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from devfleet.models.deployment_state import ResourceFailure


class DevFleetError(Exception):
    """Base exception for all DevFleet errors.

    All DevFleet-specific exceptions inherit from this class, enabling
    centralized exception handling in the CLI layer.
    """

    pass


class ConfigError(DevFleetError):
    """Exception raised for configuration errors.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class DeploymentError(DevFleetError):
    """Exception raised when a deployment operation fails.

    Attributes:
        operation: Operation that failed (deploy, build, state, destroy, ...)
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed: {message}")


class BatchDeploymentError(DeploymentError):
    """Raised when every target in a deployment batch failed.

    Attributes:
        failures: One entry per failed target
    """

    def __init__(self, failures: list[ResourceFailure]) -> None:
        self.failures = failures
        names = ", ".join(failure.name for failure in failures) or "none"
        super().__init__(
            operation="deploy",
            message=f"All {len(failures)} deployment(s) failed ({names})",
        )


class StateError(DeploymentError):
    """Raised when the state file cannot be read, parsed or written."""

    def __init__(self, message: str) -> None:
        super().__init__(operation="state", message=message)


class LockTimeoutError(DevFleetError):
    """Raised when the state file lock cannot be acquired in time.

    Attributes:
        mode: Lock mode that was requested ("shared" or "exclusive")
        timeout: Seconds waited before giving up
    """

    def __init__(self, mode: str, timeout: float) -> None:
        self.mode = mode
        self.timeout = timeout
        super().__init__(
            f"Could not acquire {mode} lock on state file after {timeout:g}s"
        )


class ProviderError(DevFleetError):
    """Base class for cloud provider failures."""

    pass


class AuthenticationError(ProviderError):
    """Provider rejected the configured credentials. Never retried."""

    pass


class ProvisioningError(ProviderError):
    """Provider rejected or failed an instance operation."""

    pass


class QuotaExceededError(ProvisioningError):
    """Account cannot allocate more capacity."""

    pass


class ProvisioningTimeoutError(ProvisioningError, TimeoutError):
    """Instance did not become ready within the polling bound.

    Attributes:
        instance_id: Provider identifier of the instance
        elapsed: Seconds spent waiting
    """

    def __init__(self, instance_id: str, elapsed: float) -> None:
        self.instance_id = instance_id
        self.elapsed = elapsed
        super().__init__(
            f"Instance {instance_id} not ready after {elapsed:.0f}s"
        )


class DockerNotAvailableError(DeploymentError):
    """Raised when the local Docker daemon cannot be reached."""

    def __init__(self, operation: str = "docker") -> None:
        super().__init__(
            operation=operation,
            message=(
                "Docker is not available. Install Docker Desktop or Docker Engine "
                "and make sure the daemon is running."
            ),
        )


class BuildError(DeploymentError):
    """Raised when building or pushing an image fails."""

    def __init__(self, message: str) -> None:
        super().__init__(operation="build", message=message)


class RegistryError(DeploymentError):
    """Raised for container registry configuration or login failures."""

    def __init__(self, message: str) -> None:
        super().__init__(operation="registry", message=message)


class SecretsError(DevFleetError):
    """Raised when the secrets file is missing or cannot be parsed.

    Attributes:
        path: Secrets file path
    """

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"Secrets error in {path}: {message}")
