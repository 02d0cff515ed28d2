"""Tests for the DevFleet exception hierarchy."""

import pytest

from devfleet.lib.errors import (
    AuthenticationError,
    BatchDeploymentError,
    BuildError,
    ConfigError,
    DeploymentError,
    DevFleetError,
    DockerNotAvailableError,
    LockTimeoutError,
    ProviderError,
    ProvisioningError,
    ProvisioningTimeoutError,
    QuotaExceededError,
    RegistryError,
    SecretsError,
    StateError,
)
from devfleet.models.deployment_state import ResourceFailure


class TestErrorHierarchy:
    """Every error derives from DevFleetError."""

    @pytest.mark.parametrize(
        "error",
        [
            ConfigError("field", "message"),
            DeploymentError("deploy", "message"),
            StateError("message"),
            LockTimeoutError("shared", 1.0),
            AuthenticationError("message"),
            QuotaExceededError("message"),
            ProvisioningTimeoutError("vm-1", 120.0),
            DockerNotAvailableError(),
            BuildError("message"),
            RegistryError("message"),
            SecretsError("path", "message"),
            BatchDeploymentError([]),
        ],
    )
    def test_is_devfleet_error(self, error: Exception) -> None:
        assert isinstance(error, DevFleetError)

    def test_provider_errors(self) -> None:
        assert issubclass(AuthenticationError, ProviderError)
        assert issubclass(QuotaExceededError, ProvisioningError)
        assert issubclass(ProvisioningTimeoutError, ProvisioningError)
        assert not issubclass(ProviderError, DeploymentError)


class TestErrorMessages:
    """Tests for error attributes and messages."""

    def test_config_error(self) -> None:
        error = ConfigError("provider.zone", "unknown zone")

        assert error.field == "provider.zone"
        assert error.message == "unknown zone"
        assert str(error) == "Configuration error in 'provider.zone': unknown zone"

    def test_deployment_error(self) -> None:
        error = DeploymentError("ssh", "connection refused")

        assert error.operation == "ssh"
        assert str(error) == "ssh failed: connection refused"

    def test_state_and_build_operations(self) -> None:
        assert StateError("corrupt").operation == "state"
        assert BuildError("failed").operation == "build"
        assert RegistryError("denied").operation == "registry"

    def test_lock_timeout(self) -> None:
        error = LockTimeoutError("exclusive", 2.5)

        assert error.mode == "exclusive"
        assert "exclusive lock" in str(error)
        assert "2.5s" in str(error)

    def test_provisioning_timeout(self) -> None:
        error = ProvisioningTimeoutError("vm-1", 121.4)

        assert error.instance_id == "vm-1"
        assert str(error) == "Instance vm-1 not ready after 121s"

    def test_batch_deployment_error(self) -> None:
        failures = [
            ResourceFailure("svc-1", "provision", ProvisioningError("quota")),
            ResourceFailure("svc-2", "deploy", DeploymentError("ssh", "refused")),
        ]

        error = BatchDeploymentError(failures)

        assert error.failures == failures
        assert "All 2 deployment(s) failed (svc-1, svc-2)" in str(error)
        assert failures[1].message == "ssh failed: refused"
