"""DevFleet - Ephemeral development environments on cloud VMs.

DevFleet provisions virtual machines from a cloud provider, runs a
devcontainer image or compose stack on each of them over SSH, and keeps track
of every machine it created in a local state file.

Main features:
- Idempotent deploys: reruns reuse tracked machines and only create the shortfall
- Crash-safe bookkeeping: machines are recorded before waiting on them
- devcontainer.json and Docker Compose support
- Per-machine failure isolation with partial-success reporting
"""

from devfleet.lib.errors import (
    ConfigError,
    DeploymentError,
    DevFleetError,
    ProviderError,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConfigError",
    "DeploymentError",
    "DevFleetError",
    "ProviderError",
]
