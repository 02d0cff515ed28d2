"""Cloud providers for DevFleet.

Providers are looked up by type tag once, when the command starts; the
returned object is then used directly.
"""

from __future__ import annotations

from collections.abc import Callable

from devfleet.deploy.providers.base import BaseProvider
from devfleet.deploy.providers.upcloud import UpCloudProvider
from devfleet.lib.errors import ConfigError
from devfleet.models.config import ProviderConfig, ProviderType

ProviderFactory = Callable[[ProviderConfig], BaseProvider]

PROVIDERS: dict[ProviderType, ProviderFactory] = {
    ProviderType.UPCLOUD: UpCloudProvider.from_config,
}


def create_provider(config: ProviderConfig) -> BaseProvider:
    """Create the provider selected by ``config.type``.

    Raises:
        ConfigError: If no provider is registered for the type or the
            provider rejects its configuration
    """
    factory = PROVIDERS.get(config.type)
    if factory is None:
        raise ConfigError(
            field="provider.type",
            message=f"Unsupported cloud provider: {config.type.value}",
        )
    return factory(config)


__all__ = ["BaseProvider", "PROVIDERS", "UpCloudProvider", "create_provider"]
