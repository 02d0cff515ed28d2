"""Wait for a freshly created instance to become ready."""

from __future__ import annotations

import time
from collections.abc import Callable

from devfleet.deploy.providers.base import BaseProvider
from devfleet.lib.errors import ProvisioningError, ProvisioningTimeoutError
from devfleet.lib.logging_config import get_logger
from devfleet.models.provider import Instance, InstanceStatus

logger = get_logger(__name__)

POLLING_INTERVAL = 5.0
POLLING_TIMEOUT = 120.0


class ReadinessPoller:
    """Poll ``query_status`` at a fixed interval until ready, failed or timeout.

    The wait is a plain blocking loop and cannot be cancelled between checks;
    the timeout is the only bound.

    Attributes:
        provider: Backend queried for status
        timeout: Overall bound in seconds
        interval: Seconds between checks
    """

    def __init__(
        self,
        provider: BaseProvider,
        timeout: float = POLLING_TIMEOUT,
        interval: float = POLLING_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.timeout = timeout
        self.interval = interval
        self._sleep = sleep
        self._clock = clock

    def wait(self, instance: Instance) -> InstanceStatus:
        """Block until ``instance`` is running.

        Returns immediately when the create call already reported running.

        Returns:
            InstanceStatus.RUNNING

        Raises:
            ProvisioningError: The backend reported the instance as failed
            ProvisioningTimeoutError: Not running within ``timeout`` seconds
            AuthenticationError: Credentials were rejected mid-poll
        """
        if instance.status == InstanceStatus.RUNNING:
            return InstanceStatus.RUNNING

        started = self._clock()
        checks = 0
        while True:
            status = self.provider.query_status(instance.id)
            checks += 1
            if status == InstanceStatus.RUNNING:
                logger.debug(f"Instance {instance.id} ready after {checks} check(s)")
                return status
            if status == InstanceStatus.FAILED:
                raise ProvisioningError("instance failed to start")

            elapsed = self._clock() - started
            if elapsed >= self.timeout:
                raise ProvisioningTimeoutError(instance.id, elapsed)

            logger.debug(
                f"Instance {instance.id} is {status.value}, "
                f"waiting {self.interval:g}s ({elapsed:.0f}s elapsed)"
            )
            self._sleep(min(self.interval, self.timeout - elapsed))
