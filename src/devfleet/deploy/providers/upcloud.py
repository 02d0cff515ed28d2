"""UpCloud API v1.3 provider implementation."""

from __future__ import annotations

import ipaddress
import os
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout
from urllib3.util.retry import Retry

from devfleet.deploy.providers.base import BaseProvider
from devfleet.lib.errors import (
    AuthenticationError,
    ConfigError,
    ProvisioningError,
    QuotaExceededError,
)
from devfleet.lib.logging_config import get_logger
from devfleet.models.config import ProviderConfig
from devfleet.models.provider import (
    CostEstimate,
    Instance,
    InstanceSpec,
    InstanceStatus,
)

logger = get_logger(__name__)

API_BASE_URL = "https://api.upcloud.com"
API_VERSION = "1.3"
PRICING_URL = "https://upcloud.com/pricing"

# Ubuntu 24.04 LTS cloud-init template; template UUIDs are the same in every zone.
DEFAULT_UBUNTU_TEMPLATE = "01000000-0000-4000-8000-000030240200"

RETRY_STATUSES = (429, 500, 502, 503, 504)

_STATE_MAP = {
    "started": InstanceStatus.RUNNING,
    "stopped": InstanceStatus.STOPPED,
    "error": InstanceStatus.FAILED,
    "maintenance": InstanceStatus.PENDING,
    "pending": InstanceStatus.PENDING,
}


def map_state(state: str | None) -> InstanceStatus:
    """Map an UpCloud server state to the provider-neutral status."""
    return _STATE_MAP.get((state or "").lower(), InstanceStatus.PENDING)


def _address_family(entry: dict[str, Any]) -> int | None:
    family = str(entry.get("family", "")).lower()
    if family in ("ipv4", "ipv6"):
        return 4 if family == "ipv4" else 6
    try:
        return ipaddress.ip_address(str(entry.get("address", ""))).version
    except ValueError:
        return None


def select_address(entries: list[dict[str, Any]]) -> str | None:
    """Pick the address to reach an instance on.

    Any IPv4 address beats any IPv6 address, since many hosts running the
    control plane have no outbound IPv6 route. Within a family, ``public``
    beats every other access tag. Ties keep the listed order.

    Args:
        entries: ``ip_address`` items with ``access``, ``family``, ``address``

    Returns:
        The chosen address, or None if there are none
    """
    candidates = [e for e in entries if e.get("address")]
    if not candidates:
        return None

    def rank(entry: dict[str, Any]) -> tuple[int, int]:
        family_rank = 0 if _address_family(entry) == 4 else 1
        access_rank = 0 if entry.get("access") == "public" else 1
        return family_rank, access_rank

    return str(min(candidates, key=rank)["address"])


def _server_addresses(server: dict[str, Any]) -> list[dict[str, Any]]:
    addresses = server.get("ip_addresses") or {}
    if isinstance(addresses, dict):
        entries = addresses.get("ip_address") or []
    else:
        entries = addresses
    return [e for e in entries if isinstance(e, dict)]


class UpCloudProvider(BaseProvider):
    """Provision machines through the UpCloud REST API.

    Transient failures (429 and 5xx) are retried by the session's urllib3
    ``Retry`` with capped exponential backoff. Authentication and validation
    failures surface immediately.

    Example:
        >>> provider = UpCloudProvider(username="api-user", password="secret")
        >>> instance = provider.create_instance(
        ...     InstanceSpec(zone="us-nyc1", plan="1xCPU-2GB",
        ...                  title="myapp-1", public_key="ssh-ed25519 AAAA...")
        ... )
    """

    name = "upcloud"

    def __init__(
        self,
        username: str,
        password: str,
        *,
        base_url: str = API_BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        backoff_max: float = 8.0,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            username: UpCloud API username
            password: UpCloud API password
            base_url: API root (overridable for tests)
            timeout: Per-request timeout in seconds
            max_retries: Retries for transient HTTP failures
            backoff_factor: Exponential backoff base in seconds
            backoff_max: Upper bound for a single backoff sleep
            session: Pre-built session (skips adapter setup)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            retry = Retry(
                total=max_retries,
                connect=max_retries,
                read=max_retries,
                status=max_retries,
                backoff_factor=backoff_factor,
                backoff_max=backoff_max,
                status_forcelist=RETRY_STATUSES,
                allowed_methods=frozenset({"GET", "POST", "DELETE"}),
                respect_retry_after_header=True,
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        session.auth = (username, password)
        session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )
        self._session = session

    @classmethod
    def from_config(cls, config: ProviderConfig) -> UpCloudProvider:
        """Build a provider from config, falling back to UPCLOUD_* env vars.

        Raises:
            ConfigError: If no credentials are available
        """
        username = config.username or os.environ.get("UPCLOUD_USERNAME")
        password = config.password or os.environ.get("UPCLOUD_PASSWORD")
        if not username or not password:
            raise ConfigError(
                field="provider",
                message=(
                    "Missing UpCloud credentials. Set provider.username/password "
                    "or the UPCLOUD_USERNAME and UPCLOUD_PASSWORD environment "
                    "variables."
                ),
            )
        return cls(username=username, password=password)

    def create_instance(self, spec: InstanceSpec) -> Instance:
        """Create a server; returns without waiting for it to start."""
        response = self._request("POST", "/server", json=self._server_body(spec))
        self._raise_for_status(response, operation="create")

        server = self._server_payload(response)
        instance_id = server.get("uuid")
        if not instance_id:
            raise ProvisioningError("UpCloud response did not include a server uuid")

        instance = Instance(
            id=str(instance_id),
            address=select_address(_server_addresses(server)),
            status=map_state(server.get("state")),
        )
        logger.info(
            f"Created UpCloud server {instance.id} ({spec.title}, {spec.plan} "
            f"in {spec.zone}), state={instance.status.value}"
        )
        return instance

    def query_status(self, instance_id: str) -> InstanceStatus:
        response = self._request("GET", f"/server/{instance_id}")
        if response.status_code == 404:
            logger.warning(f"UpCloud server {instance_id} no longer exists")
            return InstanceStatus.FAILED
        self._raise_for_status(response, operation="status")
        return map_state(self._server_payload(response).get("state"))

    def destroy_instance(self, instance_id: str) -> bool:
        response = self._request(
            "DELETE", f"/server/{instance_id}", params={"storages": "1"}
        )
        if response.status_code == 404:
            logger.info(f"UpCloud server {instance_id} already deleted")
            return True
        self._raise_for_status(response, operation="destroy")
        logger.info(f"Deleted UpCloud server {instance_id}")
        return True

    def estimate_cost(self, spec: InstanceSpec) -> CostEstimate:
        return CostEstimate(
            warning=(
                f"Deploying VMs with plan {spec.plan} in zone {spec.zone}. "
                "Check pricing for accurate costs."
            ),
            plan=spec.plan,
            zone=spec.zone,
            pricing_url=PRICING_URL,
        )

    def instance_address(self, instance_id: str) -> str | None:
        response = self._request("GET", f"/server/{instance_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, operation="status")
        return select_address(_server_addresses(self._server_payload(response)))

    @staticmethod
    def _server_body(spec: InstanceSpec) -> dict[str, Any]:
        template = spec.storage_template or DEFAULT_UBUNTU_TEMPLATE
        return {
            "server": {
                "zone": spec.zone,
                "title": spec.title,
                "hostname": f"{spec.title}.local",
                "plan": spec.plan,
                "storage_devices": {
                    "storage_device": [
                        {
                            "action": "clone",
                            "storage": template,
                            "title": f"{spec.title}-disk",
                            "size": spec.disk_size,
                        }
                    ]
                },
                "login_user": {
                    "username": "root",
                    "ssh_keys": {"ssh_key": [spec.public_key]},
                },
            }
        }

    @staticmethod
    def _server_payload(response: requests.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise ProvisioningError(
                f"UpCloud returned a non-JSON response (HTTP {response.status_code})"
            ) from exc
        if not isinstance(data, dict):
            return {}
        server = data.get("server", data)
        return server if isinstance(server, dict) else {}

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}/{API_VERSION}{path}"
        try:
            return self._session.request(method, url, timeout=self.timeout, **kwargs)
        except (Timeout, RequestsConnectionError) as exc:
            raise ProvisioningError(f"Could not reach UpCloud API: {exc}") from exc
        except requests.RequestException as exc:
            raise ProvisioningError(f"UpCloud request failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: requests.Response, operation: str) -> None:
        status = response.status_code
        if status < 400:
            return

        body = response.text or ""
        if status == 401:
            raise AuthenticationError("Invalid UpCloud credentials")
        if status == 403:
            lowered = body.lower()
            if "quota" in lowered:
                raise QuotaExceededError("UpCloud quota exceeded")
            if "credit" in lowered:
                raise ProvisioningError("Insufficient UpCloud credits")
            raise ProvisioningError(f"Access forbidden: {body}")
        if status == 429:
            raise ProvisioningError(f"UpCloud rate limit exceeded during {operation}")
        if status >= 500:
            raise ProvisioningError(
                f"UpCloud service unavailable during {operation} (HTTP {status})"
            )
        raise ProvisioningError(f"UpCloud API error (HTTP {status}): {body}")
