"""Run containers and compose stacks on provisioned machines over SSH.

Commands are executed with paramiko. Every ``docker`` invocation is built as
an argv list and quoted with ``shlex.join``; the registry password is fed on
stdin and never appears in a command line.
"""

from __future__ import annotations

import io
import json
import shlex
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import paramiko

from devfleet.lib.errors import DeploymentError, RegistryError
from devfleet.lib.logging_config import get_logger
from devfleet.models.config import DevConfig
from devfleet.models.deployment_state import (
    ContainerRecord,
    DeploymentKind,
    ResourceRecord,
)
from devfleet.models.run_spec import RunSpec, StackSpec

logger = get_logger(__name__)

REMOTE_COMPOSE_PATH = "/root/compose.yaml"
DOCKER_INSTALL_SCRIPT = "https://get.docker.com"

SSH_MAX_RETRIES = 12
SSH_INITIAL_DELAY = 5.0
SSH_MAX_DELAY = 30.0


@dataclass
class CommandResult:
    """Outcome of a remote command."""

    command: str
    exit_status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


@dataclass
class RegistryLogin:
    """Resolved registry credentials."""

    server: str
    username: str
    password: str


class SSHDeployExecutor:
    """Deploy containers and stacks to machines reachable over SSH.

    Example:
        >>> executor = SSHDeployExecutor.from_config(config)
        >>> deploy = executor.deployer_for(run_spec)
        >>> deploy(record)
        [ContainerRecord(service='myapp-1', image='ruby:3.2', status='running', ...)]
    """

    def __init__(
        self,
        user: str = "root",
        key_path: str | None = None,
        connect_timeout: float = 5.0,
        registry: RegistryLogin | None = None,
        *,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the executor.

        Args:
            user: Remote user
            key_path: Private key file (falls back to the SSH agent)
            connect_timeout: TCP and banner timeout in seconds
            registry: Credentials for pulling private images
            client_factory: Builds SSH clients (overridable for tests)
            sleep: Sleep function used between connection attempts
        """
        self.user = user
        self.key_path = key_path
        self.connect_timeout = connect_timeout
        self.registry = registry
        self._client_factory = client_factory
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, config: DevConfig, with_registry: bool = True
    ) -> SSHDeployExecutor:
        """Build an executor from config.

        Raises:
            RegistryError: If registry login is configured but the named
                environment variables are unset
        """
        registry = None
        if with_registry and config.registry.configured:
            username = config.registry.resolve_username()
            password = config.registry.resolve_password()
            if not username or not password:
                raise RegistryError(
                    f"Registry credentials not set. Export {config.registry.username} "
                    f"and {config.registry.password}."
                )
            registry = RegistryLogin(
                server=config.registry.server, username=username, password=password
            )
        return cls(
            user=config.ssh.user,
            key_path=config.ssh.private_key_path,
            connect_timeout=config.ssh.connect_timeout,
            registry=registry,
        )

    @contextmanager
    def connect(self, host: str) -> Iterator[paramiko.SSHClient]:
        client = self._client_factory()
        # Machines are brand new; their host keys cannot be known in advance.
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        key_filename = (
            self.key_path if self.key_path and Path(self.key_path).exists() else None
        )
        try:
            client.connect(
                host,
                username=self.user,
                key_filename=key_filename,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
            )
            yield client
        finally:
            client.close()

    def run(
        self,
        client: paramiko.SSHClient,
        command: list[str] | str,
        *,
        check: bool = True,
        stdin_data: str | None = None,
    ) -> CommandResult:
        """Run ``command`` and wait for it to finish.

        Raises:
            DeploymentError: If ``check`` is set and the exit status is non-zero
        """
        line = command if isinstance(command, str) else shlex.join(command)
        logger.debug(f"ssh: {line}")
        stdin, stdout, stderr = client.exec_command(line)
        if stdin_data is not None:
            stdin.write(stdin_data)
            stdin.flush()
            stdin.channel.shutdown_write()
        exit_status = stdout.channel.recv_exit_status()
        result = CommandResult(
            command=line,
            exit_status=exit_status,
            stdout=stdout.read().decode("utf-8", errors="replace"),
            stderr=stderr.read().decode("utf-8", errors="replace"),
        )
        if check and not result.ok:
            raise DeploymentError(
                operation="ssh",
                message=(
                    f"`{line}` exited with {exit_status}: "
                    f"{result.stderr.strip() or result.stdout.strip()}"
                ),
            )
        return result

    def wait_for_ssh(
        self,
        host: str,
        max_retries: int = SSH_MAX_RETRIES,
        initial_delay: float = SSH_INITIAL_DELAY,
        max_delay: float = SSH_MAX_DELAY,
    ) -> None:
        """Block until ``host`` accepts SSH connections.

        A machine reported as started by the provider usually needs a little
        longer before sshd is up. Delays double up to ``max_delay``.

        Raises:
            DeploymentError: If every attempt failed
        """
        delay = initial_delay
        for attempt in range(1, max_retries + 1):
            try:
                with self.connect(host) as client:
                    self.run(client, ["true"])
                logger.debug(f"{host}: SSH ready after {attempt} attempt(s)")
                return
            except (paramiko.SSHException, OSError) as exc:
                if attempt == max_retries:
                    raise DeploymentError(
                        operation="ssh",
                        message=(
                            f"{host} not reachable over SSH after "
                            f"{max_retries} attempts: {exc}"
                        ),
                    ) from exc
                logger.debug(f"{host}: SSH not ready ({exc}), retrying in {delay:g}s")
                self._sleep(delay)
                delay = min(delay * 2, max_delay)

    def bootstrap(self, client: paramiko.SSHClient) -> None:
        """Install Docker and the compose plugin if they are missing."""
        if not self.run(client, "command -v docker", check=False).ok:
            logger.info("Installing Docker on remote machine")
            self.run(client, f"curl -fsSL {DOCKER_INSTALL_SCRIPT} | sh")
            self.run(client, ["systemctl", "enable", "--now", "docker"])

        if not self.run(client, ["docker", "compose", "version"], check=False).ok:
            logger.info("Installing docker-compose-plugin on remote machine")
            self.run(client, ["apt-get", "update"], check=False)
            self.run(client, ["apt-get", "install", "-y", "docker-compose-plugin"])

    def login_registry(self, client: paramiko.SSHClient) -> None:
        if self.registry is None:
            return
        result = self.run(
            client,
            [
                "docker",
                "login",
                self.registry.server,
                "-u",
                self.registry.username,
                "--password-stdin",
            ],
            check=False,
            stdin_data=self.registry.password,
        )
        if not result.ok:
            raise RegistryError(
                f"docker login to {self.registry.server} failed: {result.stderr.strip()}"
            )

    def run_container(
        self, client: paramiko.SSHClient, name: str, spec: RunSpec
    ) -> list[ContainerRecord]:
        """Replace any container called ``name`` with a fresh one from ``spec``."""
        self.run(client, ["docker", "rm", "-f", name], check=False)
        self.run(client, spec.docker_run_command(name))
        state = self.run(
            client,
            ["docker", "inspect", "-f", "{{.State.Status}}", name],
            check=False,
        )
        status = state.stdout.strip() if state.ok else "unknown"
        return [ContainerRecord(service=name, image=spec.image, status=status, name=name)]

    def deploy_stack(
        self, client: paramiko.SSHClient, stack: StackSpec
    ) -> list[ContainerRecord]:
        """Upload the compose file, start the stack and report its containers."""
        with client.open_sftp() as sftp:
            sftp.putfo(io.BytesIO(stack.compose_yaml.encode("utf-8")), REMOTE_COMPOSE_PATH)
        compose = ["docker", "compose", "-f", REMOTE_COMPOSE_PATH]
        self.run(client, [*compose, "up", "-d"])
        ps = self.run(client, [*compose, "ps", "--format", "json"])
        return parse_compose_ps(ps.stdout)

    def stop(self, record: ResourceRecord) -> bool:
        """Stop whatever runs on ``record``'s machine.

        Returns:
            True if something was stopped
        """
        if not record.address:
            return False
        with self.connect(record.address) as client:
            if record.kind == DeploymentKind.STACK:
                result = self.run(
                    client,
                    ["docker", "compose", "-f", REMOTE_COMPOSE_PATH, "stop"],
                    check=False,
                )
                return result.ok
            running = self.run(
                client,
                ["docker", "ps", "-q", "-f", f"name=^{record.name}$"],
                check=False,
            )
            if not running.stdout.strip():
                return False
            self.run(client, ["docker", "stop", record.name])
            return True

    def deployer_for(
        self, spec: RunSpec | StackSpec
    ) -> Callable[[ResourceRecord], list[ContainerRecord]]:
        """Return a per-machine deploy callback for the reconciler."""

        def _deploy(record: ResourceRecord) -> list[ContainerRecord]:
            if not record.address:
                raise DeploymentError(
                    operation="deploy", message=f"{record.name} has no address"
                )
            self.wait_for_ssh(record.address)
            with self.connect(record.address) as client:
                self.bootstrap(client)
                self.login_registry(client)
                if isinstance(spec, StackSpec):
                    return self.deploy_stack(client, spec)
                return self.run_container(client, record.name, spec)

        return _deploy


def parse_compose_ps(output: str) -> list[ContainerRecord]:
    """Parse ``docker compose ps --format json`` output.

    Newer Compose releases print one JSON object per line; older ones print
    a single array. Unparseable lines are skipped.
    """
    text = output.strip()
    if not text:
        return []

    entries: list[dict] = []
    if text.startswith("["):
        try:
            entries = [e for e in json.loads(text) if isinstance(e, dict)]
        except json.JSONDecodeError:
            logger.warning("Could not parse compose ps output")
    else:
        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping unparseable compose ps line: {line[:80]}")
                continue
            if isinstance(entry, dict):
                entries.append(entry)

    return [
        ContainerRecord(
            service=str(entry.get("Service", "")),
            image=str(entry.get("Image", "")),
            status=str(entry.get("State", "unknown")),
            name=entry.get("Name"),
        )
        for entry in entries
    ]
