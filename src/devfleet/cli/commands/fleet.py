"""CLI commands for inspecting and tearing down tracked workspaces.

Implements `devfleet list`, `devfleet status`, `devfleet stop` and
`devfleet remove`.
"""

from __future__ import annotations

import json
import sys

import click
import paramiko
import yaml

from devfleet.cli.commands.deploy import (
    EXIT_DEPLOY_ERROR,
    config_option,
    handle_deployment_errors,
    quiet_option,
    verbose_option,
)
from devfleet.config.loader import load_config
from devfleet.deploy.executor import SSHDeployExecutor
from devfleet.deploy.providers import create_provider
from devfleet.deploy.providers.base import BaseProvider
from devfleet.deploy.state import StateStore
from devfleet.lib.errors import (
    AuthenticationError,
    ConfigError,
    DeploymentError,
    ProviderError,
)
from devfleet.lib.logging_config import get_logger, setup_logging
from devfleet.models.deployment_state import (
    DeploymentKind,
    LifecycleStatus,
    ResourceRecord,
)

logger = get_logger(__name__)


@click.command(name="list")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json", "yaml"]),
    default="table",
    show_default=True,
    help="Output format",
)
@config_option
@verbose_option
def list_deployments(output_format: str, config_path: str, verbose: bool) -> None:
    """List tracked workspaces."""
    setup_logging(verbose=verbose, quiet=not verbose)

    with handle_deployment_errors():
        config = load_config(config_path)
        records = StateStore(config.state_file).read()

        if output_format == "json":
            payload = {n: r.model_dump(mode="json") for n, r in records.items()}
            click.echo(json.dumps(payload, indent=2))
            return
        if output_format == "yaml":
            payload = {n: r.model_dump(mode="json") for n, r in records.items()}
            click.echo(yaml.safe_dump(payload, sort_keys=False), nl=False)
            return

        if not records:
            click.echo("No deployments found")
            return
        _print_table(list(records.values()))


@click.command()
@click.argument("name", required=False)
@config_option
@verbose_option
@quiet_option
def status(name: str | None, config_path: str, verbose: bool, quiet: bool) -> None:
    """Show tracked and provider-reported status of workspaces.

    Example:

        devfleet status

        devfleet status myapp-1
    """
    setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config = load_config(config_path)
        records = _select(
            StateStore(config.state_file).read(), name, all_=name is None
        )
        if not records:
            click.echo("No deployments found")
            return

        provider = create_provider(config.provider)
        click.echo(f"{'NAME':<20} {'ADDRESS':<16} {'TRACKED':<13} PROVIDER")
        for record in records:
            try:
                reported = provider.query_status(record.instance_id).value
            except AuthenticationError:
                raise
            except ProviderError as exc:
                logger.warning(f"{record.name}: status lookup failed: {exc}")
                reported = "error"
            click.echo(
                f"{record.name:<20} {record.address or '-':<16} "
                f"{record.status.value:<13} {reported}"
            )


@click.command()
@click.argument("name", required=False)
@click.option("--all", "all_", is_flag=True, help="Stop every tracked workspace")
@config_option
@verbose_option
@quiet_option
def stop(
    name: str | None, all_: bool, config_path: str, verbose: bool, quiet: bool
) -> None:
    """Stop the containers of NAME (or of every workspace with --all).

    The machines keep running and can be reused by the next deploy.
    """
    setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config = load_config(config_path)
        store = StateStore(config.state_file)
        records = _select(store.read(), name, all_)
        if not records:
            click.echo("No deployments found")
            return

        executor = SSHDeployExecutor.from_config(config, with_registry=False)
        failed = 0
        for record in records:
            try:
                stopped = executor.stop(record)
            except (DeploymentError, paramiko.SSHException, OSError) as exc:
                failed += 1
                click.secho(f"Failed to stop {record.name}: {exc}", fg="red", err=True)
                continue
            store.set_status(record.name, LifecycleStatus.STOPPED)
            if not quiet:
                state = "stopped" if stopped else "was not running"
                click.echo(f"{record.name}: {state}")

        if failed:
            sys.exit(EXIT_DEPLOY_ERROR)


@click.command()
@click.argument("name", required=False)
@click.option("--all", "all_", is_flag=True, help="Remove every tracked workspace")
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
@config_option
@verbose_option
@quiet_option
def remove(
    name: str | None,
    all_: bool,
    force: bool,
    config_path: str,
    verbose: bool,
    quiet: bool,
) -> None:
    """Destroy the machine behind NAME (or every machine with --all).

    Containers are stopped on a best-effort basis, the machine and its
    storage are destroyed, then the record is dropped. Without provider
    credentials only the record is dropped.
    """
    setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config = load_config(config_path)
        store = StateStore(config.state_file)
        records = _select(store.read(), name, all_)
        if not records:
            click.echo("No deployments found")
            return

        if not force:
            names = ", ".join(record.name for record in records)
            if not click.confirm(
                f"Destroy {len(records)} machine(s) ({names})?", default=False
            ):
                click.secho("Remove aborted.", fg="yellow")
                sys.exit(0)

        provider: BaseProvider | None
        try:
            provider = create_provider(config.provider)
        except ConfigError as exc:
            click.secho(
                f"Warning: {exc.message} Machines will not be destroyed.",
                fg="yellow",
                err=True,
            )
            provider = None

        executor = SSHDeployExecutor.from_config(config, with_registry=False)
        failed = 0
        for record in records:
            if provider is not None:
                _stop_quietly(executor, record)
                try:
                    provider.destroy_instance(record.instance_id)
                except AuthenticationError:
                    raise
                except ProviderError as exc:
                    failed += 1
                    click.secho(
                        f"Failed to destroy {record.name}: {exc}", fg="red", err=True
                    )
                    continue
            store.remove(record.name)
            if not quiet:
                click.echo(f"{record.name}: removed")

        if failed:
            sys.exit(EXIT_DEPLOY_ERROR)


def _select(
    records: dict[str, ResourceRecord], name: str | None, all_: bool
) -> list[ResourceRecord]:
    """Resolve a NAME / --all selection against the tracked records.

    Raises:
        click.UsageError: If neither or both were given
        ConfigError: If NAME is not tracked
    """
    if name and all_:
        raise click.UsageError("Pass either NAME or --all, not both")
    if name:
        if name not in records:
            raise ConfigError(field="name", message=f"Deployment '{name}' not found")
        return [records[name]]
    if not all_:
        raise click.UsageError("Specify a deployment NAME or use --all")
    return list(records.values())


def _stop_quietly(executor: SSHDeployExecutor, record: ResourceRecord) -> None:
    try:
        executor.stop(record)
    except (DeploymentError, paramiko.SSHException, OSError) as exc:
        logger.debug(f"{record.name}: could not stop containers: {exc}")


def _print_table(records: list[ResourceRecord]) -> None:
    header = f"{'NAME':<20} {'ADDRESS':<16} {'STATUS':<13} {'KIND':<10} CREATED"
    click.echo(header)
    click.echo("-" * len(header))
    for record in records:
        click.echo(
            f"{record.name:<20} {record.address or '-':<16} "
            f"{record.status.value:<13} {record.kind.value:<10} "
            f"{record.created_at.isoformat(timespec='seconds')}"
        )
        if record.kind == DeploymentKind.STACK:
            for index, container in enumerate(record.containers):
                prefix = "└─" if index == len(record.containers) - 1 else "├─"
                click.echo(
                    f"  {prefix} {container.service:<15} {container.status:<12} "
                    f"{container.image}"
                )
