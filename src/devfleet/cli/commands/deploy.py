"""CLI commands for building images and deploying workspaces.

Implements `devfleet deploy`, `devfleet build` and `devfleet push`.
"""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import click

from devfleet.config.defaults import DEFAULT_CONFIG_PATH
from devfleet.config.loader import load_config
from devfleet.deploy.builder import (
    ContainerBuilder,
    TagStrategy,
    generate_tag,
    image_name,
)
from devfleet.deploy.compose import ComposeParser
from devfleet.deploy.devcontainer import DevcontainerParser
from devfleet.deploy.executor import SSHDeployExecutor
from devfleet.deploy.naming import NamingPattern
from devfleet.deploy.poller import ReadinessPoller
from devfleet.deploy.providers import create_provider
from devfleet.deploy.reconciler import ReconcilePlan, ReconcileResult, Reconciler
from devfleet.deploy.secrets import SecretsLoader
from devfleet.deploy.state import StateStore
from devfleet.lib.errors import (
    BatchDeploymentError,
    ConfigError,
    DeploymentError,
    LockTimeoutError,
    ProviderError,
    RegistryError,
    SecretsError,
)
from devfleet.lib.logging_config import get_logger, setup_logging
from devfleet.models.config import BuildSourceType, DevConfig
from devfleet.models.deployment_state import DeploymentKind
from devfleet.models.provider import InstanceSpec
from devfleet.models.run_spec import RunSpec, StackSpec

logger = get_logger(__name__)

EXIT_CONFIG_ERROR = 2
EXIT_DEPLOY_ERROR = 3
EXIT_PARTIAL_SUCCESS = 4

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Path to the configuration file",
)
verbose_option = click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose debug logging"
)
quiet_option = click.option(
    "--quiet", "-q", is_flag=True, help="Suppress progress output"
)


@contextmanager
def handle_deployment_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in commands.

    Exit codes:
        2: Configuration error
        3: Deployment, provider or state error
    """
    try:
        yield
    except click.ClickException:
        raise
    except (ConfigError, SecretsError) as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except BatchDeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho("Error: all deployments failed", fg="red", err=True)
        for failure in e.failures:
            click.echo(f"  {failure.name} ({failure.stage}): {failure.message}", err=True)
        sys.exit(EXIT_DEPLOY_ERROR)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(EXIT_DEPLOY_ERROR)
    except (ProviderError, LockTimeoutError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(EXIT_DEPLOY_ERROR)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(EXIT_DEPLOY_ERROR)


@click.command()
@click.option(
    "--count",
    "-n",
    type=click.IntRange(min=1),
    default=None,
    help="Number of workspaces (defaults to vms.count)",
)
@click.option(
    "--from",
    "from_path",
    type=click.Path(),
    default=None,
    help="Path to devcontainer.json (overrides config)",
)
@click.option("--tag", type=str, default=None, help="Image tag (defaults to a timestamp)")
@click.option("--skip-build", is_flag=True, help="Use an already built image")
@click.option("--skip-push", is_flag=True, help="Do not push the built image")
@click.option("--yes", "-y", is_flag=True, help="Skip the cost confirmation prompt")
@click.option(
    "--dry-run", is_flag=True, help="Show what would be done without executing"
)
@config_option
@verbose_option
@quiet_option
def deploy(
    count: int | None,
    from_path: str | None,
    tag: str | None,
    skip_build: bool,
    skip_push: bool,
    yes: bool,
    dry_run: bool,
    config_path: str,
    verbose: bool,
    quiet: bool,
) -> None:
    """Deploy COUNT workspaces, reusing machines that already exist.

    Reruns are idempotent: tracked machines are reused and only the shortfall
    is provisioned.

    Example:

        devfleet deploy --count 3

        devfleet deploy --from .devcontainer/devcontainer.json --yes
    """
    setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config = load_config(config_path)
        count = count or config.vms.count

        store = StateStore(config.state_file)
        naming = NamingPattern(config.service, config.naming.pattern)
        provider = create_provider(config.provider)
        poller = ReadinessPoller(
            provider,
            timeout=config.provisioning.poll_timeout,
            interval=config.provisioning.poll_interval,
        )
        reconciler = Reconciler(
            store,
            provider,
            poller,
            max_workers=config.provisioning.max_parallel,
            reuse_failed=config.provisioning.reuse_failed,
        )
        plan = reconciler.plan(store.read(), naming, count)
        template = _instance_template(config)

        if not quiet:
            _display_plan(config, count, plan)

        if dry_run:
            click.secho("[DRY RUN] No machines were created", fg="yellow")
            sys.exit(0)

        if plan.needs_provider and not yes:
            estimate = provider.estimate_cost(template)
            click.echo()
            click.secho("Cost Estimate", bold=True)
            click.echo(f"  {len(plan.create)} x {estimate.plan} in {estimate.zone}")
            click.echo(f"  {estimate.warning}")
            click.echo(f"  Pricing:   {estimate.pricing_url}")
            click.echo()
            if not click.confirm("Continue with deployment?", default=False):
                click.secho("Deployment aborted.", fg="yellow")
                sys.exit(0)

        target, kind = resolve_target(
            config,
            from_path=from_path,
            tag=tag,
            skip_build=skip_build,
            skip_push=skip_push,
        )
        executor = SSHDeployExecutor.from_config(config)

        result = reconciler.reconcile(
            config.service,
            count,
            template=template,
            deploy=executor.deployer_for(target),
            naming=naming,
            kind=kind,
        )
        _display_result(result, quiet)
        if result.failed:
            sys.exit(EXIT_PARTIAL_SUCCESS)


@click.command()
@click.option("--tag", type=str, default=None, help="Image tag (defaults to a timestamp)")
@click.option("--dockerfile", type=str, default=None, help="Dockerfile (overrides config)")
@click.option("--context", "build_context", type=str, default=None, help="Build context")
@click.option("--skip-push", is_flag=True, help="Do not push the built image")
@click.option("--no-cache", is_flag=True, help="Build without using cache")
@config_option
@verbose_option
@quiet_option
def build(
    tag: str | None,
    dockerfile: str | None,
    build_context: str | None,
    skip_push: bool,
    no_cache: bool,
    config_path: str,
    verbose: bool,
    quiet: bool,
) -> None:
    """Build the workspace image and push it to the registry.

    Example:

        devfleet build

        devfleet build --tag v1.0.0 --skip-push
    """
    setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config = load_config(config_path)
        source_dockerfile, source_context = build_source(config)
        dockerfile = dockerfile or source_dockerfile
        context = Path(build_context) if build_context else source_context

        image_ref = build_and_push(
            config,
            context=context,
            dockerfile=dockerfile,
            tag=tag,
            push=not skip_push,
            no_cache=no_cache,
            quiet=quiet,
        )

        if quiet:
            click.echo(image_ref)
            return
        click.echo()
        click.secho("Build Successful!", fg="green", bold=True)
        click.echo(f"  Image:    {image_ref}")
        click.echo(f"  Pushed:   {'no' if skip_push else 'yes'}")
        click.echo()


@click.command()
@click.argument("image", required=False)
@click.option("--tag", type=str, default=None, help="Tag of the image to push")
@config_option
@verbose_option
@quiet_option
def push(
    image: str | None,
    tag: str | None,
    config_path: str,
    verbose: bool,
    quiet: bool,
) -> None:
    """Push IMAGE (or the service image at --tag) to the registry.

    Example:

        devfleet push ghcr.io/me/myapp-dev:1700000000

        devfleet push --tag abc123f
    """
    setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config = load_config(config_path)
        if image:
            name, image_tag = split_reference(image)
        elif tag:
            name = image_name(
                config.registry.server,
                config.registry.resolve_username(),
                config.service,
            )
            image_tag = tag
        else:
            raise click.UsageError("Pass an IMAGE reference or --tag")

        builder = ContainerBuilder()
        registry_login(builder, config)
        image_ref = builder.push(name, image_tag)

        if quiet:
            click.echo(image_ref)
            return
        click.secho("Push Successful!", fg="green", bold=True)
        click.echo(f"  Image:    {image_ref}")


def resolve_target(
    config: DevConfig,
    *,
    from_path: str | None = None,
    tag: str | None = None,
    skip_build: bool = False,
    skip_push: bool = False,
) -> tuple[RunSpec | StackSpec, DeploymentKind]:
    """Work out what runs on each machine.

    A devcontainer that references a compose file becomes a stack whose main
    service image is built and pushed first. Any other devcontainer becomes a
    single container. Without a devcontainer the configured image is run,
    after building it when ``build.dockerfile`` is set.

    Raises:
        ConfigError: If the manifests are unusable
    """
    secrets = SecretsLoader(config.secrets_file).load_for(config.secrets)

    devcontainer_path = from_path
    if devcontainer_path is None and config.uses_devcontainer_json:
        devcontainer_path = config.devcontainer_path

    if devcontainer_path:
        parser = DevcontainerParser(devcontainer_path)
        compose_path = parser.compose_file_path
        if compose_path is None:
            return parser.parse(secrets=secrets), DeploymentKind.CONTAINER

        compose = ComposeParser(compose_path)
        main = compose.main_service
        if skip_build:
            if not tag:
                raise ConfigError(
                    field="--tag",
                    message="--skip-build needs --tag to select the existing image",
                )
            image = _service_image(config, tag)
        else:
            if not compose.has_build_section(main):
                raise ConfigError(
                    field=str(compose_path),
                    message=(
                        f"Main service '{main}' has no build section. "
                        "Use --skip-build with an existing image."
                    ),
                )
            image = build_and_push(
                config,
                context=compose_path.parent / compose.service_build_context(main),
                dockerfile=compose.service_dockerfile(main),
                tag=tag,
                push=not skip_push,
            )
        return compose.stack_spec(image), DeploymentKind.STACK

    image = config.image
    if config.build and config.build.dockerfile and not skip_build:
        image = build_and_push(
            config,
            context=Path(config.build.context),
            dockerfile=config.build.dockerfile,
            tag=tag,
            push=not skip_push,
        )
    return RunSpec(image=image, secrets=secrets), DeploymentKind.CONTAINER


def build_source(config: DevConfig) -> tuple[str, Path]:
    """Return the Dockerfile and build context configured for ``config``."""
    build_config = config.build
    if build_config and build_config.source_type == BuildSourceType.DOCKERFILE:
        return build_config.dockerfile or "Dockerfile", Path(build_config.context)

    if config.uses_devcontainer_json:
        parser = DevcontainerParser(config.devcontainer_path)
        compose_path = parser.compose_file_path
        if compose_path is None:
            raise ConfigError(
                field="build",
                message=(
                    "Building from a devcontainer without a compose file is not "
                    "supported. Use build.dockerfile instead."
                ),
            )
        compose = ComposeParser(compose_path)
        main = compose.main_service
        return (
            compose.service_dockerfile(main),
            compose_path.parent / compose.service_build_context(main),
        )

    return "Dockerfile", Path(build_config.context if build_config else ".")


def build_and_push(
    config: DevConfig,
    *,
    context: Path,
    dockerfile: str,
    tag: str | None = None,
    push: bool = True,
    no_cache: bool = False,
    quiet: bool = False,
) -> str:
    """Build the service image and optionally push it.

    Returns:
        The full image reference
    """
    name = image_name(
        config.registry.server, config.registry.resolve_username(), config.service
    )
    image_tag = tag or generate_tag(TagStrategy.TIMESTAMP)

    builder = ContainerBuilder()
    if push:
        registry_login(builder, config)

    if not quiet:
        click.echo(f"Building image {name}:{image_tag}...")
    build_kwargs = {"nocache": True} if no_cache else {}
    result = builder.build(
        build_context=str(context),
        image_name=name,
        tag=image_tag,
        dockerfile=dockerfile,
        **build_kwargs,
    )
    if push:
        if not quiet:
            click.echo(f"Pushing image {result.full_name}...")
        builder.push(name, image_tag)
    return result.full_name


def registry_login(builder: ContainerBuilder, config: DevConfig) -> None:
    """Log the local daemon in to the configured registry.

    Raises:
        RegistryError: If credentials are not configured or not exported
    """
    registry = config.registry
    if not registry.configured:
        raise RegistryError(
            "Registry credentials not configured. Set registry.username and "
            "registry.password to the names of environment variables."
        )
    username = registry.resolve_username()
    password = registry.resolve_password()
    if not username or not password:
        raise RegistryError(
            f"Registry credentials not found. Export {registry.username} and "
            f"{registry.password}."
        )
    builder.login(registry.server, username, password)


def split_reference(reference: str) -> tuple[str, str]:
    """Split ``name:tag``; a reference without a tag gets ``latest``.

    Example:
        >>> split_reference("localhost:5000/app:v1")
        ('localhost:5000/app', 'v1')
    """
    name, sep, tag = reference.rpartition(":")
    if not sep or "/" in tag:
        return reference, "latest"
    return name, tag


def _service_image(config: DevConfig, tag: str) -> str:
    name = image_name(
        config.registry.server, config.registry.resolve_username(), config.service
    )
    return f"{name}:{tag}"


def _instance_template(config: DevConfig) -> InstanceSpec:
    key_path = Path(config.ssh.public_key_path)
    if not key_path.is_file():
        raise ConfigError(
            field="ssh.key_path",
            message=(
                f"SSH public key not found at {key_path}. Generate one with "
                "`ssh-keygen -t ed25519` or point ssh.key_path at an existing key."
            ),
        )
    return InstanceSpec(
        zone=config.provider.zone,
        plan=config.provider.plan,
        title=config.service,
        public_key=key_path.read_text(encoding="utf-8").strip(),
        storage_template=config.provider.storage_template,
        disk_size=config.provider.disk_size,
    )


def _display_plan(config: DevConfig, count: int, plan: ReconcilePlan) -> None:
    click.echo()
    click.secho("Deploy Configuration:", bold=True)
    click.echo(f"  Service:   {config.service}")
    click.echo(f"  Count:     {count}")
    click.echo(f"  Provider:  {config.provider.type.value}")
    click.echo(f"  Plan:      {config.provider.plan} ({config.provider.zone})")
    click.echo(
        f"  Reuse:     {', '.join(r.name for r in plan.reuse) if plan.reuse else '-'}"
    )
    click.echo(f"  Create:    {', '.join(plan.create) if plan.create else '-'}")
    click.echo()


def _display_result(result: ReconcileResult, quiet: bool) -> None:
    if quiet:
        for record in result.succeeded:
            click.echo(f"{record.name} {record.address or ''}".rstrip())
        return

    click.echo()
    if result.failed:
        click.secho("Deployment Partially Successful", fg="yellow", bold=True)
    else:
        click.secho("Deployment Successful!", fg="green", bold=True)
    for record in result.succeeded:
        services = ", ".join(c.service for c in record.containers)
        click.echo(f"  {record.name:<20} {record.address or '-':<16} {services}")
    for failure in result.failed:
        click.secho(
            f"  {failure.name:<20} failed during {failure.stage}: {failure.message}",
            fg="red",
        )
    click.echo()
