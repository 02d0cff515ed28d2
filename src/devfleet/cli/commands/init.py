"""Click command for creating a DevFleet configuration file.

This module implements the 'devfleet init' command which writes a
config/dev.yml template for the current project.
"""

import sys
from pathlib import Path

import click

from devfleet.config.defaults import CONFIG_TEMPLATE, DEFAULT_CONFIG_PATH


@click.command(name="init")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Where to write the configuration",
)
@click.option(
    "--service",
    default=None,
    help="Service name to put in the template",
)
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing configuration file",
)
def init(config_path: str, service: str | None, force: bool) -> None:
    """Create a configuration template for DevFleet.

    Example:

        devfleet init

        devfleet init --service myapp-dev --force
    """
    path = Path(config_path)
    if path.exists() and not force:
        if not click.confirm(f"{path} already exists. Overwrite?", default=False):
            click.secho("Init aborted.", fg="yellow")
            sys.exit(0)

    content = CONFIG_TEMPLATE
    if service:
        content = content.replace("service: myapp-dev", f"service: {service}", 1)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")

    click.secho(f"Created {path}", fg="green", bold=True)
    click.echo()
    click.secho("Next steps:", bold=True)
    click.echo(f"  1. Edit {path} for your project")
    click.echo("  2. Export UPCLOUD_USERNAME and UPCLOUD_PASSWORD")
    click.echo("  3. Put secrets in .devfleet/secrets (export KEY=value)")
    click.echo("  4. Deploy: devfleet deploy --count 3")
