"""DevFleet command line entry point."""

import click

from devfleet import __version__
from devfleet.cli.commands.deploy import build, deploy, push
from devfleet.cli.commands.fleet import list_deployments, remove, status, stop
from devfleet.cli.commands.init import init


@click.group(invoke_without_command=True)
@click.version_option(__version__, prog_name="devfleet")
@click.pass_context
def main(ctx: click.Context) -> None:
    """DevFleet - ephemeral development environments on cloud VMs.

    Provision machines, run your devcontainer on each of them and tear them
    down again when you are done.
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


main.add_command(init)
main.add_command(build)
main.add_command(push)
main.add_command(deploy)
main.add_command(list_deployments)
main.add_command(status)
main.add_command(stop)
main.add_command(remove)


if __name__ == "__main__":
    main()
