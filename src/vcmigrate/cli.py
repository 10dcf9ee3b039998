"""vcmigrate command-line interface.

Entry point for the ``vcmigrate`` console script. Global options are stored
on the click context; each command loads configuration through
``cli_helpers.load_settings``.
"""

import logging

import click

from vcmigrate import __version__
from vcmigrate.click_group import VCMigrateGroup
from vcmigrate.commands import (
    configure_command,
    exec_command,
    health_command,
    inventory_command,
    profiles_group,
    run_script_command,
)
from vcmigrate.shell_dialect import POSIX_SHELL, POWERSHELL


@click.group(
    cls=VCMigrateGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)
@click.option("--config", "config_path", type=click.Path(), help="Config file path")
@click.option(
    "--shell",
    type=click.Choice([POWERSHELL.name, POSIX_SHELL.name]),
    help="Shell dialect to drive (overrides config)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, shell: str | None, verbose: bool) -> None:
    """vcmigrate - vCenter migration automation over a persistent PowerShell session.

    \b
    SESSION COMMANDS:
        health        Start a shell session and report its health
        exec          Run one command in a fresh session
        configure     Run the PowerCLI configuration pipeline

    \b
    VCENTER COMMANDS:
        inventory     Connect with a profile and summarize the inventory
        run-script    Run a .ps1 migration script with named parameters
        profiles      Manage connection profiles (list, add, remove)

    \b
    CONFIGURATION:
        Config file: ~/.vcmigrate/config.toml
        Environment: VCMIGRATE_SHELL, VCMIGRATE_COMMAND_TIMEOUT,
                     VCMIGRATE_PASSWORD_<PROFILE>

    For help on any command: vcmigrate <command> --help
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["shell"] = shell

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


main.add_command(health_command)
main.add_command(exec_command)
main.add_command(configure_command)
main.add_command(inventory_command)
main.add_command(run_script_command)
main.add_command(profiles_group)


if __name__ == "__main__":
    main()
