"""Script execution command for the vcmigrate CLI.

Runs a migration .ps1 file inside a connected, PowerCLI-configured session.
"""

import json
import logging
import sys

import click

from vcmigrate.cli_helpers import build_stack, load_settings, prompt_password
from vcmigrate.command_channel import ERROR_PREFIX
from vcmigrate.credentials import ConfigCredentialProvider

logger = logging.getLogger(__name__)


def _parse_parameters(
    ctx: click.Context, param: click.Parameter, values: tuple[str, ...]
) -> dict[str, str]:
    """Turn repeated NAME=VALUE options into a dict (last one wins)."""
    parameters: dict[str, str] = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected NAME=VALUE, got '{item}'")
        parameters[name] = value
    return parameters


@click.command(name="run-script")
@click.argument("profile")
@click.argument("script", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--param",
    "-p",
    "parameters",
    multiple=True,
    callback=_parse_parameters,
    help="Script parameter as NAME=VALUE (repeatable)",
)
@click.option("--switch", "switches", multiple=True, help="Switch parameter set to $true (repeatable)")
@click.option("--key", "connection_key", default="source", show_default=True, help="Connection key")
@click.option("--timeout", type=float, help="Script timeout in seconds")
@click.option("--json", "as_json", is_flag=True, help="Decode JSON output and pretty-print the records")
@click.option("--bypass", is_flag=True, help="Skip PowerCLI module checks")
@click.pass_context
def run_script_command(
    ctx: click.Context,
    profile: str,
    script: str,
    parameters: dict[str, str],
    switches: tuple[str, ...],
    connection_key: str,
    timeout: float | None,
    as_json: bool,
    bypass: bool,
) -> None:
    """Connect using PROFILE and run SCRIPT with named parameters.

    \b
    Examples:
        vcmigrate run-script lab ./Get-VmsForMigration.ps1 -p ClusterName=Prod --json
        vcmigrate run-script lab ./Move-VM.ps1 -p VMName=web01 --switch WhatIf
    """
    config = load_settings(ctx)
    stack = build_stack(config)
    provider = ConfigCredentialProvider(config, prompt=prompt_password)
    script_parameters: dict[str, str | bool] = {**parameters, **{name: True for name in switches}}

    with stack.connection_service() as connections:
        result = connections.connect_with_provider(
            profile, provider, connection_key=connection_key, bypass_module_check=bypass
        )
        if not result.success:
            click.echo(f"Connection failed: {result.message}", err=True)
            sys.exit(1)

        if as_json:
            records = connections.run_script_records(
                connection_key, script, script_parameters, timeout
            )
            click.echo(json.dumps(records, indent=2))
            return

        output = connections.run_script(connection_key, script, script_parameters, timeout)

    if output.startswith(ERROR_PREFIX):
        click.echo(output, err=True)
        sys.exit(1)
    if output:
        click.echo(output)


__all__ = ["run_script_command"]
