"""Connection profile management commands for vcmigrate CLI.

Profiles store the vCenter server and username only. Passwords are supplied
at connect time (VCMIGRATE_PASSWORD_<PROFILE> or an interactive prompt).
"""

import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from vcmigrate.config_manager import ConfigManager
from vcmigrate.credentials import password_env_var

logger = logging.getLogger(__name__)


def _config_path(ctx: click.Context) -> str | None:
    return (ctx.obj or {}).get("config_path")


@click.group(name="profiles", invoke_without_command=True)
@click.pass_context
def profiles_group(ctx: click.Context) -> None:
    """Manage vCenter connection profiles.

    \b
    Commands:
        list      List profiles (default)
        add       Add or replace a profile
        remove    Delete a profile
    """
    if ctx.invoked_subcommand is None:
        ctx.invoke(list_profiles)


@profiles_group.command(name="list")
@click.pass_context
def list_profiles(ctx: click.Context) -> None:
    """List connection profiles."""
    config = ConfigManager.load_config(_config_path(ctx))

    if not config.profiles:
        click.echo("No connection profiles configured.")
        click.echo("Add one with: vcmigrate profiles add NAME --server HOST --username USER")
        return

    table = Table(title="Connection Profiles")
    table.add_column("Name", style="cyan")
    table.add_column("Server")
    table.add_column("Username")
    table.add_column("Password variable", style="dim")
    for name in sorted(config.profiles):
        profile = config.profiles[name]
        table.add_row(
            name, profile.get("server", ""), profile.get("username", ""), password_env_var(name)
        )
    Console().print(table)


@profiles_group.command(name="add")
@click.argument("name")
@click.option("--server", required=True, help="vCenter server address")
@click.option("--username", required=True, help="vCenter username")
@click.pass_context
def add_profile(ctx: click.Context, name: str, server: str, username: str) -> None:
    """Add or replace connection profile NAME."""
    ConfigManager.set_profile(name, server, username, _config_path(ctx))
    click.echo(f"Saved profile '{name}' ({username}@{server})")


@profiles_group.command(name="remove")
@click.argument("name")
@click.pass_context
def remove_profile(ctx: click.Context, name: str) -> None:
    """Delete connection profile NAME."""
    removed = ConfigManager.delete_profile(name, _config_path(ctx))
    if not removed:
        click.echo(f"Profile '{name}' not found", err=True)
        sys.exit(1)
    click.echo(f"Removed profile '{name}'")


__all__ = ["profiles_group"]
