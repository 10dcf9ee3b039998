"""Inventory command for the vcmigrate CLI."""

import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from vcmigrate.cli_helpers import build_stack, load_settings, prompt_password
from vcmigrate.credentials import ConfigCredentialProvider
from vcmigrate.inventory_service import InventoryService
from vcmigrate.models.inventory import InventorySnapshot

logger = logging.getLogger(__name__)


def build_statistics_table(snapshot: InventorySnapshot) -> Table:
    """Build the summary table for one snapshot."""
    stats = snapshot.statistics
    table = Table(title=f"Inventory: {snapshot.vcenter_name} ({snapshot.vcenter_version})")
    table.add_column("Object", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Datacenters", str(stats.datacenter_count))
    table.add_row("Clusters", str(stats.cluster_count))
    table.add_row("Hosts", str(stats.host_count))
    table.add_row("Datastores", str(stats.datastore_count))
    table.add_row(
        "Virtual machines",
        f"{stats.virtual_machine_count} ({stats.powered_on_vms} on, {stats.powered_off_vms} off)",
    )
    table.add_row("Resource pools", str(stats.resource_pool_count))
    table.add_row("Host CPU cores", str(stats.total_cpu_cores))
    table.add_row("Host memory", f"{stats.total_memory_gb:.1f} GB")
    table.add_row(
        "Datastore usage",
        f"{stats.total_datastore_used_gb:.1f} / {stats.total_datastore_capacity_gb:.1f} GB",
    )
    return table


@click.command(name="inventory")
@click.argument("profile")
@click.option("--key", "connection_key", default="source", show_default=True, help="Connection key")
@click.option("--refresh", is_flag=True, help="Discard any cached snapshot before loading")
@click.option("--bypass", is_flag=True, help="Skip PowerCLI module checks")
@click.pass_context
def inventory_command(
    ctx: click.Context, profile: str, connection_key: str, refresh: bool, bypass: bool
) -> None:
    """Connect using PROFILE and summarize the vCenter inventory.

    The password is read from VCMIGRATE_PASSWORD_<PROFILE> or prompted for.
    """
    config = load_settings(ctx)
    stack = build_stack(config)
    provider = ConfigCredentialProvider(config, prompt=prompt_password)
    console = Console()

    with stack.connection_service() as connections:
        result = connections.connect_with_provider(
            profile, provider, connection_key=connection_key, bypass_module_check=bypass
        )

        if not result.success:
            click.echo(f"Connection failed: {result.message}", err=True)
            sys.exit(1)

        inventory = InventoryService(connections, command_timeout=config.command_timeout)
        inventory.attach(connections)
        server = connections.get_connection_info(connection_key).server_address
        if refresh:
            snapshot = inventory.refresh_inventory(server, connection_key)
        else:
            snapshot = inventory.get_cached_inventory(server) or inventory.load_inventory(
                server, connection_key
            )

        console.print(build_statistics_table(snapshot))
        for omission in snapshot.omissions:
            console.print(f"[yellow]Incomplete:[/yellow] {omission}")


__all__ = ["build_statistics_table", "inventory_command"]
