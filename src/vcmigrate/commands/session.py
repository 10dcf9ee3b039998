"""Shell session commands for the vcmigrate CLI.

health     Start a session and report its health
exec       Run one command in a fresh session
configure  Run the PowerCLI configuration pipeline and show each stage
"""

import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from vcmigrate.cli_helpers import build_stack, load_settings
from vcmigrate.command_channel import is_channel_error

logger = logging.getLogger(__name__)


@click.command(name="health")
@click.pass_context
def health_command(ctx: click.Context) -> None:
    """Start a shell session and report its health."""
    stack = build_stack(load_settings(ctx))
    session = stack.session_manager.create_session()

    try:
        info = stack.session_manager.get_health(session)
    finally:
        stack.session_manager.terminate_session(session, stack.config.terminate_timeout)

    table = Table(title="Shell Session Health")
    table.add_column("Property", style="cyan")
    table.add_column("Value")
    table.add_row("Executable", session.executable)
    table.add_row("Process ID", info.process_id)
    table.add_row("State", str(info.state))
    table.add_row("Status", info.status)
    table.add_row("Memory", f"{info.memory_usage_bytes / (1024 * 1024):.1f} MB")
    table.add_row("Runtime", f"{info.runtime.total_seconds():.2f}s")
    Console().print(table)

    sys.exit(0 if info.is_healthy else 1)


@click.command(name="exec")
@click.argument("command")
@click.option("--timeout", type=float, help="Command timeout in seconds")
@click.pass_context
def exec_command(ctx: click.Context, command: str, timeout: float | None) -> None:
    """Run COMMAND in a fresh shell session and print its output.

    \b
    Examples:
        vcmigrate exec '$PSVersionTable.PSVersion'
        vcmigrate --shell posix exec 'uname -a'
    """
    config = load_settings(ctx)
    stack = build_stack(config)
    session = stack.session_manager.create_session()

    try:
        output = stack.channel.execute(session, command, timeout or config.command_timeout)
    finally:
        stack.session_manager.terminate_session(session, config.terminate_timeout)

    if is_channel_error(output):
        click.echo(output, err=True)
        sys.exit(1)
    if output:
        click.echo(output)


@click.command(name="configure")
@click.option("--bypass", is_flag=True, help="Skip PowerCLI module checks")
@click.pass_context
def configure_command(ctx: click.Context, bypass: bool) -> None:
    """Configure PowerCLI in a fresh session and report each stage."""
    stack = build_stack(load_settings(ctx))
    session = stack.session_manager.create_session()

    try:
        result = stack.configurator.configure(session, bypass_module_check=bypass)
    finally:
        stack.session_manager.terminate_session(session, stack.config.terminate_timeout)

    table = Table(title="PowerCLI Configuration")
    table.add_column("Stage", style="cyan")
    table.add_column("Result")
    for stage, ok in result.stage_results.items():
        table.add_row(str(stage), "[green]ok[/green]" if ok else "[red]failed[/red]")

    console = Console()
    console.print(table)
    if result.module_info:
        console.print(f"Module: {result.module_info.module_name} {result.module_info.version}")
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    for error in result.errors:
        console.print(f"[red]Error:[/red] {error}")
    console.print(result.message)

    sys.exit(0 if result.success else 1)


__all__ = ["configure_command", "exec_command", "health_command"]
