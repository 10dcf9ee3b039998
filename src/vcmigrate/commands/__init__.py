"""Command groups for vcmigrate CLI."""

from vcmigrate.commands.inventory import inventory_command
from vcmigrate.commands.profiles import profiles_group
from vcmigrate.commands.scripts import run_script_command
from vcmigrate.commands.session import configure_command, exec_command, health_command

__all__ = [
    "configure_command",
    "exec_command",
    "health_command",
    "inventory_command",
    "profiles_group",
    "run_script_command",
]
