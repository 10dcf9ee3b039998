"""Click group that reports vcmigrate failures as one-line CLI errors.

Commands let the package's own exceptions propagate (bad configuration,
missing credentials, no usable shell, connection and inventory failures).
The group catches them at the top, prints ``Error: <message>`` to stderr and
exits with status 1. Messages go through LogSanitizer first because
connection errors can quote script text.

Public API (the "studs"):
    VCMigrateGroup: click.Group with vcmigrate error reporting
    CLI_ERRORS: Exception types reported without a traceback
"""

import logging
from typing import Any

import click

from vcmigrate.config_manager import ConfigError
from vcmigrate.connection_service import ConnectionServiceError
from vcmigrate.credentials import CredentialError
from vcmigrate.inventory_service import InventoryServiceError
from vcmigrate.log_sanitizer import LogSanitizer
from vcmigrate.shell_session_manager import ShellSessionError

logger = logging.getLogger(__name__)

CLI_ERRORS: tuple[type[Exception], ...] = (
    ConfigError,
    CredentialError,
    ShellSessionError,
    ConnectionServiceError,
    InventoryServiceError,
)


class VCMigrateGroup(click.Group):
    """Group whose subcommands can raise vcmigrate errors directly."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except CLI_ERRORS as e:
            logger.debug(f"Command failed with {type(e).__name__}", exc_info=True)
            click.echo(f"Error: {LogSanitizer.sanitize(str(e))}", err=True)
            ctx.exit(1)


__all__ = ["CLI_ERRORS", "VCMigrateGroup"]
