"""CLI Helper Functions.

Helpers shared by the CLI commands: loading configuration from the click
context and wiring the session, channel and configuration layers together.
"""

import logging
from dataclasses import dataclass

import click

from vcmigrate.command_channel import CommandChannel
from vcmigrate.config_manager import ConfigManager, VCMigrateConfig
from vcmigrate.connection_service import PersistentConnectionService
from vcmigrate.powercli_configuration import PowerCLIConfigurator
from vcmigrate.shell_dialect import get_dialect
from vcmigrate.shell_session_manager import ShellSessionManager

logger = logging.getLogger(__name__)


@dataclass
class ServiceStack:
    """The session layers built from one configuration."""

    config: VCMigrateConfig
    session_manager: ShellSessionManager
    channel: CommandChannel
    configurator: PowerCLIConfigurator

    def connection_service(self) -> PersistentConnectionService:
        return PersistentConnectionService(
            self.session_manager,
            self.channel,
            self.configurator,
            connect_timeout=self.config.connect_timeout,
            command_timeout=self.config.command_timeout,
            terminate_timeout=self.config.terminate_timeout,
        )


def load_settings(ctx: click.Context) -> VCMigrateConfig:
    """Load configuration honoring the global --config/--shell options.

    Raises:
        ConfigError: If the file or the --shell override is invalid
    """
    options = ctx.obj or {}
    config = ConfigManager.load_config(options.get("config_path"))
    if options.get("shell"):
        config.shell = options["shell"]
        config.validate()
    return config


def build_stack(config: VCMigrateConfig) -> ServiceStack:
    """Build session manager, channel and configurator from configuration."""
    dialect = get_dialect(config.shell)
    channel = CommandChannel(
        poll_interval=config.poll_interval,
        settle_delay=config.settle_delay,
        stale_output_threshold=config.stale_output_threshold,
    )
    return ServiceStack(
        config=config,
        session_manager=ShellSessionManager(
            dialect=dialect,
            candidates=config.shell_candidates,
            startup_grace=config.startup_grace,
        ),
        channel=channel,
        configurator=PowerCLIConfigurator(
            channel,
            import_timeout=config.import_timeout,
            settings_timeout=config.settings_timeout,
            validation_timeout=config.validation_timeout,
        ),
    )


def prompt_password(message: str) -> str:
    """Prompt for a password without echo."""
    return click.prompt(message, hide_input=True, default="", show_default=False)


__all__ = ["ServiceStack", "build_stack", "load_settings", "prompt_password"]
