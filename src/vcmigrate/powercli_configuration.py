"""PowerCLI configuration for a fresh shell session.

Drives a session through a fixed pipeline before it is used for vCenter work:

    START -> IMPORT_CAPABILITIES -> APPLY_SETTINGS -> VALIDATE -> DONE
    START -> BYPASS (when the caller asks to skip module checks)

Philosophy:
- Import is the only hard gate; settings and validation degrade to warnings
  unless the session itself is gone
- Results, not exceptions: every outcome is a ConfigurationResult
- Stage outputs are parsed from sentinel lines printed by the scripts

Public API (the "studs"):
    PowerCLIConfigurator: Runs the configuration pipeline over a CommandChannel
    ConfigurationResult: Outcome of one configure() call
    PowerCLIModuleInfo: Parsed validation output
    ConfigurationStage: Pipeline stages
"""

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from vcmigrate import script_builder
from vcmigrate.command_channel import ChannelFailure, CommandChannel, classify_channel_result
from vcmigrate.log_sanitizer import LogSanitizer
from vcmigrate.models.session_models import ShellSession

logger = logging.getLogger(__name__)

BYPASS_MODULE_TYPE = "Bypass Mode"
MAX_VALIDATION_COMMANDS = 20

# Channel failures after which no further stage can run
_FATAL_FAILURES = frozenset({ChannelFailure.SESSION_UNAVAILABLE, ChannelFailure.CHANNEL_IO_FAILURE})


class ConfigurationStage(StrEnum):
    """Stages of the configuration pipeline."""

    START = "start"
    IMPORT_CAPABILITIES = "import_capabilities"
    APPLY_SETTINGS = "apply_settings"
    VALIDATE = "validate"
    DONE = "done"
    BYPASS = "bypass"


@dataclass
class PowerCLIModuleInfo:
    """Module, command and settings information reported by validation."""

    module_name: str = ""
    version: str = ""
    module_type: str = ""
    is_loaded: bool = False
    available_commands: list[str] = field(default_factory=list)
    configuration: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "module_name": self.module_name,
            "version": self.version,
            "module_type": self.module_type,
            "is_loaded": self.is_loaded,
            "available_commands": list(self.available_commands),
            "configuration": dict(self.configuration),
        }


@dataclass
class ConfigurationResult:
    """Outcome of one configure() call.

    ``success`` implies ``errors`` is empty; warnings may still be present.
    """

    success: bool
    module_type: str = ""
    message: str = ""
    module_info: PowerCLIModuleInfo | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    stage_results: dict[ConfigurationStage, bool] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "module_type": self.module_type,
            "message": self.message,
            "module_info": self.module_info.to_dict() if self.module_info else None,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "stage_results": {str(k): v for k, v in self.stage_results.items()},
        }


def _lines(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


def parse_module_type(output: str) -> str | None:
    """Return the variant named by the first MODULES_LOADED line, if any."""
    for line in _lines(output):
        if line.startswith(script_builder.MODULES_LOADED):
            return line[len(script_builder.MODULES_LOADED) :].strip()
    return None


def parse_validation_output(output: str, module_type: str) -> PowerCLIModuleInfo | None:
    """Parse bracketed validation output.

    Returns:
        PowerCLIModuleInfo, or None if the start/end brackets are incomplete
    """
    lines = _lines(output)
    try:
        start = lines.index(script_builder.VALIDATION_START)
        end = lines.index(script_builder.VALIDATION_END, start + 1)
    except ValueError:
        return None

    info = PowerCLIModuleInfo(module_type=module_type, is_loaded=True)
    for line in lines[start + 1 : end]:
        if line.startswith(script_builder.MODULE_RECORD):
            parts = line.split(":")
            if len(parts) >= 3:
                name, version = parts[1], parts[2]
                # Meta-module wins over whatever component was listed first
                if not info.module_name or "PowerCLI" in name:
                    info.module_name = name
                    info.version = version
        elif line.startswith(script_builder.COMMAND_RECORD):
            parts = line.split(":")
            if len(parts) >= 2 and len(info.available_commands) < MAX_VALIDATION_COMMANDS:
                info.available_commands.append(parts[1])
        elif line.startswith(script_builder.CONFIG_RECORD):
            config_part = line[len(script_builder.CONFIG_RECORD) :]
            key, sep, value = config_part.partition(":")
            if sep and value:
                info.configuration[key] = value
    return info


class PowerCLIConfigurator:
    """Configures PowerCLI in a shell session.

    Example:
        >>> configurator = PowerCLIConfigurator(CommandChannel())
        >>> result = configurator.configure(session)
        >>> result.success, result.module_type
        (True, 'VMware.PowerCLI')
    """

    DEFAULT_IMPORT_TIMEOUT = 90.0
    DEFAULT_SETTINGS_TIMEOUT = 30.0
    DEFAULT_VALIDATION_TIMEOUT = 15.0
    READINESS_TIMEOUT = 5.0
    CURRENT_CONFIG_TIMEOUT = 10.0

    def __init__(
        self,
        channel: CommandChannel,
        import_timeout: float = DEFAULT_IMPORT_TIMEOUT,
        settings_timeout: float = DEFAULT_SETTINGS_TIMEOUT,
        validation_timeout: float = DEFAULT_VALIDATION_TIMEOUT,
    ):
        self.channel = channel
        self.import_timeout = import_timeout
        self.settings_timeout = settings_timeout
        self.validation_timeout = validation_timeout

    def configure(
        self, session: ShellSession | None, bypass_module_check: bool = False
    ) -> ConfigurationResult:
        """Run the configuration pipeline.

        Args:
            session: Freshly created session
            bypass_module_check: Skip every stage and report success

        Returns:
            ConfigurationResult (never raises)
        """
        if bypass_module_check:
            logger.warning("PowerCLI module checks bypassed; the session is not configured")
            return ConfigurationResult(
                success=True,
                module_type=BYPASS_MODULE_TYPE,
                message="PowerCLI configuration bypassed",
                warnings=["PowerCLI module checks were bypassed; commands may fail if PowerCLI is missing"],
                stage_results={ConfigurationStage.BYPASS: True},
            )

        result = ConfigurationResult(success=False, stage_results={ConfigurationStage.START: True})
        try:
            self._run_pipeline(session, result)
        except Exception as e:
            logger.error(f"PowerCLI configuration failed: {LogSanitizer.create_safe_error_message(e)}")
            result.success = False
            result.errors.append(f"Exception: {e}")
            result.message = "PowerCLI configuration failed with an exception"
        return result

    def _run_pipeline(self, session: ShellSession | None, result: ConfigurationResult) -> None:
        logger.info("Configuring PowerCLI...")

        module_type = self._import_capabilities(session, result)
        result.stage_results[ConfigurationStage.IMPORT_CAPABILITIES] = module_type is not None
        if module_type is None:
            result.message = "PowerCLI modules could not be imported"
            return
        result.module_type = module_type

        settings_ok = self._apply_settings(session, module_type, result)
        result.stage_results[ConfigurationStage.APPLY_SETTINGS] = settings_ok
        if not settings_ok:
            result.message = "PowerCLI settings could not be applied"
            return

        module_info = self._validate(session, module_type, result)
        result.stage_results[ConfigurationStage.VALIDATE] = module_info is not None
        result.module_info = module_info

        result.stage_results[ConfigurationStage.DONE] = True
        result.success = not result.errors
        result.message = f"PowerCLI configured successfully using {module_type}"
        logger.info(result.message)

    def _import_capabilities(
        self, session: ShellSession | None, result: ConfigurationResult
    ) -> str | None:
        output = self.channel.execute(
            session, script_builder.build_powercli_import_script(), self.import_timeout
        )
        if classify_channel_result(output) is not None:
            logger.error(f"PowerCLI import failed: {output}")
            result.errors.append(output)
            return None

        module_type = parse_module_type(output)
        if module_type:
            logger.info(f"PowerCLI modules loaded: {module_type}")
            return module_type

        diagnostics = [
            line[len(script_builder.DIAGNOSTIC) :].strip()
            for line in _lines(output)
            if line.startswith(script_builder.DIAGNOSTIC)
        ]
        result.errors.append("Failed to import PowerCLI modules")
        result.errors.extend(diagnostics)
        logger.error(f"Failed to import PowerCLI modules ({len(diagnostics)} diagnostic lines)")
        return None

    def _apply_settings(
        self, session: ShellSession | None, module_type: str, result: ConfigurationResult
    ) -> bool:
        output = self.channel.execute(
            session,
            script_builder.build_powercli_configuration_script(module_type),
            self.settings_timeout,
        )
        failure = classify_channel_result(output)
        if failure in _FATAL_FAILURES:
            logger.error(f"PowerCLI settings could not be applied: {output}")
            result.errors.append(output)
            return False

        for line in _lines(output):
            if line.startswith(script_builder.CONFIG_VERIFICATION):
                logger.debug(f"PowerCLI setting: {line[len(script_builder.CONFIG_VERIFICATION):].strip()}")

        if script_builder.CONFIG_SUCCESS not in output:
            warning = "PowerCLI configuration did not report success; continuing with defaults"
            if failure is not None:
                warning = f"{warning} ({output})"
            logger.warning(warning)
            result.warnings.append(warning)
        return True

    def _validate(
        self, session: ShellSession | None, module_type: str, result: ConfigurationResult
    ) -> PowerCLIModuleInfo | None:
        output = self.channel.execute(
            session, script_builder.build_validation_script(), self.validation_timeout
        )
        module_info = parse_validation_output(output, module_type)
        if module_info is None:
            warning = "PowerCLI validation output incomplete"
            if classify_channel_result(output) is not None:
                warning = f"{warning} ({output})"
            logger.warning(warning)
            result.warnings.append(warning)
            return None

        logger.debug(
            f"PowerCLI validation: {module_info.module_name} {module_info.version}, "
            f"{len(module_info.available_commands)} commands"
        )
        return module_info

    def is_configured(self, session: ShellSession | None) -> bool:
        """True if Connect-VIServer and the PowerCLI configuration are available."""
        output = self.channel.execute(
            session, script_builder.build_readiness_check_script(), self.READINESS_TIMEOUT
        )
        return script_builder.POWERCLI_READY in _lines(output)

    def get_current_configuration(self, session: ShellSession | None) -> dict[str, str] | None:
        """Read the session's PowerCLI settings.

        Returns:
            Setting name to value, or None if unavailable
        """
        output = self.channel.execute(
            session, script_builder.build_current_configuration_script(), self.CURRENT_CONFIG_TIMEOUT
        )
        if classify_channel_result(output) is not None or script_builder.CONFIG_NOT_AVAILABLE in output:
            return None

        configuration: dict[str, str] = {}
        for line in _lines(output):
            key, sep, value = line.partition(":")
            if sep:
                configuration[key.strip()] = value.strip()
        return configuration or None


__all__ = [
    "BYPASS_MODULE_TYPE",
    "ConfigurationResult",
    "ConfigurationStage",
    "PowerCLIConfigurator",
    "PowerCLIModuleInfo",
    "parse_module_type",
    "parse_validation_output",
]
