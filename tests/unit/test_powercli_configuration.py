"""Tests for powercli_configuration module."""

from unittest.mock import MagicMock

import pytest

from vcmigrate.powercli_configuration import (
    BYPASS_MODULE_TYPE,
    ConfigurationStage,
    PowerCLIConfigurator,
    parse_validation_output,
)

VALIDATION_OUTPUT = "\n".join(
    [
        "VALIDATION_START",
        "MODULE:VMware.VimAutomation.Core:13.1.0",
        "MODULE:VMware.PowerCLI:13.1.0",
        "MODULE:VMware.VimAutomation.Sdk:13.1.0",
        "COMMAND:Connect-VIServer:VMware.VimAutomation.Core",
        "COMMAND:Get-VM:VMware.VimAutomation.Core",
        "CONFIG:InvalidCertificateAction:Ignore",
        "CONFIG:ProxyPolicy:",
        "CONFIG:Url:https://vc01:443/sdk",
        "VALIDATION_END",
    ]
)


def powercli_shell(
    import_output: str = "DIAGNOSTIC: trying VMware.PowerCLI\nMODULES_LOADED:VMware.PowerCLI",
    settings_output: str | None = "CONFIG_VERIFICATION: DefaultVIServerMode=Multiple\nCONFIG_SUCCESS",
    validation_output: str | None = VALIDATION_OUTPUT,
):
    """Responder emulating a shell with PowerCLI installed."""

    def respond(command: str) -> str | None:
        if "VALIDATION_START" in command:
            return validation_output
        if "Set-PowerCLIConfiguration" in command:
            return settings_output
        if "Import-Module" in command:
            return import_output
        if "POWERCLI_READY" in command:
            return "POWERCLI_READY"
        if "CONFIG_NOT_AVAILABLE" in command:
            return "InvalidCertificateAction:Ignore\nDefaultVIServerMode:Multiple"
        return ""

    return respond


@pytest.fixture
def configurator(fast_channel) -> PowerCLIConfigurator:
    return PowerCLIConfigurator(
        fast_channel, import_timeout=2, settings_timeout=0.2, validation_timeout=0.2
    )


class TestConfigure:
    """Test the configuration pipeline."""

    def test_full_success(self, make_session, configurator) -> None:
        """All stages succeed and validation output is parsed."""
        session, shell = make_session(powercli_shell())

        result = configurator.configure(session)

        assert result.success
        assert result.errors == []
        assert result.module_type == "VMware.PowerCLI"
        assert result.module_info.module_name == "VMware.PowerCLI"
        assert result.stage_results == {
            ConfigurationStage.START: True,
            ConfigurationStage.IMPORT_CAPABILITIES: True,
            ConfigurationStage.APPLY_SETTINGS: True,
            ConfigurationStage.VALIDATE: True,
            ConfigurationStage.DONE: True,
        }
        assert len(shell.commands) == 3

    def test_bypass_issues_no_commands(self, make_session, configurator) -> None:
        """Bypass reports success with a warning and touches nothing."""
        session, shell = make_session(powercli_shell())

        result = configurator.configure(session, bypass_module_check=True)

        assert result.success
        assert result.module_type == BYPASS_MODULE_TYPE
        assert result.warnings
        assert result.stage_results == {ConfigurationStage.BYPASS: True}
        assert shell.commands == []

    def test_import_failure_stops_pipeline(self, make_session, configurator) -> None:
        """Missing MODULES_LOADED fails with the diagnostics as errors."""
        session, shell = make_session(
            powercli_shell(import_output="DIAGNOSTIC: Module VMware.PowerCLI is not installed")
        )

        result = configurator.configure(session)

        assert not result.success
        assert result.errors[0] == "Failed to import PowerCLI modules"
        assert "Module VMware.PowerCLI is not installed" in result.errors
        assert result.stage_results[ConfigurationStage.IMPORT_CAPABILITIES] is False
        assert ConfigurationStage.APPLY_SETTINGS not in result.stage_results
        assert len(shell.commands) == 1

    def test_fallback_variant_is_reported(self, make_session, configurator) -> None:
        """The first MODULES_LOADED line names the module type."""
        session, _ = make_session(
            powercli_shell(
                import_output="DIAGNOSTIC: Import of VMware.PowerCLI failed\n"
                "MODULES_LOADED:VMware.VimAutomation.Core"
            )
        )

        assert configurator.configure(session).module_type == "VMware.VimAutomation.Core"

    def test_missing_config_success_is_only_a_warning(self, make_session, configurator) -> None:
        """Settings without CONFIG_SUCCESS still count as applied."""
        session, _ = make_session(powercli_shell(settings_output="some unrelated output"))

        result = configurator.configure(session)

        assert result.success
        assert result.stage_results[ConfigurationStage.APPLY_SETTINGS] is True
        assert any("did not report success" in w for w in result.warnings)

    def test_settings_timeout_is_only_a_warning(self, make_session, configurator) -> None:
        """A settings command that times out degrades to a warning."""
        session, _ = make_session(powercli_shell(settings_output=None))

        result = configurator.configure(session)

        assert result.success
        assert any("timed out" in w for w in result.warnings)

    def test_session_death_during_settings_fails(self, make_session, configurator) -> None:
        """Losing the session while applying settings is a hard failure."""
        session, shell = make_session()
        base = powercli_shell()

        def respond(command: str) -> str | None:
            if "Set-PowerCLIConfiguration" in command:
                shell.exit(1)
                return None
            return base(command)

        shell.responder = respond
        result = configurator.configure(session)

        assert not result.success
        assert result.stage_results[ConfigurationStage.APPLY_SETTINGS] is False
        assert "exited unexpectedly" in result.errors[0]

    def test_incomplete_validation_is_a_warning(self, make_session, configurator) -> None:
        """VALIDATION_START without VALIDATION_END only fails the validate stage."""
        session, _ = make_session(
            powercli_shell(validation_output="VALIDATION_START\nMODULE:VMware.PowerCLI:13.1.0")
        )

        result = configurator.configure(session)

        assert result.success
        assert result.module_info is None
        assert result.stage_results[ConfigurationStage.VALIDATE] is False
        assert result.stage_results[ConfigurationStage.DONE] is True
        assert any("validation output incomplete" in w for w in result.warnings)

    def test_exit_before_start(self, make_session, configurator) -> None:
        """An exited session fails at import with the channel error."""
        session, shell = make_session(powercli_shell())
        shell.exit(1)

        result = configurator.configure(session)

        assert not result.success
        assert result.errors == ["ERROR: Shell process has exited (Exit Code: 1)"]

    def test_unexpected_exception_is_captured(self, make_session) -> None:
        """Exceptions become a failed result instead of propagating."""
        channel = MagicMock()
        channel.execute.side_effect = RuntimeError("boom")
        session, _ = make_session()

        result = PowerCLIConfigurator(channel).configure(session)

        assert not result.success
        assert result.errors == ["Exception: boom"]


class TestValidationParsing:
    """Test parsing of bracketed validation output."""

    def test_powercli_module_overrides_earlier_component(self) -> None:
        """A PowerCLI module replaces the first-listed component."""
        info = parse_validation_output(VALIDATION_OUTPUT, "VMware.PowerCLI")

        assert info.module_name == "VMware.PowerCLI"
        assert info.version == "13.1.0"
        assert info.is_loaded

    def test_config_values_keep_colons_and_skip_empty(self) -> None:
        """CONFIG values split once; entries without a value are skipped."""
        info = parse_validation_output(VALIDATION_OUTPUT, "VMware.PowerCLI")

        assert info.configuration == {
            "InvalidCertificateAction": "Ignore",
            "Url": "https://vc01:443/sdk",
        }

    def test_commands_capped_at_twenty(self) -> None:
        """At most twenty commands are recorded."""
        lines = ["VALIDATION_START"]
        lines += [f"COMMAND:Cmd{i}:VMware.Core" for i in range(30)]
        lines.append("VALIDATION_END")

        info = parse_validation_output("\n".join(lines), "VMware.PowerCLI")

        assert len(info.available_commands) == 20
        assert info.available_commands[0] == "Cmd0"

    def test_missing_start_returns_none(self) -> None:
        """Output without the start bracket is incomplete."""
        assert parse_validation_output("MODULE:x:1\nVALIDATION_END", "x") is None


class TestQueries:
    """Test readiness and current configuration queries."""

    def test_is_configured(self, make_session, configurator) -> None:
        """POWERCLI_READY means configured."""
        session, _ = make_session(powercli_shell())

        assert configurator.is_configured(session) is True

    def test_not_configured(self, make_session, configurator) -> None:
        """POWERCLI_NOT_READY is not mistaken for ready."""
        session, _ = make_session(lambda command: "POWERCLI_NOT_READY")

        assert configurator.is_configured(session) is False

    def test_get_current_configuration(self, make_session, configurator) -> None:
        """Settings are returned as a dictionary."""
        session, _ = make_session(powercli_shell())

        assert configurator.get_current_configuration(session) == {
            "InvalidCertificateAction": "Ignore",
            "DefaultVIServerMode": "Multiple",
        }

    def test_configuration_not_available(self, make_session, configurator) -> None:
        """CONFIG_NOT_AVAILABLE yields None."""
        session, _ = make_session(lambda command: "CONFIG_NOT_AVAILABLE")

        assert configurator.get_current_configuration(session) is None
