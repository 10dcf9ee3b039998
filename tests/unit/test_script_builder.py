"""Tests for script_builder module."""

import pytest

from vcmigrate import script_builder


class TestQuoting:
    """Test PowerShell literal quoting."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("vc01.lab.local", "'vc01.lab.local'"),
            ("O'Brien", "'O''Brien'"),
            ("", "''"),
            ("$(Remove-Item C:\\)", "'$(Remove-Item C:\\)'"),
        ],
    )
    def test_quote(self, value: str, expected: str) -> None:
        """Single quotes are doubled; nothing else is interpreted."""
        assert script_builder.quote(value) == expected

    def test_connection_variable(self) -> None:
        """Dashes are not valid in PowerShell variable names."""
        assert script_builder.connection_variable("dr-site") == "VIConnection_dr_site"


class TestScripts:
    """Test that each script prints the sentinels its parser expects."""

    def test_import_script_tries_each_variant(self) -> None:
        script = script_builder.build_powercli_import_script(("A.Module", "B.Module"))

        assert "@('A.Module', 'B.Module')" in script
        assert script_builder.MODULES_LOADED in script
        assert script_builder.DIAGNOSTIC in script

    def test_configuration_script(self) -> None:
        script = script_builder.build_powercli_configuration_script("VMware.PowerCLI")

        assert "-InvalidCertificateAction Ignore" in script
        assert "-DefaultVIServerMode Multiple" in script
        assert script_builder.CONFIG_SUCCESS in script

    def test_validation_script_brackets(self) -> None:
        script = script_builder.build_validation_script()

        assert script.index(script_builder.VALIDATION_START) < script.rindex(
            script_builder.VALIDATION_END
        )

    def test_connection_script_quotes_credentials(self) -> None:
        """Credentials are embedded as escaped literals under the per-key global."""
        script = script_builder.build_vcenter_connection_script(
            "vc01", "DOMAIN\\o'neil", "pa'ss", "target"
        )

        assert "ConvertTo-SecureString 'pa''ss'" in script
        assert "'DOMAIN\\o''neil'" in script
        assert "$global:VIConnection_target = Connect-VIServer -Server 'vc01'" in script
        assert script_builder.CONNECTION_SUCCESS in script
        assert script_builder.CONNECTION_FAILED in script

    def test_connection_validation_script(self) -> None:
        script = script_builder.build_connection_validation_script("source")

        assert "$global:DefaultVIServer = $global:VIConnection_source" in script
        assert "CONNECTION_INACTIVE" in script

    def test_disconnect_script(self) -> None:
        script = script_builder.build_disconnect_script("vc'01")

        assert script.startswith("Disconnect-VIServer -Server 'vc''01'")
        assert "-Confirm:$false" in script

    @pytest.mark.parametrize(
        "script",
        [
            script_builder.DATACENTERS_SCRIPT,
            script_builder.CLUSTERS_SCRIPT,
            script_builder.HOSTS_SCRIPT,
            script_builder.DATASTORES_SCRIPT,
            script_builder.VIRTUAL_MACHINES_SCRIPT,
            script_builder.RESOURCE_POOLS_SCRIPT,
        ],
    )
    def test_inventory_scripts_emit_json(self, script: str) -> None:
        assert "ConvertTo-Json" in script


class TestScriptInvocation:
    """Test building .ps1 invocations."""

    def test_named_parameters_are_quoted(self) -> None:
        command = script_builder.build_script_invocation(
            "C:/Scripts/Move VM.ps1", {"VMName": "web'01", "Count": 3}
        )

        assert command == "& 'C:/Scripts/Move VM.ps1' -VMName 'web''01' -Count '3'"

    def test_switches_and_none(self) -> None:
        """Booleans use switch syntax; None parameters are left out."""
        command = script_builder.build_script_invocation(
            "/opt/run.ps1", {"WhatIf": True, "Force": False, "Notes": None}
        )

        assert command == "& '/opt/run.ps1' -WhatIf:$true -Force:$false"

    def test_no_parameters(self) -> None:
        assert script_builder.build_script_invocation("/opt/run.ps1") == "& '/opt/run.ps1'"

    @pytest.mark.parametrize("name", ["", "1st", "Name; Remove-Item", "a-b", "$x"])
    def test_invalid_parameter_name(self, name: str) -> None:
        with pytest.raises(ValueError, match="Invalid script parameter name"):
            script_builder.build_script_invocation("/opt/run.ps1", {name: "x"})
