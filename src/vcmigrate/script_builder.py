"""PowerShell script text for PowerCLI configuration, connections and inventory.

Scripts are opaque payloads to the rest of the package. The only contract
with the Python side is the set of sentinel lines each script prints.

Sentinels:
    MODULES_LOADED:<variant>      capability import succeeded
    DIAGNOSTIC:<text>             diagnostic detail (surfaced on failure)
    CONFIG_SUCCESS                settings applied
    CONFIG_VERIFICATION:<text>    settings read back after applying
    VALIDATION_START/_END         brackets validation records
    MODULE:/COMMAND:/CONFIG:      validation records
    POWERCLI_READY                readiness check passed
    CONNECTION_SUCCESS            Connect-VIServer succeeded
    CONNECTION_FAILED:<message>   Connect-VIServer failed
    SESSION_ID:/VERSION:          connection details
"""

import re
from collections.abc import Mapping
from typing import Any

MODULES_LOADED = "MODULES_LOADED:"
DIAGNOSTIC = "DIAGNOSTIC:"
CONFIG_SUCCESS = "CONFIG_SUCCESS"
CONFIG_VERIFICATION = "CONFIG_VERIFICATION:"
VALIDATION_START = "VALIDATION_START"
VALIDATION_END = "VALIDATION_END"
MODULE_RECORD = "MODULE:"
COMMAND_RECORD = "COMMAND:"
CONFIG_RECORD = "CONFIG:"
POWERCLI_READY = "POWERCLI_READY"
CONFIG_NOT_AVAILABLE = "CONFIG_NOT_AVAILABLE"
CONNECTION_SUCCESS = "CONNECTION_SUCCESS"
CONNECTION_FAILED = "CONNECTION_FAILED:"
SESSION_ID = "SESSION_ID:"
VERSION = "VERSION:"

# Module variants in preference order; the first one that imports wins
POWERCLI_MODULE_VARIANTS = ("VMware.PowerCLI", "VMware.VimAutomation.Core")


def quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string literal."""
    return "'" + value.replace("'", "''") + "'"


def connection_variable(connection_key: str) -> str:
    """Global variable name holding the VIServer connection for a key."""
    return f"VIConnection_{connection_key.replace('-', '_')}"


def build_powercli_import_script(variants: tuple[str, ...] = POWERCLI_MODULE_VARIANTS) -> str:
    """Import PowerCLI, trying each module variant in order."""
    variant_list = ", ".join(quote(v) for v in variants)
    return f"""
$moduleType = $null
foreach ($candidate in @({variant_list})) {{
    try {{
        if (-not (Get-Module -ListAvailable -Name $candidate)) {{
            Write-Output "{DIAGNOSTIC} Module $candidate is not installed"
            continue
        }}
        Import-Module $candidate -ErrorAction Stop -WarningAction SilentlyContinue | Out-Null
        $moduleType = $candidate
        break
    }} catch {{
        Write-Output "{DIAGNOSTIC} Import of $candidate failed: $($_.Exception.Message)"
    }}
}}
if ($moduleType) {{
    Write-Output "{MODULES_LOADED}$moduleType"
}} else {{
    Write-Output "{DIAGNOSTIC} No PowerCLI module variant could be imported"
}}"""


def build_powercli_configuration_script(module_type: str) -> str:
    """Apply the PowerCLI session settings used for migrations."""
    return f"""
try {{
    Set-PowerCLIConfiguration -Scope Session -InvalidCertificateAction Ignore -DefaultVIServerMode Multiple -ParticipateInCeip $false -Confirm:$false -ErrorAction Stop | Out-Null
    [System.Net.ServicePointManager]::SecurityProtocol = [System.Net.SecurityProtocolType]::Tls12 -bor [System.Net.SecurityProtocolType]::Tls13
    $applied = Get-PowerCLIConfiguration -Scope Session
    Write-Output "{CONFIG_VERIFICATION} InvalidCertificateAction=$($applied.InvalidCertificateAction)"
    Write-Output "{CONFIG_VERIFICATION} DefaultVIServerMode=$($applied.DefaultVIServerMode)"
    Write-Output "{DIAGNOSTIC} PowerCLI configuration applied for {module_type}"
    Write-Output '{CONFIG_SUCCESS}'
}} catch {{
    Write-Output "{DIAGNOSTIC} PowerCLI configuration failed for {module_type}: $($_.Exception.Message)"
}}"""


def build_validation_script() -> str:
    """Report loaded modules, available commands and settings between brackets."""
    return f"""
$loadedModules = Get-Module -Name VMware* | Select-Object Name, Version
$availableCommands = Get-Command -Module VMware* -ErrorAction SilentlyContinue | Select-Object Name, Source -First 20
$config = Get-PowerCLIConfiguration -Scope Session -ErrorAction SilentlyContinue

Write-Output '{VALIDATION_START}'
$loadedModules | ForEach-Object {{ Write-Output "{MODULE_RECORD}$($_.Name):$($_.Version)" }}
$availableCommands | ForEach-Object {{ Write-Output "{COMMAND_RECORD}$($_.Name):$($_.Source)" }}
if ($config) {{
    Write-Output "{CONFIG_RECORD}InvalidCertificateAction:$($config.InvalidCertificateAction)"
    Write-Output "{CONFIG_RECORD}DefaultVIServerMode:$($config.DefaultVIServerMode)"
    Write-Output "{CONFIG_RECORD}WebOperationTimeoutSeconds:$($config.WebOperationTimeoutSeconds)"
    Write-Output "{CONFIG_RECORD}ProxyPolicy:$($config.ProxyPolicy)"
    Write-Output "{CONFIG_RECORD}ParticipateInCeip:$($config.ParticipateInCeip)"
}} else {{
    Write-Output '{CONFIG_RECORD}Not Available'
}}
Write-Output '{VALIDATION_END}'"""


def build_readiness_check_script() -> str:
    """Check that Connect-VIServer and the PowerCLI configuration are available."""
    return f"""
$connectCmd = Get-Command Connect-VIServer -ErrorAction SilentlyContinue
$config = Get-PowerCLIConfiguration -ErrorAction SilentlyContinue
if ($connectCmd -and $config) {{ Write-Output '{POWERCLI_READY}' }} else {{ Write-Output 'POWERCLI_NOT_READY' }}"""


def build_current_configuration_script() -> str:
    """Dump the current session PowerCLI configuration as key:value lines."""
    return f"""
$config = Get-PowerCLIConfiguration -Scope Session -ErrorAction SilentlyContinue
if ($config) {{
    Write-Output "InvalidCertificateAction:$($config.InvalidCertificateAction)"
    Write-Output "DefaultVIServerMode:$($config.DefaultVIServerMode)"
    Write-Output "WebOperationTimeoutSeconds:$($config.WebOperationTimeoutSeconds)"
    Write-Output "ProxyPolicy:$($config.ProxyPolicy)"
    Write-Output "ParticipateInCeip:$($config.ParticipateInCeip)"
}} else {{
    Write-Output '{CONFIG_NOT_AVAILABLE}'
}}"""


def build_vcenter_connection_script(
    server: str, username: str, password: str, connection_key: str
) -> str:
    """Connect to a vCenter and keep the connection in a per-key global.

    The password is embedded in the script text; never log the result
    without passing it through LogSanitizer.
    """
    variable = connection_variable(connection_key)
    return f"""
try {{
    $securePassword = ConvertTo-SecureString {quote(password)} -AsPlainText -Force
    $credential = New-Object System.Management.Automation.PSCredential({quote(username)}, $securePassword)
    $global:{variable} = Connect-VIServer -Server {quote(server)} -Credential $credential -ErrorAction Stop
    Write-Output '{CONNECTION_SUCCESS}'
    Write-Output "{SESSION_ID}$($global:{variable}.SessionId)"
    Write-Output "{VERSION}$($global:{variable}.Version) (Build $($global:{variable}.Build))"
}} catch {{
    Write-Output "{CONNECTION_FAILED} $($_.Exception.Message)"
}}"""


def build_connection_validation_script(connection_key: str) -> str:
    """Make the per-key connection the default before running a command."""
    variable = connection_variable(connection_key)
    return f"""
if ($global:{variable} -and $global:{variable}.IsConnected) {{
    $global:DefaultVIServer = $global:{variable}
}} else {{
    Write-Output "CONNECTION_INACTIVE: No active connection for {connection_key}"
}}"""


def build_is_connected_script(connection_key: str) -> str:
    """Print True/False for the per-key connection state."""
    return f"[bool]($global:{connection_variable(connection_key)}.IsConnected)"


def build_disconnect_check_script() -> str:
    """Report whether PowerCLI is loaded and holds a server connection."""
    return (
        "if (Get-Command 'Get-VIServer' -ErrorAction SilentlyContinue) { "
        "if ($global:DefaultVIServers) { 'CONNECTED' } else { 'NO_CONNECTION' } "
        "} else { 'NO_POWERCLI' }"
    )


def build_disconnect_script(server: str) -> str:
    """Disconnect from a vCenter without prompting."""
    return f"Disconnect-VIServer -Server {quote(server)} -Force -Confirm:$false -ErrorAction SilentlyContinue"


# PowerShell parameter names: no leading dash, no spaces or quotes
PARAMETER_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def build_script_invocation(script_path: str, parameters: Mapping[str, Any] | None = None) -> str:
    """Invoke a .ps1 file with named parameters in the current session.

    Booleans become ``-Name:$true`` / ``-Name:$false``, None values are
    skipped, everything else is passed as a quoted string literal.

    Raises:
        ValueError: If a parameter name is not a plain identifier

    Example:
        >>> build_script_invocation("C:/Scripts/Move-VM.ps1", {"VMName": "web01", "WhatIf": True})
        "& 'C:/Scripts/Move-VM.ps1' -VMName 'web01' -WhatIf:$true"
    """
    parts = [f"& {quote(script_path)}"]
    for name, value in (parameters or {}).items():
        if not PARAMETER_NAME_PATTERN.match(name):
            raise ValueError(f"Invalid script parameter name: {name!r}")
        if value is None:
            continue
        if isinstance(value, bool):
            parts.append(f"-{name}:${str(value).lower()}")
        else:
            parts.append(f"-{name} {quote(str(value))}")
    return " ".join(parts)


# Inventory collection. Each script prints one JSON document (array or object).

VCENTER_VERSION_SCRIPT = """
$global:DefaultVIServer | Select-Object -First 1 | ForEach-Object { "$($_.Version) (Build $($_.Build))" }"""

DATACENTERS_SCRIPT = """
Get-View -ViewType Datacenter | ForEach-Object {
    $dc = $_
    [PSCustomObject]@{
        Name = $dc.Name
        Id = $dc.MoRef.Value
        ClusterCount = (Get-View -ViewType ClusterComputeResource -SearchRoot $dc.MoRef | Measure-Object).Count
        HostCount = (Get-View -ViewType HostSystem -SearchRoot $dc.MoRef | Measure-Object).Count
        VmCount = (Get-View -ViewType VirtualMachine -SearchRoot $dc.MoRef | Measure-Object).Count
        DatastoreCount = (Get-View -ViewType Datastore -SearchRoot $dc.MoRef | Measure-Object).Count
    }
} | ConvertTo-Json -Depth 2"""

CLUSTERS_SCRIPT = """
Get-View -ViewType ClusterComputeResource | ForEach-Object {
    $cluster = $_
    $datacenter = Get-View $cluster.Parent
    while ($datacenter -and $datacenter.GetType().Name -ne 'Datacenter') { $datacenter = Get-View $datacenter.Parent }
    [PSCustomObject]@{
        Name = $cluster.Name
        Id = $cluster.MoRef.Value
        DatacenterName = $datacenter.Name
        HostCount = $cluster.Host.Count
        DatastoreCount = $cluster.Datastore.Count
        VmCount = (Get-View -ViewType VirtualMachine -SearchRoot $cluster.MoRef | Measure-Object).Count
        HAEnabled = $cluster.Configuration.DasConfig.Enabled
        DrsEnabled = $cluster.Configuration.DrsConfig.Enabled
        EVCMode = if ($cluster.Summary.CurrentEVCModeKey) { $cluster.Summary.CurrentEVCModeKey } else { '' }
    }
} | ConvertTo-Json -Depth 2"""

HOSTS_SCRIPT = """
Get-View -ViewType HostSystem | ForEach-Object {
    $esxiHost = $_
    $parent = Get-View $esxiHost.Parent
    $cluster = if ($parent.GetType().Name -eq 'ClusterComputeResource') { $parent } else { $null }
    [PSCustomObject]@{
        Name = $esxiHost.Name
        Id = $esxiHost.MoRef.Value
        ClusterName = if ($cluster) { $cluster.Name } else { '' }
        Version = $esxiHost.Config.Product.Version
        Build = $esxiHost.Config.Product.Build
        ConnectionState = $esxiHost.Runtime.ConnectionState.ToString()
        PowerState = $esxiHost.Runtime.PowerState.ToString()
        CpuCores = $esxiHost.Hardware.CpuInfo.NumCpuCores
        CpuMhz = [math]::Round($esxiHost.Hardware.CpuInfo.Hz / 1000000)
        MemoryGB = [math]::Round($esxiHost.Hardware.MemorySize / 1GB, 2)
    }
} | ConvertTo-Json -Depth 2"""

DATASTORES_SCRIPT = """
Get-View -ViewType Datastore | ForEach-Object {
    $datastore = $_
    [PSCustomObject]@{
        Name = $datastore.Name
        Id = $datastore.MoRef.Value
        Type = $datastore.Summary.Type
        CapacityGB = [math]::Round($datastore.Summary.Capacity / 1GB, 2)
        UsedGB = [math]::Round(($datastore.Summary.Capacity - $datastore.Summary.FreeSpace) / 1GB, 2)
        VmCount = $datastore.Vm.Count
    }
} | ConvertTo-Json -Depth 3"""

VIRTUAL_MACHINES_SCRIPT = """
Get-View -ViewType VirtualMachine | ForEach-Object {
    $vm = $_
    $vmHost = if ($vm.Runtime.Host) { Get-View $vm.Runtime.Host } else { $null }
    $cluster = if ($vmHost) { $p = Get-View $vmHost.Parent; if ($p.GetType().Name -eq 'ClusterComputeResource') { $p } } else { $null }
    [PSCustomObject]@{
        Name = $vm.Name
        Id = $vm.MoRef.Value
        PowerState = $vm.Runtime.PowerState.ToString()
        GuestOS = if ($vm.Config.GuestFullName) { $vm.Config.GuestFullName } else { '' }
        CpuCount = $vm.Config.Hardware.NumCPU
        MemoryGB = [math]::Round($vm.Config.Hardware.MemoryMB / 1024, 2)
        HostName = if ($vmHost) { $vmHost.Name } else { '' }
        ClusterName = if ($cluster) { $cluster.Name } else { '' }
    }
} | ConvertTo-Json -Depth 2"""

RESOURCE_POOLS_SCRIPT = """
Get-ResourcePool | ForEach-Object {
    $cluster = Get-Cluster -ResourcePool $_ -ErrorAction SilentlyContinue
    [PSCustomObject]@{
        Name = $_.Name
        Id = $_.Id
        ClusterName = if ($cluster) { $cluster.Name } else { '' }
        ParentPath = $_.Parent.Name
        CpuLimitMhz = if ($_.CpuLimitMhz -ne -1) { $_.CpuLimitMhz } else { 0 }
        MemoryLimitMB = if ($_.MemoryLimitMB -ne -1) { $_.MemoryLimitMB } else { 0 }
    }
} | ConvertTo-Json -Depth 2"""
