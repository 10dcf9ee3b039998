"""Persistent vCenter connections, one shell session per connection key.

Each connection ("source", "target", ...) owns a dedicated shell session with
PowerCLI configured and a Connect-VIServer connection held in a per-key
global variable. All commands for a connection go through that session's
SerializedCommandQueue.

Philosophy:
- A connection is registered only after it is fully established
- Any failure during connect tears the session down again
- Disconnect always kills the process, even if PowerCLI is unresponsive

Public API (the "studs"):
    PersistentConnectionService: Connect, execute, run scripts, disconnect by key
    ConnectResult: Outcome of a connect attempt
    ConnectionInfo: Read-only view of a registered connection
    ConnectionServiceError: Base error for this module
"""

import logging
import re
import threading
import uuid
from collections.abc import Mapping
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from vcmigrate import script_builder
from vcmigrate.command_channel import (
    ERROR_PREFIX,
    CommandChannel,
    format_channel_error,
    is_channel_error,
)
from vcmigrate.command_queue import SerializedCommandQueue
from vcmigrate.credentials import CredentialProvider, Credentials
from vcmigrate.events import ConnectionClosedEvent, EventChannel
from vcmigrate.inventory_service import parse_records
from vcmigrate.log_sanitizer import LogSanitizer
from vcmigrate.models.inventory import Record
from vcmigrate.models.session_models import ShellSession
from vcmigrate.powercli_configuration import ConfigurationResult, PowerCLIConfigurator
from vcmigrate.shell_session_manager import ShellSessionError, ShellSessionManager

logger = logging.getLogger(__name__)

BYPASS_VERSION = "Unknown (bypass mode)"

# Keys become part of PowerShell variable names
CONNECTION_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,32}$")


class ConnectionServiceError(Exception):
    """Raised when connection service operations fail."""

    pass


@dataclass(frozen=True)
class ConnectResult:
    """Outcome of one connect attempt."""

    success: bool
    message: str
    session_id: str | None = None
    vcenter_version: str | None = None
    failure_kind: str | None = None
    configuration: ConfigurationResult | None = None


@dataclass(frozen=True)
class ConnectionInfo:
    """Snapshot of a registered connection."""

    connection_key: str
    server_address: str
    username: str
    is_connected: bool
    session_id: str | None
    vcenter_version: str | None
    connected_at: datetime
    process_id: str
    bypass: bool = False


@dataclass
class _Connection:
    key: str
    server_address: str
    username: str
    session: ShellSession
    queue: SerializedCommandQueue
    session_id: str | None = None
    vcenter_version: str | None = None
    bypass: bool = False
    is_connected: bool = True
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def classify_connection_error(message: str) -> str:
    """Classify a Connect-VIServer failure message.

    Returns:
        "certificate", "authentication", "network" or "unknown"

    Example:
        >>> classify_connection_error("The SSL connection could not be established")
        'certificate'
    """
    lowered = message.lower()
    if "certificate" in lowered or "ssl" in lowered:
        return "certificate"
    if "authentication" in lowered or "login" in lowered or "password" in lowered:
        return "authentication"
    if "timeout" in lowered or "timed out" in lowered or "network" in lowered:
        return "network"
    return "unknown"


_GUIDANCE = {
    "certificate": "Verify PowerCLI InvalidCertificateAction is set to 'Ignore'",
    "authentication": "Verify username and password are correct",
    "network": "Check network connectivity and firewall settings",
}


def parse_connect_output(output: str) -> tuple[bool, str | None, str | None, str]:
    """Parse connection script output.

    Returns:
        (succeeded, session_id, version, failure message)
    """
    session_id: str | None = None
    version: str | None = None
    failure = ""
    succeeded = False

    for raw in output.splitlines():
        line = raw.strip()
        if line == script_builder.CONNECTION_SUCCESS:
            succeeded = True
        elif line.startswith(script_builder.SESSION_ID):
            session_id = line[len(script_builder.SESSION_ID) :].strip() or None
        elif line.startswith(script_builder.VERSION):
            version = line[len(script_builder.VERSION) :].strip() or None
        elif line.startswith(script_builder.CONNECTION_FAILED) and not failure:
            failure = line[len(script_builder.CONNECTION_FAILED) :].strip()

    if not succeeded and not failure:
        failure = output if is_channel_error(output) else "Connection failed - no CONNECTION_SUCCESS found"
    return succeeded, session_id, version, failure


class PersistentConnectionService:
    """Keeps one configured, connected shell session per connection key.

    Example:
        >>> with PersistentConnectionService(manager, channel, configurator) as service:
        ...     result = service.connect(credentials, connection_key="source")
        ...     service.execute_command("source", "Get-VM | Measure-Object")
    """

    DEFAULT_CONNECT_TIMEOUT = 120.0
    DEFAULT_COMMAND_TIMEOUT = 300.0
    DEFAULT_TERMINATE_TIMEOUT = 5.0
    STATUS_CHECK_TIMEOUT = 5.0

    def __init__(
        self,
        session_manager: ShellSessionManager,
        channel: CommandChannel,
        configurator: PowerCLIConfigurator,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        terminate_timeout: float = DEFAULT_TERMINATE_TIMEOUT,
    ):
        self.session_manager = session_manager
        self.channel = channel
        self.configurator = configurator
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.terminate_timeout = terminate_timeout
        self.closed_events: EventChannel[ConnectionClosedEvent] = EventChannel("connection-closed")
        self._connections: dict[str, _Connection] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "PersistentConnectionService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def connect(
        self,
        credentials: Credentials,
        connection_key: str = "source",
        bypass_module_check: bool = False,
    ) -> ConnectResult:
        """Establish a persistent connection.

        An existing connection under the same key is disconnected first.

        Args:
            credentials: Server, username and password
            connection_key: Key the connection is registered under
            bypass_module_check: Skip PowerCLI configuration and the
                Connect-VIServer call (plain shell only)

        Returns:
            ConnectResult (never raises for connection failures)

        Raises:
            ConnectionServiceError: If the connection key is invalid
        """
        if not CONNECTION_KEY_PATTERN.match(connection_key):
            raise ConnectionServiceError(f"Invalid connection key: {connection_key!r}")

        server = credentials.server_address
        logger.info(f"Establishing persistent connection to {server} ({connection_key})")
        self.disconnect(connection_key)

        try:
            session = self.session_manager.create_session()
        except ShellSessionError as e:
            logger.error(f"Failed to start shell for {server}: {e}")
            return ConnectResult(success=False, message=f"Failed to start shell: {e}")

        try:
            return self._establish(session, credentials, connection_key, bypass_module_check)
        except Exception as e:
            message = LogSanitizer.create_safe_error_message(e, "Connection error")
            logger.error(f"Failed to establish persistent connection to {server}: {message}")
            self.session_manager.terminate_session(session, self.terminate_timeout)
            return ConnectResult(success=False, message=message)

    def _establish(
        self,
        session: ShellSession,
        credentials: Credentials,
        connection_key: str,
        bypass_module_check: bool,
    ) -> ConnectResult:
        server = credentials.server_address
        configuration = self.configurator.configure(session, bypass_module_check=bypass_module_check)
        if not configuration.success:
            logger.error(f"PowerCLI configuration failed for {server}: {'; '.join(configuration.errors)}")
            self.session_manager.terminate_session(session, self.terminate_timeout)
            return ConnectResult(
                success=False,
                message=f"PowerCLI configuration failed: {configuration.message}",
                configuration=configuration,
            )

        queue = SerializedCommandQueue(self.channel, session, name=connection_key)

        if bypass_module_check:
            logger.warning("Connected in bypass mode - only basic shell commands are available")
            connection = _Connection(
                key=connection_key,
                server_address=server,
                username=credentials.username,
                session=session,
                queue=queue,
                session_id=f"bypass-{uuid.uuid4().hex}",
                vcenter_version=BYPASS_VERSION,
                bypass=True,
            )
            self._register(connection)
            return ConnectResult(
                success=True,
                message="Connected in bypass mode - PowerCLI modules skipped",
                session_id=connection.session_id,
                vcenter_version=BYPASS_VERSION,
                configuration=configuration,
            )

        logger.info(f"Connecting to vCenter {server}...")
        script = script_builder.build_vcenter_connection_script(
            server, credentials.username, credentials.password, connection_key
        )
        output = queue.execute(script, self.connect_timeout)
        succeeded, session_id, version, failure = parse_connect_output(output)

        if not succeeded:
            failure = LogSanitizer.sanitize(failure)
            kind = classify_connection_error(failure)
            logger.error(f"Connection to {server} failed ({kind}): {failure}")
            if kind in _GUIDANCE:
                logger.info(f"Suggestion: {_GUIDANCE[kind]}")
            queue.close()
            self.session_manager.terminate_session(session, self.terminate_timeout)
            return ConnectResult(
                success=False, message=failure, failure_kind=kind, configuration=configuration
            )

        connection = _Connection(
            key=connection_key,
            server_address=server,
            username=credentials.username,
            session=session,
            queue=queue,
            session_id=session_id,
            vcenter_version=version,
        )
        self._register(connection)
        logger.info(f"Connected to {server} (version {version or 'unknown'})")
        return ConnectResult(
            success=True,
            message=f"Connected to {server}",
            session_id=session_id,
            vcenter_version=version,
            configuration=configuration,
        )

    def connect_with_provider(
        self,
        target: str,
        provider: CredentialProvider,
        connection_key: str = "source",
        bypass_module_check: bool = False,
    ) -> ConnectResult:
        """Resolve credentials for ``target`` and connect.

        Raises:
            CredentialError: If the provider cannot supply credentials
        """
        credentials = provider.get_credentials(target)
        return self.connect(credentials, connection_key, bypass_module_check)

    def _register(self, connection: _Connection) -> None:
        with self._lock:
            self._connections[connection.key] = connection

    def _get(self, connection_key: str) -> _Connection | None:
        with self._lock:
            return self._connections.get(connection_key)

    def execute_command(
        self, connection_key: str, command: str, timeout: float | None = None
    ) -> str:
        """Run a command on a connection.

        The connection's VIServer is made the default before the command
        runs, so cmdlets target the right vCenter.

        Returns:
            Command output, or an "ERROR: ..." string
        """
        connection = self._get(connection_key)
        if connection is None:
            return format_channel_error(f"No active connection for '{connection_key}'")

        if not connection.bypass:
            command = (
                f"{script_builder.build_connection_validation_script(connection_key)}\n{command}"
            )
        return connection.queue.execute(command, timeout or self.command_timeout)

    def run_script(
        self,
        connection_key: str,
        script_path: str | Path,
        parameters: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> str:
        """Run a .ps1 script file on a connection with named parameters.

        The script runs inside the connection's session, so it sees the
        configured PowerCLI and the connection's vCenter as the default
        server. Secret-looking parameters are redacted in the log.

        Returns:
            Script output, or an "ERROR: ..." string (also when the file
            does not exist)

        Raises:
            ConnectionServiceError: If a parameter name is invalid
        """
        path = Path(script_path).expanduser().resolve()
        if not path.is_file():
            logger.error(f"Script not found at path: {path}")
            return format_channel_error(f"Script not found at {path}")

        try:
            command = script_builder.build_script_invocation(str(path), parameters)
        except ValueError as e:
            raise ConnectionServiceError(str(e)) from e

        safe_parameters = LogSanitizer.sanitize_dict(dict(parameters or {}))
        logger.info(f"Running script {path.name} on '{connection_key}'")
        logger.debug(
            f"Script invocation: {script_builder.build_script_invocation(str(path), safe_parameters)}"
        )
        return self.execute_command(connection_key, command, timeout)

    def run_script_records(
        self,
        connection_key: str,
        script_path: str | Path,
        parameters: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> list[Record]:
        """Run a script and decode its JSON output into records.

        Empty output yields an empty list.

        Raises:
            ConnectionServiceError: If the script could not run or printed
                no decodable JSON
        """
        output = self.run_script(connection_key, script_path, parameters, timeout)
        if output.startswith(ERROR_PREFIX):
            raise ConnectionServiceError(output[len(ERROR_PREFIX) :])
        if not output.strip():
            return []

        name = Path(script_path).name
        try:
            return parse_records(output)
        except ValueError as e:
            logger.warning(f"No valid JSON found in output of {name}: {e}")
            raise ConnectionServiceError(f"Script {name} returned no usable JSON: {e}") from e

    def is_connected(self, connection_key: str) -> bool:
        """Check that the process is alive and the VIServer connection is open."""
        connection = self._get(connection_key)
        if connection is None:
            return False

        if connection.session.has_exited:
            logger.warning(f"Shell process has exited for {connection_key}")
            connection.is_connected = False
            return False

        if connection.bypass:
            return connection.is_connected

        output = connection.queue.execute(
            script_builder.build_is_connected_script(connection_key), self.STATUS_CHECK_TIMEOUT
        )
        connection.is_connected = "True" in output.splitlines()
        return connection.is_connected

    def get_connection_info(self, connection_key: str) -> ConnectionInfo | None:
        connection = self._get(connection_key)
        if connection is None:
            return None
        return ConnectionInfo(
            connection_key=connection.key,
            server_address=connection.server_address,
            username=connection.username,
            is_connected=connection.is_connected and not connection.session.has_exited,
            session_id=connection.session_id,
            vcenter_version=connection.vcenter_version,
            connected_at=connection.connected_at,
            process_id=connection.session.process_id,
            bypass=connection.bypass,
        )

    def connection_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._connections)

    def disconnect(self, connection_key: str) -> bool:
        """Disconnect and tear down a connection.

        Returns:
            True if a connection was registered under the key
        """
        with self._lock:
            connection = self._connections.pop(connection_key, None)
        if connection is None:
            return False

        server = connection.server_address
        logger.info(f"Disconnecting from {server} ({connection_key})")

        if not connection.bypass and not connection.session.has_exited:
            self._disconnect_viserver(connection)

        connection.queue.close(wait=False)
        self.session_manager.terminate_session(connection.session, self.terminate_timeout)
        connection.is_connected = False

        self.closed_events.publish(
            ConnectionClosedEvent(connection_key=connection_key, server_address=server)
        )
        logger.info(f"Disconnected from {server}")
        return True

    def _disconnect_viserver(self, connection: _Connection) -> None:
        """Best-effort Disconnect-VIServer; skipped if PowerCLI holds no connection."""
        wait = self.STATUS_CHECK_TIMEOUT + self.terminate_timeout
        try:
            check = connection.queue.submit(
                script_builder.build_disconnect_check_script(), self.STATUS_CHECK_TIMEOUT
            ).result(timeout=wait)
            if "CONNECTED" in check.splitlines():
                connection.queue.submit(
                    script_builder.build_disconnect_script(connection.server_address),
                    self.STATUS_CHECK_TIMEOUT,
                ).result(timeout=wait)
        except FutureTimeoutError:
            logger.warning(
                f"Connection {connection.key} is busy; skipping Disconnect-VIServer"
            )

    def disconnect_all(self) -> None:
        for key in self.connection_keys():
            self.disconnect(key)

    def close(self) -> None:
        """Disconnect every connection."""
        logger.debug("Closing all persistent connections")
        self.disconnect_all()


__all__ = [
    "ConnectResult",
    "ConnectionInfo",
    "ConnectionServiceError",
    "PersistentConnectionService",
    "classify_connection_error",
    "parse_connect_output",
]
