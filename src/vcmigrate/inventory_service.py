"""vCenter inventory loading and caching.

Loads run their queries strictly in sequence through a command executor
(normally the connection service, which serializes per session). The
snapshot is assembled locally and swapped into the cache in one step, so a
reader sees either the previous snapshot or the new one, never a mix.

Public API (the "studs"):
    InventoryService: Cache of InventorySnapshot per vCenter
    InventoryServiceError: Load could not start
    CommandExecutor: Protocol for anything that runs commands by connection key
"""

import json
import logging
import threading
from typing import Any, Protocol

from vcmigrate import script_builder
from vcmigrate.command_channel import ChannelFailure, classify_channel_result
from vcmigrate.events import ConnectionClosedEvent, EventChannel, InventoryUpdatedEvent
from vcmigrate.models.inventory import InventorySnapshot, Record

logger = logging.getLogger(__name__)


class InventoryServiceError(Exception):
    """Raised when an inventory load cannot start."""

    pass


class CommandExecutor(Protocol):
    def execute_command(
        self, connection_key: str, command: str, timeout: float | None = None
    ) -> str: ...


# (snapshot field, label, script) in load order
_SUB_LOADS = (
    ("datacenters", "datacenters", script_builder.DATACENTERS_SCRIPT),
    ("clusters", "clusters", script_builder.CLUSTERS_SCRIPT),
    ("hosts", "hosts", script_builder.HOSTS_SCRIPT),
    ("datastores", "datastores", script_builder.DATASTORES_SCRIPT),
    ("virtual_machines", "virtual machines", script_builder.VIRTUAL_MACHINES_SCRIPT),
    ("resource_pools", "resource pools", script_builder.RESOURCE_POOLS_SCRIPT),
)


def parse_records(output: str) -> list[Record]:
    """Parse JSON collection output into a list of records.

    A single JSON object is treated as a one-element list (PowerShell's
    ConvertTo-Json does not wrap single results). Stderr shares the output
    buffer, so warning lines may precede the document: decoding starts at
    the first line beginning with ``[`` or ``{`` that decodes, and anything
    after the document is ignored.

    Raises:
        ValueError: If no line starts a JSON document, or none decodes

    Example:
        >>> parse_records('WARNING: cmdlet is deprecated\\n[{"Name": "DC1"}]')
        [{'Name': 'DC1'}]
    """
    decoder = json.JSONDecoder()
    first_error: json.JSONDecodeError | None = None
    offset = 0

    for line in output.splitlines(keepends=True):
        stripped = line.lstrip()
        if stripped.startswith(("[", "{")):
            try:
                data, _ = decoder.raw_decode(output, offset + len(line) - len(stripped))
            except json.JSONDecodeError as e:
                first_error = first_error or e
            else:
                if isinstance(data, dict):
                    data = [data]
                return [item for item in data if isinstance(item, dict)]
        offset += len(line)

    if first_error is None:
        raise ValueError("output is not JSON")
    raise ValueError(f"invalid JSON: {first_error.msg}") from first_error


class InventoryService:
    """Loads vCenter inventories and caches the latest snapshot per vCenter."""

    DEFAULT_COMMAND_TIMEOUT = 300.0

    def __init__(
        self,
        executor: CommandExecutor,
        events: EventChannel[InventoryUpdatedEvent] | None = None,
        command_timeout: float | None = None,
    ):
        self.executor = executor
        self.events: EventChannel[InventoryUpdatedEvent] = events or EventChannel("inventory")
        self.command_timeout = command_timeout or self.DEFAULT_COMMAND_TIMEOUT
        self._cache: dict[str, InventorySnapshot] = {}
        self._loaded_via: dict[str, str] = {}  # vcenter name -> connection key
        self._lock = threading.Lock()

    def get_cached_inventory(self, vcenter_name: str) -> InventorySnapshot | None:
        """Return the cached snapshot for a vCenter, if any."""
        with self._lock:
            return self._cache.get(vcenter_name)

    def cached_names(self) -> list[str]:
        with self._lock:
            return sorted(self._cache)

    def clear_inventory(self, vcenter_name: str) -> bool:
        """Drop the cached snapshot. Returns True if one was present."""
        with self._lock:
            removed = self._cache.pop(vcenter_name, None) is not None
            self._loaded_via.pop(vcenter_name, None)
        if removed:
            logger.info(f"Cleared inventory cache for {vcenter_name}")
        return removed

    def load_inventory(self, vcenter_name: str, connection_key: str = "source") -> InventorySnapshot:
        """Load a full inventory and store it in the cache.

        Sub-loads that produce no usable data are recorded as omissions on
        the snapshot instead of failing the load.

        Args:
            vcenter_name: Cache key for the vCenter
            connection_key: Connection to run the queries on

        Returns:
            The new snapshot (also stored in the cache)

        Raises:
            InventoryServiceError: If the connection is unavailable before
                any sub-load runs (nothing is cached)
        """
        logger.info(f"Loading inventory for {vcenter_name} via '{connection_key}' connection...")

        version_output = self._run(connection_key, script_builder.VCENTER_VERSION_SCRIPT)
        failure = classify_channel_result(version_output)
        if failure is ChannelFailure.SESSION_UNAVAILABLE:
            raise InventoryServiceError(
                f"Cannot load inventory for {vcenter_name}: {version_output}"
            )

        omissions: list[str] = []
        if failure is not None or not version_output.strip():
            omissions.append("version: no version reported")
            version = "Unknown"
        else:
            version = version_output.strip().splitlines()[-1].strip()

        collected: dict[str, tuple[Record, ...]] = {}
        for field_name, label, script in _SUB_LOADS:
            records, omission = self._load_records(connection_key, label, script)
            collected[field_name] = tuple(records)
            if omission:
                omissions.append(omission)

        snapshot = InventorySnapshot(
            vcenter_name=vcenter_name,
            vcenter_version=version,
            omissions=tuple(omissions),
            **collected,
        )

        with self._lock:
            self._cache[vcenter_name] = snapshot
            self._loaded_via[vcenter_name] = connection_key

        logger.info(f"Inventory loaded for {vcenter_name}: {snapshot.statistics.summary()}")
        if omissions:
            logger.warning(f"Inventory for {vcenter_name} is incomplete: {'; '.join(omissions)}")

        self.events.publish(InventoryUpdatedEvent(vcenter_name=vcenter_name, snapshot=snapshot))
        return snapshot

    def refresh_inventory(self, vcenter_name: str, connection_key: str = "source") -> InventorySnapshot:
        """Evict the cached snapshot, then load a fresh one."""
        self.clear_inventory(vcenter_name)
        return self.load_inventory(vcenter_name, connection_key)

    def handle_connection_closed(self, event: ConnectionClosedEvent) -> None:
        """Drop snapshots loaded through a connection that was closed."""
        with self._lock:
            names = {
                name for name, key in self._loaded_via.items() if key == event.connection_key
            }
        names.add(event.server_address)
        for name in sorted(names):
            self.clear_inventory(name)

    def attach(self, connection_service: Any) -> None:
        """Subscribe to a connection service's disconnect notifications."""
        connection_service.closed_events.subscribe(self.handle_connection_closed)

    def _run(self, connection_key: str, script: str) -> str:
        return self.executor.execute_command(connection_key, script, timeout=self.command_timeout)

    def _load_records(
        self, connection_key: str, label: str, script: str
    ) -> tuple[list[Record], str | None]:
        output = self._run(connection_key, script)
        if classify_channel_result(output) is not None:
            logger.warning(f"Failed to load {label}: {output}")
            return [], f"{label}: {output}"
        if not output.strip():
            logger.warning(f"No {label} returned")
            return [], f"{label}: empty output"
        try:
            records = parse_records(output)
        except ValueError as e:
            logger.warning(f"Failed to parse {label}: {e}")
            return [], f"{label}: {e}"

        logger.debug(f"Loaded {len(records)} {label}")
        return records, None


__all__ = ["CommandExecutor", "InventoryService", "InventoryServiceError", "parse_records"]
