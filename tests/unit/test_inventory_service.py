"""Tests for inventory_service module."""

import json
import threading

import pytest

from vcmigrate import script_builder
from vcmigrate.events import ConnectionClosedEvent, EventChannel, InventoryUpdatedEvent
from vcmigrate.inventory_service import InventoryService, InventoryServiceError, parse_records

SCRIPT_OUTPUTS = {
    script_builder.VCENTER_VERSION_SCRIPT: "8.0.2 (Build 22617221)",
    script_builder.DATACENTERS_SCRIPT: json.dumps({"Name": "DC1", "ClusterCount": 1}),
    script_builder.CLUSTERS_SCRIPT: json.dumps([{"Name": "Prod", "DatacenterName": "DC1"}]),
    script_builder.HOSTS_SCRIPT: json.dumps(
        [{"Name": "esx1", "ClusterName": "Prod", "CpuCores": 32, "MemoryGB": 512}]
    ),
    script_builder.DATASTORES_SCRIPT: json.dumps([{"Name": "ds1", "CapacityGB": 1000}]),
    script_builder.VIRTUAL_MACHINES_SCRIPT: json.dumps(
        [
            {"Name": "vm1", "PowerState": "PoweredOn", "ClusterName": "Prod"},
            {"Name": "vm2", "PowerState": "PoweredOff", "ClusterName": "Prod"},
        ]
    ),
    script_builder.RESOURCE_POOLS_SCRIPT: json.dumps([{"Name": "Resources"}]),
}


class FakeExecutor:
    """Connection service stand-in answering inventory scripts."""

    def __init__(self, outputs: dict[str, str] | None = None):
        self.outputs = dict(SCRIPT_OUTPUTS if outputs is None else outputs)
        self.calls: list[tuple[str, str, float | None]] = []
        self.closed_events: EventChannel[ConnectionClosedEvent] = EventChannel()

    def execute_command(self, connection_key: str, command: str, timeout: float | None = None) -> str:
        self.calls.append((connection_key, command, timeout))
        return self.outputs.get(command, "")


class TestParseRecords:
    """Test JSON record parsing."""

    def test_single_object_is_wrapped(self) -> None:
        """A lone object becomes a one-element list."""
        assert parse_records('{"Name": "a"}') == [{"Name": "a"}]

    def test_leading_diagnostic_lines_are_skipped(self) -> None:
        """Warnings merged from stderr ahead of the document are ignored."""
        output = 'WARNING: The cmdlet is deprecated\nnoise\n[{"Name": "dc1"}]'

        assert parse_records(output) == [{"Name": "dc1"}]

    def test_multiline_document_with_trailing_noise(self) -> None:
        """Pretty-printed JSON decodes across lines; trailing text is ignored."""
        output = 'late residue\n{\n  "Name": "esx1",\n  "CpuCores": 32\n}\nWARNING: done'

        assert parse_records(output) == [{"Name": "esx1", "CpuCores": 32}]

    def test_bracketed_noise_before_document(self) -> None:
        """A noise line that merely starts with a bracket is passed over."""
        output = '[WARN] slow response\n[{"Name": "ds1"}]'

        assert parse_records(output) == [{"Name": "ds1"}]

    def test_non_json_raises(self) -> None:
        """Text that does not start like JSON is rejected."""
        with pytest.raises(ValueError, match="not JSON"):
            parse_records("Get-View : not connected")

    def test_invalid_json_raises(self) -> None:
        """JSON-shaped but undecodable output is rejected."""
        with pytest.raises(ValueError, match="invalid JSON"):
            parse_records('[{"Name": ')


class TestLoadInventory:
    """Test loading, caching and partial failures."""

    def test_full_load(self) -> None:
        """All sub-loads succeed and the snapshot is cached."""
        executor = FakeExecutor()
        service = InventoryService(executor, command_timeout=60)

        snapshot = service.load_inventory("vc01", connection_key="target")

        assert snapshot.vcenter_version == "8.0.2 (Build 22617221)"
        assert snapshot.is_complete
        assert snapshot.datacenters == ({"Name": "DC1", "ClusterCount": 1},)
        assert snapshot.statistics.powered_on_vms == 1
        assert service.get_cached_inventory("vc01") is snapshot
        assert service.cached_names() == ["vc01"]
        assert all(key == "target" and timeout == 60 for key, _, timeout in executor.calls)

    def test_sub_loads_run_in_order(self) -> None:
        """Queries run one after another in a fixed order."""
        executor = FakeExecutor()

        InventoryService(executor).load_inventory("vc01")

        assert [command for _, command, _ in executor.calls] == [
            script_builder.VCENTER_VERSION_SCRIPT,
            script_builder.DATACENTERS_SCRIPT,
            script_builder.CLUSTERS_SCRIPT,
            script_builder.HOSTS_SCRIPT,
            script_builder.DATASTORES_SCRIPT,
            script_builder.VIRTUAL_MACHINES_SCRIPT,
            script_builder.RESOURCE_POOLS_SCRIPT,
        ]

    def test_partial_failure_records_omissions(self) -> None:
        """Bad sub-loads are omitted; the rest of the snapshot is kept."""
        outputs = dict(SCRIPT_OUTPUTS)
        outputs[script_builder.HOSTS_SCRIPT] = "Get-View : You are not currently connected"
        outputs[script_builder.DATASTORES_SCRIPT] = ""
        outputs[script_builder.RESOURCE_POOLS_SCRIPT] = "ERROR: Command timed out after 300 seconds"
        service = InventoryService(FakeExecutor(outputs))

        snapshot = service.load_inventory("vc01")

        assert snapshot.hosts == ()
        assert snapshot.datastores == ()
        assert len(snapshot.virtual_machines) == 2
        assert not snapshot.is_complete
        assert [o.split(":")[0] for o in snapshot.omissions] == [
            "hosts",
            "datastores",
            "resource pools",
        ]

    def test_missing_version(self) -> None:
        """No version output is recorded as an omission."""
        outputs = dict(SCRIPT_OUTPUTS)
        del outputs[script_builder.VCENTER_VERSION_SCRIPT]

        snapshot = InventoryService(FakeExecutor(outputs)).load_inventory("vc01")

        assert snapshot.vcenter_version == "Unknown"
        assert snapshot.omissions[0].startswith("version")

    def test_unavailable_connection_raises_and_caches_nothing(self) -> None:
        """A missing connection aborts before any sub-load."""
        executor = FakeExecutor({script_builder.VCENTER_VERSION_SCRIPT: "ERROR: No active connection for 'source'"})
        service = InventoryService(executor)

        with pytest.raises(InventoryServiceError, match="No active connection"):
            service.load_inventory("vc01")

        assert service.get_cached_inventory("vc01") is None
        assert len(executor.calls) == 1

    def test_load_replaces_previous_snapshot(self) -> None:
        """A new load swaps in a new snapshot object."""
        service = InventoryService(FakeExecutor())
        first = service.load_inventory("vc01")

        second = service.load_inventory("vc01")

        assert second is not first
        assert service.get_cached_inventory("vc01") is second

    def test_update_event_published(self) -> None:
        """Subscribers are told about the new snapshot."""
        events: EventChannel[InventoryUpdatedEvent] = EventChannel()
        received: list[InventoryUpdatedEvent] = []
        events.subscribe(received.append)

        snapshot = InventoryService(FakeExecutor(), events=events).load_inventory("vc01")

        assert received == [InventoryUpdatedEvent(vcenter_name="vc01", snapshot=snapshot)]

    def test_reader_never_sees_partial_snapshot(self) -> None:
        """While a refresh is in flight, readers get the old snapshot or nothing."""
        gate = threading.Event()
        release = threading.Event()

        class SlowExecutor(FakeExecutor):
            def execute_command(self, connection_key, command, timeout=None):
                if command == script_builder.HOSTS_SCRIPT and gate.is_set():
                    release.wait(timeout=5)
                return super().execute_command(connection_key, command, timeout)

        service = InventoryService(SlowExecutor())
        old = service.load_inventory("vc01")
        gate.set()

        worker = threading.Thread(target=service.load_inventory, args=("vc01",))
        worker.start()
        observed = service.get_cached_inventory("vc01")
        release.set()
        worker.join(timeout=5)

        assert observed is old
        assert service.get_cached_inventory("vc01") is not old


class TestCacheManagement:
    """Test refresh, clear and disconnect handling."""

    def test_refresh_evicts_then_loads(self) -> None:
        """Refresh drops the entry before reloading."""
        service = InventoryService(FakeExecutor())
        old = service.load_inventory("vc01")
        seen_during_load: list[object] = []

        original_run = service._run

        def spy(connection_key: str, script: str) -> str:
            seen_during_load.append(service.get_cached_inventory("vc01"))
            return original_run(connection_key, script)

        service._run = spy
        new = service.refresh_inventory("vc01")

        assert seen_during_load[0] is None
        assert new is not old

    def test_clear_inventory(self) -> None:
        """Clearing reports whether an entry existed."""
        service = InventoryService(FakeExecutor())
        service.load_inventory("vc01")

        assert service.clear_inventory("vc01") is True
        assert service.clear_inventory("vc01") is False
        assert service.cached_names() == []

    def test_noisy_sub_load_is_not_an_omission(self) -> None:
        """Diagnostic lines ahead of the JSON still yield records."""
        outputs = dict(SCRIPT_OUTPUTS)
        outputs[script_builder.HOSTS_SCRIPT] = (
            "WARNING: PowerCLI deprecation notice\n" + SCRIPT_OUTPUTS[script_builder.HOSTS_SCRIPT]
        )

        snapshot = InventoryService(FakeExecutor(outputs)).load_inventory("vc01")

        assert snapshot.is_complete
        assert snapshot.hosts[0]["Name"] == "esx1"

    def test_failed_refresh_leaves_nothing_cached(self) -> None:
        """A refresh that cannot start evicts the old entry and caches nothing."""
        executor = FakeExecutor()
        service = InventoryService(executor)
        service.load_inventory("vc01")
        executor.outputs[script_builder.VCENTER_VERSION_SCRIPT] = (
            "ERROR: No active connection for 'source'"
        )

        with pytest.raises(InventoryServiceError):
            service.refresh_inventory("vc01")

        assert service.get_cached_inventory("vc01") is None

        executor.outputs[script_builder.VCENTER_VERSION_SCRIPT] = "8.0.3 (Build 24022515)"
        snapshot = service.load_inventory("vc01")
        assert service.get_cached_inventory("vc01") is snapshot

    def test_connection_closed_clears_entries(self) -> None:
        """Snapshots loaded through a closed connection are dropped."""
        executor = FakeExecutor()
        service = InventoryService(executor)
        service.attach(executor)
        service.load_inventory("vc01", connection_key="source")
        service.load_inventory("vc02", connection_key="target")

        executor.closed_events.publish(
            ConnectionClosedEvent(connection_key="source", server_address="vc01.lab.local")
        )

        assert service.cached_names() == ["vc02"]
