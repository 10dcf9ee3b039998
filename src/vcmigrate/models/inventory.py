"""
Inventory Data Models

A vCenter inventory snapshot is built once by the inventory service and then
only ever replaced as a whole. Individual records are the JSON objects the
collection scripts emit; their shape is owned by the scripts.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

Record = dict[str, Any]


@dataclass(frozen=True)
class InventoryStatistics:
    """Summary counts for one inventory snapshot."""

    datacenter_count: int = 0
    cluster_count: int = 0
    host_count: int = 0
    datastore_count: int = 0
    virtual_machine_count: int = 0
    resource_pool_count: int = 0
    powered_on_vms: int = 0
    powered_off_vms: int = 0
    total_cpu_cores: int = 0
    total_memory_gb: float = 0.0
    total_datastore_capacity_gb: float = 0.0
    total_datastore_used_gb: float = 0.0

    def summary(self) -> str:
        """One-line summary for logs."""
        return (
            f"{self.datacenter_count} DCs, {self.cluster_count} clusters, "
            f"{self.host_count} hosts, {self.virtual_machine_count} VMs, "
            f"{self.datastore_count} datastores"
        )


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _matches(record: Record, key: str, expected: str) -> bool:
    value = record.get(key)
    return isinstance(value, str) and value.casefold() == expected.casefold()


@dataclass(frozen=True)
class InventorySnapshot:
    """Complete snapshot of the objects discovered in one vCenter.

    Attributes:
        vcenter_name: Cache key (target identity)
        vcenter_version: Version/build string reported by the server
        last_updated: UTC time the snapshot was built
        omissions: One entry per sub-load that produced no usable data
    """

    vcenter_name: str
    vcenter_version: str = "Unknown"
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))
    datacenters: tuple[Record, ...] = ()
    clusters: tuple[Record, ...] = ()
    hosts: tuple[Record, ...] = ()
    datastores: tuple[Record, ...] = ()
    virtual_machines: tuple[Record, ...] = ()
    resource_pools: tuple[Record, ...] = ()
    omissions: tuple[str, ...] = ()

    @property
    def is_complete(self) -> bool:
        """True if every sub-load produced data."""
        return not self.omissions

    def is_stale(self, max_age: timedelta = timedelta(minutes=30)) -> bool:
        """True if the snapshot is older than ``max_age``."""
        return datetime.now(UTC) - self.last_updated > max_age

    @property
    def statistics(self) -> InventoryStatistics:
        """Summary statistics computed from the records."""
        return InventoryStatistics(
            datacenter_count=len(self.datacenters),
            cluster_count=len(self.clusters),
            host_count=len(self.hosts),
            datastore_count=len(self.datastores),
            virtual_machine_count=len(self.virtual_machines),
            resource_pool_count=len(self.resource_pools),
            powered_on_vms=sum(1 for vm in self.virtual_machines if vm.get("PowerState") == "PoweredOn"),
            powered_off_vms=sum(
                1 for vm in self.virtual_machines if vm.get("PowerState") == "PoweredOff"
            ),
            total_cpu_cores=int(sum(_number(h.get("CpuCores")) for h in self.hosts)),
            total_memory_gb=round(sum(_number(h.get("MemoryGB")) for h in self.hosts), 2),
            total_datastore_capacity_gb=round(
                sum(_number(d.get("CapacityGB")) for d in self.datastores), 2
            ),
            total_datastore_used_gb=round(sum(_number(d.get("UsedGB")) for d in self.datastores), 2),
        )

    def clusters_in_datacenter(self, datacenter_name: str) -> list[Record]:
        """Clusters belonging to a datacenter (case-insensitive)."""
        return [c for c in self.clusters if _matches(c, "DatacenterName", datacenter_name)]

    def hosts_in_cluster(self, cluster_name: str) -> list[Record]:
        """Hosts belonging to a cluster (case-insensitive)."""
        return [h for h in self.hosts if _matches(h, "ClusterName", cluster_name)]

    def vms_in_cluster(self, cluster_name: str) -> list[Record]:
        """Virtual machines running in a cluster (case-insensitive)."""
        return [vm for vm in self.virtual_machines if _matches(vm, "ClusterName", cluster_name)]


__all__ = ["InventorySnapshot", "InventoryStatistics", "Record"]
