"""
Inventory & Task Endpoint contract.

The engine never touches pyVmomi managed objects directly. It works with
InventoryEntity handles addressed by managed object id (moid); each
endpoint keeps its own arena mapping moids back to remote objects.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from vsphere_provisioner.tasks import RemoteTask


class EntityKind(Enum):
    """Managed entity types, named after their vim type"""
    FOLDER = "Folder"
    DATACENTER = "Datacenter"
    CLUSTER = "ClusterComputeResource"
    HOST = "HostSystem"
    RESOURCE_POOL = "ResourcePool"
    DATASTORE = "Datastore"
    NETWORK = "Network"
    VIRTUAL_MACHINE = "VirtualMachine"


@dataclass(frozen=True)
class InventoryEntity:
    """Opaque reference into the remote inventory tree"""
    kind: EntityKind
    moid: str
    name: str
    parent: Optional[str] = None  # moid of the parent, never an object reference

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.name} ({self.moid})"


@dataclass
class GuestNic:
    """A NIC as reported by VMware Tools"""
    network: Optional[str]
    device_key: int
    ip_addresses: List[str] = field(default_factory=list)


@dataclass
class MachineRecord:
    """Snapshot of a VM's config, runtime and guest properties"""
    entity: InventoryEntity
    instance_uuid: str
    bios_uuid: str
    name: str
    template: bool = False
    guest_id: Optional[str] = None
    guest_full_name: Optional[str] = None
    annotation: Optional[str] = None
    num_cpu: int = 0
    memory_mb: int = 0
    power_state: str = "poweredOff"
    host: Optional[InventoryEntity] = None
    resource_pool: Optional[InventoryEntity] = None
    cluster_name: Optional[str] = None
    boot_time: Optional[datetime] = None
    suspend_time: Optional[datetime] = None
    ip_address: Optional[str] = None
    guest_hostname: Optional[str] = None
    guest_nics: List[GuestNic] = field(default_factory=list)
    devices: List[Any] = field(default_factory=list)  # vim.vm.device.VirtualDevice
    datastores: List[str] = field(default_factory=list)


@dataclass
class DatastoreFile:
    """A file found while browsing a datastore"""
    folder_path: str  # "[datastore1] folder"
    path: str  # file name within folder
    size_bytes: int = 0
    modified: Optional[datetime] = None

    @property
    def full_path(self) -> str:
        if self.folder_path.endswith("]"):
            return f"{self.folder_path} {self.path}"
        return f"{self.folder_path.rstrip('/')}/{self.path}"


@dataclass
class NetworkRecord:
    """A port group, with its distributed switch when it has one"""
    entity: InventoryEntity
    accessible: bool = True
    switch_name: Optional[str] = None
    switch_moid: Optional[str] = None


class InventoryEndpoint(ABC):
    """Read and task operations the engine needs from vCenter"""

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    @abstractmethod
    def root_folder(self) -> InventoryEntity:
        ...

    @abstractmethod
    def find_entities(self, root: InventoryEntity, kind: EntityKind) -> List[InventoryEntity]:
        """All entities of a kind anywhere below root."""

    def find_entity(self, root: InventoryEntity, kind: EntityKind, name: str) -> Optional[InventoryEntity]:
        """First entity of a kind below root with an exact name match."""
        for entity in self.find_entities(root, kind):
            if entity.name == name:
                return entity
        return None

    @abstractmethod
    def vm_folder(self, datacenter: InventoryEntity) -> InventoryEntity:
        ...

    @abstractmethod
    def cluster_root_pool(self, cluster: InventoryEntity) -> Optional[InventoryEntity]:
        ...

    @abstractmethod
    def cluster_datastores(self, cluster: InventoryEntity) -> List[InventoryEntity]:
        ...

    @abstractmethod
    def datacenter_datastores(self, datacenter: InventoryEntity) -> List[InventoryEntity]:
        ...

    @abstractmethod
    def host_config_status(self, host: InventoryEntity) -> str:
        """green, yellow, red or gray"""

    @abstractmethod
    def machine_record(self, vm: InventoryEntity) -> MachineRecord:
        ...

    @abstractmethod
    def network_record(self, network: InventoryEntity) -> NetworkRecord:
        ...

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @abstractmethod
    def clone_vm(self, source: InventoryEntity, folder: InventoryEntity, name: str, config: Any,
                 pool: Optional[InventoryEntity] = None, host: Optional[InventoryEntity] = None,
                 datastore: Optional[InventoryEntity] = None, customization: Any = None,
                 power_on: bool = False, template: bool = False) -> RemoteTask:
        """
        Clone source into folder.

        Args:
            config: vim.vm.ConfigSpec applied to the clone
            pool, host, datastore: Relocation targets; None keeps the source placement
            customization: vim.vm.customization.Specification or None
            template: Mark the clone as a template
        """

    @abstractmethod
    def create_vm(self, folder: InventoryEntity, config: Any, pool: InventoryEntity,
                  host: Optional[InventoryEntity] = None) -> RemoteTask:
        """Create a VM from a vim.vm.ConfigSpec."""

    @abstractmethod
    def reconfigure_vm(self, vm: InventoryEntity, config: Any) -> RemoteTask:
        ...

    @abstractmethod
    def power_on(self, vm: InventoryEntity, host: Optional[InventoryEntity] = None) -> RemoteTask:
        ...

    @abstractmethod
    def power_off(self, vm: InventoryEntity) -> RemoteTask:
        ...

    @abstractmethod
    def suspend(self, vm: InventoryEntity) -> RemoteTask:
        ...

    @abstractmethod
    def destroy(self, vm: InventoryEntity) -> RemoteTask:
        ...

    @abstractmethod
    def search_datastore(self, datastore: InventoryEntity, pattern: str = "*.vmdk") -> RemoteTask:
        """Browse a datastore recursively; result is a list of DatastoreFile."""

    @abstractmethod
    def delete_datastore_file(self, path: str, datacenter: InventoryEntity) -> RemoteTask:
        ...

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @abstractmethod
    def disconnect(self) -> None:
        ...
