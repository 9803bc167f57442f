"""
In-memory Inventory & Task Endpoint for tests.

Entities live in an arena keyed by moid with parent links stored as keys.
Task operations apply real pyVmomi ConfigSpec/device specs to MachineRecord
snapshots and complete immediately.
"""

import dataclasses
import itertools
import re
from collections import defaultdict
from typing import Dict, List, Optional

from pyVmomi import vim

from vsphere_provisioner.endpoint.base import (
    DatastoreFile,
    EntityKind,
    GuestNic,
    InventoryEndpoint,
    InventoryEntity,
    MachineRecord,
    NetworkRecord,
)
from vsphere_provisioner.tasks import RemoteTask, TaskOutcome, TaskState


def make_disk(file_name: str, unit: int, controller_key: int = 1000, key: int = 2000,
              label: str = "Hard disk 1", capacity_kb: int = 1048576):
    disk = vim.vm.device.VirtualDisk()
    disk.key = key
    disk.controllerKey = controller_key
    disk.unitNumber = unit
    disk.capacityInKB = capacity_kb
    disk.deviceInfo = vim.Description(label=label, summary=label)
    disk.backing = vim.vm.device.VirtualDisk.FlatVer2BackingInfo(fileName=file_name, diskMode="persistent")
    return disk


def make_controller(key: int = 1000):
    controller = vim.vm.device.VirtualLsiLogicController()
    controller.key = key
    controller.busNumber = 0
    controller.sharedBus = vim.vm.device.VirtualSCSIController.Sharing.noSharing
    return controller


def make_nic(network: str, key: int = 4000):
    nic = vim.vm.device.VirtualVmxnet3()
    nic.key = key
    nic.backing = vim.vm.device.VirtualEthernetCard.NetworkBackingInfo(deviceName=network)
    return nic


class FakeEndpoint(InventoryEndpoint):
    """Arena-backed endpoint. Every public call is recorded in self.calls."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.entities: Dict[str, InventoryEntity] = {}
        self.children: Dict[str, List[str]] = defaultdict(list)
        self.host_status: Dict[str, str] = {}
        self.records: Dict[str, MachineRecord] = {}
        self.vm_folders: Dict[str, str] = {}
        self.root_pools: Dict[str, str] = {}
        self.cluster_ds: Dict[str, List[str]] = defaultdict(list)
        self.dc_ds: Dict[str, List[str]] = defaultdict(list)
        self.files: Dict[str, List[DatastoreFile]] = defaultdict(list)
        self.networks: Dict[str, NetworkRecord] = {}
        self.switches: Dict[str, str] = {}
        self.locked_files = set()
        # operation -> queue of error messages; None in the queue means succeed
        self.task_errors: Dict[str, List[Optional[str]]] = defaultdict(list)
        # pool name -> clone/create error message
        self.pool_errors: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.disconnects = 0
        self.disconnect_error: Optional[Exception] = None
        self.root = self._add(EntityKind.FOLDER, "Datacenters", None)

    # ------------------------------------------------------------------
    # Building the inventory
    # ------------------------------------------------------------------

    def _add(self, kind: EntityKind, name: str, parent: Optional[InventoryEntity]) -> InventoryEntity:
        moid = f"{kind.value.lower()}-{next(self._ids)}"
        entity = InventoryEntity(kind=kind, moid=moid, name=name, parent=parent.moid if parent else None)
        self.entities[moid] = entity
        if parent is not None:
            self.children[parent.moid].append(moid)
        return entity

    def add_datacenter(self, name: str) -> InventoryEntity:
        dc = self._add(EntityKind.DATACENTER, name, self.root)
        vm_folder = self._add(EntityKind.FOLDER, "vm", dc)
        self._add(EntityKind.FOLDER, "host", dc)
        self._add(EntityKind.FOLDER, "network", dc)
        self.vm_folders[dc.moid] = vm_folder.moid
        return dc

    def add_folder(self, parent: InventoryEntity, name: str) -> InventoryEntity:
        return self._add(EntityKind.FOLDER, name, parent)

    def add_cluster(self, dc: InventoryEntity, name: str, hosts=()) -> InventoryEntity:
        host_folder = self._child(dc, EntityKind.FOLDER, "host")
        cluster = self._add(EntityKind.CLUSTER, name, host_folder)
        root_pool = self._add(EntityKind.RESOURCE_POOL, "Resources", cluster)
        self.root_pools[cluster.moid] = root_pool.moid
        for host_name, status in hosts:
            self.add_host(cluster, host_name, status)
        return cluster

    def add_host(self, cluster: InventoryEntity, name: str, status: str = "green") -> InventoryEntity:
        host = self._add(EntityKind.HOST, name, cluster)
        self.host_status[host.moid] = status
        return host

    def add_pool(self, parent: InventoryEntity, name: str) -> InventoryEntity:
        if parent.kind == EntityKind.CLUSTER:
            parent = self.entities[self.root_pools[parent.moid]]
        return self._add(EntityKind.RESOURCE_POOL, name, parent)

    def add_datastore(self, dc: InventoryEntity, name: str, clusters=()) -> InventoryEntity:
        ds = self._add(EntityKind.DATASTORE, name, dc)
        self.dc_ds[dc.moid].append(ds.moid)
        for cluster in clusters:
            self.cluster_ds[cluster.moid].append(ds.moid)
        return ds

    def add_network(self, dc: InventoryEntity, name: str, switch: Optional[str] = None,
                    accessible: bool = True) -> InventoryEntity:
        network_folder = self._child(dc, EntityKind.FOLDER, "network")
        network = self._add(EntityKind.NETWORK, name, network_folder)
        switch_moid = None
        if switch is not None:
            switch_moid = self.switches.setdefault(switch, f"dvs-{next(self._ids)}")
        self.networks[network.moid] = NetworkRecord(
            entity=network, accessible=accessible, switch_name=switch, switch_moid=switch_moid,
        )
        return network

    def add_file(self, datastore: str, folder: str, name: str, size_bytes: int = 1048576):
        self.files[datastore].append(DatastoreFile(
            folder_path=f"[{datastore}] {folder}/" if folder else f"[{datastore}]",
            path=name,
            size_bytes=size_bytes,
        ))

    def add_machine(self, dc: InventoryEntity, name: str, instance_uuid: str, bios_uuid: Optional[str] = None,
                    template: bool = False, cluster: Optional[InventoryEntity] = None,
                    host: Optional[InventoryEntity] = None, pool: Optional[InventoryEntity] = None,
                    devices=(), guest_full_name: str = "Ubuntu Linux (64-bit)",
                    guest_id: str = "ubuntu64Guest", power_state: str = "poweredOff",
                    num_cpu: int = 1, memory_mb: int = 1024, datastores=("ds1",),
                    annotation: Optional[str] = None, ip_address: Optional[str] = None) -> MachineRecord:
        folder = self.entities[self.vm_folders[dc.moid]]
        entity = self._add(EntityKind.VIRTUAL_MACHINE, name, folder)
        if cluster is not None and pool is None and not template:
            pool = self.entities[self.root_pools[cluster.moid]]
        if cluster is not None and host is None:
            hosts = [e for e in self._walk(cluster) if e.kind == EntityKind.HOST]
            host = hosts[0] if hosts else None
        record = MachineRecord(
            entity=entity,
            instance_uuid=instance_uuid,
            bios_uuid=bios_uuid or f"bios-{instance_uuid}",
            name=name,
            template=template,
            guest_id=guest_id,
            guest_full_name=guest_full_name,
            annotation=annotation,
            num_cpu=num_cpu,
            memory_mb=memory_mb,
            power_state=power_state,
            host=host,
            resource_pool=pool,
            cluster_name=cluster.name if cluster else None,
            ip_address=ip_address,
            devices=list(devices),
            datastores=list(datastores),
        )
        record.guest_nics = self._guest_nics(record.devices)
        self.records[entity.moid] = record
        return record

    # ------------------------------------------------------------------
    # Arena helpers
    # ------------------------------------------------------------------

    def _walk(self, root: InventoryEntity):
        stack = list(reversed(self.children[root.moid]))
        while stack:
            entity = self.entities[stack.pop()]
            yield entity
            stack.extend(reversed(self.children[entity.moid]))

    def _child(self, parent: InventoryEntity, kind: EntityKind, name: str) -> InventoryEntity:
        for moid in self.children[parent.moid]:
            entity = self.entities[moid]
            if entity.kind == kind and entity.name == name:
                return entity
        raise KeyError(name)

    def _ancestor(self, entity: Optional[InventoryEntity], kind: EntityKind) -> Optional[InventoryEntity]:
        while entity is not None:
            if entity.kind == kind:
                return entity
            entity = self.entities.get(entity.parent) if entity.parent else None
        return None

    def _guest_nics(self, devices) -> List[GuestNic]:
        nics = []
        for device in devices:
            if isinstance(device, vim.vm.device.VirtualEthernetCard):
                nics.append(GuestNic(network=device.backing.deviceName, device_key=device.key))
        return nics

    def _apply_device_changes(self, devices: list, changes) -> list:
        devices = list(devices)
        next_key = max([d.key for d in devices] + [5000]) + 1
        for change in changes or []:
            if change.operation == vim.vm.device.VirtualDeviceSpec.Operation.remove:
                devices = [d for d in devices if d.key != change.device.key]
                if change.fileOperation == vim.vm.device.VirtualDeviceSpec.FileOperation.destroy:
                    self._delete_file(change.device.backing.fileName)
            else:
                device = change.device
                if device.key is None or device.key <= 0 or (
                        isinstance(device, vim.vm.device.VirtualSCSIController)
                        and any(d.key == device.key for d in devices)):
                    device.key = next_key
                    next_key += 1
                devices.append(device)
        return devices

    def _delete_file(self, full_path: str) -> bool:
        for ds_name, files in self.files.items():
            for ds_file in files:
                if ds_file.full_path == full_path:
                    files.remove(ds_file)
                    return True
        return False

    def record_by_name(self, name: str) -> Optional[MachineRecord]:
        for record in self.records.values():
            if record.name == name:
                return record
        return None

    def record_by_uuid(self, instance_uuid: str) -> Optional[MachineRecord]:
        for record in self.records.values():
            if record.instance_uuid == instance_uuid:
                return record
        return None

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _task(self, operation: str, apply, error: Optional[str] = None) -> RemoteTask:
        queue = self.task_errors.get(operation)
        if error is None and queue:
            error = queue.pop(0)
        if error is not None:
            outcome = TaskOutcome(TaskState.ERROR, error_message=error)
        else:
            outcome = TaskOutcome(TaskState.SUCCESS, result=apply())
        return RemoteTask(operation, lambda: outcome)

    # ------------------------------------------------------------------
    # InventoryEndpoint
    # ------------------------------------------------------------------

    def root_folder(self) -> InventoryEntity:
        self.calls.append(("root_folder",))
        return self.root

    def find_entities(self, root: InventoryEntity, kind: EntityKind) -> List[InventoryEntity]:
        self.calls.append(("find_entities", root.name, kind))
        return [e for e in self._walk(root) if e.kind == kind]

    def vm_folder(self, datacenter: InventoryEntity) -> InventoryEntity:
        self.calls.append(("vm_folder", datacenter.name))
        return self.entities[self.vm_folders[datacenter.moid]]

    def cluster_root_pool(self, cluster: InventoryEntity) -> Optional[InventoryEntity]:
        self.calls.append(("cluster_root_pool", cluster.name))
        moid = self.root_pools.get(cluster.moid)
        return self.entities[moid] if moid else None

    def cluster_datastores(self, cluster: InventoryEntity) -> List[InventoryEntity]:
        self.calls.append(("cluster_datastores", cluster.name))
        return [self.entities[m] for m in self.cluster_ds[cluster.moid]]

    def datacenter_datastores(self, datacenter: InventoryEntity) -> List[InventoryEntity]:
        self.calls.append(("datacenter_datastores", datacenter.name))
        return [self.entities[m] for m in self.dc_ds[datacenter.moid]]

    def host_config_status(self, host: InventoryEntity) -> str:
        self.calls.append(("host_config_status", host.name))
        return self.host_status.get(host.moid, "gray")

    def machine_record(self, vm: InventoryEntity) -> MachineRecord:
        self.calls.append(("machine_record", vm.name))
        record = self.records[vm.moid]
        # VMware Tools reports guest NICs only while the VM runs
        guest_nics = list(record.guest_nics) if record.power_state == "poweredOn" else []
        return dataclasses.replace(record, devices=list(record.devices), guest_nics=guest_nics)

    def network_record(self, network: InventoryEntity) -> NetworkRecord:
        self.calls.append(("network_record", network.name))
        return dataclasses.replace(self.networks[network.moid])

    def clone_vm(self, source, folder, name, config, pool=None, host=None, datastore=None,
                 customization=None, power_on=False, template=False) -> RemoteTask:
        self.calls.append(("clone_vm", source.name, name, pool.name if pool else None))
        self.last_clone = dict(source=source, folder=folder, name=name, config=config, pool=pool,
                               host=host, datastore=datastore, customization=customization,
                               power_on=power_on, template=template)
        src = self.records[source.moid]

        def apply():
            target_pool = pool or src.resource_pool
            cluster = self._ancestor(target_pool, EntityKind.CLUSTER)
            target_host = host or src.host
            if target_host is None and cluster is not None:
                hosts = [e for e in self._walk(cluster) if e.kind == EntityKind.HOST]
                target_host = hosts[0] if hosts else None
            entity = self._add(EntityKind.VIRTUAL_MACHINE, name, folder)
            n = next(self._ids)
            record = MachineRecord(
                entity=entity,
                instance_uuid=f"inst-{n}",
                bios_uuid=f"bios-{n}",
                name=name,
                template=template,
                guest_id=src.guest_id,
                guest_full_name=src.guest_full_name,
                annotation=config.annotation,
                num_cpu=config.numCPUs or src.num_cpu,
                memory_mb=config.memoryMB or src.memory_mb,
                power_state="poweredOn" if power_on else "poweredOff",
                host=target_host,
                resource_pool=None if template else target_pool,
                cluster_name=cluster.name if cluster else src.cluster_name,
                devices=self._apply_device_changes(src.devices, config.deviceChange),
                datastores=[datastore.name] if datastore else list(src.datastores),
            )
            record.guest_nics = self._guest_nics(record.devices)
            self.records[entity.moid] = record
            return entity.moid

        return self._task("clone", apply, self.pool_errors.get(pool.name) if pool else None)

    def create_vm(self, folder, config, pool, host=None) -> RemoteTask:
        self.calls.append(("create_vm", config.name, pool.name))
        self.last_create = dict(folder=folder, config=config, pool=pool, host=host)

        def apply():
            cluster = self._ancestor(pool, EntityKind.CLUSTER)
            target_host = host
            if target_host is None and cluster is not None:
                hosts = [e for e in self._walk(cluster) if e.kind == EntityKind.HOST]
                target_host = hosts[0] if hosts else None
            match = re.match(r"\[([^\]]+)\]", config.files.vmPathName)
            entity = self._add(EntityKind.VIRTUAL_MACHINE, config.name, folder)
            n = next(self._ids)
            record = MachineRecord(
                entity=entity,
                instance_uuid=f"inst-{n}",
                bios_uuid=f"bios-{n}",
                name=config.name,
                guest_id=config.guestId,
                guest_full_name=config.guestId,
                annotation=config.annotation,
                num_cpu=config.numCPUs,
                memory_mb=config.memoryMB,
                host=target_host,
                resource_pool=pool,
                cluster_name=cluster.name if cluster else None,
                devices=self._apply_device_changes([], config.deviceChange),
                datastores=[match.group(1)] if match else [],
            )
            record.guest_nics = self._guest_nics(record.devices)
            self.records[entity.moid] = record
            return entity.moid

        return self._task("create", apply, self.pool_errors.get(pool.name))

    def reconfigure_vm(self, vm, config) -> RemoteTask:
        self.calls.append(("reconfigure_vm", vm.name))
        self.last_reconfigure = config
        record = self.records[vm.moid]

        error = None
        for change in config.deviceChange or []:
            backing = getattr(change.device, "backing", None)
            file_name = getattr(backing, "fileName", None)
            if change.operation == vim.vm.device.VirtualDeviceSpec.Operation.add and file_name in self.locked_files:
                error = f"Failed to lock the file {file_name}"

        def apply():
            if config.numCPUs:
                record.num_cpu = config.numCPUs
            if config.memoryMB:
                record.memory_mb = config.memoryMB
            record.devices = self._apply_device_changes(record.devices, config.deviceChange)
            return None

        return self._task("reconfigure", apply, error)

    def power_on(self, vm, host=None) -> RemoteTask:
        self.calls.append(("power_on", vm.name, host.name if host else None))
        record = self.records[vm.moid]

        def apply():
            record.power_state = "poweredOn"
            if host is not None:
                record.host = host

        return self._task("power_on", apply)

    def power_off(self, vm) -> RemoteTask:
        self.calls.append(("power_off", vm.name))
        record = self.records[vm.moid]

        def apply():
            record.power_state = "poweredOff"

        return self._task("power_off", apply)

    def suspend(self, vm) -> RemoteTask:
        self.calls.append(("suspend", vm.name))
        record = self.records[vm.moid]

        def apply():
            record.power_state = "suspended"

        return self._task("suspend", apply)

    def destroy(self, vm) -> RemoteTask:
        self.calls.append(("destroy", vm.name))
        record = self.records[vm.moid]
        error = None
        if record.power_state == "poweredOn":
            error = "The attempted operation cannot be performed in the current state (Powered on)."

        def apply():
            del self.records[vm.moid]
            del self.entities[vm.moid]
            self.children[vm.parent].remove(vm.moid)

        return self._task("destroy", apply, error)

    def search_datastore(self, datastore, pattern="*.vmdk") -> RemoteTask:
        self.calls.append(("search_datastore", datastore.name))
        return self._task("search", lambda: list(self.files.get(datastore.name, [])))

    def delete_datastore_file(self, path, datacenter) -> RemoteTask:
        self.calls.append(("delete_datastore_file", path))
        exists = any(f.full_path == path for files in self.files.values() for f in files)
        error = None if exists else f"File {path} was not found"
        return self._task("delete_file", lambda: self._delete_file(path), error)

    def disconnect(self) -> None:
        self.calls.append(("disconnect",))
        self.disconnects += 1
        if self.disconnect_error is not None:
            raise self.disconnect_error


def build_region(region: str = "Datacenter"):
    """
    One Datacenter with cluster-1 (green host esx-01, root pool), datastore
    ds1 and a Linux template "tmpl-1" whose NIC is on net-B.

    Returns:
        Tuple of (endpoint, datacenter, cluster)
    """
    endpoint = FakeEndpoint()
    dc = endpoint.add_datacenter(region)
    cluster = endpoint.add_cluster(dc, "cluster-1", hosts=[("esx-01", "green")])
    endpoint.add_datastore(dc, "ds1", clusters=[cluster])
    endpoint.add_machine(
        dc, "ubuntu-template", instance_uuid="tmpl-inst-1", bios_uuid="tmpl-1", template=True,
        cluster=cluster, devices=[make_controller(), make_disk("[ds1] ubuntu-template/ubuntu-template.vmdk", 0),
                                  make_nic("net-B")],
        num_cpu=1, memory_mb=1024,
    )
    return endpoint, dc, cluster


def make_settings(**overrides):
    from vsphere_provisioner.config import Settings

    values = dict(
        region="Datacenter",
        account_number="acct",
        task_poll_seconds=0,
        poll_interval_seconds=0,
        provision_timeout_seconds=2,
        power_off_grace_seconds=0,
        reaper_poll_seconds=0.05,
        reaper_timeout_seconds=5,
        background_workers=2,
        vm_folder=None,
    )
    values.update(overrides)
    return Settings(**values)


def no_sleep(seconds):
    pass
