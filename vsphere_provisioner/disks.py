"""
Virtual disk reconciliation.

Volumes are either disks attached to a VM (found in the VM's device list)
or loose .vmdk files found by browsing datastores. Attach and detach edit
the VM's device list through a single reconfigure task.
"""

import logging
from typing import List, Optional, Set, Union

from pyVmomi import vim

from vsphere_provisioner import devices
from vsphere_provisioner.devices import DEFAULT_CONTROLLER_KEY, DeviceKind
from vsphere_provisioner.endpoint.base import InventoryEndpoint, MachineRecord
from vsphere_provisioner.errors import (
    DeviceNotFound,
    DiskFileInUse,
    ResolutionError,
    TaskFailure,
    ValidationError,
    VolumeNotAttached,
    is_file_lock_message,
)
from vsphere_provisioner.inventory.directory import DataCenterDirectory
from vsphere_provisioner.inventory.resolver import InventoryResolver
from vsphere_provisioner.models.volume import Volume, VolumeState
from vsphere_provisioner.tasks import TaskCoordinator
from vsphere_provisioner.utils import file_basename

logger = logging.getLogger(__name__)

# SCSI unit 7 is taken by the controller itself
SCSI_RESERVED_UNIT = 7
SCSI_MAX_UNIT = 15


def datastore_path(datastore: str, vm_name: str, file_name: str) -> str:
    return f"[{datastore}] {vm_name}/{file_name}"


def _parse_unit(device_id: str) -> int:
    try:
        unit = int(device_id)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid device id {device_id!r}: must be a SCSI unit number")
    if unit < 0 or unit > SCSI_MAX_UNIT or unit == SCSI_RESERVED_UNIT:
        raise ValidationError(f"Invalid device id {device_id!r}: SCSI unit must be 0-15 and not 7")
    return unit


class DiskReconciler:
    """Attach, detach, create, remove and list volumes"""

    def __init__(self, endpoint: InventoryEndpoint, resolver: InventoryResolver,
                 directory: DataCenterDirectory, tasks: TaskCoordinator):
        self.endpoint = endpoint
        self.resolver = resolver
        self.directory = directory
        self.tasks = tasks
        self.region = resolver.region

    def _require_machine(self, machine_id: str) -> MachineRecord:
        record = self.resolver.find_machine(machine_id)
        if record is None:
            raise ResolutionError(f"No such virtual machine: {machine_id}")
        return record

    def _controller(self, record: MachineRecord, changes: list) -> int:
        """Key of the first SCSI controller, adding one to changes if there is none."""
        controller = devices.first_scsi_controller(record.devices)
        if controller is not None:
            return controller.key
        logger.info(f"No SCSI controller on {record.name}, adding one")
        changes.append(devices.add_scsi_controller_spec(DEFAULT_CONTROLLER_KEY))
        return DEFAULT_CONTROLLER_KEY

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def machine_volumes(self, record: MachineRecord, seen: Optional[Set[str]] = None) -> List[Volume]:
        """One Volume per disk device on a VM."""
        volumes = []
        for index, disk in enumerate(devices.of_kind(record.devices, DeviceKind.DISK)):
            file_name = devices.disk_file_name(disk)
            base_name = file_basename(file_name)
            label = disk.deviceInfo.label if disk.deviceInfo else f"Hard disk {index + 1}"
            if seen is not None and base_name:
                seen.add(base_name)

            volumes.append(Volume(
                # Without a backing file name the id is synthesized and may collide across volumes
                id=base_name or f"{record.instance_uuid}-{label}",
                name=label,
                file_path=file_name,
                size_kb=disk.capacityInKB or 0,
                machine_id=record.instance_uuid,
                device_id=str(disk.unitNumber),
                state=VolumeState.AVAILABLE,
                root=disk.unitNumber == 0,
                data_center_id=record.cluster_name,
                region_id=self.region,
                tags={"filePath": file_name} if file_name else {},
            ))
        return volumes

    def list_volumes(self) -> List[Volume]:
        """
        All volumes in the region.

        Pass 1 collects disks attached to VMs. Pass 2 browses every
        datastore for .vmdk descriptors not already seen in pass 1.
        """
        scope = self.resolver.region_datacenter()
        volumes: List[Volume] = []
        seen: Set[str] = set()

        for record in self.resolver.machine_records(scope):
            volumes.extend(self.machine_volumes(record, seen))

        for datastore in self.endpoint.datacenter_datastores(scope):
            data_center_id = self.directory.data_center_for_storage_pool(datastore.name)
            try:
                files = self.tasks.await_task(
                    self.endpoint.search_datastore(datastore, "*.vmdk"),
                    f"browse {datastore.name}"
                )
            except TaskFailure as e:
                logger.warning(f"Skipping datastore {datastore.name}: {e}")
                continue

            for ds_file in files or []:
                name = file_basename(ds_file.path)
                if not name.endswith(".vmdk") or name.endswith("-flat.vmdk"):
                    continue
                if name in seen:
                    continue
                seen.add(name)
                volumes.append(Volume(
                    id=name,
                    name=name,
                    file_path=ds_file.full_path,
                    size_kb=ds_file.size_bytes // 1024,
                    state=VolumeState.AVAILABLE,
                    data_center_id=data_center_id,
                    region_id=self.region,
                    tags={"filePath": ds_file.full_path},
                ))
        return volumes

    def get_volume(self, volume_id: str) -> Optional[Volume]:
        for volume in self.list_volumes():
            if volume.id == volume_id:
                return volume
        return None

    # ------------------------------------------------------------------
    # Attach / detach
    # ------------------------------------------------------------------

    def attach(self, volume_id: str, machine_id: str, device_id: str):
        """
        Attach an existing disk file to a VM at SCSI unit device_id.

        Raises:
            ResolutionError: unknown VM or volume
            DiskFileInUse: the disk file is locked by another VM
            TaskFailure: any other reconfigure failure
        """
        unit = _parse_unit(device_id)
        record = self._require_machine(machine_id)
        volume = self.get_volume(volume_id)
        if volume is None:
            raise ResolutionError(f"No such volume: {volume_id}")

        changes = []
        controller_key = self._controller(record, changes)

        file_name = volume.file_path
        if not file_name:
            if not record.datastores:
                raise ResolutionError(f"No datastore for {record.name}")
            file_name = datastore_path(record.datastores[0], record.name, volume.id)
        changes.append(devices.add_disk_spec(file_name, controller_key, unit, thin=True))

        config = vim.vm.ConfigSpec()
        config.deviceChange = changes

        logger.info(f"Attaching {volume_id} to {record.name} at SCSI {controller_key}:{unit}")
        try:
            self.tasks.await_task(self.endpoint.reconfigure_vm(record.entity, config), "attach volume")
        except TaskFailure as e:
            if is_file_lock_message(e.message):
                raise DiskFileInUse("attach volume", e.message) from e
            raise TaskFailure("attach volume", f"Failed to attach volume: {e.message}") from e

    def detach(self, volume: Union[str, Volume]):
        """
        Remove a disk from its VM and destroy the backing file.

        Passing a Volume skips the lookup; an unattached Volume then fails
        without any endpoint call.
        """
        if isinstance(volume, str):
            found = self.get_volume(volume)
            if found is None:
                raise ResolutionError(f"No such volume: {volume}")
            volume = found

        if not volume.machine_id:
            raise VolumeNotAttached(volume.id)

        record = self._require_machine(volume.machine_id)
        target = None
        for disk in devices.of_kind(record.devices, DeviceKind.DISK):
            disk_id = file_basename(devices.disk_file_name(disk)) or f"{record.instance_uuid}-{volume.name}"
            if disk_id == volume.id:
                target = disk
                break
        if target is None:
            raise DeviceNotFound(volume.id, record.instance_uuid)

        config = vim.vm.ConfigSpec()
        config.deviceChange = [devices.remove_device_spec(target, destroy_file=True)]

        logger.info(f"Detaching {volume.id} from {record.name}")
        self.tasks.await_task(self.endpoint.reconfigure_vm(record.entity, config), "detach volume")

    # ------------------------------------------------------------------
    # Create / remove
    # ------------------------------------------------------------------

    def create(self, name: str, size_gb: int, machine_id: str, device_id: Optional[str] = None) -> Volume:
        """Create a new thin disk on a VM and wait until it shows up."""
        if size_gb < 1:
            raise ValidationError("Volume size must be at least 1 GB")
        record = self._require_machine(machine_id)
        if not record.datastores:
            raise ResolutionError(f"No datastore for {record.name}")

        if device_id is not None:
            unit = _parse_unit(device_id)
        else:
            unit = len(devices.of_kind(record.devices, DeviceKind.DISK))
            if unit >= SCSI_RESERVED_UNIT:
                unit += 1

        changes = []
        controller_key = self._controller(record, changes)
        file_name = datastore_path(record.datastores[0], record.name, f"{name}.vmdk")
        changes.append(devices.add_disk_spec(
            file_name, controller_key, unit,
            capacity_kb=size_gb * 1024 * 1024,
            thin=True,
            create=True,
            label=name,
        ))

        config = vim.vm.ConfigSpec()
        config.deviceChange = changes
        self.tasks.await_task(self.endpoint.reconfigure_vm(record.entity, config), "create volume")

        def observe():
            current = self.resolver.find_machine(machine_id)
            if current is None:
                return None
            for volume in self.machine_volumes(current):
                if volume.device_id == str(unit):
                    return volume
            return None

        return self.tasks.poll_until(observe, f"new volume {name} on {record.name}")

    def remove(self, volume_id: str):
        """Delete an unattached disk file and its flat extent."""
        volume = self.get_volume(volume_id)
        if volume is None:
            raise ResolutionError(f"No such volume: {volume_id}")
        if volume.machine_id:
            raise ValidationError(f"Volume {volume_id} is attached to {volume.machine_id}")

        datacenter = self.resolver.region_datacenter()
        self.tasks.await_task(
            self.endpoint.delete_datastore_file(volume.file_path, datacenter),
            f"delete {volume.file_path}"
        )

        if volume.file_path.endswith(".vmdk"):
            flat_path = volume.file_path[:-len(".vmdk")] + "-flat.vmdk"
            try:
                self.tasks.await_task(
                    self.endpoint.delete_datastore_file(flat_path, datacenter),
                    f"delete {flat_path}"
                )
            except TaskFailure as e:
                # vCenter usually deletes the extent along with the descriptor
                logger.info(f"Flat file {flat_path} not removed: {e}")
