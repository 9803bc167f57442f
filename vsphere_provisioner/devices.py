"""
Virtual device helpers.

vCenter hands back a flat, polymorphic device list. classify() tags each
entry with a DeviceKind so callers can branch on the kind instead of
repeating isinstance checks, and the builders below produce the
VirtualDeviceSpec entries used in ConfigSpec.deviceChange.
"""

from enum import Enum
from typing import Any, Iterable, List, Optional

from pyVmomi import vim

DEFAULT_CONTROLLER_KEY = 1000


class DeviceKind(Enum):
    SCSI_CONTROLLER = "scsi_controller"
    DISK = "disk"
    NIC = "nic"
    OTHER = "other"


def classify(device: Any) -> DeviceKind:
    if isinstance(device, vim.vm.device.VirtualSCSIController):
        return DeviceKind.SCSI_CONTROLLER
    if isinstance(device, vim.vm.device.VirtualDisk):
        return DeviceKind.DISK
    if isinstance(device, vim.vm.device.VirtualEthernetCard):
        return DeviceKind.NIC
    return DeviceKind.OTHER


def of_kind(devices: Iterable[Any], kind: DeviceKind) -> List[Any]:
    return [d for d in devices if classify(d) == kind]


def first_scsi_controller(devices: Iterable[Any]) -> Optional[Any]:
    controllers = of_kind(devices, DeviceKind.SCSI_CONTROLLER)
    return controllers[0] if controllers else None


def disk_file_name(disk: Any) -> Optional[str]:
    backing = getattr(disk, "backing", None)
    return getattr(backing, "fileName", None) if backing is not None else None


def nic_network_name(nic: Any) -> Optional[str]:
    backing = getattr(nic, "backing", None)
    return getattr(backing, "deviceName", None) if backing is not None else None


# ----------------------------------------------------------------------
# Device spec builders
# ----------------------------------------------------------------------

def add_nic_spec(network_name: str) -> vim.vm.device.VirtualDeviceSpec:
    """E1000 adapter bound to a standard port group, connected at power-on."""
    nic = vim.vm.device.VirtualE1000()
    nic.key = 0
    nic.addressType = "generated"
    nic.backing = vim.vm.device.VirtualEthernetCard.NetworkBackingInfo()
    nic.backing.deviceName = network_name
    nic.connectable = vim.vm.device.VirtualDevice.ConnectInfo()
    nic.connectable.connected = True
    nic.connectable.startConnected = True
    nic.connectable.allowGuestControl = True

    spec = vim.vm.device.VirtualDeviceSpec()
    spec.operation = vim.vm.device.VirtualDeviceSpec.Operation.add
    spec.device = nic
    return spec


def remove_device_spec(device: Any, destroy_file: bool = False) -> vim.vm.device.VirtualDeviceSpec:
    spec = vim.vm.device.VirtualDeviceSpec()
    spec.operation = vim.vm.device.VirtualDeviceSpec.Operation.remove
    if destroy_file:
        spec.fileOperation = vim.vm.device.VirtualDeviceSpec.FileOperation.destroy
    spec.device = device
    return spec


def add_scsi_controller_spec(key: int = DEFAULT_CONTROLLER_KEY) -> vim.vm.device.VirtualDeviceSpec:
    controller = vim.vm.device.VirtualLsiLogicSASController()
    controller.key = key
    controller.busNumber = 0
    controller.sharedBus = vim.vm.device.VirtualSCSIController.Sharing.noSharing

    spec = vim.vm.device.VirtualDeviceSpec()
    spec.operation = vim.vm.device.VirtualDeviceSpec.Operation.add
    spec.device = controller
    return spec


def add_disk_spec(file_name: str, controller_key: int, unit_number: int,
                  capacity_kb: Optional[int] = None, thin: bool = True,
                  create: bool = False, label: Optional[str] = None) -> vim.vm.device.VirtualDeviceSpec:
    """
    Disk on a SCSI controller with a persistent flat-file backing.

    Args:
        file_name: Datastore path, e.g. "[datastore1] vm1/data.vmdk"
        create: Create the backing file (new disk) instead of attaching an existing one
    """
    disk = vim.vm.device.VirtualDisk()
    disk.key = -1
    disk.controllerKey = controller_key
    disk.unitNumber = unit_number
    if capacity_kb is not None:
        disk.capacityInKB = capacity_kb
    if label:
        disk.deviceInfo = vim.Description(label=label, summary=label)

    backing = vim.vm.device.VirtualDisk.FlatVer2BackingInfo()
    backing.fileName = file_name
    backing.diskMode = "persistent"
    backing.thinProvisioned = thin
    disk.backing = backing

    spec = vim.vm.device.VirtualDeviceSpec()
    spec.operation = vim.vm.device.VirtualDeviceSpec.Operation.add
    if create:
        spec.fileOperation = vim.vm.device.VirtualDeviceSpec.FileOperation.create
    spec.device = disk
    return spec
