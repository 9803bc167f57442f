"""
Configuration synthesis and provisioning.

Builds a complete VM configuration from a LaunchSpec and submits it to
vCenter, either as a clone of a template or as a fresh VM.

Flow for one launch:
1. Parse the product descriptor into cpu/memory (and an optional pinned pool)
2. Resolve placement: Datacenter, candidate pools, VM folder, host, datastore
3. Build the ConfigSpec (network adapters, guest customization)
4. Submit per candidate pool until one task succeeds
5. Poll the inventory until the new VM is enumerable
6. Power it on
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from pyVmomi import vim

from vsphere_provisioner import devices
from vsphere_provisioner.customization import DEFAULT_SUBNET_MASK, build_customization
from vsphere_provisioner.devices import DeviceKind
from vsphere_provisioner.endpoint.base import InventoryEndpoint, InventoryEntity, MachineRecord
from vsphere_provisioner.errors import (
    InsufficientCapacity,
    ProvisioningError,
    ResolutionError,
    TaskFailure,
    ValidationError,
)
from vsphere_provisioner.inventory.directory import DataCenterDirectory
from vsphere_provisioner.inventory.resolver import InventoryResolver
from vsphere_provisioner.machines import MachineCatalog
from vsphere_provisioner.models.machine import LaunchSpec, Platform, ProvisionedMachine
from vsphere_provisioner.models.placement import PlacementRequest
from vsphere_provisioner.placement import PlacementSelector
from vsphere_provisioner.power import PowerController
from vsphere_provisioner.state import guess_platform
from vsphere_provisioner.tasks import TaskCoordinator
from vsphere_provisioner.utils import validate_name

logger = logging.getLogger(__name__)

# Errors that move the loop on to the next candidate pool
RETRYABLE_ERRORS = (TaskFailure, ResolutionError, InsufficientCapacity)


@dataclass
class ParsedProduct:
    cpu_count: int
    memory_mb: int
    resource_pool_id: Optional[str] = None


def parse_product(descriptor: str) -> ParsedProduct:
    """
    Parse "cpu:memoryMB" or "pool:cpu:memoryMB".

    Raises:
        ValidationError: wrong field count or non-numeric cpu/memory
    """
    parts = descriptor.split(":") if descriptor else []
    if len(parts) not in (2, 3):
        raise ValidationError(
            f"Invalid product id {descriptor!r}: expected cpu:memory or pool:cpu:memory"
        )
    try:
        cpu_count = int(parts[-2])
        memory_mb = int(parts[-1])
    except ValueError:
        raise ValidationError(f"Invalid product id {descriptor!r}: cpu and memory must be integers")
    if cpu_count < 1 or memory_mb < 1:
        raise ValidationError(f"Invalid product id {descriptor!r}: cpu and memory must be positive")

    pool_id = None
    if len(parts) == 3:
        pool_id = parts[0]
        if not pool_id:
            raise ValidationError(f"Invalid product id {descriptor!r}: empty resource pool")
    return ParsedProduct(cpu_count=cpu_count, memory_mb=memory_mb, resource_pool_id=pool_id)


def is_guest_os_identifier(value: str) -> bool:
    """True if value names a vSphere guest OS (e.g. "ubuntu64Guest")."""
    member = getattr(vim.vm.GuestOsDescriptor.GuestOsIdentifier, value, None)
    return isinstance(member, str) and member == value


def template_networks(template: MachineRecord) -> List[Optional[str]]:
    """Network of each NIC on a template, in device order."""
    networks = [devices.nic_network_name(nic) for nic in devices.of_kind(template.devices, DeviceKind.NIC)]
    if not networks:
        networks = [nic.network for nic in template.guest_nics]
    return networks


def nic_changes(template: MachineRecord, network_id: Optional[str]) -> Tuple[list, List[Optional[str]]]:
    """
    Reconcile the template's adapters with the requested network.

    Returns:
        Tuple of (device changes, network of each NIC after the changes)
    """
    networks = template_networks(template)
    if not network_id or network_id in networks:
        return [], networks

    changes = [devices.remove_device_spec(nic) for nic in devices.of_kind(template.devices, DeviceKind.NIC)]
    changes.append(devices.add_nic_spec(network_id))
    return changes, [network_id]


class ConfigurationSynthesizer:
    """Provisions, resizes and clones virtual machines"""

    def __init__(self, endpoint: InventoryEndpoint, resolver: InventoryResolver,
                 directory: DataCenterDirectory, placement: PlacementSelector,
                 tasks: TaskCoordinator, catalog: MachineCatalog, power: PowerController,
                 vm_folder: Optional[str] = None, default_subnet_mask: str = DEFAULT_SUBNET_MASK):
        self.endpoint = endpoint
        self.resolver = resolver
        self.directory = directory
        self.placement = placement
        self.tasks = tasks
        self.catalog = catalog
        self.power = power
        self.vm_folder = vm_folder
        self.default_subnet_mask = default_subnet_mask

    # ------------------------------------------------------------------
    # Candidate pool loop
    # ------------------------------------------------------------------

    def _try_pools(self, name: str, pools: List[InventoryEntity],
                   submit: Callable[[InventoryEntity], object],
                   observe: Callable[[], Optional[MachineRecord]]) -> MachineRecord:
        """
        Submit per pool until one task succeeds and its VM is observed.

        Raises:
            The last error when every pool fails; .attempts holds all of them
        """
        errors: List[ProvisioningError] = []
        for pool in pools:
            try:
                task = submit(pool)
                self.tasks.await_task(task, f"provision {name}")
                return self.tasks.poll_until(observe, f"newly created server {name}")
            except RETRYABLE_ERRORS as e:
                logger.warning(f"Provisioning {name} in pool {pool.name} failed: {e}")
                errors.append(e)

        if not errors:
            raise InsufficientCapacity(f"No resource pools to provision {name} into")
        last = errors[-1]
        last.attempts = errors
        raise last

    def _observe_machine(self, name: str, scope: InventoryEntity) -> Callable[[], Optional[MachineRecord]]:
        return lambda: self.resolver.find_machine_by_name(name, scope)

    # ------------------------------------------------------------------
    # Provision
    # ------------------------------------------------------------------

    def provision(self, spec: LaunchSpec) -> ProvisionedMachine:
        """
        Launch a VM from a LaunchSpec.

        source_id naming a guest OS identifier creates the VM from scratch;
        anything else is looked up as a template uuid and cloned.
        """
        product = parse_product(spec.product)
        name = validate_name(spec.name)
        if is_guest_os_identifier(spec.source_id):
            return self._from_scratch(spec, name, product)
        return self._from_template(spec, name, product)

    def _from_template(self, spec: LaunchSpec, name: str, product: ParsedProduct) -> ProvisionedMachine:
        template = self.resolver.find_template(spec.source_id)
        if template is None:
            raise ResolutionError(f"No such template: {spec.source_id}")

        placement = self.placement.place(spec.placement, product.resource_pool_id)
        folder = self.resolver.vm_folder(placement.datacenter, spec.folder_name or self.vm_folder)

        device_changes, networks = nic_changes(template, spec.network_id)
        platform = guess_platform(template.guest_full_name)
        customization = build_customization(spec, platform, networks, self.default_subnet_mask)

        config = vim.vm.ConfigSpec()
        config.numCPUs = product.cpu_count
        config.memoryMB = product.memory_mb
        config.annotation = spec.source_id
        config.deviceChange = device_changes

        # Only relocate storage when a storage pool was asked for
        datastore = placement.datastore if spec.placement.storage_pool_id else None

        logger.info(
            f"Cloning {template.name} -> {name} ({product.cpu_count} CPU, {product.memory_mb} MB) "
            f"in {placement.data_center_id}"
        )

        def submit(pool):
            return self.endpoint.clone_vm(
                template.entity, folder, name, config,
                pool=pool,
                host=placement.host,
                datastore=datastore,
                customization=customization,
                power_on=False,
                template=False,
            )

        record = self._try_pools(name, placement.pools, submit,
                                 self._observe_machine(name, placement.datacenter))
        machine = self.catalog.translator.to_machine(record, self._data_center_ids())

        self.power.start(record)

        if customization is not None and platform == Platform.WINDOWS:
            machine.root_password = spec.admin_password
        return machine

    def _from_scratch(self, spec: LaunchSpec, name: str, product: ParsedProduct) -> ProvisionedMachine:
        if not spec.network_id:
            raise ValidationError(f"Cannot create {name} from scratch without a network")

        placement = self.placement.place(spec.placement, product.resource_pool_id)
        if placement.datastore is None:
            raise InsufficientCapacity(f"No datastore available in {placement.data_center_id}")
        folder = self.resolver.vm_folder(placement.datacenter, spec.folder_name or self.vm_folder)

        config = vim.vm.ConfigSpec()
        config.name = name
        config.guestId = spec.source_id
        config.numCPUs = product.cpu_count
        config.memoryMB = product.memory_mb
        config.annotation = spec.source_id
        config.files = vim.vm.FileInfo(vmPathName=f"[{placement.datastore.name}]")
        config.deviceChange = [devices.add_nic_spec(spec.network_id)]

        logger.info(
            f"Creating {name} ({spec.source_id}, {product.cpu_count} CPU, {product.memory_mb} MB) "
            f"on {placement.datastore.name}"
        )

        def submit(pool):
            return self.endpoint.create_vm(folder, config, pool, placement.host)

        record = self._try_pools(name, placement.pools, submit,
                                 self._observe_machine(name, placement.datacenter))

        self.power.start(record)
        refreshed = self.resolver.find_machine(record.instance_uuid) or record
        return self.catalog.translator.to_machine(refreshed, self._data_center_ids())

    # ------------------------------------------------------------------
    # Resize and clone
    # ------------------------------------------------------------------

    def resize(self, machine_id: str, cpu_count: Optional[int] = None,
               memory_mb: Optional[int] = None) -> ProvisionedMachine:
        if cpu_count is None and memory_mb is None:
            raise ValidationError("Resize requires a cpu count and/or memory size")
        if (cpu_count is not None and cpu_count < 1) or (memory_mb is not None and memory_mb < 1):
            raise ValidationError("cpu count and memory must be positive")

        record = self.resolver.find_machine(machine_id)
        if record is None:
            raise ResolutionError(f"No such virtual machine: {machine_id}")

        config = vim.vm.ConfigSpec()
        if cpu_count is not None:
            config.numCPUs = cpu_count
        if memory_mb is not None:
            config.memoryMB = memory_mb

        self.tasks.await_task(self.endpoint.reconfigure_vm(record.entity, config), f"resize {record.name}")
        refreshed = self.resolver.find_machine(machine_id)
        if refreshed is None:
            raise ResolutionError(f"Virtual machine {machine_id} disappeared after resize")
        return self.catalog.translator.to_machine(refreshed, self._data_center_ids())

    def _clone_existing(self, machine_id: str, new_name: str, destination: Optional[PlacementRequest],
                        as_template: bool) -> MachineRecord:
        source = self.resolver.find_machine(machine_id)
        if source is None:
            raise ResolutionError(f"No such virtual machine: {machine_id}")
        name = validate_name(new_name)

        host = None
        datastore = None
        if destination is not None:
            placement = self.placement.place(destination)
            datacenter = placement.datacenter
            pools = placement.pools
            host = placement.host
            datastore = placement.datastore if destination.storage_pool_id else None
        else:
            datacenter = self.resolver.region_datacenter()
            if source.resource_pool is not None:
                pools = [source.resource_pool]
            else:
                pools = self.directory.resource_pools(source.cluster_name)

        if host is None and not as_template:
            host = source.host or self.placement.select_host(source.cluster_name)

        folder = self.resolver.vm_folder(datacenter, self.vm_folder)

        config = vim.vm.ConfigSpec()
        config.numCPUs = source.num_cpu
        config.memoryMB = source.memory_mb
        config.annotation = source.annotation

        def submit(pool):
            return self.endpoint.clone_vm(
                source.entity, folder, name, config,
                pool=pool, host=host, datastore=datastore,
                power_on=False, template=as_template,
            )

        if as_template:
            def observe():
                for record in self.resolver.machine_records(datacenter, templates=True):
                    if record.name == name:
                        return record
                return None
        else:
            observe = self._observe_machine(name, datacenter)

        logger.info(f"Cloning {source.name} -> {name}{' as template' if as_template else ''}")
        return self._try_pools(name, pools, submit, observe)

    def clone_machine(self, machine_id: str, new_name: str, destination: Optional[PlacementRequest] = None,
                      power_on: bool = False) -> ProvisionedMachine:
        record = self._clone_existing(machine_id, new_name, destination, as_template=False)
        if power_on:
            self.power.start(record)
            record = self.resolver.find_machine(record.instance_uuid) or record
        return self.catalog.translator.to_machine(record, self._data_center_ids())

    def capture_image(self, machine_id: str, image_name: str) -> str:
        """Clone a VM into a template; returns the template uuid."""
        record = self._clone_existing(machine_id, image_name, None, as_template=True)
        return record.bios_uuid

    def remove_image(self, image_id: str):
        """Destroy a template, looked up by its uuid."""
        template = self.resolver.find_template(image_id)
        if template is None:
            raise ResolutionError(f"No such template: {image_id}")
        logger.info(f"Removing template {template.name}")
        self.tasks.await_task(self.endpoint.destroy(template.entity), f"remove template {template.name}")

    def _data_center_ids(self):
        return {dc.id for dc in self.directory.list_data_centers()}
