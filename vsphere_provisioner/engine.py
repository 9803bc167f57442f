"""
Provisioning engine facade.

Wires the resolver, placement selector, synthesizer, task coordinator,
disk reconciler and connection lease together over one endpoint and
exposes the operations callers use.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Union

from vsphere_provisioner.config import Settings
from vsphere_provisioner.connection import ConnectionLease
from vsphere_provisioner.disks import DiskReconciler
from vsphere_provisioner.endpoint.base import InventoryEndpoint
from vsphere_provisioner.errors import ResolutionError, ValidationError
from vsphere_provisioner.inventory.cache import TTLCache
from vsphere_provisioner.inventory.directory import DataCenterDirectory
from vsphere_provisioner.inventory.resolver import InventoryResolver
from vsphere_provisioner.machines import MachineCatalog
from vsphere_provisioner.models.machine import (
    Architecture,
    LaunchSpec,
    MachineProduct,
    ProvisionedMachine,
    VmState,
)
from vsphere_provisioner.models.network import NetworkInfo
from vsphere_provisioner.models.placement import (
    AffinityGroup,
    DataCenter,
    PlacementRequest,
    ResourcePoolInfo,
    StoragePool,
)
from vsphere_provisioner.models.volume import Volume
from vsphere_provisioner.placement import PlacementSelector
from vsphere_provisioner.power import PowerController
from vsphere_provisioner.state import StateTranslator
from vsphere_provisioner.synthesizer import ConfigurationSynthesizer
from vsphere_provisioner.tasks import TaskCoordinator

logger = logging.getLogger(__name__)


class ProvisioningEngine:
    """
    Entry point for VM and volume operations against one vCenter region.

    Args:
        endpoint: Inventory & Task Endpoint (VSphereEndpoint in production)
        settings: Timing, scope and customization settings
        sleep: Sleep function used by every wait; injectable for tests
        clock: Monotonic clock used by polling ceilings and caches
    """

    def __init__(self, endpoint: InventoryEndpoint, settings: Optional[Settings] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.settings = settings or Settings()
        self.endpoint = endpoint

        self.lease = ConnectionLease(
            endpoint,
            poll_seconds=self.settings.reaper_poll_seconds,
            timeout_seconds=self.settings.reaper_timeout_seconds,
        )
        self.tasks = TaskCoordinator(
            task_poll_seconds=self.settings.task_poll_seconds,
            poll_interval_seconds=self.settings.poll_interval_seconds,
            poll_timeout_seconds=self.settings.provision_timeout_seconds,
            sleep=sleep,
            clock=clock,
        )
        self.cache = TTLCache(self.settings.cache_ttl_seconds, clock=clock)
        self.resolver = InventoryResolver(endpoint, self.settings.region)
        self.directory = DataCenterDirectory(self.resolver, self.cache)
        self.placement = PlacementSelector(self.resolver, self.directory, self.cache)
        self.translator = StateTranslator(self.settings.region, self.settings.account_number)
        self.catalog = MachineCatalog(self.resolver, self.directory, self.translator)
        self.power = PowerController(
            endpoint, self.resolver, self.placement, self.tasks,
            grace_seconds=self.settings.power_off_grace_seconds,
            sleep=sleep,
        )
        self.synthesizer = ConfigurationSynthesizer(
            endpoint, self.resolver, self.directory, self.placement, self.tasks,
            self.catalog, self.power,
            vm_folder=self.settings.vm_folder,
            default_subnet_mask=self.settings.default_subnet_mask,
        )
        self.disks = DiskReconciler(endpoint, self.resolver, self.directory, self.tasks)
        self._workers = ThreadPoolExecutor(
            max_workers=self.settings.background_workers,
            thread_name_prefix="vsphere-bg",
        )

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _run_background(self, description: str, fn: Callable, *args) -> Future:
        """Run fn on a worker while holding the connection lease. Errors are logged only."""
        self.lease.hold()

        def job():
            try:
                fn(*args)
            except Exception as e:
                logger.error(f"{description} failed: {e}", exc_info=True)
            finally:
                self.lease.release()

        try:
            return self._workers.submit(job)
        except RuntimeError:
            self.lease.release()
            raise

    # ------------------------------------------------------------------
    # Machines
    # ------------------------------------------------------------------

    def provision(self, spec: LaunchSpec) -> ProvisionedMachine:
        return self.synthesizer.provision(spec)

    def list_machines(self) -> List[ProvisionedMachine]:
        return self.catalog.list_machines()

    def get_machine(self, machine_id: str) -> Optional[ProvisionedMachine]:
        return self.catalog.get_machine(machine_id)

    def change_power_state(self, machine_id: str, target: VmState):
        """
        Move a machine to RUNNING, STOPPED or SUSPENDED (or schedule a
        reboot with REBOOTING).
        """
        if target == VmState.REBOOTING:
            self.reboot(machine_id)
            return

        record = self.resolver.find_machine(machine_id)
        if record is None:
            raise ResolutionError(f"No such virtual machine: {machine_id}")

        if target == VmState.RUNNING:
            self.power.start(record)
        elif target == VmState.STOPPED:
            self.power.stop(record)
        elif target == VmState.SUSPENDED:
            self.power.suspend(record)
        else:
            raise ValidationError(f"Unsupported power state target: {target.value}")

    def resize(self, machine_id: str, cpu_count: Optional[int] = None,
               memory_mb: Optional[int] = None) -> ProvisionedMachine:
        return self.synthesizer.resize(machine_id, cpu_count, memory_mb)

    def clone_machine(self, machine_id: str, new_name: str, destination: Optional[PlacementRequest] = None,
                      power_on: bool = False) -> ProvisionedMachine:
        return self.synthesizer.clone_machine(machine_id, new_name, destination, power_on)

    def capture_image(self, machine_id: str, image_name: str) -> str:
        return self.synthesizer.capture_image(machine_id, image_name)

    def remove_image(self, image_id: str):
        self.synthesizer.remove_image(image_id)

    def terminate(self, machine_id: str) -> Future:
        """Power off and destroy in the background. Callers may ignore the Future."""
        logger.info(f"Scheduling termination of {machine_id}")
        return self._run_background(f"Terminate {machine_id}", self.power.terminate, machine_id)

    def reboot(self, machine_id: str) -> Future:
        logger.info(f"Scheduling reboot of {machine_id}")
        return self._run_background(f"Reboot {machine_id}", self.power.reboot, machine_id)

    def list_products(self, architecture: Architecture = Architecture.I64) -> List[MachineProduct]:
        return self.catalog.list_products(architecture)

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    def list_volumes(self) -> List[Volume]:
        return self.disks.list_volumes()

    def get_volume(self, volume_id: str) -> Optional[Volume]:
        return self.disks.get_volume(volume_id)

    def attach_volume(self, volume_id: str, machine_id: str, device_id: str):
        self.disks.attach(volume_id, machine_id, device_id)

    def detach_volume(self, volume: Union[str, Volume]):
        self.disks.detach(volume)

    def create_volume(self, name: str, size_gb: int, machine_id: str, device_id: Optional[str] = None) -> Volume:
        return self.disks.create(name, size_gb, machine_id, device_id)

    def remove_volume(self, volume_id: str):
        self.disks.remove(volume_id)

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    def list_data_centers(self) -> List[DataCenter]:
        return self.directory.list_data_centers()

    def get_data_center(self, data_center_id: str) -> Optional[DataCenter]:
        return self.directory.get_data_center(data_center_id)

    def list_resource_pools(self, data_center_id: Optional[str] = None) -> List[ResourcePoolInfo]:
        return self.directory.list_resource_pools(data_center_id)

    def get_resource_pool(self, pool_id: str, data_center_id: Optional[str] = None) -> Optional[ResourcePoolInfo]:
        return self.directory.get_resource_pool(pool_id, data_center_id)

    def list_storage_pools(self) -> List[StoragePool]:
        return self.directory.list_storage_pools()

    def list_affinity_groups(self, data_center_id: Optional[str] = None) -> List[AffinityGroup]:
        return self.placement.list_affinity_groups(data_center_id)

    def list_networks(self) -> List[NetworkInfo]:
        return self.directory.list_networks()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self):
        """Stop accepting background work and release the session once it drains."""
        self._workers.shutdown(wait=False)
        self.lease.close()
