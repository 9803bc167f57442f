"""
Power state transitions and the two-phase terminate.
"""

import logging
import time
from typing import Callable

from vsphere_provisioner.endpoint.base import InventoryEndpoint, MachineRecord
from vsphere_provisioner.errors import ResolutionError
from vsphere_provisioner.inventory.resolver import InventoryResolver
from vsphere_provisioner.placement import PlacementSelector
from vsphere_provisioner.tasks import TaskCoordinator

logger = logging.getLogger(__name__)

POWERED_ON = "poweredOn"
POWERED_OFF = "poweredOff"
SUSPENDED = "suspended"


class PowerController:
    """Starts, stops, suspends, reboots and destroys VMs"""

    def __init__(self, endpoint: InventoryEndpoint, resolver: InventoryResolver,
                 placement: PlacementSelector, tasks: TaskCoordinator,
                 grace_seconds: float = 15.0, sleep: Callable[[float], None] = time.sleep):
        self.endpoint = endpoint
        self.resolver = resolver
        self.placement = placement
        self.tasks = tasks
        self.grace_seconds = grace_seconds
        self._sleep = sleep

    def _require(self, machine_id: str) -> MachineRecord:
        record = self.resolver.find_machine(machine_id)
        if record is None:
            raise ResolutionError(f"No such virtual machine: {machine_id}")
        return record

    def start(self, record: MachineRecord):
        """Power on, on the VM's current host or the best host in its cluster."""
        if record.power_state == POWERED_ON:
            return
        host = record.host or self.placement.select_host(record.cluster_name)
        self.tasks.await_task(self.endpoint.power_on(record.entity, host), f"power on {record.name}")

    def stop(self, record: MachineRecord):
        if record.power_state == POWERED_OFF:
            return
        self.tasks.await_task(self.endpoint.power_off(record.entity), f"power off {record.name}")

    def suspend(self, record: MachineRecord):
        if record.power_state == SUSPENDED:
            return
        self.tasks.await_task(self.endpoint.suspend(record.entity), f"suspend {record.name}")

    def terminate(self, machine_id: str):
        """
        Power off, wait the grace delay, then destroy.

        The VM is re-fetched after the power-off so destroy acts on its
        current state.
        """
        record = self.resolver.find_machine(machine_id)
        if record is None:
            logger.warning(f"Terminate: no such virtual machine {machine_id}")
            return

        if record.power_state != POWERED_OFF:
            self.stop(record)
            self._sleep(self.grace_seconds)
            record = self.resolver.find_machine(machine_id)
            if record is None:
                logger.info(f"Terminate: {machine_id} disappeared after power off")
                return

        self.tasks.await_task(self.endpoint.destroy(record.entity), f"destroy {record.name}")
        logger.info(f"Terminated {record.name} ({machine_id})")

    def reboot(self, machine_id: str):
        """Hard reboot: power off, wait the grace delay, power on on the same host."""
        record = self._require(machine_id)
        host = record.host
        if record.power_state != POWERED_OFF:
            self.stop(record)
            self._sleep(self.grace_seconds)
        record = self._require(machine_id)
        host = host or record.host or self.placement.select_host(record.cluster_name)
        self.tasks.await_task(self.endpoint.power_on(record.entity, host), f"power on {record.name}")
        logger.info(f"Rebooted {record.name} ({machine_id})")
