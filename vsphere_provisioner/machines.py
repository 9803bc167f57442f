"""
Machine catalog: listing, lookup and the product grid.
"""

import logging
from typing import List, Optional

from vsphere_provisioner.endpoint.base import MachineRecord
from vsphere_provisioner.inventory.directory import DataCenterDirectory
from vsphere_provisioner.inventory.resolver import InventoryResolver
from vsphere_provisioner.models.machine import Architecture, MachineProduct, ProvisionedMachine
from vsphere_provisioner.state import StateTranslator

logger = logging.getLogger(__name__)

PRODUCT_GRID = {
    Architecture.I32: ((1, 2), (512, 1024, 2048)),
    Architecture.I64: ((1, 2, 4, 8), (1024, 2048, 4096, 10240, 20480)),
}


class MachineCatalog:
    """Read side of the virtual machine inventory in one region"""

    def __init__(self, resolver: InventoryResolver, directory: DataCenterDirectory, translator: StateTranslator):
        self.resolver = resolver
        self.directory = directory
        self.translator = translator

    def _scope(self):
        return self.resolver.region_datacenter()

    def _data_center_ids(self):
        return {dc.id for dc in self.directory.list_data_centers()}

    def records(self) -> List[MachineRecord]:
        return self.resolver.machine_records(self._scope())

    def record(self, machine_id: str) -> Optional[MachineRecord]:
        return self.resolver.find_machine(machine_id, self._scope())

    def list_machines(self) -> List[ProvisionedMachine]:
        dc_ids = self._data_center_ids()
        return [self.translator.to_machine(r, dc_ids) for r in self.records()]

    def get_machine(self, machine_id: str) -> Optional[ProvisionedMachine]:
        record = self.record(machine_id)
        if record is None:
            return None
        return self.translator.to_machine(record, self._data_center_ids())

    def list_products(self, architecture: Architecture = Architecture.I64) -> List[MachineProduct]:
        """
        The standard cpu/memory grid, plus one pool-pinned variant per
        resource pool in the region ("pool:cpu:mem").
        """
        pools = []
        for dc in self.directory.list_data_centers():
            pools.extend(self.directory.list_resource_pools(dc.id))

        cpus, rams = PRODUCT_GRID[architecture]
        products = []
        for cpu in cpus:
            for ram in rams:
                products.append(MachineProduct(
                    product_id=f"{cpu}:{ram}",
                    name=f"{cpu} CPU/{ram} MB RAM",
                    cpu_count=cpu,
                    memory_mb=ram,
                    architecture=architecture,
                ))
                for pool in pools:
                    products.append(MachineProduct(
                        product_id=f"{pool.id}:{cpu}:{ram}",
                        name=f"Pool {pool.name}/{cpu} CPU/{ram} MB RAM",
                        cpu_count=cpu,
                        memory_mb=ram,
                        architecture=architecture,
                        resource_pool_id=pool.id,
                    ))
        return products
