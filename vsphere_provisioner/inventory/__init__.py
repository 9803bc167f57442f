from vsphere_provisioner.inventory.cache import TTLCache
from vsphere_provisioner.inventory.resolver import InventoryResolver
from vsphere_provisioner.inventory.directory import DataCenterDirectory

__all__ = ["TTLCache", "InventoryResolver", "DataCenterDirectory"]
