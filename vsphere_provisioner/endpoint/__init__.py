from vsphere_provisioner.endpoint.base import (
    DatastoreFile,
    EntityKind,
    GuestNic,
    InventoryEndpoint,
    InventoryEntity,
    MachineRecord,
)

__all__ = [
    "DatastoreFile",
    "EntityKind",
    "GuestNic",
    "InventoryEndpoint",
    "InventoryEntity",
    "MachineRecord",
]
