"""
Inventory resolution.

Walks the vCenter entity tree to turn names and identifiers into
InventoryEntity handles. Folders, clusters, hosts, pools, datastores and
networks match on exact display name. Virtual machines match on the
instance uuid and templates on the BIOS uuid; the two lookups are kept
separate so a display name is never mistaken for an id.

Nothing is cached here. Callers interpose TTLCache where they need to.
"""

import logging
from typing import List, Optional

from vsphere_provisioner.endpoint.base import EntityKind, InventoryEndpoint, InventoryEntity, MachineRecord
from vsphere_provisioner.errors import ResolutionError

logger = logging.getLogger(__name__)


class InventoryResolver:
    """Read-only lookups against an InventoryEndpoint"""

    def __init__(self, endpoint: InventoryEndpoint, region: str):
        self.endpoint = endpoint
        self.region = region

    def root(self) -> InventoryEntity:
        return self.endpoint.root_folder()

    def resolve(self, scope: Optional[InventoryEntity], kind: EntityKind, ident: str) -> Optional[InventoryEntity]:
        """
        Resolve ident to a single entity of kind under scope.

        Args:
            scope: Subtree to search, or None for the whole inventory
            kind: Entity kind to look for
            ident: Display name, or instance uuid for virtual machines

        Returns:
            The entity, or None when nothing matches
        """
        if kind == EntityKind.VIRTUAL_MACHINE:
            record = self.find_machine(ident, scope)
            return record.entity if record else None
        return self.endpoint.find_entity(scope or self.root(), kind, ident)

    def list(self, scope: Optional[InventoryEntity], kind: EntityKind) -> List[InventoryEntity]:
        return self.endpoint.find_entities(scope or self.root(), kind)

    # ------------------------------------------------------------------
    # Data centers and folders
    # ------------------------------------------------------------------

    def find_datacenter(self, name: str) -> Optional[InventoryEntity]:
        return self.resolve(None, EntityKind.DATACENTER, name)

    def region_datacenter(self) -> InventoryEntity:
        """The vSphere Datacenter this engine is scoped to."""
        datacenter = self.find_datacenter(self.region)
        if datacenter is None:
            raise ResolutionError(f"No such region: {self.region}")
        return datacenter

    def vm_folder(self, datacenter: InventoryEntity, folder_name: Optional[str] = None) -> InventoryEntity:
        """Datacenter VM folder, or a named folder beneath it."""
        folder = self.endpoint.vm_folder(datacenter)
        if not folder_name:
            return folder
        sub_folder = self.endpoint.find_entity(folder, EntityKind.FOLDER, folder_name)
        if sub_folder is None:
            raise ResolutionError(f"No such VM folder {folder_name} in {datacenter.name}")
        return sub_folder

    # ------------------------------------------------------------------
    # Virtual machines and templates
    # ------------------------------------------------------------------

    def machine_records(self, scope: Optional[InventoryEntity] = None,
                        templates: Optional[bool] = False) -> List[MachineRecord]:
        """
        Snapshot every VM under scope.

        Args:
            templates: False for VMs only, True for templates only, None for both
        """
        records = []
        for entity in self.list(scope, EntityKind.VIRTUAL_MACHINE):
            record = self.endpoint.machine_record(entity)
            if not record.instance_uuid:
                # Inaccessible VM (orphaned or mid-registration)
                logger.debug(f"Skipping {entity} with no config")
                continue
            if templates is not None and record.template != templates:
                continue
            records.append(record)
        return records

    def find_machine(self, instance_uuid: str, scope: Optional[InventoryEntity] = None) -> Optional[MachineRecord]:
        for record in self.machine_records(scope):
            if record.instance_uuid == instance_uuid:
                return record
        return None

    def find_machine_by_name(self, name: str, scope: Optional[InventoryEntity] = None) -> Optional[MachineRecord]:
        for record in self.machine_records(scope):
            if record.name == name:
                return record
        return None

    def find_template(self, uuid: str, scope: Optional[InventoryEntity] = None) -> Optional[MachineRecord]:
        for record in self.machine_records(scope, templates=True):
            if record.bios_uuid == uuid:
                return record
        return None
