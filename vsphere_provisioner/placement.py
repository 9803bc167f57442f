"""
Placement selection.

Turns a PlacementRequest into a concrete Datacenter, an ordered list of
candidate resource pools, an optional pinned host and an optional
datastore. Hosts are chosen by config status: green first, then yellow.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from vsphere_provisioner.endpoint.base import EntityKind, InventoryEntity
from vsphere_provisioner.errors import (
    InsufficientCapacity,
    PoolNotFound,
    ResolutionError,
    ValidationError,
)
from vsphere_provisioner.inventory.cache import TTLCache
from vsphere_provisioner.inventory.directory import DataCenterDirectory
from vsphere_provisioner.inventory.resolver import InventoryResolver
from vsphere_provisioner.models.placement import AffinityGroup, PlacementRequest

logger = logging.getLogger(__name__)

HEALTHY = "green"
DEGRADED = "yellow"


@dataclass
class Placement:
    """Resolved location for a new VM"""
    datacenter: InventoryEntity  # vSphere Datacenter
    data_center_id: str
    pools: List[InventoryEntity] = field(default_factory=list)
    host: Optional[InventoryEntity] = None
    datastore: Optional[InventoryEntity] = None


class PlacementSelector:
    """Chooses hosts, pools and datastores for provisioning"""

    def __init__(self, resolver: InventoryResolver, directory: DataCenterDirectory,
                 cache: Optional[TTLCache] = None):
        self.resolver = resolver
        self.directory = directory
        self.endpoint = resolver.endpoint
        self.cache = cache or directory.cache

    # ------------------------------------------------------------------
    # Hosts
    # ------------------------------------------------------------------

    def list_hosts(self, cluster_name: Optional[str] = None) -> List[InventoryEntity]:
        """Hosts of one cluster, or of the whole region when cluster_name is None."""
        if cluster_name:
            cluster = self.directory.cluster(cluster_name)
            if cluster is None:
                return []
            scope = cluster
        else:
            scope = self.resolver.region_datacenter()
        return self.cache.get(
            f"hosts:{cluster_name or self.resolver.region}",
            lambda: self.resolver.list(scope, EntityKind.HOST)
        )

    def select_host(self, cluster_name: Optional[str]) -> InventoryEntity:
        """
        Pick a host in the named cluster.

        Returns the first green host, else the first yellow one.

        Raises:
            InsufficientCapacity: no host, or only red/gray hosts
        """
        hosts = self.list_hosts(cluster_name)
        degraded = None
        for host in hosts:
            status = self.endpoint.host_config_status(host)
            if status == HEALTHY:
                return host
            if status == DEGRADED and degraded is None:
                degraded = host

        if degraded is not None:
            logger.warning(f"No healthy host in {cluster_name}, using degraded host {degraded.name}")
            return degraded
        raise InsufficientCapacity(f"Insufficient capacity for this operation in {cluster_name or self.resolver.region}")

    def host_for_affinity(self, affinity_group_id: str) -> InventoryEntity:
        host = self.resolver.resolve(self.resolver.region_datacenter(), EntityKind.HOST, affinity_group_id)
        if host is None:
            raise ResolutionError(f"No such affinity group (host): {affinity_group_id}")
        return host

    def list_affinity_groups(self, data_center_id: Optional[str] = None) -> List[AffinityGroup]:
        return [
            AffinityGroup(
                id=host.name,
                name=host.name,
                data_center_id=data_center_id,
                status=self.endpoint.host_config_status(host),
            )
            for host in self.list_hosts(data_center_id)
        ]

    # ------------------------------------------------------------------
    # Pools and datastores
    # ------------------------------------------------------------------

    def select_pools(self, request: PlacementRequest, pinned_pool: Optional[str] = None):
        """
        Resolve the Datacenter and candidate pools for a request.

        A pinned pool (from the product descriptor or the request) wins over
        discovery. A data center id naming a cluster yields that cluster's
        root pool; one naming a vSphere Datacenter yields all its pools.

        Returns:
            Tuple of (datacenter, data_center_id, pools)
        """
        data_center_id = request.data_center_id
        if not data_center_id:
            data_centers = self.directory.list_data_centers()
            if not data_centers:
                raise ValidationError(f"No data center specified and none found in {self.resolver.region}")
            data_center_id = data_centers[0].id

        if self.directory.cluster(data_center_id) is not None:
            datacenter = self.resolver.region_datacenter()
            pools = self.directory.resource_pools(data_center_id)
        else:
            datacenter = self.resolver.find_datacenter(data_center_id)
            if datacenter is None:
                raise ResolutionError(f"No such data center: {data_center_id}")
            pools = self.cache.get(
                f"pools:{datacenter.moid}",
                lambda: self.resolver.list(datacenter, EntityKind.RESOURCE_POOL)
            )

        pool_id = pinned_pool or request.resource_pool_id
        if pool_id:
            pool = self.resolver.resolve(datacenter, EntityKind.RESOURCE_POOL, pool_id)
            if pool is None:
                raise PoolNotFound(pool_id)
            pools = [pool]

        if not pools:
            raise InsufficientCapacity(f"No resource pools available in {data_center_id}")
        return datacenter, data_center_id, list(pools)

    def datastore_for(self, datacenter: InventoryEntity, storage_pool_id: Optional[str]) -> Optional[InventoryEntity]:
        """Named datastore, else the first one in the Datacenter, else None."""
        datastores = self.endpoint.datacenter_datastores(datacenter)
        if storage_pool_id:
            for ds in datastores:
                if ds.name == storage_pool_id:
                    return ds
            raise ResolutionError(f"No such storage pool: {storage_pool_id}")
        return datastores[0] if datastores else None

    def place(self, request: PlacementRequest, pinned_pool: Optional[str] = None) -> Placement:
        datacenter, data_center_id, pools = self.select_pools(request, pinned_pool)
        placement = Placement(datacenter=datacenter, data_center_id=data_center_id, pools=pools)
        if request.affinity_group_id:
            placement.host = self.host_for_affinity(request.affinity_group_id)
        placement.datastore = self.datastore_for(datacenter, request.storage_pool_id)
        logger.debug(
            f"Placement for {data_center_id}: pools={[p.name for p in pools]} "
            f"host={placement.host.name if placement.host else None} "
            f"datastore={placement.datastore.name if placement.datastore else None}"
        )
        return placement
