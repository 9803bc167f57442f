"""
Region / data-center directory.

A region is a vSphere Datacenter and its data centers are the clusters
inside it. Storage pools are datastores, identified by name.
"""

import logging
from typing import List, Optional

from vsphere_provisioner.endpoint.base import EntityKind, InventoryEntity
from vsphere_provisioner.inventory.cache import TTLCache
from vsphere_provisioner.inventory.resolver import InventoryResolver
from vsphere_provisioner.models.network import NetworkInfo, NetworkState, NetworkType
from vsphere_provisioner.models.placement import DataCenter, ResourcePoolInfo, StoragePool

logger = logging.getLogger(__name__)


class DataCenterDirectory:
    """Clusters, resource pools, storage pools and networks of one region"""

    def __init__(self, resolver: InventoryResolver, cache: Optional[TTLCache] = None):
        self.resolver = resolver
        self.endpoint = resolver.endpoint
        self.region = resolver.region
        self.cache = cache or TTLCache()

    def clusters(self) -> List[InventoryEntity]:
        return self.cache.get(
            f"clusters:{self.region}",
            lambda: self.resolver.list(self.resolver.region_datacenter(), EntityKind.CLUSTER)
        )

    def cluster(self, data_center_id: str) -> Optional[InventoryEntity]:
        for cluster in self.clusters():
            if cluster.name == data_center_id:
                return cluster
        return None

    def list_data_centers(self) -> List[DataCenter]:
        return [
            DataCenter(id=c.name, name=c.name, region_id=self.region)
            for c in self.clusters()
        ]

    def get_data_center(self, data_center_id: str) -> Optional[DataCenter]:
        cluster = self.cluster(data_center_id)
        if cluster is None:
            return None
        return DataCenter(id=cluster.name, name=cluster.name, region_id=self.region)

    def list_storage_pools(self) -> List[StoragePool]:
        """Datastores of the region, each tagged with the first cluster mounting it."""
        pools = []
        seen = set()
        for cluster in self.clusters():
            for ds in self.endpoint.cluster_datastores(cluster):
                if ds.name in seen:
                    continue
                seen.add(ds.name)
                pools.append(StoragePool(name=ds.name, data_center_id=cluster.name))

        for ds in self.endpoint.datacenter_datastores(self.resolver.region_datacenter()):
            if ds.name not in seen:
                seen.add(ds.name)
                pools.append(StoragePool(name=ds.name))
        return pools

    def data_center_for_storage_pool(self, datastore_name: str) -> Optional[str]:
        """Match a datastore to its data center by storage pool name, ignoring case."""
        for pool in self.list_storage_pools():
            if pool.name.lower() == datastore_name.lower():
                return pool.data_center_id
        return None

    def resource_pools(self, data_center_id: Optional[str] = None) -> List[InventoryEntity]:
        """Root pool of one cluster, or every pool in the region."""
        if data_center_id:
            cluster = self.cluster(data_center_id)
            if cluster is None:
                return []
            return self.cache.get(
                f"pools:{data_center_id}",
                lambda: [p for p in [self.endpoint.cluster_root_pool(cluster)] if p is not None]
            )
        return self.cache.get(
            f"pools:{self.region}",
            lambda: self.resolver.list(self.resolver.region_datacenter(), EntityKind.RESOURCE_POOL)
        )

    def list_resource_pools(self, data_center_id: Optional[str] = None) -> List[ResourcePoolInfo]:
        return [
            ResourcePoolInfo(id=p.name, name=p.name, data_center_id=data_center_id)
            for p in self.resource_pools(data_center_id)
        ]

    def get_resource_pool(self, pool_id: str, data_center_id: Optional[str] = None) -> Optional[ResourcePoolInfo]:
        for pool in self.list_resource_pools(data_center_id):
            if pool.id == pool_id:
                return pool
        return None

    def list_networks(self) -> List[NetworkInfo]:
        """
        Networks of the region.

        Standard port groups are listed one by one. Distributed port groups
        collapse into one entry per distributed switch.
        """
        networks = []
        switches = set()
        for entity in self.resolver.list(self.resolver.region_datacenter(), EntityKind.NETWORK):
            record = self.endpoint.network_record(entity)
            if record.switch_name is None:
                networks.append(NetworkInfo(
                    id=entity.name,
                    name=entity.name,
                    description=f"{entity.name}({entity.moid})",
                    region_id=self.region,
                    state=NetworkState.AVAILABLE if record.accessible else NetworkState.PENDING,
                ))
            elif record.switch_name not in switches:
                switches.add(record.switch_name)
                networks.append(NetworkInfo(
                    id=record.switch_name,
                    name=record.switch_name,
                    description=f"{record.switch_name}({record.switch_moid})",
                    region_id=self.region,
                    network_type=NetworkType.DISTRIBUTED,
                ))
        logger.debug(f"Found {len(networks)} networks in {self.region}")
        return networks
