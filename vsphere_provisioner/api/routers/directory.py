"""
Region directory endpoints: data centers, resource pools, storage pools and networks.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from vsphere_provisioner.api.deps import get_engine
from vsphere_provisioner.engine import ProvisioningEngine
from vsphere_provisioner.models.network import NetworkInfo
from vsphere_provisioner.models.placement import AffinityGroup, DataCenter, ResourcePoolInfo, StoragePool

router = APIRouter(prefix="/v1", tags=["directory"])


@router.get("/data-centers", response_model=List[DataCenter])
def list_data_centers(engine: ProvisioningEngine = Depends(get_engine)):
    """Clusters of the region."""
    return engine.list_data_centers()


@router.get("/data-centers/{data_center_id}", response_model=DataCenter)
def get_data_center(data_center_id: str, engine: ProvisioningEngine = Depends(get_engine)):
    data_center = engine.get_data_center(data_center_id)
    if data_center is None:
        raise HTTPException(status_code=404, detail=f"Data center '{data_center_id}' not found")
    return data_center


@router.get("/resource-pools", response_model=List[ResourcePoolInfo])
def list_resource_pools(
    data_center_id: Optional[str] = Query(None, description="Root pool of one cluster only"),
    engine: ProvisioningEngine = Depends(get_engine)
):
    return engine.list_resource_pools(data_center_id)


@router.get("/resource-pools/{pool_id}", response_model=ResourcePoolInfo)
def get_resource_pool(
    pool_id: str,
    data_center_id: Optional[str] = Query(None),
    engine: ProvisioningEngine = Depends(get_engine)
):
    pool = engine.get_resource_pool(pool_id, data_center_id)
    if pool is None:
        raise HTTPException(status_code=404, detail=f"Resource pool '{pool_id}' not found")
    return pool


@router.get("/storage-pools", response_model=List[StoragePool])
def list_storage_pools(engine: ProvisioningEngine = Depends(get_engine)):
    return engine.list_storage_pools()


@router.get("/affinity-groups", response_model=List[AffinityGroup])
def list_affinity_groups(
    data_center_id: Optional[str] = Query(None),
    engine: ProvisioningEngine = Depends(get_engine)
):
    return engine.list_affinity_groups(data_center_id)


@router.get("/networks", response_model=List[NetworkInfo])
def list_networks(engine: ProvisioningEngine = Depends(get_engine)):
    """Standard port groups, plus one entry per distributed switch."""
    return engine.list_networks()
