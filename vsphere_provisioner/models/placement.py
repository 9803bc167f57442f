"""
Pydantic models for placement and the region/data-center directory.
"""

from pydantic import BaseModel
from typing import Optional


class PlacementRequest(BaseModel):
    """
    Abstract placement constraints.
    
    resource_pool_id takes precedence over pool discovery from
    data_center_id. affinity_group_id pins placement to one host.
    """
    data_center_id: Optional[str] = None
    resource_pool_id: Optional[str] = None
    affinity_group_id: Optional[str] = None
    storage_pool_id: Optional[str] = None


class DataCenter(BaseModel):
    """A cluster inside the region."""
    id: str
    name: str
    region_id: str
    active: bool = True


class StoragePool(BaseModel):
    """A datastore reachable from a data center."""
    name: str
    data_center_id: Optional[str] = None


class ResourcePoolInfo(BaseModel):
    """Named compute allocation boundary within a cluster."""
    id: str
    name: str
    data_center_id: Optional[str] = None


class AffinityGroup(BaseModel):
    """A physical host used to pin placement."""
    id: str
    name: str
    data_center_id: Optional[str] = None
    status: str = "gray"
