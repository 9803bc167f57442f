"""
Pydantic models for virtual disks.
"""

from pydantic import BaseModel
from typing import Optional, List, Dict
from enum import Enum


class VolumeState(str, Enum):
    AVAILABLE = "available"
    PENDING = "pending"
    DELETED = "deleted"


class Volume(BaseModel):
    """A virtual disk, attached to a VM or found loose on a datastore."""
    id: str
    name: str
    file_path: Optional[str] = None
    size_kb: int = 0
    machine_id: Optional[str] = None
    device_id: Optional[str] = None  # SCSI unit number
    state: VolumeState = VolumeState.AVAILABLE
    root: bool = False
    data_center_id: Optional[str] = None
    region_id: Optional[str] = None
    tags: Dict[str, str] = {}


class VolumeListResponse(BaseModel):
    """Response for volume listing."""
    volumes: List[Volume]
    count: int


class CreateVolumeRequest(BaseModel):
    """Request to create a new disk on a machine."""
    name: str
    size_gb: int
    machine_id: str
    device_id: Optional[str] = None


class AttachVolumeRequest(BaseModel):
    """Request to attach a volume."""
    machine_id: str
    device_id: str
