"""
Pydantic models for virtual machines and launch requests.
"""

from pydantic import BaseModel
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum

from vsphere_provisioner.models.placement import PlacementRequest


class VmState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    SUSPENDED = "suspended"
    REBOOTING = "rebooting"
    TERMINATED = "terminated"


class Platform(str, Enum):
    LINUX = "linux"
    WINDOWS = "windows"
    UNIX = "unix"
    UNKNOWN = "unknown"


class Architecture(str, Enum):
    I32 = "i32"
    I64 = "i64"


class LaunchSpec(BaseModel):
    """Request to provision a virtual machine."""
    source_id: str  # Template uuid or guest OS identifier
    name: str
    product: str  # "cpu:memoryMB" or "pool:cpu:memoryMB"
    network_id: Optional[str] = None
    placement: PlacementRequest = PlacementRequest()
    folder_name: Optional[str] = None
    description: Optional[str] = None
    
    # Guest customization (only used when private_ip is set)
    private_ip: Optional[str] = None
    gateway: Optional[str] = None
    hostname: Optional[str] = None
    domain: Optional[str] = None
    admin_password: Optional[str] = None
    workgroup: Optional[str] = None
    owner_name: Optional[str] = None
    org_name: Optional[str] = None
    product_key: Optional[str] = None
    
    metadata: Dict[str, str] = {}


class ProvisionedMachine(BaseModel):
    """A virtual machine as seen through the provider-agnostic model."""
    id: str  # vCenter instance uuid, never the display name
    name: str
    region_id: str
    data_center_id: Optional[str] = None
    resource_pool_id: Optional[str] = None
    affinity_group_id: Optional[str] = None  # Host name
    state: VmState = VmState.PENDING
    public_ips: List[str] = []
    private_ips: List[str] = []
    product: Optional[str] = None
    cpu_count: int = 0
    memory_mb: int = 0
    network_id: Optional[str] = None
    image_id: str
    platform: Platform = Platform.UNKNOWN
    architecture: Architecture = Architecture.I64
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    booted_at: Optional[datetime] = None
    suspended_at: Optional[datetime] = None
    root_password: Optional[str] = None
    tags: Dict[str, str] = {}


class MachineProduct(BaseModel):
    """A cpu/memory size a machine can be launched with."""
    product_id: str
    name: str
    cpu_count: int
    memory_mb: int
    architecture: Architecture = Architecture.I64
    resource_pool_id: Optional[str] = None


class MachineListResponse(BaseModel):
    """Response for machine listing."""
    machines: List[ProvisionedMachine]
    count: int


class PowerRequest(BaseModel):
    """Request to change a machine's power state."""
    target: VmState


class ResizeRequest(BaseModel):
    """Request to change cpu and/or memory."""
    cpu_count: Optional[int] = None
    memory_mb: Optional[int] = None


class CloneRequest(BaseModel):
    """Request to clone an existing machine."""
    name: str
    destination: Optional[PlacementRequest] = None
    power_on: bool = False


class CaptureImageRequest(BaseModel):
    """Request to capture a machine as a template."""
    machine_id: str
    name: str


class ImageResponse(BaseModel):
    """A captured template, identified by its uuid."""
    image_id: str
    name: str
