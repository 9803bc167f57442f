"""
Volume endpoints.
"""

from fastapi import APIRouter, Depends

from vsphere_provisioner.api.deps import get_engine
from vsphere_provisioner.engine import ProvisioningEngine
from vsphere_provisioner.models.volume import (
    AttachVolumeRequest,
    CreateVolumeRequest,
    Volume,
    VolumeListResponse,
)

router = APIRouter(prefix="/v1", tags=["volumes"])


@router.get("/volumes", response_model=VolumeListResponse)
def list_volumes(engine: ProvisioningEngine = Depends(get_engine)):
    """
    List attached disks and loose .vmdk files on datastores.
    """
    volumes = engine.list_volumes()
    return VolumeListResponse(volumes=volumes, count=len(volumes))


@router.post("/volumes", response_model=Volume, status_code=201)
def create_volume(request: CreateVolumeRequest, engine: ProvisioningEngine = Depends(get_engine)):
    return engine.create_volume(request.name, request.size_gb, request.machine_id, request.device_id)


@router.delete("/volumes/{volume_id}", status_code=204)
def remove_volume(volume_id: str, engine: ProvisioningEngine = Depends(get_engine)):
    engine.remove_volume(volume_id)


@router.post("/volumes/{volume_id}/attach", status_code=204)
def attach_volume(volume_id: str, request: AttachVolumeRequest, engine: ProvisioningEngine = Depends(get_engine)):
    engine.attach_volume(volume_id, request.machine_id, request.device_id)


@router.post("/volumes/{volume_id}/detach", status_code=204)
def detach_volume(volume_id: str, engine: ProvisioningEngine = Depends(get_engine)):
    engine.detach_volume(volume_id)
