"""
Image (template) endpoints.
"""

from fastapi import APIRouter, Depends

from vsphere_provisioner.api.deps import get_engine
from vsphere_provisioner.engine import ProvisioningEngine
from vsphere_provisioner.models.machine import CaptureImageRequest, ImageResponse

router = APIRouter(prefix="/v1", tags=["images"])


@router.post("/images", response_model=ImageResponse, status_code=201)
def capture_image(request: CaptureImageRequest, engine: ProvisioningEngine = Depends(get_engine)):
    """Clone a machine into a new template."""
    image_id = engine.capture_image(request.machine_id, request.name)
    return ImageResponse(image_id=image_id, name=request.name)


@router.delete("/images/{image_id}", status_code=204)
def remove_image(image_id: str, engine: ProvisioningEngine = Depends(get_engine)):
    engine.remove_image(image_id)
