"""
Health endpoint.
"""

import time

from fastapi import APIRouter
from pydantic import BaseModel

from vsphere_provisioner import __version__
from vsphere_provisioner.config import settings

router = APIRouter(tags=["health"])

# Track startup time
_startup_time = time.time()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    uptime_seconds: int
    version: str
    vcenter_host: str
    region: str


@router.get("/health", response_model=HealthResponse)
def health():
    """Liveness check. Does not contact vCenter."""
    return HealthResponse(
        status="ok",
        uptime_seconds=int(time.time() - _startup_time),
        version=__version__,
        vcenter_host=settings.host,
        region=settings.region,
    )
