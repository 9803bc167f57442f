"""
vSphere Provisioner - FastAPI Application Entry Point

REST API over the provisioning engine for one vCenter region.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from vsphere_provisioner import __version__
from vsphere_provisioner.api.deps import shutdown_engine
from vsphere_provisioner.api.routers import directory, health, images, machines, volumes
from vsphere_provisioner.config import settings
from vsphere_provisioner.errors import (
    AuthenticationError,
    DiskFileInUse,
    InsufficientCapacity,
    ProvisioningError,
    RemoteEndpointError,
    ResolutionError,
    TaskFailure,
    ValidationError,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = [
    (ValidationError, 400),
    (AuthenticationError, 401),
    (ResolutionError, 404),
    (DiskFileInUse, 409),
    (InsufficientCapacity, 503),
    (TaskFailure, 502),
    (RemoteEndpointError, 502),
]


def status_for(exc: ProvisioningError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"vSphere Provisioner {__version__} starting for {settings.host} ({settings.region})")
    yield
    logger.info("Shutting down, closing vCenter session")
    shutdown_engine()


# Create FastAPI app
app = FastAPI(
    title="vSphere Provisioner API",
    description="VM provisioning, placement and volume management for vCenter",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)


@app.exception_handler(ProvisioningError)
async def provisioning_exception_handler(request: Request, exc: ProvisioningError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    content = {
        "detail": str(exc),
        "error": type(exc).__name__,
    }
    if exc.operation:
        content["operation"] = exc.operation
    if exc.attempts:
        content["attempts"] = [str(e) for e in exc.attempts]
    return JSONResponse(status_code=status_code, content=content)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error": str(exc)}
    )


# Include routers
app.include_router(health.router)
app.include_router(machines.router)
app.include_router(volumes.router)
app.include_router(images.router)
app.include_router(directory.router)


def run():
    """Run the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "vsphere_provisioner.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
