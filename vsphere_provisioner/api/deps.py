"""
Engine dependency for the API routers.
"""

import threading
from typing import Optional

from vsphere_provisioner.config import settings
from vsphere_provisioner.engine import ProvisioningEngine

_engine: Optional[ProvisioningEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> ProvisioningEngine:
    """Lazily build the process-wide engine on first request."""
    global _engine
    with _engine_lock:
        if _engine is None:
            from vsphere_provisioner.endpoint.vsphere import VSphereEndpoint
            _engine = ProvisioningEngine(VSphereEndpoint.from_settings(settings), settings)
        return _engine


def shutdown_engine():
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.close()
            _engine = None
