"""
vSphere Provisioner - VM provisioning and inventory resolution for vCenter.

Provides:
- Placement resolution across clusters, hosts, resource pools and datastores
- VM provisioning from templates or from scratch with guest customization
- Async task coordination with bounded inventory polling
- Virtual disk attach/detach and datastore volume discovery
"""

__version__ = "1.0.0"
