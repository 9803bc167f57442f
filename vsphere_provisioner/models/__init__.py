from vsphere_provisioner.models.placement import (
    PlacementRequest,
    DataCenter,
    StoragePool,
    ResourcePoolInfo,
    AffinityGroup,
)
from vsphere_provisioner.models.machine import (
    VmState,
    Platform,
    Architecture,
    LaunchSpec,
    ProvisionedMachine,
    MachineProduct,
)
from vsphere_provisioner.models.network import NetworkState, NetworkType, NetworkInfo
from vsphere_provisioner.models.volume import VolumeState, Volume

__all__ = [
    "PlacementRequest",
    "DataCenter",
    "StoragePool",
    "ResourcePoolInfo",
    "AffinityGroup",
    "VmState",
    "Platform",
    "Architecture",
    "LaunchSpec",
    "ProvisionedMachine",
    "MachineProduct",
    "NetworkState",
    "NetworkType",
    "NetworkInfo",
    "VolumeState",
    "Volume",
]
