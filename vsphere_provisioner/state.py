"""
State translation between vCenter and the provider-agnostic model.
"""

import logging
from typing import Iterable, Optional, Set

from vsphere_provisioner import devices
from vsphere_provisioner.devices import DeviceKind
from vsphere_provisioner.endpoint.base import MachineRecord
from vsphere_provisioner.models.machine import Architecture, Platform, ProvisionedMachine, VmState
from vsphere_provisioner.utils import is_private_ip

logger = logging.getLogger(__name__)

POWER_STATES = {
    "poweredOn": VmState.RUNNING,
    "poweredOff": VmState.STOPPED,
    "suspended": VmState.SUSPENDED,
}

# Checked in order against the lowercased guest full name
_LINUX_MARKERS = (
    "linux", "ubuntu", "centos", "red hat", "rhel", "debian", "suse",
    "fedora", "rocky", "alma", "photon", "coreos", "amazon",
)
_UNIX_MARKERS = ("freebsd", "solaris", "unix", "aix", "hp-ux", "mac os", "darwin")


def to_vm_state(power_state: Optional[str]) -> VmState:
    return POWER_STATES.get(str(power_state), VmState.PENDING)


def guess_platform(guest_full_name: Optional[str]) -> Platform:
    if not guest_full_name:
        return Platform.UNKNOWN
    name = guest_full_name.lower()
    if "windows" in name:
        return Platform.WINDOWS
    if any(marker in name for marker in _LINUX_MARKERS):
        return Platform.LINUX
    if any(marker in name for marker in _UNIX_MARKERS):
        return Platform.UNIX
    return Platform.UNKNOWN


def guess_architecture(guest_id: Optional[str], guest_full_name: Optional[str] = None) -> Architecture:
    text = f"{guest_id or ''} {guest_full_name or ''}"
    if "64" in text:
        return Architecture.I64
    return Architecture.I32


class StateTranslator:
    """Builds ProvisionedMachine objects from MachineRecord snapshots"""

    def __init__(self, region: str, account_number: str = ""):
        self.region = region
        self.account_number = account_number

    def image_id_for(self, annotation: Optional[str]) -> str:
        """Template id recorded in the annotation, or the unknown sentinel."""
        if annotation:
            annotation = annotation.strip()
            if annotation and " " not in annotation:
                return annotation
        return f"{self.account_number}-unknown"

    def split_addresses(self, addresses: Iterable[str]):
        public, private = [], []
        for address in addresses:
            if not address or ":" in address:
                # IPv6 is not classified
                continue
            if is_private_ip(address):
                private.append(address)
            else:
                public.append(address)
        return public, private

    def to_machine(self, record: MachineRecord, data_center_ids: Optional[Set[str]] = None) -> ProvisionedMachine:
        """
        Translate a VM snapshot.

        Args:
            record: VM snapshot from the endpoint
            data_center_ids: Known data center ids (cluster names) in the region
        """
        cluster = record.cluster_name
        if cluster and data_center_ids is not None and cluster not in data_center_ids:
            data_center_id = f"{cluster}-a"
        else:
            data_center_id = cluster

        addresses = []
        if record.ip_address:
            addresses.append(record.ip_address)
        for nic in record.guest_nics:
            for address in nic.ip_addresses:
                if address not in addresses:
                    addresses.append(address)
        public, private = self.split_addresses(addresses)

        network_id = None
        for nic in devices.of_kind(record.devices, DeviceKind.NIC):
            network_id = devices.nic_network_name(nic)
            if network_id:
                break
        if not network_id:
            for nic in record.guest_nics:
                if nic.network:
                    network_id = nic.network
                    break

        return ProvisionedMachine(
            id=record.instance_uuid,
            name=record.name,
            region_id=self.region,
            data_center_id=data_center_id,
            resource_pool_id=record.resource_pool.name if record.resource_pool else None,
            affinity_group_id=record.host.name if record.host else None,
            state=to_vm_state(record.power_state),
            public_ips=public,
            private_ips=private,
            product=f"{record.num_cpu}:{record.memory_mb}",
            cpu_count=record.num_cpu,
            memory_mb=record.memory_mb,
            network_id=network_id,
            image_id=self.image_id_for(record.annotation),
            platform=guess_platform(record.guest_full_name),
            architecture=guess_architecture(record.guest_id, record.guest_full_name),
            description=record.guest_full_name,
            created_at=record.boot_time or record.suspend_time,
            booted_at=record.boot_time,
            suspended_at=record.suspend_time,
            tags={"guest_hostname": record.guest_hostname} if record.guest_hostname else {},
        )
