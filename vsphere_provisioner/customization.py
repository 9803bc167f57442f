"""
Guest customization specs for cloned VMs.

Customization is only engaged when a private IP is requested. Linux guests
get a LinuxPrep identity, Windows guests a Sysprep identity; any other
guest platform is cloned without customization.
"""

import logging
from typing import List, Optional

from pyVmomi import vim

from vsphere_provisioner.errors import ValidationError
from vsphere_provisioner.models.machine import LaunchSpec, Platform

logger = logging.getLogger(__name__)

SUBNET_MASK_METADATA_KEY = "vsphere.subnet_mask"
WINDOWS_TIMEZONE_METADATA_KEY = "vsphere.windows_timezone"
DEFAULT_SUBNET_MASK = "255.255.252.0"
DEFAULT_WINDOWS_TIMEZONE = 85  # GMT Standard Time

# Windows NetBIOS names are capped at 15 characters
WINDOWS_COMPUTER_NAME_MAX = 15
LINUX_HOSTNAME_MAX = 63


def _hostname(spec: LaunchSpec, limit: int) -> str:
    name = (spec.hostname or spec.name).replace('_', '-')
    return name[:limit]


def _require(spec: LaunchSpec, platform: Platform, fields: List[str]):
    missing = [f for f in fields if not getattr(spec, f)]
    if missing:
        raise ValidationError(
            f"A private IP on a {platform.value} guest requires: {', '.join(missing)}"
        )


def linux_identity(spec: LaunchSpec) -> vim.vm.customization.LinuxPrep:
    _require(spec, Platform.LINUX, ["domain"])
    ident = vim.vm.customization.LinuxPrep()
    ident.hostName = vim.vm.customization.FixedName(name=_hostname(spec, LINUX_HOSTNAME_MAX))
    ident.domain = spec.domain
    ident.hwClockUTC = True
    return ident


def windows_identity(spec: LaunchSpec) -> vim.vm.customization.Sysprep:
    _require(spec, Platform.WINDOWS, ["admin_password", "workgroup", "owner_name", "org_name", "product_key"])

    password = vim.vm.customization.Password(value=spec.admin_password, plainText=True)

    gui = vim.vm.customization.GuiUnattended()
    gui.password = password
    gui.autoLogon = False
    gui.autoLogonCount = 0
    gui.timeZone = int(spec.metadata.get(WINDOWS_TIMEZONE_METADATA_KEY, DEFAULT_WINDOWS_TIMEZONE))

    user_data = vim.vm.customization.UserData()
    user_data.computerName = vim.vm.customization.FixedName(name=_hostname(spec, WINDOWS_COMPUTER_NAME_MAX))
    user_data.fullName = spec.owner_name
    user_data.orgName = spec.org_name
    user_data.productId = spec.product_key

    identification = vim.vm.customization.Identification()
    identification.joinWorkgroup = spec.workgroup

    ident = vim.vm.customization.Sysprep()
    ident.guiUnattended = gui
    ident.userData = user_data
    ident.identification = identification
    return ident


def fixed_ip_mapping(ip: str, subnet_mask: str, gateway: Optional[str]) -> vim.vm.customization.AdapterMapping:
    ip_settings = vim.vm.customization.IPSettings()
    ip_settings.ip = vim.vm.customization.FixedIp(ipAddress=ip)
    ip_settings.subnetMask = subnet_mask
    if gateway:
        ip_settings.gateway = [gateway]

    adapter = vim.vm.customization.AdapterMapping()
    adapter.adapter = ip_settings
    return adapter


def dhcp_mapping() -> vim.vm.customization.AdapterMapping:
    adapter = vim.vm.customization.AdapterMapping()
    adapter.adapter = vim.vm.customization.IPSettings()
    adapter.adapter.ip = vim.vm.customization.DhcpIpGenerator()
    return adapter


def build_customization(spec: LaunchSpec, platform: Platform, adapter_networks: List[Optional[str]],
                        default_subnet_mask: str = DEFAULT_SUBNET_MASK) -> Optional[vim.vm.customization.Specification]:
    """
    Build the clone customization for a launch.

    Args:
        spec: Launch request
        platform: Guest platform guessed from the template
        adapter_networks: Network of each NIC the clone will have, in device order

    Returns:
        Customization spec, or None when customization does not apply

    Raises:
        ValidationError: required platform fields are missing
    """
    if not spec.private_ip:
        return None

    if platform == Platform.LINUX:
        identity = linux_identity(spec)
    elif platform == Platform.WINDOWS:
        identity = windows_identity(spec)
    else:
        logger.warning(
            f"Guest customization disabled for {spec.name}: unsupported platform {platform.value}"
        )
        return None

    subnet_mask = spec.metadata.get(SUBNET_MASK_METADATA_KEY) or default_subnet_mask

    # The adapter on the target network gets the fixed IP; without a match the first one does
    networks = adapter_networks or [spec.network_id]
    target_index = 0
    if spec.network_id in networks:
        target_index = networks.index(spec.network_id)

    mappings = []
    for index, _network in enumerate(networks):
        if index == target_index:
            mappings.append(fixed_ip_mapping(spec.private_ip, subnet_mask, spec.gateway))
        else:
            mappings.append(dhcp_mapping())

    custom_spec = vim.vm.customization.Specification()
    custom_spec.identity = identity
    custom_spec.globalIPSettings = vim.vm.customization.GlobalIPSettings()
    custom_spec.nicSettingMap = mappings
    logger.info(f"Guest customization for {spec.name}: {platform.value}, {spec.private_ip}/{subnet_mask}")
    return custom_spec
