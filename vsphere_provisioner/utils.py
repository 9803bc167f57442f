import ipaddress
from typing import Optional

MAX_NAME_LENGTH = 30

PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("172.16.0.0/12"),
)


def validate_name(name: str) -> str:
    """Normalize a VM name: lowercase, underscores to dashes, max 30 chars."""
    name = name.lower().replace("_", "-")
    return name[:MAX_NAME_LENGTH]


def is_private_ip(address: str) -> bool:
    """Return True if address falls in an RFC1918 or link-local range."""
    try:
        ip = ipaddress.ip_address(address.strip())
    except ValueError:
        return False
    if ip.version != 4:
        return False
    return any(ip in net for net in PRIVATE_NETWORKS)


def file_basename(path: Optional[str]) -> str:
    """Return the part of a datastore path after the last '/'."""
    if not path:
        return ""
    idx = path.rfind("/")
    if idx > -1:
        return path[idx + 1:]
    # "[datastore1] disk.vmdk" with no folder
    idx = path.rfind("] ")
    if idx > -1:
        return path[idx + 2:]
    return path
