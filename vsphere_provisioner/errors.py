"""
Provisioning errors and vCenter fault mapping

Defines the error taxonomy raised by the engine and maps vCenter/vModl
fault types to operator-friendly messages.
"""

from typing import Any, Dict, List, Optional, Tuple
import re


class ProvisioningError(Exception):
    """Base exception for provisioning engine operations"""

    def __init__(self, message: str, operation: Optional[str] = None, fault_type: Optional[str] = None):
        self.message = message
        self.operation = operation
        self.fault_type = fault_type
        # Ordered errors from every candidate tried before this one was raised
        self.attempts: List["ProvisioningError"] = []
        super().__init__(self.message)


class AuthenticationError(ProvisioningError):
    """No valid session with the vCenter endpoint"""


class ResolutionError(ProvisioningError):
    """An inventory entity could not be found or is ambiguous"""


class PoolNotFound(ResolutionError):
    """Raised when a pinned resource pool does not exist"""

    def __init__(self, pool_id: str):
        super().__init__(f"Unable to find resource pool with id {pool_id}")
        self.pool_id = pool_id


class DeviceNotFound(ResolutionError):
    """Raised when no virtual disk matches the volume being detached"""

    def __init__(self, volume_id: str, machine_id: str):
        super().__init__(f"No such volume device {volume_id} on {machine_id}")
        self.volume_id = volume_id
        self.machine_id = machine_id


class InsufficientCapacity(ProvisioningError):
    """No usable host or resource pool"""


class RemoteEndpointError(ProvisioningError):
    """Transport or protocol fault talking to vCenter"""


class TaskFailure(ProvisioningError):
    """vCenter reported a task error; message surfaced verbatim"""

    def __init__(self, operation: str, message: str, fault_type: Optional[str] = None):
        super().__init__(message, operation=operation, fault_type=fault_type)

    def __str__(self) -> str:
        return f"{self.operation}: {self.message}" if self.operation else self.message


class DiskFileInUse(TaskFailure):
    """Raised when a disk backing file is locked by another VM"""

    def __init__(self, operation: str, message: str):
        super().__init__(operation, f"Disk file already in use: {message}", fault_type="vim.fault.FileLocked")


class ObservationTimeout(TaskFailure):
    """A completed task's effect never became visible in the inventory"""


class ValidationError(ProvisioningError):
    """Malformed request (bad product, missing network, missing placement)"""


class VolumeNotAttached(ValidationError):
    """Raised when detaching a volume that has no recorded attachment"""

    def __init__(self, volume_id: str):
        super().__init__(f"Volume {volume_id} is not attached to any virtual machine")
        self.volume_id = volume_id


class TaskAlreadyAwaited(ProvisioningError):
    """Raised when a second thread tries to wait on the same task"""


# Mapping of vCenter fault patterns to operator-friendly messages
VCENTER_FAULT_MESSAGES: Dict[str, Dict[str, Any]] = {
    'vim.fault.InvalidLogin': {
        'title': 'Authentication Failed',
        'message': 'Invalid credentials for vCenter connection.',
        'is_recoverable': False,
    },
    'vim.fault.NoPermission': {
        'title': 'Permission Denied',
        'message': 'Insufficient permissions to perform this operation.',
        'is_recoverable': False,
    },
    'vim.fault.FileLocked': {
        'title': 'File Locked',
        'message': 'The disk file is locked by another virtual machine.',
        'is_recoverable': True,
    },
    'vim.fault.InsufficientResourcesFault': {
        'title': 'Insufficient Resources',
        'message': 'The resource pool or host does not have enough capacity for this VM.',
        'is_recoverable': True,
    },
    'vim.fault.InvalidState': {
        'title': 'Invalid State',
        'message': 'The virtual machine is in an invalid state for this operation.',
        'is_recoverable': True,
    },
    'vim.fault.InvalidPowerState': {
        'title': 'Invalid Power State',
        'message': 'The virtual machine power state does not allow this operation.',
        'is_recoverable': True,
    },
    'vim.fault.DuplicateName': {
        'title': 'Duplicate Name',
        'message': 'A virtual machine with this name already exists in the folder.',
        'is_recoverable': False,
    },
    'vim.fault.CustomizationFault': {
        'title': 'Customization Failed',
        'message': 'Guest customization could not be applied. Check VMware Tools in the template.',
        'is_recoverable': False,
    },
    'vim.fault.Timedout': {
        'title': 'Operation Timeout',
        'message': 'The vCenter operation timed out.',
        'is_recoverable': True,
    },
    'vim.fault.NotSupported': {
        'title': 'Operation Not Supported',
        'message': 'This operation is not supported on the target host or cluster.',
        'is_recoverable': False,
    },
    'vmodl.fault.RequestCanceled': {
        'title': 'Task Cancelled',
        'message': 'The task was cancelled by a user in vCenter.',
        'is_recoverable': True,
    },
}

_MSG_PATTERN = re.compile(r"msg\s*=\s*'([^']+)'")


def parse_vcenter_error(error: Exception) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Parse a vCenter exception and return a user-friendly message.

    Returns:
        Tuple of (friendly_message, fault_info_dict or None)
    """
    error_str = str(error)
    error_type = type(error).__name__

    for fault_pattern, info in VCENTER_FAULT_MESSAGES.items():
        short_name = fault_pattern.rsplit('.', 1)[-1]
        if short_name == error_type or fault_pattern in error_str:
            msg_match = _MSG_PATTERN.search(error_str)
            return info['message'], {
                'title': info['title'],
                'is_recoverable': info['is_recoverable'],
                'original_message': msg_match.group(1) if msg_match else None,
                'fault_type': fault_pattern,
            }

    # Unknown fault: try the msg field
    msg_match = _MSG_PATTERN.search(error_str)
    if msg_match:
        return msg_match.group(1), None

    return error_str, None


_FILE_LOCK_PATTERN = re.compile(r"\block(ed)?\b|failed to lock|filelocked", re.IGNORECASE)


def is_file_lock_message(message: Optional[str]) -> bool:
    """True if a task error message indicates disk file lock contention."""
    if not message:
        return False
    return bool(_FILE_LOCK_PATTERN.search(message))
