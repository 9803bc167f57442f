import unittest

from vsphere_provisioner.errors import (
    DiskFileInUse,
    InsufficientCapacity,
    ProvisioningError,
    TaskFailure,
    is_file_lock_message,
    parse_vcenter_error,
)


class FileLocked(Exception):
    pass


class VcenterErrorParsingTests(unittest.TestCase):
    def test_known_fault_by_type_name(self):
        error = FileLocked("(vim.fault.FileLocked) { msg = 'Unable to access file [ds1] vm/disk.vmdk since it is locked' }")

        message, info = parse_vcenter_error(error)

        self.assertEqual(message, "The disk file is locked by another virtual machine.")
        self.assertEqual(info["fault_type"], "vim.fault.FileLocked")
        self.assertTrue(info["is_recoverable"])
        self.assertEqual(info["original_message"], "Unable to access file [ds1] vm/disk.vmdk since it is locked")

    def test_known_fault_by_text(self):
        message, info = parse_vcenter_error(Exception("vim.fault.InvalidLogin: Cannot complete login"))

        self.assertEqual(info["title"], "Authentication Failed")
        self.assertFalse(info["is_recoverable"])

    def test_unknown_fault_uses_msg_field(self):
        message, info = parse_vcenter_error(Exception("(vmodl.fault.SystemError) { msg = 'A general system error occurred' }"))

        self.assertEqual(message, "A general system error occurred")
        self.assertIsNone(info)

    def test_unknown_fault_without_msg(self):
        self.assertEqual(parse_vcenter_error(Exception("boom")), ("boom", None))


class ErrorTaxonomyTests(unittest.TestCase):
    def test_lock_messages(self):
        self.assertTrue(is_file_lock_message("Failed to lock the file"))
        self.assertTrue(is_file_lock_message("Unable to access file since it is LOCKED"))
        self.assertTrue(is_file_lock_message("The file is locked"))
        self.assertFalse(is_file_lock_message("Invalid configuration for device '0'."))
        self.assertFalse(is_file_lock_message("Invalid block size for the virtual disk."))
        self.assertFalse(is_file_lock_message("Clock skew detected"))
        self.assertFalse(is_file_lock_message("Device was unlocked by the host"))
        self.assertFalse(is_file_lock_message(None))

    def test_task_failure_string_names_operation(self):
        error = TaskFailure("destroy web01", "Invalid power state")
        self.assertEqual(str(error), "destroy web01: Invalid power state")
        self.assertEqual(error.message, "Invalid power state")

    def test_disk_file_in_use_is_a_task_failure(self):
        error = DiskFileInUse("attach volume", "Failed to lock the file")

        self.assertIsInstance(error, TaskFailure)
        self.assertEqual(error.fault_type, "vim.fault.FileLocked")
        self.assertEqual(error.message, "Disk file already in use: Failed to lock the file")

    def test_attempts_default_empty(self):
        self.assertEqual(InsufficientCapacity("no hosts").attempts, [])
        self.assertTrue(issubclass(InsufficientCapacity, ProvisioningError))


if __name__ == "__main__":
    unittest.main()
