"""
pyVmomi-backed Inventory & Task Endpoint.

Managed objects are kept in an arena keyed by moid; the engine only sees
InventoryEntity handles. vCenter faults are translated into the
provisioning error taxonomy at this boundary.
"""

import logging
import ssl
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

from pyVim.connect import SmartConnect, Disconnect
from pyVmomi import vim, vmodl

from vsphere_provisioner.endpoint.base import (
    DatastoreFile,
    EntityKind,
    GuestNic,
    InventoryEndpoint,
    InventoryEntity,
    MachineRecord,
    NetworkRecord,
)
from vsphere_provisioner.errors import (
    AuthenticationError,
    RemoteEndpointError,
    parse_vcenter_error,
)
from vsphere_provisioner.tasks import RemoteTask, TaskOutcome, TaskState

logger = logging.getLogger(__name__)

# Checked in order; subclasses (DistributedVirtualPortgroup, VirtualApp)
# fall through to their base kind.
_VIM_TYPES = [
    (EntityKind.VIRTUAL_MACHINE, vim.VirtualMachine),
    (EntityKind.HOST, vim.HostSystem),
    (EntityKind.CLUSTER, vim.ClusterComputeResource),
    (EntityKind.RESOURCE_POOL, vim.ResourcePool),
    (EntityKind.DATASTORE, vim.Datastore),
    (EntityKind.NETWORK, vim.Network),
    (EntityKind.DATACENTER, vim.Datacenter),
    (EntityKind.FOLDER, vim.Folder),
]
_KIND_TO_VIM = dict(_VIM_TYPES)


def _task_error_message(error: Any) -> str:
    if error is None:
        return "Unknown task error"
    msg = getattr(error, "localizedMessage", None) or getattr(error, "msg", None)
    return msg or str(error)


class VSphereEndpoint(InventoryEndpoint):
    """vCenter connection plus the entity arena."""

    def __init__(self, host: str, user: str, password: str, port: int = 443, verify_ssl: bool = False):
        self.host = host
        self.user = user
        self.password = password
        self.port = port
        self.verify_ssl = verify_ssl
        self._si = None
        self._arena: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "VSphereEndpoint":
        return cls(
            host=settings.host,
            user=settings.user,
            password=settings.password,
            port=settings.port,
            verify_ssl=settings.verify_ssl,
        )

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self):
        """Open the vCenter session."""
        ssl_context = None
        if not self.verify_ssl:
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        logger.info(f"Connecting to vCenter {self.host}:{self.port}")
        try:
            self._si = SmartConnect(
                host=self.host,
                user=self.user,
                pwd=self.password,
                port=self.port,
                sslContext=ssl_context
            )
        except vim.fault.InvalidLogin as e:
            friendly, _ = parse_vcenter_error(e)
            raise AuthenticationError(friendly, operation="connect", fault_type="vim.fault.InvalidLogin")
        except (vmodl.MethodFault, OSError) as e:
            friendly, info = parse_vcenter_error(e)
            raise RemoteEndpointError(
                f"vCenter connection failed: {friendly}",
                operation="connect",
                fault_type=info['fault_type'] if info else None
            )
        logger.info(f"Connected to vCenter {self.host}")
        return self._si

    def disconnect(self) -> None:
        if self._si is None:
            return
        try:
            Disconnect(self._si)
        finally:
            self._si = None
            with self._lock:
                self._arena.clear()

    def _content(self):
        if self._si is None:
            self.connect()
        return self._si.RetrieveContent()

    @contextmanager
    def _remote(self, operation: str):
        """Translate pyVmomi faults into engine errors."""
        try:
            yield
        except vim.fault.NotAuthenticated as e:
            raise AuthenticationError(f"vCenter session is not authenticated: {e.msg}", operation=operation)
        except vmodl.MethodFault as e:
            friendly, info = parse_vcenter_error(e)
            raise RemoteEndpointError(
                f"{operation} failed: {friendly}",
                operation=operation,
                fault_type=info['fault_type'] if info else None
            )
        except OSError as e:
            raise RemoteEndpointError(f"{operation} failed: {e}", operation=operation)

    # ------------------------------------------------------------------
    # Arena
    # ------------------------------------------------------------------

    def _entity(self, obj: Any) -> InventoryEntity:
        kind = None
        for candidate, vim_type in _VIM_TYPES:
            if isinstance(obj, vim_type):
                kind = candidate
                break
        if kind is None:
            raise RemoteEndpointError(f"Unexpected managed object type {type(obj).__name__}")

        parent = getattr(obj, "parent", None)
        entity = InventoryEntity(
            kind=kind,
            moid=obj._moId,
            name=obj.name,
            parent=parent._moId if parent is not None else None,
        )
        with self._lock:
            self._arena[entity.moid] = obj
        return entity

    def _mo(self, entity: InventoryEntity) -> Any:
        with self._lock:
            obj = self._arena.get(entity.moid)
        if obj is None:
            if self._si is None:
                self.connect()
            obj = _KIND_TO_VIM[entity.kind](entity.moid, self._si._stub)
            with self._lock:
                self._arena[entity.moid] = obj
        return obj

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def root_folder(self) -> InventoryEntity:
        with self._remote("read root folder"):
            return self._entity(self._content().rootFolder)

    def find_entities(self, root: InventoryEntity, kind: EntityKind) -> List[InventoryEntity]:
        with self._remote(f"list {kind.value}"):
            content = self._content()
            container = content.viewManager.CreateContainerView(
                self._mo(root), [_KIND_TO_VIM[kind]], True
            )
            try:
                return [self._entity(obj) for obj in container.view]
            finally:
                container.Destroy()

    def vm_folder(self, datacenter: InventoryEntity) -> InventoryEntity:
        with self._remote("read VM folder"):
            return self._entity(self._mo(datacenter).vmFolder)

    def cluster_root_pool(self, cluster: InventoryEntity) -> Optional[InventoryEntity]:
        with self._remote("read cluster resource pool"):
            pool = self._mo(cluster).resourcePool
            return self._entity(pool) if pool is not None else None

    def cluster_datastores(self, cluster: InventoryEntity) -> List[InventoryEntity]:
        with self._remote("list cluster datastores"):
            return [self._entity(ds) for ds in self._mo(cluster).datastore]

    def datacenter_datastores(self, datacenter: InventoryEntity) -> List[InventoryEntity]:
        with self._remote("list datacenter datastores"):
            return [self._entity(ds) for ds in self._mo(datacenter).datastore]

    def host_config_status(self, host: InventoryEntity) -> str:
        with self._remote("read host status"):
            return str(self._mo(host).configStatus)

    def machine_record(self, vm: InventoryEntity) -> MachineRecord:
        with self._remote("read virtual machine"):
            obj = self._mo(vm)
            config = obj.config
            runtime = obj.runtime
            guest = obj.guest

            record = MachineRecord(
                entity=vm,
                instance_uuid=config.instanceUuid if config else "",
                bios_uuid=config.uuid if config else "",
                name=obj.name,
                power_state=str(runtime.powerState),
                boot_time=runtime.bootTime,
                suspend_time=runtime.suspendTime,
            )
            if config:
                record.template = bool(config.template)
                record.guest_id = config.guestId
                record.guest_full_name = config.guestFullName
                record.annotation = config.annotation
                record.num_cpu = config.hardware.numCPU
                record.memory_mb = config.hardware.memoryMB
                record.devices = list(config.hardware.device)

            if runtime.host is not None:
                record.host = self._entity(runtime.host)
                owner = runtime.host.parent
                if isinstance(owner, vim.ClusterComputeResource):
                    record.cluster_name = owner.name

            pool = obj.resourcePool
            if pool is not None:
                record.resource_pool = self._entity(pool)
                if record.cluster_name is None and isinstance(pool.owner, vim.ClusterComputeResource):
                    record.cluster_name = pool.owner.name

            if guest is not None:
                record.ip_address = guest.ipAddress
                record.guest_hostname = guest.hostName
                for nic in guest.net or []:
                    record.guest_nics.append(GuestNic(
                        network=nic.network,
                        device_key=nic.deviceConfigId,
                        ip_addresses=list(nic.ipAddress or []),
                    ))

            record.datastores = [ds.name for ds in obj.datastore]
            return record

    def network_record(self, network: InventoryEntity) -> NetworkRecord:
        with self._remote("read network"):
            obj = self._mo(network)
            summary = obj.summary
            record = NetworkRecord(entity=network, accessible=bool(summary.accessible) if summary else False)
            if isinstance(obj, vim.dvs.DistributedVirtualPortgroup):
                switch = obj.config.distributedVirtualSwitch
                if switch is not None:
                    record.switch_name = switch.name
                    record.switch_moid = switch._moId
            return record

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _wrap_task(self, name: str, task: Any, translate: Optional[Callable[[Any], Any]] = None) -> RemoteTask:
        def poll() -> TaskOutcome:
            with self._remote(f"poll {name}"):
                info = task.info
                if info.state == vim.TaskInfo.State.success:
                    result = info.result
                    if translate is not None:
                        result = translate(result)
                    return TaskOutcome(TaskState.SUCCESS, result=result)
                if info.state == vim.TaskInfo.State.error:
                    return TaskOutcome(TaskState.ERROR, error_message=_task_error_message(info.error))
                return TaskOutcome(TaskState(str(info.state)))

        logger.info(f"Submitted {name}")
        return RemoteTask(name, poll, handle=task)

    def clone_vm(self, source: InventoryEntity, folder: InventoryEntity, name: str, config: Any,
                 pool: Optional[InventoryEntity] = None, host: Optional[InventoryEntity] = None,
                 datastore: Optional[InventoryEntity] = None, customization: Any = None,
                 power_on: bool = False, template: bool = False) -> RemoteTask:
        with self._remote("clone"):
            relocate_spec = vim.vm.RelocateSpec()
            if pool is not None:
                relocate_spec.pool = self._mo(pool)
            if host is not None:
                relocate_spec.host = self._mo(host)
            if datastore is not None:
                relocate_spec.datastore = self._mo(datastore)

            clone_spec = vim.vm.CloneSpec()
            clone_spec.location = relocate_spec
            clone_spec.powerOn = power_on
            clone_spec.template = template
            clone_spec.config = config
            if customization is not None:
                clone_spec.customization = customization

            task = self._mo(source).Clone(folder=self._mo(folder), name=name, spec=clone_spec)
        return self._wrap_task(f"clone {source.name} -> {name}", task)

    def create_vm(self, folder: InventoryEntity, config: Any, pool: InventoryEntity,
                  host: Optional[InventoryEntity] = None) -> RemoteTask:
        with self._remote("create VM"):
            task = self._mo(folder).CreateVM_Task(
                config=config,
                pool=self._mo(pool),
                host=self._mo(host) if host else None
            )
        return self._wrap_task(f"create {config.name}", task)

    def reconfigure_vm(self, vm: InventoryEntity, config: Any) -> RemoteTask:
        with self._remote("reconfigure"):
            task = self._mo(vm).ReconfigVM_Task(spec=config)
        return self._wrap_task(f"reconfigure {vm.name}", task)

    def power_on(self, vm: InventoryEntity, host: Optional[InventoryEntity] = None) -> RemoteTask:
        with self._remote("power on"):
            task = self._mo(vm).PowerOnVM_Task(host=self._mo(host) if host else None)
        return self._wrap_task(f"power on {vm.name}", task)

    def power_off(self, vm: InventoryEntity) -> RemoteTask:
        with self._remote("power off"):
            task = self._mo(vm).PowerOffVM_Task()
        return self._wrap_task(f"power off {vm.name}", task)

    def suspend(self, vm: InventoryEntity) -> RemoteTask:
        with self._remote("suspend"):
            task = self._mo(vm).SuspendVM_Task()
        return self._wrap_task(f"suspend {vm.name}", task)

    def destroy(self, vm: InventoryEntity) -> RemoteTask:
        with self._remote("destroy"):
            task = self._mo(vm).Destroy_Task()
        return self._wrap_task(f"destroy {vm.name}", task)

    def search_datastore(self, datastore: InventoryEntity, pattern: str = "*.vmdk") -> RemoteTask:
        search_spec = vim.host.DatastoreBrowser.SearchSpec()
        search_spec.matchPattern = [pattern]
        search_spec.details = vim.host.DatastoreBrowser.FileInfo.Details(
            fileSize=True, modification=True, fileType=True
        )

        def translate(results) -> List[DatastoreFile]:
            files = []
            for folder_result in results or []:
                for file_info in folder_result.file or []:
                    files.append(DatastoreFile(
                        folder_path=folder_result.folderPath,
                        path=file_info.path,
                        size_bytes=file_info.fileSize or 0,
                        modified=file_info.modification,
                    ))
            return files

        with self._remote("browse datastore"):
            browser = self._mo(datastore).browser
            task = browser.SearchDatastoreSubFolders_Task(f"[{datastore.name}]", search_spec)
        return self._wrap_task(f"browse {datastore.name}", task, translate)

    def delete_datastore_file(self, path: str, datacenter: InventoryEntity) -> RemoteTask:
        with self._remote("delete datastore file"):
            file_manager = self._content().fileManager
            task = file_manager.DeleteDatastoreFile_Task(name=path, datacenter=self._mo(datacenter))
        return self._wrap_task(f"delete {path}", task)
