"""pyVmomi adapter for the management client contract.

Wraps a vCenter session (pyVim ``SmartConnect``) and implements every
call of ``ManagementClient``:
  - Session liveness and reconnect
  - Clone, lookup, destroy, power and guest-tools shutdown/reboot
  - Snapshot tree traversal and revert
  - Guest process and file-transfer initiation
  - DRS VM group read and full-replace reconfiguration

Faults raised by the API (``vmodl.MethodFault``) are translated into
``RemoteFaultError`` so callers never import pyVmomi.
"""

import functools
import logging
import re
import ssl
from datetime import datetime
from typing import Any, Callable, TypeVar

from pyVim.connect import Disconnect, SmartConnect
from pyVim.task import WaitForTask
from pyVmomi import vim, vmodl

from labvsphere.config_manager import ConnectionSettings
from labvsphere.errors import RemoteFaultError, VMNotFoundError
from labvsphere.models import (
    TASK_SUCCESS,
    AffinityGroup,
    CloneResult,
    CloneSpec,
    GuestCredentials,
    SnapshotDescriptor,
    TransferTicket,
    VMSummary,
)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Linked clones share the template's base disk
LINKED_CLONE_DISK_MOVE_TYPE = "createNewChildDiskBacking"


def _translate_faults(func: F) -> F:
    """Re-raise pyVmomi faults as RemoteFaultError."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except vmodl.MethodFault as e:
            message = getattr(e, "msg", None) or type(e).__name__
            raise RemoteFaultError(f"{func.__name__}: {message}", fault=e) from e

    return wrapper  # type: ignore


class PyVmomiClient:
    """vCenter management session.

    Usage:
        client = PyVmomiClient(settings)
        client.connect()
        client.power_on_vm(instance_uuid)
        client.disconnect()
    """

    def __init__(self, settings: ConnectionSettings):
        self.settings = settings
        self._si: Any | None = None

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def connect(self) -> "PyVmomiClient":
        """Open the vCenter session."""
        self.settings.validate()
        logger.info(f"Connecting to vCenter: {self.settings.host} (user={self.settings.user})")

        connect_kwargs: dict[str, Any] = {
            "host": self.settings.host,
            "user": self.settings.user,
            "pwd": self.settings.password,
            "port": self.settings.port,
        }
        if self.settings.insecure:
            ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
            connect_kwargs["sslContext"] = ctx

        try:
            self._si = SmartConnect(**connect_kwargs)
        except vim.fault.InvalidLogin as e:
            raise RemoteFaultError(
                f"Authentication failed for {self.settings.user}@{self.settings.host}", fault=e
            ) from e
        return self

    def disconnect(self) -> None:
        if self._si is None:
            return
        try:
            Disconnect(self._si)
        except (vmodl.MethodFault, OSError) as e:
            logger.debug(f"Disconnect error (non-fatal): {e}")
        finally:
            self._si = None

    def reload(self) -> None:
        logger.info(f"Reconnecting to vCenter: {self.settings.host}")
        self.disconnect()
        self.connect()

    @property
    def content(self) -> Any:
        if self._si is None:
            self.connect()
        return self._si.RetrieveContent()

    @_translate_faults
    def current_time(self) -> datetime:
        if self._si is None:
            self.connect()
        return self._si.CurrentTime()

    # ------------------------------------------------------------------
    # Inventory and power
    # ------------------------------------------------------------------

    @_translate_faults
    def clone_vm(self, spec: CloneSpec) -> CloneResult:
        search = self.content.searchIndex
        datacenter = search.FindByInventoryPath(spec.datacenter) if spec.datacenter else None
        template = search.FindByInventoryPath(self._vm_path(spec.datacenter, spec.template_path))
        if template is None:
            logger.warning(f"Template not found: {spec.template_path}")
            return CloneResult(vm_ref=None)

        if spec.dest_folder:
            folder = search.FindByInventoryPath(self._vm_path(spec.datacenter, spec.dest_folder))
        else:
            folder = datacenter.vmFolder if datacenter else template.parent

        relocate = vim.vm.RelocateSpec()
        if spec.cluster and spec.datacenter:
            cluster = search.FindByInventoryPath(f"{spec.datacenter}/host/{spec.cluster}")
            if cluster is not None:
                relocate.pool = cluster.resourcePool
        if spec.datastore and datacenter is not None:
            relocate.datastore = next(
                (ds for ds in datacenter.datastore if ds.name == spec.datastore), None
            )

        clone_spec = vim.vm.CloneSpec(location=relocate, powerOn=spec.power_on, template=False)
        if spec.linked_clone and template.snapshot is not None:
            relocate.diskMoveType = LINKED_CLONE_DISK_MOVE_TYPE
            clone_spec.snapshot = template.snapshot.currentSnapshot

        logger.debug(f"Cloning {spec.template_path} into {spec.dest_folder}/{spec.name}")
        task = template.CloneVM_Task(folder=folder, name=spec.name, spec=clone_spec)
        WaitForTask(task)

        new_vm = task.info.result
        if new_vm is None:
            return CloneResult(vm_ref=None)
        return CloneResult(vm_ref=new_vm._moId, new_vm=self._vm_attributes(new_vm))

    @_translate_faults
    def find_vm(self, instance_uuid: str) -> VMSummary | None:
        vm = self._find_vm_object(instance_uuid)
        if vm is None:
            return None
        return VMSummary(
            id=vm.config.instanceUuid, name=vm.name, power_state=str(vm.runtime.powerState)
        )

    @_translate_faults
    def get_virtual_machine(self, instance_uuid: str) -> dict[str, Any]:
        return self._vm_attributes(self._require_vm(instance_uuid))

    @_translate_faults
    def destroy_vm(self, instance_uuid: str) -> str:
        vm = self._require_vm(instance_uuid)
        if vm.runtime.powerState == vim.VirtualMachinePowerState.poweredOn:
            WaitForTask(vm.PowerOffVM_Task())
        return self._wait(vm.Destroy_Task())

    @_translate_faults
    def power_on_vm(self, instance_uuid: str) -> str:
        vm = self._require_vm(instance_uuid)
        if vm.runtime.powerState == vim.VirtualMachinePowerState.poweredOn:
            return TASK_SUCCESS
        return self._wait(vm.PowerOnVM_Task())

    @_translate_faults
    def stop_vm(self, instance_uuid: str, force: bool) -> str:
        vm = self._require_vm(instance_uuid)
        if force:
            return self._wait(vm.PowerOffVM_Task())
        # Guest-tools requests return before the guest acts on them
        vm.ShutdownGuest()
        return TASK_SUCCESS

    @_translate_faults
    def reboot_vm(self, instance_uuid: str, force: bool) -> str:
        vm = self._require_vm(instance_uuid)
        if force:
            return self._wait(vm.ResetVM_Task())
        vm.RebootGuest()
        return TASK_SUCCESS

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @_translate_faults
    def take_snapshot(
        self,
        instance_uuid: str,
        name: str,
        description: str = "",
        memory: bool = False,
        quiesce: bool = False,
    ) -> str:
        vm = self._require_vm(instance_uuid)
        task = vm.CreateSnapshot_Task(
            name=name, description=description, memory=memory, quiesce=quiesce
        )
        return self._wait(task)

    @_translate_faults
    def list_snapshots(self, instance_uuid: str) -> list[SnapshotDescriptor]:
        vm = self._require_vm(instance_uuid)
        if vm.snapshot is None:
            return []
        return list(self._walk_snapshot_tree(vm.snapshot.rootSnapshotList, [], []))

    @_translate_faults
    def revert_snapshot(self, instance_uuid: str, snapshot: SnapshotDescriptor) -> str:
        return self._wait(snapshot.ref.RevertToSnapshot_Task())

    # ------------------------------------------------------------------
    # Guest operations
    # ------------------------------------------------------------------

    @_translate_faults
    def list_guest_processes(
        self,
        instance_uuid: str,
        credentials: GuestCredentials,
        pids: list[int] | None = None,
    ) -> list[dict[str, Any]]:
        vm = self._require_vm(instance_uuid)
        manager = self.content.guestOperationsManager.processManager
        processes = manager.ListProcessesInGuest(
            vm=vm, auth=self._guest_auth(credentials), pids=pids
        )
        return [
            {
                "name": p.name,
                "pid": p.pid,
                "owner": p.owner,
                "cmd_line": p.cmdLine,
                "start_time": p.startTime.isoformat() if p.startTime else None,
                "end_time": p.endTime.isoformat() if p.endTime else None,
                "exit_code": p.exitCode,
            }
            for p in processes
        ]

    @_translate_faults
    def start_guest_program(
        self,
        instance_uuid: str,
        credentials: GuestCredentials,
        command: str,
        args: str | None = None,
        working_dir: str | None = None,
    ) -> int:
        vm = self._require_vm(instance_uuid)
        manager = self.content.guestOperationsManager.processManager
        program = vim.vm.guest.ProcessManager.ProgramSpec(
            programPath=command, arguments=args or "", workingDirectory=working_dir
        )
        return manager.StartProgramInGuest(vm=vm, auth=self._guest_auth(credentials), spec=program)

    @_translate_faults
    def initiate_file_transfer_to_guest(
        self,
        instance_uuid: str,
        credentials: GuestCredentials,
        guest_file_path: str,
        file_size: int,
        overwrite: bool = False,
    ) -> TransferTicket:
        vm = self._require_vm(instance_uuid)
        manager = self.content.guestOperationsManager.fileManager
        url = manager.InitiateFileTransferToGuest(
            vm=vm,
            auth=self._guest_auth(credentials),
            guestFilePath=guest_file_path,
            fileAttributes=vim.vm.guest.FileManager.FileAttributes(),
            fileSize=file_size,
            overwrite=overwrite,
        )
        return TransferTicket(url=self._resolve_transfer_host(url), size=file_size)

    @_translate_faults
    def initiate_file_transfer_from_guest(
        self,
        instance_uuid: str,
        credentials: GuestCredentials,
        guest_file_path: str,
    ) -> TransferTicket:
        vm = self._require_vm(instance_uuid)
        manager = self.content.guestOperationsManager.fileManager
        info = manager.InitiateFileTransferFromGuest(
            vm=vm, auth=self._guest_auth(credentials), guestFilePath=guest_file_path
        )
        return TransferTicket(url=self._resolve_transfer_host(info.url), size=info.size)

    # ------------------------------------------------------------------
    # DRS groups
    # ------------------------------------------------------------------

    @_translate_faults
    def find_vm_by_path(self, datacenter: str, machine_path: str) -> Any:
        vm = self.content.searchIndex.FindByInventoryPath(self._vm_path(datacenter, machine_path))
        if vm is None:
            raise VMNotFoundError(f"VM not found at {datacenter}/{machine_path}")
        return vm

    @_translate_faults
    def get_affinity_group(self, vm_ref: Any, group_name: str) -> AffinityGroup | None:
        cluster = vm_ref.runtime.host.parent
        for group in cluster.configurationEx.group:
            if group.name == group_name and isinstance(group, vim.cluster.VmGroup):
                return AffinityGroup(
                    name=group.name, cluster=cluster, members=list(group.vm), raw=group
                )
        return None

    @_translate_faults
    def reconfigure_affinity_group(self, group: AffinityGroup) -> str:
        group.raw.vm = list(group.members)
        group_spec = vim.cluster.GroupSpec(
            operation=vim.option.ArrayUpdateSpec.Operation.edit, info=group.raw
        )
        task = group.cluster.ReconfigureComputeResource_Task(
            spec=vim.cluster.ConfigSpecEx(groupSpec=[group_spec]), modify=True
        )
        return self._wait(task)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_vm_object(self, instance_uuid: str) -> Any | None:
        return self.content.searchIndex.FindByUuid(None, instance_uuid, True, True)

    def _require_vm(self, instance_uuid: str) -> Any:
        vm = self._find_vm_object(instance_uuid)
        if vm is None:
            raise VMNotFoundError(f"VM not found: {instance_uuid}")
        return vm

    @staticmethod
    def _wait(task: Any) -> str:
        WaitForTask(task)
        return str(task.info.state)

    @staticmethod
    def _vm_path(datacenter: str | None, path: str) -> str:
        path = path.strip("/")
        return f"{datacenter}/vm/{path}" if datacenter else path

    @staticmethod
    def _guest_auth(credentials: GuestCredentials) -> Any:
        return vim.vm.guest.NamePasswordAuthentication(
            username=credentials.user,
            password=credentials.password,
            interactiveSession=False,
        )

    def _resolve_transfer_host(self, url: str) -> str:
        # ESXi answers with "*" as host when contacted directly
        return re.sub(r"^(https?://)\*", rf"\g<1>{self.settings.host}", url)

    def _vm_attributes(self, vm: Any) -> dict[str, Any]:
        """VM attributes; inventory-walking ones are computed lazily."""
        config = vm.config
        guest = vm.guest
        runtime = vm.runtime
        return {
            "id": config.instanceUuid,
            "name": vm.name,
            "uuid": config.uuid,
            "mo_ref": vm._moId,
            "hostname": guest.hostName if guest else None,
            "operatingsystem": guest.guestFullName if guest else None,
            "ipaddress": guest.ipAddress if guest else None,
            "tools_state": str(guest.toolsStatus) if guest and guest.toolsStatus else None,
            "tools_version": guest.toolsVersion if guest else None,
            "power_state": str(runtime.powerState),
            "connection_state": str(runtime.connectionState),
            "guest_id": config.guestId,
            "hardware_version": config.version,
            "cpus": str(config.hardware.numCPU),
            "memory_mb": str(config.hardware.memoryMB),
            "overall_status": str(vm.overallStatus),
            "template": str(config.template).lower(),
            "host": lambda: runtime.host.name if runtime.host else None,
            "cluster": lambda: runtime.host.parent.name if runtime.host else None,
            "path": lambda: self._folder_path(vm),
        }

    @staticmethod
    def _folder_path(vm: Any) -> str:
        parts = []
        parent = vm.parent
        while parent is not None and isinstance(parent, vim.Folder):
            parts.append(parent.name)
            parent = parent.parent
        return "/" + "/".join(reversed(parts))

    @classmethod
    def _walk_snapshot_tree(
        cls, trees: list[Any], name_chain: list[str], ref_chain: list[Any]
    ):
        for tree in trees:
            names = [*name_chain, tree.name]
            refs = [*ref_chain, tree.snapshot]
            yield SnapshotDescriptor(
                name=tree.name,
                quiesced=bool(tree.quiesced),
                description=tree.description or "",
                create_time=tree.createTime.isoformat() if tree.createTime else None,
                power_state=str(tree.state),
                ref=tree.snapshot,
                snapshot_name_chain=names,
                ref_chain=refs,
            )
            yield from cls._walk_snapshot_tree(tree.childSnapshotList or [], names, refs)


def connect(settings: ConnectionSettings) -> PyVmomiClient:
    """Factory used by the connection pool."""
    return PyVmomiClient(settings).connect()


__all__ = ["PyVmomiClient", "connect"]
