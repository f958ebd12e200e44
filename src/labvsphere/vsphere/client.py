"""Management client contract.

Every call the lifecycle components make against vSphere goes through an
object satisfying ``ManagementClient``. ``PyVmomiClient`` is the production
adapter; tests provide scripted fakes.

Conventions:
- VMs are addressed by instance UUID
- Task-returning calls block until the task ends and return its state
  string (``"success"`` on success)
- Protocol faults surface as ``RemoteFaultError``
"""

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from labvsphere.models import (
    AffinityGroup,
    CloneResult,
    CloneSpec,
    GuestCredentials,
    SnapshotDescriptor,
    TransferTicket,
    VMSummary,
)


@runtime_checkable
class ManagementClient(Protocol):
    """Operations required from a vSphere management session."""

    # Session

    def current_time(self) -> datetime:
        """Cheap round trip used as a liveness check."""
        ...

    def reload(self) -> None:
        """Re-establish the session after a transport failure."""
        ...

    def disconnect(self) -> None: ...

    # Inventory and power

    def clone_vm(self, spec: CloneSpec) -> CloneResult: ...

    def find_vm(self, instance_uuid: str) -> VMSummary | None:
        """Look up a VM, None if it does not exist."""
        ...

    def get_virtual_machine(self, instance_uuid: str) -> dict[str, Any]:
        """Attributes of a VM.

        Values are strings or zero-argument callables for attributes that
        are expensive to compute.

        Raises:
            VMNotFoundError: If the VM does not exist
        """
        ...

    def destroy_vm(self, instance_uuid: str) -> str: ...

    def power_on_vm(self, instance_uuid: str) -> str: ...

    def stop_vm(self, instance_uuid: str, force: bool) -> str:
        """Forced power-off, or a guest-tools shutdown request."""
        ...

    def reboot_vm(self, instance_uuid: str, force: bool) -> str:
        """Forced reset, or a guest-tools reboot request."""
        ...

    # Snapshots

    def take_snapshot(
        self,
        instance_uuid: str,
        name: str,
        description: str = "",
        memory: bool = False,
        quiesce: bool = False,
    ) -> str: ...

    def list_snapshots(self, instance_uuid: str) -> list[SnapshotDescriptor]:
        """All snapshots of a VM, nested ones included."""
        ...

    def revert_snapshot(self, instance_uuid: str, snapshot: SnapshotDescriptor) -> str: ...

    # Guest operations

    def list_guest_processes(
        self,
        instance_uuid: str,
        credentials: GuestCredentials,
        pids: list[int] | None = None,
    ) -> list[dict[str, Any]]: ...

    def start_guest_program(
        self,
        instance_uuid: str,
        credentials: GuestCredentials,
        command: str,
        args: str | None = None,
        working_dir: str | None = None,
    ) -> int: ...

    def initiate_file_transfer_to_guest(
        self,
        instance_uuid: str,
        credentials: GuestCredentials,
        guest_file_path: str,
        file_size: int,
        overwrite: bool = False,
    ) -> TransferTicket: ...

    def initiate_file_transfer_from_guest(
        self,
        instance_uuid: str,
        credentials: GuestCredentials,
        guest_file_path: str,
    ) -> TransferTicket: ...

    # DRS groups

    def find_vm_by_path(self, datacenter: str, machine_path: str) -> Any:
        """VM reference for an inventory path like ``folder/name``."""
        ...

    def get_affinity_group(self, vm_ref: Any, group_name: str) -> AffinityGroup | None:
        """Group of the VM's cluster with the given name, None if absent."""
        ...

    def reconfigure_affinity_group(self, group: AffinityGroup) -> str:
        """Write the group's full member list back to its cluster."""
        ...


__all__ = ["ManagementClient"]
