"""DRS affinity group membership.

Cluster VM groups are replaced as a whole: the current member list is
read, the VM appended and the full list written back through a cluster
reconfiguration task. A successful task does not guarantee the next read
sees the new member, so membership is verified after every write and the
whole read-modify-write-verify cycle is retried until it sticks.
"""

import logging
from typing import Any

from labvsphere.errors import AffinityGroupError, AffinityGroupNotFoundError
from labvsphere.models import AffinityGroup, task_succeeded
from labvsphere.retry_config import RetryConfig, get_retry_config
from labvsphere.retry_handler import retry
from labvsphere.vsphere.client import ManagementClient

logger = logging.getLogger(__name__)


def short_name(machine_path: str) -> str:
    """VM name without its folder (``lab/machines/lm_1`` -> ``lm_1``)."""
    return machine_path.rstrip("/").rsplit("/", 1)[-1]


class AffinityGroupManager:
    """Place VMs into cluster DRS VM groups."""

    def __init__(self, conn: ManagementClient, retry_config: RetryConfig | None = None):
        self.conn = conn
        self.retry_config = retry_config or get_retry_config()

    def add_machine(self, group: str, machine_path: str, datacenter: str) -> None:
        """Add a VM to a DRS VM group and verify it is listed afterwards.

        Args:
            group: DRS VM group name
            machine_path: Inventory path of the VM (``folder/name``)
            datacenter: Datacenter holding the VM

        Raises:
            AffinityGroupError: If membership is still missing after all attempts
            AffinityGroupNotFoundError: If the cluster has no such group
        """
        logger.info(f"Adding {machine_path} to DRS group {group}")

        def attempt() -> None:
            self._write_membership(group, machine_path, datacenter)
            if not self.is_member(group, machine_path, datacenter):
                raise AffinityGroupError(f"Cannot set machine {machine_path} to drsGroup {group}")

        retry(
            attempt,
            max_attempts=self.retry_config.affinity_group_attempts,
            delay=self.retry_config.delay,
            retryable=(AffinityGroupError,),
        )
        logger.info(f"{machine_path} is a member of DRS group {group}")

    def is_member(self, group: str, machine_path: str, datacenter: str) -> bool:
        """Whether the group currently lists the VM (matched by short name)."""
        _, affinity_group = self._read_group(group, machine_path, datacenter)
        return affinity_group.contains(short_name(machine_path))

    def _read_group(
        self, group: str, machine_path: str, datacenter: str
    ) -> tuple[Any, AffinityGroup]:
        vm_ref = self.conn.find_vm_by_path(datacenter, machine_path)
        affinity_group = self.conn.get_affinity_group(vm_ref, group)
        if affinity_group is None:
            raise AffinityGroupNotFoundError(
                f"DRS group {group} not found on the cluster of {machine_path}"
            )
        return vm_ref, affinity_group

    def _write_membership(self, group: str, machine_path: str, datacenter: str) -> None:
        vm_ref, affinity_group = self._read_group(group, machine_path, datacenter)

        if vm_ref not in affinity_group.members:
            affinity_group.members = [*affinity_group.members, vm_ref]

        task_state = self.conn.reconfigure_affinity_group(affinity_group)
        if not task_succeeded(task_state):
            raise AffinityGroupError(
                f"Reconfiguration of DRS group {group} finished in state: {task_state}"
            )


__all__ = ["AffinityGroupManager", "short_name"]
