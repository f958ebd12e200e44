"""Snapshot management module.

Creates, looks up and reverts VM snapshots. Snapshots are addressed by
name and searched through the whole snapshot tree, nested ones included.
A snapshot just taken may not be listed right away, so lookups are
retried before giving up.
"""

import logging
from typing import Any

from labvsphere.errors import (
    PreconditionError,
    SnapshotError,
    SnapshotNotFoundError,
    VMNotFoundError,
)
from labvsphere.models import MachineRecord, SnapshotDescriptor, instance_uuid_of, task_succeeded
from labvsphere.provider_state import ProviderStateSync
from labvsphere.retry_config import RetryConfig, get_retry_config
from labvsphere.retry_handler import retry
from labvsphere.vsphere.connection_pool import ManagementConnectionPool, get_connection_pool

logger = logging.getLogger(__name__)


class SnapshotManager:
    """Manage snapshots of a machine record's VM.

    This class provides operations for:
    - Taking a named snapshot
    - Reverting to a named snapshot
    - Listing all snapshots
    """

    def __init__(
        self,
        record: MachineRecord,
        pool: ManagementConnectionPool | None = None,
        retry_config: RetryConfig | None = None,
    ):
        self.record = record
        self.pool = pool or get_connection_pool()
        self.retry_config = retry_config or get_retry_config()
        self.state = ProviderStateSync(record, self.retry_config)

    def take_snapshot(
        self,
        name: str | None,
        description: str = "",
        memory: bool = False,
        quiesce: bool = False,
    ) -> dict[str, Any] | None:
        """Take a snapshot and return its public attributes.

        Args:
            name: Snapshot name
            description: Free-form description
            memory: Include the VM's memory
            quiesce: Quiesce the guest file system first

        Returns:
            Snapshot attributes, or None if the new snapshot cannot be found

        Raises:
            PreconditionError: If name or instance id is missing
        """
        instance_uuid = self._require_instance_and_name(name)
        attempts = self.retry_config.snapshot_attempts

        with self.pool.connection() as conn:

            def take() -> None:
                task_state = conn.take_snapshot(
                    instance_uuid, name, description=description, memory=memory, quiesce=quiesce
                )
                if not task_succeeded(task_state):
                    raise SnapshotError(f"Snapshot task finished in state: {task_state}")

            logger.info(f"Taking snapshot {name} of {instance_uuid}")
            retry(take, max_attempts=attempts, delay=self.retry_config.delay)

            try:
                snapshot = retry(
                    lambda: self._find_snapshot(conn, instance_uuid, name),
                    max_attempts=attempts,
                    delay=self.retry_config.delay,
                )
            except SnapshotNotFoundError:
                logger.warning(
                    f"Snapshot {name} of {instance_uuid} not listed after {attempts} lookups"
                )
                return None

        return snapshot.to_public_dict()

    def revert_snapshot(self, name: str | None) -> dict[str, Any]:
        """Revert the VM to a named snapshot and refresh provider state.

        Returns:
            Refreshed provider state

        Raises:
            PreconditionError: If name or instance id is missing
            VMNotFoundError: If the VM does not exist
            SnapshotNotFoundError: If no snapshot has that name
            SnapshotError: If the revert task does not succeed
        """
        instance_uuid = self._require_instance_and_name(name)
        attempts = self.retry_config.snapshot_attempts
        delay = self.retry_config.delay

        with self.pool.connection() as conn:
            vm = retry(lambda: conn.find_vm(instance_uuid), max_attempts=attempts, delay=delay)
            if vm is None:
                raise VMNotFoundError(f"VM not found: {instance_uuid}")

            snapshot = retry(
                lambda: self._find_snapshot(conn, instance_uuid, name),
                max_attempts=attempts,
                delay=delay,
            )

            def revert() -> dict[str, Any]:
                task_state = conn.revert_snapshot(instance_uuid, snapshot)
                if not task_succeeded(task_state):
                    raise SnapshotError(f"Revert to {name} finished in state: {task_state}")
                return self.state.refresh(conn)

            logger.info(f"Reverting {instance_uuid} to snapshot {name}")
            return retry(revert, max_attempts=attempts, delay=delay)

    def list_snapshots(self) -> list[dict[str, Any]]:
        """Public attributes of every snapshot of the VM."""
        instance_uuid = instance_uuid_of(self.record)
        if not instance_uuid:
            raise PreconditionError("Virtual machine data not present")

        with self.pool.connection() as conn:
            snapshots = retry(
                lambda: conn.list_snapshots(instance_uuid),
                max_attempts=self.retry_config.snapshot_attempts,
                delay=self.retry_config.delay,
            )
        return [snapshot.to_public_dict() for snapshot in snapshots]

    def _require_instance_and_name(self, name: str | None) -> str:
        violations = []
        instance_uuid = instance_uuid_of(self.record)
        if not instance_uuid:
            violations.append("Virtual machine data not present")
        if not name:
            violations.append("Snapshot name must be specified")
        if violations:
            raise PreconditionError(violations)
        return instance_uuid

    @staticmethod
    def _find_snapshot(conn, instance_uuid: str, name: str) -> SnapshotDescriptor:
        for snapshot in conn.list_snapshots(instance_uuid):
            if snapshot.name == name:
                return snapshot
        raise SnapshotNotFoundError(f"Snapshot {name} not found for {instance_uuid}")


__all__ = ["SnapshotManager"]
