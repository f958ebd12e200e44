"""Provider state: the machine record's cached copy of VM attributes.

Only string values are persisted. Lazily computed attributes (callables)
are evaluated when a full refresh is requested and stored as None
otherwise; every other value type is stored as None.
"""

import logging
from typing import Any

from labvsphere.errors import VMNotFoundError
from labvsphere.models import MachineRecord, instance_uuid_of
from labvsphere.retry_config import RetryConfig, get_retry_config
from labvsphere.retry_handler import retry
from labvsphere.vsphere.client import ManagementClient

logger = logging.getLogger(__name__)


def render_vm_data(vm_data: dict[str, Any], full: bool = False) -> dict[str, str | None]:
    """Reduce raw VM attributes to persistable values.

    Args:
        vm_data: Attributes from the management client
        full: Evaluate lazily computed attributes

    Returns:
        Mapping with string or None values only
    """
    rendered: dict[str, str | None] = {}
    for key, value in vm_data.items():
        if callable(value):
            value = value() if full else None
        rendered[key] = value if isinstance(value, str) else None
    return rendered


class ProviderStateSync:
    """Refresh and persist a record's provider state."""

    def __init__(self, record: MachineRecord, retry_config: RetryConfig | None = None):
        self.record = record
        self.retry_config = retry_config or get_retry_config()

    def fetch(self, conn: ManagementClient, full: bool = False) -> dict[str, str | None]:
        """Current attributes of the record's VM, not persisted.

        The lookup is retried because a freshly created or reverted VM may
        not be visible to inventory queries yet.

        Raises:
            VMNotFoundError: If the VM is still missing after all attempts
        """
        instance_uuid = instance_uuid_of(self.record)
        vm_data = retry(
            lambda: conn.get_virtual_machine(instance_uuid),
            max_attempts=self.retry_config.refresh_attempts,
            delay=self.retry_config.refresh_delay,
            retryable=(VMNotFoundError,),
        )
        return render_vm_data(vm_data, full=full)

    def store(self, vm_data: dict[str, Any], full: bool = False) -> dict[str, str | None]:
        """Persist attributes already fetched (e.g. returned by a clone)."""
        self.record.provider_state = render_vm_data(vm_data, full=full)
        return self.record.provider_state

    def refresh(self, conn: ManagementClient, full: bool = False) -> dict[str, Any]:
        """Fetch and persist the VM's attributes.

        Records without an instance id are returned unchanged.
        """
        if instance_uuid_of(self.record) is None:
            return self.record.provider_state
        self.record.provider_state = self.fetch(conn, full=full)
        logger.debug(
            f"Provider state refreshed for {self.record.provider_state.get('id')}: "
            f"power_state={self.record.provider_state.get('power_state')}"
        )
        return self.record.provider_state


__all__ = ["ProviderStateSync", "render_vm_data"]
