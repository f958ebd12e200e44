"""
labvsphere Data Models

Shared dataclasses and protocols used across the lifecycle components.

Philosophy:
- No imports from components, only from labvsphere.errors
- Self-contained data definitions
"""

from .machine_record import InMemoryMachineRecord, MachineRecord, instance_uuid_of
from .vsphere_models import (
    TASK_SUCCESS,
    AffinityGroup,
    CloneResult,
    CloneSpec,
    GuestCredentials,
    PowerState,
    SnapshotDescriptor,
    StopMode,
    TransferTicket,
    VMSummary,
    task_succeeded,
)

__all__ = [
    "TASK_SUCCESS",
    "AffinityGroup",
    "CloneResult",
    "CloneSpec",
    "GuestCredentials",
    "InMemoryMachineRecord",
    "MachineRecord",
    "PowerState",
    "SnapshotDescriptor",
    "StopMode",
    "TransferTicket",
    "VMSummary",
    "instance_uuid_of",
    "task_succeeded",
]
