"""
Machine Record

The lab-provisioning service owns machine records and their persistence.
This module only describes the attributes the lifecycle components read
and write.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class MachineRecord(Protocol):
    """A logical lab machine backed by a vSphere VM.

    Attributes:
        image: Template path the VM is cloned from (overrides options)
        creation_options: Options the scheduler recorded for creation
        provider_state: Cached VM attributes; ``provider_state["id"]`` is
            the instance UUID once the VM exists
    """

    image: str | None
    creation_options: dict[str, Any]
    provider_state: dict[str, Any]


@dataclass
class InMemoryMachineRecord:
    """Machine record kept in memory (CLI usage, tests)."""

    image: str | None = None
    creation_options: dict[str, Any] = field(default_factory=dict)
    provider_state: dict[str, Any] = field(default_factory=dict)
    record_id: str | None = None

    @classmethod
    def for_instance(cls, instance_uuid: str) -> "InMemoryMachineRecord":
        """Record for an already existing VM."""
        return cls(provider_state={"id": instance_uuid})


def instance_uuid_of(record: MachineRecord) -> str | None:
    """Instance UUID of the record's VM, None before creation."""
    return (record.provider_state or {}).get("id")


__all__ = ["InMemoryMachineRecord", "MachineRecord", "instance_uuid_of"]
