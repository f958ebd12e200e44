"""
vSphere Data Models

Value types exchanged between the lifecycle components and the
management client.

Philosophy:
- Zero dependencies on pyVmomi: adapters convert to and from these types
- Opaque references (``ref``, ``cluster``, ``members``) are passed through untouched
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from labvsphere.errors import PreconditionError

TASK_SUCCESS = "success"


def task_succeeded(task_state: str | None) -> bool:
    """Only the literal ``"success"`` counts as a finished task."""
    return task_state == TASK_SUCCESS


class PowerState(Enum):
    """Power state of a VM as reported by ``vm_state()``."""

    POWERED_ON = "poweredOn"
    POWERED_OFF = "poweredOff"


class StopMode(Enum):
    """How a shutdown or reboot is issued.

    HARD forces the operation, SOFT asks the guest tools, MANAGED tries
    SOFT first and falls back to HARD if the graceful request fails.
    """

    HARD = "hard"
    SOFT = "soft"
    MANAGED = "managed"

    @classmethod
    def parse(cls, value: "str | StopMode | None") -> "StopMode":
        """Build a mode from user input, defaulting to MANAGED.

        Raises:
            PreconditionError: If the value is not a known mode
        """
        if value is None:
            return cls.MANAGED
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as e:
            raise PreconditionError(f"Wrong mode specified: {value}") from e


@dataclass
class VMSummary:
    """Minimal view of a VM returned by an inventory lookup."""

    id: str
    name: str
    power_state: str

    @property
    def is_powered_off(self) -> bool:
        return self.power_state == PowerState.POWERED_OFF.value


@dataclass
class GuestCredentials:
    """Guest OS login used for guest operations."""

    user: str
    password: str = field(repr=False)

    def __repr__(self) -> str:
        return f"GuestCredentials(user={self.user!r}, password='****')"


@dataclass
class CloneSpec:
    """Arguments of a clone-from-template call."""

    name: str
    template_path: str
    datacenter: str | None = None
    datastore: str | None = None
    cluster: str | None = None
    dest_folder: str | None = None
    linked_clone: bool = False
    power_on: bool = False


@dataclass
class CloneResult:
    """Result of a clone call.

    ``vm_ref`` is None when the remote side did not create anything;
    ``new_vm`` carries the attributes of the created VM.
    """

    vm_ref: Any | None
    new_vm: dict[str, Any] | None = None


@dataclass
class SnapshotDescriptor:
    """Snapshot as found in a VM's snapshot tree."""

    name: str
    quiesced: bool = False
    description: str = ""
    create_time: str | None = None
    power_state: str | None = None
    ref: Any | None = None
    snapshot_name_chain: list[str] = field(default_factory=list)
    ref_chain: list[Any] = field(default_factory=list)

    PUBLIC_FIELDS = (
        "name",
        "quiesced",
        "description",
        "create_time",
        "power_state",
        "ref",
        "snapshot_name_chain",
        "ref_chain",
    )

    def to_public_dict(self) -> dict[str, Any]:
        """Fields exposed to callers of ``take_snapshot``."""
        return {name: getattr(self, name) for name in self.PUBLIC_FIELDS}


@dataclass
class TransferTicket:
    """Single-use URL issued for one guest file transfer."""

    url: str
    size: int | None = None


@dataclass
class AffinityGroup:
    """Cluster-scoped DRS VM group.

    ``members`` are VM references exposing a ``name`` attribute. Writes
    replace the whole member list.
    """

    name: str
    cluster: Any
    members: list[Any] = field(default_factory=list)
    raw: Any | None = None

    def member_names(self) -> list[str]:
        return [getattr(member, "name", None) for member in self.members]

    def contains(self, short_name: str) -> bool:
        return short_name in self.member_names()


__all__ = [
    "TASK_SUCCESS",
    "AffinityGroup",
    "CloneResult",
    "CloneSpec",
    "GuestCredentials",
    "PowerState",
    "SnapshotDescriptor",
    "StopMode",
    "TransferTicket",
    "VMSummary",
    "task_succeeded",
]
