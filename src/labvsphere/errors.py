"""Error taxonomy for vSphere lifecycle operations.

Errors fall into four groups:
- Precondition errors: raised before any remote call, never retried
- Operation errors: a remote task finished in a non-success state; retried
  up to the operation's attempt budget
- Not-found errors: the target is gone; retrying cannot help
- Transport errors: trigger a session reload in the connection pool
"""


class VSphereProviderError(Exception):
    """Base class for all labvsphere errors."""

    pass


class PreconditionError(VSphereProviderError, ValueError):
    """Raised when required input (instance id, credentials, names) is missing.

    Multiple violations are joined into a single message.
    """

    def __init__(self, violations: str | list[str]):
        if isinstance(violations, str):
            violations = [violations]
        self.violations = list(violations)
        super().__init__(", ".join(self.violations))


class CreateVMError(VSphereProviderError):
    """Raised when a clone call reports no created VM."""

    pass


class PowerOnError(VSphereProviderError):
    """Raised when a power-on task does not finish successfully."""

    pass


class TerminateVMError(VSphereProviderError):
    """Raised when a destroy task does not finish successfully."""

    pass


class ShutdownVMError(VSphereProviderError):
    """Raised when a VM does not reach the powered-off state."""

    pass


class RebootVMError(VSphereProviderError):
    """Raised when a reboot cannot be issued."""

    pass


class SnapshotError(VSphereProviderError):
    """Raised when a snapshot task does not finish successfully."""

    pass


class AffinityGroupError(VSphereProviderError):
    """Raised when a VM cannot be placed into a DRS group."""

    pass


class VMNotFoundError(VSphereProviderError):
    """Raised when the target VM no longer exists."""

    pass


class SnapshotNotFoundError(VSphereProviderError):
    """Raised when a named snapshot cannot be located."""

    pass


class AffinityGroupNotFoundError(VSphereProviderError):
    """Raised when the named DRS group does not exist on the VM's cluster."""

    pass


class RemoteFaultError(VSphereProviderError):
    """Raised when the management API answers with a protocol fault."""

    def __init__(self, message: str, fault: Exception | None = None):
        super().__init__(message)
        self.fault = fault


class PoolTimeoutError(VSphereProviderError):
    """Raised when no pooled connection becomes available in time."""

    pass


class GuestFileTransferError(VSphereProviderError):
    """Raised when the guest file transfer endpoint answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int, body: str):
        super().__init__(f"{message} (status={status_code}): {body}")
        self.status_code = status_code
        self.body = body


class UnexpectedStateError(VSphereProviderError):
    """Raised when the remote power state is neither on nor off."""

    pass


__all__ = [
    "AffinityGroupError",
    "AffinityGroupNotFoundError",
    "CreateVMError",
    "GuestFileTransferError",
    "PoolTimeoutError",
    "PowerOnError",
    "PreconditionError",
    "RebootVMError",
    "RemoteFaultError",
    "ShutdownVMError",
    "SnapshotError",
    "SnapshotNotFoundError",
    "TerminateVMError",
    "UnexpectedStateError",
    "VMNotFoundError",
    "VSphereProviderError",
]
