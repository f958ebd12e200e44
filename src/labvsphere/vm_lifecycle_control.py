"""VM lifecycle control module.

This module drives one lab machine's VM through its lifecycle:
- Create from a template (with DRS group placement and power-on)
- Terminate
- Power on, shut down, reboot
- Query power state

Every remote call is wrapped in a bounded retry. After each state change
the machine record's provider state is refreshed from vSphere.

State machine per VM:

    absent -> creating -> poweredOn | poweredOff -> terminated

A creation that fails anywhere is rolled back: the half-created VM is
destroyed (best effort, at most once) and the original error is raised.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable

from labvsphere.affinity_group_manager import AffinityGroupManager
from labvsphere.config_manager import get_config
from labvsphere.errors import (
    CreateVMError,
    PowerOnError,
    PreconditionError,
    RebootVMError,
    RemoteFaultError,
    ShutdownVMError,
    TerminateVMError,
    UnexpectedStateError,
    VMNotFoundError,
)
from labvsphere.models import (
    CloneSpec,
    MachineRecord,
    PowerState,
    StopMode,
    VMSummary,
    instance_uuid_of,
    task_succeeded,
)
from labvsphere.provider_state import ProviderStateSync
from labvsphere.retry_config import RetryConfig, get_retry_config
from labvsphere.retry_handler import StopRetry, retry
from labvsphere.vsphere.client import ManagementClient
from labvsphere.vsphere.connection_pool import ManagementConnectionPool, get_connection_pool

logger = logging.getLogger(__name__)

VM_NAME_PREFIX = "lm_"

# Errors that end an operation at once: retrying cannot fix missing input or a vanished VM
NON_RETRYABLE_ERRORS = (PreconditionError, VMNotFoundError)

# vSphere reports "poweredOn"; records written by older tooling carry "PoweredOn"
POWER_STATES = {
    "poweredon": PowerState.POWERED_ON,
    "poweredoff": PowerState.POWERED_OFF,
}


def generate_vm_name() -> str:
    """Random VM name, e.g. ``lm_3f9a0c1d2b4e5f60``."""
    return VM_NAME_PREFIX + secrets.token_hex(8)


@dataclass
class CreationOutcome:
    """Result of the creation stage, consumed by the rollback stage."""

    vm_name: str
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class VMLifecycleController:
    """Control the lifecycle of one machine record's VM.

    Example:
        >>> controller = VMLifecycleController(record)
        >>> controller.create_vm({"name": "lm_ci_runner"})
        >>> controller.shutdown_vm(mode="soft")
        >>> controller.terminate_vm()
    """

    def __init__(
        self,
        record: MachineRecord,
        pool: ManagementConnectionPool | None = None,
        retry_config: RetryConfig | None = None,
        create_vm_defaults: dict[str, Any] | None = None,
    ):
        """Initialize the controller.

        Args:
            record: Machine record to read options from and write state into
            pool: Connection pool (default: process-wide pool)
            retry_config: Retry budgets (default: from environment)
            create_vm_defaults: Default clone options (default: from config)
        """
        self.record = record
        self.pool = pool or get_connection_pool()
        self.retry_config = retry_config or get_retry_config()
        if create_vm_defaults is None:
            create_vm_defaults = get_config().create_vm_defaults
        self.create_vm_defaults = dict(create_vm_defaults)
        self.state = ProviderStateSync(record, self.retry_config)

    @property
    def instance_uuid(self) -> str | None:
        return instance_uuid_of(self.record)

    @property
    def create_vm_options(self) -> dict[str, Any]:
        return self.record.creation_options

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_vm(self, options: dict[str, Any] | None = None) -> dict[str, Any]:
        """Clone a VM from the template, place it and power it on.

        Caller options override configured defaults; the record's image
        overrides any template given in options.

        Args:
            options: Clone options (name, template_path, datacenter, datastore,
                cluster, dest_folder, linked_clone, power_on, add_to_drs_group)

        Returns:
            Provider state of the new VM

        Raises:
            CreateVMError: If no VM was created after all attempts
            Any error of the placement or power-on steps (after rollback)
        """
        opts = self._merge_create_options(options)
        outcome = self._attempt_creation(opts)
        if outcome.failed:
            self._rollback_creation(outcome)
            raise outcome.error
        return self.record.provider_state

    def _merge_create_options(self, options: dict[str, Any] | None) -> dict[str, Any]:
        opts = {**self.create_vm_defaults, **(options or {})}
        if self.record.image:
            opts["template_path"] = self.record.image
        if not opts.get("name"):
            opts["name"] = generate_vm_name()
        return opts

    def _attempt_creation(self, opts: dict[str, Any]) -> CreationOutcome:
        """Creation stage: clone, place, power on. Failures are returned, not raised."""
        vm_name = opts["name"]
        try:
            with self.pool.connection() as conn:
                self._clone(conn, opts)
                if opts.get("add_to_drs_group"):
                    AffinityGroupManager(conn, self.retry_config).add_machine(
                        opts["add_to_drs_group"],
                        machine_path="/".join(p for p in (opts.get("dest_folder"), vm_name) if p),
                        datacenter=opts.get("datacenter"),
                    )
            if self.record.provider_state.get("power_state") != PowerState.POWERED_ON.value:
                self.poweron_vm()
        except Exception as e:
            return CreationOutcome(vm_name=vm_name, error=e)

        logger.info(f"Created VM {vm_name} ({self.instance_uuid})")
        return CreationOutcome(vm_name=vm_name)

    def _clone(self, conn: ManagementClient, opts: dict[str, Any]) -> None:
        spec = CloneSpec(
            name=opts["name"],
            template_path=opts.get("template_path"),
            datacenter=opts.get("datacenter"),
            datastore=opts.get("datastore"),
            cluster=opts.get("cluster"),
            dest_folder=opts.get("dest_folder"),
            linked_clone=bool(opts.get("linked_clone", False)),
            power_on=bool(opts.get("power_on", False)),
        )

        def clone() -> None:
            result = conn.clone_vm(spec)
            if not result.vm_ref:
                raise CreateVMError(f"CreationFailed, retrying ({spec.name})")
            self.state.store(result.new_vm or {})

        def on_failure(exception: Exception) -> None:
            logger.warning(
                f"Failed attempt to create virtual machine: template_name: {spec.template_path}, "
                f"vm_name: {spec.name} ({exception})"
            )

        logger.info(f"Cloning {spec.template_path} into {spec.name}")
        retry(
            clone,
            max_attempts=self.retry_config.create_attempts,
            delay=self.retry_config.delay,
            retryable=(RemoteFaultError, CreateVMError),
            on_failure=on_failure,
        )

    def _rollback_creation(self, outcome: CreationOutcome) -> None:
        """Rollback stage: destroy the half-created VM, never raising.

        Nothing is torn down when no VM id was recorded.
        """
        if not self.instance_uuid:
            logger.warning(
                f"Creation of {outcome.vm_name} failed ({outcome.error}), no VM to terminate"
            )
            return

        logger.warning(
            f"Creation of {outcome.vm_name} failed ({outcome.error}), "
            f"terminating {self.instance_uuid}"
        )
        try:
            self.terminate_vm()
        except Exception as e:
            logger.warning(f"Cleanup after failed creation of {outcome.vm_name} failed: {e}")

    # ------------------------------------------------------------------
    # Terminate / power
    # ------------------------------------------------------------------

    def terminate_vm(self) -> None:
        """Destroy the VM. A VM that no longer exists counts as terminated.

        Raises:
            PreconditionError: If the record has no instance id
            TerminateVMError: If the destroy task keeps failing
        """
        instance_uuid = self._require_instance()

        def destroy() -> None:
            if conn.find_vm(instance_uuid) is None:
                logger.info(f"VM {instance_uuid} already gone")
                raise StopRetry()
            task_state = conn.destroy_vm(instance_uuid)
            if not task_succeeded(task_state):
                raise TerminateVMError(f"unexpected state: {task_state}")

        with self.pool.connection() as conn:
            logger.info(f"Terminating VM {instance_uuid}")
            retry(
                destroy,
                max_attempts=self.retry_config.terminate_attempts,
                delay=self.retry_config.delay,
            )

    def poweron_vm(self) -> dict[str, Any]:
        """Power the VM on and refresh provider state.

        Raises:
            PreconditionError: If the record has no instance id
            PowerOnError: If the power-on task keeps failing
        """
        instance_uuid = self._require_instance()

        def power_on() -> None:
            task_state = conn.power_on_vm(instance_uuid)
            if not task_succeeded(task_state):
                raise PowerOnError(f"Power-on task finished in state: {task_state}")

        with self.pool.connection() as conn:
            logger.info(f"Powering on VM {instance_uuid}")
            retry(
                power_on,
                max_attempts=self.retry_config.power_on_attempts,
                delay=self.retry_config.delay,
            )
            return self.state.refresh(conn)

    def shutdown_vm(self, mode: str | StopMode | None = None) -> dict[str, Any]:
        """Stop the VM and wait until it reports powered off.

        Args:
            mode: "hard", "soft" or "managed" (default)

        Returns:
            Refreshed provider state

        Raises:
            PreconditionError: If the record has no instance id or mode is unknown
            VMNotFoundError: If the VM does not exist
            ShutdownVMError: If the VM never reaches powered off
        """
        stop_mode = StopMode.parse(mode)
        instance_uuid = self._require_instance()

        def stop(force: bool) -> None:
            task_state = conn.stop_vm(instance_uuid, force=force)
            if not task_succeeded(task_state):
                raise ShutdownVMError(f"Stop task finished in state: {task_state}")

        def stop_and_wait() -> None:
            vm = self._require_vm(conn, instance_uuid)
            if vm.is_powered_off:
                raise StopRetry()
            self._dispatch(stop_mode, stop, action="shut down")
            self._wait_for_power_off(conn, instance_uuid)

        with self.pool.connection() as conn:
            logger.info(f"Shutting down VM {instance_uuid} ({stop_mode.value})")
            retry(
                stop_and_wait,
                max_attempts=self.retry_config.shutdown_attempts,
                delay=self.retry_config.delay,
                fatal=NON_RETRYABLE_ERRORS,
            )
            return self.state.refresh(conn)

    def reboot_vm(self, mode: str | StopMode | None = None) -> None:
        """Reboot the VM. Completion of the reboot is not awaited.

        Args:
            mode: "hard", "soft" or "managed" (default)

        Raises:
            PreconditionError: If the record has no instance id or mode is unknown
            VMNotFoundError: If the VM does not exist
            RebootVMError: If the reboot request keeps failing
        """
        stop_mode = StopMode.parse(mode)
        instance_uuid = self._require_instance()

        def reboot(force: bool) -> None:
            task_state = conn.reboot_vm(instance_uuid, force=force)
            if not task_succeeded(task_state):
                raise RebootVMError(f"Reboot task finished in state: {task_state}")

        def reboot_once() -> None:
            self._require_vm(conn, instance_uuid)
            self._dispatch(stop_mode, reboot, action="reboot")

        with self.pool.connection() as conn:
            logger.info(f"Rebooting VM {instance_uuid} ({stop_mode.value})")
            retry(
                reboot_once,
                max_attempts=self.retry_config.reboot_attempts,
                delay=self.retry_config.delay,
                fatal=NON_RETRYABLE_ERRORS,
            )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def vm_state(self) -> PowerState:
        """Refresh provider state and map the power state.

        Raises:
            UnexpectedStateError: For any state other than on or off
        """
        self.refresh_provider_state()
        power_state = self.record.provider_state.get("power_state")
        state = POWER_STATES.get(str(power_state).lower())
        if state is None:
            raise UnexpectedStateError(
                f"Error, unexpected state of machine: vsphere_uuid={self.instance_uuid}, "
                f"power_state={power_state}"
            )
        return state

    def refresh_provider_state(self, full: bool = False) -> dict[str, Any]:
        """Fetch the VM's attributes into the record."""
        if self.instance_uuid is None:
            return self.record.provider_state
        with self.pool.connection() as conn:
            return self.state.refresh(conn, full=full)

    def vm_data(self, full: bool = False) -> dict[str, Any]:
        """Current VM attributes without touching the record."""
        self._require_instance()
        with self.pool.connection() as conn:
            return self.state.fetch(conn, full=full)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_instance(self) -> str:
        instance_uuid = self.instance_uuid
        if not instance_uuid:
            raise PreconditionError("Virtual machine data not present")
        return instance_uuid

    @staticmethod
    def _require_vm(conn: ManagementClient, instance_uuid: str) -> VMSummary:
        vm = conn.find_vm(instance_uuid)
        if vm is None:
            raise VMNotFoundError("Vm not exists!")
        return vm

    @staticmethod
    def _dispatch(stop_mode: StopMode, issue: Callable[[bool], None], action: str) -> None:
        """Issue a stop or reboot; ``issue(force)`` raises if the request fails."""
        if stop_mode is StopMode.HARD:
            issue(True)
        elif stop_mode is StopMode.SOFT:
            issue(False)
        elif stop_mode is StopMode.MANAGED:
            try:
                issue(False)
            except Exception as e:
                logger.warning(f"The graceful {action} of the machine failed, forcing it: {e}")
                issue(True)
        else:
            raise AssertionError(f"Unhandled stop mode: {stop_mode}")

    def _wait_for_power_off(self, conn: ManagementClient, instance_uuid: str) -> None:
        def check() -> None:
            power_state = conn.get_virtual_machine(instance_uuid).get("power_state")
            if power_state != PowerState.POWERED_OFF.value:
                raise ShutdownVMError(
                    "Waiting for finish of the shutdown command was not successful"
                )

        retry(
            check,
            max_attempts=self.retry_config.shutdown_poll_attempts,
            delay=self.retry_config.shutdown_poll_delay,
            retryable=(ShutdownVMError,),
            on_failure=None,
        )


__all__ = ["CreationOutcome", "VMLifecycleController", "generate_vm_name"]
