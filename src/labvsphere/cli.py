"""labvsphere operator CLI.

Drives an existing VM by its instance UUID, mostly for operators
inspecting or repairing a lab machine by hand. Every command loads the
configuration, leases one management connection from the pool and
exits 1 on error.

\b
EXAMPLES:
    $ labvsphere state --instance-id 4215c4b0-...
    $ labvsphere shutdown --instance-id 4215c4b0-... --mode soft
    $ labvsphere snapshot take --instance-id 4215c4b0-... clean-install
"""

import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from labvsphere import __version__
from labvsphere.config_manager import ConfigError, ConfigManager, VSphereConfig, set_config
from labvsphere.errors import VSphereProviderError
from labvsphere.guest_operations import GuestOperationsClient
from labvsphere.models import InMemoryMachineRecord, StopMode
from labvsphere.snapshot_manager import SnapshotManager
from labvsphere.vm_lifecycle_control import VMLifecycleController
from labvsphere.vsphere.connection_pool import get_connection_pool, reset_connection_pool

logger = logging.getLogger(__name__)

MODE_CHOICE = click.Choice([mode.value for mode in StopMode], case_sensitive=False)


def configure_logging(verbose: bool) -> None:
    """Log to stderr; INFO and up when verbose, warnings only otherwise."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not verbose:
        # pyVmomi logs every SOAP fault at INFO
        logging.getLogger("pyVmomi").setLevel(logging.WARNING)


def load_config(config_path: str | None) -> VSphereConfig:
    """Load and install the configuration for this invocation."""
    config = ConfigManager.load_config(config_path)
    config.connection.validate()
    set_config(config)
    return config


def instance_option(func):
    return click.option(
        "--instance-id", required=True, help="Instance UUID of the VM", type=str
    )(func)


def config_option(func):
    return click.option("--config", help="Config file path", type=click.Path())(func)


def _controller(instance_id: str, config_path: str | None) -> VMLifecycleController:
    config = load_config(config_path)
    return VMLifecycleController(
        InMemoryMachineRecord.for_instance(instance_id),
        pool=get_connection_pool(config),
        create_vm_defaults=config.create_vm_defaults,
    )


def _fail(message: str) -> None:
    click.echo(message, err=True)
    reset_connection_pool()
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show progress logs")
@click.version_option(__version__, prog_name="labvsphere")
def main(verbose: bool) -> None:
    """Manage lab VMs on vSphere."""
    configure_logging(verbose)


@main.command(name="state")
@instance_option
@config_option
def state_cmd(instance_id: str, config: str | None):
    """Show the VM's power state and provider data."""
    try:
        controller = _controller(instance_id, config)
        power_state = controller.vm_state()

        table = Table(title=f"VM {instance_id}")
        table.add_column("Attribute", style="cyan")
        table.add_column("Value")
        table.add_row("power_state", power_state.value)
        for key, value in sorted(controller.record.provider_state.items()):
            if key != "power_state" and value is not None:
                table.add_row(key, str(value))
        Console().print(table)
        reset_connection_pool()

    except (ConfigError, VSphereProviderError, ValueError) as e:
        _fail(f"Error: {e}")
    except Exception as e:
        _fail(f"Unexpected error: {e}")


@main.command(name="power-on")
@instance_option
@config_option
def power_on_cmd(instance_id: str, config: str | None):
    """Power the VM on."""
    try:
        _controller(instance_id, config).poweron_vm()
        click.echo(f"✓ Powered on {instance_id}")
        reset_connection_pool()

    except (ConfigError, VSphereProviderError, ValueError) as e:
        _fail(f"Error: {e}")
    except Exception as e:
        _fail(f"Unexpected error: {e}")


@main.command(name="shutdown")
@instance_option
@config_option
@click.option("--mode", type=MODE_CHOICE, default="managed", help="hard, soft or managed")
def shutdown_cmd(instance_id: str, config: str | None, mode: str):
    """Shut the VM down and wait until it is powered off.

    \b
    Modes:
        hard     force the power off
        soft     ask the guest tools to shut down
        managed  soft, falling back to hard (default)
    """
    try:
        _controller(instance_id, config).shutdown_vm(mode)
        click.echo(f"✓ Shut down {instance_id} ({mode})")
        reset_connection_pool()

    except (ConfigError, VSphereProviderError, ValueError) as e:
        _fail(f"Error: {e}")
    except Exception as e:
        _fail(f"Unexpected error: {e}")


@main.command(name="reboot")
@instance_option
@config_option
@click.option("--mode", type=MODE_CHOICE, default="managed", help="hard, soft or managed")
def reboot_cmd(instance_id: str, config: str | None, mode: str):
    """Reboot the VM. Does not wait for the guest to come back."""
    try:
        _controller(instance_id, config).reboot_vm(mode)
        click.echo(f"✓ Reboot of {instance_id} requested ({mode})")
        reset_connection_pool()

    except (ConfigError, VSphereProviderError, ValueError) as e:
        _fail(f"Error: {e}")
    except Exception as e:
        _fail(f"Unexpected error: {e}")


@main.command(name="terminate")
@instance_option
@config_option
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def terminate_cmd(instance_id: str, config: str | None, yes: bool):
    """Destroy the VM."""
    if not yes:
        click.confirm(f"Destroy VM {instance_id}?", abort=True)
    try:
        _controller(instance_id, config).terminate_vm()
        click.echo(f"✓ Terminated {instance_id}")
        reset_connection_pool()

    except (ConfigError, VSphereProviderError, ValueError) as e:
        _fail(f"Error: {e}")
    except Exception as e:
        _fail(f"Unexpected error: {e}")


@main.command(name="processes")
@instance_option
@config_option
@click.option("--user", required=True, help="Guest user", type=str)
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    envvar="LABVSPHERE_GUEST_PASSWORD",
    help="Guest password (prompted if not given)",
)
def processes_cmd(instance_id: str, config: str | None, user: str, password: str):
    """List processes running in the guest."""
    try:
        cfg = load_config(config)
        client = GuestOperationsClient(
            InMemoryMachineRecord.for_instance(instance_id),
            pool=get_connection_pool(cfg),
            settings=cfg.guest_operations,
        )
        processes = client.list_processes(user, password)

        table = Table(title=f"Processes in {instance_id}")
        table.add_column("PID", justify="right", style="cyan")
        table.add_column("Owner")
        table.add_column("Command")
        for process in processes:
            table.add_row(
                str(process.get("pid", "")),
                str(process.get("owner", "")),
                str(process.get("cmd_line") or process.get("name", "")),
            )
        Console().print(table)
        reset_connection_pool()

    except (ConfigError, VSphereProviderError, ValueError) as e:
        _fail(f"Error: {e}")
    except Exception as e:
        _fail(f"Unexpected error: {e}")


@main.group(name="snapshot")
def snapshot() -> None:
    """Take, revert and list VM snapshots.

    \b
    EXAMPLES:
        $ labvsphere snapshot take --instance-id 4215c4b0-... clean-install
        $ labvsphere snapshot list --instance-id 4215c4b0-...
        $ labvsphere snapshot revert --instance-id 4215c4b0-... clean-install
    """
    pass


def _snapshot_manager(instance_id: str, config_path: str | None) -> SnapshotManager:
    config = load_config(config_path)
    return SnapshotManager(
        InMemoryMachineRecord.for_instance(instance_id), pool=get_connection_pool(config)
    )


@snapshot.command(name="take")
@click.argument("name", type=str)
@instance_option
@config_option
@click.option("--description", default="", help="Snapshot description")
@click.option("--memory", is_flag=True, help="Include the VM's memory")
@click.option("--quiesce", is_flag=True, help="Quiesce the guest file system")
def snapshot_take(
    name: str,
    instance_id: str,
    config: str | None,
    description: str,
    memory: bool,
    quiesce: bool,
):
    """Take a snapshot named NAME."""
    try:
        manager = _snapshot_manager(instance_id, config)
        result = manager.take_snapshot(
            name, description=description, memory=memory, quiesce=quiesce
        )
        if result is None:
            click.echo(f"Snapshot {name} was taken but is not listed yet")
        else:
            click.echo(f"✓ Snapshot {name} taken ({result.get('create_time')})")
        reset_connection_pool()

    except (ConfigError, VSphereProviderError, ValueError) as e:
        _fail(f"Error: {e}")
    except Exception as e:
        _fail(f"Unexpected error: {e}")


@snapshot.command(name="revert")
@click.argument("name", type=str)
@instance_option
@config_option
def snapshot_revert(name: str, instance_id: str, config: str | None):
    """Revert the VM to the snapshot named NAME."""
    try:
        _snapshot_manager(instance_id, config).revert_snapshot(name)
        click.echo(f"✓ Reverted {instance_id} to {name}")
        reset_connection_pool()

    except (ConfigError, VSphereProviderError, ValueError) as e:
        _fail(f"Error: {e}")
    except Exception as e:
        _fail(f"Unexpected error: {e}")


@snapshot.command(name="list")
@instance_option
@config_option
def snapshot_list(instance_id: str, config: str | None):
    """List the VM's snapshots."""
    try:
        snapshots = _snapshot_manager(instance_id, config).list_snapshots()
        reset_connection_pool()

        if not snapshots:
            click.echo("No snapshots found.")
            return

        table = Table(title=f"Snapshots of {instance_id}")
        table.add_column("Name", style="cyan")
        table.add_column("Created")
        table.add_column("Power State")
        table.add_column("Quiesced")
        table.add_column("Description")
        for snap in snapshots:
            table.add_row(
                snap["name"],
                str(snap.get("create_time") or ""),
                str(snap.get("power_state") or ""),
                "yes" if snap.get("quiesced") else "no",
                snap.get("description") or "",
            )
        Console().print(table)

    except (ConfigError, VSphereProviderError, ValueError) as e:
        _fail(f"Error: {e}")
    except Exception as e:
        _fail(f"Unexpected error: {e}")


if __name__ == "__main__":
    main()


__all__ = ["main"]
