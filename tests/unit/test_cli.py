"""
Unit tests for the labvsphere CLI.

Test Coverage:
- Command wiring to the lifecycle components
- Exit codes and error messages
- Configuration loading
"""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from labvsphere.cli import main
from labvsphere.config_manager import VSphereConfig
from tests.mocks.vsphere_mock import DEFAULT_UUID

CONFIG = VSphereConfig.from_dict(
    {"connection": {"host": "vcenter.lab.local", "user": "svc", "password": "pw"}}
)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def wired(pool, retry_config):
    """Route every command to the fake pool without delays."""
    with (
        patch("labvsphere.cli.load_config", return_value=CONFIG),
        patch("labvsphere.cli.get_connection_pool", return_value=pool),
        patch("labvsphere.vm_lifecycle_control.get_retry_config", return_value=retry_config),
        patch("labvsphere.snapshot_manager.get_retry_config", return_value=retry_config),
        patch("labvsphere.guest_operations.get_retry_config", return_value=retry_config),
    ):
        yield


class TestCommands:
    """Tests for the lifecycle commands."""

    def test_state(self, runner):
        result = runner.invoke(main, ["state", "--instance-id", DEFAULT_UUID])

        assert result.exit_code == 0, result.output
        assert "poweredOn" in result.output

    def test_power_on(self, runner, fake_client):
        fake_client.vms[DEFAULT_UUID]["power_state"] = "poweredOff"

        result = runner.invoke(main, ["power-on", "--instance-id", DEFAULT_UUID])

        assert result.exit_code == 0, result.output
        assert fake_client.vms[DEFAULT_UUID]["power_state"] == "poweredOn"

    def test_shutdown_mode(self, runner, fake_client):
        result = runner.invoke(
            main, ["shutdown", "--instance-id", DEFAULT_UUID, "--mode", "hard"]
        )

        assert result.exit_code == 0, result.output
        assert fake_client.calls_to("stop_vm") == [(DEFAULT_UUID, True)]

    def test_shutdown_rejects_unknown_mode(self, runner, fake_client):
        result = runner.invoke(
            main, ["shutdown", "--instance-id", DEFAULT_UUID, "--mode", "gentle"]
        )

        assert result.exit_code == 2
        assert fake_client.calls == []

    def test_reboot(self, runner, fake_client):
        result = runner.invoke(main, ["reboot", "--instance-id", DEFAULT_UUID])

        assert result.exit_code == 0, result.output
        assert fake_client.calls_to("reboot_vm") == [(DEFAULT_UUID, False)]

    def test_terminate_requires_confirmation(self, runner, fake_client):
        result = runner.invoke(main, ["terminate", "--instance-id", DEFAULT_UUID], input="n\n")

        assert result.exit_code == 1
        assert fake_client.calls_to("destroy_vm") == []

    def test_terminate(self, runner, fake_client):
        result = runner.invoke(main, ["terminate", "--instance-id", DEFAULT_UUID, "--yes"])

        assert result.exit_code == 0, result.output
        assert DEFAULT_UUID not in fake_client.vms

    def test_processes(self, runner, fake_client):
        fake_client.processes = [{"pid": 812, "owner": "root", "name": "sshd", "cmd_line": None}]

        result = runner.invoke(
            main,
            ["processes", "--instance-id", DEFAULT_UUID, "--user", "root", "--password", "pw"],
        )

        assert result.exit_code == 0, result.output
        assert "812" in result.output
        assert "sshd" in result.output


class TestSnapshotCommands:
    def test_take_and_list(self, runner):
        take = runner.invoke(main, ["snapshot", "take", "clean", "--instance-id", DEFAULT_UUID])
        listing = runner.invoke(main, ["snapshot", "list", "--instance-id", DEFAULT_UUID])

        assert take.exit_code == 0, take.output
        assert "Snapshot clean taken" in take.output
        assert "clean" in listing.output

    def test_list_empty(self, runner):
        result = runner.invoke(main, ["snapshot", "list", "--instance-id", DEFAULT_UUID])

        assert result.exit_code == 0
        assert "No snapshots found." in result.output

    def test_revert_missing_snapshot(self, runner):
        result = runner.invoke(main, ["snapshot", "revert", "nope", "--instance-id", DEFAULT_UUID])

        assert result.exit_code == 1
        assert "Error: Snapshot nope not found" in result.output


class TestErrors:
    def test_missing_vm_exits_1(self, runner):
        result = runner.invoke(main, ["shutdown", "--instance-id", "gone"])

        assert result.exit_code == 1
        assert "Error: Vm not exists!" in result.output

    def test_instance_id_required(self, runner):
        result = runner.invoke(main, ["state"])

        assert result.exit_code == 2
        assert "--instance-id" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output
