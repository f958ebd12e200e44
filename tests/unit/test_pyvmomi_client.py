"""Unit tests for the pyVmomi adapter.

The service instance is a MagicMock; only pyVmomi data objects are real.
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from pyVmomi import vim

from labvsphere.config_manager import ConnectionSettings
from labvsphere.errors import RemoteFaultError, VMNotFoundError
from labvsphere.models import TASK_SUCCESS, AffinityGroup, CloneSpec, GuestCredentials
from labvsphere.vsphere.client import ManagementClient
from labvsphere.vsphere.pyvmomi_client import PyVmomiClient, connect


@pytest.fixture
def settings():
    return ConnectionSettings(host="vcenter.lab.local", user="svc", password="pw", insecure=True)


@pytest.fixture
def service_instance():
    return MagicMock(name="ServiceInstance")


@pytest.fixture
def client(settings, service_instance):
    with patch("labvsphere.vsphere.pyvmomi_client.SmartConnect", return_value=service_instance):
        yield connect(settings)


@pytest.fixture
def search_index(service_instance):
    return service_instance.RetrieveContent.return_value.searchIndex


def task(state="success", result=None):
    return SimpleNamespace(info=SimpleNamespace(state=state, result=result))


def snapshot_tree(name, children=(), state="poweredOff"):
    return SimpleNamespace(
        name=name,
        quiesced=False,
        description=f"{name} snapshot",
        createTime=datetime(2026, 1, 5, tzinfo=timezone.utc),
        state=state,
        snapshot=MagicMock(name=f"ref-{name}"),
        childSnapshotList=list(children),
    )


class TestSession:
    """Tests for connect/disconnect/reload."""

    def test_connect_insecure_passes_ssl_context(self, settings, service_instance):
        with patch(
            "labvsphere.vsphere.pyvmomi_client.SmartConnect", return_value=service_instance
        ) as mock_connect:
            connect(settings)

        kwargs = mock_connect.call_args.kwargs
        assert kwargs["host"] == "vcenter.lab.local"
        assert kwargs["pwd"] == "pw"
        assert "sslContext" in kwargs

    def test_connect_requires_credentials(self):
        from labvsphere.config_manager import ConfigError

        with pytest.raises(ConfigError):
            PyVmomiClient(ConnectionSettings(host="vc01")).connect()

    @patch("labvsphere.vsphere.pyvmomi_client.Disconnect")
    def test_reload_reconnects(self, mock_disconnect, client, service_instance):
        with patch(
            "labvsphere.vsphere.pyvmomi_client.SmartConnect", return_value=service_instance
        ) as mock_connect:
            client.reload()

        mock_disconnect.assert_called_once_with(service_instance)
        mock_connect.assert_called_once()

    def test_satisfies_contract(self, client):
        assert isinstance(client, ManagementClient)

    def test_faults_translated(self, client, service_instance):
        service_instance.CurrentTime.side_effect = vim.fault.NotAuthenticated(msg="session gone")

        with pytest.raises(RemoteFaultError, match="current_time: session gone") as exc_info:
            client.current_time()

        assert isinstance(exc_info.value.fault, vim.fault.NotAuthenticated)


class TestPower:
    """Tests for power calls."""

    def test_find_vm_missing(self, client, search_index):
        search_index.FindByUuid.return_value = None

        assert client.find_vm("uuid-1") is None
        search_index.FindByUuid.assert_called_once_with(None, "uuid-1", True, True)

    def test_power_on_already_on(self, client, search_index):
        vm = search_index.FindByUuid.return_value
        vm.runtime.powerState = vim.VirtualMachinePowerState.poweredOn

        assert client.power_on_vm("uuid-1") == TASK_SUCCESS
        vm.PowerOnVM_Task.assert_not_called()

    @patch("labvsphere.vsphere.pyvmomi_client.WaitForTask")
    def test_forced_stop_returns_task_state(self, mock_wait, client, search_index):
        vm = search_index.FindByUuid.return_value
        vm.PowerOffVM_Task.return_value = task("error")

        assert client.stop_vm("uuid-1", force=True) == "error"
        mock_wait.assert_called_once()

    def test_graceful_stop_uses_guest_tools(self, client, search_index):
        vm = search_index.FindByUuid.return_value

        assert client.stop_vm("uuid-1", force=False) == TASK_SUCCESS
        vm.ShutdownGuest.assert_called_once()
        vm.PowerOffVM_Task.assert_not_called()

    def test_graceful_reboot_uses_guest_tools(self, client, search_index):
        vm = search_index.FindByUuid.return_value

        assert client.reboot_vm("uuid-1", force=False) == TASK_SUCCESS
        vm.RebootGuest.assert_called_once()

    def test_missing_vm_raises_not_found(self, client, search_index):
        search_index.FindByUuid.return_value = None

        with pytest.raises(VMNotFoundError):
            client.get_virtual_machine("uuid-1")


class TestClone:
    @patch("labvsphere.vsphere.pyvmomi_client.WaitForTask")
    def test_missing_template_yields_no_vm(self, mock_wait, client, search_index):
        search_index.FindByInventoryPath.return_value = None
        spec = CloneSpec(name="lm_1", template_path="templates/ubuntu")

        result = client.clone_vm(spec)

        assert result.vm_ref is None
        mock_wait.assert_not_called()


class TestSnapshots:
    def test_walks_nested_tree(self, client, search_index):
        vm = search_index.FindByUuid.return_value
        vm.snapshot.rootSnapshotList = [
            snapshot_tree("base", [snapshot_tree("clean"), snapshot_tree("updated")])
        ]

        snapshots = client.list_snapshots("uuid-1")

        assert [s.name for s in snapshots] == ["base", "clean", "updated"]
        assert snapshots[1].snapshot_name_chain == ["base", "clean"]
        assert len(snapshots[1].ref_chain) == 2
        assert snapshots[1].create_time == "2026-01-05T00:00:00+00:00"

    def test_vm_without_snapshots(self, client, search_index):
        search_index.FindByUuid.return_value.snapshot = None

        assert client.list_snapshots("uuid-1") == []


class TestGuestOperations:
    def test_transfer_url_host_resolved(self, client, service_instance):
        content = service_instance.RetrieveContent.return_value
        file_manager = content.guestOperationsManager.fileManager
        file_manager.InitiateFileTransferToGuest.return_value = (
            "https://*:443/guestFile?id=17&token=abc"
        )

        ticket = client.initiate_file_transfer_to_guest(
            "uuid-1", GuestCredentials("root", "pw"), "/tmp/x", file_size=3
        )

        assert ticket.url == "https://vcenter.lab.local:443/guestFile?id=17&token=abc"
        assert ticket.size == 3


class TestAffinityGroups:
    def test_returns_vm_group_only(self, client):
        vm_ref = MagicMock()
        cluster = vm_ref.runtime.host.parent
        cluster.configurationEx.group = [
            vim.cluster.HostGroup(name="lab-affinity"),
            vim.cluster.VmGroup(name="lab-affinity"),
        ]

        group = client.get_affinity_group(vm_ref, "lab-affinity")

        assert isinstance(group.raw, vim.cluster.VmGroup)
        assert group.cluster is cluster
        assert group.members == []

    def test_missing_group(self, client):
        vm_ref = MagicMock()
        vm_ref.runtime.host.parent.configurationEx.group = []

        assert client.get_affinity_group(vm_ref, "lab-affinity") is None

    @patch("labvsphere.vsphere.pyvmomi_client.WaitForTask")
    def test_reconfigure_replaces_members(self, mock_wait, client):
        cluster = MagicMock()
        cluster.ReconfigureComputeResource_Task.return_value = task()
        raw = vim.cluster.VmGroup(name="lab-affinity")
        member = vim.VirtualMachine("vm-1")
        group = AffinityGroup(name="lab-affinity", cluster=cluster, members=[member], raw=raw)

        assert client.reconfigure_affinity_group(group) == "success"

        assert list(raw.vm) == [member]
        spec = cluster.ReconfigureComputeResource_Task.call_args.kwargs["spec"]
        assert spec.groupSpec[0].info is raw
        assert spec.groupSpec[0].operation == "edit"
        assert cluster.ReconfigureComputeResource_Task.call_args.kwargs["modify"] is True
