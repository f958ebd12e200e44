"""Tests for labvsphere data models and errors."""

import pytest

from labvsphere.errors import GuestFileTransferError, PreconditionError
from labvsphere.models import (
    AffinityGroup,
    GuestCredentials,
    InMemoryMachineRecord,
    MachineRecord,
    SnapshotDescriptor,
    StopMode,
    VMSummary,
    instance_uuid_of,
    task_succeeded,
)


class TestStopMode:
    """Tests for StopMode.parse()."""

    def test_defaults_to_managed(self):
        assert StopMode.parse(None) is StopMode.MANAGED

    @pytest.mark.parametrize(
        "value, expected",
        [("hard", StopMode.HARD), ("Soft", StopMode.SOFT), (StopMode.HARD, StopMode.HARD)],
    )
    def test_parses_known_modes(self, value, expected):
        assert StopMode.parse(value) is expected

    def test_unknown_mode_is_precondition_error(self):
        with pytest.raises(PreconditionError, match="Wrong mode specified: graceful"):
            StopMode.parse("graceful")


class TestTaskSucceeded:
    def test_only_success(self):
        assert task_succeeded("success") is True
        assert task_succeeded("error") is False
        assert task_succeeded(None) is False


class TestValueTypes:
    def test_vm_summary_powered_off(self):
        assert VMSummary("u", "lm_1", "poweredOff").is_powered_off is True
        assert VMSummary("u", "lm_1", "poweredOn").is_powered_off is False

    def test_credentials_repr_masks_password(self):
        assert "hunter2" not in repr(GuestCredentials("root", "hunter2"))

    def test_snapshot_public_dict(self):
        snapshot = SnapshotDescriptor(name="base", ref="snapshot-1")

        public = snapshot.to_public_dict()

        assert public["name"] == "base"
        assert public["ref"] == "snapshot-1"
        assert list(public) == list(SnapshotDescriptor.PUBLIC_FIELDS)

    def test_affinity_group_contains_by_name(self):
        class Ref:
            def __init__(self, name):
                self.name = name

        group = AffinityGroup(name="g", cluster=None, members=[Ref("lm_1"), Ref("lm_2")])

        assert group.member_names() == ["lm_1", "lm_2"]
        assert group.contains("lm_2") is True
        assert group.contains("lm_3") is False


class TestMachineRecord:
    def test_in_memory_record_satisfies_protocol(self):
        assert isinstance(InMemoryMachineRecord(), MachineRecord)

    def test_instance_uuid(self):
        assert instance_uuid_of(InMemoryMachineRecord()) is None
        assert instance_uuid_of(InMemoryMachineRecord.for_instance("u-1")) == "u-1"


class TestErrors:
    def test_precondition_error_joins_violations(self):
        error = PreconditionError(["user must be specified", "password must be specified"])

        assert str(error) == "user must be specified, password must be specified"
        assert isinstance(error, ValueError)

    def test_transfer_error_message(self):
        error = GuestFileTransferError("Error sending via https://esx/guestFile", 403, "denied")

        assert str(error) == "Error sending via https://esx/guestFile (status=403): denied"
        assert error.status_code == 403
