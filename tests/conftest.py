"""
Shared test fixtures for labvsphere tests.

This module provides common fixtures used across the unit tests:
- A fake management client and a pool leasing it
- Retry budgets without delays
- Machine records with and without a VM
"""

from unittest.mock import patch

import pytest

from labvsphere.config_manager import GuestOperationsSettings
from labvsphere.models import InMemoryMachineRecord
from labvsphere.retry_config import RetryConfig
from labvsphere.vsphere.connection_pool import ManagementConnectionPool
from tests.mocks.vsphere_mock import DEFAULT_UUID, FakeManagementClient

# ============================================================================
# TIME
# ============================================================================


@pytest.fixture(autouse=True)
def no_sleep():
    """Retry delays never sleep in unit tests; the mock records them."""
    with patch("labvsphere.retry_handler.time.sleep") as mock_sleep:
        yield mock_sleep


# ============================================================================
# VSPHERE FIXTURES
# ============================================================================


@pytest.fixture
def fake_client():
    """Fake vCenter with one powered-on VM."""
    client = FakeManagementClient()
    client.add_vm(DEFAULT_UUID, power_state="poweredOn")
    return client


@pytest.fixture
def pool(fake_client):
    """Pool whose only connection is the fake client."""
    return ManagementConnectionPool(factory=lambda: fake_client, size=1, timeout=1.0)


@pytest.fixture
def retry_config():
    return RetryConfig.without_delays()


@pytest.fixture
def guest_settings():
    return GuestOperationsSettings(use_ssl=True, verify_ssl=False, timeout=30.0)


# ============================================================================
# RECORD FIXTURES
# ============================================================================


@pytest.fixture
def record():
    """Record of the fake client's VM."""
    return InMemoryMachineRecord.for_instance(DEFAULT_UUID)


@pytest.fixture
def empty_record():
    """Record of a machine whose VM was never created."""
    return InMemoryMachineRecord()
