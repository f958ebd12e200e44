"""Pytest configuration for labvsphere tests.

CRITICAL: Keeps tests away from the operator's real configuration and
from any real vCenter.
"""

import os

import pytest


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Point configuration at an empty temp dir and reset process-wide state.

    This fixture:
    1. Makes LABVSPHERE_CONFIG point at a file that does not exist
    2. Removes connection and retry overrides from the environment
    3. Forgets the global config, retry config and connection pool afterwards
    """
    monkeypatch.setenv("LABVSPHERE_CONFIG", str(tmp_path / "labvsphere" / "config.toml"))
    for name in ("LABVSPHERE_HOST", "LABVSPHERE_USER", "LABVSPHERE_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("LABVSPHERE_RETRY_"):
            monkeypatch.delenv(name)

    yield tmp_path

    from labvsphere.config_manager import set_config
    from labvsphere.retry_config import reset_retry_config
    from labvsphere.vsphere.connection_pool import set_connection_pool

    set_config(None)
    reset_retry_config()
    set_connection_pool(None)


@pytest.fixture
def config_file(tmp_path):
    """Write a config.toml into an isolated directory and return its path.

    Example:
        def test_something(config_file):
            path = config_file('[connection]\\nhost = "vc"\\n')
    """

    def write(content: str):
        config_dir = tmp_path / "custom"
        config_dir.mkdir(parents=True, exist_ok=True)
        path = config_dir / "config.toml"
        path.write_text(content)
        path.chmod(0o600)
        return path

    return write
