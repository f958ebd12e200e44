"""Unit tests for config_manager module."""

import logging

import pytest

from labvsphere.config_manager import (
    ConfigError,
    ConfigManager,
    ConnectionSettings,
    PoolSettings,
    SchedulerSettings,
    VSphereConfig,
    get_config,
    set_config,
)

FULL_CONFIG = """
[connection]
host = "vcenter.lab.local"
user = "svc-lab@vsphere.local"
password = "s3cret"
insecure = true

[connection_pool]
size = 3
timeout = 10

[create_vm_defaults]
datacenter = "LAB"
dest_folder = "lab/machines"
linked_clone = true

[guest_operations]
verify_ssl = true

[scheduler]
max_vm = 40
"""


class TestVSphereConfig:
    """Tests for VSphereConfig dataclass."""

    def test_default_values(self):
        """Test default configuration values."""
        config = VSphereConfig()
        assert config.connection.host is None
        assert config.connection.port == 443
        assert config.connection_pool.size == 5
        assert config.connection_pool.timeout == 30.0
        assert config.create_vm_defaults == {}
        assert config.guest_operations.use_ssl is True
        assert config.guest_operations.verify_ssl is False
        assert config.scheduler.max_vm == 20

    def test_from_dict_partial(self):
        """Test creation from partial dictionary."""
        config = VSphereConfig.from_dict({"connection": {"host": "vc01"}})
        assert config.connection.host == "vc01"
        assert config.connection_pool.size == 5  # Default

    def test_from_dict_unknown_key(self):
        """Unknown keys should be reported as ConfigError."""
        with pytest.raises(ConfigError, match="Invalid configuration"):
            VSphereConfig.from_dict({"connection_pool": {"sise": 3}})

    def test_password_not_in_repr(self):
        settings = ConnectionSettings(host="vc01", user="svc", password="s3cret")
        assert "s3cret" not in repr(settings)


class TestSettingsValidation:
    """Tests for settings validation."""

    def test_connection_validate_lists_missing_fields(self):
        with pytest.raises(ConfigError, match="host, password"):
            ConnectionSettings(user="svc").validate()

    def test_connection_validate_complete(self):
        ConnectionSettings(host="vc01", user="svc", password="pw").validate()

    @pytest.mark.parametrize("kwargs", [{"size": 0}, {"timeout": 0}, {"size": -1}])
    def test_pool_settings_must_be_positive(self, kwargs):
        with pytest.raises(ConfigError):
            PoolSettings(**kwargs)

    def test_available_slots(self):
        """Queued machines may only fill the remaining capacity."""
        scheduler = SchedulerSettings(max_vm=10)
        assert scheduler.available_slots(4) == 6
        assert scheduler.available_slots(10) == 0
        assert scheduler.available_slots(12) == 0


class TestConfigManager:
    """Tests for ConfigManager class."""

    def test_get_config_path_from_environment(self, isolated_environment):
        """LABVSPHERE_CONFIG should select the file."""
        expected = isolated_environment / "labvsphere" / "config.toml"
        assert ConfigManager.get_config_path() == expected

    def test_get_config_path_custom_missing(self, tmp_path):
        """An explicit path must exist."""
        with pytest.raises(ConfigError, match="Config file not found"):
            ConfigManager.get_config_path(str(tmp_path / "nope.toml"))

    def test_load_config_missing_file_uses_defaults(self):
        config = ConfigManager.load_config()
        assert config == VSphereConfig()

    def test_load_config_full_file(self, config_file):
        """Test loading every section."""
        path = config_file(FULL_CONFIG)

        config = ConfigManager.load_config(str(path))

        assert config.connection.host == "vcenter.lab.local"
        assert config.connection.password == "s3cret"
        assert config.connection.insecure is True
        assert config.connection_pool.size == 3
        assert config.create_vm_defaults["dest_folder"] == "lab/machines"
        assert config.guest_operations.verify_ssl is True
        assert config.scheduler.max_vm == 40

    def test_load_config_invalid_toml(self, config_file):
        path = config_file("[connection\nhost = ")

        with pytest.raises(ConfigError, match="Failed to load config"):
            ConfigManager.load_config(str(path))

    def test_environment_overrides_file(self, config_file, monkeypatch):
        """Credentials from the environment win over the file."""
        path = config_file(FULL_CONFIG)
        monkeypatch.setenv("LABVSPHERE_PASSWORD", "from-env")

        config = ConfigManager.load_config(str(path))

        assert config.connection.password == "from-env"
        assert config.connection.user == "svc-lab@vsphere.local"

    def test_warns_on_world_readable_file(self, config_file, caplog):
        path = config_file(FULL_CONFIG)
        path.chmod(0o644)

        with caplog.at_level(logging.WARNING, logger="labvsphere.config_manager"):
            ConfigManager.load_config(str(path))

        assert "readable by others" in caplog.text
        assert "s3cret" not in caplog.text


class TestGlobalConfig:
    """Tests for get_config() and set_config()."""

    def test_get_config_loads_once(self):
        first = get_config()
        assert get_config() is first

    def test_set_config_replaces(self):
        config = VSphereConfig.from_dict({"scheduler": {"max_vm": 3}})
        set_config(config)
        assert get_config().scheduler.max_vm == 3
