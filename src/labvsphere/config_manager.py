"""Configuration management module.

Loads vSphere connection, pool, creation-default and guest-operation
settings from a TOML file. Connection fields can be overridden from the
environment so credentials need not live in the file.

Example config.toml:

    [connection]
    host = "vcenter.lab.local"
    user = "svc-lab@vsphere.local"
    password = "..."
    insecure = true

    [connection_pool]
    size = 5
    timeout = 30

    [create_vm_defaults]
    datacenter = "LAB"
    cluster = "lab-cluster"
    dest_folder = "lab/machines"
    linked_clone = true

    [guest_operations]
    verify_ssl = false

    [scheduler]
    max_vm = 40

Security:
- Config file should be 0600 (a warning is logged otherwise)
- Passwords are excluded from repr() and never logged
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class ConnectionSettings:
    """vCenter endpoint and service account."""

    host: str | None = None
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    port: int = 443
    insecure: bool = False

    def validate(self) -> None:
        missing = [name for name in ("host", "user", "password") if not getattr(self, name)]
        if missing:
            raise ConfigError(f"Missing connection settings: {', '.join(missing)}")


@dataclass
class PoolSettings:
    """Size of the management connection pool and the lease timeout in seconds."""

    size: int = 5
    timeout: float = 30.0

    def __post_init__(self):
        if self.size <= 0:
            raise ConfigError("connection_pool.size must be positive")
        if self.timeout <= 0:
            raise ConfigError("connection_pool.timeout must be positive")


@dataclass
class GuestOperationsSettings:
    """HTTP settings for guest file transfers."""

    use_ssl: bool = True
    verify_ssl: bool = False
    timeout: float = 300.0


@dataclass
class SchedulerSettings:
    """Capacity limit for VMs alive at the same time."""

    max_vm: int = 20

    def available_slots(self, alive_count: int) -> int:
        """How many queued machines may be turned into VMs now."""
        return max(0, self.max_vm - alive_count)


@dataclass
class VSphereConfig:
    """labvsphere configuration data."""

    connection: ConnectionSettings = field(default_factory=ConnectionSettings)
    connection_pool: PoolSettings = field(default_factory=PoolSettings)
    create_vm_defaults: dict[str, Any] = field(default_factory=dict)
    guest_operations: GuestOperationsSettings = field(default_factory=GuestOperationsSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VSphereConfig":
        """Create from a parsed TOML document."""
        try:
            return cls(
                connection=ConnectionSettings(**data.get("connection", {})),
                connection_pool=PoolSettings(**data.get("connection_pool", {})),
                create_vm_defaults=dict(data.get("create_vm_defaults", {})),
                guest_operations=GuestOperationsSettings(**data.get("guest_operations", {})),
                scheduler=SchedulerSettings(**data.get("scheduler", {})),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


class ConfigManager:
    """Locate and load the labvsphere configuration file.

    Configuration is stored at ~/.labvsphere/config.toml unless a path is
    given explicitly or LABVSPHERE_CONFIG is set.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".labvsphere"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    ENV_OVERRIDES = {
        "LABVSPHERE_HOST": "host",
        "LABVSPHERE_USER": "user",
        "LABVSPHERE_PASSWORD": "password",
    }

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Path to config file

        Raises:
            ConfigError: If an explicit path does not exist
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        env_path = os.getenv("LABVSPHERE_CONFIG")
        if env_path:
            return Path(env_path).expanduser()

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> VSphereConfig:
        """Load configuration from file, falling back to defaults.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            VSphereConfig with environment overrides applied

        Raises:
            ConfigError: If the file cannot be parsed
        """
        config_path = cls.get_config_path(custom_path)

        data: dict[str, Any] = {}
        if config_path.exists():
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(
                    f"Config file {config_path} is readable by others (mode {oct(mode)}), "
                    "it may contain vCenter credentials"
                )
            try:
                with open(config_path, "rb") as f:
                    data = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(f"Failed to load config from {config_path}: {e}") from e
            logger.debug(f"Loaded config from {config_path}")
        else:
            logger.debug(f"No config file at {config_path}, using defaults")

        config = VSphereConfig.from_dict(data)
        cls._apply_env_overrides(config)
        return config

    @classmethod
    def _apply_env_overrides(cls, config: VSphereConfig) -> None:
        for env_name, attr in cls.ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                setattr(config.connection, attr, value)


# Global configuration instance (lazily loaded)
_config: VSphereConfig | None = None


def get_config() -> VSphereConfig:
    """Process-wide configuration, loaded from the default location on first access."""
    global _config
    if _config is None:
        _config = ConfigManager.load_config()
    return _config


def set_config(config: VSphereConfig | None) -> None:
    """Replace (or with None, reset) the process-wide configuration."""
    global _config
    _config = config


__all__ = [
    "ConfigError",
    "ConfigManager",
    "ConnectionSettings",
    "GuestOperationsSettings",
    "PoolSettings",
    "SchedulerSettings",
    "VSphereConfig",
    "get_config",
    "set_config",
]
