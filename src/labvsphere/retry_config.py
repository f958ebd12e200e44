"""Configuration for retry budgets.

Each lifecycle operation has its own attempt count. Delays can be tuned
per environment (tests set them to zero).

Design Philosophy:
- Sensible defaults: the attempt counts the lifecycle operations rely on
- Environment-aware: every value can be overridden via env vars
"""

import os
from dataclasses import dataclass


@dataclass
class RetryConfig:
    """Retry configuration settings for lifecycle operations."""

    # Default delay between attempts of any operation
    delay: float = 1.0

    create_attempts: int = 3
    terminate_attempts: int = 3
    power_on_attempts: int = 3
    reboot_attempts: int = 3
    guest_operation_attempts: int = 3
    snapshot_attempts: int = 3

    # Shutdown: outer stop-and-poll retries, inner power-state polling
    shutdown_attempts: int = 6
    shutdown_poll_attempts: int = 23
    shutdown_poll_delay: float = 2.0

    # DRS group read-modify-write-verify cycles
    affinity_group_attempts: int = 5

    # Provider state refresh when inventory lags behind
    refresh_attempts: int = 3
    refresh_delay: float = 5.0

    @classmethod
    def from_environment(cls) -> "RetryConfig":
        """Load retry configuration from environment variables.

        Environment variables (all optional):
            LABVSPHERE_RETRY_DELAY: Default delay in seconds (default: 1.0)
            LABVSPHERE_RETRY_<FIELD>: Any field of this class, upper-cased
                (e.g. LABVSPHERE_RETRY_SHUTDOWN_POLL_ATTEMPTS)

        Returns:
            RetryConfig with values from environment or defaults
        """
        defaults = cls()
        values = {}
        for name, default in vars(defaults).items():
            raw = os.getenv(f"LABVSPHERE_RETRY_{name.upper()}")
            if raw is None:
                values[name] = default
            elif isinstance(default, int):
                values[name] = int(raw)
            else:
                values[name] = float(raw)
        return cls(**values)

    @classmethod
    def without_delays(cls) -> "RetryConfig":
        """Same attempt budgets, no sleeping (tests, dry runs)."""
        return cls(delay=0.0, shutdown_poll_delay=0.0, refresh_delay=0.0)


# Global configuration instance (lazily loaded)
_config: RetryConfig | None = None


def get_retry_config() -> RetryConfig:
    """Get global retry configuration.

    Returns:
        RetryConfig instance (loaded from environment on first access)
    """
    global _config
    if _config is None:
        _config = RetryConfig.from_environment()
    return _config


def reset_retry_config() -> None:
    """Reset global retry configuration.

    Forces reload from environment on next access.
    """
    global _config
    _config = None


__all__ = ["RetryConfig", "get_retry_config", "reset_retry_config"]
