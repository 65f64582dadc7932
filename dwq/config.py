"""
Queue configuration from environment variables.

Usage:
    from dwq.config import get_settings

    settings = get_settings()
    print(settings.zk_hosts, settings.pool_size)
"""

from functools import lru_cache
import os

from dwq.exceptions import DwqConfigError


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError:
        raise DwqConfigError(
            f"{name} must be an integer", details={"value": raw}
        ) from None
    if value < 1:
        raise DwqConfigError(f"{name} must be >= 1", details={"value": raw})
    return value


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise DwqConfigError(f"{name} must be a number", details={"value": raw}) from None
    if value <= 0:
        raise DwqConfigError(f"{name} must be > 0", details={"value": raw})
    return value


class Settings:
    """Queue configuration loaded from environment variables."""

    def __init__(self) -> None:
        # Coordination service
        self.zk_hosts: str = os.getenv("DWQ_ZK_HOSTS", "127.0.0.1:2181")
        self.zk_timeout: float = _env_float("DWQ_ZK_TIMEOUT", "10.0")

        # Worker pool
        self.pool_size: int = _env_int("DWQ_POOL_SIZE", "4")

        # Discovery: periodic re-scan period (first fire jittered in [0, period))
        self.scan_period_seconds: float = _env_float("DWQ_SCAN_PERIOD_SECONDS", "60")

        # Completion waiter fallback re-check
        self.wait_recheck_seconds: float = _env_float("DWQ_WAIT_RECHECK_SECONDS", "10")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()
