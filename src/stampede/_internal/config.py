"""Configuration loading for Stampede."""

from __future__ import annotations

import os
from dataclasses import dataclass

from stampede._internal.errors import ConfigError


@dataclass(frozen=True)
class EngineConfig:
    """Environment-level engine configuration.

    Attributes:
        default_target: Target URL used when no explicit target is given.
        request_timeout: Total timeout for one request, in seconds.
        connection_pool_size: Optional cap on open connections shared by all
            users. None leaves the pool unbounded so no user waits on
            another for a connection.
        max_users: Hard cap on concurrently admitted virtual users, or
            None for no cap.
        tick_interval: Seconds between scheduler ticks and metric snapshots.
    """

    default_target: str = ""
    request_timeout: float = 30.0
    connection_pool_size: int | None = None
    max_users: int | None = None
    tick_interval: float = 1.0


def _read_int(name: str, default: str) -> int:
    raw = os.environ.get(name, default)
    try:
        value = int(raw)
    except ValueError:
        msg = f"{name} must be an integer, got: {raw!r}"
        raise ConfigError(msg) from None
    if value < 1:
        msg = f"{name} must be >= 1, got: {value}"
        raise ConfigError(msg)
    return value


def _read_positive_float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigError(msg) from None
    if value <= 0:
        msg = f"{name} must be positive, got: {value}"
        raise ConfigError(msg)
    return value


def load_config() -> EngineConfig:
    """Load configuration from environment variables with defaults.

    Environment variables:
        STAMPEDE_TARGET: Default target URL. ``TARGET`` is read when unset.
        STAMPEDE_TIMEOUT: Request timeout in seconds (default: 30.0).
        STAMPEDE_POOL_SIZE: Optional connection cap (default: unbounded).
        STAMPEDE_MAX_USERS: Optional cap on concurrent virtual users.
        STAMPEDE_TICK_INTERVAL: Scheduler tick in seconds (default: 1.0).

    Returns:
        Populated EngineConfig instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    target = os.environ.get("STAMPEDE_TARGET") or os.environ.get("TARGET", "")

    pool_size: int | None = None
    if os.environ.get("STAMPEDE_POOL_SIZE"):
        pool_size = _read_int("STAMPEDE_POOL_SIZE", "")

    max_users: int | None = None
    if os.environ.get("STAMPEDE_MAX_USERS"):
        max_users = _read_int("STAMPEDE_MAX_USERS", "")

    return EngineConfig(
        default_target=target.strip(),
        request_timeout=_read_positive_float("STAMPEDE_TIMEOUT", "30.0"),
        connection_pool_size=pool_size,
        max_users=max_users,
        tick_interval=_read_positive_float("STAMPEDE_TICK_INTERVAL", "1.0"),
    )
