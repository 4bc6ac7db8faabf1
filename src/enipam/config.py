"""
Configuration for enipam.

This module defines the configuration dataclass for the IPAM engine and CLI,
providing a centralized place for all configurable parameters.

Every field can be overridden from the environment with an ``ENIPAM_``
prefix, e.g. ``ENIPAM_LOCK_FILE=/tmp/enipam.lock``.

Usage:
    from enipam.config import config

    config.REGISTRY_FILE = "/tmp/registry.db"
"""

import os
from dataclasses import dataclass, fields

from enipam.models.enums import LogLevel

ENV_PREFIX = "ENIPAM_"


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class IpamConfig:
    """
    IPAM engine configuration.

    Attributes:
        LOCK_FILE: Advisory lock file serializing mutating operations host-wide.
        REGISTRY_FILE: SQLite file holding the free-address registry.
        METADATA_URL: Base URL of the instance metadata service.
        AWS_REGION: EC2 API region (empty means read it from metadata).
        GC_JITTER_FRACTION: Default +/- jitter applied to registry-gc windows.
        LOG_LEVEL: Logging verbosity level.
    """

    # -------------------------------------------------------------------------
    # Path Configuration
    # -------------------------------------------------------------------------

    LOCK_FILE: str = "/run/enipam.lock"
    REGISTRY_FILE: str = "/var/lib/enipam/registry.db"

    # -------------------------------------------------------------------------
    # Cloud Configuration
    # -------------------------------------------------------------------------

    METADATA_URL: str = "http://169.254.169.254/latest"
    METADATA_TIMEOUT_SECONDS: float = 1.0
    METADATA_TOKEN_TTL_SECONDS: int = 21600
    AWS_REGION: str = ""

    # -------------------------------------------------------------------------
    # Allocation / GC Configuration
    # -------------------------------------------------------------------------

    GC_JITTER_FRACTION: float = 0.15

    # -------------------------------------------------------------------------
    # Precondition Configuration
    # -------------------------------------------------------------------------

    # Kernel network state manipulation needs root
    REQUIRE_ROOT: bool = True

    # -------------------------------------------------------------------------
    # Logging Configuration
    # -------------------------------------------------------------------------

    LOG_LEVEL: LogLevel = LogLevel.WARNING
    LOG_FILE: str = ""


# =============================================================================
# Environment Overrides
# =============================================================================


def _coerce(raw: str, current):
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, LogLevel):
        return LogLevel(raw.strip().lower())
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def load_config_from_env(target: IpamConfig | None = None) -> IpamConfig:
    """
    Apply ``ENIPAM_*`` environment variables onto a config instance.

    Args:
        target: Config to update in place (defaults to the global config).

    Returns:
        The updated config.

    Raises:
        ValueError: If a variable cannot be converted to the field's type.
    """
    target = target if target is not None else config
    for f in fields(target):
        raw = os.environ.get(f"{ENV_PREFIX}{f.name}")
        if raw is None:
            continue
        setattr(target, f.name, _coerce(raw, getattr(target, f.name)))
    return target


# Global config instance
config = IpamConfig()
