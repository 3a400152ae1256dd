"""
ERC-4337 Validation Configuration

All settings come from environment variables so the same engine can be tuned
per deployment without code changes. Defaults follow the canonical bundler
rules (0.5 native units of stake, one day unstake delay, 128 slot struct
search window).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .constants import (
    DEFAULT_MAPPING_SEARCH_DEPTH,
    DEFAULT_MIN_STAKE_VALUE,
    DEFAULT_MIN_UNSTAKE_DELAY,
)

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def _get_int(env_var: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = int(raw, 0)
    except ValueError:
        raise ConfigurationError(f"{env_var} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigurationError(f"{env_var} must be >= {minimum}, got {value}")
    return value


def _get_flag(env_var: str, default: bool = False) -> bool:
    raw = os.getenv(env_var, "").strip().lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{env_var} must be a boolean flag, got {raw!r}")


MIN_STAKE_VALUE = _get_int("ERC4337_MIN_STAKE_VALUE", DEFAULT_MIN_STAKE_VALUE)
MIN_UNSTAKE_DELAY = _get_int("ERC4337_MIN_UNSTAKE_DELAY", DEFAULT_MIN_UNSTAKE_DELAY)
MAPPING_SEARCH_DEPTH = _get_int("ERC4337_MAPPING_SEARCH_DEPTH", DEFAULT_MAPPING_SEARCH_DEPTH)
METRICS_ENABLED = _get_flag("ERC4337_METRICS_ENABLED")
LOG_LEVEL = os.getenv("ERC4337_LOG_LEVEL", "INFO").strip().upper() or "INFO"
ENVIRONMENT = os.getenv("ERC4337_ENVIRONMENT", "production").strip() or "production"


@dataclass(frozen=True)
class ValidationConfig:
    """Tunables for one validator instance."""

    min_stake_value: int = DEFAULT_MIN_STAKE_VALUE
    min_unstake_delay: int = DEFAULT_MIN_UNSTAKE_DELAY
    mapping_search_depth: int = DEFAULT_MAPPING_SEARCH_DEPTH
    metrics_enabled: bool = False

    def __post_init__(self) -> None:
        for name in ("min_stake_value", "min_unstake_delay", "mapping_search_depth"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative")

    @classmethod
    def from_env(cls) -> "ValidationConfig":
        """Read the current environment (not the import-time snapshot)."""
        config = cls(
            min_stake_value=_get_int("ERC4337_MIN_STAKE_VALUE", DEFAULT_MIN_STAKE_VALUE),
            min_unstake_delay=_get_int("ERC4337_MIN_UNSTAKE_DELAY", DEFAULT_MIN_UNSTAKE_DELAY),
            mapping_search_depth=_get_int(
                "ERC4337_MAPPING_SEARCH_DEPTH", DEFAULT_MAPPING_SEARCH_DEPTH
            ),
            metrics_enabled=_get_flag("ERC4337_METRICS_ENABLED"),
        )
        if config.mapping_search_depth != DEFAULT_MAPPING_SEARCH_DEPTH:
            logger.info(
                "Mapping slot search depth overridden to %d",
                config.mapping_search_depth,
                extra={"event": "config.search_depth_override"},
            )
        return config


DEFAULT_CONFIG = ValidationConfig(
    min_stake_value=MIN_STAKE_VALUE,
    min_unstake_delay=MIN_UNSTAKE_DELAY,
    mapping_search_depth=MAPPING_SEARCH_DEPTH,
    metrics_enabled=METRICS_ENABLED,
)

__all__ = [
    "ConfigurationError",
    "ValidationConfig",
    "DEFAULT_CONFIG",
    "MIN_STAKE_VALUE",
    "MIN_UNSTAKE_DELAY",
    "MAPPING_SEARCH_DEPTH",
    "METRICS_ENABLED",
    "LOG_LEVEL",
    "ENVIRONMENT",
]
