"""Configuration utilities for the relayer."""

from .loader import (
    CONFIG_ENV_VAR,
    ChainConfig,
    ConfigError,
    DefaultsConfig,
    Network,
    RelayerConfig,
    load_config,
    parse_config,
)

__all__ = [
    "CONFIG_ENV_VAR",
    "ChainConfig",
    "ConfigError",
    "DefaultsConfig",
    "Network",
    "RelayerConfig",
    "load_config",
    "parse_config",
]
