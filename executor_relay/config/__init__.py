"""Configuration utilities for the executor relay client."""

from .credentials import load_evm_account, load_solana_keypair
from .loader import (
    ApiUrlsConfig,
    ChainConfig,
    ConfigError,
    DefaultsConfig,
    RelayConfig,
    load_config,
)

__all__ = [
    "ApiUrlsConfig",
    "ChainConfig",
    "ConfigError",
    "DefaultsConfig",
    "RelayConfig",
    "load_config",
    "load_evm_account",
    "load_solana_keypair",
]
