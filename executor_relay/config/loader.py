"""Config loader for the executor relay client."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional

from solders.pubkey import Pubkey
from web3 import Web3

from executor_relay.core.addresses import ChainFamily

NETWORKS = ("Testnet", "Mainnet")

# Chain names the Executor status endpoint expects, keyed by Wormhole chain id.
EXECUTOR_CHAIN_NAMES: Dict[int, str] = {
    1: "Solana",
    2: "Ethereum",
    4: "Bsc",
    5: "Polygon",
    6: "Avalanche",
    23: "Arbitrum",
    24: "Optimism",
    30: "Base",
    51: "Fogo",
    10002: "Sepolia",
    10003: "ArbitrumSepolia",
    10004: "BaseSepolia",
    10005: "OptimismSepolia",
}

DEFAULT_API_URLS: Dict[str, Dict[str, str]] = {
    "Testnet": {
        "executor": "https://executor-testnet.labsapis.com/v0",
        "wormholescan": "https://api.testnet.wormholescan.io",
    },
    "Mainnet": {
        "executor": "https://executor.labsapis.com/v0",
        "wormholescan": "https://api.wormholescan.io",
    },
}


class ConfigError(ValueError):
    """Raised when configuration data is invalid or missing."""


def _require_keys(data: Mapping[str, Any], keys: Iterable[str], context: str) -> None:
    missing = [key for key in keys if key not in data]
    if missing:
        raise ConfigError(f"{context} missing required keys: {', '.join(missing)}")


def _to_checksum(value: str, *, field_name: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except Exception as exc:  # web3 raises ValueError for malformed inputs
        raise ConfigError(f"Invalid address for {field_name}: {value}") from exc


def _to_pubkey(value: str, *, field_name: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid public key for {field_name}: {value}") from exc


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for one chain taking part in message delivery."""

    name: str
    wormhole_chain_id: int
    family: ChainFamily
    rpc_url: Optional[str] = None
    program_id: Optional[Pubkey] = None
    wormhole_core_bridge: Optional[str] = None
    executor_program: Optional[Pubkey] = None
    contract_address: Optional[str] = None
    native_decimals: int = 9
    executor_chain_name: str = ""

    def ensure_rpc_url(self) -> str:
        """Return the RPC URL or raise if it is missing."""
        if not self.rpc_url:
            raise ConfigError(f"RPC URL required for chain {self.name} but not configured")
        return self.rpc_url

    def ensure_program_id(self) -> Pubkey:
        if self.program_id is None:
            raise ConfigError(f"program_id required for chain {self.name} but not configured")
        return self.program_id

    def ensure_core_bridge(self) -> str:
        if not self.wormhole_core_bridge:
            raise ConfigError(f"wormhole_core_bridge required for chain {self.name} but not configured")
        return self.wormhole_core_bridge

    def ensure_executor_program(self) -> Pubkey:
        if self.executor_program is None:
            raise ConfigError(f"executor_program required for chain {self.name} but not configured")
        return self.executor_program

    def ensure_contract_address(self) -> str:
        if not self.contract_address:
            raise ConfigError(f"contract_address required for chain {self.name} but not configured")
        return self.contract_address


@dataclass(frozen=True)
class DefaultsConfig:
    """Default operational parameters."""

    api_timeout: int
    poll_interval: float
    max_poll_interval: float
    attestation_timeout: float
    delivery_timeout: float
    confirm_timeout: float
    gas_limit: int
    msg_value: int
    max_quote_attempts: int
    max_relay_attempts: int


@dataclass(frozen=True)
class ApiUrlsConfig:
    """Endpoints of the relay service and the attestation index."""

    executor: str
    wormholescan: str


@dataclass(frozen=True)
class RelayConfig:
    """Typed wrapper around the relay client configuration."""

    network: str
    api_urls: ApiUrlsConfig
    chains: Mapping[str, ChainConfig]
    defaults: DefaultsConfig
    raw: Mapping[str, Any] = field(repr=False)

    def chain(self, name: str) -> ChainConfig:
        try:
            return self.chains[name]
        except KeyError as exc:
            raise ConfigError(f"Unknown chain {name!r}; configured: {', '.join(sorted(self.chains))}") from exc

    def chain_by_id(self, wormhole_chain_id: int) -> ChainConfig:
        for chain in self.chains.values():
            if chain.wormhole_chain_id == wormhole_chain_id:
                return chain
        raise ConfigError(f"No chain configured with wormhole_chain_id {wormhole_chain_id}")

    def to_dict(self) -> Dict[str, Any]:
        """Return the original configuration mapping."""
        return dict(self.raw)


def _load_json(path: Path) -> MutableMapping[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file contains invalid JSON: {path}") from exc


def _parse_chain(name: str, data: Mapping[str, Any]) -> ChainConfig:
    _require_keys(data, ["wormhole_chain_id", "family"], f"chain {name}")

    try:
        family = ChainFamily(str(data["family"]).lower())
    except ValueError as exc:
        raise ConfigError(f"chain {name} has unknown family {data['family']!r}") from exc

    chain_id = int(data["wormhole_chain_id"])
    if not 0 < chain_id < 2**16:
        raise ConfigError(f"chain {name} wormhole_chain_id must fit in u16 and be non-zero")

    program_id = None
    executor_program = None
    contract_address = None
    core_bridge = data.get("wormhole_core_bridge")

    if family is ChainFamily.SVM:
        _require_keys(data, ["program_id", "wormhole_core_bridge"], f"chain {name}")
        program_id = _to_pubkey(data["program_id"], field_name=f"{name}.program_id")
        core_bridge = str(_to_pubkey(core_bridge, field_name=f"{name}.wormhole_core_bridge"))
        if data.get("executor_program"):
            executor_program = _to_pubkey(data["executor_program"], field_name=f"{name}.executor_program")
    else:
        _require_keys(data, ["contract_address"], f"chain {name}")
        contract_address = _to_checksum(data["contract_address"], field_name=f"{name}.contract_address")
        if core_bridge:
            core_bridge = _to_checksum(core_bridge, field_name=f"{name}.wormhole_core_bridge")

    default_decimals = 18 if family is ChainFamily.EVM else 9
    return ChainConfig(
        name=name,
        wormhole_chain_id=chain_id,
        family=family,
        rpc_url=data.get("rpc_url"),
        program_id=program_id,
        wormhole_core_bridge=core_bridge,
        executor_program=executor_program,
        contract_address=contract_address,
        native_decimals=int(data.get("native_decimals", default_decimals)),
        executor_chain_name=str(data.get("executor_chain_name") or EXECUTOR_CHAIN_NAMES.get(chain_id, name)),
    )


def _parse_defaults(defaults: Mapping[str, Any]) -> DefaultsConfig:
    config = DefaultsConfig(
        api_timeout=int(defaults.get("api_timeout", 10)),
        poll_interval=float(defaults.get("poll_interval", 3)),
        max_poll_interval=float(defaults.get("max_poll_interval", 30)),
        attestation_timeout=float(defaults.get("attestation_timeout", 180)),
        delivery_timeout=float(defaults.get("delivery_timeout", 180)),
        confirm_timeout=float(defaults.get("confirm_timeout", 60)),
        gas_limit=int(defaults.get("gas_limit", 200_000)),
        msg_value=int(defaults.get("msg_value", 0)),
        max_quote_attempts=int(defaults.get("max_quote_attempts", 3)),
        max_relay_attempts=int(defaults.get("max_relay_attempts", 2)),
    )
    for name in (
        "api_timeout",
        "poll_interval",
        "max_poll_interval",
        "attestation_timeout",
        "delivery_timeout",
        "confirm_timeout",
        "gas_limit",
        "max_quote_attempts",
        "max_relay_attempts",
    ):
        if getattr(config, name) <= 0:
            raise ConfigError(f"defaults.{name} must be positive")
    if config.msg_value < 0:
        raise ConfigError("defaults.msg_value cannot be negative")
    if config.max_poll_interval < config.poll_interval:
        raise ConfigError("defaults.max_poll_interval must be >= defaults.poll_interval")
    return config


def load_config(config_path: Optional[Path] = None) -> RelayConfig:
    """Load and validate relay client configuration data."""
    config_path = config_path or Path(os.getenv("EXECUTOR_RELAY_CONFIG", "config.json"))
    data = _load_json(config_path)

    _require_keys(data, ["network", "chains"], "config")

    network = str(data["network"])
    if network not in NETWORKS:
        raise ConfigError(f"network must be one of {', '.join(NETWORKS)}, got {network!r}")

    urls = {**DEFAULT_API_URLS[network], **data.get("api_urls", {})}
    api_config = ApiUrlsConfig(
        executor=str(urls["executor"]).rstrip("/"),
        wormholescan=str(urls["wormholescan"]).rstrip("/"),
    )

    chains_data = data["chains"]
    if not isinstance(chains_data, Mapping) or not chains_data:
        raise ConfigError("chains must be a non-empty mapping")
    chains = {name: _parse_chain(name, chain) for name, chain in chains_data.items()}

    seen: Dict[int, str] = {}
    for chain in chains.values():
        if chain.wormhole_chain_id in seen:
            raise ConfigError(
                f"chains {seen[chain.wormhole_chain_id]} and {chain.name} share wormhole_chain_id "
                f"{chain.wormhole_chain_id}"
            )
        seen[chain.wormhole_chain_id] = chain.name

    return RelayConfig(
        network=network,
        api_urls=api_config,
        chains=chains,
        defaults=_parse_defaults(data.get("defaults", {})),
        raw=data,
    )


__all__ = [
    "ApiUrlsConfig",
    "ChainConfig",
    "ConfigError",
    "DEFAULT_API_URLS",
    "DefaultsConfig",
    "EXECUTOR_CHAIN_NAMES",
    "RelayConfig",
    "load_config",
]
