"""Config loader for the relayer project."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Tuple

from web3 import Web3

CONFIG_ENV_VAR = "RELAYER_CONFIG"


class ConfigError(ValueError):
    """Raised when configuration data is invalid or missing."""


class Network(str, Enum):
    """Deployment environment every chain handle belongs to."""

    MAINNET = "MAINNET"
    TESTNET = "TESTNET"
    DEVNET = "DEVNET"

    @classmethod
    def parse(cls, value: Any) -> "Network":
        if isinstance(value, Network):
            return value
        try:
            return cls(str(value).upper())
        except ValueError as exc:
            raise ConfigError(f"Unknown environment {value!r}, expected one of MAINNET, TESTNET, DEVNET") from exc


def _require_keys(data: Mapping[str, Any], keys: Iterable[str], context: str) -> None:
    missing = [key for key in keys if key not in data]
    if missing:
        raise ConfigError(f"{context} missing required keys: {', '.join(missing)}")


def _to_checksum(value: str, *, field_name: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except Exception as exc:  # web3 raises ValueError for malformed inputs
        raise ConfigError(f"Invalid address for {field_name}: {value}") from exc


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for one chain reachable by the relayer."""

    name: str
    chain_id: int
    wormhole_relayer_address: str
    core_address: str
    rpc_url: Optional[str] = None
    evm_chain_id: Optional[int] = None
    min_gas_limit: int = 0

    def ensure_rpc_url(self) -> str:
        """Return the RPC URL or raise if it is missing."""
        if not self.rpc_url:
            raise ConfigError(f"RPC URL required for {self.name} but not configured")
        return self.rpc_url


@dataclass(frozen=True)
class DefaultsConfig:
    """Default operational parameters."""

    request_timeout: float = 10.0
    attestation_deadline: float = 120.0
    receipt_timeout: float = 120.0
    scan_block_range: int = 2000
    max_log_range: int = 1000
    max_forward_depth: int = 4
    gas_buffer: float = 1.1
    delivery_wait_deadline: float = 300.0


@dataclass(frozen=True)
class RelayerConfig:
    """Typed wrapper around the relayer configuration."""

    environment: Network
    chains: Tuple[ChainConfig, ...]
    defaults: DefaultsConfig
    guardian_rpcs: Tuple[str, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    def chain_by_id(self, chain_id: int) -> Optional[ChainConfig]:
        for chain in self.chains:
            if chain.chain_id == chain_id:
                return chain
        return None

    def chain_by_name(self, name: str) -> Optional[ChainConfig]:
        lowered = name.lower()
        for chain in self.chains:
            if chain.name == lowered:
                return chain
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Return the original configuration mapping."""
        return dict(self.raw)


def _parse_chain(name: str, data: Mapping[str, Any]) -> ChainConfig:
    _require_keys(data, ["chain_id", "wormhole_relayer_address", "core_address"], f"chain {name}")
    chain = ChainConfig(
        name=name.lower(),
        chain_id=int(data["chain_id"]),
        wormhole_relayer_address=_to_checksum(data["wormhole_relayer_address"], field_name=f"{name} wormhole_relayer_address"),
        core_address=_to_checksum(data["core_address"], field_name=f"{name} core_address"),
        rpc_url=data.get("rpc_url"),
        evm_chain_id=int(data["evm_chain_id"]) if data.get("evm_chain_id") is not None else None,
        min_gas_limit=int(data.get("min_gas_limit", 0)),
    )
    if not 0 < chain.chain_id < 2**16:
        raise ConfigError(f"chain {name}: chain_id must fit in uint16")
    if chain.min_gas_limit < 0:
        raise ConfigError(f"chain {name}: min_gas_limit cannot be negative")
    return chain


def _parse_defaults(data: Mapping[str, Any]) -> DefaultsConfig:
    base = DefaultsConfig()
    defaults = DefaultsConfig(
        request_timeout=float(data.get("request_timeout", base.request_timeout)),
        attestation_deadline=float(data.get("attestation_deadline", base.attestation_deadline)),
        receipt_timeout=float(data.get("receipt_timeout", base.receipt_timeout)),
        scan_block_range=int(data.get("scan_block_range", base.scan_block_range)),
        max_log_range=int(data.get("max_log_range", base.max_log_range)),
        max_forward_depth=int(data.get("max_forward_depth", base.max_forward_depth)),
        gas_buffer=float(data.get("gas_buffer", base.gas_buffer)),
        delivery_wait_deadline=float(data.get("delivery_wait_deadline", base.delivery_wait_deadline)),
    )
    for name in ("request_timeout", "attestation_deadline", "receipt_timeout", "delivery_wait_deadline"):
        if getattr(defaults, name) <= 0:
            raise ConfigError(f"defaults.{name} must be positive")
    if defaults.scan_block_range <= 0 or defaults.max_log_range <= 0:
        raise ConfigError("defaults.scan_block_range and defaults.max_log_range must be positive")
    if defaults.max_forward_depth < 0:
        raise ConfigError("defaults.max_forward_depth cannot be negative")
    if defaults.gas_buffer < 1:
        raise ConfigError("defaults.gas_buffer must be at least 1")
    return defaults


def parse_config(data: Mapping[str, Any]) -> RelayerConfig:
    """Validate an already loaded configuration mapping."""
    _require_keys(data, ["environment", "chains"], "config")

    chains_data = data["chains"]
    if not isinstance(chains_data, Mapping) or not chains_data:
        raise ConfigError("chains must be a non-empty mapping of chain name to settings")
    chains: List[ChainConfig] = [_parse_chain(name, value) for name, value in chains_data.items()]

    seen: Dict[int, str] = {}
    for chain in chains:
        if chain.chain_id in seen:
            raise ConfigError(f"chain_id {chain.chain_id} used by both {seen[chain.chain_id]} and {chain.name}")
        seen[chain.chain_id] = chain.name

    guardian_rpcs = data.get("guardian_rpcs", [])
    if isinstance(guardian_rpcs, str) or not isinstance(guardian_rpcs, Iterable):
        raise ConfigError("guardian_rpcs must be a list of URLs")

    return RelayerConfig(
        environment=Network.parse(data["environment"]),
        chains=tuple(chains),
        defaults=_parse_defaults(data.get("defaults", {})),
        guardian_rpcs=tuple(str(url).rstrip("/") for url in guardian_rpcs),
        raw=data,
    )


def _load_json(path: Path) -> MutableMapping[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file contains invalid JSON: {path}") from exc


def load_config(config_path: Optional[Path] = None) -> RelayerConfig:
    """Load and validate relayer configuration data."""
    config_path = config_path or Path(os.getenv(CONFIG_ENV_VAR) or "config.json")
    return parse_config(_load_json(config_path))


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
