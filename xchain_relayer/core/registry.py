"""Chain id to connection handle lookup."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from web3 import Web3
from web3.contract import Contract

from xchain_relayer.config import ChainConfig, Network, RelayerConfig
from xchain_relayer.contracts import (
    DELIVERY_PROVIDER_ABI,
    WORMHOLE_CORE_ABI,
    WORMHOLE_RELAYER_ABI,
    load_contract_abi,
)
from xchain_relayer.core.errors import UnknownChain
from xchain_relayer.core.transactions import NonceManager
from xchain_relayer.core.utils import ensure_web3_connected, get_logger

LOGGER = get_logger("xchain_relayer.registry")

ChainRef = Union[int, str]


def default_web3_factory(url: str) -> Web3:
    return Web3(Web3.HTTPProvider(url))


@dataclass(frozen=True)
class ChainHandle:
    """Connection to one chain plus the relayer contracts deployed on it."""

    config: ChainConfig
    web3: Web3

    @property
    def chain_id(self) -> int:
        return self.config.chain_id

    def relayer_contract(self) -> Contract:
        return self.web3.eth.contract(
            address=self.config.wormhole_relayer_address,
            abi=load_contract_abi(WORMHOLE_RELAYER_ABI),
        )

    def core_contract(self) -> Contract:
        return self.web3.eth.contract(address=self.config.core_address, abi=load_contract_abi(WORMHOLE_CORE_ABI))

    def delivery_provider_contract(self, address: str) -> Contract:
        return self.web3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=load_contract_abi(DELIVERY_PROVIDER_ABI),
        )


class ChainProviderRegistry:
    """Maps chain ids (or names) of one environment to connected handles.

    Handles are created lazily and reused; read calls on a handle may be
    interleaved freely. The registry also owns the :class:`NonceManager`
    shared by every submitter built on top of it, so that transactions from
    one signer are sequenced even when issued by different components.
    """

    def __init__(
        self,
        config: RelayerConfig,
        *,
        web3_factory: Callable[[str], Web3] = default_web3_factory,
        nonce_manager: Optional[NonceManager] = None,
    ) -> None:
        self.config = config
        self._web3_factory = web3_factory
        self.nonce_manager = nonce_manager or NonceManager()
        self._handles: Dict[int, ChainHandle] = {}
        self._lock = threading.Lock()

    @property
    def environment(self) -> Network:
        return self.config.environment

    def resolve(self, chain: ChainRef, environment: Optional[Union[Network, str]] = None) -> ChainConfig:
        """Return the chain configuration, or raise ``UnknownChain``."""
        if environment is not None and Network.parse(environment) != self.environment:
            raise UnknownChain(chain, str(Network.parse(environment).value), f"registry serves {self.environment.value}")
        if isinstance(chain, str) and not chain.isdigit():
            found = self.config.chain_by_name(chain)
        else:
            found = self.config.chain_by_id(int(chain))
        if found is None:
            raise UnknownChain(chain, self.environment.value)
        return found

    def handle(self, chain: ChainRef, environment: Optional[Union[Network, str]] = None) -> ChainHandle:
        chain_config = self.resolve(chain, environment)
        with self._lock:
            cached = self._handles.get(chain_config.chain_id)
        if cached is not None:
            return cached

        web3 = self._web3_factory(chain_config.ensure_rpc_url())
        ensure_web3_connected(web3, expected_chain_id=chain_config.evm_chain_id)
        handle = ChainHandle(config=chain_config, web3=web3)
        LOGGER.info("Connected to %s (chain %s)", chain_config.name, chain_config.chain_id)
        with self._lock:
            return self._handles.setdefault(chain_config.chain_id, handle)


__all__ = ["ChainHandle", "ChainProviderRegistry", "ChainRef", "default_web3_factory"]
