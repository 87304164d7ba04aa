"""Delivery price quotes read from the source chain's delivery provider."""

from __future__ import annotations

from typing import Optional, Union

from web3 import Web3

from xchain_relayer.config import Network
from xchain_relayer.core.errors import InsufficientGasLimit, UnknownChain
from xchain_relayer.core.models import PriceQuote
from xchain_relayer.core.registry import ChainHandle, ChainProviderRegistry, ChainRef
from xchain_relayer.core.utils import get_logger, rpc_errors

LOGGER = get_logger("xchain_relayer.pricing")


def default_delivery_provider(handle: ChainHandle) -> str:
    """Read the relayer's default delivery provider on ``handle``'s chain."""
    with rpc_errors("default delivery provider lookup"):
        address = handle.relayer_contract().functions.getDefaultDeliveryProvider().call()
    return Web3.to_checksum_address(address)


def message_fee(handle: ChainHandle) -> int:
    with rpc_errors("message fee lookup"):
        return int(handle.core_contract().functions.messageFee().call())


class PriceOracle:
    """Asks the source chain's relayer what a target-chain execution budget costs.

    Quotes are point-in-time reads: the provider may update its prices at
    any block, so a quote is an estimate and never a reservation.
    """

    def __init__(self, registry: ChainProviderRegistry) -> None:
        self.registry = registry

    def quote(
        self,
        source_chain: ChainRef,
        target_chain: ChainRef,
        gas_limit: int,
        *,
        environment: Optional[Union[Network, str]] = None,
        receiver_value: int = 0,
        delivery_provider: Optional[str] = None,
    ) -> int:
        """Return the native amount (smallest unit) to pay on ``source_chain``."""
        return self.quote_breakdown(
            source_chain,
            target_chain,
            gas_limit,
            environment=environment,
            receiver_value=receiver_value,
            delivery_provider=delivery_provider,
        ).total

    def quote_breakdown(
        self,
        source_chain: ChainRef,
        target_chain: ChainRef,
        gas_limit: int,
        *,
        environment: Optional[Union[Network, str]] = None,
        receiver_value: int = 0,
        delivery_provider: Optional[str] = None,
    ) -> PriceQuote:
        source_config = self.registry.resolve(source_chain, environment)
        target_config = self.registry.resolve(target_chain, environment)
        if isinstance(gas_limit, bool) or not isinstance(gas_limit, int) or gas_limit <= 0:
            raise ValueError(f"gas_limit must be a positive integer, got {gas_limit!r}")
        if receiver_value < 0:
            raise ValueError("receiver_value cannot be negative")
        if gas_limit < target_config.min_gas_limit:
            raise InsufficientGasLimit(gas_limit, target_config.min_gas_limit)

        source = self.registry.handle(source_config.chain_id)
        provider_address = (
            Web3.to_checksum_address(delivery_provider) if delivery_provider else default_delivery_provider(source)
        )
        provider = source.delivery_provider_contract(provider_address).functions
        target_id = target_config.chain_id

        with rpc_errors("delivery price quote"):
            if not provider.isChainSupported(target_id).call():
                raise UnknownChain(target_id, self.registry.environment.value, f"not supported by provider {provider_address}")
            # The relayer quote already converts into source-chain wei and includes the message fee.
            total, refund_per_gas = source.relayer_contract().functions.quoteEVMDeliveryPrice(
                target_id, receiver_value, gas_limit, provider_address
            ).call()
            gas_price = int(provider.quoteGasPrice(target_id).call())
            overhead = int(provider.quoteDeliveryOverhead(target_id).call())

        result = PriceQuote(
            source_chain=source_config.chain_id,
            target_chain=target_id,
            gas_limit=gas_limit,
            receiver_value=receiver_value,
            delivery_provider=provider_address,
            total=int(total),
            target_chain_refund_per_gas_unused=int(refund_per_gas),
            gas_price=gas_price,
            delivery_overhead=overhead,
            message_fee=message_fee(source),
        )
        LOGGER.info(
            "Quoted %s -> %s gasLimit=%s receiverValue=%s total=%s",
            source_config.name,
            target_config.name,
            gas_limit,
            receiver_value,
            result.total,
        )
        return result


__all__ = ["PriceOracle", "default_delivery_provider", "message_fee"]
