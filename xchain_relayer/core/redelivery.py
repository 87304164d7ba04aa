"""Paid redelivery requests for an earlier delivery."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Union

from eth_account.signers.local import LocalAccount
from web3 import Web3

from xchain_relayer.config import Network
from xchain_relayer.core.attestation import AttestationFetcher
from xchain_relayer.core.codec import decode_delivery_instruction
from xchain_relayer.core.errors import InsufficientFunds, RedeliveryTargetMismatch
from xchain_relayer.core.models import VaaKey
from xchain_relayer.core.pricing import PriceOracle
from xchain_relayer.core.registry import ChainProviderRegistry, ChainRef
from xchain_relayer.core.transactions import send_contract_call
from xchain_relayer.core.utils import get_logger

LOGGER = get_logger("xchain_relayer.redelivery")


@dataclass(frozen=True)
class FetchOptions:
    """How long (and whether) to wait for the original delivery attestation."""

    deadline_seconds: Optional[float] = None
    cancel: Optional[threading.Event] = None


class RedeliverySubmitter:
    """Requests a redelivery of ``vaa_key`` with a new budget, paid on the source chain.

    The price is re-read right before submission and the supplied value is
    checked locally, so an underfunded request never reaches the chain. The
    quote can still move between that read and block inclusion. The prior
    delivery status is not checked and the budget is never raised
    automatically; both are caller decisions.
    """

    def __init__(
        self,
        registry: ChainProviderRegistry,
        *,
        oracle: Optional[PriceOracle] = None,
        fetcher: Optional[AttestationFetcher] = None,
    ) -> None:
        self.registry = registry
        self.oracle = oracle or PriceOracle(registry)
        self.fetcher = fetcher or AttestationFetcher(request_timeout=registry.config.defaults.request_timeout)

    def resend(
        self,
        signer: LocalAccount,
        source_chain: ChainRef,
        target_chain: ChainRef,
        environment: Union[Network, str],
        vaa_key: VaaKey,
        new_gas_limit: int,
        new_receiver_value: int,
        delivery_provider_address: str,
        attestation_endpoints: Sequence[str],
        tx_overrides: Optional[Mapping[str, Any]] = None,
        fetch_options: Optional[FetchOptions] = None,
    ) -> Any:
        source_config = self.registry.resolve(source_chain, environment)
        target_config = self.registry.resolve(target_chain, environment)
        options = fetch_options or FetchOptions()

        original = self.fetcher.fetch(
            list(attestation_endpoints) or list(self.registry.config.guardian_rpcs),
            vaa_key,
            deadline_seconds=options.deadline_seconds or self.registry.config.defaults.attestation_deadline,
            cancel=options.cancel,
        )
        instruction = decode_delivery_instruction(
            original.vaa.payload,
            source_chain=original.vaa.emitter_chain,
            sequence=original.vaa.sequence,
        )
        if instruction.target_chain != target_config.chain_id:
            raise RedeliveryTargetMismatch(
                f"Delivery {vaa_key.emitter_chain}/{vaa_key.sequence} targets chain {instruction.target_chain}, "
                f"not {target_config.chain_id}"
            )

        provider = Web3.to_checksum_address(delivery_provider_address)
        price = self.oracle.quote(
            source_config.chain_id,
            target_config.chain_id,
            new_gas_limit,
            environment=environment,
            receiver_value=new_receiver_value,
            delivery_provider=provider,
        )
        overrides = dict(tx_overrides or {})
        value = int(overrides.pop("value", price))
        if value < price:
            raise InsufficientFunds(required=price, supplied=value)

        source = self.registry.handle(source_config.chain_id)
        LOGGER.info(
            "Requesting redelivery of %s/%s/%s to %s gasLimit=%s receiverValue=%s value=%s",
            vaa_key.emitter_chain,
            vaa_key.emitter_hex,
            vaa_key.sequence,
            target_config.name,
            new_gas_limit,
            new_receiver_value,
            value,
        )
        call = source.relayer_contract().functions.resendToEvm(
            vaa_key.as_tuple(),
            target_config.chain_id,
            new_receiver_value,
            new_gas_limit,
            provider,
        )
        defaults = self.registry.config.defaults
        return send_contract_call(
            web3=source.web3,
            chain_id=source.chain_id,
            call=call,
            signer=signer,
            value=value,
            nonce_manager=self.registry.nonce_manager,
            overrides=overrides,
            gas_buffer=defaults.gas_buffer,
            receipt_timeout=defaults.receipt_timeout,
            label="redelivery request",
        )


__all__ = ["FetchOptions", "RedeliverySubmitter"]
