"""Manual delivery of a signed delivery attestation on its target chain."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Union

from eth_account.signers.local import LocalAccount

from xchain_relayer.config import Network
from xchain_relayer.core.attestation import AttestationFetcher, decode_attestation
from xchain_relayer.core.codec import decode_delivery_instruction
from xchain_relayer.core.models import Attestation, DeliveryInstruction
from xchain_relayer.core.pricing import message_fee
from xchain_relayer.core.registry import ChainProviderRegistry
from xchain_relayer.core.transactions import send_contract_call
from xchain_relayer.core.utils import get_logger

LOGGER = get_logger("xchain_relayer.delivery")


@dataclass(frozen=True)
class DeliveryPlan:
    """Everything needed to call ``deliver`` on the target relayer."""

    delivery: Attestation
    instruction: DeliveryInstruction
    additional_vaas: List[bytes]
    value: int


def delivery_budget(instruction: DeliveryInstruction, wormhole_fee: int) -> int:
    """Native value the target relayer expects alongside ``deliver``."""
    return (
        instruction.requested_receiver_value
        + instruction.extra_receiver_value
        + instruction.max_refund
        + wormhole_fee
    )


class DeliverySubmitter:
    """Presents a delivery attestation plus its additional attestations to the target chain.

    One broadcast per call; a revert is reported as ``DeliveryReverted`` and
    retrying (or redelivering) is left to the caller.
    """

    def __init__(self, registry: ChainProviderRegistry, fetcher: Optional[AttestationFetcher] = None) -> None:
        self.registry = registry
        self.fetcher = fetcher or AttestationFetcher(request_timeout=registry.config.defaults.request_timeout)

    def plan(
        self,
        attestation_bytes: bytes,
        endpoints: Sequence[str],
        environment: Optional[Union[Network, str]] = None,
        *,
        deadline_seconds: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> DeliveryPlan:
        delivery = decode_attestation(bytes(attestation_bytes))
        instruction = decode_delivery_instruction(
            delivery.vaa.payload,
            source_chain=delivery.vaa.emitter_chain,
            sequence=delivery.vaa.sequence,
        )
        target = self.registry.handle(instruction.target_chain, environment)
        deadline = deadline_seconds or self.registry.config.defaults.attestation_deadline

        additional: List[bytes] = []
        for key in instruction.vaa_keys:
            fetched = self.fetcher.fetch(endpoints, key, deadline_seconds=deadline, cancel=cancel)
            additional.append(fetched.vaa_bytes)

        return DeliveryPlan(
            delivery=delivery,
            instruction=instruction,
            additional_vaas=additional,
            value=delivery_budget(instruction, message_fee(target)),
        )

    def deliver(
        self,
        attestation_bytes: bytes,
        signer: LocalAccount,
        rpc_endpoint: Union[str, Sequence[str]],
        environment: Optional[Union[Network, str]] = None,
        *,
        tx_overrides: Optional[Mapping[str, Any]] = None,
        deadline_seconds: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Any:
        """Submit the delivery and return the mined receipt."""
        endpoints = [rpc_endpoint] if isinstance(rpc_endpoint, str) else list(rpc_endpoint)
        endpoints += [url for url in self.registry.config.guardian_rpcs if url not in endpoints]

        plan = self.plan(attestation_bytes, endpoints, environment, deadline_seconds=deadline_seconds, cancel=cancel)
        target = self.registry.handle(plan.instruction.target_chain, environment)
        overrides = dict(tx_overrides or {})
        value = int(overrides.pop("value", plan.value))

        LOGGER.info(
            "Delivering %s/%s/%s to chain %s with %s additional VAAs value=%s",
            plan.delivery.vaa.emitter_chain,
            plan.delivery.vaa.emitter_address.hex(),
            plan.delivery.vaa.sequence,
            target.chain_id,
            len(plan.additional_vaas),
            value,
        )
        call = target.relayer_contract().functions.deliver(
            plan.additional_vaas,
            plan.delivery.vaa_bytes,
            signer.address,
            b"",
        )
        defaults = self.registry.config.defaults
        return send_contract_call(
            web3=target.web3,
            chain_id=target.chain_id,
            call=call,
            signer=signer,
            value=value,
            nonce_manager=self.registry.nonce_manager,
            overrides=overrides,
            gas_buffer=defaults.gas_buffer,
            receipt_timeout=defaults.receipt_timeout,
            label="delivery",
        )


__all__ = ["DeliveryPlan", "DeliverySubmitter", "delivery_budget"]
