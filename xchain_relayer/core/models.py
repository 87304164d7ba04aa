"""Value types describing delivery requests and their lifecycle."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from xchain_relayer.core.utils import from_bytes32, to_bytes32, to_hex

MAX_UINT16 = 2**16 - 1
MAX_UINT64 = 2**64 - 1


@dataclass(frozen=True)
class VaaKey:
    """Identifies one emitted message: emitter chain, padded emitter address and sequence."""

    emitter_chain: int
    emitter_address: bytes
    sequence: int

    def __post_init__(self) -> None:
        if not 0 <= self.emitter_chain <= MAX_UINT16:
            raise ValueError(f"emitter_chain out of uint16 range: {self.emitter_chain}")
        if not 0 <= self.sequence <= MAX_UINT64:
            raise ValueError(f"sequence out of uint64 range: {self.sequence}")
        if len(self.emitter_address) != 32:
            raise ValueError("emitter_address must be 32 bytes; use VaaKey.create to pad")

    @classmethod
    def create(cls, emitter_chain: int, emitter_address: Union[str, bytes], sequence: int) -> "VaaKey":
        """Build a key from a native or already padded emitter address."""
        return cls(int(emitter_chain), to_bytes32(emitter_address), int(sequence))

    @property
    def emitter_hex(self) -> str:
        """Emitter address as 64 hex characters, the form guardian endpoints expect."""
        return self.emitter_address.hex()

    def native_emitter_address(self, width: int = 20) -> bytes:
        return from_bytes32(self.emitter_address, width)

    def as_tuple(self) -> Tuple[int, bytes, int]:
        """Tuple form accepted by contract calls taking a ``VaaKey`` struct."""
        return (self.emitter_chain, self.emitter_address, self.sequence)


class DeliveryStatus(str, Enum):
    """Outcome of one delivery attempt."""

    WAITING_FOR_VAA = "Waiting for VAA"
    PENDING = "Pending Delivery"
    DELIVERY_SUCCESS = "Delivery Success"
    RECEIVER_FAILURE = "Receiver Failure"
    FORWARD_REQUEST_SUCCESS = "Forward Request Success"
    FORWARD_REQUEST_FAILURE = "Forward Request Failure"
    THROWN_AWAY = "Thrown Away"

    @property
    def is_terminal(self) -> bool:
        return self not in (DeliveryStatus.WAITING_FOR_VAA, DeliveryStatus.PENDING)


class RefundStatus(Enum):
    """Refund outcome reported alongside a delivery receipt."""

    REFUND_SENT = 0
    REFUND_FAIL = 1
    CROSS_CHAIN_REFUND_SENT = 2
    CROSS_CHAIN_REFUND_FAIL_PROVIDER_NOT_SUPPORTED = 3
    CROSS_CHAIN_REFUND_FAIL_NOT_ENOUGH = 4
    NO_REFUND_REQUESTED = 5


@dataclass(frozen=True)
class DeliveryInstruction:
    """Decoded delivery-request payload."""

    source_chain: int
    target_chain: int
    target_address: bytes
    payload: bytes
    requested_receiver_value: int
    extra_receiver_value: int
    gas_limit: int
    target_chain_refund_per_gas_unused: int
    refund_chain: int
    refund_address: bytes
    refund_delivery_provider: bytes
    source_delivery_provider: bytes
    sender_address: bytes
    source_delivery_sequence_number: int
    vaa_keys: Tuple[VaaKey, ...] = ()

    @property
    def max_refund(self) -> int:
        return self.gas_limit * self.target_chain_refund_per_gas_unused


@dataclass(frozen=True)
class RedeliveryInstruction:
    """Decoded redelivery-request payload."""

    delivery_vaa_key: VaaKey
    target_chain: int
    new_requested_receiver_value: int
    new_gas_limit: int
    new_target_chain_refund_per_gas_unused: int
    new_source_delivery_provider: bytes
    new_sender_address: bytes


@dataclass(frozen=True)
class ParsedVaa:
    """Envelope of a signed attestation."""

    version: int
    guardian_set_index: int
    signatures: Tuple[Tuple[int, bytes], ...]
    timestamp: int
    nonce: int
    emitter_chain: int
    emitter_address: bytes
    sequence: int
    consistency_level: int
    payload: bytes
    hash: bytes

    @property
    def key(self) -> VaaKey:
        return VaaKey(self.emitter_chain, self.emitter_address, self.sequence)

    @property
    def hash_hex(self) -> str:
        return to_hex(self.hash)


@dataclass(frozen=True)
class Attestation:
    """Raw signed attestation bytes with their parsed envelope."""

    vaa_bytes: bytes
    vaa: ParsedVaa

    @property
    def vaa_hash(self) -> str:
        return self.vaa.hash_hex


@dataclass(frozen=True)
class PriceQuote:
    """A delivery price in source-chain native units.

    ``total`` is the relayer's quote and already includes ``message_fee``.
    ``gas_price`` is the provider's price of one target-chain gas unit,
    denominated in source-chain wei.
    """

    source_chain: int
    target_chain: int
    gas_limit: int
    receiver_value: int
    delivery_provider: str
    total: int
    target_chain_refund_per_gas_unused: int
    gas_price: int
    delivery_overhead: int
    message_fee: int

    @property
    def delivery_price(self) -> int:
        """What the delivery provider charges, without the core message fee."""
        return self.total - self.message_fee

    @property
    def gas_cost(self) -> int:
        return self.gas_limit * self.gas_price


@dataclass(frozen=True)
class DeliveryEvent:
    """One observed (or synthesised) delivery attempt on the target chain."""

    status: DeliveryStatus
    vaa_hash: str
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    log_index: Optional[int] = None
    gas_used: Optional[int] = None
    refund_status: Optional[RefundStatus] = None
    revert_string: Optional[str] = None
    is_redelivery: bool = False
    forwards: Tuple["DeliveryInfo", ...] = ()


@dataclass(frozen=True)
class TargetChainStatus:
    chain_id: int
    events: Tuple[DeliveryEvent, ...] = ()


@dataclass(frozen=True)
class DeliveryInfo:
    """Summary of one delivery request and every attempt observed for it."""

    source_chain: int
    source_transaction_hash: str
    source_delivery_sequence_number: int
    vaa_key: VaaKey
    vaa_hash: str
    instruction: DeliveryInstruction
    target_chain_status: TargetChainStatus
    delivery_quote: Optional[int] = None
    payment_for_extra_receiver_value: Optional[int] = None

    @property
    def status(self) -> DeliveryStatus:
        events = self.target_chain_status.events
        return events[-1].status if events else DeliveryStatus.PENDING

    @property
    def target_chain(self) -> int:
        return self.instruction.target_chain


__all__ = [
    "Attestation",
    "DeliveryEvent",
    "DeliveryInfo",
    "DeliveryInstruction",
    "DeliveryStatus",
    "ParsedVaa",
    "PriceQuote",
    "RedeliveryInstruction",
    "RefundStatus",
    "TargetChainStatus",
    "VaaKey",
]
