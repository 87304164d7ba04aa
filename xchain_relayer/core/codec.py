"""Bit-exact codecs for attestations, relayer payloads and relayer event logs.

Every decoder here is strict: short reads, trailing bytes, unknown payload
ids and unexpected log topics raise :class:`DecodeError`. Ambiguous bytes
are never guessed at.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from xchain_relayer.core.errors import DecodeError
from xchain_relayer.core.models import (
    DeliveryInstruction,
    ParsedVaa,
    RedeliveryInstruction,
    VaaKey,
)
from xchain_relayer.core.utils import as_bytes, to_hex

DELIVERY_INSTRUCTION_ID = 1
REDELIVERY_INSTRUCTION_ID = 2
VAA_KEY_TYPE = 1
EVM_EXECUTION_INFO_V1 = 0

LOG_MESSAGE_PUBLISHED_TOPIC = Web3.keccak(text="LogMessagePublished(address,uint64,uint32,bytes,uint8)")
SEND_EVENT_TOPIC = Web3.keccak(text="SendEvent(uint64,uint256,uint256)")
DELIVERY_TOPIC = Web3.keccak(text="Delivery(address,uint16,uint64,bytes32,uint8,uint256,uint8,bytes,bytes)")

_ERROR_SELECTOR = bytes.fromhex("08c379a0")


class _Reader:
    """Cursor over a big-endian byte string."""

    def __init__(self, data: bytes, what: str) -> None:
        self.data = data
        self.offset = 0
        self.what = what

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise DecodeError(f"{self.what}: need {size} bytes at offset {self.offset}, only {len(self.data) - self.offset} left")
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def uint(self, size: int) -> int:
        return int.from_bytes(self.take(size), "big")

    def prefixed(self) -> bytes:
        return self.take(self.uint(4))

    def vaa_key(self) -> VaaKey:
        return VaaKey(self.uint(2), self.take(32), self.uint(8))

    def remaining(self) -> bytes:
        return self.take(len(self.data) - self.offset)

    def finish(self) -> None:
        if self.offset != len(self.data):
            raise DecodeError(f"{self.what}: {len(self.data) - self.offset} trailing bytes")


def _u(value: int, size: int) -> bytes:
    return int(value).to_bytes(size, "big")


def _prefixed(data: bytes) -> bytes:
    return _u(len(data), 4) + data


# -- VaaKey -----------------------------------------------------------------


def encode_vaa_key(key: VaaKey) -> bytes:
    """Wire form ``uint16 || bytes32 || uint64``."""
    return _u(key.emitter_chain, 2) + key.emitter_address + _u(key.sequence, 8)


def decode_vaa_key(data: bytes) -> VaaKey:
    reader = _Reader(as_bytes(data), "VaaKey")
    key = reader.vaa_key()
    reader.finish()
    return key


# -- VAA envelope -----------------------------------------------------------


def build_vaa_body(
    *,
    timestamp: int,
    nonce: int,
    emitter_chain: int,
    emitter_address: bytes,
    sequence: int,
    consistency_level: int,
    payload: bytes,
) -> bytes:
    return (
        _u(timestamp, 4)
        + _u(nonce, 4)
        + _u(emitter_chain, 2)
        + as_bytes(emitter_address)
        + _u(sequence, 8)
        + _u(consistency_level, 1)
        + payload
    )


def vaa_body_hash(body: bytes) -> bytes:
    """Double keccak256 of the body, as stored on-chain in ``deliveryVaaHash``."""
    return bytes(Web3.keccak(Web3.keccak(body)))


def parse_vaa(data: bytes) -> ParsedVaa:
    """Decode a version 1 signed attestation."""
    raw = as_bytes(data)
    reader = _Reader(raw, "VAA")
    version = reader.uint(1)
    if version != 1:
        raise DecodeError(f"Unsupported VAA version {version}")
    guardian_set_index = reader.uint(4)
    signatures = tuple((reader.uint(1), reader.take(65)) for _ in range(reader.uint(1)))
    body_start = reader.offset
    timestamp = reader.uint(4)
    nonce = reader.uint(4)
    emitter_chain = reader.uint(2)
    emitter_address = reader.take(32)
    sequence = reader.uint(8)
    consistency_level = reader.uint(1)
    payload = reader.remaining()
    return ParsedVaa(
        version=version,
        guardian_set_index=guardian_set_index,
        signatures=signatures,
        timestamp=timestamp,
        nonce=nonce,
        emitter_chain=emitter_chain,
        emitter_address=emitter_address,
        sequence=sequence,
        consistency_level=consistency_level,
        payload=payload,
        hash=vaa_body_hash(raw[body_start:]),
    )


# -- Execution info ---------------------------------------------------------


def encode_execution_info(gas_limit: int, refund_per_gas_unused: int) -> bytes:
    return abi_encode(["uint8", "uint256", "uint256"], [EVM_EXECUTION_INFO_V1, gas_limit, refund_per_gas_unused])


def decode_execution_info(data: bytes) -> Tuple[int, int]:
    """Return ``(gas_limit, target_chain_refund_per_gas_unused)``."""
    if len(data) != 96:
        raise DecodeError(f"Execution info must be 96 bytes, got {len(data)}")
    try:
        version, gas_limit, refund = abi_decode(["uint8", "uint256", "uint256"], data)
    except DecodingError as exc:
        raise DecodeError(f"Execution info is not ABI encoded: {exc}") from exc
    if version != EVM_EXECUTION_INFO_V1:
        raise DecodeError(f"Unsupported execution info version {version}")
    return gas_limit, refund


# -- Relayer payloads -------------------------------------------------------


def payload_id(payload: bytes) -> Optional[int]:
    return payload[0] if payload else None


def decode_delivery_instruction(payload: bytes, *, source_chain: int, sequence: int) -> DeliveryInstruction:
    reader = _Reader(as_bytes(payload), "DeliveryInstruction")
    kind = reader.uint(1)
    if kind != DELIVERY_INSTRUCTION_ID:
        raise DecodeError(f"Expected delivery instruction payload id {DELIVERY_INSTRUCTION_ID}, got {kind}")
    target_chain = reader.uint(2)
    target_address = reader.take(32)
    inner_payload = reader.prefixed()
    requested_receiver_value = reader.uint(32)
    extra_receiver_value = reader.uint(32)
    gas_limit, refund_per_gas = decode_execution_info(reader.prefixed())
    refund_chain = reader.uint(2)
    refund_address = reader.take(32)
    refund_delivery_provider = reader.take(32)
    source_delivery_provider = reader.take(32)
    sender_address = reader.take(32)

    vaa_keys: List[VaaKey] = []
    for _ in range(reader.uint(1)):
        key_type = reader.uint(1)
        if key_type == VAA_KEY_TYPE:
            vaa_keys.append(reader.vaa_key())
        else:
            # Non-VAA message keys are length prefixed and carry nothing this package fetches.
            reader.prefixed()
    reader.finish()

    return DeliveryInstruction(
        source_chain=source_chain,
        target_chain=target_chain,
        target_address=target_address,
        payload=inner_payload,
        requested_receiver_value=requested_receiver_value,
        extra_receiver_value=extra_receiver_value,
        gas_limit=gas_limit,
        target_chain_refund_per_gas_unused=refund_per_gas,
        refund_chain=refund_chain,
        refund_address=refund_address,
        refund_delivery_provider=refund_delivery_provider,
        source_delivery_provider=source_delivery_provider,
        sender_address=sender_address,
        source_delivery_sequence_number=sequence,
        vaa_keys=tuple(vaa_keys),
    )


def encode_delivery_instruction(instruction: DeliveryInstruction) -> bytes:
    keys = b"".join(_u(VAA_KEY_TYPE, 1) + encode_vaa_key(key) for key in instruction.vaa_keys)
    return (
        _u(DELIVERY_INSTRUCTION_ID, 1)
        + _u(instruction.target_chain, 2)
        + instruction.target_address
        + _prefixed(instruction.payload)
        + _u(instruction.requested_receiver_value, 32)
        + _u(instruction.extra_receiver_value, 32)
        + _prefixed(encode_execution_info(instruction.gas_limit, instruction.target_chain_refund_per_gas_unused))
        + _u(instruction.refund_chain, 2)
        + instruction.refund_address
        + instruction.refund_delivery_provider
        + instruction.source_delivery_provider
        + instruction.sender_address
        + _u(len(instruction.vaa_keys), 1)
        + keys
    )


def decode_redelivery_instruction(payload: bytes) -> RedeliveryInstruction:
    reader = _Reader(as_bytes(payload), "RedeliveryInstruction")
    kind = reader.uint(1)
    if kind != REDELIVERY_INSTRUCTION_ID:
        raise DecodeError(f"Expected redelivery instruction payload id {REDELIVERY_INSTRUCTION_ID}, got {kind}")
    key = reader.vaa_key()
    target_chain = reader.uint(2)
    receiver_value = reader.uint(32)
    gas_limit, refund_per_gas = decode_execution_info(reader.prefixed())
    provider = reader.take(32)
    sender = reader.take(32)
    reader.finish()
    return RedeliveryInstruction(
        delivery_vaa_key=key,
        target_chain=target_chain,
        new_requested_receiver_value=receiver_value,
        new_gas_limit=gas_limit,
        new_target_chain_refund_per_gas_unused=refund_per_gas,
        new_source_delivery_provider=provider,
        new_sender_address=sender,
    )


def encode_redelivery_instruction(instruction: RedeliveryInstruction) -> bytes:
    return (
        _u(REDELIVERY_INSTRUCTION_ID, 1)
        + encode_vaa_key(instruction.delivery_vaa_key)
        + _u(instruction.target_chain, 2)
        + _u(instruction.new_requested_receiver_value, 32)
        + _prefixed(encode_execution_info(instruction.new_gas_limit, instruction.new_target_chain_refund_per_gas_unused))
        + instruction.new_source_delivery_provider
        + instruction.new_sender_address
    )


# -- Event logs -------------------------------------------------------------


@dataclass(frozen=True)
class PublishedMessage:
    """``LogMessagePublished`` emitted by the core bridge."""

    sender: str
    sequence: int
    nonce: int
    payload: bytes
    consistency_level: int
    block_number: int
    log_index: int
    transaction_hash: str


@dataclass(frozen=True)
class SendEventLog:
    sequence: int
    delivery_quote: int
    payment_for_extra_receiver_value: int


@dataclass(frozen=True)
class DeliveryLog:
    """``Delivery`` emitted by the target relayer contract."""

    recipient: str
    source_chain: int
    sequence: int
    delivery_vaa_hash: bytes
    status_code: int
    gas_used: int
    refund_status_code: int
    additional_status_info: bytes
    overrides_info: bytes
    block_number: int
    log_index: int
    transaction_hash: str


def _topics(log: Mapping[str, Any], expected: bytes, count: int, name: str) -> List[bytes]:
    topics = [as_bytes(topic) for topic in log.get("topics", [])]
    if not topics or topics[0] != bytes(expected):
        raise DecodeError(f"Log is not a {name} event")
    if len(topics) != count:
        raise DecodeError(f"{name} log has {len(topics)} topics, expected {count}")
    return topics


def _decode_data(types: List[str], log: Mapping[str, Any], name: str) -> Tuple[Any, ...]:
    try:
        return abi_decode(types, as_bytes(log.get("data", b"")))
    except (DecodingError, ValueError) as exc:
        raise DecodeError(f"Malformed {name} log data: {exc}") from exc


def _topic_uint(topic: bytes) -> int:
    return int.from_bytes(topic, "big")


def topic_for_uint(value: int) -> str:
    return to_hex(_u(value, 32))


def is_topic(log: Mapping[str, Any], topic: bytes) -> bool:
    topics = log.get("topics") or []
    return bool(topics) and as_bytes(topics[0]) == bytes(topic)


def decode_published_message(log: Mapping[str, Any]) -> PublishedMessage:
    topics = _topics(log, LOG_MESSAGE_PUBLISHED_TOPIC, 2, "LogMessagePublished")
    sequence, nonce, payload, consistency = _decode_data(["uint64", "uint32", "bytes", "uint8"], log, "LogMessagePublished")
    return PublishedMessage(
        sender=Web3.to_checksum_address(topics[1][12:]),
        sequence=sequence,
        nonce=nonce,
        payload=payload,
        consistency_level=consistency,
        block_number=int(log["blockNumber"]),
        log_index=int(log["logIndex"]),
        transaction_hash=to_hex(log["transactionHash"]),
    )


def decode_send_event(log: Mapping[str, Any]) -> SendEventLog:
    topics = _topics(log, SEND_EVENT_TOPIC, 2, "SendEvent")
    quote, extra = _decode_data(["uint256", "uint256"], log, "SendEvent")
    return SendEventLog(sequence=_topic_uint(topics[1]), delivery_quote=quote, payment_for_extra_receiver_value=extra)


def decode_delivery_log(log: Mapping[str, Any]) -> DeliveryLog:
    topics = _topics(log, DELIVERY_TOPIC, 4, "Delivery")
    vaa_hash, status, gas_used, refund_status, additional, overrides = _decode_data(
        ["bytes32", "uint8", "uint256", "uint8", "bytes", "bytes"], log, "Delivery"
    )
    return DeliveryLog(
        recipient=Web3.to_checksum_address(topics[1][12:]),
        source_chain=_topic_uint(topics[2]),
        sequence=_topic_uint(topics[3]),
        delivery_vaa_hash=vaa_hash,
        status_code=status,
        gas_used=gas_used,
        refund_status_code=refund_status,
        additional_status_info=additional,
        overrides_info=overrides,
        block_number=int(log["blockNumber"]),
        log_index=int(log["logIndex"]),
        transaction_hash=to_hex(log["transactionHash"]),
    )


def describe_revert(data: bytes) -> Optional[str]:
    """Render receiver revert data as text: ``Error(string)`` payloads decoded, anything else as hex."""
    if not data:
        return None
    if data[:4] == _ERROR_SELECTOR:
        try:
            (message,) = abi_decode(["string"], data[4:])
            return message
        except (DecodingError, ValueError):
            pass
    return to_hex(data)


__all__ = [
    "DELIVERY_INSTRUCTION_ID",
    "DELIVERY_TOPIC",
    "DeliveryLog",
    "LOG_MESSAGE_PUBLISHED_TOPIC",
    "PublishedMessage",
    "REDELIVERY_INSTRUCTION_ID",
    "SEND_EVENT_TOPIC",
    "SendEventLog",
    "build_vaa_body",
    "decode_delivery_instruction",
    "decode_delivery_log",
    "decode_execution_info",
    "decode_published_message",
    "decode_redelivery_instruction",
    "decode_send_event",
    "decode_vaa_key",
    "describe_revert",
    "encode_delivery_instruction",
    "encode_execution_info",
    "encode_redelivery_instruction",
    "encode_vaa_key",
    "is_topic",
    "parse_vaa",
    "payload_id",
    "topic_for_uint",
    "vaa_body_hash",
]
