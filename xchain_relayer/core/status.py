"""Delivery lifecycle tracking across the source and target chains."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from web3 import Web3
from web3.exceptions import TransactionNotFound

from xchain_relayer.config import Network
from xchain_relayer.core.attestation import AttestationFetcher
from xchain_relayer.core.codec import (
    DELIVERY_INSTRUCTION_ID,
    DELIVERY_TOPIC,
    LOG_MESSAGE_PUBLISHED_TOPIC,
    SEND_EVENT_TOPIC,
    DeliveryLog,
    PublishedMessage,
    SendEventLog,
    build_vaa_body,
    decode_delivery_instruction,
    decode_delivery_log,
    decode_published_message,
    decode_send_event,
    describe_revert,
    is_topic,
    payload_id,
    topic_for_uint,
    vaa_body_hash,
)
from xchain_relayer.core.errors import DecodeError, InsufficientGasLimit, NoDeliveryRequestFound, SourceTransactionPending
from xchain_relayer.core.models import (
    DeliveryEvent,
    DeliveryInfo,
    DeliveryInstruction,
    DeliveryStatus,
    RefundStatus,
    TargetChainStatus,
    VaaKey,
)
from xchain_relayer.core.pricing import PriceOracle
from xchain_relayer.core.registry import ChainHandle, ChainProviderRegistry, ChainRef
from xchain_relayer.core.utils import bytes32_to_checksum, get_logger, rpc_errors, to_hex, wait_or_cancel

LOGGER = get_logger("xchain_relayer.status")

STATUS_BY_CODE: Dict[int, DeliveryStatus] = {
    0: DeliveryStatus.DELIVERY_SUCCESS,
    1: DeliveryStatus.RECEIVER_FAILURE,
    2: DeliveryStatus.FORWARD_REQUEST_FAILURE,
    3: DeliveryStatus.FORWARD_REQUEST_SUCCESS,
}

BlockRange = Tuple[int, int]
EnvironmentRef = Optional[Union[Network, str]]


@dataclass(frozen=True)
class _DeliveryRequest:
    message: PublishedMessage
    send_event: Optional[SendEventLog]
    timestamp: int


def _same_address(left: str, right: str) -> bool:
    return left.lower() == right.lower()


class StatusTracker:
    """Reduces raw logs on both chains into a :class:`DeliveryInfo`.

    Target-chain logs are only searched in a bounded window ending at the
    current head: ``scan_block_range`` blocks (``defaults.scan_block_range``
    in the config), queried in chunks of ``max_log_range`` blocks. A delivery
    older than the window reads as pending; pass ``target_block_range`` to
    look further back.

    Results are never cached; each call reads fresh chain state.
    """

    def __init__(
        self,
        registry: ChainProviderRegistry,
        *,
        fetcher: Optional[AttestationFetcher] = None,
        attestation_endpoints: Optional[Sequence[str]] = None,
        oracle: Optional[PriceOracle] = None,
        scan_block_range: Optional[int] = None,
        max_log_range: Optional[int] = None,
        max_forward_depth: Optional[int] = None,
    ) -> None:
        defaults = registry.config.defaults
        self.registry = registry
        self.fetcher = fetcher
        self.attestation_endpoints = tuple(
            attestation_endpoints if attestation_endpoints is not None else registry.config.guardian_rpcs
        )
        self.oracle = oracle
        self.scan_block_range = scan_block_range or defaults.scan_block_range
        self.max_log_range = max_log_range or defaults.max_log_range
        self.max_forward_depth = defaults.max_forward_depth if max_forward_depth is None else max_forward_depth

    # -- public API ---------------------------------------------------------

    def get_info(
        self,
        source_chain: ChainRef,
        source_tx_hash: str,
        environment: EnvironmentRef = None,
        *,
        message_index: int = 0,
        target_block_range: Optional[BlockRange] = None,
    ) -> DeliveryInfo:
        """Summarise the ``message_index``-th delivery request emitted by ``source_tx_hash``."""
        source = self.registry.handle(source_chain, environment)
        requests_found = self._delivery_requests(source, source_tx_hash)
        if message_index >= len(requests_found):
            raise NoDeliveryRequestFound(
                f"Transaction {source_tx_hash} has {len(requests_found)} delivery requests, index {message_index} requested"
            )
        return self._resolve(source, requests_found[message_index], environment, target_block_range, depth=0)

    def get_all_info(
        self,
        source_chain: ChainRef,
        source_tx_hash: str,
        environment: EnvironmentRef = None,
        *,
        target_block_range: Optional[BlockRange] = None,
    ) -> List[DeliveryInfo]:
        """Summaries for every delivery request emitted by ``source_tx_hash``."""
        source = self.registry.handle(source_chain, environment)
        return [
            self._resolve(source, request, environment, target_block_range, depth=0)
            for request in self._delivery_requests(source, source_tx_hash)
        ]

    def wait_for_delivery(
        self,
        source_chain: ChainRef,
        source_tx_hash: str,
        environment: EnvironmentRef = None,
        *,
        deadline_seconds: Optional[float] = None,
        poll_interval: float = 2.0,
        max_interval: float = 30.0,
        message_index: int = 0,
        cancel: Optional[threading.Event] = None,
    ) -> DeliveryInfo:
        """Poll until the delivery reaches a terminal status or the deadline passes.

        Returns the last observed summary either way; check ``info.status``.
        A source transaction that is not mined yet is polled for as well;
        ``SourceTransactionPending`` is raised if it is still missing at the
        deadline.
        """
        budget = deadline_seconds or self.registry.config.defaults.delivery_wait_deadline
        deadline = time.monotonic() + budget
        delay = poll_interval
        while True:
            try:
                info = self.get_info(source_chain, source_tx_hash, environment, message_index=message_index)
            except SourceTransactionPending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise
                LOGGER.info("Source transaction %s not mined yet, polling again in %.1fs", source_tx_hash, min(delay, remaining))
            else:
                remaining = deadline - time.monotonic()
                if info.status.is_terminal or remaining <= 0:
                    return info
                LOGGER.info(
                    "Delivery %s still %s, polling again in %.1fs", source_tx_hash, info.status.value, min(delay, remaining)
                )
            wait_or_cancel(min(delay, remaining), cancel)
            delay = min(delay * 2, max_interval)

    # -- source chain -------------------------------------------------------

    def _delivery_requests(self, source: ChainHandle, tx_hash: str) -> List[_DeliveryRequest]:
        web3 = source.web3
        try:
            with rpc_errors("source receipt lookup"):
                receipt = web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound as exc:
            raise SourceTransactionPending(f"Transaction {tx_hash} not found on chain {source.chain_id}") from exc

        relayer = source.config.wormhole_relayer_address
        core = source.config.core_address
        messages: List[PublishedMessage] = []
        send_events: Dict[int, SendEventLog] = {}
        for log in receipt["logs"]:
            if _same_address(log["address"], core) and is_topic(log, LOG_MESSAGE_PUBLISHED_TOPIC):
                message = decode_published_message(log)
                if _same_address(message.sender, relayer) and payload_id(message.payload) == DELIVERY_INSTRUCTION_ID:
                    messages.append(message)
            elif _same_address(log["address"], relayer) and is_topic(log, SEND_EVENT_TOPIC):
                event = decode_send_event(log)
                send_events[event.sequence] = event

        if not messages:
            raise NoDeliveryRequestFound(f"No delivery request log in transaction {tx_hash} on chain {source.chain_id}")

        with rpc_errors("source block lookup"):
            timestamp = int(web3.eth.get_block(receipt["blockNumber"])["timestamp"])
        return [_DeliveryRequest(message, send_events.get(message.sequence), timestamp) for message in messages]

    def _resolve(
        self,
        source: ChainHandle,
        request: _DeliveryRequest,
        environment: EnvironmentRef,
        block_range: Optional[BlockRange],
        depth: int,
    ) -> DeliveryInfo:
        message = request.message
        instruction = decode_delivery_instruction(message.payload, source_chain=source.chain_id, sequence=message.sequence)
        key = VaaKey.create(source.chain_id, Web3.to_bytes(hexstr=source.config.wormhole_relayer_address), message.sequence)
        vaa_hash = vaa_body_hash(
            build_vaa_body(
                timestamp=request.timestamp,
                nonce=message.nonce,
                emitter_chain=key.emitter_chain,
                emitter_address=key.emitter_address,
                sequence=key.sequence,
                consistency_level=message.consistency_level,
                payload=message.payload,
            )
        )

        target = self.registry.handle(instruction.target_chain, environment)
        logs = self._scan_deliveries(target, key, vaa_hash, block_range)
        events = [self._event_from_log(target, log, environment, depth) for log in logs]
        if not events:
            events = [self._undelivered_event(instruction, key, vaa_hash, request.send_event, environment)]

        LOGGER.info(
            "Delivery %s/%s seq=%s -> chain %s: %s (%s events)",
            source.chain_id,
            message.transaction_hash,
            key.sequence,
            target.chain_id,
            events[-1].status.value,
            len(events),
        )
        return DeliveryInfo(
            source_chain=source.chain_id,
            source_transaction_hash=message.transaction_hash,
            source_delivery_sequence_number=message.sequence,
            vaa_key=key,
            vaa_hash=to_hex(vaa_hash),
            instruction=instruction,
            target_chain_status=TargetChainStatus(chain_id=target.chain_id, events=tuple(events)),
            delivery_quote=request.send_event.delivery_quote if request.send_event else None,
            payment_for_extra_receiver_value=(
                request.send_event.payment_for_extra_receiver_value if request.send_event else None
            ),
        )

    # -- target chain -------------------------------------------------------

    def _scan_deliveries(
        self,
        target: ChainHandle,
        key: VaaKey,
        vaa_hash: bytes,
        block_range: Optional[BlockRange],
    ) -> List[DeliveryLog]:
        if block_range is not None:
            start, end = block_range
        else:
            with rpc_errors("target head lookup"):
                end = int(target.web3.eth.block_number)
            start = max(0, end - self.scan_block_range)

        topics = [to_hex(DELIVERY_TOPIC), None, topic_for_uint(key.emitter_chain), topic_for_uint(key.sequence)]
        found: List[DeliveryLog] = []
        for chunk_start in range(start, end + 1, self.max_log_range):
            chunk_end = min(chunk_start + self.max_log_range - 1, end)
            with rpc_errors("target log scan"):
                raw_logs = target.web3.eth.get_logs(
                    {
                        "address": target.config.wormhole_relayer_address,
                        "fromBlock": chunk_start,
                        "toBlock": chunk_end,
                        "topics": topics,
                    }
                )
            for raw in raw_logs:
                log = decode_delivery_log(raw)
                if log.delivery_vaa_hash == vaa_hash:
                    found.append(log)
        found.sort(key=lambda item: (item.block_number, item.log_index))
        return found

    def _event_from_log(
        self,
        target: ChainHandle,
        log: DeliveryLog,
        environment: EnvironmentRef,
        depth: int,
    ) -> DeliveryEvent:
        status = STATUS_BY_CODE.get(log.status_code)
        if status is None:
            raise DecodeError(f"Unknown delivery status code {log.status_code} in {log.transaction_hash}")
        try:
            refund_status = RefundStatus(log.refund_status_code)
        except ValueError as exc:
            raise DecodeError(f"Unknown refund status code {log.refund_status_code} in {log.transaction_hash}") from exc

        forwards: Tuple[DeliveryInfo, ...] = ()
        if status is DeliveryStatus.FORWARD_REQUEST_SUCCESS:
            if depth >= self.max_forward_depth:
                LOGGER.warning("Not following forwards of %s: depth limit %s reached", log.transaction_hash, self.max_forward_depth)
            else:
                forwards = self._forwards(target, log.transaction_hash, environment, depth + 1)

        failed = status in (DeliveryStatus.RECEIVER_FAILURE, DeliveryStatus.FORWARD_REQUEST_FAILURE)
        return DeliveryEvent(
            status=status,
            vaa_hash=to_hex(log.delivery_vaa_hash),
            transaction_hash=log.transaction_hash,
            block_number=log.block_number,
            log_index=log.log_index,
            gas_used=log.gas_used,
            refund_status=refund_status,
            revert_string=describe_revert(log.additional_status_info) if failed else None,
            is_redelivery=bool(log.overrides_info),
            forwards=forwards,
        )

    def _forwards(
        self,
        target: ChainHandle,
        tx_hash: str,
        environment: EnvironmentRef,
        depth: int,
    ) -> Tuple[DeliveryInfo, ...]:
        try:
            requests_found = self._delivery_requests(target, tx_hash)
        except NoDeliveryRequestFound as exc:
            LOGGER.warning("Forward reported by %s but no forwarded request found: %s", tx_hash, exc)
            return ()
        return tuple(self._resolve(target, request, environment, None, depth) for request in requests_found)

    def _undelivered_event(
        self,
        instruction: DeliveryInstruction,
        key: VaaKey,
        vaa_hash: bytes,
        send_event: Optional[SendEventLog],
        environment: EnvironmentRef,
    ) -> DeliveryEvent:
        status = DeliveryStatus.PENDING
        if self.fetcher is not None and self.attestation_endpoints:
            if self.fetcher.probe(self.attestation_endpoints, key) is None:
                status = DeliveryStatus.WAITING_FOR_VAA
        if status is DeliveryStatus.PENDING and self.oracle is not None and send_event is not None:
            if self._underfunded(instruction, send_event, environment):
                status = DeliveryStatus.THROWN_AWAY
        return DeliveryEvent(status=status, vaa_hash=to_hex(vaa_hash))

    def _underfunded(self, instruction: DeliveryInstruction, send_event: SendEventLog, environment: EnvironmentRef) -> bool:
        """True when the paid quote no longer covers what the provider charges for this instruction."""
        try:
            quote = self.oracle.quote_breakdown(
                instruction.source_chain,
                instruction.target_chain,
                instruction.gas_limit,
                environment=environment,
                receiver_value=instruction.requested_receiver_value,
                delivery_provider=bytes32_to_checksum(instruction.source_delivery_provider),
            )
        except InsufficientGasLimit:
            return True
        return send_event.delivery_quote < quote.delivery_price


__all__ = ["BlockRange", "STATUS_BY_CODE", "StatusTracker"]
