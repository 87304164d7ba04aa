import threading

import pytest
from eth_abi import encode as abi_encode

from xchain_relayer.core import (
    DecodeError,
    DeliveryStatus,
    NoDeliveryRequestFound,
    OperationCancelled,
    PriceOracle,
    RefundStatus,
    SourceTransactionPending,
    StatusTracker,
    UnknownChain,
)
from xchain_relayer.core.codec import encode_delivery_instruction
from xchain_relayer.core.utils import to_hex

from tests.fakes import (
    BSC_CHAIN,
    BSC_CORE,
    BSC_RELAYER,
    ETH_CHAIN,
    ETH_CORE,
    ETH_RELAYER,
    add_delivery_request,
    delivery_log,
    install_price_contracts,
    make_instruction,
    published_log,
    tx_hash,
)

SOURCE_TX = tx_hash(1)


class _Probe:
    """Attestation fetcher double recording probes."""

    def __init__(self, signed):
        self.signed = signed
        self.keys = []

    def probe(self, endpoints, key):
        self.keys.append(key)
        return object() if self.signed else None


@pytest.fixture
def vaa_hash(eth):
    return add_delivery_request(eth, core=ETH_CORE, relayer=ETH_RELAYER, chain=ETH_CHAIN, instruction=make_instruction())


def test_missing_transaction(registry):
    with pytest.raises(NoDeliveryRequestFound, match="not found"):
        StatusTracker(registry).get_info(ETH_CHAIN, tx_hash(99))


def test_transaction_without_delivery_request(registry, eth):
    eth.receipts[SOURCE_TX] = {
        "blockNumber": 100,
        "logs": [published_log(ETH_CORE, "0x" + "99" * 20, 1, encode_delivery_instruction(make_instruction()))],
    }

    with pytest.raises(NoDeliveryRequestFound):
        StatusTracker(registry).get_info(ETH_CHAIN, SOURCE_TX)


def test_unknown_source_chain(registry):
    with pytest.raises(UnknownChain):
        StatusTracker(registry).get_info(30, SOURCE_TX)


def test_pending_until_delivered(registry, vaa_hash):
    tracker = StatusTracker(registry)

    first = tracker.get_info("ethereum", SOURCE_TX, "DEVNET")
    second = tracker.get_info("ethereum", SOURCE_TX, "DEVNET")

    for info in (first, second):
        assert info.status is DeliveryStatus.PENDING
        assert len(info.target_chain_status.events) == 1
        assert info.target_chain == BSC_CHAIN
        assert info.vaa_hash == to_hex(vaa_hash)
        assert info.delivery_quote == 10**15


def test_successful_delivery(registry, bsc, vaa_hash):
    bsc.logs.append(delivery_log(BSC_RELAYER, ETH_CHAIN, 7, vaa_hash, status=0, gas_used=81_000))

    info = StatusTracker(registry).get_info(ETH_CHAIN, SOURCE_TX)

    assert info.status is DeliveryStatus.DELIVERY_SUCCESS
    event = info.target_chain_status.events[0]
    assert event.transaction_hash == tx_hash(2)
    assert event.gas_used == 81_000
    assert event.refund_status is RefundStatus.NO_REFUND_REQUESTED
    assert event.revert_string is None
    assert not event.is_redelivery
    assert info.source_delivery_sequence_number == 7
    assert info.vaa_key.emitter_chain == ETH_CHAIN


def test_logs_for_other_deliveries_are_ignored(registry, bsc, vaa_hash):
    bsc.logs.append(delivery_log(BSC_RELAYER, ETH_CHAIN, 7, b"\x01" * 32))
    bsc.logs.append(delivery_log(BSC_RELAYER, ETH_CHAIN, 8, vaa_hash))

    info = StatusTracker(registry).get_info(ETH_CHAIN, SOURCE_TX)

    assert info.status is DeliveryStatus.PENDING


def test_receiver_failure_then_redelivery(registry, bsc, vaa_hash):
    bsc.logs.append(
        delivery_log(BSC_RELAYER, ETH_CHAIN, 7, vaa_hash, status=0, overrides=b"\x01new budget", block=470, transaction=tx_hash(3))
    )
    revert = bytes.fromhex("08c379a0") + abi_encode(["string"], ["no thanks"])
    bsc.logs.append(delivery_log(BSC_RELAYER, ETH_CHAIN, 7, vaa_hash, status=1, additional=revert, block=450))

    info = StatusTracker(registry).get_info(ETH_CHAIN, SOURCE_TX)

    failure, redelivery = info.target_chain_status.events
    assert failure.status is DeliveryStatus.RECEIVER_FAILURE
    assert failure.revert_string == "no thanks"
    assert not failure.is_redelivery
    assert redelivery.status is DeliveryStatus.DELIVERY_SUCCESS
    assert redelivery.is_redelivery
    assert redelivery.block_number > failure.block_number
    assert info.status is DeliveryStatus.DELIVERY_SUCCESS


def test_forward_is_followed_to_its_own_delivery(registry, eth, bsc, vaa_hash):
    forward_tx = tx_hash(2)
    forward = make_instruction(target_chain=ETH_CHAIN, source_chain=BSC_CHAIN, sequence=3)
    forward_hash = add_delivery_request(
        bsc,
        core=BSC_CORE,
        relayer=BSC_RELAYER,
        chain=BSC_CHAIN,
        instruction=forward,
        sequence=3,
        transaction=forward_tx,
        block=450,
    )
    bsc.logs.append(delivery_log(BSC_RELAYER, ETH_CHAIN, 7, vaa_hash, status=3, block=450, transaction=forward_tx))
    eth.logs.append(delivery_log(ETH_RELAYER, BSC_CHAIN, 3, forward_hash, status=0, block=480, transaction=tx_hash(4)))

    info = StatusTracker(registry).get_info(ETH_CHAIN, SOURCE_TX)

    event = info.target_chain_status.events[0]
    assert event.status is DeliveryStatus.FORWARD_REQUEST_SUCCESS
    (forwarded,) = event.forwards
    assert forwarded.source_chain == BSC_CHAIN
    assert forwarded.target_chain == ETH_CHAIN
    assert forwarded.status is DeliveryStatus.DELIVERY_SUCCESS
    assert forwarded.target_chain_status.events[0].transaction_hash == tx_hash(4)


def test_forward_depth_is_bounded(registry, bsc, vaa_hash):
    bsc.logs.append(delivery_log(BSC_RELAYER, ETH_CHAIN, 7, vaa_hash, status=3))

    info = StatusTracker(registry, max_forward_depth=0).get_info(ETH_CHAIN, SOURCE_TX)

    assert info.status is DeliveryStatus.FORWARD_REQUEST_SUCCESS
    assert info.target_chain_status.events[0].forwards == ()


def test_unknown_status_code(registry, bsc, vaa_hash):
    bsc.logs.append(delivery_log(BSC_RELAYER, ETH_CHAIN, 7, vaa_hash, status=9))

    with pytest.raises(DecodeError, match="status code 9"):
        StatusTracker(registry).get_info(ETH_CHAIN, SOURCE_TX)


def test_scan_is_bounded_and_chunked(registry, bsc, vaa_hash):
    bsc.block_number = 5_000
    bsc.logs.append(delivery_log(BSC_RELAYER, ETH_CHAIN, 7, vaa_hash, block=100))

    tracker = StatusTracker(registry, scan_block_range=2_500, max_log_range=1_000)
    info = tracker.get_info(ETH_CHAIN, SOURCE_TX)

    assert info.status is DeliveryStatus.PENDING
    assert [(q["fromBlock"], q["toBlock"]) for q in bsc.log_queries] == [(2500, 3499), (3500, 4499), (4500, 5000)]

    older = tracker.get_info(ETH_CHAIN, SOURCE_TX, target_block_range=(0, 200))
    assert older.status is DeliveryStatus.DELIVERY_SUCCESS


def test_waiting_for_vaa(registry, vaa_hash):
    probe = _Probe(signed=False)

    info = StatusTracker(registry, fetcher=probe).get_info(ETH_CHAIN, SOURCE_TX)

    assert info.status is DeliveryStatus.WAITING_FOR_VAA
    assert probe.keys == [info.vaa_key]


def test_signed_but_undelivered_is_pending(registry, vaa_hash):
    info = StatusTracker(registry, fetcher=_Probe(signed=True)).get_info(ETH_CHAIN, SOURCE_TX)

    assert info.status is DeliveryStatus.PENDING


def test_underfunded_request_is_thrown_away(registry, eth):
    install_price_contracts(eth)
    add_delivery_request(eth, core=ETH_CORE, relayer=ETH_RELAYER, chain=ETH_CHAIN, instruction=make_instruction(), quote=1)

    info = StatusTracker(registry, oracle=PriceOracle(registry)).get_info(ETH_CHAIN, SOURCE_TX)

    assert info.status is DeliveryStatus.THROWN_AWAY
    assert info.status.is_terminal


def test_funded_request_stays_pending(registry, eth):
    install_price_contracts(eth)
    add_delivery_request(eth, core=ETH_CORE, relayer=ETH_RELAYER, chain=ETH_CHAIN, instruction=make_instruction(), quote=10**16)

    info = StatusTracker(registry, oracle=PriceOracle(registry)).get_info(ETH_CHAIN, SOURCE_TX)

    assert info.status is DeliveryStatus.PENDING


def test_get_all_info_and_message_index(registry, eth):
    second = make_instruction(gas_limit=90_000)
    add_delivery_request(
        eth,
        core=ETH_CORE,
        relayer=ETH_RELAYER,
        chain=ETH_CHAIN,
        instruction=make_instruction(),
        extra_logs=(published_log(ETH_CORE, ETH_RELAYER, 8, encode_delivery_instruction(second), index=2),),
    )
    tracker = StatusTracker(registry)

    infos = tracker.get_all_info(ETH_CHAIN, SOURCE_TX)

    assert [info.source_delivery_sequence_number for info in infos] == [7, 8]
    assert tracker.get_info(ETH_CHAIN, SOURCE_TX, message_index=1).instruction.gas_limit == 90_000
    with pytest.raises(NoDeliveryRequestFound):
        tracker.get_info(ETH_CHAIN, SOURCE_TX, message_index=2)


def test_wait_returns_once_terminal(registry, bsc, vaa_hash):
    bsc.logs.append(delivery_log(BSC_RELAYER, ETH_CHAIN, 7, vaa_hash, status=1))

    info = StatusTracker(registry).wait_for_delivery(ETH_CHAIN, SOURCE_TX, deadline_seconds=1)

    assert info.status is DeliveryStatus.RECEIVER_FAILURE


def test_wait_returns_last_pending_at_deadline(registry, vaa_hash):
    info = StatusTracker(registry).wait_for_delivery(ETH_CHAIN, SOURCE_TX, deadline_seconds=0.05, poll_interval=0.01)

    assert info.status is DeliveryStatus.PENDING


def test_wait_polls_until_source_transaction_is_mined(registry, eth, bsc, vaa_hash, monkeypatch):
    receipt = eth.receipts.pop(SOURCE_TX)
    lookup = eth.get_transaction_receipt
    calls = []

    def mined_on_second_poll(tx):
        calls.append(tx)
        if len(calls) > 1:
            eth.receipts[SOURCE_TX] = receipt
        return lookup(tx)

    monkeypatch.setattr(eth, "get_transaction_receipt", mined_on_second_poll)
    bsc.logs.append(delivery_log(BSC_RELAYER, ETH_CHAIN, 7, vaa_hash, status=0))

    info = StatusTracker(registry).wait_for_delivery(ETH_CHAIN, SOURCE_TX, deadline_seconds=5, poll_interval=0.01)

    assert info.status is DeliveryStatus.DELIVERY_SUCCESS
    assert len(calls) == 2


def test_wait_for_unmined_transaction_gives_up_at_deadline(registry):
    with pytest.raises(SourceTransactionPending, match="not found"):
        StatusTracker(registry).wait_for_delivery(ETH_CHAIN, tx_hash(99), deadline_seconds=0.05, poll_interval=0.01)


def test_wait_can_be_cancelled(registry, vaa_hash):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        StatusTracker(registry).wait_for_delivery(ETH_CHAIN, SOURCE_TX, deadline_seconds=30, cancel=cancel)
