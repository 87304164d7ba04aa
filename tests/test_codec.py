import pytest
from eth_abi import encode as abi_encode
from web3 import Web3

from xchain_relayer.core.codec import (
    decode_delivery_instruction,
    decode_delivery_log,
    decode_execution_info,
    decode_redelivery_instruction,
    decode_send_event,
    decode_vaa_key,
    describe_revert,
    encode_delivery_instruction,
    encode_execution_info,
    encode_redelivery_instruction,
    encode_vaa_key,
    parse_vaa,
)
from xchain_relayer.core.errors import DecodeError
from xchain_relayer.core.models import RedeliveryInstruction, VaaKey
from xchain_relayer.core.utils import to_bytes32

from tests.fakes import BSC_RELAYER, ETH_RELAYER, PROVIDER, delivery_log, make_instruction, make_vaa, send_event_log


def test_vaa_key_pads_native_address():
    key = VaaKey.create(2, ETH_RELAYER, 42)

    assert key.emitter_address == b"\x00" * 12 + bytes.fromhex(ETH_RELAYER[2:])
    assert key.emitter_hex == "0" * 24 + ETH_RELAYER[2:].lower()
    assert key.native_emitter_address() == bytes.fromhex(ETH_RELAYER[2:])


def test_vaa_key_wire_form_is_42_bytes():
    key = VaaKey.create(2, ETH_RELAYER, 2**64 - 1)
    encoded = encode_vaa_key(key)

    assert len(encoded) == 42
    assert encoded[:2] == b"\x00\x02"
    assert decode_vaa_key(encoded) == key


@pytest.mark.parametrize(
    "args",
    [(2**16, ETH_RELAYER, 1), (2, ETH_RELAYER, 2**64), (-1, ETH_RELAYER, 1)],
)
def test_vaa_key_rejects_out_of_range(args):
    with pytest.raises(ValueError):
        VaaKey.create(*args)


def test_vaa_key_rejects_wrong_emitter_width():
    with pytest.raises(ValueError):
        VaaKey(2, b"\x01" * 20, 1)


def test_decode_vaa_key_rejects_trailing_bytes():
    encoded = encode_vaa_key(VaaKey.create(2, ETH_RELAYER, 1)) + b"\x00"
    with pytest.raises(DecodeError, match="trailing"):
        decode_vaa_key(encoded)


def test_parse_vaa_hash_is_double_keccak_of_body():
    vaa = make_vaa(b"\x01payload", sequence=9)
    parsed = parse_vaa(vaa)
    body = vaa[1 + 4 + 1 + 66 :]

    assert parsed.hash == bytes(Web3.keccak(Web3.keccak(body)))
    assert parsed.sequence == 9
    assert parsed.emitter_chain == 2
    assert parsed.payload == b"\x01payload"
    assert len(parsed.signatures) == 1
    assert parsed.key == VaaKey.create(2, ETH_RELAYER, 9)


def test_parse_vaa_rejects_truncated_input():
    vaa = make_vaa(b"")
    with pytest.raises(DecodeError):
        parse_vaa(vaa[:40])


def test_parse_vaa_rejects_unknown_version():
    vaa = b"\x02" + make_vaa(b"")[1:]
    with pytest.raises(DecodeError, match="version"):
        parse_vaa(vaa)


def test_delivery_instruction_survives_encoding():
    keys = (VaaKey.create(2, PROVIDER, 5), VaaKey.create(4, BSC_RELAYER, 6))
    instruction = make_instruction(gas_limit=250_000, receiver_value=7, refund_per_gas=3, vaa_keys=keys)

    decoded = decode_delivery_instruction(encode_delivery_instruction(instruction), source_chain=2, sequence=7)

    assert decoded == instruction
    assert decoded.max_refund == 750_000


def test_delivery_instruction_skips_non_vaa_message_keys():
    instruction = make_instruction()
    encoded = bytearray(encode_delivery_instruction(instruction))
    # one non-VAA key: type 2, length prefixed
    encoded[-1] = 1
    encoded += b"\x02" + (3).to_bytes(4, "big") + b"abc"

    decoded = decode_delivery_instruction(bytes(encoded), source_chain=2, sequence=7)

    assert decoded.vaa_keys == ()


def test_delivery_instruction_rejects_wrong_payload_id():
    payload = b"\x02" + encode_delivery_instruction(make_instruction())[1:]
    with pytest.raises(DecodeError, match="payload id"):
        decode_delivery_instruction(payload, source_chain=2, sequence=7)


def test_delivery_instruction_rejects_truncation_and_trailing_bytes():
    payload = encode_delivery_instruction(make_instruction())
    with pytest.raises(DecodeError):
        decode_delivery_instruction(payload[:-5], source_chain=2, sequence=7)
    with pytest.raises(DecodeError, match="trailing"):
        decode_delivery_instruction(payload + b"\x00", source_chain=2, sequence=7)


def test_execution_info_layout():
    encoded = encode_execution_info(123_456, 9)

    assert len(encoded) == 96
    assert decode_execution_info(encoded) == (123_456, 9)
    with pytest.raises(DecodeError, match="version"):
        decode_execution_info(abi_encode(["uint8", "uint256", "uint256"], [1, 1, 1]))


def test_redelivery_instruction_survives_encoding():
    instruction = RedeliveryInstruction(
        delivery_vaa_key=VaaKey.create(2, ETH_RELAYER, 7),
        target_chain=4,
        new_requested_receiver_value=10,
        new_gas_limit=600_000,
        new_target_chain_refund_per_gas_unused=0,
        new_source_delivery_provider=to_bytes32(PROVIDER),
        new_sender_address=to_bytes32(ETH_RELAYER),
    )

    assert decode_redelivery_instruction(encode_redelivery_instruction(instruction)) == instruction


def test_decode_delivery_log_reads_indexed_fields():
    vaa_hash = b"\x07" * 32
    log = decode_delivery_log(delivery_log(BSC_RELAYER, 2, 7, vaa_hash, status=1, additional=b"oops", block=12, index=3))

    assert log.source_chain == 2
    assert log.sequence == 7
    assert log.delivery_vaa_hash == vaa_hash
    assert log.status_code == 1
    assert log.additional_status_info == b"oops"
    assert (log.block_number, log.log_index) == (12, 3)


def test_decode_delivery_log_rejects_other_events():
    with pytest.raises(DecodeError, match="not a Delivery"):
        decode_delivery_log(send_event_log(BSC_RELAYER, 7, 100))


def test_decode_delivery_log_rejects_garbage_data():
    raw = delivery_log(BSC_RELAYER, 2, 7, b"\x01" * 32)
    raw["data"] = raw["data"][:40]
    with pytest.raises(DecodeError, match="Malformed"):
        decode_delivery_log(raw)


def test_decode_send_event():
    event = decode_send_event(send_event_log(ETH_RELAYER, 11, 5_000, 6))

    assert (event.sequence, event.delivery_quote, event.payment_for_extra_receiver_value) == (11, 5_000, 6)


def test_describe_revert():
    reason = bytes.fromhex("08c379a0") + abi_encode(["string"], ["receiver said no"])

    assert describe_revert(reason) == "receiver said no"
    assert describe_revert(b"\xde\xad") == "0xdead"
    assert describe_revert(b"") is None
