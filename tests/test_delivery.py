import base64

import pytest

from xchain_relayer.core import AttestationFetcher, DecodeError, DeliveryReverted, DeliverySubmitter, VaaKey
from xchain_relayer.core.attestation import signed_vaa_url
from xchain_relayer.core.codec import encode_delivery_instruction
from xchain_relayer.core.delivery import delivery_budget
from xchain_relayer.core.errors import AttestationMalformed

from tests.fakes import (
    BSC_CORE,
    BSC_RELAYER,
    PROVIDER,
    FakeResponse,
    FakeSession,
    install_price_contracts,
    make_instruction,
    make_vaa,
)

EXTRA_KEY = VaaKey.create(2, PROVIDER, 5)


@pytest.fixture
def target(bsc):
    return install_price_contracts(bsc, relayer=BSC_RELAYER, core=BSC_CORE, message_fee=7)


@pytest.fixture
def extra_vaa():
    return make_vaa(b"token transfer", emitter=PROVIDER, sequence=5)


@pytest.fixture
def submitter(registry, extra_vaa):
    url = signed_vaa_url("http://guardian.test", EXTRA_KEY)
    session = FakeSession({url: [FakeResponse(200, {"vaaBytes": base64.b64encode(extra_vaa).decode()})]})
    return DeliverySubmitter(registry, AttestationFetcher(backoff_initial=0, session=session))


def _delivery_vaa(**kwargs):
    instruction = make_instruction(**kwargs)
    return instruction, make_vaa(encode_delivery_instruction(instruction))


def test_delivery_budget_covers_receiver_refund_and_fee():
    instruction = make_instruction(gas_limit=100_000, receiver_value=10, extra_receiver_value=3, refund_per_gas=2)

    assert delivery_budget(instruction, 7) == 10 + 3 + 200_000 + 7


def test_deliver_with_additional_attestations(submitter, target, bsc, signer, extra_vaa):
    _, vaa = _delivery_vaa(
        gas_limit=100_000, receiver_value=10, extra_receiver_value=3, refund_per_gas=2, vaa_keys=(EXTRA_KEY,)
    )

    receipt = submitter.deliver(vaa, signer, "http://g-extra", "DEVNET", deadline_seconds=2)

    assert receipt["status"] == 1
    assert len(bsc.sent) == 1
    name, args, tx = target["relayer"].built[0]
    assert name == "deliver"
    assert args == ([extra_vaa], vaa, signer.address, b"")
    assert tx["value"] == 200_020
    assert tx["from"] == signer.address


def test_plan_without_additional_attestations(submitter, target):
    instruction, vaa = _delivery_vaa(receiver_value=4)

    plan = submitter.plan(vaa, [], "DEVNET")

    assert plan.additional_vaas == []
    assert plan.instruction == instruction
    assert plan.value == 4 + 7
    assert plan.delivery.vaa.key == VaaKey.create(2, plan.delivery.vaa.emitter_address, 7)


def test_explicit_value_override(submitter, target, signer):
    _, vaa = _delivery_vaa()

    submitter.deliver(vaa, signer, [], tx_overrides={"value": 999, "gas": 300_000})

    _, _, tx = target["relayer"].built[0]
    assert tx["value"] == 999
    assert tx["gas"] == 300_000
    assert target["relayer"].estimates == []


def test_simulated_revert_sends_nothing(submitter, target, bsc, signer):
    _, vaa = _delivery_vaa()
    target["relayer"].revert = "invalid emitter"

    with pytest.raises(DeliveryReverted, match="invalid emitter"):
        submitter.deliver(vaa, signer, [])

    assert bsc.sent == []


def test_mined_revert_is_reported(submitter, target, bsc, signer):
    _, vaa = _delivery_vaa()
    bsc.mined_status = 0

    with pytest.raises(DeliveryReverted):
        submitter.deliver(vaa, signer, [])


def test_non_delivery_payload(submitter, target, signer):
    vaa = make_vaa(b"\x02" + b"\x00" * 20)

    with pytest.raises(DecodeError):
        submitter.deliver(vaa, signer, [])


def test_malformed_attestation(submitter, signer):
    with pytest.raises(AttestationMalformed):
        submitter.deliver(b"\x01\x02", signer, [])
