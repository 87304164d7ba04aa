"""Signing and broadcasting of relayer transactions."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from xchain_relayer.core.errors import DeliveryReverted, NonceConflict, ProviderUnreachable
from xchain_relayer.core.utils import get_logger, rpc_errors, to_hex

LOGGER = get_logger("xchain_relayer.transactions")

_NONCE_ERRORS = ("nonce too low", "already known", "replacement transaction underpriced", "nonce has already been used")

_FEE_KEYS = ("gasPrice", "maxFeePerGas", "maxPriorityFeePerGas")


class NonceManager:
    """Serialises nonce assignment per ``(chain, signer)``.

    The per-key lock is held from allocation until the signed transaction
    has been handed to the node, so two submissions from the same key can
    never share a nonce.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[int, str], threading.Lock] = {}
        self._next: Dict[Tuple[int, str], int] = {}

    def _lock_for(self, key: Tuple[int, str]) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def allocate(self, web3: Web3, chain_id: int, address: str, explicit: Optional[int] = None) -> Iterator[int]:
        """Yield the nonce to use; it is consumed only if the block exits cleanly."""
        key = (chain_id, address.lower())
        with self._lock_for(key):
            if explicit is not None:
                nonce = explicit
            else:
                with rpc_errors("nonce lookup"):
                    on_chain = web3.eth.get_transaction_count(address, "pending")
                nonce = max(on_chain, self._next.get(key, 0))
            try:
                yield nonce
            except NonceConflict:
                self._next.pop(key, None)
                raise
            self._next[key] = max(self._next.get(key, 0), nonce + 1)


@dataclass(frozen=True)
class GasParameters:
    """Gas settings applied to a transaction."""

    gas: int
    fees: Mapping[str, int]


def _is_nonce_error(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _NONCE_ERRORS)


def estimate_gas(call: Any, *, sender: str, value: int, gas_buffer: float, overrides: Mapping[str, Any]) -> GasParameters:
    """Estimate gas for ``call`` unless overridden; a simulated revert is ``DeliveryReverted``."""
    if "gas" in overrides:
        gas = int(overrides["gas"])
    else:
        try:
            with rpc_errors("gas estimation"):
                estimate = call.estimate_gas({"from": sender, "value": value})
        except ContractLogicError as exc:
            raise DeliveryReverted(str(exc)) from exc
        gas = int(estimate * gas_buffer)

    fees = {key: int(overrides[key]) for key in _FEE_KEYS if key in overrides}
    return GasParameters(gas=gas, fees=fees)


def _default_fees(web3: Web3) -> Dict[str, int]:
    with rpc_errors("fee lookup"):
        gas_price = web3.eth.gas_price
        max_priority_fee = getattr(web3.eth, "max_priority_fee", gas_price)
    return {"maxFeePerGas": gas_price + max_priority_fee, "maxPriorityFeePerGas": max_priority_fee}


def send_contract_call(
    *,
    web3: Web3,
    chain_id: int,
    call: Any,
    signer: LocalAccount,
    value: int,
    nonce_manager: NonceManager,
    overrides: Optional[Mapping[str, Any]] = None,
    gas_buffer: float = 1.1,
    receipt_timeout: float = 120.0,
    label: str = "transaction",
) -> Any:
    """Estimate, sign, broadcast and wait for one confirmation of ``call``.

    Exactly one broadcast is attempted. Reverts (simulated or mined) raise
    ``DeliveryReverted``; nonce reuse reported by the node raises
    ``NonceConflict``.
    """
    overrides = dict(overrides or {})
    gas = estimate_gas(call, sender=signer.address, value=value, gas_buffer=gas_buffer, overrides=overrides)
    fees = dict(gas.fees) or _default_fees(web3)
    with rpc_errors("chain id lookup"):
        evm_chain_id = web3.eth.chain_id

    with nonce_manager.allocate(web3, chain_id, signer.address, overrides.get("nonce")) as nonce:
        tx = call.build_transaction(
            {
                "from": signer.address,
                "value": value,
                "gas": gas.gas,
                "nonce": nonce,
                "chainId": evm_chain_id,
                **fees,
            }
        )
        LOGGER.info("Signing %s nonce=%s gas=%s value=%s", label, nonce, gas.gas, value)
        signed = signer.sign_transaction(tx)
        try:
            with rpc_errors(f"{label} broadcast"):
                tx_hash = web3.eth.send_raw_transaction(signed.raw_transaction)
        except (ValueError, Web3Exception) as exc:
            if _is_nonce_error(exc):
                raise NonceConflict(f"Nonce {nonce} rejected for {signer.address}: {exc}") from exc
            raise

    tx_hex = to_hex(tx_hash)
    LOGGER.info("Broadcast %s %s, awaiting confirmation", label, tx_hex)
    try:
        with rpc_errors(f"{label} receipt"):
            receipt = web3.eth.wait_for_transaction_receipt(tx_hash, timeout=receipt_timeout)
    except TimeExhausted as exc:
        raise ProviderUnreachable(f"{label} {tx_hex} not mined within {receipt_timeout}s") from exc

    if receipt["status"] != 1:
        LOGGER.error("%s %s failed! status=%s", label, tx_hex, receipt["status"])
        raise DeliveryReverted(f"{label} {tx_hex} mined with status {receipt['status']}", receipt)
    LOGGER.info("%s confirmed in block %s (gasUsed=%s)", label, receipt["blockNumber"], receipt["gasUsed"])
    return receipt


__all__ = ["GasParameters", "NonceManager", "estimate_gas", "send_contract_call"]
