"""Utility helpers shared across relayer core modules."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Union

import requests
from web3 import Web3

from xchain_relayer.core.errors import OperationCancelled, ProviderUnreachable, UnknownChain


def get_logger(name: str = "xchain_relayer") -> logging.Logger:
    """Return a configured logger that prints to stdout."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


def ensure_web3_connected(web3: Web3, *, expected_chain_id: Optional[int] = None) -> None:
    """Validate that ``web3`` is connected and optionally matches the expected chain id."""
    with rpc_errors("connection check"):
        if not web3.is_connected():
            raise ProviderUnreachable("Failed to connect to the configured RPC endpoint")
        actual = web3.eth.chain_id
    if expected_chain_id is not None and actual != expected_chain_id:
        raise UnknownChain(expected_chain_id, detail=f"RPC chain ID mismatch, node reports {actual}")


@contextmanager
def rpc_errors(context: str) -> Iterator[None]:
    """Translate transport failures raised inside the block into ``ProviderUnreachable``."""
    try:
        yield
    except (requests.RequestException, ConnectionError, TimeoutError) as exc:
        raise ProviderUnreachable(f"RPC failure during {context}: {exc}") from exc


def hex_to_bytes(data: str) -> bytes:
    """Convert a hex string (with or without ``0x``) to bytes."""
    data = data[2:] if data.startswith("0x") else data
    return bytes.fromhex(data)


def as_bytes(value: Union[str, bytes, bytearray, Any]) -> bytes:
    """Normalise RPC values (``HexBytes``, hex strings, bytes) to ``bytes``."""
    if isinstance(value, str):
        return hex_to_bytes(value)
    return bytes(value)


def to_hex(value: Union[str, bytes, bytearray, Any]) -> str:
    """Return a lowercase ``0x``-prefixed hex string."""
    return "0x" + as_bytes(value).hex()


def to_bytes32(address: Union[str, bytes]) -> bytes:
    """Left-pad a native address (20 bytes on EVM) to the 32-byte wire form."""
    raw = as_bytes(address)
    if len(raw) > 32:
        raise ValueError(f"Address is {len(raw)} bytes, at most 32 allowed")
    return raw.rjust(32, b"\x00")


def from_bytes32(value: bytes, width: int = 20) -> bytes:
    """Strip left padding from a 32-byte address back to ``width`` bytes."""
    raw = as_bytes(value)
    if len(raw) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(raw)}")
    if any(raw[: 32 - width]):
        raise ValueError(f"Address does not fit in {width} bytes: {to_hex(raw)}")
    return raw[32 - width :]


def bytes32_to_checksum(value: bytes) -> str:
    """Return the checksummed EVM address held in a 32-byte word."""
    return Web3.to_checksum_address(from_bytes32(value))


def wait_or_cancel(seconds: float, cancel: Optional[threading.Event] = None) -> None:
    """Sleep for ``seconds`` unless ``cancel`` is set first."""
    if cancel is None:
        if seconds > 0:
            time.sleep(seconds)
        return
    if cancel.is_set() or cancel.wait(max(seconds, 0)):
        raise OperationCancelled("Cancelled while waiting")


__all__ = [
    "as_bytes",
    "bytes32_to_checksum",
    "ensure_web3_connected",
    "from_bytes32",
    "get_logger",
    "hex_to_bytes",
    "rpc_errors",
    "to_bytes32",
    "to_hex",
    "wait_or_cancel",
]
