"""Signed attestation (VAA) retrieval from guardian REST endpoints."""

from __future__ import annotations

import base64
import binascii
import threading
import time
from typing import Optional, Sequence, Tuple, Union

import requests

from xchain_relayer.core.codec import parse_vaa
from xchain_relayer.core.errors import (
    AttestationMalformed,
    AttestationUnavailable,
    DecodeError,
    OperationCancelled,
)
from xchain_relayer.core.models import Attestation, VaaKey
from xchain_relayer.core.utils import get_logger, hex_to_bytes, wait_or_cancel

LOGGER = get_logger("xchain_relayer.attestation")

KeyLike = Union[VaaKey, Tuple[int, str, int]]


def _as_key(key: KeyLike) -> VaaKey:
    if isinstance(key, VaaKey):
        return key
    chain, emitter_hex, sequence = key
    return VaaKey.create(chain, hex_to_bytes(emitter_hex), sequence)


def signed_vaa_url(endpoint: str, key: VaaKey) -> str:
    return f"{endpoint.rstrip('/')}/v1/signed_vaa/{key.emitter_chain}/{key.emitter_hex}/{key.sequence}"


def decode_attestation(vaa_bytes: bytes) -> Attestation:
    try:
        return Attestation(vaa_bytes=vaa_bytes, vaa=parse_vaa(vaa_bytes))
    except DecodeError as exc:
        raise AttestationMalformed(str(exc)) from exc


class AttestationFetcher:
    """Fetches signed attestations, rotating across endpoints with bounded backoff.

    Each request has its own ``request_timeout``. Transport errors, HTTP
    errors (404 means "not signed yet"), empty bodies and attestations signed
    for another key move on to the next endpoint straight away; once every
    endpoint has failed the whole list is
    retried after an exponentially growing pause, until the caller's deadline.
    """

    def __init__(
        self,
        *,
        request_timeout: float = 10.0,
        backoff_initial: float = 1.0,
        backoff_max: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.request_timeout = request_timeout
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self._session = session

    def _get(self, url: str, timeout: float) -> requests.Response:
        getter = self._session.get if self._session is not None else requests.get
        return getter(url, timeout=timeout)

    def _try_endpoint(self, endpoint: str, key: VaaKey, timeout: float) -> Optional[bytes]:
        url = signed_vaa_url(endpoint, key)
        try:
            response = self._get(url, timeout)
            response.raise_for_status()
            payload = response.json()
            encoded = payload.get("vaaBytes") if isinstance(payload, dict) else None
        except requests.RequestException as exc:
            LOGGER.debug("Attestation request to %s failed: %s", url, exc)
            return None
        except ValueError as exc:
            LOGGER.warning("Endpoint %s returned a non-JSON body: %s", endpoint, exc)
            return None
        if not encoded:
            LOGGER.warning("Endpoint %s returned no vaaBytes", endpoint)
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AttestationMalformed(f"Endpoint {endpoint} returned invalid base64: {exc}") from exc

    def _attestation_from(self, endpoint: str, key: VaaKey, timeout: float) -> Optional[Attestation]:
        raw = self._try_endpoint(endpoint, key, timeout)
        if raw is None:
            return None
        attestation = decode_attestation(raw)
        if attestation.vaa.key != key:
            got = attestation.vaa.key
            LOGGER.warning(
                "Endpoint %s returned attestation %s/%s/%s, expected %s/%s/%s",
                endpoint,
                got.emitter_chain,
                got.emitter_hex,
                got.sequence,
                key.emitter_chain,
                key.emitter_hex,
                key.sequence,
            )
            return None
        return attestation

    def probe(self, endpoints: Sequence[str], key: KeyLike) -> Optional[Attestation]:
        """Single pass over ``endpoints`` without backoff; ``None`` when nothing is signed yet."""
        vaa_key = _as_key(key)
        for endpoint in endpoints:
            attestation = self._attestation_from(endpoint, vaa_key, self.request_timeout)
            if attestation is not None:
                return attestation
        return None

    def fetch(
        self,
        endpoints: Sequence[str],
        key: KeyLike,
        *,
        deadline_seconds: float,
        cancel: Optional[threading.Event] = None,
    ) -> Attestation:
        """Return the attestation for ``key`` or raise ``AttestationUnavailable`` at the deadline."""
        if not endpoints:
            raise AttestationUnavailable("No attestation endpoints supplied")
        if deadline_seconds <= 0:
            raise ValueError("deadline_seconds must be positive")

        vaa_key = _as_key(key)
        deadline = time.monotonic() + deadline_seconds
        delay = self.backoff_initial
        rounds = 0

        while True:
            rounds += 1
            for endpoint in endpoints:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                if cancel is not None and cancel.is_set():
                    raise OperationCancelled("Attestation fetch cancelled")
                attestation = self._attestation_from(endpoint, vaa_key, min(self.request_timeout, remaining))
                if attestation is not None:
                    LOGGER.info(
                        "Fetched attestation %s/%s/%s from %s (round %s)",
                        vaa_key.emitter_chain,
                        vaa_key.emitter_hex,
                        vaa_key.sequence,
                        endpoint,
                        rounds,
                    )
                    return attestation

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AttestationUnavailable(
                    f"Attestation {vaa_key.emitter_chain}/{vaa_key.emitter_hex}/{vaa_key.sequence} "
                    f"unavailable after {rounds} rounds ({deadline_seconds}s deadline)"
                )
            wait_or_cancel(min(delay, remaining), cancel)
            delay = min(delay * 2, self.backoff_max)


__all__ = ["AttestationFetcher", "KeyLike", "decode_attestation", "signed_vaa_url"]
