"""Error taxonomy raised by the relayer core."""

from __future__ import annotations

from typing import Optional


class RelayerError(Exception):
    """Base class for every error raised by relayer operations."""


class UnknownChain(RelayerError):
    """Chain is not registered for the active environment."""

    def __init__(self, chain: object, environment: Optional[str] = None, detail: str = "") -> None:
        self.chain = chain
        self.environment = environment
        message = f"Unknown chain {chain}"
        if environment:
            message += f" for environment {environment}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ProviderUnreachable(RelayerError):
    """RPC transport failure while talking to a chain node."""


class AttestationUnavailable(RelayerError):
    """No endpoint produced a signed attestation before the deadline."""


class AttestationMalformed(RelayerError):
    """Attestation bytes failed structural decoding."""


class NoDeliveryRequestFound(RelayerError):
    """Source transaction carries no delivery-request log."""


class SourceTransactionPending(NoDeliveryRequestFound):
    """Source transaction is not mined (or not yet visible to the node)."""


class InsufficientFunds(RelayerError):
    """Supplied transaction value does not cover the quoted price."""

    def __init__(self, required: int, supplied: int) -> None:
        self.required = required
        self.supplied = supplied
        super().__init__(f"Transaction value {supplied} is below the required {required}")


class InsufficientGasLimit(RelayerError):
    """Requested gas limit is below the delivery provider floor."""

    def __init__(self, requested: int, minimum: int) -> None:
        self.requested = requested
        self.minimum = minimum
        super().__init__(f"Gas limit {requested} is below the provider minimum {minimum}")


class DeliveryReverted(RelayerError):
    """On-chain call reverted, either at estimation or once mined."""

    def __init__(self, reason: str, receipt: Optional[object] = None) -> None:
        self.reason = reason
        self.receipt = receipt
        super().__init__(f"Transaction reverted: {reason}")


class DecodeError(RelayerError):
    """Binary log or payload data does not match the expected layout."""


class NonceConflict(RelayerError):
    """Node rejected a transaction because its nonce was already used."""


class RedeliveryTargetMismatch(RelayerError):
    """Original delivery targets a different chain than the redelivery request."""


class OperationCancelled(RelayerError):
    """Caller-supplied cancellation signal was set during a wait."""


__all__ = [
    "AttestationMalformed",
    "AttestationUnavailable",
    "DecodeError",
    "DeliveryReverted",
    "InsufficientFunds",
    "InsufficientGasLimit",
    "NoDeliveryRequestFound",
    "NonceConflict",
    "OperationCancelled",
    "ProviderUnreachable",
    "RedeliveryTargetMismatch",
    "RelayerError",
    "SourceTransactionPending",
    "UnknownChain",
]
