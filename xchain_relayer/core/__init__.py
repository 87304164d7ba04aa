"""Core domain logic for the relayer."""

from .attestation import AttestationFetcher
from .delivery import DeliverySubmitter
from .errors import (
    AttestationMalformed,
    AttestationUnavailable,
    DecodeError,
    DeliveryReverted,
    InsufficientFunds,
    InsufficientGasLimit,
    NoDeliveryRequestFound,
    NonceConflict,
    OperationCancelled,
    ProviderUnreachable,
    RedeliveryTargetMismatch,
    RelayerError,
    SourceTransactionPending,
    UnknownChain,
)
from .models import (
    DeliveryEvent,
    DeliveryInfo,
    DeliveryInstruction,
    DeliveryStatus,
    PriceQuote,
    RefundStatus,
    TargetChainStatus,
    VaaKey,
)
from .pricing import PriceOracle
from .redelivery import FetchOptions, RedeliverySubmitter
from .registry import ChainHandle, ChainProviderRegistry
from .status import StatusTracker

__all__ = [
    "AttestationFetcher",
    "AttestationMalformed",
    "AttestationUnavailable",
    "ChainHandle",
    "ChainProviderRegistry",
    "DecodeError",
    "DeliveryEvent",
    "DeliveryInfo",
    "DeliveryInstruction",
    "DeliveryReverted",
    "DeliveryStatus",
    "DeliverySubmitter",
    "FetchOptions",
    "InsufficientFunds",
    "InsufficientGasLimit",
    "NoDeliveryRequestFound",
    "NonceConflict",
    "OperationCancelled",
    "PriceOracle",
    "PriceQuote",
    "ProviderUnreachable",
    "RedeliverySubmitter",
    "RedeliveryTargetMismatch",
    "RefundStatus",
    "RelayerError",
    "SourceTransactionPending",
    "StatusTracker",
    "TargetChainStatus",
    "UnknownChain",
    "VaaKey",
]
