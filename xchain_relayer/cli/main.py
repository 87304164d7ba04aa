"""CLI entrypoint for quoting, delivering, redelivering and tracking relayed messages."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Callable, List, Optional

from dotenv import load_dotenv
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from xchain_relayer.config import ConfigError, RelayerConfig, load_config
from xchain_relayer.core import (
    AttestationFetcher,
    ChainProviderRegistry,
    DeliveryInfo,
    DeliverySubmitter,
    PriceOracle,
    RedeliverySubmitter,
    RelayerError,
    StatusTracker,
    VaaKey,
)
from xchain_relayer.core.pricing import default_delivery_provider
from xchain_relayer.core.registry import default_web3_factory
from xchain_relayer.core.utils import get_logger, hex_to_bytes, to_hex

LOGGER = get_logger("xchain_relayer.cli")


class RelayerClient:
    """Wires the registry and every relayer component from one configuration."""

    def __init__(
        self,
        *,
        config: Optional[RelayerConfig] = None,
        web3_factory: Callable[[str], Web3] = default_web3_factory,
    ) -> None:
        self.config = config or load_config()
        self.registry = ChainProviderRegistry(self.config, web3_factory=web3_factory)
        self.fetcher = AttestationFetcher(request_timeout=self.config.defaults.request_timeout)
        self.oracle = PriceOracle(self.registry)
        self.delivery = DeliverySubmitter(self.registry, self.fetcher)
        self.redelivery = RedeliverySubmitter(self.registry, oracle=self.oracle, fetcher=self.fetcher)
        self.tracker = StatusTracker(self.registry, fetcher=self.fetcher, oracle=self.oracle)

    @property
    def environment(self) -> str:
        return self.config.environment.value


def render_delivery_info(info: DeliveryInfo, indent: int = 0) -> str:
    """Human readable summary of ``info`` and any forwarded deliveries."""
    pad = " " * indent
    instruction = info.instruction
    lines = [
        f"{pad}Source chain {info.source_chain}, transaction {info.source_transaction_hash}",
        f"{pad}Delivery sequence {info.source_delivery_sequence_number}, VAA hash {info.vaa_hash}",
        f"{pad}Target chain {instruction.target_chain}, target address {to_hex(instruction.target_address)}",
        f"{pad}Gas limit {instruction.gas_limit}, receiver value {instruction.requested_receiver_value}"
        f" (+{instruction.extra_receiver_value} extra)",
    ]
    if info.delivery_quote is not None:
        lines.append(f"{pad}Paid delivery quote {info.delivery_quote}")
    if instruction.vaa_keys:
        lines.append(f"{pad}Additional VAAs: {len(instruction.vaa_keys)}")
    for number, event in enumerate(info.target_chain_status.events, start=1):
        label = "Redelivery" if event.is_redelivery else "Delivery"
        line = f"{pad}  {label} #{number}: {event.status.value}"
        if event.transaction_hash:
            line += f" in {event.transaction_hash} (block {event.block_number})"
        if event.gas_used is not None:
            line += f", gas used {event.gas_used}"
        if event.refund_status is not None:
            line += f", refund {event.refund_status.name}"
        lines.append(line)
        if event.revert_string:
            lines.append(f"{pad}    Revert: {event.revert_string}")
        for forward in event.forwards:
            lines.append(f"{pad}    Forwarded delivery:")
            lines.append(render_delivery_info(forward, indent + 6))
    return "\n".join(lines)


def _load_signer() -> LocalAccount:
    private_key = (os.getenv("PRIVATE_KEY") or "").strip()
    if not private_key:
        raise ConfigError("PRIVATE_KEY environment variable not set")
    return Account.from_key(private_key)


def _cmd_price(client: RelayerClient, args: argparse.Namespace) -> None:
    quote = client.oracle.quote_breakdown(
        args.source,
        args.target,
        args.gas_limit,
        environment=client.environment,
        receiver_value=args.receiver_value,
        delivery_provider=args.provider,
    )
    print(f"Delivery provider: {quote.delivery_provider}")
    print(f"Gas price: {quote.gas_price}")
    print(f"Gas cost: {quote.gas_cost}")
    print(f"Refund per unused gas: {quote.target_chain_refund_per_gas_unused}")
    print(f"Delivery overhead: {quote.delivery_overhead}")
    print(f"Message fee: {quote.message_fee}")
    print(f"Total: {quote.total}")


def _cmd_status(client: RelayerClient, args: argparse.Namespace) -> None:
    if args.wait:
        info = client.tracker.wait_for_delivery(
            args.source,
            args.tx_hash,
            client.environment,
            deadline_seconds=args.wait,
            message_index=args.index,
        )
    else:
        info = client.tracker.get_info(args.source, args.tx_hash, client.environment, message_index=args.index)
    print(render_delivery_info(info))


def _cmd_deliver(client: RelayerClient, args: argparse.Namespace) -> None:
    endpoints = args.guardian_rpc or list(client.config.guardian_rpcs)
    if not endpoints:
        raise ConfigError("No guardian RPC configured; pass --guardian-rpc")
    receipt = client.delivery.deliver(hex_to_bytes(args.vaa), _load_signer(), endpoints, client.environment)
    print(f"Delivery transaction {to_hex(receipt['transactionHash'])} status {receipt['status']}")


def _cmd_resend(client: RelayerClient, args: argparse.Namespace) -> None:
    source = client.registry.resolve(args.source, client.environment)
    emitter = args.emitter or source.wormhole_relayer_address
    key = VaaKey.create(source.chain_id, hex_to_bytes(emitter), args.sequence)
    provider = args.provider or default_delivery_provider(client.registry.handle(source.chain_id))
    overrides = {"value": args.value} if args.value is not None else {}
    receipt = client.redelivery.resend(
        _load_signer(),
        source.chain_id,
        args.target,
        client.environment,
        key,
        args.gas_limit,
        args.receiver_value,
        provider,
        args.guardian_rpc or list(client.config.guardian_rpcs),
        overrides,
    )
    print(f"Redelivery transaction {to_hex(receipt['transactionHash'])} status {receipt['status']}")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Quote, deliver, redeliver and track cross-chain deliveries")
    parser.add_argument("--config", type=Path, default=None, help="Path to config JSON (default: $RELAYER_CONFIG or config.json)")
    sub = parser.add_subparsers(dest="command", required=True)

    price = sub.add_parser("price", help="Quote the source-chain price of a delivery")
    price.add_argument("source")
    price.add_argument("target")
    price.add_argument("--gas-limit", type=int, required=True)
    price.add_argument("--receiver-value", type=int, default=0)
    price.add_argument("--provider", default=None, help="Delivery provider address (default: relayer default)")
    price.set_defaults(handler=_cmd_price)

    status = sub.add_parser("status", help="Show the delivery status of a source transaction")
    status.add_argument("source")
    status.add_argument("tx_hash")
    status.add_argument("--index", type=int, default=0, help="Which delivery request in the transaction")
    status.add_argument("--wait", type=float, default=None, metavar="SECONDS", help="Poll until terminal or timeout")
    status.set_defaults(handler=_cmd_status)

    deliver = sub.add_parser("deliver", help="Manually deliver a signed delivery VAA")
    deliver.add_argument("vaa", help="Signed delivery VAA as hex")
    deliver.add_argument("--guardian-rpc", action="append", default=None)
    deliver.set_defaults(handler=_cmd_deliver)

    resend = sub.add_parser("resend", help="Request a paid redelivery")
    resend.add_argument("source")
    resend.add_argument("target")
    resend.add_argument("--sequence", type=int, required=True)
    resend.add_argument("--emitter", default=None, help="Emitter address (default: source relayer)")
    resend.add_argument("--gas-limit", type=int, required=True)
    resend.add_argument("--receiver-value", type=int, default=0)
    resend.add_argument("--provider", default=None)
    resend.add_argument("--value", type=int, default=None, help="Value to pay (default: fresh quote)")
    resend.add_argument("--guardian-rpc", action="append", default=None)
    resend.set_defaults(handler=_cmd_resend)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = _parse_args(argv)

    try:
        client = RelayerClient(config=load_config(args.config))
        args.handler(client, args)
    except (RelayerError, ConfigError) as exc:
        print(f"\n❌ Error: {exc}")
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    main()
