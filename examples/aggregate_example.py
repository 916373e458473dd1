#!/usr/bin/env python3
"""
Aggregation Example - Settlement SDK

Collects deposited USDC from every source chain of an investor into one
payment on Arc Testnet.

Key features demonstrated:
- Building the SDK from environment variables
- Provisioning (or reusing) a user's wallets through the registry
- Checking the unified Gateway balance
- Aggregating across chains and reading the per-chain records

Without CIRCLE_API_KEY and CIRCLE_ENTITY_SECRET the in-memory stub signer
is used; the Gateway API calls are still real.
"""
import sys
import logging
import argparse

from settlement_sdk import (
    SettlementConfig, TransferOrchestrator, TransferRecordStore, WalletRegistry,
    InsufficientAggregateFunds, SettlementError, get_signer, to_micros,
)
from settlement_sdk.gateway import get_gateway_client
from settlement_sdk.utils import format_usdc

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger("aggregate-example")

SOURCE_CHAINS = ["ETH-SEPOLIA", "BASE-SEPOLIA", "AVAX-FUJI"]


def main():
    parser = argparse.ArgumentParser(description="Aggregate an investor's Gateway balance onto Arc")
    parser.add_argument("user_id", help="Investor user id")
    parser.add_argument("amount", nargs="?", help="USDC to collect (omit to drain)")
    parser.add_argument("--recipient", help="Recipient address (defaults to the investor's Arc wallet)")
    args = parser.parse_args()

    config = SettlementConfig.from_env()
    signer = get_signer(config)
    registry = WalletRegistry(signer, store_path=config.wallet_store_path)
    orchestrator = TransferOrchestrator(
        signer=signer,
        gateway_api=get_gateway_client(config.gateway_api_url),
        config=config,
        record_store=TransferRecordStore(config.record_store_path),
    )

    print("\n=== Settlement SDK Aggregation Example ===\n")

    wallet = registry.get_or_create_wallet(args.user_id, "investor", SOURCE_CHAINS + [config.destination_chain])
    wallet_ids = registry.source_wallet_ids(args.user_id, "investor")
    source_wallets = {chain: wallet_ids[chain] for chain in SOURCE_CHAINS}
    depositor = wallet.chain_wallets[SOURCE_CHAINS[0]].address
    recipient = args.recipient or wallet.chain_wallets[config.destination_chain].address
    destination_wallet = wallet_ids[config.destination_chain]

    print(f"Depositor: {depositor}")
    print(f"Recipient: {recipient}")

    balance = orchestrator.gateway_api.query_unified_balance(depositor, SOURCE_CHAINS)
    for entry in balance.per_chain:
        print(f"  {entry.chain_tag:<14} {format_usdc(entry.micros)} USDC")
    print(f"  {'TOTAL':<14} {format_usdc(balance.total_micros)} USDC\n")

    try:
        result = orchestrator.aggregate(
            depositor=depositor,
            source_wallet_ids=source_wallets,
            destination_wallet_id=destination_wallet,
            recipient=recipient,
            target_amount=to_micros(args.amount) if args.amount else None,
        )
    except InsufficientAggregateFunds as e:
        logger.error(f"Could not collect the full amount: {e}")
        result = e.result
    except SettlementError as e:
        logger.error(f"Aggregation failed: {e}")
        return 1

    for record in result.records:
        print(f"  {record.source_chain:<14} {record.status.value:<8} {format_usdc(record.amount)} {record.error or ''}")
    print(f"\nTransferred {format_usdc(result.transferred_micros)} USDC "
          f"(remaining {format_usdc(result.remaining_micros)})")
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
