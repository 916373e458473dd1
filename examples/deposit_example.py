#!/usr/bin/env python3
"""
Deposit Example - Settlement SDK

Approves and deposits USDC from a custodial wallet into the Gateway
wallet contract, then shows the resulting unified balance.

Requires CIRCLE_API_KEY and CIRCLE_ENTITY_SECRET for real deposits.
"""
import os
import sys
import logging

from settlement_sdk import (
    SettlementConfig, TransferOrchestrator, OperationFailed, OperationTimeout, get_signer,
)
from settlement_sdk.gateway import get_gateway_client
from settlement_sdk.utils import format_usdc

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main():
    """
    Deposit into Gateway on one chain.

    This example shows how to:
    1. Resolve a custodial wallet's address
    2. Approve and deposit in one call
    3. Read the Gateway balance afterwards
    """
    wallet_id = os.environ.get("WALLET_ID")
    chain = os.environ.get("CHAIN", "ETH-SEPOLIA")
    amount = os.environ.get("AMOUNT", "5")
    if not wallet_id:
        print("Set WALLET_ID to the custodial wallet holding the USDC")
        return 1

    config = SettlementConfig.from_env()
    signer = get_signer(config)
    orchestrator = TransferOrchestrator(signer, get_gateway_client(config.gateway_api_url), config)

    address = signer.get_wallet(wallet_id).address
    print(f"\nDepositing {amount} USDC from {address} on {chain}")

    try:
        result = orchestrator.complete_gateway_deposit(wallet_id, chain, amount)
    except (OperationFailed, OperationTimeout) as e:
        logger.error(f"Deposit did not complete: {e}")
        return 1

    print(f"Approve tx: {result['approve'].tx_hash}")
    print(f"Deposit tx: {result['deposit'].tx_hash}")

    balance = orchestrator.gateway_api.query_unified_balance(address, [chain])
    print(f"Gateway balance on {chain}: {format_usdc(balance.for_chain(chain))} USDC")
    return 0


if __name__ == "__main__":
    sys.exit(main())
