"""
In-memory custodial signer for tests and local development.

Simulates wallet provisioning, typed-data signing and contract
executions. Each contract call can be scripted to walk through a
sequence of states so every terminal outcome can be exercised without a
custody backend.
"""
import json
import logging
import itertools
from collections import defaultdict, deque
from typing import Dict, Any, List, Optional

from web3 import Web3

from ..exceptions import CustodialApiError
from ..models import OperationStatus, ChainWallet, ProvisionedWallet
from .base import CustodialSigner, WalletProvisioner, DEFAULT_FEE_LEVEL

logger = logging.getLogger(__name__)


class StubSigner(CustodialSigner, WalletProvisioner):
    """A deterministic in-memory stand-in for a custodial wallet service."""

    def __init__(self):
        """Initialize the stub with no wallets."""
        self._counter = itertools.count(1)
        self.wallets: Dict[str, Dict[str, str]] = {}
        self.token_balances: Dict[str, List[Dict[str, Any]]] = {}
        self.executions: List[Dict[str, Any]] = []
        self.signed: List[Dict[str, Any]] = []
        self._operations: Dict[str, Dict[str, Any]] = {}
        self._scripts: Dict[str, deque] = defaultdict(deque)
        self._idempotency: Dict[str, str] = {}
        self.signature_overrides: Dict[str, str] = {}
        self.execution_errors: Dict[str, Exception] = {}

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def add_wallet(self, wallet_id: str, address: str, chain: str = "ARC-TESTNET") -> ChainWallet:
        """Register a wallet id with a fixed address."""
        self.wallets.setdefault(wallet_id, {})[chain] = address
        return ChainWallet(wallet_id=wallet_id, address=address)

    def script_operation(
        self,
        function_signature: str,
        states: List[str],
        failure_reason: Optional[str] = None,
    ) -> None:
        """
        Queue the states the next call to ``function_signature`` will report.

        Each ``get_operation`` poll advances one state; the last one sticks.
        Calls without a script report ``COMPLETE`` immediately.
        """
        self._scripts[function_signature].append((list(states), failure_reason))

    def calls_to(self, function_signature: str) -> List[Dict[str, Any]]:
        return [e for e in self.executions if e["function_signature"] == function_signature]

    def _new_address(self) -> str:
        n = next(self._counter)
        return Web3.to_checksum_address("0x" + Web3.keccak(text=f"stub-wallet-{n}").hex().removeprefix("0x")[-40:])

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._counter)}"

    # ------------------------------------------------------------------
    # CustodialSigner
    # ------------------------------------------------------------------

    def create_contract_execution(
        self,
        wallet_id: str,
        contract_address: str,
        function_signature: str,
        params: List[Any],
        fee_level: str = DEFAULT_FEE_LEVEL,
        idempotency_key: Optional[str] = None,
    ) -> str:
        if idempotency_key and idempotency_key in self._idempotency:
            return self._idempotency[idempotency_key]
        if function_signature in self.execution_errors:
            raise self.execution_errors[function_signature]

        operation_id = self._new_id("op")
        if self._scripts[function_signature]:
            states, reason = self._scripts[function_signature].popleft()
        else:
            states, reason = ["COMPLETE"], None

        self._operations[operation_id] = {"states": deque(states), "reason": reason, "state": "INITIATED"}
        self.executions.append({
            "operation_id": operation_id,
            "wallet_id": wallet_id,
            "contract_address": contract_address,
            "function_signature": function_signature,
            "params": list(params),
            "fee_level": fee_level,
        })
        if idempotency_key:
            self._idempotency[idempotency_key] = operation_id
        logger.debug(f"StubSigner queued {function_signature} as {operation_id}")
        return operation_id

    def sign_typed_data(self, wallet_id: str, document: Dict[str, Any]) -> str:
        self.signed.append({"wallet_id": wallet_id, "document": document})
        if wallet_id in self.signature_overrides:
            return self.signature_overrides[wallet_id]
        payload = wallet_id + json.dumps(document, sort_keys=True, default=str)
        digest = Web3.keccak(text=payload).hex().removeprefix("0x")
        # 65-byte shaped signature: r || s || v
        return "0x" + digest + digest + "1b"

    def get_operation(self, operation_id: str) -> OperationStatus:
        op = self._operations.get(operation_id)
        if op is None:
            raise CustodialApiError(f"Transaction {operation_id} not found", status_code=404)
        if op["states"]:
            op["state"] = op["states"].popleft() if len(op["states"]) > 1 else op["states"][0]
        state = op["state"]
        tx_hash = None
        if state in ("COMPLETE", "CONFIRMED"):
            tx_hash = "0x" + Web3.keccak(text=operation_id).hex().removeprefix("0x")
        reason = op["reason"] if state in ("FAILED", "DENIED", "CANCELLED") else None
        return OperationStatus(operation_id=operation_id, state=state, tx_hash=tx_hash, failure_reason=reason)

    def get_wallet(self, wallet_id: str) -> ChainWallet:
        chains = self.wallets.get(wallet_id)
        if not chains:
            raise CustodialApiError(f"Wallet {wallet_id} not found", status_code=404)
        return ChainWallet(wallet_id=wallet_id, address=next(iter(chains.values())))

    # ------------------------------------------------------------------
    # WalletProvisioner
    # ------------------------------------------------------------------

    def create_wallets(self, name: str, chains: List[str]) -> ProvisionedWallet:
        wallet_id = self._new_id("wallet")
        # Externally-owned-account style: one address on every chain
        address = self._new_address()
        chain_wallets = {}
        for chain in chains:
            self.add_wallet(wallet_id, address, chain)
            chain_wallets[chain] = ChainWallet(wallet_id=wallet_id, address=address)
        logger.debug(f"StubSigner provisioned {wallet_id} ({name}) on {chains}")
        return ProvisionedWallet(wallet_id=wallet_id, wallet_set_id="stub-set", chain_wallets=chain_wallets)

    def derive_wallet(self, wallet_id: str, chain: str, name: Optional[str] = None) -> ChainWallet:
        chains = self.wallets.get(wallet_id)
        if not chains:
            raise CustodialApiError(f"Wallet {wallet_id} not found", status_code=404)
        address = next(iter(chains.values()))
        return self.add_wallet(wallet_id, address, chain)

    def get_token_balances(self, wallet_id: str) -> List[Dict[str, Any]]:
        return list(self.token_balances.get(wallet_id, []))
