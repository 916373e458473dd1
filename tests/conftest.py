"""
Pytest fixtures for the settlement SDK tests.
"""
import time
from collections import deque
from typing import Dict, List, Optional

import pytest

from settlement_sdk import gateway as gateway_pkg
from settlement_sdk._rate_limited_log import reset_rate_limits
from settlement_sdk.config import NetworkConfig, SettlementConfig, PollingPolicy
from settlement_sdk.exceptions import AttestationRejected
from settlement_sdk.models import Attestation, ChainBalance, SignedBurnIntent, UnifiedBalance
from settlement_sdk.orchestrator import TransferOrchestrator
from settlement_sdk.records import TransferRecordStore
from settlement_sdk.signer import StubSigner

# Test constants
DEPOSITOR = "0x" + "11" * 20
RECIPIENT = "0x" + "22" * 20
OTHER_ADDRESS = "0x" + "33" * 20
SALT = "0x" + "ab" * 32
USDC = 1_000_000

WALLETS = {
    "ETH-SEPOLIA": "wallet-eth",
    "BASE-SEPOLIA": "wallet-base",
    "AVAX-FUJI": "wallet-avax",
}
DESTINATION_WALLET = "wallet-arc"


class FakeGateway:
    """
    In-memory Gateway API.

    Balances are given per chain tag in micros. Rejections queued with
    :meth:`reject_next` are raised in order before any attestation is
    issued; ``always_reject`` rejects every intent from a chain.
    """

    def __init__(self, balances: Optional[Dict[str, int]] = None):
        self.balances = dict(balances or {})
        self.submissions: List[SignedBurnIntent] = []
        self.balance_queries: List[List[str]] = []
        self._rejections: deque = deque()
        self.always_reject: Dict[str, str] = {}

    def reject_next(self, raw_body: str, status_code: int = 400) -> None:
        self._rejections.append((raw_body, status_code))

    def source_chain(self, signed: SignedBurnIntent) -> str:
        domain = int(signed.burn_intent["spec"]["sourceDomain"])
        return NetworkConfig.chain_for_domain(domain).chain_tag

    def submit_burn_intent(self, signed: SignedBurnIntent) -> Attestation:
        self.submissions.append(signed)
        chain = self.source_chain(signed)
        if chain in self.always_reject:
            raise AttestationRejected("rejected", raw_body=self.always_reject[chain], status_code=400)
        if self._rejections:
            raw_body, status_code = self._rejections.popleft()
            raise AttestationRejected("rejected", raw_body=raw_body, status_code=status_code)
        n = len(self.submissions)
        return Attestation(attestation=f"0x{n:064x}", signature="0x" + "cd" * 65, transfer_id=f"transfer-{n}")

    def query_unified_balance(self, depositor: str, chain_tags) -> UnifiedBalance:
        self.balance_queries.append(list(chain_tags))
        per_chain = [
            ChainBalance(
                chain_tag=tag,
                domain_id=NetworkConfig.get_chain(tag).domain_id,
                micros=self.balances.get(tag, 0),
            )
            for tag in chain_tags
        ]
        return UnifiedBalance(
            depositor=depositor,
            total_micros=sum(c.micros for c in per_chain),
            per_chain=per_chain,
        )


# Make time.sleep instantaneous so polling loops don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _reset_module_state(monkeypatch):
    """Start every test with fresh caches and no settlement env overrides."""
    for name in ("SETTLEMENT_RECORD_STORE_PATH", "SETTLEMENT_WALLET_STORE_PATH",
                 "CIRCLE_API_KEY", "CIRCLE_ENTITY_SECRET", "SETTLEMENT_INSECURE_HTTP"):
        monkeypatch.delenv(name, raising=False)
    NetworkConfig._networks_cache = None
    reset_rate_limits()
    gateway_pkg._gateway_client_cache.clear()
    yield
    NetworkConfig._networks_cache = None
    gateway_pkg._gateway_client_cache.clear()


@pytest.fixture
def signer():
    """Stub signer with one custodial wallet per source chain plus the destination."""
    stub = StubSigner()
    for chain, wallet_id in WALLETS.items():
        stub.add_wallet(wallet_id, DEPOSITOR, chain)
    stub.add_wallet(DESTINATION_WALLET, RECIPIENT, "ARC-TESTNET")
    return stub


@pytest.fixture
def record_store(tmp_path):
    return TransferRecordStore(str(tmp_path / "transfers.json"))


@pytest.fixture
def config(tmp_path):
    return SettlementConfig(
        record_store_path=str(tmp_path / "transfers.json"),
        wallet_store_path=str(tmp_path / "wallets.json"),
        mint_policy=PollingPolicy(interval=0, max_attempts=5),
        contract_policy=PollingPolicy(interval=0, max_attempts=5),
    )


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def orchestrator(signer, fake_gateway, config, record_store):
    return TransferOrchestrator(
        signer=signer,
        gateway_api=fake_gateway,
        config=config,
        record_store=record_store,
    )
