"""
Tests for the wallet and role registry.
"""
import json
import threading

import pytest

from settlement_sdk.exceptions import (
    ValidationError, WalletNotFound, RegistryInconsistency, UnsupportedChainError, InvalidAddress,
)
from settlement_sdk.models import Role, WalletState
from settlement_sdk.registry import WalletRegistry
from settlement_sdk.signer import StubSigner

from conftest import OTHER_ADDRESS


@pytest.fixture
def provisioner():
    return StubSigner()


@pytest.fixture
def store_path(tmp_path):
    return str(tmp_path / "data" / "user-wallets.json")


@pytest.fixture
def registry(provisioner, store_path):
    return WalletRegistry(provisioner, store_path=store_path)


class TestGetOrCreate:
    """Test provisioning and idempotence."""

    def test_creates_on_first_use(self, registry, provisioner):
        wallet = registry.get_or_create_wallet("alice", "investor")

        assert wallet.user_id == "alice"
        assert wallet.role == Role.INVESTOR
        assert wallet.state == WalletState.LIVE
        assert list(wallet.chain_wallets) == ["ARC-TESTNET"]
        assert wallet.wallet_set_id == "stub-set"
        assert wallet.key == "alice:investor"

    def test_idempotent(self, registry, provisioner):
        first = registry.get_or_create_wallet("alice", Role.ISSUER, ["ETH-SEPOLIA"])
        second = registry.get_or_create_wallet("alice", "ISSUER", ["BASE-SEPOLIA"])

        assert second.wallet_id == first.wallet_id
        assert list(second.chain_wallets) == ["ETH-SEPOLIA"]
        assert len(provisioner.wallets) == 1

    def test_roles_are_separate(self, registry):
        issuer = registry.get_or_create_wallet("alice", "issuer")
        investor = registry.get_or_create_wallet("alice", "investor")
        assert issuer.wallet_id != investor.wallet_id
        assert {w.role for w in registry.get_user_wallets("alice")} == {Role.ISSUER, Role.INVESTOR}

    def test_unknown_role(self, registry):
        with pytest.raises(ValidationError):
            registry.get_or_create_wallet("alice", "auditor")

    def test_unknown_chain_provisions_nothing(self, registry, provisioner):
        with pytest.raises(UnsupportedChainError):
            registry.get_or_create_wallet("alice", "investor", ["ARC-TESTNET", "MOON"])
        assert provisioner.wallets == {}
        assert registry.verify_user_has_role("alice", "investor") is False

    def test_concurrent_creation_provisions_once(self, registry, provisioner):
        results = []

        def create():
            results.append(registry.get_or_create_wallet("bob", "investor"))

        threads = [threading.Thread(target=create) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({w.wallet_id for w in results}) == 1
        assert len(provisioner.wallets) == 1

    def test_persisted_across_instances(self, registry, provisioner, store_path):
        created = registry.get_or_create_wallet("carol", "admin", ["ETH-SEPOLIA", "ARC-TESTNET"])

        reopened = WalletRegistry(provisioner, store_path=store_path)
        loaded = reopened.get_wallet("carol", "admin")
        assert loaded.wallet_id == created.wallet_id
        assert loaded.chain_wallets["ETH-SEPOLIA"].address == created.chain_wallets["ETH-SEPOLIA"].address

        with open(store_path) as f:
            data = json.load(f)
        assert "carol:admin" in data["wallets"]
        assert data["wallets"]["carol:admin"]["walletId"] == created.wallet_id

    def test_default_store_path_from_env(self, provisioner, tmp_path, monkeypatch):
        path = tmp_path / "env" / "wallets.json"
        monkeypatch.setenv("SETTLEMENT_WALLET_STORE_PATH", str(path))
        WalletRegistry(provisioner).get_or_create_wallet("dave", "investor")
        assert path.exists()


class TestLookups:
    """Test read operations."""

    def test_get_wallet_missing(self, registry):
        with pytest.raises(WalletNotFound) as exc_info:
            registry.get_wallet("nobody", "investor")
        assert exc_info.value.user_id == "nobody"
        assert exc_info.value.role == "investor"

    def test_get_wallet_by_id(self, registry):
        wallet = registry.get_or_create_wallet("alice", "investor")
        assert registry.get_wallet_by_id(wallet.wallet_id).key == wallet.key
        assert registry.get_wallet_by_id("wallet-unknown") is None

    def test_address_and_source_wallets(self, registry):
        wallet = registry.get_or_create_wallet("alice", "investor", ["ETH-SEPOLIA", "BASE-SEPOLIA"])
        assert registry.get_address_for_chain("alice", "investor", "ETH-SEPOLIA") == \
            wallet.chain_wallets["ETH-SEPOLIA"].address
        assert registry.get_address_for_chain("alice", "investor", "AVAX-FUJI") is None
        assert registry.source_wallet_ids("alice", "investor") == {
            "ETH-SEPOLIA": wallet.wallet_id,
            "BASE-SEPOLIA": wallet.wallet_id,
        }

    def test_find_by_address_is_case_insensitive(self, registry):
        wallet = registry.get_or_create_wallet("alice", "investor")
        address = wallet.chain_wallets["ARC-TESTNET"].address
        assert registry.find_by_address(address.upper().replace("0X", "0x")).key == wallet.key
        assert registry.find_by_address(OTHER_ADDRESS) is None


class TestMutations:
    """Test chain derivation, linking and state changes."""

    def test_add_chain(self, registry, provisioner):
        wallet = registry.get_or_create_wallet("alice", "investor")
        updated = registry.add_chain_to_wallet("alice", "investor", ["BASE-SEPOLIA", "ARC-TESTNET"])

        assert set(updated.chain_wallets) == {"ARC-TESTNET", "BASE-SEPOLIA"}
        assert updated.chain_wallets["BASE-SEPOLIA"].wallet_id == wallet.wallet_id
        # The existing chain wallet is left untouched
        assert updated.chain_wallets["ARC-TESTNET"] == wallet.chain_wallets["ARC-TESTNET"]
        assert registry.get_wallet("alice", "investor").chain_wallets.keys() == updated.chain_wallets.keys()

    def test_add_chain_requires_wallet(self, registry):
        with pytest.raises(WalletNotFound):
            registry.add_chain_to_wallet("ghost", "investor", ["BASE-SEPOLIA"])

    def test_add_unknown_chain(self, registry):
        registry.get_or_create_wallet("alice", "investor")
        with pytest.raises(UnsupportedChainError):
            registry.add_chain_to_wallet("alice", "investor", ["MOON"])

    def test_link_external_wallet(self, registry):
        registry.get_or_create_wallet("alice", "investor")
        mixed_case = "0x" + "aB" * 20
        wallet = registry.link_external_wallet("alice", "investor", mixed_case)
        assert wallet.external_wallets == [mixed_case.lower()]

        # Linking again is a no-op
        again = registry.link_external_wallet("alice", "investor", mixed_case.upper().replace("0X", "0x"))
        assert again.external_wallets == [mixed_case.lower()]
        assert registry.find_by_address(mixed_case).key == "alice:investor"

    def test_link_conflict_leaves_registry_unchanged(self, registry, store_path):
        """An address linked to one user cannot be linked to another."""
        registry.get_or_create_wallet("alice", "investor")
        registry.get_or_create_wallet("bob", "investor")
        registry.link_external_wallet("alice", "investor", OTHER_ADDRESS)
        with open(store_path) as f:
            before = f.read()

        with pytest.raises(RegistryInconsistency) as exc_info:
            registry.link_external_wallet("bob", "investor", OTHER_ADDRESS)

        assert exc_info.value.owner_key == "alice:investor"
        with open(store_path) as f:
            assert f.read() == before
        assert registry.get_wallet("bob", "investor").external_wallets == []

    def test_link_custodial_address_of_other_user(self, registry):
        alice = registry.get_or_create_wallet("alice", "investor")
        registry.get_or_create_wallet("bob", "issuer")
        with pytest.raises(RegistryInconsistency):
            registry.link_external_wallet("bob", "issuer", alice.chain_wallets["ARC-TESTNET"].address)

    def test_link_invalid_address(self, registry):
        registry.get_or_create_wallet("alice", "investor")
        with pytest.raises(InvalidAddress):
            registry.link_external_wallet("alice", "investor", "0xnope")

    def test_last_login_and_state(self, registry):
        registry.get_or_create_wallet("alice", "investor")
        assert registry.update_last_login("alice", "investor").last_login is not None

        frozen = registry.set_state("alice", "investor", WalletState.FROZEN)
        assert frozen.state == WalletState.FROZEN
        assert registry.get_wallet("alice", "investor").state == WalletState.FROZEN

        with pytest.raises(WalletNotFound):
            registry.set_state("ghost", "investor", "FROZEN")


class TestWalletBalance:
    """Test custodial USDC balance lookup."""

    def test_sums_usdc_balances(self, registry, provisioner):
        wallet = registry.get_or_create_wallet("alice", "investor", ["ETH-SEPOLIA", "ARC-TESTNET"])
        provisioner.token_balances[wallet.wallet_id] = [
            {"symbol": "USDC", "amount": "12.5", "blockchain": "ETH-SEPOLIA"},
            {"symbol": "USDC", "amount": "0.000001", "blockchain": "ARC-TESTNET"},
            {"symbol": "ETH", "amount": "3", "blockchain": "ETH-SEPOLIA"},
        ]
        # One custodial wallet id serves both chains, so it is only counted once
        assert registry.get_wallet_balance("alice", "investor") == 12_500_001
