"""
Tests for the investment ledger adapter.
"""
from unittest.mock import MagicMock

import pytest
from web3 import Web3

from settlement_sdk.exceptions import ValidationError, InsufficientBalance, OperationFailed, InvalidAddress
from settlement_sdk.ledger import InvestmentLedger
from settlement_sdk.signer import StubSigner

from conftest import DEPOSITOR, OTHER_ADDRESS

LEDGER = "0x" + "a1" * 20
DISTRIBUTOR = "0x" + "b2" * 20
USDC_TOKEN = "0x" + "c3" * 20
ZERO = "0x" + "0" * 40
INVESTOR = Web3.to_checksum_address(DEPOSITOR)

PRODUCTS = {
    1: (OTHER_ADDRESS, True, False, 1_000_000, "ipfs://product-1"),
    2: (OTHER_ADDRESS, False, False, 2_000_000, "ipfs://product-2"),
    3: (OTHER_ADDRESS, True, True, 3_000_000, "ipfs://product-3"),
}


def _call(value):
    return MagicMock(call=MagicMock(return_value=value))


@pytest.fixture
def contracts():
    ledger, distributor, usdc = MagicMock(), MagicMock(), MagicMock()
    ledger.functions.products.side_effect = lambda pid: _call(PRODUCTS.get(pid, (ZERO, False, False, 0, "")))
    ledger.functions.totalUnits.side_effect = lambda pid: _call(pid * 100)
    ledger.functions.holdingOf.side_effect = lambda pid, investor: _call(5 if pid == 1 else 0)
    ledger.functions.treasuryBalanceE6.return_value = _call(42)
    distributor.functions.pending.side_effect = lambda pid, investor: _call(7 if pid in (1, 2) else 0)
    usdc.functions.balanceOf.return_value = _call(10_000_000)
    usdc.functions.allowance.return_value = _call(0)
    return ledger, distributor, usdc


@pytest.fixture
def stub():
    return StubSigner()


@pytest.fixture
def ledger(contracts, stub):
    w3 = MagicMock()
    w3.eth.contract.side_effect = list(contracts)
    return InvestmentLedger(w3, stub, LEDGER, DISTRIBUTOR, USDC_TOKEN)


class TestReads:
    """Test contract reads."""

    def test_get_product(self, ledger):
        product = ledger.get_product(1)
        assert product.product_id == 1
        assert product.active and not product.frozen
        assert product.price_micros == 1_000_000
        assert product.metadata_uri == "ipfs://product-1"
        assert product.total_units == 100

    def test_missing_product(self, ledger):
        assert ledger.get_product(99) is None

    def test_list_products_stops_at_gap(self, ledger):
        assert [p.product_id for p in ledger.list_products()] == [1, 2, 3]

    def test_portfolio_skips_empty_products(self, ledger):
        portfolio = ledger.get_portfolio(DEPOSITOR)
        assert portfolio.usdc_balance == 10_000_000
        assert [(h.product_id, h.units, h.pending_dividend) for h in portfolio.holdings] == [(1, 5, 7), (2, 0, 7)]

    def test_addresses_are_checksummed(self, ledger, contracts):
        _, _, usdc = contracts
        ledger.get_usdc_balance(DEPOSITOR)
        usdc.functions.balanceOf.assert_called_with(INVESTOR)
        ledger.get_usdc_allowance(DEPOSITOR)
        usdc.functions.allowance.assert_called_with(INVESTOR, Web3.to_checksum_address(LEDGER))

    def test_treasury(self, ledger):
        assert ledger.get_treasury_balance() == 42

    def test_invalid_contract_address(self, stub):
        with pytest.raises(InvalidAddress):
            InvestmentLedger(MagicMock(), stub, "0x1234", DISTRIBUTOR, USDC_TOKEN)

    def test_rpc_errors_propagate(self, ledger, contracts):
        ledger_contract, _, _ = contracts
        ledger_contract.functions.totalUnits.side_effect = ConnectionError("rpc down")
        with pytest.raises(ConnectionError):
            ledger.get_total_units(1)


class TestWrites:
    """Test custodial contract writes."""

    def test_subscribe_approves_then_subscribes(self, ledger, stub):
        result = ledger.subscribe("wallet-inv", DEPOSITOR, 1, 2_000_000)

        assert set(result) == {"approve", "subscribe"}
        signatures = [e["function_signature"] for e in stub.executions]
        assert signatures == ["approve(address,uint256)", "subscribe(uint256,uint256)"]
        assert stub.executions[0]["params"] == [Web3.to_checksum_address(LEDGER), 2_000_000]
        assert stub.executions[0]["contract_address"] == Web3.to_checksum_address(USDC_TOKEN)

    def test_subscribe_skips_approval_when_allowance_covers(self, ledger, contracts, stub):
        _, _, usdc = contracts
        usdc.functions.allowance.return_value = _call(5_000_000)
        result = ledger.subscribe("wallet-inv", DEPOSITOR, 1, 2_000_000)
        assert set(result) == {"subscribe"}
        assert len(stub.executions) == 1

    @pytest.mark.parametrize("product_id", [2, 3, 99])
    def test_subscribe_closed_or_missing_product(self, ledger, stub, product_id):
        with pytest.raises(ValidationError):
            ledger.subscribe("wallet-inv", DEPOSITOR, product_id, 1_000_000)
        assert stub.executions == []

    def test_subscribe_insufficient_balance(self, ledger, stub):
        with pytest.raises(InsufficientBalance) as exc_info:
            ledger.subscribe("wallet-inv", DEPOSITOR, 1, 20_000_000)
        assert exc_info.value.required == 20_000_000
        assert exc_info.value.available == 10_000_000
        assert stub.executions == []

    def test_declare_dividend(self, ledger, stub):
        result = ledger.declare_dividend("wallet-issuer", 1, 500_000)
        assert result["declare"].succeeded
        approve, declare = stub.executions
        assert approve["params"] == [Web3.to_checksum_address(DISTRIBUTOR), 500_000]
        assert declare["function_signature"] == "declareDividend(uint256,uint256)"
        assert declare["contract_address"] == Web3.to_checksum_address(DISTRIBUTOR)

    def test_claim_dividend(self, ledger, stub):
        assert ledger.claim_dividend("wallet-inv", DEPOSITOR, 1).succeeded
        assert stub.executions[0]["params"] == [1]

    def test_claim_nothing_pending(self, ledger, stub):
        with pytest.raises(ValidationError):
            ledger.claim_dividend("wallet-inv", DEPOSITOR, 3)
        assert stub.executions == []

    def test_create_and_set_product(self, ledger, stub):
        ledger.create_product("wallet-admin", OTHER_ADDRESS, 1_000_000, "ipfs://new")
        ledger.set_product("wallet-admin", 1, False, 1_500_000)
        ledger.refund("wallet-issuer", 1, DEPOSITOR, 100)
        ledger.withdraw_subscription_funds("wallet-issuer", 1, 100)
        assert [e["function_signature"] for e in stub.executions] == [
            "createProduct(address,uint256,string)",
            "setProduct(uint256,bool,uint256)",
            "refund(uint256,address,uint256)",
            "withdrawSubscriptionFunds(uint256,uint256)",
        ]
        assert stub.executions[2]["params"] == [1, INVESTOR, 100]

    def test_failed_write(self, ledger, stub):
        stub.script_operation("setProduct(uint256,bool,uint256)", ["FAILED"], "not admin")
        with pytest.raises(OperationFailed) as exc_info:
            ledger.set_product("wallet-admin", 1, False, 1)
        assert exc_info.value.reason == "not admin"

    def test_rejects_non_positive_amounts(self, ledger, stub):
        with pytest.raises(ValidationError):
            ledger.approve_ledger("wallet-inv", 0)
        with pytest.raises(ValidationError):
            ledger.create_product("wallet-admin", OTHER_ADDRESS, 0, "ipfs://free")
        assert stub.executions == []
