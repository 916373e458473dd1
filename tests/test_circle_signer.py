"""
Tests for the Circle developer-controlled wallets backend.
"""
import base64
import json

import pytest
import requests
import requests_mock
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from settlement_sdk.config import SettlementConfig
from settlement_sdk.exceptions import CustodialApiError, ValidationError
from settlement_sdk.signer import get_signer
from settlement_sdk.signer.circle import CircleWalletsClient

from conftest import DEPOSITOR

BASE_URL = "https://api.circle.example/v1/w3s"
ENTITY_SECRET = "0x" + "5e" * 32


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def circle_api(rsa_key):
    pem = rsa_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    with requests_mock.Mocker() as m:
        m.get(f"{BASE_URL}/config/entity/publicKey", json={"data": {"publicKey": pem}})
        yield m


@pytest.fixture
def client():
    return CircleWalletsClient("TEST_API_KEY:abc", ENTITY_SECRET, base_url=BASE_URL, wallet_set_id="set-1",
                               retry_count=0)


def decrypt(rsa_key, ciphertext):
    return rsa_key.decrypt(
        base64.b64decode(ciphertext),
        padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None),
    )


class TestConstruction:
    """Test credential and URL validation."""

    def test_requires_credentials(self):
        with pytest.raises(ValidationError):
            CircleWalletsClient("", ENTITY_SECRET, base_url=BASE_URL)
        with pytest.raises(ValidationError):
            CircleWalletsClient("key", "", base_url=BASE_URL)

    def test_entity_secret_must_be_hex(self):
        with pytest.raises(ValidationError):
            CircleWalletsClient("key", "not-hex", base_url=BASE_URL)

    def test_https_required(self):
        with pytest.raises(ValidationError):
            CircleWalletsClient("key", ENTITY_SECRET, base_url="http://api.circle.example")

    def test_only_reads_are_retried(self):
        client = CircleWalletsClient("key", ENTITY_SECRET, base_url=BASE_URL)
        retries = client.session.get_adapter(BASE_URL).max_retries
        assert retries.is_retry("GET", 503)
        assert not retries.is_retry("POST", 503)
        assert not retries.is_retry("PUT", 503)

    def test_get_signer_prefers_circle(self):
        config = SettlementConfig(circle_api_key="key", circle_entity_secret=ENTITY_SECRET,
                                  circle_wallet_api_url=BASE_URL)
        assert isinstance(get_signer(config), CircleWalletsClient)
        assert not isinstance(get_signer(config, prefer_circle=False), CircleWalletsClient)


class TestEntitySecret:
    """Test per-request entity secret encryption."""

    def test_ciphertext_decrypts_to_secret(self, client, circle_api, rsa_key):
        ciphertext = client.entity_secret_ciphertext()
        assert decrypt(rsa_key, ciphertext) == bytes.fromhex("5e" * 32)

    def test_fresh_ciphertext_and_cached_key(self, client, circle_api):
        first = client.entity_secret_ciphertext()
        second = client.entity_secret_ciphertext()
        assert first != second
        key_requests = [r for r in circle_api.request_history if r.path.endswith("/publickey")]
        assert len(key_requests) == 1

    def test_missing_public_key(self, client):
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/config/entity/publicKey", json={"data": {}})
            with pytest.raises(CustodialApiError):
                client.entity_secret_ciphertext()


class TestContractExecution:
    """Test contract calls and status polling."""

    def test_submit(self, client, circle_api, rsa_key):
        circle_api.post(f"{BASE_URL}/developer/transactions/contractExecution",
                    json={"data": {"id": "tx-1", "state": "INITIATED"}})

        operation_id = client.create_contract_execution(
            "wallet-1", DEPOSITOR, "approve(address,uint256)", [DEPOSITOR, 2_500_000],
            idempotency_key="key-1",
        )

        assert operation_id == "tx-1"
        body = circle_api.last_request.json()
        assert body["walletId"] == "wallet-1"
        assert body["abiFunctionSignature"] == "approve(address,uint256)"
        assert body["abiParameters"] == [DEPOSITOR, "2500000"]
        assert body["feeLevel"] == "MEDIUM"
        assert body["idempotencyKey"] == "key-1"
        assert decrypt(rsa_key, body["entitySecretCiphertext"]) == bytes.fromhex("5e" * 32)
        assert circle_api.last_request.headers["Authorization"] == "Bearer TEST_API_KEY:abc"

    def test_generated_idempotency_key(self, client, circle_api):
        circle_api.post(f"{BASE_URL}/developer/transactions/contractExecution", json={"data": {"id": "tx-1"}})
        client.create_contract_execution("wallet-1", DEPOSITOR, "f()", [])
        client.create_contract_execution("wallet-1", DEPOSITOR, "f()", [])
        keys = [r.json()["idempotencyKey"] for r in circle_api.request_history if r.method == "POST"]
        assert len(set(keys)) == 2

    def test_api_error(self, client, circle_api):
        circle_api.post(f"{BASE_URL}/developer/transactions/contractExecution", status_code=400,
                    json={"code": 156004, "message": "Insufficient native token"})
        with pytest.raises(CustodialApiError) as exc_info:
            client.create_contract_execution("wallet-1", DEPOSITOR, "f()", [])
        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == 156004
        assert "Insufficient native token" in str(exc_info.value)

    def test_connection_error(self, client):
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/transactions/tx-1", exc=requests.ConnectionError("down"))
            with pytest.raises(CustodialApiError):
                client.get_operation("tx-1")

    def test_get_operation(self, client):
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/transactions/tx-1", json={"data": {"transaction": {
                "id": "tx-1", "state": "FAILED", "errorReason": "EXECUTION_REVERTED",
            }}})
            status = client.get_operation("tx-1")
        assert status.state == "FAILED"
        assert status.failure_reason == "EXECUTION_REVERTED"
        assert status.is_terminal

    def test_sign_typed_data(self, client, circle_api):
        circle_api.post(f"{BASE_URL}/developer/sign/typedData", json={"data": {"signature": "0xsig"}})
        document = {"types": {}, "domain": {}, "primaryType": "BurnIntent", "message": {"maxFee": 10}}
        assert client.sign_typed_data("wallet-1", document) == "0xsig"
        sent = json.loads(circle_api.last_request.json()["data"])
        assert sent["message"]["maxFee"] == "10"

    def test_empty_signature(self, client, circle_api):
        circle_api.post(f"{BASE_URL}/developer/sign/typedData", json={"data": {}})
        assert client.sign_typed_data("wallet-1", {"message": {}}) == ""


class TestProvisioning:
    """Test wallet creation and lookups."""

    def test_create_wallets(self, client, circle_api):
        circle_api.post(f"{BASE_URL}/developer/wallets", json={"data": {"wallets": [
            {"id": "w-1", "address": DEPOSITOR, "blockchain": "ETH-SEPOLIA"},
            {"id": "w-2", "address": DEPOSITOR, "blockchain": "ARC-TESTNET"},
        ]}})
        provisioned = client.create_wallets("alice-investor", ["ETH-SEPOLIA", "ARC-TESTNET"])

        assert provisioned.wallet_id == "w-1"
        assert provisioned.wallet_set_id == "set-1"
        assert provisioned.chain_wallets["ARC-TESTNET"].wallet_id == "w-2"
        body = circle_api.last_request.json()
        assert body["accountType"] == "SCA"
        assert body["blockchains"] == ["ETH-SEPOLIA", "ARC-TESTNET"]
        assert body["metadata"] == [{"name": "alice-investor"}]

    def test_creates_wallet_set_once(self, circle_api):
        client = CircleWalletsClient("key", ENTITY_SECRET, base_url=BASE_URL, retry_count=0)
        circle_api.post(f"{BASE_URL}/developer/walletSets", json={"data": {"walletSet": {"id": "set-new"}}})
        circle_api.post(f"{BASE_URL}/developer/wallets", json={"data": {"wallets": [
            {"id": "w-1", "address": DEPOSITOR, "blockchain": "ARC-TESTNET"},
        ]}})
        client.create_wallets("a", ["ARC-TESTNET"])
        client.create_wallets("b", ["ARC-TESTNET"])
        set_requests = [r for r in circle_api.request_history if r.path.endswith("/walletsets")]
        assert len(set_requests) == 1
        assert client.wallet_set_id == "set-new"

    def test_no_wallets_returned(self, client, circle_api):
        circle_api.post(f"{BASE_URL}/developer/wallets", json={"data": {"wallets": []}})
        with pytest.raises(CustodialApiError):
            client.create_wallets("alice", ["ARC-TESTNET"])

    def test_derive_wallet(self, client, circle_api):
        circle_api.put(f"{BASE_URL}/developer/wallets/w-1/blockchains/BASE-SEPOLIA",
                   json={"data": {"wallet": {"id": "w-3", "address": DEPOSITOR}}})
        derived = client.derive_wallet("w-1", "BASE-SEPOLIA", "alice")
        assert derived.wallet_id == "w-3"
        assert circle_api.last_request.json()["metadata"] == {"name": "alice"}

    def test_get_wallet_and_balances(self, client):
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/wallets/w-1", json={"data": {"wallet": {"id": "w-1", "address": DEPOSITOR}}})
            m.get(f"{BASE_URL}/wallets/w-1/balances", json={"data": {"tokenBalances": [
                {"amount": "12.5", "token": {"symbol": "USDC", "blockchain": "ARC-TESTNET"}},
            ]}})
            assert client.get_wallet("w-1").address == DEPOSITOR
            assert client.get_token_balances("w-1") == [
                {"symbol": "USDC", "amount": "12.5", "blockchain": "ARC-TESTNET"},
            ]
