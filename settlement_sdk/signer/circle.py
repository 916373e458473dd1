"""
Circle developer-controlled wallets backend.

Talks to the Circle Web3 Services REST API. Every mutating request
carries a freshly encrypted entity secret (RSA-OAEP/SHA-256 against the
entity public key) and a uuid4 idempotency key.
"""
import base64
import uuid
import logging
import threading
import urllib.parse
from typing import Dict, Any, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from ..config import DEFAULT_WALLET_API_URL
from ..exceptions import CustodialApiError, ValidationError
from ..models import OperationStatus, ChainWallet, ProvisionedWallet
from ..typed_data import typed_data_to_json
from .base import CustodialSigner, WalletProvisioner, DEFAULT_FEE_LEVEL

logger = logging.getLogger(__name__)


class CircleWalletsClient(CustodialSigner, WalletProvisioner):
    """
    Client for Circle developer-controlled wallets.

    This client handles:
    1. Contract executions and typed-data signatures for custodial wallets
    2. Transaction status polling
    3. Wallet set and wallet provisioning, including chain derivation
    """

    def __init__(
        self,
        api_key: str,
        entity_secret: str,
        base_url: str = DEFAULT_WALLET_API_URL,
        wallet_set_id: Optional[str] = None,
        retry_count: int = 3,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Circle API key
            entity_secret: 32-byte entity secret as hex
            base_url: Web3 Services base URL (e.g. "https://api.circle.com/v1/w3s")
            wallet_set_id: Existing wallet set to create wallets in; one is
                created on first use otherwise
            retry_count: Number of retries for HTTP requests
            timeout: Timeout for HTTP requests in seconds
            logger: Optional logger instance

        Raises:
            ValidationError: If credentials are missing or the URL is not https
        """
        if not api_key or not entity_secret:
            raise ValidationError("Circle api_key and entity_secret are required")
        parsed = urllib.parse.urlparse(base_url)
        host = parsed.netloc.split(":")[0]
        if parsed.scheme != "https" and host not in ("localhost", "127.0.0.1"):
            raise ValidationError(f"base_url must use https:// (got: {parsed.scheme}://)")
        try:
            self._entity_secret = bytes.fromhex(entity_secret.removeprefix("0x"))
        except ValueError:
            raise ValidationError("entity_secret must be hex encoded")

        self.base_url = base_url.rstrip("/")
        self.wallet_set_id = wallet_set_id
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._public_key = None
        self._public_key_lock = threading.Lock()

        self.session = requests.Session()
        # Write bodies carry a single-use entity secret ciphertext
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))
        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.error(f"Circle API request {method} {path} failed: {e}")
            raise CustodialApiError(f"Circle API request failed: {e}")

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"message": response.text}
            message = payload.get("message") or response.reason
            self.logger.error(f"Circle API {method} {path} returned {response.status_code}: {message}")
            raise CustodialApiError(
                f"Circle API error {response.status_code}: {message}",
                status_code=response.status_code,
                error_code=payload.get("code"),
            )

        try:
            return response.json().get("data") or {}
        except ValueError as e:
            raise CustodialApiError(f"Invalid JSON from Circle API: {e}", status_code=response.status_code)

    def _entity_public_key(self):
        with self._public_key_lock:
            if self._public_key is None:
                data = self._request("GET", "/config/entity/publicKey")
                pem = data.get("publicKey")
                if not pem:
                    raise CustodialApiError("Circle API returned no entity public key")
                self._public_key = serialization.load_pem_public_key(pem.encode())
            return self._public_key

    def entity_secret_ciphertext(self) -> str:
        """
        Encrypt the entity secret for one request.

        OAEP is randomised, so every call yields a new ciphertext as the
        API requires.
        """
        ciphertext = self._entity_public_key().encrypt(
            self._entity_secret,
            padding.OAEP(
                mgf=padding.MGF1(algorithm=hashes.SHA256()),
                algorithm=hashes.SHA256(),
                label=None,
            ),
        )
        return base64.b64encode(ciphertext).decode()

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
        body = {
            "idempotencyKey": idempotency_key or str(uuid.uuid4()),
            "walletId": wallet_id,
            "contractAddress": contract_address,
            "abiFunctionSignature": function_signature,
            "abiParameters": [str(p) if isinstance(p, int) and not isinstance(p, bool) else p for p in params],
            "feeLevel": fee_level,
            "entitySecretCiphertext": self.entity_secret_ciphertext(),
        }
        self.logger.debug(f"Submitting {function_signature} on {contract_address} from wallet {wallet_id}")
        data = self._request("POST", "/developer/transactions/contractExecution", body)
        operation_id = data.get("id")
        if not operation_id:
            raise CustodialApiError(f"No transaction id returned for {function_signature}")
        self.logger.info(f"{function_signature} submitted as transaction {operation_id}")
        return operation_id

    def sign_typed_data(self, wallet_id: str, document: Dict[str, Any]) -> str:
        body = {
            "walletId": wallet_id,
            "data": typed_data_to_json(document),
            "entitySecretCiphertext": self.entity_secret_ciphertext(),
        }
        data = self._request("POST", "/developer/sign/typedData", body)
        return data.get("signature") or ""

    def get_operation(self, operation_id: str) -> OperationStatus:
        data = self._request("GET", f"/transactions/{operation_id}")
        tx = data.get("transaction") or {}
        return OperationStatus(
            operation_id=tx.get("id", operation_id),
            state=tx.get("state", "UNKNOWN"),
            tx_hash=tx.get("txHash"),
            failure_reason=tx.get("errorReason") or tx.get("errorDetails"),
        )

    def get_wallet(self, wallet_id: str) -> ChainWallet:
        data = self._request("GET", f"/wallets/{wallet_id}")
        wallet = data.get("wallet") or {}
        if not wallet.get("address"):
            raise CustodialApiError(f"Wallet {wallet_id} has no address", status_code=404)
        return ChainWallet(wallet_id=wallet.get("id", wallet_id), address=wallet["address"])

    # ------------------------------------------------------------------
    # WalletProvisioner
    # ------------------------------------------------------------------

    def _ensure_wallet_set(self, name: str) -> str:
        if self.wallet_set_id:
            return self.wallet_set_id
        data = self._request("POST", "/developer/walletSets", {
            "idempotencyKey": str(uuid.uuid4()),
            "name": name,
            "entitySecretCiphertext": self.entity_secret_ciphertext(),
        })
        wallet_set_id = (data.get("walletSet") or {}).get("id")
        if not wallet_set_id:
            raise CustodialApiError("Circle API returned no wallet set id")
        self.logger.info(f"Wallet set created: {wallet_set_id}")
        self.wallet_set_id = wallet_set_id
        return wallet_set_id

    def create_wallets(self, name: str, chains: List[str]) -> ProvisionedWallet:
        wallet_set_id = self._ensure_wallet_set(f"{name} wallet set")
        data = self._request("POST", "/developer/wallets", {
            "idempotencyKey": str(uuid.uuid4()),
            "walletSetId": wallet_set_id,
            "blockchains": list(chains),
            "accountType": "SCA",
            "count": 1,
            "metadata": [{"name": name}],
            "entitySecretCiphertext": self.entity_secret_ciphertext(),
        })
        wallets = data.get("wallets") or []
        if not wallets:
            raise CustodialApiError("Failed to create wallet: no wallet data returned")

        chain_wallets: Dict[str, ChainWallet] = {}
        for wallet in wallets:
            if wallet.get("blockchain") and wallet.get("address"):
                chain_wallets[wallet["blockchain"]] = ChainWallet(wallet_id=wallet["id"], address=wallet["address"])
        if len(wallets) == 1 and len(chains) == 1 and wallets[0].get("address"):
            chain_wallets[chains[0]] = ChainWallet(wallet_id=wallets[0]["id"], address=wallets[0]["address"])

        wallet_id = wallets[0]["id"]
        self.logger.info(f"Wallet {wallet_id} created on {', '.join(chain_wallets)}")
        return ProvisionedWallet(wallet_id=wallet_id, wallet_set_id=wallet_set_id, chain_wallets=chain_wallets)

    def derive_wallet(self, wallet_id: str, chain: str, name: Optional[str] = None) -> ChainWallet:
        body: Dict[str, Any] = {"entitySecretCiphertext": self.entity_secret_ciphertext()}
        if name:
            body["metadata"] = {"name": name}
        data = self._request("PUT", f"/developer/wallets/{wallet_id}/blockchains/{chain}", body)
        wallet = data.get("wallet") or {}
        if not wallet.get("address"):
            raise CustodialApiError(f"Derivation of {wallet_id} on {chain} returned no address")
        return ChainWallet(wallet_id=wallet.get("id", wallet_id), address=wallet["address"])

    def get_token_balances(self, wallet_id: str) -> List[Dict[str, Any]]:
        data = self._request("GET", f"/wallets/{wallet_id}/balances")
        balances = []
        for entry in data.get("tokenBalances") or []:
            token = entry.get("token") or {}
            balances.append({
                "symbol": token.get("symbol", ""),
                "amount": entry.get("amount", "0"),
                "blockchain": token.get("blockchain", ""),
            })
        return balances

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()
