"""
HTTP client for the Circle Gateway API.

Covers the two endpoints the settlement flow needs: attestation of
signed burn intents (``/v1/transfer``) and deposited balances
(``/v1/balances``).
"""
import os
import logging
import urllib.parse
from typing import Dict, Any, List, Optional, Sequence

import pydantic
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..balances import balances_request_body, normalize_balances
from ..config import NetworkConfig, DEFAULT_GATEWAY_API_URL
from ..exceptions import (
    ValidationError, GatewayConnectionError, GatewayResponseError, AttestationRejected
)
from ..models import Attestation, ChainDescriptor, SignedBurnIntent, UnifiedBalance
from ..utils import validate_address, short_address

logger = logging.getLogger(__name__)


def _check_scheme(url: str) -> None:
    parsed = urllib.parse.urlparse(url)
    host = parsed.netloc.split(":")[0]
    is_local = host in ("localhost", "127.0.0.1")
    allow_insecure = os.environ.get("SETTLEMENT_INSECURE_HTTP") == "1"
    if parsed.scheme != "https" and not (is_local or allow_insecure):
        raise ValidationError(f"gateway_api_url must use https:// for security (got: {parsed.scheme}://)")


class GatewayApiClient:
    """
    Client for the Gateway attestation and balance endpoints.

    To use this client, you'll need:
    - The Gateway API base URL (testnet by default)
    - Signed burn intents produced by a custodial signer
    """

    def __init__(
        self,
        base_url: str = DEFAULT_GATEWAY_API_URL,
        retry_count: int = 3,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Gateway API base URL (e.g. "https://gateway-api-testnet.circle.com")
            retry_count: Number of retries for transient HTTP failures
            timeout: Timeout for HTTP requests in seconds
            logger: Optional logger instance

        Raises:
            ValidationError: If the URL does not use https (unless it is localhost)
        """
        _check_scheme(base_url)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

        self.session = requests.Session()
        # Connection failures and GET 5xx are retried; POST answers are returned as-is
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
            connect=retry_count,
            read=0,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    def _post(self, path: str, body: Any) -> requests.Response:
        try:
            return self.session.post(f"{self.base_url}{path}", json=body, timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.error(f"Gateway API request to {path} failed: {e}")
            raise GatewayConnectionError(f"Gateway API request to {path} failed: {e}")

    def submit_burn_intent(self, signed: SignedBurnIntent) -> Attestation:
        """
        Submit a signed burn intent for attestation.

        The intent is posted as a single-element batch. Both an array and a
        single object are accepted as the success response.

        Args:
            signed: Typed-data message and its signature

        Returns:
            Attestation and operator signature

        Raises:
            AttestationRejected: On a non-2xx answer or a response missing the
                attestation or signature
            GatewayConnectionError: If the API cannot be reached
        """
        body = [{"burnIntent": signed.burn_intent, "signature": signed.signature}]
        response = self._post("/v1/transfer", body)
        raw = response.text

        if not response.ok:
            self.logger.warning(f"Gateway rejected burn intent ({response.status_code}): {raw[:500]}")
            raise AttestationRejected(
                f"Gateway API rejected burn intent with status {response.status_code}",
                raw_body=raw,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            raise AttestationRejected("Gateway API returned non-JSON attestation response",
                                      raw_body=raw, status_code=response.status_code)

        result = payload[0] if isinstance(payload, list) and payload else payload
        if not isinstance(result, dict) or not result.get("attestation") or not result.get("signature"):
            self.logger.error(f"Attestation response missing attestation or signature: {raw[:500]}")
            raise AttestationRejected("Attestation response missing attestation or signature",
                                      raw_body=raw, status_code=response.status_code)

        try:
            attestation = Attestation.model_validate(result)
        except pydantic.ValidationError as e:
            self.logger.error(f"Malformed attestation response: {e}")
            raise AttestationRejected("Attestation response has malformed fields",
                                      raw_body=raw, status_code=response.status_code)
        self.logger.info(f"Burn intent attested, transfer {attestation.transfer_id}")
        return attestation

    def fetch_balances(self, depositor: str, chains: Sequence[ChainDescriptor]) -> List[Dict[str, Any]]:
        """
        Raw balance entries for ``depositor`` on each chain.

        Raises:
            GatewayResponseError: On a non-2xx or malformed response
            GatewayConnectionError: If the API cannot be reached
        """
        response = self._post("/v1/balances", balances_request_body(depositor, chains))
        if not response.ok:
            raise GatewayResponseError(
                f"Gateway balance query failed with status {response.status_code}",
                raw_body=response.text,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError:
            raise GatewayResponseError("Gateway API returned non-JSON balance response",
                                       raw_body=response.text, status_code=response.status_code)
        balances = payload.get("balances") if isinstance(payload, dict) else None
        if not isinstance(balances, list):
            raise GatewayResponseError("Balance response has no balances array",
                                       raw_body=response.text, status_code=response.status_code)
        return balances

    def query_unified_balance(self, depositor: str, chain_tags: Sequence[str]) -> UnifiedBalance:
        """
        Deposited Gateway balance of ``depositor`` across ``chain_tags``.

        Args:
            depositor: Depositor address
            chain_tags: Chains to include, in the order they should be reported

        Returns:
            UnifiedBalance; chains the API omits count as zero

        Raises:
            UnsupportedChainError: If a chain tag is unknown (before any request)
            InvalidAddress: If the depositor address is malformed
        """
        depositor = validate_address(depositor)
        chains = [NetworkConfig.get_chain(tag) for tag in chain_tags]
        if not chains:
            return UnifiedBalance(depositor=depositor)

        self.logger.debug(f"Querying Gateway balances for {short_address(depositor)} on {list(chain_tags)}")
        entries = self.fetch_balances(depositor, chains)
        unified = normalize_balances(depositor, chains, entries)
        self.logger.info(f"Unified balance for {short_address(depositor)}: {unified.total_micros} micros")
        return unified

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()
