"""
Gateway API integration for the settlement SDK.

Provides the attestation/balance client and the fee-hint translation
used when the Gateway rejects a burn intent's fee.
"""
import logging
import threading

from .client import GatewayApiClient
from .fees import parse_fee_hint

__all__ = ["GatewayApiClient", "parse_fee_hint", "get_gateway_client"]

logger = logging.getLogger(__name__)

# Module-level client cache with thread safety
_gateway_client_cache = {}
_cache_lock = threading.RLock()


def get_gateway_client(base_url: str) -> GatewayApiClient:
    """
    Get or create a Gateway API client from the module-level cache.

    Args:
        base_url: Gateway API base URL

    Returns:
        GatewayApiClient instance shared by all callers using ``base_url``
    """
    cache_key = base_url.rstrip("/")
    with _cache_lock:
        if cache_key not in _gateway_client_cache:
            logger.debug(f"Creating Gateway API client for {cache_key}")
            _gateway_client_cache[cache_key] = GatewayApiClient(cache_key)
        return _gateway_client_cache[cache_key]
