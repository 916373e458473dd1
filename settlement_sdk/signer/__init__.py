"""
Custodial signing backends.

``CustodialSigner`` is the capability the orchestrator and ledger need;
``WalletProvisioner`` is what the wallet registry needs. Both are
implemented by the Circle client and by the in-memory stub.
"""
import logging

from .base import (
    CustodialSigner,
    WalletProvisioner,
    wait_for_operation,
    DEFAULT_FEE_LEVEL,
)
from .stub import StubSigner

__all__ = [
    "CustodialSigner",
    "WalletProvisioner",
    "StubSigner",
    "wait_for_operation",
    "get_signer",
    "DEFAULT_FEE_LEVEL",
]

logger = logging.getLogger(__name__)


def get_signer(config=None, prefer_circle: bool = True):
    """
    Get the best available signing backend.

    Args:
        config: SettlementConfig carrying Circle credentials (optional)
        prefer_circle: Whether to use Circle when credentials are present

    Returns:
        A ``CircleWalletsClient`` when credentials are configured, otherwise
        a ``StubSigner``
    """
    if prefer_circle and config is not None and config.circle_api_key and config.circle_entity_secret:
        from .circle import CircleWalletsClient
        logger.info("Using Circle developer-controlled wallets backend")
        return CircleWalletsClient(
            api_key=config.circle_api_key,
            entity_secret=config.circle_entity_secret,
            base_url=config.circle_wallet_api_url,
            wallet_set_id=config.circle_wallet_set_id,
        )
    logger.info("Using in-memory stub signing backend")
    return StubSigner()
