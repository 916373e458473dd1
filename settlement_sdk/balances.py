"""
Normalisation of Gateway balance responses into a unified view.
"""
import logging
from typing import Dict, Any, List, Sequence

from .exceptions import GatewayResponseError, ValidationError
from .models import ChainDescriptor, ChainBalance, UnifiedBalance
from .utils import to_micros

logger = logging.getLogger(__name__)


def balances_request_body(depositor: str, chains: Sequence[ChainDescriptor]) -> Dict[str, Any]:
    """Body for ``POST /v1/balances``."""
    return {
        "token": "USDC",
        "sources": [{"domain": chain.domain_id, "depositor": depositor} for chain in chains],
    }


def normalize_balances(
    depositor: str,
    chains: Sequence[ChainDescriptor],
    entries: List[Dict[str, Any]],
) -> UnifiedBalance:
    """
    Turn raw ``{domain, balance}`` entries into a unified balance.

    Every requested chain appears exactly once in the result, in request
    order; a chain the API did not report counts as zero. Entries for
    domains that were not requested are ignored.

    Args:
        depositor: Address the balances belong to
        chains: Chains that were queried
        entries: ``balances`` array from the API response

    Returns:
        UnifiedBalance with per-chain micros and their total

    Raises:
        GatewayResponseError: If an entry carries an unreadable balance
    """
    by_domain: Dict[int, int] = {}
    requested = {chain.domain_id for chain in chains}
    for entry in entries or []:
        if not isinstance(entry, dict):
            raise GatewayResponseError(f"Balance entry is not an object: {entry!r}")
        try:
            domain = int(entry.get("domain"))
        except (TypeError, ValueError):
            raise GatewayResponseError(f"Balance entry without a valid domain: {entry!r}")
        if domain not in requested:
            logger.debug(f"Ignoring balance for unrequested domain {domain}")
            continue
        try:
            micros = to_micros(entry.get("balance", "0"))
        except ValidationError as e:
            raise GatewayResponseError(f"Unreadable balance for domain {domain}: {e}")
        by_domain[domain] = by_domain.get(domain, 0) + micros

    per_chain = [
        ChainBalance(chain_tag=chain.chain_tag, domain_id=chain.domain_id, micros=by_domain.get(chain.domain_id, 0))
        for chain in chains
    ]
    return UnifiedBalance(
        depositor=depositor,
        total_micros=sum(entry.micros for entry in per_chain),
        per_chain=per_chain,
    )
