"""
Custodial signing interface.

The SDK never holds key material. Contract calls and typed-data
signatures are requested from a custodial service identified by an
opaque wallet id, and pending operations are polled to a terminal state.
"""
import time
import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Type

from ..config import PollingPolicy
from ..exceptions import CustodialApiError, OperationFailed, OperationTimeout
from ..models import OperationStatus, ChainWallet, ProvisionedWallet
from .._rate_limited_log import rate_limited_log

logger = logging.getLogger(__name__)

DEFAULT_FEE_LEVEL = "MEDIUM"


class CustodialSigner(ABC):
    """
    Abstract base class for custodial signing backends.

    Implementations submit requests on behalf of a wallet id and return
    opaque operation ids; nothing here blocks on settlement.
    """

    @abstractmethod
    def create_contract_execution(
        self,
        wallet_id: str,
        contract_address: str,
        function_signature: str,
        params: List[Any],
        fee_level: str = DEFAULT_FEE_LEVEL,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """
        Submit a contract call from a custodial wallet.

        Args:
            wallet_id: Custodial wallet to send from
            contract_address: Target contract
            function_signature: ABI signature, e.g. ``"approve(address,uint256)"``
            params: Call parameters in ABI order
            fee_level: Fee policy understood by the backend
            idempotency_key: Optional key making the submission safe to repeat

        Returns:
            Operation id to poll with :meth:`get_operation`

        Raises:
            CustodialApiError: If the backend refuses the request
        """
        pass

    @abstractmethod
    def sign_typed_data(self, wallet_id: str, document: Dict[str, Any]) -> str:
        """
        Sign an EIP-712 document with a custodial wallet.

        Returns:
            Hex signature, or an empty string if the backend produced none
        """
        pass

    @abstractmethod
    def get_operation(self, operation_id: str) -> OperationStatus:
        """Fetch the current state of a submitted operation."""
        pass

    @abstractmethod
    def get_wallet(self, wallet_id: str) -> ChainWallet:
        """Resolve a wallet id to its on-chain address."""
        pass


class WalletProvisioner(ABC):
    """Abstract base class for backends that create custodial wallets."""

    @abstractmethod
    def create_wallets(self, name: str, chains: List[str]) -> ProvisionedWallet:
        """
        Create one wallet identity usable on every chain in ``chains``.

        Args:
            name: Human-readable wallet name
            chains: Chain tags to provision

        Returns:
            The new wallet id with one ChainWallet per chain
        """
        pass

    @abstractmethod
    def derive_wallet(self, wallet_id: str, chain: str, name: Optional[str] = None) -> ChainWallet:
        """Derive a wallet for ``chain`` under an existing wallet identity."""
        pass

    @abstractmethod
    def get_token_balances(self, wallet_id: str) -> List[Dict[str, Any]]:
        """
        List token balances held by a custodial wallet.

        Returns:
            Entries shaped ``{"symbol": str, "amount": decimal string, "blockchain": str}``
        """
        pass


def wait_for_operation(
    signer: CustodialSigner,
    operation_id: str,
    policy: PollingPolicy,
    label: str = "operation",
    failure_cls: Type[OperationFailed] = OperationFailed,
    timeout_cls: Type[OperationTimeout] = OperationTimeout,
) -> OperationStatus:
    """
    Poll an operation until it reaches a terminal state.

    Args:
        signer: Backend that owns the operation
        operation_id: Operation to poll
        policy: Interval and optional attempt bound
        label: Name used in logs and errors (e.g. ``"mint"``)
        failure_cls: Exception raised on FAILED, DENIED or CANCELLED
        timeout_cls: Exception raised when the attempt bound is exhausted

    Returns:
        The terminal, successful operation status

    A poll that fails with ``CustodialApiError`` does not end the wait: the
    operation is already submitted and keeps running on the custodial side.
    The failed poll still counts towards ``policy.max_attempts``.

    Raises:
        OperationFailed: If the operation ends in a failure state
        OperationTimeout: If ``policy.max_attempts`` polls see no terminal state
    """
    attempts = 0
    last_state: Optional[str] = None
    while True:
        attempts += 1
        try:
            status = signer.get_operation(operation_id)
        except CustodialApiError as e:
            if policy.max_attempts is not None and attempts >= policy.max_attempts:
                logger.error(f"{label} {operation_id} status unavailable after {attempts} polls: {e}")
                raise timeout_cls(operation_id, attempts, last_state, label=label)
            rate_limited_log(
                f"Polling {label} {operation_id} failed, retrying: {e}",
                level="warning",
                interval=30,
                logger_instance=logger,
                key=f"poll-error:{operation_id}",
            )
            time.sleep(policy.interval)
            continue
        last_state = status.state

        if status.succeeded:
            logger.info(f"{label} {operation_id} reached {status.state} after {attempts} polls")
            return status
        if status.is_terminal:
            logger.error(f"{label} {operation_id} failed with state {status.state}: {status.failure_reason}")
            raise failure_cls(operation_id, status.state, status.failure_reason, label=label)

        if policy.max_attempts is not None and attempts >= policy.max_attempts:
            logger.error(f"{label} {operation_id} still {last_state} after {attempts} polls, giving up")
            raise timeout_cls(operation_id, attempts, last_state, label=label)

        rate_limited_log(
            f"Waiting for {label} {operation_id} (state {status.state})",
            level="info",
            interval=30,
            logger_instance=logger,
            key=f"poll:{operation_id}",
        )
        time.sleep(policy.interval)
