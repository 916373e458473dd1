"""
Exceptions for the settlement SDK.

Every error carries a readable message plus machine-readable attributes
(chain, amount, operation id, raw response) so callers can decide how to
react without parsing strings.
"""
from typing import Any, Optional


class SettlementError(Exception):
    """Base exception for all settlement SDK errors."""
    pass


class ValidationError(SettlementError, ValueError):
    """Raised when an input is rejected before any external call is made."""
    pass


class InvalidAddress(ValidationError):
    """Raised when an address is not exactly 20 bytes of hex."""

    def __init__(self, address: Any, reason: str = "expected 20-byte hex address"):
        self.address = address
        super().__init__(f"Invalid address {address!r}: {reason}")


class UnsupportedChainError(ValidationError):
    """Raised when a chain tag is not present in the network configuration."""

    def __init__(self, chain: str, supported: Optional[list] = None):
        self.chain = chain
        self.supported = supported or []
        available = ", ".join(self.supported) if self.supported else "none"
        super().__init__(f"Unsupported chain '{chain}'. Available chains: {available}")


class SigningFailed(SettlementError):
    """Raised when the custodial signer returns no usable signature."""

    def __init__(self, message: str, wallet_id: Optional[str] = None):
        self.wallet_id = wallet_id
        super().__init__(message)


class GatewayConnectionError(SettlementError):
    """Raised when the Gateway API cannot be reached."""
    pass


class GatewayResponseError(SettlementError):
    """Raised when the Gateway API returns an error or malformed response."""

    def __init__(self, message: str, raw_body: str = "", status_code: Optional[int] = None):
        self.raw_body = raw_body
        self.status_code = status_code
        super().__init__(message)


class AttestationRejected(GatewayResponseError):
    """Raised when the Gateway API refuses to attest a burn intent."""

    @property
    def fee_hint(self) -> Optional[int]:
        """Minimum fee in micros advertised by the rejection, if any."""
        from .gateway.fees import parse_fee_hint
        return parse_fee_hint(self.raw_body)


class CustodialApiError(SettlementError):
    """Raised when the custodial wallet API returns an error response."""

    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[Any] = None):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class OperationFailed(SettlementError):
    """Raised when a custodial operation reaches a failure terminal state."""

    def __init__(self, operation_id: str, state: str, reason: Optional[str] = None, label: str = "operation"):
        self.operation_id = operation_id
        self.state = state
        self.reason = reason
        message = f"{label} {operation_id} ended in state {state}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class MintFailed(OperationFailed):
    """Raised when the destination-chain mint fails."""
    pass


class OperationTimeout(SettlementError):
    """Raised when a custodial operation does not settle within its polling bound."""

    def __init__(self, operation_id: str, attempts: int, last_state: Optional[str] = None, label: str = "operation"):
        self.operation_id = operation_id
        self.attempts = attempts
        self.last_state = last_state
        super().__init__(
            f"{label} {operation_id} still {last_state or 'unknown'} after {attempts} polls"
        )


class MintTimeout(OperationTimeout):
    """Raised when mint polling exhausts its configured bound."""
    pass


class InsufficientAggregateFunds(SettlementError):
    """
    Raised when aggregation exhausts every candidate chain short of the target.

    Chains that already succeeded stay committed; ``result`` holds the
    per-chain records needed to reconcile.
    """

    def __init__(self, result: Any):
        self.result = result
        super().__init__(
            f"Aggregation short by {result.remaining_micros} micros "
            f"(transferred {result.transferred_micros} of {result.requested_micros})"
        )

    @property
    def records(self) -> list:
        return self.result.records


class RegistryError(SettlementError):
    """Base exception for wallet registry errors."""
    pass


class WalletNotFound(RegistryError):
    """Raised when no wallet exists for the requested user and role."""

    def __init__(self, user_id: str, role: Optional[str] = None):
        self.user_id = user_id
        self.role = role
        target = f"{user_id} with role {role}" if role else user_id
        super().__init__(f"Wallet not found for user {target}")


class RegistryInconsistency(RegistryError):
    """Raised when a mutation would make one address belong to two wallets."""

    def __init__(self, address: str, owner_key: str):
        self.address = address
        self.owner_key = owner_key
        super().__init__(f"Address {address} is already linked to {owner_key}")


class InsufficientBalance(SettlementError):
    """Raised when a wallet cannot cover a subscription."""

    def __init__(self, address: str, required: int, available: int):
        self.address = address
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient USDC for {address}: need {required} micros, have {available}"
        )


class JournalError(SettlementError):
    """Raised when a transfer record cannot be written to the journal."""

    def __init__(self, record_id: str, reason: str):
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Could not journal transfer {record_id}: {reason}")
