"""
Settlement SDK - USDC cross-chain settlement through Circle Gateway.
"""
from .version import __version__
from .config import NetworkConfig, SettlementConfig, PollingPolicy
from .exceptions import (
    SettlementError, ValidationError, InvalidAddress, UnsupportedChainError,
    SigningFailed, GatewayConnectionError, GatewayResponseError, AttestationRejected,
    CustodialApiError, OperationFailed, MintFailed, OperationTimeout, MintTimeout,
    InsufficientAggregateFunds, InsufficientBalance, RegistryError, WalletNotFound,
    RegistryInconsistency, JournalError,
)
from .gateway import GatewayApiClient, parse_fee_hint
from .ledger import InvestmentLedger
from .models import (
    AggregationResult, Attestation, BurnIntent, ChainDescriptor, ChainWallet,
    OperationStatus, RecordStatus, Role, TransferRecord, TransferRequest,
    TransferSpec, TransferState, UnifiedBalance, UserWallet, WalletState,
)
from .orchestrator import TransferOrchestrator
from .records import TransferRecordStore
from .registry import WalletRegistry
from .signer import CustodialSigner, WalletProvisioner, StubSigner, get_signer
from .typed_data import build_burn_intent_typed_data, typed_data_digest
from .utils import to_micros, micros_to_decimal, address_to_bytes32

__all__ = [
    "__version__",
    "NetworkConfig", "SettlementConfig", "PollingPolicy",
    "SettlementError", "ValidationError", "InvalidAddress", "UnsupportedChainError",
    "SigningFailed", "GatewayConnectionError", "GatewayResponseError", "AttestationRejected",
    "CustodialApiError", "OperationFailed", "MintFailed", "OperationTimeout", "MintTimeout",
    "InsufficientAggregateFunds", "InsufficientBalance", "RegistryError", "WalletNotFound",
    "RegistryInconsistency", "JournalError",
    "GatewayApiClient", "parse_fee_hint",
    "InvestmentLedger",
    "AggregationResult", "Attestation", "BurnIntent", "ChainDescriptor", "ChainWallet",
    "OperationStatus", "RecordStatus", "Role", "TransferRecord", "TransferRequest",
    "TransferSpec", "TransferState", "UnifiedBalance", "UserWallet", "WalletState",
    "TransferOrchestrator", "TransferRecordStore", "WalletRegistry",
    "CustodialSigner", "WalletProvisioner", "StubSigner", "get_signer",
    "build_burn_intent_typed_data", "typed_data_digest",
    "to_micros", "micros_to_decimal", "address_to_bytes32",
]
