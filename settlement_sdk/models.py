"""
Data models for the settlement SDK.

Amounts are integers in micros (USDC base units, 6 decimals) throughout.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, List

from pydantic import BaseModel, Field

TERMINAL_SUCCESS_STATES = frozenset({"COMPLETE", "CONFIRMED"})
TERMINAL_FAILURE_STATES = frozenset({"FAILED", "DENIED", "CANCELLED"})


def utc_now() -> str:
    """ISO-8601 timestamp in UTC, used for record bookkeeping."""
    return datetime.now(timezone.utc).isoformat()


class Role(str, Enum):
    ISSUER = "issuer"
    INVESTOR = "investor"
    ADMIN = "admin"


class WalletState(str, Enum):
    LIVE = "LIVE"
    FROZEN = "FROZEN"


class TransferState(str, Enum):
    """States of the single-chain-pair transfer protocol."""
    BUILDING = "BUILDING"
    SIGNING = "SIGNING"
    ATTESTING = "ATTESTING"
    MINTING = "MINTING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class RecordStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class ChainDescriptor(BaseModel):
    """A supported chain: tag, Gateway domain id and USDC contract"""
    chain_tag: str = Field(..., alias="chainTag")
    domain_id: int = Field(..., alias="domainId")
    usdc_address: str = Field(..., alias="usdcAddress")
    name: str = ""

    class Config:
        populate_by_name = True
        frozen = True


class TransferSpec(BaseModel):
    """Gateway TransferSpec with plain 20-byte addresses"""
    version: int = 1
    source_domain: int = Field(..., alias="sourceDomain")
    destination_domain: int = Field(..., alias="destinationDomain")
    source_contract: str = Field(..., alias="sourceContract")
    destination_contract: str = Field(..., alias="destinationContract")
    source_token: str = Field(..., alias="sourceToken")
    destination_token: str = Field(..., alias="destinationToken")
    source_depositor: str = Field(..., alias="sourceDepositor")
    destination_recipient: str = Field(..., alias="destinationRecipient")
    source_signer: str = Field(..., alias="sourceSigner")
    destination_caller: str = Field(..., alias="destinationCaller")
    value: int
    salt: str
    hook_data: str = Field("0x", alias="hookData")

    class Config:
        populate_by_name = True
        frozen = True


class BurnIntent(BaseModel):
    """Immutable burn intent submitted for attestation"""
    max_block_height: int = Field(..., alias="maxBlockHeight")
    max_fee: int = Field(..., alias="maxFee")
    spec: TransferSpec

    class Config:
        populate_by_name = True
        frozen = True


class SignedBurnIntent(BaseModel):
    """A typed-data message ready for the transfer endpoint"""
    burn_intent: Dict[str, Any] = Field(..., alias="burnIntent")
    signature: str

    class Config:
        populate_by_name = True


class Attestation(BaseModel):
    """Attestation and operator signature returned by the Gateway API"""
    attestation: str
    signature: str
    transfer_id: Optional[str] = Field(None, alias="transferId")
    fees: Optional[Any] = None
    expiration_block: Optional[Any] = Field(None, alias="expirationBlock")

    class Config:
        populate_by_name = True


class OperationStatus(BaseModel):
    """Snapshot of a custodial operation"""
    operation_id: str = Field(..., alias="id")
    state: str
    tx_hash: Optional[str] = Field(None, alias="txHash")
    failure_reason: Optional[str] = Field(None, alias="errorReason")

    class Config:
        populate_by_name = True

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_SUCCESS_STATES or self.state in TERMINAL_FAILURE_STATES

    @property
    def succeeded(self) -> bool:
        return self.state in TERMINAL_SUCCESS_STATES


class ChainWallet(BaseModel):
    wallet_id: str = Field(..., alias="walletId")
    address: str

    class Config:
        populate_by_name = True


class ProvisionedWallet(BaseModel):
    """Result of provisioning a custodial wallet across several chains"""
    wallet_id: str = Field(..., alias="walletId")
    wallet_set_id: Optional[str] = Field(None, alias="walletSetId")
    chain_wallets: Dict[str, ChainWallet] = Field(default_factory=dict, alias="chainWallets")

    class Config:
        populate_by_name = True


class UserWallet(BaseModel):
    """Aggregate root for one (user, role) pair"""
    user_id: str = Field(..., alias="userId")
    role: Role
    wallet_id: str = Field(..., alias="walletId")
    wallet_set_id: Optional[str] = Field(None, alias="walletSetId")
    chain_wallets: Dict[str, ChainWallet] = Field(default_factory=dict, alias="chainWallets")
    external_wallets: List[str] = Field(default_factory=list, alias="externalWallets")
    state: WalletState = WalletState.LIVE
    created_at: str = Field(default_factory=utc_now, alias="createdAt")
    last_login: Optional[str] = Field(None, alias="lastLogin")

    class Config:
        populate_by_name = True

    @property
    def key(self) -> str:
        return registry_key(self.user_id, self.role)

    def addresses(self) -> List[str]:
        """Every address owned by this wallet, custodial and external."""
        return [cw.address for cw in self.chain_wallets.values()] + list(self.external_wallets)


def registry_key(user_id: str, role: Any) -> str:
    role_value = role.value if isinstance(role, Role) else str(role)
    return f"{user_id}:{role_value}"


class TransferRequest(BaseModel):
    """Input to the single-chain-pair transfer protocol"""
    source_chain: str
    destination_chain: str
    source_wallet_id: str
    destination_wallet_id: str
    recipient: str
    amount: int
    max_fee: Optional[int] = None
    available: Optional[int] = None
    depositor: Optional[str] = None


class TransferRecord(BaseModel):
    """Per-chain bookkeeping for a transfer, persisted before each external call"""
    record_id: str = Field(..., alias="recordId")
    source_chain: str = Field(..., alias="sourceChain")
    destination_chain: Optional[str] = Field(None, alias="destinationChain")
    requested_amount: int = Field(0, alias="requestedAmount")
    attested_amount: Optional[int] = Field(None, alias="attestedAmount")
    max_fee: Optional[int] = Field(None, alias="maxFee")
    salt: Optional[str] = None
    intent_digest: Optional[str] = Field(None, alias="intentDigest")
    attestation: Optional[Attestation] = None
    mint_operation_id: Optional[str] = Field(None, alias="mintOperationId")
    transfer_id: Optional[str] = Field(None, alias="transferId")
    state: TransferState = TransferState.BUILDING
    status: RecordStatus = RecordStatus.PENDING
    fee_retried: bool = Field(False, alias="feeRetried")
    error: Optional[str] = None
    created_at: str = Field(default_factory=utc_now, alias="createdAt")
    updated_at: str = Field(default_factory=utc_now, alias="updatedAt")

    class Config:
        populate_by_name = True

    @property
    def amount(self) -> int:
        """Amount moved by this record; zero unless the mint succeeded."""
        if self.status == RecordStatus.SUCCESS:
            return self.attested_amount or 0
        return 0


class ChainBalance(BaseModel):
    chain_tag: str = Field(..., alias="chainTag")
    domain_id: int = Field(..., alias="domainId")
    micros: int = 0

    class Config:
        populate_by_name = True


class UnifiedBalance(BaseModel):
    """Gateway balance of one depositor across several chains"""
    depositor: str
    total_micros: int = Field(0, alias="totalMicros")
    per_chain: List[ChainBalance] = Field(default_factory=list, alias="perChain")

    class Config:
        populate_by_name = True

    def for_chain(self, chain_tag: str) -> int:
        for entry in self.per_chain:
            if entry.chain_tag == chain_tag:
                return entry.micros
        return 0


class AggregationResult(BaseModel):
    """Outcome of a multi-chain aggregation, success or not"""
    requested_micros: Optional[int] = Field(None, alias="requestedMicros")
    transferred_micros: int = Field(0, alias="transferredMicros")
    remaining_micros: int = Field(0, alias="remainingMicros")
    records: List[TransferRecord] = Field(default_factory=list)
    success: bool = False
    cancelled: bool = False

    class Config:
        populate_by_name = True


class Product(BaseModel):
    """On-chain investment product"""
    product_id: int = Field(..., alias="productId")
    issuer: str
    active: bool
    frozen: bool
    price_micros: int = Field(..., alias="priceE6")
    metadata_uri: str = Field("", alias="metadataURI")
    total_units: int = Field(0, alias="totalUnits")

    class Config:
        populate_by_name = True


class Holding(BaseModel):
    product_id: int = Field(..., alias="productId")
    units: int
    pending_dividend: int = Field(0, alias="pendingDividend")

    class Config:
        populate_by_name = True


class Portfolio(BaseModel):
    address: str
    usdc_balance: int = Field(0, alias="usdcBalance")
    holdings: List[Holding] = Field(default_factory=list)

    class Config:
        populate_by_name = True
