"""
TransferOrchestrator - cross-chain USDC settlement through Circle Gateway.

A single transfer walks BUILDING -> SIGNING -> ATTESTING -> MINTING ->
CONFIRMED, with FAILED reachable from every non-terminal state. Each
step is journaled before its external call so an interrupted run can be
reconciled from the record store.
"""
import uuid
import logging
import threading
from typing import Dict, Any, List, Optional, Tuple

from .config import (
    NetworkConfig, SettlementConfig, TOLERANCE_MICROS
)
from .exceptions import (
    SettlementError, ValidationError, SigningFailed, AttestationRejected,
    MintFailed, MintTimeout, InsufficientAggregateFunds, JournalError
)
from .gateway.client import GatewayApiClient
from .gateway.fees import parse_fee_hint
from .models import (
    BurnIntent, TransferSpec, SignedBurnIntent, TransferRequest, TransferRecord,
    TransferState, RecordStatus, AggregationResult, OperationStatus, ChainDescriptor
)
from .records import TransferRecordStore
from .signer.base import CustodialSigner, wait_for_operation, DEFAULT_FEE_LEVEL
from .typed_data import build_burn_intent_typed_data, message_for_wire, typed_data_digest
from .utils import (
    MAX_UINT256, ZERO_ADDRESS, Amount, format_usdc, random_salt, require_positive,
    short_address, to_micros, validate_address
)

logger = logging.getLogger(__name__)

GATEWAY_MINT_SIGNATURE = "gatewayMint(bytes,bytes)"
APPROVE_SIGNATURE = "approve(address,uint256)"
DEPOSIT_SIGNATURE = "deposit(address,uint256)"


def mint_idempotency_key(salt: str) -> str:
    """Stable idempotency key for the mint of the intent identified by ``salt``."""
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"gateway-mint:{salt.lower()}"))


class TransferOrchestrator:
    """
    Drives Gateway transfers for one or many source chains.

    This orchestrator handles:
    1. Approving and depositing USDC into the Gateway wallet contract
    2. Building, signing and attesting burn intents, renegotiating the fee once
    3. Minting on the destination chain and waiting for a terminal state
    4. Aggregating balances from several chains into one destination
    """

    def __init__(
        self,
        signer: CustodialSigner,
        gateway_api: Optional[GatewayApiClient] = None,
        config: Optional[SettlementConfig] = None,
        record_store: Optional[TransferRecordStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            signer: Custodial signing backend
            gateway_api: Gateway API client (built from ``config`` if omitted)
            config: Runtime settings (defaults to ``SettlementConfig()``)
            record_store: Transfer journal (built from ``config`` if omitted)
            logger: Optional logger instance
        """
        self.config = config or SettlementConfig()
        self.signer = signer
        self.gateway_api = gateway_api or GatewayApiClient(self.config.gateway_api_url)
        self.records = record_store or TransferRecordStore(self.config.record_store_path)
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    def approve_usdc_for_gateway(self, wallet_id: str, chain: str, amount: int) -> OperationStatus:
        """
        Approve the Gateway wallet contract to pull USDC from ``wallet_id``.

        Args:
            wallet_id: Custodial wallet holding the USDC
            chain: Chain tag the wallet lives on
            amount: Allowance in micros

        Returns:
            Terminal operation status

        Raises:
            ValidationError: If the amount is not positive or the chain unknown
            OperationFailed: If the approval fails on chain
            OperationTimeout: If it does not settle within the contract policy
        """
        require_positive(amount)
        descriptor = NetworkConfig.get_chain(chain)
        gateway_wallet = NetworkConfig.gateway_wallet_address(chain)
        self.logger.info(f"Approving {format_usdc(amount)} USDC for Gateway on {chain}")
        operation_id = self.signer.create_contract_execution(
            wallet_id, descriptor.usdc_address, APPROVE_SIGNATURE, [gateway_wallet, amount], DEFAULT_FEE_LEVEL
        )
        return wait_for_operation(self.signer, operation_id, self.config.contract_policy, label="approve")

    def deposit_to_gateway(self, wallet_id: str, chain: str, amount: int) -> OperationStatus:
        """
        Deposit USDC into the Gateway wallet contract.

        The allowance must already cover ``amount``.

        Raises:
            ValidationError: If the amount is not positive or the chain unknown
            OperationFailed: If the deposit fails on chain
            OperationTimeout: If it does not settle within the contract policy
        """
        require_positive(amount)
        descriptor = NetworkConfig.get_chain(chain)
        gateway_wallet = NetworkConfig.gateway_wallet_address(chain)
        self.logger.info(f"Depositing {format_usdc(amount)} USDC into Gateway on {chain}")
        operation_id = self.signer.create_contract_execution(
            wallet_id, gateway_wallet, DEPOSIT_SIGNATURE, [descriptor.usdc_address, amount], DEFAULT_FEE_LEVEL
        )
        return wait_for_operation(self.signer, operation_id, self.config.contract_policy, label="deposit")

    def complete_gateway_deposit(self, wallet_id: str, chain: str, amount: Amount) -> Dict[str, OperationStatus]:
        """
        Approve and deposit in one call.

        Args:
            wallet_id: Custodial wallet holding the USDC
            chain: Chain tag the wallet lives on
            amount: Human USDC amount (e.g. "25.5") or micros as int

        Returns:
            ``{"approve": status, "deposit": status}``
        """
        micros = amount if isinstance(amount, int) and not isinstance(amount, bool) else to_micros(amount)
        approve = self.approve_usdc_for_gateway(wallet_id, chain, micros)
        deposit = self.deposit_to_gateway(wallet_id, chain, micros)
        return {"approve": approve, "deposit": deposit}

    # ------------------------------------------------------------------
    # Single chain pair
    # ------------------------------------------------------------------

    def build_burn_intent(
        self,
        source: ChainDescriptor,
        destination: ChainDescriptor,
        depositor: str,
        recipient: str,
        value: int,
        max_fee: int,
        salt: str,
    ) -> BurnIntent:
        """Assemble a burn intent with no practical block-height expiry."""
        spec = TransferSpec(
            version=1,
            source_domain=source.domain_id,
            destination_domain=destination.domain_id,
            source_contract=NetworkConfig.gateway_wallet_address(source.chain_tag),
            destination_contract=NetworkConfig.gateway_minter_address(destination.chain_tag),
            source_token=source.usdc_address,
            destination_token=destination.usdc_address,
            source_depositor=depositor,
            destination_recipient=recipient,
            source_signer=depositor,
            destination_caller=ZERO_ADDRESS,
            value=value,
            salt=salt,
            hook_data="0x",
        )
        return BurnIntent(max_block_height=MAX_UINT256, max_fee=max_fee, spec=spec)

    def _validate(self, request: TransferRequest) -> Tuple[ChainDescriptor, ChainDescriptor, str]:
        require_positive(request.amount)
        if request.max_fee is not None and request.max_fee < 0:
            raise ValidationError(f"max_fee must not be negative (got {request.max_fee})")
        source = NetworkConfig.get_chain(request.source_chain)
        destination = NetworkConfig.get_chain(request.destination_chain)
        if source.chain_tag == destination.chain_tag:
            raise ValidationError(f"Source and destination chain are both {source.chain_tag}")
        recipient = validate_address(request.recipient)
        if request.depositor is not None:
            validate_address(request.depositor)
        return source, destination, recipient

    def _save(self, record: TransferRecord, **changes: Any) -> TransferRecord:
        for key, value in changes.items():
            setattr(record, key, value)
        return self.records.save(record)

    def _save_best_effort(self, record: TransferRecord, **changes: Any) -> TransferRecord:
        # Once a mint is submitted, a journal failure must not abandon it
        try:
            return self._save(record, **changes)
        except JournalError as e:
            self.logger.error(f"Transfer {record.record_id[:10]}... continues unjournaled: {e}")
            return record

    def _sign_and_attest(
        self,
        record: TransferRecord,
        request: TransferRequest,
        intent: BurnIntent,
    ):
        self._save(record, state=TransferState.SIGNING, salt=intent.spec.salt, max_fee=intent.max_fee)
        document = build_burn_intent_typed_data(intent)
        digest = typed_data_digest(document)
        self._save(record, intent_digest=digest)

        signature = self.signer.sign_typed_data(request.source_wallet_id, document)
        if not signature:
            raise SigningFailed(
                f"Signer returned no signature for intent {digest[:10]}...",
                wallet_id=request.source_wallet_id,
            )

        self._save(record, state=TransferState.ATTESTING)
        signed = SignedBurnIntent(burn_intent=message_for_wire(document), signature=signature)
        return self.gateway_api.submit_burn_intent(signed)

    def _execute(self, request: TransferRequest) -> Tuple[TransferRecord, Optional[SettlementError]]:
        source, destination, recipient = self._validate(request)
        max_fee = request.max_fee if request.max_fee is not None else self.config.max_fee_for(source.chain_tag)
        salt = random_salt()
        record = TransferRecord(
            record_id=salt,
            source_chain=source.chain_tag,
            destination_chain=destination.chain_tag,
            requested_amount=request.amount,
            max_fee=max_fee,
            salt=salt,
        )
        self.records.save(record)

        try:
            self._run(record, request, source, destination, recipient, max_fee)
        except SettlementError as e:
            self.logger.error(f"Transfer from {source.chain_tag} failed in {record.state.value}: {e}")
            self._save_best_effort(record, state=TransferState.FAILED, status=RecordStatus.FAILED, error=str(e))
            return record, e
        return record, None

    def _run(
        self,
        record: TransferRecord,
        request: TransferRequest,
        source: ChainDescriptor,
        destination: ChainDescriptor,
        recipient: str,
        max_fee: int,
    ) -> None:
        # Building
        depositor = request.depositor or self.signer.get_wallet(request.source_wallet_id).address
        depositor = validate_address(depositor)
        value = request.amount
        intent = self.build_burn_intent(source, destination, depositor, recipient, value, max_fee, record.salt)
        self.logger.info(
            f"Transferring {format_usdc(value)} USDC {source.chain_tag} -> {destination.chain_tag} "
            f"for {short_address(depositor)} (max fee {format_usdc(max_fee)})"
        )

        # Signing and attesting, with at most one fee renegotiation
        try:
            attestation = self._sign_and_attest(record, request, intent)
        except AttestationRejected as rejection:
            hint = parse_fee_hint(rejection.raw_body)
            if hint is None or hint <= max_fee:
                raise
            value = self._value_within_budget(value, hint, request.available)
            if value <= 0:
                self.logger.error(f"Fee hint {format_usdc(hint)} leaves nothing to transfer from {source.chain_tag}")
                raise
            self.logger.warning(
                f"Gateway asked for fee {format_usdc(hint)}, retrying {source.chain_tag} "
                f"once with value {format_usdc(value)}"
            )
            record.fee_retried = True
            intent = self.build_burn_intent(source, destination, depositor, recipient, value, hint, random_salt())
            attestation = self._sign_and_attest(record, request, intent)

        self._save(
            record,
            attestation=attestation,
            attested_amount=intent.spec.value,
            transfer_id=attestation.transfer_id,
            state=TransferState.MINTING,
        )

        # Minting
        operation_id = self.signer.create_contract_execution(
            request.destination_wallet_id,
            NetworkConfig.gateway_minter_address(destination.chain_tag),
            GATEWAY_MINT_SIGNATURE,
            [attestation.attestation, attestation.signature],
            DEFAULT_FEE_LEVEL,
            idempotency_key=mint_idempotency_key(record.salt),
        )
        self._save_best_effort(record, mint_operation_id=operation_id)
        wait_for_operation(
            self.signer, operation_id, self.config.mint_policy,
            label="mint", failure_cls=MintFailed, timeout_cls=MintTimeout,
        )

        self._save_best_effort(record, state=TransferState.CONFIRMED, status=RecordStatus.SUCCESS, error=None)
        self.logger.info(
            f"Minted {format_usdc(record.attested_amount)} USDC on {destination.chain_tag} "
            f"from {source.chain_tag} (transfer {record.transfer_id})"
        )

    @staticmethod
    def _value_within_budget(value: int, fee: int, available: Optional[int]) -> int:
        if available is None or value + fee <= available:
            return value
        return available - fee

    def cross_chain_transfer(self, request: TransferRequest) -> TransferRecord:
        """
        Run the full burn, attest and mint protocol for one chain pair.

        Args:
            request: Source/destination chains and wallets, recipient and
                amount in micros. ``available`` bounds ``amount + fee`` when
                the fee is renegotiated.

        Returns:
            The confirmed transfer record

        Raises:
            ValidationError: For bad amounts, addresses or chains (no external call made)
            SigningFailed: If the signer returns no signature
            AttestationRejected: If attestation is refused and cannot be renegotiated
            MintFailed: If the mint reaches FAILED, DENIED or CANCELLED
            MintTimeout: If the mint policy's attempt bound is exhausted
        """
        record, error = self._execute(request)
        if error is not None:
            raise error
        return record

    def transfer_to_destination(
        self,
        source_chain: str,
        source_wallet_id: str,
        destination_wallet_id: str,
        recipient: str,
        amount: Amount,
        destination_chain: Optional[str] = None,
        max_fee: Optional[int] = None,
    ) -> TransferRecord:
        """
        Move ``amount`` of Gateway balance from ``source_chain`` to the
        configured destination chain.

        Args:
            amount: Human USDC amount (e.g. "12.5") or micros as int
        """
        micros = amount if isinstance(amount, int) and not isinstance(amount, bool) else to_micros(amount)
        return self.cross_chain_transfer(TransferRequest(
            source_chain=source_chain,
            destination_chain=destination_chain or self.config.destination_chain,
            source_wallet_id=source_wallet_id,
            destination_wallet_id=destination_wallet_id,
            recipient=recipient,
            amount=micros,
            max_fee=max_fee,
        ))

    # ------------------------------------------------------------------
    # Multi-chain aggregation
    # ------------------------------------------------------------------

    @staticmethod
    def _skipped(chain: str, reason: str, destination: str) -> TransferRecord:
        return TransferRecord(
            record_id=f"skip-{uuid.uuid4().hex}",
            source_chain=chain,
            destination_chain=destination,
            status=RecordStatus.SKIPPED,
            error=reason,
        )

    def aggregate(
        self,
        depositor: str,
        source_wallet_ids: Dict[str, Optional[str]],
        destination_wallet_id: str,
        recipient: str,
        target_amount: Optional[int] = None,
        destination_chain: Optional[str] = None,
        preferred_chain: Optional[str] = None,
        min_amount_per_chain: Optional[int] = None,
        buffer: Optional[int] = None,
        max_fee: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AggregationResult:
        """
        Pull Gateway balance from several chains into one destination.

        Chains are consumed greedily in the order of ``source_wallet_ids``
        (``preferred_chain`` first). Each chain pulls
        ``min(remaining, available - buffer)``; ``remaining`` only drops once
        a mint is confirmed. A failing chain is recorded and the next one is
        tried. Chains that succeeded stay committed even if the target is
        missed.

        Args:
            depositor: Gateway depositor address shared by the source wallets
            source_wallet_ids: Chain tag to custodial wallet id (None = no wallet)
            destination_wallet_id: Wallet that submits the mint
            recipient: Address receiving the minted USDC
            target_amount: Micros to collect; None drains every chain
            destination_chain: Defaults to the configured destination
            preferred_chain: Chain to try first
            min_amount_per_chain: Smallest balance worth moving, in micros
            buffer: Micros left behind on every source chain
            max_fee: Max fee for every burn (per-chain default otherwise)
            cancel_event: When set, no further chain is started

        Returns:
            AggregationResult with one record per candidate chain

        Raises:
            ValidationError: For bad inputs (before any external call)
            InsufficientAggregateFunds: If every candidate was tried and the
                target is still short; carries the full result
        """
        destination_chain = destination_chain or self.config.destination_chain
        NetworkConfig.get_chain(destination_chain)
        depositor = validate_address(depositor)
        validate_address(recipient)
        if target_amount is not None:
            require_positive(target_amount, "target_amount")
        min_amount = self.config.min_amount_per_chain if min_amount_per_chain is None else min_amount_per_chain
        buffer = self.config.buffer_micros if buffer is None else buffer
        if buffer < 0 or min_amount < 0:
            raise ValidationError("buffer and min_amount_per_chain must not be negative")

        order = [tag for tag in source_wallet_ids if tag != destination_chain]
        if preferred_chain in order:
            order.remove(preferred_chain)
            order.insert(0, preferred_chain)

        records: List[TransferRecord] = []
        candidates: List[str] = []
        for tag in order:
            if NetworkConfig.is_supported(tag):
                candidates.append(tag)
            else:
                records.append(self._skipped(tag, f"unsupported chain {tag}", destination_chain))

        result = AggregationResult(requested_micros=target_amount, records=records)
        remaining = target_amount
        transferred = 0

        balance = self.gateway_api.query_unified_balance(depositor, candidates)
        self.logger.info(
            f"Aggregating {format_usdc(target_amount) if target_amount else 'all'} USDC to "
            f"{destination_chain} from {len(candidates)} chains (unified balance {format_usdc(balance.total_micros)})"
        )

        for index, tag in enumerate(candidates):
            if remaining is not None and remaining <= TOLERANCE_MICROS:
                break
            if cancel_event is not None and cancel_event.is_set():
                self.logger.warning(f"Aggregation cancelled before {tag}")
                result.cancelled = True
                for rest in candidates[index:]:
                    records.append(self._skipped(rest, "cancelled", destination_chain))
                break

            wallet_id = source_wallet_ids.get(tag)
            if not wallet_id:
                records.append(self._skipped(tag, "no wallet configured", destination_chain))
                continue

            available = balance.for_chain(tag)
            if available <= buffer or available < min_amount:
                records.append(self._skipped(
                    tag, f"balance {format_usdc(available)} below minimum", destination_chain
                ))
                continue

            pull = available - buffer
            if remaining is not None:
                pull = min(remaining, pull)

            request = TransferRequest(
                source_chain=tag,
                destination_chain=destination_chain,
                source_wallet_id=wallet_id,
                destination_wallet_id=destination_wallet_id,
                recipient=recipient,
                amount=pull,
                max_fee=max_fee,
                available=available,
                depositor=depositor,
            )
            try:
                record, _ = self._execute(request)
            except SettlementError as e:
                self.logger.error(f"Transfer from {tag} rejected before submission: {e}")
                record = TransferRecord(
                    record_id=f"invalid-{uuid.uuid4().hex}",
                    source_chain=tag,
                    destination_chain=destination_chain,
                    requested_amount=pull,
                    state=TransferState.FAILED,
                    status=RecordStatus.FAILED,
                    error=str(e),
                )
            records.append(record)

            if record.status == RecordStatus.SUCCESS:
                transferred += record.attested_amount
                if remaining is not None:
                    remaining -= record.attested_amount

        result.transferred_micros = transferred
        result.remaining_micros = remaining if remaining is not None else 0
        result.records = records

        if remaining is None:
            result.success = transferred > 0
            return result

        result.success = remaining <= TOLERANCE_MICROS
        if not result.success and not result.cancelled:
            self.logger.error(
                f"Aggregation short by {format_usdc(remaining)} USDC after {len(records)} chains"
            )
            raise InsufficientAggregateFunds(result)
        return result

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, record_id: str) -> TransferRecord:
        """
        Bring a journaled transfer up to date with the custodial backend.

        Only reads state; nothing is ever resubmitted here. Use
        :meth:`resume_mint` for an attested transfer whose mint id was
        never journaled.

        Args:
            record_id: Record to reconcile

        Returns:
            The updated record

        Raises:
            ValidationError: If no such record exists
        """
        record = self.records.get(record_id)
        if record is None:
            raise ValidationError(f"No transfer record {record_id}")
        if record.status in (RecordStatus.SUCCESS, RecordStatus.SKIPPED):
            return record

        if record.mint_operation_id:
            status = self.signer.get_operation(record.mint_operation_id)
            if status.succeeded:
                self.logger.info(f"Transfer {record_id[:10]}... minted ({status.state})")
                return self._save(record, state=TransferState.CONFIRMED, status=RecordStatus.SUCCESS, error=None)
            if status.is_terminal:
                return self._save(
                    record, state=TransferState.FAILED, status=RecordStatus.FAILED,
                    error=f"mint {status.operation_id} ended in state {status.state}: {status.failure_reason}",
                )
            self.logger.info(f"Mint {record.mint_operation_id} still {status.state}")
            return self._save(record, state=TransferState.MINTING, status=RecordStatus.PENDING)

        self.logger.warning(f"Transfer {record_id[:10]}... has no mint to check (state {record.state.value})")
        return record

    def resume_mint(self, record_id: str, destination_wallet_id: str) -> TransferRecord:
        """
        Submit (or re-find) the mint of an attested transfer.

        Safe to call repeatedly: the submission reuses the salt-derived
        idempotency key.

        Raises:
            ValidationError: If the record does not exist or was never attested
            MintFailed: If the mint fails
            MintTimeout: If the mint policy's bound is exhausted
        """
        record = self.records.get(record_id)
        if record is None or record.attestation is None:
            raise ValidationError(f"Transfer {record_id} has no attestation to mint")
        if record.mint_operation_id:
            return self.reconcile(record_id)

        destination_chain = record.destination_chain or self.config.destination_chain
        operation_id = self.signer.create_contract_execution(
            destination_wallet_id,
            NetworkConfig.gateway_minter_address(destination_chain),
            GATEWAY_MINT_SIGNATURE,
            [record.attestation.attestation, record.attestation.signature],
            DEFAULT_FEE_LEVEL,
            idempotency_key=mint_idempotency_key(record.salt or record.record_id),
        )
        self._save(record, mint_operation_id=operation_id, state=TransferState.MINTING, status=RecordStatus.PENDING)
        try:
            wait_for_operation(
                self.signer, operation_id, self.config.mint_policy,
                label="mint", failure_cls=MintFailed, timeout_cls=MintTimeout,
            )
        except SettlementError as e:
            self._save(record, state=TransferState.FAILED, status=RecordStatus.FAILED, error=str(e))
            raise
        return self._save(record, state=TransferState.CONFIRMED, status=RecordStatus.SUCCESS, error=None)
