"""
Investment ledger adapter.

Thin wrapper over the product ledger, dividend distributor and USDC
contracts on the settlement chain. Reads go through web3; writes are
submitted from custodial wallets and polled under the contract policy.
RPC errors propagate unchanged.
"""
import logging
from typing import Dict, Any, List, Optional

from web3 import Web3

from .config import PollingPolicy
from .exceptions import ValidationError, InsufficientBalance
from .models import OperationStatus, Product, Holding, Portfolio
from .signer.base import CustodialSigner, wait_for_operation, DEFAULT_FEE_LEVEL
from .utils import format_usdc, require_positive, validate_address

logger = logging.getLogger(__name__)


class InvestmentLedger:
    """
    Reads and writes investment products, subscriptions and dividends.

    To use this adapter, you'll need:
    - A web3 instance connected to the settlement chain
    - The ledger, distributor and USDC contract addresses
    - A custodial signer for write operations
    """

    LEDGER_ABI = [
        {
            "inputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "name": "products",
            "outputs": [
                {"internalType": "address", "name": "issuer", "type": "address"},
                {"internalType": "bool", "name": "active", "type": "bool"},
                {"internalType": "bool", "name": "frozen", "type": "bool"},
                {"internalType": "uint256", "name": "priceE6", "type": "uint256"},
                {"internalType": "string", "name": "metadataURI", "type": "string"},
            ],
            "stateMutability": "view",
            "type": "function",
        },
        {
            "inputs": [
                {"internalType": "uint256", "name": "productId", "type": "uint256"},
                {"internalType": "address", "name": "investor", "type": "address"},
            ],
            "name": "holdingOf",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function",
        },
        {
            "inputs": [{"internalType": "uint256", "name": "productId", "type": "uint256"}],
            "name": "totalUnits",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function",
        },
        {
            "inputs": [],
            "name": "treasuryBalanceE6",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function",
        },
    ]

    DISTRIBUTOR_ABI = [
        {
            "inputs": [
                {"internalType": "uint256", "name": "productId", "type": "uint256"},
                {"internalType": "address", "name": "investor", "type": "address"},
            ],
            "name": "pending",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function",
        },
    ]

    USDC_ABI = [
        {
            "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
            "name": "balanceOf",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function",
        },
        {
            "inputs": [
                {"internalType": "address", "name": "owner", "type": "address"},
                {"internalType": "address", "name": "spender", "type": "address"},
            ],
            "name": "allowance",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function",
        },
    ]

    # Highest product id probed when listing products
    MAX_PRODUCT_SCAN = 1000

    def __init__(
        self,
        w3: Web3,
        signer: CustodialSigner,
        ledger_address: str,
        distributor_address: str,
        usdc_address: str,
        policy: Optional[PollingPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the adapter.

        Args:
            w3: Web3 instance connected to the settlement chain
            signer: Custodial signer used for writes
            ledger_address: Product ledger contract
            distributor_address: Dividend distributor contract
            usdc_address: USDC token contract
            policy: Polling policy for writes (60 attempts, 3s by default)
            logger: Optional logger instance

        Raises:
            InvalidAddress: If a contract address is malformed
        """
        self.w3 = w3
        self.signer = signer
        self.ledger_address = Web3.to_checksum_address(validate_address(ledger_address))
        self.distributor_address = Web3.to_checksum_address(validate_address(distributor_address))
        self.usdc_address = Web3.to_checksum_address(validate_address(usdc_address))
        self.policy = policy or PollingPolicy(max_attempts=60)
        self.logger = logger or logging.getLogger(__name__)

        self.ledger = w3.eth.contract(address=self.ledger_address, abi=self.LEDGER_ABI)
        self.distributor = w3.eth.contract(address=self.distributor_address, abi=self.DISTRIBUTOR_ABI)
        self.usdc = w3.eth.contract(address=self.usdc_address, abi=self.USDC_ABI)

    @staticmethod
    def _checksum(address: str) -> str:
        return Web3.to_checksum_address(validate_address(address))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_product(self, product_id: int) -> Optional[Product]:
        """
        Read a product.

        Returns:
            The product, or None if no product has that id
        """
        issuer, active, frozen, price_e6, metadata_uri = self.ledger.functions.products(product_id).call()
        if int(issuer, 16) == 0:
            return None
        return Product(
            product_id=product_id,
            issuer=issuer,
            active=active,
            frozen=frozen,
            price_micros=price_e6,
            metadata_uri=metadata_uri,
            total_units=self.get_total_units(product_id),
        )

    def list_products(self) -> List[Product]:
        """Products with consecutive ids starting at 1."""
        products = []
        for product_id in range(1, self.MAX_PRODUCT_SCAN + 1):
            product = self.get_product(product_id)
            if product is None:
                break
            products.append(product)
        return products

    def get_holding(self, product_id: int, investor: str) -> int:
        return self.ledger.functions.holdingOf(product_id, self._checksum(investor)).call()

    def get_total_units(self, product_id: int) -> int:
        return self.ledger.functions.totalUnits(product_id).call()

    def get_pending_dividend(self, product_id: int, investor: str) -> int:
        return self.distributor.functions.pending(product_id, self._checksum(investor)).call()

    def get_usdc_balance(self, address: str) -> int:
        return self.usdc.functions.balanceOf(self._checksum(address)).call()

    def get_usdc_allowance(self, owner: str, spender: Optional[str] = None) -> int:
        """Allowance granted by ``owner`` to ``spender`` (the ledger by default)."""
        return self.usdc.functions.allowance(self._checksum(owner), spender or self.ledger_address).call()

    def get_treasury_balance(self) -> int:
        return self.ledger.functions.treasuryBalanceE6().call()

    def get_portfolio(self, address: str) -> Portfolio:
        """
        Holdings and pending dividends of ``address`` across every product.

        Products the address holds nothing of and has nothing to claim
        from are left out.
        """
        holdings = []
        for product in self.list_products():
            units = self.get_holding(product.product_id, address)
            pending = self.get_pending_dividend(product.product_id, address)
            if units or pending:
                holdings.append(Holding(product_id=product.product_id, units=units, pending_dividend=pending))
        return Portfolio(address=address, usdc_balance=self.get_usdc_balance(address), holdings=holdings)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _execute(self, wallet_id: str, contract: str, signature: str, params: List[Any], label: str) -> OperationStatus:
        self.logger.info(f"Submitting {label} from wallet {wallet_id}")
        operation_id = self.signer.create_contract_execution(wallet_id, contract, signature, params, DEFAULT_FEE_LEVEL)
        return wait_for_operation(self.signer, operation_id, self.policy, label=label)

    def create_product(self, wallet_id: str, issuer: str, price_micros: int, metadata_uri: str) -> OperationStatus:
        require_positive(price_micros, "price")
        return self._execute(
            wallet_id, self.ledger_address, "createProduct(address,uint256,string)",
            [self._checksum(issuer), price_micros, metadata_uri], "createProduct",
        )

    def set_product(self, wallet_id: str, product_id: int, active: bool, price_micros: int) -> OperationStatus:
        return self._execute(
            wallet_id, self.ledger_address, "setProduct(uint256,bool,uint256)",
            [product_id, active, price_micros], "setProduct",
        )

    def approve_ledger(self, wallet_id: str, amount: int) -> OperationStatus:
        require_positive(amount)
        return self._execute(
            wallet_id, self.usdc_address, "approve(address,uint256)",
            [self.ledger_address, amount], "approve ledger",
        )

    def approve_distributor(self, wallet_id: str, amount: int) -> OperationStatus:
        require_positive(amount)
        return self._execute(
            wallet_id, self.usdc_address, "approve(address,uint256)",
            [self.distributor_address, amount], "approve distributor",
        )

    def refund(self, wallet_id: str, product_id: int, investor: str, amount: int) -> OperationStatus:
        require_positive(amount)
        return self._execute(
            wallet_id, self.ledger_address, "refund(uint256,address,uint256)",
            [product_id, self._checksum(investor), amount], "refund",
        )

    def withdraw_subscription_funds(self, wallet_id: str, product_id: int, amount: int) -> OperationStatus:
        require_positive(amount)
        return self._execute(
            wallet_id, self.ledger_address, "withdrawSubscriptionFunds(uint256,uint256)",
            [product_id, amount], "withdrawSubscriptionFunds",
        )

    def subscribe(self, wallet_id: str, investor: str, product_id: int, amount: int) -> Dict[str, OperationStatus]:
        """
        Subscribe ``amount`` micros of USDC to a product.

        Checks the investor's USDC balance, tops up the ledger allowance
        when needed, then subscribes.

        Raises:
            ValidationError: If the product does not exist or is not open
            InsufficientBalance: If the investor holds less than ``amount``
            OperationFailed: If a write fails on chain
        """
        require_positive(amount)
        product = self.get_product(product_id)
        if product is None:
            raise ValidationError(f"Product {product_id} does not exist")
        if not product.active or product.frozen:
            raise ValidationError(f"Product {product_id} is not open for subscription")

        balance = self.get_usdc_balance(investor)
        if balance < amount:
            raise InsufficientBalance(investor, amount, balance)

        result: Dict[str, OperationStatus] = {}
        if self.get_usdc_allowance(investor) < amount:
            result["approve"] = self.approve_ledger(wallet_id, amount)
        result["subscribe"] = self._execute(
            wallet_id, self.ledger_address, "subscribe(uint256,uint256)", [product_id, amount], "subscribe",
        )
        return result

    def declare_dividend(self, wallet_id: str, product_id: int, amount: int) -> Dict[str, OperationStatus]:
        """Approve the distributor and declare a dividend of ``amount`` micros."""
        require_positive(amount)
        approve = self.approve_distributor(wallet_id, amount)
        declare = self._execute(
            wallet_id, self.distributor_address, "declareDividend(uint256,uint256)",
            [product_id, amount], "declareDividend",
        )
        return {"approve": approve, "declare": declare}

    def claim_dividend(self, wallet_id: str, investor: str, product_id: int) -> OperationStatus:
        """
        Claim the pending dividend of ``investor`` on a product.

        Raises:
            ValidationError: If nothing is pending
        """
        pending = self.get_pending_dividend(product_id, investor)
        if pending <= 0:
            raise ValidationError(f"No pending dividend for {investor} on product {product_id}")
        self.logger.info(f"Claiming {format_usdc(pending)} USDC dividend on product {product_id}")
        return self._execute(
            wallet_id, self.distributor_address, "claim(uint256)", [product_id], "claim",
        )
