"""
Wallet and role registry.

Maps a (user id, role) pair to its custodial wallets, persisted in a
flat JSON file. Mutations are serialised per key in-process and by a
file lock across processes.
"""
import os
import logging
import threading
from collections import defaultdict
from typing import Dict, Any, Iterable, List, Optional, Union

from .config import NetworkConfig, DEFAULT_DESTINATION_CHAIN
from .exceptions import ValidationError, WalletNotFound, RegistryInconsistency
from .models import UserWallet, ChainWallet, Role, WalletState, registry_key, utc_now
from .signer.base import WalletProvisioner
from .store import JsonStore
from .utils import to_micros, validate_address, short_address

logger = logging.getLogger(__name__)

DEFAULT_WALLET_STORE_PATH = "data/user-wallets.json"

RoleLike = Union[Role, str]


def _role(role: RoleLike) -> Role:
    try:
        return role if isinstance(role, Role) else Role(str(role).lower())
    except ValueError:
        raise ValidationError(f"Unknown role {role!r}; expected one of {[r.value for r in Role]}")


class WalletRegistry:
    """Thread-safe and process-safe registry of user wallets."""

    def __init__(
        self,
        provisioner: WalletProvisioner,
        store_path: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the registry.

        Args:
            provisioner: Backend that creates and derives custodial wallets
            store_path: Optional custom path; defaults to
                ``SETTLEMENT_WALLET_STORE_PATH`` or ``data/user-wallets.json``
            logger: Optional logger instance
        """
        path = store_path or os.environ.get("SETTLEMENT_WALLET_STORE_PATH", DEFAULT_WALLET_STORE_PATH)
        self.provisioner = provisioner
        self.store = JsonStore(path, root_key="wallets")
        self.logger = logger or logging.getLogger(__name__)
        self._key_locks: Dict[str, threading.RLock] = defaultdict(threading.RLock)
        self._key_locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.RLock:
        with self._key_locks_guard:
            return self._key_locks[key]

    @staticmethod
    def _load(data: Dict[str, Any]) -> UserWallet:
        return UserWallet.model_validate(data)

    @staticmethod
    def _dump(wallet: UserWallet) -> Dict[str, Any]:
        return wallet.model_dump(mode="json", by_alias=True)

    def _all(self) -> List[UserWallet]:
        return [self._load(d) for d in self.store.read().values()]

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_wallet(self, user_id: str, role: RoleLike) -> UserWallet:
        """
        Get the wallet of a user in a role.

        Raises:
            WalletNotFound: If the user has no wallet in that role
        """
        role = _role(role)
        data = self.store.get(registry_key(user_id, role))
        if data is None:
            raise WalletNotFound(user_id, role.value)
        return self._load(data)

    def get_user_wallets(self, user_id: str) -> List[UserWallet]:
        """Every wallet of ``user_id``, one per role."""
        return [w for w in self._all() if w.user_id == user_id]

    def get_wallet_by_id(self, wallet_id: str) -> Optional[UserWallet]:
        for wallet in self._all():
            if wallet.wallet_id == wallet_id:
                return wallet
            if any(cw.wallet_id == wallet_id for cw in wallet.chain_wallets.values()):
                return wallet
        return None

    def verify_user_has_role(self, user_id: str, role: RoleLike) -> bool:
        return self.store.get(registry_key(user_id, _role(role))) is not None

    def get_address_for_chain(self, user_id: str, role: RoleLike, chain: str) -> Optional[str]:
        chain_wallet = self.get_wallet(user_id, role).chain_wallets.get(chain)
        return chain_wallet.address if chain_wallet else None

    def source_wallet_ids(self, user_id: str, role: RoleLike) -> Dict[str, str]:
        """Chain tag to custodial wallet id, in registration order."""
        wallet = self.get_wallet(user_id, role)
        return {chain: cw.wallet_id for chain, cw in wallet.chain_wallets.items()}

    def find_by_address(self, address: str) -> Optional[UserWallet]:
        """
        Find the wallet owning ``address`` as a chain or linked external address.

        The comparison is case-insensitive.
        """
        needle = address.lower()
        for wallet in self._all():
            if any(a.lower() == needle for a in wallet.addresses()):
                return wallet
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def get_or_create_wallet(
        self,
        user_id: str,
        role: RoleLike,
        chains: Optional[Iterable[str]] = None,
    ) -> UserWallet:
        """
        Return the wallet of (user, role), provisioning it on first use.

        Idempotent: a second call for the same pair returns the stored
        wallet without provisioning anything.

        Args:
            user_id: User identifier
            role: issuer, investor or admin
            chains: Chain tags to provision (defaults to ARC-TESTNET)

        Returns:
            The stored UserWallet

        Raises:
            UnsupportedChainError: If a chain tag is unknown
        """
        role = _role(role)
        chains = list(chains or [DEFAULT_DESTINATION_CHAIN])
        for chain in chains:
            NetworkConfig.get_network(chain)
        key = registry_key(user_id, role)

        with self._lock_for(key):
            existing = self.store.get(key)
            if existing is not None:
                return self._load(existing)

            self.logger.info(f"Provisioning {role.value} wallet for {user_id} on {', '.join(chains)}")
            provisioned = self.provisioner.create_wallets(f"{user_id}-{role.value}", chains)
            wallet = UserWallet(
                user_id=user_id,
                role=role,
                wallet_id=provisioned.wallet_id,
                wallet_set_id=provisioned.wallet_set_id,
                chain_wallets=provisioned.chain_wallets,
            )

            def _insert(entries: Dict[str, Any]) -> UserWallet:
                # Another process may have won the race while we provisioned
                if key in entries:
                    self.logger.warning(f"Wallet for {key} created concurrently; keeping the stored one")
                    return self._load(entries[key])
                entries[key] = self._dump(wallet)
                return wallet

            return self.store.update(_insert)

    def add_chain_to_wallet(self, user_id: str, role: RoleLike, new_chains: Iterable[str]) -> UserWallet:
        """
        Derive additional chains under the existing custodial wallet.

        Chains already present are left untouched.

        Raises:
            WalletNotFound: If the user has no wallet in that role
            UnsupportedChainError: If a chain tag is unknown
        """
        role = _role(role)
        key = registry_key(user_id, role)
        with self._lock_for(key):
            wallet = self.get_wallet(user_id, role)
            missing = [c for c in dict.fromkeys(new_chains) if c not in wallet.chain_wallets]
            for chain in missing:
                NetworkConfig.get_network(chain)
            if not missing:
                return wallet

            derived: Dict[str, ChainWallet] = {}
            for chain in missing:
                derived[chain] = self.provisioner.derive_wallet(wallet.wallet_id, chain, f"{user_id}-{role.value}")
                self.logger.info(f"Derived {chain} wallet {short_address(derived[chain].address)} for {key}")

            def _merge(entries: Dict[str, Any]) -> UserWallet:
                if key not in entries:
                    raise WalletNotFound(user_id, role.value)
                current = self._load(entries[key])
                for chain, chain_wallet in derived.items():
                    current.chain_wallets.setdefault(chain, chain_wallet)
                entries[key] = self._dump(current)
                return current

            return self.store.update(_merge)

    def link_external_wallet(self, user_id: str, role: RoleLike, address: str) -> UserWallet:
        """
        Link an externally owned address to (user, role).

        Raises:
            InvalidAddress: If the address is malformed
            WalletNotFound: If the user has no wallet in that role
            RegistryInconsistency: If another wallet already owns the address;
                nothing is modified
        """
        role = _role(role)
        key = registry_key(user_id, role)
        normalized = validate_address(address).lower()

        def _link(entries: Dict[str, Any]) -> UserWallet:
            if key not in entries:
                raise WalletNotFound(user_id, role.value)
            for other_key, data in entries.items():
                if other_key == key:
                    continue
                other = self._load(data)
                if any(a.lower() == normalized for a in other.addresses()):
                    raise RegistryInconsistency(normalized, other_key)
            wallet = self._load(entries[key])
            if normalized not in (a.lower() for a in wallet.external_wallets):
                wallet.external_wallets.append(normalized)
                entries[key] = self._dump(wallet)
            return wallet

        with self._lock_for(key):
            wallet = self.store.update(_link)
        self.logger.info(f"Linked {short_address(normalized)} to {key}")
        return wallet

    def update_last_login(self, user_id: str, role: RoleLike) -> UserWallet:
        role = _role(role)
        key = registry_key(user_id, role)

        def _touch(entries: Dict[str, Any]) -> UserWallet:
            if key not in entries:
                raise WalletNotFound(user_id, role.value)
            wallet = self._load(entries[key])
            wallet.last_login = utc_now()
            entries[key] = self._dump(wallet)
            return wallet

        with self._lock_for(key):
            return self.store.update(_touch)

    def set_state(self, user_id: str, role: RoleLike, state: WalletState) -> UserWallet:
        """Freeze or unfreeze a wallet."""
        role = _role(role)
        key = registry_key(user_id, role)

        def _set(entries: Dict[str, Any]) -> UserWallet:
            if key not in entries:
                raise WalletNotFound(user_id, role.value)
            wallet = self._load(entries[key])
            wallet.state = WalletState(state)
            entries[key] = self._dump(wallet)
            return wallet

        with self._lock_for(key):
            return self.store.update(_set)

    def get_wallet_balance(self, user_id: str, role: RoleLike) -> int:
        """
        USDC held by the custodial wallets of (user, role), in micros.

        Balances are summed across every chain wallet.
        """
        wallet = self.get_wallet(user_id, role)
        wallet_ids = dict.fromkeys(cw.wallet_id for cw in wallet.chain_wallets.values())
        total = 0
        for wallet_id in wallet_ids:
            for balance in self.provisioner.get_token_balances(wallet_id):
                if balance.get("symbol", "").upper().startswith("USDC"):
                    total += to_micros(balance.get("amount", "0"))
        return total
