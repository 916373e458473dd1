"""
Network and runtime configuration for the settlement SDK.
"""
import os
import json
import logging
import importlib.resources
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List

from .exceptions import ValidationError, UnsupportedChainError
from .models import ChainDescriptor

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_API_URL = "https://gateway-api-testnet.circle.com"
DEFAULT_WALLET_API_URL = "https://api.circle.com/v1/w3s"
DEFAULT_DESTINATION_CHAIN = "ARC-TESTNET"
DEFAULT_MAX_FEE_MICROS = 2_010_000
DEFAULT_MIN_AMOUNT_PER_CHAIN = 10_000  # 0.01 USDC
DEFAULT_BUFFER_MICROS = 1_000  # 0.001 USDC
TOLERANCE_MICROS = 1


def _env_key(chain_tag: str, suffix: str) -> str:
    return f"{chain_tag.upper().replace('-', '_')}_{suffix}"


class NetworkConfig:
    """Chain descriptors loaded from the packaged networks.json."""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load network definitions, caching them after the first read.

        Returns:
            Mapping of chain tag to network definition

        Raises:
            ValidationError: If two chains share a domain id
        """
        if cls._networks_cache is not None:
            return cls._networks_cache

        resource = importlib.resources.files("settlement_sdk").joinpath("networks.json")
        with resource.open("r") as f:
            networks = json.load(f)

        cls._check_domains(networks)
        cls._networks_cache = networks
        return networks

    @staticmethod
    def _check_domains(networks: Dict[str, Dict[str, Any]]) -> None:
        seen: Dict[int, str] = {}
        for tag, net in networks.items():
            domain = net.get("domainId")
            if domain is None:
                raise ValidationError(f"Network '{tag}' has no domainId")
            if domain in seen:
                raise ValidationError(
                    f"Domain {domain} is assigned to both '{seen[domain]}' and '{tag}'"
                )
            seen[domain] = tag

    @classmethod
    def supported_chains(cls) -> List[str]:
        return list(cls.load_networks().keys())

    @classmethod
    def get_network(cls, chain_tag: str) -> Dict[str, Any]:
        """
        Get the raw definition of a chain.

        Raises:
            UnsupportedChainError: If the chain tag is unknown
        """
        networks = cls.load_networks()
        if chain_tag not in networks:
            raise UnsupportedChainError(chain_tag, list(networks.keys()))
        return networks[chain_tag]

    @classmethod
    def is_supported(cls, chain_tag: str) -> bool:
        return chain_tag in cls.load_networks()

    @classmethod
    def get_chain(cls, chain_tag: str) -> ChainDescriptor:
        """
        Get the descriptor for a chain.

        The USDC address can be overridden per chain with an environment
        variable such as ``ARC_TESTNET_USDC_ADDRESS``.
        """
        net = cls.get_network(chain_tag)
        usdc = os.environ.get(_env_key(chain_tag, "USDC_ADDRESS")) or net["usdcAddress"]
        return ChainDescriptor(
            chain_tag=chain_tag,
            domain_id=net["domainId"],
            usdc_address=usdc,
            name=net.get("name", chain_tag),
        )

    @classmethod
    def chain_for_domain(cls, domain_id: int) -> ChainDescriptor:
        for tag, net in cls.load_networks().items():
            if net["domainId"] == domain_id:
                return cls.get_chain(tag)
        raise UnsupportedChainError(f"domain {domain_id}", cls.supported_chains())

    @classmethod
    def get_rpc_url(cls, chain_tag: str, override: Optional[str] = None) -> str:
        """RPC URL: explicit override, then ``<CHAIN>_RPC_URL``, then the packaged default."""
        if override:
            return override
        env_value = os.environ.get(_env_key(chain_tag, "RPC_URL"))
        if env_value:
            return env_value
        return cls.get_network(chain_tag)["rpc"]

    @classmethod
    def gateway_wallet_address(cls, chain_tag: str) -> str:
        return cls.get_network(chain_tag)["gatewayWallet"]

    @classmethod
    def gateway_minter_address(cls, chain_tag: str) -> str:
        return cls.get_network(chain_tag)["gatewayMinter"]

    @classmethod
    def default_max_fee(cls, chain_tag: str) -> int:
        return int(cls.get_network(chain_tag).get("defaultMaxFee", DEFAULT_MAX_FEE_MICROS))


@dataclass(frozen=True)
class PollingPolicy:
    """
    How long to wait for a custodial operation to settle.

    ``max_attempts=None`` polls until a terminal state is observed.
    """
    interval: float = 3.0
    max_attempts: Optional[int] = None


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer (got {raw!r})")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number (got {raw!r})")


@dataclass
class SettlementConfig:
    """Runtime settings, usually built with :meth:`from_env`."""
    gateway_api_url: str = DEFAULT_GATEWAY_API_URL
    destination_chain: str = DEFAULT_DESTINATION_CHAIN
    wallet_store_path: Optional[str] = None
    record_store_path: Optional[str] = None
    mint_policy: PollingPolicy = field(default_factory=PollingPolicy)
    contract_policy: PollingPolicy = field(default_factory=lambda: PollingPolicy(max_attempts=60))
    max_fee_overrides: Dict[str, int] = field(default_factory=dict)
    min_amount_per_chain: int = DEFAULT_MIN_AMOUNT_PER_CHAIN
    buffer_micros: int = DEFAULT_BUFFER_MICROS
    circle_api_key: Optional[str] = None
    circle_entity_secret: Optional[str] = None
    circle_wallet_api_url: str = DEFAULT_WALLET_API_URL
    circle_wallet_set_id: Optional[str] = None
    rpc_url: Optional[str] = None
    ledger_address: Optional[str] = None
    distributor_address: Optional[str] = None

    def max_fee_for(self, chain_tag: str) -> int:
        """Default max fee for burns from ``chain_tag``."""
        if chain_tag in self.max_fee_overrides:
            return self.max_fee_overrides[chain_tag]
        return NetworkConfig.default_max_fee(chain_tag)

    @classmethod
    def from_env(cls) -> "SettlementConfig":
        """
        Build a configuration from ``SETTLEMENT_*``, ``CIRCLE_*`` and ``ARC_*``
        environment variables.

        Raises:
            ValidationError: If a numeric variable cannot be parsed
        """
        interval = _env_float("SETTLEMENT_POLL_INTERVAL", 3.0)
        return cls(
            gateway_api_url=os.environ.get("SETTLEMENT_GATEWAY_API_URL", DEFAULT_GATEWAY_API_URL),
            destination_chain=os.environ.get("SETTLEMENT_DESTINATION_CHAIN", DEFAULT_DESTINATION_CHAIN),
            wallet_store_path=os.environ.get("SETTLEMENT_WALLET_STORE_PATH"),
            record_store_path=os.environ.get("SETTLEMENT_RECORD_STORE_PATH"),
            mint_policy=PollingPolicy(
                interval=interval,
                max_attempts=_env_int("SETTLEMENT_MINT_MAX_ATTEMPTS", None),
            ),
            contract_policy=PollingPolicy(
                interval=interval,
                max_attempts=_env_int("SETTLEMENT_CONTRACT_MAX_ATTEMPTS", 60),
            ),
            circle_api_key=os.environ.get("CIRCLE_API_KEY"),
            circle_entity_secret=os.environ.get("CIRCLE_ENTITY_SECRET"),
            circle_wallet_api_url=os.environ.get("CIRCLE_WALLET_API_BASE_URL", DEFAULT_WALLET_API_URL),
            circle_wallet_set_id=os.environ.get("CIRCLE_WALLET_SET_ID"),
            rpc_url=os.environ.get("ARC_NETWORK_RPC_URL"),
            ledger_address=os.environ.get("ARC_LEDGER_CONTRACT_ADDRESS"),
            distributor_address=os.environ.get("ARC_DISTRIBUTOR_CONTRACT_ADDRESS"),
        )
