"""Configuration: chain settings from the environment, signing policy from YAML."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigError
from .fees import FeeConfig
from .models import MAX_BPS, normalize_address
from .protocols import PROTOCOLS, get_protocol
from .replay import CLAIM_INTERVAL
from .typed_data import EIP712Domain

logger = logging.getLogger(__name__)

DEFAULT_CHAIN_ID = 84532  # Base Sepolia

_CONTRACT_ENV = {
    "incentive": "INCENTIVE_PROXY_ADDRESS",
    "factory": "FACTORY_PROXY_ADDRESS",
    "storefront": "STOREFRONT_PROXY_ADDRESS",
    "token": "BLUEPRINT_TOKEN_ADDRESS",
    "treasury": "TREASURY_ADDRESS",
    "cube": "CUBE_ADDRESS",
}


def _parse_int_env(name: str, default: Optional[int] = None) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw, 0)
    except ValueError:
        logger.warning("Invalid integer for %s: %s", name, raw)
        return default
    return value


@dataclass
class ChainSettings:
    """RPC endpoint, transaction key and deployed contract addresses."""

    rpc_url: str
    chain_id: int = DEFAULT_CHAIN_ID
    private_key: Optional[str] = None
    contracts: Dict[str, str] = field(default_factory=dict)
    confirmations: int = 1
    poll_interval: float = 1.0
    receipt_timeout: float = 120.0

    def __post_init__(self) -> None:
        if not self.rpc_url:
            raise ConfigError("rpc_url is required", reason="invalid_config")
        if self.chain_id <= 0:
            raise ConfigError("chain_id must be a positive integer", reason="invalid_config")
        self.contracts = {
            name: normalize_address(address, field_name=f"{name} contract", allow_zero=False)
            for name, address in self.contracts.items()
        }

    def contract(self, name: str) -> str:
        try:
            return self.contracts[name]
        except KeyError:
            raise ConfigError(
                f"{name} contract address is not configured ({_CONTRACT_ENV.get(name, name)})",
                reason="invalid_config",
            ) from None

    @classmethod
    def from_env(cls, *, require_key: bool = True) -> "ChainSettings":
        rpc_url = os.getenv("RPC_URL") or os.getenv("BASE_SEPOLIA_RPC") or ""
        private_key = os.getenv("PRIVATE_KEY") or None
        if require_key and not private_key:
            raise ConfigError("PRIVATE_KEY is not set", reason="invalid_config")
        contracts = {name: os.environ[env] for name, env in _CONTRACT_ENV.items() if os.getenv(env)}
        return cls(
            rpc_url=rpc_url,
            chain_id=_parse_int_env("CHAIN_ID", DEFAULT_CHAIN_ID) or DEFAULT_CHAIN_ID,
            private_key=private_key,
            contracts=contracts,
            confirmations=_parse_int_env("CHAIN_CONFIRMATIONS", 1) or 1,
        )


@dataclass
class ProtocolPolicy:
    """Limits the signing service applies before it signs a claim."""

    verifying_contract: str
    enabled: bool = True
    max_reward_amount: Optional[int] = None
    max_price_amount: Optional[int] = None
    allowed_reward_tokens: List[str] = field(default_factory=list)
    max_rake_bps: int = MAX_BPS
    payment_token: Optional[str] = None

    def __post_init__(self) -> None:
        self.verifying_contract = normalize_address(
            self.verifying_contract, field_name="verifying_contract", allow_zero=False
        )
        self.allowed_reward_tokens = [
            normalize_address(token, field_name="allowed reward token") for token in self.allowed_reward_tokens
        ]
        if self.payment_token is not None:
            self.payment_token = normalize_address(self.payment_token, field_name="payment_token")
        if not isinstance(self.max_rake_bps, int) or not (0 <= self.max_rake_bps <= MAX_BPS):
            raise ConfigError("max_rake_bps must be between 0 and 10000", reason="bps_exceeds_max")
        for name in ("max_reward_amount", "max_price_amount"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or value < 0):
                raise ConfigError(f"{name} must be a non-negative integer", reason="invalid_amount")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProtocolPolicy":
        def _resolve(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return default

        def _optional_int(*keys: str) -> Optional[int]:
            value = _resolve(*keys)
            return int(value) if value is not None else None

        verifying_contract = _resolve("verifying_contract", "verifyingContract")
        if verifying_contract is None:
            raise ConfigError("protocol policy needs a verifying_contract", reason="invalid_config")
        return cls(
            verifying_contract=str(verifying_contract),
            enabled=bool(_resolve("enabled", default=True)),
            max_reward_amount=_optional_int("max_reward_amount", "maxRewardAmount"),
            max_price_amount=_optional_int("max_price_amount", "maxPriceAmount"),
            allowed_reward_tokens=list(_resolve("allowed_reward_tokens", "allowedRewardTokens", default=[]) or []),
            max_rake_bps=int(_resolve("max_rake_bps", "maxRakeBps", default=MAX_BPS)),
            payment_token=_resolve("payment_token", "paymentToken"),
        )


@dataclass
class ClaimsConfig:
    """Loaded signing-service configuration."""

    chain_id: int
    protocols: Dict[str, ProtocolPolicy] = field(default_factory=dict)
    claim_interval_seconds: int = CLAIM_INTERVAL
    reload_interval_seconds: int = 10
    fees: Optional[FeeConfig] = None

    def __post_init__(self) -> None:
        if not isinstance(self.chain_id, int) or self.chain_id <= 0:
            raise ConfigError("chain_id must be a positive integer", reason="invalid_config")
        unknown = sorted(set(self.protocols) - set(PROTOCOLS))
        if unknown:
            raise ConfigError(f"unknown claim protocols: {', '.join(unknown)}", reason="unknown_protocol")
        if not isinstance(self.claim_interval_seconds, int) or self.claim_interval_seconds <= 0:
            raise ConfigError("claim_interval_seconds must be positive", reason="invalid_config")
        if not isinstance(self.reload_interval_seconds, int) or not (1 <= self.reload_interval_seconds <= 3600):
            raise ConfigError("reload_interval_seconds must be between 1 and 3600 seconds", reason="invalid_config")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ClaimsConfig":
        def _resolve(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return default

        chain_id = _resolve("chain_id", "chainId")
        if chain_id is None:
            raise ConfigError("chain_id is required", reason="invalid_config")
        protocols = {
            str(name): ProtocolPolicy.from_mapping(policy or {})
            for name, policy in (_resolve("protocols", default={}) or {}).items()
        }
        fees = _resolve("fees", "feeConfig")
        return cls(
            chain_id=int(chain_id),
            protocols=protocols,
            claim_interval_seconds=int(_resolve("claim_interval_seconds", "claimIntervalSeconds", default=CLAIM_INTERVAL)),
            reload_interval_seconds=int(_resolve("reload_interval_seconds", "reloadIntervalSeconds", default=10)),
            fees=FeeConfig.from_mapping(fees) if fees else None,
        )

    def policy(self, protocol: str) -> ProtocolPolicy:
        get_protocol(protocol)
        try:
            return self.protocols[protocol]
        except KeyError:
            raise ConfigError(f"protocol {protocol!r} is not configured", reason="unknown_protocol") from None

    def domain(self, protocol: str) -> EIP712Domain:
        """The fixed signing domain shared by signer and verifier."""

        return get_protocol(protocol).domain(self.chain_id, self.policy(protocol).verifying_contract)


def load_config(path: str | Path) -> ClaimsConfig:
    """Load signing-service configuration from disk."""

    data = yaml.safe_load(Path(path).read_text())
    if not isinstance(data, dict):
        raise ConfigError("claims configuration must be a mapping", reason="invalid_config")
    return ClaimsConfig.from_mapping(data)


__all__ = [
    "ChainSettings",
    "ClaimsConfig",
    "DEFAULT_CHAIN_ID",
    "ProtocolPolicy",
    "load_config",
]
