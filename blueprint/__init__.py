"""Signed-claim client library: EIP-712 claims, replay guards and fee settlement."""

from .access import Action, RoleRegistry, SIGNER_ROLE
from .config import ChainSettings, ClaimsConfig, ProtocolPolicy, load_config
from .errors import (
    AuthorizationError,
    ClaimError,
    ConfigError,
    FundsError,
    InsufficientSupplyError,
    ReplayError,
    StateError,
)
from .fees import FeeConfig, FeeConfigStore, FeeRole, split_amount
from .ledger import InMemoryLedger
from .models import ClaimRequest, FeeRecipient, PriceSpec, RewardSpec, TokenKind
from .processor import ClaimProcessor
from .protocols import CUBE, INCENTIVE, STOREFRONT, ClaimProtocol, get_protocol
from .registry import QuestEscrowRegistry
from .settlement import SettlementEngine, SettlementResult
from .signers import KMSSigner, LocalKeySigner, SignedClaim, sign_claim
from .treasury import Treasury
from .typed_data import EIP712Domain
from .verifier import ClaimVerifier, VerifiedClaim

__all__ = [
    "Action",
    "AuthorizationError",
    "CUBE",
    "ChainSettings",
    "ClaimError",
    "ClaimProcessor",
    "ClaimProtocol",
    "ClaimRequest",
    "ClaimVerifier",
    "ClaimsConfig",
    "ConfigError",
    "EIP712Domain",
    "FeeConfig",
    "FeeConfigStore",
    "FeeRecipient",
    "FeeRole",
    "FundsError",
    "INCENTIVE",
    "InMemoryLedger",
    "InsufficientSupplyError",
    "KMSSigner",
    "LocalKeySigner",
    "PriceSpec",
    "ProtocolPolicy",
    "QuestEscrowRegistry",
    "ReplayError",
    "RewardSpec",
    "RoleRegistry",
    "SIGNER_ROLE",
    "STOREFRONT",
    "SettlementEngine",
    "SettlementResult",
    "SignedClaim",
    "StateError",
    "TokenKind",
    "Treasury",
    "VerifiedClaim",
    "get_protocol",
    "load_config",
    "sign_claim",
    "split_amount",
]
